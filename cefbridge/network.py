"""Message transport between the server and browser clients.

Each message travels as one frame: a four-byte big-endian length followed
by the message bytes. A :class:`Socket` does its network work on
background threads and hands what happened to its owner through
:meth:`Socket.recv`, which never blocks.
"""

from __future__ import annotations

import itertools
import queue
import socket
import struct
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Union

INCOMING_PACKET_SIZE = 10 * 1024 * 1024
CONNECT_TIMEOUT = 10.0

_ACCEPT_POLL = 0.2
_DISCARD_CHUNK = 64 * 1024
_HEADER = struct.Struct(">I")
_MAX_FRAME = (1 << 32) - 1

Address = tuple[str, int]


class CertStrategy(Enum):
    """How a listening socket identifies itself to clients."""

    SELF_SIGNED = "self-signed"


@dataclass(frozen=True)
class Connected:
    """A connection to a peer is open."""

    peer_id: int
    addr: Address


@dataclass(frozen=True)
class Message:
    """A peer sent a message."""

    peer_id: int
    data: bytes


@dataclass(frozen=True)
class Disconnect:
    """A connection that had been open is gone."""

    peer_id: int
    addr: Address


@dataclass(frozen=True)
class ConnectionError:  # noqa: A001 - an event, not an exception
    """An outgoing connection could not be opened."""

    peer_id: int


Event = Union[Connected, Message, Disconnect, ConnectionError]


@dataclass(eq=False)
class _Link:
    sock: socket.socket
    addr: Address
    outbox: queue.SimpleQueue = field(default_factory=queue.SimpleQueue)

    def close(self) -> None:
        try:
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        self.outbox.put(None)


@dataclass(frozen=True)
class _Opened:
    link: _Link
    peer_id: int


@dataclass(frozen=True)
class _Received:
    peer_id: int
    data: bytes


@dataclass(frozen=True)
class _Closed:
    peer_id: int


@dataclass(frozen=True)
class _Failed:
    peer_id: int


def _family(host: str) -> socket.AddressFamily:
    return socket.AF_INET6 if ":" in host else socket.AF_INET


class Socket:
    """A message socket that can listen for peers and connect to them."""

    def __init__(self, addr: Address, *, listening: bool) -> None:
        self._bind_addr = (addr[0], addr[1])
        self._events: queue.SimpleQueue = queue.SimpleQueue()
        self._ids = itertools.count(1)
        self._id_lock = threading.Lock()
        self._stop = threading.Event()
        self._links_lock = threading.Lock()
        self._links: set[_Link] = set()
        self._peers: dict[int, _Link] = {}
        self._listener: socket.socket | None = None

        if listening:
            self._listener = socket.create_server(self._bind_addr, family=_family(addr[0]))
            self._listener.settimeout(_ACCEPT_POLL)
            threading.Thread(target=self._accept_loop, daemon=True).start()

    @classmethod
    def new_client(cls, addr: Address) -> Socket:
        """Create a socket that only makes outgoing connections from ``addr``'s host."""
        return cls(addr, listening=False)

    @classmethod
    def new_server(cls, addr: Address, cert: CertStrategy = CertStrategy.SELF_SIGNED) -> Socket:
        """Create a socket listening for peers on ``addr``."""
        return cls(addr, listening=True)

    @property
    def local_addr(self) -> Address:
        """The address the socket listens on, or was created with."""
        if self._listener is not None:
            host, port = self._listener.getsockname()[:2]
            return host, port
        return self._bind_addr

    def __enter__(self) -> Socket:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def connect(self, addr: Address) -> int:
        """Start connecting to ``addr`` and return the id the peer will have."""
        peer_id = self._next_id()
        if self._stop.is_set():
            self._events.put(_Failed(peer_id))
        else:
            target = (addr[0], addr[1])
            threading.Thread(target=self._connect, args=(target, peer_id), daemon=True).start()
        return peer_id

    def disconnect(self, peer_id: int) -> None:
        """Close the connection to a peer; unknown peers are ignored."""
        link = self._peers.get(peer_id)
        if link is not None:
            link.close()

    def send_message(self, peer_id: int, message: bytes) -> None:
        """Queue a message for a connected peer; unknown peers are ignored."""
        message = bytes(message)
        if len(message) > _MAX_FRAME:
            raise ValueError(f"message of {len(message)} bytes is too large to send")
        link = self._peers.get(peer_id)
        if link is not None:
            link.outbox.put(message)

    def recv(self) -> Event | None:
        """Return the next event, or None if nothing has happened."""
        while True:
            try:
                item = self._events.get_nowait()
            except queue.Empty:
                return None

            if isinstance(item, _Opened):
                self._peers[item.peer_id] = item.link
                return Connected(item.peer_id, item.link.addr)
            if isinstance(item, _Received):
                return Message(item.peer_id, item.data)
            if isinstance(item, _Closed):
                link = self._peers.pop(item.peer_id, None)
                if link is not None:
                    return Disconnect(item.peer_id, link.addr)
                continue
            return ConnectionError(item.peer_id)

    def close(self) -> None:
        """Stop listening and close every connection."""
        self._stop.set()
        if self._listener is not None:
            self._listener.close()
        with self._links_lock:
            links = list(self._links)
        for link in links:
            link.close()

    def _next_id(self) -> int:
        with self._id_lock:
            return next(self._ids)

    def _source_address(self) -> Address | None:
        host = self._bind_addr[0]
        return (host, 0) if host else None

    def _connect(self, addr: Address, peer_id: int) -> None:
        try:
            sock = socket.create_connection(
                addr, timeout=CONNECT_TIMEOUT, source_address=self._source_address()
            )
        except OSError:
            self._events.put(_Failed(peer_id))
            return
        sock.settimeout(None)
        if not self._open(sock, peer_id):
            self._events.put(_Failed(peer_id))

    def _accept_loop(self) -> None:
        assert self._listener is not None
        while not self._stop.is_set():
            try:
                conn, _ = self._listener.accept()
            except TimeoutError:
                continue
            except OSError:
                break
            conn.settimeout(None)
            self._open(conn, self._next_id())

    def _open(self, sock: socket.socket, peer_id: int) -> bool:
        try:
            host, port = sock.getpeername()[:2]
        except OSError:
            sock.close()
            return False
        link = _Link(sock, (host, port))
        with self._links_lock:
            if self._stop.is_set():
                sock.close()
                return False
            self._links.add(link)
        self._events.put(_Opened(link, peer_id))
        threading.Thread(target=self._write_loop, args=(link,), daemon=True).start()
        threading.Thread(target=self._read_loop, args=(link, peer_id), daemon=True).start()
        return True

    def _write_loop(self, link: _Link) -> None:
        while (message := link.outbox.get()) is not None:
            try:
                link.sock.sendall(_HEADER.pack(len(message)) + message)
            except OSError:
                link.close()
                break

    def _read_loop(self, link: _Link, peer_id: int) -> None:
        try:
            with link.sock.makefile("rb") as reader:
                while True:
                    header = reader.read(_HEADER.size)
                    if len(header) < _HEADER.size:
                        break
                    (length,) = _HEADER.unpack(header)
                    if length > INCOMING_PACKET_SIZE:
                        if not _discard(reader, length):
                            break
                        continue
                    data = reader.read(length)
                    if len(data) < length:
                        break
                    self._events.put(_Received(peer_id, data))
        except OSError:
            pass
        finally:
            with self._links_lock:
                self._links.discard(link)
            link.outbox.put(None)
            link.sock.close()
            self._events.put(_Closed(peer_id))


def _discard(reader, length: int) -> bool:
    """Skip ``length`` bytes; False if the stream ended first."""
    remaining = length
    while remaining:
        chunk = reader.read(min(remaining, _DISCARD_CHUNK))
        if not chunk:
            return False
        remaining -= len(chunk)
    return True