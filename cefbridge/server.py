"""The game-side server that tracks browser clients and relays packets."""

from __future__ import annotations

import queue
import threading
from collections.abc import Iterator
from dataclasses import dataclass
from ipaddress import IPv4Address, IPv6Address, ip_address
from typing import Any, Union

from .client import Client, State
from .network import Address, CertStrategy, Connected, Disconnect, Message, Socket
from .packets import (
    AlwaysListenKeys,
    AppendToObject,
    BrowserCreated,
    CreateBrowser,
    CreateExternalBrowser,
    DestroyBrowser,
    EmitEvent,
    EventValue,
    FocusBrowser,
    HideBrowser,
    JoinResponse,
    LoadUrl,
    OpenConnection,
    Packet,
    PacketId,
    RemoveFromObject,
    RequestJoin,
    SetAudioSettings,
    ToggleDevTools,
    decode_message,
    try_into_packet,
)
from .wire import DecodeError

PUMP_INTERVAL = 0.005
_U32_MASK = (1 << 32) - 1

IpAddress = Union[IPv4Address, IPv6Address]


@dataclass(frozen=True)
class EmitEventReceived:
    """A player's browser emitted an event with its arguments as text."""

    player_id: int
    event: str
    arguments: str


@dataclass(frozen=True)
class PlayerConnected:
    """A player's client completed the join handshake."""

    player_id: int


@dataclass(frozen=True)
class BrowserCreatedEvent:
    """A player's client reported the result of creating a browser."""

    player_id: int
    browser_id: int
    code: int


ServerEvent = Union[EmitEventReceived, PlayerConnected, BrowserCreatedEvent]


@dataclass(frozen=True)
class _Send:
    peer: int
    data: bytes


@dataclass(frozen=True)
class _Drop:
    peer: int


def _parse_ip(value: Any) -> IpAddress | None:
    if isinstance(value, (IPv4Address, IPv6Address)):
        return value
    try:
        return ip_address(value)
    except ValueError:
        return None


def _as_u32(value: int) -> int:
    return int(value) & _U32_MASK


class Server:
    """Keeps the allowed addresses and connected clients, and relays packets.

    Socket events are handled by :meth:`pump`; events meant for the game
    script are collected and handed out by :meth:`poll_events`.
    """

    def __init__(self, sock: Any) -> None:
        self._socket = sock
        self._lock = threading.RLock()
        self._events: queue.SimpleQueue = queue.SimpleQueue()
        self._outgoing: queue.SimpleQueue = queue.SimpleQueue()
        self._allowed: dict[IpAddress, int] = {}
        self._clients: dict[int, Client] = {}
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @classmethod
    def bind(cls, addr: Address) -> Server:
        """Listen on ``addr`` and pump the socket on a background thread."""
        sock = Socket.new_server(addr, CertStrategy.SELF_SIGNED)
        server = cls(sock)
        server._thread = threading.Thread(target=server._run, daemon=True)
        server._thread.start()
        return server

    @property
    def local_addr(self) -> Address:
        """The address the underlying socket listens on."""
        return self._socket.local_addr

    def __enter__(self) -> Server:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _run(self) -> None:
        while not self._stop.wait(PUMP_INTERVAL):
            self.pump()

    # socket side

    def pump(self) -> None:
        """Handle every pending socket event, then flush outgoing packets."""
        while (event := self._socket.recv()) is not None:
            self.handle_socket_event(event)
        self.drain_outgoing()

    def drain_outgoing(self) -> int:
        """Pass queued packets and disconnects to the socket; return how many."""
        count = 0
        while True:
            try:
                item = self._outgoing.get_nowait()
            except queue.Empty:
                return count
            if isinstance(item, _Send):
                self._socket.send_message(item.peer, item.data)
            else:
                self._socket.disconnect(item.peer)
            count += 1

    def handle_socket_event(self, event: Any) -> None:
        """React to one event reported by the socket."""
        with self._lock:
            if isinstance(event, Message):
                try:
                    packet = decode_message(Packet, event.data)
                except DecodeError:
                    return
                self.handle_client_packet(event.peer_id, packet)
            elif isinstance(event, Connected):
                self._handle_new_connection(event.peer_id, event.addr)
            elif isinstance(event, Disconnect):
                self._clients.pop(event.peer_id, None)

    def handle_client_packet(self, peer: int, packet: Packet) -> None:
        """Dispatch a packet from a known client; others are ignored."""
        with self._lock:
            client = self._clients.get(peer)
            if client is None:
                return
            try:
                if packet.packet_id is PacketId.REQUEST_JOIN:
                    decode_message(RequestJoin, packet.payload)
                    self._handle_auth(client)
                elif packet.packet_id is PacketId.EMIT_EVENT:
                    self._handle_emit_event(client, decode_message(EmitEvent, packet.payload))
                elif packet.packet_id is PacketId.BROWSER_CREATED:
                    created = decode_message(BrowserCreated, packet.payload)
                    self._events.put(
                        BrowserCreatedEvent(client.player_id, created.browser_id, created.status_code)
                    )
            except DecodeError:
                return

    def _handle_auth(self, client: Client) -> None:
        client.state = State.CONNECTED
        self._events.put(PlayerConnected(client.player_id))
        response = JoinResponse(success=True, current_version=None)
        self._outgoing.put(_Send(client.peer, try_into_packet(response)))

    def _handle_emit_event(self, client: Client, packet: EmitEvent) -> None:
        if packet.args is not None:
            self._events.put(EmitEventReceived(client.player_id, packet.event_name, packet.args))

    def _handle_new_connection(self, peer: int, addr: Address) -> None:
        ip = _parse_ip(addr[0])
        if peer not in self._clients and ip is not None and ip in self._allowed:
            player_id = self._allowed[ip]
            if self._peer_by_id(player_id) is None:
                self._clients[peer] = Client(player_id, peer, (addr[0], addr[1]))
                self._outgoing.put(_Send(peer, try_into_packet(OpenConnection())))
                return
        self._outgoing.put(_Drop(peer))

    # game side

    def allow_connection(self, player_id: int, addr: Any) -> None:
        """Let ``player_id`` connect from ``addr``, dropping any older client."""
        ip = _parse_ip(addr)
        if ip is None:
            raise ValueError(f"{addr!r} is not an IP address")
        with self._lock:
            peer = self._peer_by_id(player_id)
            if peer is not None:
                del self._clients[peer]
            self._allowed[ip] = player_id

    def remove_connection(self, player_id: int, addr: Any = None) -> None:
        """Forget ``player_id``: close its client and disallow its address."""
        with self._lock:
            peer = self._peer_by_id(player_id)
            if peer is not None:
                client = self._clients.pop(peer)
                client_ip = _parse_ip(client.addr[0])
                if client_ip is not None:
                    self._allowed.pop(client_ip, None)
                self._outgoing.put(_Drop(client.peer))
            if addr is not None:
                ip = _parse_ip(addr)
                if ip is not None:
                    self._allowed.pop(ip, None)

    def create_browser(
        self, player_id: int, browser_id: int, url: str, hidden: bool, focused: bool
    ) -> None:
        self._send_packet(
            player_id,
            CreateBrowser(browser_id=_as_u32(browser_id), url=url, hidden=hidden, focused=focused),
        )

    def destroy_browser(self, player_id: int, browser_id: int) -> None:
        self._send_packet(player_id, DestroyBrowser(browser_id=_as_u32(browser_id)))

    def hide_browser(self, player_id: int, browser_id: int, hide: bool) -> None:
        self._send_packet(player_id, HideBrowser(browser_id=_as_u32(browser_id), hide=hide))

    def focus_browser(self, player_id: int, browser_id: int, focused: bool) -> None:
        self._send_packet(
            player_id, FocusBrowser(browser_id=_as_u32(browser_id), focused=focused)
        )

    def emit_event(self, player_id: int, event: str, arguments: list[EventValue]) -> None:
        self._send_packet(
            player_id, EmitEvent(event_name=event, args=None, arguments=list(arguments))
        )

    def always_listen_keys(self, player_id: int, browser_id: int, listen: bool) -> None:
        self._send_packet(
            player_id, AlwaysListenKeys(browser_id=_as_u32(browser_id), listen=listen)
        )

    def has_plugin(self, player_id: int) -> bool:
        """True if the player has a client connection open."""
        with self._lock:
            return self._peer_by_id(player_id) is not None

    def create_external_browser(
        self, player_id: int, browser_id: int, texture: str, url: str, scale: int
    ) -> None:
        self._send_packet(
            player_id,
            CreateExternalBrowser(
                browser_id=_as_u32(browser_id), url=url, texture=texture, scale=scale
            ),
        )

    def append_to_object(self, player_id: int, browser_id: int, object_id: int) -> None:
        self._send_packet(
            player_id, AppendToObject(browser_id=_as_u32(browser_id), object_id=object_id)
        )

    def remove_from_object(self, player_id: int, browser_id: int, object_id: int) -> None:
        self._send_packet(
            player_id, RemoveFromObject(browser_id=_as_u32(browser_id), object_id=object_id)
        )

    def toggle_dev_tools(self, player_id: int, browser_id: int, enabled: bool) -> None:
        self._send_packet(
            player_id, ToggleDevTools(browser_id=_as_u32(browser_id), enabled=enabled)
        )

    def set_audio_settings(
        self, player_id: int, browser_id: int, max_distance: float, reference_distance: float
    ) -> None:
        self._send_packet(
            player_id,
            SetAudioSettings(
                browser_id=browser_id,
                max_distance=max_distance,
                reference_distance=reference_distance,
            ),
        )

    def load_url(self, player_id: int, browser_id: int, url: str) -> None:
        self._send_packet(player_id, LoadUrl(browser_id=browser_id, url=url))

    def poll_events(self) -> Iterator[ServerEvent]:
        """Yield the events gathered for the game script, oldest first."""
        while True:
            try:
                yield self._events.get_nowait()
            except queue.Empty:
                return

    def close(self) -> None:
        """Stop the background pump and close the socket."""
        self._stop.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join()
        self._socket.close()

    # helpers

    def _send_packet(self, player_id: int, message: Any) -> None:
        with self._lock:
            peer = self._peer_by_id(player_id)
            if peer is None:
                return
            data = try_into_packet(message)
            self._outgoing.put(_Send(self._clients[peer].peer, data))

    def _peer_by_id(self, player_id: int) -> int | None:
        return next(
            (peer for peer, client in self._clients.items() if client.player_id == player_id),
            None,
        )