"""Game-script side of the bridge: natives, callbacks and the per-tick pump."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Hashable, Sequence
from ipaddress import IPv4Address, IPv6Address, ip_address
from os import PathLike
from typing import Any, Union

from .config import DEFAULT_CONFIG_PATH, parse_config_field
from .packets import EventValue
from .server import BrowserCreatedEvent, EmitEventReceived, PlayerConnected, Server

log = logging.getLogger(__name__)

INIT_TIMEOUT = 5.0
PORT_OFFSET = 6
DEFAULT_BIND = "0.0.0.0"
DEFAULT_PORT = 7777

ARG_STRING = 0
ARG_INTEGER = 1
ARG_FLOAT = 2

_MAX_PORT = 0xFFFF

IpAddress = Union[IPv4Address, IPv6Address]
Invoke = Callable[..., Any]


class EmitArgumentError(ValueError):
    """Raised when emitted event arguments do not come in type/value pairs."""


def parse_emit_arguments(args: Sequence[Any]) -> list[EventValue]:
    """Turn a flat ``type, value, type, value, ...`` sequence into event values.

    Type 0 is a string, 1 an integer and 2 a float. Parsing stops at the
    first unknown type; what came before it is kept.
    """
    if len(args) % 2:
        raise EmitArgumentError("event arguments must come in type/value pairs")

    values: list[EventValue] = []
    pairs = iter(args)
    for kind, value in zip(pairs, pairs):
        if kind == ARG_STRING:
            values.append(EventValue(string_value=str(value)))
        elif kind == ARG_INTEGER:
            values.append(EventValue(integer_value=int(value)))
        elif kind == ARG_FLOAT:
            values.append(EventValue(float_value=float(value)))
        else:
            break
    return values


def _parse_port(text: str) -> int:
    port = int(text)
    if not 0 <= port <= _MAX_PORT:
        raise ValueError(f"{port} is not a valid port")
    return port


def _parse_ip(value: Any) -> IpAddress | None:
    if isinstance(value, (IPv4Address, IPv6Address)):
        return value
    try:
        return ip_address(str(value))
    except ValueError:
        return None


class CefPlugin:
    """Connects game scripts to the browser server.

    ``invoke(ident, public_name, *args)`` runs a public function of the
    script identified by ``ident``.
    """

    def __init__(
        self,
        server: Any,
        invoke: Invoke,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.server = server
        self._invoke = invoke
        self._clock = clock
        self._events: dict[str, tuple[Hashable, str]] = {}
        self._amx_list: list[Hashable] = []
        self._await_connect: dict[int, float] = {}
        self._ips: dict[int, IpAddress] = {}

    @classmethod
    def from_config(
        cls, config_path: str | PathLike = DEFAULT_CONFIG_PATH, invoke: Invoke | None = None
    ) -> CefPlugin:
        """Bind a server on the configured address, offset from the game port."""
        ip = parse_config_field("bind", ip_address, config_path)
        if ip is None:
            ip = ip_address(DEFAULT_BIND)
        port = parse_config_field("port", _parse_port, config_path)
        if port is None:
            port = DEFAULT_PORT
        if port + PORT_OFFSET > _MAX_PORT:
            raise ValueError(f"port {port} leaves no room for the browser server")

        addr = (str(ip), port + PORT_OFFSET)
        server = Server.bind(addr)
        log.info("Bind CEF server on %s", addr)
        return cls(server, invoke if invoke is not None else (lambda *args: None))

    # script lifecycle

    def on_amx_load(self, ident: Hashable) -> None:
        """Remember a loaded script so it receives callbacks."""
        self._amx_list.append(ident)

    def on_amx_unload(self, ident: Hashable) -> None:
        """Forget an unloaded script."""
        if ident in self._amx_list:
            self._amx_list.remove(ident)

    # natives

    def on_player_connect(self, player_id: int, player_ip: Any) -> bool:
        ip = _parse_ip(player_ip)
        if ip is not None:
            log.debug("allow_connection %s %s", player_id, ip)
            self._ips[player_id] = ip
            self.server.allow_connection(player_id, ip)
            self._await_connect[player_id] = self._clock()
        return True

    def on_player_disconnect(self, player_id: int) -> bool:
        log.debug("remove_connection %s", player_id)
        ip = self._ips.pop(player_id, None)
        self.server.remove_connection(player_id, ip)
        self._await_connect.pop(player_id, None)
        return True

    def create_browser(
        self, player_id: int, browser_id: int, url: str, hidden: bool, focused: bool
    ) -> bool:
        self.server.create_browser(player_id, browser_id, url, hidden, focused)
        return True

    def destroy_browser(self, player_id: int, browser_id: int) -> bool:
        self.server.destroy_browser(player_id, browser_id)
        return True

    def hide_browser(self, player_id: int, browser_id: int, hide: bool) -> bool:
        self.server.hide_browser(player_id, browser_id, hide)
        return True

    def focus_browser(self, player_id: int, browser_id: int, focused: bool) -> bool:
        self.server.focus_browser(player_id, browser_id, focused)
        return True

    def emit_event(self, *args: Any) -> bool:
        """Send an event: ``player_id, event_name`` then type/value pairs."""
        if len(args) < 2:
            log.info("cef_emit_event invalid count of arguments")
            return False
        try:
            arguments = parse_emit_arguments(args[2:])
        except EmitArgumentError:
            log.info("cef_emit_event invalid count of arguments")
            return False
        player_id, event_name = int(args[0]), str(args[1])
        self.server.emit_event(player_id, event_name, arguments)
        return True

    def always_listen_keys(self, player_id: int, browser_id: int, listen: bool) -> bool:
        self.server.always_listen_keys(player_id, browser_id, listen)
        return True

    def subscribe(self, ident: Hashable, event_name: str, callback: str) -> bool:
        """Route a browser event to ``callback`` in the script ``ident``."""
        self._events[event_name] = (ident, callback)
        return True

    def player_has_plugin(self, player_id: int) -> bool:
        return self.server.has_plugin(player_id)

    def create_external_browser(
        self, player_id: int, browser_id: int, texture: str, url: str, scale: int
    ) -> bool:
        self.server.create_external_browser(player_id, browser_id, texture, url, scale)
        return True

    def append_to_object(self, player_id: int, browser_id: int, object_id: int) -> bool:
        self.server.append_to_object(player_id, browser_id, object_id)
        return True

    def remove_from_object(self, player_id: int, browser_id: int, object_id: int) -> bool:
        self.server.remove_from_object(player_id, browser_id, object_id)
        return True

    def toggle_dev_tools(self, player_id: int, browser_id: int, enabled: bool) -> bool:
        self.server.toggle_dev_tools(player_id, browser_id, enabled)
        return True

    def set_audio_settings(
        self, player_id: int, browser_id: int, max_distance: float, reference_distance: float
    ) -> bool:
        self.server.set_audio_settings(player_id, browser_id, max_distance, reference_distance)
        return True

    def load_url(self, player_id: int, browser_id: int, url: str) -> bool:
        self.server.load_url(player_id, browser_id, url)
        return True

    # tick

    def process_tick(self) -> None:
        """Deliver server events to scripts and report timed-out handshakes."""
        for event in self.server.poll_events():
            if isinstance(event, EmitEventReceived):
                log.debug("EmitEvent(%s) %s", event.player_id, event.event)
                target = self._events.get(event.event)
                if target is not None:
                    ident, callback = target
                    self._invoke(ident, callback, event.player_id, event.arguments)
            elif isinstance(event, PlayerConnected):
                log.debug("PlayerConnected(%s)", event.player_id)
                if self._await_connect.pop(event.player_id, None) is not None:
                    self._notify_connect(event.player_id, True)
            elif isinstance(event, BrowserCreatedEvent):
                log.debug("BrowserCreated(%s)", event.player_id)
                for ident in list(self._amx_list):
                    self._invoke(
                        ident, "OnCefBrowserCreated", event.player_id, event.browser_id, event.code
                    )
        self._notify_timeout()

    def _notify_timeout(self) -> None:
        now = self._clock()
        expired = [
            player_id
            for player_id, started in self._await_connect.items()
            if now - started >= INIT_TIMEOUT
        ]
        for player_id in expired:
            self._notify_connect(player_id, False)
        for player_id in expired:
            del self._await_connect[player_id]

    def _notify_connect(self, player_id: int, success: bool) -> None:
        log.debug("notify_connect(%s, %s)", player_id, success)
        for ident in list(self._amx_list):
            self._invoke(ident, "OnCefInitialize", player_id, success)