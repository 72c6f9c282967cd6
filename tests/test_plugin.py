import socket

import pytest

from cefbridge.network import Connected
from cefbridge.packets import (
    BrowserCreated,
    EmitEvent,
    EventValue,
    LoadUrl,
    Packet,
    PacketId,
    RequestJoin,
    decode_message,
    into_packet,
)
from cefbridge.plugin import CefPlugin, EmitArgumentError, parse_emit_arguments
from cefbridge.server import Server

PLAYER_IP = "10.0.0.5"
PEER = 42


class FakeSocket:
    def __init__(self):
        self.sent = []
        self.dropped = []

    def recv(self):
        return None

    def send_message(self, peer, data):
        self.sent.append((peer, data))

    def disconnect(self, peer):
        self.dropped.append(peer)

    def close(self):
        pass


class Clock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.fixture
def env():
    sock = FakeSocket()
    server = Server(sock)
    calls = []
    clock = Clock()
    plugin = CefPlugin(server, lambda *args: calls.append(args), clock)
    plugin.on_amx_load("script")
    return plugin, server, sock, calls, clock


def join(plugin, server, player_id):
    plugin.on_player_connect(player_id, PLAYER_IP)
    server.handle_socket_event(Connected(PEER, (PLAYER_IP, 5000)))
    server.handle_client_packet(PEER, into_packet(RequestJoin(plugin_version=1)))


def test_parse_emit_arguments_types():
    values = parse_emit_arguments([0, "hello", 1, 42, 2, 1.5])
    assert values == [
        EventValue(string_value="hello"),
        EventValue(integer_value=42),
        EventValue(float_value=1.5),
    ]


def test_parse_emit_arguments_stops_at_unknown_type():
    assert parse_emit_arguments([1, 3, 9, "x", 0, "y"]) == [EventValue(integer_value=3)]


def test_parse_emit_arguments_odd_count():
    with pytest.raises(EmitArgumentError):
        parse_emit_arguments([0, "a", 1])


def test_successful_join_notifies_scripts(env):
    plugin, server, sock, calls, clock = env
    join(plugin, server, 7)
    assert plugin.player_has_plugin(7) is True
    plugin.process_tick()
    assert calls == [("script", "OnCefInitialize", 7, True)]
    clock.now = 100.0
    plugin.process_tick()
    assert calls == [("script", "OnCefInitialize", 7, True)]


def test_handshake_timeout(env):
    plugin, server, sock, calls, clock = env
    assert plugin.on_player_connect(3, PLAYER_IP) is True
    clock.now = 4.9
    plugin.process_tick()
    assert calls == []
    clock.now = 5.0
    plugin.process_tick()
    assert calls == [("script", "OnCefInitialize", 3, False)]
    clock.now = 50.0
    plugin.process_tick()
    assert len(calls) == 1


def test_invalid_ip_is_not_awaited(env):
    plugin, server, sock, calls, clock = env
    assert plugin.on_player_connect(3, "not-an-ip") is True
    clock.now = 10.0
    plugin.process_tick()
    assert calls == []


def test_disconnect_drops_client_and_await(env):
    plugin, server, sock, calls, clock = env
    plugin.on_player_connect(4, PLAYER_IP)
    server.handle_socket_event(Connected(PEER, (PLAYER_IP, 5000)))
    assert plugin.on_player_disconnect(4) is True
    assert plugin.player_has_plugin(4) is False
    server.drain_outgoing()
    assert sock.dropped == [PEER]
    clock.now = 10.0
    plugin.process_tick()
    assert calls == []


def test_emit_event_sends_arguments(env):
    plugin, server, sock, calls, clock = env
    join(plugin, server, 5)
    server.drain_outgoing()
    assert plugin.emit_event(5, "ev", 0, "hello", 1, 42, 2, 1.5) is True
    server.drain_outgoing()
    peer, data = sock.sent[-1]
    assert peer == PEER
    packet = decode_message(Packet, data)
    assert packet.packet_id is PacketId.EMIT_EVENT
    message = decode_message(EmitEvent, packet.payload)
    assert message.event_name == "ev"
    assert message.args is None
    assert message.arguments == [
        EventValue(string_value="hello"),
        EventValue(integer_value=42),
        EventValue(float_value=1.5),
    ]


@pytest.mark.parametrize("args", [(), (5,), (5, "ev", 0)])
def test_emit_event_rejects_bad_counts(env, args):
    plugin, server, sock, calls, clock = env
    join(plugin, server, 5)
    server.drain_outgoing()
    before = len(sock.sent)
    assert plugin.emit_event(*args) is False
    server.drain_outgoing()
    assert len(sock.sent) == before


def test_subscribed_event_reaches_callback(env):
    plugin, server, sock, calls, clock = env
    join(plugin, server, 6)
    plugin.process_tick()
    calls.clear()
    plugin.subscribe("a", "click", "OnClick")
    plugin.subscribe("b", "click", "OnClickOther")
    server.handle_client_packet(PEER, into_packet(EmitEvent(event_name="click", args="1,2")))
    server.handle_client_packet(PEER, into_packet(EmitEvent(event_name="other", args="x")))
    plugin.process_tick()
    assert calls == [("b", "OnClickOther", 6, "1,2")]


def test_browser_created_notifies_all_scripts(env):
    plugin, server, sock, calls, clock = env
    plugin.on_amx_load("second")
    join(plugin, server, 8)
    plugin.process_tick()
    calls.clear()
    server.handle_client_packet(PEER, into_packet(BrowserCreated(browser_id=2, status_code=200)))
    plugin.process_tick()
    assert calls == [
        ("script", "OnCefBrowserCreated", 8, 2, 200),
        ("second", "OnCefBrowserCreated", 8, 2, 200),
    ]


def test_unloaded_script_gets_no_callbacks(env):
    plugin, server, sock, calls, clock = env
    plugin.on_amx_load("other")
    plugin.on_amx_unload("script")
    plugin.on_player_connect(1, PLAYER_IP)
    clock.now = 6.0
    plugin.process_tick()
    assert calls == [("other", "OnCefInitialize", 1, False)]


def test_load_url_relays_packet(env):
    plugin, server, sock, calls, clock = env
    join(plugin, server, 9)
    server.drain_outgoing()
    assert plugin.load_url(9, 3, "http://localhost/page") is True
    server.drain_outgoing()
    packet = decode_message(Packet, sock.sent[-1][1])
    assert packet.packet_id is PacketId.LOAD_URL
    assert decode_message(LoadUrl, packet.payload) == LoadUrl(
        browser_id=3, url="http://localhost/page"
    )


def test_from_config_binds_offset_port(tmp_path):
    with socket.socket() as probe:
        probe.bind(("127.0.0.1", 0))
        port = probe.getsockname()[1]
    config = tmp_path / "server.cfg"
    config.write_text(f"bind 127.0.0.1\nport {port - 6}\n")
    plugin = CefPlugin.from_config(config, lambda *args: None)
    try:
        assert plugin.server.local_addr == ("127.0.0.1", port)
        assert plugin.player_has_plugin(1) is False
    finally:
        plugin.server.close()