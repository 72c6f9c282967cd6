import socket
import time

import pytest

from cefbridge.network import (
    INCOMING_PACKET_SIZE,
    CertStrategy,
    Connected,
    ConnectionError as ConnError,
    Disconnect,
    Message,
    Socket,
)

LOCALHOST = "127.0.0.1"


def wait_for(sock, kind, timeout=10.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        event = sock.recv()
        if isinstance(event, kind):
            return event
        if event is None:
            time.sleep(0.01)
    raise AssertionError(f"no {kind.__name__} event arrived")


@pytest.fixture
def server():
    sock = Socket.new_server((LOCALHOST, 0), CertStrategy.SELF_SIGNED)
    yield sock
    sock.close()


@pytest.fixture
def client():
    sock = Socket.new_client((LOCALHOST, 0))
    yield sock
    sock.close()


@pytest.fixture
def pair(server, client):
    peer = client.connect(server.local_addr)
    client_event = wait_for(client, Connected)
    server_event = wait_for(server, Connected)
    return peer, client_event, server_event


def test_connect_reports_connected_on_both_sides(server, pair):
    peer, client_event, server_event = pair
    assert client_event.peer_id == peer
    assert client_event.addr == server.local_addr
    assert server_event.addr[0] == LOCALHOST


def test_message_from_client_reaches_server(server, client, pair):
    peer, _, server_event = pair
    client.send_message(peer, b"hello")
    message = wait_for(server, Message)
    assert message == Message(server_event.peer_id, b"hello")


def test_message_from_server_reaches_client(server, client, pair):
    peer, _, server_event = pair
    server.send_message(server_event.peer_id, b"reply")
    message = wait_for(client, Message)
    assert message == Message(peer, b"reply")


def test_messages_keep_their_order(server, client, pair):
    peer, _, _ = pair
    sent = [b"one", b"", b"three"]
    for data in sent:
        client.send_message(peer, data)
    received = [wait_for(server, Message).data for _ in sent]
    assert received == sent


def test_oversized_message_is_dropped(server, client, pair):
    peer, _, _ = pair
    client.send_message(peer, b"x" * (INCOMING_PACKET_SIZE + 1))
    client.send_message(peer, b"after")
    message = wait_for(server, Message, timeout=30.0)
    assert message.data == b"after"


def test_disconnect_is_seen_by_both_sides(server, client, pair):
    peer, _, server_event = pair
    client.disconnect(peer)
    server_gone = wait_for(server, Disconnect)
    client_gone = wait_for(client, Disconnect)
    assert server_gone.peer_id == server_event.peer_id
    assert client_gone == Disconnect(peer, server.local_addr)


def test_closing_server_disconnects_client(server, client, pair):
    peer, _, _ = pair
    server.close()
    gone = wait_for(client, Disconnect)
    assert gone.peer_id == peer


def test_refused_connection_reports_error(client):
    with socket.socket() as probe:
        probe.bind((LOCALHOST, 0))
        free_addr = probe.getsockname()
    peer = client.connect(free_addr)
    assert wait_for(client, ConnError) == ConnError(peer)


def test_connect_after_close_reports_error(client):
    client.close()
    peer = client.connect((LOCALHOST, 1))
    assert wait_for(client, ConnError).peer_id == peer


def test_connect_gives_distinct_ids(server, client):
    first = client.connect(server.local_addr)
    second = client.connect(server.local_addr)
    assert first != second
    ids = {wait_for(client, Connected).peer_id for _ in range(2)}
    assert ids == {first, second}


def test_recv_without_events_returns_none(server):
    assert server.recv() is None