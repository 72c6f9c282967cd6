# cefbridge

The server side of a bridge between a game server and browsers running
inside players' game clients. A game-server script asks for browsers to be
created, hidden, focused or pointed at a URL, and events flow both ways
between the script and the pages in those browsers.

The package has no dependencies outside the standard library.

## Modules

- `cefbridge.wire`: a small protobuf wire-format codec (`encode_varint`,
  `decode_varint`, `encode_field`, `iter_fields`); malformed input raises
  `DecodeError`.
- `cefbridge.packets`: every message exchanged with clients (`CreateBrowser`,
  `EmitEvent`, `EventValue`, `LoadUrl`, ...), the `PacketId` enumeration, the
  `Packet` envelope, and `into_packet`, `try_into_packet` and
  `decode_message`.
- `cefbridge.network`: a `Socket` that connects to or accepts peers and
  reports `Connected`, `Message`, `Disconnect` and `ConnectionError` events.
- `cefbridge.client`: the `Client` record and its `State`.
- `cefbridge.config`: `parse_config_field` for reading `key value` lines out
  of a `server.cfg` style file.
- `cefbridge.server`: the `Server`, which admits only peers whose address was
  allowed for a player, answers join requests and forwards events.
- `cefbridge.plugin`: `CefPlugin`, the entry points a game-server script
  calls, plus the periodic `process_tick`.

## Packets

Messages are dataclasses with `encode()` and `decode()`. `into_packet`
wraps a message in its `Packet` envelope (the body is stored, length-prefixed,
in `Packet.payload`), and `try_into_packet` returns the length-prefixed
envelope bytes ready to send. `decode_message` reads a length-prefixed
message back:

```python
from cefbridge.packets import (
    CreateBrowser, Packet, PacketId, decode_message, try_into_packet,
)

data = try_into_packet(CreateBrowser(browser_id=1, url="https://example.com",
                                     hidden=False, focused=True))

envelope = decode_message(Packet, data)
assert envelope.packet_id is PacketId.CREATE_BROWSER
browser = decode_message(CreateBrowser, envelope.payload)
assert browser.url == "https://example.com"
```

`PacketId.parse` accepts a number or a name; anything unknown maps to
`PacketId.OPEN_CONNECTION`. Unknown fields in a message body are skipped
when decoding.

## Network

`Socket.new_server(addr)` listens on a `(host, port)` pair;
`Socket.new_client(addr)` only makes outgoing connections. `connect(addr)`
returns the peer id at once and the outcome arrives later as `Connected` or
`ConnectionError`. `recv()` never blocks: it returns the next event or
`None`. `send_message` and `disconnect` ignore unknown peers, and `close()`
(or leaving a `with` block) shuts everything down.

Each message is sent over TCP as a four-byte big-endian length followed by
the message bytes. Incoming messages larger than 10 MiB are skipped.

## Server

`Server.bind(addr)` starts listening and pumps the socket on a background
thread every 5 ms. The game server tells it which address belongs to which
player with `allow_connection(player_id, ip)` and forgets the player with
`remove_connection(player_id, ip)`. A connecting peer whose address is not
allowed, or whose player already has a client, is dropped; an accepted one
is sent `OpenConnection`, and a `RequestJoin` from it is answered with
`JoinResponse(success=True)`.

Commands such as `create_browser`, `hide_browser`, `focus_browser`,
`emit_event`, `load_url` or `set_audio_settings` go only to players who
have a client connection open; for anyone else they are silently dropped.
`has_plugin(player_id)` says which case applies.

`poll_events()` yields what came back from clients: `PlayerConnected`,
`EmitEventReceived` and `BrowserCreatedEvent`. `pump()` and
`drain_outgoing()` can also be called by hand on a `Server` built around
any object with the socket's methods. `close()` stops the pump and the
socket.

## Plugin

`CefPlugin.from_config(config_path, invoke)` reads `bind` and `port` from
the configuration file (defaulting to `0.0.0.0` and `7777`) and binds the
server six ports above the game port. `invoke(ident, public_name, *args)`
is the callable the plugin uses to run a public function in a script.

Scripts register with `on_amx_load` and subscribe callbacks to client
events with `subscribe(ident, event_name, callback)`.
`emit_event(player_id, event_name, *pairs)` takes arguments as
`(type, value)` pairs, where type `0` is a string, `1` an integer and `2` a
float; it returns `False` when the pairs are incomplete.
`parse_emit_arguments` does the same parsing on its own, raising
`EmitArgumentError` for an odd count and stopping at the first unknown
type.

Call `process_tick()` regularly. It passes emitted events to subscribed
callbacks, calls `OnCefBrowserCreated` in every loaded script, calls
`OnCefInitialize(player_id, True)` for players whose client joined, and
`OnCefInitialize(player_id, False)` for players whose client has not
joined within five seconds of `on_player_connect`.

## What it does not do

- It contains no browser or in-game client: it only speaks to one.
- Connections are plain TCP. `CertStrategy.SELF_SIGNED` is accepted but no
  TLS or certificate is used.
- It is not loaded into a game server by itself: the host must call the
  `CefPlugin` methods and supply `invoke`.
- There is no command-line entry point.