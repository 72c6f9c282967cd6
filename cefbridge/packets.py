"""Packet messages exchanged between the server and browser clients.

Every message is a dataclass that encodes to and decodes from protobuf
wire bytes. A message travelling over the network is wrapped in a
:class:`Packet` carrying its :class:`PacketId`. Both the wrapped message
and the wrapper are framed with a varint length prefix.
"""

from __future__ import annotations

import struct
from collections.abc import Callable
from dataclasses import dataclass, field, fields
from enum import IntEnum
from typing import Any, TypeVar

from .wire import DecodeError, WireType, decode_varint, encode_field, encode_varint, iter_fields

_SPEC_KEY = "proto"
_INT32_MIN = -(1 << 31)
_INT32_MAX = (1 << 31) - 1
_UINT32_MAX = (1 << 32) - 1

_M = TypeVar("_M", bound="_Message")


class PacketId(IntEnum):
    """Identifies the message carried inside a :class:`Packet`."""

    OPEN_CONNECTION = 0
    REQUEST_JOIN = 1
    JOIN_RESPONSE = 2
    CREATE_BROWSER = 3
    DESTROY_BROWSER = 4
    ALWAYS_LISTEN_KEYS = 5
    HIDE_BROWSER = 6
    FOCUS_BROWSER = 7
    EMIT_EVENT = 8
    BROWSER_CREATED = 9
    GOT = 10
    CREATE_EXTERNAL_BROWSER = 11
    APPEND_TO_OBJECT = 12
    REMOVE_FROM_OBJECT = 13
    TOGGLE_DEV_TOOLS = 14
    SET_AUDIO_SETTINGS = 15
    LOAD_URL = 16

    @classmethod
    def parse(cls, value: int | str) -> PacketId:
        """Look up an id by number or name; unknown ones map to OPEN_CONNECTION."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            return cls.__members__.get(value, cls.OPEN_CONNECTION)
        try:
            return cls(value)
        except ValueError:
            return cls.OPEN_CONNECTION


@dataclass(frozen=True)
class _Spec:
    tag: int
    kind: str
    optional: bool = False
    element: type | None = None


def _proto(tag: int, kind: str, default: Any, *, optional: bool = False) -> Any:
    return field(default=default, metadata={_SPEC_KEY: _Spec(tag, kind, optional)})


def _repeated(tag: int, element: type) -> Any:
    return field(default_factory=list, metadata={_SPEC_KEY: _Spec(tag, "message", element=element)})


_WIRE_TYPES = {
    "uint32": WireType.VARINT,
    "int32": WireType.VARINT,
    "bool": WireType.VARINT,
    "enum": WireType.VARINT,
    "string": WireType.LEN,
    "bytes": WireType.LEN,
    "message": WireType.LEN,
    "float": WireType.FIXED32,
}


def _check_range(value: int, low: int, high: int, kind: str) -> int:
    value = int(value)
    if not low <= value <= high:
        raise ValueError(f"{value} is out of range for {kind}")
    return value


def _pack_float(value: float) -> bytes:
    try:
        return struct.pack("<f", value)
    except OverflowError:
        raise ValueError(f"{value} does not fit in a 32-bit float") from None


def _to_int32(value: int) -> int:
    value &= _UINT32_MAX
    return value - (1 << 32) if value > _INT32_MAX else value


def _decode_string(raw: bytes) -> str:
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise DecodeError(f"string field is not valid UTF-8: {exc}") from None


_ENCODERS: dict[str, Callable[[Any], int | bytes]] = {
    "uint32": lambda v: _check_range(v, 0, _UINT32_MAX, "uint32"),
    "int32": lambda v: _check_range(v, _INT32_MIN, _INT32_MAX, "int32"),
    "enum": lambda v: _check_range(v, _INT32_MIN, _INT32_MAX, "enum"),
    "bool": lambda v: int(bool(v)),
    "string": lambda v: v.encode("utf-8"),
    "bytes": bytes,
    "float": _pack_float,
}

_DECODERS: dict[str, Callable[[Any], Any]] = {
    "uint32": lambda v: v & _UINT32_MAX,
    "int32": _to_int32,
    "enum": lambda v: PacketId.parse(_to_int32(v)),
    "bool": lambda v: v != 0,
    "string": _decode_string,
    "bytes": bytes,
    "float": lambda v: struct.unpack("<f", v)[0],
}


class _Message:
    """Shared protobuf encoding for the message dataclasses."""

    PACKET_ID = None

    def encode(self) -> bytes:
        """Encode the message body, without a length prefix."""
        out = bytearray()
        for f in fields(self):
            spec: _Spec = f.metadata[_SPEC_KEY]
            value = getattr(self, f.name)
            if spec.element is not None:
                for item in value:
                    out += encode_field(spec.tag, WireType.LEN, item.encode())
                continue
            if value is None:
                if spec.optional:
                    continue
                raise ValueError(f"field {f.name!r} is required")
            payload = _ENCODERS[spec.kind](value)
            out += encode_field(spec.tag, _WIRE_TYPES[spec.kind], payload)
        return bytes(out)

    @classmethod
    def decode(cls: type[_M], data: bytes) -> _M:
        """Decode a message body; unknown or mistyped fields are skipped."""
        specs = {}
        for f in fields(cls):
            spec: _Spec = f.metadata[_SPEC_KEY]
            specs[(spec.tag, _WIRE_TYPES[spec.kind])] = (f.name, spec)

        values: dict[str, Any] = {}
        for number, wire_type, raw in iter_fields(data):
            entry = specs.get((number, wire_type))
            if entry is None:
                continue
            name, spec = entry
            if spec.element is not None:
                values.setdefault(name, []).append(spec.element.decode(raw))
            else:
                values[name] = _DECODERS[spec.kind](raw)
        return cls(**values)


class _EmptyMessage(_Message):
    """A message without fields; its body is ignored when read."""

    @classmethod
    def decode(cls: type[_M], data: bytes) -> _M:
        return cls()


@dataclass
class Packet(_Message):
    """Envelope carrying a framed message and the id of its type."""

    packet_id: PacketId = _proto(1, "enum", PacketId.OPEN_CONNECTION)
    payload: bytes = _proto(2, "bytes", b"")

    def encode(self) -> bytes:
        """Encode the envelope body, without a length prefix."""
        return super().encode()

    @classmethod
    def decode(cls, data: bytes) -> Packet:
        """Decode an envelope body; an unknown id becomes OPEN_CONNECTION."""
        return super().decode(data)


@dataclass
class RequestJoin(_Message):
    plugin_version: int = _proto(1, "int32", 0)

    PACKET_ID = PacketId.REQUEST_JOIN


@dataclass
class JoinResponse(_Message):
    success: bool = _proto(1, "bool", False)
    current_version: int | None = _proto(2, "int32", None, optional=True)

    PACKET_ID = PacketId.JOIN_RESPONSE


@dataclass
class CreateBrowser(_Message):
    browser_id: int = _proto(1, "uint32", 0)
    url: str = _proto(2, "string", "")
    hidden: bool = _proto(3, "bool", False)
    focused: bool = _proto(4, "bool", False)

    PACKET_ID = PacketId.CREATE_BROWSER


@dataclass
class DestroyBrowser(_Message):
    browser_id: int = _proto(1, "uint32", 0)

    PACKET_ID = PacketId.DESTROY_BROWSER


@dataclass
class AlwaysListenKeys(_Message):
    browser_id: int = _proto(1, "uint32", 0)
    listen: bool = _proto(2, "bool", False)

    PACKET_ID = PacketId.ALWAYS_LISTEN_KEYS


@dataclass
class EventValue(_Message):
    """One typed argument of an emitted event."""

    string_value: str | None = _proto(1, "string", None, optional=True)
    float_value: float | None = _proto(2, "float", None, optional=True)
    integer_value: int | None = _proto(3, "int32", None, optional=True)


@dataclass
class EmitEvent(_Message):
    event_name: str = _proto(1, "string", "")
    args: str | None = _proto(2, "string", None, optional=True)
    arguments: list[EventValue] = _repeated(3, EventValue)

    PACKET_ID = PacketId.EMIT_EVENT


@dataclass
class HideBrowser(_Message):
    browser_id: int = _proto(1, "uint32", 0)
    hide: bool = _proto(2, "bool", False)

    PACKET_ID = PacketId.HIDE_BROWSER


@dataclass
class FocusBrowser(_Message):
    browser_id: int = _proto(1, "uint32", 0)
    focused: bool = _proto(2, "bool", False)

    PACKET_ID = PacketId.FOCUS_BROWSER


@dataclass
class BrowserCreated(_Message):
    browser_id: int = _proto(1, "uint32", 0)
    status_code: int = _proto(2, "int32", 0)

    PACKET_ID = PacketId.BROWSER_CREATED


@dataclass
class Got(_EmptyMessage):
    PACKET_ID = PacketId.GOT


@dataclass
class OpenConnection(_EmptyMessage):
    PACKET_ID = PacketId.OPEN_CONNECTION


@dataclass
class CreateExternalBrowser(_Message):
    browser_id: int = _proto(1, "uint32", 0)
    url: str = _proto(2, "string", "")
    scale: int = _proto(3, "int32", 0)
    texture: str = _proto(4, "string", "")

    PACKET_ID = PacketId.CREATE_EXTERNAL_BROWSER


@dataclass
class AppendToObject(_Message):
    browser_id: int = _proto(1, "uint32", 0)
    object_id: int = _proto(2, "int32", 0)

    PACKET_ID = PacketId.APPEND_TO_OBJECT


@dataclass
class RemoveFromObject(_Message):
    browser_id: int = _proto(1, "uint32", 0)
    object_id: int = _proto(2, "int32", 0)

    PACKET_ID = PacketId.REMOVE_FROM_OBJECT


@dataclass
class ToggleDevTools(_Message):
    browser_id: int = _proto(1, "uint32", 0)
    enabled: bool = _proto(2, "bool", False)

    PACKET_ID = PacketId.TOGGLE_DEV_TOOLS


@dataclass
class SetAudioSettings(_Message):
    browser_id: int = _proto(1, "uint32", 0)
    max_distance: float = _proto(2, "float", 0.0)
    reference_distance: float = _proto(3, "float", 0.0)

    PACKET_ID = PacketId.SET_AUDIO_SETTINGS


@dataclass
class LoadUrl(_Message):
    browser_id: int = _proto(1, "uint32", 0)
    url: str = _proto(2, "string", "")

    PACKET_ID = PacketId.LOAD_URL


def _frame(body: bytes) -> bytes:
    return encode_varint(len(body)) + body


def into_packet(message: _Message) -> Packet:
    """Wrap a message in a :class:`Packet` tagged with its id."""
    packet_id = getattr(message, "PACKET_ID", None)
    if packet_id is None:
        raise TypeError(f"{type(message).__name__} cannot be sent as a packet")
    return Packet(packet_id=packet_id, payload=_frame(message.encode()))


def try_into_packet(message: _Message) -> bytes:
    """Wrap a message in a packet and return the framed bytes to send."""
    return _frame(into_packet(message).encode())


def decode_message(cls: type[_M], data: bytes) -> _M:
    """Decode a length-prefixed message of type ``cls``.

    Bytes after the framed message are ignored.
    """
    data = bytes(data)
    length, pos = decode_varint(data, 0)
    if pos + length > len(data):
        raise DecodeError("framed message runs past the end")
    return cls.decode(data[pos : pos + length])