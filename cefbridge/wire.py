"""Protocol Buffers wire-format primitives used by the packet messages."""

from __future__ import annotations

from collections.abc import Iterator
from enum import IntEnum

_MASK64 = (1 << 64) - 1
_MAX_VARINT_LEN = 10


class DecodeError(ValueError):
    """Raised when bytes do not form a valid protobuf wire stream."""


class WireType(IntEnum):
    """Wire types understood by the reader and writer."""

    VARINT = 0
    FIXED64 = 1
    LEN = 2
    FIXED32 = 5


_FIXED_SIZES = {WireType.FIXED64: 8, WireType.FIXED32: 4}


def encode_varint(value: int) -> bytes:
    """Encode an integer as a base-128 varint.

    Negative numbers are written as 64-bit two's complement, the way
    protobuf writes negative ``int32`` and ``int64`` values.
    """
    if value < 0:
        value &= _MASK64
    if value > _MASK64:
        raise ValueError(f"varint value {value} does not fit in 64 bits")
    out = bytearray()
    while True:
        low = value & 0x7F
        value >>= 7
        if value:
            out.append(low | 0x80)
        else:
            out.append(low)
            return bytes(out)


def decode_varint(data: bytes, pos: int = 0) -> tuple[int, int]:
    """Read a varint from ``data`` at ``pos``.

    Returns the unsigned 64-bit value and the position just after it.
    """
    result = 0
    for count, byte in enumerate(data[pos : pos + _MAX_VARINT_LEN]):
        result |= (byte & 0x7F) << (7 * count)
        if not byte & 0x80:
            return result & _MASK64, pos + count + 1
    if len(data) - pos >= _MAX_VARINT_LEN:
        raise DecodeError("varint is longer than 10 bytes")
    raise DecodeError("truncated varint")


def encode_field(tag: int, wire_type: int, payload: int | bytes) -> bytes:
    """Encode one field: its key followed by its payload.

    ``payload`` is an integer for varint fields, and bytes for the other
    wire types (exactly 8 or 4 bytes for the fixed-width ones; any length
    for length-delimited fields, which get a length prefix).
    """
    if tag < 1:
        raise ValueError(f"field number must be positive, got {tag}")
    try:
        kind = WireType(wire_type)
    except ValueError:
        raise ValueError(f"unsupported wire type {wire_type}") from None

    key = encode_varint((tag << 3) | kind)
    if kind is WireType.VARINT:
        if not isinstance(payload, int):
            raise TypeError("varint field needs an integer payload")
        return key + encode_varint(payload)

    if not isinstance(payload, (bytes, bytearray, memoryview)):
        raise TypeError("non-varint field needs a bytes payload")
    raw = bytes(payload)
    if kind is WireType.LEN:
        return key + encode_varint(len(raw)) + raw
    size = _FIXED_SIZES[kind]
    if len(raw) != size:
        raise ValueError(f"wire type {int(kind)} needs {size} bytes, got {len(raw)}")
    return key + raw


def iter_fields(data: bytes) -> Iterator[tuple[int, int, int | bytes]]:
    """Yield ``(field_number, wire_type, value)`` for each field in ``data``.

    Varint values come back as unsigned integers; every other value comes
    back as the raw bytes of its payload.
    """
    data = bytes(data)
    pos = 0
    end = len(data)
    while pos < end:
        key, pos = decode_varint(data, pos)
        number, wire_type = key >> 3, key & 0x07
        if number == 0:
            raise DecodeError("field number 0 is not allowed")

        if wire_type == WireType.VARINT:
            value, pos = decode_varint(data, pos)
            yield number, wire_type, value
        elif wire_type == WireType.LEN:
            length, pos = decode_varint(data, pos)
            if pos + length > end:
                raise DecodeError("length-delimited field runs past the end")
            yield number, wire_type, data[pos : pos + length]
            pos += length
        elif wire_type in _FIXED_SIZES:
            size = _FIXED_SIZES[WireType(wire_type)]
            if pos + size > end:
                raise DecodeError("fixed-width field runs past the end")
            yield number, wire_type, data[pos : pos + size]
            pos += size
        else:
            raise DecodeError(f"unsupported wire type {wire_type}")