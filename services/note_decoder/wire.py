"""Protobuf wire-format reader.

Only the framing is understood here: varints, tags and the four wire types
that appear in note bodies. Message semantics live in decoder.py.
"""

from typing import Iterator, NamedTuple, Tuple, Union

from shared.errors import FormatError

WIRE_VARINT = 0
WIRE_FIXED64 = 1
WIRE_LENGTH_DELIMITED = 2
WIRE_FIXED32 = 5

MAX_VARINT_BYTES = 10


class WireField(NamedTuple):
    """One decoded (field number, wire type, value) triple."""
    number: int
    wire_type: int
    value: Union[int, bytes]


def read_varint(data: bytes, position: int) -> Tuple[int, int]:
    """
    Read a base-128 varint.

    Args:
        data: Buffer to read from
        position: Offset of the first varint byte

    Returns:
        Tuple of (value, offset just past the varint)

    Raises:
        FormatError: If the buffer ends mid-varint or the varint is too long
    """
    value = 0
    shift = 0
    for index in range(MAX_VARINT_BYTES):
        offset = position + index
        if offset >= len(data):
            raise FormatError(f"Unexpected end of data in varint at offset {position}")
        byte = data[offset]
        value |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return value, offset + 1
        shift += 7
    raise FormatError(f"Varint longer than {MAX_VARINT_BYTES} bytes at offset {position}")


def read_tag(data: bytes, position: int) -> Tuple[int, int, int]:
    """Read a field tag, returning (field number, wire type, new offset)."""
    value, position = read_varint(data, position)
    return value >> 3, value & 0x07, position


def iter_fields(data: bytes) -> Iterator[WireField]:
    """
    Walk a buffer as a sequence of top-level fields.

    Fixed-width fields are consumed and not yielded. The walk stops quietly
    at a wire type it cannot skip (groups, reserved types).

    Raises:
        FormatError: On a truncated varint or a length prefix that would
            read past the end of the buffer
    """
    position = 0
    end = len(data)
    while position < end:
        number, wire_type, position = read_tag(data, position)

        if wire_type == WIRE_VARINT:
            value, position = read_varint(data, position)
            yield WireField(number, wire_type, value)

        elif wire_type == WIRE_LENGTH_DELIMITED:
            length, position = read_varint(data, position)
            if position + length > end:
                raise FormatError(
                    f"Field {number} length {length} overruns buffer at offset {position}"
                )
            yield WireField(number, wire_type, bytes(data[position:position + length]))
            position += length

        elif wire_type == WIRE_FIXED64:
            if position + 8 > end:
                raise FormatError(f"Truncated 64-bit field {number}")
            position += 8

        elif wire_type == WIRE_FIXED32:
            if position + 4 > end:
                raise FormatError(f"Truncated 32-bit field {number}")
            position += 4

        else:
            return


def encode_varint(value: int) -> bytes:
    """Encode a non-negative integer as a varint."""
    if value < 0:
        raise ValueError("varint value must be non-negative")
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def encode_field(number: int, value: Union[int, bytes, str]) -> bytes:
    """Encode one varint or length-delimited field."""
    if isinstance(value, int):
        return encode_varint(number << 3 | WIRE_VARINT) + encode_varint(value)
    if isinstance(value, str):
        value = value.encode("utf-8")
    return encode_varint(number << 3 | WIRE_LENGTH_DELIMITED) + encode_varint(len(value)) + value
