"""Schema-less walker for protobuf-style tag/length/value binary data.

There is no schema, so field values are interpreted heuristically:
length-delimited payloads become readable strings, embedded JSON, nested
field maps, or a ``BinaryField`` marker, in that order.
"""

import struct
from dataclasses import dataclass
from typing import Any

from session_salvage.processor.decoder import extract_json_object
from session_salvage.processor.readable import is_readable_text

WIRE_VARINT = 0
WIRE_FIXED64 = 1
WIRE_LENGTH_DELIMITED = 2
WIRE_FIXED32 = 5

# Largest valid wire type; anything above cannot start a message
MAX_WIRE_TYPE = 5

MAX_VARINT_BYTES = 10
MAX_FIELDS = 100

# Nested payloads deeper than this are reported as binary
MAX_DEPTH = 32


class WireFormatError(ValueError):
    """The input is not a well-formed tag/length/value stream."""


@dataclass(frozen=True)
class BinaryField:
    """An opaque length-delimited payload, kept only by size."""

    size: int

    def __str__(self) -> str:
        return f"[binary: {self.size} bytes]"


def read_varint(data: bytes, offset: int) -> tuple[int, int]:
    """Read a base-128 varint starting at ``offset``.

    Returns:
        Tuple of (value, offset just past the varint)

    Raises:
        WireFormatError: If the varint is truncated or longer than 10 bytes
    """
    result = 0
    shift = 0
    for i in range(MAX_VARINT_BYTES):
        pos = offset + i
        if pos >= len(data):
            raise WireFormatError(f"truncated varint at offset {offset}")
        byte = data[pos]
        result |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return result, pos + 1
        shift += 7
    raise WireFormatError(f"varint too long at offset {offset}")


def _interpret_chunk(chunk: bytes, depth: int) -> Any:
    if is_readable_text(chunk):
        return chunk.decode("utf-8")

    embedded = extract_json_object(chunk)
    if embedded is not None:
        try:
            return embedded.decode("utf-8")
        except UnicodeDecodeError:
            pass

    if depth < MAX_DEPTH:
        try:
            nested = walk_fields(chunk, depth + 1)
        except WireFormatError:
            nested = {}
        if nested:
            return nested

    return BinaryField(len(chunk))


def walk_fields(data: bytes, depth: int = 0) -> dict[int, Any]:
    """Walk a tag/length/value stream into a field-number map.

    Tags are a single byte: the low 3 bits give the wire type and the rest
    the field number. At most 100 fields are read. A repeated field number
    keeps its last value.

    Args:
        data: Raw bytes
        depth: Current nesting depth

    Returns:
        Mapping of field number to interpreted value

    Raises:
        WireFormatError: On a truncated value or an unsupported wire type
    """
    fields: dict[int, Any] = {}
    offset = 0
    count = 0

    while offset < len(data) and count < MAX_FIELDS:
        tag = data[offset]
        offset += 1
        wire_type = tag & 0x07
        field_number = tag >> 3

        if wire_type == WIRE_VARINT:
            value, offset = read_varint(data, offset)
            fields[field_number] = value

        elif wire_type == WIRE_FIXED64:
            if offset + 8 > len(data):
                raise WireFormatError(f"truncated fixed64 field {field_number}")
            (fields[field_number],) = struct.unpack_from("<Q", data, offset)
            offset += 8

        elif wire_type == WIRE_LENGTH_DELIMITED:
            length, offset = read_varint(data, offset)
            if offset + length > len(data):
                raise WireFormatError(
                    f"field {field_number} length {length} exceeds remaining data"
                )
            chunk = data[offset : offset + length]
            offset += length
            fields[field_number] = _interpret_chunk(chunk, depth)

        elif wire_type == WIRE_FIXED32:
            if offset + 4 > len(data):
                raise WireFormatError(f"truncated fixed32 field {field_number}")
            (fields[field_number],) = struct.unpack_from("<I", data, offset)
            offset += 4

        else:
            raise WireFormatError(f"unsupported wire type {wire_type} at field {field_number}")

        count += 1

    return fields


def try_walk_fields(data: bytes) -> dict[int, Any] | None:
    """Walk ``data`` if it looks like a wire-format message.

    Returns None for empty input, a leading byte with an impossible wire
    type, a malformed stream, or a stream that yields no fields.
    """
    if not data or data[0] & 0x07 > MAX_WIRE_TYPE:
        return None
    try:
        fields = walk_fields(data)
    except WireFormatError:
        return None
    return fields or None


def scan_length_delimited(data: bytes) -> list[str]:
    """Collect readable length-delimited payloads, tolerating damage.

    A looser pass than ``walk_fields``: other wire types are skipped, and a
    length running past the end stops the scan instead of failing it. A
    payload that is not readable as a whole contributes the first JSON
    object embedded in it, if any.
    """
    strings: list[str] = []
    offset = 0

    while offset < len(data):
        tag = data[offset]
        offset += 1
        wire_type = tag & 0x07

        try:
            if wire_type == WIRE_VARINT:
                _, offset = read_varint(data, offset)
            elif wire_type == WIRE_FIXED64:
                offset += 8
            elif wire_type == WIRE_FIXED32:
                offset += 4
            elif wire_type == WIRE_LENGTH_DELIMITED:
                length, offset = read_varint(data, offset)
                if offset + length > len(data):
                    break
                chunk = data[offset : offset + length]
                offset += length
                if is_readable_text(chunk):
                    strings.append(chunk.decode("utf-8"))
                    continue
                embedded = extract_json_object(chunk)
                if embedded is not None:
                    try:
                        strings.append(embedded.decode("utf-8"))
                    except UnicodeDecodeError:
                        pass
        except WireFormatError:
            break

    return strings
