"""Minimal reader for the protobuf-style tag/length/value blobs the host
application keeps in its state database.

Only what the extraction strategies need is here: varints, skipping fields
of every wire type, locating a length-delimited field by number, and reading
string leaves out of a flat message. There is no schema; unknown fields are
always skipped.
"""
from __future__ import annotations

from typing import Mapping, Optional

VARINT = 0
FIXED64 = 1
LENGTH_DELIMITED = 2
FIXED32 = 5

# Inner "oauth token info" message.
OAUTH_TOKEN_FIELDS = {1: "access_token", 3: "refresh_token"}


class TLVDecodeError(ValueError):
    pass


class TruncatedData(TLVDecodeError):
    pass


class UnknownWireType(TLVDecodeError):
    pass


def read_varint(buf: bytes, offset: int) -> tuple[int, int]:
    """Read a base-128 varint starting at `offset`.

    Returns `(value, next_offset)`. Raises `TruncatedData` if the buffer ends
    while the continuation bit is still set.
    """
    result = 0
    shift = 0
    pos = offset
    while pos < len(buf):
        byte = buf[pos]
        result |= (byte & 0x7F) << shift
        pos += 1
        if not byte & 0x80:
            return result, pos
        shift += 7
    raise TruncatedData(f"varint at offset {offset} runs past end of buffer ({len(buf)} bytes)")


def read_tag(buf: bytes, offset: int) -> tuple[int, int, int]:
    """Return `(field_number, wire_type, next_offset)` for the tag at `offset`."""
    tag, pos = read_varint(buf, offset)
    return tag >> 3, tag & 0x07, pos


def _checked_end(buf: bytes, end: int, what: str) -> int:
    if end > len(buf):
        raise TruncatedData(f"{what} ends at {end}, past end of buffer ({len(buf)} bytes)")
    return end


def skip_field(buf: bytes, offset: int, wire_type: int) -> int:
    """Skip the value of a field whose tag has already been read."""
    if wire_type == VARINT:
        _, pos = read_varint(buf, offset)
        return pos
    if wire_type == FIXED64:
        return _checked_end(buf, offset + 8, "fixed64 value")
    if wire_type == LENGTH_DELIMITED:
        length, pos = read_varint(buf, offset)
        return _checked_end(buf, pos + length, "length-delimited value")
    if wire_type == FIXED32:
        return _checked_end(buf, offset + 4, "fixed32 value")
    raise UnknownWireType(f"unknown wire type {wire_type} at offset {offset}")


def _read_length_delimited(buf: bytes, offset: int) -> tuple[bytes, int]:
    length, pos = read_varint(buf, offset)
    end = _checked_end(buf, pos + length, "length-delimited value")
    return bytes(buf[pos:end]), end


def find_field(buf: bytes, target: int) -> Optional[bytes]:
    """Payload of the first length-delimited occurrence of field `target`.

    Only top-level tags are scanned. A garbled tail stops the scan and
    yields `None`, since anything after it cannot be located reliably.
    """
    offset = 0
    while offset < len(buf):
        try:
            field_number, wire_type, pos = read_tag(buf, offset)
            if field_number == target and wire_type == LENGTH_DELIMITED:
                payload, _ = _read_length_delimited(buf, pos)
                return payload
            offset = skip_field(buf, pos, wire_type)
        except TLVDecodeError:
            return None
    return None


def parse_leaf_strings(buf: bytes, field_map: Mapping[int, str]) -> dict[str, str]:
    """Decode the string leaves listed in `field_map` (field number -> role).

    Later occurrences of a field overwrite earlier ones. Decoding stops at the
    first malformed field and whatever was read up to that point is returned.
    """
    found: dict[str, str] = {}
    offset = 0
    while offset < len(buf):
        try:
            field_number, wire_type, pos = read_tag(buf, offset)
            if wire_type == LENGTH_DELIMITED and field_number in field_map:
                payload, offset = _read_length_delimited(buf, pos)
                found[field_map[field_number]] = payload.decode("utf-8", errors="replace")
                continue
            offset = skip_field(buf, pos, wire_type)
        except TLVDecodeError:
            break
    return found
