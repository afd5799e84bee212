"""
Hexadecimal encoding of constant values for tree leaves.

Every scalar in a tree is stored as the bytes of its value, written as
space-separated two-digit uppercase hex, next to a kind name that tells the
reader how to turn the bytes back into a value:

    >>> encode(1)
    ('int', '00 00 00 01')
    >>> decode('string', '68 69')
    'hi'
"""

import re
import struct
from dataclasses import dataclass
from typing import Optional

from .errors import FormatError
from .labels import Label


@dataclass(frozen=True)
class Reference:
    """A class or array type named by its internal name, e.g. ``java/lang/String``."""
    internal_name: str


@dataclass(frozen=True)
class MethodType:
    """A method type constant, e.g. ``(I)V``."""
    descriptor: str


INT = "int"
LONG = "long"
FLOAT = "float"
DOUBLE = "double"
BOOL = "bool"
STRING = "string"
REFERENCE = "reference"
METHOD_TYPE = "method-type"
LABEL = "label"
BYTES = "bytes"
NULL = "null"

FIXED_WIDTH = {INT: 4, LONG: 8, FLOAT: 4, DOUBLE: 8, BOOL: 1}
KINDS = frozenset(FIXED_WIDTH) | {STRING, REFERENCE, METHOD_TYPE, LABEL, BYTES, NULL}

_HEX_BYTE = re.compile(r"[0-9A-Fa-f]{2}")


def kind_of(value) -> str:
    """Infer the kind used when ``encode`` is called without one."""
    if value is None:
        return NULL
    if isinstance(value, bool):
        return BOOL
    if isinstance(value, int):
        return INT if -2**31 <= value < 2**31 else LONG
    if isinstance(value, float):
        return DOUBLE
    if isinstance(value, str):
        return STRING
    if isinstance(value, (bytes, bytearray)):
        return BYTES
    if isinstance(value, Reference):
        return REFERENCE
    if isinstance(value, MethodType):
        return METHOD_TYPE
    if isinstance(value, Label):
        return LABEL
    raise FormatError(f"No literal kind for value of type {type(value).__name__}")


def to_hex(data: bytes) -> str:
    return " ".join(f"{b:02X}" for b in data)


def from_hex(text: str) -> bytes:
    text = text.strip()
    if not text:
        return b""
    groups = text.split()
    for group in groups:
        if not _HEX_BYTE.fullmatch(group):
            raise FormatError(f"Invalid hex byte '{group}' in '{text}'")
    return bytes(int(group, 16) for group in groups)


def _utf8(value: str) -> bytes:
    return value.encode("utf-8", errors="surrogatepass")


def _pack(kind: str, value) -> bytes:
    try:
        if kind == INT:
            return struct.pack(">i", value)
        if kind == LONG:
            return struct.pack(">q", value)
        if kind == FLOAT:
            return struct.pack(">f", value)
        if kind == DOUBLE:
            return struct.pack(">d", value)
    except (struct.error, OverflowError) as e:
        raise FormatError(f"Value {value!r} does not fit kind '{kind}': {e}") from e
    if kind == BOOL:
        return b"\x01" if value else b"\x00"
    if kind == STRING:
        return _utf8(value)
    if kind == REFERENCE:
        return _utf8(value.internal_name if isinstance(value, Reference) else value)
    if kind == METHOD_TYPE:
        return _utf8(value.descriptor if isinstance(value, MethodType) else value)
    if kind == LABEL:
        return _utf8(value.name if isinstance(value, Label) else value)
    if kind == BYTES:
        return bytes(value)
    if kind == NULL:
        return b""
    raise FormatError(f"Unknown literal kind '{kind}'")


def encode(value, kind: Optional[str] = None) -> tuple[str, str]:
    """Encode a value as (kind, hex text)."""
    if kind is None:
        kind = kind_of(value)
    return kind, to_hex(_pack(kind, value))


def decode(kind: str, text: Optional[str]):
    """Decode hex text of the given kind back into a value."""
    if kind not in KINDS:
        raise FormatError(f"Unknown literal kind '{kind}'")
    data = from_hex(text or "")
    width = FIXED_WIDTH.get(kind)
    if width is not None and len(data) != width:
        raise FormatError(
            f"Kind '{kind}' needs {width} bytes, got {len(data)} in '{text}'")
    if kind == INT:
        return struct.unpack(">i", data)[0]
    if kind == LONG:
        return struct.unpack(">q", data)[0]
    if kind == FLOAT:
        return struct.unpack(">f", data)[0]
    if kind == DOUBLE:
        return struct.unpack(">d", data)[0]
    if kind == BOOL:
        if data not in (b"\x00", b"\x01"):
            raise FormatError(f"Boolean must be 00 or 01, got '{text}'")
        return data == b"\x01"
    if kind == BYTES:
        return data
    if kind == NULL:
        if data:
            raise FormatError(f"Null carries no bytes, got '{text}'")
        return None
    try:
        string = data.decode("utf-8", errors="surrogatepass")
    except UnicodeDecodeError as e:
        raise FormatError(f"Invalid UTF-8 in '{text}': {e}") from e
    if kind == REFERENCE:
        return Reference(string)
    if kind == METHOD_TYPE:
        return MethodType(string)
    if kind == LABEL:
        return Label(string)
    return string
