"""
Java class file primitives shared by the reader and the writer: versions,
access flags, constant pool tags, modified UTF-8 and the constant pool itself.
"""

import struct
from enum import IntEnum, IntFlag
from typing import Optional


MAGIC = 0xCAFEBABE


class ClassFileVersion:
    JAVA_1_1 = (45, 3)
    JAVA_5 = (49, 0)
    JAVA_8 = (52, 0)
    JAVA_21 = (65, 0)

    OLDEST = 45
    NEWEST = 65
    # First version whose verifier requires a StackMapTable.
    STACK_MAPS = 50


class AccessFlags(IntFlag):
    PUBLIC = 0x0001
    PRIVATE = 0x0002
    PROTECTED = 0x0004
    STATIC = 0x0008
    FINAL = 0x0010
    SUPER = 0x0020  # For classes (invokespecial semantics)
    SYNCHRONIZED = 0x0020  # For methods
    VOLATILE = 0x0040
    BRIDGE = 0x0040
    TRANSIENT = 0x0080
    VARARGS = 0x0080
    NATIVE = 0x0100
    INTERFACE = 0x0200
    ABSTRACT = 0x0400
    STRICT = 0x0800
    SYNTHETIC = 0x1000
    ANNOTATION = 0x2000
    ENUM = 0x4000


class ConstantPoolTag(IntEnum):
    UTF8 = 1
    INTEGER = 3
    FLOAT = 4
    LONG = 5
    DOUBLE = 6
    CLASS = 7
    STRING = 8
    FIELDREF = 9
    METHODREF = 10
    INTERFACE_METHODREF = 11
    NAME_AND_TYPE = 12
    METHOD_HANDLE = 15
    METHOD_TYPE = 16
    DYNAMIC = 17
    INVOKE_DYNAMIC = 18
    MODULE = 19
    PACKAGE = 20


WIDE_TAGS = (ConstantPoolTag.LONG, ConstantPoolTag.DOUBLE)


class HandleKind(IntEnum):
    GETFIELD = 1
    GETSTATIC = 2
    PUTFIELD = 3
    PUTSTATIC = 4
    INVOKEVIRTUAL = 5
    INVOKESTATIC = 6
    INVOKESPECIAL = 7
    NEWINVOKESPECIAL = 8
    INVOKEINTERFACE = 9


def encode_mutf8(value: str) -> bytes:
    """Encode a string in the JVM's modified UTF-8."""
    out = bytearray()
    for ch in value:
        code = ord(ch)
        if code > 0xFFFF:
            code -= 0x10000
            units = (0xD800 + (code >> 10), 0xDC00 + (code & 0x3FF))
        else:
            units = (code,)
        for unit in units:
            if 0 < unit < 0x80:
                out.append(unit)
            elif unit < 0x800:
                out.append(0xC0 | (unit >> 6))
                out.append(0x80 | (unit & 0x3F))
            else:
                out.append(0xE0 | (unit >> 12))
                out.append(0x80 | ((unit >> 6) & 0x3F))
                out.append(0x80 | (unit & 0x3F))
    return bytes(out)


def decode_mutf8(data: bytes) -> str:
    """Decode modified UTF-8; raises ValueError on malformed input."""
    units = []
    i = 0
    n = len(data)
    while i < n:
        b = data[i]
        if b < 0x80 and b != 0:
            units.append(b)
            i += 1
        elif b & 0xE0 == 0xC0 and i + 1 < n and data[i + 1] & 0xC0 == 0x80:
            units.append(((b & 0x1F) << 6) | (data[i + 1] & 0x3F))
            i += 2
        elif (b & 0xF0 == 0xE0 and i + 2 < n
              and data[i + 1] & 0xC0 == 0x80 and data[i + 2] & 0xC0 == 0x80):
            units.append(((b & 0x0F) << 12) | ((data[i + 1] & 0x3F) << 6) | (data[i + 2] & 0x3F))
            i += 3
        else:
            raise ValueError(f"Invalid modified UTF-8 byte 0x{b:02X} at {i}")
    chars = []
    i = 0
    while i < len(units):
        unit = units[i]
        if 0xD800 <= unit < 0xDC00 and i + 1 < len(units) and 0xDC00 <= units[i + 1] < 0xE000:
            chars.append(chr(0x10000 + ((unit - 0xD800) << 10) + (units[i + 1] - 0xDC00)))
            i += 2
        else:
            chars.append(chr(unit))
            i += 1
    return "".join(chars)


def float_bits(value: float) -> int:
    return struct.unpack(">I", struct.pack(">f", value))[0]


def double_bits(value: float) -> int:
    return struct.unpack(">Q", struct.pack(">d", value))[0]


class ConstantPool:
    """Manages the constant pool for a class file.

    Entries are tuples ``(tag, *operands)`` where operands are either plain
    values (UTF8, INTEGER, LONG, raw bits for FLOAT and DOUBLE) or indices of
    other entries. A pool seeded with the entries of a parsed class keeps
    every original index, so re-encoding an unchanged class reproduces it.
    """

    def __init__(self, seed: tuple = (), bootstrap: tuple = ()):
        self._entries: list[Optional[tuple]] = [None]  # 1-indexed
        self._cache: dict = {}
        for entry in seed[1:] if seed and seed[0] is None else seed:
            self._entries.append(entry)
            if entry is not None:
                self._cache.setdefault(entry, len(self._entries) - 1)
        self._bootstrap: list[tuple[int, tuple[int, ...]]] = []
        self._bootstrap_cache: dict = {}
        for method in bootstrap:
            self._bootstrap_cache.setdefault(method, len(self._bootstrap))
            self._bootstrap.append(method)

    def __len__(self) -> int:
        return len(self._entries)

    def __getitem__(self, index: int) -> tuple:
        return self._entries[index]

    @property
    def bootstrap_methods(self) -> list[tuple[int, tuple[int, ...]]]:
        return self._bootstrap

    def _add(self, entry: tuple) -> int:
        key = entry
        if key in self._cache:
            return self._cache[key]
        idx = len(self._entries)
        self._entries.append(entry)
        self._cache[key] = idx
        # Long and Double take two slots
        if entry[0] in WIDE_TAGS:
            self._entries.append(None)
        return idx

    def add_utf8(self, value: str) -> int:
        return self._add((ConstantPoolTag.UTF8, value))

    def add_integer(self, value: int) -> int:
        return self._add((ConstantPoolTag.INTEGER, value))

    def add_float(self, value: float) -> int:
        return self._add((ConstantPoolTag.FLOAT, float_bits(value)))

    def add_long(self, value: int) -> int:
        return self._add((ConstantPoolTag.LONG, value))

    def add_double(self, value: float) -> int:
        return self._add((ConstantPoolTag.DOUBLE, double_bits(value)))

    def add_class(self, internal_name: str) -> int:
        name_idx = self.add_utf8(internal_name)
        return self._add((ConstantPoolTag.CLASS, name_idx))

    def add_string(self, value: str) -> int:
        utf8_idx = self.add_utf8(value)
        return self._add((ConstantPoolTag.STRING, utf8_idx))

    def add_method_type(self, descriptor: str) -> int:
        return self._add((ConstantPoolTag.METHOD_TYPE, self.add_utf8(descriptor)))

    def add_name_and_type(self, name: str, descriptor: str) -> int:
        name_idx = self.add_utf8(name)
        desc_idx = self.add_utf8(descriptor)
        return self._add((ConstantPoolTag.NAME_AND_TYPE, name_idx, desc_idx))

    def add_fieldref(self, class_name: str, field_name: str, descriptor: str) -> int:
        class_idx = self.add_class(class_name)
        nat_idx = self.add_name_and_type(field_name, descriptor)
        return self._add((ConstantPoolTag.FIELDREF, class_idx, nat_idx))

    def add_methodref(self, class_name: str, method_name: str, descriptor: str) -> int:
        class_idx = self.add_class(class_name)
        nat_idx = self.add_name_and_type(method_name, descriptor)
        return self._add((ConstantPoolTag.METHODREF, class_idx, nat_idx))

    def add_interface_methodref(self, class_name: str, method_name: str, descriptor: str) -> int:
        class_idx = self.add_class(class_name)
        nat_idx = self.add_name_and_type(method_name, descriptor)
        return self._add((ConstantPoolTag.INTERFACE_METHODREF, class_idx, nat_idx))

    def add_method_handle(self, kind: int, owner: str, name: str, descriptor: str,
                          interface: bool) -> int:
        if kind <= HandleKind.PUTSTATIC:
            ref_idx = self.add_fieldref(owner, name, descriptor)
        elif interface:
            ref_idx = self.add_interface_methodref(owner, name, descriptor)
        else:
            ref_idx = self.add_methodref(owner, name, descriptor)
        return self._add((ConstantPoolTag.METHOD_HANDLE, kind, ref_idx))

    def add_bootstrap_method(self, handle_idx: int, argument_indices: tuple[int, ...]) -> int:
        key = (handle_idx, tuple(argument_indices))
        if key in self._bootstrap_cache:
            return self._bootstrap_cache[key]
        self._bootstrap.append(key)
        self._bootstrap_cache[key] = len(self._bootstrap) - 1
        return len(self._bootstrap) - 1

    def add_invoke_dynamic(self, bootstrap_idx: int, name: str, descriptor: str) -> int:
        nat_idx = self.add_name_and_type(name, descriptor)
        return self._add((ConstantPoolTag.INVOKE_DYNAMIC, bootstrap_idx, nat_idx))

    def write(self, out: bytearray):
        out.extend(struct.pack(">H", len(self._entries)))
        for entry in self._entries[1:]:
            if entry is None:
                continue
            tag = entry[0]
            out.append(tag)
            if tag == ConstantPoolTag.UTF8:
                data = encode_mutf8(entry[1])
                out.extend(struct.pack(">H", len(data)))
                out.extend(data)
            elif tag == ConstantPoolTag.INTEGER:
                out.extend(struct.pack(">i", entry[1]))
            elif tag == ConstantPoolTag.FLOAT:
                out.extend(struct.pack(">I", entry[1]))
            elif tag == ConstantPoolTag.LONG:
                out.extend(struct.pack(">q", entry[1]))
            elif tag == ConstantPoolTag.DOUBLE:
                out.extend(struct.pack(">Q", entry[1]))
            elif tag in (ConstantPoolTag.CLASS, ConstantPoolTag.STRING, ConstantPoolTag.METHOD_TYPE,
                         ConstantPoolTag.MODULE, ConstantPoolTag.PACKAGE):
                out.extend(struct.pack(">H", entry[1]))
            elif tag == ConstantPoolTag.METHOD_HANDLE:
                out.extend(struct.pack(">BH", entry[1], entry[2]))
            else:
                # FIELDREF, METHODREF, INTERFACE_METHODREF, NAME_AND_TYPE, DYNAMIC, INVOKE_DYNAMIC
                out.extend(struct.pack(">HH", entry[1], entry[2]))
