"""
Java class file reader producing the structured model.
Supports class files from version 45 to 65.
"""

import logging
import struct
from collections import defaultdict
from pathlib import Path
from typing import Optional

from .classfile import (
    MAGIC, ClassFileVersion, ConstantPoolTag, WIDE_TAGS, decode_mutf8,
)
from .errors import MalformedClassError
from .labels import LabelRegistry
from .literals import MethodType, Reference
from .model import (
    AnnotationModel, ArrayValue, Attribute, ClassModel, EnclosingMethod, EnumValue,
    ExceptionTableEntry, FieldInsn, FieldModel, Frame, FrameKind, Handle, IincInsn, InnerClass,
    Insn, IntInsn, InvokeDynamicInsn, JumpInsn, LabelMarker, LdcInsn, LineNumber,
    LocalVariable, LookupSwitchInsn, Maxs, MethodInsn, MethodModel, MultiANewArrayInsn,
    NestedValue, ParameterModel, ScalarValue, TableSwitchInsn, TypeInsn, VarInsn,
    VerificationTag, VerificationType, argument_types,
)
from .opcodes import (
    FIELD_OPCODES, INT_OPCODES, JUMP_OPCODES, LDC_OPCODES, METHOD_OPCODES, TYPE_OPCODES,
    VAR_OPCODES, Opcode,
)

log = logging.getLogger(__name__)


class ClassReader:
    """Reads Java class files."""

    def __init__(self, data: bytes):
        self.data = data
        self.pos = 0
        self.constant_pool: list[Optional[tuple]] = [None]  # 1-indexed
        self.bootstrap_methods: list[tuple[int, tuple[int, ...]]] = []

    # ==================== PRIMITIVES ====================

    def _need(self, length: int):
        if self.pos + length > len(self.data):
            raise MalformedClassError(
                f"Unexpected end of class file, need {length} more byte(s)", self.pos)

    def _read_u1(self) -> int:
        self._need(1)
        val = self.data[self.pos]
        self.pos += 1
        return val

    def _read_u2(self) -> int:
        self._need(2)
        val = struct.unpack_from(">H", self.data, self.pos)[0]
        self.pos += 2
        return val

    def _read_u4(self) -> int:
        self._need(4)
        val = struct.unpack_from(">I", self.data, self.pos)[0]
        self.pos += 4
        return val

    def _read_i4(self) -> int:
        self._need(4)
        val = struct.unpack_from(">i", self.data, self.pos)[0]
        self.pos += 4
        return val

    def _read_i8(self) -> int:
        self._need(8)
        val = struct.unpack_from(">q", self.data, self.pos)[0]
        self.pos += 8
        return val

    def _read_bytes(self, length: int) -> bytes:
        self._need(length)
        val = self.data[self.pos:self.pos + length]
        self.pos += length
        return bytes(val)

    # ==================== CONSTANT POOL ====================

    def _entry(self, index: int, *tags: int) -> tuple:
        if not 0 < index < len(self.constant_pool) or self.constant_pool[index] is None:
            raise MalformedClassError(f"Invalid constant pool index {index}", self.pos)
        entry = self.constant_pool[index]
        if tags and entry[0] not in tags:
            names = "/".join(ConstantPoolTag(t).name for t in tags)
            raise MalformedClassError(
                f"Expected {names} at index {index}, got tag {entry[0]}", self.pos)
        return entry

    def _get_utf8(self, index: int) -> str:
        """Get UTF8 string from constant pool."""
        return self._entry(index, ConstantPoolTag.UTF8)[1]

    def _get_class_name(self, index: int) -> Optional[str]:
        """Get class name from constant pool, None for index 0."""
        if index == 0:
            return None
        return self._get_utf8(self._entry(index, ConstantPoolTag.CLASS)[1])

    def _get_member(self, index: int) -> tuple[int, str, str, str]:
        """(tag, owner, name, descriptor) of a field or method reference."""
        tag, class_idx, nat_idx = self._entry(
            index, ConstantPoolTag.FIELDREF, ConstantPoolTag.METHODREF,
            ConstantPoolTag.INTERFACE_METHODREF)
        _, name_idx, desc_idx = self._entry(nat_idx, ConstantPoolTag.NAME_AND_TYPE)
        return tag, self._get_class_name(class_idx), self._get_utf8(name_idx), self._get_utf8(desc_idx)

    def _get_handle(self, index: int) -> Handle:
        _, kind, ref_idx = self._entry(index, ConstantPoolTag.METHOD_HANDLE)
        tag, owner, name, descriptor = self._get_member(ref_idx)
        return Handle(kind, owner, name, descriptor, tag == ConstantPoolTag.INTERFACE_METHODREF)

    def _get_constant(self, index: int):
        """Loadable constant as (kind, value)."""
        entry = self._entry(index)
        tag = entry[0]
        if tag == ConstantPoolTag.INTEGER:
            return "int", entry[1]
        if tag == ConstantPoolTag.FLOAT:
            return "float", struct.unpack(">f", struct.pack(">I", entry[1]))[0]
        if tag == ConstantPoolTag.LONG:
            return "long", entry[1]
        if tag == ConstantPoolTag.DOUBLE:
            return "double", struct.unpack(">d", struct.pack(">Q", entry[1]))[0]
        if tag == ConstantPoolTag.STRING:
            return "string", self._get_utf8(entry[1])
        if tag == ConstantPoolTag.CLASS:
            return "reference", Reference(self._get_utf8(entry[1]))
        if tag == ConstantPoolTag.METHOD_TYPE:
            return "method-type", MethodType(self._get_utf8(entry[1]))
        if tag == ConstantPoolTag.METHOD_HANDLE:
            return "handle", self._get_handle(index)
        raise MalformedClassError(f"Unsupported loadable constant with tag {tag} at index {index}", self.pos)

    def _read_constant_pool(self):
        """Read the constant pool."""
        count = self._read_u2()
        i = 1
        while i < count:
            start = self.pos
            tag = self._read_u1()

            if tag == ConstantPoolTag.UTF8:
                length = self._read_u2()
                try:
                    entry = (tag, decode_mutf8(self._read_bytes(length)))
                except ValueError as e:
                    raise MalformedClassError(f"Bad UTF8 constant: {e}", start) from e
            elif tag == ConstantPoolTag.INTEGER:
                entry = (tag, self._read_i4())
            elif tag == ConstantPoolTag.FLOAT:
                entry = (tag, self._read_u4())
            elif tag == ConstantPoolTag.LONG:
                entry = (tag, self._read_i8())
            elif tag == ConstantPoolTag.DOUBLE:
                entry = (tag, struct.unpack(">Q", self._read_bytes(8))[0])
            elif tag in (ConstantPoolTag.CLASS, ConstantPoolTag.STRING, ConstantPoolTag.METHOD_TYPE,
                         ConstantPoolTag.MODULE, ConstantPoolTag.PACKAGE):
                entry = (tag, self._read_u2())
            elif tag == ConstantPoolTag.METHOD_HANDLE:
                kind = self._read_u1()
                entry = (tag, kind, self._read_u2())
            elif tag in (ConstantPoolTag.FIELDREF, ConstantPoolTag.METHODREF,
                         ConstantPoolTag.INTERFACE_METHODREF, ConstantPoolTag.NAME_AND_TYPE,
                         ConstantPoolTag.DYNAMIC, ConstantPoolTag.INVOKE_DYNAMIC):
                first = self._read_u2()
                entry = (tag, first, self._read_u2())
            else:
                raise MalformedClassError(f"Unknown constant pool tag: {tag}", start)

            self.constant_pool.append(entry)
            if tag in WIDE_TAGS:
                self.constant_pool.append(None)  # Long and Double take 2 slots
                i += 2
            else:
                i += 1
        if i != count:
            raise MalformedClassError("Wide constant overflows the constant pool", self.pos)

    # ==================== ATTRIBUTES ====================

    def _attributes(self):
        """Yield (name, end) for each attribute; the caller consumes the body."""
        count = self._read_u2()
        for _ in range(count):
            name = self._get_utf8(self._read_u2())
            length = self._read_u4()
            start = self.pos
            self._need(length)
            yield name, start + length
            if self.pos != start + length:
                raise MalformedClassError(
                    f"Attribute {name} declares {length} bytes but {self.pos - start} were read",
                    start)

    def _skip_attributes(self):
        for _, end in self._attributes():
            self.pos = end

    def _scan_bootstrap_methods(self):
        """Find the BootstrapMethods class attribute ahead of the members that use it."""
        saved = self.pos
        self.pos += 6
        interfaces = self._read_u2()
        self.pos += 2 * interfaces
        for _ in range(2):  # fields, methods
            for _ in range(self._read_u2()):
                self.pos += 6
                self._skip_attributes()
        for name, end in self._attributes():
            if name == "BootstrapMethods":
                for _ in range(self._read_u2()):
                    handle_idx = self._read_u2()
                    args = tuple(self._read_u2() for _ in range(self._read_u2()))
                    self.bootstrap_methods.append((handle_idx, args))
            self.pos = end
        self.pos = saved

    def _read_annotation(self, visible: bool) -> AnnotationModel:
        """Read a single annotation."""
        descriptor = self._get_utf8(self._read_u2())
        num_pairs = self._read_u2()
        values = []
        for _ in range(num_pairs):
            name = self._get_utf8(self._read_u2())
            values.append((name, self._read_element_value(visible)))
        return AnnotationModel(descriptor, visible, tuple(values))

    def _read_annotations(self, visible: bool) -> list[AnnotationModel]:
        return [self._read_annotation(visible) for _ in range(self._read_u2())]

    def _read_element_value(self, visible: bool):
        """Read an annotation element value."""
        start = self.pos
        tag = chr(self._read_u1())

        if tag in "BCIJSZDF":
            kind, value = self._get_constant(self._read_u2())
            return ScalarValue(tag, value)
        elif tag in "sc":
            return ScalarValue(tag, self._get_utf8(self._read_u2()))
        elif tag == "e":
            descriptor = self._get_utf8(self._read_u2())
            return EnumValue(descriptor, self._get_utf8(self._read_u2()))
        elif tag == "@":
            return NestedValue(self._read_annotation(visible))
        elif tag == "[":
            num_values = self._read_u2()
            return ArrayValue(tuple(self._read_element_value(visible) for _ in range(num_values)))
        raise MalformedClassError(f"Unknown annotation element value tag: {tag!r}", start)

    # ==================== MEMBERS ====================

    def _read_field(self) -> FieldModel:
        """Read a field."""
        access = self._read_u2()
        name = self._get_utf8(self._read_u2())
        descriptor = self._get_utf8(self._read_u2())
        signature = None
        value = None
        annotations = []
        attributes = []
        order = []
        for attr, end in self._attributes():
            order.append(attr)
            if attr == "ConstantValue":
                value = self._get_constant(self._read_u2())[1]
            elif attr == "Signature":
                signature = self._get_utf8(self._read_u2())
            elif attr == "RuntimeVisibleAnnotations":
                annotations.extend(self._read_annotations(True))
            elif attr == "RuntimeInvisibleAnnotations":
                annotations.extend(self._read_annotations(False))
            else:
                attributes.append(Attribute(attr, self._read_bytes(end - self.pos)))
        return FieldModel(
            access=access,
            name=name,
            descriptor=descriptor,
            signature=signature,
            value=value,
            annotations=tuple(annotations),
            attributes=tuple(attributes),
            attribute_order=tuple(order),
        )

    def _read_method(self) -> MethodModel:
        """Read a method."""
        access = self._read_u2()
        name = self._get_utf8(self._read_u2())
        descriptor = self._get_utf8(self._read_u2())
        try:
            args = argument_types(descriptor)
        except (ValueError, IndexError) as e:
            raise MalformedClassError(f"Bad method descriptor {descriptor!r}", self.pos) from e
        params = [dict(index=i, descriptor=d, annotations=[], name=None, access=0)
                  for i, d in enumerate(args)]
        fields = dict(signature=None, exceptions=(), default=None)
        code = {}
        annotations = []
        attributes = []
        order = []
        for attr, end in self._attributes():
            order.append(attr)
            if attr == "Code":
                code = self._read_code(f"{name}{descriptor}")
            elif attr == "Exceptions":
                count = self._read_u2()
                fields["exceptions"] = tuple(self._get_class_name(self._read_u2()) for _ in range(count))
            elif attr == "Signature":
                fields["signature"] = self._get_utf8(self._read_u2())
            elif attr in ("RuntimeVisibleAnnotations", "RuntimeInvisibleAnnotations"):
                annotations.extend(self._read_annotations(attr == "RuntimeVisibleAnnotations"))
            elif attr in ("RuntimeVisibleParameterAnnotations",
                          "RuntimeInvisibleParameterAnnotations"):
                visible = attr == "RuntimeVisibleParameterAnnotations"
                count = self._read_parameter_count(attr, len(params))
                # leading synthetic parameters (outer instance, enum name and ordinal) carry no entry
                skip = len(params) - count
                for i in range(count):
                    params[skip + i]["annotations"].extend(self._read_annotations(visible))
                annotated = any(a.visible == visible for p in params for a in p["annotations"])
                if count != len(params) or not annotated:
                    key = "visible_parameter_count" if visible else "invisible_parameter_count"
                    fields[key] = count
            elif attr == "AnnotationDefault":
                fields["default"] = self._read_element_value(True)
            elif attr == "MethodParameters":
                count = self._read_parameter_count(attr, len(params))
                for i in range(count):
                    name_idx = self._read_u2()
                    params[i]["name"] = self._get_utf8(name_idx) if name_idx else None
                    params[i]["access"] = self._read_u2()
                if count != len(params) or not any(p["name"] is not None or p["access"] for p in params):
                    fields["parameter_count"] = count
            else:
                attributes.append(Attribute(attr, self._read_bytes(end - self.pos)))
        parameters = tuple(
            ParameterModel(p["index"], p["descriptor"], tuple(p["annotations"]), p["name"], p["access"])
            for p in params
        )
        return MethodModel(
            access=access,
            name=name,
            descriptor=descriptor,
            parameters=parameters,
            annotations=tuple(annotations),
            attributes=tuple(attributes),
            attribute_order=tuple(order),
            **fields,
            **code,
        )

    def _read_parameter_count(self, attr: str, arity: int) -> int:
        count = self._read_u1()
        if count > arity:
            raise MalformedClassError(
                f"{attr} lists {count} parameter(s) but the descriptor has {arity}", self.pos - 1)
        return count

    # ==================== CODE ====================

    def _read_code(self, method: str) -> dict:
        max_stack = self._read_u2()
        max_locals = self._read_u2()
        code_length = self._read_u4()
        code_start = self.pos
        self._need(code_length)
        self.pos += code_length

        handlers = []
        for _ in range(self._read_u2()):
            start_pc, end_pc, handler_pc, catch_idx = (self._read_u2() for _ in range(4))
            handlers.append((start_pc, end_pc, handler_pc, self._get_class_name(catch_idx)))

        lines = []
        line_tables = []
        variables = []
        variable_types = {}
        frames = []
        code_attributes = []
        order = []
        for attr, attr_end in self._attributes():
            order.append(attr)
            if attr == "LineNumberTable":
                table = []
                for _ in range(self._read_u2()):
                    pc = self._read_u2()
                    table.append(len(lines))
                    lines.append((pc, self._read_u2()))
                line_tables.append(table)
            elif attr == "LocalVariableTable":
                for _ in range(self._read_u2()):
                    start_pc, length, name_idx, desc_idx, index = (self._read_u2() for _ in range(5))
                    variables.append((start_pc, length, self._get_utf8(name_idx),
                                      self._get_utf8(desc_idx), index))
            elif attr == "LocalVariableTypeTable":
                for _ in range(self._read_u2()):
                    start_pc, length, name_idx, sig_idx, index = (self._read_u2() for _ in range(5))
                    key = (start_pc, length, self._get_utf8(name_idx), index)
                    variable_types[key] = self._get_utf8(sig_idx)
            elif attr == "StackMapTable":
                frames = self._read_stack_map()
            else:
                code_attributes.append(Attribute(attr, self._read_bytes(attr_end - self.pos)))

        labels = LabelRegistry(method)
        try_catch = []
        for start_pc, end_pc, handler_pc, catch_type in handlers:
            try_catch.append(ExceptionTableEntry(
                labels.at(start_pc), labels.at(end_pc), labels.at(handler_pc), catch_type))

        decoded = self._decode_instructions(code_start, code_length, labels)
        boundaries = {offset for offset, _ in decoded} | {code_length}

        local_variables = []
        for start_pc, length, name, descriptor, index in variables:
            signature = variable_types.pop((start_pc, length, name, index), None)
            local_variables.append(LocalVariable(
                name, descriptor, labels.at(start_pc), labels.at(start_pc + length), index, signature))
        for (start_pc, length, name, index), signature in variable_types.items():
            log.debug("%s: %s has a generic signature but no LocalVariableTable entry", method, name)
            local_variables.append(LocalVariable(
                name, None, labels.at(start_pc), labels.at(start_pc + length), index, signature))

        def resolve(vt):
            if vt[0] == VerificationTag.UNINITIALIZED:
                return VerificationType(vt[0], labels.at(vt[1]))
            return VerificationType(*vt)

        frames_at = {}
        for offset, kind, local_types, stack_types, chop in frames:
            if offset not in boundaries or offset == code_length:
                raise MalformedClassError(f"Stack map frame at invalid offset {offset}", code_start + offset)
            frames_at[offset] = Frame(kind, tuple(map(resolve, local_types)),
                                      tuple(map(resolve, stack_types)), chop)

        labels_at = defaultdict(list)
        for offset, label in labels.offsets():
            if offset not in boundaries:
                raise MalformedClassError(f"Branch target {offset} is not an instruction", code_start + offset)
            labels_at[offset].append(label)
        lines_at = defaultdict(list)
        for entry, (pc, line) in enumerate(lines):
            if pc not in boundaries or pc == code_length:
                raise MalformedClassError(f"Line number entry at invalid offset {pc}", code_start + pc)
            lines_at[pc].append((entry, line))

        instructions = []
        marker_of = {}
        for offset, insn in decoded + [(code_length, None)]:
            instructions.extend(LabelMarker(label) for label in labels_at[offset])
            for entry, line in lines_at[offset]:
                marker_of[entry] = len(marker_of)
                instructions.append(LineNumber(line))
            if offset in frames_at:
                instructions.append(frames_at[offset])
            if insn is not None:
                instructions.append(insn)

        return dict(
            maxs=Maxs(max_stack, max_locals),
            instructions=tuple(instructions),
            try_catch=tuple(try_catch),
            local_variables=tuple(local_variables),
            code_attributes=tuple(code_attributes),
            code_order=tuple(order),
            line_tables=tuple(tuple(marker_of[entry] for entry in table) for table in line_tables),
        )

    def _read_verification_type(self) -> tuple:
        tag = self._read_u1()
        if tag == VerificationTag.OBJECT:
            return tag, self._get_class_name(self._read_u2())
        if tag == VerificationTag.UNINITIALIZED:
            return tag, self._read_u2()
        if tag > VerificationTag.UNINITIALIZED:
            raise MalformedClassError(f"Unknown verification type {tag}", self.pos - 1)
        return tag, None

    def _read_stack_map(self) -> list[tuple]:
        """Frames as (offset, kind, locals, stack, chop) with raw verification types."""
        frames = []
        offset = -1
        for _ in range(self._read_u2()):
            start = self.pos
            frame_type = self._read_u1()
            local_types, stack_types, chop = [], [], 0
            if frame_type < 64:
                kind, delta = FrameKind.SAME, frame_type
            elif frame_type < 128:
                kind, delta = FrameKind.SAME_LOCALS_1, frame_type - 64
                stack_types.append(self._read_verification_type())
            elif frame_type < 247:
                raise MalformedClassError(f"Reserved stack map frame type {frame_type}", start)
            elif frame_type == 247:
                kind, delta = FrameKind.SAME_LOCALS_1_EXTENDED, self._read_u2()
                stack_types.append(self._read_verification_type())
            elif frame_type < 251:
                kind, delta, chop = FrameKind.CHOP, self._read_u2(), 251 - frame_type
            elif frame_type == 251:
                kind, delta = FrameKind.SAME_EXTENDED, self._read_u2()
            elif frame_type < 255:
                kind, delta = FrameKind.APPEND, self._read_u2()
                local_types = [self._read_verification_type() for _ in range(frame_type - 251)]
            else:
                kind, delta = FrameKind.FULL, self._read_u2()
                local_types = [self._read_verification_type() for _ in range(self._read_u2())]
                stack_types = [self._read_verification_type() for _ in range(self._read_u2())]
            offset += delta + 1
            frames.append((offset, kind, local_types, stack_types, chop))
        return frames

    def _decode_instructions(self, code_start: int, code_length: int,
                             labels: LabelRegistry) -> list[tuple[int, object]]:
        """Decode the bytecode into (offset, instruction) pairs."""
        saved = self.pos
        self.pos = code_start
        end = code_start + code_length
        decoded = []
        while self.pos < end:
            offset = self.pos - code_start
            decoded.append((offset, self._decode_instruction(offset, code_start, labels)))
        if self.pos != end:
            raise MalformedClassError("Instruction runs past the end of the code", self.pos)
        for offset, insn in decoded:
            if isinstance(insn, _Pending):
                for target in insn.raw_targets:
                    if not 0 <= target < code_length:
                        raise MalformedClassError(
                            f"Branch target {target} outside the code", code_start + offset)
        self.pos = saved
        return [(offset, insn.insn if isinstance(insn, _Pending) else insn) for offset, insn in decoded]

    def _decode_instruction(self, offset: int, code_start: int, labels: LabelRegistry):
        start = self.pos
        byte = self._read_u1()
        try:
            op = Opcode(byte)
        except ValueError:
            raise MalformedClassError(f"Unknown opcode 0x{byte:02X}", start) from None

        if op == Opcode.WIDE:
            sub = self._read_u1()
            if sub == Opcode.IINC:
                var = self._read_u2()
                return IincInsn(var, struct.unpack(">h", self._read_bytes(2))[0])
            if sub in VAR_OPCODES:
                return VarInsn(Opcode(sub), self._read_u2())
            raise MalformedClassError(f"Opcode 0x{sub:02X} cannot be widened", start)
        if op == Opcode.BIPUSH:
            return IntInsn(op, struct.unpack(">b", self._read_bytes(1))[0])
        if op == Opcode.SIPUSH:
            return IntInsn(op, struct.unpack(">h", self._read_bytes(2))[0])
        if op in INT_OPCODES:
            return IntInsn(op, self._read_u1())
        if op in LDC_OPCODES:
            index = self._read_u1() if op == Opcode.LDC else self._read_u2()
            return LdcInsn(op, self._get_constant(index)[1])
        if op in VAR_OPCODES:
            return VarInsn(op, self._read_u1())
        if op == Opcode.IINC:
            var = self._read_u1()
            return IincInsn(var, struct.unpack(">b", self._read_bytes(1))[0])
        if op in JUMP_OPCODES:
            if op in (Opcode.GOTO_W, Opcode.JSR_W):
                delta = self._read_i4()
            else:
                delta = struct.unpack(">h", self._read_bytes(2))[0]
            return _Pending(JumpInsn(op, labels.at(offset + delta)), (offset + delta,))
        if op in (Opcode.TABLESWITCH, Opcode.LOOKUPSWITCH):
            self.pos += (4 - (self.pos - code_start) % 4) % 4
            default = offset + self._read_i4()
            if op == Opcode.TABLESWITCH:
                low = self._read_i4()
                high = self._read_i4()
                if high < low:
                    raise MalformedClassError("tableswitch high is below low", start)
                jumps = [offset + self._read_i4() for _ in range(high - low + 1)]
                insn = TableSwitchInsn(low, high, labels.at(default), tuple(labels.at(j) for j in jumps))
            else:
                npairs = self._read_i4()
                if npairs < 0:
                    raise MalformedClassError("lookupswitch has a negative pair count", start)
                pairs = [(self._read_i4(), offset + self._read_i4()) for _ in range(npairs)]
                jumps = [j for _, j in pairs]
                insn = LookupSwitchInsn(labels.at(default), tuple(k for k, _ in pairs),
                                        tuple(labels.at(j) for j in jumps))
            return _Pending(insn, (default, *jumps))
        if op in FIELD_OPCODES:
            _, owner, name, descriptor = self._get_member(self._read_u2())
            return FieldInsn(op, owner, name, descriptor)
        if op in METHOD_OPCODES:
            tag, owner, name, descriptor = self._get_member(self._read_u2())
            if op == Opcode.INVOKEINTERFACE:
                self.pos += 2  # count and zero byte, both derivable
            return MethodInsn(op, owner, name, descriptor, tag == ConstantPoolTag.INTERFACE_METHODREF)
        if op == Opcode.INVOKEDYNAMIC:
            _, bsm_idx, nat_idx = self._entry(self._read_u2(), ConstantPoolTag.INVOKE_DYNAMIC)
            self.pos += 2
            _, name_idx, desc_idx = self._entry(nat_idx, ConstantPoolTag.NAME_AND_TYPE)
            if bsm_idx >= len(self.bootstrap_methods):
                raise MalformedClassError(f"Missing bootstrap method {bsm_idx}", start)
            handle_idx, arg_indices = self.bootstrap_methods[bsm_idx]
            return InvokeDynamicInsn(
                self._get_utf8(name_idx), self._get_utf8(desc_idx), self._get_handle(handle_idx),
                tuple(self._get_constant(i) for i in arg_indices))
        if op in TYPE_OPCODES:
            return TypeInsn(op, self._get_class_name(self._read_u2()))
        if op == Opcode.MULTIANEWARRAY:
            descriptor = self._get_class_name(self._read_u2())
            return MultiANewArrayInsn(descriptor, self._read_u1())
        return Insn(op)

    # ==================== CLASS ====================

    def read(self) -> ClassModel:
        """Read the class file and return its model."""
        # Magic number
        magic = self._read_u4()
        if magic != MAGIC:
            raise MalformedClassError(f"Invalid class file magic: {hex(magic)}", 0)

        # Version
        minor = self._read_u2()
        major = self._read_u2()
        if not ClassFileVersion.OLDEST <= major <= ClassFileVersion.NEWEST:
            raise MalformedClassError(f"Unsupported class file version {major}.{minor}", 4)

        # Constant pool
        self._read_constant_pool()
        self._scan_bootstrap_methods()

        # Access flags
        access_flags = self._read_u2()

        # This/super class
        name = self._get_class_name(self._read_u2())
        if not name:
            raise MalformedClassError("Class has no name", self.pos - 2)
        super_class = self._get_class_name(self._read_u2())

        # Interfaces
        interfaces_count = self._read_u2()
        interfaces = tuple(
            self._get_class_name(self._read_u2())
            for _ in range(interfaces_count)
        )

        # Fields
        fields_count = self._read_u2()
        fields = tuple(self._read_field() for _ in range(fields_count))

        # Methods
        methods_count = self._read_u2()
        methods = tuple(self._read_method() for _ in range(methods_count))

        # Class attributes
        props = dict(signature=None, source_file=None, enclosing_method=None)
        annotations = []
        inner_classes = []
        attributes = []
        order = []
        for attr, end in self._attributes():
            order.append(attr)
            if attr == "Signature":
                props["signature"] = self._get_utf8(self._read_u2())
            elif attr == "SourceFile":
                props["source_file"] = self._get_utf8(self._read_u2())
            elif attr in ("RuntimeVisibleAnnotations", "RuntimeInvisibleAnnotations"):
                annotations.extend(self._read_annotations(attr == "RuntimeVisibleAnnotations"))
            elif attr == "InnerClasses":
                for _ in range(self._read_u2()):
                    inner_idx, outer_idx, inner_name_idx, inner_access = (self._read_u2() for _ in range(4))
                    inner_classes.append(InnerClass(
                        self._get_class_name(inner_idx),
                        self._get_class_name(outer_idx),
                        self._get_utf8(inner_name_idx) if inner_name_idx else None,
                        inner_access,
                    ))
            elif attr == "EnclosingMethod":
                owner = self._get_class_name(self._read_u2())
                nat_idx = self._read_u2()
                method_name = descriptor = None
                if nat_idx:
                    _, name_idx, desc_idx = self._entry(nat_idx, ConstantPoolTag.NAME_AND_TYPE)
                    method_name, descriptor = self._get_utf8(name_idx), self._get_utf8(desc_idx)
                props["enclosing_method"] = EnclosingMethod(owner, method_name, descriptor)
            elif attr == "BootstrapMethods":
                self.pos = end  # read ahead by _scan_bootstrap_methods
            else:
                attributes.append(Attribute(attr, self._read_bytes(end - self.pos)))

        if self.pos != len(self.data):
            raise MalformedClassError(f"{len(self.data) - self.pos} trailing byte(s)", self.pos)

        log.debug("Read class %s: %d field(s), %d method(s)", name, len(fields), len(methods))
        return ClassModel(
            name=name,
            access=access_flags,
            version=(major, minor),
            super_name=super_class,
            interfaces=interfaces,
            fields=fields,
            methods=methods,
            annotations=tuple(annotations),
            inner_classes=tuple(inner_classes),
            attributes=tuple(attributes),
            pool=tuple(self.constant_pool),
            bootstrap=tuple(self.bootstrap_methods),
            attribute_order=tuple(order),
            **props,
        )


class _Pending:
    """A decoded branch whose raw target offsets still need validating."""

    def __init__(self, insn, raw_targets: tuple[int, ...]):
        self.insn = insn
        self.raw_targets = raw_targets


def read_class(data: bytes) -> ClassModel:
    """Parse class file bytes into a model."""
    return ClassReader(data).read()


def read_class_file(path: str | Path) -> ClassModel:
    """Read a single class file."""
    data = Path(path).read_bytes()
    return read_class(data)
