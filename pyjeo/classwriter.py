"""
Java class file writer.

Encodes a ClassModel into class file bytes. A model read from a class file
carries its original constant pool and bootstrap table, which seed the new
pool so unchanged classes come out byte for byte as they came in.
"""

import logging
import struct
from pathlib import Path
from typing import Callable

from .analysis import compute_frames, compute_maxs
from .classfile import MAGIC, ClassFileVersion, ConstantPool
from .errors import VerificationError
from .labels import LabelRegistry
from .literals import MethodType, Reference
from .model import (
    AnnotationModel, ArrayValue, ClassModel, EnumValue, FieldInsn, FieldModel, Frame, FrameKind,
    Handle, IincInsn, Insn, IntInsn, InvokeDynamicInsn, JumpInsn, LabelMarker, LdcInsn,
    LineNumber, LookupSwitchInsn, MethodInsn, MethodModel, MultiANewArrayInsn, NestedValue,
    ScalarValue, TableSwitchInsn, TypeInsn, VarInsn, VerificationTag, argument_types,
    is_marker, slot_size, targets,
)
from .opcodes import Opcode, invert, is_conditional

log = logging.getLogger(__name__)

MAX_CODE_LENGTH = 65535

Piece = tuple[str, Callable[[], bytes]]


def _ordered(pieces: list[Piece], hint: tuple[str, ...]) -> list[Piece]:
    """Arrange attributes in the hinted order; unhinted ones keep their default order."""
    remaining = list(pieces)
    ordered = []
    for name in hint:
        for i, (n, _) in enumerate(remaining):
            if n == name:
                ordered.append(remaining.pop(i))
                break
    return ordered + remaining


class ClassWriter:
    """Writes a ClassModel as a class file."""

    def __init__(self, model: ClassModel, verify: bool = False):
        self.model = model
        self.verify = verify
        self.cp = ConstantPool(model.pool, model.bootstrap)

    def to_bytes(self) -> bytes:
        model = self.model
        body = bytearray()

        body.extend(struct.pack(">H", model.access))
        body.extend(struct.pack(">H", self.cp.add_class(model.name)))
        body.extend(struct.pack(">H", self.cp.add_class(model.super_name) if model.super_name else 0))

        # Interfaces
        body.extend(struct.pack(">H", len(model.interfaces)))
        for interface in model.interfaces:
            body.extend(struct.pack(">H", self.cp.add_class(interface)))

        # Fields
        body.extend(struct.pack(">H", len(model.fields)))
        for fld in model.fields:
            self._write_field(body, fld)

        # Methods
        body.extend(struct.pack(">H", len(model.methods)))
        for method in model.methods:
            self._write_method(body, method)

        # Attributes
        pieces: list[Piece] = []
        if model.source_file is not None:
            pieces.append(("SourceFile", lambda: struct.pack(">H", self.cp.add_utf8(model.source_file))))
        if model.inner_classes:
            pieces.append(("InnerClasses", self._inner_classes))
        if model.enclosing_method is not None:
            pieces.append(("EnclosingMethod", self._enclosing_method))
        if model.signature is not None:
            pieces.append(("Signature", lambda: struct.pack(">H", self.cp.add_utf8(model.signature))))
        pieces.extend(self._annotation_pieces(model.annotations))
        pieces.extend(self._opaque_pieces(model.attributes))
        # BootstrapMethods is filled while writing method bodies above
        if self.cp.bootstrap_methods or "BootstrapMethods" in model.attribute_order:
            pieces.append(("BootstrapMethods", self._bootstrap_methods))
        self._write_attributes(body, pieces, model.attribute_order)

        if len(self.cp) > 0xFFFF:
            raise VerificationError(f"Constant pool of {model.name} has {len(self.cp)} entries")

        out = bytearray()
        out.extend(struct.pack(">I", MAGIC))
        major, minor = model.version
        out.extend(struct.pack(">HH", minor, major))
        self.cp.write(out)
        out.extend(body)
        log.debug("Wrote class %s (%d bytes)", model.name, len(out))
        return bytes(out)

    def write(self, path: str | Path):
        Path(path).write_bytes(self.to_bytes())

    # ==================== ATTRIBUTES ====================

    def _write_attributes(self, out: bytearray, pieces: list[Piece], hint: tuple[str, ...]):
        out.extend(struct.pack(">H", len(pieces)))
        for name, build in _ordered(pieces, hint):
            name_idx = self.cp.add_utf8(name)
            data = build()
            out.extend(struct.pack(">HI", name_idx, len(data)))
            out.extend(data)

    @staticmethod
    def _opaque_pieces(attributes) -> list[Piece]:
        return [(attr.name, lambda data=attr.data: data) for attr in attributes]

    def _annotation_pieces(self, annotations: tuple[AnnotationModel, ...]) -> list[Piece]:
        pieces = []
        for visible, name in ((True, "RuntimeVisibleAnnotations"), (False, "RuntimeInvisibleAnnotations")):
            selected = [a for a in annotations if a.visible == visible]
            if selected:
                pieces.append((name, lambda selected=selected: self._annotations(selected)))
        return pieces

    def _annotations(self, annotations: list[AnnotationModel]) -> bytes:
        out = bytearray(struct.pack(">H", len(annotations)))
        for annotation in annotations:
            self._write_annotation(out, annotation)
        return bytes(out)

    def _write_annotation(self, out: bytearray, annotation: AnnotationModel):
        out.extend(struct.pack(">H", self.cp.add_utf8(annotation.descriptor)))
        out.extend(struct.pack(">H", len(annotation.values)))
        for name, value in annotation.values:
            out.extend(struct.pack(">H", self.cp.add_utf8(name)))
            self._write_element_value(out, value)

    def _write_element_value(self, out: bytearray, value):
        if isinstance(value, ScalarValue):
            tag = value.tag
            out.append(ord(tag))
            if tag in "BCISZ":
                idx = self.cp.add_integer(int(value.value))
            elif tag == "J":
                idx = self.cp.add_long(value.value)
            elif tag == "F":
                idx = self.cp.add_float(value.value)
            elif tag == "D":
                idx = self.cp.add_double(value.value)
            else:
                # 's' and 'c' hold the string or class descriptor itself
                idx = self.cp.add_utf8(value.value)
            out.extend(struct.pack(">H", idx))
        elif isinstance(value, EnumValue):
            out.append(ord("e"))
            out.extend(struct.pack(">HH", self.cp.add_utf8(value.descriptor), self.cp.add_utf8(value.name)))
        elif isinstance(value, NestedValue):
            out.append(ord("@"))
            self._write_annotation(out, value.annotation)
        elif isinstance(value, ArrayValue):
            out.append(ord("["))
            out.extend(struct.pack(">H", len(value.values)))
            for element in value.values:
                self._write_element_value(out, element)
        else:
            raise TypeError(f"Not an annotation value: {value!r}")

    def _inner_classes(self) -> bytes:
        out = bytearray(struct.pack(">H", len(self.model.inner_classes)))
        for ic in self.model.inner_classes:
            out.extend(struct.pack(
                ">HHHH",
                self.cp.add_class(ic.inner_class),
                self.cp.add_class(ic.outer_class) if ic.outer_class else 0,
                self.cp.add_utf8(ic.inner_name) if ic.inner_name else 0,
                ic.access,
            ))
        return bytes(out)

    def _enclosing_method(self) -> bytes:
        em = self.model.enclosing_method
        nat_idx = 0
        if em.name is not None:
            nat_idx = self.cp.add_name_and_type(em.name, em.descriptor)
        return struct.pack(">HH", self.cp.add_class(em.owner), nat_idx)

    def _bootstrap_methods(self) -> bytes:
        methods = self.cp.bootstrap_methods
        out = bytearray(struct.pack(">H", len(methods)))
        for handle_idx, args in methods:
            out.extend(struct.pack(">HH", handle_idx, len(args)))
            for arg in args:
                out.extend(struct.pack(">H", arg))
        return bytes(out)

    # ==================== CONSTANTS ====================

    def _handle(self, handle: Handle) -> int:
        return self.cp.add_method_handle(handle.tag, handle.owner, handle.name, handle.descriptor,
                                         handle.interface)

    def _constant(self, kind: str, value) -> int:
        """Pool index of a loadable constant of the given kind."""
        if kind == "int":
            return self.cp.add_integer(int(value))
        if kind == "float":
            return self.cp.add_float(value)
        if kind == "long":
            return self.cp.add_long(value)
        if kind == "double":
            return self.cp.add_double(value)
        if kind == "string":
            return self.cp.add_string(value)
        if kind == "reference":
            return self.cp.add_class(value.internal_name)
        if kind == "method-type":
            return self.cp.add_method_type(value.descriptor)
        if kind == "handle":
            return self._handle(value)
        raise ValueError(f"Not a loadable constant kind: {kind}")

    def _ldc_index(self, insn: LdcInsn) -> int:
        value = insn.value
        if insn.opcode == Opcode.LDC2_W:
            return self._constant("double" if isinstance(value, float) else "long", value)
        if isinstance(value, bool) or isinstance(value, int):
            return self._constant("int", value)
        if isinstance(value, float):
            return self._constant("float", value)
        if isinstance(value, str):
            return self._constant("string", value)
        if isinstance(value, Reference):
            return self._constant("reference", value)
        if isinstance(value, MethodType):
            return self._constant("method-type", value)
        if isinstance(value, Handle):
            return self._constant("handle", value)
        raise ValueError(f"Cannot load constant {value!r}")

    # ==================== FIELDS ====================

    def _write_field(self, out: bytearray, fld: FieldModel):
        out.extend(struct.pack(">HHH", fld.access, self.cp.add_utf8(fld.name), self.cp.add_utf8(fld.descriptor)))
        pieces: list[Piece] = []
        if fld.value is not None:
            pieces.append(("ConstantValue", lambda: struct.pack(">H", self._field_constant(fld))))
        if fld.signature is not None:
            pieces.append(("Signature", lambda: struct.pack(">H", self.cp.add_utf8(fld.signature))))
        pieces.extend(self._annotation_pieces(fld.annotations))
        pieces.extend(self._opaque_pieces(fld.attributes))
        self._write_attributes(out, pieces, fld.attribute_order)

    def _field_constant(self, fld: FieldModel) -> int:
        kinds = {"J": "long", "D": "double", "F": "float", "Ljava/lang/String;": "string"}
        kind = kinds.get(fld.descriptor)
        if kind is None:
            kind = "string" if isinstance(fld.value, str) else "int"
        return self._constant(kind, fld.value)

    # ==================== METHODS ====================

    def _write_method(self, out: bytearray, method: MethodModel):
        out.extend(struct.pack(">HHH", method.access, self.cp.add_utf8(method.name),
                               self.cp.add_utf8(method.descriptor)))
        pieces: list[Piece] = []
        if method.code:
            pieces.append(("Code", lambda: self._code(method)))
        if method.exceptions:
            pieces.append(("Exceptions", lambda: self._exceptions(method)))
        if method.signature is not None:
            pieces.append(("Signature", lambda: struct.pack(">H", self.cp.add_utf8(method.signature))))
        pieces.extend(self._annotation_pieces(method.annotations))
        for visible, name, count in ((True, "RuntimeVisibleParameterAnnotations", method.visible_parameter_count),
                                     (False, "RuntimeInvisibleParameterAnnotations",
                                      method.invisible_parameter_count)):
            if count is not None or any(a.visible == visible for p in method.parameters for a in p.annotations):
                pieces.append((name, lambda visible=visible, count=count:
                               self._parameter_annotations(method, visible, count)))
        if method.default is not None:
            pieces.append(("AnnotationDefault", lambda: self._default(method)))
        if (method.parameter_count is not None
                or any(p.name is not None or p.access for p in method.parameters)):
            pieces.append(("MethodParameters", lambda: self._method_parameters(method)))
        pieces.extend(self._opaque_pieces(method.attributes))
        self._write_attributes(out, pieces, method.attribute_order)

    def _exceptions(self, method: MethodModel) -> bytes:
        out = bytearray(struct.pack(">H", len(method.exceptions)))
        for exc in method.exceptions:
            out.extend(struct.pack(">H", self.cp.add_class(exc)))
        return bytes(out)

    def _parameter_count(self, method: MethodModel, count) -> int:
        arity = len(method.parameters)
        if count is None:
            return arity
        if not 0 <= count <= min(arity, 0xFF):
            raise VerificationError(f"Parameter count {count} does not fit {arity} parameter(s)",
                                    f"{self.model.name}.{method.name}{method.descriptor}")
        return count

    def _parameter_annotations(self, method: MethodModel, visible: bool, count) -> bytes:
        """Entries cover the trailing ``count`` parameters."""
        count = self._parameter_count(method, count)
        skip = len(method.parameters) - count
        for param in method.parameters[:skip]:
            if any(a.visible == visible for a in param.annotations):
                raise VerificationError(
                    f"Parameter {param.index} is annotated but only the last {count} parameter(s) can be",
                    f"{self.model.name}.{method.name}{method.descriptor}")
        out = bytearray([count])
        for param in method.parameters[skip:]:
            selected = [a for a in param.annotations if a.visible == visible]
            out.extend(self._annotations(selected))
        return bytes(out)

    def _default(self, method: MethodModel) -> bytes:
        out = bytearray()
        self._write_element_value(out, method.default)
        return bytes(out)

    def _method_parameters(self, method: MethodModel) -> bytes:
        count = self._parameter_count(method, method.parameter_count)
        for param in method.parameters[count:]:
            if param.name is not None or param.access:
                raise VerificationError(
                    f"Parameter {param.index} has a name or flags past the {count} listed parameter(s)",
                    f"{self.model.name}.{method.name}{method.descriptor}")
        out = bytearray([count])
        for param in method.parameters[:count]:
            name_idx = self.cp.add_utf8(param.name) if param.name is not None else 0
            out.extend(struct.pack(">HH", name_idx, param.access))
        return bytes(out)

    # ==================== CODE ====================

    def _code(self, method: MethodModel) -> bytes:
        where = f"{self.model.name}.{method.name}{method.descriptor}"
        body = method.instructions
        self._check_labels(method, where)

        offsets, label_offsets, wide = self._layout(body, where)
        # an inverted conditional jumps over its GOTO_W to the next instruction
        fall_through = [self._next_instruction(body, pos) for pos in sorted(wide)
                        if is_conditional(body[pos].opcode)]
        fall_through = [pos for pos in fall_through if pos is not None]

        has_frames = any(isinstance(i, Frame) for i in body)
        computed = None
        frames = [(pos, insn) for pos, insn in enumerate(body) if isinstance(insn, Frame)]
        stack_maps = self.model.version[0] >= ClassFileVersion.STACK_MAPS
        if self.verify and stack_maps and not has_frames:
            computed, frames = compute_frames(method, self.model.name, fall_through)
        elif self.verify or method.maxs is None:
            computed = compute_maxs(method, self.model.name)
        if self.verify and stack_maps and has_frames:
            for pos in fall_through:
                if not any(isinstance(i, Frame) for i in self._markers_before(body, pos)):
                    raise VerificationError("Widened conditional jump needs a stack map frame after it",
                                            where, pos)
        maxs = method.maxs if method.maxs is not None else computed

        code = bytearray()
        for pos, insn in enumerate(body):
            if not is_marker(insn):
                self._emit(code, insn, offsets[pos], pos in wide, label_offsets, where, pos)
        if len(code) > MAX_CODE_LENGTH:
            raise VerificationError(f"Code is {len(code)} bytes, more than {MAX_CODE_LENGTH}", where)

        out = bytearray(struct.pack(">HHI", maxs.stack, maxs.locals, len(code)))
        out.extend(code)

        # Exception table
        out.extend(struct.pack(">H", len(method.try_catch)))
        for entry in method.try_catch:
            out.extend(struct.pack(
                ">HHHH",
                label_offsets[entry.start],
                label_offsets[entry.end],
                label_offsets[entry.handler],
                self.cp.add_class(entry.type) if entry.type else 0,
            ))

        pieces: list[Piece] = []
        lines = [(offsets[pos], insn.line) for pos, insn in enumerate(body) if isinstance(insn, LineNumber)]
        tables = method.line_tables
        if sorted(i for table in tables for i in table) != list(range(len(lines))):
            tables = (tuple(range(len(lines))),) if lines else ()
        for table in tables:
            entries = [lines[i] for i in table]
            pieces.append(("LineNumberTable", lambda entries=entries: self._line_numbers(entries)))
        if any(v.descriptor is not None for v in method.local_variables):
            pieces.append(("LocalVariableTable", lambda: self._local_variables(method, label_offsets, False)))
        if any(v.signature is not None for v in method.local_variables):
            pieces.append(("LocalVariableTypeTable", lambda: self._local_variables(method, label_offsets, True)))
        if frames:
            pieces.append(("StackMapTable",
                           lambda: self._stack_map(frames, offsets, label_offsets, where)))
        pieces.extend(self._opaque_pieces(method.code_attributes))
        self._write_attributes(out, pieces, method.code_order)
        return bytes(out)

    @staticmethod
    def _next_instruction(body: tuple, pos: int):
        for q in range(pos + 1, len(body)):
            if not is_marker(body[q]):
                return q
        return None

    @staticmethod
    def _markers_before(body: tuple, pos: int) -> list:
        markers = []
        while pos > 0 and is_marker(body[pos - 1]):
            pos -= 1
            markers.append(body[pos])
        return markers

    @staticmethod
    def _check_labels(method: MethodModel, where: str):
        registry = LabelRegistry(where)
        for pos, insn in enumerate(method.instructions):
            if isinstance(insn, LabelMarker):
                registry.define(insn.label)
            for label in targets(insn):
                registry.reference(label, f"{where} instruction {pos}")
            if isinstance(insn, Frame):
                for vt in insn.locals + insn.stack:
                    if vt.tag == VerificationTag.UNINITIALIZED:
                        registry.reference(vt.value, f"{where} frame {pos}")
        for entry in method.try_catch:
            for label in (entry.start, entry.end, entry.handler):
                registry.reference(label, f"{where} try-catch")
        for var in method.local_variables:
            registry.reference(var.start, f"{where} local {var.name}")
            registry.reference(var.end, f"{where} local {var.name}")
        registry.close()

    def _size(self, insn, offset: int, wide: bool) -> int:
        if isinstance(insn, Insn):
            return 1
        if isinstance(insn, IntInsn):
            return 3 if insn.opcode == Opcode.SIPUSH else 2
        if isinstance(insn, VarInsn):
            return 2 if insn.var <= 0xFF else 4
        if isinstance(insn, IincInsn):
            return 3 if insn.var <= 0xFF and -128 <= insn.increment <= 127 else 6
        if isinstance(insn, LdcInsn):
            if insn.opcode == Opcode.LDC and self._ldc_index(insn) <= 0xFF:
                return 2
            return 3
        if isinstance(insn, JumpInsn):
            if insn.opcode in (Opcode.GOTO_W, Opcode.JSR_W):
                return 5
            if wide:
                return 8 if is_conditional(insn.opcode) else 5
            return 3
        if isinstance(insn, TableSwitchInsn):
            return 1 + (-(offset + 1)) % 4 + 12 + 4 * len(insn.labels)
        if isinstance(insn, LookupSwitchInsn):
            return 1 + (-(offset + 1)) % 4 + 8 + 8 * len(insn.labels)
        if isinstance(insn, MethodInsn) and insn.opcode == Opcode.INVOKEINTERFACE:
            return 5
        if isinstance(insn, InvokeDynamicInsn):
            return 5
        if isinstance(insn, MultiANewArrayInsn):
            return 4
        return 3  # type, field and method instructions

    def _layout(self, body: tuple, where: str) -> tuple[list[int], dict, set]:
        """Offsets of every body position, with out-of-range jumps widened until stable."""
        wide: set[int] = set()
        while True:
            offsets = []
            offset = 0
            for insn in body:
                offsets.append(offset)
                if not is_marker(insn):
                    offset += self._size(insn, offset, len(offsets) - 1 in wide)
            offsets.append(offset)
            label_offsets = {insn.label: offsets[pos] for pos, insn in enumerate(body)
                             if isinstance(insn, LabelMarker)}
            grown = False
            for pos, insn in enumerate(body):
                if (isinstance(insn, JumpInsn) and pos not in wide
                        and insn.opcode not in (Opcode.GOTO_W, Opcode.JSR_W)):
                    delta = label_offsets[insn.label] - offsets[pos]
                    if not -0x8000 <= delta <= 0x7FFF:
                        wide.add(pos)
                        grown = True
            if not grown:
                if wide:
                    log.debug("Widened %d jump(s) in %s", len(wide), where)
                return offsets, label_offsets, wide

    def _emit(self, code: bytearray, insn, offset: int, wide: bool, label_offsets: dict,
              where: str, pos: int):
        op = insn.opcode
        try:
            if isinstance(insn, Insn):
                code.append(op)
            elif isinstance(insn, IntInsn):
                fmt = {Opcode.BIPUSH: ">Bb", Opcode.SIPUSH: ">Bh"}.get(op, ">BB")
                code.extend(struct.pack(fmt, op, insn.operand))
            elif isinstance(insn, VarInsn):
                if insn.var <= 0xFF:
                    code.extend(struct.pack(">BB", op, insn.var))
                else:
                    code.extend(struct.pack(">BBH", Opcode.WIDE, op, insn.var))
            elif isinstance(insn, IincInsn):
                if insn.var <= 0xFF and -128 <= insn.increment <= 127:
                    code.extend(struct.pack(">BBb", op, insn.var, insn.increment))
                else:
                    code.extend(struct.pack(">BBHh", Opcode.WIDE, op, insn.var, insn.increment))
            elif isinstance(insn, LdcInsn):
                idx = self._ldc_index(insn)
                if op == Opcode.LDC and idx <= 0xFF:
                    code.extend(struct.pack(">BB", op, idx))
                else:
                    code.extend(struct.pack(">BH", Opcode.LDC_W if op == Opcode.LDC else op, idx))
            elif isinstance(insn, TypeInsn):
                code.extend(struct.pack(">BH", op, self.cp.add_class(insn.type)))
            elif isinstance(insn, FieldInsn):
                code.extend(struct.pack(">BH", op, self.cp.add_fieldref(insn.owner, insn.name, insn.descriptor)))
            elif isinstance(insn, MethodInsn):
                if insn.interface:
                    idx = self.cp.add_interface_methodref(insn.owner, insn.name, insn.descriptor)
                else:
                    idx = self.cp.add_methodref(insn.owner, insn.name, insn.descriptor)
                code.extend(struct.pack(">BH", op, idx))
                if op == Opcode.INVOKEINTERFACE:
                    count = 1 + sum(slot_size(a) for a in argument_types(insn.descriptor))
                    code.extend(struct.pack(">BB", count, 0))
            elif isinstance(insn, InvokeDynamicInsn):
                args = tuple(self._constant(kind, value) for kind, value in insn.arguments)
                bsm = self.cp.add_bootstrap_method(self._handle(insn.bootstrap), args)
                code.extend(struct.pack(">BHH", op, self.cp.add_invoke_dynamic(bsm, insn.name, insn.descriptor), 0))
            elif isinstance(insn, JumpInsn):
                target = label_offsets[insn.label]
                if op in (Opcode.GOTO_W, Opcode.JSR_W):
                    code.extend(struct.pack(">Bi", op, target - offset))
                elif not wide:
                    code.extend(struct.pack(">Bh", op, target - offset))
                elif is_conditional(op):
                    # Jump over a GOTO_W when the inverted condition holds
                    code.extend(struct.pack(">Bh", invert(op), 8))
                    code.extend(struct.pack(">Bi", Opcode.GOTO_W, target - offset - 3))
                else:
                    long_op = Opcode.GOTO_W if op == Opcode.GOTO else Opcode.JSR_W
                    code.extend(struct.pack(">Bi", long_op, target - offset))
            elif isinstance(insn, TableSwitchInsn):
                code.append(op)
                code.extend(bytes((-(offset + 1)) % 4))
                code.extend(struct.pack(">iii", label_offsets[insn.default] - offset, insn.low, insn.high))
                for label in insn.labels:
                    code.extend(struct.pack(">i", label_offsets[label] - offset))
            elif isinstance(insn, LookupSwitchInsn):
                code.append(op)
                code.extend(bytes((-(offset + 1)) % 4))
                code.extend(struct.pack(">ii", label_offsets[insn.default] - offset, len(insn.keys)))
                for key, label in zip(insn.keys, insn.labels):
                    code.extend(struct.pack(">ii", key, label_offsets[label] - offset))
            elif isinstance(insn, MultiANewArrayInsn):
                code.extend(struct.pack(">BHB", op, self.cp.add_class(insn.descriptor), insn.dimensions))
            else:
                raise TypeError(f"Not an instruction: {insn!r}")
        except struct.error as e:
            raise VerificationError(f"Cannot encode {op.name}: {e}", where, pos) from e

    @staticmethod
    def _line_numbers(lines: list[tuple[int, int]]) -> bytes:
        out = bytearray(struct.pack(">H", len(lines)))
        for offset, line in lines:
            out.extend(struct.pack(">HH", offset, line))
        return bytes(out)

    def _local_variables(self, method: MethodModel, label_offsets: dict, types: bool) -> bytes:
        if types:
            variables = [v for v in method.local_variables if v.signature is not None]
        else:
            variables = [v for v in method.local_variables if v.descriptor is not None]
        out = bytearray(struct.pack(">H", len(variables)))
        for var in variables:
            start = label_offsets[var.start]
            out.extend(struct.pack(
                ">HHHHH",
                start,
                label_offsets[var.end] - start,
                self.cp.add_utf8(var.name),
                self.cp.add_utf8(var.signature if types else var.descriptor),
                var.index,
            ))
        return bytes(out)

    # ==================== STACK MAP ====================

    def _verification_type(self, out: bytearray, vt, offsets: list[int], label_offsets: dict):
        out.append(vt.tag)
        if vt.tag == VerificationTag.OBJECT:
            out.extend(struct.pack(">H", self.cp.add_class(vt.value)))
        elif vt.tag == VerificationTag.UNINITIALIZED:
            # A label from a parsed frame, a body position from a computed one
            offset = offsets[vt.value] if isinstance(vt.value, int) else label_offsets[vt.value]
            out.extend(struct.pack(">H", offset))

    def _stack_map(self, frames: list[tuple[int, Frame]], offsets: list[int], label_offsets: dict,
                   where: str) -> bytes:
        out = bytearray(struct.pack(">H", len(frames)))
        previous = -1
        for pos, frame in frames:
            offset = offsets[pos]
            delta = offset - previous - 1
            if delta < 0:
                raise VerificationError(f"Stack map frame at offset {offset} is out of order", where, pos)
            previous = offset
            write_type: Callable = lambda vt: self._verification_type(out, vt, offsets, label_offsets)
            kind = frame.kind
            if kind == FrameKind.SAME and delta <= 63:
                out.append(delta)
            elif kind in (FrameKind.SAME, FrameKind.SAME_EXTENDED):
                out.extend(struct.pack(">BH", 251, delta))
            elif kind == FrameKind.SAME_LOCALS_1 and delta <= 63:
                out.append(64 + delta)
                write_type(frame.stack[0])
            elif kind in (FrameKind.SAME_LOCALS_1, FrameKind.SAME_LOCALS_1_EXTENDED):
                out.extend(struct.pack(">BH", 247, delta))
                write_type(frame.stack[0])
            elif kind == FrameKind.CHOP:
                out.extend(struct.pack(">BH", 251 - frame.chop, delta))
            elif kind == FrameKind.APPEND:
                out.extend(struct.pack(">BH", 251 + len(frame.locals), delta))
                for vt in frame.locals:
                    write_type(vt)
            elif kind == FrameKind.FULL:
                out.extend(struct.pack(">BHH", 255, delta, len(frame.locals)))
                for vt in frame.locals:
                    write_type(vt)
                out.extend(struct.pack(">H", len(frame.stack)))
                for vt in frame.stack:
                    write_type(vt)
            else:
                raise VerificationError(f"Unknown frame kind {kind!r}", where, pos)
        return bytes(out)


def write_class(model: ClassModel, verify: bool = False) -> bytes:
    """Encode a model as class file bytes."""
    return ClassWriter(model, verify).to_bytes()
