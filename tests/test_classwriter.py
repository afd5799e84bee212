"""Tests for writing models back to class files."""

import pytest

from classbytes import (
    ClassBytes, annotation_entry, enum_constructor_class, identity_class, line_table, u1, u2,
)
from pyjeo.classreader import read_class
from pyjeo.classwriter import ClassWriter, write_class
from pyjeo.errors import DanglingLabel, DuplicateLabel, VerificationError
from pyjeo.labels import Label
from pyjeo.model import (
    AnnotationModel, ClassModel, ExceptionTableEntry, FieldModel, Frame, FrameKind, IincInsn, Insn,
    JumpInsn, LabelMarker, LdcInsn, Maxs, MethodModel, ParameterModel, VarInsn,
)
from pyjeo.opcodes import Opcode


def make_method(instructions, descriptor="()V", access=0x0009, name="m", **kwargs):
    return MethodModel(access, name, descriptor, instructions=tuple(instructions), **kwargs)


def make_class(*methods, **kwargs):
    return ClassModel("Test", methods=tuple(methods), **kwargs)


class TestRoundTrip:
    def test_foo_is_byte_identical(self, foo_bytes):
        assert write_class(read_class(foo_bytes)) == foo_bytes

    def test_sample_is_byte_identical(self, sample_bytes):
        assert write_class(read_class(sample_bytes)) == sample_bytes

    def test_verify_keeps_existing_frames(self, sample_bytes):
        assert write_class(read_class(sample_bytes), verify=True) == sample_bytes

    def test_writer_object(self, foo_bytes, tmp_path):
        path = tmp_path / "Foo.class"
        ClassWriter(read_class(foo_bytes)).write(path)
        assert path.read_bytes() == foo_bytes

    def test_model_survives_fresh_pool(self, sample_bytes):
        model = read_class(sample_bytes)
        fresh = ClassModel(**{f: getattr(model, f) for f in (
            "name", "access", "version", "signature", "super_name", "interfaces", "fields",
            "methods", "annotations", "source_file", "inner_classes", "enclosing_method",
            "attributes")})
        assert read_class(write_class(fresh)) == model


class TestFromScratch:
    def test_int_foo(self):
        method = make_method([Insn(Opcode.ICONST_1), Insn(Opcode.IRETURN)],
                             descriptor="()I", access=0x0001, name="foo")
        back = read_class(write_class(make_class(method))).find_method("foo")
        assert back.maxs == Maxs(1, 1)
        assert back.instructions == method.instructions

    def test_maxs_are_idempotent(self):
        method = make_method([Insn(Opcode.LCONST_1), VarInsn(Opcode.LSTORE, 2), Insn(Opcode.RETURN)],
                             descriptor="(I)V")
        first = write_class(make_class(method))
        assert read_class(first).find_method("m").maxs == Maxs(2, 4)
        assert write_class(read_class(first)) == first

    def test_explicit_maxs_win(self):
        method = make_method([Insn(Opcode.RETURN)], maxs=Maxs(7, 9))
        assert read_class(write_class(make_class(method))).find_method("m").maxs == Maxs(7, 9)

    def test_abstract_method_has_no_code(self):
        method = MethodModel(0x0401, "run", "()V")
        back = read_class(write_class(make_class(method, access=0x0421))).find_method("run")
        assert back.instructions == ()
        assert back.maxs is None

    def test_field_constants(self):
        fields = (
            FieldModel(0x0019, "F", "F", value=1.5),
            FieldModel(0x0019, "D", "D", value=2.5),
            FieldModel(0x0019, "Z", "Z", value=1),
        )
        back = read_class(write_class(ClassModel("Test", fields=fields)))
        assert back.fields == fields

    def test_finally_entry(self):
        start, end, handler = Label("start"), Label("end"), Label("handler")
        method = make_method([
            LabelMarker(start), Insn(Opcode.NOP), LabelMarker(end), Insn(Opcode.RETURN),
            LabelMarker(handler), Insn(Opcode.ATHROW),
        ], try_catch=(ExceptionTableEntry(start, end, handler),))
        back = read_class(write_class(make_class(method))).find_method("m")
        (entry,) = back.try_catch
        assert entry.type is None
        assert back.maxs == Maxs(1, 0)


class TestEncoding:
    def test_wide_locals(self):
        method = make_method([IincInsn(300, 1000), VarInsn(Opcode.ILOAD, 300), Insn(Opcode.POP),
                              Insn(Opcode.RETURN)])
        data = write_class(make_class(method))
        assert b"\xc4\x84\x01\x2c\x03\xe8" in data
        assert b"\xc4\x15\x01\x2c" in data
        back = read_class(data).find_method("m")
        assert back.instructions == method.instructions
        assert back.maxs == Maxs(1, 301)

    def test_ldc_upgrades_to_ldc_w(self):
        body = []
        for i in range(200):
            body += [LdcInsn(Opcode.LDC, f"s{i}"), Insn(Opcode.POP)]
        body.append(Insn(Opcode.RETURN))
        back = read_class(write_class(make_class(make_method(body)))).find_method("m")
        loads = [insn for insn in back.instructions if isinstance(insn, LdcInsn)]
        assert [insn.value for insn in loads] == [f"s{i}" for i in range(200)]
        assert loads[0].opcode == Opcode.LDC
        assert loads[-1].opcode == Opcode.LDC_W

    def test_long_constant(self):
        method = make_method([LdcInsn(Opcode.LDC2_W, 1 << 40), Insn(Opcode.POP2), Insn(Opcode.RETURN)])
        back = read_class(write_class(make_class(method))).find_method("m")
        assert back.instructions == method.instructions
        assert back.maxs.stack == 2


class TestJumpWidening:
    def test_conditional(self):
        end = Label("end")
        method = make_method([Insn(Opcode.ILOAD_0), JumpInsn(Opcode.IFEQ, end)]
                             + [Insn(Opcode.NOP)] * 40000
                             + [LabelMarker(end), Insn(Opcode.RETURN)],
                             descriptor="(I)V", maxs=Maxs(1, 1))
        body = read_class(write_class(make_class(method))).find_method("m").instructions
        assert body[1] == JumpInsn(Opcode.IFNE, Label("L0"))
        assert body[2] == JumpInsn(Opcode.GOTO_W, Label("L1"))
        assert body[3] == LabelMarker(Label("L0"))
        assert body[-2] == LabelMarker(Label("L1"))

    def test_backward_goto(self):
        top = Label("top")
        method = make_method([LabelMarker(top)] + [Insn(Opcode.NOP)] * 40000
                             + [JumpInsn(Opcode.GOTO, top)], maxs=Maxs(0, 0))
        body = read_class(write_class(make_class(method))).find_method("m").instructions
        assert body[0] == LabelMarker(Label("L0"))
        assert body[-1] == JumpInsn(Opcode.GOTO_W, Label("L0"))

    def test_verify_frames_widened_conditional(self):
        end = Label("end")
        method = make_method([Insn(Opcode.ILOAD_0), JumpInsn(Opcode.IFEQ, end)]
                             + [Insn(Opcode.NOP)] * 40000
                             + [LabelMarker(end), Insn(Opcode.RETURN)],
                             descriptor="(I)V")
        body = read_class(write_class(make_class(method), verify=True)).find_method("m").instructions
        assert body[1:6] == (JumpInsn(Opcode.IFNE, Label("L0")), JumpInsn(Opcode.GOTO_W, Label("L1")),
                             LabelMarker(Label("L0")), Frame(FrameKind.SAME), Insn(Opcode.NOP))
        assert body[-3:] == (LabelMarker(Label("L1")), Frame(FrameKind.SAME_EXTENDED), Insn(Opcode.RETURN))

    def test_verify_rejects_missing_frame_after_widened_conditional(self):
        end = Label("end")
        method = make_method([Insn(Opcode.ILOAD_0), JumpInsn(Opcode.IFEQ, end)]
                             + [Insn(Opcode.NOP)] * 40000
                             + [LabelMarker(end), Frame(FrameKind.SAME), Insn(Opcode.RETURN)],
                             descriptor="(I)V", maxs=Maxs(1, 1))
        with pytest.raises(VerificationError) as info:
            write_class(make_class(method), verify=True)
        assert info.value.index == 2

    def test_short_jumps_stay_short(self):
        end = Label("end")
        method = make_method([JumpInsn(Opcode.GOTO, end), LabelMarker(end), Insn(Opcode.RETURN)])
        data = write_class(make_class(method))
        assert b"\xa7\x00\x03\xb1" in data


class TestErrors:
    def test_stack_underflow(self):
        with pytest.raises(VerificationError) as info:
            write_class(make_class(make_method([Insn(Opcode.POP), Insn(Opcode.RETURN)])))
        assert info.value.method == "Test.m()V"
        assert info.value.index == 0

    def test_falls_off_the_end(self):
        with pytest.raises(VerificationError):
            write_class(make_class(make_method([Insn(Opcode.ICONST_0), Insn(Opcode.POP)])))

    def test_inconsistent_stack_heights(self):
        join = Label("join")
        method = make_method([Insn(Opcode.ILOAD_0), JumpInsn(Opcode.IFEQ, join), Insn(Opcode.ICONST_0),
                              LabelMarker(join), Insn(Opcode.RETURN)], descriptor="(I)V")
        with pytest.raises(VerificationError):
            write_class(make_class(method))

    def test_dangling_label(self):
        method = make_method([JumpInsn(Opcode.GOTO, Label("missing"))], maxs=Maxs(0, 0))
        with pytest.raises(DanglingLabel) as info:
            write_class(make_class(method))
        assert info.value.label == "missing"

    def test_duplicate_label(self):
        label = Label("twice")
        method = make_method([LabelMarker(label), LabelMarker(label), Insn(Opcode.RETURN)])
        with pytest.raises(DuplicateLabel):
            write_class(make_class(method))

    def test_code_too_long(self):
        method = make_method([Insn(Opcode.NOP)] * 70000 + [Insn(Opcode.RETURN)], maxs=Maxs(0, 0))
        with pytest.raises(VerificationError):
            write_class(make_class(method))

    def test_operand_out_of_range(self):
        method = make_method([VarInsn(Opcode.ILOAD, 70000), Insn(Opcode.POP), Insn(Opcode.RETURN)],
                             maxs=Maxs(1, 1))
        with pytest.raises(VerificationError):
            write_class(make_class(method))


class TestStackMapEncoding:
    def test_same_frame_extends(self):
        target = Label("target")
        method = make_method([Insn(Opcode.ILOAD_0), JumpInsn(Opcode.IFEQ, target)]
                             + [Insn(Opcode.NOP)] * 100
                             + [LabelMarker(target), Frame(FrameKind.SAME), Insn(Opcode.RETURN)],
                             descriptor="(I)V", maxs=Maxs(1, 1))
        body = read_class(write_class(make_class(method))).find_method("m").instructions
        frames = [insn for insn in body if isinstance(insn, Frame)]
        assert frames == [Frame(FrameKind.SAME_EXTENDED)]


def _method_parameters_class(entries: bytes, descriptor: str = "(I)V") -> bytes:
    cb = ClassBytes("Named")
    cb.method("m", descriptor, 0x0401, [cb.attribute("MethodParameters", entries)])
    return cb.build()


class TestAttributeRoundTrip:
    def test_trailing_parameter_annotations(self):
        data = enum_constructor_class(lambda cb: cb.attribute(
            "RuntimeVisibleParameterAnnotations", u1(1) + annotation_entry(cb, "Ljavax/annotation/Nonnull;")))
        assert write_class(read_class(data)) == data

    def test_trailing_invisible_parameter_annotations(self):
        data = enum_constructor_class(lambda cb: cb.attribute(
            "RuntimeInvisibleParameterAnnotations", u1(1) + annotation_entry(cb, "Lcom/example/Tag;")))
        assert write_class(read_class(data)) == data

    def test_empty_parameter_annotations(self):
        data = enum_constructor_class(lambda cb: cb.attribute(
            "RuntimeVisibleParameterAnnotations", u1(3) + u2(0) * 3))
        assert write_class(read_class(data)) == data

    def test_unnamed_method_parameter(self):
        data = _method_parameters_class(u1(1) + u2(0) + u2(0))
        assert write_class(read_class(data)) == data

    def test_short_method_parameters(self):
        data = _method_parameters_class(u1(0), descriptor="(II)V")
        assert write_class(read_class(data)) == data

    def test_unsorted_line_numbers(self):
        data = identity_class(line_table((1, 12), (0, 10)))
        assert write_class(read_class(data)) == data

    def test_several_line_tables(self):
        data = identity_class(line_table((1, 12)), line_table((0, 10)))
        assert write_class(read_class(data)) == data

    def test_type_table_alone(self):
        data = identity_class(lambda cb: cb.attribute(
            "LocalVariableTypeTable",
            u2(1) + u2(0) + u2(2) + u2(cb.utf8("t")) + u2(cb.utf8("TT;")) + u2(0)))
        assert write_class(read_class(data)) == data


NONNULL = AnnotationModel("Ljavax/annotation/Nonnull;")


def _abstract(*parameters, descriptor="(II)V", **kwargs):
    method = MethodModel(0x0401, "run", descriptor, parameters=tuple(parameters), **kwargs)
    return make_class(method, access=0x0421)


class TestParameterAttributes:
    def test_annotations_on_every_parameter(self):
        parameters = (ParameterModel(0, "I", (NONNULL,)), ParameterModel(1, "I"))
        back = read_class(write_class(_abstract(*parameters))).find_method("run")
        assert back.parameters == parameters
        assert back.visible_parameter_count is None

    def test_annotation_outside_count(self):
        model = _abstract(ParameterModel(0, "I", (NONNULL,)), ParameterModel(1, "I"),
                          visible_parameter_count=1)
        with pytest.raises(VerificationError) as info:
            write_class(model)
        assert info.value.method == "Test.run(II)V"

    def test_name_past_count(self):
        model = _abstract(ParameterModel(0, "I"), ParameterModel(1, "I", name="b"), parameter_count=1)
        with pytest.raises(VerificationError):
            write_class(model)

    def test_count_above_arity(self):
        with pytest.raises(VerificationError):
            write_class(_abstract(ParameterModel(0, "I"), ParameterModel(1, "I"), parameter_count=3))
