"""Tests for reading class files into the model."""

import struct

import pytest

from classbytes import (
    ClassBytes, annotation_entry, enum_constructor_class, identity_class, line_table, u1, u2,
)
from pyjeo.classfile import ClassFileVersion
from pyjeo.classreader import ClassReader, read_class, read_class_file
from pyjeo.errors import MalformedClassError
from pyjeo.labels import Label
from pyjeo.literals import MethodType
from pyjeo.model import (
    ArrayValue, Attribute, ExceptionTableEntry, Frame, FrameKind, Handle, Insn, InvokeDynamicInsn,
    JumpInsn, LabelMarker, LineNumber, LocalVariable, Maxs, ParameterModel, ScalarValue,
    VerificationTag, VerificationType,
)
from pyjeo.opcodes import Opcode


class TestFoo:
    def test_header(self, foo_bytes):
        model = read_class(foo_bytes)
        assert model.name == "Foo"
        assert model.super_name == "java/lang/Object"
        assert model.version == (52, 0)
        assert model.access == 0x0021

    def test_method(self, foo_bytes):
        method = read_class(foo_bytes).find_method("foo")
        assert method.descriptor == "()I"
        assert method.maxs == Maxs(1, 1)
        assert method.instructions == (Insn(Opcode.ICONST_1), Insn(Opcode.IRETURN))
        assert method.try_catch == ()

    def test_reader_object(self, foo_bytes):
        assert ClassReader(foo_bytes).read() == read_class(foo_bytes)

    def test_read_file(self, foo_bytes, tmp_path):
        path = tmp_path / "Foo.class"
        path.write_bytes(foo_bytes)
        assert read_class_file(path) == read_class(foo_bytes)


class TestSample:
    @pytest.fixture
    def model(self, sample_bytes):
        return read_class(sample_bytes)

    def test_fields(self, model):
        assert model.find_field("ANSWER").value == 42
        assert model.find_field("GREETING").value == "hi"
        assert model.find_field("BIG").value == 1 << 40

    def test_markers_in_order(self, model):
        body = model.find_method("max").instructions
        target, start, end = Label("L0"), Label("L1"), Label("L2")
        assert body[0] == LabelMarker(start)
        assert body[1] == LineNumber(10)
        assert body[2] == Insn(Opcode.ILOAD_0)
        assert body[4] == JumpInsn(Opcode.IF_ICMPLT, target)
        assert body[7:11] == (LabelMarker(target), LineNumber(12), Frame(FrameKind.SAME),
                              Insn(Opcode.ILOAD_1))
        assert body[-1] == LabelMarker(end)

    def test_local_variables(self, model):
        method = model.find_method("max")
        assert method.local_variables == (
            LocalVariable("a", "I", Label("L1"), Label("L2"), 0),
            LocalVariable("b", "I", Label("L1"), Label("L2"), 1),
        )

    def test_parameters(self, model):
        assert model.find_method("max").parameters == (
            ParameterModel(0, "I", name="a"),
            ParameterModel(1, "I", name="b"),
        )

    def test_finally_handler(self, model):
        method = model.find_method("guarded")
        assert method.try_catch == (ExceptionTableEntry(Label("L0"), Label("L1"), Label("L2"), None),)
        assert method.exceptions == ("java/io/IOException",)
        frame = next(i for i in method.instructions if isinstance(i, Frame))
        assert frame == Frame(
            FrameKind.SAME_LOCALS_1,
            stack=(VerificationType(VerificationTag.OBJECT, "java/lang/Throwable"),))

    def test_invokedynamic(self, model):
        insn = model.find_method("task").instructions[0]
        assert isinstance(insn, InvokeDynamicInsn)
        assert insn.name == "run"
        assert insn.bootstrap == Handle(6, "java/lang/invoke/LambdaMetafactory", "metafactory",
                                        insn.bootstrap.descriptor)
        assert insn.arguments == (("method-type", MethodType("()V")),)

    def test_class_attributes(self, model):
        assert model.source_file == "Sample.java"
        (annotation,) = model.annotations
        assert annotation.descriptor == "Lcom/example/Tags;"
        assert annotation.visible
        assert annotation.values == (
            ("value", ArrayValue((ScalarValue("s", "a"), ScalarValue("s", "b"), ScalarValue("s", "c")))),
        )
        assert model.attributes == (Attribute("Custom", b"\x01\x02\x03"),)
        assert model.attribute_order == ("SourceFile", "RuntimeVisibleAnnotations", "Custom",
                                         "BootstrapMethods")


def _class_with_code(code: bytes, max_stack: int = 1, max_locals: int = 1) -> bytes:
    cb = ClassBytes("Bad")
    cb.method("m", "()V", 0x0009, [cb.code(code, max_stack, max_locals)])
    return cb.build()


class TestMalformed:
    def test_bad_magic(self):
        with pytest.raises(MalformedClassError) as info:
            read_class(b"\x00" * 16)
        assert info.value.offset == 0

    def test_empty(self):
        with pytest.raises(MalformedClassError):
            read_class(b"")

    def test_truncated(self, foo_bytes):
        with pytest.raises(MalformedClassError):
            read_class(foo_bytes[:-1])

    def test_trailing_bytes(self, foo_bytes):
        with pytest.raises(MalformedClassError):
            read_class(foo_bytes + b"\x00")

    def test_unsupported_version(self):
        cb = ClassBytes("Future", version=(70, 0))
        with pytest.raises(MalformedClassError):
            read_class(cb.build())

    def test_oldest_version(self):
        cb = ClassBytes("Old", version=ClassFileVersion.JAVA_1_1)
        assert read_class(cb.build()).version == ClassFileVersion.JAVA_1_1

    def test_unknown_pool_tag(self):
        data = struct.pack(">IHH", 0xCAFEBABE, 0, 52) + u2(2) + b"\x02"
        with pytest.raises(MalformedClassError):
            read_class(data)

    def test_unknown_opcode(self):
        with pytest.raises(MalformedClassError):
            read_class(_class_with_code(b"\xcb"))

    def test_branch_outside_code(self):
        with pytest.raises(MalformedClassError):
            read_class(_class_with_code(b"\xa7\x00\x64\xb1"))

    def test_branch_into_instruction(self):
        # goto +1 lands inside the goto itself
        with pytest.raises(MalformedClassError):
            read_class(_class_with_code(b"\xa7\x00\x01\xb1"))

    def test_attribute_length_mismatch(self):
        cb = ClassBytes("Bad")
        cb.attributes.append(cb.attribute("SourceFile", u2(cb.utf8("Bad.java")) + b"\x00"))
        with pytest.raises(MalformedClassError):
            read_class(cb.build())

    def test_wrong_pool_entry_kind(self):
        cb = ClassBytes("Bad")
        cb.attributes.append(cb.attribute("SourceFile", u2(cb.integer(5))))
        with pytest.raises(MalformedClassError):
            read_class(cb.build())


class TestParameterAttributes:
    def test_annotations_cover_trailing_parameters(self):
        data = enum_constructor_class(lambda cb: cb.attribute(
            "RuntimeVisibleParameterAnnotations", u1(1) + annotation_entry(cb, "Ljavax/annotation/Nonnull;")))
        method = read_class(data).find_method("<init>")
        assert [p.annotations for p in method.parameters[:2]] == [(), ()]
        (annotation,) = method.parameters[2].annotations
        assert annotation.descriptor == "Ljavax/annotation/Nonnull;"
        assert annotation.visible
        assert method.visible_parameter_count == 1
        assert method.invisible_parameter_count is None

    def test_invisible_annotations_cover_trailing_parameters(self):
        data = enum_constructor_class(lambda cb: cb.attribute(
            "RuntimeInvisibleParameterAnnotations", u1(1) + annotation_entry(cb, "Lcom/example/Tag;")))
        method = read_class(data).find_method("<init>")
        (annotation,) = method.parameters[2].annotations
        assert not annotation.visible
        assert method.invisible_parameter_count == 1

    def test_empty_annotation_lists_are_kept(self):
        data = enum_constructor_class(lambda cb: cb.attribute(
            "RuntimeVisibleParameterAnnotations", u1(3) + u2(0) * 3))
        method = read_class(data).find_method("<init>")
        assert method.visible_parameter_count == 3
        assert all(p.annotations == () for p in method.parameters)

    def test_full_count_is_implied(self, sample_bytes):
        assert read_class(sample_bytes).find_method("max").parameter_count is None

    def test_too_many_annotation_entries(self):
        data = enum_constructor_class(lambda cb: cb.attribute(
            "RuntimeVisibleParameterAnnotations", u1(4) + u2(0) * 4))
        with pytest.raises(MalformedClassError):
            read_class(data)

    def test_unnamed_parameter_entry(self):
        cb = ClassBytes("Named")
        cb.method("m", "(I)V", 0x0401, [cb.attribute("MethodParameters", u1(1) + u2(0) + u2(0))])
        method = read_class(cb.build()).find_method("m")
        assert method.parameters == (ParameterModel(0, "I"),)
        assert method.parameter_count == 1

    def test_fewer_parameter_entries(self):
        cb = ClassBytes("Named")
        cb.method("m", "(II)V", 0x0401, [
            cb.attribute("MethodParameters", u1(1) + u2(cb.utf8("x")) + u2(0x0010))])
        method = read_class(cb.build()).find_method("m")
        assert method.parameters == (ParameterModel(0, "I", name="x", access=0x0010), ParameterModel(1, "I"))
        assert method.parameter_count == 1

    def test_too_many_parameter_entries(self):
        cb = ClassBytes("Named")
        cb.method("m", "()V", 0x0401, [cb.attribute("MethodParameters", u1(1) + u2(0) + u2(0))])
        with pytest.raises(MalformedClassError):
            read_class(cb.build())


class TestCodeTables:
    def test_unsorted_line_numbers(self):
        method = read_class(identity_class(line_table((1, 12), (0, 10)))).find_method("m")
        assert method.instructions == (LineNumber(10), Insn(Opcode.ILOAD_0), LineNumber(12),
                                       Insn(Opcode.IRETURN))
        assert method.line_tables == ((1, 0),)

    def test_several_line_tables(self):
        method = read_class(identity_class(line_table((0, 10)), line_table((1, 12)))).find_method("m")
        assert method.line_tables == ((0,), (1,))
        assert method.code_order == ("LineNumberTable", "LineNumberTable")

    def test_type_table_without_variable_table(self):
        data = identity_class(lambda cb: cb.attribute(
            "LocalVariableTypeTable",
            u2(1) + u2(0) + u2(2) + u2(cb.utf8("t")) + u2(cb.utf8("TT;")) + u2(0)))
        method = read_class(data).find_method("m")
        assert method.local_variables == (LocalVariable("t", None, Label("L0"), Label("L1"), 0, "TT;"),)


class TestClassHeader:
    def test_interfaces_before_bootstrap_methods(self):
        cb = ClassBytes("Task")
        cb.interfaces.extend(["java/lang/Runnable", "java/io/Serializable"])
        metafactory = cb.methodref("java/lang/invoke/LambdaMetafactory", "metafactory", "()V")
        cb.bootstrap.append((cb.method_handle(6, metafactory), []))
        indy = cb.invoke_dynamic(0, "run", "()Ljava/lang/Runnable;")
        cb.method("task", "()Ljava/lang/Runnable;", 0x0009, [
            cb.code(bytes([0xBA]) + u2(indy) + bytes([0x00, 0x00, 0xB0]), 1, 0),
        ])
        model = read_class(cb.build())
        assert model.interfaces == ("java/lang/Runnable", "java/io/Serializable")
        assert model.find_method("task").instructions[0].bootstrap.name == "metafactory"

    def test_newest_version(self):
        cb = ClassBytes("New", version=ClassFileVersion.JAVA_21)
        assert read_class(cb.build()).version == ClassFileVersion.JAVA_21
