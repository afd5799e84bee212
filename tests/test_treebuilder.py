"""Tests for rendering models as canonical trees."""

import pytest

from pyjeo.classreader import read_class
from pyjeo.model import ClassModel, FieldModel
from pyjeo.treebuilder import TreeBuilder, build_tree, opcode_name, param_name
from pyjeo.opcodes import Opcode


@pytest.fixture
def foo_tree(foo_bytes):
    return build_tree(read_class(foo_bytes))


@pytest.fixture
def sample_tree(sample_bytes):
    return build_tree(read_class(sample_bytes))


class TestNames:
    def test_opcode_name(self):
        assert opcode_name(Opcode.ICONST_1) == "ICONST_1-4"
        assert opcode_name(Opcode.GOTO_W) == "GOTO_W-200"

    def test_param_name(self):
        assert param_name("I", 0) == "param-SQ==-0"
        assert param_name("Ljava/lang/String;", 2).endswith("-2")


class TestClassTree:
    def test_root(self, foo_tree):
        assert foo_tree.base == "class"
        assert foo_tree.name == "Foo"
        assert [v.value() for v in foo_tree.child("version").children] == [52, 0]
        assert foo_tree.child("access").value() == 0x0021
        assert foo_tree.child("supername").value() == "java/lang/Object"

    def test_dotted_root_name(self, sample_tree):
        assert sample_tree.name == "com.example.Sample"

    def test_method_body(self, foo_tree):
        method = foo_tree.child("foo")
        assert method.base == "method"
        assert method.child("descriptor").value() == "()I"
        assert [v.value() for v in method.child("maxs").children] == [1, 1]
        body = method.child("body")
        assert body.base == "seq"
        assert [c.name for c in body.children] == ["ICONST_1-4", "IRETURN-172"]

    def test_missing_super_is_null(self):
        tree = build_tree(ClassModel("java/lang/Object", super_name=None))
        supername = tree.child("supername")
        assert supername.base == "null"
        assert supername.value() is None

    def test_line_markers(self, sample_tree):
        lines = [n.line for n in sample_tree.walk() if n.line is not None]
        assert len(lines) == len(set(lines))
        assert sample_tree.line == max(lines)
        assert all(n.line is None for n in sample_tree.walk() if n.is_leaf)

    def test_lines_restart_per_build(self, sample_bytes):
        model = read_class(sample_bytes)
        builder = TreeBuilder()
        first = [n.line for n in builder.build(model).walk()]
        second = [n.line for n in builder.build(model).walk()]
        assert first == second


class TestMembers:
    def test_field_values(self, sample_tree):
        assert sample_tree.child("ANSWER").child("value").base == "int"
        assert sample_tree.child("GREETING").child("value").value() == "hi"
        big = sample_tree.child("BIG").child("value")
        assert big.base == "long"
        assert big.value() == 1 << 40

    def test_float_field_value(self):
        tree = build_tree(ClassModel("Test", fields=(FieldModel(0x0019, "F", "F", value=0.5),)))
        assert tree.child("F").child("value").base == "float"

    def test_parameters(self, sample_tree):
        params = sample_tree.child("max").child("params")
        assert [p.name for p in params.children] == ["param-SQ==-0", "param-SQ==-1"]
        assert params.children[0].child("name").value() == "a"

    def test_finally_entry(self, sample_tree):
        (entry,) = sample_tree.child("guarded").child("trycatchblocks").children
        assert entry.base == "try-catch-entry"
        assert [c.base for c in entry.children] == ["label", "label", "label"]

    def test_frame(self, sample_tree):
        body = sample_tree.child("max").child("body")
        (frame,) = body.children_of("frame")
        assert frame.name == "same"
        assert frame.child("locals").children == ()

    def test_invokedynamic(self, sample_tree):
        indy = sample_tree.child("task").child("body").children[0]
        assert indy.name == "INVOKEDYNAMIC-186"
        name, descriptor, handle, arguments = indy.children
        assert name.value() == "run"
        assert handle.base == "handle"
        assert handle.children[0].value() == 6
        (argument,) = arguments.children
        assert argument.base == "method-type"


class TestAnnotations:
    def test_array_of_strings(self, sample_tree):
        (annotation,) = sample_tree.child("annotations").children
        assert annotation.child("descriptor").value() == "Lcom/example/Tags;"
        assert annotation.child("visible").value() is True
        (prop,) = annotation.children_of("property")
        assert prop.children[0].value() == "value"
        array = prop.children[1]
        assert (array.base, array.name) == ("tuple", "array")
        assert [(c.base, c.name, c.value()) for c in array.children] == [
            ("string", "s", "a"), ("string", "s", "b"), ("string", "s", "c"),
        ]

    def test_opaque_attribute(self, sample_tree):
        (custom,) = sample_tree.child("attributes").children
        assert custom.name == "Custom"
        assert custom.children[0].value() == b"\x01\x02\x03"
