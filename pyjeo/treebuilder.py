"""
Renders a ClassModel as a canonical tree.
"""

import base64
from typing import Optional

from .literals import MethodType, Reference
from .model import (
    AnnotationModel, ArrayValue, Attribute, ClassModel, EnumValue, FieldInsn, FieldModel, Frame,
    Handle, IincInsn, Insn, IntInsn, InvokeDynamicInsn, JumpInsn, LabelMarker, LdcInsn,
    LineNumber, LookupSwitchInsn, MethodInsn, MethodModel, MultiANewArrayInsn, NestedValue,
    ParameterModel, ScalarValue, TableSwitchInsn, TypeInsn, VarInsn, VerificationTag,
)
from .opcodes import Opcode, mnemonic
from .tree import TreeNode, leaf

# Literal kind of each annotation element tag
ELEMENT_KINDS = {
    "B": "int", "C": "int", "I": "int", "S": "int", "Z": "int",
    "J": "long", "F": "float", "D": "double", "s": "string", "c": "string",
}

# Literal kind of a field's constant value by descriptor
VALUE_KINDS = {"J": "long", "F": "float", "D": "double"}


def param_name(descriptor: str, index: int) -> str:
    """Name of a parameter node: its type tag and position."""
    tag = base64.b64encode(descriptor.encode("utf-8")).decode("ascii")
    return f"param-{tag}-{index}"


def opcode_name(opcode: int) -> str:
    return f"{mnemonic(opcode)}-{int(opcode)}"


class TreeBuilder:
    """Builds canonical trees.

    The only state is the counter behind the synthetic ``line`` markers,
    restarted by every ``build`` call, so equal models render equal trees.
    """

    def __init__(self):
        self._line = 0

    def _node(self, base: str, name: Optional[str] = None, children=()) -> TreeNode:
        self._line += 1
        return TreeNode(base=base, name=name, line=self._line, children=tuple(children))

    def _tuple(self, name: Optional[str], children) -> TreeNode:
        return self._node("tuple", name, children)

    def build(self, model: ClassModel) -> TreeNode:
        self._line = 0
        children = [
            self._tuple("version", [leaf(model.version[0], "int"), leaf(model.version[1], "int")]),
            leaf(model.access, "int", "access"),
        ]
        if model.signature is not None:
            children.append(leaf(model.signature, "string", "signature"))
        if model.super_name is None:
            children.append(leaf(None, "null", "supername"))
        else:
            children.append(leaf(model.super_name, "string", "supername"))
        if model.interfaces:
            children.append(self._tuple("interfaces", [leaf(i, "string") for i in model.interfaces]))
        if model.source_file is not None:
            children.append(leaf(model.source_file, "string", "source-file"))
        if model.annotations:
            children.append(self._annotations(model.annotations))
        if model.inner_classes:
            children.append(self._tuple("inner-classes", [
                self._node("inner-class", children=self._optional_leaves(
                    ("inner", ic.inner_class, "string"),
                    ("outer", ic.outer_class, "string"),
                    ("inner-name", ic.inner_name, "string"),
                    ("access", ic.access, "int"),
                ))
                for ic in model.inner_classes
            ]))
        if model.enclosing_method is not None:
            em = model.enclosing_method
            children.append(self._node("enclosing-method", "enclosing-method", self._optional_leaves(
                ("owner", em.owner, "string"),
                ("name", em.name, "string"),
                ("descriptor", em.descriptor, "string"),
            )))
        if model.attributes:
            children.append(self._attributes("attributes", model.attributes))
        children.extend(self._field(f) for f in model.fields)
        children.extend(self._method(m) for m in model.methods)
        return self._node("class", model.name.replace("/", "."), children)

    @staticmethod
    def _optional_leaves(*specs) -> list[TreeNode]:
        return [leaf(value, kind, name) for name, value, kind in specs if value is not None]

    def _attributes(self, name: str, attributes: tuple[Attribute, ...]) -> TreeNode:
        return self._tuple(name, [
            self._node("attribute", attr.name, [leaf(attr.data, "bytes")]) for attr in attributes
        ])

    # ==================== MEMBERS ====================

    def _field(self, fld: FieldModel) -> TreeNode:
        children = [
            leaf(fld.access, "int", "access"),
            leaf(fld.descriptor, "string", "descriptor"),
        ]
        if fld.signature is not None:
            children.append(leaf(fld.signature, "string", "signature"))
        if fld.value is not None:
            kind = VALUE_KINDS.get(fld.descriptor, "string" if isinstance(fld.value, str) else "int")
            children.append(leaf(fld.value, kind, "value"))
        if fld.annotations:
            children.append(self._annotations(fld.annotations))
        if fld.attributes:
            children.append(self._attributes("attributes", fld.attributes))
        return self._node("field", fld.name, children)

    def _method(self, method: MethodModel) -> TreeNode:
        children = [
            leaf(method.access, "int", "access"),
            leaf(method.descriptor, "string", "descriptor"),
        ]
        if method.signature is not None:
            children.append(leaf(method.signature, "string", "signature"))
        if method.exceptions:
            children.append(self._tuple("exceptions", [leaf(e, "string") for e in method.exceptions]))
        if method.parameters:
            children.append(self._tuple("params", [self._param(p) for p in method.parameters]))
        children.extend(self._optional_leaves(
            ("visible-parameter-count", method.visible_parameter_count, "int"),
            ("invisible-parameter-count", method.invisible_parameter_count, "int"),
            ("parameter-count", method.parameter_count, "int"),
        ))
        if method.maxs is not None:
            children.append(self._tuple("maxs", [leaf(method.maxs.stack, "int"), leaf(method.maxs.locals, "int")]))
        if method.code:
            children.append(self._node("seq", "body", [self._instruction(i) for i in method.instructions]))
        if method.try_catch:
            children.append(self._tuple("trycatchblocks", [
                self._node("try-catch-entry", children=[
                    leaf(entry.start, "label"),
                    leaf(entry.end, "label"),
                    leaf(entry.handler, "label"),
                    *([leaf(entry.type, "string")] if entry.type is not None else []),
                ])
                for entry in method.try_catch
            ]))
        if method.local_variables:
            children.append(self._tuple("local-variables", [
                self._node("local-variable", children=self._optional_leaves(
                    ("name", var.name, "string"),
                    ("descriptor", var.descriptor, "string"),
                    ("start", var.start, "label"),
                    ("end", var.end, "label"),
                    ("index", var.index, "int"),
                    ("signature", var.signature, "string"),
                ))
                for var in method.local_variables
            ]))
        if method.annotations:
            children.append(self._annotations(method.annotations))
        if method.default is not None:
            children.append(self._node("annotation-default-value", "annotation-default-value",
                                       [self._element_value(method.default)]))
        if method.attributes:
            children.append(self._attributes("attributes", method.attributes))
        if method.code_attributes:
            children.append(self._attributes("code-attributes", method.code_attributes))
        return self._node("method", method.name, children)

    def _param(self, param: ParameterModel) -> TreeNode:
        children = []
        if param.annotations:
            children.append(self._annotations(param.annotations))
        if param.name is not None:
            children.append(leaf(param.name, "string", "name"))
        if param.access:
            children.append(leaf(param.access, "int", "access"))
        return self._node("param", param_name(param.descriptor, param.index), children)

    # ==================== INSTRUCTIONS ====================

    def _handle(self, handle: Handle) -> TreeNode:
        return self._node("handle", children=[
            leaf(handle.tag, "int"),
            leaf(handle.owner, "string"),
            leaf(handle.name, "string"),
            leaf(handle.descriptor, "string"),
            leaf(handle.interface, "bool"),
        ])

    def _constant(self, kind: str, value) -> TreeNode:
        if kind == "handle":
            return self._handle(value)
        return leaf(value, kind)

    @staticmethod
    def _ldc_kind(insn: LdcInsn) -> str:
        value = insn.value
        if insn.opcode == Opcode.LDC2_W:
            return "double" if isinstance(value, float) else "long"
        if isinstance(value, Handle):
            return "handle"
        if isinstance(value, bool) or isinstance(value, int):
            return "int"
        if isinstance(value, float):
            return "float"
        if isinstance(value, Reference):
            return "reference"
        if isinstance(value, MethodType):
            return "method-type"
        return "string"

    def _instruction(self, insn) -> TreeNode:
        if isinstance(insn, LabelMarker):
            return leaf(insn.label, "label")
        if isinstance(insn, LineNumber):
            return self._node("line-number", children=[leaf(insn.line, "int")])
        if isinstance(insn, Frame):
            return self._frame(insn)
        return self._node("opcode", opcode_name(insn.opcode), self._operands(insn))

    def _operands(self, insn) -> list[TreeNode]:
        if isinstance(insn, Insn):
            return []
        if isinstance(insn, IntInsn):
            return [leaf(insn.operand, "int")]
        if isinstance(insn, VarInsn):
            return [leaf(insn.var, "int")]
        if isinstance(insn, IincInsn):
            return [leaf(insn.var, "int"), leaf(insn.increment, "int")]
        if isinstance(insn, LdcInsn):
            return [self._constant(self._ldc_kind(insn), insn.value)]
        if isinstance(insn, TypeInsn):
            return [leaf(Reference(insn.type), "reference")]
        if isinstance(insn, FieldInsn):
            return [leaf(insn.owner, "string"), leaf(insn.name, "string"), leaf(insn.descriptor, "string")]
        if isinstance(insn, MethodInsn):
            return [leaf(insn.owner, "string"), leaf(insn.name, "string"),
                    leaf(insn.descriptor, "string"), leaf(insn.interface, "bool")]
        if isinstance(insn, InvokeDynamicInsn):
            return [
                leaf(insn.name, "string"),
                leaf(insn.descriptor, "string"),
                self._handle(insn.bootstrap),
                self._tuple("arguments", [self._constant(kind, value) for kind, value in insn.arguments]),
            ]
        if isinstance(insn, JumpInsn):
            return [leaf(insn.label, "label")]
        if isinstance(insn, TableSwitchInsn):
            return [leaf(insn.low, "int"), leaf(insn.high, "int"), leaf(insn.default, "label"),
                    self._tuple("labels", [leaf(label, "label") for label in insn.labels])]
        if isinstance(insn, LookupSwitchInsn):
            return [leaf(insn.default, "label"),
                    self._tuple("keys", [leaf(key, "int") for key in insn.keys]),
                    self._tuple("labels", [leaf(label, "label") for label in insn.labels])]
        if isinstance(insn, MultiANewArrayInsn):
            return [leaf(insn.descriptor, "string"), leaf(insn.dimensions, "int")]
        raise TypeError(f"Not an instruction: {insn!r}")

    def _frame(self, frame: Frame) -> TreeNode:
        children = [
            self._tuple("locals", [self._verification_type(vt) for vt in frame.locals]),
            self._tuple("stack", [self._verification_type(vt) for vt in frame.stack]),
        ]
        if frame.chop:
            children.append(leaf(frame.chop, "int", "chop"))
        return self._node("frame", frame.kind, children)

    def _verification_type(self, vt) -> TreeNode:
        children = []
        if vt.tag == VerificationTag.OBJECT:
            children.append(leaf(vt.value, "string"))
        elif vt.tag == VerificationTag.UNINITIALIZED:
            children.append(leaf(vt.value, "label"))
        return self._node("vtype", VerificationTag.NAMES[vt.tag], children)

    # ==================== ANNOTATIONS ====================

    def _annotations(self, annotations: tuple[AnnotationModel, ...]) -> TreeNode:
        return self._tuple("annotations", [self._annotation(a) for a in annotations])

    def _annotation(self, annotation: AnnotationModel) -> TreeNode:
        children = [
            leaf(annotation.descriptor, "string", "descriptor"),
            leaf(annotation.visible, "bool", "visible"),
        ]
        for name, value in annotation.values:
            children.append(self._node("property", children=[leaf(name, "string"), self._element_value(value)]))
        return self._node("annotation", children=children)

    def _element_value(self, value) -> TreeNode:
        if isinstance(value, ScalarValue):
            return leaf(value.value, ELEMENT_KINDS[value.tag], value.tag)
        if isinstance(value, EnumValue):
            return self._node("enum", children=[
                leaf(value.descriptor, "string", "descriptor"),
                leaf(value.name, "string", "name"),
            ])
        if isinstance(value, NestedValue):
            return self._annotation(value.annotation)
        if isinstance(value, ArrayValue):
            return self._tuple("array", [self._element_value(v) for v in value.values])
        raise TypeError(f"Not an annotation value: {value!r}")


def build_tree(model: ClassModel) -> TreeNode:
    """Render a model as a canonical tree."""
    return TreeBuilder().build(model)
