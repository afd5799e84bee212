"""
Rebuilds a ClassModel from a canonical tree.

Metadata children are located by name, so their order does not matter;
instruction order is the order of the children of the ``body`` sequence.
"""

import base64
import binascii
from typing import Optional, Union

from .errors import FormatError, MissingElementError
from .labels import Label, LabelRegistry
from .model import (
    DEFAULT_VERSION, OBJECT, AnnotationModel, ArrayValue, Attribute, ClassModel, EnclosingMethod, EnumValue,
    ExceptionTableEntry, FieldInsn, FieldModel, Frame, FrameKind, Handle, IincInsn, InnerClass,
    Insn, IntInsn, InvokeDynamicInsn, JumpInsn, LabelMarker, LdcInsn, LineNumber, LocalVariable,
    LookupSwitchInsn, Maxs, MethodInsn, MethodModel, MultiANewArrayInsn, NestedValue,
    ParameterModel, ScalarValue, TableSwitchInsn, TypeInsn, VarInsn, VerificationTag,
    VerificationType,
)
from .opcodes import (
    FIELD_OPCODES, INT_OPCODES, JUMP_OPCODES, LDC_OPCODES, METHOD_OPCODES, PREFIX_OPCODES,
    TYPE_OPCODES, VAR_OPCODES, Opcode,
)
from .tree import TreeNode, loads
from .treebuilder import ELEMENT_KINDS

MEMBERS = ("field", "method")


class TreeParser:
    """Parses canonical trees into models."""

    def __init__(self):
        self._class = ""
        self._path: list[str] = []
        self._labels: Optional[LabelRegistry] = None

    # ==================== HELPERS ====================

    def _where(self) -> str:
        return "/".join(self._path)

    def _meta(self, node: TreeNode, name: str) -> Optional[TreeNode]:
        """Named metadata child, skipping member nodes that may share the name."""
        for child in node.children:
            if child.name == name and child.base not in MEMBERS:
                return child
        return None

    def _require(self, node: TreeNode, name: str, entity: str) -> TreeNode:
        child = self._meta(node, name)
        if child is None:
            raise MissingElementError(name, entity)
        return child

    def _value(self, node: TreeNode, *kinds: str):
        """Decode a leaf, checking its kind when ``kinds`` are given."""
        try:
            if not node.is_leaf:
                raise FormatError(f"Expected a leaf, got '{node.base}' node")
            if kinds and node.base not in kinds:
                raise FormatError(f"Expected {'/'.join(kinds)} leaf, got '{node.base}'")
            return node.value()
        except FormatError as e:
            if e.path is not None:
                raise
            label = node.name or node.base
            raise FormatError(str(e), f"{self._where()}/{label}") from e

    def _optional(self, node: TreeNode, name: str, *kinds: str):
        child = self._meta(node, name)
        return None if child is None else self._value(child, *kinds)

    def _operand(self, node: TreeNode, index: int, entity: str) -> TreeNode:
        if index >= len(node.children):
            raise MissingElementError(f"operand {index}", entity)
        return node.children[index]

    def _label(self, node: TreeNode, where: str) -> Label:
        label = self._labels.resolve(self._value(node, "label").name)
        self._labels.reference(label, where)
        return label

    def _tuple(self, node: TreeNode, name: str) -> tuple[TreeNode, ...]:
        child = self._meta(node, name)
        return () if child is None else child.children

    # ==================== CLASS ====================

    def parse(self, root: TreeNode) -> ClassModel:
        if root.base != "class":
            raise FormatError(f"Root node must be a class, got '{root.base}'")
        if not root.name:
            raise MissingElementError("name", "class")
        name = root.name.replace(".", "/")
        entity = f"class {name}"
        self._class = name
        self._path = [entity]

        version = DEFAULT_VERSION
        version_node = self._meta(root, "version")
        if version_node is not None:
            if len(version_node.children) != 2:
                raise FormatError("Version needs a major and a minor number", f"{entity}/version")
            version = tuple(self._value(v, "int") for v in version_node.children)
        access = self._value(self._require(root, "access", entity), "int")

        super_name = OBJECT
        super_node = self._meta(root, "supername")
        if super_node is not None:
            super_name = self._value(super_node, "string", "null")

        enclosing = None
        em = self._meta(root, "enclosing-method")
        if em is not None:
            enclosing = EnclosingMethod(
                self._value(self._require(em, "owner", "enclosing-method"), "string"),
                self._optional(em, "name", "string"),
                self._optional(em, "descriptor", "string"),
            )

        inner_classes = []
        for ic in self._tuple(root, "inner-classes"):
            inner_classes.append(InnerClass(
                self._value(self._require(ic, "inner", "inner-class"), "string"),
                self._optional(ic, "outer", "string"),
                self._optional(ic, "inner-name", "string"),
                self._value(self._require(ic, "access", "inner-class"), "int"),
            ))

        fields = []
        methods = []
        for child in root.children:
            if child.base == "field":
                fields.append(self._field(child))
            elif child.base == "method":
                methods.append(self._method(child))

        return ClassModel(
            name=name,
            access=access,
            version=version,
            signature=self._optional(root, "signature", "string"),
            super_name=super_name,
            interfaces=tuple(self._value(i, "string") for i in self._tuple(root, "interfaces")),
            fields=tuple(fields),
            methods=tuple(methods),
            annotations=self._annotations(root),
            source_file=self._optional(root, "source-file", "string"),
            inner_classes=tuple(inner_classes),
            enclosing_method=enclosing,
            attributes=self._attributes(root, "attributes"),
        )

    def _attributes(self, node: TreeNode, name: str) -> tuple[Attribute, ...]:
        attributes = []
        for attr in self._tuple(node, name):
            if not attr.name or not attr.children:
                raise MissingElementError("name and data", f"{self._where()}/{name}")
            attributes.append(Attribute(attr.name, self._value(attr.children[0], "bytes")))
        return tuple(attributes)

    # ==================== MEMBERS ====================

    def _field(self, node: TreeNode) -> FieldModel:
        if not node.name:
            raise MissingElementError("name", "field")
        entity = f"field {node.name}"
        self._path.append(entity)
        try:
            return FieldModel(
                access=self._value(self._require(node, "access", entity), "int"),
                name=node.name,
                descriptor=self._value(self._require(node, "descriptor", entity), "string"),
                signature=self._optional(node, "signature", "string"),
                value=self._optional(node, "value", "int", "long", "float", "double", "string"),
                annotations=self._annotations(node),
                attributes=self._attributes(node, "attributes"),
            )
        finally:
            self._path.pop()

    def _method(self, node: TreeNode) -> MethodModel:
        if not node.name:
            raise MissingElementError("name", "method")
        entity = f"method {node.name}"
        self._path.append(entity)
        try:
            access = self._value(self._require(node, "access", entity), "int")
            descriptor = self._value(self._require(node, "descriptor", entity), "string")
            where = f"{self._class}.{node.name}{descriptor}"
            self._labels = LabelRegistry(where)

            maxs = None
            maxs_node = self._meta(node, "maxs")
            if maxs_node is not None:
                if len(maxs_node.children) != 2:
                    raise FormatError("Maxs need a stack and a locals size", f"{self._where()}/maxs")
                maxs = Maxs(*(self._value(v, "int") for v in maxs_node.children))

            instructions = ()
            body = self._meta(node, "body")
            if body is not None:
                instructions = self._body(body, where)

            try_catch = []
            for entry in self._tuple(node, "trycatchblocks"):
                labels = [c for c in entry.children if c.base == "label"]
                if len(labels) != 3:
                    raise MissingElementError("start, end and handler labels", f"{where} try-catch-entry")
                types = [c for c in entry.children if c.base == "string"]
                try_catch.append(ExceptionTableEntry(
                    *(self._label(label, f"{where} try-catch-entry") for label in labels),
                    self._value(types[0], "string") if types else None,
                ))

            local_variables = []
            for var in self._tuple(node, "local-variables"):
                var_name = self._value(self._require(var, "name", "local-variable"), "string")
                var_descriptor = self._optional(var, "descriptor", "string")
                if var_descriptor is None and self._meta(var, "signature") is None:
                    raise MissingElementError("descriptor", f"local {var_name}")
                local_variables.append(LocalVariable(
                    var_name,
                    var_descriptor,
                    self._label(self._require(var, "start", f"local {var_name}"), f"{where} local {var_name}"),
                    self._label(self._require(var, "end", f"local {var_name}"), f"{where} local {var_name}"),
                    self._value(self._require(var, "index", f"local {var_name}"), "int"),
                    self._optional(var, "signature", "string"),
                ))
            self._labels.close()

            default = None
            default_node = self._meta(node, "annotation-default-value")
            if default_node is not None:
                if not default_node.children:
                    raise MissingElementError("value", f"{entity} annotation-default-value")
                default = self._element_value(default_node.children[0])

            return MethodModel(
                access=access,
                name=node.name,
                descriptor=descriptor,
                signature=self._optional(node, "signature", "string"),
                exceptions=tuple(self._value(e, "string") for e in self._tuple(node, "exceptions")),
                parameters=tuple(self._param(p) for p in self._tuple(node, "params")),
                maxs=maxs,
                instructions=instructions,
                try_catch=tuple(try_catch),
                local_variables=tuple(local_variables),
                annotations=self._annotations(node),
                default=default,
                attributes=self._attributes(node, "attributes"),
                code_attributes=self._attributes(node, "code-attributes"),
                visible_parameter_count=self._optional(node, "visible-parameter-count", "int"),
                invisible_parameter_count=self._optional(node, "invisible-parameter-count", "int"),
                parameter_count=self._optional(node, "parameter-count", "int"),
            )
        finally:
            self._labels = None
            self._path.pop()

    def _param(self, node: TreeNode) -> ParameterModel:
        parts = (node.name or "").split("-")
        if node.base != "param" or len(parts) != 3 or parts[0] != "param" or not parts[2].isdigit():
            raise FormatError(f"Bad parameter node '{node.name}'", self._where())
        try:
            descriptor = base64.b64decode(parts[1], validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as e:
            raise FormatError(f"Bad parameter type tag '{parts[1]}'", self._where()) from e
        return ParameterModel(
            index=int(parts[2]),
            descriptor=descriptor,
            annotations=self._annotations(node),
            name=self._optional(node, "name", "string"),
            access=self._optional(node, "access", "int") or 0,
        )

    # ==================== INSTRUCTIONS ====================

    def _body(self, body: TreeNode, where: str) -> tuple:
        instructions = []
        for index, child in enumerate(body.children):
            self._path.append(f"body[{index}]")
            try:
                instructions.append(self._instruction(child, f"{where} instruction {index}"))
            finally:
                self._path.pop()
        return tuple(instructions)

    def _instruction(self, node: TreeNode, where: str):
        if node.base == "label":
            label = self._labels.resolve(self._value(node, "label").name)
            self._labels.define(label)
            return LabelMarker(label)
        if node.base == "line-number":
            return LineNumber(self._value(self._operand(node, 0, where), "int"))
        if node.base == "frame":
            return self._frame(node, where)
        if node.base != "opcode":
            raise FormatError(f"Unexpected '{node.base}' node in a sequence", self._where())

        parts = (node.name or "").split("-")
        try:
            op = Opcode(int(parts[1]))
        except (IndexError, ValueError):
            raise FormatError(f"Bad opcode name '{node.name}'", self._where()) from None
        if op in PREFIX_OPCODES:
            raise FormatError(f"{op.name} is an encoding prefix, not an instruction", self._where())

        def operand(index: int, *kinds: str):
            return self._value(self._operand(node, index, where), *kinds)

        if op == Opcode.IINC:
            return IincInsn(operand(0, "int"), operand(1, "int"))
        if op in INT_OPCODES:
            return IntInsn(op, operand(0, "int"))
        if op in VAR_OPCODES:
            return VarInsn(op, operand(0, "int"))
        if op in LDC_OPCODES:
            value = self._operand(node, 0, where)
            if value.base == "handle":
                return LdcInsn(op, self._handle(value, where))
            kind = ("long", "double") if op == Opcode.LDC2_W else \
                ("int", "float", "string", "reference", "method-type")
            return LdcInsn(op, self._value(value, *kind))
        if op in TYPE_OPCODES:
            return TypeInsn(op, operand(0, "reference").internal_name)
        if op in FIELD_OPCODES:
            return FieldInsn(op, operand(0, "string"), operand(1, "string"), operand(2, "string"))
        if op in METHOD_OPCODES:
            return MethodInsn(op, operand(0, "string"), operand(1, "string"), operand(2, "string"),
                              operand(3, "bool"))
        if op == Opcode.INVOKEDYNAMIC:
            arguments = []
            for arg in self._operand(node, 3, where).children:
                if arg.base == "handle":
                    arguments.append(("handle", self._handle(arg, where)))
                else:
                    arguments.append((arg.base, self._value(
                        arg, "int", "float", "long", "double", "string", "reference", "method-type")))
            return InvokeDynamicInsn(operand(0, "string"), operand(1, "string"),
                                     self._handle(self._operand(node, 2, where), where), tuple(arguments))
        if op in JUMP_OPCODES:
            return JumpInsn(op, self._label(self._operand(node, 0, where), where))
        if op == Opcode.TABLESWITCH:
            default = self._label(self._operand(node, 2, where), where)
            labels = tuple(self._label(c, where) for c in self._operand(node, 3, where).children)
            return TableSwitchInsn(operand(0, "int"), operand(1, "int"), default, labels)
        if op == Opcode.LOOKUPSWITCH:
            default = self._label(self._operand(node, 0, where), where)
            keys = tuple(self._value(c, "int") for c in self._operand(node, 1, where).children)
            labels = tuple(self._label(c, where) for c in self._operand(node, 2, where).children)
            if len(keys) != len(labels):
                raise FormatError("lookupswitch needs one label per key", self._where())
            return LookupSwitchInsn(default, keys, labels)
        if op == Opcode.MULTIANEWARRAY:
            return MultiANewArrayInsn(operand(0, "string"), operand(1, "int"))
        return Insn(op)

    def _handle(self, node: TreeNode, where: str) -> Handle:
        if node.base != "handle":
            raise FormatError(f"Expected a handle, got '{node.base}'", self._where())

        def part(index: int, kind: str):
            return self._value(self._operand(node, index, f"{where} handle"), kind)

        return Handle(part(0, "int"), part(1, "string"), part(2, "string"), part(3, "string"), part(4, "bool"))

    def _frame(self, node: TreeNode, where: str) -> Frame:
        if node.name not in FrameKind.ALL:
            raise FormatError(f"Unknown frame kind '{node.name}'", self._where())
        return Frame(
            node.name,
            tuple(self._verification_type(vt, where) for vt in self._tuple(node, "locals")),
            tuple(self._verification_type(vt, where) for vt in self._tuple(node, "stack")),
            self._optional(node, "chop", "int") or 0,
        )

    def _verification_type(self, node: TreeNode, where: str) -> VerificationType:
        if node.name not in VerificationTag.NAMES:
            raise FormatError(f"Unknown verification type '{node.name}'", self._where())
        tag = VerificationTag.NAMES.index(node.name)
        if tag == VerificationTag.OBJECT:
            return VerificationType(tag, self._value(self._operand(node, 0, where), "string"))
        if tag == VerificationTag.UNINITIALIZED:
            return VerificationType(tag, self._label(self._operand(node, 0, where), where))
        return VerificationType(tag)

    # ==================== ANNOTATIONS ====================

    def _annotations(self, node: TreeNode) -> tuple[AnnotationModel, ...]:
        return tuple(self._annotation(a) for a in self._tuple(node, "annotations"))

    def _annotation(self, node: TreeNode) -> AnnotationModel:
        if node.base != "annotation":
            raise FormatError(f"Expected an annotation, got '{node.base}'", self._where())
        descriptor = self._value(self._require(node, "descriptor", "annotation"), "string")
        values = []
        for prop in node.children_of("property"):
            if len(prop.children) != 2:
                raise MissingElementError("name and value", f"annotation {descriptor} property")
            values.append((self._value(prop.children[0], "string"), self._element_value(prop.children[1])))
        return AnnotationModel(
            descriptor,
            self._value(self._require(node, "visible", f"annotation {descriptor}"), "bool"),
            tuple(values),
        )

    def _element_value(self, node: TreeNode) -> Union[ScalarValue, EnumValue, NestedValue, ArrayValue]:
        if node.base == "annotation":
            return NestedValue(self._annotation(node))
        if node.base == "enum":
            return EnumValue(
                self._value(self._require(node, "descriptor", "enum"), "string"),
                self._value(self._require(node, "name", "enum"), "string"),
            )
        if node.base == "tuple":
            return ArrayValue(tuple(self._element_value(v) for v in node.children))
        if node.is_leaf and node.name and len(node.name) == 1 and node.name in "BCDFIJSZsc":
            return ScalarValue(node.name, self._value(node, ELEMENT_KINDS[node.name]))
        raise FormatError(f"Unknown annotation value node '{node.base}'", self._where())


def parse_tree(tree: Union[TreeNode, str]) -> ClassModel:
    """Rebuild a model from a tree or its text form."""
    if isinstance(tree, str):
        tree = loads(tree)
    return TreeParser().parse(tree)
