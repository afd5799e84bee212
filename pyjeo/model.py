"""
In-memory model of a compiled class.

Every entity is a frozen dataclass holding tuples, so models can be shared
between threads and compared by value. Transformations build new models with
``dataclasses.replace`` instead of mutating existing ones.
"""

from dataclasses import dataclass, field
from typing import Optional, Union

from .classfile import AccessFlags, ClassFileVersion
from .labels import Label
from .literals import MethodType, Reference
from .opcodes import Opcode


OBJECT = "java/lang/Object"
DEFAULT_VERSION = ClassFileVersion.JAVA_8


# ==================== DESCRIPTORS ====================

def split_descriptor(descriptor: str) -> tuple[list[str], str]:
    """Split a method descriptor into argument descriptors and return descriptor."""
    if not descriptor.startswith("("):
        raise ValueError(f"Not a method descriptor: {descriptor}")
    args = []
    i = 1
    while descriptor[i] != ")":
        start = i
        while descriptor[i] == "[":
            i += 1
        if descriptor[i] == "L":
            i = descriptor.index(";", i)
        i += 1
        args.append(descriptor[start:i])
    return args, descriptor[i + 1:]


def argument_types(descriptor: str) -> list[str]:
    return split_descriptor(descriptor)[0]


def return_type(descriptor: str) -> str:
    return split_descriptor(descriptor)[1]


def slot_size(descriptor: str) -> int:
    """Number of local or stack slots a value of this type occupies."""
    if descriptor == "V":
        return 0
    return 2 if descriptor in ("J", "D") else 1


# ==================== ANNOTATIONS ====================

@dataclass(frozen=True)
class ScalarValue:
    """Constant element value; ``tag`` is one of ``BCDFIJSZsc``."""
    tag: str
    value: Union[int, float, bool, str]


@dataclass(frozen=True)
class EnumValue:
    descriptor: str
    name: str


@dataclass(frozen=True)
class NestedValue:
    annotation: "AnnotationModel"


@dataclass(frozen=True)
class ArrayValue:
    values: tuple = ()


AnnotationValue = Union[ScalarValue, EnumValue, NestedValue, ArrayValue]


@dataclass(frozen=True)
class AnnotationModel:
    """An annotation with its ordered (property name, value) pairs."""
    descriptor: str
    visible: bool = True
    values: tuple[tuple[str, AnnotationValue], ...] = ()


# ==================== INSTRUCTIONS ====================

@dataclass(frozen=True)
class Handle:
    """A method handle constant or bootstrap method reference."""
    tag: int
    owner: str
    name: str
    descriptor: str
    interface: bool = False


@dataclass(frozen=True)
class Insn:
    """An instruction without operands."""
    opcode: Opcode


@dataclass(frozen=True)
class IntInsn:
    """BIPUSH, SIPUSH or NEWARRAY with its immediate."""
    opcode: Opcode
    operand: int


@dataclass(frozen=True)
class VarInsn:
    """Load, store or RET of a local variable slot."""
    opcode: Opcode
    var: int


@dataclass(frozen=True)
class IincInsn:
    var: int
    increment: int

    @property
    def opcode(self) -> Opcode:
        return Opcode.IINC


@dataclass(frozen=True)
class LdcInsn:
    """Constant load; an int or float under LDC2_W stands for a long or double."""
    opcode: Opcode
    value: Union[int, float, str, Reference, MethodType, Handle]


@dataclass(frozen=True)
class TypeInsn:
    opcode: Opcode
    type: str


@dataclass(frozen=True)
class FieldInsn:
    opcode: Opcode
    owner: str
    name: str
    descriptor: str


@dataclass(frozen=True)
class MethodInsn:
    opcode: Opcode
    owner: str
    name: str
    descriptor: str
    interface: bool = False


@dataclass(frozen=True)
class InvokeDynamicInsn:
    name: str
    descriptor: str
    bootstrap: Handle
    arguments: tuple = ()

    @property
    def opcode(self) -> Opcode:
        return Opcode.INVOKEDYNAMIC


@dataclass(frozen=True)
class JumpInsn:
    opcode: Opcode
    label: Label


@dataclass(frozen=True)
class TableSwitchInsn:
    low: int
    high: int
    default: Label
    labels: tuple[Label, ...]

    @property
    def opcode(self) -> Opcode:
        return Opcode.TABLESWITCH


@dataclass(frozen=True)
class LookupSwitchInsn:
    default: Label
    keys: tuple[int, ...]
    labels: tuple[Label, ...]

    @property
    def opcode(self) -> Opcode:
        return Opcode.LOOKUPSWITCH


@dataclass(frozen=True)
class MultiANewArrayInsn:
    descriptor: str
    dimensions: int

    @property
    def opcode(self) -> Opcode:
        return Opcode.MULTIANEWARRAY


@dataclass(frozen=True)
class LabelMarker:
    """Defines a label at the position of the next instruction."""
    label: Label


@dataclass(frozen=True)
class LineNumber:
    """Source line of the next instruction."""
    line: int


class VerificationTag:
    TOP = 0
    INTEGER = 1
    FLOAT = 2
    DOUBLE = 3
    LONG = 4
    NULL = 5
    UNINITIALIZED_THIS = 6
    OBJECT = 7
    UNINITIALIZED = 8

    NAMES = ("Top", "Integer", "Float", "Double", "Long", "Null",
             "UninitializedThis", "Object", "Uninitialized")


@dataclass(frozen=True)
class VerificationType:
    """A stack map type; ``value`` is a class name for Object, a label for Uninitialized."""
    tag: int
    value: Union[str, Label, None] = None


class FrameKind:
    SAME = "same"
    SAME_LOCALS_1 = "same_locals_1_stack_item"
    SAME_LOCALS_1_EXTENDED = "same_locals_1_stack_item_extended"
    CHOP = "chop"
    SAME_EXTENDED = "same_extended"
    APPEND = "append"
    FULL = "full"

    ALL = (SAME, SAME_LOCALS_1, SAME_LOCALS_1_EXTENDED, CHOP, SAME_EXTENDED, APPEND, FULL)


@dataclass(frozen=True)
class Frame:
    """A stack map frame as stored in the StackMapTable, before the next instruction.

    ``locals`` holds the appended locals of an append frame and all locals of a
    full frame; ``chop`` counts removed locals of a chop frame.
    """
    kind: str
    locals: tuple[VerificationType, ...] = ()
    stack: tuple[VerificationType, ...] = ()
    chop: int = 0


Instruction = Union[
    Insn, IntInsn, VarInsn, IincInsn, LdcInsn, TypeInsn, FieldInsn, MethodInsn,
    InvokeDynamicInsn, JumpInsn, TableSwitchInsn, LookupSwitchInsn, MultiANewArrayInsn,
    LabelMarker, LineNumber, Frame,
]

MARKERS = (LabelMarker, LineNumber, Frame)


def is_marker(insn) -> bool:
    return isinstance(insn, MARKERS)


def targets(insn) -> tuple[Label, ...]:
    """Labels an instruction may transfer control to."""
    if isinstance(insn, JumpInsn):
        return (insn.label,)
    if isinstance(insn, TableSwitchInsn):
        return (insn.default,) + tuple(insn.labels)
    if isinstance(insn, LookupSwitchInsn):
        return (insn.default,) + tuple(insn.labels)
    return ()


# ==================== MEMBERS ====================

@dataclass(frozen=True)
class Attribute:
    """An attribute kept as raw bytes."""
    name: str
    data: bytes


@dataclass(frozen=True)
class ExceptionTableEntry:
    """Handler for [start, end); ``type`` None catches everything (finally)."""
    start: Label
    end: Label
    handler: Label
    type: Optional[str] = None


@dataclass(frozen=True)
class LocalVariable:
    """A local variable range. ``descriptor`` is None for a type-table-only entry."""
    name: str
    descriptor: Optional[str]
    start: Label
    end: Label
    index: int
    signature: Optional[str] = None


@dataclass(frozen=True)
class Maxs:
    stack: int
    locals: int


@dataclass(frozen=True)
class ParameterModel:
    index: int
    descriptor: str
    annotations: tuple[AnnotationModel, ...] = ()
    name: Optional[str] = None
    access: int = 0


@dataclass(frozen=True)
class FieldModel:
    access: int
    name: str
    descriptor: str
    signature: Optional[str] = None
    value: Union[int, float, str, None] = None
    annotations: tuple[AnnotationModel, ...] = ()
    attributes: tuple[Attribute, ...] = ()
    attribute_order: tuple[str, ...] = field(default=(), compare=False, repr=False)


@dataclass(frozen=True)
class MethodModel:
    access: int
    name: str
    descriptor: str
    signature: Optional[str] = None
    exceptions: tuple[str, ...] = ()
    parameters: tuple[ParameterModel, ...] = ()
    maxs: Optional[Maxs] = None
    instructions: tuple = ()
    try_catch: tuple[ExceptionTableEntry, ...] = ()
    local_variables: tuple[LocalVariable, ...] = ()
    annotations: tuple[AnnotationModel, ...] = ()
    default: Optional[AnnotationValue] = None
    attributes: tuple[Attribute, ...] = ()
    code_attributes: tuple[Attribute, ...] = ()
    # num_parameters of the parameter attributes; None means one entry per parameter
    visible_parameter_count: Optional[int] = None
    invisible_parameter_count: Optional[int] = None
    parameter_count: Optional[int] = None
    attribute_order: tuple[str, ...] = field(default=(), compare=False, repr=False)
    code_order: tuple[str, ...] = field(default=(), compare=False, repr=False)
    # per LineNumberTable attribute, the positions of its entries among the LineNumber markers
    line_tables: tuple[tuple[int, ...], ...] = field(default=(), compare=False, repr=False)

    @property
    def code(self) -> bool:
        """True when the method carries a Code attribute."""
        return bool(self.instructions) or self.maxs is not None

    def labels(self) -> list[Label]:
        """Labels defined in the body, in order."""
        return [i.label for i in self.instructions if isinstance(i, LabelMarker)]

    def is_static(self) -> bool:
        return bool(self.access & AccessFlags.STATIC)

    def is_abstract(self) -> bool:
        return bool(self.access & (AccessFlags.ABSTRACT | AccessFlags.NATIVE))


@dataclass(frozen=True)
class InnerClass:
    inner_class: str
    outer_class: Optional[str]
    inner_name: Optional[str]
    access: int


@dataclass(frozen=True)
class EnclosingMethod:
    owner: str
    name: Optional[str] = None
    descriptor: Optional[str] = None


@dataclass(frozen=True)
class ClassModel:
    name: str
    access: int = 0x0021
    version: tuple[int, int] = DEFAULT_VERSION
    signature: Optional[str] = None
    super_name: Optional[str] = OBJECT
    interfaces: tuple[str, ...] = ()
    fields: tuple[FieldModel, ...] = ()
    methods: tuple[MethodModel, ...] = ()
    annotations: tuple[AnnotationModel, ...] = ()
    source_file: Optional[str] = None
    inner_classes: tuple[InnerClass, ...] = ()
    enclosing_method: Optional[EnclosingMethod] = None
    attributes: tuple[Attribute, ...] = ()
    # Encoding hints from a parsed class file; not part of the class's meaning.
    pool: tuple = field(default=(), compare=False, repr=False)
    bootstrap: tuple = field(default=(), compare=False, repr=False)
    attribute_order: tuple[str, ...] = field(default=(), compare=False, repr=False)

    def __post_init__(self):
        if not self.name:
            raise ValueError("Class name must not be empty")

    def find_method(self, name: str, descriptor: Optional[str] = None) -> MethodModel:
        for m in self.methods:
            if m.name == name and (descriptor is None or m.descriptor == descriptor):
                return m
        raise KeyError(f"{self.name}.{name}{descriptor or ''}")

    def find_field(self, name: str) -> FieldModel:
        for f in self.fields:
            if f.name == name:
                return f
        raise KeyError(f"{self.name}.{name}")
