"""
Data-flow analysis of method bodies over verification types.

The analyzer interprets every reachable instruction once per change of its
input state, which yields the operand stack depth (``max_stack``) and, for
class files that need them, the stack map frames at branch targets.
"""

import logging
from typing import Optional

from .errors import DanglingLabel, VerificationError
from .model import (
    OBJECT, FieldInsn, Frame, FrameKind, Handle, IincInsn, Insn, IntInsn, InvokeDynamicInsn, JumpInsn,
    LabelMarker, LdcInsn, LookupSwitchInsn, Maxs, MethodInsn, MethodModel, MultiANewArrayInsn,
    TableSwitchInsn, TypeInsn, VarInsn, VerificationTag, VerificationType, argument_types,
    is_marker, return_type, slot_size, targets,
)
from .literals import MethodType, Reference
from .opcodes import TERMINAL_OPCODES, Opcode

log = logging.getLogger(__name__)


TOP = VerificationType(VerificationTag.TOP)
INTEGER = VerificationType(VerificationTag.INTEGER)
FLOAT = VerificationType(VerificationTag.FLOAT)
DOUBLE = VerificationType(VerificationTag.DOUBLE)
LONG = VerificationType(VerificationTag.LONG)
NULL = VerificationType(VerificationTag.NULL)
UNINITIALIZED_THIS = VerificationType(VerificationTag.UNINITIALIZED_THIS)


def object_type(name: str) -> VerificationType:
    return VerificationType(VerificationTag.OBJECT, name)


def type_of(descriptor: str) -> Optional[VerificationType]:
    """Verification type of a field descriptor, None for void."""
    c = descriptor[0]
    if c in "ZBCSI":
        return INTEGER
    if c == "F":
        return FLOAT
    if c == "J":
        return LONG
    if c == "D":
        return DOUBLE
    if c == "L":
        return object_type(descriptor[1:-1])
    if c == "[":
        return object_type(descriptor)
    return None


def _is_reference(vt: VerificationType) -> bool:
    return vt.tag in (VerificationTag.OBJECT, VerificationTag.NULL)


def _is_wide(vt: VerificationType) -> bool:
    return vt.tag in (VerificationTag.LONG, VerificationTag.DOUBLE)


# Opcodes with a fixed effect: (slots popped, types pushed).
_SIMPLE = {
    Opcode.NOP: (0, ()),
    Opcode.ACONST_NULL: (0, (NULL,)),
    Opcode.LCONST_0: (0, (LONG,)), Opcode.LCONST_1: (0, (LONG,)),
    Opcode.FCONST_0: (0, (FLOAT,)), Opcode.FCONST_1: (0, (FLOAT,)), Opcode.FCONST_2: (0, (FLOAT,)),
    Opcode.DCONST_0: (0, (DOUBLE,)), Opcode.DCONST_1: (0, (DOUBLE,)),
    Opcode.IALOAD: (2, (INTEGER,)), Opcode.LALOAD: (2, (LONG,)), Opcode.FALOAD: (2, (FLOAT,)),
    Opcode.DALOAD: (2, (DOUBLE,)), Opcode.BALOAD: (2, (INTEGER,)), Opcode.CALOAD: (2, (INTEGER,)),
    Opcode.SALOAD: (2, (INTEGER,)),
    Opcode.IASTORE: (3, ()), Opcode.LASTORE: (4, ()), Opcode.FASTORE: (3, ()),
    Opcode.DASTORE: (4, ()), Opcode.AASTORE: (3, ()), Opcode.BASTORE: (3, ()),
    Opcode.CASTORE: (3, ()), Opcode.SASTORE: (3, ()),
    Opcode.POP: (1, ()), Opcode.POP2: (2, ()),
    Opcode.INEG: (1, (INTEGER,)), Opcode.LNEG: (2, (LONG,)),
    Opcode.FNEG: (1, (FLOAT,)), Opcode.DNEG: (2, (DOUBLE,)),
    Opcode.ISHL: (2, (INTEGER,)), Opcode.ISHR: (2, (INTEGER,)), Opcode.IUSHR: (2, (INTEGER,)),
    Opcode.LSHL: (3, (LONG,)), Opcode.LSHR: (3, (LONG,)), Opcode.LUSHR: (3, (LONG,)),
    Opcode.I2L: (1, (LONG,)), Opcode.I2F: (1, (FLOAT,)), Opcode.I2D: (1, (DOUBLE,)),
    Opcode.L2I: (2, (INTEGER,)), Opcode.L2F: (2, (FLOAT,)), Opcode.L2D: (2, (DOUBLE,)),
    Opcode.F2I: (1, (INTEGER,)), Opcode.F2L: (1, (LONG,)), Opcode.F2D: (1, (DOUBLE,)),
    Opcode.D2I: (2, (INTEGER,)), Opcode.D2L: (2, (LONG,)), Opcode.D2F: (2, (FLOAT,)),
    Opcode.I2B: (1, (INTEGER,)), Opcode.I2C: (1, (INTEGER,)), Opcode.I2S: (1, (INTEGER,)),
    Opcode.LCMP: (4, (INTEGER,)), Opcode.FCMPL: (2, (INTEGER,)), Opcode.FCMPG: (2, (INTEGER,)),
    Opcode.DCMPL: (4, (INTEGER,)), Opcode.DCMPG: (4, (INTEGER,)),
    Opcode.IRETURN: (1, ()), Opcode.LRETURN: (2, ()), Opcode.FRETURN: (1, ()),
    Opcode.DRETURN: (2, ()), Opcode.ARETURN: (1, ()), Opcode.RETURN: (0, ()),
    Opcode.ARRAYLENGTH: (1, (INTEGER,)), Opcode.ATHROW: (1, ()),
    Opcode.MONITORENTER: (1, ()), Opcode.MONITOREXIT: (1, ()),
}
for _op in range(Opcode.ICONST_M1, Opcode.ICONST_5 + 1):
    _SIMPLE[Opcode(_op)] = (0, (INTEGER,))
for _base, _vt in ((Opcode.IADD, INTEGER), (Opcode.LADD, LONG), (Opcode.FADD, FLOAT), (Opcode.DADD, DOUBLE)):
    for _step in range(5):  # ADD SUB MUL DIV REM
        _SIMPLE[Opcode(_base + 4 * _step)] = (4 if _is_wide(_vt) else 2, (_vt,))
for _op, _vt in ((Opcode.IAND, INTEGER), (Opcode.IOR, INTEGER), (Opcode.IXOR, INTEGER),
                 (Opcode.LAND, LONG), (Opcode.LOR, LONG), (Opcode.LXOR, LONG)):
    _SIMPLE[_op] = (4 if _vt is LONG else 2, (_vt,))

# Short forms ILOAD_0 .. ASTORE_3 as (base opcode, slot).
_SHORT_VARS = {}
for _base, _first in ((Opcode.ILOAD, Opcode.ILOAD_0), (Opcode.ISTORE, Opcode.ISTORE_0)):
    for _kind in range(5):
        for _slot in range(4):
            _SHORT_VARS[Opcode(_first + 4 * _kind + _slot)] = (Opcode(_base + _kind), _slot)

_LOAD_TYPES = {Opcode.ILOAD: INTEGER, Opcode.LLOAD: LONG, Opcode.FLOAD: FLOAT, Opcode.DLOAD: DOUBLE}
_STORE_SLOTS = {Opcode.ISTORE: 1, Opcode.LSTORE: 2, Opcode.FSTORE: 1, Opcode.DSTORE: 2, Opcode.ASTORE: 1}
_ARRAY_TYPES = {4: "[Z", 5: "[C", 6: "[F", 7: "[D", 8: "[B", 9: "[S", 10: "[I", 11: "[J"}
_BRANCH_POPS = {Opcode.IFNULL: 1, Opcode.IFNONNULL: 1, Opcode.GOTO: 0, Opcode.GOTO_W: 0}


def var_slot(insn) -> Optional[tuple[Opcode, int]]:
    """(normalized opcode, slot) of a local variable access, None otherwise."""
    if isinstance(insn, VarInsn):
        return insn.opcode, insn.var
    if isinstance(insn, IincInsn):
        return Opcode.IINC, insn.var
    if isinstance(insn, Insn) and insn.opcode in _SHORT_VARS:
        return _SHORT_VARS[insn.opcode]
    return None


class State:
    """Locals and operand stack as slot lists; long and double occupy a value slot and a TOP slot."""

    __slots__ = ("locals", "stack")

    def __init__(self, locals: list, stack: list):
        self.locals = locals
        self.stack = stack

    def copy(self) -> "State":
        return State(list(self.locals), list(self.stack))


class Analyzer:
    """Abstract interpreter for one method body."""

    def __init__(self, method: MethodModel, owner: str):
        self.method = method
        self.owner = owner
        self.where = f"{owner}.{method.name}{method.descriptor}"
        # Real instructions as (position in body, instruction)
        self.code: list[tuple[int, object]] = []
        self.label_index: dict = {}
        pending = []
        for pos, insn in enumerate(method.instructions):
            if isinstance(insn, LabelMarker):
                pending.append(insn.label)
            elif not is_marker(insn):
                for label in pending:
                    self.label_index[label] = len(self.code)
                pending = []
                self.code.append((pos, insn))
        for label in pending:
            self.label_index[label] = len(self.code)
        self.states: list[Optional[State]] = [None] * len(self.code)
        self.max_stack = 0
        self.handlers = []
        for entry in method.try_catch:
            start, end, handler = (self._index(l) for l in (entry.start, entry.end, entry.handler))
            self.handlers.append((start, end, handler, object_type(entry.type or "java/lang/Throwable")))

    def _index(self, label) -> int:
        if label not in self.label_index:
            raise DanglingLabel(label.name, self.where)
        return self.label_index[label]

    def _error(self, message: str, index: Optional[int] = None):
        pos = self.code[index][0] if index is not None and index < len(self.code) else None
        return VerificationError(message, self.where, pos)

    # ==================== ENTRY STATE ====================

    def initial_locals(self) -> list:
        locals = []
        if not self.method.is_static():
            if self.method.name == "<init>" and self.owner != OBJECT:
                locals.append(UNINITIALIZED_THIS)
            else:
                locals.append(object_type(self.owner))
        for arg in argument_types(self.method.descriptor):
            vt = type_of(arg)
            locals.append(vt)
            if _is_wide(vt):
                locals.append(TOP)
        return locals

    # ==================== DATA FLOW ====================

    def run(self):
        if not self.code:
            return
        self._merge(0, State(self.initial_locals(), []))
        worklist = [0]
        while worklist:
            index = worklist.pop()
            state = self.states[index]
            for start, end, handler, catch_type in self.handlers:
                if start <= index < end:
                    if self._merge(handler, State(list(state.locals), [catch_type])):
                        worklist.append(handler)
            out = state.copy()
            insn = self.code[index][1]
            self._execute(insn, out, index)
            self.max_stack = max(self.max_stack, len(state.stack), len(out.stack))
            for succ in self._successors(insn, index):
                if succ >= len(self.code):
                    raise self._error("Execution falls off the end of the code", index)
                if self._merge(succ, out):
                    worklist.append(succ)

    def _successors(self, insn, index: int) -> list[int]:
        succs = [self._index(label) for label in targets(insn)]
        if insn.opcode not in TERMINAL_OPCODES:
            succs.append(index + 1)
        return succs

    def _merge(self, index: int, incoming: State) -> bool:
        """Merge a state into an instruction's input; True if it changed."""
        current = self.states[index]
        if current is None:
            self.states[index] = incoming.copy()
            return True
        if len(current.stack) != len(incoming.stack):
            raise self._error(
                f"Inconsistent stack heights {len(current.stack)} and {len(incoming.stack)}"
                f" at join", index)
        changed = False
        for i, (a, b) in enumerate(zip(current.stack, incoming.stack)):
            merged = self._merge_type(a, b)
            if merged is None:
                raise self._error(f"Incompatible stack types at join: {a} and {b}", index)
            if merged != a:
                current.stack[i] = merged
                changed = True
        size = min(len(current.locals), len(incoming.locals))
        if len(current.locals) > size:
            del current.locals[size:]
            changed = True
        for i in range(size):
            a = current.locals[i]
            merged = self._merge_type(a, incoming.locals[i]) or TOP
            if merged != a:
                current.locals[i] = merged
                changed = True
        return changed

    @staticmethod
    def _merge_type(a: VerificationType, b: VerificationType) -> Optional[VerificationType]:
        if a == b:
            return a
        if _is_reference(a) and _is_reference(b):
            if a.tag == VerificationTag.NULL:
                return b
            if b.tag == VerificationTag.NULL:
                return a
            return object_type(OBJECT)
        return None

    # ==================== INTERPRETER ====================

    def _pop(self, state: State, slots: int, index: int) -> list:
        if slots > len(state.stack):
            raise self._error(
                f"Stack underflow: need {slots} slot(s), have {len(state.stack)}", index)
        if slots == 0:
            return []
        popped = state.stack[-slots:]
        del state.stack[-slots:]
        return popped

    @staticmethod
    def _push(state: State, vt: Optional[VerificationType]):
        if vt is None:
            return
        state.stack.append(vt)
        if _is_wide(vt):
            state.stack.append(TOP)

    @staticmethod
    def _store(state: State, var: int, vt: VerificationType):
        size = 2 if _is_wide(vt) else 1
        while len(state.locals) < var + size:
            state.locals.append(TOP)
        if var > 0 and _is_wide(state.locals[var - 1]):
            state.locals[var - 1] = TOP
        if var + size < len(state.locals) and _is_wide(state.locals[var + size - 1]):
            state.locals[var + size] = TOP
        state.locals[var] = vt
        if size == 2:
            state.locals[var + 1] = TOP

    def _execute(self, insn, state: State, index: int):
        op = insn.opcode
        if op in _SIMPLE:
            pops, pushes = _SIMPLE[op]
            self._pop(state, pops, index)
            for vt in pushes:
                self._push(state, vt)
            return

        access = var_slot(insn)
        if access is not None:
            base, var = access
            if base in _LOAD_TYPES:
                self._push(state, _LOAD_TYPES[base])
            elif base == Opcode.ALOAD:
                vt = state.locals[var] if var < len(state.locals) else TOP
                self._push(state, vt if vt != TOP else object_type(OBJECT))
            elif base in _STORE_SLOTS:
                popped = self._pop(state, _STORE_SLOTS[base], index)
                self._store(state, var, popped[0])
            elif base == Opcode.IINC:
                self._store(state, var, INTEGER)
            # RET transfers to a return address; nothing to push
            return

        if op == Opcode.AALOAD:
            array = self._pop(state, 2, index)[0]
            if array.tag == VerificationTag.OBJECT and array.value.startswith("["):
                self._push(state, type_of(array.value[1:]))
            elif array.tag == VerificationTag.NULL:
                self._push(state, NULL)
            else:
                self._push(state, object_type(OBJECT))
        elif op in (Opcode.DUP, Opcode.DUP_X1, Opcode.DUP_X2, Opcode.DUP2, Opcode.DUP2_X1,
                    Opcode.DUP2_X2, Opcode.SWAP):
            self._shuffle(op, state, index)
        elif isinstance(insn, IntInsn):
            if op == Opcode.NEWARRAY:
                self._pop(state, 1, index)
                self._push(state, object_type(_ARRAY_TYPES.get(insn.operand, "[I")))
            else:
                self._push(state, INTEGER)
        elif isinstance(insn, LdcInsn):
            self._push(state, self._constant_type(insn))
        elif isinstance(insn, JumpInsn):
            if op in (Opcode.JSR, Opcode.JSR_W):
                self._push(state, TOP)
            elif op in _BRANCH_POPS:
                self._pop(state, _BRANCH_POPS[op], index)
            elif op <= Opcode.IFLE:
                self._pop(state, 1, index)
            else:
                self._pop(state, 2, index)
        elif isinstance(insn, (TableSwitchInsn, LookupSwitchInsn)):
            self._pop(state, 1, index)
        elif isinstance(insn, FieldInsn):
            size = slot_size(insn.descriptor)
            if op == Opcode.GETSTATIC:
                self._push(state, type_of(insn.descriptor))
            elif op == Opcode.PUTSTATIC:
                self._pop(state, size, index)
            elif op == Opcode.GETFIELD:
                self._pop(state, 1, index)
                self._push(state, type_of(insn.descriptor))
            else:
                self._pop(state, size + 1, index)
        elif isinstance(insn, MethodInsn):
            args = sum(slot_size(a) for a in argument_types(insn.descriptor))
            self._pop(state, args, index)
            if op != Opcode.INVOKESTATIC:
                receiver = self._pop(state, 1, index)[0]
                if op == Opcode.INVOKESPECIAL and insn.name == "<init>":
                    self._initialize(state, receiver)
            self._push(state, type_of(return_type(insn.descriptor)))
        elif isinstance(insn, InvokeDynamicInsn):
            self._pop(state, sum(slot_size(a) for a in argument_types(insn.descriptor)), index)
            self._push(state, type_of(return_type(insn.descriptor)))
        elif isinstance(insn, TypeInsn):
            if op == Opcode.NEW:
                self._push(state, VerificationType(VerificationTag.UNINITIALIZED, index))
            elif op == Opcode.ANEWARRAY:
                self._pop(state, 1, index)
                element = insn.type if insn.type.startswith("[") else f"L{insn.type};"
                self._push(state, object_type("[" + element))
            elif op == Opcode.CHECKCAST:
                self._pop(state, 1, index)
                self._push(state, object_type(insn.type))
            else:
                self._pop(state, 1, index)
                self._push(state, INTEGER)
        elif isinstance(insn, MultiANewArrayInsn):
            self._pop(state, insn.dimensions, index)
            self._push(state, object_type(insn.descriptor))
        else:
            raise self._error(f"Cannot interpret {op.name}", index)

    def _shuffle(self, op: Opcode, state: State, index: int):
        depth = {Opcode.DUP: 1, Opcode.DUP_X1: 2, Opcode.DUP_X2: 3, Opcode.DUP2: 2,
                 Opcode.DUP2_X1: 3, Opcode.DUP2_X2: 4, Opcode.SWAP: 2}[op]
        values = self._pop(state, depth, index)
        if op == Opcode.SWAP:
            values = [values[1], values[0]]
        elif op in (Opcode.DUP, Opcode.DUP_X1, Opcode.DUP_X2):
            values = values[-1:] + values
        else:
            values = values[-2:] + values
        state.stack.extend(values)

    def _initialize(self, state: State, receiver: VerificationType):
        if receiver.tag == VerificationTag.UNINITIALIZED_THIS:
            initialized = object_type(self.owner)
        elif receiver.tag == VerificationTag.UNINITIALIZED:
            initialized = object_type(self.code[receiver.value][1].type)
        else:
            return
        state.locals = [initialized if vt == receiver else vt for vt in state.locals]
        state.stack = [initialized if vt == receiver else vt for vt in state.stack]

    @staticmethod
    def _constant_type(insn: LdcInsn) -> VerificationType:
        value = insn.value
        if insn.opcode == Opcode.LDC2_W:
            return DOUBLE if isinstance(value, float) else LONG
        if isinstance(value, bool) or isinstance(value, int):
            return INTEGER
        if isinstance(value, float):
            return FLOAT
        if isinstance(value, str):
            return object_type("java/lang/String")
        if isinstance(value, Reference):
            return object_type("java/lang/Class")
        if isinstance(value, MethodType):
            return object_type("java/lang/invoke/MethodType")
        if isinstance(value, Handle):
            return object_type("java/lang/invoke/MethodHandle")
        return object_type(OBJECT)

    # ==================== FRAMES ====================

    def frame_points(self, extra=()) -> list[int]:
        """Instruction indices that need a stack map frame; ``extra`` adds body positions."""
        points = set()
        for index, (_, insn) in enumerate(self.code):
            for label in targets(insn):
                points.add(self._index(label))
            if insn.opcode in TERMINAL_OPCODES and index + 1 < len(self.code):
                points.add(index + 1)
        points.update(handler for _, _, handler, _ in self.handlers)
        index_at = {pos: index for index, (pos, _) in enumerate(self.code)}
        points.update(index_at[pos] for pos in extra if pos in index_at)
        return sorted(points)

    def frames(self, extra=()) -> list[tuple[int, Frame]]:
        """Compressed frames as (body position, frame); Uninitialized values are body positions too."""
        for index, (_, insn) in enumerate(self.code):
            if insn.opcode in (Opcode.JSR, Opcode.JSR_W, Opcode.RET):
                raise self._error("Subroutines cannot be described by stack map frames", index)
            if self.states[index] is None:
                raise self._error("Unreachable code cannot be given a stack map frame", index)

        def position(vt: VerificationType) -> VerificationType:
            if vt.tag == VerificationTag.UNINITIALIZED:
                return VerificationType(vt.tag, self.code[vt.value][0])
            return vt

        result = []
        previous = _compact(self.initial_locals())
        for index in self.frame_points(extra):
            state = self.states[index]
            locals = [position(vt) for vt in _compact(state.locals)]
            stack = [position(vt) for vt in _compact(state.stack, trim=False)]
            result.append((self.code[index][0], _compress(previous, locals, stack)))
            previous = locals
        return result


def _compact(slots: list, trim: bool = True) -> list:
    """Drop the TOP halves of long and double values, and trailing TOPs if ``trim``."""
    out = []
    skip = False
    for vt in slots:
        if skip:
            skip = False
            continue
        out.append(vt)
        skip = _is_wide(vt)
    if trim:
        while out and out[-1] == TOP:
            out.pop()
    return out


def _compress(previous: list, locals: list, stack: list) -> Frame:
    if locals == previous:
        if not stack:
            return Frame(FrameKind.SAME)
        if len(stack) == 1:
            return Frame(FrameKind.SAME_LOCALS_1, stack=tuple(stack))
    elif not stack:
        extra = len(locals) - len(previous)
        if 0 < extra <= 3 and locals[:len(previous)] == previous:
            return Frame(FrameKind.APPEND, locals=tuple(locals[len(previous):]))
        if -3 <= extra < 0 and previous[:len(locals)] == locals:
            return Frame(FrameKind.CHOP, chop=-extra)
    return Frame(FrameKind.FULL, locals=tuple(locals), stack=tuple(stack))


def max_locals(method: MethodModel) -> int:
    """Largest local slot touched by the body, at least the argument size."""
    size = sum(slot_size(a) for a in argument_types(method.descriptor))
    if not method.is_static():
        size += 1
    for insn in method.instructions:
        access = var_slot(insn)
        if access is None:
            continue
        base, var = access
        wide = base in (Opcode.LLOAD, Opcode.DLOAD, Opcode.LSTORE, Opcode.DSTORE)
        size = max(size, var + (2 if wide else 1))
    return size


def compute_maxs(method: MethodModel, owner: str) -> Maxs:
    """Compute max_stack and max_locals of a method body."""
    analyzer = Analyzer(method, owner)
    analyzer.run()
    maxs = Maxs(analyzer.max_stack, max_locals(method))
    log.debug("Computed %s for %s", maxs, analyzer.where)
    return maxs


def compute_frames(method: MethodModel, owner: str, extra=()) -> tuple[Maxs, list[tuple[int, Frame]]]:
    """Compute maxs and the stack map frames of a method body, with frames also at ``extra``."""
    analyzer = Analyzer(method, owner)
    analyzer.run()
    return Maxs(analyzer.max_stack, max_locals(method)), analyzer.frames(extra)
