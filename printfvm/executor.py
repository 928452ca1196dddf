"""
printf VM — Instruction Executor + 32-bit ALU

Applies one decoded Instruction to a State. The executor has no notion of
an instruction pointer: JUMP and RETURN come back to the caller as control
signals, and the caller (see dispatch.py) decides which block runs next.

Execution model for data operations:
  1. Read the source operand per src_mode
  2. Read the destination's current value per dest_mode (not for MOVE)
  3. Combine with the ALU function for the operation
  4. Write the result back per dest_mode

Nothing is written until step 3 succeeds, so a DivisionByZero leaves the
state untouched.

Operand resolution:
  dest  DIRECT    r[dest]
        ABSOLUTE  mem[dest]
        ZERO_PAD  mem[dest]
        INDIRECT  mem[r[dest]]
  src   LITERAL_INDIRECT   mem[src]
        REGISTER_INDIRECT  mem[r[src]]
        REGISTER_DIRECT    r[src]
        LITERAL            src

Arithmetic is signed 32-bit two's complement and wraps silently.
DIV/MOD truncate toward zero. Shift counts use their low 5 bits and
right shifts are arithmetic.
"""

import enum
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from .errors import PrintfVMError
from .operands import NUM_REGISTERS, DestMode, Operation, SrcMode
from .state import State, to_i32


class ExecutionError(PrintfVMError):
    """Raised when an instruction cannot be executed."""


class DivisionByZero(ExecutionError):
    """DIV or MOD with a zero source value."""


class InvalidRegister(ExecutionError):
    """An operand names a register outside r0..r4."""


# ══════════════════════════════════════════════
# Control signals
# ══════════════════════════════════════════════

class Flow(enum.Enum):
    NEXT = 'NEXT'        # continue with the following instruction
    CALL = 'CALL'        # branch taken: run the block at `target`, then continue
    RETURN = 'RETURN'    # end of the current block


@dataclass(frozen=True)
class ExecResult:
    flow: Flow
    target: Optional[int] = None

    @property
    def taken(self) -> bool:
        return self.flow is Flow.CALL


NEXT = ExecResult(Flow.NEXT)
RETURN = ExecResult(Flow.RETURN)


# ══════════════════════════════════════════════
# 32-bit ALU
# ══════════════════════════════════════════════

def _div_trunc(a: int, b: int) -> int:
    q = abs(a) // abs(b)
    return -q if (a < 0) != (b < 0) else q


def alu_div(a: int, b: int) -> int:
    """Signed division truncating toward zero. MIN / -1 wraps to MIN."""
    if b == 0:
        raise DivisionByZero(f"division of {a} by zero")
    return to_i32(_div_trunc(a, b))


def alu_mod(a: int, b: int) -> int:
    """Signed remainder with the sign of the dividend."""
    if b == 0:
        raise DivisionByZero(f"modulo of {a} by zero")
    return to_i32(a - b * _div_trunc(a, b))


ALU: Dict[Operation, Callable[[int, int], int]] = {
    Operation.MOVE:        lambda a, b: b,
    Operation.ADD:         lambda a, b: to_i32(a + b),
    Operation.SUB:         lambda a, b: to_i32(a - b),
    Operation.MUL:         lambda a, b: to_i32(a * b),
    Operation.DIV:         alu_div,
    Operation.MOD:         alu_mod,
    Operation.SHIFT_LEFT:  lambda a, b: to_i32(a << (b & 31)),
    Operation.SHIFT_RIGHT: lambda a, b: a >> (b & 31),
    Operation.XOR:         lambda a, b: to_i32(a ^ b),
    Operation.AND:         lambda a, b: to_i32(a & b),
    Operation.OR:          lambda a, b: to_i32(a | b),
}


# ══════════════════════════════════════════════
# Operand access
# ══════════════════════════════════════════════

def _check_reg(index: int) -> int:
    if not 0 <= index < NUM_REGISTERS:
        raise InvalidRegister(f"register r{index} does not exist")
    return index


def _reg(state: State, index: int) -> int:
    return state.get_reg(_check_reg(index))


def _dest_address(instr, state: State) -> int:
    if instr.dest_mode is DestMode.INDIRECT:
        return _reg(state, instr.dest)
    return instr.dest   # ABSOLUTE and ZERO_PAD


def read_source(instr, state: State) -> int:
    """Resolve the source operand value."""
    mode = instr.src_mode
    if mode is SrcMode.LITERAL:
        return to_i32(instr.src)
    if mode is SrcMode.REGISTER_DIRECT:
        return _reg(state, instr.src)
    if mode is SrcMode.REGISTER_INDIRECT:
        return state.read(_reg(state, instr.src))
    if mode is SrcMode.LITERAL_INDIRECT:
        return state.read(instr.src)
    raise ExecutionError(f"{instr.op.name} requires a source operand")


def read_dest(instr, state: State) -> int:
    if instr.dest_mode is DestMode.DIRECT:
        return _reg(state, instr.dest)
    return state.read(_dest_address(instr, state))


def write_dest(instr, state: State, value: int):
    if instr.dest_mode is DestMode.DIRECT:
        state.set_reg(_check_reg(instr.dest), value)
    else:
        state.store(_dest_address(instr, state), value)


# ══════════════════════════════════════════════
# Execution
# ══════════════════════════════════════════════

def branch_taken(instr, state: State) -> bool:
    """Evaluate a JUMP's predicate (DestMode reused as a condition)."""
    mode = instr.dest_mode
    if mode is DestMode.DIRECT:
        return True
    value = _reg(state, instr.src)
    if mode is DestMode.ZERO_PAD:
        return value == 0
    if mode is DestMode.INDIRECT:
        return value > 0
    return value < 0   # ABSOLUTE


def execute(instr, state: State) -> ExecResult:
    """Execute one instruction against state.

    Returns an ExecResult control signal:
      RETURN          → Flow.RETURN
      JUMP taken      → Flow.CALL with target = instr.dest
      anything else   → Flow.NEXT
    """
    op = instr.op
    if op is Operation.RETURN:
        return RETURN

    if op is Operation.JUMP:
        if branch_taken(instr, state):
            return ExecResult(Flow.CALL, instr.dest)
        return NEXT

    src = read_source(instr, state)
    current = read_dest(instr, state) if op.reads_dest else 0
    result = ALU[op](current, src)
    write_dest(instr, state, result)
    return NEXT
