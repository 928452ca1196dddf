"""
Operand Model — addressing modes and operations for the printf VM.

An instruction is spelled like a printf conversion specifier:

    %  [flag]  [width]  [.precision [length]]  conversion
       -+0      dest      src         hh h ll l    C M S O X V N L R E I U

  flag        → DestMode   (how `dest` is interpreted)
  width       → dest       (register index, address, or jump target)
  precision   → src        (register index, address, or literal)
  length      → SrcMode    (how `src` is interpreted)
  conversion  → Operation

A single 0x00 byte in place of the `%` marker is the RETURN sentinel.

Jump predicates:
  JUMP reuses DestMode as its branch condition instead of an addressing
  mode, and `src` names the register compared against zero:

    DIRECT    unconditional
    ABSOLUTE  r[src] <  0
    INDIRECT  r[src] >  0
    ZERO_PAD  r[src] == 0

  This overload is part of the encoding. Do not split it into separate
  predicate modes; the decoder, renderer and executor all depend on the
  mode being the same tag in both readings.
"""

import enum
from typing import Dict, List, Tuple


# ──────────────────────────────────────────────
# Destination addressing modes (flag field)
# ──────────────────────────────────────────────

class DestMode(enum.Enum):
    DIRECT = "direct"       # no flag:  r[dest]
    ABSOLUTE = "absolute"   # '-' flag: mem[dest]
    INDIRECT = "indirect"   # '+' flag: mem[r[dest]]
    ZERO_PAD = "zero_pad"   # '0' flag: mem[dest], same as ABSOLUTE once decoded

    @property
    def is_memory(self) -> bool:
        return self is not DestMode.DIRECT


# ──────────────────────────────────────────────
# Source addressing modes (length modifier)
# ──────────────────────────────────────────────

class SrcMode(enum.Enum):
    LITERAL_INDIRECT = "hh"   # mem[src]
    REGISTER_INDIRECT = "h"   # mem[r[src]]
    REGISTER_DIRECT = "l"     # r[src]
    LITERAL = "ll"            # src
    ABSENT = ""               # no source operand (JUMP only)


# ──────────────────────────────────────────────
# Operations (conversion character)
# ──────────────────────────────────────────────

class Operation(enum.Enum):
    JUMP = "jump"
    MOVE = "move"
    ADD = "add"
    SUB = "sub"
    MUL = "mul"
    DIV = "div"
    MOD = "mod"
    SHIFT_LEFT = "shl"
    SHIFT_RIGHT = "shr"
    XOR = "xor"
    AND = "and"
    OR = "or"
    RETURN = "ret"

    @property
    def is_control(self) -> bool:
        """JUMP and RETURN steer the dispatcher instead of touching data."""
        return self in (Operation.JUMP, Operation.RETURN)

    @property
    def reads_dest(self) -> bool:
        """Read-modify-write ops need the destination's current value."""
        return not self.is_control and self is not Operation.MOVE


# ──────────────────────────────────────────────
# Grammar tables
# ──────────────────────────────────────────────

MARKER = ord('%')
RETURN_SENTINEL = 0x00
PRECISION_DOT = ord('.')

# Flag byte → destination mode. '0' is handled separately by the decoder
# because of the "0." lookahead.
FLAGS: Dict[int, DestMode] = {
    ord('-'): DestMode.ABSOLUTE,
    ord('+'): DestMode.INDIRECT,
}
ZERO_FLAG = ord('0')

# Longest match first: "hh" must win over "h", "ll" over "l".
LENGTH_MODIFIERS: List[Tuple[bytes, SrcMode]] = [
    (b'hh', SrcMode.LITERAL_INDIRECT),
    (b'h',  SrcMode.REGISTER_INDIRECT),
    (b'll', SrcMode.LITERAL),
    (b'l',  SrcMode.REGISTER_DIRECT),
]

CONVERSIONS: Dict[int, Operation] = {
    ord('C'): Operation.JUMP,
    ord('M'): Operation.MOVE,
    ord('S'): Operation.ADD,
    ord('O'): Operation.SUB,
    ord('X'): Operation.MUL,
    ord('V'): Operation.DIV,
    ord('N'): Operation.MOD,
    ord('L'): Operation.SHIFT_LEFT,
    ord('R'): Operation.SHIFT_RIGHT,
    ord('E'): Operation.XOR,
    ord('I'): Operation.AND,
    ord('U'): Operation.OR,
}

# Reverse tables for the encoder
CONVERSION_CHARS: Dict[Operation, int] = {op: ch for ch, op in CONVERSIONS.items()}
FLAG_CHARS: Dict[DestMode, bytes] = {
    DestMode.ABSOLUTE: b'-',
    DestMode.INDIRECT: b'+',
    DestMode.ZERO_PAD: b'0',
    DestMode.DIRECT:   b'',
}

# Pseudo-code operator per data operation
OPERATOR_SYMBOLS: Dict[Operation, str] = {
    Operation.MOVE:        "=",
    Operation.ADD:         "+=",
    Operation.SUB:         "-=",
    Operation.MUL:         "*=",
    Operation.DIV:         "/=",
    Operation.MOD:         "%=",
    Operation.SHIFT_LEFT:  "<<=",
    Operation.SHIFT_RIGHT: ">>=",
    Operation.XOR:         "^=",
    Operation.AND:         "&=",
    Operation.OR:          "|=",
}

# Jump predicate per destination mode (None = unconditional)
JUMP_PREDICATES: Dict[DestMode, str] = {
    DestMode.DIRECT:   None,
    DestMode.ABSOLUTE: "<",
    DestMode.INDIRECT: ">",
    DestMode.ZERO_PAD: "==",
}

# Registers r0..r4
NUM_REGISTERS = 5

U32_MAX = 0xFFFFFFFF
