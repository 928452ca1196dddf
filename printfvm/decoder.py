"""
printf VM — Instruction Decoder

Walks a byte stream and pulls out one conversion-specifier instruction at
a time. The decoder is the single source of truth for the encoding: the
renderer and the executor only ever see Instruction objects.

Grammar (one instruction):

    0x00                                  → RETURN, 1 byte
    '%' flag? digits* ('.' digits* length?)? conversion

  flag:    '-' ABSOLUTE | '+' INDIRECT | '0' ZERO_PAD | none DIRECT
           A '0' directly followed by '.' is NOT a flag: it is the
           width digit of a DIRECT operand.
  length:  'hh' | 'h' | 'll' | 'l'   (longest match first)

Examples:
    %1.3llM    → r1 = 0x3
    %05M       → ZERO_PAD, dest 5, no source
    %0.5M      → DIRECT, dest 0, src 5 (the "0." lookahead)
    %+3.2hhX   → [r3] *= [0x2]
    %-4096.2lS → [0x1000] += r2
    %-4096.2C  → if r2 < 0: call block_1000
"""

from dataclasses import dataclass
from typing import Iterator, Optional, Tuple

from .errors import PrintfVMError
from .operands import (
    CONVERSION_CHARS, CONVERSIONS, FLAG_CHARS, FLAGS, LENGTH_MODIFIERS,
    MARKER, PRECISION_DOT, RETURN_SENTINEL, U32_MAX, ZERO_FLAG,
    DestMode, Operation, SrcMode,
)

__all__ = [
    'Instruction', 'DecodeError', 'UnexpectedEndOfStream',
    'MalformedInstruction', 'decode', 'decode_at', 'iter_decode', 'encode',
]


class DecodeError(PrintfVMError):
    """Raised when a byte stream cannot be decoded."""


class UnexpectedEndOfStream(DecodeError):
    """The stream ended while the grammar still expected bytes."""


class MalformedInstruction(DecodeError):
    """A marker, conversion character or numeric field is invalid."""


# ──────────────────────────────────────────────
# Decoded instruction
# ──────────────────────────────────────────────

@dataclass(frozen=True)
class Instruction:
    dest: int                 # width field: register, address or jump target
    src: int                  # precision field (0 if absent)
    dest_mode: DestMode
    src_mode: SrcMode
    op: Operation

    @classmethod
    def ret(cls) -> 'Instruction':
        """The RETURN sentinel instruction."""
        return cls(0, 0, DestMode.ABSOLUTE, SrcMode.LITERAL, Operation.RETURN)

    def __str__(self):
        from .render import render
        return render(self)


# ──────────────────────────────────────────────
# Decoding
# ──────────────────────────────────────────────

def _byte_at(data, pos: int, start: int, expecting: str) -> int:
    if pos >= len(data):
        raise UnexpectedEndOfStream(f"stream ended, expected {expecting}", pos - start)
    return data[pos]


def _parse_int(data, pos: int, start: int) -> Tuple[int, int]:
    """Parse a run of ASCII digits at pos. No digits yields 0."""
    value = 0
    first = pos
    while pos < len(data) and 0x30 <= data[pos] <= 0x39:
        value = value * 10 + (data[pos] - 0x30)
        pos += 1
        if value > U32_MAX:
            raise MalformedInstruction(
                f"numeric field {bytes(data[first:pos]).decode('ascii')} exceeds 32 bits",
                first - start)
    return value, pos


def decode_at(data, pos: int = 0) -> Tuple[Instruction, int]:
    """Decode one instruction starting at data[pos].

    Returns (instruction, next_pos). Error offsets are relative to pos.
    """
    start = pos
    first = _byte_at(data, pos, start, "instruction")

    if first == RETURN_SENTINEL:
        return Instruction.ret(), pos + 1

    if first != MARKER:
        raise MalformedInstruction(f"expected '%' marker, got byte {first:#04x}", 0)
    pos += 1

    # Flag → destination mode
    flag = _byte_at(data, pos, start, "flag, width or conversion")
    if flag in FLAGS:
        dest_mode = FLAGS[flag]
        pos += 1
    elif flag == ZERO_FLAG:
        if pos + 1 < len(data) and data[pos + 1] == PRECISION_DOT:
            dest_mode = DestMode.DIRECT   # "0." : the zero belongs to the width
        else:
            dest_mode = DestMode.ZERO_PAD
            pos += 1
    else:
        dest_mode = DestMode.DIRECT

    dest, pos = _parse_int(data, pos, start)

    src = 0
    src_mode = SrcMode.ABSENT
    if _byte_at(data, pos, start, "precision or conversion") == PRECISION_DOT:
        src, pos = _parse_int(data, pos + 1, start)
        for text, mode in LENGTH_MODIFIERS:
            if bytes(data[pos:pos + len(text)]) == text:
                src_mode = mode
                pos += len(text)
                break

    conv = _byte_at(data, pos, start, "conversion character")
    op = CONVERSIONS.get(conv)
    if op is None:
        raise MalformedInstruction(f"unknown conversion character {conv:#04x}", pos - start)

    return Instruction(dest, src, dest_mode, src_mode, op), pos + 1


def decode(data) -> Tuple[Instruction, object]:
    """Decode the first instruction in data.

    Returns (instruction, remaining) where remaining is the slice of data
    after the conversion character (or after the RETURN sentinel).
    """
    instr, pos = decode_at(data, 0)
    return instr, data[pos:]


def iter_decode(image, start: int = 0,
                end: Optional[int] = None) -> Iterator[Tuple[int, Instruction, int]]:
    """Decode sequentially, yielding (offset, instruction, size).

    Stops at `end` (exclusive) or the end of the image. Decode errors
    propagate with offsets rebased onto the image.
    """
    if end is None or end > len(image):
        end = len(image)
    pos = start
    while pos < end:
        try:
            instr, nxt = decode_at(image, pos)
        except DecodeError as e:
            raise type(e)(e.message, pos + (e.offset or 0)) from e
        yield pos, instr, nxt - pos
        pos = nxt


# ──────────────────────────────────────────────
# Encoding (inverse of decode, for tests and tiny programs)
# ──────────────────────────────────────────────

def encode(instr: Instruction) -> bytes:
    """Encode an Instruction back to its conversion-specifier bytes."""
    if instr.op is Operation.RETURN:
        return bytes([RETURN_SENTINEL])

    for name in ('dest', 'src'):
        value = getattr(instr, name)
        if not 0 <= value <= U32_MAX:
            raise ValueError(f"{name}={value} does not fit in 32 unsigned bits")

    out = bytearray(b'%')
    out += FLAG_CHARS[instr.dest_mode]
    if instr.dest_mode is DestMode.DIRECT and instr.dest == 0:
        pass   # a bare '0' would read back as the zero-pad flag
    else:
        out += str(instr.dest).encode('ascii')

    if instr.src_mode is not SrcMode.ABSENT or instr.src:
        out += b'.' + str(instr.src).encode('ascii')
        out += instr.src_mode.value.encode('ascii')

    out.append(CONVERSION_CHARS[instr.op])
    return bytes(out)
