"""
printf VM — Pseudo-code Renderer

Formats decoded instructions as operation-level pseudo-code for human
audit. The output is not meant to be parsed back.

    %1.3llM     →  r1 = 0x3;
    %+3.2hhX    →  [r3] *= [0x2];
    %-4096.2hS  →  [0x1000] += [r2];
    %4660C      →  call block_1234;
    %04660.1C   →  if r1 == 0: call block_1234;
    0x00        →  ret

ZERO_PAD destinations render like ABSOLUTE ones; they only differ from
ABSOLUTE as a jump predicate.
"""

from typing import List, Optional

from .decoder import iter_decode
from .errors import PrintfVMError
from .operands import JUMP_PREDICATES, OPERATOR_SYMBOLS, DestMode, Operation, SrcMode


class RenderError(PrintfVMError):
    """Raised for mode combinations that have no meaning."""


def _dest_text(instr) -> str:
    if instr.dest_mode is DestMode.DIRECT:
        return f"r{instr.dest}"
    if instr.dest_mode is DestMode.INDIRECT:
        return f"[r{instr.dest}]"
    return f"[{instr.dest:#x}]"


def _src_text(instr) -> str:
    mode = instr.src_mode
    if mode is SrcMode.LITERAL_INDIRECT:
        return f"[{instr.src:#x}]"
    if mode is SrcMode.REGISTER_INDIRECT:
        return f"[r{instr.src}]"
    if mode is SrcMode.REGISTER_DIRECT:
        return f"r{instr.src}"
    if mode is SrcMode.LITERAL:
        return f"{instr.src:#x}"
    raise RenderError(f"{instr.op.name} has no source operand")


def block_name(target: int) -> str:
    return f"block_{target:x}"


def render(instr) -> str:
    """Render one Instruction as pseudo-code.

    Raises RenderError when a data operation has an ABSENT source.
    """
    if instr.op is Operation.RETURN:
        return "ret"

    if instr.op is Operation.JUMP:
        call = f"call {block_name(instr.dest)};"
        pred = JUMP_PREDICATES[instr.dest_mode]
        if pred is None:
            return call
        return f"if r{instr.src} {pred} 0: {call}"

    return f"{_dest_text(instr)} {OPERATOR_SYMBOLS[instr.op]} {_src_text(instr)};"


def _raw_text(raw: bytes) -> str:
    if raw == b'\x00':
        return '\\0'
    return ''.join(chr(b) if 0x20 <= b < 0x7F else '.' for b in raw)


def render_listing(image, start: int = 0, end: Optional[int] = None) -> List[str]:
    """Disassemble image[start:end] into listing lines.

    Each line is "<offset>:  <raw specifier>  <pseudo-code>". Instructions
    the renderer rejects are listed with a '??' body instead of aborting
    the listing; decode errors still propagate.
    """
    lines = []
    for offset, instr, size in iter_decode(image, start, end):
        raw = _raw_text(bytes(image[offset:offset + size]))
        try:
            text = render(instr)
        except RenderError as e:
            text = f"?? {e}"
        lines.append(f"{offset:#06x}:  {raw:<20}  {text}")
    return lines
