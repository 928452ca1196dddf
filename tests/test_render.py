"""
Renderer Tests — pseudo-code text for each operand mode and operation.
"""
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest
from printfvm import disassemble
from printfvm.decoder import Instruction, decode
from printfvm.operands import DestMode, Operation, SrcMode
from printfvm.render import RenderError, render, render_listing


def _r(text: bytes) -> str:
    return render(decode(text)[0])


class TestDataOperations:
    @pytest.mark.parametrize("text,expected", [
        (b'%1.3llM',     "r1 = 0x3;"),
        (b'%+3.2hhX',    "[r3] *= [0x2];"),
        (b'%-4096.2hS',  "[0x1000] += [r2];"),
        (b'%05.1lO',     "[0x5] -= r1;"),
        (b'%0.1lS',      "r0 += r1;"),
        (b'%2.255llI',   "r2 &= 0xff;"),
    ])
    def test_operand_text(self, text, expected):
        assert _r(text) == expected

    @pytest.mark.parametrize("char,symbol", [
        ('M', '='), ('S', '+='), ('O', '-='), ('X', '*='), ('V', '/='),
        ('N', '%='), ('L', '<<='), ('R', '>>='), ('E', '^='), ('I', '&='),
        ('U', '|='),
    ])
    def test_operator_symbols(self, char, symbol):
        assert _r(f'%0.1ll{char}'.encode()) == f"r0 {symbol} 0x1;"

    def test_zero_pad_renders_like_absolute(self):
        assert _r(b'%016.1llM') == _r(b'%-16.1llM') == "[0x10] = 0x1;"

    def test_absent_source_rejected(self):
        """%1.2M has no length modifier, so MOVE has nothing to read"""
        with pytest.raises(RenderError):
            _r(b'%1.2M')


class TestControl:
    def test_unconditional_jump(self):
        assert _r(b'%4660C') == "call block_1234;"

    @pytest.mark.parametrize("text,expected", [
        (b'%04660.1C',  "if r1 == 0: call block_1234;"),
        (b'%-16.2C',    "if r2 < 0: call block_10;"),
        (b'%+16.3C',    "if r3 > 0: call block_10;"),
    ])
    def test_conditional_jump(self, text, expected):
        assert _r(text) == expected

    def test_return(self):
        assert _r(b'\x00') == "ret"

    def test_str_uses_render(self):
        instr = Instruction(1, 3, DestMode.DIRECT, SrcMode.LITERAL, Operation.MOVE)
        assert str(instr) == "r1 = 0x3;"


class TestListing:
    IMAGE = b'%1.3llM%4660C\x00'

    def test_lines(self):
        lines = render_listing(self.IMAGE)
        assert len(lines) == 3
        assert lines[0].startswith("0x0000:  %1.3llM")
        assert lines[0].endswith("r1 = 0x3;")
        assert lines[1].startswith("0x0007:  %4660C")
        assert lines[1].endswith("call block_1234;")
        assert lines[2].startswith("0x000d:  \\0")
        assert lines[2].endswith("ret")

    def test_unrenderable_instruction_listed(self):
        lines = render_listing(b'%1.2M\x00')
        assert "??" in lines[0]
        assert lines[1].endswith("ret")

    def test_disassemble_joins_lines(self):
        assert disassemble(self.IMAGE, 7).splitlines()[0].endswith("call block_1234;")
