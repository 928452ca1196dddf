"""
Dispatcher Tests — blocks, calls and run termination.

Programs are hand-assembled: the entry block sits at offset 0 and helper
blocks at fixed offsets, with zero bytes in between.
"""
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import tracemalloc

import pytest
from printfvm import run_image
from printfvm.config import VMConfig
from printfvm.decoder import UnexpectedEndOfStream
from printfvm.dispatch import (
    CallDepthExceeded, Dispatcher, StepLimitExceeded, StopReason, decode_block,
)
from printfvm.executor import DivisionByZero
from printfvm.operands import Operation
from printfvm.state import AddressAnnotations, MemoryRegion, State


def _image(blocks: dict, size: int = 0x200) -> bytes:
    """Place {offset: code} into a zero-filled image."""
    image = bytearray(size)
    for offset, code in blocks.items():
        image[offset:offset + len(code)] = code
    return bytes(image)


# r1 = sum(1..r0), counting r0 down to zero by calling itself
SUM_LOOP = (
    b'%1.0lS'       # r1 += r0
    b'%0.1llO'      # r0 -= 1
    b'%+256.0C'     # if r0 > 0: call block_100
    b'\x00'
)


def _sum_program(n: int) -> bytes:
    main = f'%0.{n}llM%1.0llM%256C'.encode() + b'\x00'
    return _image({0: main, 0x100: SUM_LOOP})


class TestDecodeBlock:
    def test_stops_at_return(self):
        block = decode_block(b'%1.3llM\x00%2.1llM\x00', 0)
        assert [off for off, _ in block] == [0, 7]
        assert block[-1][1].op is Operation.RETURN

    def test_no_return(self):
        with pytest.raises(UnexpectedEndOfStream):
            decode_block(b'%1.3llM', 0)


class TestRun:
    def test_sum_loop(self):
        state = State.from_image(_sum_program(10), padding=64)
        vm = Dispatcher(state)
        assert vm.run(0) is StopReason.DONE
        assert state.r1 == 55
        assert state.r0 == 0

    def test_deep_call_chain(self):
        """5000 nested calls run without hitting the recursion limit"""
        state = State.from_image(_sum_program(5000), padding=64)
        assert Dispatcher(state).run(0) is StopReason.DONE
        assert state.r1 == 5000 * 5001 // 2

    def test_blocks_are_cached(self):
        state = State.from_image(_sum_program(3), padding=64)
        vm = Dispatcher(state)
        vm.run(0)
        assert set(vm.blocks) == {0, 0x100}

    def test_step_count(self):
        state = State.from_image(_sum_program(2), padding=64)
        vm = Dispatcher(state)
        vm.run(0)
        # main: 4 instructions, loop: 4 instructions x 2 iterations
        assert vm.steps == 12

    def test_timeout(self):
        """%C calls block_0 forever"""
        state = State.from_image(b'%C\x00', padding=64)
        vm = Dispatcher(state, max_steps=100)
        assert vm.run(0) is StopReason.TIMEOUT
        assert vm.steps == 100

    def test_error_raised(self):
        state = State.from_image(b'%0.0llV\x00', padding=64)
        with pytest.raises(DivisionByZero):
            Dispatcher(state).run(0)

    def test_error_reported(self):
        state = State.from_image(b'%0.0llV\x00', padding=64)
        vm = Dispatcher(state)
        assert vm.run(0, raise_errors=False) is StopReason.ERROR
        assert isinstance(vm.last_error, DivisionByZero)

    def test_memory_and_annotations(self):
        """Program writes to a labelled region; hooks see the label"""
        annotations = AddressAnnotations([MemoryRegion('flag output', 0x40, 0x4F)])
        state = State.from_image(b'%-64.1179403647llM\x00', padding=64,
                                 annotations=annotations)
        events = []
        state.subscribe(events.append)
        Dispatcher(state).run(0)
        assert state.read_bytes(0x40, 4) == b'\x7fELF'
        assert events[0].label == '[flag output]'

    def test_image_snapshot(self):
        """Blocks decode from the image as loaded, not from live memory"""
        image = b'%-0.0llM\x00'
        state = State.from_image(image, padding=64)
        vm = Dispatcher(state)
        vm.run(0)
        assert state.read(0) == 0
        assert vm.image[:len(image)] == image


class TestCallStack:
    def test_self_call_keeps_one_frame(self):
        """A block calling itself just before ret never deepens the stack"""
        state = State.from_image(b'%C\x00', padding=64)
        vm = Dispatcher(state, max_steps=100_000, max_depth=2)
        assert vm.run(0) is StopReason.TIMEOUT
        assert vm.steps == 100_000

    def test_self_call_memory_is_flat(self):
        state = State.from_image(b'%C\x00', padding=64)
        vm = Dispatcher(state, max_steps=200_000)
        tracemalloc.start()
        try:
            assert vm.run(0) is StopReason.TIMEOUT
            _, peak = tracemalloc.get_traced_memory()
        finally:
            tracemalloc.stop()
        assert peak < 2_000_000

    def test_nested_calls_within_depth(self):
        """5000 calls that each do work after returning"""
        countdown = (
            b'%0.1llO'      # r0 -= 1
            b'%+256.0C'     # if r0 > 0: call block_100
            b'%1.1llS'      # r1 += 1
            b'\x00'
        )
        image = _image({0: b'%0.5000llM%256C\x00', 0x100: countdown})
        state = State.from_image(image, padding=64)
        assert Dispatcher(state).run(0) is StopReason.DONE
        assert state.r1 == 5000

    def test_depth_limit(self):
        state = State.from_image(b'%C%0.0llM\x00', padding=64)
        with pytest.raises(CallDepthExceeded):
            Dispatcher(state, max_depth=50).run(0)

    def test_depth_limit_reported(self):
        state = State.from_image(b'%C%0.0llM\x00', padding=64)
        vm = Dispatcher(state, max_depth=50)
        assert vm.run(0, raise_errors=False) is StopReason.ERROR
        assert isinstance(vm.last_error, CallDepthExceeded)
        assert vm.steps == 50

    def test_tail_call_into_handler_keeps_caller(self):
        calls = []
        state = State.from_image(b'%77C\x00', padding=64)
        vm = Dispatcher(state, blocks={77: lambda s: calls.append(s.r0)})
        assert vm.run(0) is StopReason.DONE
        assert calls == [0]
        assert vm.steps == 2


class TestHandlers:
    def test_python_handler(self):
        def fake_block(state):
            state.r4 = 99

        state = State.from_image(_sum_program(3), padding=64)
        vm = Dispatcher(state, blocks={0x100: fake_block})
        assert vm.run(0) is StopReason.DONE
        assert state.r4 == 99
        assert state.r1 == 0

    def test_register_block(self):
        state = State.from_image(b'%77C\x00', padding=64)
        vm = Dispatcher(state)
        vm.register(77, decode_block(b'%3.8llM\x00', 0))
        vm.run(0)
        assert state.r3 == 8

    def test_block_without_return(self):
        state = State.from_image(b'%77C%2.1llM\x00', padding=64)
        vm = Dispatcher(state)
        vm.register(77, decode_block(b'%3.8llM\x00', 0)[:-1])
        assert vm.run(0) is StopReason.DONE
        assert (state.r3, state.r2) == (8, 1)


class TestTrace:
    def test_trace_lines(self):
        state = State.from_image(b'%1.3llM\x00', padding=64)
        vm = Dispatcher(state, trace=True)
        vm.run(0)
        assert len(vm.trace_output) == 2
        assert vm.trace_output[0].startswith("0x0000: r1 = 0x3;")
        assert "r1=00000003" in vm.trace_output[0]
        assert "ret" in vm.trace_output[1]

    def test_trace_keeps_elided_returns(self):
        """ret lines skipped by a tail call still appear, innermost first"""
        image = _image({0: b'%256C\x00', 0x100: b'%1.3llM\x00'})
        state = State.from_image(image, padding=64)
        vm = Dispatcher(state, trace=True)
        vm.run(0)
        assert [line[:6] for line in vm.trace_output] == [
            "0x0000", "0x0100", "0x0107", "0x0005"]
        assert vm.trace_output[3].split()[1] == "ret"


class TestRunImage:
    def test_pipeline(self):
        state = run_image(_sum_program(4), 0, config=VMConfig(padding=64))
        assert state.r1 == 10

    def test_timeout_raises(self):
        with pytest.raises(StepLimitExceeded):
            run_image(b'%C\x00', 0, config=VMConfig(padding=64, max_steps=10))
