"""
printf VM — Block Dispatcher

The executor only reports control signals. This module owns the mapping
from JUMP targets to basic blocks and drives execution:

  1. Look up the block for the target address (decoded once from the
     image and cached, or a Python callable registered as an override)
  2. Execute its instructions in order
  3. On Flow.CALL, run the target block, then resume after the jump
  4. On Flow.RETURN, go back to the caller's block
  5. Stop when the entry block returns or max_steps is exceeded

Calls are tracked with an explicit frame stack, so deep call chains in
the target program do not hit Python's recursion limit. A call that is
the last thing before its block's `ret` replaces the caller's frame, so
blocks that loop by calling themselves run in constant space. Genuinely
nested calls are capped at max_depth.

Termination reasons:
  - DONE:     entry block returned
  - TIMEOUT:  max_steps exceeded
  - ERROR:    a decode/execution error, or max_depth exceeded
              (only when raise_errors=False)
"""

import logging
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple, Union

from .decoder import Instruction, UnexpectedEndOfStream, iter_decode
from .errors import PrintfVMError
from .executor import Flow, execute
from .operands import Operation
from .render import block_name, render
from .state import State

logger = logging.getLogger(__name__)

DEFAULT_MAX_STEPS = 10_000_000
DEFAULT_MAX_DEPTH = 100_000

RET = Instruction.ret()

# A decoded block: ((offset, instruction), ...) ending in RETURN
Block = Tuple[Tuple[int, Instruction], ...]
BlockHandler = Callable[[State], None]


class StopReason(Enum):
    DONE = 'DONE'
    TIMEOUT = 'TIMEOUT'
    ERROR = 'ERROR'


class StepLimitExceeded(PrintfVMError):
    """Raised inside the run loop when max_steps is reached."""


class CallDepthExceeded(PrintfVMError):
    """Raised when nested calls exceed max_depth frames."""


def decode_block(image, offset: int) -> Block:
    """Decode instructions from offset up to and including the next RETURN."""
    instrs = []
    for pos, instr, _size in iter_decode(image, offset):
        instrs.append((pos, instr))
        if instr.op is Operation.RETURN:
            return tuple(instrs)
    raise UnexpectedEndOfStream(
        f"{block_name(offset)} runs off the end of the image without ret", len(image))


class Dispatcher:
    """Runs decoded blocks against a State.

    Usage:
        state = State.from_image(image)
        vm = Dispatcher(state)
        vm.run(entry=0xc8)
        print(state.display_regs())

    `image` defaults to a snapshot of state.mem taken at construction;
    blocks are decoded from that snapshot, not from live memory.
    """

    def __init__(self, state: State, image: Optional[bytes] = None,
                 blocks: Optional[Dict[int, Union[Block, BlockHandler]]] = None,
                 max_steps: int = DEFAULT_MAX_STEPS, trace: bool = False,
                 max_depth: int = DEFAULT_MAX_DEPTH):
        self.state = state
        self.image = bytes(state.mem) if image is None else bytes(image)
        self.blocks: Dict[int, Union[Block, BlockHandler]] = dict(blocks or {})
        self.max_steps = max_steps
        self.max_depth = max_depth
        self.steps = 0
        self.trace = trace
        self.trace_output: List[str] = []
        self.last_error: Optional[Exception] = None

    # ══════════════════════════════════════════════
    # Block table
    # ══════════════════════════════════════════════

    def register(self, target: int, handler: Union[Block, BlockHandler]):
        """Install a decoded block or a Python callable for a target."""
        self.blocks[target] = handler

    def block(self, target: int) -> Union[Block, BlockHandler]:
        entry = self.blocks.get(target)
        if entry is None:
            entry = decode_block(self.image, target)
            self.blocks[target] = entry
            logger.debug(f"Decoded {block_name(target)}: {len(entry)} instructions")
        return entry

    # ══════════════════════════════════════════════
    # Execution
    # ══════════════════════════════════════════════

    def call(self, target: int):
        """Run the block at target until it returns.

        A frame is [block, index, elided] where `elided` holds run-length
        [offset, count] pairs of caller `ret`s dropped by tail calls. They
        are still stepped and traced when the frame finishes, so step
        counts match an unoptimised run.
        """
        frames: List[List] = []
        self._enter(frames, target)

        while frames:
            frame = frames[-1]
            block, index, elided = frame
            if index >= len(block):
                # registered block without a trailing ret
                frames.pop()
                self._unwind(elided)
                continue
            offset, instr = block[index]
            frame[1] = index + 1

            self._tick(offset)
            result = execute(instr, self.state)
            if self.trace:
                self._trace(offset, instr)

            if result.flow is Flow.RETURN:
                frames.pop()
                self._unwind(elided)
            elif result.flow is Flow.CALL:
                self._enter(frames, result.target)

    def _enter(self, frames: List[List], target: int):
        """Push a frame for target. Python handlers run immediately.

        When the caller's next instruction is its `ret`, the caller frame is
        replaced instead of kept, so self-calling loops run in constant space.
        """
        entry = self.block(target)
        if callable(entry):
            logger.debug(f"Calling handler for {block_name(target)}")
            entry(self.state)
            return

        elided = []
        if frames:
            block, index, caller_elided = frames[-1]
            if index < len(block) and block[index][1].op is Operation.RETURN:
                frames.pop()
                elided = caller_elided
                ret_offset = block[index][0]
                if elided and elided[-1][0] == ret_offset:
                    elided[-1][1] += 1
                else:
                    elided.append([ret_offset, 1])

        if len(frames) >= self.max_depth:
            raise CallDepthExceeded(
                f"call to {block_name(target)} exceeds depth {self.max_depth}")
        frames.append([entry, 0, elided])

    def _unwind(self, elided: List[List]):
        """Step the `ret`s skipped by tail calls, innermost first."""
        for offset, count in reversed(elided):
            for _ in range(count):
                self._tick(offset)
                if self.trace:
                    self._trace(offset, RET)

    def _tick(self, offset: int):
        if self.steps >= self.max_steps:
            raise StepLimitExceeded(f"exceeded {self.max_steps} steps", offset)
        self.steps += 1

    def _trace(self, offset: int, instr: Instruction):
        self.trace_output.append(
            f"{offset:#06x}: {render(instr):32s} {self.state.display_regs()}")

    def run(self, entry: int, raise_errors: bool = True) -> StopReason:
        """Run from the entry block until it returns.

        Args:
            entry: image offset of the first block
            raise_errors: re-raise decode/execution errors after logging

        Returns:
            StopReason indicating why execution stopped
        """
        self.last_error = None
        logger.info(f"Running from {block_name(entry)} (max {self.max_steps} steps)")
        try:
            self.call(entry)
        except StepLimitExceeded as e:
            logger.warning(f"Stopped after {self.steps} steps: {e}")
            self.last_error = e
            return StopReason.TIMEOUT
        except PrintfVMError as e:
            logger.error(f"Execution failed after {self.steps} steps: {e}")
            self.last_error = e
            if raise_errors:
                raise
            return StopReason.ERROR
        logger.info(f"Done after {self.steps} steps")
        return StopReason.DONE
