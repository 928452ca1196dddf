"""
printfvm — printf-specifier VM decoder, renderer and executor
============================================================
Decodes and runs a small instruction set whose instructions are spelled
as printf conversion specifiers ("%+3.2hhX", "%-4096.2lS", ...), over a
five-register, flat little-endian memory machine.

Architecture:
    ┌──────────┐    ┌──────────┐    ┌─────────────┐    ┌──────────┐
    │  Image   │───>│ Decoder  │───>│ Instruction │───>│ Renderer │──> pseudo-code
    │ (bytes)  │    │          │    │             │    └──────────┘
    └──────────┘    └──────────┘    └─────────────┘    ┌──────────┐
                                           │      ────>│ Executor │──> State
                                           │           └──────────┘
                                     ┌────────────┐          │
                                     │ Dispatcher │<─────────┘ CALL / RETURN
                                     └────────────┘

    - operands.py:  addressing modes, operations, grammar tables
    - decoder.py:   bytes → Instruction (+ encode() for tests)
    - state.py:     registers, 4-byte little-endian memory, diagnostics
    - render.py:    Instruction → pseudo-code, disassembly listing
    - executor.py:  Instruction × State → control signal
    - dispatch.py:  jump target → block table, run loop
    - config.py:    JSON run configuration (annotations, limits)
"""

__version__ = "0.1.0"

from .errors import PrintfVMError
from .operands import DestMode, SrcMode, Operation
from .decoder import (
    Instruction, DecodeError, UnexpectedEndOfStream, MalformedInstruction,
    decode, decode_at, iter_decode, encode,
)
from .state import (
    State, StateError, OutOfBounds, MemoryRegion, AddressAnnotations, AccessEvent,
)
from .render import RenderError, render, render_listing
from .executor import (
    ExecutionError, DivisionByZero, InvalidRegister, ExecResult, Flow, execute,
)
from .dispatch import (
    Dispatcher, StopReason, StepLimitExceeded, CallDepthExceeded, decode_block,
)
from .config import ConfigError, VMConfig, load_config


def disassemble(image, start: int = 0, end: int = None) -> str:
    """Disassemble image[start:end] to listing text."""
    return "\n".join(render_listing(image, start, end))


def run_image(image: bytes, entry: int, *, config: VMConfig = None,
              trace: bool = False) -> State:
    """Load image, run from entry, and return the final State.

    Full pipeline: State.from_image -> Dispatcher -> decode/execute.
    Errors propagate to the caller.
    """
    config = config or VMConfig()
    state = State.from_image(image, config.padding, config.annotations)
    vm = Dispatcher(state, max_steps=config.max_steps, trace=trace,
                    max_depth=config.max_depth)
    reason = vm.run(entry)
    if reason is not StopReason.DONE:
        raise vm.last_error
    return state
