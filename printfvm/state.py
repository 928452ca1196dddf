"""
printf VM — Register File + Flat Byte Memory

Machine state for the VM:
  r0..r4  — five 32-bit signed registers
  mem     — flat bytearray, loaded from the target image and zero-padded

Memory rules:
  - every access is exactly 4 bytes, little-endian
  - the address is a signed 32-bit value reinterpreted as unsigned
    (address & 0xFFFFFFFF) and used directly as a byte offset
  - alignment is never enforced
  - offset + 4 > len(mem) raises OutOfBounds; memory never grows on access

Region purpose (input buffer, scratch buffers, output) is purely a
convention of the target program. An AddressAnnotations table can be
injected so that diagnostics name those regions, but it never affects
results.
"""

import logging
import struct
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional

from .errors import PrintfVMError
from .operands import NUM_REGISTERS, U32_MAX

logger = logging.getLogger(__name__)

WORD = struct.Struct('<i')
WORD_SIZE = WORD.size

# Zero bytes appended after the image so reads/writes past its end land
# in scratch space
DEFAULT_PADDING = 8000


class StateError(PrintfVMError):
    """Raised on invalid machine state access."""


class OutOfBounds(StateError):
    """A 4-byte access does not fit inside the memory buffer."""
    def __init__(self, address: int, size: int):
        self.address = address
        self.size = size
        super().__init__(
            f"4-byte access at {address & U32_MAX:#x} outside memory of {size:#x} bytes")


def to_i32(value: int) -> int:
    """Wrap any Python int to a signed 32-bit value."""
    value &= U32_MAX
    return value - 0x100000000 if value & 0x80000000 else value


# ──────────────────────────────────────────────
# Address annotations (diagnostics only)
# ──────────────────────────────────────────────

class MemoryRegion:
    """A named, inclusive address range used to label diagnostics."""
    def __init__(self, name: str, start: int, end: int):
        if end < start:
            raise ValueError(f"region {name!r}: end {end:#x} before start {start:#x}")
        self.name = name
        self.start = start
        self.end = end  # inclusive

    def contains(self, addr: int) -> bool:
        return self.start <= addr <= self.end

    @property
    def size(self) -> int:
        return self.end - self.start + 1

    def __repr__(self):
        return f"MemoryRegion({self.name!r}, {self.start:#x}, {self.end:#x})"


class AddressAnnotations:
    """Read-only lookup from address to region label.

    Regions are checked in the order given; the first match wins.
    """
    def __init__(self, regions: Iterable[MemoryRegion] = ()):
        self._regions = tuple(regions)

    @property
    def regions(self) -> tuple:
        return self._regions

    def label_for(self, addr: int) -> str:
        for region in self._regions:
            if region.contains(addr):
                return f"[{region.name}]"
        return ""

    def __len__(self):
        return len(self._regions)


@dataclass(frozen=True)
class AccessEvent:
    """One memory access, delivered to diagnostic hooks."""
    kind: str        # 'read' or 'store'
    address: int     # signed address as given by the program
    value: int
    label: str


# ──────────────────────────────────────────────
# Machine state
# ──────────────────────────────────────────────

class State:
    """Register file + byte-addressable memory.

    Usage:
        s = State.from_image(image_bytes)
        s.store(0x1000, -2)
        assert s.read(0x1000) == -2
    """

    def __init__(self, memory: bytes = b'',
                 annotations: Optional[AddressAnnotations] = None):
        self.regs: List[int] = [0] * NUM_REGISTERS
        self.mem = bytearray(memory)
        self.annotations = annotations or AddressAnnotations()
        self._hooks: List[Callable[[AccessEvent], None]] = []

    @classmethod
    def from_image(cls, image: bytes, padding: int = DEFAULT_PADDING,
                   annotations: Optional[AddressAnnotations] = None) -> 'State':
        """Load a target image and extend it with `padding` zero bytes."""
        state = cls(bytes(image) + bytes(padding), annotations)
        logger.debug(f"Loaded image: {len(image)} bytes + {padding} padding")
        return state

    # --- Registers ---

    def get_reg(self, index: int) -> int:
        return self.regs[index]

    def set_reg(self, index: int, value: int):
        self.regs[index] = to_i32(value)

    r0 = property(lambda self: self.regs[0], lambda self, v: self.set_reg(0, v))
    r1 = property(lambda self: self.regs[1], lambda self, v: self.set_reg(1, v))
    r2 = property(lambda self: self.regs[2], lambda self, v: self.set_reg(2, v))
    r3 = property(lambda self: self.regs[3], lambda self, v: self.set_reg(3, v))
    r4 = property(lambda self: self.regs[4], lambda self, v: self.set_reg(4, v))

    def display_regs(self) -> str:
        """Format registers as unsigned 32-bit hex for debugging."""
        return ' '.join(f"r{i}={v & U32_MAX:08x}" for i, v in enumerate(self.regs))

    # --- Core 4-byte access ---

    def _offset(self, address: int) -> int:
        offset = address & U32_MAX
        if offset + WORD_SIZE > len(self.mem):
            raise OutOfBounds(address, len(self.mem))
        return offset

    def store(self, address: int, value: int):
        """Write the 4 little-endian bytes of value at address."""
        offset = self._offset(address)
        value = to_i32(value)
        self._notify('store', address, value)
        WORD.pack_into(self.mem, offset, value)

    def read(self, address: int) -> int:
        """Read 4 little-endian bytes at address as a signed 32-bit value."""
        offset = self._offset(address)
        value = WORD.unpack_from(self.mem, offset)[0]
        self._notify('read', address, value)
        return value

    # --- Diagnostics ---

    def subscribe(self, hook: Callable[[AccessEvent], None]):
        """Call hook(event) on every read and store."""
        self._hooks.append(hook)

    def unsubscribe(self, hook: Optional[Callable] = None):
        """Remove a hook. If hook is None, removes all hooks."""
        if hook is None:
            self._hooks.clear()
        else:
            self._hooks = [h for h in self._hooks if h != hook]

    def _notify(self, kind: str, address: int, value: int):
        label = self.annotations.label_for(address)
        if kind == 'store':
            logger.debug(f"storing --> {value & U32_MAX:x} to index {address & U32_MAX:x} {label}")
        else:
            logger.debug(f"reading <-- index {address & U32_MAX:x} {label}")
        if self._hooks:
            event = AccessEvent(kind, address, value, label)
            for hook in list(self._hooks):
                hook(event)

    # --- Bulk helpers (bypass hooks; used by drivers, not by programs) ---

    def read_bytes(self, start: int, length: int) -> bytes:
        if start < 0 or start + length > len(self.mem):
            raise OutOfBounds(start, len(self.mem))
        return bytes(self.mem[start:start + length])

    def write_bytes(self, start: int, data: bytes):
        if start < 0 or start + len(data) > len(self.mem):
            raise OutOfBounds(start, len(self.mem))
        self.mem[start:start + len(data)] = data

    # --- Snapshots ---

    def snapshot(self, start: int = 0, end: Optional[int] = None) -> bytes:
        """Freeze memory[start:end]; `pfvm run --changes` diffs two of these."""
        return bytes(self.mem[start:end])

    @staticmethod
    def diff(before: bytes, after: bytes, base_addr: int = 0) -> Dict[int, tuple]:
        """Map address -> (old, new) for each byte that differs.

        Only the common prefix is compared; base_addr is the address of
        the first snapshot byte.
        """
        return {
            base_addr + i: (old, new)
            for i, (old, new) in enumerate(zip(before, after))
            if old != new
        }

    # --- Hex dump ---

    def hexdump(self, start: int, length: int = 256) -> str:
        """Produce a hex dump of memory, 16 bytes per line."""
        if start < 0:
            raise OutOfBounds(start, len(self.mem))
        lines = []
        end = min(start + length, len(self.mem))
        for addr in range(start, end, 16):
            chunk = self.mem[addr:min(addr + 16, end)]
            hex_bytes = ' '.join(f'{b:02x}' for b in chunk)
            ascii_bytes = ''.join(chr(b) if 0x20 <= b < 0x7F else '.' for b in chunk)
            lines.append(f'{addr:08x}  {hex_bytes:<47}  {ascii_bytes}')
        return '\n'.join(lines)
