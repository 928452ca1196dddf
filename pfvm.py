#!/usr/bin/env python3
"""
pfvm — printf VM disassembler / runner CLI

Usage:
    python pfvm.py disasm <image> [--start N] [--end N]
    python pfvm.py run <image> --entry N [--config cfg.json] [--padding N]
                                [--max-steps N] [--max-depth N] [--trace]
                                [--dump START:LEN] [--changes] [--verbose]

Integers accept 0x / $ hex or decimal.

Examples:
    python pfvm.py disasm mem.bin --start 0xc8
    python pfvm.py run mem.bin --entry 0xc8 --config regions.json --dump 0x1800:32
    python pfvm.py run mem.bin --entry 0 -v           # log every memory access
"""

import argparse
import logging
import os
import sys

# Allow running from project root or as module
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from printfvm import __version__, disassemble
from printfvm.config import VMConfig, load_config, parse_int
from printfvm.dispatch import Dispatcher, StopReason
from printfvm.errors import PrintfVMError
from printfvm.state import State


def parse_int_arg(value: str) -> int:
    try:
        return parse_int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not an integer: {value!r}")


def parse_count_arg(value: str) -> int:
    """Parse a non-negative integer (sizes and limits)."""
    number = parse_int_arg(value)
    if number < 0:
        raise argparse.ArgumentTypeError(f"must not be negative: {value!r}")
    return number


def parse_range_arg(value: str):
    """Parse START:LEN."""
    start, sep, length = value.partition(":")
    if not sep:
        raise argparse.ArgumentTypeError(f"expected START:LEN, got {value!r}")
    return parse_count_arg(start), parse_count_arg(length)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pfvm",
        description="Decode, render and run printf-specifier VM images",
    )
    parser.add_argument("--version", action="version", version=f"pfvm {__version__}")
    parser.add_argument("--verbose", "-v", action="store_true",
                        help="Enable debug logging (memory accesses, block decoding)")
    sub = parser.add_subparsers(dest="command", required=True)

    dis = sub.add_parser("disasm", help="Print a pseudo-code listing")
    dis.add_argument("image", help="Raw image file")
    dis.add_argument("--start", type=parse_int_arg, default=0,
                     help="Offset to start decoding at (default 0)")
    dis.add_argument("--end", type=parse_int_arg, default=None,
                     help="Offset to stop decoding at (default: end of image)")

    run = sub.add_parser("run", help="Execute the image from an entry block")
    run.add_argument("image", help="Raw image file")
    run.add_argument("--entry", type=parse_int_arg, required=True,
                     help="Offset of the entry block")
    run.add_argument("--config", default=None,
                     help="JSON config (annotations, padding, max_steps)")
    run.add_argument("--padding", type=parse_count_arg, default=None,
                     help="Zero bytes appended after the image")
    run.add_argument("--max-steps", type=parse_count_arg, default=None,
                     help="Instruction limit before TIMEOUT")
    run.add_argument("--max-depth", type=parse_count_arg, default=None,
                     help="Nested call limit (tail calls do not count)")
    run.add_argument("--trace", action="store_true",
                     help="Print every executed instruction with registers")
    run.add_argument("--dump", type=parse_range_arg, action="append", default=[],
                     help="Hex dump START:LEN of memory after the run (repeatable)")
    run.add_argument("--changes", action="store_true",
                     help="List every memory byte the run changed")
    return parser


def cmd_disasm(args, image: bytes) -> int:
    print(disassemble(image, args.start, args.end))
    return 0


def cmd_run(args, image: bytes) -> int:
    config = load_config(args.config) if args.config else VMConfig()
    if args.padding is not None:
        config.padding = args.padding
    if args.max_steps is not None:
        config.max_steps = args.max_steps
    if args.max_depth is not None:
        config.max_depth = args.max_depth

    state = State.from_image(image, config.padding, config.annotations)
    vm = Dispatcher(state, max_steps=config.max_steps, trace=args.trace,
                    max_depth=config.max_depth)
    before = state.snapshot() if args.changes else None
    reason = vm.run(args.entry, raise_errors=False)

    if args.trace:
        print("\n".join(vm.trace_output))
    print(f"[pfvm] {reason.value} after {vm.steps} steps")
    print(f"[pfvm] {state.display_regs()}")
    for start, length in args.dump:
        print(state.hexdump(start, length))
    if args.changes:
        changes = State.diff(before, state.snapshot())
        for addr, (old, new) in sorted(changes.items()):
            label = state.annotations.label_for(addr)
            print(f"{addr:08x}: {old:02x} -> {new:02x} {label}".rstrip())
        print(f"[pfvm] {len(changes)} bytes changed")

    if reason is not StopReason.DONE:
        print(f"Error: {vm.last_error}", file=sys.stderr)
        return 1
    return 0


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format='%(asctime)s - %(levelname)s - %(message)s'
    )

    try:
        with open(args.image, "rb") as f:
            image = f.read()
    except FileNotFoundError:
        print(f"Error: File not found: {args.image}", file=sys.stderr)
        return 1
    except IOError as e:
        print(f"Error reading {args.image}: {e}", file=sys.stderr)
        return 1

    try:
        if args.command == "disasm":
            return cmd_disasm(args, image)
        return cmd_run(args, image)
    except PrintfVMError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        print(f"Internal error: {e}", file=sys.stderr)
        if args.verbose:
            import traceback
            traceback.print_exc()
        return 2


if __name__ == "__main__":
    sys.exit(main())
