"""Command line driver.

    pushc hello.push                 compile and run
    pushc -c hello.push -o hello.pushc
    pushc hello.pushc                run a precompiled program
    pushc --disasm hello.push        print an instruction listing
"""

from __future__ import annotations

import argparse
from pathlib import Path
import sys
from typing import Optional, Sequence

from .assembler import compile_source
from .binformat import disassemble
from .errors import LexError, PushError
from .vm import Machine

SOURCE_SUFFIX = ".push"
BINARY_SUFFIX = ".pushc"
DEFAULT_OUTPUT = "out" + BINARY_SUFFIX


def build_parser() -> argparse.ArgumentParser:
    argp = argparse.ArgumentParser(prog="pushc", description="Compile and run push programs")
    argp.add_argument("input", help=f"Path to a {SOURCE_SUFFIX} source file or {BINARY_SUFFIX} binary")
    argp.add_argument("-c", "--compile", action="store_true", help="Compile only, write the binary to OUTPUT")
    argp.add_argument("-o", "--output", default=DEFAULT_OUTPUT,
                      help=f"Destination of the compiled binary (default {DEFAULT_OUTPUT})")
    argp.add_argument("--disasm", action="store_true", help="Print an instruction listing instead of running")
    argp.add_argument("--trace", action="store_true", help="Trace every executed instruction to stderr")
    argp.add_argument("--dump-heap", action="store_true", help="Print the heap contents to stderr after running")
    argp.add_argument("-v", "--verbose", action="store_true", help="Print progress messages to stderr")
    return argp


def load_program(path: Path, verbose: bool = False) -> bytes:
    if path.suffix == SOURCE_SUFFIX:
        if verbose:
            print(f"Compiling: {path}", file=sys.stderr)
        try:
            text = path.read_text(encoding="utf-8")
        except UnicodeDecodeError as exc:
            raise LexError(f"{path}: not valid UTF-8 ({exc.reason} at byte {exc.start})") from exc
        return compile_source(text, str(path), verbose=verbose)
    if verbose:
        print(f"Loading: {path}", file=sys.stderr)
    return path.read_bytes()


def main(argv: Optional[Sequence[str]] = None) -> int:
    argp = build_parser()
    args = argp.parse_args(argv)

    src_path = Path(args.input)
    if src_path.suffix not in (SOURCE_SUFFIX, BINARY_SUFFIX):
        argp.error(f"input must end in {SOURCE_SUFFIX} or {BINARY_SUFFIX}: {src_path}")
    if args.compile and src_path.suffix != SOURCE_SUFFIX:
        argp.error(f"-c expects a {SOURCE_SUFFIX} source file")

    try:
        program = load_program(src_path, verbose=args.verbose)

        if args.disasm:
            print("\n".join(disassemble(program)))
            return 0

        if args.compile:
            dest = Path(args.output)
            dest.write_bytes(program)
            if args.verbose:
                print(f"Wrote {len(program)} bytes to {dest}", file=sys.stderr)
            return 0

        machine = Machine(program, trace=args.trace)
        machine.run()
        if args.verbose:
            print(f"Halted after {machine.steps_ran} instructions", file=sys.stderr)
        if args.dump_heap:
            for row in machine.heap_dump():
                print(row, file=sys.stderr)
    except (OSError, PushError) as exc:
        print(f"pushc: error: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
