"""Single pass assembler: push operations -> binary program.

Structured control flow is resolved without labels. Every forward jump is
written with a reserved placeholder operand whose position is pushed on a
cross-reference stack together with the kind of construct that opened it.
The matching closing word pops the entry and patches the placeholder with the
now known target:

    if                 BRANCH <else-or-end>           push (IF)
    else               JUMP <end>                     pop IF, push (ELSE)
    end                                               pop IF/ELSE, patch
    while                                             push (WHILE, cursor)
    do                 BRANCH <after-loop>            push (DO)
    end                JUMP <while>                   pop DO, pop WHILE, patch
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
import sys
from typing import Iterable, List, Sequence

from .binformat import (DATA_OFFSET_FIELD, HEADER_SIZE, Header, U64_MAX,
                        encode_i64, encode_u64)
from .errors import AssemblyError
from .instructions import BUILTINS, OPERAND_SIZE, Opcode
from .lexer import OpKind, Operation, lex


# Written into reserved jump operands until they are patched
PLACEHOLDER = U64_MAX

SIMPLE_OPS = {
    OpKind.DUP:     Opcode.DUP,
    OpKind.SWAP:    Opcode.SWAP,
    OpKind.OVER:    Opcode.OVER,
    OpKind.ADD:     Opcode.ADD,
    OpKind.SUB:     Opcode.SUB,
    OpKind.EQUAL:   Opcode.EQUAL,
    OpKind.GREATER: Opcode.GREATER,
    OpKind.POKE:    Opcode.POKE,
}


class Construct(Enum):
    IF = auto()
    ELSE = auto()
    WHILE = auto()
    DO = auto()


@dataclass(frozen=True)
class Backpatch:
    construct: Construct
    offset: int  # placeholder position, or loop entry for WHILE
    op: Operation


class Assembler:
    def __init__(self, source_name: str = "<string>", verbose: bool = False) -> None:
        self.source_name = source_name
        self.verbose = verbose
        self.code = bytearray(Header(HEADER_SIZE, 0).encode())
        self.data = bytearray()
        self.xrefs: List[Backpatch] = []
        # offsets of every reserved jump operand, all patched once assemble() returns
        self.placeholders: List[int] = []

    @property
    def cursor(self) -> int:
        return len(self.code)

    def assemble(self, ops: Iterable[Operation]) -> bytes:
        """ Emits the binary program for a sequence of operations.

        Raises AssemblyError on mismatched nesting; nothing is returned in
        that case.
        """
        if self.verbose:
            print(f"--- Assembling {self.source_name} ---", file=sys.stderr)
        for op in ops:
            self._assemble_op(op)
        self._emit(Opcode.EXIT)

        if self.xrefs:
            entry = self.xrefs[-1]
            raise self._error(entry.op, f"'{entry.construct.name.lower()}' is never closed by 'end'")

        for offset in self.placeholders:
            if self.code[offset:offset + OPERAND_SIZE] == encode_u64(PLACEHOLDER):
                raise AssemblyError(f"{self.source_name}: jump operand at {offset:#x} was never resolved")

        self.code[DATA_OFFSET_FIELD:DATA_OFFSET_FIELD + OPERAND_SIZE] = encode_u64(len(self.code))
        if self.verbose:
            print(f"code section: {len(self.code) - HEADER_SIZE} bytes, "
                  f"data section: {len(self.data)} bytes", file=sys.stderr)
        return bytes(self.code + self.data)

    # ----------------------------------------------------------------- emitting
    def _emit(self, opcode: Opcode) -> None:
        self.code.append(opcode)

    def _emit_i64(self, opcode: Opcode, value: int) -> None:
        self.code.append(opcode)
        self.code += encode_i64(value)

    def _emit_u64(self, opcode: Opcode, value: int) -> None:
        self.code.append(opcode)
        self.code += encode_u64(value)

    def _emit_placeholder(self, opcode: Opcode) -> int:
        """Emits a jump with a reserved operand and returns the operand offset."""
        self.code.append(opcode)
        offset = self.cursor
        self.code += encode_u64(PLACEHOLDER)
        self.placeholders.append(offset)
        return offset

    def _patch(self, offset: int, target: int) -> None:
        if self.code[offset:offset + OPERAND_SIZE] != encode_u64(PLACEHOLDER):
            raise AssemblyError(f"{self.source_name}: jump operand at {offset:#x} was already patched")
        self.code[offset:offset + OPERAND_SIZE] = encode_u64(target)

    # ------------------------------------------------------------- control flow
    def _pop(self, op: Operation, expected: str) -> Backpatch:
        if not self.xrefs:
            raise self._error(op, f"'{op}' without matching {expected}")
        return self.xrefs.pop()

    def _assemble_op(self, op: Operation) -> None:
        kind = op.kind
        if kind is OpKind.PUSH_INT:
            self._emit_i64(Opcode.PUSH, op.value)
        elif kind is OpKind.PUSH_STR:
            self._emit_i64(Opcode.PUSH, len(op.value))
            self._emit_i64(Opcode.PUSH, len(self.data))
            self.data += op.value
        elif kind in SIMPLE_OPS:
            self._emit(SIMPLE_OPS[kind])
        elif kind is OpKind.IF:
            self.xrefs.append(Backpatch(Construct.IF, self._emit_placeholder(Opcode.BRANCH), op))
        elif kind is OpKind.ELSE:
            start = self._pop(op, "'if'")
            if start.construct is not Construct.IF:
                raise self._error(op, f"else must follow if, found '{start.construct.name.lower()}'")
            self.xrefs.append(Backpatch(Construct.ELSE, self._emit_placeholder(Opcode.JUMP), op))
            self._patch(start.offset, self.cursor)
        elif kind is OpKind.WHILE:
            self.xrefs.append(Backpatch(Construct.WHILE, self.cursor, op))
        elif kind is OpKind.DO:
            self.xrefs.append(Backpatch(Construct.DO, self._emit_placeholder(Opcode.BRANCH), op))
        elif kind is OpKind.END:
            self._assemble_end(op)
        elif kind is OpKind.CALL:
            if op.value not in BUILTINS:
                raise self._error(op, f"unknown built-in '{op.value}'")
            self._emit_i64(Opcode.CALL, BUILTINS[op.value])
        else:
            raise self._error(op, f"cannot assemble operation {kind.name}")

    def _assemble_end(self, op: Operation) -> None:
        start = self._pop(op, "'if', 'else' or 'do'")
        if start.construct in (Construct.IF, Construct.ELSE):
            self._patch(start.offset, self.cursor)
        elif start.construct is Construct.DO:
            if not self.xrefs or self.xrefs[-1].construct is not Construct.WHILE:
                raise self._error(start.op, "do must be preceded by while")
            loop = self.xrefs.pop()
            self._emit_u64(Opcode.JUMP, loop.offset)
            self._patch(start.offset, self.cursor)
        else:
            raise self._error(op, f"'end' closes '{start.construct.name.lower()}' which has no 'do'")

    def _error(self, op: Operation, message: str) -> AssemblyError:
        return AssemblyError(f"{self.source_name}:{op.line}:{op.column}: {message}")


def compile_program(ops: Sequence[Operation], source_name: str = "<string>", verbose: bool = False) -> bytes:
    return Assembler(source_name, verbose=verbose).assemble(ops)


def compile_source(text: str, source_name: str = "<string>", verbose: bool = False) -> bytes:
    return compile_program(lex(text, source_name), source_name, verbose=verbose)
