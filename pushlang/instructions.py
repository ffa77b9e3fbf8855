"""Instruction set of the push virtual machine.

Keep the opcode values in sync with the interpreter dispatch in vm.py and the
listing in binformat.py. Values are part of the binary format and must never
be renumbered.
"""

from __future__ import annotations

from enum import IntEnum
from types import MappingProxyType
from typing import Dict, Mapping


class Opcode(IntEnum):
    PUSH    = 0x01  # push i64 operand
    DUP     = 0x02
    SWAP    = 0x03
    OVER    = 0x04
    ADD     = 0x05
    SUB     = 0x06
    EQUAL   = 0x07
    GREATER = 0x08
    BRANCH  = 0x09  # u64 target, taken when popped value is 0
    JUMP    = 0x0A  # u64 target
    CALL    = 0x0B  # i64 built-in id
    POKE    = 0x0C
    EXIT    = 0xFF


class Builtin(IntEnum):
    PUTD  = 0
    PUTS  = 1
    ALLOC = 2
    WRITE = 3


# Width in bytes of every instruction operand
OPERAND_SIZE = 8

# Opcodes followed by an operand, and whether that operand is a jump target
OPERAND_OPCODES: Dict[Opcode, bool] = {
    Opcode.PUSH: False,
    Opcode.CALL: False,
    Opcode.BRANCH: True,
    Opcode.JUMP: True,
}


def build_builtin_map() -> Mapping[str, int]:
    """Returns the read-only built-in name -> call id mapping."""
    return MappingProxyType({b.name.lower(): int(b) for b in Builtin})


# Single table used by the lexer to recognise built-in names and by the
# assembler to encode call targets.
BUILTINS: Mapping[str, int] = build_builtin_map()


def instruction_size(opcode: Opcode) -> int:
    return 1 + OPERAND_SIZE if opcode in OPERAND_OPCODES else 1
