"""Binary program format shared by the assembler and the virtual machine.

    offset 0x00: u64 code_section_offset
    offset 0x08: u64 data_section_offset
    [code section]
    [data section]

All integers are little endian. Operands are 8 bytes wide: signed for Push and
Call, unsigned absolute byte offsets for Branch and Jump.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Union

import numpy as np

from .errors import ProgramFormatError, UnknownOpcode
from .instructions import OPERAND_OPCODES, OPERAND_SIZE, Opcode, instruction_size


U64 = np.dtype("<u8")
I64 = np.dtype("<i8")

U64_MAX = 2**64 - 1
I64_MIN = -2**63
I64_MAX = 2**63 - 1

HEADER_SIZE = 2 * OPERAND_SIZE
CODE_OFFSET_FIELD = 0
DATA_OFFSET_FIELD = OPERAND_SIZE

Buffer = Union[bytes, bytearray, memoryview]


def encode_u64(value: int) -> bytes:
    if not 0 <= value <= U64_MAX:
        raise OverflowError(f"{value} does not fit in an unsigned 64 bit field")
    return np.array(value, dtype=U64).tobytes()


def encode_i64(value: int) -> bytes:
    if not I64_MIN <= value <= I64_MAX:
        raise OverflowError(f"{value} does not fit in a signed 64 bit field")
    return np.array(value, dtype=I64).tobytes()


def decode_u64(buf: Buffer, offset: int) -> int:
    return int(np.frombuffer(buf, dtype=U64, count=1, offset=offset)[0])


def decode_i64(buf: Buffer, offset: int) -> int:
    return int(np.frombuffer(buf, dtype=I64, count=1, offset=offset)[0])


@dataclass(frozen=True)
class Header:
    code_offset: int
    data_offset: int

    def encode(self) -> bytes:
        return encode_u64(self.code_offset) + encode_u64(self.data_offset)


def read_header(program: Buffer) -> Header:
    """Decodes and validates the header of a binary program.

    Raises ProgramFormatError when the section offsets do not describe a
    non-empty code section followed by a data section inside the buffer.
    """
    if len(program) < HEADER_SIZE:
        raise ProgramFormatError(f"program is {len(program)} bytes, shorter than its {HEADER_SIZE} byte header")
    header = Header(decode_u64(program, CODE_OFFSET_FIELD), decode_u64(program, DATA_OFFSET_FIELD))
    if header.code_offset != HEADER_SIZE:
        raise ProgramFormatError(f"code section offset {header.code_offset} should be {HEADER_SIZE}")
    if not header.code_offset < header.data_offset <= len(program):
        raise ProgramFormatError(
            f"data section offset {header.data_offset} outside code section bounds "
            f"({header.code_offset}, {len(program)}]")
    return header


def disassemble(program: Buffer) -> List[str]:
    """ Produces a human readable listing of a binary program.

    One line per instruction, `offset  MNEMONIC  operand`, followed by a hex
    dump of the data section.
    """
    header = read_header(program)
    lines = [f"; code section at {header.code_offset:#06x}, data section at {header.data_offset:#06x}"]
    pos = header.code_offset
    while pos < header.data_offset:
        byte = program[pos]
        try:
            opcode = Opcode(byte)
        except ValueError:
            raise UnknownOpcode(f"unimplemented opcode {byte:#04x}", pos) from None
        line = f"{pos:#06x}  {opcode.name:<8}"
        if opcode in OPERAND_OPCODES:
            if pos + 1 + OPERAND_SIZE > header.data_offset:
                raise ProgramFormatError(f"truncated operand for {opcode.name}", pos)
            if OPERAND_OPCODES[opcode]:
                line += f" {decode_u64(program, pos + 1):#06x}"
            else:
                line += f" {decode_i64(program, pos + 1)}"
        lines.append(line.rstrip())
        pos += instruction_size(opcode)

    data = bytes(program[header.data_offset:])
    if data:
        lines.append(f"; data section, {len(data)} bytes")
        lines.extend(hexdump(data))
    return lines


def hexdump(data: Buffer, rowlength: int = 16, space: bool = True) -> List[str]:
    """ Formats bytes as rows of hex pairs, with an extra gap after the
    first half of each row.
    """
    mem = np.frombuffer(bytes(data), dtype=np.uint8)
    rows = []
    for start in range(0, len(mem), rowlength):
        s = f"{start:#06x}  "
        for j, item in enumerate(mem[start:start + rowlength]):
            s += f"{int(item):02x} "
            if j == rowlength // 2 - 1 and space:
                s += " "
        rows.append(s.rstrip())
    return rows
