"""Stack machine executing binary push programs.

The machine state is an operand stack of signed 64 bit integers and a byte
heap. At load time the data section is copied to the start of the heap, so
the data section offset of a string literal is also its heap address; `alloc`
hands out addresses after the string data.
"""

from __future__ import annotations

import sys
from typing import BinaryIO, Callable, Dict, List, Optional

import numpy as np

from . import stdlib
from .binformat import (I64_MAX, I64_MIN, Buffer, decode_i64, decode_u64,
                        hexdump, read_header)
from .errors import (ArithmeticOverflow, CodeOverrun, HeapOutOfBounds,
                     InvalidJump, StackUnderflow, UnknownBuiltin, UnknownOpcode)
from .instructions import OPERAND_SIZE, Opcode


class Machine:
    def __init__(self, program: Buffer, out: Optional[BinaryIO] = None, trace: bool = False) -> None:
        self.program = bytes(program)
        self.header = read_header(self.program)
        self.out = out if out is not None else sys.stdout.buffer
        self.trace = trace

        self.setup_instructions()
        self.reset()

    def setup_instructions(self) -> None:
        """ Maps every opcode to the method executing it """
        self.instructions: Dict[int, Callable[[], None]] = {
            Opcode.PUSH:    self._op_push,
            Opcode.DUP:     self._op_dup,
            Opcode.SWAP:    self._op_swap,
            Opcode.OVER:    self._op_over,
            Opcode.ADD:     self._op_add,
            Opcode.SUB:     self._op_sub,
            Opcode.EQUAL:   self._op_equal,
            Opcode.GREATER: self._op_greater,
            Opcode.BRANCH:  self._op_branch,
            Opcode.JUMP:    self._op_jump,
            Opcode.CALL:    self._op_call,
            Opcode.POKE:    self._op_poke,
            Opcode.EXIT:    self._op_exit,
        }

    def reset(self) -> None:
        """ Initialize/reset stack, heap and program counter """
        self.stack: List[int] = []
        data = self.program[self.header.data_offset:]
        self.heap = np.frombuffer(data, dtype=np.uint8).copy()
        self.prog_count = self.header.code_offset
        self.op_offset = self.prog_count
        self.halted = False
        self.steps_ran = 0

    # ------------------------------------------------------------------- stack
    def push(self, value: int) -> None:
        if not I64_MIN <= value <= I64_MAX:
            raise ArithmeticOverflow(f"value {value} does not fit in 64 bits", self.op_offset)
        self.stack.append(value)

    def pop(self) -> int:
        if not self.stack:
            raise StackUnderflow("pop from empty stack", self.op_offset)
        return self.stack.pop()

    def _require(self, depth: int) -> None:
        if len(self.stack) < depth:
            raise StackUnderflow(
                f"{Opcode(self.program[self.op_offset]).name} needs {depth} values, "
                f"stack holds {len(self.stack)}", self.op_offset)

    # -------------------------------------------------------------------- heap
    def grow_heap(self, size: int) -> int:
        """Appends `size` zero bytes to the heap and returns their address."""
        if size < 0:
            raise HeapOutOfBounds(f"cannot allocate {size} bytes", self.op_offset)
        address = len(self.heap)
        try:
            self.heap = np.concatenate((self.heap, np.zeros(size, dtype=np.uint8)))
        except (MemoryError, ValueError) as exc:
            raise HeapOutOfBounds(f"cannot allocate {size} bytes", self.op_offset) from exc
        return address

    def read_heap(self, address: int, size: int) -> bytes:
        if size < 0 or address < 0 or address + size > len(self.heap):
            raise HeapOutOfBounds(
                f"read of {size} bytes at {address} outside heap of {len(self.heap)} bytes", self.op_offset)
        return self.heap[address:address + size].tobytes()

    def heap_dump(self) -> List[str]:
        return hexdump(self.heap.tobytes())

    def emit(self, data: bytes) -> None:
        self.out.write(data)
        self.out.flush()

    # ------------------------------------------------------------------- fetch
    def _fetch_operand(self, signed: bool) -> int:
        end = self.prog_count + OPERAND_SIZE
        if end > self.header.data_offset:
            raise CodeOverrun("operand runs past the end of the code section", self.op_offset)
        decode = decode_i64 if signed else decode_u64
        value = decode(self.program, self.prog_count)
        self.prog_count = end
        return value

    def _jump(self, target: int) -> None:
        if not self.header.code_offset <= target < self.header.data_offset:
            raise InvalidJump(f"jump target {target:#x} outside the code section", self.op_offset)
        self.prog_count = target

    def step(self) -> bool:
        """ Executes one instruction. Returns False once the machine has halted """
        if self.halted:
            return False
        if self.prog_count >= self.header.data_offset:
            raise CodeOverrun("execution ran past the end of the code section", self.prog_count)

        self.op_offset = self.prog_count
        opcode = self.program[self.prog_count]
        self.prog_count += 1
        execute = self.instructions.get(opcode)
        if execute is None:
            raise UnknownOpcode(f"unimplemented opcode {opcode:#04x}", self.op_offset)
        execute()
        self.steps_ran += 1

        if self.trace:
            print(f"{self.op_offset:#06x}  {Opcode(opcode).name:<8} stack={self.stack}", file=sys.stderr)
        return not self.halted

    def run(self) -> None:
        while self.step():
            pass

    # ------------------------------------------------------------ instructions
    def _op_push(self) -> None:
        self.push(self._fetch_operand(signed=True))

    def _op_dup(self) -> None:
        self._require(1)
        self.stack.append(self.stack[-1])

    def _op_swap(self) -> None:
        self._require(2)
        self.stack[-1], self.stack[-2] = self.stack[-2], self.stack[-1]

    def _op_over(self) -> None:
        self._require(2)
        self.stack.append(self.stack[-2])

    def _binary(self, fn: Callable[[int, int], int]) -> None:
        self._require(2)
        b = self.stack.pop()
        a = self.stack.pop()
        self.push(fn(a, b))

    def _op_add(self) -> None:
        self._binary(lambda a, b: a + b)

    def _op_sub(self) -> None:
        self._binary(lambda a, b: a - b)

    def _op_equal(self) -> None:
        self._binary(lambda a, b: int(a == b))

    def _op_greater(self) -> None:
        self._binary(lambda a, b: int(a > b))

    def _op_branch(self) -> None:
        target = self._fetch_operand(signed=False)
        if self.pop() == 0:
            self._jump(target)

    def _op_jump(self) -> None:
        self._jump(self._fetch_operand(signed=False))

    def _op_call(self) -> None:
        builtin = self._fetch_operand(signed=True)
        routine = stdlib.ROUTINES.get(builtin)
        if routine is None:
            raise UnknownBuiltin(f"unknown built-in id {builtin}", self.op_offset)
        routine(self)

    def _op_poke(self) -> None:
        self._require(2)
        address = self.stack.pop()
        value = self.stack.pop()
        if not 0 <= value <= 0xFF:
            raise ArithmeticOverflow(f"value {value} does not fit in a byte", self.op_offset)
        if not 0 <= address < len(self.heap):
            raise HeapOutOfBounds(f"poke at {address} outside heap of {len(self.heap)} bytes", self.op_offset)
        self.heap[address] = value

    def _op_exit(self) -> None:
        self.halted = True


def run(program: Buffer, out: Optional[BinaryIO] = None, trace: bool = False) -> Machine:
    """Executes a binary program to completion and returns the halted machine."""
    machine = Machine(program, out=out, trace=trace)
    machine.run()
    return machine
