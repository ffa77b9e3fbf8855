"""push: a minimal stack language compiled to bytecode and run on a stack machine."""

from .assembler import Assembler, compile_program, compile_source
from .binformat import Header, disassemble, read_header
from .errors import (ArithmeticOverflow, AssemblyError, CodeOverrun,
                     HeapOutOfBounds, InvalidJump, LexError, ProgramFormatError,
                     PushError, RuntimeFault, StackUnderflow, UnknownBuiltin,
                     UnknownOpcode)
from .instructions import BUILTINS, Builtin, Opcode
from .lexer import OpKind, Operation, lex
from .vm import Machine, run

__version__ = "0.1.0"
