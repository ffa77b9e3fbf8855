"""Exceptions raised by the push compiler and virtual machine."""

from __future__ import annotations

from typing import Optional


class PushError(Exception):
    """Base class for every user-facing compile or run failure."""


class LexError(PushError):
    """Raised when source text contains an unknown word or malformed quoting."""


class AssemblyError(PushError):
    """Raised for mismatched control flow nesting or unknown call targets."""


class RuntimeFault(PushError):
    """Raised when the virtual machine cannot continue executing a program.

    `offset` is the byte offset of the faulting instruction within the
    program, or None when the fault happened before execution started.
    """

    def __init__(self, message: str, offset: Optional[int] = None) -> None:
        if offset is not None:
            message = f"{message} (at offset {offset:#06x})"
        super().__init__(message)
        self.offset = offset


class ProgramFormatError(RuntimeFault):
    """Raised when a binary program has a malformed header."""


class StackUnderflow(RuntimeFault):
    pass


class ArithmeticOverflow(RuntimeFault):
    """Raised instead of silently wrapping or truncating a value."""


class HeapOutOfBounds(RuntimeFault):
    pass


class InvalidJump(RuntimeFault):
    """Raised when a branch or jump targets a position outside the code section."""


class UnknownOpcode(RuntimeFault):
    pass


class UnknownBuiltin(RuntimeFault):
    pass


class CodeOverrun(RuntimeFault):
    """Raised when execution reads past the end of the code section."""
