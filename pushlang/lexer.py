"""Lexer for the push language.

Source text is a whitespace separated sequence of words and double quoted
string literals:

    "Hello" puts          push the string (length, address) and print it
    1 2 + putd            arithmetic on the operand stack
    0 while dup 3 swap > do dup putd 1 + end

A quote may only start between words; string contents are taken verbatim and
never classified as keywords.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
import re
from typing import Dict, List, Optional, Union

from .errors import LexError
from .instructions import BUILTINS


I64_MAX = 2**63 - 1

INTEGER_RE = re.compile(r"[0-9]+")


class OpKind(Enum):
    PUSH_INT = auto()
    PUSH_STR = auto()
    DUP = auto()
    SWAP = auto()
    OVER = auto()
    ADD = auto()
    SUB = auto()
    EQUAL = auto()
    GREATER = auto()
    IF = auto()
    ELSE = auto()
    WHILE = auto()
    DO = auto()
    END = auto()
    CALL = auto()
    POKE = auto()


KEYWORDS: Dict[str, OpKind] = {
    "dup":   OpKind.DUP,
    "swap":  OpKind.SWAP,
    "over":  OpKind.OVER,
    "+":     OpKind.ADD,
    "-":     OpKind.SUB,
    "=":     OpKind.EQUAL,
    ">":     OpKind.GREATER,
    "if":    OpKind.IF,
    "else":  OpKind.ELSE,
    "while": OpKind.WHILE,
    "do":    OpKind.DO,
    "end":   OpKind.END,
    "!":     OpKind.POKE,
}


@dataclass(frozen=True)
class Operation:
    kind: OpKind
    value: Union[int, bytes, str, None] = None
    line: int = 0
    column: int = 0

    def __str__(self) -> str:
        if self.kind is OpKind.PUSH_STR:
            return repr(self.value.decode("utf-8", errors="replace"))
        if self.value is not None:
            return str(self.value)
        for word, kind in KEYWORDS.items():
            if kind is self.kind:
                return word
        return self.kind.name.lower()


class Lexer:
    def __init__(self, text: str, source_name: str = "<string>") -> None:
        self.text = text
        self.source_name = source_name
        self.ops: List[Operation] = []
        self.line = 1
        self.column = 1

    def tokenize(self) -> List[Operation]:
        word: List[str] = []
        word_pos = (1, 1)
        string: Optional[List[str]] = None
        string_pos = (1, 1)

        for ch in self.text:
            if string is not None:
                if ch == '"':
                    self._emit_string("".join(string), *string_pos)
                    string = None
                else:
                    string.append(ch)
            elif ch.isspace():
                if word:
                    self._emit_word("".join(word), *word_pos)
                    word = []
            elif ch == '"':
                if word:
                    raise self._error(self.line, self.column,
                                      f"unexpected '\"' inside word '{''.join(word)}'")
                string = []
                string_pos = (self.line, self.column)
            else:
                if not word:
                    word_pos = (self.line, self.column)
                word.append(ch)
            self._advance(ch)

        if string is not None:
            raise self._error(*string_pos, "unterminated string literal")
        if word:
            self._emit_word("".join(word), *word_pos)
        return self.ops

    # ------------------------------------------------------------------ utils
    def _advance(self, ch: str) -> None:
        if ch == "\n":
            self.line += 1
            self.column = 1
        else:
            self.column += 1

    def _emit_string(self, text: str, line: int, column: int) -> None:
        self.ops.append(Operation(OpKind.PUSH_STR, text.encode("utf-8"), line, column))

    def _emit_word(self, word: str, line: int, column: int) -> None:
        self.ops.append(self._classify(word, line, column))

    def _classify(self, word: str, line: int, column: int) -> Operation:
        kind = KEYWORDS.get(word)
        if kind is not None:
            return Operation(kind, None, line, column)
        if INTEGER_RE.fullmatch(word):
            value = int(word)
            if value > I64_MAX:
                raise self._error(line, column, f"integer literal {word} does not fit in 64 bits")
            return Operation(OpKind.PUSH_INT, value, line, column)
        if word in BUILTINS:
            return Operation(OpKind.CALL, word, line, column)
        raise self._error(line, column, f"unknown word '{word}'")

    def _error(self, line: int, column: int, message: str) -> LexError:
        return LexError(f"{self.source_name}:{line}:{column}: {message}")


def lex(text: str, source_name: str = "<string>") -> List[Operation]:
    return Lexer(text, source_name).tokenize()
