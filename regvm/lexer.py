"""
Lexer / Tokenizer for regvm assembly.

Converts source text into a flat token list terminated by a single EOF
token. The lexer is lenient: malformed registers, unknown identifiers and
stray characters are reported as diagnostics and skipped, and scanning
carries on with the next character. Only the parser is fail-fast.

Token vocabulary:
  REGISTER   R0 .. R9            value = register index
  NUMBER     42, -7              value = int
  OPCODE     INC, ADD, NEQ ...   value = Opcode
  LABEL      loop:               value = "loop"
  JUMP       @loop               value = "loop"
  EOF
"""

from __future__ import annotations
import enum
import logging
import string
from dataclasses import dataclass
from typing import List, Union

from .diagnostics import Diagnostic, Severity, report
from .opcodes import MNEMONICS, Opcode

log = logging.getLogger(__name__)


# ──────────────────────────────────────────────
# Token types
# ──────────────────────────────────────────────

class TokenType(enum.Enum):
    REGISTER = "REGISTER"
    NUMBER = "NUMBER"
    OPCODE = "OPCODE"
    LABEL = "LABEL"
    JUMP = "JUMP"
    EOF = "EOF"


@dataclass(frozen=True)
class Token:
    type: TokenType
    value: Union[int, str, Opcode, None]
    line: int
    col: int

    def __repr__(self):
        return f"Token({self.type.name}, {self.value!r}, L{self.line}:{self.col})"


DIGITS = "0123456789"
LETTERS = string.ascii_letters
WHITESPACE = " \t\r"


class Lexer:
    """Tokenizes regvm source into a list of Tokens.

    Lexical problems end up in ``self.diagnostics``; tokenize() never
    raises for bad input.
    """

    def __init__(self, source: str):
        self.source = source
        self.pos = 0
        self.line = 1
        self.col = 1
        self.tokens: List[Token] = []
        self.diagnostics: List[Diagnostic] = []
        # start of the token being scanned
        self._start_line = 1
        self._start_col = 1

    def _peek(self, offset: int = 0) -> str:
        i = self.pos + offset
        return self.source[i] if i < len(self.source) else "\0"

    def _advance(self) -> str:
        ch = self.source[self.pos]
        self.pos += 1
        if ch == "\n":
            self.line += 1
            self.col = 1
        else:
            self.col += 1
        return ch

    def _at_end(self) -> bool:
        return self.pos >= len(self.source)

    def _emit(self, ttype: TokenType, value) -> None:
        self.tokens.append(Token(ttype, value, self._start_line, self._start_col))

    def _error(self, message: str) -> None:
        diag = Diagnostic(Severity.ERROR, self._start_line, message, self._start_col)
        self.diagnostics.append(report(log, diag))

    # ── Scanners ──────────────────────────────

    def _skip_comment(self):
        while not self._at_end() and self._peek() != "\n":
            self._advance()

    def _read_register(self):
        # 'R' already consumed
        nxt = self._peek()
        if nxt in DIGITS:
            self._advance()
            self._emit(TokenType.REGISTER, int(nxt))
        else:
            shown = "" if self._at_end() else nxt
            self._error(f"Invalid register: R{shown}")

    def _read_number(self, start: int):
        while self._peek() in DIGITS:
            self._advance()
        self._emit(TokenType.NUMBER, int(self.source[start:self.pos]))

    def _read_jump_target(self):
        # '@' already consumed
        start = self.pos
        while self._peek() in LETTERS:
            self._advance()
        name = self.source[start:self.pos]
        if not name:
            self._error("Missing label name after '@'")
            return
        self._emit(TokenType.JUMP, name)

    def _read_identifier(self, start: int):
        while self._peek() in LETTERS:
            self._advance()
        text = self.source[start:self.pos]

        if self._peek() == ":":
            self._advance()  # ':' is consumed but not stored
            self._emit(TokenType.LABEL, text)
            return

        opcode = MNEMONICS.get(text)
        if opcode is None:
            self._error(f"Invalid identifier {text}")
            return
        self._emit(TokenType.OPCODE, opcode)

    # ── Driver ────────────────────────────────

    def tokenize(self) -> List[Token]:
        """Tokenize the entire source and return a list of tokens."""
        self.tokens = []
        self.diagnostics = []

        while not self._at_end():
            self._start_line, self._start_col = self.line, self.col
            start = self.pos
            ch = self._advance()

            if ch in WHITESPACE or ch == "\n":
                continue

            if ch == ";":
                self._skip_comment()
                continue

            if ch == "R":
                self._read_register()
                continue

            if ch == "-":
                if self._peek() in DIGITS:
                    self._read_number(start)
                else:
                    self._error("Expected digits after '-'")
                continue

            if ch in DIGITS:
                self._read_number(start)
                continue

            if ch == "@":
                self._read_jump_target()
                continue

            if ch in LETTERS:
                self._read_identifier(start)
                continue

            self._error(f"Unexpected character: {ch!r}")

        self._start_line, self._start_col = self.line, self.col
        self._emit(TokenType.EOF, None)
        return self.tokens


def scan(source: str) -> List[Token]:
    """Tokenize source, discarding the diagnostics list (they are still logged)."""
    return Lexer(source).tokenize()
