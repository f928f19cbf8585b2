"""
Parser for regvm assembly.

Turns the lexer's token list into a tuple of resolved Instructions in
three steps:

  1. Label parity check: every @target in the token stream must have a
     matching ``name:`` declaration somewhere in the stream. Runs before
     any structural parsing, so forward references are legal and a
     missing label never yields a half-built program.
  2. Structural parse: statement = [LABEL] OPCODE operands, repeated
     until EOF. Operand kinds come from opcodes.OPERAND_GRAMMAR. Any
     deviation raises ParseError immediately.
  3. Label resolution: one pass records label -> instruction index, a
     second pass rewrites the jump operand of every comparison.

The label table only lives for the duration of step 3.
"""

from __future__ import annotations
import logging
from typing import Dict, List, Optional, Tuple

from .instructions import Instruction, Operand
from .lexer import Lexer, Token, TokenType
from .opcodes import OPERAND_GRAMMAR, OperandKind

log = logging.getLogger(__name__)


class ParseError(Exception):
    def __init__(self, message: str, token: Token):
        self.token = token
        self.line = token.line
        self.col = token.col
        loc = f"L{token.line}:{token.col}"
        super().__init__(f"Parse error at {loc}: {message} (got {_describe(token)})")


class UnresolvedLabelError(ParseError):
    """A jump target names a label that is never declared."""

    def __init__(self, label: str, token: Token):
        self.label = label
        super().__init__(f"Missing declared label {label!r}", token)


def _describe(token: Token) -> str:
    if token.type is TokenType.EOF:
        return "end of input"
    if token.type is TokenType.OPCODE:
        return f"OPCODE {token.value.value}"
    return f"{token.type.name} = {token.value!r}"


_EXPECTED = {
    OperandKind.REG: (TokenType.REGISTER, "register"),
    OperandKind.IMM: (TokenType.NUMBER, "number"),
    OperandKind.TARGET: (TokenType.JUMP, "jump target"),
}


class Parser:
    """Recursive descent parser producing a resolved program from tokens."""

    def __init__(self, tokens: List[Token]):
        if not tokens or tokens[-1].type is not TokenType.EOF:
            raise ValueError("token stream must end with an EOF token")
        self.tokens = tokens
        self.pos = 0

    # ── Helpers ─────────────────────────────

    def _cur(self) -> Token:
        return self.tokens[self.pos]

    def _at(self, *types: TokenType) -> bool:
        return self._cur().type in types

    def _advance(self) -> Token:
        tok = self.tokens[self.pos]
        if self.pos < len(self.tokens) - 1:
            self.pos += 1
        return tok

    def _expect(self, ttype: TokenType, msg: str) -> Token:
        if self._cur().type is not ttype:
            raise ParseError(msg, self._cur())
        return self._advance()

    # ── Top level ───────────────────────────

    def parse(self) -> Tuple[Instruction, ...]:
        """Check labels, parse every statement, then resolve jump targets."""
        self.pos = 0
        self._check_label_parity()

        statements: List[Instruction] = []
        while not self._at(TokenType.EOF):
            statements.append(self._parse_statement())

        program = resolve_labels(statements)
        log.debug("Parsed %d instruction(s)", len(program))
        return program

    def _check_label_parity(self):
        """Fail if any @target has no declaration anywhere in the stream."""
        referenced: Dict[str, Token] = {}
        declared = set()
        for tok in self.tokens:
            if tok.type is TokenType.JUMP:
                referenced.setdefault(tok.value, tok)
            elif tok.type is TokenType.LABEL:
                declared.add(tok.value)

        for name, tok in referenced.items():
            if name not in declared:
                raise UnresolvedLabelError(name, tok)

    # ── Statements ──────────────────────────

    def _parse_statement(self) -> Instruction:
        label: Optional[str] = None
        if self._at(TokenType.LABEL):
            label = self._advance().value

        what = f"instruction after label {label!r}" if label else "instruction"
        op_tok = self._expect(TokenType.OPCODE, f"Expected {what}")
        opcode = op_tok.value

        operands: List[Operand] = []
        for position, kind in enumerate(OPERAND_GRAMMAR[opcode], 1):
            ttype, name = _EXPECTED[kind]
            tok = self._expect(
                ttype, f"{opcode.value} expects a {name} as operand {position}")
            operands.append(tok.value)

        return Instruction(opcode, tuple(operands), label=label, line=op_tok.line)


# ──────────────────────────────────────────────
# Label resolution
# ──────────────────────────────────────────────

def resolve_labels(statements: List[Instruction]) -> Tuple[Instruction, ...]:
    """Replace every comparison's label operand with its instruction index.

    A label declared more than once resolves to its last declaration.
    """
    table: Dict[str, int] = {}
    for i, instr in enumerate(statements):
        if instr.label is None:
            continue
        if instr.label in table:
            log.warning("L%d: label %r redeclared; jumps now target index %d (was %d)",
                        instr.line, instr.label, i, table[instr.label])
        table[instr.label] = i

    resolved = []
    for instr in statements:
        if instr.is_comparison:
            if instr.target not in table:
                raise ValueError(f"L{instr.line}: no label {instr.target!r} to resolve")
            instr = instr.with_target(table[instr.target])
        resolved.append(instr)
    return tuple(resolved)


def parse(source: str) -> Tuple[Instruction, ...]:
    """Lex and parse source text into a resolved program."""
    return Parser(Lexer(source).tokenize()).parse()
