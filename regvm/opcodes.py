"""
Opcode table for the regvm instruction set.

Each opcode has a fixed operand grammar. The parser reads OPERAND_GRAMMAR
to know which tokens must follow a mnemonic; the VM reads it back out of
the Instruction records it is handed.

  REG     register reference          e.g. R2
  IMM     signed integer literal      e.g. -15
  TARGET  jump target                 e.g. @loop (resolved to an index)
"""

from __future__ import annotations
import enum
from types import MappingProxyType
from typing import Mapping, Tuple


class Opcode(enum.Enum):
    INC = "INC"
    DEC = "DEC"
    SET = "SET"
    LOAD = "LOAD"
    LOADIM = "LOADIM"
    PRINT = "PRINT"
    STORE = "STORE"

    # Conditional jumps
    EQ = "EQ"
    NEQ = "NEQ"
    LT = "LT"
    GT = "GT"
    LTE = "LTE"
    GTE = "GTE"

    # Three-register arithmetic
    ADD = "ADD"
    SUB = "SUB"
    MUL = "MUL"
    DIV = "DIV"
    MOD = "MOD"


class OperandKind(enum.Enum):
    REG = "REG"
    IMM = "IMM"
    TARGET = "TARGET"


REG = OperandKind.REG
IMM = OperandKind.IMM
TARGET = OperandKind.TARGET


# Mnemonic text -> opcode. Case-sensitive, uppercase only.
MNEMONICS: Mapping[str, Opcode] = MappingProxyType({op.value: op for op in Opcode})

COMPARISON_OPS = frozenset({
    Opcode.EQ, Opcode.NEQ, Opcode.LT, Opcode.GT, Opcode.LTE, Opcode.GTE,
})

ARITHMETIC_OPS = frozenset({
    Opcode.ADD, Opcode.SUB, Opcode.MUL, Opcode.DIV, Opcode.MOD,
})


_grammar = {
    Opcode.INC:    (REG,),
    Opcode.DEC:    (REG,),
    Opcode.SET:    (IMM, REG),
    Opcode.LOADIM: (IMM, REG),
    Opcode.LOAD:   (REG, REG),
    Opcode.STORE:  (REG, REG),
    Opcode.PRINT:  (REG,),
}
for _op in ARITHMETIC_OPS:
    _grammar[_op] = (REG, REG, REG)
for _op in COMPARISON_OPS:
    _grammar[_op] = (REG, REG, TARGET)

OPERAND_GRAMMAR: Mapping[Opcode, Tuple[OperandKind, ...]] = MappingProxyType(_grammar)
del _grammar, _op
