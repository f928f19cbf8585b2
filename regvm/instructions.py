"""
Instruction records and the program listing formatter.

An Instruction is immutable. Operands are stored in source order:

  INC R1            -> (1,)
  SET -5 R0         -> (-5, 0)
  ADD R0 R1 R2      -> (0, 1, 2)
  NEQ R0 R1 @loop   -> (0, 1, "loop")  before label resolution
                    -> (0, 1, 3)       after
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from typing import Optional, Sequence, Tuple, Union

from .opcodes import COMPARISON_OPS, OPERAND_GRAMMAR, Opcode, OperandKind

Operand = Union[int, str]


@dataclass(frozen=True)
class Instruction:
    opcode: Opcode
    operands: Tuple[Operand, ...]
    label: Optional[str] = None
    line: int = 0

    @property
    def is_comparison(self) -> bool:
        return self.opcode in COMPARISON_OPS

    @property
    def target(self) -> Optional[Operand]:
        """Jump operand of a comparison, None for everything else."""
        if self.is_comparison:
            return self.operands[2]
        return None

    def with_target(self, index: int) -> "Instruction":
        """Return a copy with the jump operand replaced by a program index."""
        if not self.is_comparison:
            raise ValueError(f"{self.opcode.value} has no jump target")
        return replace(self, operands=self.operands[:2] + (index,))

    def __str__(self):
        return f"{self.opcode.value} {format_operands(self)}".rstrip()


def format_operands(instr: Instruction) -> str:
    parts = []
    for kind, value in zip(OPERAND_GRAMMAR[instr.opcode], instr.operands):
        if kind is OperandKind.REG:
            parts.append(f"R{value}")
        elif kind is OperandKind.TARGET:
            parts.append(f"@{value}")
        else:
            parts.append(str(value))
    return " ".join(parts)


def format_program(program: Sequence[Instruction], pc: Optional[int] = None) -> str:
    """Return a human-readable listing showing index, label, and instruction.

    Resolved jump targets are shown as ``@<index>`` followed by the label
    they came from when that label is still visible in the program. The
    row at ``pc`` is marked with ``>``.
    """
    labels = {}
    for i, instr in enumerate(program):
        if instr.label is not None:
            labels[i] = instr.label

    lines = []
    lines.append(f"   {'IDX':>4}  {'LABEL':<12}  INSTRUCTION")
    lines.append("-" * 48)
    for i, instr in enumerate(program):
        marker = ">" if i == pc else " "
        label = f"{instr.label}:" if instr.label else ""
        text = str(instr)
        target = instr.target
        if isinstance(target, int) and target in labels:
            text += f"  ; -> {labels[target]}"
        lines.append(f" {marker} {i:>4}  {label:<12}  {text}")

    return "\n".join(lines)
