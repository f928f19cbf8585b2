"""
regvm: a small register-machine assembly toolchain
===================================================

Lexes, parses and runs programs for a VM with up to ten registers and a flat block of
signed 32-bit memory cells.

Architecture:
    ┌──────────┐    ┌──────────┐    ┌──────────────┐    ┌────────────────┐
    │ Source   │───>│  Lexer   │───>│   Parser     │───>│ VirtualMachine │
    │ (text)   │    │ (tokens) │    │ (resolved    │    │ (registers,    │
    └──────────┘    └──────────┘    │  program)    │    │  memory, PC)   │
                                    └──────────────┘    └────────────────┘

    - lexer.py:        hand-written scanner, lenient (diagnostics, no raise)
    - parser.py:       label parity check, statement parse, label resolution
    - instructions.py: immutable Instruction records + listing formatter
    - cells.py:        int32 cell arrays with a post-write observer
    - vm.py:           fetch/execute loop with a step budget
"""

__version__ = "0.1.0"

from .cells import Cells
from .config import ConfigError, VMConfig
from .diagnostics import Diagnostic, Severity
from .instructions import Instruction, format_program
from .lexer import Lexer, Token, TokenType, scan
from .opcodes import Opcode
from .parser import ParseError, Parser, UnresolvedLabelError, parse
from .vm import StopReason, VirtualMachine, VMFault


def run_source(source: str, **settings) -> list:
    """Load and run ``source`` on a fresh VM and return everything it PRINTed.

    ``settings`` are VMConfig fields; ``on_output`` is supplied here.
    """
    output = []
    vm = VirtualMachine(on_output=output.append, **settings)
    vm.load(source)
    vm.run()
    return output
