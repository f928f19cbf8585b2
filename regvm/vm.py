"""
regvm Virtual Machine

Executes a resolved program against a register file and a memory block,
both arrays of signed 32-bit cells.

Execution model:
  1. Fetch the instruction at PC
  2. Execute it: read/write registers and memory (observers fire inline)
  3. Advance PC by one, unless a comparison jumped
  4. run() repeats until PC leaves the program or the step budget is spent

Stop reasons:
  - DONE:    PC is past the end of the program
  - BUDGET:  max_steps instructions executed in this run()
  - FAULT:   runtime fault (no output sink, bad register/address, /0,
             an exception from the output sink or an observer)

Runtime faults are contained: run() and step() log them, send them to the
diagnostics sink, keep them on ``last_fault`` and return FAULT. With
``strict=True`` they are raised to the caller as VMFault instead.
"""

from __future__ import annotations
import dataclasses
import enum
import logging
import operator
from typing import Callable, Dict, List, Optional, Tuple

from .cells import Cells, Observer
from .config import OutputSink, VMConfig
from .diagnostics import Diagnostic, Severity, report
from .instructions import Instruction
from .lexer import Lexer
from .opcodes import Opcode
from .parser import ParseError, Parser

log = logging.getLogger(__name__)


class StopReason(enum.Enum):
    DONE = 'DONE'
    BUDGET = 'BUDGET'
    FAULT = 'FAULT'


class VMFault(Exception):
    """Runtime fault raised while executing one instruction."""

    def __init__(self, message: str, pc: int, instruction: Optional[Instruction] = None):
        self.pc = pc
        self.instruction = instruction
        self.line = instruction.line if instruction is not None else 0
        where = f"pc={pc}"
        if instruction is not None:
            where += f" L{instruction.line} '{instruction}'"
        super().__init__(f"Runtime fault at {where}: {message}")


_ARITHMETIC: Dict[Opcode, Callable[[int, int], int]] = {
    Opcode.ADD: operator.add,
    Opcode.SUB: operator.sub,
    Opcode.MUL: operator.mul,
    Opcode.DIV: operator.floordiv,
    Opcode.MOD: operator.mod,
}

_COMPARE: Dict[Opcode, Callable[[int, int], bool]] = {
    Opcode.EQ: operator.eq,
    Opcode.NEQ: operator.ne,
    Opcode.LT: operator.lt,
    Opcode.GT: operator.gt,
    Opcode.LTE: operator.le,
    Opcode.GTE: operator.ge,
}


class VirtualMachine:
    """Register-based VM for regvm programs.

    Usage:
        out = []
        vm = VirtualMachine(on_output=out.append)
        vm.load("SET 1 R0\\nSET 1 R1\\nADD R0 R1 R2\\nPRINT R2")
        vm.run()
        print(out)   # [2]

    Keyword arguments override fields of ``config``.
    """

    def __init__(self, config: Optional[VMConfig] = None, **overrides):
        if config is None:
            config = VMConfig(**overrides)
        elif overrides:
            config = dataclasses.replace(config, **overrides)
        self._config = config

        self._reg = Cells('register', config.register_count)
        self._mem = Cells('memory', config.memory_size)
        self._program: Tuple[Instruction, ...] = ()
        self._pc = 0
        self._steps = 0
        self._on_output: Optional[OutputSink] = config.on_output
        self.last_fault: Optional[VMFault] = None

        self._dispatch = self._build_dispatch()

    # ══════════════════════════════════════════════
    # Loading
    # ══════════════════════════════════════════════

    def load(self, source: str, reset_pc: bool = True) -> List[Diagnostic]:
        """Lex and parse ``source`` and make it the resident program.

        Returns the lexer diagnostics. ParseError (and UnresolvedLabelError)
        is reported on the diagnostics channel and then propagates; the
        previous program and PC are left as they were.
        ``reset_pc=False`` keeps the current PC, for reloading mid-run.
        """
        lexer = Lexer(source)
        tokens = lexer.tokenize()
        sink = self._config.on_diagnostic
        if sink is not None:
            for diag in lexer.diagnostics:
                sink(diag)

        try:
            program = Parser(tokens).parse()
        except ParseError as e:
            report(log, Diagnostic(Severity.ERROR, e.line, str(e), e.col), sink)
            raise

        self._program = program
        if reset_pc:
            self._pc = 0
        log.info("Loaded %d instruction(s), pc=%d", len(program), self._pc)
        return lexer.diagnostics

    # ══════════════════════════════════════════════
    # Execution
    # ══════════════════════════════════════════════

    def run(self) -> StopReason:
        """Run until the program ends, the step budget runs out, or a fault."""
        budget = self._config.max_steps
        self._steps = 0

        while self._in_bounds():
            if budget is not None and self._steps >= budget:
                log.info("Step budget of %d exhausted at pc=%d", budget, self._pc)
                return StopReason.BUDGET
            if not self._execute_contained():
                return StopReason.FAULT
            self._steps += 1

        return StopReason.DONE

    def step(self) -> Optional[StopReason]:
        """Execute one instruction. Returns a StopReason if nothing ran or it faulted."""
        if not self._in_bounds():
            return StopReason.DONE
        if not self._execute_contained():
            return StopReason.FAULT
        self._steps += 1
        return None

    def _in_bounds(self) -> bool:
        return 0 <= self._pc < len(self._program)

    def _execute_contained(self) -> bool:
        """Execute the instruction at PC; report and swallow faults unless strict."""
        try:
            self._execute_step()
        except VMFault as fault:
            self.last_fault = fault
            report(log, Diagnostic(Severity.ERROR, fault.line, str(fault)),
                   self._config.on_diagnostic)
            if self._config.strict:
                raise
            return False
        return True

    def _execute_step(self):
        pc = self._pc
        instr = self._program[pc]
        handler = self._dispatch[instr.opcode]
        try:
            jumped = handler(*instr.operands)
        except IndexError as e:
            raise VMFault(str(e), pc, instr) from e
        except ZeroDivisionError as e:
            raise VMFault(f"{instr.opcode.value} by zero", pc, instr) from e
        except VMFault:
            raise
        except Exception as e:
            # raised by the output sink or a register/memory observer
            raise VMFault(f"host callback failed: {type(e).__name__}: {e}",
                          pc, instr) from e

        if not jumped:
            self._pc += 1

    # ══════════════════════════════════════════════
    # Instruction handlers
    # ══════════════════════════════════════════════
    # Handlers take the instruction's operands and return True when they
    # set the PC themselves.

    def _build_dispatch(self) -> Dict[Opcode, Callable[..., bool]]:
        table = {
            Opcode.INC: self._op_inc,
            Opcode.DEC: self._op_dec,
            Opcode.SET: self._op_set,
            Opcode.LOADIM: self._op_loadim,
            Opcode.LOAD: self._op_load,
            Opcode.STORE: self._op_store,
            Opcode.PRINT: self._op_print,
        }
        for op, fn in _ARITHMETIC.items():
            table[op] = self._arith(fn)
        for op, fn in _COMPARE.items():
            table[op] = self._branch(fn)
        return table

    def _op_inc(self, rx):
        self._reg[rx] = self._reg[rx] + 1
        return False

    def _op_dec(self, rx):
        self._reg[rx] = self._reg[rx] - 1
        return False

    def _op_set(self, value, rx):
        self._reg[rx] = value
        return False

    def _op_loadim(self, addr, rx):
        self._reg[rx] = self._mem[addr]
        return False

    def _op_load(self, ra, rx):
        self._reg[rx] = self._mem[self._reg[ra]]
        return False

    def _op_store(self, ra, rx):
        self._mem[self._reg[ra]] = self._reg[rx]
        return False

    def _op_print(self, rx):
        value = self._reg[rx]
        if self._on_output is None:
            raise VMFault("PRINT with no output sink configured", self._pc,
                          self._program[self._pc])
        self._on_output(value)
        return False

    def _arith(self, fn: Callable[[int, int], int]):
        def handler(ra, rb, rdest):
            self._reg[rdest] = fn(self._reg[ra], self._reg[rb])
            return False
        return handler

    def _branch(self, fn: Callable[[int, int], bool]):
        def handler(ra, rb, target):
            if fn(self._reg[ra], self._reg[rb]):
                self._pc = target
                return True
            return False
        return handler

    # ══════════════════════════════════════════════
    # Inspection / control
    # ══════════════════════════════════════════════

    def registers(self) -> Cells:
        """Live register file (not a copy)."""
        return self._reg

    def memory(self) -> Cells:
        """Live memory block (not a copy)."""
        return self._mem

    def erase_registers(self):
        self._reg.erase()

    def erase_memory(self):
        self._mem.erase()

    def set_pc(self, pc: int):
        if not isinstance(pc, int) or isinstance(pc, bool):
            raise TypeError(f"pc must be int, got {type(pc).__name__}")
        self._pc = pc

    @property
    def pc(self) -> int:
        return self._pc

    @property
    def program(self) -> Tuple[Instruction, ...]:
        return self._program

    @property
    def steps(self) -> int:
        """Instructions executed by the latest run(), plus any step() calls since."""
        return self._steps

    @property
    def config(self) -> VMConfig:
        return self._config

    def next_instruction(self) -> Optional[Instruction]:
        if self._in_bounds():
            return self._program[self._pc]
        return None

    def set_output(self, sink: Optional[OutputSink]):
        """Install, replace or (with None) remove the PRINT output sink."""
        self._on_output = sink

    def watch_registers(self, callback: Optional[Observer]):
        """Call ``callback(value, index)`` after every register write."""
        self._reg.watch(callback)

    def watch_memory(self, callback: Optional[Observer]):
        """Call ``callback(value, address)`` after every memory write."""
        self._mem.watch(callback)
