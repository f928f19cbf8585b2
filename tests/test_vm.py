"""
Virtual machine tests for regvm.

Tests prove the VM executes every opcode, honours the program counter
discipline and step budget, contains runtime faults, and fires register
and memory observers at the right time.
"""
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import glob
import logging

import pytest
from regvm import run_source
from regvm.config import ConfigError, VMConfig
from regvm.diagnostics import Severity
from regvm.parser import ParseError, UnresolvedLabelError
from regvm.vm import StopReason, VirtualMachine, VMFault

EXAMPLES_DIR = os.path.join(os.path.dirname(__file__), "..", "examples")


def _vm(**settings):
    """VM with an output list attached as ``vm.out``."""
    out = []
    vm = VirtualMachine(on_output=out.append, **settings)
    vm.out = out
    return vm


def _run(source: str, **settings):
    vm = _vm(**settings)
    vm.load(source)
    reason = vm.run()
    return vm, reason


# ═══════════════════════════════════════════════
# Reference programs
# ═══════════════════════════════════════════════

class TestReferencePrograms:
    def test_add_and_print(self):
        assert run_source("SET 1 R0\nSET 1 R1\nADD R0 R1 R2\nPRINT R2") == [2]

    def test_counted_loop(self):
        src = """
            SET 0 R0
            SET 10 R1
            SET 0 R2
            loop:
            INC R2
            INC R0
            NEQ R0 R1 @loop
            PRINT R2
        """
        vm, reason = _run(src, max_steps=1000)
        assert vm.out == [10]
        assert reason is StopReason.DONE

    def test_comments(self):
        src = """
            ; another blank comment
            SET 0 R0 ; comment here
            PRINT R0 ; another comment
            ; another blank comment 2
        """
        assert run_source(src) == [0]

    def test_one_vm_many_programs(self):
        """Same VM reused across load/run cycles, memory erased in between."""
        cases = [
            ("SET 1 R0\nSET 1 R1\nADD R0 R1 R2\nPRINT R2", 2),
            ("SET 3 R0\nSET 4 R1\nMUL R0 R1 R2\nPRINT R2", 12),
            ("SET 0 R0\nPRINT R0", 0),
        ]
        vm = _vm()
        for source, expected in cases:
            vm.load(source)
            vm.run()
            assert vm.out.pop() == expected
            vm.erase_memory()

    def test_example_files(self):
        expected = {
            "add.asm": [2],
            "count.asm": [10],
            "fib.asm": [0, 1, 1, 2, 3, 5, 8, 13, 21, 34],
            "memsum.asm": [15, 5],
        }
        found = sorted(glob.glob(os.path.join(EXAMPLES_DIR, "*.asm")))
        assert found, "no example programs found"
        for path in found:
            with open(path, encoding="utf-8") as f:
                src = f.read()
            out = run_source(src, register_count=10, max_steps=10_000)
            name = os.path.basename(path)
            if name in expected:
                assert out == expected[name], name


# ═══════════════════════════════════════════════
# Individual opcodes
# ═══════════════════════════════════════════════

class TestOpcodes:
    def test_inc_dec(self):
        vm, _ = _run("INC R0\nINC R0\nINC R0\nDEC R1")
        assert vm.registers()[0] == 3
        assert vm.registers()[1] == -1

    def test_set_negative(self):
        vm, _ = _run("SET -17 R3")
        assert vm.registers()[3] == -17

    def test_store_and_load(self):
        vm, _ = _run("SET 5 R0\nSET 99 R1\nSTORE R0 R1\nLOAD R0 R2")
        assert vm.memory()[5] == 99
        assert vm.registers()[2] == 99

    def test_loadim_reads_memory_not_immediate(self):
        vm = _vm()
        vm.memory()[7] = 1234
        vm.load("LOADIM 7 R0")
        vm.run()
        assert vm.registers()[0] == 1234

    @pytest.mark.parametrize("op, a, b, expected", [
        ("ADD", 7, 5, 12),
        ("SUB", 7, 5, 2),
        ("SUB", 5, 7, -2),
        ("MUL", -6, 7, -42),
        ("DIV", 7, 2, 3),
        ("MOD", 7, 2, 1),
        ("DIV", -7, 2, -4),
        ("MOD", -7, 2, 1),
        ("DIV", 7, -2, -4),
        ("MOD", 7, -2, -1),
    ])
    def test_arithmetic(self, op, a, b, expected):
        vm, _ = _run(f"SET {a} R0\nSET {b} R1\n{op} R0 R1 R2")
        assert vm.registers()[2] == expected

    def test_mod_falls_through(self):
        """MOD must not be treated as a jump."""
        vm, _ = _run("SET 9 R0\nSET 4 R1\nMOD R0 R1 R2\nPRINT R2")
        assert vm.out == [1]

    @pytest.mark.parametrize("op, a, b, taken", [
        ("EQ", 1, 1, True), ("EQ", 1, 2, False),
        ("NEQ", 1, 2, True), ("NEQ", 2, 2, False),
        ("LT", 1, 2, True), ("LT", 2, 2, False),
        ("GT", 3, 2, True), ("GT", 2, 2, False),
        ("LTE", 2, 2, True), ("LTE", 3, 2, False),
        ("GTE", 2, 2, True), ("GTE", 1, 2, False),
    ])
    def test_comparisons(self, op, a, b, taken):
        src = f"""
            SET {a} R0
            SET {b} R1
            {op} R0 R1 @yes
            SET 0 R2
            PRINT R2
            SET 99 R0
            EQ R0 R0 @end
            yes: SET 1 R2
            PRINT R2
            end: SET 0 R3
        """
        vm, _ = _run(src)
        assert vm.out == [1 if taken else 0]


class TestWraparound:
    def test_inc_wraps_to_int32_min(self):
        vm = _vm()
        vm.registers()[0] = 2**31 - 1
        vm.load("INC R0")
        vm.run()
        assert vm.registers()[0] == -2**31

    def test_mul_wraps(self):
        vm, _ = _run("SET 65536 R0\nMUL R0 R0 R1")
        assert vm.registers()[1] == 0

    def test_set_literal_wraps(self):
        vm, _ = _run("SET 4294967295 R0")
        assert vm.registers()[0] == -1

    def test_div_min_by_minus_one(self):
        vm = _vm()
        vm.registers()[0] = -2**31
        vm.registers()[1] = -1
        vm.load("DIV R0 R1 R2")
        vm.run()
        assert vm.registers()[2] == -2**31


# ═══════════════════════════════════════════════
# Program counter, run() and step()
# ═══════════════════════════════════════════════

class TestExecution:
    def test_straight_line_runs_each_instruction_once(self):
        src = "INC R0\nINC R1\nINC R1\nSET 7 R2\nPRINT R2"
        vm = _vm(max_steps=5)
        writes = []
        vm.watch_registers(lambda value, idx: writes.append((vm.pc, idx)))
        vm.load(src)
        assert vm.run() is StopReason.DONE
        assert vm.steps == 5
        assert [pc for pc, _ in writes] == [0, 1, 2, 3]
        assert vm.out == [7]

    def test_step_budget_stops_infinite_loop(self):
        vm, reason = _run("spin: EQ R0 R0 @spin", max_steps=50)
        assert reason is StopReason.BUDGET
        assert vm.steps == 50
        assert vm.pc == 0

    def test_budget_is_per_run(self):
        vm = _vm(max_steps=3)
        vm.load("INC R0\nINC R0\nINC R0\nINC R0\nINC R0")
        assert vm.run() is StopReason.BUDGET
        assert vm.pc == 3
        assert vm.run() is StopReason.DONE
        assert vm.registers()[0] == 5

    def test_step_executes_one(self):
        vm = _vm()
        vm.load("INC R0\nINC R0")
        assert vm.step() is None
        assert vm.pc == 1
        assert vm.registers()[0] == 1
        assert vm.step() is None
        assert vm.step() is StopReason.DONE
        assert vm.registers()[0] == 2

    def test_taken_jump_does_not_also_advance(self):
        vm = _vm()
        vm.load("EQ R0 R0 @target\nINC R1\ntarget: INC R2")
        vm.step()
        assert vm.pc == 2

    def test_untaken_jump_falls_through(self):
        vm = _vm()
        vm.load("NEQ R0 R0 @target\nINC R1\ntarget: INC R2")
        vm.step()
        assert vm.pc == 1

    def test_next_instruction(self):
        vm = _vm()
        assert vm.next_instruction() is None
        vm.load("INC R0\nPRINT R0")
        assert str(vm.next_instruction()) == "INC R0"
        vm.set_pc(1)
        assert str(vm.next_instruction()) == "PRINT R0"

    def test_set_pc_past_end(self):
        vm = _vm()
        vm.load("INC R0")
        vm.set_pc(5)
        assert vm.run() is StopReason.DONE
        assert vm.step() is StopReason.DONE
        assert vm.registers()[0] == 0

    @pytest.mark.parametrize("pc", ["3", 1.0, True, None])
    def test_set_pc_rejects_non_int(self, pc):
        vm = _vm()
        vm.load("INC R0\nINC R0")
        with pytest.raises(TypeError, match="pc must be int"):
            vm.set_pc(pc)
        assert vm.pc == 0
        assert vm.run() is StopReason.DONE

    def test_run_with_nothing_loaded(self):
        vm = _vm()
        assert vm.run() is StopReason.DONE


class TestLoading:
    def test_load_resets_pc(self):
        vm = _vm()
        vm.load("INC R0\nINC R0\nINC R0")
        vm.step()
        vm.load("DEC R0\nDEC R0")
        assert vm.pc == 0

    def test_reload_without_pc_reset(self):
        vm = _vm()
        vm.load("INC R0\nINC R0\nINC R0")
        vm.step()
        vm.step()
        vm.load("DEC R1\nDEC R1\nPRINT R0", reset_pc=False)
        assert vm.pc == 2
        vm.run()
        assert vm.out == [2]

    def test_registers_survive_load(self):
        vm, _ = _run("SET 42 R1")
        vm.load("PRINT R1")
        vm.run()
        assert vm.out == [42]

    def test_failed_load_keeps_previous_program(self):
        vm = _vm()
        vm.load("SET 1 R0\nPRINT R0")
        vm.step()
        with pytest.raises(UnresolvedLabelError):
            vm.load("EQ R0 R0 @missing")
        with pytest.raises(ParseError):
            vm.load("SET 1")
        assert vm.pc == 1
        assert len(vm.program) == 2
        vm.run()
        assert vm.out == [1]

    def test_missing_label_runs_nothing(self):
        vm = _vm()
        with pytest.raises(UnresolvedLabelError):
            vm.load("PRINT R0\nEQ R0 R0 @missing")
        vm.run()
        assert vm.out == []

    def test_load_returns_lexer_diagnostics(self):
        seen = []
        vm = _vm(on_diagnostic=seen.append)
        diags = vm.load("INC R0 , INC R1")
        assert len(diags) == 1
        assert seen == diags
        assert len(vm.program) == 2

    def test_parse_error_reaches_diagnostic_sink(self):
        seen = []
        vm = _vm(on_diagnostic=seen.append)
        with pytest.raises(ParseError) as exc:
            vm.load("INC R0 R1")
        assert len(seen) == 1
        assert seen[0].severity is Severity.ERROR
        assert (seen[0].line, seen[0].col) == (exc.value.line, exc.value.col)
        assert seen[0].message == str(exc.value)

    def test_missing_label_reaches_diagnostic_sink(self):
        seen = []
        vm = _vm(on_diagnostic=seen.append)
        with pytest.raises(UnresolvedLabelError):
            vm.load("\nEQ R0 R0 @nowhere")
        assert [d.line for d in seen] == [2]
        assert "Missing declared label 'nowhere'" in seen[0].message


# ═══════════════════════════════════════════════
# Faults
# ═══════════════════════════════════════════════

class TestFaults:
    def test_print_without_sink(self, caplog):
        caplog.set_level(logging.ERROR, logger="regvm")
        vm = VirtualMachine()
        vm.load("SET 3 R0\nPRINT R0\nINC R0")
        assert vm.run() is StopReason.FAULT
        assert vm.pc == 1
        assert vm.registers()[0] == 3
        assert "no output sink" in caplog.text
        assert isinstance(vm.last_fault, VMFault)
        assert vm.last_fault.pc == 1

    def test_set_output_after_construction(self):
        out = []
        vm = VirtualMachine()
        vm.load("SET 3 R0\nPRINT R0")
        vm.set_output(out.append)
        vm.run()
        assert out == [3]

    def test_register_out_of_range(self):
        vm, reason = _run("INC R5", register_count=4)
        assert reason is StopReason.FAULT
        assert "register index 5 out of range" in str(vm.last_fault)

    def test_memory_out_of_range(self):
        vm, reason = _run("LOADIM 16 R0", memory_size=16)
        assert reason is StopReason.FAULT

    def test_negative_address_faults(self):
        vm, reason = _run("SET -1 R0\nSTORE R0 R0", memory_size=16)
        assert reason is StopReason.FAULT
        assert vm.memory()[15] == 0

    def test_division_by_zero(self):
        vm, reason = _run("SET 1 R0\nDIV R0 R1 R2")
        assert reason is StopReason.FAULT
        assert "DIV by zero" in str(vm.last_fault)

    def test_modulo_by_zero(self):
        _, reason = _run("MOD R0 R1 R2")
        assert reason is StopReason.FAULT

    def test_step_contains_fault(self):
        vm = VirtualMachine()
        vm.load("PRINT R0")
        assert vm.step() is StopReason.FAULT
        assert vm.pc == 0

    def test_fault_goes_to_diagnostic_sink(self):
        seen = []
        vm = VirtualMachine(on_diagnostic=seen.append)
        vm.load("\n\nPRINT R0")
        vm.run()
        assert len(seen) == 1
        assert seen[0].severity is Severity.ERROR
        assert seen[0].line == 3
        assert str(seen[0]).startswith("L3 Error:")

    def test_output_sink_error_is_a_fault(self):
        def broken_sink(value):
            raise RuntimeError("sink closed")

        seen = []
        vm = VirtualMachine(on_output=broken_sink, on_diagnostic=seen.append)
        vm.load("SET 1 R0\nPRINT R0\nINC R0")
        assert vm.run() is StopReason.FAULT
        assert vm.pc == 1
        assert vm.registers()[0] == 1
        assert "RuntimeError: sink closed" in str(vm.last_fault)
        assert isinstance(vm.last_fault.__cause__, RuntimeError)
        assert len(seen) == 1
        assert seen[0].line == 2

    def test_observer_error_is_a_fault(self):
        def broken_observer(value, idx):
            raise ValueError("observer failed")

        vm = _vm()
        vm.watch_registers(broken_observer)
        vm.load("SET 7 R0")
        assert vm.step() is StopReason.FAULT
        assert vm.pc == 0
        assert "ValueError: observer failed" in str(vm.last_fault)

        vm.watch_registers(None)
        vm.watch_memory(broken_observer)
        vm.load("STORE R0 R0")
        assert vm.run() is StopReason.FAULT

    def test_strict_mode_raises_host_callback_error(self):
        def broken_sink(value):
            raise RuntimeError("sink closed")

        vm = VirtualMachine(on_output=broken_sink, strict=True)
        vm.load("PRINT R0")
        with pytest.raises(VMFault, match="sink closed"):
            vm.run()

    def test_strict_mode_raises(self):
        vm = VirtualMachine(strict=True)
        vm.load("PRINT R0")
        with pytest.raises(VMFault, match="no output sink"):
            vm.run()
        with pytest.raises(VMFault):
            vm.step()


# ═══════════════════════════════════════════════
# Observation and inspection
# ═══════════════════════════════════════════════

class TestObservers:
    def test_register_observer_sees_value_and_index(self):
        seen = []
        vm = _vm()
        vm.watch_registers(lambda value, idx: seen.append((value, idx)))
        vm.load("SET 5 R1\nINC R1\nPRINT R1")
        vm.run()
        assert seen == [(5, 1), (6, 1)]

    def test_memory_observer(self):
        seen = []
        vm = _vm()
        vm.watch_memory(lambda value, addr: seen.append((value, addr)))
        vm.load("SET 3 R0\nSET 8 R1\nSTORE R0 R1\nLOAD R0 R2")
        vm.run()
        assert seen == [(8, 3)]

    def test_observer_fires_before_pc_advances(self):
        pcs = []
        vm = _vm()
        vm.watch_registers(lambda value, idx: pcs.append(vm.pc))
        vm.load("SET 1 R0\nSET 2 R0\nSET 3 R0")
        vm.run()
        assert pcs == [0, 1, 2]

    def test_new_observer_replaces_old(self):
        first, second = [], []
        vm = _vm()
        vm.watch_registers(lambda v, i: first.append(v))
        vm.watch_registers(lambda v, i: second.append(v))
        vm.load("SET 1 R0")
        vm.run()
        assert first == []
        assert second == [1]

    def test_unwatch(self):
        seen = []
        vm = _vm()
        vm.watch_registers(lambda v, i: seen.append(v))
        vm.watch_registers(None)
        vm.load("SET 1 R0")
        vm.run()
        assert seen == []

    def test_observer_sees_wrapped_value(self):
        seen = []
        vm = _vm()
        vm.registers()[0] = 2**31 - 1
        vm.watch_registers(lambda v, i: seen.append(v))
        vm.load("INC R0")
        vm.run()
        assert seen == [-2**31]


class TestInspection:
    def test_registers_are_live(self):
        vm = _vm()
        regs = vm.registers()
        vm.load("SET 9 R2")
        vm.run()
        assert regs[2] == 9
        assert regs is vm.registers()

    def test_memory_is_live(self):
        vm = _vm()
        mem = vm.memory()
        vm.load("SET 4 R0\nSTORE R0 R0")
        vm.run()
        assert mem[4] == 4

    def test_sizes_follow_config(self):
        vm = VirtualMachine(register_count=10, memory_size=32)
        assert len(vm.registers()) == 10
        assert len(vm.memory()) == 32

    def test_defaults(self):
        vm = VirtualMachine()
        assert len(vm.registers()) == 4
        assert len(vm.memory()) == 1024
        assert vm.config.max_steps is None

    def test_erase_zeroes_everything(self):
        vm, _ = _run("""
            SET 7 R0
            SET -3 R1
            STORE R0 R1
            SET 0 R2
            STORE R2 R0
        """)
        assert vm.memory()[7] == -3
        vm.erase_registers()
        vm.erase_memory()
        assert list(vm.registers()) == [0, 0, 0, 0]
        assert all(cell == 0 for cell in vm.memory())

    def test_erase_keeps_program_and_pc(self):
        vm = _vm()
        vm.load("INC R0\nINC R0")
        vm.step()
        vm.erase_registers()
        vm.erase_memory()
        assert vm.pc == 1
        assert len(vm.program) == 2

    def test_erase_does_not_notify(self):
        seen = []
        vm, _ = _run("SET 1 R0")
        vm.watch_registers(lambda v, i: seen.append(v))
        vm.erase_registers()
        assert seen == []

    def test_config_object_with_overrides(self):
        base = VMConfig(register_count=2)
        vm = VirtualMachine(base, memory_size=8)
        assert len(vm.registers()) == 2
        assert len(vm.memory()) == 8

    def test_invalid_config_raises(self):
        with pytest.raises(ConfigError):
            VirtualMachine(register_count=11)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
