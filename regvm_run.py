#!/usr/bin/env python3
"""
regvm_run — load and run a regvm assembly program

Usage:
    python regvm_run.py <program.asm> [--registers 4] [--memory 1024]
                        [--max-steps N] [--config vm.json] [--strict]
                        [--tokens] [--listing] [--trace] [--dump] [-v]

PRINT output goes to stdout, one value per line. Diagnostics and log
messages go to stderr.

Exit codes:
    0  program ran to completion (or hit the step budget)
    1  could not read the file, bad configuration, or parse error
    2  runtime fault (with --strict, also an exhausted step budget)

Examples:
    python regvm_run.py count.asm
    python regvm_run.py count.asm --listing
    python regvm_run.py loop.asm --max-steps 1000 --trace -v
"""

import argparse
import logging
import os
import sys

# Allow running from project root without installing
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from regvm import __version__
from regvm.config import ConfigError, VMConfig
from regvm.instructions import format_program
from regvm.lexer import Lexer
from regvm.log_setup import setup_logging
from regvm.parser import ParseError
from regvm.vm import StopReason, VirtualMachine, VMFault

log = logging.getLogger("regvm.cli")


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="regvm_run",
        description="Run a regvm register-machine assembly program",
    )
    parser.add_argument("input", help="Program source file")
    parser.add_argument("--registers", type=int, default=None,
                        help="Register count, 1-10 (default: 4)")
    parser.add_argument("--memory", type=int, default=None,
                        help="Memory size in cells (default: 1024)")
    parser.add_argument("--max-steps", type=int, default=None,
                        help="Step budget for run() (default: unbounded)")
    parser.add_argument("--config", help="JSON file with VM settings")
    parser.add_argument("--strict", action="store_true",
                        help="Treat runtime faults and budget exhaustion as errors")
    parser.add_argument("--tokens", action="store_true",
                        help="Dump token stream and exit (debug)")
    parser.add_argument("--listing", action="store_true",
                        help="Print the resolved program and exit")
    parser.add_argument("--trace", action="store_true",
                        help="Print every register and memory write to stderr")
    parser.add_argument("--dump", action="store_true",
                        help="Print registers after the run")
    parser.add_argument("--log-file", help="Also write a DEBUG log to this file")
    parser.add_argument("--verbose", "-v", action="count", default=0,
                        help="More console logging (-v info, -vv debug)")
    parser.add_argument("--version", action="version",
                        version=f"regvm_run {__version__}")
    return parser


def _console_level(verbose: int) -> int:
    if verbose >= 2:
        return logging.DEBUG
    if verbose == 1:
        return logging.INFO
    return logging.WARNING


def _make_config(args) -> VMConfig:
    overrides = {}
    if args.registers is not None:
        overrides["register_count"] = args.registers
    if args.memory is not None:
        overrides["memory_size"] = args.memory
    if args.max_steps is not None:
        overrides["max_steps"] = args.max_steps
    if args.strict:
        overrides["strict"] = True
    overrides["on_output"] = print

    if args.config:
        return VMConfig.from_json(args.config, **overrides)
    return VMConfig(**overrides)


def main(argv=None) -> int:
    args = build_arg_parser().parse_args(argv)
    setup_logging("regvm", console_level=_console_level(args.verbose),
                  log_file=args.log_file)

    try:
        with open(args.input, "r", encoding="utf-8") as f:
            source = f.read()
    except OSError as e:
        log.error("Error reading %s: %s", args.input, e)
        return 1

    # Token dump mode
    if args.tokens:
        for tok in Lexer(source).tokenize():
            print(tok)
        return 0

    try:
        config = _make_config(args)
        vm = VirtualMachine(config)
        vm.load(source)
    except ConfigError as e:
        log.error("Configuration error: %s", e)
        return 1
    except OSError as e:
        log.error("Error reading config %s: %s", args.config, e)
        return 1
    except ParseError:
        # already reported by the VM
        return 1

    if args.listing:
        print(format_program(vm.program))
        return 0

    if args.trace:
        vm.watch_registers(
            lambda value, idx: print(f"[trace] pc={vm.pc:<4} R{idx} <- {value}", file=sys.stderr))
        vm.watch_memory(
            lambda value, addr: print(f"[trace] pc={vm.pc:<4} [{addr}] <- {value}", file=sys.stderr))

    try:
        reason = vm.run()
    except VMFault:
        # already reported by the VM
        return 2

    log.info("Stopped: %s after %d step(s)", reason.value, vm.steps)

    if args.dump:
        for i, value in enumerate(vm.registers()):
            print(f"R{i} = {value}")

    if reason is StopReason.FAULT:
        return 2
    if reason is StopReason.BUDGET and config.strict:
        log.error("Step budget of %d exhausted", config.max_steps)
        return 2
    return 0


if __name__ == "__main__":
    sys.exit(main())
