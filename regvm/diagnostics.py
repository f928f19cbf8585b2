"""
Diagnostics channel for regvm.

Lexical problems and runtime faults are not raised to the host; they are
reported as line-tagged Diagnostic records. Parse errors are raised, but
VirtualMachine.load() reports them on the channel first. A host can collect
diagnostics by passing ``on_diagnostic`` in the VM configuration. Every
diagnostic is also logged on the reporting module's logger.
"""

from __future__ import annotations
import enum
import logging
from dataclasses import dataclass
from typing import Callable, Optional


class Severity(enum.Enum):
    ERROR = "Error"


@dataclass(frozen=True)
class Diagnostic:
    severity: Severity
    line: int
    message: str
    col: int = 0

    def __str__(self):
        return f"L{self.line} {self.severity.value}: '{self.message}'"


DiagnosticSink = Callable[[Diagnostic], None]

_LOG_LEVELS = {
    Severity.ERROR: logging.ERROR,
}


def report(logger: logging.Logger, diag: Diagnostic,
           sink: Optional[DiagnosticSink] = None) -> Diagnostic:
    """Log a diagnostic and forward it to the sink, if any."""
    logger.log(_LOG_LEVELS[diag.severity], "%s", diag)
    if sink is not None:
        sink(diag)
    return diag
