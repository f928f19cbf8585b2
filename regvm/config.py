"""
Construction settings for the regvm VirtualMachine.

Invalid settings raise ConfigError at construction time. This is the only
error class meant to stop a host from starting up.
"""

from __future__ import annotations
import json
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Union

from .diagnostics import DiagnosticSink

OutputSink = Callable[[int], None]

MIN_REGISTERS = 1
MAX_REGISTERS = 10   # the lexer only reads single-digit registers

DEFAULT_REGISTERS = 4
DEFAULT_MEMORY_SIZE = 1024


class ConfigError(ValueError):
    """Raised on invalid VM settings."""


@dataclass
class VMConfig:
    register_count: int = DEFAULT_REGISTERS
    memory_size: int = DEFAULT_MEMORY_SIZE
    max_steps: Optional[int] = None          # None -> unbounded
    on_output: Optional[OutputSink] = None
    on_diagnostic: Optional[DiagnosticSink] = None
    strict: bool = False                     # raise VMFault instead of containing it

    def __post_init__(self):
        if not _is_int(self.register_count) or not (
                MIN_REGISTERS <= self.register_count <= MAX_REGISTERS):
            raise ConfigError(
                f"Invalid number of registers: {self.register_count!r} "
                f"(expected {MIN_REGISTERS}-{MAX_REGISTERS})")
        if not _is_int(self.memory_size) or self.memory_size <= 0:
            raise ConfigError(f"Invalid memory size: {self.memory_size!r}")
        if self.max_steps is not None and (
                not _is_int(self.max_steps) or self.max_steps <= 0):
            raise ConfigError(f"Invalid step budget: {self.max_steps!r}")
        if self.on_output is not None and not callable(self.on_output):
            raise ConfigError("on_output must be callable")
        if self.on_diagnostic is not None and not callable(self.on_diagnostic):
            raise ConfigError("on_diagnostic must be callable")

    # Numeric settings that can come from a file
    FILE_KEYS = ('register_count', 'memory_size', 'max_steps', 'strict')

    @classmethod
    def from_dict(cls, data: Dict[str, Any], **overrides) -> "VMConfig":
        """Build a config from a mapping, e.g. parsed JSON.

        Unknown keys are rejected so a typo does not silently fall back to
        a default.
        """
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError(f"Unknown config key(s): {', '.join(unknown)}")
        merged = dict(data)
        merged.update(overrides)
        return cls(**merged)

    @classmethod
    def from_json(cls, path: Union[str, Path], **overrides) -> "VMConfig":
        try:
            data = json.loads(Path(path).read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise ConfigError(f"{path}: invalid JSON: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"{path}: expected a JSON object")
        bad = sorted(set(data) - set(cls.FILE_KEYS))
        if bad:
            raise ConfigError(f"{path}: unsupported key(s): {', '.join(bad)}")
        return cls.from_dict(data, **overrides)


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)
