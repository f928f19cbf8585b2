"""
Fixed-length signed 32-bit cell array with a write observer.

Backs both the VM register file and its memory block. Every write goes
through __setitem__, which stores the wrapped value and then calls the
installed observer as ``observer(value, index)``. At most one observer is
installed at a time; watch() replaces it.

Reads and writes outside ``[0, len)`` raise IndexError. Negative indexes
are rejected rather than counted from the end.
"""

from __future__ import annotations
from typing import Callable, Iterator, List, Optional

INT32_MIN = -(1 << 31)
INT32_MAX = (1 << 31) - 1

Observer = Callable[[int, int], None]


def wrap_int32(value: int) -> int:
    """Wrap an arbitrary Python int to the signed 32-bit range."""
    value &= 0xFFFFFFFF
    if value > INT32_MAX:
        value -= 1 << 32
    return value


class Cells:
    """A named block of int32 cells."""

    __slots__ = ('name', '_data', '_observer')

    def __init__(self, name: str, size: int):
        if size <= 0:
            raise ValueError(f"{name}: size must be positive, got {size}")
        self.name = name
        self._data: List[int] = [0] * size
        self._observer: Optional[Observer] = None

    def _check(self, index: int) -> int:
        if not isinstance(index, int) or isinstance(index, bool):
            raise TypeError(f"{self.name} index must be int, got {type(index).__name__}")
        if not 0 <= index < len(self._data):
            raise IndexError(
                f"{self.name} index {index} out of range (0..{len(self._data) - 1})")
        return index

    def __getitem__(self, index: int) -> int:
        return self._data[self._check(index)]

    def __setitem__(self, index: int, value: int):
        index = self._check(index)
        value = wrap_int32(value)
        self._data[index] = value
        if self._observer is not None:
            self._observer(value, index)

    def __len__(self) -> int:
        return len(self._data)

    def __iter__(self) -> Iterator[int]:
        return iter(self._data)

    def __eq__(self, other):
        if isinstance(other, Cells):
            return self._data == other._data
        if isinstance(other, (list, tuple)):
            return self._data == list(other)
        return NotImplemented

    __hash__ = None

    def __repr__(self):
        return f"Cells({self.name!r}, {self._data!r})"

    def watch(self, observer: Optional[Observer]):
        """Install the post-write observer, replacing any previous one."""
        self._observer = observer

    def erase(self):
        """Zero every cell. Observers are not notified."""
        for i in range(len(self._data)):
            self._data[i] = 0

    def snapshot(self) -> List[int]:
        """Copy of the current contents."""
        return list(self._data)
