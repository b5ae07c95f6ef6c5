"""
Typed identifiers for grid entities.

Generators, lines, districts and consumers each draw from their own integer
id-space.  ``NewType`` keeps the four spaces apart for type checkers while
remaining plain ``int`` at runtime (cheap to hash, trivially serialisable).
"""

from __future__ import annotations

from typing import NewType

GeneratorId = NewType("GeneratorId", int)
LineId = NewType("LineId", int)
DistrictId = NewType("DistrictId", int)
ConsumerId = NewType("ConsumerId", int)
FactionId = int

# Returned by constructors when creation is vetoed; never a valid id.
INVALID_ID: int = -1


class IdAllocator:
    """Monotonic id counter for one entity kind.

    Ids are never reused within a session.  ``peek`` lets callers check the
    next id without consuming it, so a vetoed construction leaves the counter
    untouched.
    """

    def __init__(self, start: int = 1) -> None:
        self._next = int(start)

    def peek(self) -> int:
        return self._next

    def allocate(self) -> int:
        value = self._next
        self._next += 1
        return value

    def ensure_above(self, used: int) -> None:
        """Advance the counter past an id restored from a snapshot."""
        if used >= self._next:
            self._next = used + 1

    @property
    def next_id(self) -> int:
        return self._next

    @next_id.setter
    def next_id(self, value: int) -> None:
        self._next = max(1, int(value))
