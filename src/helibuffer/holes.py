# src/helibuffer/holes.py
"""Hole ledger: ordered gaps in the sample stream.

Holes are stored in absolute coordinates (samples since the buffer was
created), so eviction never renumbers them. The ring buffer converts to
logical window indices at its public surface.
"""

from __future__ import annotations

from bisect import bisect_right
from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from enum import Enum


@dataclass(frozen=True)
class Hole:
    """Inclusive range [start, end] of samples not yet received."""

    start: int
    end: int

    def __post_init__(self) -> None:
        if self.end < self.start:
            raise ValueError(f"Hole end {self.end} precedes start {self.start}")

    @property
    def length(self) -> int:
        return self.end - self.start + 1

    def shifted(self, delta: int) -> Hole:
        """Return the same hole with both bounds moved by delta."""
        return Hole(self.start + delta, self.end + delta)


class Coverage(Enum):
    """Outcome of checking patch ranges against a hole."""

    COMPLETE = "complete"
    DISCONTINUOUS = "discontinuous"  # reaches both bounds, but lengths disagree
    PARTIAL = "partial"  # fails to reach one of the bounds


def check_coverage(hole: Hole, ranges: Sequence[tuple[int, int]]) -> Coverage:
    """Check whether (start, length) ranges cover the whole hole.

    The earliest start must be at or before hole.start and the furthest
    exclusive end must lie past hole.end. When both hold but the summed
    lengths differ from the hole length, the data is discontinuous.
    """
    ranges = [(start, length) for start, length in ranges if length > 0]
    if not ranges:
        return Coverage.PARTIAL
    earliest = min(start for start, _ in ranges)
    furthest = max(start + length for start, length in ranges)
    if earliest > hole.start or furthest <= hole.end:
        return Coverage.PARTIAL
    if sum(length for _, length in ranges) != hole.length:
        return Coverage.DISCONTINUOUS
    return Coverage.COMPLETE


class HoleLedger:
    """Sorted, non-overlapping sequence of holes.

    Holes are only ever appended at the end and resolved from the front.
    """

    def __init__(self) -> None:
        self._holes: list[Hole] = []

    def __len__(self) -> int:
        return len(self._holes)

    def __bool__(self) -> bool:
        return bool(self._holes)

    def __iter__(self) -> Iterator[Hole]:
        return iter(list(self._holes))

    def first(self) -> Hole | None:
        return self._holes[0] if self._holes else None

    def last(self) -> Hole | None:
        return self._holes[-1] if self._holes else None

    def append(self, hole: Hole) -> None:
        """Record a new hole after all existing ones.

        Raises:
            ValueError: If the hole does not strictly follow the last hole.
        """
        last = self.last()
        if last is not None and last.end >= hole.start:
            raise ValueError(f"Hole {hole} does not follow {last}")
        self._holes.append(hole)

    def pop_first(self) -> Hole:
        """Remove and return the oldest hole.

        Raises:
            IndexError: If the ledger is empty.
        """
        return self._holes.pop(0)

    def last_defined_before(self, stop: int, floor: int) -> int | None:
        """Return the greatest index in [floor, stop) not covered by a hole."""
        index = stop - 1
        while index >= floor:
            pos = bisect_right(self._holes, index, key=lambda h: h.start) - 1
            if pos >= 0 and self._holes[pos].end >= index:
                index = self._holes[pos].start - 1
                continue
            return index
        return None

    def discard_before(self, index: int) -> list[Hole]:
        """Clip or drop holes that start before index.

        Returns:
            Holes that were dropped entirely.
        """
        expired: list[Hole] = []
        while self._holes and self._holes[0].start < index:
            head = self._holes[0]
            if head.end < index:
                expired.append(self._holes.pop(0))
            else:
                self._holes[0] = Hole(index, head.end)
                break
        return expired
