# src/helibuffer/stats.py
"""Incrementally maintained statistics over the promoted window.

Three kinds of statistic are provided:

1. Iterative: O(1) update from (old, new) pairs (mean)
2. Comparison: bounded sorted list of the K most extreme values (min, max)
3. Index: recomputed from the window whenever it is queried (median)

Statistics never hold a reference to buffer internals. They read through a
SampleSource, which the ring buffer implements for its graph region.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Protocol

import structlog

log = structlog.get_logger()

EXTREME_VALUES_STORED = 10

Compare = Callable[[int, int], float]


class SampleSource(Protocol):
    """Read-only view of the window a statistic observes."""

    def sample_at(self, index: int) -> int | None:
        """Return the value at a logical window index, or None if not defined."""
        ...

    def length(self) -> int:
        """Return the current window length."""
        ...


class Statistic:
    """Base class for buffer statistics."""

    def value(self) -> float | int | None:
        raise NotImplementedError

    def update(self, old: int | None, new: int | None) -> None:
        """Account for a value leaving (old) and/or entering (new) the window.

        Callers apply the change to the window before calling update, so that
        source.length() already reflects the operation.
        """
        return None

    def reset(self) -> None:
        """Forget all state; called when the window is emptied in bulk."""
        return None


class IterativeStatistic(Statistic):
    """Statistic maintained by adding a delta on every update.

    change_fn(current, old, new) returns the change to apply. Either of old
    and new may be None (pure add or pure remove).
    """

    def __init__(
        self,
        change_fn: Callable[[float, int | None, int | None], float],
        initial: float = 0.0,
    ) -> None:
        self._change_fn = change_fn
        self._initial = initial
        self._value = initial

    def value(self) -> float | int | None:
        return self._value

    def reset(self) -> None:
        self._value = self._initial

    def update(self, old: int | None, new: int | None) -> None:
        if old is None and new is None:
            return
        self._value += self._change_fn(self._value, old, new)


class MeanStatistic(IterativeStatistic):
    """Running arithmetic mean of the window."""

    def __init__(self, source: SampleSource) -> None:
        self._source = source
        super().__init__(self._delta)

    def _delta(self, current: float, old: int | None, new: int | None) -> float:
        n = self._source.length()
        if n <= 0:
            # Window emptied: reset so the next add starts from scratch
            return -current
        if old is not None and new is not None:
            return (new - old) / n
        if old is not None:
            return (current - old) / n
        if new is not None:
            return (new - current) / n
        return 0.0

    def value(self) -> float | None:
        if self._source.length() == 0:
            return None
        return self._value


class ComparisonStatistic(Statistic):
    """Tracks the max_tracked values with the greatest eval under compare.

    compare(a, b) is positive when a has the greater eval, negative when b
    does, and zero on a tie. The tracked list is kept sorted best-first and
    ties keep insertion order.

    The list always holds the best len(list) values of the window. Removals
    shrink it instead of refilling it. value() rescans only once the list is
    empty, so a run of evictions costs at most one rescan.
    """

    def __init__(
        self,
        compare: Compare,
        source: SampleSource,
        max_tracked: int = EXTREME_VALUES_STORED,
    ) -> None:
        if max_tracked < 1:
            raise ValueError(f"max_tracked must be >= 1, got {max_tracked}")
        self._compare = compare
        self._source = source
        self._max_tracked = max_tracked
        self._extremes: list[int] = []

    @property
    def max_tracked(self) -> int:
        return self._max_tracked

    def value(self) -> int | None:
        self._refill()
        if self._extremes:
            return self._extremes[0]
        return None

    def reset(self) -> None:
        self._extremes.clear()

    def tracked(self) -> list[int]:
        """Return a copy of the tracked extremes, best first.

        Rescans first if removals have left fewer than max_tracked values
        while the window holds more.
        """
        if len(self._extremes) < min(self._max_tracked, self._source.length()):
            self.rescan()
        return list(self._extremes)

    def update(self, old: int | None, new: int | None) -> None:
        if old is None and new is None:
            return
        length = self._source.length()
        if length == 0:
            self._extremes.clear()
            return
        if not self._extremes:
            # Rebuilt from the window on the next read
            return

        if old is not None and self._compare(old, self._extremes[-1]) >= 0:
            try:
                self._extremes.remove(old)
            except ValueError:
                log.error("extremes_missing_value", value=old)
                self._extremes.clear()
                return

        if new is not None and self._qualifies(new, length):
            self._insert(self._extremes, new)
            if len(self._extremes) > self._max_tracked:
                self._extremes.pop()

    def _refill(self) -> None:
        if not self._extremes and self._source.length() > 0:
            self.rescan()

    def rescan(self) -> list[int]:
        """Rebuild the tracked list from the whole window."""
        extremes: list[int] = []
        for i in range(self._source.length()):
            value = self._source.sample_at(i)
            if value is None:
                continue
            if len(extremes) < self._max_tracked or self._compare(value, extremes[-1]) > 0:
                self._insert(extremes, value)
                if len(extremes) > self._max_tracked:
                    extremes.pop()
        self._extremes = extremes
        return list(extremes)

    def _qualifies(self, value: int, length: int) -> bool:
        # Window values other than value that the list does not hold
        untracked = length - len(self._extremes) - 1
        if untracked <= 0:
            return True
        if not self._extremes:
            return False
        return self._compare(value, self._extremes[-1]) >= 0

    def _insert(self, extremes: list[int], value: int) -> None:
        extremes.append(value)
        i = len(extremes) - 1
        while i > 0 and self._compare(value, extremes[i - 1]) > 0:
            extremes[i] = extremes[i - 1]
            i -= 1
        extremes[i] = value


class MinimumStatistic(ComparisonStatistic):
    def __init__(self, source: SampleSource, max_tracked: int = EXTREME_VALUES_STORED) -> None:
        super().__init__(lambda a, b: b - a, source, max_tracked)


class MaximumStatistic(ComparisonStatistic):
    def __init__(self, source: SampleSource, max_tracked: int = EXTREME_VALUES_STORED) -> None:
        super().__init__(lambda a, b: a - b, source, max_tracked)


class IndexStatistic(Statistic):
    """Thin wrapper over a selection function evaluated on every query."""

    def __init__(self, select_fn: Callable[[], float | int | None]) -> None:
        self._select_fn = select_fn

    def value(self) -> float | int | None:
        return self._select_fn()


class MedianStatistic(IndexStatistic):
    """Median of the window, computed on demand."""

    def __init__(self, source: SampleSource) -> None:
        self._source = source
        super().__init__(self._median)

    def _median(self) -> float | int | None:
        values = sorted(
            v for v in (self._source.sample_at(i) for i in range(self._source.length()))
            if v is not None
        )
        n = len(values)
        if n == 0:
            return None
        mid = n // 2
        if n % 2 == 0:
            return (values[mid - 1] + values[mid]) / 2
        return values[mid]


STATISTIC_NAMES = ("mean", "min", "max", "median")


def build_statistic(
    name: str,
    source: SampleSource,
    max_tracked: int = EXTREME_VALUES_STORED,
) -> Statistic:
    """Create a named statistic reading from source.

    Raises:
        ValueError: If the name is not one of STATISTIC_NAMES.
    """
    if name == "mean":
        return MeanStatistic(source)
    if name == "min":
        return MinimumStatistic(source, max_tracked)
    if name == "max":
        return MaximumStatistic(source, max_tracked)
    if name == "median":
        return MedianStatistic(source)
    raise ValueError(f"Unknown statistic: {name!r}. Valid statistics: {list(STATISTIC_NAMES)}")
