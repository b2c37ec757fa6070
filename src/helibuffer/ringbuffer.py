# src/helibuffer/ringbuffer.py
"""Ring buffer for waveform samples split into graph and queue regions.

Layout of the logical window (index 0 is the oldest stored sample):

    [0, graph_len)                              promoted, displayed
    [partition_index, partition_index+queue_len) received, not yet promoted
    [partition_index+queue_len, capacity)        free

Samples arriving past the end of stored data leave a hole, tracked in the
HoleLedger. Promotion never crosses the first unresolved hole, so the graph
region is always hole-free. When the buffer is full, each new sample evicts
the oldest one and advances the origin time by one sample interval.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

import numpy as np
import structlog

from helibuffer.holes import Coverage, Hole, HoleLedger, check_coverage
from helibuffer.stats import EXTREME_VALUES_STORED, Statistic, build_statistic

if TYPE_CHECKING:
    from helibuffer.config import BufferConfig, PatchConfig
    from helibuffer.stream import StreamId

log = structlog.get_logger()

SAMPLE_DTYPE = np.int32
_SAMPLE_INFO = np.iinfo(SAMPLE_DTYPE)
# Fraction of a sample interval tolerated when converting times to indices
_INDEX_TOLERANCE = 1e-6
_FILLER = 0


@dataclass(frozen=True)
class Segment:
    """Contiguous run of samples starting at an absolute time."""

    samples: Sequence[int]
    start_time_ms: float
    sample_rate: float | None = None

    def __len__(self) -> int:
        return len(self.samples)


@dataclass(frozen=True)
class PromotedRange:
    """Samples newly committed to the graph region."""

    samples: np.ndarray
    start_time_ms: float
    start_index: int

    def __len__(self) -> int:
        return len(self.samples)


@dataclass(frozen=True)
class HoleWindow:
    """A hole expressed in logical indices and absolute times."""

    start_index: int
    end_index: int
    start_time_ms: float
    end_time_ms: float

    @property
    def length(self) -> int:
        return self.end_index - self.start_index + 1


class InsertResult(Enum):
    OK = "ok"
    EMPTY = "empty"
    OUT_OF_ORDER = "out_of_order"
    RATE_MISMATCH = "rate_mismatch"
    INVALID_SAMPLES = "invalid_samples"

    @property
    def ok(self) -> bool:
        return self is InsertResult.OK


class PatchResult(Enum):
    OK = "ok"
    DISCONTINUOUS = "discontinuous"  # applied with a warning
    EMPTY = "empty"
    NO_HOLE = "no_hole"
    INVALID = "invalid"
    MISMATCHED_ARGS = "mismatched_args"
    REJECTED_DISCONTINUOUS = "rejected_discontinuous"

    @property
    def accepted(self) -> bool:
        return self in (PatchResult.OK, PatchResult.DISCONTINUOUS)


class PatchPolicy(Enum):
    WARN = "warn"  # apply discontinuous patches and log a warning
    STRICT = "strict"  # reject discontinuous patches


class _GraphView:
    """SampleSource over the graph region, handed to statistics."""

    def __init__(self, buffer: RingBuffer) -> None:
        self._buffer = buffer

    def sample_at(self, index: int) -> int | None:
        if 0 <= index < self._buffer.graph_len:
            return self._buffer._get(index)
        return None

    def length(self) -> int:
        return self._buffer.graph_len


class RingBuffer:
    """Fixed-capacity sample store with graph/queue partitioning.

    The seed segment fixes the sample rate and origin time and is ingested
    as the first segment.
    """

    def __init__(
        self,
        seed: Segment,
        window_seconds: float,
        *,
        sample_rate: float | None = None,
        statistics: Sequence[str] = ("mean", "min", "max"),
        max_tracked: int = EXTREME_VALUES_STORED,
        patch_policy: PatchPolicy = PatchPolicy.WARN,
        stream_id: StreamId | None = None,
    ) -> None:
        rate = sample_rate if sample_rate is not None else seed.sample_rate
        if rate is None or rate <= 0:
            raise ValueError(f"sample_rate must be > 0, got {rate}")
        capacity = math.floor(window_seconds * rate)
        if capacity < 1:
            raise ValueError(
                f"Window of {window_seconds}s at {rate}Hz holds no samples"
            )

        self.sample_rate = float(rate)
        self.stream_id = stream_id
        self.patch_policy = patch_policy
        self._capacity = capacity
        self._interval_ms = 1000.0 / self.sample_rate
        self._storage = np.zeros(capacity, dtype=SAMPLE_DTYPE)
        self._physical_start = 0
        self._base_origin_ms = float(seed.start_time_ms)
        self._evicted = 0
        self._partition = 0
        self._graph_len = 0
        self._queue_len = 0
        self._holes = HoleLedger()

        self._view = _GraphView(self)
        self._statistics: dict[str, Statistic] = {
            name: build_statistic(name, self._view, max_tracked) for name in statistics
        }

        self.add_segment(seed)

    @classmethod
    def from_config(
        cls,
        seed: Segment,
        buffer: BufferConfig,
        patch: PatchConfig,
        *,
        sample_rate: float | None = None,
        stream_id: StreamId | None = None,
    ) -> RingBuffer:
        """Create a buffer from configuration sections."""
        return cls(
            seed,
            buffer.window_minutes * 60,
            sample_rate=sample_rate,
            statistics=buffer.statistics,
            max_tracked=buffer.max_tracked,
            patch_policy=PatchPolicy(patch.policy),
            stream_id=stream_id,
        )

    # ─────────────────────────────────────────────────────────────────────
    # State
    # ─────────────────────────────────────────────────────────────────────

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def sample_interval_ms(self) -> float:
        return self._interval_ms

    @property
    def origin_time_ms(self) -> float:
        """Absolute time of logical index 0."""
        return self._base_origin_ms + self._evicted * self._interval_ms

    @property
    def evicted_count(self) -> int:
        """Samples rotated out since the buffer was created."""
        return self._evicted

    @property
    def graph_len(self) -> int:
        return self._graph_len

    @property
    def partition_index(self) -> int:
        return self._partition

    @property
    def queue_len(self) -> int:
        return self._queue_len

    @property
    def stored_len(self) -> int:
        """Logical index one past the last stored sample."""
        return self._partition + self._queue_len

    @property
    def end_time_ms(self) -> float:
        """Absolute time just past the last stored sample."""
        return self.time_of(self.stored_len)

    @property
    def holes(self) -> list[Hole]:
        """Unresolved holes in logical indices, oldest first."""
        return [hole.shifted(-self._evicted) for hole in self._holes]

    def is_empty(self) -> bool:
        return self.stored_len == 0

    def time_of(self, index: int) -> float:
        """Absolute time of a logical index."""
        return self._base_origin_ms + (self._evicted + index) * self._interval_ms

    def index_of(self, time_ms: float) -> int:
        """Logical index of the sample covering an absolute time."""
        offset = (time_ms - self._base_origin_ms) / self._interval_ms
        return math.floor(offset + _INDEX_TOLERANCE) - self._evicted

    def snapshot(self) -> dict[str, object]:
        """Summarise buffer counters for logging and debugging."""
        return {
            "capacity": self._capacity,
            "graph_len": self._graph_len,
            "partition_index": self._partition,
            "queue_len": self._queue_len,
            "holes": len(self._holes),
            "evicted": self._evicted,
            "origin_time_ms": self.origin_time_ms,
        }

    # ─────────────────────────────────────────────────────────────────────
    # Ingestion
    # ─────────────────────────────────────────────────────────────────────

    def add_segment(self, segment: Segment) -> InsertResult:
        """Insert a segment at the position implied by its start time.

        A segment starting past the end of stored data leaves a hole. A
        segment starting before it is rejected; late data must be supplied
        through patch_hole instead.
        """
        if len(segment.samples) == 0:
            return InsertResult.EMPTY
        if segment.sample_rate is not None and not math.isclose(
            segment.sample_rate, self.sample_rate
        ):
            log.warning(
                "segment_rate_mismatch",
                stream=str(self.stream_id),
                expected=self.sample_rate,
                got=segment.sample_rate,
            )
            return InsertResult.RATE_MISMATCH

        offset = self.index_of(segment.start_time_ms) - self.stored_len
        if offset < 0:
            log.warning(
                "segment_out_of_order",
                stream=str(self.stream_id),
                start_time_ms=segment.start_time_ms,
                offset=offset,
            )
            return InsertResult.OUT_OF_ORDER

        samples = self._coerce(segment.samples)
        if samples is None:
            return InsertResult.INVALID_SAMPLES
        if offset > 0:
            start = self._evicted + self.stored_len
            hole = Hole(start, start + offset - 1)
            self._holes.append(hole)
            log.info(
                "hole_opened",
                stream=str(self.stream_id),
                start_time_ms=self.time_of(self.stored_len),
                samples=offset,
            )
        return self._write(samples, offset)

    def add_data(self, samples: Sequence[int] | int, offset: int = 0) -> InsertResult:
        """Append samples after offset filler slots.

        Filler slots are not tracked as holes here; add_segment records the
        hole before delegating.
        """
        if isinstance(samples, (int, np.integer)):
            samples = [int(samples)]
        if len(samples) == 0:
            log.warning("add_data_empty", stream=str(self.stream_id))
            return InsertResult.EMPTY
        if offset < 0:
            raise ValueError(f"offset must be >= 0, got {offset}")
        values = self._coerce(samples)
        if values is None:
            return InsertResult.INVALID_SAMPLES
        return self._write(values, offset)

    def _coerce(self, samples: Sequence[int]) -> np.ndarray | None:
        values = np.asarray(samples)
        if values.ndim != 1 or not np.issubdtype(values.dtype, np.integer):
            log.warning(
                "segment_invalid_samples", stream=str(self.stream_id), dtype=str(values.dtype)
            )
            return None
        if values.size and (values.min() < _SAMPLE_INFO.min or values.max() > _SAMPLE_INFO.max):
            log.warning("segment_sample_out_of_range", stream=str(self.stream_id))
            return None
        return values.astype(SAMPLE_DTYPE, copy=False)

    def _write(self, values: np.ndarray, offset: int) -> InsertResult:
        if offset >= self._capacity:
            self._jump(offset)
            offset = 0
        total = offset + len(values)
        free = self._capacity - self.stored_len
        fits = min(max(free, 0), total)

        for i in range(fits):
            self._set(self.stored_len, self._padded(values, offset, i))
            self._queue_len += 1

        for i in range(fits, total):
            # One graph slot becomes queue capacity for the incoming sample
            in_graph = self._graph_len > 0
            if self._partition > 0:
                self._partition -= 1
                self._queue_len += 1
            if in_graph:
                self._graph_len -= 1
            evicted = self._rotate()
            if in_graph:
                self._notify(evicted, None)
            self._set(self._capacity - 1, self._padded(values, offset, i))

        return InsertResult.OK

    @staticmethod
    def _padded(values: np.ndarray, offset: int, i: int) -> int:
        return _FILLER if i < offset else int(values[i - offset])

    def _jump(self, offset: int) -> None:
        """Skip a gap at least as long as the buffer.

        Leaves the buffer full of filler, as if offset filler samples had
        been written one at a time, without iterating over the whole gap.
        """
        self._graph_len = 0
        for statistic in self._statistics.values():
            statistic.reset()
        self._evicted += self.stored_len + offset - self._capacity
        self._partition = 0
        self._queue_len = self._capacity
        self._physical_start = 0
        self._storage.fill(_FILLER)
        for hole in self._holes.discard_before(self._evicted):
            log.warning("hole_expired", stream=str(self.stream_id), samples=hole.length)

    def _rotate(self) -> int:
        """Drop logical index 0 and return its value."""
        evicted = int(self._storage[self._physical_start])
        self._physical_start = (self._physical_start + 1) % self._capacity
        self._evicted += 1
        for hole in self._holes.discard_before(self._evicted):
            log.warning(
                "hole_expired",
                stream=str(self.stream_id),
                samples=hole.length,
            )
        return evicted

    # ─────────────────────────────────────────────────────────────────────
    # Promotion
    # ─────────────────────────────────────────────────────────────────────

    def promote(self, n: int | None = None) -> PromotedRange | None:
        """Move up to n queued samples into the graph region.

        Promotion stops short of the first unresolved hole.

        Returns:
            The newly promoted samples with their start time, or None if
            nothing was promoted.
        """
        if n is None:
            n = self._queue_len
        n = max(0, min(n, self._queue_len))

        first = self._holes.first()
        if first is not None:
            hole_start = first.start - self._evicted
            if hole_start < self._partition + n:
                n = max(0, hole_start - self._partition)
        if n == 0:
            return None

        self._partition = min(self._partition + n, self._capacity)
        self._queue_len = max(self._queue_len - n, 0)

        old_graph_len = self._graph_len
        last = self._holes.last_defined_before(
            self._evicted + self._partition, self._evicted + old_graph_len
        )
        new_graph_len = old_graph_len if last is None else last - self._evicted + 1

        for index in range(old_graph_len, new_graph_len):
            self._graph_len = index + 1
            self._notify(None, self._get(index))

        if new_graph_len == old_graph_len:
            return None
        return PromotedRange(
            samples=self._slice(old_graph_len, new_graph_len),
            start_time_ms=self.time_of(old_graph_len),
            start_index=old_graph_len,
        )

    def _notify(self, old: int | None, new: int | None) -> None:
        for statistic in self._statistics.values():
            statistic.update(old, new)

    # ─────────────────────────────────────────────────────────────────────
    # Queries
    # ─────────────────────────────────────────────────────────────────────

    def get_graph(self) -> np.ndarray:
        """Promoted samples, oldest first."""
        return self._slice(0, self._graph_len)

    def get_queue(self) -> np.ndarray:
        """Queued samples, oldest first. Slots inside holes hold filler."""
        return self._slice(self._partition, self.stored_len)

    def get_graph_segment(self) -> Segment:
        """The whole graph region as a segment starting at the origin."""
        return Segment(
            samples=self.get_graph(),
            start_time_ms=self.origin_time_ms,
            sample_rate=self.sample_rate,
        )

    def get_statistics(self) -> dict[str, float | int | None]:
        return {name: statistic.value() for name, statistic in self._statistics.items()}

    def statistic(self, name: str) -> Statistic:
        """Return an attached statistic by name.

        Raises:
            KeyError: If no statistic of that name is attached.
        """
        return self._statistics[name]

    def get_first_hole(self) -> HoleWindow | None:
        first = self._holes.first()
        if first is None:
            return None
        start = first.start - self._evicted
        end = first.end - self._evicted
        return HoleWindow(
            start_index=start,
            end_index=end,
            start_time_ms=self.time_of(start),
            end_time_ms=self.time_of(end),
        )

    # ─────────────────────────────────────────────────────────────────────
    # Hole patching
    # ─────────────────────────────────────────────────────────────────────

    def patch_hole(
        self,
        segments: Sequence[Sequence[int]],
        start_indices: Sequence[int],
    ) -> PatchResult:
        """Fill the first hole with late data.

        Args:
            segments: Sample runs supplied for the hole
            start_indices: Logical index of each run's first sample

        The runs together must start at or before the hole and reach past
        its end. Only indices inside the hole are written.
        """
        if len(segments) != len(start_indices):
            log.warning(
                "patch_rejected",
                stream=str(self.stream_id),
                reason="mismatched_args",
                segments=len(segments),
                indices=len(start_indices),
            )
            return PatchResult.MISMATCHED_ARGS
        if all(len(samples) == 0 for samples in segments):
            return PatchResult.EMPTY
        first = self._holes.first()
        if first is None:
            return PatchResult.NO_HOLE

        runs = []
        for samples, start in zip(segments, start_indices):
            if len(samples) == 0:
                continue
            values = self._coerce(samples)
            if values is None:
                return PatchResult.INVALID
            runs.append((values, int(start) + self._evicted))

        coverage = check_coverage(first, [(start, len(values)) for values, start in runs])
        if coverage is Coverage.PARTIAL:
            log.warning(
                "patch_rejected",
                stream=str(self.stream_id),
                reason="partial_coverage",
                hole_start=first.start - self._evicted,
                hole_end=first.end - self._evicted,
            )
            return PatchResult.INVALID
        if coverage is Coverage.DISCONTINUOUS:
            if self.patch_policy is PatchPolicy.STRICT:
                log.warning("patch_rejected", stream=str(self.stream_id), reason="discontinuous")
                return PatchResult.REJECTED_DISCONTINUOUS
            log.warning(
                "patch_discontinuous",
                stream=str(self.stream_id),
                hole_samples=first.length,
                provided=sum(len(values) for values, _ in runs),
            )

        for values, start in runs:
            lo = max(start, first.start)
            hi = min(start + len(values), first.end + 1)
            for absolute in range(lo, hi):
                self._set(absolute - self._evicted, int(values[absolute - start]))

        self._holes.pop_first()
        log.info(
            "hole_patched",
            stream=str(self.stream_id),
            start_time_ms=self.time_of(first.start - self._evicted),
            samples=first.length,
        )
        if coverage is Coverage.DISCONTINUOUS:
            return PatchResult.DISCONTINUOUS
        return PatchResult.OK

    def patch_hole_segments(self, segments: Sequence[Segment]) -> PatchResult:
        """Patch the first hole with segments placed by their start times."""
        return self.patch_hole(
            [segment.samples for segment in segments],
            [self.index_of(segment.start_time_ms) for segment in segments],
        )

    # ─────────────────────────────────────────────────────────────────────
    # Storage
    # ─────────────────────────────────────────────────────────────────────

    def _physical(self, index: int) -> int:
        return (self._physical_start + index) % self._capacity

    def _get(self, index: int) -> int:
        return int(self._storage[self._physical(index)])

    def _set(self, index: int, value: int) -> None:
        self._storage[self._physical(index)] = value

    def _slice(self, start: int, stop: int) -> np.ndarray:
        if stop <= start:
            return np.empty(0, dtype=SAMPLE_DTYPE)
        first = self._physical(start)
        count = stop - start
        if first + count <= self._capacity:
            return self._storage[first : first + count].copy()
        head = self._storage[first:]
        return np.concatenate((head, self._storage[: count - len(head)]))

    def __repr__(self) -> str:
        return (
            f"RingBuffer(stream={self.stream_id}, capacity={self._capacity}, "
            f"graph={self._graph_len}, queue={self._queue_len}, holes={len(self._holes)})"
        )
