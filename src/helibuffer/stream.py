# src/helibuffer/stream.py
"""Per-stream serialization of ingestion, promotion and hole patching.

Every operation on a stream's RingBuffer goes through its StreamChannel,
which runs them one at a time from a pending queue. Operations submitted
while a drain is running (for example from a promotion callback) are
appended to the same queue and picked up by the running drain.
"""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import AsyncIterable, Callable, Iterator, Sequence
from dataclasses import dataclass
from typing import Any

import structlog

from helibuffer.config import Config
from helibuffer.ringbuffer import (
    InsertResult,
    PatchResult,
    PromotedRange,
    RingBuffer,
    Segment,
)

log = structlog.get_logger()

PromoteCallback = Callable[["StreamId", PromotedRange, dict[str, Any]], None]


@dataclass(frozen=True)
class StreamId:
    """SEED-style stream identifier (network, station, location, channel)."""

    network: str
    station: str
    location: str = ""
    channel: str = ""

    def __str__(self) -> str:
        return f"{self.network}.{self.station}.{self.location}.{self.channel}"

    @property
    def match_pattern(self) -> str:
        """DataLink match pattern for this stream's miniSEED packets."""
        return f"{self.network}_{self.station}_{self.location}_{self.channel}/MSEED"

    @classmethod
    def parse(cls, text: str) -> StreamId:
        """Parse "NET.STA.LOC.CHA" (location may be empty).

        Raises:
            ValueError: If text does not have four dot-separated parts.
        """
        parts = text.split(".")
        if len(parts) != 4 or not parts[0] or not parts[1]:
            raise ValueError(f"Invalid stream id: {text!r}. Expected NET.STA.LOC.CHA")
        return cls(*parts)


@dataclass
class ChannelState:
    """Counters for one stream."""

    segments_received: int = 0
    segments_rejected: int = 0
    samples_promoted: int = 0
    holes_patched: int = 0
    patches_rejected: int = 0
    last_insert: InsertResult | None = None
    last_patch: PatchResult | None = None


class StreamChannel:
    """Queue-and-drain front end for one stream's RingBuffer.

    The buffer is created from the first submitted segment, which seeds its
    origin time. Its rate is the channel's sample_rate if given, else the
    segment's, else config.stream.sample_rate.
    """

    def __init__(
        self,
        stream_id: StreamId,
        config: Config,
        on_promote: PromoteCallback | None = None,
        sample_rate: float | None = None,
    ) -> None:
        self.stream_id = stream_id
        self.config = config
        self.sample_rate = sample_rate
        self.buffer: RingBuffer | None = None
        self.state = ChannelState()
        self._on_promote = on_promote
        self._pending: deque[tuple[str, Any]] = deque()
        self._draining = False

    @property
    def pending(self) -> int:
        """Operations waiting for the current drain."""
        return len(self._pending)

    @property
    def draining(self) -> bool:
        return self._draining

    def submit(self, segment: Segment) -> None:
        """Queue a segment for ingestion."""
        self._enqueue("segment", segment)

    def request_promotion(self, n: int | None = None) -> None:
        """Queue a promotion of up to n samples (all queued when None)."""
        self._enqueue("promote", n)

    def request_patch(
        self,
        segments: Sequence[Sequence[int]],
        start_indices: Sequence[int],
    ) -> None:
        """Queue a patch of the first hole at logical start indices."""
        self._enqueue("patch", (segments, start_indices))

    def request_patch_segments(self, segments: Sequence[Segment]) -> None:
        """Queue a patch of the first hole with time-stamped segments."""
        self._enqueue("patch_segments", segments)

    def statistics(self) -> dict[str, Any]:
        if self.buffer is None:
            return {}
        return self.buffer.get_statistics()

    def _enqueue(self, kind: str, payload: Any) -> None:
        self._pending.append((kind, payload))
        if self._draining:
            return
        self._draining = True
        try:
            while self._pending:
                kind, payload = self._pending.popleft()
                self._run(kind, payload)
        except Exception:
            # Operations queued behind a failure are dropped with it
            if self._pending:
                log.warning(
                    "channel_operations_dropped",
                    stream=str(self.stream_id),
                    count=len(self._pending),
                )
                self._pending.clear()
            raise
        finally:
            self._draining = False

    def _run(self, kind: str, payload: Any) -> None:
        if kind == "segment":
            self._ingest(payload)
        elif kind == "promote":
            self._promote(payload)
        elif kind == "patch":
            self._patch(*payload)
        elif kind == "patch_segments":
            if self.buffer is None:
                self._record_patch(PatchResult.NO_HOLE)
            else:
                self._record_patch(self.buffer.patch_hole_segments(payload))
        else:
            raise ValueError(f"Unknown channel operation: {kind!r}")

    def _ingest(self, segment: Segment) -> None:
        self.state.segments_received += 1
        if self.buffer is None:
            if len(segment.samples) == 0:
                self.state.last_insert = InsertResult.EMPTY
                return
            rate = self.sample_rate if self.sample_rate is not None else segment.sample_rate
            if rate is None:
                rate = self.config.stream.sample_rate
            # The seed only fixes origin and rate; its samples go through add_segment
            self.buffer = RingBuffer.from_config(
                Segment([], segment.start_time_ms, rate),
                self.config.buffer,
                self.config.patch,
                stream_id=self.stream_id,
            )
            log.info(
                "stream_opened",
                stream=str(self.stream_id),
                capacity=self.buffer.capacity,
                sample_rate=self.buffer.sample_rate,
            )
        result = self.buffer.add_segment(segment)

        self.state.last_insert = result
        if result is InsertResult.EMPTY:
            return
        if not result.ok:
            self.state.segments_rejected += 1
            return
        if self.config.ingest.promote_on_ingest:
            self._promote(None)

    def _promote(self, n: int | None) -> None:
        if self.buffer is None:
            return
        promoted = self.buffer.promote(n)
        if promoted is None:
            return
        self.state.samples_promoted += len(promoted)
        if self._on_promote is not None:
            self._on_promote(self.stream_id, promoted, self.buffer.get_statistics())

    def _patch(self, segments: Sequence[Sequence[int]], start_indices: Sequence[int]) -> None:
        if self.buffer is None:
            self._record_patch(PatchResult.NO_HOLE)
            return
        self._record_patch(self.buffer.patch_hole(segments, start_indices))

    def _record_patch(self, result: PatchResult) -> None:
        self.state.last_patch = result
        if result.accepted:
            self.state.holes_patched += 1
            if self.config.ingest.promote_on_ingest:
                self._promote(None)
        else:
            self.state.patches_rejected += 1

    async def run_promotion_timer(self, interval: float, stop_event: asyncio.Event) -> None:
        """Promote queued samples every interval seconds until stop_event is set."""
        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
                break
            except asyncio.TimeoutError:
                self.request_promotion()

    async def consume(self, segments: AsyncIterable[Segment]) -> None:
        """Submit every segment from an asynchronous source, in arrival order."""
        async for segment in segments:
            self.submit(segment)


class StreamRegistry:
    """One StreamChannel per stream id."""

    def __init__(self, config: Config, on_promote: PromoteCallback | None = None) -> None:
        self.config = config
        self._on_promote = on_promote
        self._channels: dict[StreamId, StreamChannel] = {}

    def __len__(self) -> int:
        return len(self._channels)

    def __contains__(self, stream_id: object) -> bool:
        return stream_id in self._channels

    def __iter__(self) -> Iterator[StreamId]:
        return iter(list(self._channels))

    def channel(self, stream_id: StreamId, sample_rate: float | None = None) -> StreamChannel:
        """Return the channel for stream_id, creating it on first use."""
        channel = self._channels.get(stream_id)
        if channel is None:
            channel = StreamChannel(
                stream_id, self.config, on_promote=self._on_promote, sample_rate=sample_rate
            )
            self._channels[stream_id] = channel
        return channel

    def get(self, stream_id: StreamId) -> StreamChannel | None:
        return self._channels.get(stream_id)

    def submit(self, stream_id: StreamId, segment: Segment) -> StreamChannel:
        """Route a segment to its stream's channel."""
        channel = self.channel(stream_id)
        channel.submit(segment)
        return channel

    def remove(self, stream_id: StreamId) -> bool:
        """Drop a stream's channel and buffer."""
        return self._channels.pop(stream_id, None) is not None
