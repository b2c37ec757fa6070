"""Synthetic waveform stream for exercising buffers without a data server.

Produces fixed-size packets of a noisy sine wave, and can deliver some of
them late so the receiving buffer has holes to patch.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass, field

import numpy as np

from helibuffer.ringbuffer import InsertResult, Segment
from helibuffer.stream import StreamChannel


class SyntheticStream:
    """Noisy sine wave cut into consecutive packets."""

    def __init__(
        self,
        sample_rate: float = 100.0,
        packet_samples: int = 400,
        start_time_ms: float = 1_700_000_000_000.0,
        amplitude: float = 1500.0,
        period_seconds: float = 8.0,
        noise: float = 50.0,
        seed: int = 0,
    ) -> None:
        if sample_rate <= 0:
            raise ValueError(f"sample_rate must be > 0, got {sample_rate}")
        if packet_samples < 1:
            raise ValueError(f"packet_samples must be >= 1, got {packet_samples}")
        self.sample_rate = sample_rate
        self.packet_samples = packet_samples
        self.start_time_ms = start_time_ms
        self.amplitude = amplitude
        self.period_seconds = period_seconds
        self.noise = noise
        self._rng = np.random.default_rng(seed)

    def packets(self, count: int) -> list[Segment]:
        """Generate count consecutive packets starting at start_time_ms."""
        interval_ms = 1000.0 / self.sample_rate
        segments = []
        for p in range(count):
            first = p * self.packet_samples
            t = (first + np.arange(self.packet_samples)) / self.sample_rate
            wave = self.amplitude * np.sin(2 * math.pi * t / self.period_seconds)
            wave += self._rng.normal(0.0, self.noise, self.packet_samples)
            segments.append(
                Segment(
                    samples=np.rint(wave).astype(np.int32),
                    start_time_ms=self.start_time_ms + first * interval_ms,
                    sample_rate=self.sample_rate,
                )
            )
        return segments


def delivery_order(segments: Sequence[Segment], late_every: int, delay: int) -> list[Segment]:
    """Reorder packets so every late_every-th one arrives delay packets late."""
    if late_every <= 0 or delay <= 0:
        return list(segments)
    schedule = []
    for i, segment in enumerate(segments):
        slot = i + delay + 0.5 if (i + 1) % late_every == 0 else float(i)
        schedule.append((slot, segment))
    schedule.sort(key=lambda item: item[0])
    return [segment for _, segment in schedule]


@dataclass
class SimulationReport:
    """Outcome of feeding a simulated stream through a channel."""

    delivered: int = 0
    late: int = 0
    holes_patched: int = 0
    unpatched: int = 0
    statistics: dict[str, float | int | None] = field(default_factory=dict)


def run_simulation(channel: StreamChannel, segments: Sequence[Segment]) -> SimulationReport:
    """Deliver segments in order, routing late ones through hole patching.

    Late segments wait until they cover the buffer's first hole, since holes
    are only patched oldest first.
    """
    report = SimulationReport()
    waiting: list[Segment] = []

    for segment in segments:
        report.delivered += 1
        channel.submit(segment)
        if channel.state.last_insert is InsertResult.OUT_OF_ORDER:
            report.late += 1
            waiting.append(segment)
        waiting = _patch_waiting(channel, waiting, report)

    report.unpatched = len(waiting)
    report.statistics = channel.statistics()
    return report


def _patch_waiting(
    channel: StreamChannel, waiting: list[Segment], report: SimulationReport
) -> list[Segment]:
    buffer = channel.buffer
    while waiting and buffer is not None:
        hole = buffer.get_first_hole()
        if hole is None:
            break
        covering = [
            s
            for s in waiting
            if s.start_time_ms <= hole.end_time_ms
            and s.start_time_ms + len(s) * buffer.sample_interval_ms > hole.start_time_ms
        ]
        if not covering:
            break
        channel.request_patch_segments(covering)
        result = channel.state.last_patch
        if result is None or not result.accepted:
            break
        report.holes_patched += 1
        waiting = [s for s in waiting if all(s is not c for c in covering)]
    return waiting
