"""Shared test fixtures for helibuffer."""

import pytest

from helibuffer.config import Config
from helibuffer.ringbuffer import RingBuffer, Segment
from helibuffer.stream import StreamId


class ListSource:
    """SampleSource backed by a plain list, for driving statistics directly."""

    def __init__(self, values=None) -> None:
        self.values = list(values or [])

    def sample_at(self, index: int) -> int | None:
        if 0 <= index < len(self.values):
            return self.values[index]
        return None

    def length(self) -> int:
        return len(self.values)


def make_segment(
    samples,
    start_index: int = 0,
    sample_rate: float | None = 1.0,
    origin_ms: float = 0.0,
) -> Segment:
    """Create a segment starting at a sample index of a 1Hz stream by default."""
    rate = sample_rate or 1.0
    return Segment(
        samples=list(samples),
        start_time_ms=origin_ms + start_index * 1000.0 / rate,
        sample_rate=sample_rate,
    )


def make_buffer(
    seed=(),
    capacity: int = 10,
    statistics=("mean", "min", "max"),
    max_tracked: int = 10,
    **kwargs,
) -> RingBuffer:
    """Create a 1Hz buffer holding capacity samples, seeded at time 0."""
    return RingBuffer(
        make_segment(seed),
        window_seconds=capacity,
        statistics=statistics,
        max_tracked=max_tracked,
        **kwargs,
    )


def make_config(
    window_minutes: float = 1.0,
    policy: str = "warn",
    promote_on_ingest: bool = True,
) -> Config:
    """Create a Config sized for 1Hz test streams (60 samples per minute)."""
    config = Config()
    config.buffer.window_minutes = window_minutes
    config.patch.policy = policy
    config.ingest.promote_on_ingest = promote_on_ingest
    return config


@pytest.fixture
def stream_id() -> StreamId:
    return StreamId("UW", "JCW", "", "EHZ")


@pytest.fixture
def config() -> Config:
    return make_config()
