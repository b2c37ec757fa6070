"""Tests for the synthetic stream simulator."""

import numpy as np
import pytest

from helibuffer.simulate import SyntheticStream, delivery_order, run_simulation
from helibuffer.stream import StreamChannel
from tests.conftest import make_config


def make_stream(**kwargs) -> SyntheticStream:
    defaults = {"sample_rate": 10.0, "packet_samples": 20, "start_time_ms": 0.0, "seed": 7}
    defaults.update(kwargs)
    return SyntheticStream(**defaults)


class TestSyntheticStream:
    """Tests for packet generation."""

    def test_packets_are_contiguous(self) -> None:
        packets = make_stream().packets(3)

        assert [p.start_time_ms for p in packets] == [0.0, 2000.0, 4000.0]
        assert all(len(p) == 20 for p in packets)
        assert all(p.sample_rate == 10.0 for p in packets)
        assert packets[0].samples.dtype == np.int32

    def test_same_seed_same_data(self) -> None:
        a = make_stream().packets(2)
        b = make_stream().packets(2)
        for x, y in zip(a, b):
            assert np.array_equal(x.samples, y.samples)

    def test_amplitude_bounds(self) -> None:
        packets = make_stream(amplitude=100.0, noise=0.0).packets(5)
        values = np.concatenate([p.samples for p in packets])
        assert values.max() <= 100
        assert values.min() >= -100

    @pytest.mark.parametrize("kwargs", [{"sample_rate": 0}, {"packet_samples": 0}])
    def test_invalid_shape(self, kwargs) -> None:
        with pytest.raises(ValueError):
            make_stream(**kwargs)


class TestDeliveryOrder:
    """Tests for late packet scheduling."""

    def test_every_third_one_late(self) -> None:
        items = list(range(6))
        assert delivery_order(items, late_every=3, delay=1) == [0, 1, 3, 2, 4, 5]

    def test_longer_delay(self) -> None:
        items = list(range(6))
        assert delivery_order(items, late_every=2, delay=2) == [0, 2, 3, 1, 4, 5]

    def test_disabled(self) -> None:
        items = list(range(4))
        assert delivery_order(items, late_every=0, delay=3) == items
        assert delivery_order(items, late_every=2, delay=0) == items


class TestRunSimulation:
    """End-to-end runs through a channel."""

    def test_late_packets_are_patched(self, stream_id) -> None:
        packets = make_stream().packets(10)
        channel = StreamChannel(stream_id, make_config(window_minutes=1.0))

        report = run_simulation(channel, delivery_order(packets, late_every=4, delay=2))

        assert report.delivered == 10
        assert report.late == 2
        assert report.holes_patched == 2
        assert report.unpatched == 0
        buffer = channel.buffer
        assert buffer.holes == []
        assert buffer.graph_len == 200
        expected = np.concatenate([p.samples for p in packets])
        assert np.array_equal(buffer.get_graph(), expected)
        assert report.statistics["mean"] == pytest.approx(float(expected.mean()))

    def test_adjacent_late_packets_patch_one_hole(self, stream_id) -> None:
        packets = make_stream().packets(5)
        order = [packets[0], packets[3], packets[1], packets[4], packets[2]]
        channel = StreamChannel(stream_id, make_config(window_minutes=1.0))

        report = run_simulation(channel, order)

        # Packets 1 and 2 share one hole, which needs both of them
        assert report.late == 2
        assert report.holes_patched == 1
        assert report.unpatched == 0
        assert channel.buffer.graph_len == 100

    def test_window_smaller_than_stream(self, stream_id) -> None:
        packets = make_stream().packets(10)
        # 0.1 minutes at 10Hz holds 60 samples
        channel = StreamChannel(stream_id, make_config(window_minutes=0.1))

        report = run_simulation(channel, packets)

        assert report.late == 0
        assert channel.buffer.capacity == 60
        expected = np.concatenate([p.samples for p in packets])[-60:]
        assert np.array_equal(channel.buffer.get_graph(), expected)
