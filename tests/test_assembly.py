"""Tests for assembly module."""

import numpy as np
import pytest

from audify.assembly import Assembler, assemble, validate_timestamps
from audify.errors import InvariantError
from audify.models import SampleBuffer, Timestamp

from conftest import tone_buffer


def _ramp(frames, start=0, channels=1, sample_rate=100):
    """Buffer whose sample values encode their global position."""
    values = np.arange(start, start + frames, dtype=np.float32) / 10000.0
    return SampleBuffer(samples=np.tile(values, (channels, 1)), sample_rate=sample_rate)


def test_assemble_single_buffer():
    """One buffer → the same samples and one [0, duration) timestamp."""
    buf = tone_buffer(1.0)
    track, stamps = assemble([buf])
    assert track.samples is buf.samples
    assert stamps == [Timestamp(0.0, 1.0)]


def test_assemble_timestamps_cumulative():
    """1.0s, 1.5s, 0.8s buffers → [0,1.0), [1.0,2.5), [2.5,3.3)."""
    track, stamps = assemble([tone_buffer(1.0), tone_buffer(1.5), tone_buffer(0.8)])
    assert stamps[0] == Timestamp(0.0, 1.0)
    assert stamps[1] == Timestamp(1.0, 2.5)
    assert stamps[2].start == 2.5
    assert stamps[2].end == pytest.approx(3.3, abs=1e-9)
    assert track.duration == pytest.approx(3.3, abs=1e-9)


def test_assemble_frame_count_conservation():
    buffers = [tone_buffer(d) for d in (0.25, 0.01, 1.3, 0.7)]
    track, _ = assemble(buffers)
    assert track.frame_count == sum(b.frame_count for b in buffers)


def test_assemble_preserves_order_per_channel():
    """Samples are appended in order on every channel, no gaps or cross-fade."""
    a = _ramp(5, start=0, channels=2)
    b = _ramp(3, start=5, channels=2)
    track, _ = assemble([a, b])
    expected = np.arange(8, dtype=np.float32) / 10000.0
    np.testing.assert_array_equal(track.samples[0], expected)
    np.testing.assert_array_equal(track.samples[1], expected)


def test_assemble_contiguity_over_many_buffers():
    """Hundreds of paragraphs: every end is exactly the next start."""
    rng = np.random.default_rng(7)
    buffers = [_ramp(int(n), sample_rate=24000) for n in rng.integers(1000, 90000, size=300)]
    track, stamps = assemble(buffers)
    for prev, curr in zip(stamps, stamps[1:]):
        assert prev.end == curr.start
    assert abs(stamps[-1].end - track.duration) <= 0.001
    validate_timestamps(stamps, track.duration)


def test_assemble_empty_sequence():
    with pytest.raises(InvariantError):
        assemble([])


def test_assemble_rejects_sample_rate_mismatch():
    with pytest.raises(InvariantError, match="sample rate"):
        assemble([tone_buffer(0.1, sample_rate=24000), tone_buffer(0.1, sample_rate=22050)])


def test_assemble_rejects_channel_mismatch():
    with pytest.raises(InvariantError, match="channels"):
        assemble([tone_buffer(0.1, channels=1), tone_buffer(0.1, channels=2)])


def test_assemble_rejects_empty_buffer():
    with pytest.raises(InvariantError, match="no audio frames"):
        assemble([tone_buffer(0.1), tone_buffer(0.0)])


def test_assembler_incremental_matches_batch():
    buffers = [tone_buffer(d) for d in (0.3, 0.6, 0.2)]
    assembler = Assembler()
    returned = [assembler.add(b) for b in buffers]
    assert len(assembler) == 3
    assert assembler.frame_offset == sum(b.frame_count for b in buffers)
    track, stamps = assembler.finish()
    batch_track, batch_stamps = assemble(buffers)
    assert stamps == batch_stamps == returned
    np.testing.assert_array_equal(track.samples, batch_track.samples)


# --- validate_timestamps ---

def test_validate_timestamps_accepts_contiguous():
    validate_timestamps([Timestamp(0.0, 1.0), Timestamp(1.0, 2.5)], 2.5005)


def test_validate_timestamps_gap():
    with pytest.raises(InvariantError, match="starts at"):
        validate_timestamps([Timestamp(0.0, 1.0), Timestamp(1.1, 2.5)], 2.5)


def test_validate_timestamps_not_starting_at_zero():
    with pytest.raises(InvariantError):
        validate_timestamps([Timestamp(0.5, 1.0)], 1.0)


def test_validate_timestamps_duration_drift():
    with pytest.raises(InvariantError, match="track is"):
        validate_timestamps([Timestamp(0.0, 1.0)], 1.01)


def test_validate_timestamps_empty_paragraph():
    with pytest.raises(InvariantError):
        validate_timestamps([Timestamp(0.0, 0.0)], 0.0)
