"""Concatenate per-paragraph audio into one track with paragraph timestamps."""

import logging

import numpy as np

from audify.constants import TIMESTAMP_TOLERANCE
from audify.errors import InvariantError
from audify.models import AssembledTrack, SampleBuffer, Timestamp

logger = logging.getLogger(__name__)


class Assembler:
    """Accumulates sample buffers in paragraph order.

    Each add() records the buffer's [start, end) on the running clock.
    The clock is a float64 sum of buffer durations, so the end of one
    paragraph is bit-for-bit the start of the next.
    """

    def __init__(self) -> None:
        self._buffers: list[SampleBuffer] = []
        self.timestamps: list[Timestamp] = []
        self.cumulative_time = 0.0
        self.frame_offset = 0

    def __len__(self) -> int:
        return len(self._buffers)

    def add(self, buffer: SampleBuffer) -> Timestamp:
        if buffer.frame_count == 0:
            raise _invariant(f"Buffer {len(self._buffers)} has no audio frames")
        if self._buffers:
            first = self._buffers[0]
            if buffer.sample_rate != first.sample_rate:
                raise _invariant(
                    f"Buffer {len(self._buffers)} has sample rate {buffer.sample_rate}, "
                    f"expected {first.sample_rate}"
                )
            if buffer.channels != first.channels:
                raise _invariant(
                    f"Buffer {len(self._buffers)} has {buffer.channels} channels, "
                    f"expected {first.channels}"
                )

        duration = buffer.frame_count / float(buffer.sample_rate)
        stamp = Timestamp(start=self.cumulative_time, end=self.cumulative_time + duration)
        self.timestamps.append(stamp)
        self._buffers.append(buffer)
        self.cumulative_time += duration
        self.frame_offset += buffer.frame_count
        return stamp

    def finish(self) -> tuple[AssembledTrack, list[Timestamp]]:
        """Build the concatenated track.

        No resampling, silence or cross-fade: the output frame count is the
        exact sum of the input frame counts.
        """
        if not self._buffers:
            raise _invariant("No audio buffers to assemble")

        first = self._buffers[0]
        if len(self._buffers) == 1:
            samples = first.samples
        else:
            samples = np.concatenate([b.samples for b in self._buffers], axis=1)

        track = AssembledTrack(samples=samples, sample_rate=first.sample_rate)
        logger.info(
            "Assembled %d buffers: %d frames, %.3fs",
            len(self._buffers), track.frame_count, track.duration,
        )
        return track, list(self.timestamps)


def _invariant(message: str) -> InvariantError:
    logger.error("Assembly invariant violated: %s", message)
    return InvariantError(message)


def assemble(buffers: list[SampleBuffer]) -> tuple[AssembledTrack, list[Timestamp]]:
    """Concatenate buffers in order and return the track with one timestamp per buffer."""
    assembler = Assembler()
    for buffer in buffers:
        assembler.add(buffer)
    return assembler.finish()


def validate_timestamps(
    timestamps: list[Timestamp],
    duration: float,
    tolerance: float = TIMESTAMP_TOLERANCE,
) -> None:
    """Check that timestamps tile [0, duration) with no gaps or overlaps.

    Raises InvariantError on the first violation.
    """
    if not timestamps:
        raise _invariant("Timestamp table is empty")
    if timestamps[0].start != 0.0:
        raise _invariant(f"First paragraph starts at {timestamps[0].start}, expected 0")

    for i, stamp in enumerate(timestamps):
        if stamp.end <= stamp.start:
            raise _invariant(f"Paragraph {i} ends at {stamp.end} but starts at {stamp.start}")
        if i + 1 < len(timestamps) and timestamps[i + 1].start != stamp.end:
            raise _invariant(
                f"Paragraph {i + 1} starts at {timestamps[i + 1].start}, "
                f"previous ends at {stamp.end}"
            )

    drift = abs(timestamps[-1].end - duration)
    if drift > tolerance:
        raise _invariant(
            f"Timestamp table ends at {timestamps[-1].end:.6f}s, track is {duration:.6f}s"
        )
