"""Tests for TTS module."""

import asyncio
import threading
import time
from unittest.mock import patch, MagicMock

import numpy as np
import pytest
from pydub import AudioSegment

from audify.constants import FEMALE_VOICE, MALE_VOICE, SYNTH_MAX_CHARS, TTS_RETRY_COUNT
from audify.errors import SynthesisError
from audify.models import VoiceGender
from audify.tts import decode_pcm, resolve_voice, synthesize

from conftest import tone_pcm


def _make_mock_communicate(payload=b"mp3-bytes", fail_times=0):
    """Create a mock edge_tts.Communicate whose stream yields one audio chunk."""
    calls = []

    def factory(text, voice, **kwargs):
        calls.append((text, voice, kwargs))
        mock = MagicMock()

        async def stream():
            if len(calls) <= fail_times:
                raise ConnectionError("Network error")
            yield {"type": "WordBoundary", "offset": 0}
            if payload:
                yield {"type": "audio", "data": payload}

        mock.stream = stream
        return mock

    factory.calls = calls
    return factory


def _fake_from_file(pcm):
    """Stand-in for AudioSegment.from_file returning already-decoded audio."""
    def from_file(fp, format=None):
        return AudioSegment(data=pcm, sample_width=2, frame_rate=24000, channels=1)
    return from_file


@patch("audify.tts.time.sleep")
@patch("audify.tts.AudioSegment.from_file")
@patch("audify.tts.edge_tts.Communicate")
def test_synthesize_returns_pcm(mock_comm, mock_from_file, mock_sleep):
    """Compressed service output is decoded to raw 16-bit PCM."""
    pcm = tone_pcm(0.5)
    mock_comm.side_effect = _make_mock_communicate()
    mock_from_file.side_effect = _fake_from_file(pcm)
    assert synthesize("Hello world.", VoiceGender.MALE) == pcm
    assert mock_comm.call_args[0][1] == MALE_VOICE
    mock_sleep.assert_not_called()


@patch("audify.tts.time.sleep")
@patch("audify.tts.AudioSegment.from_file")
@patch("audify.tts.edge_tts.Communicate")
def test_synthesize_retry(mock_comm, mock_from_file, mock_sleep):
    """Retry works when first attempt fails."""
    factory = _make_mock_communicate(fail_times=1)
    mock_comm.side_effect = factory
    mock_from_file.side_effect = _fake_from_file(tone_pcm(0.1))
    assert synthesize("Hello", "FEMALE")
    assert len(factory.calls) == 2
    mock_sleep.assert_called_once_with(1.0)


@patch("audify.tts.time.sleep")
@patch("audify.tts.edge_tts.Communicate")
def test_synthesize_retry_exhausted(mock_comm, mock_sleep):
    """Raises SynthesisError after all retries are exhausted."""
    factory = _make_mock_communicate(fail_times=99)
    mock_comm.side_effect = factory
    with pytest.raises(SynthesisError, match="Network error"):
        synthesize("Hello", "FEMALE")
    assert len(factory.calls) == TTS_RETRY_COUNT
    assert mock_sleep.call_count == TTS_RETRY_COUNT - 1


@patch("audify.tts.time.sleep")
@patch("audify.tts.edge_tts.Communicate")
def test_synthesize_empty_output_is_failure(mock_comm, mock_sleep):
    """A stream with no audio chunks counts as a failed attempt."""
    mock_comm.side_effect = _make_mock_communicate(payload=b"")
    with pytest.raises(SynthesisError, match="no audio"):
        synthesize("Hello", "FEMALE")
    assert mock_comm.call_count == TTS_RETRY_COUNT


def _hanging_communicate(text, voice, **kwargs):
    mock = MagicMock()

    async def stream():
        await asyncio.sleep(30)
        yield {"type": "audio", "data": b"late"}

    mock.stream = stream
    return mock


@patch("audify.tts.time.sleep")
@patch("audify.tts.edge_tts.Communicate")
def test_synthesize_timeout(mock_comm, mock_sleep):
    """A stream that never finishes counts as a failed attempt and is retried."""
    mock_comm.side_effect = _hanging_communicate
    started = time.monotonic()
    with pytest.raises(SynthesisError, match="timed out"):
        synthesize("Hello", "FEMALE", timeout=0.05)
    assert mock_comm.call_count == TTS_RETRY_COUNT
    assert mock_sleep.call_count == TTS_RETRY_COUNT - 1
    assert time.monotonic() - started < 5


@patch("audify.tts.edge_tts.Communicate")
def test_synthesize_cancel_stops_running_attempt(mock_comm):
    """Setting the cancel event ends the running attempt without further retries."""
    mock_comm.side_effect = _hanging_communicate
    cancel = threading.Event()
    timer = threading.Timer(0.05, cancel.set)
    timer.start()
    started = time.monotonic()
    with pytest.raises(SynthesisError, match="cancelled"):
        synthesize("Hello", "FEMALE", cancel_event=cancel)
    timer.join()
    assert mock_comm.call_count == 1
    assert time.monotonic() - started < 5


@patch("audify.tts.edge_tts.Communicate")
def test_synthesize_already_cancelled(mock_comm):
    cancel = threading.Event()
    cancel.set()
    with pytest.raises(SynthesisError, match="cancelled"):
        synthesize("Hello", "FEMALE", cancel_event=cancel)
    mock_comm.assert_not_called()


@patch("audify.tts.edge_tts.Communicate")
def test_synthesize_rejects_empty_text(mock_comm):
    with pytest.raises(SynthesisError, match="empty"):
        synthesize("   ", "FEMALE")
    mock_comm.assert_not_called()


@patch("audify.tts.edge_tts.Communicate")
def test_synthesize_rejects_over_limit_text(mock_comm):
    """Text above the service limit is rejected, never truncated."""
    with pytest.raises(SynthesisError, match="limit"):
        synthesize("a" * (SYNTH_MAX_CHARS + 1), "FEMALE")
    mock_comm.assert_not_called()


def test_resolve_voice():
    assert resolve_voice(VoiceGender.MALE) == MALE_VOICE
    assert resolve_voice("female") == FEMALE_VOICE
    assert resolve_voice("en-GB-RyanNeural") == "en-GB-RyanNeural"


def test_decode_pcm_mono():
    """Int16 samples scale by 1/32768."""
    data = np.array([0, 16384, -32768, 32767], dtype="<i2").tobytes()
    buf = decode_pcm(data, sample_rate=24000, channels=1)
    assert buf.channels == 1
    assert buf.frame_count == 4
    assert buf.sample_rate == 24000
    np.testing.assert_allclose(buf.samples[0], [0.0, 0.5, -1.0, 32767 / 32768], rtol=1e-6)


def test_decode_pcm_deinterleaves_stereo():
    """Interleaved L/R frames split into per-channel arrays."""
    data = np.array([1, -1, 2, -2, 3, -3], dtype="<i2").tobytes()
    buf = decode_pcm(data, sample_rate=8000, channels=2)
    assert buf.frame_count == 3
    np.testing.assert_allclose(buf.samples[0] * 32768, [1, 2, 3])
    np.testing.assert_allclose(buf.samples[1] * 32768, [-1, -2, -3])


def test_decode_pcm_partial_frame():
    with pytest.raises(SynthesisError):
        decode_pcm(b"\x00\x01\x02", channels=1)


def test_decode_pcm_duration():
    buf = decode_pcm(tone_pcm(1.5))
    assert buf.frame_count == 36000
    assert buf.duration == 1.5
