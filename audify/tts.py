"""Speech synthesis via edge-tts with retry logic, and PCM decoding."""

import asyncio
import contextlib
import io
import logging
import threading
import time

import edge_tts
import numpy as np
from pydub import AudioSegment

from audify.constants import (
    CHANNELS,
    FEMALE_VOICE,
    MALE_VOICE,
    SAMPLE_RATE,
    SYNTH_CANCEL_POLL_INTERVAL,
    SYNTH_MAX_CHARS,
    TTS_RATE,
    TTS_RETRY_BASE_DELAY,
    TTS_RETRY_COUNT,
    TTS_TIMEOUT_SECONDS,
)
from audify.errors import SynthesisError
from audify.models import SampleBuffer, VoiceGender

logger = logging.getLogger(__name__)

# English voice pool offered by `audify voices`
VOICE_POOL = [
    "en-US-GuyNeural",
    "en-US-JennyNeural",
    "en-US-AriaNeural",
    "en-US-DavisNeural",
    "en-US-TonyNeural",
    "en-US-SaraNeural",
    "en-GB-SoniaNeural",
    "en-GB-RyanNeural",
    "en-AU-NatashaNeural",
    "en-AU-WilliamNeural",
    "en-CA-ClaraNeural",
    "en-CA-LiamNeural",
    "en-IE-EmilyNeural",
]

_GENDER_VOICES = {
    VoiceGender.MALE: MALE_VOICE,
    VoiceGender.FEMALE: FEMALE_VOICE,
}


def resolve_voice(selector: str | VoiceGender) -> str:
    """Map a voice selector to an edge-tts voice name.

    "MALE"/"FEMALE" (any case) pick the configured default voice for that
    gender; anything else is taken to be a voice name already.
    """
    if isinstance(selector, VoiceGender):
        return _GENDER_VOICES[selector]
    try:
        return _GENDER_VOICES[VoiceGender(selector.upper())]
    except ValueError:
        return selector


async def _stream_audio(text: str, voice: str, rate: str) -> bytes:
    communicate = edge_tts.Communicate(text, voice, rate=rate)
    chunks = []
    async for chunk in communicate.stream():
        if chunk["type"] == "audio":
            chunks.append(chunk["data"])
    return b"".join(chunks)


async def _stream_until(
    text: str,
    voice: str,
    rate: str,
    timeout: float,
    cancel_event: threading.Event | None,
) -> bytes:
    """Run _stream_audio bounded by timeout, abandoning it once cancel_event is set."""
    task = asyncio.ensure_future(_stream_audio(text, voice, rate))
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    try:
        while not task.done():
            if cancel_event is not None and cancel_event.is_set():
                raise SynthesisError("Synthesis cancelled.")
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise asyncio.TimeoutError()
            await asyncio.wait({task}, timeout=min(SYNTH_CANCEL_POLL_INTERVAL, remaining))
        return task.result()
    finally:
        if not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task


def _mp3_to_pcm(data: bytes, sample_rate: int, channels: int) -> bytes:
    """Decode compressed service output to 16-bit little-endian PCM."""
    audio = AudioSegment.from_file(io.BytesIO(data), format="mp3")
    audio = audio.set_frame_rate(sample_rate).set_channels(channels).set_sample_width(2)
    return audio.raw_data


def synthesize(
    text: str,
    voice: str | VoiceGender = VoiceGender.FEMALE,
    rate: str = TTS_RATE,
    timeout: float = TTS_TIMEOUT_SECONDS,
    sample_rate: int = SAMPLE_RATE,
    channels: int = CHANNELS,
    cancel_event: threading.Event | None = None,
) -> bytes:
    """Synthesize text into raw interleaved 16-bit PCM.

    Sync wrapper around edge_tts.Communicate(). Each attempt is bounded by
    ``timeout`` seconds. Network errors, timeouts and empty output are
    retried with exponential backoff; after TTS_RETRY_COUNT attempts the
    last error is raised as SynthesisError. Empty or over-long text is
    rejected without calling the service.

    Setting ``cancel_event`` aborts the running attempt and any remaining
    retries with SynthesisError.
    """
    if not text or not text.strip():
        raise SynthesisError("Text is empty, cannot generate speech.")
    if len(text) > SYNTH_MAX_CHARS:
        raise SynthesisError(
            f"Text is {len(text)} characters, above the {SYNTH_MAX_CHARS} character synthesis limit."
        )

    voice_name = resolve_voice(voice)
    last_error = None
    for attempt in range(TTS_RETRY_COUNT):
        _raise_if_cancelled(cancel_event)
        try:
            compressed = asyncio.run(_stream_until(text, voice_name, rate, timeout, cancel_event))
            # Empty output counts as failure
            if compressed:
                pcm = _mp3_to_pcm(compressed, sample_rate, channels)
                if pcm:
                    return pcm
            last_error = SynthesisError(f"TTS produced no audio for: {text[:50]}...")
        except asyncio.TimeoutError:
            last_error = SynthesisError(f"TTS timed out after {timeout}s for: {text[:50]}...")
        except Exception as e:
            _raise_if_cancelled(cancel_event)
            last_error = e

        logger.warning(
            "Synthesis attempt %d/%d failed: %s", attempt + 1, TTS_RETRY_COUNT, last_error,
        )
        # Exponential backoff
        if attempt < TTS_RETRY_COUNT - 1:
            delay = TTS_RETRY_BASE_DELAY * (2 ** attempt)
            if cancel_event is None:
                time.sleep(delay)
            elif cancel_event.wait(delay):
                _raise_if_cancelled(cancel_event)

    if isinstance(last_error, SynthesisError):
        raise last_error
    raise SynthesisError(str(last_error)) from last_error


def _raise_if_cancelled(cancel_event: threading.Event | None) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise SynthesisError("Synthesis cancelled.")


def decode_pcm(
    data: bytes,
    sample_rate: int = SAMPLE_RATE,
    channels: int = CHANNELS,
) -> SampleBuffer:
    """Decode interleaved 16-bit little-endian PCM into a SampleBuffer.

    Samples are scaled by 1/32768 into [-1.0, 1.0).
    """
    frame_bytes = 2 * channels
    if len(data) % frame_bytes:
        raise SynthesisError(
            f"Raw audio length {len(data)} is not a whole number of {channels}-channel 16-bit frames"
        )

    ints = np.frombuffer(data, dtype="<i2")
    samples = ints.reshape(-1, channels).T.astype(np.float32) / 32768.0
    return SampleBuffer(samples=np.ascontiguousarray(samples), sample_rate=sample_rate)
