"""Encode assembled audio as 16-bit PCM WAV and write the provenance manifest."""

import json
import os
import struct
from datetime import datetime, timezone

import numpy as np

from audify.constants import BIT_DEPTH, VERSION, WAV_HEADER_SIZE
from audify.errors import InvariantError
from audify.models import AssembledTrack, Document

# RIFF header, fmt chunk (16 bytes, PCM), data chunk header
_HEADER = struct.Struct("<4sI4s4sIHHIIHH4sI")
_PCM_FORMAT = 1


def _quantize(samples: np.ndarray) -> np.ndarray:
    """Map float samples to int16.

    Values are clamped to [-1.0, 1.0]; negatives scale by 32768 and
    non-negatives by 32767 so +1.0 cannot overflow. NaN becomes silence.
    """
    values = np.nan_to_num(samples.astype(np.float64), nan=0.0)
    values = np.clip(values, -1.0, 1.0)
    scaled = np.where(values < 0, values * 32768.0, values * 32767.0)
    return np.round(scaled).astype("<i2")


def encode(track: AssembledTrack) -> bytes:
    """Serialize a track into a WAV blob.

    44-byte header followed by interleaved little-endian 16-bit frames
    (all channels of frame 0, then frame 1, ...). Deterministic: identical
    samples always give identical bytes.
    """
    channels = track.channels
    block_align = channels * BIT_DEPTH // 8
    byte_rate = track.sample_rate * block_align

    # (channels, frames) -> frame-major interleaving
    data = _quantize(track.samples.T.reshape(-1)).tobytes()

    header = _HEADER.pack(
        b"RIFF",
        WAV_HEADER_SIZE - 8 + len(data),
        b"WAVE",
        b"fmt ",
        16,
        _PCM_FORMAT,
        channels,
        track.sample_rate,
        byte_rate,
        block_align,
        BIT_DEPTH,
        b"data",
        len(data),
    )
    return header + data


def decode_wav(blob: bytes) -> AssembledTrack:
    """Parse a WAV blob produced by encode() back into float samples.

    Inverse of the quantization in encode(): negatives divide by 32768,
    non-negatives by 32767.
    """
    if len(blob) < WAV_HEADER_SIZE:
        raise InvariantError(f"WAV blob is {len(blob)} bytes, shorter than its header")

    (riff, _, wave, fmt, fmt_size, audio_format, channels, sample_rate,
     _, _, bits, data_tag, data_length) = _HEADER.unpack_from(blob)

    if riff != b"RIFF" or wave != b"WAVE" or fmt != b"fmt " or data_tag != b"data":
        raise InvariantError("Not a canonical RIFF/WAVE blob")
    if fmt_size != 16 or audio_format != _PCM_FORMAT or bits != BIT_DEPTH:
        raise InvariantError(
            f"Unsupported WAV format (format={audio_format}, bits={bits}); expected 16-bit PCM"
        )

    payload = blob[WAV_HEADER_SIZE:WAV_HEADER_SIZE + data_length]
    ints = np.frombuffer(payload, dtype="<i2").reshape(-1, channels).T.astype(np.float64)
    samples = np.where(ints < 0, ints / 32768.0, ints / 32767.0).astype(np.float32)
    return AssembledTrack(samples=np.ascontiguousarray(samples), sample_rate=sample_rate)


def export(audio: bytes, document_dir: str, document: Document, filename: str = "audio.wav") -> str:
    """Write the encoded track and an output.json manifest into document_dir.

    Returns path to the audio file.
    """
    os.makedirs(document_dir, exist_ok=True)

    output_path = os.path.join(document_dir, filename)
    with open(output_path, "wb") as f:
        f.write(audio)

    manifest = {
        "document": document.id,
        "title": document.title,
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "producer_version": VERSION,
        "audio": {
            "file": filename,
            "format": document.audio.format,
            "voice": document.audio.voice,
            "sample_rate": document.audio.sample_rate,
            "channels": document.audio.channels,
            "bytes": len(audio),
        },
        "stats": {
            "paragraphs": document.content.total_paragraphs,
            "characters": document.content.total_characters,
            "duration_seconds": round(document.audio.duration, 3),
            "source_images": len(document.source_images),
        },
    }

    manifest_path = os.path.join(document_dir, "output.json")
    with open(manifest_path, "w") as f:
        json.dump(manifest, f, indent=2)

    return output_path
