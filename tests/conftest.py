"""Shared fixtures for audify tests."""

import numpy as np
import pytest

from audify.models import (
    AudioInfo,
    Document,
    DocumentContent,
    Paragraph,
    SampleBuffer,
    SourceImage,
)


def tone_pcm(seconds, sample_rate=24000, channels=1, amplitude=0.25):
    """Raw 16-bit PCM of a 440Hz tone, as the synthesis service returns it."""
    frames = int(round(seconds * sample_rate))
    t = np.arange(frames) / sample_rate
    wave = (np.sin(2 * np.pi * 440.0 * t) * amplitude * 32767).astype("<i2")
    return np.repeat(wave, channels).tobytes()


def tone_buffer(seconds, sample_rate=24000, channels=1):
    frames = int(round(seconds * sample_rate))
    t = np.arange(frames) / sample_rate
    wave = (np.sin(2 * np.pi * 440.0 * t) * 0.5).astype(np.float32)
    return SampleBuffer(samples=np.tile(wave, (channels, 1)), sample_rate=sample_rate)


def make_paragraphs(bounds):
    return [
        Paragraph(index=i, text=f"Paragraph {i}.", start_time=start, end_time=end)
        for i, (start, end) in enumerate(bounds)
    ]


def make_document(bounds, document_id="doc-1"):
    paragraphs = make_paragraphs(bounds)
    return Document(
        id=document_id,
        title="Test Document",
        content=DocumentContent(full_text="\n\n".join(p.text for p in paragraphs), paragraphs=paragraphs),
        audio=AudioInfo(storage_path="", duration=bounds[-1][1], voice="en-US-JennyNeural"),
    )


@pytest.fixture
def five_paragraphs():
    """Paragraph table with boundaries [0,2),[2,5),[5,5.5),[5.5,9),[9,12)."""
    return make_paragraphs([(0, 2), (2, 5), (5, 5.5), (5.5, 9), (9, 12)])


@pytest.fixture
def five_paragraph_document():
    return make_document([(0, 2), (2, 5), (5, 5.5), (5.5, 9), (9, 12)])


@pytest.fixture
def page_images():
    return [
        SourceImage(name="page1.jpg", data=b"\xff\xd8page-one", mime_type="image/jpeg"),
        SourceImage(name="page2.png", data=b"\x89PNGpage-two", mime_type="image/png"),
    ]


@pytest.fixture
def fake_synthesize():
    """Synthesizer returning a tone whose length is looked up by text."""
    def factory(durations):
        calls = []

        def synthesize(text, voice, cancel_event=None):
            calls.append(text)
            return tone_pcm(durations[text])

        synthesize.calls = calls
        return synthesize
    return factory
