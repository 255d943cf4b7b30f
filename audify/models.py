"""Data models for document processing and playback."""

from dataclasses import dataclass, field, asdict
from enum import Enum

import numpy as np

from audify.constants import AUDIO_FORMAT, CHANNELS, SAMPLE_RATE


class VoiceGender(str, Enum):
    MALE = "MALE"
    FEMALE = "FEMALE"


@dataclass
class SourceImage:
    name: str
    data: bytes
    mime_type: str = "image/jpeg"


@dataclass(eq=False)
class SampleBuffer:
    """Decoded audio held in memory.

    ``samples`` has shape (channels, frames) and float32 values nominally
    in [-1.0, 1.0]. Every channel therefore has the same frame count.
    """

    samples: np.ndarray
    sample_rate: int = SAMPLE_RATE

    @property
    def channels(self) -> int:
        return self.samples.shape[0]

    @property
    def frame_count(self) -> int:
        return self.samples.shape[1]

    @property
    def duration(self) -> float:
        return self.frame_count / float(self.sample_rate)


@dataclass(eq=False)
class AssembledTrack(SampleBuffer):
    """The concatenated waveform of a whole document."""


@dataclass(frozen=True)
class Timestamp:
    start: float
    end: float


@dataclass(frozen=True)
class Paragraph:
    index: int
    text: str
    start_time: float
    end_time: float
    character_start: int = 0
    character_end: int = 0

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time

    def contains(self, seconds: float) -> bool:
        return self.start_time <= seconds < self.end_time


@dataclass
class DocumentContent:
    full_text: str
    paragraphs: list[Paragraph]
    language: str = "unknown"
    processed_at: str = ""

    @property
    def total_paragraphs(self) -> int:
        return len(self.paragraphs)

    @property
    def total_characters(self) -> int:
        return sum(len(p.text) for p in self.paragraphs)


@dataclass
class AudioInfo:
    storage_path: str
    duration: float
    sample_rate: int = SAMPLE_RATE
    channels: int = CHANNELS
    format: str = AUDIO_FORMAT
    voice: str = ""
    generated_at: str = ""


@dataclass
class PlaybackState:
    current_time: float = 0.0
    current_paragraph_index: int = 0
    last_played_at: str = ""
    is_completed: bool = False
    completion_percentage: float = 0.0


@dataclass
class Document:
    id: str
    title: str
    content: DocumentContent
    audio: AudioInfo
    playback: PlaybackState = field(default_factory=PlaybackState)
    source_images: list[str] = field(default_factory=list)
    created_at: str = ""
    updated_at: str = ""

    @property
    def paragraphs(self) -> list[Paragraph]:
        return self.content.paragraphs

    def to_dict(self) -> dict:
        data = asdict(self)
        data["content"]["total_paragraphs"] = self.content.total_paragraphs
        data["content"]["total_characters"] = self.content.total_characters
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Document":
        content = dict(data["content"])
        content.pop("total_paragraphs", None)
        content.pop("total_characters", None)
        paragraphs = [
            Paragraph(**{"start_time": 0.0, "end_time": 0.0, **p})
            for p in content.pop("paragraphs", [])
        ]
        return cls(
            id=data["id"],
            title=data.get("title", ""),
            content=DocumentContent(paragraphs=paragraphs, **content),
            audio=AudioInfo(**data["audio"]),
            playback=PlaybackState(**data.get("playback", {})),
            source_images=list(data.get("source_images", [])),
            created_at=data.get("created_at", ""),
            updated_at=data.get("updated_at", ""),
        )


@dataclass
class ProcessingStatus:
    stage: str         # "uploading", "ocr", "audio", "saving", "complete" or "error"
    progress: float    # 0-100, non-decreasing until an error is reported
    message: str
    current_step: int | None = None
    total_steps: int | None = None
