"""Split OCR text into bounded paragraph chunks and build paragraph records."""

import re

from audify.constants import MAX_PARAGRAPH_CHARS, FORCE_SPLIT_FACTOR
from audify.models import Paragraph, Timestamp

# A run of whitespace holding at least two newlines
_PARAGRAPH_BREAK_RE = re.compile(r"\n\s*\n")

# Sentence ends at . ! or ? followed by whitespace (the end of string needs no split)
_SENTENCE_BREAK_RE = re.compile(r"(?<=[.!?])\s+")

_ENGLISH_WORDS = ("the", "and", "is", "in", "to", "of", "a")

PARAGRAPH_SEPARATOR = "\n\n"


def _split_sentences(text: str) -> list[str]:
    return [s for s in _SENTENCE_BREAK_RE.split(text) if s]


def _pack_sentences(sentences: list[str], max_chars: int) -> list[str]:
    """Greedily pack consecutive sentences into chunks of at most max_chars.

    A sentence longer than max_chars ends up alone in its own chunk.
    """
    chunks = []
    current = ""

    for sentence in sentences:
        if current and len(current) + 1 + len(sentence) > max_chars:
            chunks.append(current)
            current = sentence
        else:
            current = f"{current} {sentence}" if current else sentence

    if current:
        chunks.append(current)

    return chunks


def _force_split(chunk: str, max_chars: int) -> list[str]:
    """Cut a chunk every max_chars characters, mid-word if necessary."""
    pieces = (chunk[i:i + max_chars].strip() for i in range(0, len(chunk), max_chars))
    return [p for p in pieces if p]


def split_paragraph(text: str, max_chars: int = MAX_PARAGRAPH_CHARS) -> list[str]:
    """Split a single paragraph that is longer than max_chars.

    Sentence packing first; anything still above FORCE_SPLIT_FACTOR * max_chars
    (text with no sentence punctuation) is split at fixed width.
    """
    if len(text) <= max_chars:
        return [text]

    result = []
    for chunk in _pack_sentences(_split_sentences(text), max_chars):
        if len(chunk) > max_chars * FORCE_SPLIT_FACTOR:
            result.extend(_force_split(chunk, max_chars))
        else:
            result.append(chunk)
    return result


def segment(raw_text: str, max_chars: int = MAX_PARAGRAPH_CHARS) -> list[str]:
    """Split raw text into an ordered list of bounded paragraph chunks.

    Paragraph breaks are blank lines. Empty input yields an empty list;
    callers treat that as "no text found".
    """
    if max_chars <= 0:
        raise ValueError(f"max_chars must be positive, got {max_chars}")

    chunks = []
    for paragraph in _PARAGRAPH_BREAK_RE.split(raw_text):
        paragraph = paragraph.strip()
        if not paragraph:
            continue
        chunks.extend(split_paragraph(paragraph, max_chars))
    return chunks


def clean_ocr_text(text: str) -> str:
    """Normalize one page of OCR output.

    Whitespace inside a paragraph collapses to single spaces; blank-line
    paragraph breaks survive. Stray spaces before punctuation and doubled
    punctuation are removed, curly quotes become straight quotes.
    """
    paragraphs = []
    for paragraph in _PARAGRAPH_BREAK_RE.split(text):
        paragraph = re.sub(r"\s+", " ", paragraph)
        paragraph = re.sub(r"\s+([.,!?;:])", r"\1", paragraph)
        paragraph = re.sub(r"([.,!?;:])\s*[.,!?;:]", r"\1", paragraph)
        paragraph = re.sub("[“”]", '"', paragraph)
        paragraph = re.sub("[‘’]", "'", paragraph)
        paragraph = paragraph.strip()
        if paragraph:
            paragraphs.append(paragraph)
    return PARAGRAPH_SEPARATOR.join(paragraphs)


def combine_ocr_texts(texts: list[str]) -> str:
    """Clean each page and join pages with a paragraph break."""
    cleaned = (clean_ocr_text(t) for t in texts)
    return PARAGRAPH_SEPARATOR.join(t for t in cleaned if t)


def detect_language(text: str) -> str:
    """Rough language guess: "en" or "unknown"."""
    sample = f" {text[:1000].lower()} "
    hits = sum(1 for word in _ENGLISH_WORDS if f" {word} " in sample)
    return "en" if hits >= 3 else "unknown"


def build_paragraphs(texts: list[str], timestamps: list[Timestamp]) -> list[Paragraph]:
    """Pair chunk texts with their timestamps.

    Character offsets are cumulative over the chunk texts with a two-character
    paragraph break between chunks. They are informational only.
    """
    if len(texts) != len(timestamps):
        raise ValueError(
            f"Got {len(texts)} paragraph texts but {len(timestamps)} timestamps"
        )

    paragraphs = []
    position = 0
    for index, (text, stamp) in enumerate(zip(texts, timestamps)):
        text = text.strip()
        paragraphs.append(Paragraph(
            index=index,
            text=text,
            start_time=stamp.start,
            end_time=stamp.end,
            character_start=position,
            character_end=position + len(text),
        ))
        position += len(text) + len(PARAGRAPH_SEPARATOR)
    return paragraphs


def estimate_timestamps(texts: list[str], total_duration: float) -> list[Timestamp]:
    """Spread total_duration over texts in proportion to their length.

    Fallback for tracks whose per-paragraph durations are unknown.
    """
    total_chars = sum(len(t) for t in texts)
    if total_chars == 0:
        return []

    timestamps = []
    current = 0.0
    for i, text in enumerate(texts):
        end = total_duration if i == len(texts) - 1 else current + total_duration * len(text) / total_chars
        timestamps.append(Timestamp(start=current, end=end))
        current = end
    return timestamps


def format_time(seconds: float) -> str:
    """M:SS"""
    mins = int(seconds // 60)
    secs = int(seconds % 60)
    return f"{mins}:{secs:02d}"


def format_duration(seconds: float) -> str:
    """H:MM:SS when an hour or longer, otherwise M:SS."""
    hours = int(seconds // 3600)
    mins = int((seconds % 3600) // 60)
    secs = int(seconds % 60)
    if hours > 0:
        return f"{hours}:{mins:02d}:{secs:02d}"
    return f"{mins}:{secs:02d}"
