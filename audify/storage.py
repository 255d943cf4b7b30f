"""Document persistence: one directory per document, created atomically."""

import json
import logging
import os
import re
import shutil
import uuid
from dataclasses import replace
from datetime import datetime, timezone

from audify.constants import OUTPUT_DIR
from audify.errors import DocumentNotFoundError
from audify.exporter import decode_wav, export
from audify.models import AssembledTrack, Document, PlaybackState, SourceImage
from audify.segmenter import estimate_timestamps

logger = logging.getLogger(__name__)

DOCUMENT_FILE = "document.json"
AUDIO_FILE = "audio.wav"
IMAGES_DIR = "images"
_STAGING_PREFIX = ".staging-"


def document_dir(document_id: str, output_base: str = OUTPUT_DIR) -> str:
    return os.path.join(output_base, document_id)


def write_artifact(directory: str, filename: str, data: dict) -> str:
    """Write JSON artifact to directory/filename via a temp file and rename.

    Returns path to the written file.
    """
    path = os.path.join(directory, filename)
    tmp_path = f"{path}.tmp"
    with open(tmp_path, "w") as f:
        json.dump(data, f, indent=2)
    os.replace(tmp_path, path)
    return path


def load_artifact(directory: str, filename: str) -> dict | None:
    """Read JSON artifact. Returns None if file doesn't exist."""
    path = os.path.join(directory, filename)
    if not os.path.exists(path):
        return None
    with open(path) as f:
        return json.load(f)


def _image_filename(index: int, image: SourceImage) -> str:
    """Generate filename for a stored page image."""
    safe = re.sub(r"[^a-zA-Z0-9.]+", "_", os.path.basename(image.name)).strip("_") or "page"
    return f"{index + 1:03d}_{safe}"


def store(
    document: Document,
    audio: bytes,
    images: list[SourceImage] | None = None,
    output_base: str = OUTPUT_DIR,
) -> str:
    """Persist a document, its encoded track and its page images.

    Everything is written into a hidden staging directory that is renamed
    into place as the last step, so a document is either fully visible or
    absent. Returns the document directory.
    """
    final_dir = document_dir(document.id, output_base)
    if os.path.exists(final_dir):
        raise FileExistsError(f"Document '{document.id}' already exists")

    os.makedirs(output_base, exist_ok=True)
    staging_dir = os.path.join(output_base, f"{_STAGING_PREFIX}{document.id}-{uuid.uuid4().hex[:8]}")
    os.makedirs(staging_dir)

    try:
        if images:
            images_dir = os.path.join(staging_dir, IMAGES_DIR)
            os.makedirs(images_dir)
            for i, image in enumerate(images):
                with open(os.path.join(images_dir, _image_filename(i, image)), "wb") as f:
                    f.write(image.data)

        document.audio.storage_path = os.path.join(final_dir, AUDIO_FILE)
        export(audio, staging_dir, document, filename=AUDIO_FILE)
        write_artifact(staging_dir, DOCUMENT_FILE, document.to_dict())

        os.replace(staging_dir, final_dir)
    except BaseException:
        shutil.rmtree(staging_dir, ignore_errors=True)
        raise

    logger.info("Stored document %s (%d paragraphs)", document.id, document.content.total_paragraphs)
    return final_dir


def load(document_id: str, output_base: str = OUTPUT_DIR) -> Document:
    data = load_artifact(document_dir(document_id, output_base), DOCUMENT_FILE)
    if data is None:
        raise DocumentNotFoundError(document_id)
    document = Document.from_dict(data)
    _fill_missing_timings(document)
    return document


def _fill_missing_timings(document: Document) -> None:
    """Give paragraphs stored without timings a length-proportional estimate."""
    paragraphs = document.paragraphs
    if not paragraphs or document.audio.duration <= 0:
        return
    if any(p.end_time > 0 for p in paragraphs):
        return

    logger.warning("Document %s has no paragraph timings, estimating from text length", document.id)
    timestamps = estimate_timestamps([p.text for p in paragraphs], document.audio.duration)
    if not timestamps:
        return
    document.content.paragraphs = [
        replace(p, start_time=stamp.start, end_time=stamp.end)
        for p, stamp in zip(paragraphs, timestamps)
    ]


def load_audio(document_id: str, output_base: str = OUTPUT_DIR) -> AssembledTrack:
    path = os.path.join(document_dir(document_id, output_base), AUDIO_FILE)
    if not os.path.exists(path):
        raise DocumentNotFoundError(document_id)
    with open(path, "rb") as f:
        return decode_wav(f.read())


def list_documents(output_base: str = OUTPUT_DIR) -> list[str]:
    """List all document ids under the output directory.

    Returns sorted list of directory names that contain a document.json.
    Staging directories of in-flight stores are never listed.
    """
    if not os.path.exists(output_base):
        return []
    documents = []
    for name in os.listdir(output_base):
        if name.startswith(_STAGING_PREFIX):
            continue
        if os.path.exists(os.path.join(output_base, name, DOCUMENT_FILE)):
            documents.append(name)
    return sorted(documents)


def delete_document(document_id: str, output_base: str = OUTPUT_DIR) -> None:
    path = document_dir(document_id, output_base)
    if not os.path.isdir(path):
        raise DocumentNotFoundError(document_id)
    shutil.rmtree(path)


def save_playback(
    document_id: str,
    playback: PlaybackState,
    output_base: str = OUTPUT_DIR,
) -> None:
    """Rewrite only the playback block of a stored document."""
    directory = document_dir(document_id, output_base)
    data = load_artifact(directory, DOCUMENT_FILE)
    if data is None:
        raise DocumentNotFoundError(document_id)

    data["playback"] = {
        "current_time": playback.current_time,
        "current_paragraph_index": playback.current_paragraph_index,
        "last_played_at": playback.last_played_at,
        "is_completed": playback.is_completed,
        "completion_percentage": playback.completion_percentage,
    }
    data["updated_at"] = datetime.now(timezone.utc).isoformat()
    write_artifact(directory, DOCUMENT_FILE, data)
