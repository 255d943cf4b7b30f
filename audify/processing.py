"""Document processing pipeline: Upload → OCR → Segment → Synthesize → Assemble → Save."""

import logging
import threading
import uuid
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from datetime import datetime, timezone
from typing import Callable

from audify import ocr, storage, tts
from audify.assembly import Assembler, validate_timestamps
from audify.constants import (
    CHANNELS,
    MAX_IMAGE_BYTES,
    MAX_PARAGRAPH_CHARS,
    SAMPLE_RATE,
    SYNTH_CANCEL_POLL_INTERVAL,
    SYNTH_WORKERS,
)
from audify.errors import (
    NoTextFoundError,
    ProcessingCancelled,
    ProcessingError,
)
from audify.exporter import encode
from audify.models import (
    AssembledTrack,
    AudioInfo,
    Document,
    DocumentContent,
    PlaybackState,
    ProcessingStatus,
    SourceImage,
    Timestamp,
    VoiceGender,
)
from audify.segmenter import (
    build_paragraphs,
    combine_ocr_texts,
    detect_language,
    segment,
)

logger = logging.getLogger(__name__)

TOTAL_STEPS = 4

# Progress bands per stage (percent)
UPLOAD_START, UPLOAD_END = 0.0, 25.0
OCR_START, OCR_END = 25.0, 50.0
AUDIO_START, AUDIO_END = 50.0, 90.0
SAVE_START, SAVE_END = 90.0, 100.0

ProgressCallback = Callable[[ProcessingStatus], None]


class _Progress:
    """Forwards status updates and keeps the reported value non-decreasing."""

    def __init__(self, callback: ProgressCallback | None) -> None:
        self._callback = callback
        self.stage = "uploading"
        self.value = 0.0

    def report(self, stage: str, progress: float, message: str, step: int | None = None) -> None:
        self.stage = stage
        self.value = max(self.value, progress)
        logger.debug("[%s] %.1f%% %s", stage, self.value, message)
        if self._callback is not None:
            self._callback(ProcessingStatus(
                stage=stage,
                progress=self.value,
                message=message,
                current_step=step,
                total_steps=TOTAL_STEPS if step is not None else None,
            ))

    def fail(self, message: str) -> None:
        if self._callback is not None:
            self._callback(ProcessingStatus(stage="error", progress=0.0, message=message))


def _check_cancel(cancel_event: threading.Event | None, stage: str) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise ProcessingCancelled(stage)


def _validate_images(images: list[SourceImage]) -> None:
    if not images:
        raise ProcessingError("uploading", "No images provided.")
    for image in images:
        if not image.data:
            raise ProcessingError("uploading", f"Image '{image.name}' is empty.")
        if len(image.data) > MAX_IMAGE_BYTES:
            raise ProcessingError(
                "uploading",
                f"Image '{image.name}' exceeds {MAX_IMAGE_BYTES // (1024 * 1024)}MB limit",
            )


def extract_full_text(
    images: list[SourceImage],
    extract_text: Callable[[bytes, str], str],
    progress: _Progress | None = None,
    cancel_event: threading.Event | None = None,
) -> str:
    """OCR every image and join the non-empty results with paragraph breaks.

    Images without legible text are skipped; if no image yields text the
    whole operation fails with NoTextFoundError.
    """
    texts = []
    for i, image in enumerate(images):
        _check_cancel(cancel_event, "ocr")
        try:
            text = extract_text(image.data, image.mime_type)
        except NoTextFoundError:
            text = ""

        if not text or not text.strip():
            logger.warning("Image %d (%s) has no text, skipping", i + 1, image.name)
        else:
            texts.append(text)

        if progress is not None:
            progress.report(
                "ocr",
                OCR_START + (OCR_END - OCR_START) * (i + 1) / len(images),
                f"Processing image {i + 1} of {len(images)}...",
            )

    if not texts:
        raise NoTextFoundError()
    return combine_ocr_texts(texts)


def synthesize_chunks(
    chunks: list[str],
    voice: str | VoiceGender,
    synthesize: Callable[..., bytes],
    max_workers: int = SYNTH_WORKERS,
    sample_rate: int = SAMPLE_RATE,
    channels: int = CHANNELS,
    on_chunk_done: Callable[[int, int], None] | None = None,
    cancel_event: threading.Event | None = None,
) -> tuple[AssembledTrack, list[Timestamp]]:
    """Synthesize every chunk and assemble the results in chunk order.

    ``synthesize(text, voice, cancel_event=...)`` must stop promptly once
    the event it is given is set. With max_workers > 1 calls run on a
    thread pool; finished results are fed to the assembler as soon as every
    earlier chunk is in. The first failure (or a cancel) cancels queued
    calls, aborts running ones and propagates, so no chunk is ever silently
    dropped.
    """
    assembler = Assembler()
    total = len(chunks)
    abort = threading.Event()

    if max_workers <= 1:
        for i, chunk in enumerate(chunks):
            _check_cancel(cancel_event, "audio")
            logger.info("Generating audio for paragraph %d/%d", i + 1, total)
            try:
                raw = synthesize(chunk, voice, cancel_event=cancel_event)
            except Exception:
                _check_cancel(cancel_event, "audio")
                raise
            assembler.add(tts.decode_pcm(raw, sample_rate, channels))
            if on_chunk_done is not None:
                on_chunk_done(i + 1, total)
        _check_cancel(cancel_event, "audio")
        return assembler.finish()

    results: dict[int, bytes] = {}
    completed = 0
    executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="synthesize")
    future_map = {}
    try:
        future_map = {
            executor.submit(synthesize, chunk, voice, cancel_event=abort): i
            for i, chunk in enumerate(chunks)
        }
        pending = set(future_map)

        while pending:
            _check_cancel(cancel_event, "audio")
            done, pending = wait(pending, timeout=SYNTH_CANCEL_POLL_INTERVAL, return_when=FIRST_COMPLETED)
            for future in sorted(done, key=future_map.get):
                index = future_map[future]
                results[index] = future.result()
                completed += 1
                logger.info("Generated audio for paragraph %d/%d", index + 1, total)
                if on_chunk_done is not None:
                    on_chunk_done(completed, total)

            # Drain in paragraph order regardless of completion order
            while len(assembler) in results:
                raw = results.pop(len(assembler))
                assembler.add(tts.decode_pcm(raw, sample_rate, channels))
        _check_cancel(cancel_event, "audio")
    finally:
        abort.set()
        for future in future_map:
            future.cancel()
        executor.shutdown(wait=False, cancel_futures=True)

    return assembler.finish()


def process_document(
    images: list[SourceImage],
    title: str,
    voice: str | VoiceGender = VoiceGender.FEMALE,
    *,
    extract_text: Callable[[bytes, str], str] = ocr.extract_text,
    synthesize: Callable[..., bytes] = tts.synthesize,
    store: Callable[[Document, bytes, list[SourceImage]], object] = storage.store,
    on_progress: ProgressCallback | None = None,
    cancel_event: threading.Event | None = None,
    max_workers: int = SYNTH_WORKERS,
    max_chars: int = MAX_PARAGRAPH_CHARS,
    sample_rate: int = SAMPLE_RATE,
    channels: int = CHANNELS,
) -> Document:
    """Turn page images into a stored, narrated Document.

    All-or-nothing: any failure (no text, one chunk failing synthesis,
    cancellation, an invariant violation) raises ProcessingError naming the
    stage, and nothing is stored. ``store`` is the last call made.
    """
    document_id = str(uuid.uuid4())
    progress = _Progress(on_progress)

    try:
        # ===== STAGE 1: UPLOAD =====
        progress.report("uploading", UPLOAD_START, "Uploading images...", step=1)
        _validate_images(images)
        progress.report("uploading", UPLOAD_END, f"Uploaded {len(images)} image(s)")

        # ===== STAGE 2: OCR =====
        progress.report("ocr", OCR_START, "Extracting text from images...", step=2)
        full_text = extract_full_text(images, extract_text, progress, cancel_event)
        chunks = segment(full_text, max_chars)
        if not chunks:
            raise NoTextFoundError()
        logger.info("Extracted %d paragraphs", len(chunks))

        # ===== STAGE 3: AUDIO =====
        progress.report("audio", AUDIO_START, "Generating audio...", step=3)

        def on_chunk_done(done: int, total: int) -> None:
            percent = done / total * 100
            progress.report(
                "audio",
                AUDIO_START + (AUDIO_END - AUDIO_START) * done / total,
                f"Generating audio... {round(percent)}%",
            )

        track, timestamps = synthesize_chunks(
            chunks, voice, synthesize,
            max_workers=max_workers,
            sample_rate=sample_rate,
            channels=channels,
            on_chunk_done=on_chunk_done,
            cancel_event=cancel_event,
        )
        validate_timestamps(timestamps, track.duration)
        audio = encode(track)
        logger.info("Audio generation complete. Duration: %.2fs", track.duration)

        # ===== STAGE 4: SAVE =====
        _check_cancel(cancel_event, "saving")
        progress.report("saving", SAVE_START, "Saving audiobook...", step=4)
        now = datetime.now(timezone.utc).isoformat()
        document = Document(
            id=document_id,
            title=title,
            content=DocumentContent(
                full_text=full_text,
                paragraphs=build_paragraphs(chunks, timestamps),
                language=detect_language(full_text),
                processed_at=now,
            ),
            audio=AudioInfo(
                storage_path="",
                duration=track.duration,
                sample_rate=track.sample_rate,
                channels=track.channels,
                voice=tts.resolve_voice(voice),
                generated_at=now,
            ),
            playback=PlaybackState(last_played_at=now),
            source_images=[image.name for image in images],
            created_at=now,
            updated_at=now,
        )
        store(document, audio, images)
    except ProcessingError as e:
        logger.error("Processing failed: %s", e)
        progress.fail(str(e))
        raise
    except Exception as e:
        error = ProcessingError(progress.stage, str(e))
        logger.error("Processing failed: %s", error)
        progress.fail(str(error))
        raise error from e

    progress.report("complete", SAVE_END, "Audiobook created successfully!")
    logger.info("Document %s created successfully", document_id)
    return document
