"""CLI interface with subcommand routing."""

import argparse
import functools
import logging
import mimetypes
import os
import shutil
import sys

from audify import storage
from audify.constants import OUTPUT_DIR, SYNTH_WORKERS, VERSION
from audify.errors import DocumentNotFoundError, ProcessingError
from audify.models import ProcessingStatus, SourceImage
from audify.playback import PlaybackSession
from audify.processing import process_document
from audify.segmenter import format_duration, format_time
from audify.tts import VOICE_POOL


def _check_ffmpeg():
    """Verify ffmpeg is installed (pydub needs it to decode synthesized speech)."""
    if not shutil.which("ffmpeg"):
        print("Error: ffmpeg is required but not found.", file=sys.stderr)
        print("Install it with your package manager, e.g. apt install ffmpeg or brew install ffmpeg", file=sys.stderr)
        raise SystemExit(1)


def _load_images(paths: list[str]) -> list[SourceImage]:
    """Read page images from disk."""
    images = []
    for path in paths:
        if not os.path.exists(path):
            print(f"Error: File not found: {path}", file=sys.stderr)
            raise SystemExit(1)
        mime_type, _ = mimetypes.guess_type(path)
        if not mime_type or not mime_type.startswith("image/"):
            print(f"Error: Not an image file: {path}", file=sys.stderr)
            raise SystemExit(1)
        with open(path, "rb") as f:
            images.append(SourceImage(name=os.path.basename(path), data=f.read(), mime_type=mime_type))
    return images


def _load_document(document_id: str):
    try:
        return storage.load(document_id, output_base=OUTPUT_DIR)
    except DocumentNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        print("Run 'audify list' to see stored documents.", file=sys.stderr)
        raise SystemExit(1)


def _print_progress(status: ProcessingStatus) -> None:
    if status.stage == "error":
        return
    print(f"  [{status.progress:5.1f}%] {status.message}")


def cmd_new(args):
    """Create an audiobook from page images."""
    _check_ffmpeg()
    images = _load_images(args.images)
    title = args.title or os.path.splitext(os.path.basename(args.images[0]))[0]

    try:
        document = process_document(
            images,
            title,
            voice=args.voice,
            store=functools.partial(storage.store, output_base=OUTPUT_DIR),
            on_progress=_print_progress,
            max_workers=args.workers,
        )
    except ProcessingError as e:
        print(f"Error: {e}", file=sys.stderr)
        raise SystemExit(1)

    print(f"Created document: {document.id}")
    print(
        f"{document.content.total_paragraphs} paragraphs, "
        f"{format_duration(document.audio.duration)} of audio"
    )
    print(f"Run 'audify status {document.id}' to review.")


def cmd_list(args):
    """List all stored documents."""
    document_ids = storage.list_documents(output_base=OUTPUT_DIR)
    if not document_ids:
        print("No documents found.")
        return
    print("Documents:")
    for document_id in document_ids:
        document = storage.load(document_id, output_base=OUTPUT_DIR)
        marker = "[done]" if document.playback.is_completed else "[----]"
        print(f"  {marker} {document_id}  {document.title} ({format_duration(document.audio.duration)})")


def cmd_status(args):
    """Show a document's paragraphs and playback position."""
    document = _load_document(args.document_id)
    playback = document.playback

    print(f"Document: {document.id}")
    print(f"Title:    {document.title}")
    print(f"Language: {document.content.language}")
    print(f"Audio:    {format_duration(document.audio.duration)} ({document.audio.voice})")
    print(
        f"Position: {format_time(playback.current_time)} "
        f"(paragraph {playback.current_paragraph_index + 1}/{document.content.total_paragraphs}, "
        f"{playback.completion_percentage:.0f}%)"
    )
    print("Paragraphs:")
    for p in document.paragraphs:
        marker = ">" if p.index == playback.current_paragraph_index else " "
        preview = p.text if len(p.text) <= 60 else p.text[:57] + "..."
        print(f"  {marker} {p.index + 1:>3} [{format_time(p.start_time)}-{format_time(p.end_time)}] {preview}")


def cmd_locate(args):
    """Resolve a play-head position to its paragraph."""
    document = _load_document(args.document_id)

    save = None
    if args.save:
        save = functools.partial(storage.save_playback, document.id, output_base=OUTPUT_DIR)

    session = PlaybackSession(document, save=save)
    snapshot = session.seek(args.seconds)
    session.close()

    paragraph = document.paragraphs[snapshot.paragraph_index]
    print(
        f"{format_time(snapshot.current_time)} → paragraph {paragraph.index + 1} "
        f"[{format_time(paragraph.start_time)}-{format_time(paragraph.end_time)}]"
    )
    print(paragraph.text)


def cmd_voices(args):
    """List available voices."""
    filter_str = args.filter.lower() if args.filter else None
    voices = VOICE_POOL
    if filter_str:
        voices = [v for v in voices if filter_str in v.lower()]
    if not voices:
        print("No matching voices found.")
        return
    print("Available voices (or use MALE / FEMALE):")
    for v in voices:
        print(f"  {v}")


def main():
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="audify",
        description="Audify: turn photographed pages into synchronized audiobooks",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose logging")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # new
    new_parser = subparsers.add_parser("new", help="Create an audiobook from page images")
    new_parser.add_argument("images", nargs="+", help="Page image files, in reading order")
    new_parser.add_argument("--title", help="Document title (default: first image name)")
    new_parser.add_argument("--voice", default="FEMALE", help="MALE, FEMALE or a voice name")
    new_parser.add_argument("--workers", type=int, default=SYNTH_WORKERS, help="Concurrent synthesis calls")
    new_parser.set_defaults(func=cmd_new)

    # list
    list_parser = subparsers.add_parser("list", help="List stored documents")
    list_parser.set_defaults(func=cmd_list)

    # status
    status_parser = subparsers.add_parser("status", help="Show document status")
    status_parser.add_argument("document_id", help="Document id")
    status_parser.set_defaults(func=cmd_status)

    # locate
    locate_parser = subparsers.add_parser("locate", help="Find the paragraph playing at a time")
    locate_parser.add_argument("document_id", help="Document id")
    locate_parser.add_argument("seconds", type=float, help="Play-head position in seconds")
    locate_parser.add_argument("--save", action="store_true", help="Store the position as playback progress")
    locate_parser.set_defaults(func=cmd_locate)

    # voices
    voices_parser = subparsers.add_parser("voices", help="List available voices")
    voices_parser.add_argument("--filter", help="Filter voices by substring")
    voices_parser.set_defaults(func=cmd_voices)

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if not args.command:
        parser.print_help()
        return

    args.func(args)
