"""Playback position resolution, playback sessions and debounced progress saving."""

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Sequence

from audify.constants import (
    PLAYBACK_SPEED_MAX,
    PLAYBACK_SPEED_MIN,
    PROGRESS_SAVE_INTERVAL,
)
from audify.models import Document, Paragraph, PlaybackState

logger = logging.getLogger(__name__)


def is_contiguous(paragraphs: Sequence[Paragraph]) -> bool:
    """True when every paragraph is non-empty and ends where the next one starts."""
    for i, p in enumerate(paragraphs):
        if p.end_time <= p.start_time:
            return False
        if i + 1 < len(paragraphs) and paragraphs[i + 1].start_time != p.end_time:
            return False
    return True


def resolve_paragraph(
    current_time: float,
    paragraphs: Sequence[Paragraph],
    hint: int | None = None,
    contiguous: bool | None = None,
) -> int:
    """Return the index of the paragraph playing at current_time.

    The paragraph p with p.start_time <= current_time < p.end_time wins;
    if several match (only possible in a malformed table) the first in
    index order wins. At or past the end of the last paragraph the last
    index is returned. Time that falls in no paragraph resolves to the last
    paragraph starting before it, or 0.

    ``hint`` is the previously resolved index. On a contiguous table the
    search starts there and walks forward or backward, so sequential
    playback costs O(1) per call. Any other table is scanned from the
    start. ``contiguous`` lets callers pass a precomputed is_contiguous().
    """
    if not paragraphs:
        raise ValueError("Cannot resolve a position without paragraphs")

    last = len(paragraphs) - 1
    if current_time >= paragraphs[last].end_time:
        return last

    if hint is not None and contiguous is None:
        contiguous = is_contiguous(paragraphs)

    if hint is None or not contiguous:
        for i, p in enumerate(paragraphs):
            if p.contains(current_time):
                return i
        return _fallback(current_time, paragraphs)

    i = min(max(hint, 0), last)
    if current_time < paragraphs[i].start_time:
        while i > 0 and current_time < paragraphs[i].start_time:
            i -= 1
    else:
        while i < last and current_time >= paragraphs[i].end_time:
            i += 1

    if not paragraphs[i].contains(current_time):
        return _fallback(current_time, paragraphs)
    return i


def _fallback(current_time: float, paragraphs: Sequence[Paragraph]) -> int:
    index = 0
    for i, p in enumerate(paragraphs):
        if p.start_time <= current_time:
            index = i
    return index


class ProgressSaver:
    """Coalesces playback progress writes and runs them off the caller's thread.

    At most one write per ``interval`` seconds; the newest state submitted
    inside the window is written on the next submit after the window or on
    flush(). Writes go to a single background worker in submission order.
    submit() never waits for them; flush(), wait() and close() do. A failing
    write is logged and never reaches the caller.
    """

    def __init__(
        self,
        save: Callable[[PlaybackState], None],
        interval: float = PROGRESS_SAVE_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._save = save
        self._interval = interval
        self._clock = clock
        self._lock = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="progress-saver")
        self._pending: PlaybackState | None = None
        self._last_write: float | None = None
        self._last_future: Future | None = None
        self.writes = 0

    @property
    def has_pending(self) -> bool:
        return self._pending is not None

    def submit(self, state: PlaybackState) -> None:
        with self._lock:
            self._pending = state
            now = self._clock()
            if self._last_write is not None and now - self._last_write < self._interval:
                return
            self._last_write = now
            self._schedule()

    def flush(self, wait: bool = True) -> None:
        """Write the pending state now; with ``wait`` also block until written."""
        with self._lock:
            if self._pending is not None:
                self._last_write = self._clock()
                self._schedule()
        if wait:
            self.wait()

    def wait(self) -> None:
        """Block until every scheduled write has finished."""
        with self._lock:
            future = self._last_future
        if future is not None:
            future.result()

    def close(self) -> None:
        self.flush()
        self._executor.shutdown(wait=True)

    def _schedule(self) -> None:
        state, self._pending = self._pending, None
        self.writes += 1
        self._last_future = self._executor.submit(self._write, state)

    def _write(self, state: PlaybackState) -> None:
        try:
            self._save(state)
        except Exception:
            logger.warning("Failed to save playback progress", exc_info=True)


@dataclass(frozen=True)
class PlaybackSnapshot:
    current_time: float
    paragraph_index: int
    is_playing: bool
    duration: float


class PlaybackSession:
    """Owns the play-head of one loaded document.

    The play-head moves only through this object: clock ticks (tick or
    advance) and explicit seeks. Every move resolves the active paragraph
    and captures the resulting snapshot under one lock, then notifies
    subscribers and hands the position to the progress saver.
    """

    def __init__(
        self,
        document: Document,
        save: Callable[[PlaybackState], None] | None = None,
        save_interval: float = PROGRESS_SAVE_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
        speed: float = 1.0,
    ) -> None:
        if not document.paragraphs:
            raise ValueError(f"Document '{document.id}' has no paragraphs")
        self.document = document
        self.paragraphs = document.paragraphs
        self.duration = document.audio.duration
        self._contiguous = is_contiguous(self.paragraphs)
        if not self._contiguous:
            logger.warning("Document %s has a non-contiguous paragraph table", document.id)
        self._lock = threading.Lock()
        self._subscribers: list[Callable[[PlaybackSnapshot], None]] = []
        self.saver = ProgressSaver(save, save_interval, clock) if save is not None else None
        self.is_playing = False
        self.speed = 1.0
        self.set_speed(speed)

        start = min(max(document.playback.current_time, 0.0), self.duration)
        self.current_time = start
        self.paragraph_index = resolve_paragraph(start, self.paragraphs)

    # --- subscription ---

    def subscribe(self, callback: Callable[[PlaybackSnapshot], None]) -> Callable[[], None]:
        """Register a snapshot listener. Returns an unsubscribe function."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def snapshot(self) -> PlaybackSnapshot:
        with self._lock:
            return self._snapshot()

    def _snapshot(self) -> PlaybackSnapshot:
        return PlaybackSnapshot(
            current_time=self.current_time,
            paragraph_index=self.paragraph_index,
            is_playing=self.is_playing,
            duration=self.duration,
        )

    # --- transport ---

    def play(self) -> PlaybackSnapshot:
        with self._lock:
            if self.current_time >= self.duration:
                self._set_time(0.0)
            self.is_playing = True
            snapshot = self._commit()
        return self._notify(snapshot)

    def pause(self) -> PlaybackSnapshot:
        with self._lock:
            self.is_playing = False
            snapshot = self._commit()
        self._notify(snapshot)
        if self.saver is not None:
            self.saver.flush(wait=False)
        return snapshot

    def set_speed(self, speed: float) -> None:
        if not PLAYBACK_SPEED_MIN <= speed <= PLAYBACK_SPEED_MAX:
            raise ValueError(
                f"Playback speed must be between {PLAYBACK_SPEED_MIN} and {PLAYBACK_SPEED_MAX}, got {speed}"
            )
        self.speed = speed

    def tick(self, current_time: float) -> PlaybackSnapshot:
        """Report the media clock's position (pull from a player's time-update)."""
        with self._lock:
            self._set_time(current_time)
            snapshot = self._commit()
        return self._notify(snapshot)

    def advance(self, elapsed: float) -> PlaybackSnapshot:
        """Move the play-head by elapsed wall-clock seconds scaled by speed.

        Reaching the end of the track stops playback.
        """
        with self._lock:
            if self.is_playing:
                self._set_time(self.current_time + elapsed * self.speed)
                if self.current_time >= self.duration:
                    self.is_playing = False
            snapshot = self._commit()
        return self._notify(snapshot)

    def seek(self, seconds: float) -> PlaybackSnapshot:
        with self._lock:
            self._set_time(seconds)
            snapshot = self._commit()
        return self._notify(snapshot)

    def skip(self, delta: float) -> PlaybackSnapshot:
        with self._lock:
            self._set_time(self.current_time + delta)
            snapshot = self._commit()
        return self._notify(snapshot)

    def jump_to_paragraph(self, index: int) -> PlaybackSnapshot:
        """Click-to-seek: move to the start of paragraph index."""
        if not 0 <= index < len(self.paragraphs):
            raise IndexError(f"Paragraph {index} out of range (0-{len(self.paragraphs) - 1})")
        with self._lock:
            self._set_time(self.paragraphs[index].start_time)
            self.paragraph_index = index
            snapshot = self._commit()
        return self._notify(snapshot)

    def next_paragraph(self) -> PlaybackSnapshot:
        return self.jump_to_paragraph(min(self.paragraph_index + 1, len(self.paragraphs) - 1))

    def previous_paragraph(self) -> PlaybackSnapshot:
        return self.jump_to_paragraph(max(self.paragraph_index - 1, 0))

    def flush(self) -> None:
        """Write the latest position and wait for it to be saved."""
        if self.saver is not None:
            self.saver.flush()

    def close(self) -> None:
        with self._lock:
            self.is_playing = False
        if self.saver is not None:
            self.saver.close()

    # --- internals ---

    def _set_time(self, seconds: float) -> None:
        self.current_time = min(max(seconds, 0.0), self.duration)
        self.paragraph_index = resolve_paragraph(
            self.current_time, self.paragraphs, self.paragraph_index, self._contiguous,
        )

    def playback_state(self) -> PlaybackState:
        completion = self.current_time / self.duration * 100 if self.duration > 0 else 0.0
        return PlaybackState(
            current_time=self.current_time,
            current_paragraph_index=self.paragraph_index,
            last_played_at=datetime.now(timezone.utc).isoformat(),
            is_completed=self.current_time >= self.duration,
            completion_percentage=round(completion, 1),
        )

    def _commit(self) -> PlaybackSnapshot:
        # Caller holds self._lock
        state = self.playback_state()
        self.document.playback = state
        if self.saver is not None:
            self.saver.submit(state)
        return self._snapshot()

    def _notify(self, snapshot: PlaybackSnapshot) -> PlaybackSnapshot:
        for callback in list(self._subscribers):
            callback(snapshot)
        return snapshot
