"""
Output timeline for model audio.

Chunks are scheduled back to back on a playback clock so that arbitrarily
sized inbound chunks play gaplessly without the sender pacing them.
This module is independent of any audio device.
"""

import itertools
import threading
from dataclasses import dataclass, field
from typing import Callable

import numpy as np

from .codec import duration_s

_chunk_ids = itertools.count(1)


@dataclass
class ScheduledChunk:
    """A decoded output chunk placed on the playback timeline."""

    samples: np.ndarray
    start_at: float
    duration: float
    id: int = field(default_factory=lambda: next(_chunk_ids))

    @property
    def end_at(self) -> float:
        return self.start_at + self.duration


class PlaybackScheduler:
    """
    Gapless, non-overlapping scheduler for output audio.

    The clock is the number of frames rendered so far divided by the sample
    rate, unless a clock callable is injected. render() is called from the
    audio thread; all other methods from the event loop.
    """

    def __init__(
        self,
        sample_rate: int,
        clock: Callable[[], float] | None = None,
    ):
        self.sample_rate = sample_rate
        self._clock = clock
        self._frames_rendered = 0
        self._next_start_time = 0.0
        self._pending: dict[int, ScheduledChunk] = {}
        self._lock = threading.Lock()

    @property
    def next_start_time(self) -> float:
        return self._next_start_time

    @property
    def pending(self) -> list[ScheduledChunk]:
        with self._lock:
            return list(self._pending.values())

    def current_time(self) -> float:
        """Current playback clock time in seconds."""
        if self._clock is not None:
            return self._clock()
        return self._frames_rendered / float(self.sample_rate)

    def schedule(self, samples: np.ndarray) -> ScheduledChunk:
        """Place a chunk right after the previous one, never in the past."""
        duration = duration_s(samples, self.sample_rate)
        with self._lock:
            start_at = max(self._next_start_time, self.current_time())
            chunk = ScheduledChunk(
                samples=np.asarray(samples, dtype=np.float32),
                start_at=start_at,
                duration=duration,
            )
            self._pending[chunk.id] = chunk
            self._next_start_time = start_at + duration
        return chunk

    def complete(self, chunk: ScheduledChunk) -> None:
        """Drop a chunk that finished playing naturally."""
        with self._lock:
            self._pending.pop(chunk.id, None)

    def interrupt(self) -> int:
        """Hard-stop every pending chunk and restart the cursor at zero."""
        with self._lock:
            dropped = self._stop_pending()
            self._next_start_time = 0.0
        return dropped

    def cancel_all(self) -> int:
        """Hard-stop every pending chunk, leaving the cursor alone."""
        with self._lock:
            return self._stop_pending()

    def render(self, frame_count: int) -> np.ndarray:
        """
        Mix pending chunks into the next frame_count frames of output.

        Chunks whose last sample falls inside the window are completed.
        """
        out = np.zeros(frame_count, dtype=np.float32)
        with self._lock:
            window_start = self._frames_rendered
            window_end = window_start + frame_count
            finished = []
            for chunk in self._pending.values():
                chunk_start = int(round(chunk.start_at * self.sample_rate))
                chunk_end = chunk_start + len(chunk.samples)
                lo = max(chunk_start, window_start)
                hi = min(chunk_end, window_end)
                if lo < hi:
                    out[lo - window_start : hi - window_start] += chunk.samples[
                        lo - chunk_start : hi - chunk_start
                    ]
                if chunk_end <= window_end:
                    finished.append(chunk.id)
            for chunk_id in finished:
                del self._pending[chunk_id]
            self._frames_rendered = window_end
        return np.clip(out, -1.0, 1.0)

    def _stop_pending(self) -> int:
        dropped = len(self._pending)
        self._pending.clear()
        return dropped
