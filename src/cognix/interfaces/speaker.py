"""
Speaker output interface using PyAudio.

The output stream pulls mixed samples from a PlaybackScheduler, so the
scheduler's clock advances with the hardware.
"""

import logging

import numpy as np
import pyaudio

from ..core import config
from ..core.playback import PlaybackScheduler, ScheduledChunk

logger = logging.getLogger(__name__)


class SpeakerOutput:
    """Gapless speaker playback for decoded model audio."""

    def __init__(
        self,
        sample_rate: int = config.OUTPUT_SAMPLE_RATE,
        frames_per_buffer: int = config.OUTPUT_FRAMES_PER_BUFFER,
    ):
        self.sample_rate = sample_rate
        self.frames_per_buffer = frames_per_buffer
        self.scheduler = PlaybackScheduler(sample_rate)

        self._pa: pyaudio.PyAudio | None = None
        self._stream: pyaudio.Stream | None = None

    def _callback(
        self,
        in_data: bytes | None,
        frame_count: int,
        time_info: dict[str, float],
        status_flags: int,
    ) -> tuple[bytes, int]:
        """PyAudio callback."""
        return (self.scheduler.render(frame_count).tobytes(), pyaudio.paContinue)

    def start(self) -> None:
        """Open the output device."""
        if self._stream is not None:
            return

        self._pa = pyaudio.PyAudio()
        self._stream = self._pa.open(
            format=pyaudio.paFloat32,
            channels=config.CHANNELS,
            rate=self.sample_rate,
            output=True,
            frames_per_buffer=self.frames_per_buffer,
            stream_callback=self._callback,
        )
        self._stream.start_stream()

    def play(self, samples: np.ndarray) -> ScheduledChunk:
        """Schedule a decoded chunk right after the previous one."""
        return self.scheduler.schedule(samples)

    def interrupt(self) -> int:
        """Drop queued audio immediately."""
        return self.scheduler.interrupt()

    def stop(self) -> None:
        """Silence output and release the device."""
        self.scheduler.cancel_all()
        if self._stream is not None:
            self._stream.stop_stream()
            self._stream.close()
            self._stream = None

        if self._pa is not None:
            self._pa.terminate()
            self._pa = None
