"""
Microphone input interface using PyAudio.
"""

import logging
import time
from typing import Protocol

import numpy as np
import pyaudio

from ..core import config
from ..core.errors import MicrophoneUnavailableError

logger = logging.getLogger(__name__)


class AudioCallback(Protocol):
    """Protocol for audio frame callbacks."""

    def __call__(self, samples: np.ndarray, timestamp: float) -> None: ...


class ErrorCallback(Protocol):
    """Protocol for capture failure callbacks."""

    def __call__(self, error: Exception) -> None: ...


class MicrophoneInput:
    """
    Microphone input using PyAudio.

    Captures float32 audio from the default microphone in fixed-size frames
    and sends each frame to a callback function. A stream that stops delivering
    audio is reported through on_error. Both callbacks run on the PyAudio
    thread and must not block.
    """

    def __init__(
        self,
        on_audio: AudioCallback | None = None,
        on_error: ErrorCallback | None = None,
        sample_rate: int = config.INPUT_SAMPLE_RATE,
        channels: int = config.CHANNELS,
        frames_per_buffer: int = config.CAPTURE_FRAME_SAMPLES,
    ):
        self.on_audio = on_audio
        self.on_error = on_error
        self.sample_rate = sample_rate
        self.channels = channels
        self.frames_per_buffer = frames_per_buffer

        self._pa: pyaudio.PyAudio | None = None
        self._stream: pyaudio.Stream | None = None

    def _callback(
        self,
        in_data: bytes | None,
        frame_count: int,
        time_info: dict[str, float],
        status_flags: int,
    ) -> tuple[None, int]:
        """PyAudio callback."""
        if status_flags & pyaudio.paInputOverflow:
            logger.debug("Microphone input overflow")
        if in_data is None:
            # Input stream with no input buffer: the device is gone
            if self.on_error:
                self.on_error(MicrophoneUnavailableError("Microphone stopped delivering audio"))
            return (None, pyaudio.paAbort)
        if self.on_audio:
            samples = np.frombuffer(in_data, dtype=np.float32)
            try:
                self.on_audio(samples, time.time())
            except Exception:
                # Don't crash the audio thread
                logger.exception("Microphone callback failed")
        return (None, pyaudio.paContinue)

    def start(self) -> None:
        """
        Start capturing audio from microphone.

        Raises:
            MicrophoneUnavailableError: If the device cannot be opened
        """
        if self._stream is not None:
            return  # Already running

        self._pa = pyaudio.PyAudio()
        try:
            self._stream = self._pa.open(
                format=pyaudio.paFloat32,
                channels=self.channels,
                rate=self.sample_rate,
                input=True,
                frames_per_buffer=self.frames_per_buffer,
                stream_callback=self._callback,
            )
            self._stream.start_stream()
        except (OSError, ValueError) as exc:
            self.stop()
            raise MicrophoneUnavailableError(f"Microphone unavailable: {exc}") from exc
        logger.info("Microphone capture started (%d Hz)", self.sample_rate)

    def stop(self) -> None:
        """Stop capturing audio and release the device."""
        if self._stream is not None:
            self._stream.stop_stream()
            self._stream.close()
            self._stream = None

        if self._pa is not None:
            self._pa.terminate()
            self._pa = None

    def is_active(self) -> bool:
        """Check if the stream is active."""
        return self._stream is not None and self._stream.is_active()

