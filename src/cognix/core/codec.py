"""
PCM codec helpers shared by capture and playback.
This module is independent of any transport or device.
"""

import numpy as np

from . import config
from .errors import DecodeError


def encode_pcm(samples: np.ndarray) -> bytes:
    """
    Quantize float samples in [-1, 1] to little-endian int16 PCM.

    Args:
        samples: Audio as a float array (mono)

    Returns:
        Raw PCM bytes (int16, mono)
    """
    scaled = np.asarray(samples, dtype=np.float32) * 32768.0
    return np.clip(scaled, -32768, 32767).astype("<i2").tobytes()


def decode_pcm(data: bytes, channels: int = config.CHANNELS) -> np.ndarray:
    """
    Decode int16 PCM bytes to float32 samples normalized to [-1, 1].

    Multi-channel input is interleaved; only the first channel is kept.
    """
    frame_bytes = config.SAMPLE_WIDTH * channels
    if len(data) % frame_bytes:
        raise DecodeError(
            f"PCM payload of {len(data)} bytes is not a whole number of frames"
        )
    audio_np = np.frombuffer(data, dtype="<i2").astype(np.float32)
    audio_np /= 32768.0
    if channels > 1:
        audio_np = audio_np.reshape(-1, channels)[:, 0].copy()
    return audio_np


def duration_s(samples: np.ndarray, sample_rate: int) -> float:
    """Duration of a mono sample buffer in seconds."""
    return len(samples) / float(sample_rate)
