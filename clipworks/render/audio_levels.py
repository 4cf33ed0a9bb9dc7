"""Per-frame audio energy for the waveform."""

import math
import wave

import numpy as np


def load_wav_samples(path: str) -> tuple[np.ndarray, int]:
    """Read 16-bit PCM WAV as mono float32 in [-1, 1].

    Returns:
        (samples, sample_rate)
    """
    with wave.open(path, "rb") as wav:
        if wav.getsampwidth() != 2:
            raise ValueError(f"Expected 16-bit PCM, got {wav.getsampwidth() * 8}-bit")
        channels = wav.getnchannels()
        rate = wav.getframerate()
        raw = wav.readframes(wav.getnframes())

    samples = np.frombuffer(raw, dtype="<i2").astype(np.float32) / 32768.0
    if channels > 1:
        samples = samples[: len(samples) - len(samples) % channels].reshape(-1, channels).mean(axis=1)
    return samples, rate


def band_rms(block: np.ndarray, bands: int) -> np.ndarray:
    """RMS of ``bands`` equal consecutive slices of ``block``."""
    block_size = len(block) // bands
    if block_size == 0:
        return np.zeros(bands, dtype=np.float32)
    trimmed = block[: block_size * bands].reshape(bands, block_size)
    return np.sqrt(np.mean(trimmed * trimmed, axis=1)).astype(np.float32)


def frame_count(duration_s: float, fps: int) -> int:
    return max(1, math.floor(duration_s * fps))


def frame_levels(samples: np.ndarray, total_frames: int, bands: int) -> list[np.ndarray]:
    """One band-RMS vector per output frame.

    Each frame reads ``ceil(len(samples) / total_frames)`` samples starting at
    ``frame * samples_per_frame``; trailing frames past the end are silent.
    """
    samples_per_frame = math.ceil(len(samples) / total_frames) if total_frames else 0
    levels = []
    for frame in range(total_frames):
        start = frame * samples_per_frame
        levels.append(band_rms(samples[start : start + samples_per_frame], bands))
    return levels
