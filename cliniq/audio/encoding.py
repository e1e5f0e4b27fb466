"""
cliniq/audio/encoding.py
=========================
PCM Encoding & Speech Gate — ClinIQ

Responsibility:
    - Wrap raw PCM16 mono audio in a WAV container for batch backends
    - Decode WAV bytes back to float32 samples
    - Decide whether a buffered window contains enough energy to be speech,
      so silent windows are never sent to a paid backend

This module does NOT:
    - Resample or filter audio
    - Call any backend
"""

import io
import logging
import wave

import numpy as np

logger = logging.getLogger("cliniq.audio.encoding")

SAMPLE_WIDTH_BYTES: int = 2   # PCM16
CHANNELS: int = 1

# Fraction of 100 ms frames that must clear the RMS threshold
_MIN_VOICED_FRAME_RATIO: float = 0.1


def pcm16_to_wav(pcm: bytes, sample_rate: int = 16000) -> bytes:
    """Wrap little-endian PCM16 mono samples in a WAV container."""
    if len(pcm) % SAMPLE_WIDTH_BYTES:
        pcm = pcm[: len(pcm) - (len(pcm) % SAMPLE_WIDTH_BYTES)]

    buf = io.BytesIO()
    with wave.open(buf, "wb") as wf:
        wf.setnchannels(CHANNELS)
        wf.setsampwidth(SAMPLE_WIDTH_BYTES)
        wf.setframerate(sample_rate)
        wf.writeframes(pcm)
    return buf.getvalue()


def wav_to_float32(audio_bytes: bytes) -> np.ndarray:
    """Convert WAV bytes to a float32 numpy array normalized to [-1.0, 1.0]."""
    buf = io.BytesIO(audio_bytes)
    with wave.open(buf, "rb") as wf:
        n_frames = wf.getnframes()
        sampwidth = wf.getsampwidth()
        raw_pcm = wf.readframes(n_frames)

    dtype_map = {1: np.int8, 2: np.int16, 4: np.int32}
    np_dtype = dtype_map.get(sampwidth, np.int16)
    samples = np.frombuffer(raw_pcm, dtype=np_dtype).astype(np.float32)

    norm_map = {1: 128.0, 2: 32768.0, 4: 2147483648.0}
    return samples / norm_map.get(sampwidth, 32768.0)


def pcm16_to_float32(pcm: bytes) -> np.ndarray:
    """Raw PCM16 bytes → float32 samples in [-1.0, 1.0]."""
    usable = len(pcm) - (len(pcm) % SAMPLE_WIDTH_BYTES)
    samples = np.frombuffer(pcm[:usable], dtype=np.int16).astype(np.float32)
    return samples / 32768.0


def pcm_duration(pcm: bytes, sample_rate: int = 16000) -> float:
    """Duration in seconds of a PCM16 mono buffer."""
    return len(pcm) / float(SAMPLE_WIDTH_BYTES * sample_rate)


def rms(samples: np.ndarray) -> float:
    if samples.size == 0:
        return 0.0
    return float(np.sqrt(np.mean(samples ** 2)))


def has_speech(
    pcm: bytes,
    sample_rate: int = 16000,
    threshold: float = 0.01,
) -> bool:
    """
    Energy-based speech gate for one batch window.

    Splits the window into 100 ms frames and reports speech when at least
    10% of them have an RMS above ``threshold``.

    Args:
        pcm:         Raw PCM16 mono bytes.
        sample_rate: Sample rate of ``pcm``.
        threshold:   RMS level (0–1) separating speech from room noise.

    Returns:
        True if the window should be transcribed.
    """
    samples = pcm16_to_float32(pcm)
    if samples.size == 0:
        return False

    frame_size = max(1, sample_rate // 10)
    n_frames = samples.size // frame_size
    if n_frames == 0:
        return rms(samples) >= threshold

    frames = samples[: n_frames * frame_size].reshape(n_frames, frame_size)
    frame_rms = np.sqrt(np.mean(frames ** 2, axis=1))
    voiced = int(np.count_nonzero(frame_rms >= threshold))

    ratio = voiced / n_frames
    logger.debug(
        "Speech gate: %d/%d frames voiced (%.0f%%), threshold=%.3f",
        voiced, n_frames, ratio * 100, threshold,
    )
    return ratio >= _MIN_VOICED_FRAME_RATIO
