"""Audio preprocessing: decode, downmix, resample, normalize and WAV-encode."""

import io
import math
import wave
import logging
from typing import Optional

import numpy as np
import soundfile as sf
from scipy.signal import resample_poly

from ..errors import CaptureError

logger = logging.getLogger(__name__)

TARGET_SAMPLE_RATE = 16000

# Peak normalization window: quieter than this is treated as silence, louder is left alone
NORMALIZE_MIN_PEAK = 0.001
NORMALIZE_MAX_PEAK = 0.5
NORMALIZE_TARGET = 0.95

_CONTAINER_MAGIC = (b'RIFF', b'fLaC', b'OggS', b'FORM')


def is_container(blob: bytes) -> bool:
    """True if the blob starts with a container signature soundfile can read."""
    return blob[:4] in _CONTAINER_MAGIC


def pcm16_to_float(samples: np.ndarray) -> np.ndarray:
    """Map int16 samples to floats in [-1, 1]; exact inverse of the WAV encoder mapping."""
    samples = np.asarray(samples, dtype=np.int16).astype(np.float64)
    return np.where(samples < 0, samples / 32768.0, samples / 32767.0).astype(np.float32)


def float_to_pcm16(pcm: np.ndarray) -> np.ndarray:
    """Clamp to [-1, 1] and scale asymmetrically to the full int16 range."""
    clipped = np.clip(np.asarray(pcm, dtype=np.float64), -1.0, 1.0)
    scaled = np.where(clipped < 0, clipped * 32768.0, clipped * 32767.0)
    return np.rint(scaled).astype('<i2')


def normalize_peak(pcm: np.ndarray) -> np.ndarray:
    """Scale audio so its peak reaches 0.95, but only for peaks in (0.001, 0.5)."""
    pcm = np.asarray(pcm, dtype=np.float32)
    if pcm.size == 0:
        return pcm

    peak = float(np.max(np.abs(pcm)))
    if NORMALIZE_MIN_PEAK < peak < NORMALIZE_MAX_PEAK:
        scale = NORMALIZE_TARGET / peak
        logger.debug(f"Normalizing peak {peak:.4f} by factor {scale:.2f}")
        return (pcm * scale).astype(np.float32)
    return pcm


def _decode(blob: bytes, sample_rate: Optional[int], channels: Optional[int]):
    """Decode a blob to a (frames, channels) float array and its sample rate."""
    if is_container(blob):
        try:
            data, rate = sf.read(io.BytesIO(blob), dtype='float32', always_2d=True)
        except RuntimeError as e:
            raise CaptureError(f"Could not decode captured audio: {e}") from e
        return data, rate

    if not sample_rate or not channels:
        raise ValueError("Raw PCM audio requires sample_rate and channels")

    usable = len(blob) - (len(blob) % (2 * channels))
    samples = np.frombuffer(blob[:usable], dtype='<i2')
    return pcm16_to_float(samples).reshape(-1, channels), sample_rate


def decode_and_resample(blob: bytes,
                        sample_rate: Optional[int] = None,
                        channels: Optional[int] = None,
                        target_rate: int = TARGET_SAMPLE_RATE) -> np.ndarray:
    """Turn captured audio into normalized mono float32 PCM at ``target_rate``.

    Args:
        blob: Container bytes (WAV/FLAC/OGG) or raw interleaved 16-bit PCM
        sample_rate: Sample rate of raw PCM input (ignored for containers)
        channels: Channel count of raw PCM input (ignored for containers)
        target_rate: Output sample rate

    Returns:
        1-D float32 array
    """
    if not blob:
        raise CaptureError("No audio was captured")

    data, rate = _decode(blob, sample_rate, channels)
    mono = data.mean(axis=1) if data.shape[1] > 1 else data[:, 0]

    if rate != target_rate and mono.size > 0:
        divisor = math.gcd(int(rate), int(target_rate))
        mono = resample_poly(mono, target_rate // divisor, int(rate) // divisor)

    if mono.size == 0:
        raise CaptureError("No audio was captured")

    logger.info(f"Decoded audio: {mono.size / target_rate:.1f}s at {target_rate}Hz "
                f"(source {rate}Hz, {data.shape[1]} channel(s))")
    return normalize_peak(mono.astype(np.float32))


def encode_wav(pcm: np.ndarray, sample_rate: int = TARGET_SAMPLE_RATE) -> bytes:
    """Encode mono float PCM as a canonical 44-byte-header 16-bit WAV file."""
    samples = float_to_pcm16(pcm)
    output = io.BytesIO()
    with wave.open(output, 'wb') as wf:
        wf.setnchannels(1)
        wf.setsampwidth(2)
        wf.setframerate(sample_rate)
        wf.writeframes(samples.tobytes())
    return output.getvalue()
