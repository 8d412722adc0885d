"""Audio capture and preprocessing module."""

from .capture import AudioCapture, CaptureSource
from .buffer import AudioBuffer
from .preprocessor import decode_and_resample, normalize_peak, encode_wav

__all__ = [
    'AudioCapture',
    'CaptureSource',
    'AudioBuffer',
    'decode_and_resample',
    'normalize_peak',
    'encode_wav',
]
