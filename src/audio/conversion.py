"""
Audio format helpers: mu-law ↔ PCM, level metering, test frames.

Vobiz streams 8-bit mu-law at 8kHz (telephony standard). Incoming frames
are decoded only to meter them; the raw payload is what gets forwarded.

Uses pure numpy lookup tables for speed.
"""
import base64
import logging
from typing import Tuple

import numpy as np

logger = logging.getLogger(__name__)

SAMPLE_RATE = 8000
FRAME_MS = 20

# ITU-T G.711 mu-law constants
_MULAW_BIAS = 0x84  # 132
_MULAW_CLIP = 32635
MULAW_SILENCE = 0xFF

def _build_mulaw_decode_table() -> np.ndarray:
    """Build mu-law byte → int16 PCM lookup table."""
    table = np.zeros(256, dtype=np.int16)
    for i in range(256):
        # Complement the bits
        val = ~i & 0xFF
        sign = val & 0x80
        exponent = (val >> 4) & 0x07
        mantissa = val & 0x0F
        sample = ((mantissa << 3) + _MULAW_BIAS) << exponent
        sample -= _MULAW_BIAS
        table[i] = -sample if sign else sample
    return table

_MULAW_DECODE_TABLE = _build_mulaw_decode_table()

def _encode_mulaw_sample(sample: int) -> int:
    """Encode a single int16 PCM sample to mu-law byte."""
    sign = 0
    if sample < 0:
        sign = 0x80
        sample = -sample
    if sample > _MULAW_CLIP:
        sample = _MULAW_CLIP
    sample = sample + _MULAW_BIAS

    exponent = 7
    mask = 0x4000
    for _ in range(8):
        if sample & mask:
            break
        exponent -= 1
        mask >>= 1

    mantissa = (sample >> (exponent + 3)) & 0x0F
    return ~(sign | (exponent << 4) | mantissa) & 0xFF


def mulaw_to_pcm(mulaw_bytes: bytes) -> np.ndarray:
    """
    Convert mu-law encoded bytes to PCM numpy array using lookup table.

    Args:
        mulaw_bytes: Raw mu-law audio bytes

    Returns:
        numpy array of int16 PCM samples
    """
    indices = np.frombuffer(mulaw_bytes, dtype=np.uint8)
    return _MULAW_DECODE_TABLE[indices].copy()


def pcm_to_mulaw(pcm_samples: np.ndarray) -> bytes:
    """Convert int16 PCM samples to mu-law encoded bytes."""
    if pcm_samples.dtype != np.int16:
        pcm_samples = pcm_samples.astype(np.int16)

    result = bytearray(len(pcm_samples))
    for i, sample in enumerate(pcm_samples):
        result[i] = _encode_mulaw_sample(int(sample))
    return bytes(result)


def decode_payload(payload: str) -> bytes:
    """Decode a base64 media payload. Raises binascii.Error on bad input."""
    return base64.b64decode(payload, validate=True)


def encode_payload(mulaw_bytes: bytes) -> str:
    return base64.b64encode(mulaw_bytes).decode("ascii")


def payload_to_pcm(payload: str) -> np.ndarray:
    """
    Complete conversion from a media payload to PCM for analysis.

    Pipeline: base64 → mu-law bytes → PCM 8kHz
    """
    return mulaw_to_pcm(decode_payload(payload))


def measure_level(pcm: np.ndarray) -> Tuple[float, float]:
    """
    Peak and RMS level of a PCM chunk, normalised to [0, 1].

    Returns (0.0, 0.0) for an empty chunk.
    """
    if pcm.size == 0:
        return 0.0, 0.0
    samples = pcm.astype(np.float32) / 32768.0
    peak = float(np.max(np.abs(samples)))
    rms = float(np.sqrt(np.mean(samples ** 2)))
    return min(peak, 1.0), min(rms, 1.0)


def frame_size(duration_ms: int = FRAME_MS, sample_rate: int = SAMPLE_RATE) -> int:
    """Samples (= mu-law bytes) in a frame of the given duration."""
    return sample_rate * duration_ms // 1000


def silence_frame(duration_ms: int = FRAME_MS, sample_rate: int = SAMPLE_RATE) -> bytes:
    return bytes([MULAW_SILENCE]) * frame_size(duration_ms, sample_rate)


def generate_tone_frame(
    freq_hz: float,
    duration_ms: int = FRAME_MS,
    sample_rate: int = SAMPLE_RATE,
    amplitude: float = 0.3,
) -> bytes:
    """
    Generate one mu-law frame of a sine tone.

    Args:
        freq_hz: Tone frequency
        duration_ms: Frame length (20ms is the telephony default)
        sample_rate: Sample rate in Hz
        amplitude: Peak amplitude in [0, 1]
    """
    n = frame_size(duration_ms, sample_rate)
    t = np.arange(n) / sample_rate
    pcm = (np.sin(2 * np.pi * freq_hz * t) * amplitude * 32767).astype(np.int16)
    return pcm_to_mulaw(pcm)
