from __future__ import annotations

import io
import os

import numpy as np
import requests
import soundfile as sf

from .models import PCMBuffer


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class AudioLoadError(Exception):
    """Base class for everything that can go wrong turning a locator into PCM."""

    def __init__(self, source: str, message: str):
        super().__init__(f"{source}: {message}")
        self.source = source


class FetchFailure(AudioLoadError):
    """The encoded bytes could not be retrieved (network or file I/O)."""


class DecodeFailure(AudioLoadError):
    """The bytes are not a readable audio container."""


class EmptyInput(AudioLoadError):
    """The clip decoded to zero samples."""


# ---------------------------------------------------------------------------
# Fetch
# ---------------------------------------------------------------------------

def is_url(source: str) -> bool:
    return source.lower().startswith(("http://", "https://"))


def fetch_bytes(source: str, *, timeout: float = 10.0) -> bytes:
    """Return the encoded bytes behind *source* (local path or http(s) URL)."""
    if is_url(source):
        try:
            r = requests.get(source, timeout=timeout)
        except requests.RequestException as e:
            raise FetchFailure(source, str(e)) from e
        if r.status_code >= 300:
            raise FetchFailure(source, f"HTTP {r.status_code}")
        return r.content

    path = os.path.expanduser(source)
    if not os.path.isfile(path):
        raise FetchFailure(source, "file not found")
    try:
        with open(path, "rb") as f:
            return f.read()
    except OSError as e:
        raise FetchFailure(source, str(e)) from e


# ---------------------------------------------------------------------------
# Decode
# ---------------------------------------------------------------------------

def to_mono(data: np.ndarray) -> np.ndarray:
    """Mix ``(samples, channels)`` down to one channel by averaging."""
    if data.ndim == 1:
        return data.astype(np.float64)
    if data.shape[1] == 1:
        return data[:, 0].astype(np.float64)
    return np.mean(data.astype(np.float64), axis=1)


def decode_audio(payload: bytes, source: str = "") -> PCMBuffer:
    """Decode an encoded audio payload into a mono :class:`PCMBuffer`.

    Raises :class:`DecodeFailure` for unreadable containers and
    :class:`EmptyInput` for clips without samples.
    """
    try:
        data, samplerate = sf.read(io.BytesIO(payload), dtype="float64",
                                   always_2d=True)
    except (sf.LibsndfileError, RuntimeError, TypeError, ValueError) as e:
        raise DecodeFailure(source, str(e)) from e
    mono = to_mono(data)
    if mono.size == 0:
        raise EmptyInput(source, "no samples")
    if not np.all(np.isfinite(mono)):
        raise DecodeFailure(source, "non-finite samples")
    return PCMBuffer(mono, int(samplerate), source=source)


def load_audio(source: str, *, timeout: float = 10.0) -> PCMBuffer:
    """Fetch and decode *source*.  Raises an :class:`AudioLoadError` subclass."""
    return decode_audio(fetch_bytes(source, timeout=timeout), source)


def format_duration(samples: int, samplerate: int) -> str:
    if samplerate <= 0:
        return "00:00.000"
    seconds = samples / samplerate
    m = int(seconds // 60)
    s = int(seconds % 60)
    ms = int((seconds % 1) * 1000)
    return f"{m:02d}:{s:02d}.{ms:03d}"
