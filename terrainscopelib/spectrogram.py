"""Spectrogram engine: PCM samples to the fixed 128x128 terrain energy grid."""

from __future__ import annotations

from typing import Callable

import numpy as np
from scipy import fft as scipy_fft
from scipy.signal import windows as scipy_windows

from .log import timed
from .models import PCMBuffer, SpectrogramMatrix


# ---------------------------------------------------------------------------
# Fixed analysis configuration
# ---------------------------------------------------------------------------

N_FRAMES = 128
N_BINS = 128
WINDOW_SIZE = 2048
TIME_SMOOTH_RADIUS = 6
FREQ_SMOOTH_RADIUS = 5
LOG_SCALE = 40.0
MAGNITUDE_CEIL = 255.0

TransformFn = Callable[[np.ndarray], np.ndarray]


# ---------------------------------------------------------------------------
# Framing
# ---------------------------------------------------------------------------

def hann_window(size: int) -> np.ndarray:
    """Symmetric Hann taper ``0.5 * (1 - cos(2*pi*n / (size - 1)))``."""
    if size < 2:
        return np.ones(size, dtype=np.float64)
    return scipy_windows.hann(size, sym=True)


def frame_offsets(n_samples: int, n_frames: int = N_FRAMES) -> np.ndarray:
    """Start sample of each analysis frame (``floor(t * n_samples / n_frames)``)."""
    hop = n_samples / n_frames
    return np.floor(np.arange(n_frames) * hop).astype(np.intp)


def extract_frames(samples: np.ndarray, n_frames: int = N_FRAMES,
                   window_size: int = WINDOW_SIZE) -> np.ndarray:
    """Slice *samples* into ``(n_frames, window_size)`` frames.

    Frames that run past the end of the buffer are zero-padded, so the
    output shape never depends on the input length.
    """
    samples = np.asarray(samples, dtype=np.float64).reshape(-1)
    padded = np.concatenate([samples, np.zeros(window_size, dtype=np.float64)])
    starts = frame_offsets(len(samples), n_frames)
    idx = starts[:, None] + np.arange(window_size)[None, :]
    return padded[idx]


# ---------------------------------------------------------------------------
# Transforms  (frames -> raw magnitudes over window_size // 2 bins)
# ---------------------------------------------------------------------------

def fft_magnitudes(frames: np.ndarray) -> np.ndarray:
    """Magnitude spectrum via real FFT, first ``window_size // 2`` bins."""
    n_raw = frames.shape[1] // 2
    spectrum = scipy_fft.rfft(frames, axis=1)
    return np.abs(spectrum[:, :n_raw])


def dft_magnitudes(frames: np.ndarray) -> np.ndarray:
    """Magnitude spectrum via a direct DFT matrix product.

    Reference implementation, ``O(frames * window_size * bins)``.
    Matches :func:`fft_magnitudes` to floating-point rounding.
    """
    window_size = frames.shape[1]
    n_raw = window_size // 2
    phase = 2.0 * np.pi * np.outer(np.arange(n_raw), np.arange(window_size)) / window_size
    re = frames @ np.cos(phase).T
    im = frames @ np.sin(phase).T
    return np.hypot(re, im)


# ---------------------------------------------------------------------------
# Post-processing
# ---------------------------------------------------------------------------

def compress_magnitudes(magnitudes: np.ndarray) -> np.ndarray:
    """``min(255, log10(mag + 1) * 40)``."""
    return np.minimum(MAGNITUDE_CEIL, np.log10(magnitudes + 1.0) * LOG_SCALE)


def downsample_bins(raw: np.ndarray, n_bins: int = N_BINS) -> np.ndarray:
    """Average contiguous, non-overlapping groups of raw bins into *n_bins*."""
    group = raw.shape[1] // n_bins
    if group < 1:
        raise ValueError(
            f"cannot group {raw.shape[1]} raw bins into {n_bins} output bins")
    usable = group * n_bins
    return raw[:, :usable].reshape(raw.shape[0], n_bins, group).mean(axis=2)


def moving_average(values: np.ndarray, radius: int, axis: int) -> np.ndarray:
    """Centered moving average of ``+/- radius`` along *axis*.

    Only in-range neighbors are averaged: the first row of a radius-6
    pass is the mean of rows 0..6, not a zero-padded mean over 13.
    """
    data = np.moveaxis(np.asarray(values, dtype=np.float64), axis, 0)
    n = data.shape[0]
    if n == 0 or radius <= 0:
        return np.array(values, dtype=np.float64, copy=True)
    cs = np.concatenate(
        [np.zeros((1,) + data.shape[1:]), np.cumsum(data, axis=0)], axis=0)
    idx = np.arange(n)
    lo = np.maximum(idx - radius, 0)
    hi = np.minimum(idx + radius + 1, n)
    counts = (hi - lo).astype(np.float64).reshape((-1,) + (1,) * (data.ndim - 1))
    smoothed = (cs[hi] - cs[lo]) / counts
    return np.moveaxis(smoothed, 0, axis)


def row_to_frame(row, n_frames: int = N_FRAMES):
    """Chronological frame index stored in matrix *row*."""
    return n_frames - 1 - row


def compute_spectrogram(samples: np.ndarray, *,
                        transform: TransformFn = fft_magnitudes,
                        ) -> np.ndarray:
    """Run the full pipeline and return a float64 ``(N_FRAMES, N_BINS)`` array.

    Rows run end-first: row 0 holds the last frame of the clip and row
    ``N_FRAMES - 1`` the first, so a sweep reading ``floor((1 - progress) * T)``
    lands on the frame being heard.
    """
    frames = extract_frames(samples, N_FRAMES, WINDOW_SIZE)[::-1]
    frames *= hann_window(WINDOW_SIZE)[None, :]
    raw = compress_magnitudes(transform(frames))
    grid = downsample_bins(raw, N_BINS)
    grid = moving_average(grid, TIME_SMOOTH_RADIUS, axis=0)
    grid = moving_average(grid, FREQ_SMOOTH_RADIUS, axis=1)
    # rounding in the cumulative sums can dip a hair below zero
    return np.maximum(grid, 0.0)


class SpectrogramEngine:
    """Turns a :class:`PCMBuffer` into a :class:`SpectrogramMatrix`.

    Stateless apart from the chosen transform; the same input always
    yields the same matrix.
    """

    def __init__(self, transform: TransformFn | None = None):
        self._transform: TransformFn = transform or fft_magnitudes

    @property
    def transform(self) -> TransformFn:
        return self._transform

    def analyze(self, pcm: PCMBuffer) -> SpectrogramMatrix:
        with timed(f"analyze {pcm.source or '<buffer>'} ({len(pcm)} samples)"):
            values = compute_spectrogram(pcm.samples, transform=self._transform)
        return SpectrogramMatrix(values, source=pcm.source)


def analyze(pcm: PCMBuffer) -> SpectrogramMatrix:
    """Analyze *pcm* with the default FFT transform."""
    return SpectrogramEngine().analyze(pcm)
