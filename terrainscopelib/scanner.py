"""Playback scanner: the cross-section wavefront that follows the audio clock."""

from __future__ import annotations

import math
from dataclasses import replace

import numpy as np

from .log import dbg
from .models import (
    HIDDEN_SCAN, PlaybackClock, ScanPhase, ScanState, SpectrogramMatrix,
)
from .terrain import HEADROOM, axis_position

def progress_to_row(progress: float, n_frames: int) -> int:
    """Matrix row sampled at *progress*: ``floor((1 - progress) * T)``, clamped.

    Matrix rows run end-first, so walking them against progress lands
    on the frame currently being heard.
    """
    row = math.floor((1.0 - progress) * n_frames)
    return max(0, min(row, n_frames - 1))


def sample_columns(n_points: int, n_bins: int) -> np.ndarray:
    """Nearest-neighbor bin index for each of *n_points* across the frequency axis."""
    p = np.arange(n_points, dtype=np.float64)
    idx = np.floor(p / (n_points - 1) * (n_bins - 1)).astype(np.intp)
    return np.clip(idx, 0, n_bins - 1)


def curtain_indices(n_points: int) -> np.ndarray:
    """Triangles joining the line (rows ``0..P-1``) to its base (``P..2P-1``)."""
    i = np.arange(n_points - 1)
    top_a, top_b = i, i + 1
    bot_a, bot_b = i + n_points, i + 1 + n_points
    tris = np.empty((2 * (n_points - 1), 3), dtype=np.uint32)
    tris[0::2] = np.stack([top_a, bot_a, top_b], axis=1)
    tris[1::2] = np.stack([top_b, bot_a, bot_b], axis=1)
    return tris


class PlaybackScanner:
    """Idle / Playing state machine producing one :class:`ScanState` per frame.

    ``update`` is called every rendered frame with the current clock
    time.  Once elapsed time passes the clip duration the scanner drops
    back to idle and reports ``finished`` on that single frame.
    """

    def __init__(self, n_points: int = 64):
        if n_points < 2:
            raise ValueError(f"n_points must be at least 2, got {n_points}")
        self._n_points = n_points
        self._clock: PlaybackClock | None = None
        self._curtain = curtain_indices(n_points)
        self._curtain.flags.writeable = False

    @property
    def phase(self) -> ScanPhase:
        if self._clock is not None and self._clock.is_playing:
            return ScanPhase.PLAYING
        return ScanPhase.IDLE

    @property
    def clock(self) -> PlaybackClock | None:
        return self._clock

    @property
    def n_points(self) -> int:
        return self._n_points

    def start(self, clock: PlaybackClock) -> None:
        """Arm the scanner.  Replaces any running timeline."""
        self._clock = clock

    def stop(self) -> bool:
        """Stop scanning.  Returns False if already idle."""
        if self._clock is None or not self._clock.is_playing:
            return False
        self._clock = replace(self._clock, is_playing=False)
        return True

    def update(self, now: float, matrix: SpectrogramMatrix | None,
               volume_size: float) -> ScanState:
        clock = self._clock
        if clock is None or not clock.is_playing or matrix is None:
            return HIDDEN_SCAN
        elapsed = clock.elapsed(now)
        if elapsed > clock.duration:
            self._clock = replace(clock, is_playing=False)
            dbg(f"scan finished after {elapsed:.3f} s")
            return ScanState(phase=ScanPhase.IDLE, progress=1.0, finished=True)

        progress = elapsed / clock.duration if clock.duration > 0 else 1.0
        progress = min(max(progress, 0.0), 1.0)
        row = progress_to_row(progress, matrix.n_frames)
        return ScanState(
            phase=ScanPhase.PLAYING,
            progress=progress,
            time_index=row,
            positions=self._profile(matrix, row, volume_size),
            curtain_indices=self._curtain,
        )

    def _profile(self, matrix: SpectrogramMatrix, row: int,
                 volume_size: float) -> np.ndarray:
        """Line points followed by the same points on the base plane."""
        n = self._n_points
        cols = sample_columns(n, matrix.n_bins)
        heights = matrix.values[row, cols] / matrix.norm_amplitude * (volume_size * HEADROOM)
        positions = np.empty((2 * n, 3), dtype=np.float32)
        positions[:, 0] = axis_position(row, matrix.n_frames, volume_size)
        positions[:n, 1] = heights
        positions[n:, 1] = 0.0
        z = axis_position(cols.astype(np.float64), matrix.n_bins, volume_size)
        positions[:n, 2] = z
        positions[n:, 2] = z
        positions.flags.writeable = False
        return positions
