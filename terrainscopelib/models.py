from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

import numpy as np


def readonly(arr: np.ndarray) -> np.ndarray:
    """Return a non-writeable view of *arr* (the base stays writeable)."""
    view = arr.view()
    view.flags.writeable = False
    return view


class ScanPhase(Enum):
    IDLE = "idle"
    PLAYING = "playing"
    FINISHED = "finished"


@dataclass(frozen=True)
class PCMBuffer:
    """Decoded mono samples of one clip.

    Attributes:
        samples:    float64 samples, read-only.
        samplerate: Sample rate in Hz.
        source:     Locator the clip was loaded from (path or URL).
    """
    samples: np.ndarray
    samplerate: int
    source: str = ""

    def __post_init__(self):
        arr = np.ascontiguousarray(self.samples, dtype=np.float64).reshape(-1)
        object.__setattr__(self, "samples", readonly(arr))

    def __len__(self) -> int:
        return int(self.samples.shape[0])

    @property
    def duration(self) -> float:
        if self.samplerate <= 0:
            return 0.0
        return len(self) / float(self.samplerate)


@dataclass(frozen=True)
class SpectrogramMatrix:
    """Time-by-frequency energy grid, shape ``(n_frames, n_bins)``.

    Rows run end-first: row 0 is the last frame of the clip and row
    ``n_frames - 1`` its first.  Column 0 is the lowest frequency band.
    """
    values: np.ndarray
    source: str = ""

    def __post_init__(self):
        arr = np.array(self.values, dtype=np.float64, copy=True)
        if arr.ndim != 2:
            raise ValueError(f"matrix must be 2-D, got shape {arr.shape}")
        object.__setattr__(self, "values", readonly(arr))

    @property
    def shape(self) -> tuple[int, int]:
        return self.values.shape

    @property
    def n_frames(self) -> int:
        return int(self.values.shape[0])

    @property
    def n_bins(self) -> int:
        return int(self.values.shape[1])

    @property
    def max_amplitude(self) -> float:
        """Raw maximum over all cells; 0.0 for silence."""
        if self.values.size == 0:
            return 0.0
        return float(np.max(self.values))

    @property
    def norm_amplitude(self) -> float:
        """Maximum used for normalization; silence maps to 1.0."""
        peak = self.max_amplitude
        return peak if peak > 0 else 1.0


@dataclass(frozen=True)
class TerrainMesh:
    """Renderable height-mapped grid.  All arrays are read-only and never rewritten."""
    positions: np.ndarray        # (T*F, 3) float32, x=time y=height z=freq
    colors: np.ndarray           # (T*F, 3) float32 RGB in [0, 1]
    indices: np.ndarray          # ((T-1)*(F-1)*2, 3) uint32 triangles
    normals: np.ndarray          # (T*F, 3) float32 unit vectors
    bounds_min: np.ndarray       # (3,)
    bounds_max: np.ndarray       # (3,)
    bounding_center: np.ndarray  # (3,)
    bounding_radius: float
    max_amplitude: float
    n_frames: int
    n_bins: int
    volume_size: float

    @property
    def heights(self) -> np.ndarray:
        """Heights reshaped to the ``(n_frames, n_bins)`` grid."""
        return self.positions[:, 1].reshape(self.n_frames, self.n_bins)

    @property
    def vertex_count(self) -> int:
        return int(self.positions.shape[0])

    @property
    def triangle_count(self) -> int:
        return int(self.indices.shape[0])


@dataclass(frozen=True)
class PlaybackClock:
    start_time: float
    duration: float
    is_playing: bool = True

    def elapsed(self, now: float) -> float:
        return now - self.start_time


@dataclass(frozen=True)
class ScanState:
    """Per-frame scanner overlay.

    ``positions`` holds ``2 * P`` points: the first ``P`` are the
    cross-section line, the last ``P`` the same points dropped to the
    base plane.  ``line`` and ``base`` are views into it.
    """
    phase: ScanPhase
    progress: float = 0.0
    time_index: int = -1
    positions: np.ndarray | None = None
    curtain_indices: np.ndarray | None = None
    finished: bool = False

    @property
    def visible(self) -> bool:
        return self.phase == ScanPhase.PLAYING and self.positions is not None

    @property
    def point_count(self) -> int:
        if self.positions is None:
            return 0
        return int(self.positions.shape[0] // 2)

    @property
    def line(self) -> np.ndarray | None:
        if self.positions is None:
            return None
        return self.positions[:self.point_count]

    @property
    def base(self) -> np.ndarray | None:
        if self.positions is None:
            return None
        return self.positions[self.point_count:]


HIDDEN_SCAN = ScanState(phase=ScanPhase.IDLE)


@dataclass(frozen=True)
class CageLabel:
    axis: str
    position: tuple[float, float, float]
    text: str


@dataclass(frozen=True)
class CageGeometry:
    """Static axis/grid decoration.  Segments are ``(N, 2, 3)`` arrays."""
    axes: dict[str, np.ndarray]
    ticks: dict[str, np.ndarray]
    labels: list[CageLabel]
    edges: np.ndarray
    edge_opacity: float
    volume_size: float
    tick_count: int


@dataclass(frozen=True)
class RenderState:
    """Immutable snapshot handed to the presentation layer each frame."""
    generation: int
    pcm: PCMBuffer | None
    matrix: SpectrogramMatrix | None
    terrain: TerrainMesh | None
    cage: CageGeometry | None
    scanner: ScanState = HIDDEN_SCAN
    clock: PlaybackClock | None = None

    @property
    def has_clip(self) -> bool:
        return self.matrix is not None
