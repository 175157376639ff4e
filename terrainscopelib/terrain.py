"""Terrain mesh: height/color buffers for the spectrogram grid."""

from __future__ import annotations

from typing import Sequence

import numpy as np

from .log import dbg, timed
from .models import SpectrogramMatrix, TerrainMesh, readonly

HEADROOM = 0.7       # peak height as a fraction of the volume edge
DARKEN_FLOOR = 0.3   # brightness of a silent cell in two-color mode


# ---------------------------------------------------------------------------
# Colors
# ---------------------------------------------------------------------------

def parse_color(value) -> np.ndarray:
    """Parse an opaque color value into float32 RGB in ``[0, 1]``.

    Accepts ``"#RRGGBB"``, ``"#RGB"``, integer triples (0-255) and float
    triples (0-1).  Raises ``ValueError`` for anything else.
    """
    if isinstance(value, str):
        text = value.strip().lstrip("#")
        if len(text) == 3:
            text = "".join(ch * 2 for ch in text)
        if len(text) != 6:
            raise ValueError(f"Invalid color {value!r}")
        try:
            rgb = [int(text[i:i + 2], 16) for i in (0, 2, 4)]
        except ValueError as e:
            raise ValueError(f"Invalid color {value!r}") from e
        return np.array(rgb, dtype=np.float32) / 255.0
    if isinstance(value, (tuple, list, np.ndarray)) and len(value) == 3:
        raw = np.asarray(value)
        if raw.dtype.kind not in "iuf":
            raise ValueError(f"Invalid color {value!r}")
        arr = raw.astype(np.float64)
        if raw.dtype.kind in "iu":
            arr = arr / 255.0
        if not np.all(np.isfinite(arr)) or np.any(arr < 0.0) or np.any(arr > 1.0):
            raise ValueError(f"Color components out of range: {value!r}")
        return arr.astype(np.float32)
    raise ValueError(f"Invalid color {value!r}")


def normalize_colors(colors: Sequence) -> list[np.ndarray]:
    """Parse a one- or two-entry color list."""
    if isinstance(colors, (str, np.ndarray)) or not isinstance(colors, Sequence):
        colors = [colors]
    if not 1 <= len(colors) <= 2:
        raise ValueError(f"Expected 1 or 2 colors, got {len(colors)}")
    return [parse_color(c) for c in colors]


def format_color(rgb) -> str:
    """Float RGB in ``[0, 1]`` to ``#rrggbb``."""
    r, g, b = (int(round(float(c) * 255)) for c in rgb)
    return f"#{r:02x}{g:02x}{b:02x}"


def vertex_colors(amplitude: np.ndarray, palette: list[np.ndarray]) -> np.ndarray:
    """Per-cell RGB for a normalized ``(T, F)`` amplitude grid.

    One color: uniform.  Two colors: lerp along frequency, then darken
    by ``0.3 + 0.7 * amplitude``.
    """
    n_frames, n_bins = amplitude.shape
    if len(palette) == 1:
        return np.broadcast_to(palette[0], (n_frames, n_bins, 3)).astype(np.float32)
    start, end = palette
    ratio = np.arange(n_bins, dtype=np.float64) / max(n_bins - 1, 1)
    base = start[None, :] + (end - start)[None, :] * ratio[:, None]
    darken = DARKEN_FLOOR + (1.0 - DARKEN_FLOOR) * amplitude
    return (base[None, :, :] * darken[:, :, None]).astype(np.float32)


# ---------------------------------------------------------------------------
# Grid helpers
# ---------------------------------------------------------------------------

def axis_position(index, count: int, volume_size: float):
    """Spatial coordinate of grid *index* along an axis of *count* samples."""
    if count <= 1:
        return 0.0 * index
    return index / (count - 1) * volume_size


def grid_indices(n_frames: int, n_bins: int) -> np.ndarray:
    """Triangle list for a ``n_frames x n_bins`` vertex grid, wound for +y normals."""
    t = np.arange(n_frames - 1)[:, None]
    f = np.arange(n_bins - 1)[None, :]
    a = (t * n_bins + f).ravel()
    b = a + n_bins
    c = a + 1
    d = b + 1
    tris = np.empty((a.size * 2, 3), dtype=np.uint32)
    tris[0::2] = np.stack([a, c, b], axis=1)
    tris[1::2] = np.stack([b, c, d], axis=1)
    return tris


def vertex_normals(positions: np.ndarray, indices: np.ndarray) -> np.ndarray:
    """Area-weighted per-vertex normals."""
    v0 = positions[indices[:, 0]].astype(np.float64)
    v1 = positions[indices[:, 1]].astype(np.float64)
    v2 = positions[indices[:, 2]].astype(np.float64)
    face = np.cross(v1 - v0, v2 - v0)
    normals = np.zeros((positions.shape[0], 3), dtype=np.float64)
    for k in range(3):
        np.add.at(normals, indices[:, k], face)
    length = np.linalg.norm(normals, axis=1)
    length[length == 0] = 1.0
    return (normals / length[:, None]).astype(np.float32)


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------

class TerrainMeshBuilder:
    """Owns the terrain vertex buffers and rebuilds them per matrix.

    Working buffers are sized for one grid.  A matrix with different
    dimensions triggers an explicit :meth:`resize` (counted in
    :attr:`reallocations`); otherwise :meth:`build` rewrites the working
    buffers in place.  Each returned mesh carries its own read-only copy
    of positions, colors and normals, so later builds never change it.
    """

    def __init__(self):
        self._n_frames: int = 0
        self._n_bins: int = 0
        self._volume_size: float = 0.0
        self._positions: np.ndarray | None = None
        self._colors: np.ndarray | None = None
        self._normals: np.ndarray | None = None
        self._indices: np.ndarray | None = None
        self._mesh: TerrainMesh | None = None
        self._reallocations: int = 0

    # ── Public API ──────────────────────────────────────────────────────────

    @property
    def mesh(self) -> TerrainMesh | None:
        """Last renderable mesh, or None before the first build."""
        return self._mesh

    @property
    def dimensions(self) -> tuple[int, int]:
        return self._n_frames, self._n_bins

    @property
    def reallocations(self) -> int:
        return self._reallocations

    def resize(self, n_frames: int, n_bins: int, volume_size: float) -> None:
        """Reallocate every buffer for a ``n_frames x n_bins`` grid."""
        if n_frames < 2 or n_bins < 2:
            raise ValueError(f"terrain grid must be at least 2x2, got {n_frames}x{n_bins}")
        n_verts = n_frames * n_bins
        self._n_frames = n_frames
        self._n_bins = n_bins
        self._positions = np.zeros((n_verts, 3), dtype=np.float32)
        self._colors = np.zeros((n_verts, 3), dtype=np.float32)
        self._normals = np.zeros((n_verts, 3), dtype=np.float32)
        self._indices = grid_indices(n_frames, n_bins)
        self._layout_grid(volume_size)
        self._mesh = None
        self._reallocations += 1
        dbg(f"terrain buffers reallocated for {n_frames}x{n_bins} "
            f"({n_verts} vertices, {self._indices.shape[0]} triangles)")

    def build(self, matrix: SpectrogramMatrix, colors: Sequence,
              volume_size: float) -> TerrainMesh:
        """Write heights and colors for *matrix* and return the mesh."""
        palette = normalize_colors(colors)
        if volume_size <= 0:
            raise ValueError(f"volume_size must be positive, got {volume_size}")
        n_frames, n_bins = matrix.shape
        with timed(f"terrain build {n_frames}x{n_bins}"):
            self._mesh = self._write(matrix, palette, volume_size)
        return self._mesh

    def _write(self, matrix: SpectrogramMatrix, palette: list[np.ndarray],
               volume_size: float) -> TerrainMesh:
        values = matrix.values
        n_frames, n_bins = values.shape
        if self._positions is None or (n_frames, n_bins) != self.dimensions:
            self.resize(n_frames, n_bins, volume_size)
        elif volume_size != self._volume_size:
            self._layout_grid(volume_size)

        self._mesh = None
        max_amp = matrix.max_amplitude
        amplitude = values / matrix.norm_amplitude
        self._positions[:, 1] = (amplitude * (volume_size * HEADROOM)).reshape(-1)
        self._colors[:] = vertex_colors(amplitude, palette).reshape(-1, 3)

        self._normals[:] = vertex_normals(self._positions, self._indices)
        bounds_min = self._positions.min(axis=0)
        bounds_max = self._positions.max(axis=0)
        center = (bounds_min + bounds_max) / 2.0
        radius = float(np.max(np.linalg.norm(self._positions - center, axis=1)))

        return TerrainMesh(
            positions=readonly(self._positions.copy()),
            colors=readonly(self._colors.copy()),
            # rewritten only by resize(), which swaps in a new array
            indices=readonly(self._indices),
            normals=readonly(self._normals.copy()),
            bounds_min=bounds_min,
            bounds_max=bounds_max,
            bounding_center=center,
            bounding_radius=radius,
            max_amplitude=max_amp,
            n_frames=n_frames,
            n_bins=n_bins,
            volume_size=float(volume_size),
        )

    # ── Internal helpers ────────────────────────────────────────────────────

    def _layout_grid(self, volume_size: float) -> None:
        """Write the x (time) and z (frequency) coordinates of every vertex."""
        xs = axis_position(np.arange(self._n_frames, dtype=np.float64),
                           self._n_frames, volume_size)
        zs = axis_position(np.arange(self._n_bins, dtype=np.float64),
                           self._n_bins, volume_size)
        self._positions[:, 0] = np.repeat(xs, self._n_bins)
        self._positions[:, 2] = np.tile(zs, self._n_frames)
        self._volume_size = float(volume_size)
