"""Cage geometry: axes, tick gridlines, labels and faint box edges."""

from __future__ import annotations

from itertools import product

import numpy as np

from .models import CageGeometry, CageLabel

AXES = ("time", "amplitude", "frequency")
EDGE_OPACITY = 0.25
LABEL_OFFSET = 0.05  # fraction of the volume edge

_AXIS_DIRECTION = {
    "time": np.array([1.0, 0.0, 0.0]),
    "amplitude": np.array([0.0, 1.0, 0.0]),
    "frequency": np.array([0.0, 0.0, 1.0]),
}


def format_tick(value: float) -> str:
    text = f"{value:.2f}".rstrip("0").rstrip(".")
    return "0" if text in ("-0", "") else text


class CageRenderer:
    """Builds the static reference frame the terrain sits in.

    Origin at one bottom corner, x = time, y = amplitude, z = frequency,
    every axis ``volume_size`` long.  Nothing here depends on audio data.
    """

    def __init__(self, edge_opacity: float = EDGE_OPACITY):
        self.edge_opacity = edge_opacity

    def build(self, volume_size: float, tick_count: int,
              ranges: dict[str, tuple[float, float]] | None = None,
              ) -> CageGeometry:
        if volume_size <= 0:
            raise ValueError(f"volume_size must be positive, got {volume_size}")
        if tick_count < 1:
            raise ValueError(f"tick_count must be at least 1, got {tick_count}")
        ranges = ranges or {}
        size = float(volume_size)
        origin = np.zeros(3)

        axes = {
            name: np.array([[origin, _AXIS_DIRECTION[name] * size]])
            for name in AXES
        }
        fractions = np.linspace(0.0, 1.0, tick_count + 1)
        ticks: dict[str, np.ndarray] = {}
        labels: list[CageLabel] = []
        offset = LABEL_OFFSET * size
        for name in AXES:
            lo, hi = ranges.get(name, (0.0, 1.0))
            segs = []
            for frac in fractions:
                d = frac * size
                if name == "time":
                    segs.append([(d, 0.0, 0.0), (d, 0.0, size)])
                    pos = (d, 0.0, -offset)
                elif name == "frequency":
                    segs.append([(0.0, 0.0, d), (size, 0.0, d)])
                    pos = (-offset, 0.0, d)
                else:
                    segs.append([(0.0, d, 0.0), (0.0, d, size)])
                    pos = (0.0, d, -offset)
                labels.append(CageLabel(name, pos, format_tick(lo + (hi - lo) * frac)))
            ticks[name] = np.array(segs, dtype=np.float64)

        return CageGeometry(
            axes=axes,
            ticks=ticks,
            labels=labels,
            edges=_box_edges(size),
            edge_opacity=self.edge_opacity,
            volume_size=size,
            tick_count=tick_count,
        )


def _box_edges(size: float) -> np.ndarray:
    """The nine cube edges that do not touch the origin corner."""
    edges = []
    for a in product((0.0, size), repeat=3):
        for axis in range(3):
            if a[axis] != 0.0:
                continue
            b = list(a)
            b[axis] = size
            if not any(a):
                continue
            edges.append([a, tuple(b)])
    return np.array(edges, dtype=np.float64)
