"""Matrix summaries and exports for the CLI and automation tools."""

from __future__ import annotations

import json
import os
from datetime import datetime
from typing import Any

import numpy as np

from .models import PCMBuffer, SpectrogramMatrix, TerrainMesh
from .spectrogram import row_to_frame

EXPORT_SCHEMA_VERSION = "1.0"
EXPORT_EXTENSIONS = (".npy", ".json")


def build_summary(
    pcm: PCMBuffer,
    matrix: SpectrogramMatrix,
    mesh: TerrainMesh | None = None,
) -> dict[str, Any]:
    """Headline numbers for one analyzed clip."""
    values = matrix.values
    peak_row, peak_bin = np.unravel_index(int(np.argmax(values)), values.shape)
    peak_frame = row_to_frame(int(peak_row), matrix.n_frames)
    summary: dict[str, Any] = {
        "source": pcm.source,
        "duration": pcm.duration,
        "samplerate": pcm.samplerate,
        "samples": len(pcm),
        "shape": list(matrix.shape),
        "max": matrix.max_amplitude,
        "mean": float(np.mean(values)),
        "peak_row": int(peak_row),
        "peak_frame": peak_frame,
        "peak_time": peak_frame / matrix.n_frames * pcm.duration,
        "peak_bin": int(peak_bin),
        # center frequency of the peak band; bins cover 0 .. samplerate / 2
        "peak_hz": (peak_bin + 0.5) / matrix.n_bins * pcm.samplerate / 2.0,
    }
    if mesh is not None:
        heights = mesh.heights
        summary.update({
            "height_min": float(heights.min()),
            "height_max": float(heights.max()),
            "vertices": mesh.vertex_count,
            "triangles": mesh.triangle_count,
        })
    return summary


def save_matrix(
    path: str,
    matrix: SpectrogramMatrix,
    pcm: PCMBuffer | None = None,
) -> str:
    """Write *matrix* to *path* as ``.npy`` (raw array) or ``.json``.

    Returns the path written.  Raises ``ValueError`` for other extensions.
    """
    ext = os.path.splitext(path)[1].lower()
    if ext not in EXPORT_EXTENSIONS:
        raise ValueError(
            f"Unsupported export format {ext or '(none)'}; "
            f"use one of {', '.join(EXPORT_EXTENSIONS)}")
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)

    if ext == ".npy":
        np.save(path, np.asarray(matrix.values))
        return path

    data: dict[str, Any] = {
        "schema_version": EXPORT_SCHEMA_VERSION,
        "timestamp": datetime.now().isoformat(),
        "source": matrix.source,
        "shape": list(matrix.shape),
        "max": matrix.max_amplitude,
        "values": np.round(matrix.values, 4).tolist(),
    }
    if pcm is not None:
        data["samplerate"] = pcm.samplerate
        data["duration"] = pcm.duration
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, ensure_ascii=False)
        f.write("\n")
    return path
