"""3D terrain view: orbit camera and QPainter projection of a RenderState."""

from __future__ import annotations

import math

import numpy as np

from PySide6.QtCore import QPointF, Qt
from PySide6.QtGui import QColor, QFont, QPainter, QPen, QPolygonF
from PySide6.QtWidgets import QWidget

from terrainscopelib.models import RenderState
from terrainscopelib.terrain import HEADROOM

from .theme import (
    CAGE_AXIS_COLOR, CAGE_LABEL_COLOR, CAGE_TICK_COLOR, COLORS,
    SCAN_CURTAIN_COLOR, SCAN_LINE_COLOR, VIEW_BACKGROUND,
)

_LIGHT = np.array([0.4, 1.0, 0.3]) / np.linalg.norm([0.4, 1.0, 0.3])
_AMBIENT = 0.35


def _points(screen: np.ndarray) -> list[QPointF]:
    return [QPointF(float(x), float(y)) for x, y in screen]


class TerrainView(QWidget):
    """Draws terrain, cage and scanner with a simple orthographic camera.

    Left-drag orbits, the wheel zooms, double-click resets the camera.
    The terrain is drawn as a decimated quad grid sorted back to front,
    each quad shaded by its averaged vertex normal.
    """

    _QUADS_PER_AXIS = 48
    _DEFAULT_YAW = math.radians(-35.0)
    _DEFAULT_PITCH = math.radians(25.0)
    _PITCH_LIMITS = (math.radians(-5.0), math.radians(89.0))
    _ZOOM_LIMITS = (0.3, 5.0)

    def __init__(self, parent=None):
        super().__init__(parent)
        self.setMinimumSize(320, 240)
        self._state: RenderState | None = None
        self._yaw = self._DEFAULT_YAW
        self._pitch = self._DEFAULT_PITCH
        self._zoom = 1.0
        self._drag_pos: QPointF | None = None
        # (mesh, camera key, [(polygon, color), ...]); holding the mesh
        # keeps the identity check valid
        self._terrain_cache: tuple | None = None

    # ── Public API ──────────────────────────────────────────────────────────

    def set_state(self, state: RenderState) -> None:
        self._state = state
        self.update()

    def reset_camera(self) -> None:
        self._yaw = self._DEFAULT_YAW
        self._pitch = self._DEFAULT_PITCH
        self._zoom = 1.0
        self.update()

    # ── Projection ──────────────────────────────────────────────────────────

    def _camera_key(self) -> tuple:
        return (self._yaw, self._pitch, self._zoom, self.width(), self.height())

    def _project(self, points: np.ndarray, size: float
                 ) -> tuple[np.ndarray, np.ndarray]:
        """World ``(N, 3)`` points to screen ``(N, 2)`` and nearness ``(N,)``.

        Larger nearness is closer to the viewer.
        """
        center = np.array([size / 2.0, size * HEADROOM / 2.0, size / 2.0])
        p = np.asarray(points, dtype=np.float64).reshape(-1, 3) - center
        cy, sy = math.cos(self._yaw), math.sin(self._yaw)
        cp, sp = math.cos(self._pitch), math.sin(self._pitch)
        x = p[:, 0] * cy + p[:, 2] * sy
        z = -p[:, 0] * sy + p[:, 2] * cy
        y = p[:, 1] * cp - z * sp
        near = p[:, 1] * sp + z * cp
        scale = min(self.width(), self.height()) / (size * 1.9) * self._zoom
        screen = np.column_stack([
            self.width() / 2.0 + x * scale,
            self.height() / 2.0 - y * scale,
        ])
        return screen, near

    # ── Painting ────────────────────────────────────────────────────────────

    def paintEvent(self, event):
        painter = QPainter(self)
        painter.setRenderHint(QPainter.Antialiasing, True)
        painter.fillRect(self.rect(), VIEW_BACKGROUND)

        state = self._state
        if state is None or state.cage is None:
            painter.end()
            return

        size = state.cage.volume_size
        if state.terrain is not None:
            self._paint_terrain(painter, state, size)
        self._paint_cage(painter, state, size)
        if state.scanner.visible:
            self._paint_scanner(painter, state, size)

        if not state.has_clip:
            painter.setPen(QPen(QColor(COLORS["dim"])))
            painter.drawText(self.rect(), Qt.AlignCenter,
                             "Open an audio file or URL to begin")
        painter.end()

    def _paint_terrain(self, painter: QPainter, state: RenderState,
                       size: float) -> None:
        mesh = state.terrain
        key = self._camera_key()
        cache = self._terrain_cache
        if cache is None or cache[0] is not mesh or cache[1] != key:
            cache = (mesh, key, self._terrain_quads(mesh, size))
            self._terrain_cache = cache

        painter.setRenderHint(QPainter.Antialiasing, False)
        painter.setPen(Qt.NoPen)
        for polygon, color in cache[2]:
            painter.setBrush(color)
            painter.drawPolygon(polygon)
        painter.setRenderHint(QPainter.Antialiasing, True)

    def _terrain_quads(self, mesh, size: float) -> list[tuple[QPolygonF, QColor]]:
        """Decimated, depth-sorted, shaded quads for *mesh*."""
        n_frames, n_bins = mesh.n_frames, mesh.n_bins
        rows = _decimate(n_frames, self._QUADS_PER_AXIS)
        cols = _decimate(n_bins, self._QUADS_PER_AXIS)
        grid = np.ix_(rows, cols)

        screen, near = self._project(mesh.positions, size)
        screen = screen.reshape(n_frames, n_bins, 2)[grid]
        near = near.reshape(n_frames, n_bins)[grid]
        colors = mesh.colors.reshape(n_frames, n_bins, 3)[grid]
        normals = mesh.normals.reshape(n_frames, n_bins, 3)[grid]

        def corners(a):
            return (a[:-1, :-1], a[1:, :-1], a[1:, 1:], a[:-1, 1:])

        quad_screen = np.stack(corners(screen), axis=2).reshape(-1, 4, 2)
        quad_near = np.mean(corners(near), axis=0).reshape(-1)
        quad_color = np.mean(corners(colors), axis=0).reshape(-1, 3)
        quad_normal = np.mean(corners(normals), axis=0).reshape(-1, 3)

        length = np.linalg.norm(quad_normal, axis=1)
        length[length == 0] = 1.0
        lambert = np.clip((quad_normal / length[:, None]) @ _LIGHT, 0.0, 1.0)
        shade = _AMBIENT + (1.0 - _AMBIENT) * lambert
        rgb = np.clip(quad_color * shade[:, None], 0.0, 1.0)

        quads = []
        for i in np.argsort(quad_near, kind="stable"):
            r, g, b = rgb[i]
            quads.append((QPolygonF(_points(quad_screen[i])),
                          QColor.fromRgbF(float(r), float(g), float(b))))
        return quads

    def _paint_cage(self, painter: QPainter, state: RenderState,
                    size: float) -> None:
        cage = state.cage

        edge_color = QColor(CAGE_AXIS_COLOR)
        edge_color.setAlphaF(cage.edge_opacity)
        self._draw_segments(painter, cage.edges, QPen(edge_color, 1), size)

        tick_pen = QPen(CAGE_TICK_COLOR, 1, Qt.DotLine)
        for segs in cage.ticks.values():
            self._draw_segments(painter, segs, tick_pen, size)

        axis_pen = QPen(CAGE_AXIS_COLOR, 1.5)
        for segs in cage.axes.values():
            self._draw_segments(painter, segs, axis_pen, size)

        if not cage.labels:
            return
        font = QFont(painter.font())
        font.setPointSizeF(max(7.0, font.pointSizeF() * 0.85))
        painter.setFont(font)
        painter.setPen(QPen(CAGE_LABEL_COLOR))
        anchors = np.array([label.position for label in cage.labels])
        screen, _near = self._project(anchors, size)
        for label, (x, y) in zip(cage.labels, screen):
            painter.drawText(QPointF(float(x), float(y)), label.text)

    def _draw_segments(self, painter: QPainter, segs: np.ndarray, pen: QPen,
                       size: float) -> None:
        if segs.size == 0:
            return
        screen, _near = self._project(segs.reshape(-1, 3), size)
        screen = screen.reshape(-1, 2, 2)
        painter.setPen(pen)
        for (x0, y0), (x1, y1) in screen:
            painter.drawLine(QPointF(float(x0), float(y0)),
                             QPointF(float(x1), float(y1)))

    def _paint_scanner(self, painter: QPainter, state: RenderState,
                       size: float) -> None:
        scan = state.scanner
        screen, _near = self._project(scan.positions, size)

        painter.setRenderHint(QPainter.Antialiasing, False)
        painter.setPen(Qt.NoPen)
        painter.setBrush(SCAN_CURTAIN_COLOR)
        for tri in scan.curtain_indices:
            painter.drawPolygon(QPolygonF(_points(screen[tri])))
        painter.setRenderHint(QPainter.Antialiasing, True)

        painter.setPen(QPen(SCAN_LINE_COLOR, 2))
        painter.setBrush(Qt.NoBrush)
        painter.drawPolyline(QPolygonF(_points(screen[:scan.point_count])))

    # ── Camera interaction ──────────────────────────────────────────────────

    def mousePressEvent(self, event):
        if event.button() == Qt.LeftButton:
            self._drag_pos = event.position()
            event.accept()
            return
        super().mousePressEvent(event)

    def mouseMoveEvent(self, event):
        if self._drag_pos is None:
            super().mouseMoveEvent(event)
            return
        pos = event.position()
        dx = pos.x() - self._drag_pos.x()
        dy = pos.y() - self._drag_pos.y()
        self._drag_pos = pos
        self._yaw += math.radians(dx * 0.4)
        lo, hi = self._PITCH_LIMITS
        self._pitch = max(lo, min(hi, self._pitch + math.radians(dy * 0.4)))
        self.update()

    def mouseReleaseEvent(self, event):
        if event.button() == Qt.LeftButton:
            self._drag_pos = None
        super().mouseReleaseEvent(event)

    def mouseDoubleClickEvent(self, event):
        self.reset_camera()

    def wheelEvent(self, event):
        delta = event.angleDelta().y()
        if delta == 0:
            event.ignore()
            return
        lo, hi = self._ZOOM_LIMITS
        self._zoom = max(lo, min(hi, self._zoom * 1.1 ** (delta / 120.0)))
        self.update()
        event.accept()


def _decimate(count: int, target: int) -> np.ndarray:
    """Evenly strided grid indices (always including the last one)."""
    stride = max(1, math.ceil((count - 1) / target))
    idx = np.arange(0, count, stride)
    if idx[-1] != count - 1:
        idx = np.append(idx, count - 1)
    return idx
