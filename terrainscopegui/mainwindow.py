"""Main application window for the terrainscope GUI."""

from __future__ import annotations

import json
import logging
import os
import sys
import time

from PySide6.QtCore import QObject, QSize, Qt, QTimer, Signal, Slot
from PySide6.QtGui import QAction, QColor, QKeySequence, QShortcut
from PySide6.QtWidgets import (
    QApplication,
    QColorDialog,
    QFileDialog,
    QInputDialog,
    QLabel,
    QMainWindow,
    QMessageBox,
    QSizePolicy,
    QStatusBar,
    QToolBar,
    QWidget,
)

from terrainscopelib.audio import format_duration
from terrainscopelib.config import ConfigError
from terrainscopelib.log import dbg, timed
from terrainscopelib.session import AnalyzerSession
from terrainscopelib.terrain import format_color, parse_color

from .playback import PlaybackController
from .settings import config_path, load_config, save_config, view_config
from .theme import COLORS, apply_dark_theme
from .view import TerrainView

log = logging.getLogger(__name__)

_FRAME_INTERVAL_MS = 16
_AUDIO_FILTER = "Audio files (*.wav *.flac *.ogg *.aif *.aiff *.mp3);;All files (*)"


class _SessionSignals(QObject):
    """Re-emits session events as Qt signals so handlers run on the GUI thread."""

    load_started = Signal(int, str)
    load_completed = Signal(int, str)
    load_failed = Signal(int, str, str)
    playback_started = Signal(object)
    playback_stopped = Signal()
    playback_finished = Signal()

    def connect_bus(self, bus) -> None:
        bus.subscribe("load.start",
                      lambda generation, source: self.load_started.emit(generation, source))
        bus.subscribe("load.complete",
                      lambda generation, source: self.load_completed.emit(generation, source))
        bus.subscribe("load.failed",
                      lambda generation, source, error:
                      self.load_failed.emit(generation, source, str(error)))
        bus.subscribe("playback.start",
                      lambda generation, pcm, clock: self.playback_started.emit(pcm))
        bus.subscribe("playback.stop",
                      lambda generation: self.playback_stopped.emit())
        bus.subscribe("playback.finished",
                      lambda generation: self.playback_finished.emit())


class TerrainScopeWindow(QMainWindow):
    def __init__(self):
        t_init = time.perf_counter()
        super().__init__()
        self.setWindowTitle("terrainscope")

        screen = QApplication.primaryScreen()
        if screen:
            avail = screen.availableGeometry()
            w = min(1200, avail.width() - 40)
            h = min(850, avail.height() - 40)
            self.resize(w, h)
            self.move(
                avail.x() + (avail.width() - w) // 2,
                avail.y() + (avail.height() - h) // 2,
            )
        else:
            self.resize(1200, 850)

        with timed("load_config"):
            self._config = load_config()
        self._colors: list[str] = list(self._config["gui"].get("colors") or [])

        self._session = self._create_session()
        self._signals = _SessionSignals(self)
        self._signals.connect_bus(self._session.event_bus)
        self._signals.load_started.connect(self._on_load_started)
        self._signals.load_completed.connect(self._on_load_completed)
        self._signals.load_failed.connect(self._on_load_failed)
        self._signals.playback_started.connect(self._on_playback_started)
        self._signals.playback_stopped.connect(self._on_playback_stopped)
        self._signals.playback_finished.connect(self._on_playback_finished)

        self._playback = PlaybackController(self)
        self._playback.error.connect(self._on_playback_error)
        self._playback.playback_finished.connect(self._on_audio_finished)

        self._init_ui()
        apply_dark_theme(self)

        self._space_shortcut = QShortcut(QKeySequence(Qt.Key_Space), self)
        self._space_shortcut.activated.connect(self._on_toggle_play)

        self._frame_timer = QTimer(self)
        self._frame_timer.setInterval(_FRAME_INTERVAL_MS)
        self._frame_timer.timeout.connect(self._on_frame)
        self._frame_timer.start()

        dbg(f"TerrainScopeWindow.__init__ total: "
            f"{(time.perf_counter() - t_init) * 1000:.1f} ms")

    def _create_session(self) -> AnalyzerSession:
        try:
            return AnalyzerSession(view_config(self._config))
        except (ConfigError, ValueError) as e:
            # load_config validates the view section; stray GUI colors can
            # still be invalid
            log.warning("Saved view settings rejected (%s), using defaults", e)
            self._colors = []
            return AnalyzerSession()

    # ── UI setup ──────────────────────────────────────────────────────────

    def _init_ui(self):
        self._init_menus()
        self._init_toolbar()

        self._view = TerrainView()
        self.setCentralWidget(self._view)

        self._status_bar = QStatusBar()
        self.setStatusBar(self._status_bar)
        self._status_bar.showMessage("Open an audio file or URL to begin.")

    def _init_menus(self):
        file_menu = self.menuBar().addMenu("&File")

        open_action = QAction("&Open File...", self)
        open_action.setShortcut("Ctrl+O")
        open_action.triggered.connect(self._on_open_file)
        file_menu.addAction(open_action)

        url_action = QAction("Open &URL...", self)
        url_action.setShortcut("Ctrl+U")
        url_action.triggered.connect(self._on_open_url)
        file_menu.addAction(url_action)

        file_menu.addSeparator()

        about_action = QAction("&About terrainscope", self)
        about_action.setMenuRole(QAction.MenuRole.AboutRole)
        about_action.triggered.connect(self._on_about)
        file_menu.addAction(about_action)

        quit_action = QAction("&Quit", self)
        quit_action.setShortcut("Ctrl+Q")
        quit_action.triggered.connect(self.close)
        file_menu.addAction(quit_action)

    def _init_toolbar(self):
        toolbar = QToolBar("Main")
        toolbar.setIconSize(QSize(16, 16))
        toolbar.setMovable(False)
        toolbar.setFloatable(False)
        self.addToolBar(toolbar)

        open_action = QAction("Open File", self)
        open_action.triggered.connect(self._on_open_file)
        toolbar.addAction(open_action)

        url_action = QAction("Open URL", self)
        url_action.triggered.connect(self._on_open_url)
        toolbar.addAction(url_action)

        toolbar.addSeparator()

        self._play_action = QAction("Play", self)
        self._play_action.setEnabled(False)
        self._play_action.triggered.connect(self._on_play)
        toolbar.addAction(self._play_action)

        self._stop_action = QAction("Stop", self)
        self._stop_action.setEnabled(False)
        self._stop_action.triggered.connect(self._on_stop)
        toolbar.addAction(self._stop_action)

        toolbar.addSeparator()

        self._color_a_action = QAction("Color A", self)
        self._color_a_action.triggered.connect(lambda: self._on_pick_color(0))
        toolbar.addAction(self._color_a_action)

        self._color_b_action = QAction("Color B", self)
        self._color_b_action.triggered.connect(lambda: self._on_pick_color(1))
        toolbar.addAction(self._color_b_action)

        reset_colors_action = QAction("Reset Colors", self)
        reset_colors_action.triggered.connect(self._on_reset_colors)
        toolbar.addAction(reset_colors_action)

        spacer = QWidget()
        spacer.setSizePolicy(QSizePolicy.Expanding, QSizePolicy.Preferred)
        toolbar.addWidget(spacer)

        self._clip_label = QLabel("")
        self._clip_label.setStyleSheet(f"color: {COLORS['dim']}; padding-right: 8px;")
        toolbar.addWidget(self._clip_label)

    # ── Loading ───────────────────────────────────────────────────────────

    def load_source(self, source: str) -> None:
        source = source.strip()
        if not source:
            return
        self._config["gui"]["last_source"] = source
        self._session.load(source)

    @Slot()
    def _on_open_file(self):
        last = self._config["gui"].get("last_source", "")
        start_dir = os.path.dirname(last) if last and os.path.exists(last) else ""
        path, _ = QFileDialog.getOpenFileName(
            self, "Open Audio File", start_dir, _AUDIO_FILTER)
        if path:
            self.load_source(path)

    @Slot()
    def _on_open_url(self):
        last = self._config["gui"].get("last_source", "")
        url, ok = QInputDialog.getText(
            self, "Open URL", "Audio URL:",
            text=last if last.startswith(("http://", "https://")) else "")
        if ok and url:
            self.load_source(url)

    @Slot(int, str)
    def _on_load_started(self, generation: int, source: str):
        self._status_bar.showMessage(f"Loading {source}…")

    @Slot(int, str)
    def _on_load_completed(self, generation: int, source: str):
        pcm = self._session.pcm
        if pcm is None or generation != self._session.generation:
            return
        self._play_action.setEnabled(True)
        self._clip_label.setText(
            f"{os.path.basename(source) or source}  "
            f"{format_duration(len(pcm), pcm.samplerate)}  "
            f"{pcm.samplerate} Hz")
        self._status_bar.showMessage(f"Loaded {source}", 5000)

    @Slot(int, str, str)
    def _on_load_failed(self, generation: int, source: str, message: str):
        if generation != self._session.generation:
            return
        self._status_bar.showMessage(f"Load failed: {message}")

    # ── Playback ──────────────────────────────────────────────────────────

    @Slot()
    def _on_play(self):
        if not self._session.play(time.monotonic()):
            self._status_bar.showMessage("Nothing to play.", 3000)

    @Slot()
    def _on_stop(self):
        self._session.stop()

    @Slot()
    def _on_toggle_play(self):
        if self._session.is_playing:
            self._on_stop()
        else:
            self._on_play()

    @Slot(object)
    def _on_playback_started(self, pcm):
        self._playback.play(pcm.samples, pcm.samplerate)
        self._stop_action.setEnabled(True)

    @Slot()
    def _on_playback_stopped(self):
        self._playback.stop()
        self._stop_action.setEnabled(False)

    @Slot()
    def _on_playback_finished(self):
        self._stop_action.setEnabled(False)

    @Slot()
    def _on_audio_finished(self):
        dbg("audio stream drained")

    @Slot(str)
    def _on_playback_error(self, message: str):
        self._session.stop()
        self._status_bar.showMessage(f"Playback error: {message}")

    # ── Colors ────────────────────────────────────────────────────────────

    def _on_pick_color(self, slot: int):
        current = self._session.colors
        initial = current[slot] if slot < len(current) else current[0]
        try:
            start = QColor(format_color(parse_color(initial)))
        except ValueError:
            start = QColor(self._session.config["default_color"])
        color = QColorDialog.getColor(start, self, f"Terrain Color {'AB'[slot]}")
        if not color.isValid():
            return
        colors = list(self._colors) or [self._session.config["default_color"]]
        if slot == 0:
            colors[0] = color.name()
        elif len(colors) == 1:
            colors.append(color.name())
        else:
            colors[1] = color.name()
        self._apply_colors(colors)

    @Slot()
    def _on_reset_colors(self):
        self._apply_colors([])

    def _apply_colors(self, colors: list[str]) -> None:
        try:
            self._session.set_colors(colors)
        except ValueError as e:
            QMessageBox.warning(self, "Invalid color", str(e))
            return
        self._colors = colors
        self._config["gui"]["colors"] = list(colors)

    # ── Render loop ───────────────────────────────────────────────────────

    @Slot()
    def _on_frame(self):
        state = self._session.tick(time.monotonic())
        self._view.set_state(state)
        if not self._session.is_playing and self._stop_action.isEnabled():
            self._stop_action.setEnabled(False)

    # ── Misc ──────────────────────────────────────────────────────────────

    @Slot()
    def _on_about(self):
        from terrainscopelib import __version__
        QMessageBox.about(
            self, "About terrainscope",
            f"<b>terrainscope</b> {__version__}<br><br>"
            "Spectrogram terrain viewer with a playback scanner.<br>"
            f"Settings: {config_path()}")

    def closeEvent(self, event):
        self._frame_timer.stop()
        self._playback.stop()
        self._session.close()
        try:
            save_config(self._config)
        except OSError as e:
            log.warning("Could not save config: %s", e)
        super().closeEvent(event)


def main():
    t_main = time.perf_counter()

    # Apply HiDPI scale factor before QApplication is created.
    try:
        with open(config_path(), "r", encoding="utf-8") as f:
            raw = json.load(f)
        scale = raw.get("gui", {}).get("scale_factor")
        if scale is not None and float(scale) != 1.0:
            os.environ["QT_SCALE_FACTOR"] = str(float(scale))
    except (OSError, ValueError, TypeError, AttributeError) as e:
        dbg(f"scale factor not applied: {e}")

    with timed("QApplication created"):
        app = QApplication(sys.argv)
        app.setStyle("Fusion")

    window = TerrainScopeWindow()
    window.show()
    if len(sys.argv) > 1:
        window.load_source(sys.argv[1])

    dbg(f"main() total: {(time.perf_counter() - t_main) * 1000:.1f} ms")
    sys.exit(app.exec())
