"""Analyzer session: owns the loaded clip, its matrix and the playback clock.

One session drives one view.  ``load`` runs fetch, decode and analysis
in a background thread and publishes the result atomically; ``tick`` is
called once per rendered frame and returns an immutable
:class:`RenderState`.  Every load bumps a generation counter, and a
result whose generation is no longer current is dropped instead of
published.
"""

from __future__ import annotations

import concurrent.futures
import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from functools import partial
from typing import Any, Callable, Sequence

from .audio import AudioLoadError, EmptyInput, load_audio
from .cage import CageRenderer
from .config import default_config, effective_colors, merge_configs, validate_config
from .events import EventBus
from .log import dbg
from .models import (
    CageGeometry, PCMBuffer, PlaybackClock, RenderState, SpectrogramMatrix,
    TerrainMesh,
)
from .scanner import PlaybackScanner
from .spectrogram import SpectrogramEngine
from .terrain import HEADROOM, TerrainMeshBuilder, normalize_colors

log = logging.getLogger(__name__)

Loader = Callable[[str], PCMBuffer]


class AnalyzerSession:
    def __init__(
        self,
        config: dict[str, Any] | None = None,
        *,
        loader: Loader | None = None,
        engine: SpectrogramEngine | None = None,
        event_bus: EventBus | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        cfg = merge_configs(default_config(), config or {})
        validate_config(cfg)
        self.config = cfg
        self.event_bus = event_bus or EventBus()
        self._loader: Loader = loader or partial(
            load_audio, timeout=float(cfg["fetch_timeout"]))
        self._engine = engine or SpectrogramEngine()
        self._clock = clock
        self._executor = ThreadPoolExecutor(
            max_workers=cfg["load_workers"],
            thread_name_prefix="terrainscope-load",
        )

        # Shared with load threads; guarded by _lock
        self._lock = threading.Lock()
        self._generation: int = 0
        self._published: tuple[int, PCMBuffer, SpectrogramMatrix] | None = None
        self._futures: set[Future] = set()
        self._colors: list = effective_colors(cfg)
        self._colors_version: int = 0

        # Render-thread state
        self._mesh_builder = TerrainMeshBuilder()
        self._cage_renderer = CageRenderer()
        self._scanner = PlaybackScanner(cfg["scan_points"])
        self._terrain: TerrainMesh | None = None
        self._cage: CageGeometry = self._cage_renderer.build(
            self.volume_size, cfg["tick_count"])
        self._rendered_key: tuple[int, int] | None = None
        self._playing_generation: int = 0
        self._closed = False

    # ── Properties ──────────────────────────────────────────────────────────

    @property
    def volume_size(self) -> float:
        return float(self.config["volume_size"])

    @property
    def generation(self) -> int:
        """Generation of the most recent load request."""
        with self._lock:
            return self._generation

    @property
    def published_generation(self) -> int:
        with self._lock:
            return self._published[0] if self._published else 0

    @property
    def pcm(self) -> PCMBuffer | None:
        with self._lock:
            return self._published[1] if self._published else None

    @property
    def matrix(self) -> SpectrogramMatrix | None:
        with self._lock:
            return self._published[2] if self._published else None

    @property
    def colors(self) -> list:
        with self._lock:
            return list(self._colors)

    @property
    def mesh_builder(self) -> TerrainMeshBuilder:
        return self._mesh_builder

    @property
    def scanner(self) -> PlaybackScanner:
        return self._scanner

    @property
    def is_playing(self) -> bool:
        clock = self._scanner.clock
        return clock is not None and clock.is_playing

    # ── Loading ─────────────────────────────────────────────────────────────

    def load(self, source: str) -> int:
        """Start loading *source* in the background.  Returns its generation.

        Playback of the current clip stops immediately.  Earlier loads
        that have not started yet are cancelled; ones already running
        finish but are discarded.
        """
        if self._closed:
            raise RuntimeError("session is closed")
        with self._lock:
            self._generation += 1
            generation = self._generation
            stale = list(self._futures)
        for future in stale:
            future.cancel()
        self.stop()
        self._emit("load.start", generation=generation, source=source)
        with self._lock:
            future = self._executor.submit(self._run_load, generation, source)
            self._futures.add(future)
        future.add_done_callback(self._forget_future)
        return generation

    def wait(self, timeout: float | None = None) -> bool:
        """Block until every in-flight load has finished.  False on timeout."""
        with self._lock:
            pending = list(self._futures)
        if not pending:
            return True
        _done, not_done = concurrent.futures.wait(pending, timeout=timeout)
        return not not_done

    def _forget_future(self, future: Future) -> None:
        with self._lock:
            self._futures.discard(future)

    def _is_current(self, generation: int) -> bool:
        with self._lock:
            return generation == self._generation

    def _run_load(self, generation: int, source: str) -> None:
        """Worker-thread body: fetch, decode, analyze, publish."""
        t0 = time.perf_counter()
        try:
            pcm = self._loader(source)
            if len(pcm) == 0:
                raise EmptyInput(source, "no samples")
            if not self._is_current(generation):
                self._discard(generation)
                return
            matrix = self._engine.analyze(pcm)
        except AudioLoadError as e:
            log.warning("Load failed (generation %d): %s", generation, e)
            self._fail(generation, source, e)
            return
        except Exception as e:
            log.exception("Unexpected error loading %s", source)
            self._fail(generation, source, e)
            return

        with self._lock:
            current = generation == self._generation
            if current:
                self._published = (generation, pcm, matrix)
        if not current:
            self._discard(generation)
            return
        dt = (time.perf_counter() - t0) * 1000
        dbg(f"generation {generation} published: {source} "
            f"({pcm.duration:.2f} s, {dt:.1f} ms)")
        self._emit("load.complete", generation=generation, source=source)

    def _fail(self, generation: int, source: str, error: Exception) -> None:
        # failures of superseded loads are discarded, not reported
        if not self._is_current(generation):
            self._discard(generation)
            return
        self._emit("load.failed", generation=generation, source=source, error=error)

    def _discard(self, generation: int) -> None:
        dbg(f"discarding stale result for generation {generation}")
        self._emit("load.discarded", generation=generation)

    # ── Playback ────────────────────────────────────────────────────────────

    def play(self, now: float | None = None) -> bool:
        """Start (or restart) playback of the loaded clip.  False if none."""
        with self._lock:
            published = self._published
        if published is None:
            dbg("play ignored: no clip loaded")
            return False
        generation, pcm, _matrix = published
        if now is None:
            now = self._clock()
        clock = PlaybackClock(start_time=now, duration=pcm.duration)
        self._scanner.start(clock)
        self._playing_generation = generation
        self._emit("playback.start", generation=generation, pcm=pcm, clock=clock)
        return True

    def stop(self) -> bool:
        """Stop playback.  Stopping an idle session is a no-op (False)."""
        if not self._scanner.stop():
            return False
        self._emit("playback.stop", generation=self._playing_generation)
        return True

    def set_colors(self, colors: Sequence | None) -> None:
        """Replace the terrain colors (1 or 2); empty restores the default."""
        colors = list(colors or [])
        if not colors:
            colors = [self.config["default_color"]]
        normalize_colors(colors)
        with self._lock:
            self._colors = colors
            self._colors_version += 1

    # ── Per-frame ───────────────────────────────────────────────────────────

    def tick(self, now: float | None = None) -> RenderState:
        """Advance one rendered frame and return the state to draw."""
        if now is None:
            now = self._clock()
        with self._lock:
            published = self._published
            colors = list(self._colors)
            colors_version = self._colors_version

        if published is None:
            return RenderState(generation=0, pcm=None, matrix=None,
                               terrain=None, cage=self._cage)

        generation, pcm, matrix = published
        if self.is_playing and self._playing_generation != generation:
            self.stop()
        key = (generation, colors_version)
        if key != self._rendered_key:
            self._rebuild(pcm, matrix, colors)
            self._rendered_key = key

        scan = self._scanner.update(now, matrix, self.volume_size)
        if scan.finished:
            self._emit("playback.finished", generation=generation)
        return RenderState(
            generation=generation,
            pcm=pcm,
            matrix=matrix,
            terrain=self._terrain,
            cage=self._cage,
            scanner=scan,
            clock=self._scanner.clock,
        )

    def _rebuild(self, pcm: PCMBuffer, matrix: SpectrogramMatrix,
                 colors: list) -> None:
        size = self.volume_size
        self._terrain = self._mesh_builder.build(matrix, colors, size)
        self._cage = self._cage_renderer.build(
            size, self.config["tick_count"],
            ranges={
                # rows run end-first, so time counts down along +x
                "time": (pcm.duration, 0.0),
                "amplitude": (0.0, matrix.norm_amplitude / HEADROOM),
                "frequency": (0.0, pcm.samplerate / 2000.0),
            },
        )

    # ── Lifecycle ───────────────────────────────────────────────────────────

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.stop()
        self._executor.shutdown(wait=False, cancel_futures=True)

    def __enter__(self) -> AnalyzerSession:
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def _emit(self, event_type: str, **data: Any) -> None:
        self.event_bus.emit(event_type, **data)
