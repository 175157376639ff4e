import threading

import numpy as np
import pytest

from terrainscopelib.audio import DecodeFailure, FetchFailure
from terrainscopelib.config import ConfigError
from terrainscopelib.models import PCMBuffer, ScanPhase
from terrainscopelib.scanner import sample_columns
from terrainscopelib.session import AnalyzerSession

from conftest import SR, GatedLoader, make_sine


class Recorder:
    def __init__(self, bus, *event_types):
        self.events = []
        for event_type in event_types:
            bus.subscribe(event_type, self._handler(event_type))

    def _handler(self, event_type):
        def handler(**data):
            self.events.append((event_type, data))
        return handler

    def of(self, event_type):
        return [data for kind, data in self.events if kind == event_type]


@pytest.fixture
def session(clips):
    s = AnalyzerSession(loader=lambda source: clips[source])
    yield s
    s.close()


def loaded(session, source):
    generation = session.load(source)
    assert session.wait(timeout=10)
    return generation


class TestLoading:
    def test_empty_state_before_load(self, session):
        state = session.tick(0.0)
        assert not state.has_clip
        assert state.terrain is None
        assert state.cage is not None
        assert not state.scanner.visible

    def test_load_publishes(self, session, clips):
        rec = Recorder(session.event_bus, "load.start", "load.complete")
        generation = loaded(session, "low.wav")
        assert generation == 1
        assert session.published_generation == 1
        assert session.pcm is clips["low.wav"]
        assert session.matrix.shape == (128, 128)
        assert rec.of("load.start") == [{"generation": 1, "source": "low.wav"}]
        assert rec.of("load.complete") == [{"generation": 1, "source": "low.wav"}]

    def test_tick_builds_terrain_and_cage(self, session):
        loaded(session, "low.wav")
        state = session.tick(0.0)
        assert state.has_clip
        assert state.terrain.vertex_count == 128 * 128
        time_labels = [lbl.text for lbl in state.cage.labels if lbl.axis == "time"]
        # time counts down along +x: clip end at the origin corner
        assert time_labels[0] == "1"
        assert time_labels[-1] == "0"

    def test_mesh_rebuilt_only_on_new_matrix(self, session):
        loaded(session, "low.wav")
        first = session.tick(0.0).terrain
        assert session.tick(0.1).terrain is first
        loaded(session, "high.wav")
        assert session.tick(0.2).terrain is not first
        assert session.mesh_builder.reallocations == 1

    def test_earlier_snapshot_unchanged_by_next_load(self, session):
        loaded(session, "low.wav")
        old = session.tick(0.0)
        heights = old.terrain.heights.copy()
        colors = old.terrain.colors.copy()

        loaded(session, "high.wav")
        new = session.tick(0.1)

        assert new.matrix.source == "high.wav"
        assert old.matrix.source == "low.wav"
        np.testing.assert_array_equal(old.terrain.heights, heights)
        np.testing.assert_array_equal(old.terrain.colors, colors)
        assert not np.array_equal(new.terrain.heights, heights)

    def test_stale_load_is_discarded(self, clips):
        loader = GatedLoader(clips)
        with AnalyzerSession({"load_workers": 2}, loader=loader) as session:
            rec = Recorder(session.event_bus, "load.discarded")
            published = threading.Event()
            session.event_bus.subscribe(
                "load.complete", lambda generation, source: published.set())

            first = session.load("low.wav")
            assert loader.started["low.wav"].wait(5)
            second = session.load("high.wav")
            loader.release("high.wav")
            assert published.wait(5)
            loader.release("low.wav")
            assert session.wait(timeout=10)

            assert session.published_generation == second
            assert session.pcm is clips["high.wav"]
            assert rec.of("load.discarded") == [{"generation": first}]

    def test_stale_failure_is_discarded(self, clips):
        clips = dict(clips, **{"bad.wav": DecodeFailure("bad.wav", "not audio")})
        loader = GatedLoader(clips)
        with AnalyzerSession({"load_workers": 2}, loader=loader) as session:
            rec = Recorder(session.event_bus, "load.failed", "load.discarded")
            first = session.load("bad.wav")
            assert loader.started["bad.wav"].wait(5)
            second = session.load("high.wav")
            loader.release("high.wav")
            loader.release("bad.wav")
            assert session.wait(timeout=10)

            assert session.published_generation == second
            assert rec.of("load.failed") == []
            assert rec.of("load.discarded") == [{"generation": first}]

    def test_queued_load_is_cancelled(self, clips):
        clips = dict(clips, **{"mid.wav": clips["low.wav"]})
        loader = GatedLoader(clips)
        with AnalyzerSession({"load_workers": 1}, loader=loader) as session:
            session.load("low.wav")
            assert loader.started["low.wav"].wait(5)
            session.load("mid.wav")
            last = session.load("high.wav")
            loader.release("low.wav")
            loader.release("high.wav")
            assert session.wait(timeout=10)
            assert not loader.started["mid.wav"].is_set()
            assert session.published_generation == last

    def test_failure_keeps_previous_state(self, clips):
        def loader(source):
            if source == "broken.wav":
                raise DecodeFailure(source, "not audio")
            return clips[source]

        with AnalyzerSession(loader=loader) as session:
            rec = Recorder(session.event_bus, "load.failed")
            loaded(session, "low.wav")
            matrix = session.matrix
            loaded(session, "broken.wav")
            assert session.matrix is matrix
            assert session.published_generation == 1
            assert session.tick(0.0).matrix is matrix
            (failure,) = rec.of("load.failed")
            assert failure["generation"] == 2
            assert isinstance(failure["error"], DecodeFailure)

    def test_empty_input_fails(self):
        with AnalyzerSession(loader=lambda s: PCMBuffer(np.zeros(0), SR)) as session:
            rec = Recorder(session.event_bus, "load.failed")
            loaded(session, "empty.wav")
            assert session.matrix is None
            assert len(rec.of("load.failed")) == 1

    def test_unexpected_error_is_reported(self):
        def loader(source):
            raise KeyError(source)

        with AnalyzerSession(loader=loader) as session:
            rec = Recorder(session.event_bus, "load.failed")
            loaded(session, "x")
            assert isinstance(rec.of("load.failed")[0]["error"], KeyError)

    def test_default_loader_reads_files(self, sine_wav_file, tmp_path):
        with AnalyzerSession() as session:
            rec = Recorder(session.event_bus, "load.failed")
            loaded(session, sine_wav_file)
            assert session.pcm.samplerate == SR
            loaded(session, str(tmp_path / "missing.wav"))
            assert isinstance(rec.of("load.failed")[0]["error"], FetchFailure)
            assert session.pcm.source == sine_wav_file

    def test_closed_session_rejects_loads(self, session):
        session.close()
        with pytest.raises(RuntimeError):
            session.load("low.wav")


class TestPlayback:
    def test_play_without_clip_is_noop(self, session):
        assert session.play(0.0) is False
        assert not session.is_playing

    def test_half_time(self, session):
        loaded(session, "low.wav")
        assert session.play(now=10.0)
        state = session.tick(10.5)
        assert state.scanner.phase is ScanPhase.PLAYING
        assert state.scanner.progress == pytest.approx(0.5)
        assert state.scanner.time_index == 64
        assert state.clock.duration == pytest.approx(1.0)

    def test_scan_line_follows_audible_tone(self):
        # 440 Hz for the first second of a five second clip, then silence
        samples = np.concatenate([make_sine(440.0, seconds=1.0), np.zeros(4 * SR)])
        clip = PCMBuffer(samples, SR, source="tone-then-silence.wav")
        with AnalyzerSession(loader=lambda s: clip) as session:
            loaded(session, "tone-then-silence.wav")
            session.play(now=0.0)

            during_tone = session.tick(0.5)
            scan = during_tone.scanner
            assert scan.time_index == 115
            assert scan.line[:, 1].max() > 1.0

            # the line is the terrain row it sits on
            grid = during_tone.terrain.positions.reshape(128, 128, 3)
            cols = sample_columns(session.scanner.n_points, 128)
            np.testing.assert_allclose(scan.line[:, 0], grid[scan.time_index, 0, 0])
            np.testing.assert_allclose(scan.line[:, 1], grid[scan.time_index, cols, 1],
                                       rtol=1e-5, atol=1e-6)

            during_silence = session.tick(4.0).scanner
            assert during_silence.visible
            assert during_silence.line[:, 1].max() < 1e-6

    def test_finishes_after_duration(self, session):
        rec = Recorder(session.event_bus, "playback.finished")
        loaded(session, "low.wav")
        session.play(now=0.0)
        state = session.tick(1.5)
        assert not state.scanner.visible
        assert not session.is_playing
        session.tick(1.6)
        assert rec.of("playback.finished") == [{"generation": 1}]

    def test_play_twice_restarts(self, session):
        loaded(session, "low.wav")
        session.play(now=0.0)
        session.play(now=0.8)
        state = session.tick(0.8)
        assert state.scanner.progress == pytest.approx(0.0)
        assert state.clock.start_time == 0.8

    def test_stop_is_idempotent(self, session):
        rec = Recorder(session.event_bus, "playback.stop")
        loaded(session, "low.wav")
        session.play(now=0.0)
        assert session.stop() is True
        assert session.stop() is False
        assert len(rec.of("playback.stop")) == 1
        assert not session.tick(0.5).scanner.visible

    def test_load_stops_playback(self, session):
        loaded(session, "low.wav")
        session.play(now=0.0)
        session.load("high.wav")
        assert not session.is_playing
        session.wait(timeout=10)
        assert not session.tick(0.1).scanner.visible

    def test_playback_start_carries_clip(self, session, clips):
        rec = Recorder(session.event_bus, "playback.start")
        loaded(session, "low.wav")
        session.play(now=3.0)
        (event,) = rec.of("playback.start")
        assert event["pcm"] is clips["low.wav"]
        assert event["clock"].start_time == 3.0


class TestConfiguration:
    def test_invalid_config_rejected(self):
        with pytest.raises(ConfigError):
            AnalyzerSession({"volume_size": -1.0})

    def test_volume_size_scales_geometry(self, clips):
        with AnalyzerSession({"volume_size": 4.0},
                             loader=lambda s: clips[s]) as session:
            loaded(session, "low.wav")
            state = session.tick(0.0)
            assert state.terrain.bounds_max[0] == pytest.approx(4.0)
            assert state.cage.volume_size == 4.0

    def test_set_colors_rebuilds(self, session):
        loaded(session, "low.wav")
        before = session.tick(0.0).terrain.colors.copy()
        session.set_colors(["#ff0000", "#0000ff"])
        after = session.tick(0.1).terrain.colors
        assert not np.allclose(before, after)
        assert session.mesh_builder.reallocations == 1

    def test_set_colors_validates(self, session):
        with pytest.raises(ValueError):
            session.set_colors(["#ff0000", "#00ff00", "#0000ff"])
        with pytest.raises(ValueError):
            session.set_colors(["nope"])

    def test_empty_colors_restore_default(self, session):
        session.set_colors(["#ff0000"])
        session.set_colors([])
        assert session.colors == ["#81A596"]
