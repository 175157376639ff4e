import numpy as np
import pytest
import requests

from terrainscopelib import audio
from terrainscopelib.audio import (
    DecodeFailure, EmptyInput, FetchFailure, decode_audio, fetch_bytes,
    format_duration, is_url, load_audio, to_mono,
)

from conftest import SR, make_sine, wav_bytes


class FakeResponse:
    def __init__(self, status_code, content=b""):
        self.status_code = status_code
        self.content = content


def test_is_url():
    assert is_url("https://example.com/clip.ogg")
    assert is_url("HTTP://example.com/clip.ogg")
    assert not is_url("/tmp/clip.wav")


def test_decode_wav(sine_wav):
    pcm = decode_audio(sine_wav, "sine.wav")
    assert pcm.samplerate == SR
    assert len(pcm) == SR
    assert pcm.samples.dtype == np.float64
    assert np.max(np.abs(pcm.samples)) == pytest.approx(0.5, abs=1e-3)
    assert pcm.source == "sine.wav"


def test_decode_mixes_to_mono():
    pcm = decode_audio(wav_bytes(make_sine(), channels=2))
    assert pcm.samples.ndim == 1
    assert len(pcm) == SR


def test_to_mono_averages_channels():
    data = np.array([[1.0, 0.0], [0.5, 0.5]])
    np.testing.assert_allclose(to_mono(data), [0.5, 0.5])


def test_decode_garbage_fails():
    with pytest.raises(DecodeFailure):
        decode_audio(b"definitely not audio", "junk.bin")


def test_decode_empty_clip():
    with pytest.raises(EmptyInput):
        decode_audio(wav_bytes(np.zeros(0)), "empty.wav")


def test_load_local_file(sine_wav_file):
    pcm = load_audio(sine_wav_file)
    assert pcm.samplerate == SR
    assert pcm.source == sine_wav_file


def test_missing_file(tmp_path):
    with pytest.raises(FetchFailure):
        fetch_bytes(str(tmp_path / "nope.wav"))


def test_url_fetch(monkeypatch, sine_wav):
    calls = []

    def fake_get(url, timeout):
        calls.append((url, timeout))
        return FakeResponse(200, sine_wav)

    monkeypatch.setattr(audio.requests, "get", fake_get)
    pcm = load_audio("https://example.com/sine.wav", timeout=3.0)
    assert calls == [("https://example.com/sine.wav", 3.0)]
    assert len(pcm) == SR


def test_url_http_error(monkeypatch):
    monkeypatch.setattr(audio.requests, "get",
                        lambda url, timeout: FakeResponse(404))
    with pytest.raises(FetchFailure, match="404"):
        fetch_bytes("https://example.com/missing.wav")


def test_url_network_error(monkeypatch):
    def fake_get(url, timeout):
        raise requests.ConnectionError("connection refused")

    monkeypatch.setattr(audio.requests, "get", fake_get)
    with pytest.raises(FetchFailure, match="connection refused"):
        fetch_bytes("http://example.com/clip.wav")


def test_format_duration():
    assert format_duration(SR * 61 + SR // 2, SR) == "01:01.500"
    assert format_duration(100, 0) == "00:00.000"
