import io
import threading

import numpy as np
import pytest
import soundfile as sf

from terrainscopelib.models import PCMBuffer

SR = 22050


def make_sine(freq=440.0, seconds=1.0, sr=SR, amp=0.5):
    t = np.arange(int(seconds * sr)) / sr
    return amp * np.sin(2 * np.pi * freq * t)


def wav_bytes(samples, sr=SR, channels=1):
    data = np.asarray(samples, dtype=np.float64)
    if channels > 1:
        data = np.column_stack([data] * channels)
    buf = io.BytesIO()
    sf.write(buf, data, sr, format="WAV", subtype="PCM_16")
    return buf.getvalue()


@pytest.fixture
def sine_pcm():
    return PCMBuffer(make_sine(), SR, source="sine.wav")


@pytest.fixture
def silent_pcm():
    return PCMBuffer(np.zeros(SR), SR, source="silence.wav")


@pytest.fixture
def short_pcm():
    # shorter than one analysis window
    return PCMBuffer(make_sine(seconds=0.01), SR, source="short.wav")


@pytest.fixture
def sine_wav():
    return wav_bytes(make_sine())


@pytest.fixture
def sine_wav_file(tmp_path):
    path = tmp_path / "sine.wav"
    path.write_bytes(wav_bytes(make_sine()))
    return str(path)


class GatedLoader:
    """Loader whose calls block until the test releases them by source."""

    def __init__(self, clips):
        self.clips = clips
        self.gates = {name: threading.Event() for name in clips}
        self.started = {name: threading.Event() for name in clips}

    def release(self, source):
        self.gates[source].set()

    def __call__(self, source):
        self.started[source].set()
        if not self.gates[source].wait(timeout=10):
            raise TimeoutError(f"gate for {source} never opened")
        clip = self.clips[source]
        if isinstance(clip, Exception):
            raise clip
        return clip


@pytest.fixture
def clips():
    return {
        "low.wav": PCMBuffer(make_sine(220.0), SR, source="low.wav"),
        "high.wav": PCMBuffer(make_sine(4000.0, seconds=2.0), SR, source="high.wav"),
    }
