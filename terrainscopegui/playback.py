"""Clip playback through a sounddevice output stream."""

from __future__ import annotations

import logging

import numpy as np
import sounddevice as sd

from PySide6.QtCore import QObject, Signal, Slot

log = logging.getLogger(__name__)


class _ClipFeeder:
    """Stream callback copying consecutive blocks of one clip, then stopping."""

    def __init__(self, audio: np.ndarray):
        self.audio = audio
        self.position = 0

    def __call__(self, outdata, frames, time_info, status):
        chunk = self.audio[self.position:self.position + frames]
        n = len(chunk)
        outdata[:n] = chunk
        self.position += n
        if n < frames:
            outdata[n:] = 0
            raise sd.CallbackStop()


class PlaybackController(QObject):
    """Plays one clip at a time; the session's clock drives the scanner.

    Signals:
        playback_finished(): the clip played to its end.
        error(str): the output device could not be opened.
    """

    playback_finished = Signal()
    error = Signal(str)
    _audio_done = Signal()

    def __init__(self, parent=None):
        super().__init__(parent)
        self._stream: sd.OutputStream | None = None
        # queued across threads: the stream finishes on the audio thread
        self._audio_done.connect(self._on_finished)

    @property
    def is_playing(self) -> bool:
        return self._stream is not None and self._stream.active

    def play(self, samples: np.ndarray, samplerate: int) -> None:
        """Start *samples* from the top, replacing anything already playing."""
        self.stop()
        if samples is None or samples.size == 0:
            return

        audio = np.asarray(samples, dtype=np.float32).reshape(len(samples), -1)
        try:
            stream = sd.OutputStream(
                samplerate=samplerate,
                channels=audio.shape[1],
                dtype="float32",
                callback=_ClipFeeder(audio),
                finished_callback=self._audio_done.emit,
            )
            stream.start()
        except sd.PortAudioError as e:
            log.warning("Cannot open audio output: %s", e)
            self.error.emit(str(e))
            return
        self._stream = stream

    def stop(self) -> None:
        """Stop and close the stream.  No-op when nothing is playing."""
        stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            stream.stop()
            stream.close()
        except sd.PortAudioError as e:
            log.warning("Error closing audio stream: %s", e)

    @Slot()
    def _on_finished(self):
        # a stop() or a newer play() may have replaced the stream meanwhile
        if self._stream is not None and not self._stream.active:
            self._stream = None
            self.playback_finished.emit()
