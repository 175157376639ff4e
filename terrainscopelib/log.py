"""Debug tracing for terrainscope, switched on by ``TS_DEBUG=1``.

``dbg`` prints one stderr line per call, tagged with a wall-clock time
and the class (or module) that called it::

    [14:02:11.348 SpectrogramEngine] analyze clip.wav (44100 samples): 3.1 ms

``timed`` wraps a block and reports how long it took.  Both are free
when tracing is off.  Operational messages (load failures, config
writes) belong on the standard :mod:`logging` loggers instead.
"""

from __future__ import annotations

import os
import sys
import time
from contextlib import contextmanager
from datetime import datetime
from functools import lru_cache
from typing import Iterator


@lru_cache(maxsize=1)
def enabled() -> bool:
    return os.environ.get("TS_DEBUG", "").strip().lower() in ("1", "true")


def _origin(depth: int) -> str:
    frame = sys._getframe(depth + 1)
    owner = frame.f_locals.get("self")
    if owner is not None:
        return type(owner).__name__
    module = frame.f_globals.get("__name__") or "?"
    return module.rpartition(".")[2]


def _emit(msg: str, depth: int) -> None:
    stamp = datetime.now().strftime("%H:%M:%S.%f")[:-3]
    print(f"[{stamp} {_origin(depth + 1)}] {msg}", file=sys.stderr, flush=True)


def dbg(msg: str) -> None:
    """Trace *msg* if ``TS_DEBUG`` is set."""
    if enabled():
        _emit(msg, 1)


@contextmanager
def timed(label: str) -> Iterator[None]:
    """Trace ``label: N.N ms`` for the wrapped block."""
    if not enabled():
        yield
        return
    t0 = time.perf_counter()
    try:
        yield
    finally:
        _emit(f"{label}: {(time.perf_counter() - t0) * 1000:.1f} ms", 2)
