from __future__ import annotations

import math
import threading
from enum import Enum, auto
from typing import Optional

from models import PlaybackSnapshot, PlaybackStatus
from utils import clamp


def _clamp_volume(volume: float) -> float:
    volume = float(volume)
    if math.isnan(volume):
        return 0.0
    return clamp(volume, 0.0, 1.0)


class _Phase(Enum):
    IDLE = auto()
    LOADING = auto()
    STREAMING = auto()
    ENDED = auto()
    FAILED = auto()


class PlaybackState:
    """
    Everything the controller and the decode thread share, behind one lock.

    Updates coming from the decode thread carry the load generation they were
    started with; once a newer load has begun those updates are ignored.
    """

    def __init__(self, volume: float = 0.7):
        self._lock = threading.Lock()
        self._phase = _Phase.IDLE
        self._playing = False
        self._position_sec = 0.0
        self._duration_sec = 0.0
        self._volume = _clamp_volume(volume)
        self._error: Optional[str] = None
        self._generation = 0

    # ---------- Controller side ----------

    def begin_load(self, duration_sec: float) -> int:
        with self._lock:
            self._generation += 1
            self._phase = _Phase.LOADING
            self._position_sec = 0.0
            self._duration_sec = max(0.0, float(duration_sec))
            self._error = None
            return self._generation

    def reset(self) -> None:
        with self._lock:
            self._generation += 1
            self._phase = _Phase.IDLE
            self._playing = False
            self._position_sec = 0.0
            self._duration_sec = 0.0
            self._error = None

    def set_playing(self, playing: bool) -> None:
        with self._lock:
            self._playing = bool(playing)

    def set_volume(self, volume: float) -> float:
        with self._lock:
            self._volume = _clamp_volume(volume)
            return self._volume

    # ---------- Decode thread side ----------

    def is_current(self, generation: int) -> bool:
        with self._lock:
            return generation == self._generation

    def mark_streaming(self, generation: int) -> bool:
        with self._lock:
            if generation != self._generation or self._phase != _Phase.LOADING:
                return False
            self._phase = _Phase.STREAMING
            return True

    def advance(self, generation: int, seconds: float) -> None:
        with self._lock:
            if generation == self._generation:
                self._position_sec += seconds

    def finish(self, generation: int, error: Optional[str] = None) -> bool:
        with self._lock:
            if generation != self._generation:
                return False
            self._phase = _Phase.FAILED if error else _Phase.ENDED
            self._error = error
            return True

    # ---------- Readers ----------

    def is_playing(self) -> bool:
        with self._lock:
            return self._playing

    def volume(self) -> float:
        with self._lock:
            return self._volume

    def position(self) -> float:
        with self._lock:
            return self._position_sec

    def duration(self) -> float:
        with self._lock:
            return self._duration_sec

    def status(self) -> PlaybackStatus:
        with self._lock:
            return self._status_locked()

    def _status_locked(self) -> PlaybackStatus:
        if self._phase == _Phase.IDLE:
            return PlaybackStatus.IDLE
        if self._phase == _Phase.ENDED:
            return PlaybackStatus.ENDED
        if self._phase == _Phase.FAILED:
            return PlaybackStatus.FAILED
        if not self._playing:
            return PlaybackStatus.PAUSED
        if self._phase == _Phase.LOADING:
            return PlaybackStatus.LOADING
        return PlaybackStatus.PLAYING

    def snapshot(self) -> PlaybackSnapshot:
        with self._lock:
            return PlaybackSnapshot(
                status=self._status_locked(),
                position_sec=self._position_sec,
                duration_sec=self._duration_sec,
                volume=self._volume,
                error=self._error,
            )
