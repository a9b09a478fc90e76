from __future__ import annotations

import logging
import time
from typing import Callable, Optional

import numpy as np
from PySide6 import QtCore

from audio.decoder import DecoderThread
from audio.errors import PlayerError
from audio.output import AudioOutput, negotiate_output_config
from audio.source import AudioSource, open_source
from audio.state import PlaybackState
from buffers import SampleQueue
from config import (
    DEBUG_METRICS,
    DECODER_JOIN_TIMEOUT_SEC,
    SAMPLE_QUEUE_POLICY,
    SAMPLE_QUEUE_SECONDS,
    TARGET_SAMPLE_RATE,
)
from models import PlaybackSnapshot, PlaybackStatus, QueuePolicy

logger = logging.getLogger(__name__)

SourceFactory = Callable[[str, int], AudioSource]


# -----------------------------
# Playback controller
# -----------------------------

class PlaybackController(QtCore.QObject):
    stateChanged = QtCore.Signal(object)    # PlaybackStatus
    errorOccurred = QtCore.Signal(str)
    durationChanged = QtCore.Signal(float)

    def __init__(
        self,
        sample_rate: int = TARGET_SAMPLE_RATE,
        enable_output: bool = True,
        output_device: Optional[int] = None,
        source_factory: Optional[SourceFactory] = None,
        queue_policy: Optional[QueuePolicy] = None,
        queue_seconds: Optional[float] = None,
        pace_realtime: bool = True,
        volume: float = 0.7,
        metrics_enabled: bool = False,
        parent=None,
    ):
        super().__init__(parent)
        self.sample_rate = int(sample_rate)
        # Init errors (NoOutputDevice / NoSupportedConfig) propagate to the caller.
        self._output: Optional[AudioOutput] = None
        if enable_output:
            self._output = AudioOutput(negotiate_output_config(output_device, self.sample_rate))

        self._source_factory: SourceFactory = source_factory or open_source
        self._pace_realtime = bool(pace_realtime)
        queue_seconds = SAMPLE_QUEUE_SECONDS if queue_seconds is None else float(queue_seconds)
        self._queue = SampleQueue(
            max_samples=int(queue_seconds * self.sample_rate),
            policy=queue_policy or SAMPLE_QUEUE_POLICY,
        )
        self._state = PlaybackState(volume=volume)
        self._decoder: Optional[DecoderThread] = None
        self._last_status = PlaybackStatus.IDLE

        self._metrics_enabled = bool(metrics_enabled) or DEBUG_METRICS
        self._metrics_last_log = time.monotonic()

    # ---------- Loading ----------

    def load(self, path: str) -> None:
        """
        Probe and open path, then start decoding it on a fresh thread.

        Raises a PlayerError subclass on failure; the current track (if any)
        keeps playing in that case.
        """
        try:
            if self._output is not None:
                self._output.ensure_stream()
            source = self._source_factory(path, self.sample_rate)
        except PlayerError as e:
            logger.warning("Load failed for %s: %s", path, e)
            self.errorOccurred.emit(str(e))
            raise

        self._stop_decoder()
        self._queue.clear()
        if self._output is not None:
            self._output.ring.clear()

        generation = self._state.begin_load(source.duration_sec)
        logger.info(
            "Loaded %s (%d Hz, %d ch, %s, %.2fs) generation=%d",
            path,
            source.info.sample_rate,
            source.info.channels,
            source.info.sample_format.label,
            source.duration_sec,
            generation,
        )

        def state_cb(kind, msg):
            if not self._state.is_current(generation):
                return
            if kind == "failed":
                self.errorOccurred.emit(msg or "Unknown error")
            self._emit_state()

        self._decoder = DecoderThread(
            source=source,
            queue=self._queue,
            state=self._state,
            generation=generation,
            output_ring=self._output.ring if self._output is not None else None,
            pace_realtime=self._pace_realtime,
            state_cb=state_cb,
        )
        self._decoder.start()
        self.durationChanged.emit(source.duration_sec)
        self._emit_state()

    def _stop_decoder(self) -> None:
        decoder = self._decoder
        self._decoder = None
        if decoder is None:
            return
        decoder.stop()
        # Unblock a producer waiting on a full buffer.
        self._queue.clear()
        if self._output is not None:
            self._output.ring.clear()
        decoder.join(timeout=DECODER_JOIN_TIMEOUT_SEC)
        if decoder.is_alive():
            logger.warning("Decoder %s did not stop within %.1fs", decoder.name, DECODER_JOIN_TIMEOUT_SEC)

    # ---------- Transport ----------

    def play(self) -> None:
        self._state.set_playing(True)
        if self._output is not None:
            self._output.set_paused(False)
        self._emit_state()

    def pause(self) -> None:
        self._state.set_playing(False)
        if self._output is not None:
            self._output.set_paused(True)
        self._emit_state()

    def toggle_playback(self) -> None:
        if self._state.is_playing():
            self.pause()
        else:
            self.play()

    def is_playing(self) -> bool:
        return self._state.is_playing()

    def stop(self) -> None:
        self._stop_decoder()
        self._state.reset()
        self._queue.clear()
        if self._output is not None:
            self._output.set_paused(True)
        self._emit_state()

    def close(self) -> None:
        self.stop()
        if self._output is not None:
            self._output.close()

    def set_volume(self, v: float) -> None:
        self._state.set_volume(v)

    def get_volume(self) -> float:
        return self._state.volume()

    # ---------- Snapshots ----------

    def get_samples(self) -> np.ndarray:
        """Everything decoded since the previous call (destructive, non-blocking)."""
        return self._queue.drain()

    def get_position(self) -> float:
        return self._state.position()

    def get_duration(self) -> float:
        return self._state.duration()

    def snapshot(self) -> PlaybackSnapshot:
        return self._state.snapshot()

    def status(self) -> PlaybackStatus:
        return self._state.status()

    def _emit_state(self) -> None:
        status = self._state.status()
        if status != self._last_status:
            self._last_status = status
            self.stateChanged.emit(status)

    def log_metrics_if_needed(self) -> None:
        now = time.monotonic()
        elapsed = now - self._metrics_last_log
        if elapsed < 1.0:
            return
        self._metrics_last_log = now
        dropped = self._queue.consume_dropped()
        underruns = 0
        underflows = 0
        if self._output is not None:
            underruns = self._output.ring.consume_underruns()
            underflows = self._output.consume_underflows()
        if dropped:
            logger.warning("Sample queue dropped %d samples (consumer too slow)", dropped)
        if self._metrics_enabled:
            logger.info(
                "Audio metrics: queue=%d samples dropped=%.0f/s ring_underruns=%.2f/s "
                "cb_underflows=%.2f/s position=%.2fs",
                self._queue.samples_available(),
                dropped / elapsed,
                underruns / elapsed,
                underflows / elapsed,
                self._state.position(),
            )
