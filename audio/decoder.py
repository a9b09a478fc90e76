from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

import numpy as np

from audio.errors import DecodeError, ResetRequired
from audio.source import AudioSource
from audio.state import PlaybackState
from buffers import AudioRingBuffer, SampleQueue
from config import PAUSE_POLL_SEC, REALTIME_LEAD_SEC
from dsp import apply_volume

logger = logging.getLogger(__name__)

# Decoder thread
# -----------------------------

class DecoderThread(threading.Thread):
    """
    Pulls blocks from an AudioSource, resamples, applies volume, pushes into
    the sample queue (and the output ring when a device is in use).

    state_cb(kind, msg) is called with "streaming", "ended" or "failed".
    """
    def __init__(self,
                 source: AudioSource,
                 queue: SampleQueue,
                 state: PlaybackState,
                 generation: int,
                 output_ring: Optional[AudioRingBuffer] = None,
                 pace_realtime: bool = False,
                 state_cb: Optional[Callable[[str, Optional[str]], None]] = None):
        super().__init__(daemon=True, name=f"Decoder-{generation}")
        self.source = source
        self.queue = queue
        self.state = state
        self.generation = generation
        self.output_ring = output_ring
        self.pace_realtime = bool(pace_realtime) and output_ring is None
        self.output_rate = source.target_rate
        self._state_cb = state_cb
        self._stop_event = threading.Event()
        self._clock_start: Optional[float] = None
        self._produced_sec = 0.0
        self._streaming = False

    def stop(self) -> None:
        self._stop_event.set()
        self.source.interrupt()

    def _notify(self, kind: str, msg: Optional[str] = None) -> None:
        if self._state_cb is not None:
            self._state_cb(kind, msg)

    def _pace(self, seconds: float) -> None:
        if not self.pace_realtime:
            return
        now = time.monotonic()
        if self._clock_start is None:
            self._clock_start = now
        self._produced_sec += seconds
        while not self._stop_event.is_set():
            ahead = self._produced_sec - (time.monotonic() - self._clock_start) - REALTIME_LEAD_SEC
            if ahead <= 0:
                break
            time.sleep(min(ahead, 0.05))

    def _emit(self, samples: np.ndarray) -> None:
        if samples.size == 0 or self._stop_event.is_set():
            return
        samples = apply_volume(samples, self.state.volume())
        # Ring first: the queue and position only see what the device has accepted.
        if self.output_ring is not None:
            self.output_ring.push_blocking(samples, stop_event=self._stop_event)
            if self._stop_event.is_set():
                return
        self.queue.push(samples, stop_event=self._stop_event)
        seconds = samples.shape[0] / float(self.output_rate)
        self.state.advance(self.generation, seconds)
        if not self._streaming:
            self._streaming = True
            if self.state.mark_streaming(self.generation):
                self._notify("streaming")
        self._pace(seconds)

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            if not self.state.is_playing():
                # Restart the pacing clock after a pause.
                self._clock_start = None
                self._produced_sec = 0.0
                time.sleep(PAUSE_POLL_SEC)
                continue

            try:
                block = self.source.next_block()
            except ResetRequired as e:
                logger.info("Decoder reset: %s", e)
                self.source.reset()
                continue

            if block is None:
                self._emit(self.source.flush())
                self.source.check_exit()
                if not self._stop_event.is_set():
                    logger.info("End of stream (generation %d)", self.generation)
                    if self.state.finish(self.generation):
                        self._notify("ended")
                return

            self._emit(self.source.resample(block))

    def run(self) -> None:
        try:
            self._run_loop()
        except DecodeError as e:
            if not self._stop_event.is_set():
                logger.warning("Decoder stopped: %s", e)
                if self.state.finish(self.generation, error=str(e)):
                    self._notify("failed", str(e))
        except Exception as e:
            logger.exception("Decoder thread failed")
            if self.state.finish(self.generation, error=f"Decoder error: {e}"):
                self._notify("failed", f"Decoder error: {e}")
        finally:
            self.source.close()
