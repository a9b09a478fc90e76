from __future__ import annotations

import threading
from collections import deque
from typing import Optional

import numpy as np

from models import QueuePolicy


class SampleQueue:
    """
    Thread-safe FIFO of mono float32 samples between the decoder and the UI tick.

    push(samples): appends a 1-D block
    drain(): atomically removes and returns everything queued

    Bounded at max_samples. DROP_OLDEST discards from the head (counted, see
    consume_dropped); BLOCK makes the producer wait for the consumer.
    """

    def __init__(self, max_samples: int, policy: QueuePolicy = QueuePolicy.DROP_OLDEST):
        self.max_samples = max(1, int(max_samples))
        self.policy = policy
        self._dq: deque[np.ndarray] = deque()
        self._samples = 0
        self._dropped = 0
        self._lock = threading.Lock()
        self._not_full = threading.Condition(self._lock)

    def clear(self) -> None:
        with self._not_full:
            self._dq.clear()
            self._samples = 0
            self._not_full.notify_all()

    def samples_available(self) -> int:
        with self._lock:
            return self._samples

    def push(self, samples: np.ndarray, stop_event: Optional[threading.Event] = None) -> None:
        if samples.size == 0:
            return
        if samples.dtype != np.float32:
            samples = samples.astype(np.float32, copy=False)
        if samples.ndim != 1:
            raise ValueError(f"samples must be 1-D float32, got {samples.shape} {samples.dtype}")
        if self.policy == QueuePolicy.BLOCK:
            self._push_blocking(samples, stop_event)
        else:
            self._push_dropping(samples)

    def _push_dropping(self, samples: np.ndarray) -> None:
        with self._lock:
            if samples.shape[0] >= self.max_samples:
                self._dropped += self._samples + samples.shape[0] - self.max_samples
                self._dq.clear()
                self._dq.append(samples[-self.max_samples:].copy())
                self._samples = self.max_samples
                return
            self._dq.append(samples)
            self._samples += samples.shape[0]
            excess = self._samples - self.max_samples
            while excess > 0:
                head = self._dq[0]
                if head.shape[0] <= excess:
                    self._dq.popleft()
                    take = head.shape[0]
                else:
                    self._dq[0] = head[excess:]
                    take = excess
                self._samples -= take
                self._dropped += take
                excess -= take

    def _push_blocking(self, samples: np.ndarray, stop_event: Optional[threading.Event]) -> None:
        offset = 0
        total = samples.shape[0]
        with self._not_full:
            while offset < total:
                if stop_event is not None and stop_event.is_set():
                    return
                space = self.max_samples - self._samples
                if space <= 0:
                    self._not_full.wait(timeout=0.05)
                    continue
                take = min(space, total - offset)
                self._dq.append(samples[offset : offset + take])
                self._samples += take
                offset += take

    def drain(self) -> np.ndarray:
        with self._not_full:
            if not self._dq:
                return np.zeros(0, dtype=np.float32)
            out = np.concatenate(list(self._dq))
            self._dq.clear()
            self._samples = 0
            self._not_full.notify_all()
        return out

    def consume_dropped(self) -> int:
        with self._lock:
            dropped = self._dropped
            self._dropped = 0
            return dropped


class AudioRingBuffer:
    """
    Thread-safe audio buffer as deque of numpy arrays, decoder -> sound card.

    push_blocking(frames): frames (n, ch) float32, waits while full
    pop_into(out): fills provided buffer, zero-padded on underrun
    """

    def __init__(self, channels: int, max_seconds: float, sample_rate: int):
        self.channels = channels
        self.sample_rate = sample_rate
        self.max_frames = max(1, int(max_seconds * sample_rate))
        self._dq: deque[np.ndarray] = deque()
        self._frames = 0
        self._underruns = 0
        self._lock = threading.Lock()
        self._not_full = threading.Condition(self._lock)

    def clear(self) -> None:
        with self._not_full:
            self._dq.clear()
            self._frames = 0
            self._not_full.notify_all()

    def frames_available(self) -> int:
        with self._lock:
            return self._frames

    def push_blocking(self, frames: np.ndarray, stop_event: Optional[threading.Event]) -> None:
        if frames.size == 0:
            return
        if frames.dtype != np.float32:
            frames = frames.astype(np.float32, copy=False)
        if frames.ndim == 1 and self.channels == 1:
            frames = frames.reshape(-1, 1)
        if frames.ndim != 2 or frames.shape[1] != self.channels:
            raise ValueError(f"frames must be (n,{self.channels}) float32, got {frames.shape} {frames.dtype}")

        offset = 0
        total = frames.shape[0]
        with self._not_full:
            while offset < total:
                if stop_event is not None and stop_event.is_set():
                    return
                space = self.max_frames - self._frames
                if space <= 0:
                    self._not_full.wait(timeout=0.05)
                    continue
                take = min(space, total - offset)
                self._dq.append(frames[offset : offset + take])
                self._frames += take
                offset += take

    def pop_into(self, out: np.ndarray) -> int:
        if out.ndim != 2 or out.shape[1] != self.channels:
            raise ValueError(f"out must be (n,{self.channels}) float32, got {out.shape} {out.dtype}")

        n = out.shape[0]
        if n <= 0:
            return 0

        idx = 0
        with self._not_full:
            while idx < n and self._dq:
                chunk = self._dq[0]
                take = min(n - idx, chunk.shape[0])
                out[idx : idx + take] = chunk[:take]
                idx += take
                if take == chunk.shape[0]:
                    self._dq.popleft()
                else:
                    self._dq[0] = chunk[take:, :]
                self._frames -= take
                self._not_full.notify_all()
            if idx < n:
                self._underruns += 1

        if idx < n:
            out[idx:n, :].fill(0)
        return idx

    def consume_underruns(self) -> int:
        with self._lock:
            underruns = self._underruns
            self._underruns = 0
            return underruns


class SampleWindow:
    """
    Fixed-capacity ring of the most recent mono samples.

    push(samples): oldest samples fall off once capacity is reached
    get_recent(n): most recent n samples in time order (a copy)
    """

    def __init__(self, capacity: int):
        self.capacity = max(1, int(capacity))
        self._buffer = np.zeros(self.capacity, dtype=np.float32)
        self._write_index = 0
        self._filled = 0

    def __len__(self) -> int:
        return self._filled

    def is_full(self) -> bool:
        return self._filled >= self.capacity

    def push(self, samples: np.ndarray) -> None:
        samples = np.asarray(samples, dtype=np.float32).reshape(-1)
        if samples.size == 0:
            return
        if samples.shape[0] > self.capacity:
            samples = samples[-self.capacity :]

        n = samples.shape[0]
        end = self._write_index + n
        if end <= self.capacity:
            self._buffer[self._write_index : end] = samples
        else:
            first = self.capacity - self._write_index
            self._buffer[self._write_index :] = samples[:first]
            self._buffer[: end - self.capacity] = samples[first:]
        self._write_index = end % self.capacity
        self._filled = min(self.capacity, self._filled + n)

    def get_recent(self, n: Optional[int] = None) -> np.ndarray:
        if self._filled < self.capacity:
            data = self._buffer[: self._filled]
        elif self._write_index == 0:
            data = self._buffer
        else:
            data = np.concatenate((self._buffer[self._write_index :], self._buffer[: self._write_index]))
        if n is not None and n > 0:
            data = data[-n:]
        return np.array(data, copy=True)
