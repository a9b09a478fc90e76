"""Shared fixtures: in-memory PCM readers so no ffmpeg or audio device is needed."""

from __future__ import annotations

import time

import numpy as np
import pytest

from audio.errors import DecodeError
from audio.source import AudioSource
from models import S16, StreamInfo


class FakePcmReader:
    def __init__(
        self,
        data: bytes,
        chunk_bytes: int | None = None,
        reset_on_reads: tuple[int, ...] = (),
        fail_on_read: int | None = None,
        exit_error: str | None = None,
    ):
        self.data = data
        self.chunk_bytes = chunk_bytes
        self.reset_on_reads = set(reset_on_reads)
        self.fail_on_read = fail_on_read
        self._exit_error = exit_error
        self.offset = 0
        self.reads = 0
        self.terminated = False
        self.closed = False

    def read(self, nbytes: int) -> bytes:
        self.reads += 1
        if self.fail_on_read is not None and self.reads >= self.fail_on_read:
            raise DecodeError("corrupt packet")
        if self.terminated:
            return b""
        if self.chunk_bytes is not None:
            nbytes = min(nbytes, self.chunk_bytes)
        chunk = self.data[self.offset : self.offset + nbytes]
        self.offset += len(chunk)
        return chunk

    def consume_reset(self) -> bool:
        if self.reads in self.reset_on_reads:
            self.reset_on_reads.discard(self.reads)
            return True
        return False

    def exit_error(self):
        return self._exit_error

    def terminate(self) -> None:
        self.terminated = True

    def close(self) -> None:
        self.closed = True


def s16_bytes(values, channels: int = 1) -> bytes:
    mono = np.asarray(values, dtype=np.int16)
    frames = np.repeat(mono[:, None], channels, axis=1)
    return frames.astype("<i2").tobytes()


@pytest.fixture
def make_source():
    """Factory: (samples as int16, rate, channels, **reader kwargs) -> (AudioSource, reader)."""

    def _make(values, sample_rate: int = 48000, channels: int = 1, block_frames: int = 256, **reader_kwargs):
        info = StreamInfo(
            index=0,
            codec_name="pcm_s16le",
            sample_rate=sample_rate,
            channels=channels,
            sample_format=S16,
            n_frames=len(values),
        )
        reader = FakePcmReader(s16_bytes(values, channels), **reader_kwargs)
        return AudioSource(info, reader, target_rate=48000, block_frames=block_frames), reader

    return _make


def wait_for(predicate, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()


@pytest.fixture
def wait():
    return wait_for


@pytest.fixture(scope="session")
def qapp():
    from PySide6 import QtCore

    app = QtCore.QCoreApplication.instance()
    if app is None:
        app = QtCore.QCoreApplication([])
    return app
