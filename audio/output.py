from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Optional

import numpy as np

try:
    import sounddevice as sd
    _sounddevice_import_error = None
except Exception as e:
    sd = None
    _sounddevice_import_error = e

from audio.errors import NoOutputDevice, NoSupportedConfig
from buffers import AudioRingBuffer
from config import (
    OUTPUT_BLOCKSIZE_FRAMES,
    OUTPUT_LATENCY,
    OUTPUT_MAX_CHANNELS,
    OUTPUT_RING_SECONDS,
    TARGET_SAMPLE_RATE,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OutputConfig:
    device: Optional[int]
    device_name: str
    channels: int
    sample_rate: int


def negotiate_output_config(
    device: Optional[int] = None,
    sample_rate: int = TARGET_SAMPLE_RATE,
) -> OutputConfig:
    """Default (or given) output device, first channel layout it accepts at sample_rate."""
    if sd is None:
        raise NoOutputDevice(f"sounddevice not available: {_sounddevice_import_error}")
    try:
        info = sd.query_devices(device, kind="output")
    except (sd.PortAudioError, ValueError) as e:
        raise NoOutputDevice(f"No output device available: {e}") from e
    max_channels = int(info.get("max_output_channels", 0))
    if max_channels <= 0:
        raise NoOutputDevice(f"Device has no output channels: {info.get('name', '?')}")

    last_error: Optional[Exception] = None
    for channels in range(min(OUTPUT_MAX_CHANNELS, max_channels), 0, -1):
        try:
            sd.check_output_settings(
                device=device,
                channels=channels,
                samplerate=sample_rate,
                dtype="float32",
            )
        except (sd.PortAudioError, ValueError) as e:
            last_error = e
            continue
        return OutputConfig(
            device=device,
            device_name=str(info.get("name", "")),
            channels=channels,
            sample_rate=sample_rate,
        )
    raise NoSupportedConfig(f"No supported configs at {sample_rate} Hz: {last_error}")


class AudioOutput:
    """
    PortAudio callback stream playing the mono decoder output on every device channel.
    """

    def __init__(self, config: OutputConfig):
        self.config = config
        self.ring = AudioRingBuffer(1, max_seconds=OUTPUT_RING_SECONDS, sample_rate=config.sample_rate)
        self._stream = None
        self._paused = threading.Event()
        self._paused.set()
        self._callback_underflows = 0

    def set_paused(self, paused: bool) -> None:
        if paused:
            self._paused.set()
        else:
            self._paused.clear()

    def consume_underflows(self) -> int:
        count = self._callback_underflows
        self._callback_underflows = 0
        return count

    def _callback(self, outdata, frames, time_info, status) -> None:
        if status and getattr(status, "output_underflow", False):
            self._callback_underflows += 1
        if self._paused.is_set():
            outdata.fill(0)
            return
        mono = np.zeros((frames, 1), dtype=np.float32)
        self.ring.pop_into(mono)
        outdata[:] = mono

    def ensure_stream(self) -> None:
        if self._stream is not None:
            if not self._stream.active:
                self._stream.start()
            return
        try:
            self._stream = sd.OutputStream(
                samplerate=self.config.sample_rate,
                channels=self.config.channels,
                dtype="float32",
                blocksize=OUTPUT_BLOCKSIZE_FRAMES,
                latency=OUTPUT_LATENCY,
                device=self.config.device,
                callback=self._callback,
            )
            self._stream.start()
        except (sd.PortAudioError, ValueError) as e:
            self._stream = None
            raise NoSupportedConfig(f"Audio output error: {e}") from e
        logger.info(
            "Output stream open: %s, %d ch @ %d Hz",
            self.config.device_name or "default",
            self.config.channels,
            self.config.sample_rate,
        )

    def close(self) -> None:
        if self._stream is None:
            return
        try:
            self._stream.stop()
            self._stream.close()
        except sd.PortAudioError as e:
            logger.warning("Closing output stream failed: %s", e)
        self._stream = None
