from __future__ import annotations

import colorsys
import math
import time
from typing import Callable, Tuple

import numpy as np

from buffers import SampleWindow
from config import (
    BAR_COUNT,
    BAR_SMOOTHING,
    BASS_BIN_FRACTION,
    BEAT_DECAY,
    BEAT_MIN_INTERVAL_SEC,
    BEAT_THRESHOLD,
    FFT_SIZE,
    HUE_BASE_SPEED,
    HUE_BEAT_SPEED,
)
from utils import clamp


def hsv_to_rgb(h: float, s: float, v: float) -> Tuple[int, int, int]:
    """Hue in degrees, saturation/value in [0, 1] -> 8-bit RGB (truncated)."""
    r, g, b = colorsys.hsv_to_rgb((h % 360.0) / 360.0, clamp(s, 0.0, 1.0), clamp(v, 0.0, 1.0))
    return int(r * 255.0), int(g * 255.0), int(b * 255.0)


def bucket_bounds(n_bins: int, bar_count: int) -> np.ndarray:
    """Start/end bin of each bar; equal ranges with the remainder in the last bar."""
    per_bar = n_bins // bar_count
    edges = np.arange(bar_count + 1) * per_bar
    edges[-1] = n_bins
    return edges


class SpectrumAnalyzer:
    """
    Sliding-window FFT bars, bass-driven beat intensity and a rotating hue.

    Call add_samples() with whatever the decoder produced since the last tick,
    then update_spectrum() once per tick. Until a full window has arrived the
    previous bars are kept as they are.
    """

    def __init__(
        self,
        fft_size: int = FFT_SIZE,
        bar_count: int = BAR_COUNT,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.fft_size = int(fft_size)
        self.bar_count = int(bar_count)
        self._clock = clock
        self._window = SampleWindow(self.fft_size)
        self._fft_window = np.hanning(self.fft_size).astype(np.float32)
        self._n_bins = self.fft_size // 2
        self._bin_edges = bucket_bounds(self._n_bins, self.bar_count)
        self._bass_bins = max(1, self._n_bins // BASS_BIN_FRACTION)
        self._bars = np.zeros(self.bar_count, dtype=np.float32)
        self._beat_intensity = 0.0
        self._rainbow_hue = 0.0
        self._last_beat_time = self._clock()

    def add_samples(self, samples) -> None:
        # Non-finite samples would stick in the smoothed bars for good.
        samples = np.nan_to_num(np.asarray(samples, dtype=np.float32), nan=0.0, posinf=0.0, neginf=0.0)
        self._window.push(samples)

    def update_spectrum(self) -> None:
        if not self._window.is_full():
            return

        frame = self._window.get_recent(self.fft_size) * self._fft_window
        spectrum = np.fft.rfft(frame)
        magnitudes = np.abs(spectrum[: self._n_bins])
        peak = float(np.max(magnitudes))
        if peak > 0:
            magnitudes /= peak

        self._update_bars(magnitudes)
        self._detect_beat(magnitudes)
        self._rotate_hue()

    def _update_bars(self, magnitudes: np.ndarray) -> None:
        edges = self._bin_edges
        levels = np.zeros(self.bar_count, dtype=np.float32)
        for i in range(self.bar_count):
            start = edges[i]
            end = edges[i + 1]
            if end > start:
                levels[i] = float(np.mean(magnitudes[start:end]))
        self._bars = self._bars * BAR_SMOOTHING + levels * (1.0 - BAR_SMOOTHING)

    def _detect_beat(self, magnitudes: np.ndarray) -> None:
        bass_energy = math.sqrt(float(np.sum(magnitudes[: self._bass_bins])))
        now = self._clock()
        if bass_energy > BEAT_THRESHOLD and (now - self._last_beat_time) >= BEAT_MIN_INTERVAL_SEC:
            self._beat_intensity = min(1.0, bass_energy - BEAT_THRESHOLD)
            self._last_beat_time = now
        else:
            self._beat_intensity *= BEAT_DECAY

    def _rotate_hue(self) -> None:
        speed = HUE_BASE_SPEED + self._beat_intensity * HUE_BEAT_SPEED
        self._rainbow_hue = (self._rainbow_hue + speed) % 360.0

    def get_spectrum_bars(self) -> np.ndarray:
        return self._bars.copy()

    def get_beat_intensity(self) -> float:
        return float(self._beat_intensity)

    def get_rainbow_hue(self) -> float:
        return float(self._rainbow_hue)

    def rainbow_bar_color(self, index: int, active: bool) -> Tuple[int, int, int]:
        beat = self._beat_intensity
        hue = (self._rainbow_hue + index * 10.0) % 360.0
        saturation = 0.8 + beat * 0.2
        value = 0.9 + beat * 0.1 if active else 0.3
        return hsv_to_rgb(hue, saturation, value)
