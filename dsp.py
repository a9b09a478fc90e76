from __future__ import annotations

import math
from typing import Optional

import numpy as np
from scipy.signal import windows

from audio.errors import ResampleError
from config import RESAMPLER_F_CUTOFF, RESAMPLER_OVERSAMPLING, RESAMPLER_SINC_LEN
from models import SampleFormat

# -----------------------------
# Sample format normalization
# -----------------------------

_NUMPY_DTYPES = {
    "u8": np.dtype("u1"),
    "u16": np.dtype("<u2"),
    "u32": np.dtype("<u4"),
    "s8": np.dtype("i1"),
    "s16": np.dtype("<i2"),
    "s32": np.dtype("<i4"),
    "f32": np.dtype("<f4"),
    "f64": np.dtype("<f8"),
}


def _unpack_24bit(data: bytes, frames: int, channels: int, signed: bool) -> np.ndarray:
    raw = np.frombuffer(data, dtype=np.uint8).reshape(frames, channels, 3)[:, 0, :].astype(np.int32)
    values = raw[:, 0] | (raw[:, 1] << 8) | (raw[:, 2] << 16)
    if signed:
        values = np.where(values >= (1 << 23), values - (1 << 24), values)
    return values


def normalize_first_channel(data: bytes, fmt: SampleFormat, channels: int) -> np.ndarray:
    """
    Interleaved native PCM -> first channel as float32.

    unsigned N-bit: v / 2^(N-1) - 1
    signed N-bit:   v / 2^(N-1)
    float32 passes through, float64 is narrowed.
    Trailing bytes that do not fill a whole frame are ignored.
    """
    channels = max(1, int(channels))
    frame_bytes = fmt.bytes_per_sample * channels
    frames = len(data) // frame_bytes
    if frames == 0:
        return np.zeros(0, dtype=np.float32)
    data = data[: frames * frame_bytes]

    if fmt.bits == 24:
        values = _unpack_24bit(data, frames, channels, signed=(fmt.kind == "s"))
    else:
        dtype = _NUMPY_DTYPES.get(fmt.label)
        if dtype is None:
            raise ValueError(f"Unsupported sample format: {fmt.label}")
        values = np.frombuffer(data, dtype=dtype).reshape(frames, channels)[:, 0]

    if fmt.kind == "f":
        return values.astype(np.float32)

    scale = float(2 ** (fmt.bits - 1))
    out = values.astype(np.float64) / scale
    if fmt.kind == "u":
        out -= 1.0
    return out.astype(np.float32)


def apply_volume(samples: np.ndarray, volume: float) -> np.ndarray:
    if samples.size == 0 or volume == 1.0:
        return samples
    if volume == 0.0:
        return np.zeros_like(samples)
    return samples * np.float32(volume)


# -----------------------------
# Streaming windowed-sinc resampler
# -----------------------------

class SincResampler:
    """
    Streaming mono resampler, ratio = output_rate / input_rate.

    The sinc kernel is tabulated with `oversampling` points per input sample
    under a Blackman-Harris window and evaluated with linear interpolation
    between table points. Input history is carried across calls, so blocks of
    any size can be fed; output lags input by sinc_len / 2 input samples until
    flush() drains the tail.
    """

    def __init__(
        self,
        ratio: float,
        sinc_len: int = RESAMPLER_SINC_LEN,
        f_cutoff: float = RESAMPLER_F_CUTOFF,
        oversampling: int = RESAMPLER_OVERSAMPLING,
    ):
        if not math.isfinite(ratio) or ratio <= 0:
            raise ValueError(f"Invalid resample ratio: {ratio}")
        self.ratio = float(ratio)
        self.sinc_len = max(2, int(sinc_len) // 2 * 2)
        self.oversampling = max(1, int(oversampling))
        self._half = self.sinc_len // 2
        self._step = 1.0 / self.ratio
        self._taps = np.arange(-self._half + 1, self._half + 1)

        cutoff = float(f_cutoff) * min(1.0, self.ratio)
        n_points = self.sinc_len * self.oversampling + 1
        x = np.linspace(-self._half, self._half, n_points)
        self._table = cutoff * np.sinc(cutoff * x) * windows.blackmanharris(n_points)
        self.reset()

    def reset(self) -> None:
        self._buffer = np.zeros(self.sinc_len, dtype=np.float32)
        self._pos = float(self.sinc_len)

    def _kernel(self, frac: np.ndarray) -> np.ndarray:
        dist = self._taps[None, :] - frac[:, None]
        u = (dist + self._half) * self.oversampling
        idx = np.clip(np.floor(u).astype(np.int64), 0, self._table.shape[0] - 2)
        w = u - idx
        return self._table[idx] * (1.0 - w) + self._table[idx + 1] * w

    def process(self, x: np.ndarray) -> np.ndarray:
        x = np.asarray(x)
        if x.ndim != 1:
            raise ResampleError(f"expected mono block, got shape {x.shape}")
        if x.size == 0:
            return np.zeros(0, dtype=np.float32)
        if not np.all(np.isfinite(x)):
            raise ResampleError("non-finite samples in block")

        buf = np.concatenate([self._buffer, x.astype(np.float32, copy=False)])
        last_base = buf.shape[0] - 1 - self._half
        limit = buf.shape[0] - self._half - self._pos
        n_out = int(math.ceil(limit / self._step)) + 1 if limit > 0 else 0

        out = np.zeros(0, dtype=np.float32)
        if n_out > 0:
            t = self._pos + np.arange(n_out) * self._step
            base = np.floor(t).astype(np.int64)
            valid = base <= last_base
            t = t[valid]
            base = base[valid]
            n_out = t.shape[0]
            if n_out:
                frac = t - base
                frames = buf[base[:, None] + self._taps[None, :]]
                out = np.sum(frames * self._kernel(frac), axis=1).astype(np.float32)

        next_pos = self._pos + n_out * self._step
        drop = max(0, int(math.floor(next_pos)) - self.sinc_len)
        self._buffer = buf[drop:]
        self._pos = next_pos - drop
        return out

    def flush(self) -> np.ndarray:
        """Push silence through the kernel to emit the samples still held back."""
        tail = self.process(np.zeros(self._half, dtype=np.float32))
        self.reset()
        return tail


def make_resampler(native_rate: int, target_rate: int) -> Optional[SincResampler]:
    if native_rate <= 0 or native_rate == target_rate:
        return None
    return SincResampler(target_rate / float(native_rate))
