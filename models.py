from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import Optional


class QueuePolicy(Enum):
    DROP_OLDEST = "drop_oldest"
    BLOCK = "block"

    @classmethod
    def from_setting(cls, value: str) -> "QueuePolicy":
        for policy in cls:
            if policy.value == value.strip().lower():
                return policy
        return cls.DROP_OLDEST


class PlaybackStatus(Enum):
    IDLE = auto()
    LOADING = auto()
    PLAYING = auto()
    PAUSED = auto()
    ENDED = auto()
    FAILED = auto()


@dataclass(frozen=True)
class PlaybackSnapshot:
    status: PlaybackStatus
    position_sec: float
    duration_sec: float
    volume: float
    error: Optional[str] = None


@dataclass(frozen=True)
class SampleFormat:
    """
    Native PCM sample layout as delivered by ffmpeg's raw muxers.

    kind: "u" (unsigned int), "s" (signed int) or "f" (IEEE float)
    """
    kind: str
    bits: int
    ffmpeg_format: str

    @property
    def bytes_per_sample(self) -> int:
        return self.bits // 8

    @property
    def label(self) -> str:
        return f"{self.kind}{self.bits}"


U8 = SampleFormat("u", 8, "u8")
U16 = SampleFormat("u", 16, "u16le")
U24 = SampleFormat("u", 24, "u24le")
U32 = SampleFormat("u", 32, "u32le")
S8 = SampleFormat("s", 8, "s8")
S16 = SampleFormat("s", 16, "s16le")
S24 = SampleFormat("s", 24, "s24le")
S32 = SampleFormat("s", 32, "s32le")
F32 = SampleFormat("f", 32, "f32le")
F64 = SampleFormat("f", 64, "f64le")


@dataclass(frozen=True)
class StreamInfo:
    index: int
    codec_name: str
    sample_rate: int
    channels: int
    sample_format: SampleFormat
    n_frames: Optional[int] = None

    @property
    def frame_bytes(self) -> int:
        return self.channels * self.sample_format.bytes_per_sample

    @property
    def duration_sec(self) -> float:
        if not self.n_frames or self.sample_rate <= 0:
            return 0.0
        return self.n_frames / float(self.sample_rate)
