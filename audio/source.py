from __future__ import annotations

import json
import logging
import os
import re
import subprocess
import threading
from collections import deque
from typing import List, Optional

import numpy as np

from audio.errors import (
    DecodeError,
    DecoderInitFailure,
    NoSupportedTrack,
    ProbeFailure,
    ResampleError,
    ResetRequired,
)
from config import DECODE_BLOCK_FRAMES, TARGET_SAMPLE_RATE
from dsp import make_resampler, normalize_first_channel
from models import F32, F64, S16, S24, S32, U8, SampleFormat, StreamInfo
from utils import have_exe, safe_float, safe_int

logger = logging.getLogger(__name__)

# -----------------------------
# Probing
# -----------------------------

_NULL_CODECS = {"", "none", "unknown"}

_SAMPLE_FMT_MAP = {
    "u8": U8,
    "u8p": U8,
    "s16": S16,
    "s16p": S16,
    "flt": F32,
    "fltp": F32,
    "dbl": F64,
    "dblp": F64,
    "s64": F64,
    "s64p": F64,
}


def native_sample_format(stream: dict) -> SampleFormat:
    sample_fmt = str(stream.get("sample_fmt") or "").lower()
    if sample_fmt in ("s32", "s32p"):
        if safe_int(stream.get("bits_per_raw_sample"), 0) == 24:
            return S24
        return S32
    return _SAMPLE_FMT_MAP.get(sample_fmt, F32)


def _parse_time_base(value) -> float:
    text = str(value or "")
    if "/" in text:
        num_str, den_str = text.split("/", 1)
        num = safe_float(num_str, 0.0)
        den = safe_float(den_str, 0.0)
        if den > 0:
            return num / den
        return 0.0
    return safe_float(text, 0.0)


def stream_frame_count(stream: dict, sample_rate: int) -> Optional[int]:
    duration_ts = safe_int(stream.get("duration_ts"), 0)
    time_base = _parse_time_base(stream.get("time_base"))
    if duration_ts > 0 and time_base > 0:
        return int(round(duration_ts * time_base * sample_rate))
    duration = safe_float(str(stream.get("duration", "0")), 0.0)
    if duration > 0:
        return int(round(duration * sample_rate))
    return None


def parse_probe_output(data: dict) -> StreamInfo:
    """Pick the first audio stream with a real codec from ffprobe -show_streams JSON."""
    streams = data.get("streams", []) or []
    for fallback_idx, stream in enumerate(streams):
        if stream.get("codec_type") != "audio":
            continue
        codec_name = str(stream.get("codec_name") or "").strip()
        if codec_name.lower() in _NULL_CODECS:
            continue
        sample_rate = safe_int(stream.get("sample_rate"), 0)
        if sample_rate <= 0:
            sample_rate = TARGET_SAMPLE_RATE
        channels = max(1, safe_int(stream.get("channels"), 0))
        idx_val = stream.get("index")
        return StreamInfo(
            index=idx_val if isinstance(idx_val, int) else fallback_idx,
            codec_name=codec_name,
            sample_rate=sample_rate,
            channels=channels,
            sample_format=native_sample_format(stream),
            n_frames=stream_frame_count(stream, sample_rate),
        )
    raise NoSupportedTrack("No supported audio tracks")


def probe_stream(path: str) -> StreamInfo:
    if not path or not os.path.isfile(path):
        raise ProbeFailure(f"File not found: {path}")
    if not have_exe("ffprobe"):
        raise ProbeFailure("ffprobe not found in PATH.")
    cmd = [
        "ffprobe",
        "-v",
        "error",
        "-print_format",
        "json",
        "-show_streams",
        path,
    ]
    try:
        p = subprocess.run(cmd, capture_output=True, text=True, check=False)
    except OSError as e:
        raise ProbeFailure(f"Failed to start ffprobe: {e}") from e
    if p.returncode != 0:
        detail = (p.stderr or "").strip().splitlines()
        raise ProbeFailure(f"ffprobe failed for {path}: {detail[-1] if detail else p.returncode}")
    try:
        data = json.loads(p.stdout or "{}")
    except ValueError as e:
        raise ProbeFailure(f"Unreadable ffprobe output for {path}: {e}") from e
    return parse_probe_output(data)


# -----------------------------
# FFmpeg decoding
# -----------------------------

def make_ffmpeg_cmd(path: str, info: StreamInfo) -> List[str]:
    # Native rate, channels and sample format; resampling happens in-process.
    return [
        "ffmpeg", "-hide_banner", "-nostdin", "-nostats",
        "-loglevel", "info",
        "-i", path,
        "-map", f"0:{info.index}",
        "-vn",
        "-f", info.sample_format.ffmpeg_format,
        "pipe:1",
    ]


class FfmpegPcmReader:
    """
    Raw PCM from an ffmpeg subprocess.

    A stderr watcher flags mid-stream format changes so the decode loop can
    reset its state, and keeps the last lines for error reports.
    """

    _FORMAT_CHANGE = re.compile(r"frame changed from|parameters changed", re.IGNORECASE)

    def __init__(self, cmd: List[str]):
        try:
            self._proc = subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except OSError as e:
            raise DecoderInitFailure(f"Failed to start ffmpeg: {e}") from e
        if self._proc.stdout is None:
            self.close()
            raise DecoderInitFailure("ffmpeg stdout not available")
        self._reset_flag = threading.Event()
        self._stderr_tail: deque[str] = deque(maxlen=20)
        self._stderr_thread: Optional[threading.Thread] = None
        if self._proc.stderr is not None:
            self._stderr_thread = threading.Thread(
                target=self._stderr_reader,
                args=(self._proc.stderr,),
                daemon=True,
            )
            self._stderr_thread.start()

    def _stderr_reader(self, stderr) -> None:
        try:
            for raw_line in iter(stderr.readline, b""):
                line = raw_line.decode("utf-8", errors="ignore").strip()
                if not line:
                    continue
                self._stderr_tail.append(line)
                if self._FORMAT_CHANGE.search(line):
                    self._reset_flag.set()
        except (OSError, ValueError):
            return

    def read(self, nbytes: int) -> bytes:
        try:
            return self._proc.stdout.read(nbytes)
        except (OSError, ValueError) as e:
            raise DecodeError(f"ffmpeg read failed: {e}") from e

    def consume_reset(self) -> bool:
        if self._reset_flag.is_set():
            self._reset_flag.clear()
            return True
        return False

    def exit_error(self) -> Optional[str]:
        try:
            code = self._proc.wait(timeout=2.0)
        except subprocess.TimeoutExpired:
            return None
        if self._stderr_thread is not None:
            self._stderr_thread.join(timeout=0.5)
        if code == 0:
            return None
        detail = self._stderr_tail[-1] if self._stderr_tail else f"exit code {code}"
        return f"ffmpeg decode failed: {detail}"

    def terminate(self) -> None:
        if self._proc.poll() is None:
            self._proc.terminate()

    def close(self) -> None:
        if self._proc.poll() is None:
            self._proc.terminate()
            try:
                self._proc.wait(timeout=2.0)
            except subprocess.TimeoutExpired:
                self._proc.kill()
        for pipe in (self._proc.stdout, self._proc.stderr):
            if pipe is not None:
                pipe.close()


class AudioSource:
    """
    One loaded track as seen by the decode thread.

    reader: object with read(nbytes) -> bytes (b"" at EOF), consume_reset() -> bool,
    exit_error() -> Optional[str], terminate() and close().
    """

    def __init__(
        self,
        info: StreamInfo,
        reader,
        target_rate: int = TARGET_SAMPLE_RATE,
        block_frames: int = DECODE_BLOCK_FRAMES,
    ):
        self.info = info
        self.target_rate = int(target_rate)
        self._reader = reader
        self._read_bytes = max(1, int(block_frames)) * info.frame_bytes
        self._carry = bytearray()
        self.resampler = make_resampler(info.sample_rate, self.target_rate)

    @property
    def duration_sec(self) -> float:
        return self.info.duration_sec

    def next_block(self) -> Optional[np.ndarray]:
        """
        Next block of normalized first-channel samples at the native rate.

        Returns None at end of stream and an empty array when the read did not
        complete a frame yet.
        """
        if self._reader.consume_reset():
            raise ResetRequired(f"stream {self.info.index} changed format")
        chunk = self._reader.read(self._read_bytes)
        if not chunk:
            return None
        self._carry.extend(chunk)
        frame_bytes = self.info.frame_bytes
        usable = (len(self._carry) // frame_bytes) * frame_bytes
        if usable == 0:
            return np.zeros(0, dtype=np.float32)
        data = bytes(self._carry[:usable])
        del self._carry[:usable]
        return normalize_first_channel(data, self.info.sample_format, self.info.channels)

    def resample(self, block: np.ndarray) -> np.ndarray:
        if self.resampler is None or block.size == 0:
            return block
        try:
            return self.resampler.process(block)
        except ResampleError as e:
            logger.warning("Resampler failed, passing %d samples through: %s", block.size, e)
            return block

    def flush(self) -> np.ndarray:
        if self.resampler is None:
            return np.zeros(0, dtype=np.float32)
        return self.resampler.flush()

    def reset(self) -> None:
        # Partial frames stay in the carry; they belong to the next frame on the pipe.
        if self.resampler is not None:
            self.resampler.reset()

    def check_exit(self) -> None:
        err = self._reader.exit_error()
        if err:
            raise DecodeError(err)

    def interrupt(self) -> None:
        """Unblock a pending read from another thread; the decode loop then sees EOF."""
        self._reader.terminate()

    def close(self) -> None:
        self._reader.close()


def open_source(path: str, target_rate: int = TARGET_SAMPLE_RATE) -> AudioSource:
    info = probe_stream(path)
    if not have_exe("ffmpeg"):
        raise DecoderInitFailure("ffmpeg not found in PATH.")
    logger.debug(
        "Opening %s: stream=%d codec=%s rate=%d ch=%d fmt=%s frames=%s",
        path,
        info.index,
        info.codec_name,
        info.sample_rate,
        info.channels,
        info.sample_format.label,
        info.n_frames,
    )
    reader = FfmpegPcmReader(make_ffmpeg_cmd(path, info))
    try:
        return AudioSource(info, reader, target_rate)
    except ValueError as e:
        reader.close()
        raise DecoderInitFailure(f"Cannot decode {path}: {e}") from e
