from __future__ import annotations

from models import QueuePolicy
from utils import env_flag, env_float, env_str

# Output
TARGET_SAMPLE_RATE = 48000
OUTPUT_MAX_CHANNELS = 2
OUTPUT_RING_SECONDS = 0.5
OUTPUT_BLOCKSIZE_FRAMES = 1024
OUTPUT_LATENCY = "high"
NO_OUTPUT = env_flag("CASSETTE_NO_OUTPUT")

# Decoder
DECODE_BLOCK_FRAMES = 1024
PAUSE_POLL_SEC = 0.01
REALTIME_LEAD_SEC = 0.25
DECODER_JOIN_TIMEOUT_SEC = 2.0

# Sample queue between decoder and UI tick
SAMPLE_QUEUE_SECONDS = max(0.05, env_float("CASSETTE_QUEUE_SECONDS", 1.0))
SAMPLE_QUEUE_POLICY = QueuePolicy.from_setting(env_str("CASSETTE_QUEUE_POLICY", "drop_oldest"))

# Resampler (windowed sinc, linear interpolation between oversampled kernel points)
RESAMPLER_SINC_LEN = 256
RESAMPLER_F_CUTOFF = 0.95
RESAMPLER_OVERSAMPLING = 256

# Spectrum analyzer
FFT_SIZE = 2048
BAR_COUNT = 32
BAR_SMOOTHING = 0.7
BEAT_THRESHOLD = 0.3
BEAT_MIN_INTERVAL_SEC = 0.2
BEAT_DECAY = 0.95
BASS_BIN_FRACTION = 8
HUE_BASE_SPEED = 0.02
HUE_BEAT_SPEED = 0.1

# UI tick
TICK_INTERVAL_MS = 100

DEBUG_METRICS = env_flag("CASSETTE_DEBUG_METRICS")
LOG_LEVEL = env_str("CASSETTE_LOG_LEVEL", "WARNING").upper()
