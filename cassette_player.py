"""
Cassette Player: terminal spectrum view for a single track.

Backend pipeline:
- Decode: ffmpeg -> native raw PCM -> first channel as float32
- Resample: streaming windowed-sinc to 48 kHz, volume applied per block
- Output: sounddevice (PortAudio) callback pulling from a thread-safe ring buffer
- Visualizer: 2048-point FFT -> 32 smoothed bars, beat intensity, rainbow hue

Requirements:
  pip install -e .
  ffmpeg + ffprobe installed and on PATH

Env vars:
- CASSETTE_NO_OUTPUT = 1 to run without an audio device (visualization only)
- CASSETTE_QUEUE_POLICY = "drop_oldest" | "block"
- CASSETTE_LOG_LEVEL = logging level name (default WARNING)
"""

from __future__ import annotations

import argparse
import logging
import signal
import sys

from PySide6 import QtCore

from audio.engine import PlaybackController
from audio.errors import PlayerError
from config import LOG_LEVEL, NO_OUTPUT, TICK_INTERVAL_MS
from models import PlaybackStatus
from spectrum import SpectrumAnalyzer
from utils import format_time

logger = logging.getLogger(__name__)

_BLOCKS = " ▁▂▃▄▅▆▇█"


def render_bars(analyzer: SpectrumAnalyzer, rainbow: bool) -> str:
    cells = []
    for i, level in enumerate(analyzer.get_spectrum_bars()):
        step = int(round(float(level) * (len(_BLOCKS) - 1)))
        step = min(max(step, 0), len(_BLOCKS) - 1)
        char = _BLOCKS[step]
        if rainbow:
            r, g, b = analyzer.rainbow_bar_color(i, active=step > 0)
            cells.append(f"\x1b[38;2;{r};{g};{b}m{char}")
        else:
            cells.append(char)
    line = "".join(cells)
    if rainbow:
        line += "\x1b[0m"
    return line


class TerminalView(QtCore.QObject):
    """Fixed-tick loop: drain decoded samples, analyze, draw one status line."""

    def __init__(self, controller: PlaybackController, rainbow: bool, parent=None):
        super().__init__(parent)
        self.controller = controller
        self.analyzer = SpectrumAnalyzer()
        self.rainbow = rainbow
        self.exit_code = 0
        self._timer = QtCore.QTimer(self)
        self._timer.setInterval(TICK_INTERVAL_MS)
        self._timer.timeout.connect(self._tick)

    def start(self) -> None:
        self._timer.start()

    def _tick(self) -> None:
        self.analyzer.add_samples(self.controller.get_samples())
        self.analyzer.update_spectrum()
        self.controller.log_metrics_if_needed()

        snap = self.controller.snapshot()
        sys.stdout.write(
            f"\r{render_bars(self.analyzer, self.rainbow)} "
            f"{format_time(snap.position_sec)}/{format_time(snap.duration_sec)} "
            f"{snap.status.name.lower():<8}"
        )
        sys.stdout.flush()

        if snap.status in (PlaybackStatus.ENDED, PlaybackStatus.FAILED):
            sys.stdout.write("\n")
            if snap.status == PlaybackStatus.FAILED:
                logger.error("Playback failed: %s", snap.error)
                self.exit_code = 1
            self._timer.stop()
            QtCore.QCoreApplication.quit()


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Play a track with a terminal spectrum analyzer.")
    parser.add_argument("path", help="audio file to play")
    parser.add_argument("--volume", type=float, default=0.7, help="0.0 - 1.0 (default 0.7)")
    parser.add_argument("--rainbow", action="store_true", help="colour bars with the rotating hue")
    parser.add_argument("--no-output", action="store_true", default=NO_OUTPUT,
                        help="visualize only, do not open an audio device")
    parser.add_argument("--log-level", default=LOG_LEVEL)
    return parser


def main(argv=None) -> int:
    args = build_arg_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.WARNING),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )

    app = QtCore.QCoreApplication(sys.argv[:1])
    try:
        controller = PlaybackController(enable_output=not args.no_output, volume=args.volume)
        controller.load(args.path)
    except PlayerError as e:
        logger.error("%s", e)
        return 1

    view = TerminalView(controller, rainbow=args.rainbow)
    signal.signal(signal.SIGINT, lambda *_: app.quit())
    controller.play()
    view.start()
    try:
        app.exec()
    finally:
        controller.close()
    return view.exit_code


if __name__ == "__main__":
    sys.exit(main())
