import numpy as np
import pytest

from audio.decoder import DecoderThread
from audio.state import PlaybackState
from buffers import AudioRingBuffer, SampleQueue


def test_queue_and_position_wait_for_the_output_ring(make_source, wait):
    source, reader = make_source(np.full(2048, 8192, dtype=np.int16))
    queue = SampleQueue(max_samples=48000)
    # room for 480 frames: the second 256-frame block cannot fit
    ring = AudioRingBuffer(1, max_seconds=0.01, sample_rate=48000)
    state = PlaybackState(volume=1.0)
    generation = state.begin_load(source.duration_sec)
    state.set_playing(True)

    decoder = DecoderThread(source, queue, state, generation, output_ring=ring)
    decoder.start()
    try:
        assert wait(lambda: ring.frames_available() == 480)
        assert queue.samples_available() == 256
        assert state.position() == pytest.approx(256 / 48000)
    finally:
        decoder.stop()
        decoder.join(timeout=2.0)
    assert not decoder.is_alive()
    assert reader.closed
    assert queue.samples_available() == 256


def test_join_after_stop(make_source):
    source, _ = make_source(np.zeros(1024, dtype=np.int16))
    state = PlaybackState()
    decoder = DecoderThread(source, SampleQueue(max_samples=4800), state, state.begin_load(0.0))
    decoder.start()
    decoder.stop()
    decoder.join(timeout=2.0)
    assert not decoder.is_alive()
