import threading
import time

import numpy as np

from buffers import AudioRingBuffer, SampleQueue, SampleWindow
from models import QueuePolicy


def _block(start, n):
    return np.arange(start, start + n, dtype=np.float32)


def test_drain_returns_everything_then_nothing():
    q = SampleQueue(max_samples=100)
    q.push(_block(0, 10))
    q.push(_block(10, 5))
    first = q.drain()
    assert first.tolist() == list(range(15))
    assert q.drain().size == 0
    assert q.samples_available() == 0


def test_drop_oldest_keeps_newest_samples():
    q = SampleQueue(max_samples=8, policy=QueuePolicy.DROP_OLDEST)
    q.push(_block(0, 5))
    q.push(_block(5, 5))
    assert q.drain().tolist() == list(range(2, 10))
    assert q.consume_dropped() == 2
    assert q.consume_dropped() == 0

    q.push(_block(0, 3))
    q.push(_block(100, 20))
    assert q.drain().tolist() == list(range(112, 120))
    assert q.consume_dropped() == 15


def test_block_policy_waits_for_consumer():
    q = SampleQueue(max_samples=4, policy=QueuePolicy.BLOCK)
    done = threading.Event()

    def producer():
        q.push(_block(0, 10))
        done.set()

    t = threading.Thread(target=producer, daemon=True)
    t.start()
    time.sleep(0.1)
    assert not done.is_set()
    received = []
    deadline = time.monotonic() + 5.0
    while len(received) < 10 and time.monotonic() < deadline:
        received.extend(q.drain().tolist())
        time.sleep(0.01)
    t.join(timeout=1.0)
    assert done.is_set()
    assert received == list(range(10))
    assert q.consume_dropped() == 0


def test_block_policy_gives_up_when_stopped():
    q = SampleQueue(max_samples=4, policy=QueuePolicy.BLOCK)
    stop = threading.Event()
    t = threading.Thread(target=q.push, args=(_block(0, 10), stop), daemon=True)
    t.start()
    time.sleep(0.05)
    stop.set()
    t.join(timeout=1.0)
    assert not t.is_alive()
    assert q.drain().tolist() == [0, 1, 2, 3]


def test_ring_buffer_zero_pads_on_underrun():
    ring = AudioRingBuffer(1, max_seconds=1.0, sample_rate=10)
    ring.push_blocking(np.array([0.1, 0.2, 0.3], dtype=np.float32), stop_event=None)
    out = np.ones((5, 1), dtype=np.float32)
    assert ring.pop_into(out) == 3
    assert out[:, 0].tolist() == [np.float32(0.1), np.float32(0.2), np.float32(0.3), 0.0, 0.0]
    assert ring.consume_underruns() == 1
    assert ring.frames_available() == 0


def test_sample_window_slides():
    window = SampleWindow(4)
    window.push(_block(0, 3))
    assert not window.is_full()
    assert window.get_recent().tolist() == [0, 1, 2]
    window.push(_block(3, 3))
    assert window.is_full()
    assert len(window) == 4
    assert window.get_recent().tolist() == [2, 3, 4, 5]
    window.push(_block(10, 9))
    assert window.get_recent().tolist() == [15, 16, 17, 18]
    assert window.get_recent(2).tolist() == [17, 18]
