import numpy as np
import pytest

from audio.errors import ResampleError
from dsp import SincResampler, apply_volume, make_resampler, normalize_first_channel
from models import F32, F64, S8, S16, S24, S32, U8, U16, U24, U32


def test_unsigned_8bit_scale():
    out = normalize_first_channel(bytes([255, 128, 0]), U8, channels=1)
    assert out.dtype == np.float32
    assert out == pytest.approx([0.992, 0.0, -1.0], abs=1e-3)


def test_signed_16bit_takes_first_channel_only():
    stereo = np.array([[16384, -32768], [-32768, 100], [0, 5]], dtype="<i2").tobytes()
    out = normalize_first_channel(stereo, S16, channels=2)
    assert out.tolist() == pytest.approx([0.5, -1.0, 0.0])


def test_24bit_signed_and_unsigned():
    # little-endian 3-byte samples: 0x400000, 0x800000 (-2^23 signed), 0xFFFFFF (-1 signed)
    raw = bytes([0x00, 0x00, 0x40, 0x00, 0x00, 0x80, 0xFF, 0xFF, 0xFF])
    signed = normalize_first_channel(raw, S24, channels=1)
    assert signed.tolist() == pytest.approx([0.5, -1.0, -1.0 / 2**23])
    unsigned = normalize_first_channel(raw, U24, channels=1)
    assert unsigned.tolist() == pytest.approx([0.5 - 1.0, 0.0, (2**24 - 1) / 2**23 - 1.0])


@pytest.mark.parametrize(
    "fmt, dtype, value, expected",
    [
        (S8, "i1", -64, -0.5),
        (U16, "<u2", 49152, 0.5),
        (U32, "<u4", 0, -1.0),
        (S32, "<i4", 2**30, 0.5),
    ],
)
def test_integer_scales(fmt, dtype, value, expected):
    raw = np.array([value], dtype=dtype).tobytes()
    assert normalize_first_channel(raw, fmt, channels=1)[0] == pytest.approx(expected)


def test_float_formats():
    raw32 = np.array([0.25, -1.5], dtype="<f4").tobytes()
    assert normalize_first_channel(raw32, F32, 1).tolist() == [0.25, -1.5]
    raw64 = np.array([0.1, -0.75], dtype="<f8").tobytes()
    out = normalize_first_channel(raw64, F64, 1)
    assert out.dtype == np.float32
    assert out.tolist() == pytest.approx([0.1, -0.75], abs=1e-7)


def test_partial_trailing_frame_is_ignored():
    raw = np.array([100, 200], dtype="<i2").tobytes() + b"\x01"
    assert normalize_first_channel(raw, S16, 1).shape == (2,)
    assert normalize_first_channel(b"\x01", S16, 1).size == 0


def test_apply_volume():
    x = np.array([0.5, -1.0], dtype=np.float32)
    assert apply_volume(x, 0.5).tolist() == [0.25, -0.5]
    assert apply_volume(x, 0.0).tolist() == [0.0, 0.0]
    assert apply_volume(x, 1.0) is x


def _feed(resampler, signal, block):
    outputs = [resampler.process(signal[i : i + block]) for i in range(0, signal.shape[0], block)]
    return np.concatenate(outputs)


def test_resample_44100_to_48000_output_count():
    n = 44100
    t = np.arange(n) / 44100.0
    signal = (0.5 * np.sin(2 * np.pi * 440.0 * t)).astype(np.float32)
    resampler = SincResampler(48000 / 44100)
    out = _feed(resampler, signal, 1024)
    expected = n * 48000 / 44100
    assert abs(out.shape[0] - expected) <= resampler.sinc_len * resampler.ratio
    total = out.shape[0] + resampler.flush().shape[0]
    assert abs(total - expected) <= 2


def test_resampled_sine_matches_ideal():
    f = 1000.0
    n = 8820
    signal = np.sin(2 * np.pi * f * np.arange(n) / 44100.0).astype(np.float32)
    out = _feed(SincResampler(48000 / 44100), signal, 500)
    ideal = np.sin(2 * np.pi * f * np.arange(out.shape[0]) / 48000.0)
    middle = slice(500, out.shape[0] - 500)
    assert np.max(np.abs(out[middle] - ideal[middle])) < 0.02


def test_resampler_keeps_dc_level_when_downsampling():
    signal = np.full(20000, 0.5, dtype=np.float32)
    out = _feed(SincResampler(48000 / 96000), signal, 1000)
    assert out.shape[0] == pytest.approx(10000, abs=200)
    assert out[1000:-1000] == pytest.approx(0.5, abs=0.01)


def test_resampler_rejects_bad_blocks_without_losing_state():
    resampler = SincResampler(48000 / 44100)
    first = resampler.process(np.zeros(1024, dtype=np.float32))
    with pytest.raises(ResampleError):
        resampler.process(np.array([0.0, np.nan], dtype=np.float32))
    with pytest.raises(ResampleError):
        resampler.process(np.zeros((4, 2), dtype=np.float32))
    again = SincResampler(48000 / 44100)
    again.process(np.zeros(1024, dtype=np.float32))
    assert resampler.process(np.ones(512, dtype=np.float32)).shape == again.process(
        np.ones(512, dtype=np.float32)
    ).shape
    assert first.shape[0] > 0


def test_make_resampler():
    assert make_resampler(48000, 48000) is None
    resampler = make_resampler(44100, 48000)
    assert resampler.ratio == pytest.approx(48000 / 44100)
