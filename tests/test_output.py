import types

import numpy as np
import pytest

from audio import output
from audio.errors import NoOutputDevice, NoSupportedConfig
from audio.output import AudioOutput, OutputConfig, negotiate_output_config


class _PortAudioError(Exception):
    pass


def _fake_sd(max_channels=2, accepts=(1, 2)):
    def query_devices(device=None, kind=None):
        return {"name": "Fake Out", "max_output_channels": max_channels}

    def check_output_settings(device=None, channels=None, samplerate=None, dtype=None):
        if channels not in accepts or samplerate != 48000:
            raise _PortAudioError("Invalid number of channels")

    return types.SimpleNamespace(
        PortAudioError=_PortAudioError,
        query_devices=query_devices,
        check_output_settings=check_output_settings,
    )


def test_negotiates_stereo_when_available(monkeypatch):
    monkeypatch.setattr(output, "sd", _fake_sd(max_channels=8))
    config = negotiate_output_config()
    assert config.channels == 2
    assert config.sample_rate == 48000
    assert config.device_name == "Fake Out"


def test_falls_back_to_mono(monkeypatch):
    monkeypatch.setattr(output, "sd", _fake_sd(accepts=(1,)))
    assert negotiate_output_config().channels == 1


def test_no_channels_is_no_output_device(monkeypatch):
    monkeypatch.setattr(output, "sd", _fake_sd(max_channels=0))
    with pytest.raises(NoOutputDevice):
        negotiate_output_config()


def test_rejected_rate_is_no_supported_config(monkeypatch):
    monkeypatch.setattr(output, "sd", _fake_sd())
    with pytest.raises(NoSupportedConfig):
        negotiate_output_config(sample_rate=44100)


def test_callback_broadcasts_mono_and_silences_when_paused():
    out = AudioOutput(OutputConfig(device=None, device_name="", channels=2, sample_rate=48000))
    out.ring.push_blocking(np.array([0.25, -0.5], dtype=np.float32), stop_event=None)

    buf = np.ones((4, 2), dtype=np.float32)
    out._callback(buf, 4, None, None)
    assert not buf.any()
    assert out.ring.frames_available() == 2

    out.set_paused(False)
    out._callback(buf, 4, None, None)
    assert buf.tolist() == [[0.25, 0.25], [-0.5, -0.5], [0.0, 0.0], [0.0, 0.0]]
