from __future__ import annotations


class PlayerError(RuntimeError):
    pass


# Startup: output device negotiation
class NoOutputDevice(PlayerError):
    pass


class NoSupportedConfig(PlayerError):
    pass


# load(): fatal to that call only
class ProbeFailure(PlayerError):
    pass


class NoSupportedTrack(PlayerError):
    pass


class DecoderInitFailure(PlayerError):
    pass


# Streaming
class ResetRequired(PlayerError):
    """The decoded stream changed format mid-way; decoder state must be reset."""


class DecodeError(PlayerError):
    pass


class ResampleError(PlayerError):
    pass
