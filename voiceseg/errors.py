"""errors.py
Exception hierarchy for voiceseg.
"""

from __future__ import annotations

__all__ = [
    "VoiceSegError",
    "ConfigurationError",
    "ClassifierError",
    "AudioFormatError",
]


class VoiceSegError(Exception):
    """Base class for all voiceseg errors."""


class ConfigurationError(VoiceSegError, ValueError):
    """Raised for invalid construction parameters or call arguments."""


class ClassifierError(VoiceSegError, RuntimeError):
    """Raised when the speech classifier fails; the run is aborted."""


class AudioFormatError(VoiceSegError, ValueError):
    """Raised for audio files the reader cannot handle."""
