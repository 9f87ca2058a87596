"""config.py
Run-time parameters for the segmenter.

Two layers live here:

* ``VadConfig`` - the immutable, sample-domain parameters one engine runs
  with. Built once from millisecond / second inputs and never recomputed.
* ``load_config()`` - the YAML settings file (``~/.voiceseg/config.yaml``)
  that the CLI reads its defaults from.
"""

from __future__ import annotations

import copy
import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml

from voiceseg.errors import ConfigurationError

__all__ = [
    "VadConfig",
    "SUPPORTED_SAMPLE_RATES",
    "CONFIG_DIR",
    "DEFAULT_CONFIG",
    "load_config",
    "save_config",
    "get_log_file_path",
    "vad_config_from_mapping",
]

logger = logging.getLogger(__name__)

SUPPORTED_SAMPLE_RATES = (8_000, 16_000)

# ~4 ms of lookback at either rate
_CONTEXT_SAMPLES = {16_000: 64, 8_000: 32}
_MIN_SILENCE_AT_MAX_SPEECH_MS = 98

CONFIG_DIR = Path.home() / ".voiceseg"

DEFAULT_CONFIG: dict[str, Any] = {
    "vad": {
        "window_ms": 32,
        "threshold": 0.5,
        "min_silence_ms": 100,
        "speech_pad_ms": 30,
        "min_speech_ms": 250,
        "max_speech_s": math.inf,
    },
    "model": {
        "path": None,
    },
    "logging": {
        "file": None,
        "debug": False,
    },
}


@dataclass(frozen=True)
class VadConfig:
    """Sample-domain parameters for one segmentation engine.

    Use :meth:`from_ms` rather than the raw constructor; it derives every
    sample count from the millisecond inputs exactly once.
    """

    sample_rate: int
    window_size_samples: int
    context_samples: int
    threshold: float
    min_silence_samples: int
    speech_pad_samples: int
    min_speech_samples: int
    max_speech_samples: float
    min_silence_samples_at_max_speech: int

    def __post_init__(self):
        if self.sample_rate not in SUPPORTED_SAMPLE_RATES:
            raise ConfigurationError(
                f"Unsupported sample rate: {self.sample_rate} (expected 8000 or 16000)"
            )
        if self.window_size_samples <= 0:
            raise ConfigurationError("window_size_samples must be positive")
        if self.context_samples <= 0:
            raise ConfigurationError("context_samples must be positive")
        if not 0.0 < self.threshold < 1.0:
            raise ConfigurationError("threshold must be between 0 and 1 (exclusive)")
        for name in (
            "min_silence_samples",
            "speech_pad_samples",
            "min_speech_samples",
            "min_silence_samples_at_max_speech",
        ):
            if getattr(self, name) < 0:
                raise ConfigurationError(f"{name} must not be negative")
        if math.isnan(self.max_speech_samples):
            raise ConfigurationError("max_speech_samples must be a number")

    @classmethod
    def from_ms(
        cls,
        sample_rate: int = 16_000,
        window_frame_size_ms: int = 32,
        threshold: float = 0.5,
        min_silence_ms: int = 100,
        speech_pad_ms: int = 30,
        min_speech_ms: int = 250,
        max_speech_s: float = math.inf,
    ) -> "VadConfig":
        """Derive a config from time-domain settings.

        Parameters
        ----------
        sample_rate : int
            8000 or 16000 Hz.
        window_frame_size_ms : int
            Length of one classifier window (32 ms → 512 samples at 16 kHz).
        threshold : float
            Speech probability at or above which a window counts as speech.
            Speech ends only once the probability drops below
            ``threshold - 0.15``.
        min_silence_ms : int
            Silence needed before an open segment is closed.
        speech_pad_ms : int
            Stored for callers that want to pad boundaries; not applied here.
        min_speech_ms : int
            Segments closed by silence must be longer than this.
        max_speech_s : float
            Hard cap on segment length; ``math.inf`` disables it.
        """
        if sample_rate not in SUPPORTED_SAMPLE_RATES:
            raise ConfigurationError(
                f"Unsupported sample rate: {sample_rate} (expected 8000 or 16000)"
            )
        if window_frame_size_ms <= 0:
            raise ConfigurationError("window_frame_size_ms must be positive")
        if max_speech_s <= 0:
            raise ConfigurationError("max_speech_s must be positive")

        sr_per_ms = sample_rate // 1000
        window_size_samples = int(window_frame_size_ms * sr_per_ms)
        speech_pad_samples = int(sr_per_ms * speech_pad_ms)

        return cls(
            sample_rate=sample_rate,
            window_size_samples=window_size_samples,
            context_samples=_CONTEXT_SAMPLES[sample_rate],
            threshold=float(threshold),
            min_silence_samples=int(sr_per_ms * min_silence_ms),
            speech_pad_samples=speech_pad_samples,
            min_speech_samples=int(sr_per_ms * min_speech_ms),
            max_speech_samples=(
                sample_rate * float(max_speech_s) - window_size_samples - 2 * speech_pad_samples
            ),
            min_silence_samples_at_max_speech=sr_per_ms * _MIN_SILENCE_AT_MAX_SPEECH_MS,
        )

    @property
    def effective_window_size(self) -> int:
        """Length of one assembled classifier input (context + window)."""
        return self.window_size_samples + self.context_samples

    @property
    def neg_threshold(self) -> float:
        """Probability below which a window is confidently silent."""
        return self.threshold - 0.15


def vad_config_from_mapping(section: Mapping[str, Any], sample_rate: int) -> VadConfig:
    """Build a :class:`VadConfig` from the ``vad`` section of a settings dict."""
    merged = {**DEFAULT_CONFIG["vad"], **{k: v for k, v in section.items() if v is not None}}
    try:
        return VadConfig.from_ms(
            sample_rate=sample_rate,
            window_frame_size_ms=int(merged["window_ms"]),
            threshold=float(merged["threshold"]),
            min_silence_ms=int(merged["min_silence_ms"]),
            speech_pad_ms=int(merged["speech_pad_ms"]),
            min_speech_ms=int(merged["min_speech_ms"]),
            max_speech_s=float(merged["max_speech_s"]),
        )
    except ConfigurationError:
        raise
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid vad settings: {exc}") from exc


# Settings file

def _deep_merge(base: dict, override: Mapping) -> dict:
    out = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(out.get(key), dict):
            out[key] = _deep_merge(out[key], value)
        else:
            out[key] = value
    return out


def load_config(path: Optional[Path | str] = None) -> dict[str, Any]:
    """Load ``config.yaml`` and merge it over :data:`DEFAULT_CONFIG`.

    A missing file is not an error; the defaults are returned.
    """
    config_path = Path(path) if path is not None else CONFIG_DIR / "config.yaml"

    if not config_path.exists():
        logger.debug("No config file at %s, using defaults", config_path)
        return copy.deepcopy(DEFAULT_CONFIG)

    with open(config_path, "r", encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"Cannot parse {config_path}: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigurationError(f"{config_path}: top level must be a mapping")

    logger.info("Loaded configuration from %s", config_path)
    return _deep_merge(DEFAULT_CONFIG, data)


def save_config(config: Mapping[str, Any], path: Optional[Path | str] = None) -> Path:
    """Write *config* as YAML; returns the path written."""
    config_path = Path(path) if path is not None else CONFIG_DIR / "config.yaml"
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w", encoding="utf-8") as f:
        yaml.safe_dump(dict(config), f, default_flow_style=False, sort_keys=False)
    return config_path


def get_log_file_path(config: Mapping[str, Any]) -> Optional[str]:
    return config.get("logging", {}).get("file")
