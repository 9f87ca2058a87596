from __future__ import annotations

import numpy as np
import pytest

from voiceseg.config import VadConfig
from voiceseg.engine import SegmentationEngine


class ScriptedClassifier:
    """Returns a fixed probability sequence and records what it was fed."""

    def __init__(self, probs, fill: float = 0.0) -> None:
        self._probs = list(probs)
        self._fill = fill
        self.inputs: list[np.ndarray] = []
        self.states: list[np.ndarray] = []

    def infer(self, assembled, sample_rate, state):
        i = len(self.inputs)
        self.inputs.append(np.array(assembled, copy=True))
        self.states.append(np.array(state, copy=True))
        prob = self._probs[i] if i < len(self._probs) else self._fill
        return prob, state + 1.0


def make_engine(probs, **overrides) -> tuple[SegmentationEngine, ScriptedClassifier]:
    config = VadConfig.from_ms(**overrides)
    classifier = ScriptedClassifier(probs)
    return SegmentationEngine(config, classifier), classifier


def silence(n_windows: int, window: int = 512) -> np.ndarray:
    return np.zeros(n_windows * window, dtype=np.float32)


@pytest.fixture
def no_logging_setup(monkeypatch):
    monkeypatch.setattr("voiceseg.log_setup.setup_logging", lambda **kwargs: None)
