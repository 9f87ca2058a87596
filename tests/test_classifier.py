import numpy as np
import pytest
import torch

from voiceseg.classifier import (
    STATE_SHAPE,
    EnergyClassifier,
    TorchScriptClassifier,
    initial_state,
    load_classifier,
)
from voiceseg.config import VadConfig
from voiceseg.engine import Segment, SegmentationEngine


def test_energy_classifier_maps_rms_to_probability() -> None:
    clf = EnergyClassifier(context_samples=64)
    state = initial_state()

    quiet, out_state = clf.infer(np.zeros(576, dtype=np.float32), 16000, state)
    loud, _ = clf.infer(np.full(576, 0.5, dtype=np.float32), 16000, state)

    assert quiet == 0.0
    assert loud == 1.0
    assert out_state is state


def test_energy_classifier_ignores_context_prefix() -> None:
    clf = EnergyClassifier(context_samples=64)
    assembled = np.zeros(576, dtype=np.float32)
    assembled[:64] = 1.0
    prob, _ = clf.infer(assembled, 16000, initial_state())
    assert prob == 0.0


def test_energy_classifier_rejects_bad_range() -> None:
    with pytest.raises(ValueError):
        EnergyClassifier(floor=0.1, ceiling=0.05)


class _MeanModel(torch.nn.Module):
    """Probability = clamp(mean(|x|)), state counts calls."""

    def forward(self, x, state, sr):
        prob = x.abs().mean().clamp(0.0, 1.0).reshape(1, 1)
        return prob, state + 1


def test_torch_classifier_threads_state() -> None:
    clf = TorchScriptClassifier(model=_MeanModel())
    prob, state = clf.infer(np.full(576, 0.75, dtype=np.float32), 16000, initial_state())

    assert prob == pytest.approx(0.75)
    assert state.shape == STATE_SHAPE
    assert state.dtype == np.float32
    assert np.all(state == 1.0)


def test_torch_classifier_loads_scripted_model(tmp_path) -> None:
    path = tmp_path / "model.pt"
    torch.jit.script(_MeanModel()).save(str(path))

    clf = load_classifier(path)

    assert isinstance(clf, TorchScriptClassifier)
    prob, _ = clf.infer(np.zeros(576, dtype=np.float32), 16000, initial_state())
    assert prob == 0.0


class _InternalStateModel(torch.nn.Module):
    """Stock Silero call form: ``forward(x, sr)`` with the state kept inside."""

    def __init__(self):
        super().__init__()
        self.calls = 0

    def forward(self, x: torch.Tensor, sr: int) -> torch.Tensor:
        self.calls = self.calls + 1
        return torch.full((1, 1), float(self.calls) / 10.0)

    @torch.jit.export
    def reset_states(self) -> None:
        self.calls = 0


def test_torch_classifier_picks_call_form_from_forward(tmp_path) -> None:
    path = tmp_path / "silero.jit"
    torch.jit.script(_InternalStateModel()).save(str(path))

    assert TorchScriptClassifier(path).stateful is False
    assert TorchScriptClassifier(model=_MeanModel()).stateful is True


def test_torch_classifier_two_argument_model_keeps_internal_state(tmp_path) -> None:
    path = tmp_path / "silero.jit"
    torch.jit.script(_InternalStateModel()).save(str(path))
    clf = TorchScriptClassifier(path)
    window = np.zeros(576, dtype=np.float32)

    zeros = initial_state()
    prob, state = clf.infer(window, 16000, zeros)
    assert prob == pytest.approx(0.1)
    assert state is zeros

    # a non-zero state means "continue", so the model is not reset
    prob, _ = clf.infer(window, 16000, np.ones(STATE_SHAPE, dtype=np.float32))
    assert prob == pytest.approx(0.2)

    # a zeroed state starts a new stream
    prob, _ = clf.infer(window, 16000, initial_state())
    assert prob == pytest.approx(0.1)


def test_torch_classifier_needs_a_model(monkeypatch) -> None:
    monkeypatch.delenv("VOICESEG_MODEL_PATH", raising=False)
    with pytest.raises(RuntimeError):
        TorchScriptClassifier()


def test_load_classifier_missing_file(tmp_path) -> None:
    with pytest.raises(FileNotFoundError):
        load_classifier(tmp_path / "missing.onnx")


def test_engine_with_torch_model_segments_loud_audio() -> None:
    engine = SegmentationEngine(VadConfig.from_ms(), TorchScriptClassifier(model=_MeanModel()))
    audio = np.concatenate([np.full(10 * 512, 0.9), np.zeros(10 * 512)]).astype(np.float32)

    assert engine.process(audio) == [Segment(0, 5632)]
