"""classifier.py
Speech-probability classifiers consumed by the segmentation engine.

The engine only relies on the :class:`Classifier` protocol:

    prob, next_state = classifier.infer(assembled, sample_rate, state)

*assembled* is one ``[context | window]`` float32 array, *state* is the
recurrent state the engine threads from call to call (shape ``(2, 1, 128)``).
Implementations must be deterministic and blocking.

Adapters shipped here:

* ``EnergyClassifier``       - RMS heuristic, no model needed.
* ``TorchScriptClassifier``  - a scripted Silero-style module on torch.
* ``OnnxClassifier``         - a Silero ONNX export on onnxruntime (optional).
"""

from __future__ import annotations

import inspect
import logging
import os
from pathlib import Path
from typing import Callable, Optional, Protocol, Tuple

import numpy as np
import torch

__all__ = [
    "STATE_SHAPE",
    "Classifier",
    "EnergyClassifier",
    "TorchScriptClassifier",
    "OnnxClassifier",
    "initial_state",
    "load_classifier",
]

logger = logging.getLogger(__name__)

STATE_SHAPE = (2, 1, 128)


def initial_state() -> np.ndarray:
    """Zeroed recurrent state."""
    return np.zeros(STATE_SHAPE, dtype=np.float32)


class Classifier(Protocol):
    def infer(
        self, assembled: np.ndarray, sample_rate: int, state: np.ndarray
    ) -> Tuple[float, np.ndarray]: ...


class EnergyClassifier:
    """Map window RMS energy to a pseudo speech probability.

    The probability ramps linearly from 0 at *floor* to 1 at *ceiling*
    (both in RMS units of [-1, 1] audio). Only the newest
    ``window`` samples of the assembled input are measured; the context
    prefix is ignored. The recurrent state is passed through untouched.
    """

    def __init__(self, *, floor: float = 0.005, ceiling: float = 0.05, context_samples: int = 0):
        if not 0.0 <= floor < ceiling:
            raise ValueError("floor must be non-negative and below ceiling")
        self.floor = floor
        self.ceiling = ceiling
        self.context_samples = context_samples

    def infer(self, assembled, sample_rate, state):
        block = assembled[self.context_samples:]
        rms = float(np.sqrt(np.mean(block.astype(np.float32) ** 2) + 1e-12))
        prob = (rms - self.floor) / (self.ceiling - self.floor)
        return float(np.clip(prob, 0.0, 1.0)), state


def _takes_state(model: Callable) -> bool:
    """True when ``model.forward`` declares ``(x, state, sr)``."""
    forward = getattr(model, "forward", model)
    schema = getattr(forward, "schema", None)
    if schema is not None:
        names = [a.name for a in schema.arguments if a.name != "self"]
    else:
        names = list(inspect.signature(forward).parameters)
    return len(names) >= 3


class TorchScriptClassifier:
    """Run a Silero-style model through torch.

    Two call forms are supported, picked from the model's ``forward``:

    * ``model(x, sr)`` - the stock Silero TorchScript model, which keeps
      its recurrent state internally. ``reset_states()`` is called whenever
      the engine hands over a zeroed state, and the state is passed back
      unchanged.
    * ``model(x, state, sr)`` - the state is threaded explicitly; ``state``
      has shape ``(2, 1, 128)``, ``sr`` is an int64 scalar tensor and the
      model returns ``(prob, next_state)``.

    ``x`` always has shape ``(1, N)``.

    Parameters
    ----------
    model_path : str | Path, optional
        TorchScript file loaded with ``torch.jit.load``. Falls back to the
        ``VOICESEG_MODEL_PATH`` environment variable.
    model : callable, optional
        Pre-built module, takes precedence over *model_path*.
    device : str, default "cpu"
    """

    def __init__(
        self,
        model_path: Optional[str | Path] = None,
        *,
        model: Optional[Callable] = None,
        device: str = "cpu",
    ):
        self.device = torch.device(device)
        path = model_path or os.getenv("VOICESEG_MODEL_PATH")

        if model is not None:
            self.model = model
        elif path:
            self.model = torch.jit.load(str(path), map_location=self.device)
        else:
            raise RuntimeError("Provide a model via `model`, `model_path`, or VOICESEG_MODEL_PATH")

        if hasattr(self.model, "eval"):
            self.model.eval()
        self.stateful = _takes_state(self.model)

    def infer(self, assembled, sample_rate, state):
        with torch.no_grad():
            x = torch.from_numpy(np.ascontiguousarray(assembled, dtype=np.float32)).unsqueeze(0)
            if not self.stateful:
                if not np.any(state) and hasattr(self.model, "reset_states"):
                    self.model.reset_states()
                out = self.model(x.to(self.device), int(sample_rate))
                return float(out.reshape(-1)[0].item()), state

            h = torch.from_numpy(np.ascontiguousarray(state, dtype=np.float32))
            sr = torch.tensor(sample_rate, dtype=torch.int64)
            out, next_state = self.model(x.to(self.device), h.to(self.device), sr)
            prob = float(out.reshape(-1)[0].item())
            return prob, next_state.detach().cpu().numpy().astype(np.float32)


class OnnxClassifier:
    """Silero VAD ONNX export served by onnxruntime.

    Inputs are ``input`` / ``state`` / ``sr``, outputs ``output`` /
    ``stateN``. The session is pinned to one intra- and one inter-op
    thread since windows are evaluated strictly one after another.
    """

    def __init__(self, model_path: str | Path):
        try:
            import onnxruntime as ort
        except ImportError as exc:
            raise ImportError(
                "ONNX models need onnxruntime. "
                "Install with: pip install voiceseg[onnx]"
            ) from exc

        opts = ort.SessionOptions()
        opts.intra_op_num_threads = 1
        opts.inter_op_num_threads = 1
        opts.graph_optimization_level = ort.GraphOptimizationLevel.ORT_ENABLE_ALL
        self.session = ort.InferenceSession(
            str(model_path), sess_options=opts, providers=["CPUExecutionProvider"]
        )
        logger.debug("ONNX session ready: %s", model_path)

    def infer(self, assembled, sample_rate, state):
        feeds = {
            "input": np.asarray(assembled, dtype=np.float32).reshape(1, -1),
            "state": np.asarray(state, dtype=np.float32),
            "sr": np.array([sample_rate], dtype=np.int64),
        }
        out, next_state = self.session.run(["output", "stateN"], feeds)
        return float(np.asarray(out).reshape(-1)[0]), np.asarray(next_state, dtype=np.float32)


def load_classifier(model_path: str | Path, *, device: str = "cpu") -> Classifier:
    """Pick an adapter from the model file suffix."""
    path = Path(model_path)
    if not path.exists():
        raise FileNotFoundError(path)
    if path.suffix.lower() == ".onnx":
        return OnnxClassifier(path)
    return TorchScriptClassifier(path, device=device)
