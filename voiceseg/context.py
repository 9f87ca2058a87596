"""context.py
Sliding lookback buffer shared between consecutive classifier windows.

Every classifier call sees ``[context | window]`` where *context* is the
tail of the previous assembled input, so the model never loses continuity
at window edges while we keep only a few milliseconds of history.
"""

from __future__ import annotations

import numpy as np

__all__ = ["ContextBuffer"]


class ContextBuffer:
    """Fixed-size tail of the most recent classifier input.

    Parameters
    ----------
    context_samples : int
        Number of trailing samples to keep (64 at 16 kHz, 32 at 8 kHz).
    window_size_samples : int
        Expected length of each new window.
    """

    def __init__(self, context_samples: int, window_size_samples: int):
        self.context_samples = context_samples
        self.window_size_samples = window_size_samples
        self._buf = np.zeros(context_samples, dtype=np.float32)

    @property
    def samples(self) -> np.ndarray:
        """Read-only copy of the current context."""
        return self._buf.copy()

    def reset(self) -> None:
        self._buf.fill(0.0)

    def assemble(self, window: np.ndarray) -> np.ndarray:
        """Return ``[context | window]`` as a new float32 array."""
        if len(window) != self.window_size_samples:
            raise ValueError(
                f"window has {len(window)} samples, expected {self.window_size_samples}"
            )
        return np.concatenate((self._buf, np.asarray(window, dtype=np.float32)))

    def refresh(self, assembled: np.ndarray) -> None:
        """Keep the last ``context_samples`` of *assembled* for the next call."""
        self._buf[:] = assembled[-self.context_samples:]
