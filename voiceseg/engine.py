"""engine.py
Hysteresis segmentation of a per-window speech-probability stream.

`SegmentationEngine.process()` cuts a full buffer into consecutive windows,
asks the injected classifier for a speech probability per window and runs
each probability through a small state machine:

* enter speech at ``prob >= threshold``
* hold while ``threshold - 0.15 <= prob < threshold``
* leave speech only after ``min_silence`` of ``prob < threshold - 0.15``
* force a cut once a segment grows past ``max_speech``

Segments come back as half-open ``[start, end)`` sample indices.

The engine owns its context buffer, recurrent state and segment list; one
instance must only ever be driven from one thread.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Iterator, Optional

import numpy as np

from voiceseg.classifier import Classifier, initial_state
from voiceseg.config import VadConfig
from voiceseg.context import ContextBuffer
from voiceseg.errors import ClassifierError, ConfigurationError

__all__ = ["Segment", "EngineState", "SegmentationEngine", "iter_windows"]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Segment:
    """Finalized speech interval ``[start, end)`` in samples."""

    start: int
    end: int

    @property
    def duration(self) -> int:
        return self.end - self.start

    def to_seconds(self, sample_rate: int, ndigits: Optional[int] = None) -> tuple[float, float]:
        start_s = self.start / sample_rate
        end_s = self.end / sample_rate
        if ndigits is not None:
            return round(start_s, ndigits), round(end_s, ndigits)
        return start_s, end_s

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass
class EngineState:
    """Mutable markers of the state machine.

    ``speech_start`` / ``speech_end`` describe the candidate segment in
    progress; ``-1`` means none.
    """

    triggered: bool = False
    temp_end: int = 0
    current_sample: int = 0
    prev_end: int = 0
    next_start: int = 0
    speech_start: int = -1
    speech_end: int = -1

    def clear_candidate(self) -> None:
        self.speech_start = -1
        self.speech_end = -1

    def clear_markers(self) -> None:
        self.prev_end = 0
        self.next_start = 0
        self.temp_end = 0


def iter_windows(audio: np.ndarray, window_size: int) -> Iterator[np.ndarray]:
    """Yield consecutive full windows of *audio*; a short tail is dropped."""
    if window_size <= 0:
        raise ConfigurationError("window_size must be positive")
    for j in range(0, len(audio) - window_size + 1, window_size):
        yield audio[j:j + window_size]


class SegmentationEngine:
    """Turn classifier probabilities into stable speech segments.

    Parameters
    ----------
    config : VadConfig
        Derived sample-domain parameters.
    classifier : Classifier
        Anything with ``infer(assembled, sample_rate, state)``.
    """

    def __init__(self, config: VadConfig, classifier: Classifier):
        self.config = config
        self.classifier = classifier
        self.context = ContextBuffer(config.context_samples, config.window_size_samples)
        self.state = EngineState()
        self._rnn_state = initial_state()
        self._speeches: list[Segment] = []
        self._failed = False

    @property
    def speeches(self) -> list[Segment]:
        """Segments emitted since the last reset (copy)."""
        return list(self._speeches)

    @property
    def recurrent_state(self) -> np.ndarray:
        return self._rnn_state.copy()

    def reset(self) -> None:
        """Zero buffers and markers and forget emitted segments."""
        self._rnn_state = initial_state()
        self.context.reset()
        self.state = EngineState()
        self._speeches.clear()

    # Driving loop

    def process(self, audio: np.ndarray) -> list[Segment]:
        """Segment one complete buffer.

        Resets the engine first, so every call is independent. Raises
        :class:`ClassifierError` if the classifier fails; no partial
        result is returned and this engine must then be discarded.
        """
        if self._failed:
            raise ClassifierError("engine is unusable after a classifier failure; build a new one")
        if audio is None:
            raise ConfigurationError("audio buffer must not be None")
        audio = np.asarray(audio, dtype=np.float32)
        if audio.ndim != 1:
            raise ConfigurationError(f"expected mono 1-D audio, got shape {audio.shape}")

        self.reset()
        for window in iter_windows(audio, self.config.window_size_samples):
            self.predict(window)
        self.flush(len(audio))

        logger.info(
            "Processed %d samples (%.2f s) → %d segment(s)",
            len(audio), len(audio) / self.config.sample_rate, len(self._speeches),
        )
        return self.speeches

    def predict(self, window: np.ndarray) -> Optional[Segment]:
        """Classify one window and advance the state machine."""
        assembled = self.context.assemble(window)
        try:
            prob, next_state = self.classifier.infer(
                assembled, self.config.sample_rate, self._rnn_state
            )
        except Exception as exc:
            self._failed = True
            logger.error("Classifier failed at sample %d: %s", self.state.current_sample, exc)
            if isinstance(exc, ClassifierError):
                raise
            raise ClassifierError(f"classifier failed: {exc}") from exc

        prob = float(prob)
        # NaN fails this check too
        if not 0.0 <= prob <= 1.0:
            self._failed = True
            logger.error("Classifier returned %r at sample %d", prob, self.state.current_sample)
            raise ClassifierError(f"classifier returned an invalid probability: {prob!r}")

        self._rnn_state = np.asarray(next_state, dtype=np.float32)
        try:
            return self.update(prob)
        finally:
            self.context.refresh(assembled)

    def flush(self, total_samples: int) -> Optional[Segment]:
        """Close a still-open candidate at *total_samples*, unfiltered."""
        st = self.state
        if st.speech_start < 0:
            return None
        seg = self._push(st.speech_start, total_samples)
        st.clear_candidate()
        st.clear_markers()
        st.triggered = False
        return seg

    # State machine

    def update(self, speech_prob: float) -> Optional[Segment]:
        """Advance the cursor by one window and apply one probability.

        Returns the segment pushed by this step, if any.
        """
        cfg = self.config
        st = self.state
        window = cfg.window_size_samples
        st.current_sample += window

        if speech_prob >= cfg.threshold:
            if st.temp_end != 0:
                st.temp_end = 0
                if st.next_start < st.prev_end:
                    st.next_start = st.current_sample - window
            if not st.triggered:
                st.triggered = True
                st.speech_start = st.current_sample - window
                logger.debug(
                    "speech start at %.3f s (p=%.3f)", st.speech_start / cfg.sample_rate, speech_prob
                )
            return None

        if st.triggered and (st.current_sample - st.speech_start) > cfg.max_speech_samples:
            if st.prev_end > 0:
                seg = self._push(st.speech_start, st.prev_end)
                st.clear_candidate()
                if st.next_start < st.prev_end:
                    st.triggered = False
                else:
                    st.speech_start = st.next_start
                st.clear_markers()
            else:
                seg = self._push(st.speech_start, st.current_sample)
                st.clear_candidate()
                st.clear_markers()
                st.triggered = False
            logger.debug("max speech duration reached, cut at %d", seg.end)
            return seg

        if cfg.neg_threshold <= speech_prob < cfg.threshold:
            return None

        if not st.triggered:
            return None

        if st.temp_end == 0:
            st.temp_end = st.current_sample
        silence = st.current_sample - st.temp_end
        if silence > cfg.min_silence_samples_at_max_speech:
            st.prev_end = st.temp_end
        if silence < cfg.min_silence_samples:
            return None

        st.speech_end = st.temp_end
        if st.speech_end - st.speech_start > cfg.min_speech_samples:
            seg = self._push(st.speech_start, st.speech_end)
            st.clear_candidate()
            st.clear_markers()
            st.triggered = False
            logger.debug(
                "speech end at %.3f s (p=%.3f)", seg.end / cfg.sample_rate, speech_prob
            )
            return seg

        # Too short: nothing is emitted and the candidate stays open, so a
        # later speech run extends it from the original start.
        return None

    def _push(self, start: int, end: int) -> Segment:
        seg = Segment(start=int(start), end=int(end))
        self._speeches.append(seg)
        return seg
