"""audio_io.py
WAV helpers around the segmenter: load mono float audio, resample it to a
rate the engine supports, and cut detected segments back out to files.

WAV files are read with scipy and written with the built-in *wave* module;
other containers are converted to a temporary WAV with ffmpeg first.
"""

from __future__ import annotations

import logging
import tempfile
import wave
from math import gcd
from pathlib import Path
from typing import Optional, Tuple

import ffmpeg
import numpy as np
from scipy.io import wavfile
from scipy.signal import resample_poly

from voiceseg.engine import Segment
from voiceseg.errors import AudioFormatError

__all__ = [
    "read_wav",
    "resample",
    "convert_to_wav",
    "write_wav",
    "write_segment",
    "load_audio",
]

logger = logging.getLogger(__name__)

TARGET_DTYPE = np.float32


def convert_to_wav(input_path: Path, tmp_wav_path: Path, sample_rate: int = 16_000) -> Path:
    """Convert non-WAV formats to a temporary mono 16-bit WAV file."""
    (
        ffmpeg.input(str(input_path))
        .output(str(tmp_wav_path), acodec="pcm_s16le", ac=1, ar=sample_rate)
        .run(overwrite_output=True, quiet=True)
    )
    return tmp_wav_path


def read_wav(path: Path) -> Tuple[np.ndarray, int, int]:
    """Load a WAV → (float32 mono in [-1, 1], sample_rate, channels).

    8-bit unsigned, 16/24/32-bit signed PCM and IEEE float files are
    accepted. Multi-channel files are downmixed by averaging the channels.
    """
    try:
        sr, data = wavfile.read(str(path))
    except (ValueError, EOFError) as exc:
        raise AudioFormatError(f"{path}: {exc}") from exc

    if data.dtype == np.uint8:
        audio = (data.astype(TARGET_DTYPE) - 128.0) / 128.0
    elif np.issubdtype(data.dtype, np.signedinteger):
        # 24-bit data comes back left-justified in int32
        audio = data.astype(np.float64) / -float(np.iinfo(data.dtype).min)
    elif np.issubdtype(data.dtype, np.floating):
        audio = data
    else:
        raise AudioFormatError(f"{path}: unsupported sample type {data.dtype}")

    n_channels = 1 if audio.ndim == 1 else audio.shape[1]
    if n_channels > 1:
        audio = audio.mean(axis=1)
    audio = np.asarray(audio, dtype=TARGET_DTYPE)

    logger.debug("Read %s: %d samples @ %d Hz, %d channel(s)", path, len(audio), sr, n_channels)
    return audio, int(sr), n_channels


def resample(audio: np.ndarray, orig_sr: int, target_sr: int) -> np.ndarray:
    """Resample *audio* from *orig_sr* → *target_sr* using polyphase method."""
    if orig_sr == target_sr:
        return audio
    g = gcd(orig_sr, target_sr)
    up = target_sr // g
    down = orig_sr // g
    return resample_poly(audio, up, down).astype(TARGET_DTYPE)


def load_audio(path: Path, target_sr: Optional[int] = None) -> Tuple[np.ndarray, int]:
    """Read any input the CLI accepts, converting and resampling as asked."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(path)

    if path.suffix.lower() == ".wav":
        audio, sr, _ = read_wav(path)
    else:
        logger.info("Converting %s to WAV...", path.name)
        with tempfile.TemporaryDirectory(prefix="voiceseg-") as tmp:
            wav_path = convert_to_wav(path, Path(tmp) / "converted.wav", sample_rate=target_sr or 16_000)
            audio, sr, _ = read_wav(wav_path)

    if target_sr is not None and sr != target_sr:
        logger.info("Resampling %d Hz → %d Hz", sr, target_sr)
        audio = resample(audio, sr, target_sr)
        sr = target_sr
    return audio, sr


def write_wav(path: Path, samples: np.ndarray, sample_rate: int) -> Path:
    """Write float samples in [-1, 1] as 16-bit PCM mono."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    pcm = (np.clip(samples, -1.0, 1.0) * 32767.0).astype("<i2")
    with wave.open(str(path), "wb") as wf:
        wf.setnchannels(1)
        wf.setsampwidth(2)
        wf.setframerate(sample_rate)
        wf.writeframes(pcm.tobytes())
    return path


def write_segment(
    audio: np.ndarray,
    segment: Segment,
    index: int,
    directory: Path,
    sample_rate: int,
) -> Optional[Path]:
    """Save ``audio[segment.start:segment.end]`` as ``segment_<index>.wav``.

    Returns ``None`` (and writes nothing) for a segment that does not fit
    the buffer; an end past the buffer is clamped.
    """
    start, end = segment.start, segment.end
    if start < 0 or end <= start or start >= len(audio):
        logger.warning("Skipping invalid segment %d: [%d, %d)", index, start, end)
        return None
    end = min(end, len(audio))

    out = Path(directory) / f"segment_{index}.wav"
    return write_wav(out, audio[start:end], sample_rate)
