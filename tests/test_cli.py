import json

import ffmpeg
import numpy as np
import pytest
from click.testing import CliRunner
from rich.console import Console

from voiceseg.audio_io import write_wav
from voiceseg.cli import cli


def _burst(sample_rate: int = 16000) -> np.ndarray:
    """0.5 s silence, 1 s tone, 0.5 s silence."""
    t = np.arange(sample_rate) / sample_rate
    tone = 0.5 * np.sin(2 * np.pi * 220 * t)
    pad = np.zeros(sample_rate // 2)
    return np.concatenate([pad, tone, pad]).astype(np.float32)


@pytest.fixture
def runner(no_logging_setup, monkeypatch) -> CliRunner:
    monkeypatch.setattr("voiceseg.cli.console", Console(highlight=False, color_system=None, width=200))
    return CliRunner()


def test_detect_prints_segments(runner, tmp_path) -> None:
    wav = write_wav(tmp_path / "burst.wav", _burst(), 16000)

    result = runner.invoke(
        cli, ["--config", str(tmp_path / "none.yaml"), "detect", str(wav), "--classifier", "energy"]
    )

    assert result.exit_code == 0, result.output
    assert "Speech detected from 0.5 s to 1.5 s" in result.output


def test_detect_writes_segments_and_json(runner, tmp_path) -> None:
    wav = write_wav(tmp_path / "burst.wav", _burst(), 16000)
    out_dir = tmp_path / "audio"
    json_path = tmp_path / "segments.json"

    result = runner.invoke(
        cli,
        [
            "--config", str(tmp_path / "none.yaml"),
            "detect", str(wav),
            "--classifier", "energy",
            "--out-dir", str(out_dir),
            "--json", str(json_path),
        ],
    )

    assert result.exit_code == 0, result.output
    assert (out_dir / "segment_0.wav").exists()
    payload = json.loads(json_path.read_text())
    assert payload == [{"start": 7680, "end": 24576, "start_s": 0.48, "end_s": 1.536}]


def test_unsupported_rate_needs_resample(runner, tmp_path) -> None:
    wav = write_wav(tmp_path / "cd.wav", np.zeros(44100, dtype=np.float32), 44100)
    args = ["--config", str(tmp_path / "none.yaml"), "detect", str(wav), "--classifier", "energy"]

    refused = runner.invoke(cli, args)
    accepted = runner.invoke(cli, args + ["--resample"])

    assert refused.exit_code == 1
    assert "Unsupported sample rate" in refused.output
    assert accepted.exit_code == 0, accepted.output
    assert "No speech detected" in accepted.output


def test_invalid_threshold_exits_with_error(runner, tmp_path) -> None:
    wav = write_wav(tmp_path / "burst.wav", _burst(), 16000)
    result = runner.invoke(
        cli,
        ["--config", str(tmp_path / "none.yaml"), "detect", str(wav),
         "--classifier", "energy", "--threshold", "2"],
    )
    assert result.exit_code == 1
    assert "threshold" in result.output


def test_model_classifier_requires_a_model(runner, tmp_path) -> None:
    wav = write_wav(tmp_path / "burst.wav", _burst(), 16000)
    result = runner.invoke(
        cli, ["--config", str(tmp_path / "none.yaml"), "detect", str(wav), "--classifier", "model"]
    )
    assert result.exit_code == 1


def test_failed_conversion_exits_with_error(runner, tmp_path, monkeypatch) -> None:
    def broken_convert(input_path, tmp_wav_path, sample_rate=16_000):
        raise ffmpeg.Error("ffmpeg", b"", b"clip.mp3: Invalid data found when processing input")

    monkeypatch.setattr("voiceseg.audio_io.convert_to_wav", broken_convert)
    src = tmp_path / "clip.mp3"
    src.write_bytes(b"\x00" * 16)

    result = runner.invoke(
        cli, ["--config", str(tmp_path / "none.yaml"), "detect", str(src), "--classifier", "energy"]
    )

    assert result.exit_code == 1
    assert "Error: ffmpeg could not convert" in result.output
    assert "Invalid data found" in result.output


def test_config_command_shows_derived_sizes(runner, tmp_path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text("vad:\n  window_ms: 16\n")

    result = runner.invoke(cli, ["--config", str(path), "config"])

    assert result.exit_code == 0, result.output
    assert "window=256" in result.output
    assert "window=128" in result.output
