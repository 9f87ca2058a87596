"""cli.py
Command-line entry point for voiceseg.

Commands:
    voiceseg detect AUDIO   - Find speech segments in an audio file
    voiceseg config         - Show the effective configuration
"""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Optional

import click
import ffmpeg
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from voiceseg.config import (
    CONFIG_DIR,
    SUPPORTED_SAMPLE_RATES,
    get_log_file_path,
    load_config,
    vad_config_from_mapping,
)
from voiceseg.errors import VoiceSegError

console = Console()
logger = logging.getLogger("voiceseg")


@click.group()
@click.option("--config", "config_path", type=click.Path(path_type=Path), default=None,
              help=f"Settings file (default {CONFIG_DIR / 'config.yaml'})")
@click.option("--log-file", default=None, help="Path to write rotating logs")
@click.option("--debug", is_flag=True, help="Enable verbose logging")
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[Path], log_file: Optional[str], debug: bool):
    """voiceseg - split audio into speech segments."""
    from voiceseg.log_setup import setup_logging

    ctx.ensure_object(dict)
    try:
        config = load_config(config_path)
    except VoiceSegError as exc:
        console.print(f"[red]{exc}[/red]")
        sys.exit(1)

    ctx.obj["config"] = config
    setup_logging(
        debug=debug or bool(config.get("logging", {}).get("debug")),
        log_file=log_file or get_log_file_path(config),
    )


@cli.command()
@click.argument("audio", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--model", "model_path", type=click.Path(path_type=Path), default=None,
              help="Silero model (.onnx or TorchScript)")
@click.option("--classifier", "kind", default="auto",
              type=click.Choice(["auto", "model", "energy"]),
              help="auto = model if one is configured, else energy heuristic")
@click.option("--threshold", type=float, default=None, help="Speech probability threshold")
@click.option("--window-ms", type=int, default=None, help="Classifier window length (ms)")
@click.option("--min-silence-ms", type=int, default=None, help="Silence needed to end a segment")
@click.option("--min-speech-ms", type=int, default=None, help="Shortest segment kept")
@click.option("--max-speech-s", type=float, default=None, help="Longest segment before a forced cut")
@click.option("--resample", is_flag=True, help="Resample unsupported rates to 16 kHz")
@click.option("--out-dir", type=click.Path(file_okay=False, path_type=Path), default=None,
              help="Write each segment to DIR/segment_<n>.wav")
@click.option("--json", "json_path", type=click.Path(dir_okay=False, path_type=Path), default=None,
              help="Save segments as JSON")
@click.pass_context
def detect(
    ctx: click.Context,
    audio: Path,
    model_path: Optional[Path],
    kind: str,
    threshold: Optional[float],
    window_ms: Optional[int],
    min_silence_ms: Optional[int],
    min_speech_ms: Optional[int],
    max_speech_s: Optional[float],
    resample: bool,
    out_dir: Optional[Path],
    json_path: Optional[Path],
):
    """Detect speech segments in AUDIO."""
    from voiceseg.audio_io import load_audio, write_segment
    from voiceseg.classifier import EnergyClassifier, load_classifier
    from voiceseg.engine import SegmentationEngine

    config = ctx.obj["config"]
    overrides = {
        "threshold": threshold,
        "window_ms": window_ms,
        "min_silence_ms": min_silence_ms,
        "min_speech_ms": min_speech_ms,
        "max_speech_s": max_speech_s,
    }
    vad_section = {**config.get("vad", {}), **{k: v for k, v in overrides.items() if v is not None}}
    model_path = model_path or config.get("model", {}).get("path")

    try:
        logger.info("Loading audio file: %s", audio)
        samples, sample_rate = load_audio(audio)
        if sample_rate not in SUPPORTED_SAMPLE_RATES:
            if not resample:
                console.print(
                    f"[red]Unsupported sample rate: {sample_rate} (expected 8000 or 16000). "
                    f"Use --resample to convert.[/red]"
                )
                sys.exit(1)
            samples, sample_rate = load_audio(audio, target_sr=16_000)

        vad_config = vad_config_from_mapping(vad_section, sample_rate)

        if kind == "model" or (kind == "auto" and model_path):
            if not model_path:
                console.print("[red]--classifier model needs --model or model.path in config[/red]")
                sys.exit(1)
            logger.info("Initializing VAD with model: %s", model_path)
            classifier = load_classifier(model_path)
        else:
            logger.warning("No model configured - using the energy heuristic")
            classifier = EnergyClassifier(context_samples=vad_config.context_samples)

        engine = SegmentationEngine(vad_config, classifier)
        logger.info("Processing %d samples...", len(samples))
        segments = engine.process(samples)
    except (VoiceSegError, FileNotFoundError, ImportError) as exc:
        console.print(f"[red]Error: {exc}[/red]")
        sys.exit(1)
    except ffmpeg.Error as exc:
        detail = (exc.stderr or b"").decode(errors="replace").strip()
        console.print(f"[red]Error: ffmpeg could not convert {audio}: {detail or exc}[/red]")
        sys.exit(1)

    if not segments:
        console.print("[yellow]No speech detected[/yellow]")

    saved = 0
    for seg in segments:
        start_s, end_s = seg.to_seconds(sample_rate, ndigits=1)
        console.print(f"Speech detected from {start_s:.1f} s to {end_s:.1f} s")

        if out_dir is not None:
            path = write_segment(samples, seg, saved, out_dir, sample_rate)
            if path is not None:
                console.print(f"  -> Saved segment to {path}")
                saved += 1

    if json_path is not None:
        json_path.parent.mkdir(parents=True, exist_ok=True)
        payload = [
            {**seg.to_dict(), "start_s": seg.start / sample_rate, "end_s": seg.end / sample_rate}
            for seg in segments
        ]
        with open(json_path, "w") as f:
            json.dump(payload, f, indent=2)
        console.print(f"Segments saved to: {json_path}")


@cli.command(name="config")
@click.pass_context
def show_config(ctx: click.Context):
    """Show the effective configuration."""
    config = ctx.obj["config"]

    console.print(Panel.fit("[bold blue]voiceseg configuration[/bold blue]"))

    table = Table(title="\nVAD")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")
    for key, value in config.get("vad", {}).items():
        table.add_row(key, str(value))
    console.print(table)

    console.print(f"\n[bold]Model:[/bold] {config.get('model', {}).get('path') or '[yellow]none (energy heuristic)[/yellow]'}")
    console.print(f"[bold]Log file:[/bold] {get_log_file_path(config) or '-'}")

    for rate in SUPPORTED_SAMPLE_RATES:
        try:
            derived = vad_config_from_mapping(config.get("vad", {}), rate)
        except VoiceSegError as exc:
            console.print(f"[red]Invalid settings: {exc}[/red]")
            sys.exit(1)
        console.print(
            f"  {rate} Hz: window={derived.window_size_samples} context={derived.context_samples} "
            f"min_silence={derived.min_silence_samples} min_speech={derived.min_speech_samples}"
        )


def main():
    """Entry point for the voiceseg command."""
    cli()


if __name__ == "__main__":
    main()
