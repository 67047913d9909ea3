"""tap-engine CLI.

Usage:
    tap-engine run            Detect taps live from the webcam
    tap-engine benchmark      Measure pipeline latency on synthetic frames
    tap-engine preprocessors  List available preprocessors
    tap-engine config         Print the default config or validate a file
"""

from __future__ import annotations

import logging
import time
from typing import Optional

import typer
import yaml

from tap_engine.config import ConfigError, PipelineConfig
from tap_engine.events import WILDCARD
from tap_engine.pipeline import TapPipeline
from tap_engine.preprocessors import AVAILABLE_PREPROCESSORS

logger = logging.getLogger("tap_engine.cli")

app = typer.Typer(
    name="tap-engine",
    help="👆 Real-time thumb tap recognition from hand landmarks.",
    add_completion=False,
)


@app.callback()
def setup(
    log_level: str = typer.Option("warning", "--log-level", help="Log level"),
):
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.WARNING),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )


def _load_pipeline(config_path: Optional[str], selfie: Optional[bool] = None) -> TapPipeline:
    """Build a pipeline from a config file or the defaults. ``selfie`` overrides the file when given."""
    try:
        config = PipelineConfig.from_yaml(config_path) if config_path else PipelineConfig()
    except (ConfigError, OSError) as e:
        typer.echo(f"❌ {e}", err=True)
        raise typer.Exit(1)
    if selfie is not None:
        config.coordinate_system = "selfie" if selfie else "camera"
    return TapPipeline.from_config(config)


@app.command()
def run(
    camera: int = typer.Option(0, help="Camera device index"),
    config: Optional[str] = typer.Option(None, "--config", help="Path to pipeline YAML config"),
    selfie: Optional[bool] = typer.Option(
        None, "--selfie/--no-selfie", help="Mirrored (selfie) camera coordinates [default: from config]",
    ),
    duration: float = typer.Option(0, help="Run duration in seconds (0 = until Ctrl+C)"),
):
    """Detect taps from the webcam and print every event."""
    import cv2
    from tap_engine.detector import HandDetector

    pipeline = _load_pipeline(config, selfie)

    cap = cv2.VideoCapture(camera)
    if not cap.isOpened():
        typer.echo(f"❌ Could not open camera {camera}", err=True)
        raise typer.Exit(1)

    def on_event(event):
        typer.echo(f"   👆 {event.type}: {event.data.get('finger', '')} {event.data.get('phalanx_name', '')} ({event.hand})")

    pipeline.bus.on(WILDCARD, on_event)
    detector = HandDetector()

    typer.echo(f"🎥 Watching camera {camera}... press Ctrl+C to stop")
    start = time.monotonic()
    try:
        while True:
            ret, frame = cap.read()
            if not ret:
                continue

            frame_rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
            pipeline.process_results(detector.detect(frame_rgb))

            if duration > 0 and (time.monotonic() - start) >= duration:
                break
    except KeyboardInterrupt:
        pass
    finally:
        cap.release()
        detector.close()
        pipeline.close()

    status = pipeline.status
    typer.echo(f"\n✅ {status.frame_count} frames, {status.total_events} events, {status.fps:.1f} FPS")


@app.command()
def benchmark(
    iterations: int = typer.Option(1000, help="Number of frames"),
    config: Optional[str] = typer.Option(None, "--config", help="Path to pipeline YAML config"),
):
    """Run the full pipeline on synthetic frames and report latency."""
    from tap_engine.synthetic import jittered_frames

    pipeline = _load_pipeline(config)
    frames = jittered_frames(iterations)
    typer.echo(f"⚡ Running benchmark: {iterations} frames")

    times = []
    for frame in frames:
        t0 = time.perf_counter()
        pipeline.process_frame(frame)
        times.append(time.perf_counter() - t0)
    pipeline.close()

    avg_ms = sum(times) / len(times) * 1000
    p95_ms = sorted(times)[int(len(times) * 0.95)] * 1000
    fps = 1000 / avg_ms if avg_ms > 0 else 0

    typer.echo(f"\n📊 Results:")
    typer.echo(f"   Average latency: {avg_ms:.3f} ms")
    typer.echo(f"   P95 latency:     {p95_ms:.3f} ms")
    typer.echo(f"   Throughput:      {fps:.0f} FPS")
    typer.echo(f"   Features stored: {len(pipeline.store)}")


@app.command()
def preprocessors():
    """List the available preprocessors and whether they are on by default."""
    for pid, (cls, enabled) in AVAILABLE_PREPROCESSORS.items():
        mark = "✅" if enabled else "⬜"
        typer.echo(f"{mark} {pid:15s} {cls.name}: {cls.description}")


@app.command("config")
def show_config(
    path: Optional[str] = typer.Argument(None, help="Config file to validate"),
):
    """Print the default pipeline config, or validate and print a config file."""
    try:
        config = PipelineConfig.from_yaml(path) if path else PipelineConfig()
    except (ConfigError, OSError) as e:
        typer.echo(f"❌ {e}", err=True)
        raise typer.Exit(1)
    typer.echo(yaml.dump(config.to_dict(), default_flow_style=False, sort_keys=False), nl=False)


def main():
    app()


if __name__ == "__main__":
    main()
