"""GestureParticles CLI — the main entry point for all operations.

Usage:
    gesture-particles run         — Live preview window, optional webcam gestures
    gesture-particles generate    — Generate a pattern and print its statistics
    gesture-particles record      — Record hand landmarks from the camera
    gesture-particles replay      — Replay a recording through extractor + smoothing
    gesture-particles benchmark   — Measure smoothing ticks per second
"""

from __future__ import annotations

import logging
import math
import time
from pathlib import Path

try:
    import typer
except ImportError:
    raise ImportError("typer is required for CLI. Install with: pip install typer")
from typing import Optional

app = typer.Typer(
    name="gesture-particles",
    help="✨ Hand-gesture controlled particle patterns.",
    add_completion=False,
)

# Keys 1-7 in the preview window
PATTERN_KEYS = {
    ord("1"): "heart",
    ord("2"): "cube",
    ord("3"): "sphere",
    ord("4"): "torus",
    ord("5"): "galaxy",
    ord("6"): "wave",
    ord("7"): "helix",
}


def _setup_logging(level: str):
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _load_session_config(
    config_path: Optional[str],
    pattern: Optional[str],
    particles: Optional[int],
    tint: Optional[str],
    preset: Optional[str],
):
    from gesture_particles.config import SessionConfig, load_config

    if config_path:
        config = load_config(config_path)
        data = config.to_dict()
    else:
        data = SessionConfig().to_dict()
        # Let --preset pick the rotation constants when no file pins them
        data.pop("rotation_mapping")

    if pattern:
        data["pattern"] = pattern
    if particles:
        data["particle_count"] = particles
    if tint:
        data["tint"] = tint
    if preset:
        data["rotation_preset"] = preset
        data.pop("rotation_mapping", None)

    try:
        return SessionConfig.from_dict(data)
    except ValueError as e:
        typer.echo(f"❌ {e}", err=True)
        raise typer.Exit(1)


@app.command()
def run(
    pattern: Optional[str] = typer.Option(None, help="Starting pattern"),
    particles: Optional[int] = typer.Option(None, help="Particle count"),
    tint: Optional[str] = typer.Option(None, help="Tint color as hex, e.g. #00ffff"),
    gesture: bool = typer.Option(False, "--gesture", help="Enable webcam gesture control"),
    preset: Optional[str] = typer.Option(None, help="Rotation preset: symmetric or asymmetric"),
    drawing: Optional[str] = typer.Option(None, help="Image used for the custom pattern (key 'c')"),
    config: Optional[str] = typer.Option(None, help="Path to YAML config"),
    width: int = typer.Option(960, help="Window width"),
    height: int = typer.Option(720, help="Window height"),
    fps: float = typer.Option(60.0, min=1.0, help="Target render rate"),
    log_level: str = typer.Option("info", help="Log level"),
):
    """Open a preview window. Keys: 1-7 patterns, c custom, g gestures, q quit."""
    import cv2
    from gesture_particles.drawing import load_foreground
    from gesture_particles.render import OpenCVPointRenderer
    from gesture_particles.profiler import FrameProfiler
    from gesture_particles.session import ParticleSession
    from gesture_particles.tracker import BackgroundHandTracker, LibraryLoadError, MediaPipeHandTracker

    _setup_logging(log_level)
    cfg = _load_session_config(config, pattern, particles, tint, preset)

    foreground = None
    if drawing:
        try:
            foreground = load_foreground(drawing)
        except FileNotFoundError as e:
            typer.echo(f"❌ {e}", err=True)
            raise typer.Exit(1)
        typer.echo(f"🖌  Loaded drawing: {len(foreground)} foreground points")

    def start_gesture(session: ParticleSession):
        try:
            session.enable_gesture(BackgroundHandTracker(MediaPipeHandTracker(cfg.camera)))
            typer.echo("🎥 Gesture control on: pinch to scale, move your palm to rotate")
        except (LibraryLoadError, RuntimeError) as e:
            # Animation keeps running without gestures
            typer.echo(f"⚠️  Gesture control unavailable: {e}", err=True)

    renderer = OpenCVPointRenderer(width=width, height=height)
    profiler = FrameProfiler(target_fps=fps)

    with ParticleSession(cfg, renderer, profiler=profiler) as session:
        typer.echo(f"🚀 {session.particle_count} particles, pattern: {session.pattern.value}")
        if gesture or cfg.gesture_enabled:
            start_gesture(session)

        while True:
            t0 = time.perf_counter()
            # Takes the newest camera sample, if any; never waits on the camera
            session.poll()
            session.tick()

            remaining_ms = profiler.budget_ms - (time.perf_counter() - t0) * 1000
            key = cv2.waitKey(max(1, int(remaining_ms))) & 0xFF

            if key in (ord("q"), 27):
                break
            if key in PATTERN_KEYS:
                session.select_pattern(PATTERN_KEYS[key])
            elif key == ord("c"):
                session.select_pattern("custom", foreground=foreground)
            elif key == ord("g"):
                if session.gesture_enabled:
                    session.disable_gesture()
                    typer.echo("🛑 Gesture control off")
                else:
                    start_gesture(session)

    report = profiler.report()
    typer.echo(
        f"\n📈 Frame breakdown: {report['frames']} frames, "
        f"{report['overruns']} over the {report['budget_ms']:.1f}ms budget"
    )
    for name, stats in report["stages"].items():
        typer.echo(
            f"   {name:10s} mean={stats['mean_ms']:.3f}ms  p95={stats['p95_ms']:.3f}ms  "
            f"rate={stats['rate_hz']:.1f}Hz"
        )


@app.command()
def generate(
    pattern: str = typer.Argument(..., help="Pattern name"),
    count: int = typer.Option(15000, help="Particle count"),
    seed: Optional[int] = typer.Option(None, help="Random seed"),
    drawing: Optional[str] = typer.Option(None, help="Image for the custom pattern"),
    output: Optional[str] = typer.Option(None, "-o", help="Save buffers to .npz"),
):
    """Generate a pattern and print its shape statistics."""
    import numpy as np
    from gesture_particles.drawing import load_foreground
    from gesture_particles.patterns import generate as generate_pattern

    try:
        foreground = load_foreground(drawing) if drawing else None
        data = generate_pattern(pattern, count, foreground=foreground, rng=np.random.default_rng(seed))
    except (ValueError, FileNotFoundError) as e:
        typer.echo(f"❌ {e}", err=True)
        raise typer.Exit(1)

    points = data.points()
    radius = np.linalg.norm(points, axis=1)
    edge = float(np.mean(radius >= 0.9 * data.scale))

    typer.echo(f"🔷 {data.pattern.value}: {data.count} particles (scale {data.scale})")
    typer.echo(f"   Radius: min={radius.min():.3f} mean={radius.mean():.3f} max={radius.max():.3f}")
    for axis, name in enumerate("xyz"):
        typer.echo(f"   {name}: [{points[:, axis].min():.3f}, {points[:, axis].max():.3f}]")
    typer.echo(f"   Outer fraction (r >= 0.9·scale): {edge:.1%}")

    if output:
        path = Path(output).with_suffix(".npz")
        np.savez_compressed(
            path,
            positions=data.positions,
            targets=data.targets,
            sizes=data.sizes,
            colors=data.colors,
        )
        typer.echo(f"💾 Saved to: {path}")


@app.command()
def record(
    output: str = typer.Option("recording.json", "-o", help="Output file path"),
    duration: float = typer.Option(0, help="Recording duration in seconds (0 = until Ctrl+C)"),
    compact: bool = typer.Option(False, help="Save in compact .npz format"),
    camera: int = typer.Option(0, help="Camera device index"),
):
    """Record hand landmark frames from the camera."""
    from gesture_particles.recorder import HandFrameRecorder
    from gesture_particles.tracker import CameraConfig, LibraryLoadError, MediaPipeHandTracker

    try:
        tracker = MediaPipeHandTracker(CameraConfig(camera_index=camera))
    except LibraryLoadError as e:
        typer.echo(f"❌ {e}", err=True)
        raise typer.Exit(1)

    recorder = HandFrameRecorder()
    tracker.on_frame(recorder.add_frame)

    try:
        tracker.start()
    except RuntimeError as e:
        typer.echo(f"❌ {e}", err=True)
        raise typer.Exit(1)

    typer.echo(f"🎥 Recording from camera {camera}...")
    typer.echo("   Press Ctrl+C to stop")
    recorder.start()
    start = time.monotonic()

    try:
        while True:
            tracker.poll()
            if recorder.frame_count % 30 == 0:
                typer.echo(
                    f"\r   Frames: {recorder.frame_count} | Hand frames: {recorder.hand_frame_count}",
                    nl=False,
                )
            if duration > 0 and (time.monotonic() - start) >= duration:
                break
    except KeyboardInterrupt:
        pass
    finally:
        recorder.stop()
        tracker.close()

    typer.echo(f"\n\n📼 Recorded {recorder.frame_count} frames ({recorder.duration:.1f}s)")
    if compact:
        path = recorder.save_compact(output)
    else:
        path = Path(output)
        recorder.save(path)
    typer.echo(f"💾 Saved to: {path}")


@app.command()
def replay(
    recording: str = typer.Argument(..., help="Path to recording file"),
    particles: int = typer.Option(2000, help="Particle count"),
    pattern: str = typer.Option("sphere", help="Pattern"),
    preset: str = typer.Option("symmetric", help="Rotation preset"),
    ticks_per_frame: int = typer.Option(2, help="Render ticks per camera frame"),
    every: int = typer.Option(10, help="Print every N camera frames"),
):
    """Replay a recording headlessly and print the scale/rotation trace."""
    from gesture_particles.config import SessionConfig
    from gesture_particles.recorder import HandFramePlayer
    from gesture_particles.session import ParticleSession
    from gesture_particles.tracker import ReplayHandTracker

    path = Path(recording)
    if not path.exists():
        typer.echo(f"❌ Recording not found: {recording}", err=True)
        raise typer.Exit(1)

    player = HandFramePlayer.load(path)
    typer.echo(f"▶️  Replaying {path.name} ({player.frame_count} frames, {player.duration:.1f}s)")

    try:
        cfg = SessionConfig(particle_count=particles, pattern=pattern, rotation_preset=preset)
    except ValueError as e:
        typer.echo(f"❌ {e}", err=True)
        raise typer.Exit(1)

    transitions = 0

    def on_transition(old, new):
        nonlocal transitions
        transitions += 1
        typer.echo(f"   🤚 {old.value} → {new.value}")

    with ParticleSession(cfg) as session:
        session.extractor.on_transition(on_transition)
        session.enable_gesture(ReplayHandTracker(player.frames()))

        frame_index = 0
        while session.poll():
            for _ in range(max(1, ticks_per_frame)):
                session.tick()
            frame_index += 1
            if frame_index % max(1, every) == 0:
                s = session.state
                typer.echo(
                    f"   #{frame_index:5d} scale {s.scale_current:.3f}→{s.scale_target:.3f} "
                    f"rotX {math.degrees(s.rotation_x_current):6.1f}° "
                    f"rotY {math.degrees(s.rotation_y_current):6.1f}°"
                )

        extractor = session.extractor
        typer.echo(
            f"\n✅ Replay complete. {extractor.hand_frames}/{extractor.frames_processed} hand frames, "
            f"{transitions} transitions, {extractor.skipped_scale_updates} skipped scale updates."
        )


@app.command()
def benchmark(
    particles: int = typer.Option(15000, min=1, help="Particle count"),
    ticks: int = typer.Option(600, min=1, help="Number of ticks"),
    pattern: str = typer.Option("galaxy", help="Pattern"),
    fps: float = typer.Option(60.0, min=1.0, help="Frame budget to check ticks against"),
):
    """Measure smoothing throughput at a given particle count."""
    import numpy as np
    from gesture_particles.patterns import generate as generate_pattern
    from gesture_particles.smoothing import GestureState, SmoothingEngine
    from gesture_particles.profiler import FrameProfiler

    typer.echo(f"⚡ Running benchmark: {ticks} ticks, {particles} particles")

    profiler = FrameProfiler(target_fps=fps, window=ticks)
    with profiler.stage("generate"):
        data = generate_pattern(pattern, particles, rng=np.random.default_rng(42))

    state = GestureState(scale_target=2.0)
    engine = SmoothingEngine(state, data.targets, positions=np.zeros_like(data.targets))

    for _ in range(ticks):
        with profiler.frame():
            engine.advance()

    tick = profiler.timing("frame")
    tps = 1000 / tick.mean_ms if tick.mean_ms > 0 else 0

    typer.echo("\n📊 Results:")
    typer.echo(f"   Mean tick:     {tick.mean_ms:.3f} ms")
    typer.echo(f"   P95 tick:      {tick.p95_ms:.3f} ms")
    typer.echo(f"   Throughput:    {tps:.0f} ticks/s")
    typer.echo(f"   Over budget:   {profiler.overruns}/{profiler.frames} ticks at {fps:.0f} fps")
    typer.echo(f"   Generation:    {profiler.timing('generate').mean_ms:.2f} ms")


def main():
    app()


if __name__ == "__main__":
    main()
