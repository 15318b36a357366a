"""ParticleSession wires patterns, smoothing, gestures and a renderer together.

Two periodic sources drive a session on one thread:
- the render tick: `tick()` advances smoothing and draws
- the camera: `poll()` reads one tracker frame, which lands in
  `GestureExtractor.process` through the tracker callback

They only meet in the shared GestureState. With a `BackgroundHandTracker`
the camera read runs on a reader thread and `poll()` only hands over the
newest sample, so the render tick never waits on the camera.

Usage:
    with ParticleSession(SessionConfig(), renderer) as session:
        session.select_pattern("torus")
        while running:
            session.poll()
            session.tick()
"""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np

from gesture_particles.config import SessionConfig, parse_hex_color
from gesture_particles.extractor import GestureExtractor
from gesture_particles.patterns import ForegroundSample, Pattern, auto_rotates, entry_jitter, generate
from gesture_particles.profiler import FrameProfiler
from gesture_particles.render import HeadlessRenderer, PointRenderer, RenderFrame
from gesture_particles.smoothing import GestureState, SmoothingEngine
from gesture_particles.tracker import HandTracker

logger = logging.getLogger("gesture_particles.session")


class ParticleSession:
    """One animated point cloud with optional gesture control."""

    def __init__(
        self,
        config: Optional[SessionConfig] = None,
        renderer: Optional[PointRenderer] = None,
        rng: Optional[np.random.Generator] = None,
        profiler: Optional[FrameProfiler] = None,
    ):
        self.config = config or SessionConfig()
        self.renderer = renderer or HeadlessRenderer()
        self.rng = rng or np.random.default_rng()
        self.profiler = profiler or FrameProfiler()

        cfg = self.config
        self.state = GestureState(
            min_scale=cfg.scale_mapping.min_scale,
            max_scale=cfg.scale_mapping.max_scale,
        )
        self.extractor = GestureExtractor(self.state, cfg.scale_mapping, cfg.rotation_mapping)

        self.pattern = Pattern.parse(cfg.pattern)
        with self.profiler.stage("generate"):
            data = generate(self.pattern, cfg.particle_count, rng=self.rng)
        self.sizes = data.sizes
        self.colors = data.colors
        self.tint = parse_hex_color(cfg.tint)

        self.engine = SmoothingEngine(self.state, data.targets, cfg.smoothing)
        self.engine.set_positions(entry_jitter(cfg.particle_count, self.rng, cfg.smoothing.entry_spread))
        self.engine.set_idle_tilt(*data.tilt)
        self.engine.set_auto_rotation(auto_rotates(self.pattern))

        self.tracker: Optional[HandTracker] = None
        self._open = False

    # --- Lifecycle ---

    @property
    def particle_count(self) -> int:
        return self.engine.count

    @property
    def is_open(self) -> bool:
        return self._open

    def open(self):
        if self._open:
            return
        self.renderer.acquire(self.particle_count)
        self._open = True
        logger.info(
            "Session opened: %d particles, pattern=%s", self.particle_count, self.pattern.value
        )

    def close(self):
        """Stop gestures and release renderer resources."""
        if not self._open:
            return
        try:
            self.disable_gesture()
        finally:
            self.renderer.release()
            self._open = False
            logger.info("Session closed after %d ticks", self.engine.tick_count)

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, *args):
        self.close()

    def resize(self, width: int, height: int):
        self.renderer.resize(width, height)

    # --- User selections ---

    def select_pattern(
        self,
        pattern: Pattern | str,
        foreground: Optional[ForegroundSample] = None,
    ):
        """Morph toward a new pattern. Current positions are kept."""
        pattern = Pattern.parse(pattern)
        with self.profiler.stage("generate"):
            data = generate(pattern, self.particle_count, foreground=foreground, rng=self.rng)

        self.engine.set_targets(data.targets)
        self.engine.set_idle_tilt(*data.tilt)
        self.engine.set_auto_rotation(auto_rotates(pattern))
        self.sizes[:] = data.sizes
        self.colors[:] = data.colors
        self.pattern = pattern
        logger.info("Pattern switched to %s", pattern.value)

    def set_tint(self, color: str):
        self.tint = parse_hex_color(color)
        self.config.tint = color

    # --- Gesture control ---

    @property
    def gesture_enabled(self) -> bool:
        return self.tracker is not None

    def enable_gesture(self, tracker: HandTracker):
        """Attach a tracker and start it.

        A failing start leaves the session animating without gestures and
        re-raises, so the caller can show the error.
        """
        if self.tracker is not None:
            self.disable_gesture()

        tracker.on_frame(self._on_camera_frame)
        try:
            tracker.start()
        except Exception as e:
            tracker.remove_callback(self._on_camera_frame)
            logger.warning("Gesture tracker failed to start: %s", e)
            raise
        self.tracker = tracker
        self.config.gesture_enabled = True

    def disable_gesture(self):
        """Detach the callback, release the capture, send targets to rest."""
        tracker = self.tracker
        if tracker is None:
            return
        self.tracker = None
        tracker.remove_callback(self._on_camera_frame)
        try:
            tracker.stop()
        finally:
            self.extractor.stop()
            self.config.gesture_enabled = False

    def _on_camera_frame(self, landmarks: Optional[np.ndarray]):
        with self.profiler.stage("gesture"):
            self.extractor.process(landmarks)

    # --- Frame loop ---

    def poll(self) -> bool:
        """Process at most one camera frame, if a tracker is attached."""
        if self.tracker is None:
            return False
        return self.tracker.poll()

    def frame(self) -> RenderFrame:
        return RenderFrame(
            positions=self.engine.positions,
            colors=self.colors,
            sizes=self.sizes,
            tint=self.tint,
            rotation=self.engine.rotation,
        )

    def tick(self) -> RenderFrame:
        """Advance all channels one step and draw."""
        with self.profiler.frame():
            with self.profiler.stage("advance"):
                self.engine.advance()
            frame = self.frame()
            if self._open:
                with self.profiler.stage("render"):
                    self.renderer.draw(frame)
        return frame
