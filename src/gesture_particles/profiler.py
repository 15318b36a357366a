"""Frame budget accounting for the render loop.

A render tick has a budget of 1/target_fps. `frame()` times a whole tick and
counts the ticks that ran over it; `stage()` times one part of a tick or a
camera callback. Every sample keeps its start time, so the report also shows
how often each stage actually ran: the camera callback rate is set by the
camera, not by the render loop.
"""

from __future__ import annotations

import time
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, Optional

import numpy as np

FRAME = "frame"


@dataclass
class StageTiming:
    """Durations over the sample window, plus the observed call rate."""
    name: str
    calls: int
    mean_ms: float
    p95_ms: float
    max_ms: float
    rate_hz: float

    def to_dict(self) -> dict:
        return {
            "calls": self.calls,
            "mean_ms": round(self.mean_ms, 3),
            "p95_ms": round(self.p95_ms, 3),
            "max_ms": round(self.max_ms, 3),
            "rate_hz": round(self.rate_hz, 1),
        }


class FrameProfiler:
    """Per-stage timings and frame budget overruns.

    Usage:
        profiler = FrameProfiler(target_fps=60)

        with profiler.frame():
            with profiler.stage("advance"):
                engine.advance()
            with profiler.stage("render"):
                renderer.draw(frame)

        print(profiler.report())
    """

    def __init__(self, target_fps: float = 60.0, window: int = 240):
        if target_fps <= 0:
            raise ValueError(f"target_fps must be positive, got {target_fps}")
        if window < 1:
            raise ValueError(f"window must be at least 1, got {window}")
        self.target_fps = target_fps
        self.window = window
        self.enabled = True
        self.overruns = 0
        # name -> (start_s, duration_ms) samples
        self._samples: dict[str, deque[tuple[float, float]]] = {}
        self._calls: dict[str, int] = {}

    @property
    def budget_ms(self) -> float:
        return 1000.0 / self.target_fps

    @property
    def frames(self) -> int:
        return self._calls.get(FRAME, 0)

    @property
    def overrun_fraction(self) -> float:
        return self.overruns / self.frames if self.frames else 0.0

    def _record(self, name: str, start: float, elapsed_ms: float):
        samples = self._samples.get(name)
        if samples is None:
            samples = self._samples[name] = deque(maxlen=self.window)
            self._calls[name] = 0
        samples.append((start, elapsed_ms))
        self._calls[name] += 1

    @contextmanager
    def stage(self, name: str) -> Iterator[None]:
        """Time the enclosed block under `name`, even if it raises."""
        if not self.enabled:
            yield
            return
        start = time.perf_counter()
        try:
            yield
        finally:
            self._record(name, start, (time.perf_counter() - start) * 1000.0)

    @contextmanager
    def frame(self) -> Iterator[None]:
        """Time one whole tick and check it against the budget."""
        if not self.enabled:
            yield
            return
        start = time.perf_counter()
        try:
            yield
        finally:
            elapsed_ms = (time.perf_counter() - start) * 1000.0
            self._record(FRAME, start, elapsed_ms)
            if elapsed_ms > self.budget_ms:
                self.overruns += 1

    def timing(self, name: str) -> Optional[StageTiming]:
        samples = self._samples.get(name)
        if not samples:
            return None
        starts, durations = np.array(samples, dtype=np.float64).T
        span = starts[-1] - starts[0]
        return StageTiming(
            name=name,
            calls=self._calls[name],
            mean_ms=float(durations.mean()),
            p95_ms=float(np.percentile(durations, 95)),
            max_ms=float(durations.max()),
            rate_hz=(len(starts) - 1) / span if span > 0 else 0.0,
        )

    def report(self) -> dict:
        """Budget, overruns and per-stage timings. `frame` is listed as a stage."""
        return {
            "target_fps": self.target_fps,
            "budget_ms": round(self.budget_ms, 3),
            "frames": self.frames,
            "overruns": self.overruns,
            "stages": {name: self.timing(name).to_dict() for name in self._samples if self._samples[name]},
        }

    def reset(self):
        self._samples.clear()
        self._calls.clear()
        self.overruns = 0
