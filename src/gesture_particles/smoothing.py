"""Per-frame exponential smoothing of every visual channel.

Each tick moves a channel a fixed fraction of the way to its target:

    current += alpha * (target - current)

Particle positions chase `pattern_target * scale_current`, and the scale
itself chases its own target, so position lags an already-lagging scaled
target. Rotation and idle tilt use the same filter, nothing is snapped.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Optional

import numpy as np

logger = logging.getLogger("gesture_particles.smoothing")

TWO_PI = 2 * math.pi


def lerp_step(current, target, alpha: float):
    """One exponential smoothing step. Works on floats and numpy arrays."""
    return current + alpha * (target - current)


def steps_to_converge(alpha: float, epsilon: float, deviation: float = 1.0) -> int:
    """Ticks until |current - target| < epsilon, starting `deviation` away.

    The deviation shrinks by (1 - alpha) per tick, so this is
    ceil(ln(epsilon / deviation) / ln(1 - alpha)).
    """
    if not 0 < alpha <= 1:
        raise ValueError(f"alpha must be in (0, 1], got {alpha}")
    if epsilon <= 0:
        raise ValueError(f"epsilon must be positive, got {epsilon}")

    deviation = abs(deviation)
    if deviation < epsilon:
        return 0
    if alpha == 1:
        return 1
    k = math.ceil(math.log(epsilon / deviation) / math.log(1 - alpha))
    # Exactly epsilon away is not yet "< epsilon"
    if deviation * (1 - alpha) ** k >= epsilon:
        k += 1
    return max(k, 1)


def _check_alpha(name: str, value: float):
    if not 0 < value <= 1:
        raise ValueError(f"{name} must be in (0, 1], got {value}")


@dataclass
class SmoothingConfig:
    """Smoothing constants for the render-tick channels."""
    position_alpha: float = 0.08
    scale_alpha: float = 0.12
    tilt_alpha: float = 0.05
    auto_rotation_step: float = 0.001  # radians per tick while idle
    entry_spread: float = 0.1

    def __post_init__(self):
        _check_alpha("position_alpha", self.position_alpha)
        _check_alpha("scale_alpha", self.scale_alpha)
        _check_alpha("tilt_alpha", self.tilt_alpha)
        if self.auto_rotation_step < 0:
            raise ValueError("auto_rotation_step must be >= 0")

    def to_dict(self) -> dict:
        return {
            "position_alpha": self.position_alpha,
            "scale_alpha": self.scale_alpha,
            "tilt_alpha": self.tilt_alpha,
            "auto_rotation_step": self.auto_rotation_step,
            "entry_spread": self.entry_spread,
        }

    @classmethod
    def from_dict(cls, data: dict) -> SmoothingConfig:
        known = cls().to_dict()
        return cls(**{k: float(v) for k, v in data.items() if k in known})


@dataclass
class GestureState:
    """Shared cell between the camera callback and the render tick.

    Producer/consumer contract:
    - GestureExtractor (camera cadence) writes the *_target fields,
      `hand_detected` and `rotation_alpha`.
    - SmoothingEngine (render cadence) writes the *_current fields and
      `auto_rotation_angle`.
    Both run on one thread; each field is a last-writer-wins cell and
    no locking is needed.
    """
    scale_target: float = 1.0
    scale_current: float = 1.0
    rotation_x_target: float = 0.0
    rotation_x_current: float = 0.0
    rotation_y_target: float = 0.0
    rotation_y_current: float = 0.0
    hand_detected: bool = False
    auto_rotation_angle: float = 0.0
    rotation_alpha: float = 0.05
    tilt_x_target: float = 0.0
    tilt_x_current: float = 0.0
    tilt_z_target: float = 0.0
    tilt_z_current: float = 0.0
    min_scale: float = 0.2
    max_scale: float = 3.0

    def __post_init__(self):
        if not 0 < self.min_scale <= self.max_scale:
            raise ValueError(
                f"Invalid scale range [{self.min_scale}, {self.max_scale}]"
            )
        _check_alpha("rotation_alpha", self.rotation_alpha)
        self.scale_target = self.clamp_scale(self.scale_target)
        self.scale_current = self.clamp_scale(self.scale_current)

    def clamp_scale(self, value: float) -> float:
        return min(self.max_scale, max(self.min_scale, value))

    def reset_targets(self):
        """Send targets back to rest. Current values settle through smoothing."""
        self.scale_target = self.clamp_scale(1.0)
        self.rotation_x_target = 0.0
        self.rotation_y_target = 0.0
        self.hand_detected = False


class SmoothingEngine:
    """Advances all smoothed channels once per render tick.

    Usage:
        engine = SmoothingEngine(state, data.targets)
        engine.positions[:] = entry_jitter(n)
        # every frame:
        engine.advance()
        renderer.draw(engine.positions, engine.rotation)
    """

    def __init__(
        self,
        state: GestureState,
        targets: np.ndarray,
        config: Optional[SmoothingConfig] = None,
        positions: Optional[np.ndarray] = None,
    ):
        self.state = state
        self.config = config or SmoothingConfig()

        targets = np.asarray(targets, dtype=np.float32).reshape(-1)
        if len(targets) == 0 or len(targets) % 3:
            raise ValueError(f"Target buffer length must be a positive multiple of 3, got {len(targets)}")
        self._targets = targets.copy()

        if positions is None:
            self._positions = self._targets.copy()
        else:
            self._positions = np.array(positions, dtype=np.float32).reshape(-1)
            self._check_length(self._positions)

        self._idle_tilt = (0.0, 0.0)
        self.auto_rotate = True
        self._scratch = np.empty_like(self._positions)
        self.tick_count = 0

    def _check_length(self, buf: np.ndarray):
        if len(buf) != len(self._targets):
            raise ValueError(
                f"Buffer length {len(buf)} does not match particle buffer length {len(self._targets)}"
            )

    @property
    def count(self) -> int:
        return len(self._targets) // 3

    @property
    def positions(self) -> np.ndarray:
        """Current positions (3N,), rewritten in place every tick."""
        return self._positions

    @property
    def targets(self) -> np.ndarray:
        """Pattern-space targets (3N,), unscaled."""
        return self._targets

    def set_targets(self, targets: np.ndarray):
        """Swap in a new pattern's targets; positions morph toward them."""
        targets = np.asarray(targets, dtype=np.float32).reshape(-1)
        self._check_length(targets)
        self._targets[:] = targets
        logger.debug("Swapped targets for %d particles at tick %d", self.count, self.tick_count)

    def set_positions(self, positions: np.ndarray):
        positions = np.asarray(positions, dtype=np.float32).reshape(-1)
        self._check_length(positions)
        self._positions[:] = positions

    def set_idle_tilt(self, tilt_x: float, tilt_z: float):
        self._idle_tilt = (float(tilt_x), float(tilt_z))

    def set_auto_rotation(self, enabled: bool):
        """Turn the idle spin on or off. When off, the spin angle eases back to 0 mod 2π."""
        self.auto_rotate = bool(enabled)

    @property
    def rotation(self) -> tuple[float, float, float]:
        """Rendered cloud rotation as Euler angles (x, y, z)."""
        s = self.state
        return (
            s.rotation_x_current + s.tilt_x_current,
            s.auto_rotation_angle + s.rotation_y_current,
            s.tilt_z_current,
        )

    def advance(self):
        """Move every channel one step toward its target."""
        s = self.state
        cfg = self.config

        # 1. Uniform scale
        s.scale_current = s.clamp_scale(
            lerp_step(s.scale_current, s.clamp_scale(s.scale_target), cfg.scale_alpha)
        )

        # 2. Positions chase the scaled pattern, in place
        np.multiply(self._targets, s.scale_current, out=self._scratch)
        self._scratch -= self._positions
        self._scratch *= cfg.position_alpha
        self._positions += self._scratch

        # 3. Gesture rotation
        s.rotation_x_current = lerp_step(s.rotation_x_current, s.rotation_x_target, s.rotation_alpha)
        s.rotation_y_current = lerp_step(s.rotation_y_current, s.rotation_y_target, s.rotation_alpha)

        # 4. Idle tilt, released while a hand drives rotation
        if s.hand_detected:
            s.tilt_x_target, s.tilt_z_target = 0.0, 0.0
        else:
            s.tilt_x_target, s.tilt_z_target = self._idle_tilt
        s.tilt_x_current = lerp_step(s.tilt_x_current, s.tilt_x_target, cfg.tilt_alpha)
        s.tilt_z_current = lerp_step(s.tilt_z_current, s.tilt_z_target, cfg.tilt_alpha)

        # 5. Auto rotation only while idle; still shapes turn back to the front
        if not self.auto_rotate:
            home = TWO_PI if s.auto_rotation_angle > math.pi else 0.0
            s.auto_rotation_angle = lerp_step(s.auto_rotation_angle, home, cfg.tilt_alpha) % TWO_PI
        elif not s.hand_detected:
            s.auto_rotation_angle = (s.auto_rotation_angle + cfg.auto_rotation_step) % TWO_PI

        self.tick_count += 1
