"""Procedural pattern generation — per-particle target coordinates for each shape.

Every pattern is a pure function `(count, scale, rng) -> (count, 3)` registered
in `GENERATORS`. `generate()` wraps the geometry with sizes and colors and
returns flat float32 buffers ready for a point renderer:

    data = generate(Pattern.TORUS, 15000)
    data.positions.shape  # (45000,)
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

import numpy as np

logger = logging.getLogger("gesture_particles.patterns")


class Pattern(Enum):
    """Shape families the cloud can morph into."""
    SPHERE = "sphere"
    CUBE = "cube"
    TORUS = "torus"
    HELIX = "helix"
    HEART = "heart"
    WAVE = "wave"
    GALAXY = "galaxy"
    CUSTOM = "custom"

    @classmethod
    def parse(cls, tag: str | Pattern) -> Pattern:
        """Resolve a string tag (case-insensitive) to a Pattern."""
        if isinstance(tag, Pattern):
            return tag
        try:
            return cls(str(tag).strip().lower())
        except ValueError:
            valid = ", ".join(p.value for p in cls)
            raise ValueError(f"Unknown pattern '{tag}'. Valid patterns: {valid}") from None


DEFAULT_SCALE = 3.0
SMALL_SCALE = 2.6  # heart and cube read larger than their extent

EDGE_BIAS = 0.7
GLOW_CHANCE = 0.25
GLOW_RANGE = (0.02, 0.07)

SIZE_RANGE = (0.1, 0.6)

# Hue bands (HSL hue in [0, 1)). Styling only.
HUE_BANDS: dict[Pattern, tuple[float, float]] = {
    Pattern.HEART: (0.85, 0.95),
    Pattern.GALAXY: (0.65, 0.80),
}
DEFAULT_HUE_BAND = (0.5, 0.6)
SATURATION_RANGE = (0.55, 0.9)
LIGHTNESS_RANGE = (0.3, 0.8)

# Resting tilt (x, z) in radians while no hand drives rotation
IDLE_TILTS: dict[Pattern, tuple[float, float]] = {
    Pattern.TORUS: (math.pi / 6, math.pi / 12),
    Pattern.GALAXY: (math.pi / 5, -math.pi / 16),
}

# Shapes that face the viewer instead of spinning while idle
STILL_PATTERNS = frozenset({Pattern.HEART})


def pattern_scale(pattern: Pattern) -> float:
    """Characteristic size constant for a pattern."""
    if pattern in (Pattern.HEART, Pattern.CUBE):
        return SMALL_SCALE
    return DEFAULT_SCALE


def idle_tilt(pattern: Pattern) -> tuple[float, float]:
    """Resting (tilt_x, tilt_z) for a pattern; zero for most shapes."""
    return IDLE_TILTS.get(pattern, (0.0, 0.0))


def auto_rotates(pattern: Pattern) -> bool:
    return pattern not in STILL_PATTERNS


@dataclass
class ForegroundSample:
    """Foreground pixels sampled from an externally rasterized drawing.

    `points` holds (x, y) pixel coordinates with x in [0, width) and
    y in [0, height), image convention (y grows downwards).
    """
    points: np.ndarray
    width: int
    height: int

    def __post_init__(self):
        self.points = np.asarray(self.points, dtype=np.float32).reshape(-1, 2)
        if self.width <= 0 or self.height <= 0:
            raise ValueError(f"Bitmap size must be positive, got {self.width}x{self.height}")

    def __len__(self) -> int:
        return len(self.points)

    @property
    def is_empty(self) -> bool:
        return len(self.points) == 0


@dataclass
class ParticleData:
    """Flat per-particle buffers for one generated pattern."""
    pattern: Pattern
    positions: np.ndarray  # (3N,) current, identical to targets at generation
    targets: np.ndarray  # (3N,) pattern space, unscaled
    sizes: np.ndarray  # (N,)
    colors: np.ndarray  # (3N,) RGB in [0, 1]
    scale: float = DEFAULT_SCALE
    tilt: tuple[float, float] = field(default=(0.0, 0.0))

    @property
    def count(self) -> int:
        return len(self.sizes)

    def points(self) -> np.ndarray:
        """Target positions as an (N, 3) view."""
        return self.targets.reshape(-1, 3)


# --- Geometry helpers ---

def _unit_directions(count: int, rng: np.random.Generator) -> np.ndarray:
    """Uniform random directions on the unit sphere, shape (count, 3)."""
    v = rng.normal(size=(count, 3))
    norms = np.linalg.norm(v, axis=1, keepdims=True)
    # A zero draw is vanishingly rare; point it up rather than divide by zero
    zero = norms[:, 0] < 1e-12
    v[zero] = [0.0, 1.0, 0.0]
    norms[zero] = 1.0
    return v / norms


def _glow(count: int, rng: np.random.Generator) -> np.ndarray:
    """Per-particle outward push factor: 1.0, or 1.02–1.07 for a quarter of them."""
    push = rng.uniform(GLOW_RANGE[0], GLOW_RANGE[1], size=count)
    return np.where(rng.random(count) < GLOW_CHANCE, 1.0 + push, 1.0)


# --- Pattern generators ---

def _sphere(count: int, scale: float, rng: np.random.Generator, **_) -> np.ndarray:
    directions = _unit_directions(count, rng)
    on_shell = rng.random(count) < EDGE_BIAS

    shell_r = scale * rng.uniform(0.9, 1.0, size=count) * _glow(count, rng)
    t = rng.random(count)
    inner_r = scale * 0.9 * (1.0 - t * t)

    r = np.where(on_shell, shell_r, inner_r)
    return directions * r[:, None]


def _cube(count: int, scale: float, rng: np.random.Generator, **_) -> np.ndarray:
    p = rng.uniform(-1.0, 1.0, size=(count, 3))
    on_face = rng.random(count) < EDGE_BIAS

    max_abs = np.max(np.abs(p), axis=1, keepdims=True)
    face = p / np.maximum(max_abs, 1e-9) * scale * _glow(count, rng)[:, None]
    interior = p * 0.7 * scale

    return np.where(on_face[:, None], face, interior)


def _torus(count: int, scale: float, rng: np.random.Generator, **_) -> np.ndarray:
    major = scale * 0.7
    minor_max = scale * 0.3

    around = rng.uniform(0.0, 2 * math.pi, size=count)
    tube = rng.uniform(0.0, 2 * math.pi, size=count)
    # sqrt keeps areal density uniform across the tube cross-section
    offset = np.sqrt(rng.random(count)) * minor_max

    ring = major + offset * np.cos(tube)
    return np.stack([
        ring * np.cos(around),
        offset * np.sin(tube),
        ring * np.sin(around),
    ], axis=1)


def _helix(count: int, scale: float, rng: np.random.Generator, **_) -> np.ndarray:
    t = np.arange(count, dtype=np.float64) / count * 12 * math.pi
    radius = scale * 0.5
    return np.stack([
        radius * np.cos(t),
        0.2 * (t - 6 * math.pi),
        radius * np.sin(t),
    ], axis=1)


def _heart(count: int, scale: float, rng: np.random.Generator, **_) -> np.ndarray:
    h_scale = scale * 0.1
    t = rng.uniform(0.0, 2 * math.pi, size=count)

    top_indent = (t < math.pi * 0.15) | (t > math.pi * 1.85)
    bottom_tip = (t > math.pi * 0.9) & (t < math.pi * 1.1)
    density = np.where(top_indent, 0.6, np.where(bottom_tip, 0.7, 1.0))

    base_x = 16 * np.sin(t) ** 3
    base_y = 13 * np.cos(t) - 5 * np.cos(2 * t) - 2 * np.cos(3 * t) - np.cos(4 * t)

    on_outline = rng.random(count) < 0.3 * density
    outline_r = rng.uniform(0.9, 1.0, size=count)
    bias = np.where(density < 1.0, 0.5, 0.3)
    fill_r = rng.random(count) ** bias * 0.9
    r = np.where(on_outline, outline_r, fill_r)

    thickness = r * scale * 0.3
    return np.stack([
        h_scale * base_x * r,
        h_scale * base_y * r - scale * 0.4,
        (rng.random(count) - 0.5) * thickness,
    ], axis=1)


def _wave(count: int, scale: float, rng: np.random.Generator, **_) -> np.ndarray:
    grid = math.ceil(math.sqrt(count))
    i = np.arange(count)
    x = ((i % grid) / grid - 0.5) * scale * 2
    z = ((i // grid) / grid - 0.5) * scale * 2

    surface = np.sin(x * 1.5) * np.cos(z * 1.5) * scale * 0.4
    jitter = (rng.random(count) - 0.5) * scale * 0.2
    return np.stack([x, surface + jitter, z], axis=1)


def _galaxy(count: int, scale: float, rng: np.random.Generator, **_) -> np.ndarray:
    arms = 3
    arm_offset = (np.arange(count) % arms) / arms * 2 * math.pi

    radius = np.sqrt(rng.random(count)) * scale  # dense core
    angle = arm_offset + (radius / scale) * 4 * math.pi

    jitter = (rng.random((count, 3)) - 0.5) * np.array([0.3, 0.15, 0.3])
    return np.stack([
        radius * np.cos(angle),
        np.zeros(count),
        radius * np.sin(angle),
    ], axis=1) + jitter


def _custom(
    count: int,
    scale: float,
    rng: np.random.Generator,
    foreground: Optional[ForegroundSample] = None,
    **_,
) -> np.ndarray:
    if foreground is None or foreground.is_empty:
        logger.info("No foreground points for custom pattern, using default cluster")
        return rng.normal(0.0, 0.15, size=(count, 3))

    picks = foreground.points[rng.integers(0, len(foreground), size=count)]
    # Spread each particle inside its source pixel
    picks = picks + rng.random((count, 2))

    nx = picks[:, 0] / foreground.width * 2 - 1
    ny = -(picks[:, 1] / foreground.height * 2 - 1)
    z = (rng.random(count) - 0.5) * 0.2
    return np.stack([nx * scale, ny * scale, z], axis=1)


GeneratorFn = Callable[..., np.ndarray]

GENERATORS: dict[Pattern, GeneratorFn] = {
    Pattern.SPHERE: _sphere,
    Pattern.CUBE: _cube,
    Pattern.TORUS: _torus,
    Pattern.HELIX: _helix,
    Pattern.HEART: _heart,
    Pattern.WAVE: _wave,
    Pattern.GALAXY: _galaxy,
    Pattern.CUSTOM: _custom,
}


# --- Colors ---

def hsl_to_rgb(hue: np.ndarray, sat: np.ndarray, light: np.ndarray) -> np.ndarray:
    """Vectorized HSL → RGB. Inputs in [0, 1], returns shape (N, 3)."""
    hue = np.asarray(hue, dtype=np.float64) % 1.0
    sat = np.asarray(sat, dtype=np.float64)
    light = np.asarray(light, dtype=np.float64)

    c = (1 - np.abs(2 * light - 1)) * sat
    k = np.stack([(n + hue * 12) % 12 for n in (0, 8, 4)], axis=1)
    a = (c / 2)[:, None]
    rgb = light[:, None] - a * np.clip(np.minimum(k - 3, 9 - k), -1, 1)
    return np.clip(rgb, 0.0, 1.0)


def sample_colors(pattern: Pattern, count: int, rng: np.random.Generator) -> np.ndarray:
    lo, hi = HUE_BANDS.get(pattern, DEFAULT_HUE_BAND)
    hue = rng.uniform(lo, hi, size=count)
    sat = rng.uniform(*SATURATION_RANGE, size=count)
    light = rng.uniform(*LIGHTNESS_RANGE, size=count)
    return hsl_to_rgb(hue, sat, light)


# --- Public API ---

def generate(
    pattern: Pattern | str,
    count: int,
    *,
    foreground: Optional[ForegroundSample] = None,
    rng: Optional[np.random.Generator] = None,
) -> ParticleData:
    """Generate target positions, sizes and colors for `count` particles.

    Args:
        pattern: Pattern or its string tag.
        count: Number of particles, >= 1.
        foreground: Sampled drawing for `Pattern.CUSTOM`; ignored otherwise.
        rng: Random generator. Output is not reproducible unless one is given.

    Returns:
        ParticleData whose positions and targets are identical copies.
    """
    pattern = Pattern.parse(pattern)
    if count < 1:
        raise ValueError(f"Particle count must be >= 1, got {count}")

    rng = rng or np.random.default_rng()
    scale = pattern_scale(pattern)

    points = GENERATORS[pattern](count, scale, rng, foreground=foreground)
    targets = np.ascontiguousarray(points, dtype=np.float32).reshape(-1)

    sizes = rng.uniform(*SIZE_RANGE, size=count).astype(np.float32)
    colors = sample_colors(pattern, count, rng).astype(np.float32).reshape(-1)

    return ParticleData(
        pattern=pattern,
        positions=targets.copy(),
        targets=targets,
        sizes=sizes,
        colors=colors,
        scale=scale,
        tilt=idle_tilt(pattern),
    )


def entry_jitter(
    count: int,
    rng: Optional[np.random.Generator] = None,
    spread: float = 0.1,
) -> np.ndarray:
    """Starting positions clustered at the origin so particles fly into shape."""
    rng = rng or np.random.default_rng()
    return ((rng.random(count * 3) - 0.5) * spread).astype(np.float32)
