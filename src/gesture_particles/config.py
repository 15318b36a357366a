"""Session configuration — dataclass defaults, optionally overridden from YAML.

Example config.yml:

    particle_count: 12000
    pattern: torus
    tint: "#ff66cc"
    gesture_enabled: true
    rotation_preset: asymmetric
    smoothing:
      position_alpha: 0.06
    scale_mapping:
      max_scale: 2.5
    camera:
      camera_index: 1
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

from gesture_particles.extractor import RotationMapping, ScaleMapping
from gesture_particles.patterns import Pattern
from gesture_particles.smoothing import SmoothingConfig
from gesture_particles.tracker import CameraConfig

logger = logging.getLogger("gesture_particles.config")

_HEX_COLOR = re.compile(r"^#?([0-9a-fA-F]{3}|[0-9a-fA-F]{6})$")


def parse_hex_color(text: str) -> tuple[float, float, float]:
    """Parse "#rrggbb" or "#rgb" into RGB floats in [0, 1]."""
    match = _HEX_COLOR.match(str(text).strip())
    if not match:
        raise ValueError(f"Invalid hex color: {text!r}")
    digits = match.group(1)
    if len(digits) == 3:
        digits = "".join(c * 2 for c in digits)
    return tuple(int(digits[i:i + 2], 16) / 255.0 for i in (0, 2, 4))  # type: ignore[return-value]


@dataclass
class SessionConfig:
    """Everything a ParticleSession needs to start."""
    particle_count: int = 15000
    pattern: str = "heart"
    tint: str = "#00ffff"
    gesture_enabled: bool = False
    rotation_preset: str = "symmetric"
    smoothing: SmoothingConfig = field(default_factory=SmoothingConfig)
    scale_mapping: ScaleMapping = field(default_factory=ScaleMapping)
    rotation_mapping: Optional[RotationMapping] = None  # None: use the preset
    camera: CameraConfig = field(default_factory=CameraConfig)

    def __post_init__(self):
        if self.particle_count < 1:
            raise ValueError(f"particle_count must be >= 1, got {self.particle_count}")
        self.pattern = Pattern.parse(self.pattern).value
        parse_hex_color(self.tint)
        if self.rotation_mapping is None:
            self.rotation_mapping = RotationMapping.preset(self.rotation_preset)

    def to_dict(self) -> dict:
        return {
            "particle_count": self.particle_count,
            "pattern": self.pattern,
            "tint": self.tint,
            "gesture_enabled": self.gesture_enabled,
            "rotation_preset": self.rotation_preset,
            "smoothing": self.smoothing.to_dict(),
            "scale_mapping": self.scale_mapping.to_dict(),
            "rotation_mapping": self.rotation_mapping.to_dict(),
            "camera": self.camera.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> SessionConfig:
        data = data or {}
        preset = data.get("rotation_preset", "symmetric")
        rotation = None
        if "rotation_mapping" in data:
            # Explicit values refine the chosen preset
            base = RotationMapping.preset(preset).to_dict()
            base.update(data["rotation_mapping"] or {})
            rotation = RotationMapping.from_dict(base)

        return cls(
            particle_count=int(data.get("particle_count", 15000)),
            pattern=data.get("pattern", "heart"),
            tint=data.get("tint", "#00ffff"),
            gesture_enabled=bool(data.get("gesture_enabled", False)),
            rotation_preset=preset,
            smoothing=SmoothingConfig.from_dict(data.get("smoothing") or {}),
            scale_mapping=ScaleMapping.from_dict(data.get("scale_mapping") or {}),
            rotation_mapping=rotation,
            camera=CameraConfig.from_dict(data.get("camera") or {}),
        )


def load_config(path: str | Path) -> SessionConfig:
    """Load a SessionConfig from a YAML file."""
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a mapping")
    config = SessionConfig.from_dict(data)
    logger.info("Loaded config from %s", path)
    return config


def save_config(config: SessionConfig, path: str | Path):
    """Write a SessionConfig to YAML."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        yaml.dump(config.to_dict(), f, default_flow_style=False, sort_keys=False)
