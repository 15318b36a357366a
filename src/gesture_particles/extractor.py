"""Hand landmarks → scale and rotation control signals.

Scale comes from the pinch: thumb-tip to index-tip distance divided by the
wrist to middle-finger-base distance, so the signal does not depend on hand
size or camera distance. Rotation comes from where the palm sits in the image.

The extractor only writes *targets* into the shared GestureState; the
SmoothingEngine turns them into on-screen motion.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Sequence

import numpy as np

from gesture_particles.smoothing import GestureState

logger = logging.getLogger("gesture_particles.extractor")

# MediaPipe hand landmark indices
WRIST = 0
THUMB_TIP = 4
INDEX_TIP = 8
MIDDLE_MCP = 9
NUM_LANDMARKS = 21


class HandPresence(Enum):
    NO_HAND = "no_hand"
    HAND_DETECTED = "hand_detected"


@dataclass
class ScaleMapping:
    """Linear map from pinch ratio to cloud scale, clamped at both ends."""
    min_norm: float = 0.05
    max_norm: float = 1.2
    min_scale: float = 0.2
    max_scale: float = 3.0

    def __post_init__(self):
        if not self.min_norm < self.max_norm:
            raise ValueError(f"min_norm ({self.min_norm}) must be < max_norm ({self.max_norm})")
        if not 0 < self.min_scale <= 1.0 <= self.max_scale:
            raise ValueError(
                f"Scale range [{self.min_scale}, {self.max_scale}] must be positive and contain 1.0"
            )

    def map(self, ratio: float) -> float:
        t = (ratio - self.min_norm) / (self.max_norm - self.min_norm)
        t = min(1.0, max(0.0, t))
        return self.min_scale + (self.max_scale - self.min_scale) * t

    def to_dict(self) -> dict:
        return {
            "min_norm": self.min_norm,
            "max_norm": self.max_norm,
            "min_scale": self.min_scale,
            "max_scale": self.max_scale,
        }

    @classmethod
    def from_dict(cls, data: dict) -> ScaleMapping:
        known = cls().to_dict()
        return cls(**{k: float(v) for k, v in data.items() if k in known})


@dataclass
class RotationMapping:
    """Palm position → rotation targets, plus rotation smoothing constants.

    Two constant sets exist in the wild; both ship as presets:
    - "symmetric": ±90° on both axes, 1.5x sensitivity, slow smoothing
    - "asymmetric": ±45° yaw, ±30° pitch, direct mapping, faster smoothing
    """
    max_rot_x: float = math.pi / 2  # pitch cap, driven by palm y
    max_rot_y: float = math.pi / 2  # yaw cap, driven by palm x
    sensitivity: float = 1.5
    steady_alpha: float = 0.05
    transition_alpha: float = 0.02  # used on the frame a hand appears

    def __post_init__(self):
        if self.max_rot_x < 0 or self.max_rot_y < 0:
            raise ValueError("Rotation caps must be >= 0")
        if self.sensitivity <= 0:
            raise ValueError(f"sensitivity must be positive, got {self.sensitivity}")
        for name in ("steady_alpha", "transition_alpha"):
            value = getattr(self, name)
            if not 0 < value <= 1:
                raise ValueError(f"{name} must be in (0, 1], got {value}")

    @classmethod
    def preset(cls, name: str) -> RotationMapping:
        presets = {
            "symmetric": lambda: cls(),
            "asymmetric": lambda: cls(
                max_rot_x=math.pi / 6,
                max_rot_y=math.pi / 4,
                sensitivity=1.0,
                steady_alpha=0.1,
                transition_alpha=0.03,
            ),
        }
        factory = presets.get(str(name).lower())
        if factory is None:
            raise ValueError(f"Unknown rotation preset '{name}'. Valid presets: {', '.join(presets)}")
        return factory()

    def to_dict(self) -> dict:
        return {
            "max_rot_x": self.max_rot_x,
            "max_rot_y": self.max_rot_y,
            "sensitivity": self.sensitivity,
            "steady_alpha": self.steady_alpha,
            "transition_alpha": self.transition_alpha,
        }

    @classmethod
    def from_dict(cls, data: dict) -> RotationMapping:
        known = cls().to_dict()
        return cls(**{k: float(v) for k, v in data.items() if k in known})


# --- Landmark geometry ---

def as_landmarks(landmarks) -> np.ndarray:
    """Coerce a landmark frame to a (21, 3) float array."""
    arr = np.asarray(landmarks, dtype=np.float64)
    if arr.ndim != 2 or arr.shape[0] != NUM_LANDMARKS or arr.shape[1] < 3:
        raise ValueError(f"Expected {NUM_LANDMARKS} landmarks of (x, y, z), got shape {arr.shape}")
    return arr[:, :3]


def pinch_distance(landmarks: np.ndarray) -> float:
    """3D distance between thumb tip and index tip."""
    return float(np.linalg.norm(landmarks[THUMB_TIP] - landmarks[INDEX_TIP]))


def normalization_base(landmarks: np.ndarray) -> float:
    """3D distance between wrist and middle-finger base."""
    return float(np.linalg.norm(landmarks[WRIST] - landmarks[MIDDLE_MCP]))


def pinch_ratio(landmarks: np.ndarray) -> Optional[float]:
    """Hand-size-invariant pinch signal, or None when it cannot be computed."""
    base = normalization_base(landmarks)
    if base == 0 or not math.isfinite(base):
        return None
    ratio = pinch_distance(landmarks) / base
    return ratio if math.isfinite(ratio) else None


def palm_rotation(landmarks: np.ndarray, mapping: RotationMapping) -> Optional[tuple[float, float]]:
    """Map the palm's image position to (rotation_x, rotation_y) targets.

    Image y grows downwards, so it is negated: raising the hand tilts the
    cloud up.
    """
    x, y = float(landmarks[MIDDLE_MCP][0]), float(landmarks[MIDDLE_MCP][1])
    if not (math.isfinite(x) and math.isfinite(y)):
        return None
    nx = min(1.0, max(-1.0, (x - 0.5) * 2 * mapping.sensitivity))
    ny = min(1.0, max(-1.0, (y - 0.5) * 2 * mapping.sensitivity))
    return -ny * mapping.max_rot_x, nx * mapping.max_rot_y


# --- Extractor ---

TransitionCallback = Callable[[HandPresence, HandPresence], None]


class GestureExtractor:
    """Turns per-frame hand landmarks into scale/rotation targets.

    States: NO_HAND and HAND_DETECTED. The first frame with landmarks moves
    to HAND_DETECTED; the first frame without (or stop()) moves back.

    Usage:
        extractor = GestureExtractor(state)
        tracker.on_frame(extractor.process)
    """

    def __init__(
        self,
        state: GestureState,
        scale_mapping: Optional[ScaleMapping] = None,
        rotation_mapping: Optional[RotationMapping] = None,
    ):
        self.state = state
        self.scale_mapping = scale_mapping or ScaleMapping()
        self.rotation_mapping = rotation_mapping or RotationMapping()

        self._presence = HandPresence.NO_HAND
        self._callbacks: list[TransitionCallback] = []

        self.frames_processed = 0
        self.hand_frames = 0
        self.skipped_scale_updates = 0

        self.state.rotation_alpha = self.rotation_mapping.steady_alpha

    @property
    def presence(self) -> HandPresence:
        return self._presence

    def on_transition(self, callback: TransitionCallback):
        """Register a callback fired with (old, new) on presence changes."""
        self._callbacks.append(callback)

    def _set_presence(self, new: HandPresence):
        old = self._presence
        if old == new:
            return
        self._presence = new
        logger.debug("Hand presence %s -> %s", old.value, new.value)
        for cb in self._callbacks:
            cb(old, new)

    def process(self, landmarks: Optional[Sequence] = None) -> GestureState:
        """Handle one camera frame: landmarks for one hand, or None."""
        self.frames_processed += 1

        if landmarks is None:
            self._release()
            return self.state

        lm = as_landmarks(landmarks)
        self.hand_frames += 1
        state = self.state
        first_frame = self._presence == HandPresence.NO_HAND

        # Scale
        ratio = pinch_ratio(lm)
        if ratio is None:
            self.skipped_scale_updates += 1
            logger.debug("Zero normalization base, keeping scale target %.3f", state.scale_target)
        else:
            state.scale_target = state.clamp_scale(self.scale_mapping.map(ratio))

        # Rotation
        if first_frame:
            # Start from where the cloud already is so nothing snaps
            state.rotation_x_target = state.rotation_x_current
            state.rotation_y_target = state.rotation_y_current
            state.rotation_alpha = self.rotation_mapping.transition_alpha
        else:
            angles = palm_rotation(lm, self.rotation_mapping)
            if angles is not None:
                state.rotation_x_target, state.rotation_y_target = angles
            state.rotation_alpha = self.rotation_mapping.steady_alpha

        state.hand_detected = True
        self._set_presence(HandPresence.HAND_DETECTED)
        return state

    def _release(self):
        self.state.reset_targets()
        self.state.rotation_alpha = self.rotation_mapping.steady_alpha
        self._set_presence(HandPresence.NO_HAND)

    def stop(self):
        """Tracker stopped: return targets to rest and forget the hand."""
        self._release()
        logger.info("Gesture extraction stopped, targets reset to rest")

    def reset(self):
        self.stop()
        self.frames_processed = 0
        self.hand_frames = 0
        self.skipped_scale_updates = 0
