"""Foreground sampling for user drawings, the input of the custom pattern.

A drawing is any bitmap where "ink" pixels are bright (or opaque, for RGBA).
The sampler walks the bitmap on a stride grid and keeps pixels above a
threshold, producing the (x, y) pixel list the custom generator consumes.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import numpy as np

from gesture_particles.patterns import ForegroundSample

logger = logging.getLogger("gesture_particles.drawing")


def _intensity(image: np.ndarray) -> np.ndarray:
    """Reduce a bitmap to a (H, W) float intensity in [0, 1]."""
    img = np.asarray(image)
    if img.ndim not in (2, 3):
        raise ValueError(f"Expected a (H, W) or (H, W, C) bitmap, got shape {img.shape}")

    scale = 255.0 if img.dtype == np.uint8 else 1.0
    img = img.astype(np.float32) / scale

    if img.ndim == 2:
        return img
    channels = img.shape[2]
    if channels == 4:
        return img[:, :, 3]  # alpha marks the ink
    if channels in (1, 3):
        return img.mean(axis=2)
    raise ValueError(f"Unsupported channel count: {channels}")


def sample_foreground(
    image: np.ndarray,
    *,
    threshold: float = 0.5,
    stride: int = 2,
    max_points: Optional[int] = None,
    rng: Optional[np.random.Generator] = None,
) -> ForegroundSample:
    """Sample foreground pixel coordinates from a bitmap.

    Args:
        image: Grayscale, RGB or RGBA bitmap (uint8 or float in [0, 1]).
        threshold: Minimum intensity for a pixel to count as foreground.
        stride: Sample every `stride` pixels in both directions.
        max_points: Optional cap; a random subset is kept when exceeded.

    Returns:
        ForegroundSample, possibly empty.
    """
    if stride < 1:
        raise ValueError(f"stride must be >= 1, got {stride}")

    intensity = _intensity(image)
    height, width = intensity.shape

    grid = intensity[::stride, ::stride]
    ys, xs = np.nonzero(grid > threshold)
    points = np.stack([xs * stride, ys * stride], axis=1).astype(np.float32)

    if max_points is not None and len(points) > max_points:
        rng = rng or np.random.default_rng()
        keep = rng.choice(len(points), size=max_points, replace=False)
        points = points[np.sort(keep)]

    logger.debug("Sampled %d foreground points from %dx%d bitmap", len(points), width, height)
    return ForegroundSample(points=points, width=width, height=height)


def load_foreground(path: str | Path, **kwargs) -> ForegroundSample:
    """Read an image file with OpenCV and sample its foreground."""
    import cv2

    path = Path(path)
    image = cv2.imread(str(path), cv2.IMREAD_UNCHANGED)
    if image is None:
        raise FileNotFoundError(f"Could not read drawing: {path}")
    return sample_foreground(image, **kwargs)
