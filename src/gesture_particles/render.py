"""Point renderers: the draw side of a session.

The session hands a renderer one `RenderFrame` per tick: full position,
color and size buffers plus the tint and the cloud rotation. How points end
up on screen is the renderer's business. Two renderers ship here:

- HeadlessRenderer: keeps the last frame and a draw count (replay, tests)
- OpenCVPointRenderer: software perspective splatting into an OpenCV window
"""

from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import numpy as np

logger = logging.getLogger("gesture_particles.render")


@dataclass
class RenderFrame:
    """Everything a renderer needs for one tick."""
    positions: np.ndarray  # (3N,) current positions
    colors: np.ndarray  # (3N,) per-particle RGB
    sizes: np.ndarray  # (N,)
    tint: tuple[float, float, float]  # RGB in [0, 1]
    rotation: tuple[float, float, float]  # Euler x, y, z in radians

    @property
    def count(self) -> int:
        return len(self.sizes)


def rotation_matrix(x: float, y: float, z: float) -> np.ndarray:
    """Rotation for Euler angles applied in X, then Y, then Z order."""
    cx, sx = math.cos(x), math.sin(x)
    cy, sy = math.cos(y), math.sin(y)
    cz, sz = math.cos(z), math.sin(z)
    rx = np.array([[1, 0, 0], [0, cx, -sx], [0, sx, cx]])
    ry = np.array([[cy, 0, sy], [0, 1, 0], [-sy, 0, cy]])
    rz = np.array([[cz, -sz, 0], [sz, cz, 0], [0, 0, 1]])
    return rz @ ry @ rx


def project(
    points: np.ndarray,
    width: int,
    height: int,
    camera_z: float = 8.0,
    fov_deg: float = 60.0,
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Perspective-project (N, 3) world points for a camera on +z looking at the origin.

    Returns:
        (pixels (N, 2) float, depth (N,), visible mask (N,)).
    """
    depth = camera_z - points[:, 2]
    visible = depth > 0.1
    safe = np.where(visible, depth, 1.0)

    focal = (height / 2) / math.tan(math.radians(fov_deg) / 2)
    px = width / 2 + points[:, 0] * focal / safe
    py = height / 2 - points[:, 1] * focal / safe

    visible &= (px >= 0) & (px < width) & (py >= 0) & (py < height)
    return np.stack([px, py], axis=1), depth, visible


class PointRenderer(ABC):
    """Scoped owner of draw resources: acquire on enter, release on every exit."""

    def __init__(self):
        self._acquired = False
        self.count = 0

    @property
    def acquired(self) -> bool:
        return self._acquired

    def acquire(self, count: int):
        if self._acquired:
            return
        self.count = count
        self._acquire()
        self._acquired = True
        logger.debug("%s acquired buffers for %d particles", type(self).__name__, count)

    def release(self):
        if not self._acquired:
            return
        try:
            self._release()
        finally:
            self._acquired = False
            logger.debug("%s released", type(self).__name__)

    def resize(self, width: int, height: int):
        """Re-create size-dependent resources. Before acquire, only the size changes."""
        if not self._acquired:
            self._set_size(width, height)
            return
        count = self.count
        self.release()
        self._set_size(width, height)
        self.acquire(count)

    def draw(self, frame: RenderFrame):
        if not self._acquired:
            raise RuntimeError("Renderer resources not acquired")
        if len(frame.positions) != 3 * self.count or len(frame.sizes) != self.count:
            raise ValueError(
                f"Frame has {frame.count} particles, renderer was acquired for {self.count}"
            )
        self._draw(frame)

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.release()

    def _acquire(self):
        pass

    def _release(self):
        pass

    def _set_size(self, width: int, height: int):
        pass

    @abstractmethod
    def _draw(self, frame: RenderFrame):
        ...


class HeadlessRenderer(PointRenderer):
    """Draws nothing; remembers what it was given."""

    def __init__(self):
        super().__init__()
        self.draw_count = 0
        self.last_frame: Optional[RenderFrame] = None
        self.acquire_count = 0
        self.size: tuple[int, int] = (0, 0)

    def _acquire(self):
        self.acquire_count += 1

    def _set_size(self, width: int, height: int):
        self.size = (width, height)

    def _draw(self, frame: RenderFrame):
        self.draw_count += 1
        self.last_frame = frame


class OpenCVPointRenderer(PointRenderer):
    """Additive point splatting into an OpenCV window.

    Each particle lands on one pixel with color `tint * color`, scaled by
    its size and distance; a blur pass turns the pixels into soft glows.
    """

    BACKGROUND_BGR = (10, 0, 5)

    def __init__(
        self,
        width: int = 960,
        height: int = 720,
        window_name: str = "gesture-particles",
        show: bool = True,
        glow: int = 5,
    ):
        super().__init__()
        self.width = width
        self.height = height
        self.window_name = window_name
        self.show = show
        self.glow = glow
        self._canvas: Optional[np.ndarray] = None
        self.image: Optional[np.ndarray] = None

    def _acquire(self):
        import cv2

        self._canvas = np.zeros((self.height, self.width, 3), dtype=np.float32)
        if self.show:
            cv2.namedWindow(self.window_name, cv2.WINDOW_NORMAL)
            cv2.resizeWindow(self.window_name, self.width, self.height)

    def _release(self):
        import cv2

        self._canvas = None
        self.image = None
        if self.show:
            cv2.destroyWindow(self.window_name)

    def _set_size(self, width: int, height: int):
        self.width = width
        self.height = height

    def _draw(self, frame: RenderFrame):
        import cv2

        points = frame.positions.reshape(-1, 3) @ rotation_matrix(*frame.rotation).T
        pixels, depth, visible = project(points, self.width, self.height)

        px = pixels[visible].astype(np.int32)
        colors = frame.colors.reshape(-1, 3)[visible] * np.asarray(frame.tint, dtype=np.float32)
        weight = frame.sizes[visible] * (8.0 / depth[visible])

        canvas = self._canvas
        canvas.fill(0.0)
        # RGB → BGR for OpenCV
        np.add.at(canvas, (px[:, 1], px[:, 0]), colors[:, ::-1] * weight[:, None])

        if self.glow > 1:
            k = self.glow | 1
            canvas = canvas + cv2.GaussianBlur(canvas, (k, k), 0) * 2.0

        image = np.clip(canvas * 255.0 + self.BACKGROUND_BGR, 0, 255).astype(np.uint8)
        self.image = image
        if self.show:
            cv2.imshow(self.window_name, image)
