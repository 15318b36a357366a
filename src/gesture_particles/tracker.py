"""Hand tracker capability: push-style landmark frames from a camera.

The core only depends on `HandTracker`: register a callback, then call
`poll()` once per render tick. Each poll pushes either None (no hand) or one
(21, 3) landmark array, normalized to image space with relative depth.
Only the latest sample matters, so nothing is queued. Wrap a blocking
source in `BackgroundHandTracker` to keep `poll()` from waiting on it.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, asdict
from typing import Callable, Iterable, Iterator, Optional

import numpy as np

try:
    import mediapipe as mp
except ImportError:
    mp = None

logger = logging.getLogger("gesture_particles.tracker")

FrameCallback = Callable[[Optional[np.ndarray]], None]


class LibraryLoadError(ImportError):
    """The hand tracking library could not be loaded."""


@dataclass
class CameraConfig:
    """Capture and detection settings, passed through to the tracker as-is."""
    camera_index: int = 0
    width: int = 640
    height: int = 480
    max_num_hands: int = 1
    model_complexity: int = 1
    min_detection_confidence: float = 0.5
    min_tracking_confidence: float = 0.5
    selfie_mode: bool = True

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> CameraConfig:
        fields = cls.__dataclass_fields__
        return cls(**{k: v for k, v in data.items() if k in fields})


class HandTracker(ABC):
    """Source of per-frame hand landmarks.

    Subclasses implement `_read()` returning one frame's landmarks (or None)
    and may override `_open()` / `_close()` for resource handling.
    """

    def __init__(self):
        self._callbacks: list[FrameCallback] = []
        self._ready = threading.Event()
        self._running = False
        self.frames_delivered = 0

    # --- Ready signal ---

    @property
    def is_ready(self) -> bool:
        return self._ready.is_set()

    def wait_ready(self, timeout: Optional[float] = None) -> bool:
        """Block until the tracker is usable. Returns False on timeout."""
        return self._ready.wait(timeout)

    # --- Callbacks ---

    def on_frame(self, callback: FrameCallback):
        """Register a callback receiving None or a (21, 3) array per frame."""
        self._callbacks.append(callback)

    def remove_callback(self, callback: FrameCallback):
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    # --- Lifecycle ---

    @property
    def running(self) -> bool:
        return self._running

    def start(self):
        if self._running:
            return
        self._open()
        self._running = True
        self._ready.set()
        logger.info("%s started", type(self).__name__)

    def stop(self):
        """Stop capturing and release the capture resource."""
        if not self._running:
            return
        self._running = False
        self._ready.clear()
        self._close()
        logger.info("%s stopped after %d frames", type(self).__name__, self.frames_delivered)

    def poll(self) -> bool:
        """Read at most one frame and push it to callbacks.

        Returns False when the tracker is not running or has no frame to
        give; no callback fires in that case.
        """
        if not self._running:
            return False
        try:
            landmarks = self._read()
        except StopIteration:
            return False

        self._deliver(landmarks)
        return True

    def _deliver(self, landmarks: Optional[np.ndarray]):
        self.frames_delivered += 1
        for cb in list(self._callbacks):
            cb(landmarks)

    def close(self):
        self.stop()
        self._callbacks.clear()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()

    # --- Subclass hooks ---

    def _open(self):
        pass

    def _close(self):
        pass

    @abstractmethod
    def _read(self) -> Optional[np.ndarray]:
        """Return landmarks for the next frame, None for no hand.

        Raise StopIteration when there is no frame to deliver: the source
        is exhausted, or (for background readers) nothing new arrived.
        """


class MediaPipeHandTracker(HandTracker):
    """Webcam + MediaPipe Hands. Tracks the first detected hand only."""

    def __init__(self, config: Optional[CameraConfig] = None):
        if mp is None:
            raise LibraryLoadError(
                "mediapipe is required for gesture control. Install with: pip install mediapipe"
            )
        super().__init__()
        self.config = config or CameraConfig()
        self._hands = None
        self._capture = None
        self.last_frame: Optional[np.ndarray] = None

    def _open(self):
        import cv2

        cfg = self.config
        # Detector first: a model load failure must not leave the camera held
        hands = mp.solutions.hands.Hands(
            static_image_mode=False,
            max_num_hands=cfg.max_num_hands,
            model_complexity=cfg.model_complexity,
            min_detection_confidence=cfg.min_detection_confidence,
            min_tracking_confidence=cfg.min_tracking_confidence,
        )
        try:
            capture = cv2.VideoCapture(cfg.camera_index)
            if not capture.isOpened():
                capture.release()
                raise RuntimeError(f"Could not open camera {cfg.camera_index}")
        except Exception:
            hands.close()
            raise
        capture.set(cv2.CAP_PROP_FRAME_WIDTH, cfg.width)
        capture.set(cv2.CAP_PROP_FRAME_HEIGHT, cfg.height)

        self._hands = hands
        self._capture = capture

    def _close(self):
        if self._capture is not None:
            self._capture.release()
            self._capture = None
        if self._hands is not None:
            self._hands.close()
            self._hands = None

    def _read(self) -> Optional[np.ndarray]:
        import cv2

        ok, frame = self._capture.read()
        if not ok:
            # Dropped frame: report no hand rather than stalling the caller
            return None
        if self.config.selfie_mode:
            frame = cv2.flip(frame, 1)
        self.last_frame = frame

        results = self._hands.process(cv2.cvtColor(frame, cv2.COLOR_BGR2RGB))
        if not results.multi_hand_landmarks:
            return None

        hand = results.multi_hand_landmarks[0]
        return np.array([[lm.x, lm.y, lm.z] for lm in hand.landmark], dtype=np.float32)


class ReplayHandTracker(HandTracker):
    """Pushes pre-recorded frames, one per poll(). Useful without a camera."""

    def __init__(self, frames: Iterable[Optional[np.ndarray]], loop: bool = False):
        super().__init__()
        self._frames = list(frames)
        self._loop = loop
        self._iter: Optional[Iterator] = None

    def _open(self):
        self._iter = iter(self._frames)

    def _close(self):
        self._iter = None

    def _read(self) -> Optional[np.ndarray]:
        try:
            frame = next(self._iter)
        except StopIteration:
            if not self._loop or not self._frames:
                raise
            self._iter = iter(self._frames)
            frame = next(self._iter)
        return None if frame is None else np.asarray(frame, dtype=np.float32)

    @property
    def frame_count(self) -> int:
        return len(self._frames)


class BackgroundHandTracker(HandTracker):
    """Runs another tracker's reads on a daemon thread.

    The reader thread only overwrites a one-slot "latest sample" cell.
    `poll()` takes whatever is newest without waiting and pushes it to the
    callbacks on the calling thread, so a slow camera never stalls the
    render tick and GestureState is still touched from one thread only.
    Samples that arrive between two polls are dropped. The source is driven
    through its hooks only; do not start it separately.

    Usage:
        tracker = BackgroundHandTracker(MediaPipeHandTracker(config))
        session.enable_gesture(tracker)
        while running:
            session.poll()  # returns immediately
            session.tick()
    """

    def __init__(self, source: HandTracker, join_timeout: float = 1.0):
        super().__init__()
        self.source = source
        self.join_timeout = join_timeout
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._latest: Optional[np.ndarray] = None
        self._sequence = 0
        self._taken = 0
        self._error: Optional[Exception] = None
        self.frames_read = 0

    @property
    def reader_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def frames_dropped(self) -> int:
        return self.frames_read - self.frames_delivered

    def _open(self):
        self.source._open()
        self._stop_event.clear()
        self._sequence = self._taken = 0
        self._error = None
        self._thread = threading.Thread(target=self._reader, name="hand-reader", daemon=True)
        self._thread.start()

    def _reader(self):
        while not self._stop_event.is_set():
            try:
                landmarks = self.source._read()
            except StopIteration:
                logger.debug("Hand source exhausted after %d frames", self.frames_read)
                return
            except Exception as e:
                logger.error("Hand reader stopped: %s", e)
                with self._lock:
                    self._error = e
                return
            with self._lock:
                self._latest = landmarks
                self._sequence += 1
                self.frames_read += 1

    def _close(self):
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(self.join_timeout)
            if self._thread.is_alive():
                logger.warning("Hand reader did not stop within %.1fs", self.join_timeout)
            self._thread = None
        self.source._close()

    def _read(self) -> Optional[np.ndarray]:
        with self._lock:
            error, self._error = self._error, None
            if error is not None:
                raise RuntimeError(f"Hand reader failed: {error}") from error
            if self._sequence == self._taken:
                raise StopIteration
            self._taken = self._sequence
            return self._latest
