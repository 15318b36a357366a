"""Landmark recording and replay — capture camera-frame landmarks to disk.

A recording keeps one entry per camera frame, including frames where no
hand was seen, so a replay reproduces hand-appear and hand-lose transitions
exactly. Useful for:
- Tuning scale/rotation mappings without a camera
- Headless test runs of the full extractor + smoothing chain
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional

import numpy as np

from gesture_particles.extractor import NUM_LANDMARKS, as_landmarks


@dataclass
class RecordedFrame:
    """A single camera frame in a recording."""
    timestamp: float  # seconds from recording start
    landmarks: Optional[list[list[float]]]  # (21, 3) as nested lists, None for no hand

    @property
    def has_hand(self) -> bool:
        return self.landmarks is not None


class HandFrameRecorder:
    """Records per-frame landmarks (or their absence) to a file.

    Usage:
        recorder = HandFrameRecorder()
        recorder.start()
        tracker.on_frame(recorder.add_frame)
        ...
        recorder.save("session.json")
    """

    def __init__(self):
        self._frames: list[RecordedFrame] = []
        self._start_time: Optional[float] = None
        self._recording = False

    def start(self):
        """Begin a new recording session."""
        self._frames = []
        self._start_time = time.monotonic()
        self._recording = True

    def stop(self) -> int:
        """Stop recording. Returns number of frames captured."""
        self._recording = False
        return len(self._frames)

    @property
    def is_recording(self) -> bool:
        return self._recording

    @property
    def frame_count(self) -> int:
        return len(self._frames)

    @property
    def hand_frame_count(self) -> int:
        return sum(1 for f in self._frames if f.has_hand)

    @property
    def duration(self) -> float:
        if not self._frames:
            return 0.0
        return self._frames[-1].timestamp

    def add_frame(self, landmarks: Optional[np.ndarray] = None):
        """Append one camera frame. Ignored unless recording."""
        if not self._recording:
            return

        timestamp = time.monotonic() - self._start_time
        data = None if landmarks is None else as_landmarks(landmarks).tolist()
        self._frames.append(RecordedFrame(timestamp=timestamp, landmarks=data))

    def save(self, path: str | Path):
        """Save recording to a JSON file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        data = {
            "version": 1,
            "frame_count": len(self._frames),
            "duration": self.duration,
            "frames": [
                {"timestamp": f.timestamp, "landmarks": f.landmarks}
                for f in self._frames
            ],
        }
        with open(path, "w") as f:
            json.dump(data, f)

    def save_compact(self, path: str | Path) -> Path:
        """Save in compact numpy npz format. No-hand frames are masked out."""
        path = Path(path).with_suffix(".npz")
        path.parent.mkdir(parents=True, exist_ok=True)

        n = len(self._frames)
        timestamps = np.array([f.timestamp for f in self._frames], dtype=np.float32)
        present = np.array([f.has_hand for f in self._frames], dtype=bool)
        landmarks = np.zeros((n, NUM_LANDMARKS, 3), dtype=np.float32)
        for i, f in enumerate(self._frames):
            if f.has_hand:
                landmarks[i] = np.array(f.landmarks, dtype=np.float32)

        np.savez_compressed(path, timestamps=timestamps, present=present, landmarks=landmarks)
        return path


class HandFramePlayer:
    """Replays a recorded session.

    Usage:
        player = HandFramePlayer.load("session.json")
        for landmarks in player.frames():
            extractor.process(landmarks)
    """

    def __init__(self, frames: list[RecordedFrame]):
        self._frames = frames

    @classmethod
    def load(cls, path: str | Path) -> HandFramePlayer:
        path = Path(path)
        if path.suffix == ".npz":
            return cls._load_compact(path)

        with open(path) as f:
            data = json.load(f)

        frames = [
            RecordedFrame(timestamp=float(f["timestamp"]), landmarks=f.get("landmarks"))
            for f in data["frames"]
        ]
        return cls(frames)

    @classmethod
    def _load_compact(cls, path: Path) -> HandFramePlayer:
        data = np.load(path, allow_pickle=False)
        timestamps = data["timestamps"]
        present = data["present"]
        landmarks = data["landmarks"]

        frames = [
            RecordedFrame(
                timestamp=float(timestamps[i]),
                landmarks=landmarks[i].tolist() if present[i] else None,
            )
            for i in range(len(timestamps))
        ]
        return cls(frames)

    @property
    def frame_count(self) -> int:
        return len(self._frames)

    @property
    def duration(self) -> float:
        if not self._frames:
            return 0.0
        return self._frames[-1].timestamp

    def frames(self) -> Iterator[Optional[np.ndarray]]:
        """Yield each frame's landmarks as a numpy array, or None."""
        for frame in self._frames:
            if frame.landmarks is None:
                yield None
            else:
                yield np.array(frame.landmarks, dtype=np.float32)

    def play_realtime(self, speed: float = 1.0) -> Iterator[Optional[np.ndarray]]:
        """Yield frames at their recorded timing, scaled by `speed`."""
        if speed <= 0:
            raise ValueError(f"speed must be positive, got {speed}")

        start = time.monotonic()
        for frame, landmarks in zip(self._frames, self.frames()):
            target_time = frame.timestamp / speed
            elapsed = time.monotonic() - start
            if target_time > elapsed:
                time.sleep(target_time - elapsed)
            yield landmarks
