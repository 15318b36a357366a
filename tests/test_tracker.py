"""Tests for the hand tracker capability."""

import threading
import time
import types

import numpy as np
import pytest

import gesture_particles.tracker as tracker_module
from gesture_particles.tracker import (
    BackgroundHandTracker,
    CameraConfig,
    HandTracker,
    LibraryLoadError,
    MediaPipeHandTracker,
    ReplayHandTracker,
)


def hand():
    return np.zeros((21, 3), dtype=np.float32)


class TestReplayTracker:
    def test_pushes_one_frame_per_poll(self):
        received = []
        tracker = ReplayHandTracker([hand(), None, hand()])
        tracker.on_frame(received.append)
        tracker.start()
        assert tracker.poll()
        assert tracker.poll()
        assert tracker.poll()
        assert not tracker.poll()
        assert len(received) == 3
        assert received[1] is None
        assert received[0].shape == (21, 3)
        assert tracker.frames_delivered == 3

    def test_not_started(self):
        received = []
        tracker = ReplayHandTracker([hand()])
        tracker.on_frame(received.append)
        assert not tracker.poll()
        assert received == []

    def test_stop_ends_delivery(self):
        tracker = ReplayHandTracker([hand()] * 5)
        tracker.start()
        tracker.poll()
        tracker.stop()
        assert not tracker.running
        assert not tracker.poll()

    def test_loop(self):
        tracker = ReplayHandTracker([hand(), None], loop=True)
        tracker.start()
        assert all(tracker.poll() for _ in range(7))
        assert tracker.frame_count == 2

    def test_empty_loop_exhausts(self):
        tracker = ReplayHandTracker([], loop=True)
        tracker.start()
        assert not tracker.poll()

    def test_ready_signal(self):
        tracker = ReplayHandTracker([])
        assert not tracker.is_ready
        assert not tracker.wait_ready(timeout=0.01)
        tracker.start()
        assert tracker.is_ready
        assert tracker.wait_ready(timeout=0.01)
        tracker.stop()
        assert not tracker.is_ready

    def test_remove_callback(self):
        received = []
        tracker = ReplayHandTracker([hand(), hand()])
        tracker.on_frame(received.append)
        tracker.start()
        tracker.poll()
        tracker.remove_callback(received.append)
        tracker.poll()
        assert len(received) == 1

    def test_context_manager_closes(self):
        with ReplayHandTracker([hand()]) as tracker:
            tracker.start()
        assert not tracker.running


class FakeHands:
    def __init__(self):
        self.closed = False

    def close(self):
        self.closed = True


class FakeCapture:
    opened = True
    instances: list = []

    def __init__(self, index):
        self.index = index
        self.released = False
        type(self).instances.append(self)

    def isOpened(self):
        return self.opened

    def set(self, prop, value):
        return True

    def release(self):
        self.released = True


@pytest.fixture
def fake_camera(monkeypatch):
    cv2 = pytest.importorskip("cv2")
    camera = type("Camera", (FakeCapture,), {"instances": [], "opened": True})
    monkeypatch.setattr(cv2, "VideoCapture", camera)
    return camera


def install_fake_mediapipe(monkeypatch, hands_factory):
    hands = types.SimpleNamespace(Hands=hands_factory)
    fake_mp = types.SimpleNamespace(solutions=types.SimpleNamespace(hands=hands))
    monkeypatch.setattr(tracker_module, "mp", fake_mp)


class FailingTracker(HandTracker):
    def _open(self):
        raise RuntimeError("camera busy")

    def _read(self):
        return None


class TestLifecycle:
    def test_failed_open_leaves_stopped(self):
        tracker = FailingTracker()
        with pytest.raises(RuntimeError):
            tracker.start()
        assert not tracker.running
        assert not tracker.is_ready


class TestMediaPipeTracker:
    def test_missing_library(self, monkeypatch):
        monkeypatch.setattr(tracker_module, "mp", None)
        with pytest.raises(LibraryLoadError, match="mediapipe"):
            MediaPipeHandTracker()

    def test_library_error_is_import_error(self):
        assert issubclass(LibraryLoadError, ImportError)

    def test_detector_failure_opens_no_camera(self, monkeypatch, fake_camera):
        def broken_hands(**kwargs):
            raise RuntimeError("model file missing")

        install_fake_mediapipe(monkeypatch, broken_hands)
        tracker = MediaPipeHandTracker()
        with pytest.raises(RuntimeError, match="model file missing"):
            tracker.start()
        assert fake_camera.instances == []
        assert not tracker.running

    def test_closed_camera_releases_everything(self, monkeypatch, fake_camera):
        detectors = []
        install_fake_mediapipe(monkeypatch, lambda **kw: detectors.append(FakeHands()) or detectors[-1])
        fake_camera.opened = False
        tracker = MediaPipeHandTracker(CameraConfig(camera_index=3))
        with pytest.raises(RuntimeError, match="Could not open camera 3"):
            tracker.start()
        assert [c.released for c in fake_camera.instances] == [True]
        assert [d.closed for d in detectors] == [True]
        assert not tracker.running

    def test_stop_releases_camera_and_detector(self, monkeypatch, fake_camera):
        detectors = []
        install_fake_mediapipe(monkeypatch, lambda **kw: detectors.append(FakeHands()) or detectors[-1])
        tracker = MediaPipeHandTracker()
        tracker.start()
        assert tracker.running
        tracker.stop()
        assert fake_camera.instances[0].released
        assert detectors[0].closed


class TestCameraConfig:
    def test_defaults(self):
        cfg = CameraConfig()
        assert (cfg.width, cfg.height) == (640, 480)
        assert cfg.max_num_hands == 1
        assert cfg.selfie_mode

    def test_from_dict_ignores_unknown(self):
        cfg = CameraConfig.from_dict({"width": 1280, "flux": 3})
        assert cfg.width == 1280
        assert CameraConfig.from_dict(cfg.to_dict()) == cfg


class GatedTracker(HandTracker):
    """Blocks in _read until a frame is let through, like a slow camera."""

    def __init__(self):
        super().__init__()
        self.gate = threading.Event()
        self.closed = False

    def _close(self):
        self.closed = True

    def _read(self):
        while not self.gate.wait(0.01):
            if self.closed:
                raise StopIteration
        self.gate.clear()
        return hand()


class ExplodingTracker(HandTracker):
    def _read(self):
        raise ValueError("sensor unplugged")


def wait_for(condition, timeout=2.0):
    deadline = time.monotonic() + timeout
    while not condition():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met in time")
        time.sleep(0.001)


class TestBackgroundTracker:
    def test_poll_does_not_wait_for_slow_source(self):
        received = []
        tracker = BackgroundHandTracker(GatedTracker(), join_timeout=0.1)
        tracker.on_frame(received.append)
        tracker.start()
        try:
            t0 = time.perf_counter()
            assert not tracker.poll()
            assert time.perf_counter() - t0 < 0.05
            assert received == []

            tracker.source.gate.set()
            wait_for(lambda: tracker.frames_read == 1)
            assert tracker.poll()
            assert not tracker.poll()
            assert len(received) == 1
            assert received[0].shape == (21, 3)
        finally:
            tracker.stop()
        assert tracker.source.closed
        assert not tracker.reader_alive

    def test_only_newest_sample_delivered(self):
        received = []
        first, last = hand(), hand() + 1.0
        tracker = BackgroundHandTracker(ReplayHandTracker([first, None, last]))
        tracker.on_frame(received.append)
        tracker.start()
        wait_for(lambda: not tracker.reader_alive)

        assert tracker.poll()
        assert not tracker.poll()
        assert len(received) == 1
        assert np.allclose(received[0], 1.0)
        assert tracker.frames_read == 3
        assert tracker.frames_dropped == 2
        tracker.stop()

    def test_no_hand_sample_is_delivered(self):
        received = []
        tracker = BackgroundHandTracker(ReplayHandTracker([None]))
        tracker.on_frame(received.append)
        tracker.start()
        wait_for(lambda: tracker.frames_read == 1)
        assert tracker.poll()
        assert received == [None]
        tracker.stop()

    def test_callbacks_run_on_polling_thread(self):
        threads = []
        tracker = BackgroundHandTracker(ReplayHandTracker([hand()]))
        tracker.on_frame(lambda lm: threads.append(threading.current_thread()))
        tracker.start()
        wait_for(lambda: tracker.frames_read == 1)
        tracker.poll()
        tracker.stop()
        assert threads == [threading.current_thread()]

    def test_reader_error_raised_on_poll(self):
        tracker = BackgroundHandTracker(ExplodingTracker())
        tracker.start()
        wait_for(lambda: not tracker.reader_alive)
        with pytest.raises(RuntimeError, match="sensor unplugged"):
            tracker.poll()
        assert not tracker.poll()
        tracker.stop()

    def test_failed_source_open_starts_no_thread(self):
        tracker = BackgroundHandTracker(FailingTracker())
        with pytest.raises(RuntimeError, match="camera busy"):
            tracker.start()
        assert not tracker.running
        assert not tracker.reader_alive

    def test_restart_reads_again(self):
        tracker = BackgroundHandTracker(ReplayHandTracker([hand()]))
        for _ in range(2):
            tracker.start()
            wait_for(lambda: not tracker.reader_alive)
            assert tracker.poll()
            tracker.stop()
        assert tracker.frames_delivered == 2
