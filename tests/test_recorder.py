"""Tests for landmark recording and replay."""

import numpy as np
import pytest

from gesture_particles.recorder import HandFramePlayer, HandFrameRecorder, RecordedFrame


def make_hand():
    return np.random.rand(21, 3).astype(np.float32)


class TestRecorder:
    def test_record_and_count(self):
        rec = HandFrameRecorder()
        rec.start()
        for _ in range(10):
            rec.add_frame(make_hand())
        rec.add_frame(None)
        count = rec.stop()
        assert count == 11
        assert rec.hand_frame_count == 10
        assert not rec.is_recording

    def test_not_recording_ignores_frames(self):
        rec = HandFrameRecorder()
        rec.add_frame(make_hand())
        assert rec.frame_count == 0

    def test_rejects_bad_landmarks(self):
        rec = HandFrameRecorder()
        rec.start()
        with pytest.raises(ValueError):
            rec.add_frame(np.zeros((3, 3)))

    def test_save_and_load_json(self, tmp_path):
        rec = HandFrameRecorder()
        rec.start()
        hand = make_hand()
        rec.add_frame(hand)
        rec.add_frame(None)
        rec.stop()

        path = tmp_path / "nested" / "take.json"
        rec.save(path)

        player = HandFramePlayer.load(path)
        assert player.frame_count == 2
        frames = list(player.frames())
        np.testing.assert_allclose(frames[0], hand, atol=1e-6)
        assert frames[1] is None

    def test_save_and_load_npz(self, tmp_path):
        rec = HandFrameRecorder()
        rec.start()
        for _ in range(4):
            rec.add_frame(make_hand())
        rec.add_frame(None)
        rec.stop()

        path = rec.save_compact(tmp_path / "take")
        assert path.suffix == ".npz"

        player = HandFramePlayer.load(path)
        assert player.frame_count == 5
        frames = list(player.frames())
        assert all(isinstance(f, np.ndarray) and f.shape == (21, 3) for f in frames[:4])
        assert frames[4] is None

    def test_duration(self):
        rec = HandFrameRecorder()
        assert rec.duration == 0.0
        rec.start()
        rec.add_frame(None)
        rec.add_frame(None)
        assert rec.duration >= 0.0


class TestPlayer:
    def test_realtime_speed(self):
        frames = [RecordedFrame(timestamp=i * 0.01, landmarks=None) for i in range(3)]
        player = HandFramePlayer(frames)
        assert player.duration == pytest.approx(0.02)
        assert list(player.play_realtime(speed=100.0)) == [None, None, None]

    def test_realtime_rejects_bad_speed(self):
        player = HandFramePlayer([])
        with pytest.raises(ValueError):
            list(player.play_realtime(speed=0))

    def test_has_hand(self):
        assert RecordedFrame(0.0, [[0.0] * 3] * 21).has_hand
        assert not RecordedFrame(0.0, None).has_hand
