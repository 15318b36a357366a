"""Tests for landmark → gesture target extraction."""

import math

import numpy as np
import pytest

from gesture_particles.extractor import (
    INDEX_TIP,
    MIDDLE_MCP,
    THUMB_TIP,
    WRIST,
    GestureExtractor,
    HandPresence,
    RotationMapping,
    ScaleMapping,
    as_landmarks,
    palm_rotation,
    pinch_ratio,
)
from gesture_particles.smoothing import GestureState, SmoothingEngine


def make_hand(ratio=0.5, base=0.2, palm=(0.5, 0.5)):
    """Build 21 landmarks with a given pinch ratio and palm position."""
    px, py = palm
    lm = np.zeros((21, 3))
    lm[:] = [px, py, 0.0]
    lm[WRIST] = [px, py + base, 0.0]
    lm[MIDDLE_MCP] = [px, py, 0.0]
    lm[THUMB_TIP] = [px, py - 0.1, 0.0]
    lm[INDEX_TIP] = [px + ratio * base, py - 0.1, 0.0]
    return lm


def make_extractor(preset="symmetric", state=None):
    state = state or GestureState()
    return GestureExtractor(state, ScaleMapping(), RotationMapping.preset(preset)), state


class TestScaleMapping:
    def test_clamped_ends(self):
        m = ScaleMapping()
        assert m.map(0.0) == 0.2
        assert m.map(-1.0) == 0.2
        assert m.map(5.0) == 3.0

    def test_monotonic_and_bounded(self):
        m = ScaleMapping()
        values = [m.map(r) for r in np.linspace(-0.5, 2.0, 200)]
        assert all(b >= a for a, b in zip(values, values[1:]))
        assert all(0.2 <= v <= 3.0 for v in values)

    def test_invalid(self):
        with pytest.raises(ValueError):
            ScaleMapping(min_norm=1.0, max_norm=0.5)
        with pytest.raises(ValueError):
            ScaleMapping(min_scale=1.5)


class TestLandmarkHelpers:
    def test_pinch_ratio_is_size_invariant(self):
        small = pinch_ratio(make_hand(ratio=0.6, base=0.1))
        large = pinch_ratio(make_hand(ratio=0.6, base=0.3))
        assert small == pytest.approx(0.6)
        assert large == pytest.approx(0.6)

    def test_zero_base(self):
        lm = make_hand()
        lm[WRIST] = lm[MIDDLE_MCP]
        assert pinch_ratio(lm) is None

    def test_shape_checks(self):
        with pytest.raises(ValueError):
            as_landmarks(np.zeros((20, 3)))
        with pytest.raises(ValueError):
            as_landmarks(np.zeros((21, 2)))
        assert as_landmarks(np.zeros((21, 4))).shape == (21, 3)
        assert as_landmarks(make_hand().tolist()).shape == (21, 3)

    def test_palm_rotation_symmetric(self):
        m = RotationMapping.preset("symmetric")
        assert palm_rotation(make_hand(palm=(0.5, 0.5)), m) == pytest.approx((0.0, 0.0))
        # 1.5x sensitivity saturates before the frame edge
        assert palm_rotation(make_hand(palm=(0.9, 0.5)), m) == pytest.approx((0.0, math.pi / 2))
        # hand high in the image tilts up
        rx, _ = palm_rotation(make_hand(palm=(0.5, 0.0)), m)
        assert rx == pytest.approx(math.pi / 2)

    def test_palm_rotation_asymmetric(self):
        m = RotationMapping.preset("asymmetric")
        rx, ry = palm_rotation(make_hand(palm=(1.0, 0.0)), m)
        assert rx == pytest.approx(math.pi / 6)
        assert ry == pytest.approx(math.pi / 4)

    def test_unknown_preset(self):
        with pytest.raises(ValueError, match="Unknown rotation preset"):
            RotationMapping.preset("wobbly")


class TestScaleTargets:
    def test_pinch_sweep(self):
        extractor, state = make_extractor()
        trace = []
        for ratio in (0.05, 0.3, 0.6, 1.2):
            extractor.process(make_hand(ratio=ratio))
            trace.append(state.scale_target)
        assert trace[0] == pytest.approx(0.2)
        assert trace[-1] == pytest.approx(3.0)
        assert all(b >= a for a, b in zip(trace, trace[1:]))
        assert state.hand_detected

    def test_zero_base_keeps_target(self):
        extractor, state = make_extractor()
        extractor.process(make_hand(ratio=1.2))
        lm = make_hand(ratio=0.05)
        lm[WRIST] = lm[MIDDLE_MCP]
        extractor.process(lm)
        assert state.scale_target == pytest.approx(3.0)
        assert extractor.skipped_scale_updates == 1

    def test_no_hand_resets(self):
        extractor, state = make_extractor()
        extractor.process(make_hand(ratio=1.2, palm=(0.9, 0.1)))
        extractor.process(make_hand(ratio=1.2, palm=(0.9, 0.1)))
        extractor.process(None)
        assert state.scale_target == 1.0
        assert state.rotation_x_target == 0.0
        assert state.rotation_y_target == 0.0
        assert not state.hand_detected
        assert extractor.presence == HandPresence.NO_HAND


class TestFirstDetection:
    def test_no_jump_on_first_frame(self):
        state = GestureState()
        state.rotation_x_current = 0.3
        state.rotation_y_current = -0.2
        extractor, _ = make_extractor(state=state)
        engine = SmoothingEngine(state, np.zeros(3))

        extractor.process(make_hand(palm=(0.95, 0.05)))
        assert state.rotation_x_target == 0.3
        assert state.rotation_y_target == -0.2
        engine.advance()
        assert state.rotation_x_current == 0.3
        assert state.rotation_y_current == -0.2

    def test_alpha_sequence(self):
        extractor, state = make_extractor()
        mapping = extractor.rotation_mapping
        assert state.rotation_alpha == mapping.steady_alpha

        extractor.process(make_hand(palm=(0.8, 0.5)))
        assert state.rotation_alpha == mapping.transition_alpha
        extractor.process(make_hand(palm=(0.8, 0.5)))
        assert state.rotation_alpha == mapping.steady_alpha
        assert state.rotation_y_target > 0

    def test_reacquire_uses_transition_again(self):
        extractor, state = make_extractor()
        for _ in range(3):
            extractor.process(make_hand())
        extractor.process(None)
        extractor.process(make_hand())
        assert state.rotation_alpha == extractor.rotation_mapping.transition_alpha


class TestPresence:
    def test_transition_callbacks(self):
        extractor, _ = make_extractor()
        seen = []
        extractor.on_transition(lambda old, new: seen.append((old, new)))
        extractor.process(make_hand())
        extractor.process(make_hand())
        extractor.process(None)
        extractor.process(None)
        assert seen == [
            (HandPresence.NO_HAND, HandPresence.HAND_DETECTED),
            (HandPresence.HAND_DETECTED, HandPresence.NO_HAND),
        ]

    def test_counters_and_reset(self):
        extractor, state = make_extractor()
        extractor.process(make_hand(ratio=1.2))
        extractor.process(None)
        extractor.process(make_hand())
        assert extractor.frames_processed == 3
        assert extractor.hand_frames == 2
        extractor.reset()
        assert extractor.frames_processed == 0
        assert extractor.presence == HandPresence.NO_HAND
        assert state.scale_target == 1.0

    def test_stop_releases_hand(self):
        extractor, state = make_extractor()
        extractor.process(make_hand(ratio=1.2))
        extractor.stop()
        assert not state.hand_detected
        assert state.scale_target == 1.0

    def test_bad_frame_raises(self):
        extractor, _ = make_extractor()
        with pytest.raises(ValueError):
            extractor.process(np.zeros((5, 3)))


class TestHandLoss:
    def hold_hand(self, extractor, engine, palm, ticks=200):
        for _ in range(ticks):
            extractor.process(make_hand(palm=palm))
            engine.advance()

    @pytest.mark.parametrize("palm", [(0.9, 0.1), (0.1, 0.9)])
    def test_rotation_eases_back_without_jump(self, palm):
        extractor, state = make_extractor()
        engine = SmoothingEngine(state, np.zeros(3))
        self.hold_hand(extractor, engine, palm)
        assert abs(state.rotation_x_current) > 0.5
        assert abs(state.rotation_y_current) > 0.5

        extractor.process(None)
        alpha = state.rotation_alpha
        assert alpha == extractor.rotation_mapping.steady_alpha
        prev = (state.rotation_x_current, state.rotation_y_current)
        for _ in range(100):
            engine.advance()
            current = (state.rotation_x_current, state.rotation_y_current)
            for before, after in zip(prev, current):
                # the target is 0, so the deviation is the current angle
                assert abs(after - before) <= alpha * abs(before) + 1e-12
                assert abs(after) <= abs(before)
            prev = current

    def test_loss_during_transition_uses_steady_alpha(self):
        extractor, state = make_extractor()
        state.rotation_x_current = 0.4
        extractor.process(make_hand(palm=(0.9, 0.1)))
        assert state.rotation_alpha == extractor.rotation_mapping.transition_alpha
        extractor.process(None)
        assert state.rotation_alpha == extractor.rotation_mapping.steady_alpha
        engine = SmoothingEngine(state, np.zeros(3))
        engine.advance()
        assert state.rotation_x_current == pytest.approx(0.4 * (1 - state.rotation_alpha))
