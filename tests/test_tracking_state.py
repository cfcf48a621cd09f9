import math

import numpy as np
import pytest

from slamkit.tracking_state import (
    FrameHistory,
    TrackingState,
    TrackingStrategy,
    choose_strategy,
    to_grayscale,
    update_velocity,
)


def _pose(angle, translation):
    c, s = math.cos(angle), math.sin(angle)
    pose = np.eye(4)
    pose[:3, :3] = [[c, -s, 0.0], [s, c, 0.0], [0.0, 0.0, 1.0]]
    pose[:3, 3] = translation
    return pose


@pytest.mark.parametrize("state", [TrackingState.NO_IMAGES_YET, TrackingState.NOT_INITIALIZED])
def test_uninitialized_states_initialize(state):
    assert choose_strategy(state, False, True, 10, 0) is TrackingStrategy.INITIALIZE


def test_mapping_mode_uses_motion_model_with_fallback():
    result = choose_strategy(TrackingState.OK, False, True, 10, 0)
    assert result is TrackingStrategy.MOTION_MODEL_WITH_FALLBACK


def test_mapping_mode_without_velocity_uses_reference_keyframe():
    result = choose_strategy(TrackingState.OK, False, False, 10, 0)
    assert result is TrackingStrategy.REFERENCE_KEYFRAME


def test_mapping_mode_right_after_relocalisation_uses_reference_keyframe():
    assert choose_strategy(TrackingState.OK, False, True, 11, 10) is TrackingStrategy.REFERENCE_KEYFRAME
    assert choose_strategy(TrackingState.OK, False, True, 12, 10) is TrackingStrategy.MOTION_MODEL_WITH_FALLBACK


def test_mapping_mode_lost_relocalizes():
    assert choose_strategy(TrackingState.LOST, False, True, 10, 0) is TrackingStrategy.RELOCALIZATION


def test_localization_mode_lost_relocalizes():
    assert choose_strategy(TrackingState.LOST, True, True, 10, 0) is TrackingStrategy.RELOCALIZATION


def test_localization_mode_map_tracking():
    assert choose_strategy(TrackingState.OK, True, True, 10, 0, False) is TrackingStrategy.MOTION_MODEL
    assert choose_strategy(TrackingState.OK, True, False, 10, 0, False) is TrackingStrategy.REFERENCE_KEYFRAME


def test_localization_mode_visual_odometry():
    assert (choose_strategy(TrackingState.OK, True, True, 10, 0, True)
            is TrackingStrategy.MOTION_MODEL_AND_RELOCALIZATION)
    assert choose_strategy(TrackingState.OK, True, False, 10, 0, True) is TrackingStrategy.RELOCALIZATION


def test_history_records_frames():
    history = FrameHistory()
    pose = _pose(0.1, [1.0, 2.0, 3.0])
    history.record(pose, "kf0", 1.5, False)
    assert len(history) == 1
    assert np.allclose(history.relative_poses[0], pose)
    assert history.references == ["kf0"]
    assert history.timestamps == [1.5]
    assert history.lost == [False]


def test_history_repeats_previous_frame_when_pose_missing():
    history = FrameHistory()
    pose = _pose(0.2, [0.0, 1.0, 0.0])
    history.record(pose, "kf0", 2.0, False)
    history.record(None, lost=True)
    entries = list(history)
    assert len(entries) == 2
    assert np.allclose(entries[1][0], pose)
    assert entries[1][1] == "kf0"
    assert entries[1][2] == 2.0
    assert entries[1][3] is True


def test_history_repeat_without_previous_raises():
    with pytest.raises(ValueError):
        FrameHistory().record(None, lost=True)


def test_history_pose_without_timestamp_raises():
    with pytest.raises(ValueError):
        FrameHistory().record(np.eye(4), "kf0")


def test_history_clear():
    history = FrameHistory()
    history.record(np.eye(4), "kf0", 0.0)
    history.record(np.eye(4), "kf1", 1.0)
    history.clear()
    assert len(history) == 0
    assert history.timestamps == [] and history.lost == []


def test_grayscale_leaves_single_channel_unchanged():
    image = np.arange(12, dtype=np.uint8).reshape(3, 4)
    assert np.array_equal(to_grayscale(image, True), image)


def test_grayscale_of_gray_colour_keeps_value():
    image = np.full((2, 2, 3), 200, dtype=np.uint8)
    result = to_grayscale(image, False)
    assert result.shape == (2, 2)
    assert result.dtype == np.uint8
    assert np.all(result == 200)


def test_grayscale_channel_order():
    rng = np.random.default_rng(3)
    image = rng.integers(0, 256, size=(5, 6, 3), dtype=np.uint8)
    assert np.array_equal(to_grayscale(image, True), to_grayscale(image[..., ::-1], False))


def test_grayscale_ignores_alpha():
    rng = np.random.default_rng(4)
    colour = rng.integers(0, 256, size=(4, 4, 3), dtype=np.uint8)
    alpha = rng.integers(0, 256, size=(4, 4, 1), dtype=np.uint8)
    rgba = np.concatenate([colour, alpha], axis=2)
    assert np.array_equal(to_grayscale(rgba, True), to_grayscale(colour, True))


def test_grayscale_pure_red_in_rgb():
    image = np.zeros((1, 1, 3), dtype=np.uint8)
    image[0, 0, 0] = 255
    assert int(to_grayscale(image, True)[0, 0]) == 76
    assert int(to_grayscale(image, False)[0, 0]) == 29


def test_velocity_none_without_last_pose():
    assert update_velocity(np.eye(4), None) is None
    assert update_velocity(np.eye(4), np.empty((0, 0))) is None


def test_velocity_from_identity_is_current_pose():
    current = _pose(0.3, [1.0, -2.0, 0.5])
    assert np.allclose(update_velocity(current, np.eye(4)), current)


def test_velocity_between_equal_poses_is_identity():
    pose = _pose(0.7, [3.0, 1.0, -1.0])
    assert np.allclose(update_velocity(pose, pose), np.eye(4))


def test_velocity_predicts_current_from_last():
    last = _pose(0.4, [0.5, 0.0, 2.0])
    current = _pose(0.9, [1.0, 1.0, 1.0])
    velocity = update_velocity(current, last)
    assert np.allclose(velocity @ last, current)


def test_velocity_rejects_bad_shapes():
    with pytest.raises(ValueError):
        update_velocity(np.eye(3), np.eye(4))