import math

import numpy as np
import pytest

from slamkit.system_state import Sensor
from slamkit.trajectory import (
    FrameRecord,
    KeyFrameNode,
    MonocularTrajectoryError,
    resolve_frame_poses,
    rotation_to_quaternion,
    save_keyframe_trajectory_tum,
    save_trajectory_kitti,
    save_trajectory_tum,
)


def _rz(angle):
    c, s = math.cos(angle), math.sin(angle)
    return np.array([[c, -s, 0.0], [s, c, 0.0], [0.0, 0.0, 1.0]])


def _rx(angle):
    c, s = math.cos(angle), math.sin(angle)
    return np.array([[1.0, 0.0, 0.0], [0.0, c, -s], [0.0, s, c]])


def _pose(rotation, translation):
    p = np.eye(4)
    p[:3, :3] = rotation
    p[:3, 3] = translation
    return p


def _quat_to_matrix(x, y, z, w):
    return np.array([
        [1 - 2 * (y * y + z * z), 2 * (x * y - z * w), 2 * (x * z + y * w)],
        [2 * (x * y + z * w), 1 - 2 * (x * x + z * z), 2 * (y * z - x * w)],
        [2 * (x * z - y * w), 2 * (y * z + x * w), 1 - 2 * (x * x + y * y)],
    ])


def test_identity_quaternion():
    assert rotation_to_quaternion(np.eye(3)) == pytest.approx((0.0, 0.0, 0.0, 1.0))


@pytest.mark.parametrize("rotation", [_rz(0.7), _rx(math.pi), _rz(math.pi) @ _rx(0.3),
                                      _rx(2.5) @ _rz(-1.2)])
def test_quaternion_round_trip(rotation):
    q = rotation_to_quaternion(rotation)
    assert np.linalg.norm(q) == pytest.approx(1.0)
    assert np.allclose(_quat_to_matrix(*q), rotation, atol=1e-9)


def test_quaternion_rejects_bad_shape():
    with pytest.raises(ValueError):
        rotation_to_quaternion(np.eye(4))


def test_resolve_places_first_keyframe_at_origin():
    p0 = _pose(_rz(0.4), [1.0, 2.0, 3.0])
    p1 = _pose(_rz(-0.2), [0.5, -1.0, 0.2])
    kf0 = KeyFrameNode(0, 0.0, p0)
    kf1 = KeyFrameNode(1, 1.0, p1)
    record = FrameRecord(np.eye(4), kf1, 1.0)
    [(got_record, tcw)] = resolve_frame_poses([record], [kf1, kf0])
    assert got_record is record
    assert np.allclose(tcw @ p0, p1)


def test_resolve_walks_past_bad_reference():
    p0 = np.eye(4)
    p1 = _pose(_rz(0.3), [0.0, 1.0, 0.0])
    p2 = _pose(_rz(0.9), [1.0, 0.0, 2.0])
    kf0 = KeyFrameNode(0, 0.0, p0)
    kf1 = KeyFrameNode(1, 1.0, p1)
    bad = KeyFrameNode(2, 2.0, np.eye(4), bad=True, parent=kf1,
                       tcp=p2 @ np.linalg.inv(p1))
    rel = _pose(_rz(0.1), [0.1, 0.0, 0.0])
    [(_, tcw)] = resolve_frame_poses([FrameRecord(rel, bad, 2.0)], [kf0, kf1, bad])
    assert np.allclose(tcw, rel @ p2)


def test_resolve_bad_without_parent():
    kf0 = KeyFrameNode(0, 0.0, np.eye(4), bad=True)
    with pytest.raises(ValueError):
        resolve_frame_poses([FrameRecord(np.eye(4), kf0, 0.0)], [kf0])


def test_resolve_needs_keyframes():
    kf0 = KeyFrameNode(0, 0.0, np.eye(4))
    with pytest.raises(ValueError):
        resolve_frame_poses([FrameRecord(np.eye(4), kf0, 0.0)], [])


def test_save_tum_skips_lost_frames(tmp_path):
    kf0 = KeyFrameNode(0, 0.0, np.eye(4))
    tcw = _pose(_rz(0.5), [0.3, -0.4, 1.5])
    records = [
        FrameRecord(tcw, kf0, 0.5),
        FrameRecord(np.eye(4), kf0, 1.0, lost=True),
        FrameRecord(np.eye(4), kf0, 1.5),
    ]
    path = tmp_path / "traj.txt"
    save_trajectory_tum(path, records, [kf0], Sensor.STEREO)
    lines = path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 2
    first = lines[0].split()
    assert first[0] == "0.500000"
    assert len(first) == 8
    values = np.array([float(v) for v in first[1:]])
    rwc = tcw[:3, :3].T
    assert np.allclose(values[:3], -rwc @ tcw[:3, 3], atol=1e-5)
    assert np.allclose(values[3:], rotation_to_quaternion(rwc), atol=1e-5)
    assert lines[1].split()[0] == "1.500000"


def test_save_tum_rejects_monocular(tmp_path):
    kf0 = KeyFrameNode(0, 0.0, np.eye(4))
    with pytest.raises(MonocularTrajectoryError):
        save_trajectory_tum(tmp_path / "t.txt", [FrameRecord(np.eye(4), kf0, 0.0)],
                            [kf0], Sensor.MONOCULAR)
    assert not (tmp_path / "t.txt").exists()


def test_save_kitti_identity(tmp_path):
    kf0 = KeyFrameNode(0, 0.0, np.eye(4))
    records = [FrameRecord(np.eye(4), kf0, 0.0),
               FrameRecord(np.eye(4), kf0, 0.1, lost=True)]
    path = tmp_path / "kitti.txt"
    save_trajectory_kitti(path, records, [kf0], Sensor.RGBD)
    lines = path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 2
    expected = np.array([1, 0, 0, 0, 0, 1, 0, 0, 0, 0, 1, 0], dtype=float)
    assert np.allclose([float(v) for v in lines[0].split()], expected)
    assert lines[0].split()[0] == "1.000000000"


def test_save_kitti_rejects_monocular(tmp_path):
    kf0 = KeyFrameNode(0, 0.0, np.eye(4))
    with pytest.raises(MonocularTrajectoryError):
        save_trajectory_kitti(tmp_path / "k.txt", [], [kf0], Sensor.MONOCULAR)


def test_save_keyframe_trajectory(tmp_path):
    pose_a = _pose(np.eye(3), [-1.0, 0.0, 0.0])
    pose_b = _pose(_rz(0.4), [0.2, 0.3, 0.4])
    kf_a = KeyFrameNode(0, 10.0, pose_a)
    kf_b = KeyFrameNode(1, 20.0, pose_b)
    kf_bad = KeyFrameNode(2, 30.0, np.eye(4), bad=True)
    path = tmp_path / "kf.txt"
    save_keyframe_trajectory_tum(path, [kf_bad, kf_b, kf_a])
    lines = path.read_text(encoding="utf-8").splitlines()
    assert [line.split()[0] for line in lines] == ["10.000000", "20.000000"]
    assert lines[0].split()[1] == "1.0000000"
    values = np.array([float(v) for v in lines[1].split()[1:]])
    assert np.allclose(values[:3], kf_b.camera_center, atol=1e-5)
    assert np.allclose(values[3:], rotation_to_quaternion(kf_b.rotation.T), atol=1e-5)


def test_keyframe_pose_inverse():
    pose = _pose(_rz(1.1), [0.4, -0.7, 2.0])
    kf = KeyFrameNode(0, 0.0, pose)
    assert np.allclose(kf.pose_inverse @ pose, np.eye(4))
    assert np.allclose(kf.pose_inverse[:3, 3], kf.camera_center)