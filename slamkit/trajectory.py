"""Camera and keyframe trajectories in the TUM RGB-D and KITTI text formats."""

from __future__ import annotations

import math
import os
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence, Union

import numpy as np

from slamkit.system_state import Sensor

__all__ = [
    "KeyFrameNode",
    "FrameRecord",
    "MonocularTrajectoryError",
    "rotation_to_quaternion",
    "resolve_frame_poses",
    "save_trajectory_tum",
    "save_keyframe_trajectory_tum",
    "save_trajectory_kitti",
]

PathLike = Union[str, os.PathLike]


class MonocularTrajectoryError(ValueError):
    """Raised when a per-frame trajectory is requested for a monocular sensor."""


@dataclass(eq=False)
class KeyFrameNode:
    """A keyframe in the spanning tree.

    ``pose`` is the world-to-camera matrix. ``tcp`` is the pose relative to
    ``parent``, used to reach a good ancestor when this keyframe is bad.
    """

    id: int
    timestamp: float
    pose: np.ndarray
    bad: bool = False
    parent: Optional["KeyFrameNode"] = None
    tcp: Optional[np.ndarray] = None

    def __post_init__(self) -> None:
        self.pose = np.asarray(self.pose, dtype=float)
        if self.pose.shape != (4, 4):
            raise ValueError("pose must be a 4x4 matrix")
        if self.tcp is not None:
            self.tcp = np.asarray(self.tcp, dtype=float)

    @property
    def rotation(self) -> np.ndarray:
        return self.pose[:3, :3].copy()

    @property
    def translation(self) -> np.ndarray:
        return self.pose[:3, 3].copy()

    @property
    def camera_center(self) -> np.ndarray:
        return -self.rotation.T @ self.translation

    @property
    def pose_inverse(self) -> np.ndarray:
        rwc = self.rotation.T
        inv = np.eye(4)
        inv[:3, :3] = rwc
        inv[:3, 3] = -rwc @ self.translation
        return inv


@dataclass
class FrameRecord:
    """A tracked frame: its pose relative to a reference keyframe."""

    relative_pose: np.ndarray
    reference: KeyFrameNode
    timestamp: float
    lost: bool = False


def rotation_to_quaternion(rotation) -> tuple[float, float, float, float]:
    """Convert a 3x3 rotation matrix to a quaternion ``(x, y, z, w)``."""
    m = np.asarray(rotation, dtype=float)
    if m.shape != (3, 3):
        raise ValueError("rotation must be a 3x3 matrix")
    trace = m[0, 0] + m[1, 1] + m[2, 2]
    if trace > 0.0:
        t = math.sqrt(trace + 1.0)
        w = 0.5 * t
        t = 0.5 / t
        return (float((m[2, 1] - m[1, 2]) * t), float((m[0, 2] - m[2, 0]) * t),
                float((m[1, 0] - m[0, 1]) * t), float(w))
    i = 0
    if m[1, 1] > m[0, 0]:
        i = 1
    if m[2, 2] > m[i, i]:
        i = 2
    j = (i + 1) % 3
    k = (j + 1) % 3
    t = math.sqrt(m[i, i] - m[j, j] - m[k, k] + 1.0)
    q = [0.0, 0.0, 0.0]
    q[i] = 0.5 * t
    t = 0.5 / t
    w = (m[k, j] - m[j, k]) * t
    q[j] = (m[j, i] + m[i, j]) * t
    q[k] = (m[k, i] + m[i, k]) * t
    return float(q[0]), float(q[1]), float(q[2]), float(w)


def _origin_transform(keyframes: Iterable[KeyFrameNode]) -> np.ndarray:
    ordered = sorted(keyframes, key=lambda kf: kf.id)
    if not ordered:
        raise ValueError("at least one keyframe is required")
    return ordered[0].pose_inverse


def _reference_to_world(reference: KeyFrameNode, two: np.ndarray) -> np.ndarray:
    trw = np.eye(4)
    kf = reference
    while kf.bad:
        if kf.parent is None or kf.tcp is None:
            raise ValueError(f"bad keyframe {kf.id} has no parent to fall back on")
        trw = trw @ kf.tcp
        kf = kf.parent
    return trw @ kf.pose @ two


def resolve_frame_poses(records: Sequence[FrameRecord],
                        keyframes: Iterable[KeyFrameNode]) -> list[tuple[FrameRecord, np.ndarray]]:
    """Return each record with its world-to-camera pose.

    Poses are expressed so that the keyframe with the lowest id sits at the
    origin. Bad reference keyframes are replaced by their ancestors.
    """
    two = _origin_transform(keyframes)
    return [
        (record, np.asarray(record.relative_pose, dtype=float)
         @ _reference_to_world(record.reference, two))
        for record in records
    ]


def _camera_to_world(tcw: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    rwc = tcw[:3, :3].T
    twc = -rwc @ tcw[:3, 3]
    return rwc, twc


def _f32(value: float) -> float:
    return float(np.float32(value))


def _join(values: Iterable[float], digits: int) -> str:
    return " ".join(f"{_f32(v):.{digits}f}" for v in values)


def _require_non_monocular(sensor: Sensor) -> None:
    if Sensor(sensor) is Sensor.MONOCULAR:
        raise MonocularTrajectoryError("camera trajectory cannot be saved for a monocular sensor")


def save_trajectory_tum(path: PathLike, records: Sequence[FrameRecord],
                        keyframes: Iterable[KeyFrameNode], sensor: Sensor) -> None:
    """Write every localized frame as ``timestamp tx ty tz qx qy qz qw``."""
    _require_non_monocular(sensor)
    lines = []
    for record, tcw in resolve_frame_poses(records, keyframes):
        if record.lost:
            continue
        rwc, twc = _camera_to_world(tcw)
        q = rotation_to_quaternion(rwc)
        lines.append(f"{record.timestamp:.6f} {_join([*twc, *q], 9)}\n")
    with open(path, "w", encoding="utf-8") as handle:
        handle.writelines(lines)


def save_keyframe_trajectory_tum(path: PathLike, keyframes: Iterable[KeyFrameNode]) -> None:
    """Write each good keyframe, in id order, in the TUM format."""
    lines = []
    for kf in sorted(keyframes, key=lambda k: k.id):
        if kf.bad:
            continue
        q = rotation_to_quaternion(kf.rotation.T)
        center = kf.camera_center
        lines.append(f"{kf.timestamp:.6f} {_join([*center, *q], 7)}\n")
    with open(path, "w", encoding="utf-8") as handle:
        handle.writelines(lines)


def save_trajectory_kitti(path: PathLike, records: Sequence[FrameRecord],
                          keyframes: Iterable[KeyFrameNode], sensor: Sensor) -> None:
    """Write every frame as the 12 entries of its 3x4 camera-to-world matrix."""
    _require_non_monocular(sensor)
    lines = []
    for _record, tcw in resolve_frame_poses(records, keyframes):
        rwc, twc = _camera_to_world(tcw)
        values = [v for row in range(3) for v in (*rwc[row], twc[row])]
        lines.append(_join(values, 9) + "\n")
    with open(path, "w", encoding="utf-8") as handle:
        handle.writelines(lines)