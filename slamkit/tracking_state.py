"""Tracking states, per-frame strategy selection and frame pose history."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Iterator, Optional

import numpy as np

__all__ = [
    "TrackingState",
    "TrackingStrategy",
    "FrameHistory",
    "choose_strategy",
    "to_grayscale",
    "update_velocity",
]

# Frames after a relocalisation during which the motion model is not trusted.
_RELOC_GRACE_FRAMES = 2

# Luma weights for red, green and blue.
_LUMA = np.array([0.299, 0.587, 0.114])


class TrackingState(enum.IntEnum):
    """State of the tracker after the most recent frame."""

    NO_IMAGES_YET = 0
    NOT_INITIALIZED = 1
    OK = 2
    LOST = 3


class TrackingStrategy(enum.Enum):
    """How the initial pose of the current frame is to be estimated."""

    INITIALIZE = "initialize"
    REFERENCE_KEYFRAME = "reference_keyframe"
    MOTION_MODEL = "motion_model"
    MOTION_MODEL_WITH_FALLBACK = "motion_model_with_fallback"
    RELOCALIZATION = "relocalization"
    MOTION_MODEL_AND_RELOCALIZATION = "motion_model_and_relocalization"


def choose_strategy(state: TrackingState, only_tracking: bool, has_velocity: bool,
                    frame_id: int, last_reloc_frame_id: int,
                    visual_odometry: bool = False) -> TrackingStrategy:
    """Pick the pose-estimation strategy for the next frame.

    In mapping mode a tracked frame uses the motion model (falling back to the
    reference keyframe) unless there is no velocity or a relocalisation just
    happened. In localization mode, a frame tracked mainly with visual
    odometry points tries both the motion model and relocalisation.
    """
    state = TrackingState(state)
    if state in (TrackingState.NO_IMAGES_YET, TrackingState.NOT_INITIALIZED):
        return TrackingStrategy.INITIALIZE

    if not only_tracking:
        if state is not TrackingState.OK:
            return TrackingStrategy.RELOCALIZATION
        if not has_velocity or frame_id < last_reloc_frame_id + _RELOC_GRACE_FRAMES:
            return TrackingStrategy.REFERENCE_KEYFRAME
        return TrackingStrategy.MOTION_MODEL_WITH_FALLBACK

    if state is TrackingState.LOST:
        return TrackingStrategy.RELOCALIZATION
    if not visual_odometry:
        return TrackingStrategy.MOTION_MODEL if has_velocity else TrackingStrategy.REFERENCE_KEYFRAME
    if has_velocity:
        return TrackingStrategy.MOTION_MODEL_AND_RELOCALIZATION
    return TrackingStrategy.RELOCALIZATION


@dataclass
class FrameHistory:
    """Per-frame pose relative to a reference keyframe, kept to rebuild the trajectory."""

    relative_poses: list = field(default_factory=list)
    references: list = field(default_factory=list)
    timestamps: list = field(default_factory=list)
    lost: list = field(default_factory=list)

    def record(self, relative_pose: Optional[Any], reference: Any = None,
               timestamp: Optional[float] = None, lost: bool = False) -> None:
        """Append one frame.

        With no ``relative_pose`` (tracking failed) the previous frame's pose,
        reference and timestamp are repeated; only the lost flag is new.
        """
        if relative_pose is None:
            if not self.relative_poses:
                raise ValueError("no previous frame to repeat")
            self.relative_poses.append(self.relative_poses[-1])
            self.references.append(self.references[-1])
            self.timestamps.append(self.timestamps[-1])
        else:
            if timestamp is None:
                raise ValueError("a timestamp is required with a pose")
            self.relative_poses.append(np.array(relative_pose, dtype=float))
            self.references.append(reference)
            self.timestamps.append(float(timestamp))
        self.lost.append(bool(lost))

    def clear(self) -> None:
        """Forget every recorded frame."""
        self.relative_poses.clear()
        self.references.clear()
        self.timestamps.clear()
        self.lost.clear()

    def __len__(self) -> int:
        return len(self.relative_poses)

    def __iter__(self) -> Iterator[tuple]:
        return iter(zip(self.relative_poses, self.references, self.timestamps, self.lost))


def to_grayscale(image, rgb: bool) -> np.ndarray:
    """Convert a colour image (3 or 4 channels) to grayscale.

    ``rgb`` tells whether channels are in RGB order rather than BGR; an alpha
    channel is ignored. Images with any other channel count are returned
    unchanged. Integer images keep their type, rounded and clipped.
    """
    arr = np.asarray(image)
    if arr.ndim != 3 or arr.shape[2] not in (3, 4):
        return arr
    colour = arr[..., :3].astype(float)
    if not rgb:
        colour = colour[..., ::-1]
    gray = colour @ _LUMA
    if np.issubdtype(arr.dtype, np.integer):
        info = np.iinfo(arr.dtype)
        return np.clip(np.rint(gray), info.min, info.max).astype(arr.dtype)
    return gray.astype(arr.dtype)


def update_velocity(current_pose, last_pose) -> Optional[np.ndarray]:
    """Constant-velocity motion model: the transform from the last to the current camera.

    Returns ``None`` when the last frame has no pose.
    """
    if last_pose is None:
        return None
    last = np.asarray(last_pose, dtype=float)
    if last.size == 0:
        return None
    current = np.asarray(current_pose, dtype=float)
    if current.shape != (4, 4) or last.shape != (4, 4):
        raise ValueError("poses must be 4x4 matrices")
    rwc = last[:3, :3].T
    last_twc = np.eye(4)
    last_twc[:3, :3] = rwc
    last_twc[:3, 3] = -rwc @ last[:3, 3]
    return current @ last_twc