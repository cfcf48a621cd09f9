"""Thread-safe bookkeeping shared between the tracking front end and its callers."""

from __future__ import annotations

import enum
import threading
from typing import Any, Sequence

__all__ = ["Sensor", "ModeChange", "SystemState"]


class Sensor(enum.IntEnum):
    """Input sensor type."""

    MONOCULAR = 0
    STEREO = 1
    RGBD = 2

    @property
    def label(self) -> str:
        return {
            Sensor.MONOCULAR: "Monocular",
            Sensor.STEREO: "Stereo",
            Sensor.RGBD: "RGB-D",
        }[self]


class ModeChange(enum.Flag):
    """Pending localization-mode requests.

    When both are set, activation is to be applied before deactivation.
    """

    NONE = 0
    ACTIVATE = enum.auto()
    DEACTIVATE = enum.auto()


class SystemState:
    """Mode, reset and tracking-result state guarded by locks."""

    def __init__(self, sensor: Sensor) -> None:
        self.sensor = Sensor(sensor)
        self._mode_lock = threading.Lock()
        self._mode = ModeChange.NONE
        self._reset_lock = threading.Lock()
        self._reset = False
        self._state_lock = threading.Lock()
        self._tracking_state: Any = None
        self._map_points: list = []
        self._keypoints: list = []
        self._last_big_change = 0

    def activate_localization_mode(self) -> None:
        """Request that mapping stops and only tracking runs."""
        with self._mode_lock:
            self._mode |= ModeChange.ACTIVATE

    def deactivate_localization_mode(self) -> None:
        """Request that mapping resumes."""
        with self._mode_lock:
            self._mode |= ModeChange.DEACTIVATE

    def take_mode_change(self) -> ModeChange:
        """Return the pending mode requests and clear them."""
        with self._mode_lock:
            pending, self._mode = self._mode, ModeChange.NONE
            return pending

    def request_reset(self) -> None:
        """Ask for the map to be cleared before the next frame."""
        with self._reset_lock:
            self._reset = True

    def take_reset(self) -> bool:
        """Return whether a reset was requested, clearing the request."""
        with self._reset_lock:
            pending, self._reset = self._reset, False
            return pending

    def map_changed(self, last_big_change_idx: int) -> bool:
        """Report whether the map had a big change since the previous call."""
        if self._last_big_change < last_big_change_idx:
            self._last_big_change = last_big_change_idx
            return True
        return False

    def update_tracking(self, state: Any, map_points: Sequence, keypoints: Sequence) -> None:
        """Store the outcome of the most recently processed frame."""
        with self._state_lock:
            self._tracking_state = state
            self._map_points = list(map_points)
            self._keypoints = list(keypoints)

    def tracking_state(self) -> Any:
        with self._state_lock:
            return self._tracking_state

    def tracked_map_points(self) -> list:
        with self._state_lock:
            return list(self._map_points)

    def tracked_keypoints(self) -> list:
        with self._state_lock:
            return list(self._keypoints)

    def check_sensor(self, expected: Sensor) -> None:
        """Raise ``ValueError`` unless the configured sensor is ``expected``."""
        expected = Sensor(expected)
        if self.sensor is not expected:
            raise ValueError(
                f"input sensor was set to {self.sensor.label}, not {expected.label}"
            )