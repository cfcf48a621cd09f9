"""Viewer settings and the stop/finish handshake used by the viewer thread."""

from __future__ import annotations

import threading
from dataclasses import dataclass

from slamkit.settings import _number, _parse_document

__all__ = ["ViewerSettings", "ThreadControl", "parse_viewer_settings"]

_DEFAULT_FPS = 30.0
_DEFAULT_WIDTH = 640.0
_DEFAULT_HEIGHT = 480.0


@dataclass(frozen=True)
class ViewerSettings:
    """Refresh rate, image size and initial viewpoint of the map viewer."""

    fps: float = _DEFAULT_FPS
    image_width: float = _DEFAULT_WIDTH
    image_height: float = _DEFAULT_HEIGHT
    viewpoint_x: float = 0.0
    viewpoint_y: float = 0.0
    viewpoint_z: float = 0.0
    viewpoint_f: float = 0.0

    @property
    def frame_period_ms(self) -> float:
        """Time between redraws, in milliseconds."""
        return 1e3 / self.fps


def parse_viewer_settings(text: str) -> ViewerSettings:
    """Build viewer settings from the text of a YAML settings file."""
    fields = _parse_document(text)

    fps = _number(fields, "Camera.fps")
    if fps < 1:
        fps = _DEFAULT_FPS

    width = _number(fields, "Camera.width")
    height = _number(fields, "Camera.height")
    if width < 1 or height < 1:
        width, height = _DEFAULT_WIDTH, _DEFAULT_HEIGHT

    return ViewerSettings(
        fps=fps,
        image_width=width,
        image_height=height,
        viewpoint_x=_number(fields, "Viewer.ViewpointX"),
        viewpoint_y=_number(fields, "Viewer.ViewpointY"),
        viewpoint_z=_number(fields, "Viewer.ViewpointZ"),
        viewpoint_f=_number(fields, "Viewer.ViewpointF"),
    )


class ThreadControl:
    """Finish and stop requests exchanged with a worker loop.

    A fresh control is finished and stopped, as a worker that has not yet
    started; ``release`` lets it run again.
    """

    def __init__(self) -> None:
        self._finish_lock = threading.Lock()
        self._stop_lock = threading.Lock()
        self._finish_requested = False
        self._finished = True
        self._stopped = True
        self._stop_requested = False

    def request_finish(self) -> None:
        with self._finish_lock:
            self._finish_requested = True

    def check_finish(self) -> bool:
        with self._finish_lock:
            return self._finish_requested

    def set_finish(self) -> None:
        with self._finish_lock:
            self._finished = True

    def is_finished(self) -> bool:
        with self._finish_lock:
            return self._finished

    def request_stop(self) -> None:
        """Ask the worker to pause; ignored if it is already stopped."""
        with self._stop_lock:
            if not self._stopped:
                self._stop_requested = True

    def is_stopped(self) -> bool:
        with self._stop_lock:
            return self._stopped

    def stop(self) -> bool:
        """Honour a pending stop request, unless a finish was requested."""
        with self._stop_lock, self._finish_lock:
            if self._finish_requested:
                return False
            if self._stop_requested:
                self._stopped = True
                self._stop_requested = False
                return True
            return False

    def release(self) -> None:
        """Let a stopped worker continue."""
        with self._stop_lock:
            self._stopped = False