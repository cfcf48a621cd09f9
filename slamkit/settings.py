"""Camera and feature-extractor settings read from OpenCV-style YAML files."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Union

import numpy as np
import yaml

from slamkit.system_state import Sensor

__all__ = [
    "CameraSettings",
    "OrbSettings",
    "TrackingSettings",
    "parse_settings",
    "load_settings",
]

PathLike = Union[str, os.PathLike]

_DEFAULT_FPS = 30.0


class _Loader(yaml.SafeLoader):
    """Safe loader that accepts OpenCV's custom tags such as ``!!opencv-matrix``."""


def _construct_tagged(loader: yaml.SafeLoader, _suffix: str, node: yaml.Node) -> Any:
    if isinstance(node, yaml.MappingNode):
        return loader.construct_mapping(node, deep=True)
    if isinstance(node, yaml.SequenceNode):
        return loader.construct_sequence(node, deep=True)
    return loader.construct_scalar(node)


_Loader.add_multi_constructor("", _construct_tagged)


def _parse_document(text: str) -> dict:
    """Parse an OpenCV FileStorage YAML document into a mapping."""
    body = "\n".join(line for line in text.splitlines() if not line.startswith("%"))
    data = yaml.load(body, Loader=_Loader)
    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise ValueError("settings document must be a mapping")
    return dict(data)


def _number(fields: Mapping[str, Any], key: str) -> float:
    """Read a numeric field; a missing field reads as zero."""
    value = fields.get(key)
    if value is None:
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"setting {key!r} is not a number: {value!r}") from exc


def _integer(fields: Mapping[str, Any], key: str) -> int:
    return int(_number(fields, key))


@dataclass(frozen=True)
class CameraSettings:
    """Pinhole intrinsics, distortion, stereo baseline and frame rate."""

    fx: float
    fy: float
    cx: float
    cy: float
    k1: float = 0.0
    k2: float = 0.0
    p1: float = 0.0
    p2: float = 0.0
    k3: float = 0.0
    bf: float = 0.0
    fps: float = _DEFAULT_FPS
    rgb: bool = False

    @property
    def camera_matrix(self) -> np.ndarray:
        k = np.eye(3)
        k[0, 0] = self.fx
        k[1, 1] = self.fy
        k[0, 2] = self.cx
        k[1, 2] = self.cy
        return k

    @property
    def dist_coef(self) -> np.ndarray:
        """Distortion coefficients ``k1 k2 p1 p2`` plus ``k3`` when it is non-zero."""
        coeffs = [self.k1, self.k2, self.p1, self.p2]
        if self.k3 != 0:
            coeffs.append(self.k3)
        return np.array(coeffs)


@dataclass(frozen=True)
class OrbSettings:
    """Parameters of the ORB feature extractor."""

    n_features: int
    scale_factor: float
    n_levels: int
    ini_th_fast: int
    min_th_fast: int

    @property
    def initializer_features(self) -> int:
        """Features extracted while a monocular map is being initialized."""
        return 2 * self.n_features


@dataclass(frozen=True)
class TrackingSettings:
    """Everything the tracker reads from its settings file."""

    sensor: Sensor
    camera: CameraSettings
    orb: OrbSettings
    th_depth: Optional[float] = None
    depth_map_factor: float = 1.0
    min_frames: int = 0

    @property
    def max_frames(self) -> int:
        """Frames between keyframe insertions and relocalisation checks."""
        return int(self.camera.fps)


def _camera_from(fields: Mapping[str, Any]) -> CameraSettings:
    fps = _number(fields, "Camera.fps")
    if fps == 0:
        fps = _DEFAULT_FPS
    return CameraSettings(
        fx=_number(fields, "Camera.fx"),
        fy=_number(fields, "Camera.fy"),
        cx=_number(fields, "Camera.cx"),
        cy=_number(fields, "Camera.cy"),
        k1=_number(fields, "Camera.k1"),
        k2=_number(fields, "Camera.k2"),
        p1=_number(fields, "Camera.p1"),
        p2=_number(fields, "Camera.p2"),
        k3=_number(fields, "Camera.k3"),
        bf=_number(fields, "Camera.bf"),
        fps=fps,
        rgb=bool(_integer(fields, "Camera.RGB")),
    )


def _orb_from(fields: Mapping[str, Any]) -> OrbSettings:
    return OrbSettings(
        n_features=_integer(fields, "ORBextractor.nFeatures"),
        scale_factor=_number(fields, "ORBextractor.scaleFactor"),
        n_levels=_integer(fields, "ORBextractor.nLevels"),
        ini_th_fast=_integer(fields, "ORBextractor.iniThFAST"),
        min_th_fast=_integer(fields, "ORBextractor.minThFAST"),
    )


def parse_settings(text: str, sensor: Sensor) -> TrackingSettings:
    """Build tracking settings from the text of a YAML settings file."""
    sensor = Sensor(sensor)
    fields = _parse_document(text)
    camera = _camera_from(fields)
    orb = _orb_from(fields)

    th_depth: Optional[float] = None
    if sensor in (Sensor.STEREO, Sensor.RGBD):
        if camera.fx == 0:
            raise ValueError("Camera.fx must be non-zero to compute the depth threshold")
        th_depth = camera.bf * _number(fields, "ThDepth") / camera.fx

    depth_map_factor = 1.0
    if sensor is Sensor.RGBD:
        factor = _number(fields, "DepthMapFactor")
        depth_map_factor = 1.0 if abs(factor) < 1e-5 else 1.0 / factor

    return TrackingSettings(
        sensor=sensor,
        camera=camera,
        orb=orb,
        th_depth=th_depth,
        depth_map_factor=depth_map_factor,
    )


def load_settings(path: PathLike, sensor: Sensor) -> TrackingSettings:
    """Read and parse a settings file; raises ``OSError`` if it cannot be opened."""
    with open(path, encoding="utf-8") as handle:
        return parse_settings(handle.read(), sensor)