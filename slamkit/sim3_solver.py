"""RANSAC estimation of a similarity transform between two sets of 3D points."""

from __future__ import annotations

import math
import random
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

__all__ = [
    "Sim3Match",
    "Sim3Transform",
    "Sim3RansacResult",
    "Sim3Solver",
    "compute_sim3",
    "project",
    "from_camera_to_image",
]

# Chi-square threshold (two degrees of freedom, 99%).
_CHI2_TH = 9.210


@dataclass(frozen=True)
class Sim3Match:
    """One correspondence, with both points in their own camera frames.

    ``index`` is the position of the match in the caller's match list.
    """

    index: int
    point1: Sequence[float]
    point2: Sequence[float]
    sigma_square1: float = 1.0
    sigma_square2: float = 1.0

    @property
    def max_error1(self) -> float:
        return _CHI2_TH * self.sigma_square1

    @property
    def max_error2(self) -> float:
        return _CHI2_TH * self.sigma_square2


@dataclass(frozen=True)
class Sim3Transform:
    """Similarity mapping camera-2 points into camera 1: ``s * R @ p + t``."""

    rotation: np.ndarray
    translation: np.ndarray
    scale: float

    @property
    def matrix(self) -> np.ndarray:
        """The 4x4 matrix T12."""
        t = np.eye(4)
        t[:3, :3] = self.scale * self.rotation
        t[:3, 3] = self.translation
        return t

    @property
    def inverse_matrix(self) -> np.ndarray:
        """The 4x4 matrix T21."""
        s_r_inv = (1.0 / self.scale) * self.rotation.T
        t = np.eye(4)
        t[:3, :3] = s_r_inv
        t[:3, 3] = -s_r_inv @ self.translation
        return t


@dataclass(frozen=True)
class Sim3RansacResult:
    """Outcome of a batch of RANSAC iterations."""

    transform: Optional[Sim3Transform]
    inliers: tuple
    num_inliers: int
    no_more: bool


def _as_points(points, name: str) -> np.ndarray:
    arr = np.asarray(points, dtype=float)
    if arr.ndim != 2 or arr.shape[1] != 3:
        raise ValueError(f"{name} must be an N x 3 array")
    return arr


def _rodrigues(axis_angle: np.ndarray) -> np.ndarray:
    theta = float(np.linalg.norm(axis_angle))
    if theta == 0.0:
        return np.eye(3)
    k = axis_angle / theta
    kx = np.array([[0.0, -k[2], k[1]], [k[2], 0.0, -k[0]], [-k[1], k[0], 0.0]])
    return math.cos(theta) * np.eye(3) + (1 - math.cos(theta)) * np.outer(k, k) + math.sin(theta) * kx


def compute_sim3(points1, points2, fix_scale: bool = False) -> Sim3Transform:
    """Closed-form similarity aligning ``points2`` onto ``points1`` (Horn's method).

    Both inputs are N x 3 arrays of corresponding points.
    """
    p1 = _as_points(points1, "points1")
    p2 = _as_points(points2, "points2")
    if p1.shape != p2.shape or len(p1) == 0:
        raise ValueError("point sets must be non-empty and of equal size")

    o1 = p1.mean(axis=0)
    o2 = p2.mean(axis=0)
    pr1 = p1 - o1
    pr2 = p2 - o2

    m = pr2.T @ pr1
    n11 = m[0, 0] + m[1, 1] + m[2, 2]
    n12 = m[1, 2] - m[2, 1]
    n13 = m[2, 0] - m[0, 2]
    n14 = m[0, 1] - m[1, 0]
    n22 = m[0, 0] - m[1, 1] - m[2, 2]
    n23 = m[0, 1] + m[1, 0]
    n24 = m[2, 0] + m[0, 2]
    n33 = -m[0, 0] + m[1, 1] - m[2, 2]
    n34 = m[1, 2] + m[2, 1]
    n44 = -m[0, 0] - m[1, 1] + m[2, 2]
    n = np.array([
        [n11, n12, n13, n14],
        [n12, n22, n23, n24],
        [n13, n23, n33, n34],
        [n14, n24, n34, n44],
    ])

    evals, evecs = np.linalg.eigh(n)
    quat = evecs[:, int(np.argmax(evals))]
    vec = quat[1:]
    vec_norm = float(np.linalg.norm(vec))
    if vec_norm == 0.0:
        rotation = np.eye(3)
    else:
        angle = math.atan2(vec_norm, quat[0])
        rotation = _rodrigues(2 * angle * vec / vec_norm)

    p3 = pr2 @ rotation.T
    if fix_scale:
        scale = 1.0
    else:
        scale = float(np.sum(pr1 * p3) / np.sum(p3 * p3))

    translation = o1 - scale * rotation @ o2
    return Sim3Transform(rotation=rotation, translation=translation, scale=scale)


def _intrinsics(camera_matrix) -> tuple[float, float, float, float]:
    k = np.asarray(camera_matrix, dtype=float)
    if k.shape != (3, 3):
        raise ValueError("camera matrix must be 3x3")
    return k[0, 0], k[1, 1], k[0, 2], k[1, 2]


def from_camera_to_image(points, camera_matrix) -> np.ndarray:
    """Project camera-frame points to pixel coordinates (N x 2)."""
    pts = _as_points(points, "points")
    fx, fy, cx, cy = _intrinsics(camera_matrix)
    with np.errstate(divide="ignore", invalid="ignore"):
        inv_z = 1.0 / pts[:, 2]
    return np.column_stack([fx * pts[:, 0] * inv_z + cx, fy * pts[:, 1] * inv_z + cy])


def project(points, transform, camera_matrix) -> np.ndarray:
    """Transform points with a 4x4 matrix (or Sim3Transform) and project them."""
    if isinstance(transform, Sim3Transform):
        transform = transform.matrix
    tcw = np.asarray(transform, dtype=float)
    if tcw.shape != (4, 4):
        raise ValueError("transform must be a 4x4 matrix")
    pts = _as_points(points, "points")
    moved = pts @ tcw[:3, :3].T + tcw[:3, 3]
    return from_camera_to_image(moved, camera_matrix)


class Sim3Solver:
    """RANSAC over minimal three-point samples to find a Sim3 between two views."""

    def __init__(self, matches: Sequence[Sim3Match], camera_matrix1, camera_matrix2,
                 num_matches: Optional[int] = None, fix_scale: bool = False,
                 rng: Optional[random.Random] = None) -> None:
        self.matches = list(matches)
        needed = max((m.index for m in self.matches), default=-1) + 1
        if num_matches is None:
            num_matches = needed
        if num_matches < needed:
            raise ValueError("num_matches is smaller than the largest match index")
        self.num_matches = num_matches
        self.fix_scale = fix_scale
        self._rng = rng if rng is not None else random.Random()

        self._k1 = np.asarray(camera_matrix1, dtype=float)
        self._k2 = np.asarray(camera_matrix2, dtype=float)
        self._x3dc1 = np.array([m.point1 for m in self.matches], dtype=float).reshape(-1, 3)
        self._x3dc2 = np.array([m.point2 for m in self.matches], dtype=float).reshape(-1, 3)
        self._max_error1 = np.array([m.max_error1 for m in self.matches])
        self._max_error2 = np.array([m.max_error2 for m in self.matches])
        self._p1im1 = from_camera_to_image(self._x3dc1, self._k1)
        self._p2im2 = from_camera_to_image(self._x3dc2, self._k2)

        self.best_transform: Optional[Sim3Transform] = None
        self.best_num_inliers = 0
        self.best_inliers = np.zeros(len(self.matches), dtype=bool)
        self.set_ransac_parameters()

    def set_ransac_parameters(self, probability: float = 0.99, min_inliers: int = 6,
                              max_iterations: int = 300) -> None:
        """Configure RANSAC and reset the iteration counter."""
        self.probability = probability
        self.min_inliers = min_inliers
        n = len(self.matches)

        if min_inliers == n:
            n_iterations = 1
        elif n == 0 or min_inliers >= n:
            n_iterations = 1
        elif min_inliers <= 0:
            n_iterations = max_iterations
        else:
            epsilon = min_inliers / n
            n_iterations = math.ceil(math.log(1 - probability) / math.log(1 - epsilon ** 3))

        self.max_iterations = max(1, min(n_iterations, max_iterations))
        self.iterations = 0

    def _check_inliers(self, transform: Sim3Transform) -> np.ndarray:
        p2im1 = project(self._x3dc2, transform.matrix, self._k1)
        p1im2 = project(self._x3dc1, transform.inverse_matrix, self._k2)
        err1 = np.sum((self._p1im1 - p2im1) ** 2, axis=1)
        err2 = np.sum((p1im2 - self._p2im2) ** 2, axis=1)
        return (err1 < self._max_error1) & (err2 < self._max_error2)

    def _inlier_flags(self, mask: np.ndarray) -> tuple:
        flags = [False] * self.num_matches
        for match, ok in zip(self.matches, mask):
            if ok:
                flags[match.index] = True
        return tuple(flags)

    def iterate(self, n_iterations: int) -> Sim3RansacResult:
        """Run up to ``n_iterations`` more RANSAC iterations."""
        empty = tuple([False] * self.num_matches)
        n = len(self.matches)
        if n < self.min_inliers or n < 3:
            return Sim3RansacResult(None, empty, 0, True)

        current = 0
        while self.iterations < self.max_iterations and current < n_iterations:
            current += 1
            self.iterations += 1

            available = list(range(n))
            sample = []
            for _ in range(3):
                pick = self._rng.randint(0, len(available) - 1)
                sample.append(available[pick])
                available[pick] = available[-1]
                available.pop()

            transform = compute_sim3(self._x3dc1[sample], self._x3dc2[sample], self.fix_scale)
            mask = self._check_inliers(transform)
            count = int(mask.sum())

            if count >= self.best_num_inliers:
                self.best_inliers = mask
                self.best_num_inliers = count
                self.best_transform = transform
                if count > self.min_inliers:
                    return Sim3RansacResult(transform, self._inlier_flags(mask), count, False)

        no_more = self.iterations >= self.max_iterations
        return Sim3RansacResult(None, empty, 0, no_more)

    def find(self) -> Sim3RansacResult:
        """Run RANSAC until success or the iteration budget is spent."""
        return self.iterate(self.max_iterations)