"""RANSAC camera pose estimation from 3D-2D matches using EPnP."""

from __future__ import annotations

import math
import random
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from slamkit.epnp import CameraIntrinsics, solve_epnp

__all__ = ["Correspondence", "RansacResult", "PnPSolver"]


@dataclass(frozen=True)
class Correspondence:
    """A world point matched to an undistorted keypoint.

    ``index`` is the keypoint's position in the caller's match list and
    ``sigma_square`` the variance of the keypoint's scale level.
    """

    index: int
    world_point: Sequence[float]
    image_point: Sequence[float]
    sigma_square: float = 1.0


@dataclass(frozen=True)
class RansacResult:
    """Outcome of a batch of RANSAC iterations.

    ``pose`` is a 4x4 world-to-camera matrix, or ``None`` if none was found.
    ``inliers`` has one flag per entry of the caller's match list.
    """

    pose: Optional[np.ndarray]
    inliers: tuple
    num_inliers: int
    no_more: bool


def _pose_matrix(rotation: np.ndarray, translation: np.ndarray) -> np.ndarray:
    pose = np.eye(4)
    pose[:3, :3] = rotation
    pose[:3, 3] = translation
    return pose


class PnPSolver:
    """RANSAC over minimal EPnP samples, refined on the best inlier set."""

    def __init__(self, correspondences: Sequence[Correspondence],
                 intrinsics: CameraIntrinsics, num_matches: Optional[int] = None,
                 rng: Optional[random.Random] = None) -> None:
        self.correspondences = list(correspondences)
        needed = max((c.index for c in self.correspondences), default=-1) + 1
        if num_matches is None:
            num_matches = needed
        if num_matches < needed:
            raise ValueError("num_matches is smaller than the largest correspondence index")
        self.num_matches = num_matches
        self.intrinsics = intrinsics
        self._rng = rng if rng is not None else random.Random()

        self._p3dw = np.array(
            [c.world_point for c in self.correspondences], dtype=float).reshape(-1, 3)
        self._p2d = np.array(
            [c.image_point for c in self.correspondences], dtype=float).reshape(-1, 2)
        self._sigma2 = np.array([c.sigma_square for c in self.correspondences], dtype=float)

        self.iterations = 0
        self.best_num_inliers = 0
        self.best_inliers = np.zeros(len(self.correspondences), dtype=bool)
        self.best_pose: Optional[np.ndarray] = None
        self.refined_num_inliers = 0
        self.refined_inliers = np.zeros(len(self.correspondences), dtype=bool)
        self.refined_pose: Optional[np.ndarray] = None
        self.set_ransac_parameters()

    def set_ransac_parameters(self, probability: float = 0.99, min_inliers: int = 8,
                              max_iterations: int = 300, min_set: int = 4,
                              epsilon: float = 0.4, th2: float = 5.991) -> None:
        """Configure RANSAC, adapting the thresholds to the number of matches."""
        n = len(self.correspondences)
        self.probability = probability
        self.min_set = min_set

        adjusted = max(int(n * epsilon), min_inliers, min_set)
        self.min_inliers = adjusted
        if n > 0 and epsilon < adjusted / n:
            epsilon = adjusted / n
        self.epsilon = epsilon

        if adjusted >= n:
            n_iterations = 1
        elif epsilon <= 0.0:
            n_iterations = max_iterations
        else:
            n_iterations = math.ceil(math.log(1 - probability) / math.log(1 - epsilon ** 3))

        self.max_iterations = max(1, min(n_iterations, max_iterations))
        self._max_error = self._sigma2 * th2

    def _solve(self, indices) -> tuple[Optional[np.ndarray], np.ndarray]:
        try:
            estimate = solve_epnp(self._p3dw[indices], self._p2d[indices], self.intrinsics)
        except (np.linalg.LinAlgError, ValueError):
            return None, np.zeros(len(self.correspondences), dtype=bool)
        return _pose_matrix(estimate.rotation, estimate.translation), self._check_inliers(
            estimate.rotation, estimate.translation)

    def _check_inliers(self, rotation: np.ndarray, translation: np.ndarray) -> np.ndarray:
        k = self.intrinsics
        pc = self._p3dw @ rotation.T + translation
        with np.errstate(divide="ignore", invalid="ignore"):
            inv_z = 1.0 / pc[:, 2]
            ue = k.uc + k.fu * pc[:, 0] * inv_z
            ve = k.vc + k.fv * pc[:, 1] * inv_z
            error2 = (self._p2d[:, 0] - ue) ** 2 + (self._p2d[:, 1] - ve) ** 2
            return error2 < self._max_error

    def _refine(self) -> bool:
        indices = np.flatnonzero(self.best_inliers)
        pose, mask = self._solve(indices)
        count = int(mask.sum())
        self.refined_num_inliers = count
        self.refined_inliers = mask
        if pose is not None and count > self.min_inliers:
            self.refined_pose = pose
            return True
        return False

    def _flags(self, mask: np.ndarray) -> tuple:
        flags = [False] * self.num_matches
        for corr, ok in zip(self.correspondences, mask):
            if ok:
                flags[corr.index] = True
        return tuple(flags)

    def iterate(self, n_iterations: int) -> RansacResult:
        """Run at least ``n_iterations`` more RANSAC iterations, stopping on success."""
        empty = tuple([False] * self.num_matches)
        n = len(self.correspondences)
        if n < self.min_inliers:
            return RansacResult(None, empty, 0, True)

        current = 0
        while self.iterations < self.max_iterations or current < n_iterations:
            current += 1
            self.iterations += 1

            available = list(range(n))
            sample = []
            for _ in range(self.min_set):
                pick = self._rng.randint(0, len(available) - 1)
                sample.append(available[pick])
                available[pick] = available[-1]
                available.pop()

            pose, mask = self._solve(sample)
            count = int(mask.sum())

            if pose is not None and count >= self.min_inliers:
                if count > self.best_num_inliers:
                    self.best_inliers = mask
                    self.best_num_inliers = count
                    self.best_pose = pose

                if self._refine():
                    return RansacResult(self.refined_pose.copy(),
                                        self._flags(self.refined_inliers),
                                        self.refined_num_inliers, False)

        if self.iterations >= self.max_iterations:
            if self.best_pose is not None and self.best_num_inliers >= self.min_inliers:
                return RansacResult(self.best_pose.copy(), self._flags(self.best_inliers),
                                    self.best_num_inliers, True)
            return RansacResult(None, empty, 0, True)
        return RansacResult(None, empty, 0, False)

    def find(self) -> RansacResult:
        """Run RANSAC with the configured iteration budget."""
        return self.iterate(self.max_iterations)