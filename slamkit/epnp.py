"""Efficient Perspective-n-Point (EPnP) camera pose estimation."""

from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np

from slamkit.pnp_math import SingularMatrixError, qr_solve

__all__ = ["CameraIntrinsics", "PoseEstimate", "solve_epnp", "reprojection_error"]

# Control point pairs, in the order used for distances and the L matrix rows.
_PAIRS = ((0, 1), (0, 2), (0, 3), (1, 2), (1, 3), (2, 3))

# Quadratic beta terms: [B11 B12 B22 B13 B23 B33 B14 B24 B34 B44].
_BETA_TERMS = (
    (0, 0), (0, 1), (1, 1), (0, 2), (1, 2),
    (2, 2), (0, 3), (1, 3), (2, 3), (3, 3),
)

_GAUSS_NEWTON_ITERATIONS = 5


@dataclass(frozen=True)
class CameraIntrinsics:
    """Pinhole camera parameters: focal lengths and principal point."""

    fu: float
    fv: float
    uc: float
    vc: float


@dataclass(frozen=True)
class PoseEstimate:
    """A camera pose (world to camera) and its mean reprojection error."""

    rotation: np.ndarray
    translation: np.ndarray
    error: float


def _validate(world_points, image_points) -> tuple[np.ndarray, np.ndarray]:
    pws = np.asarray(world_points, dtype=float)
    us = np.asarray(image_points, dtype=float)
    if pws.ndim != 2 or pws.shape[1] != 3:
        raise ValueError("world points must be an N x 3 array")
    if us.ndim != 2 or us.shape[1] != 2:
        raise ValueError("image points must be an N x 2 array")
    if len(pws) != len(us):
        raise ValueError("world and image point counts differ")
    if len(pws) == 0:
        raise ValueError("at least one correspondence is required")
    return pws, us


def reprojection_error(rotation, translation, world_points, image_points,
                       intrinsics: CameraIntrinsics) -> float:
    """Mean pixel distance between observed and reprojected points."""
    pws, us = _validate(world_points, image_points)
    r = np.asarray(rotation, dtype=float)
    t = np.asarray(translation, dtype=float).reshape(3)
    pc = pws @ r.T + t
    with np.errstate(divide="ignore", invalid="ignore"):
        inv_z = 1.0 / pc[:, 2]
        ue = intrinsics.uc + intrinsics.fu * pc[:, 0] * inv_z
        ve = intrinsics.vc + intrinsics.fv * pc[:, 1] * inv_z
    return float(np.mean(np.hypot(us[:, 0] - ue, us[:, 1] - ve)))


def _choose_control_points(pws: np.ndarray) -> np.ndarray:
    n = len(pws)
    c0 = pws.mean(axis=0)
    centred = pws - c0
    u, dc, _ = np.linalg.svd(centred.T @ centred)
    cws = np.empty((4, 3))
    cws[0] = c0
    for i in range(1, 4):
        cws[i] = c0 + math.sqrt(dc[i - 1] / n) * u[:, i - 1]
    return cws


def _barycentric_coordinates(pws: np.ndarray, cws: np.ndarray) -> np.ndarray:
    cc = (cws[1:] - cws[0]).T
    cc_inv = np.linalg.pinv(cc)
    rest = (pws - cws[0]) @ cc_inv.T
    return np.column_stack([1.0 - rest.sum(axis=1), rest])


def _build_m(alphas: np.ndarray, us: np.ndarray, k: CameraIntrinsics) -> np.ndarray:
    n = len(alphas)
    m = np.zeros((2 * n, 12))
    m[0::2, 0::3] = alphas * k.fu
    m[0::2, 2::3] = alphas * (k.uc - us[:, 0:1])
    m[1::2, 1::3] = alphas * k.fv
    m[1::2, 2::3] = alphas * (k.vc - us[:, 1:2])
    return m


def _compute_l_6x10(kernel: np.ndarray) -> np.ndarray:
    dv = np.array([
        [vi[3 * a:3 * a + 3] - vi[3 * b:3 * b + 3] for a, b in _PAIRS]
        for vi in kernel
    ])
    l_mat = np.empty((6, 10))
    for col, (p, q) in enumerate(_BETA_TERMS):
        factor = 1.0 if p == q else 2.0
        l_mat[:, col] = factor * np.einsum("jk,jk->j", dv[p], dv[q])
    return l_mat


def _compute_rho(cws: np.ndarray) -> np.ndarray:
    return np.array([float(np.sum((cws[a] - cws[b]) ** 2)) for a, b in _PAIRS])


def _lstsq(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    return np.linalg.lstsq(a, b, rcond=None)[0]


def _betas_approx_1(l_mat: np.ndarray, rho: np.ndarray) -> np.ndarray:
    b4 = _lstsq(l_mat[:, [0, 1, 3, 6]], rho)
    betas = np.empty(4)
    if b4[0] < 0:
        betas[0] = np.sqrt(-b4[0])
        betas[1:] = -b4[1:] / betas[0]
    else:
        betas[0] = np.sqrt(b4[0])
        betas[1:] = b4[1:] / betas[0]
    return betas


def _first_two_betas(b: np.ndarray) -> np.ndarray:
    betas = np.zeros(4)
    if b[0] < 0:
        betas[0] = np.sqrt(-b[0])
        betas[1] = np.sqrt(-b[2]) if b[2] < 0 else 0.0
    else:
        betas[0] = np.sqrt(b[0])
        betas[1] = np.sqrt(b[2]) if b[2] > 0 else 0.0
    if b[1] < 0:
        betas[0] = -betas[0]
    return betas


def _betas_approx_2(l_mat: np.ndarray, rho: np.ndarray) -> np.ndarray:
    return _first_two_betas(_lstsq(l_mat[:, :3], rho))


def _betas_approx_3(l_mat: np.ndarray, rho: np.ndarray) -> np.ndarray:
    b5 = _lstsq(l_mat[:, :5], rho)
    betas = _first_two_betas(b5)
    betas[2] = b5[3] / betas[0]
    return betas


def _gauss_newton(l_mat: np.ndarray, rho: np.ndarray, betas: np.ndarray) -> np.ndarray:
    betas = betas.copy()
    for _ in range(_GAUSS_NEWTON_ITERATIONS):
        b0, b1, b2, b3 = betas
        a = np.column_stack([
            2 * l_mat[:, 0] * b0 + l_mat[:, 1] * b1 + l_mat[:, 3] * b2 + l_mat[:, 6] * b3,
            l_mat[:, 1] * b0 + 2 * l_mat[:, 2] * b1 + l_mat[:, 4] * b2 + l_mat[:, 7] * b3,
            l_mat[:, 3] * b0 + l_mat[:, 4] * b1 + 2 * l_mat[:, 5] * b2 + l_mat[:, 8] * b3,
            l_mat[:, 6] * b0 + l_mat[:, 7] * b1 + l_mat[:, 8] * b2 + 2 * l_mat[:, 9] * b3,
        ])
        predicted = sum(
            l_mat[:, col] * betas[p] * betas[q] for col, (p, q) in enumerate(_BETA_TERMS)
        )
        b = rho - predicted
        try:
            step = qr_solve(a, b)
        except SingularMatrixError:
            break
        betas += step
    return betas


def _estimate_r_and_t(pcs: np.ndarray, pws: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    pc0 = pcs.mean(axis=0)
    pw0 = pws.mean(axis=0)
    abt = (pcs - pc0).T @ (pws - pw0)
    u, _, vt = np.linalg.svd(abt)
    r = u @ vt
    if np.linalg.det(r) < 0:
        r[2] = -r[2]
    t = pc0 - r @ pw0
    return r, t


def _compute_r_and_t(kernel, betas, alphas, pws, us, intrinsics):
    ccs = np.tensordot(betas, kernel, axes=1).reshape(4, 3)
    pcs = alphas @ ccs
    if pcs[0, 2] < 0.0:
        pcs = -pcs
    r, t = _estimate_r_and_t(pcs, pws)
    return r, t, reprojection_error(r, t, pws, us, intrinsics)


def solve_epnp(world_points, image_points, intrinsics: CameraIntrinsics) -> PoseEstimate:
    """Estimate the camera pose from 3D-2D correspondences with EPnP.

    Three beta approximations are refined by Gauss-Newton; the one with the
    lowest reprojection error is returned.
    """
    pws, us = _validate(world_points, image_points)
    with np.errstate(divide="ignore", invalid="ignore"):
        cws = _choose_control_points(pws)
        alphas = _barycentric_coordinates(pws, cws)
        m = _build_m(alphas, us, intrinsics)
        eigvecs, _, _ = np.linalg.svd(m.T @ m)
        kernel = np.array([eigvecs[:, 11 - i] for i in range(4)])

        l_mat = _compute_l_6x10(kernel)
        rho = _compute_rho(cws)

        candidates = []
        for approx in (_betas_approx_1, _betas_approx_2, _betas_approx_3):
            betas = _gauss_newton(l_mat, rho, approx(l_mat, rho))
            candidates.append(_compute_r_and_t(kernel, betas, alphas, pws, us, intrinsics))

    best = 0
    if candidates[1][2] < candidates[0][2]:
        best = 1
    if candidates[2][2] < candidates[best][2]:
        best = 2
    r, t, err = candidates[best]
    return PoseEstimate(rotation=r, translation=t, error=err)