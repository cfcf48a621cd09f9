"""Small numerical helpers used by the EPnP pose solver."""

from __future__ import annotations

import math
from typing import Sequence

import numpy as np

__all__ = ["SingularMatrixError", "qr_solve", "mat_to_quat", "relative_error"]


class SingularMatrixError(ArithmeticError):
    """Raised when a Householder QR step meets an all-zero column."""


def qr_solve(a, b) -> np.ndarray:
    """Solve ``a @ x = b`` in the least-squares sense with Householder QR.

    ``a`` must have at least as many rows as columns. Neither input is
    modified. Raises :class:`SingularMatrixError` if a column is zero
    below the diagonal.
    """
    mat = np.array(a, dtype=float, copy=True)
    rhs = np.array(b, dtype=float, copy=True).reshape(-1)
    if mat.ndim != 2:
        raise ValueError("coefficient matrix must be two-dimensional")
    rows, cols = mat.shape
    if rows < cols:
        raise ValueError("system must have at least as many rows as columns")
    if rhs.shape[0] != rows:
        raise ValueError("right-hand side length does not match matrix rows")

    a1 = np.zeros(cols)
    a2 = np.zeros(cols)

    for k in range(cols):
        column = mat[k:, k]
        eta = float(np.max(np.abs(column)))
        if eta == 0.0:
            raise SingularMatrixError("matrix is singular")
        column /= eta
        sigma = math.sqrt(float(column @ column))
        if mat[k, k] < 0:
            sigma = -sigma
        mat[k, k] += sigma
        a1[k] = sigma * mat[k, k]
        a2[k] = -eta * sigma
        for j in range(k + 1, cols):
            tau = float(mat[k:, k] @ mat[k:, j]) / a1[k]
            mat[k:, j] -= tau * mat[k:, k]

    # rhs <- Q^T rhs
    for j in range(cols):
        tau = float(mat[j:, j] @ rhs[j:]) / a1[j]
        rhs[j:] -= tau * mat[j:, j]

    # x = R^-1 rhs
    x = np.zeros(cols)
    x[cols - 1] = rhs[cols - 1] / a2[cols - 1]
    for i in range(cols - 2, -1, -1):
        total = float(mat[i, i + 1:] @ x[i + 1:])
        x[i] = (rhs[i] - total) / a2[i]
    return x


def mat_to_quat(rotation) -> tuple[float, float, float, float]:
    """Convert a 3x3 rotation matrix to a unit quaternion ``(x, y, z, w)``."""
    r = np.asarray(rotation, dtype=float)
    if r.shape != (3, 3):
        raise ValueError("rotation must be a 3x3 matrix")
    tr = r[0, 0] + r[1, 1] + r[2, 2]

    if tr > 0.0:
        q = [r[1, 2] - r[2, 1], r[2, 0] - r[0, 2], r[0, 1] - r[1, 0], tr + 1.0]
        n4 = q[3]
    elif r[0, 0] > r[1, 1] and r[0, 0] > r[2, 2]:
        q = [
            1.0 + r[0, 0] - r[1, 1] - r[2, 2],
            r[1, 0] + r[0, 1],
            r[2, 0] + r[0, 2],
            r[1, 2] - r[2, 1],
        ]
        n4 = q[0]
    elif r[1, 1] > r[2, 2]:
        q = [
            r[1, 0] + r[0, 1],
            1.0 + r[1, 1] - r[0, 0] - r[2, 2],
            r[2, 1] + r[1, 2],
            r[2, 0] - r[0, 2],
        ]
        n4 = q[1]
    else:
        q = [
            r[2, 0] + r[0, 2],
            r[2, 1] + r[1, 2],
            1.0 + r[2, 2] - r[0, 0] - r[1, 1],
            r[0, 1] - r[1, 0],
        ]
        n4 = q[2]

    scale = 0.5 / math.sqrt(n4)
    return tuple(float(v * scale) for v in q)  # type: ignore[return-value]


def relative_error(
    rotation_true,
    translation_true: Sequence[float],
    rotation_est,
    translation_est: Sequence[float],
) -> tuple[float, float]:
    """Return ``(rotation_error, translation_error)`` relative to the true pose.

    The rotation error compares quaternions and is insensitive to their sign.
    """
    q_true = np.array(mat_to_quat(rotation_true))
    q_est = np.array(mat_to_quat(rotation_est))
    norm_true = float(np.linalg.norm(q_true))
    rot_err = min(
        float(np.linalg.norm(q_true - q_est)) / norm_true,
        float(np.linalg.norm(q_true + q_est)) / norm_true,
    )

    t_true = np.asarray(translation_true, dtype=float)
    t_est = np.asarray(translation_est, dtype=float)
    transl_err = float(np.linalg.norm(t_true - t_est)) / float(np.linalg.norm(t_true))
    return rot_err, transl_err