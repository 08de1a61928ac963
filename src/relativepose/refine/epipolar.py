"""
Epipolar residuals for a pair of calibrated views with a known relative rotation.

Notation (all quantities in normalized camera coordinates):
  x1_h, x2_h   homogeneous observations in camera 1 / camera 2
  R            relative rotation (camera 1 rays -> camera 2 rays)
  t            relative position, direction from camera 1 to camera 2 in the
               camera 1 frame

A point seen at depth d1 in camera 1 is seen in camera 2 along R (d1 x1_h - t),
so x2_h, R x1_h and R t are coplanar. With b = R^T x2_h this gives

  e = x2_h^T E x1_h,   E = R [t]_x
    = t . (x1_h x b)

which is linear in t. The Sampson residual divides e by the norm of the first
two components of both epipolar lines l2 = E x1_h and l1 = E^T x2_h.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from relativepose.core.geometry import closest_ray_parameters, homogeneous, skew
from relativepose.options import ResidualType


@dataclass(frozen=True)
class EpipolarLinearization:
    residuals: np.ndarray  # (N,)
    jacobian: np.ndarray  # (N,3), d residual / d t
    usable: np.ndarray  # (N,) bool


def essential_matrix(rotation: np.ndarray, t: np.ndarray) -> np.ndarray:
    rotation = np.asarray(rotation, dtype=np.float64).reshape(3, 3)
    return rotation @ skew(np.asarray(t, dtype=np.float64).reshape(3))


def epipolar_constraint_rows(x1: np.ndarray, x2: np.ndarray, rotation: np.ndarray) -> np.ndarray:
    """
    Rows a_i (N,3) such that the algebraic epipolar error is a_i . t.
    """
    x1_h = homogeneous(x1)
    b = homogeneous(x2) @ np.asarray(rotation, dtype=np.float64).reshape(3, 3)
    return np.cross(x1_h, b)


def _truncated_epipolar_lines(
    x1_h: np.ndarray, b: np.ndarray, rotation: np.ndarray, t: np.ndarray
) -> tuple[np.ndarray, np.ndarray]:
    # Epipolar lines in image 2 (l2 = E x1_h) and image 1 (l1 = E^T x2_h),
    # keeping only the two components that measure in-image distance.
    l2 = np.cross(t, x1_h) @ rotation.T
    l1 = np.cross(b, t)
    l2[:, 2] = 0.0
    l1[:, 2] = 0.0
    return l2, l1


def sampson_scale(x1: np.ndarray, x2: np.ndarray, rotation: np.ndarray, t: np.ndarray) -> np.ndarray:
    """Per-correspondence Sampson denominator (N,) at direction t."""
    rotation = np.asarray(rotation, dtype=np.float64).reshape(3, 3)
    t = np.asarray(t, dtype=np.float64).reshape(3)
    x1_h = homogeneous(x1)
    b = homogeneous(x2) @ rotation
    l2, l1 = _truncated_epipolar_lines(x1_h, b, rotation, t)
    return np.sqrt(np.sum(l2 * l2, axis=1) + np.sum(l1 * l1, axis=1))


def linearize_epipolar(
    x1: np.ndarray,
    x2: np.ndarray,
    rotation: np.ndarray,
    t: np.ndarray,
    residual: ResidualType = "sampson",
    min_line_norm: float = 1e-12,
) -> EpipolarLinearization:
    """
    Residuals and their Jacobian with respect to the (ambient) direction t.

    Correspondences whose Sampson denominator falls below `min_line_norm` carry
    no information about t (their rays are parallel to the baseline); they are
    flagged as unusable and reported with zero residual and zero Jacobian row.
    """
    rotation = np.asarray(rotation, dtype=np.float64).reshape(3, 3)
    t = np.asarray(t, dtype=np.float64).reshape(3)
    x1_h = homogeneous(x1)
    b = homogeneous(x2) @ rotation

    c = np.cross(x1_h, b)
    e = c @ t

    if residual == "algebraic":
        # Parallel rays (point on the baseline or at infinity) give a zero row.
        usable = np.all(np.isfinite(c), axis=1) & (np.linalg.norm(c, axis=1) > float(min_line_norm))
        return EpipolarLinearization(
            residuals=np.where(usable, e, 0.0),
            jacobian=np.where(usable[:, None], c, 0.0),
            usable=usable,
        )
    if residual != "sampson":
        raise ValueError(f"unknown residual type: {residual!r}")

    l2, l1 = _truncated_epipolar_lines(x1_h, b, rotation, t)
    s = np.sqrt(np.sum(l2 * l2, axis=1) + np.sum(l1 * l1, axis=1))
    usable = np.isfinite(s) & (s > float(min_line_norm))

    s_safe = np.where(usable, s, 1.0)
    # Half gradient of q with respect to t.
    g = np.cross(x1_h, l2 @ rotation) + np.cross(l1, b)

    r = e / s_safe
    J = c / s_safe[:, None] - (e / s_safe**3)[:, None] * g
    return EpipolarLinearization(
        residuals=np.where(usable, r, 0.0),
        jacobian=np.where(usable[:, None], J, 0.0),
        usable=usable,
    )


def triangulated_depths(
    x1: np.ndarray, x2: np.ndarray, rotation: np.ndarray, t: np.ndarray
) -> tuple[np.ndarray, np.ndarray]:
    """
    Depths (d1, d2) of the mid-point triangulation in camera 1 and camera 2,
    for a baseline of unit length along t. NaN for rays parallel to each other.
    """
    rotation = np.asarray(rotation, dtype=np.float64).reshape(3, 3)
    t = np.asarray(t, dtype=np.float64).reshape(3)
    x1_h = homogeneous(x1)
    b = homogeneous(x2) @ rotation
    # Camera 2 center sits at t in the camera 1 frame; its rays are R^T x2_h.
    o1 = np.zeros_like(x1_h)
    o2 = np.broadcast_to(t, x1_h.shape)
    return closest_ray_parameters(o1, x1_h, o2, b)


def chirality_mask(x1: np.ndarray, x2: np.ndarray, rotation: np.ndarray, t: np.ndarray) -> np.ndarray:
    """True where the triangulated point lies in front of both cameras."""
    d1, d2 = triangulated_depths(x1, x2, rotation, t)
    with np.errstate(invalid="ignore"):
        return np.isfinite(d1) & np.isfinite(d2) & (d1 > 0.0) & (d2 > 0.0)
