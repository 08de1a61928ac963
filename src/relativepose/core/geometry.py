"""
Small rigid-geometry helpers shared by the camera model, the refiner and the
synthetic harness.

Conventions:
- rotations are passed around as axis-angle 3-vectors (rotation vectors)
- a camera with orientation R and center C maps a world point X to
  camera coordinates x_cam = R (X - C)
"""

from __future__ import annotations

import numpy as np


def skew(v: np.ndarray) -> np.ndarray:
    """
    Cross-product matrix [v]_x such that [v]_x w = v x w.

    Accepts (3,) or (...,3) and returns (3,3) or (...,3,3).
    """
    v = np.asarray(v, dtype=np.float64)
    if v.shape[-1] != 3:
        raise ValueError("skew expects 3-vectors")
    out = np.zeros(v.shape[:-1] + (3, 3), dtype=np.float64)
    out[..., 0, 1] = -v[..., 2]
    out[..., 0, 2] = v[..., 1]
    out[..., 1, 0] = v[..., 2]
    out[..., 1, 2] = -v[..., 0]
    out[..., 2, 0] = -v[..., 1]
    out[..., 2, 1] = v[..., 0]
    return out


def rotation_matrix_from_angle_axis(rvec: np.ndarray) -> np.ndarray:
    from scipy.spatial.transform import Rotation as R  # type: ignore

    rvec = np.asarray(rvec, dtype=np.float64).reshape(3)
    return R.from_rotvec(rvec).as_matrix()


def angle_axis_from_rotation_matrix(rot: np.ndarray) -> np.ndarray:
    from scipy.spatial.transform import Rotation as R  # type: ignore

    rot = np.asarray(rot, dtype=np.float64).reshape(3, 3)
    return R.from_matrix(rot).as_rotvec()


def relative_rotation_from_two_rotations(rvec1: np.ndarray, rvec2: np.ndarray) -> np.ndarray:
    """
    Relative rotation R_12 = R_2 R_1^T as an axis-angle vector.

    R_12 maps rays expressed in camera 1 coordinates into camera 2 coordinates.
    """
    R1 = rotation_matrix_from_angle_axis(rvec1)
    R2 = rotation_matrix_from_angle_axis(rvec2)
    return angle_axis_from_rotation_matrix(R2 @ R1.T)


def relative_pose_from_two_poses(
    rvec1: np.ndarray,
    center1: np.ndarray,
    rvec2: np.ndarray,
    center2: np.ndarray,
) -> tuple[np.ndarray, np.ndarray]:
    """
    Returns (relative_rotation, relative_position) between two absolute poses.

    relative_position = R_1 (C_2 - C_1) normalized: the direction from camera 1
    to camera 2 expressed in camera 1 coordinates.
    """
    center1 = np.asarray(center1, dtype=np.float64).reshape(3)
    center2 = np.asarray(center2, dtype=np.float64).reshape(3)
    R1 = rotation_matrix_from_angle_axis(rvec1)

    relative_rotation = relative_rotation_from_two_rotations(rvec1, rvec2)
    position = R1 @ (center2 - center1)
    norm = float(np.linalg.norm(position))
    if not np.isfinite(norm) or norm < 1e-15:
        raise ValueError("camera centers coincide; relative position is undefined")
    return relative_rotation, position / norm


def homogeneous(xy: np.ndarray) -> np.ndarray:
    """(N,2) -> (N,3) by appending a column of ones."""
    xy = np.asarray(xy, dtype=np.float64).reshape(-1, 2)
    return np.concatenate([xy, np.ones((xy.shape[0], 1), dtype=np.float64)], axis=1)


def hnormalized(xyw: np.ndarray) -> np.ndarray:
    """(N,3) -> (N,2) by dividing through the last coordinate."""
    xyw = np.asarray(xyw, dtype=np.float64).reshape(-1, 3)
    return xyw[:, :2] / xyw[:, 2:3]


def closest_ray_parameters(
    o1: np.ndarray, d1: np.ndarray, o2: np.ndarray, d2: np.ndarray
) -> tuple[np.ndarray, np.ndarray]:
    """
    Parameters (s1, s2) of the closest points o1 + s1 d1 and o2 + s2 d2 on two
    (batched) rays. Parallel rays yield NaN.
    """
    o1 = np.asarray(o1, dtype=np.float64)
    o2 = np.asarray(o2, dtype=np.float64)
    d1 = np.asarray(d1, dtype=np.float64)
    d2 = np.asarray(d2, dtype=np.float64)

    w0 = o1 - o2
    a = np.sum(d1 * d1, axis=-1)
    b = np.sum(d1 * d2, axis=-1)
    c = np.sum(d2 * d2, axis=-1)
    d = np.sum(d1 * w0, axis=-1)
    e = np.sum(d2 * w0, axis=-1)

    denom = a * c - b * b
    denom = np.where(np.abs(denom) < 1e-12 * np.maximum(a * c, 1e-300), np.nan, denom)

    s1 = (b * e - c * d) / denom
    s2 = (a * e - b * d) / denom
    return s1, s2
