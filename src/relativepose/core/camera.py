from __future__ import annotations

from dataclasses import dataclass, field, replace

import numpy as np

from relativepose.core.geometry import hnormalized, homogeneous, rotation_matrix_from_angle_axis


class CalibrationError(ValueError):
    pass


@dataclass(frozen=True)
class RadialTangentialDistortion:
    """
    Brown-Conrady lens distortion acting on normalized coordinates (x=X/Z, y=Y/Z).

    Coefficients use the OpenCV naming: radial k1, k2, k3 and tangential p1, p2.
    """

    k1: float = 0.0
    k2: float = 0.0
    p1: float = 0.0
    p2: float = 0.0
    k3: float = 0.0

    @property
    def is_identity(self) -> bool:
        return not any((self.k1, self.k2, self.p1, self.p2, self.k3))

    def apply(self, xy: np.ndarray) -> np.ndarray:
        xy = np.asarray(xy, dtype=np.float64).reshape(-1, 2)
        x = xy[:, 0]
        y = xy[:, 1]
        r2 = x * x + y * y
        radial = 1.0 + r2 * (self.k1 + r2 * (self.k2 + r2 * self.k3))
        dx = 2.0 * self.p1 * x * y + self.p2 * (r2 + 2.0 * x * x)
        dy = self.p1 * (r2 + 2.0 * y * y) + 2.0 * self.p2 * x * y
        return np.stack([x * radial + dx, y * radial + dy], axis=-1)

    def remove(self, xy_distorted: np.ndarray, iterations: int = 10) -> np.ndarray:
        """
        Fixed-point inverse of `apply`; adequate for small/moderate distortion.
        """
        target = np.asarray(xy_distorted, dtype=np.float64).reshape(-1, 2)
        xy = target.copy()
        for _ in range(int(iterations)):
            xy += target - self.apply(xy)
        return xy


@dataclass(frozen=True)
class PinholeCamera:
    """
    Calibrated pinhole camera with an absolute pose.

    Pose convention: x_cam = R (X - C) with R built from `orientation`
    (axis-angle) and C = `position` in world coordinates.

    Intrinsics:
      K = [[f, skew, px],
           [0, f * aspect_ratio, py],
           [0, 0, 1]]
    """

    position: np.ndarray = field(default_factory=lambda: np.zeros(3))
    orientation: np.ndarray = field(default_factory=lambda: np.zeros(3))
    focal_length_px: float = 1.0
    aspect_ratio: float = 1.0
    skew: float = 0.0
    principal_point_px: tuple[float, float] = (0.0, 0.0)
    image_size: tuple[int, int] = (0, 0)  # (width, height)
    distortion: RadialTangentialDistortion = field(default_factory=RadialTangentialDistortion)

    def __post_init__(self) -> None:
        object.__setattr__(self, "position", np.asarray(self.position, dtype=np.float64).reshape(3).copy())
        object.__setattr__(self, "orientation", np.asarray(self.orientation, dtype=np.float64).reshape(3).copy())

    def with_position(self, position: np.ndarray) -> "PinholeCamera":
        return replace(self, position=np.asarray(position, dtype=np.float64).reshape(3))

    def rotation_matrix(self) -> np.ndarray:
        return rotation_matrix_from_angle_axis(self.orientation)

    def calibration_matrix(self) -> np.ndarray:
        px, py = self.principal_point_px
        f = float(self.focal_length_px)
        return np.array(
            [[f, float(self.skew), float(px)], [0.0, f * float(self.aspect_ratio), float(py)], [0.0, 0.0, 1.0]],
            dtype=np.float64,
        )

    def inverse_calibration_matrix(self) -> np.ndarray:
        K = self.calibration_matrix()
        det = float(np.linalg.det(K))
        if not np.isfinite(det) or abs(det) < 1e-12:
            raise CalibrationError("calibration matrix is ill formed; cannot remove calibration")
        return np.linalg.inv(K)

    def world_to_camera(self, points_world: np.ndarray) -> np.ndarray:
        P = np.asarray(points_world, dtype=np.float64).reshape(-1, 3)
        return (self.rotation_matrix() @ (P - self.position).T).T

    def project(self, points_world: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        """
        Project world points. Returns (uv_px (N,2), depth (N,)).

        Points with non-positive depth still get a pixel (the pinhole projection
        is well defined for Z != 0); callers decide what to do with them.
        """
        P_cam = self.world_to_camera(points_world)
        depth = P_cam[:, 2].copy()
        with np.errstate(divide="ignore", invalid="ignore"):
            xy = P_cam[:, :2] / P_cam[:, 2:3]
        if not self.distortion.is_identity:
            xy = self.distortion.apply(xy)
        uv = hnormalized((self.calibration_matrix() @ homogeneous(xy).T).T)
        return uv, depth

    def pixels_to_normalized(self, uv_px: np.ndarray) -> np.ndarray:
        """
        Remove the calibration (and lens distortion) from pixel observations.
        """
        xy = hnormalized((self.inverse_calibration_matrix() @ homogeneous(uv_px).T).T)
        if not self.distortion.is_identity:
            xy = self.distortion.remove(xy)
        return xy

    def normalized_to_pixels(self, xy: np.ndarray) -> np.ndarray:
        xy = np.asarray(xy, dtype=np.float64).reshape(-1, 2)
        if not self.distortion.is_identity:
            xy = self.distortion.apply(xy)
        return hnormalized((self.calibration_matrix() @ homogeneous(xy).T).T)
