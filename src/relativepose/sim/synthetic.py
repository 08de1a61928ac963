"""
Synthetic two-view problems with known ground truth.

Two pinhole cameras observe random 3D points; observations are projected to
pixels, optionally perturbed with Gaussian pixel noise, then de-calibrated into
normalized coordinates. The ground-truth relative pose comes from the camera
poses themselves.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from relativepose.core.camera import PinholeCamera
from relativepose.core.correspondence import FeatureCorrespondence
from relativepose.core.geometry import relative_pose_from_two_poses


@dataclass(frozen=True)
class SyntheticTwoView:
    camera1: PinholeCamera
    camera2: PinholeCamera
    points_world: np.ndarray  # (N,3)
    uv1_px: np.ndarray  # (N,2), possibly noisy
    uv2_px: np.ndarray  # (N,2), possibly noisy
    x1: np.ndarray  # (N,2) normalized coordinates in camera 1
    x2: np.ndarray  # (N,2) normalized coordinates in camera 2
    relative_rotation: np.ndarray  # (3,) axis-angle
    relative_position: np.ndarray  # (3,) unit
    noise_px: float

    @property
    def num_points(self) -> int:
        return int(self.x1.shape[0])

    def correspondences(self) -> list[FeatureCorrespondence]:
        return [FeatureCorrespondence.from_arrays(a, b) for a, b in zip(self.x1, self.x2)]

    def correspondence_array(self) -> np.ndarray:
        """(N,4) array laid out as [x1, y1, x2, y2]."""
        return np.concatenate([self.x1, self.x2], axis=1)


def random_camera(
    rng: np.random.Generator,
    *,
    focal_length_px: float = 800.0,
    image_size: tuple[int, int] = (1000, 1000),
    position_range: float = 1.0,
    rotation_range: float = 0.2,
) -> PinholeCamera:
    """
    Camera with position uniform in [-position_range, position_range]^3 and a
    small random orientation, looking roughly down +Z.
    """
    w, h = int(image_size[0]), int(image_size[1])
    return PinholeCamera(
        position=rng.uniform(-position_range, position_range, size=3),
        orientation=rotation_range * rng.uniform(-1.0, 1.0, size=3),
        focal_length_px=float(focal_length_px),
        aspect_ratio=1.0,
        skew=0.0,
        principal_point_px=(w / 2.0, h / 2.0),
        image_size=(w, h),
    )


def random_points(
    rng: np.random.Generator,
    n: int,
    *,
    x_range: tuple[float, float] = (-2.0, 2.0),
    y_range: tuple[float, float] = (-2.0, 2.0),
    z_range: tuple[float, float] = (8.0, 10.0),
) -> np.ndarray:
    x = rng.uniform(x_range[0], x_range[1], size=n)
    y = rng.uniform(y_range[0], y_range[1], size=n)
    z = rng.uniform(z_range[0], z_range[1], size=n)
    return np.stack([x, y, z], axis=-1)


def add_pixel_noise(uv_px: np.ndarray, noise_px: float, rng: np.random.Generator) -> np.ndarray:
    """I.i.d. Gaussian noise with standard deviation `noise_px` on each coordinate."""
    uv_px = np.asarray(uv_px, dtype=np.float64)
    if noise_px <= 0.0:
        return uv_px.copy()
    return uv_px + rng.normal(scale=float(noise_px), size=uv_px.shape)


def make_two_view_problem(
    rng: np.random.Generator,
    *,
    num_points: int = 25,
    noise_px: float = 0.0,
    camera1: PinholeCamera | None = None,
    camera2: PinholeCamera | None = None,
    points_world: np.ndarray | None = None,
    max_resample: int = 100,
) -> SyntheticTwoView:
    """
    Build a two-view problem whose points lie in front of both cameras.

    When cameras are not given, camera 2 is placed at unit distance from the
    origin so the baseline stays well conditioned.
    """
    if camera1 is None:
        camera1 = random_camera(rng)
    if camera2 is None:
        camera2 = random_camera(rng)
        camera2 = camera2.with_position(camera2.position / np.linalg.norm(camera2.position))

    if points_world is None:
        kept: list[np.ndarray] = []
        n_kept = 0
        for _ in range(int(max_resample)):
            P = random_points(rng, num_points)
            _, d1 = camera1.project(P)
            _, d2 = camera2.project(P)
            P = P[(d1 > 0.0) & (d2 > 0.0)]
            kept.append(P)
            n_kept += P.shape[0]
            if n_kept >= num_points:
                break
        points_world = np.concatenate(kept, axis=0)[:num_points]
        if points_world.shape[0] < num_points:
            raise RuntimeError("could not sample enough points in front of both cameras")
    points_world = np.asarray(points_world, dtype=np.float64).reshape(-1, 3)

    uv1, _ = camera1.project(points_world)
    uv2, _ = camera2.project(points_world)
    uv1 = add_pixel_noise(uv1, noise_px, rng)
    uv2 = add_pixel_noise(uv2, noise_px, rng)

    relative_rotation, relative_position = relative_pose_from_two_poses(
        camera1.orientation, camera1.position, camera2.orientation, camera2.position
    )
    return SyntheticTwoView(
        camera1=camera1,
        camera2=camera2,
        points_world=points_world,
        uv1_px=uv1,
        uv2_px=uv2,
        x1=camera1.pixels_to_normalized(uv1),
        x2=camera2.pixels_to_normalized(uv2),
        relative_rotation=relative_rotation,
        relative_position=relative_position,
        noise_px=float(noise_px),
    )
