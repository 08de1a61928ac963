from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Union

import numpy as np


@dataclass(frozen=True)
class FeatureCorrespondence:
    """
    A matched pair of 2-D observations, one per camera.

    For the refiner both points are expected in normalized (calibration-removed)
    camera coordinates.
    """

    feature1: tuple[float, float]
    feature2: tuple[float, float]

    @classmethod
    def from_arrays(cls, feature1: np.ndarray, feature2: np.ndarray) -> "FeatureCorrespondence":
        f1 = np.asarray(feature1, dtype=np.float64).reshape(2)
        f2 = np.asarray(feature2, dtype=np.float64).reshape(2)
        return cls(feature1=(float(f1[0]), float(f1[1])), feature2=(float(f2[0]), float(f2[1])))


CorrespondenceInput = Union[
    Sequence[FeatureCorrespondence],
    Sequence[tuple[Sequence[float], Sequence[float]]],
    np.ndarray,
]


def as_correspondence_arrays(correspondences: CorrespondenceInput) -> tuple[np.ndarray, np.ndarray]:
    """
    Pack correspondences into two (N,2) float64 arrays (x1, x2).

    Accepted inputs:
    - a sequence of `FeatureCorrespondence`
    - a sequence of (point1, point2) pairs
    - an (N,4) array laid out as [x1, y1, x2, y2]
    - an (N,2,2) array of stacked pairs

    The returned arrays are fresh copies; the caller's data is never aliased.
    """
    if isinstance(correspondences, np.ndarray):
        arr = np.asarray(correspondences, dtype=np.float64)
        if arr.ndim == 2 and arr.shape[1] == 4:
            return arr[:, :2].copy(), arr[:, 2:].copy()
        if arr.ndim == 3 and arr.shape[1:] == (2, 2):
            return arr[:, 0, :].copy(), arr[:, 1, :].copy()
        raise ValueError("correspondence array must be (N,4) or (N,2,2)")

    x1: list[tuple[float, float]] = []
    x2: list[tuple[float, float]] = []
    for c in correspondences:
        if isinstance(c, FeatureCorrespondence):
            f1, f2 = c.feature1, c.feature2
        else:
            f1, f2 = c
        p1 = np.asarray(f1, dtype=np.float64).reshape(-1)
        p2 = np.asarray(f2, dtype=np.float64).reshape(-1)
        if p1.size != 2 or p2.size != 2:
            raise ValueError("each correspondence must hold two 2-D points")
        x1.append((float(p1[0]), float(p1[1])))
        x2.append((float(p2[0]), float(p2[1])))
    return np.asarray(x1, dtype=np.float64).reshape(-1, 2), np.asarray(x2, dtype=np.float64).reshape(-1, 2)
