"""
Local parameterization of the unit sphere S^2.

A unit 3-vector t is updated through a 2-vector delta living in the plane
tangent to the sphere at t:

    t' = normalize(t + B(t) delta),    B(t) = [u v], {u, v, t} orthonormal

The basis is rebuilt at every linearization point so it always stays
orthonormal and tangent to the current estimate.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np


def normalize(v: np.ndarray) -> np.ndarray:
    v = np.asarray(v, dtype=np.float64).reshape(3)
    n = float(np.linalg.norm(v))
    if not np.isfinite(n) or n == 0.0:
        raise ValueError("cannot normalize a zero or non-finite vector")
    return v / n


@dataclass(frozen=True)
class UnitSphereParameterization:
    ambient_size: int = 3
    tangent_size: int = 2

    def tangent_basis(self, t: np.ndarray) -> np.ndarray:
        """
        Orthonormal basis (3,2) of the tangent plane at unit vector `t`.

        The seed axis is the canonical axis least aligned with t, so the
        Gram-Schmidt step never divides by a small number.
        """
        t = normalize(t)
        axis = np.zeros(3, dtype=np.float64)
        axis[int(np.argmin(np.abs(t)))] = 1.0
        u = axis - float(axis @ t) * t
        u /= np.linalg.norm(u)
        v = np.cross(t, u)
        v /= np.linalg.norm(v)
        return np.stack([u, v], axis=1)

    def plus(self, t: np.ndarray, delta: np.ndarray, basis: np.ndarray | None = None) -> np.ndarray:
        """Retraction: move along the tangent plane then project back onto the sphere."""
        t = np.asarray(t, dtype=np.float64).reshape(3)
        delta = np.asarray(delta, dtype=np.float64).reshape(self.tangent_size)
        if basis is None:
            basis = self.tangent_basis(t)
        return normalize(t + basis @ delta)

    def plus_jacobian(self, t: np.ndarray) -> np.ndarray:
        """d plus(t, delta) / d delta at delta = 0, which is the tangent basis itself."""
        return self.tangent_basis(t)

    def project_to_tangent(self, t: np.ndarray, g: np.ndarray) -> np.ndarray:
        """Remove the radial component of an ambient vector `g` at unit vector `t`."""
        t = normalize(t)
        g = np.asarray(g, dtype=np.float64).reshape(3)
        return g - float(g @ t) * t
