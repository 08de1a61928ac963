"""
Relative position (translation direction) refinement between two calibrated
views when the relative rotation is known.

The unknown is the unit direction t from camera 1 to camera 2, expressed in the
camera 1 frame. It is optimized on the unit sphere by minimizing the sum of
squared epipolar residuals (Sampson-normalized by default) with a small
Levenberg-Marquardt loop. The rotation and the correspondences are read-only.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from relativepose.core.correspondence import CorrespondenceInput, as_correspondence_arrays
from relativepose.core.geometry import rotation_matrix_from_angle_axis
from relativepose.options import RefinementOptions
from relativepose.refine.epipolar import (
    chirality_mask,
    epipolar_constraint_rows,
    linearize_epipolar,
    sampson_scale,
)
from relativepose.refine.lm import SolverSummary, levenberg_marquardt_on_sphere

logger = logging.getLogger(__name__)

UNIT_NORM_TOLERANCE = 1e-6


class InvalidProblemError(ValueError):
    """Caller contract violation (as opposed to a geometric failure)."""


@dataclass(frozen=True)
class RelativePoseState:
    """
    Problem state for one solve: a fixed rotation and the direction being optimized.
    """

    rotation: np.ndarray  # (3,3) rotation matrix, camera 1 rays -> camera 2 rays
    position: np.ndarray  # (3,) unit direction from camera 1 to camera 2 in camera 1 frame

    @classmethod
    def from_inputs(cls, relative_rotation: np.ndarray, relative_position: np.ndarray) -> "RelativePoseState":
        return cls(rotation=_rotation_matrix(relative_rotation), position=_unit_position(relative_position))


@dataclass(frozen=True)
class RelativePositionResult:
    relative_position: np.ndarray  # (3,), unit norm
    summary: SolverSummary

    @property
    def success(self) -> bool:
        return self.summary.success

    @property
    def termination(self) -> str:
        return self.summary.termination


def _require(cond: bool, msg: str) -> None:
    if not cond:
        raise InvalidProblemError(msg)


def _rotation_matrix(relative_rotation: np.ndarray) -> np.ndarray:
    rot = np.asarray(relative_rotation, dtype=np.float64)
    _require(np.all(np.isfinite(rot)), "relative rotation must be finite")
    if rot.shape == (3, 3):
        _require(
            np.allclose(rot.T @ rot, np.eye(3), atol=1e-9) and np.linalg.det(rot) > 0.0,
            "relative rotation matrix must be orthonormal with det +1",
        )
        return rot.copy()
    _require(rot.size == 3, "relative rotation must be an axis-angle 3-vector or a 3x3 matrix")
    return rotation_matrix_from_angle_axis(rot.reshape(3))


def _unit_position(relative_position: np.ndarray) -> np.ndarray:
    t = np.asarray(relative_position, dtype=np.float64)
    _require(t.size == 3, "relative position must be a 3-vector")
    t = t.reshape(3)
    _require(np.all(np.isfinite(t)), "relative position must be finite")
    n = float(np.linalg.norm(t))
    _require(abs(n - 1.0) <= UNIT_NORM_TOLERANCE, f"relative position must be unit norm (got {n:.9g})")
    return t / n


def _correspondence_arrays(correspondences: CorrespondenceInput) -> tuple[np.ndarray, np.ndarray]:
    try:
        x1, x2 = as_correspondence_arrays(correspondences)
    except (TypeError, ValueError) as exc:
        raise InvalidProblemError(str(exc)) from exc
    _require(x1.shape[0] > 0, "correspondence set is empty")
    _require(bool(np.all(np.isfinite(x1)) and np.all(np.isfinite(x2))), "correspondences must be finite")
    return x1, x2


def solve_known_rotation(
    state: RelativePoseState,
    x1: np.ndarray,
    x2: np.ndarray,
    options: RefinementOptions,
) -> tuple[np.ndarray, SolverSummary]:
    """
    Run the solver for one state and return (refined position, summary).

    The state is not modified; the caller decides what to do with the result.
    """
    rotation = state.rotation

    def linearize(t: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        lin = linearize_epipolar(
            x1, x2, rotation, t, residual=options.residual, min_line_norm=options.min_line_norm
        )
        return lin.residuals, lin.jacobian, lin.usable

    active = None
    if options.use_chirality:
        active = chirality_mask(x1, x2, rotation, state.position)
        logger.debug("chirality filter keeps %d/%d correspondences", int(np.count_nonzero(active)), active.size)

    return levenberg_marquardt_on_sphere(state.position, linearize, options, active=active)


def optimize_relative_position(
    correspondences: CorrespondenceInput,
    relative_rotation: np.ndarray,
    relative_position: np.ndarray,
    options: RefinementOptions | None = None,
) -> RelativePositionResult:
    """
    Pure variant of `refine_relative_position`: inputs are left untouched and the
    refined direction is returned together with the solver summary.

    On degenerate or non-finite termination the returned direction is the
    (normalized) initial guess; on non-convergence it is the best estimate found.
    """
    if options is None:
        options = RefinementOptions()
    x1, x2 = _correspondence_arrays(correspondences)
    state = RelativePoseState.from_inputs(relative_rotation, relative_position)

    position, summary = solve_known_rotation(state, x1, x2, options)
    if not summary.success:
        logger.warning(
            "relative position refinement failed: %s (%d/%d correspondences used)",
            summary.termination,
            summary.num_used,
            summary.num_residuals,
        )
    return RelativePositionResult(relative_position=position, summary=summary)


def refine_relative_position(
    correspondences: CorrespondenceInput,
    relative_rotation: np.ndarray,
    relative_position: np.ndarray,
    options: RefinementOptions | None = None,
) -> bool:
    """
    Refine `relative_position` in place given the known `relative_rotation`.

    Parameters
    ----------
    correspondences:
        Pairs of 2-D points in normalized (calibration-removed) coordinates.
    relative_rotation:
        Axis-angle 3-vector (or 3x3 matrix) rotating camera 1 rays into camera 2.
    relative_position:
        Writable float64 array of shape (3,), unit norm: initial guess in, refined
        direction out.

    Returns
    -------
    bool
        True when the solver converged to a finite unit direction. Degenerate
        geometry, non-finite values and non-convergence return False; the output
        then holds the initial guess (degenerate / non-finite) or the best
        estimate (non-convergence), always finite and unit norm. A run of
        rejected steps that drives the damping past `options.max_damping` is
        reported as success (termination "damping_limit"): no descent step
        is left at rounding level.

    Raises
    ------
    InvalidProblemError
        For contract violations: empty or malformed correspondences, non-finite
        inputs, a non-unit initial guess or a non-writable output array.
    """
    _require(isinstance(relative_position, np.ndarray), "relative position must be a numpy array")
    _require(relative_position.dtype == np.float64, "relative position must be a float64 array")
    _require(relative_position.size == 3, "relative position must be a 3-vector")
    _require(bool(relative_position.flags.writeable), "relative position must be writable")

    result = optimize_relative_position(correspondences, relative_rotation, relative_position, options)
    if result.success or result.termination == "max_iterations":
        relative_position[...] = result.relative_position.reshape(relative_position.shape)
    return result.success


def estimate_relative_position_linear(
    correspondences: CorrespondenceInput,
    relative_rotation: np.ndarray,
    reference: np.ndarray | None = None,
    reweight_iterations: int = 3,
    rank_tolerance: float = 1e-12,
) -> np.ndarray | None:
    """
    Closed-form unit direction from the linear epipolar constraints a_i . t = 0.

    The solution is the eigenvector of A^T W A with the smallest eigenvalue;
    W starts as identity and is then refreshed with inverse squared Sampson
    denominators. The sign follows `reference` when given, otherwise the sign
    that puts more triangulated points in front of both cameras is kept.

    Returns None when the constraints do not pin down a single direction.
    """
    x1, x2 = _correspondence_arrays(correspondences)
    rotation = _rotation_matrix(relative_rotation)
    if x1.shape[0] < 2:
        return None

    A = epipolar_constraint_rows(x1, x2, rotation)
    weights = np.ones(A.shape[0], dtype=np.float64)
    remaining = max(0, int(reweight_iterations))
    while True:
        M = (A * weights[:, None]).T @ A
        eig, vecs = np.linalg.eigh(M)
        if not np.all(np.isfinite(eig)) or eig[2] <= 0.0 or eig[1] <= rank_tolerance * eig[2]:
            return None
        t = vecs[:, 0] / np.linalg.norm(vecs[:, 0])
        if remaining == 0:
            break
        remaining -= 1
        s = sampson_scale(x1, x2, rotation, t)
        usable = np.isfinite(s) & (s > 1e-12)
        w = np.where(usable, 1.0 / np.where(usable, s, 1.0) ** 2, 0.0)
        if np.count_nonzero(w) < 2:
            break
        weights = w / np.max(w)

    if reference is not None:
        ref = np.asarray(reference, dtype=np.float64).reshape(3)
        if float(ref @ t) < 0.0:
            t = -t
    else:
        n_pos = int(np.count_nonzero(chirality_mask(x1, x2, rotation, t)))
        n_neg = int(np.count_nonzero(chirality_mask(x1, x2, rotation, -t)))
        if n_neg > n_pos:
            t = -t
    return t
