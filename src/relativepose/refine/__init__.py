"""
Relative position refinement on the unit sphere with the relative rotation held fixed.
"""

from relativepose.refine.known_rotation import (
    InvalidProblemError,
    RelativePoseState,
    RelativePositionResult,
    estimate_relative_position_linear,
    optimize_relative_position,
    refine_relative_position,
)
from relativepose.refine.sphere import UnitSphereParameterization

__all__ = [
    "InvalidProblemError",
    "RelativePoseState",
    "RelativePositionResult",
    "UnitSphereParameterization",
    "refine_relative_position",
    "optimize_relative_position",
    "estimate_relative_position_linear",
]
