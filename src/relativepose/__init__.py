from relativepose import options
from relativepose.core.correspondence import FeatureCorrespondence
from relativepose.options import RefinementOptions
from relativepose.refine import (
    InvalidProblemError,
    RelativePositionResult,
    estimate_relative_position_linear,
    optimize_relative_position,
    refine_relative_position,
)

__all__ = [
    "options",
    "FeatureCorrespondence",
    "RefinementOptions",
    "InvalidProblemError",
    "RelativePositionResult",
    "refine_relative_position",
    "optimize_relative_position",
    "estimate_relative_position_linear",
]
