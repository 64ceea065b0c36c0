"""
svyest - Design-based estimation for complex survey samples

A Python package for estimating means, totals, ratios, quantiles and
category proportions from stratified and clustered samples, with
Taylor-linearization or bootstrap replicate standard errors.
"""

from .core import mean, proportion, quantile, ratio, total
from .design import (
    ClusterSample,
    DesignKind,
    ReplicateDesign,
    SimpleRandomSample,
    StratifiedSample,
    replicate_design,
    survey_design,
)
from .estimation import EstimationFunctions
from .exceptions import (
    DimensionMismatch,
    InsufficientSampleSize,
    InvalidDesignSpecification,
    InvalidReplicateCount,
    MissingValueError,
    SurveyError,
    UnsupportedVariableType,
)
from .replicate import BOOTSTRAP_CONFIGS, BootstrapParameters, bootweights
from .result import EstimationResult

__version__ = "1.0.0"
__all__ = [
    "survey_design",
    "replicate_design",
    "SimpleRandomSample",
    "StratifiedSample",
    "ClusterSample",
    "ReplicateDesign",
    "DesignKind",
    "bootweights",
    "BootstrapParameters",
    "BOOTSTRAP_CONFIGS",
    "mean",
    "proportion",
    "total",
    "ratio",
    "quantile",
    "EstimationResult",
    "EstimationFunctions",
    "SurveyError",
    "DimensionMismatch",
    "InvalidDesignSpecification",
    "InsufficientSampleSize",
    "InvalidReplicateCount",
    "UnsupportedVariableType",
    "MissingValueError",
]
