"""
Replicate-weight (bootstrap) variance estimation

Two halves:
1. bootweights() turns an analytic design into a ReplicateDesign using
   the Rao-Wu rescaling bootstrap
2. replicate_estimate() evaluates a point estimator with the full-sample
   weights and with every replicate column, and derives standard errors
   from the spread of the replicate estimates

How the replicate variance works
--------------------------------
An estimation function takes a SINGLE weight vector. It is called:

1. With the design weights: point estimate theta
2. With each replicate weight column: replicate estimates theta_b
3. Variance = scale * (1/B) * sum_b (theta_b - theta)^2
"""

import logging
import warnings
from dataclasses import dataclass
from typing import Callable, Optional, Union

import numpy as np
import pandas as pd

from .design import ReplicateDesign, SurveyDesign
from .exceptions import (
    InsufficientSampleSize,
    InvalidDesignSpecification,
    InvalidReplicateCount,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BootstrapParameters:
    """Replicate-generation parameters"""
    name: str
    replicates: int  # Number of bootstrap replicates
    scale: Optional[float]  # Variance multiplier (None: B/(B-1))
    prefix: str = 'replicate_'  # Replicate column prefix

    def variance_scale(self, replicates: Optional[int] = None) -> float:
        """Scale factor for a run with the given number of replicates"""
        if self.scale is not None:
            return self.scale
        B = replicates or self.replicates
        return B / (B - 1)


# Bootstrap configurations
BOOTSTRAP_CONFIGS = {
    'RAO_WU': BootstrapParameters(
        name='RAO_WU',
        replicates=4000,
        scale=1.0
    ),
    'RAO_WU_UNBIASED': BootstrapParameters(
        name='RAO_WU_UNBIASED',
        replicates=4000,
        scale=None
    ),
}


@dataclass(frozen=True)
class ReplicateOutcome:
    """Point estimates, replicate estimates and their covariance"""
    estimates: np.ndarray  # (k,)
    replicates: np.ndarray  # (k, B), NaN for unusable replicates
    se: np.ndarray  # (k,)
    vcov: np.ndarray  # (k, k)


def get_parameters(params: Union[str, BootstrapParameters]) -> BootstrapParameters:
    """Look up a named bootstrap configuration"""
    if isinstance(params, BootstrapParameters):
        return params
    if params.upper() not in BOOTSTRAP_CONFIGS:
        raise InvalidDesignSpecification(
            f"Unknown bootstrap configuration: {params}. "
            f"Available: {list(BOOTSTRAP_CONFIGS.keys())}", name='params'
        )
    return BOOTSTRAP_CONFIGS[params.upper()]


def _psu_labels(design: SurveyDesign) -> np.ndarray:
    """Label identifying each unit's PSU independently of row position"""
    if design.clusters:
        return design.data[design.clusters[0]].to_numpy()
    if design.data.index.is_unique:
        return design.data.index.to_numpy()
    warnings.warn("Unit table index is not unique; row positions identify units instead")
    return np.arange(len(design.data))


def bootweights(design: Union[SurveyDesign, ReplicateDesign],
                params: Union[str, BootstrapParameters] = 'RAO_WU',
                replicates: Optional[int] = None,
                seed: Union[None, int, np.random.Generator] = 1234) -> ReplicateDesign:
    """
    Generate bootstrap replicate weights for a design

    Within each stratum the PSUs are resampled with replacement m-1 times
    (m = number of PSUs in the stratum). A unit's replicate weight is its
    design weight times m/(m-1) times the number of times its PSU was
    drawn. Strata and PSUs are visited in sorted label order, so the row
    order of the unit table does not change which PSUs are drawn.

    Parameters
    ----------
    design : SurveyDesign or ReplicateDesign
        Base design (a ReplicateDesign contributes its base)
    params : str or BootstrapParameters, default 'RAO_WU'
        Named configuration or custom parameters
    replicates : int, optional
        Override the configured number of replicates
    seed : int or np.random.Generator, default 1234
        Seed for the replicate draws

    Returns
    -------
    ReplicateDesign
    """
    if isinstance(design, ReplicateDesign):
        design = design.base
    config = get_parameters(params)
    B = config.replicates if replicates is None else replicates
    if B < 2:
        raise InvalidReplicateCount(B)

    rng = np.random.default_rng(seed)
    weights = design.weights
    labels = _psu_labels(design)
    rep_weights = np.zeros((len(weights), B))

    for code, stratum in enumerate(design.stratum_table.index):
        units = np.flatnonzero(design.strata_codes == code)
        psus, position = np.unique(labels[units], return_inverse=True)
        npsu = len(psus)
        if npsu < 2:
            raise InsufficientSampleSize(
                f"Stratum '{stratum}' has a single PSU and cannot be resampled",
                stratum=stratum, sampsize=npsu
            )

        draws = rng.integers(0, npsu, size=(B, npsu - 1))
        counts = np.zeros((B, npsu))
        np.add.at(counts, (np.arange(B)[:, None], draws), 1)
        multiplier = counts * npsu / (npsu - 1)
        rep_weights[units, :] = weights[units, None] * multiplier[:, position].T
        logger.debug("Stratum %s: %d PSUs resampled %d times", stratum, npsu, B)

    names = [f'{config.prefix}{b}' for b in range(1, B + 1)]
    clash = [c for c in names if c in design.data.columns]
    if clash:
        warnings.warn(f"Existing columns {clash[:5]} are replaced by new replicate weights")
    frame = pd.concat(
        [design.data.drop(columns=clash),
         pd.DataFrame(rep_weights, columns=names, index=design.data.index)],
        axis=1
    )
    return ReplicateDesign(base=design, data=frame, replicate_weights=tuple(names),
                           scale=config.variance_scale(B))


def _estimate_single(func: Callable[[np.ndarray], np.ndarray],
                     weights: np.ndarray) -> np.ndarray:
    """Run single estimation with given weight"""
    return np.atleast_1d(np.asarray(func(weights), dtype=float))


def replicate_estimate(design: ReplicateDesign,
                       func: Callable[[np.ndarray], np.ndarray]) -> ReplicateOutcome:
    """
    Estimate with replicate weights

    Parameters
    ----------
    design : ReplicateDesign
        Replicate design
    func : callable
        Takes a weight vector and returns one or more point estimates

    Returns
    -------
    ReplicateOutcome
    """
    beta = _estimate_single(func, design.weights)
    if np.isnan(beta).any():
        raise InsufficientSampleSize("The full-sample estimate is undefined for these weights")

    matrix = design.replicate_matrix()
    rep_estimates = np.array([
        _estimate_single(func, matrix[:, b]) for b in range(matrix.shape[1])
    ])

    usable = ~np.isnan(rep_estimates).any(axis=1)
    n_usable = int(usable.sum())
    if n_usable < len(usable):
        warnings.warn(
            f"{len(usable) - n_usable} of {len(usable)} replicates gave an undefined "
            f"estimate and were left out of the variance"
        )
    if n_usable < 2:
        raise InvalidReplicateCount(n_usable)

    # Compute replicate deviations
    bvar = rep_estimates[usable] - beta
    vcov = design.scale * (bvar.T @ bvar) / n_usable
    se = np.sqrt(np.diag(vcov))

    logger.debug("Replicate variance from %d replicates (scale %.4g)", n_usable, design.scale)
    return ReplicateOutcome(estimates=beta, replicates=rep_estimates.T, se=se, vcov=vcov)


