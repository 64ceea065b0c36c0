"""
Weight and finite-population-correction resolution

Turns the raw design arguments a caller supplies (explicit weights,
inclusion probabilities, population sizes; each a constant, a column
name or a vector) into the canonical per-unit weights and probs and the
per-stratum fpc used by every estimator.
"""

import logging
import warnings
from dataclasses import dataclass
from typing import Optional, Union

import numpy as np
import pandas as pd

from .exceptions import DimensionMismatch, InvalidDesignSpecification

logger = logging.getLogger(__name__)

DesignArgument = Union[None, str, float, int, np.ndarray, pd.Series, list]


@dataclass(frozen=True)
class ResolvedWeights:
    """Canonical weights/probs plus the declared population sizes"""
    weights: np.ndarray
    probs: np.ndarray
    popsize: Optional[np.ndarray]  # per unit, None when not declared
    source: str  # 'weights', 'probs', 'both', 'popsize' or 'default'

    @property
    def informative(self) -> bool:
        """Whether the weights carry population-size information"""
        return self.source != 'default'


def as_unit_vector(data: pd.DataFrame, value: DesignArgument, name: str) -> Optional[np.ndarray]:
    """
    Expand a design argument to one value per unit

    Parameters
    ----------
    data : pd.DataFrame
        Unit table
    value : constant, column name, vector or None
        The argument as passed by the caller
    name : str
        Argument name, used in error messages

    Returns
    -------
    np.ndarray or None
        Vector of length len(data), or None if value is None
    """
    if value is None:
        return None

    n = len(data)
    if isinstance(value, str):
        if value not in data.columns:
            raise InvalidDesignSpecification(
                f"{name} column '{value}' not found in data", name=value
            )
        return data[value].to_numpy()

    if np.isscalar(value):
        return np.full(n, value)

    vec = np.asarray(value)
    if vec.ndim != 1 or len(vec) != n:
        raise DimensionMismatch(name, n, len(vec) if vec.ndim == 1 else vec.size)
    return vec


def _positive_float(vec: np.ndarray, name: str, upper: Optional[float] = None) -> np.ndarray:
    try:
        vec = vec.astype(float)
    except (TypeError, ValueError):
        raise InvalidDesignSpecification(f"{name} must be numeric", name=name)

    if np.isnan(vec).any():
        raise InvalidDesignSpecification(f"{name} contains missing values", name=name)
    if (vec <= 0).any():
        raise InvalidDesignSpecification(f"{name} must be strictly positive", name=name)
    if upper is not None and (vec > upper).any():
        raise InvalidDesignSpecification(f"{name} must not exceed {upper}", name=name)
    return vec


def _per_stratum_counts(strata_codes: np.ndarray, psu_codes: Optional[np.ndarray]) -> np.ndarray:
    """Number of units (or PSUs when psu_codes given) in each unit's stratum"""
    if psu_codes is None:
        counts = pd.Series(strata_codes).groupby(strata_codes).transform('size')
    else:
        counts = pd.Series(psu_codes).groupby(strata_codes).transform('nunique')
    return counts.to_numpy(dtype=float)


def resolve_weights(data: pd.DataFrame,
                    weights: DesignArgument = None,
                    probs: DesignArgument = None,
                    popsize: DesignArgument = None,
                    strata_codes: Optional[np.ndarray] = None,
                    psu_codes: Optional[np.ndarray] = None) -> ResolvedWeights:
    """
    Derive canonical weights and probs for a unit table

    Rules:
    - popsize given: equal-probability weights popsize/n within each
      stratum (n counts PSUs when psu_codes is given). Supplied weights
      are replaced with a warning; supplied probs are kept
    - weights only: probs = 1/weights
    - probs only: weights = 1/probs
    - both: accepted as given (a warning flags weights != 1/probs)
    - nothing given: weights = probs = 1

    Parameters
    ----------
    data : pd.DataFrame
        Unit table
    weights, probs, popsize : constant, column name or vector, optional
        Design arguments
    strata_codes : np.ndarray, optional
        Integer stratum code per unit (single stratum if omitted)
    psu_codes : np.ndarray, optional
        Integer PSU code per unit for clustered designs

    Returns
    -------
    ResolvedWeights
    """
    n = len(data)
    if strata_codes is None:
        strata_codes = np.zeros(n, dtype=int)

    w = as_unit_vector(data, weights, 'weights')
    p = as_unit_vector(data, probs, 'probs')
    pop = as_unit_vector(data, popsize, 'popsize')

    if pop is not None:
        pop = _positive_float(pop, 'popsize')
        per_stratum = pd.Series(pop).groupby(strata_codes).nunique()
        if (per_stratum > 1).any():
            raise InvalidDesignSpecification(
                "popsize must be constant within each stratum",
                name=popsize if isinstance(popsize, str) else 'popsize'
            )

        counts = _per_stratum_counts(strata_codes, psu_codes)
        if w is not None:
            warnings.warn(
                "Both weights and popsize were supplied. The weights are replaced "
                "by popsize / sample size within each stratum."
            )
        w = pop / counts
        if p is not None:
            p = _positive_float(p, 'probs', upper=1.0)
            if not np.allclose(w, 1 / p):
                warnings.warn(
                    "probs disagree with popsize / sample size. Both are kept; "
                    "estimators use the popsize-derived weights."
                )
        else:
            p = 1 / w
        source = 'popsize'
    elif w is not None and p is not None:
        w = _positive_float(w, 'weights')
        p = _positive_float(p, 'probs')
        if not np.allclose(w, 1 / p):
            warnings.warn(
                "Both weights and probs were supplied and weights != 1/probs. "
                "Both are kept as given; estimators use weights."
            )
        source = 'both'
    elif w is not None:
        w = _positive_float(w, 'weights')
        p = 1 / w
        source = 'weights'
    elif p is not None:
        p = _positive_float(p, 'probs', upper=1.0)
        w = 1 / p
        source = 'probs'
    else:
        w = np.ones(n)
        p = np.ones(n)
        source = 'default'

    logger.debug("Resolved weights for %d units from %s", n, source)
    return ResolvedWeights(weights=w, probs=p, popsize=pop, source=source)


def stratum_summary(resolved: ResolvedWeights,
                    strata_codes: np.ndarray,
                    strata_labels: pd.Index,
                    psu_codes: Optional[np.ndarray] = None,
                    ignorefpc: bool = False) -> pd.DataFrame:
    """
    Per-stratum sample sizes, population sizes and fpc

    Unclustered designs: fpc_h = 1 - n_h/N_h where N_h is the declared
    popsize or, when weights were supplied, the stratum weight total.
    Clustered designs: a declared popsize counts PSUs and
    fpc_h = 1 - npsu_h/N_h; without it fpc is 1.

    Returns
    -------
    pd.DataFrame
        Indexed by stratum label with columns sampsize, weight_total,
        popsize, npsu, fpc
    """
    frame = pd.DataFrame({
        'stratum': strata_codes,
        'weight': resolved.weights,
        'psu': psu_codes if psu_codes is not None else np.arange(len(strata_codes)),
    })
    grouped = frame.groupby('stratum', sort=True)
    table = pd.DataFrame({
        'sampsize': grouped.size(),
        'weight_total': grouped['weight'].sum(),
        'npsu': grouped['psu'].nunique(),
    })

    clustered = psu_codes is not None
    if resolved.popsize is not None:
        table['popsize'] = pd.Series(resolved.popsize).groupby(strata_codes).first()
    elif resolved.informative and not clustered:
        table['popsize'] = table['weight_total']
    else:
        table['popsize'] = np.nan

    sampled = table['npsu'] if clustered else table['sampsize']
    if (table['popsize'] < sampled).any():
        bad = table.index[(table['popsize'] < sampled).to_numpy()][0]
        raise InvalidDesignSpecification(
            f"Population size in stratum '{strata_labels[bad]}' is smaller "
            f"than its sample size", name='popsize'
        )

    if ignorefpc:
        table['fpc'] = 1.0
    else:
        table['fpc'] = (1 - sampled / table['popsize']).fillna(1.0)

    table.index = strata_labels[table.index]
    table.index.name = 'stratum'
    return table[['sampsize', 'weight_total', 'popsize', 'npsu', 'fpc']]
