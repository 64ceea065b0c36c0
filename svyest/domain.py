"""
Domain (subgroup) dispatch

Splits a design by one or more grouping variables and runs an estimator
once per domain. The estimator receives a boolean mask over the FULL
design rather than a subset of rows, so the design's stratification and
clustering still drive the domain variance. Both variance engines go
through here, so "estimate X by G" behaves the same way for analytic and
replicate designs.
"""

import logging
from typing import Callable, List, Sequence, Tuple, Union

import numpy as np

from .design import AnyDesign
from .exceptions import InvalidDesignSpecification, MissingValueError, SurveyError
from .result import ResultRow

logger = logging.getLogger(__name__)

DomainEstimator = Callable[[np.ndarray], List[ResultRow]]


def _by_variables(by: Union[str, Sequence[str]]) -> List[str]:
    by_vars = [by] if isinstance(by, str) else list(by)
    if not by_vars:
        raise InvalidDesignSpecification("No domain variable given", name='by')
    return by_vars


def domain_levels(design: AnyDesign, by: Union[str, Sequence[str]]) -> List[Tuple]:
    """Distinct domain values in order of first appearance"""
    by_vars = _by_variables(by)
    for var in by_vars:
        if var not in design.data.columns:
            raise InvalidDesignSpecification(f"Domain variable '{var}' not found in data", name=var)
        n_missing = int(design.data[var].isna().sum())
        if n_missing:
            raise MissingValueError(var, n_missing)

    levels = design.data[by_vars].drop_duplicates().values
    return [tuple(row) for row in levels]


def domain_mask(design: AnyDesign, by: Union[str, Sequence[str]], level: Tuple) -> np.ndarray:
    """Boolean mask of the units in one domain"""
    by_vars = _by_variables(by)
    mask = np.ones(len(design.data), dtype=bool)
    for var, val in zip(by_vars, level):
        mask &= (design.data[var] == val).to_numpy()
    return mask


def by_domain(design: AnyDesign, by: Union[str, Sequence[str]],
              estimator: DomainEstimator) -> List[ResultRow]:
    """
    Run an estimator per domain and prefix each row with its domain label

    Parameters
    ----------
    design : SurveyDesign or ReplicateDesign
        Full design
    by : str or list of str
        Grouping variable(s)
    estimator : callable
        Takes a domain mask and returns result rows

    Returns
    -------
    list of ResultRow
        Domains in first-appearance order, each domain's rows in the
        order the estimator returned them
    """
    by_vars = _by_variables(by)
    rows = []
    for level in domain_levels(design, by_vars):
        mask = domain_mask(design, by_vars, level)
        logger.debug("Domain %s: %d units", level, int(mask.sum()))
        try:
            domain_rows = estimator(mask)
        except SurveyError as e:
            raise e.add_context(domain=dict(zip(by_vars, level)))
        for row in domain_rows:
            for var, val in reversed(list(zip(by_vars, level))):
                row = row.with_label(var, val)
            rows.append(row)
    return rows
