"""
Survey estimators

Public entry points for design-based estimation:
- mean: weighted mean of numeric variables
- proportion: category shares of categorical variables
- total: weighted total of numeric variables
- ratio: ratio of two weighted totals
- quantile: weighted quantiles of numeric variables

Every estimator takes a design and optionally a domain variable (`by`).
Analytic designs get Taylor-linearization standard errors, replicate
designs get replicate (bootstrap) standard errors; the point estimate is
computed the same way in both cases.

Example:
    design = survey_design(data, strata='stype', weights='pw')
    mean(['api00', 'api99'], design)
    ratio(('api00', 'enroll'), bootweights(design), by='cname')
"""

import logging
import warnings
from typing import Callable, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from . import analytic
from .design import AnyDesign, DesignKind
from .domain import by_domain
from .estimation import EstimationFunctions
from .exceptions import (
    InvalidDesignSpecification,
    MissingValueError,
    SurveyError,
    UnsupportedVariableType,
)
from .replicate import replicate_estimate
from .result import EstimationResult, ResultRow

logger = logging.getLogger(__name__)

Variables = Union[str, Sequence[str]]
Domain = Optional[Union[str, Sequence[str]]]
RowFunction = Callable[[str, Optional[np.ndarray]], List[ResultRow]]


def mean(x: Variables, design: AnyDesign, by: Domain = None) -> EstimationResult:
    """
    Estimate population means

    Parameters
    ----------
    x : str or list of str
        Numeric variable(s)
    design : SurveyDesign or ReplicateDesign
        Survey design
    by : str or list of str, optional
        Domain variable(s)

    Returns
    -------
    EstimationResult
        Columns: [domain...], [names], mean, SE
    """
    def rows(var, domain):
        y = _values(design, var)
        if design.kind is DesignKind.REPLICATE:
            return _replicate_rows(design, lambda w: EstimationFunctions.mean(y, _restrict(w, domain)))
        return [ResultRow({}, *analytic.estimate_mean(design, y, domain))]

    return _estimate('mean', x, design, by, rows, _check_numeric)


def total(x: Variables, design: AnyDesign, by: Domain = None) -> EstimationResult:
    """
    Estimate population totals

    Parameters
    ----------
    x : str or list of str
        Numeric variable(s)
    design : SurveyDesign or ReplicateDesign
        Survey design
    by : str or list of str, optional
        Domain variable(s)

    Returns
    -------
    EstimationResult
        Columns: [domain...], [names], total, SE
    """
    def rows(var, domain):
        y = _values(design, var)
        if design.kind is DesignKind.REPLICATE:
            return _replicate_rows(design, lambda w: EstimationFunctions.total(y, _restrict(w, domain)))
        return [ResultRow({}, *analytic.estimate_total(design, y, domain))]

    return _estimate('total', x, design, by, rows, _check_numeric)


def ratio(variables: Tuple[str, str], design: AnyDesign, by: Domain = None) -> EstimationResult:
    """
    Estimate the ratio of two population totals

    Parameters
    ----------
    variables : (str, str)
        Numerator and denominator variables
    design : SurveyDesign or ReplicateDesign
        Survey design
    by : str or list of str, optional
        Domain variable(s)

    Returns
    -------
    EstimationResult
        Columns: [domain...], ratio, SE
    """
    if isinstance(variables, str) or len(variables) != 2:
        raise InvalidDesignSpecification(
            "ratio needs exactly two variables: (numerator, denominator)", name='variables'
        )
    numerator, denominator = variables
    for var in (numerator, denominator):
        _check_numeric(design, var)

    y = _values(design, numerator)
    x = _values(design, denominator)

    def estimator(domain):
        try:
            if design.kind is DesignKind.REPLICATE:
                return _replicate_rows(design, lambda w: EstimationFunctions.ratio(y, x, _restrict(w, domain)))
            return [ResultRow({}, *analytic.estimate_ratio(design, y, x, domain, denominator=denominator))]
        except SurveyError as e:
            raise e.add_context(variable=f"{numerator}/{denominator}")

    return _collect('ratio', design, by, estimator)


def proportion(x: Variables, design: AnyDesign, by: Domain = None) -> EstimationResult:
    """
    Estimate the population share of each category

    Parameters
    ----------
    x : str or list of str
        Categorical variable(s)
    design : SurveyDesign or ReplicateDesign
        Survey design
    by : str or list of str, optional
        Domain variable(s)

    Returns
    -------
    EstimationResult
        Columns: [domain...], <variable> (or names, level), proportion, SE
    """
    multiple = not isinstance(x, str)

    def rows(var, domain):
        values = design.data[var].to_numpy()
        levels = _levels(design.data[var])
        if design.kind is DesignKind.REPLICATE:
            out = _replicate_rows(
                design,
                lambda w: EstimationFunctions.proportions(values, _restrict(w, domain), levels),
                n=len(levels)
            )
        else:
            out = [ResultRow({}, est, se)
                   for est, se in analytic.estimate_proportions(design, values, levels, domain)]
        key = 'level' if multiple else var
        return [row.with_label(key, level) for row, level in zip(out, levels)]

    return _estimate('proportion', x, design, by, rows, _check_categorical)


def quantile(x: Variables, design: AnyDesign, probs: Union[float, Sequence[float]] = 0.5,
             by: Domain = None) -> EstimationResult:
    """
    Estimate population quantiles

    Parameters
    ----------
    x : str or list of str
        Numeric variable(s)
    design : SurveyDesign or ReplicateDesign
        Survey design
    probs : float or list of float, default 0.5
        Probabilities in [0, 1]
    by : str or list of str, optional
        Domain variable(s)

    Returns
    -------
    EstimationResult
        Columns: [domain...], [names], probability, quantile, SE
    """
    probs = [float(probs)] if np.isscalar(probs) else [float(p) for p in probs]
    if not probs or any(p < 0 or p > 1 for p in probs):
        raise InvalidDesignSpecification(f"Quantile probabilities must lie in [0, 1], got {probs}",
                                         name='probs')

    def rows(var, domain):
        y = _values(design, var)
        if design.kind is DesignKind.REPLICATE:
            out = _replicate_rows(
                design,
                lambda w: EstimationFunctions.quantiles(y, _restrict(w, domain), probs),
                n=len(probs)
            )
        else:
            out = [ResultRow({}, est, se)
                   for est, se in analytic.estimate_quantiles(design, y, probs, domain)]
        return [row.with_label('probability', p) for row, p in zip(out, probs)]

    return _estimate('quantile', x, design, by, rows, _check_numeric)


def _estimate(statistic: str, x: Variables, design: AnyDesign, by: Domain,
              row_function: RowFunction,
              check: Callable[[AnyDesign, str], None]) -> EstimationResult:
    """Validate the variables, then run row_function per variable and domain"""
    multiple = not isinstance(x, str)
    variables = _usable_variables([x] if not multiple else list(x), design, check)

    def estimator(domain):
        rows = []
        for var in variables:
            try:
                var_rows = row_function(var, domain)
            except SurveyError as e:
                raise e.add_context(variable=var)
            if multiple:
                var_rows = [row.with_label('names', var) for row in var_rows]
            rows.extend(var_rows)
        return rows

    return _collect(statistic, design, by, estimator)


def _collect(statistic: str, design: AnyDesign, by: Domain,
             estimator: Callable[[Optional[np.ndarray]], List[ResultRow]]) -> EstimationResult:
    if by is None:
        rows = estimator(None)
    else:
        rows = by_domain(design, by, estimator)
    logger.debug("%s: %d row(s) from a %s design", statistic, len(rows), design.kind.value)
    return _build_result(statistic, design, rows)


def _build_result(statistic: str, design: AnyDesign, rows: List[ResultRow]) -> EstimationResult:
    label_columns = []
    for row in rows:
        for key in row.labels:
            if key not in label_columns:
                label_columns.append(key)

    records = []
    for row in rows:
        record = dict(row.labels)
        record[statistic] = row.estimate
        record['SE'] = row.se
        records.append(record)
    table = pd.DataFrame.from_records(records, columns=label_columns + [statistic, 'SE'])

    if design.kind is not DesignKind.REPLICATE:
        return EstimationResult(table=table, statistic=statistic, method='taylor')

    replicates = np.vstack([row.replicates for row in rows])
    vcov = _replicate_covariance(replicates, table[statistic].to_numpy(), design.scale)
    return EstimationResult(table=table, statistic=statistic, method='bootstrap',
                            replicates=replicates, vcov=vcov,
                            replicate_names=design.replicate_weights)


def _replicate_covariance(replicates: np.ndarray, estimates: np.ndarray,
                          scale: float) -> np.ndarray:
    """
    Pairwise replicate covariance of the row estimates

    Each pair of rows uses the replicates that are defined for both, so
    the diagonal matches the per-row SE**2. Pairs without a common
    replicate are NaN.
    """
    usable = ~np.isnan(replicates)
    deviations = np.where(usable, replicates - estimates[:, None], 0.0)
    counts = usable.astype(float) @ usable.T.astype(float)
    vcov = np.divide(scale * (deviations @ deviations.T), counts,
                     out=np.full(counts.shape, np.nan), where=counts > 0)
    if np.isnan(vcov).any():
        warnings.warn("Some pairs of estimates share no usable replicate; their covariance is NaN")
    return vcov


def _replicate_rows(design: AnyDesign, func: Callable[[np.ndarray], np.ndarray],
                    n: int = 1) -> List[ResultRow]:
    outcome = replicate_estimate(design, func)
    return [ResultRow({}, float(outcome.estimates[i]), float(outcome.se[i]), outcome.replicates[i])
            for i in range(n)]


def _restrict(weights: np.ndarray, domain: Optional[np.ndarray]) -> np.ndarray:
    if domain is None:
        return weights
    return np.where(domain, weights, 0.0)


def _values(design: AnyDesign, var: str) -> np.ndarray:
    return design.data[var].to_numpy(dtype=float)


def _levels(column: pd.Series) -> list:
    """Category levels in display order"""
    if isinstance(column.dtype, pd.CategoricalDtype):
        present = set(column.unique())
        return [c for c in column.cat.categories if c in present]
    levels = list(pd.unique(column))
    try:
        return sorted(levels)
    except TypeError:
        return levels


def _check_column(design: AnyDesign, var: str):
    if var not in design.data.columns:
        raise InvalidDesignSpecification(f"Variable '{var}' not found in data", name=var)
    n_missing = int(design.data[var].isna().sum())
    if n_missing:
        raise MissingValueError(var, n_missing)


def _check_numeric(design: AnyDesign, var: str):
    if var in design.data.columns and not pd.api.types.is_numeric_dtype(design.data[var]):
        raise UnsupportedVariableType(var, design.data[var].dtype, 'a numeric dtype')
    _check_column(design, var)


def _check_categorical(design: AnyDesign, var: str):
    if var in design.data.columns and pd.api.types.is_float_dtype(design.data[var]):
        raise UnsupportedVariableType(
            var, design.data[var].dtype, 'a categorical, string, boolean or integer dtype'
        )
    _check_column(design, var)


def _usable_variables(variables: List[str], design: AnyDesign,
                      check: Callable[[AnyDesign, str], None]) -> List[str]:
    """
    Drop variables of an unsupported type from a request

    A single variable of the wrong type raises. In a list it is skipped
    with a warning, unless every variable in the list fails.
    """
    if not variables:
        raise InvalidDesignSpecification("No variables requested", name='x')

    usable = []
    errors = []
    for var in variables:
        try:
            check(design, var)
        except UnsupportedVariableType as e:
            if len(variables) == 1:
                raise
            warnings.warn(f"Skipping {var}: {e}")
            errors.append(e)
            continue
        usable.append(var)

    if not usable:
        raise errors[0]
    return usable
