"""
Analytic (Taylor linearization) variance estimation

Closed-form variance for means, proportions, totals, ratios and
quantiles. Formulas are selected by the design's kind tag only:

Simple random sample (Cochran 1977):
    V(ybar) = fpc * s^2 / n

Stratified sample:
    Ybar = sum_h W_h * ybar_h,            W_h = N_h / sum(N_h)
    V(Ybar) = sum_h W_h^2 * (1 - f_h) * s_h^2 / n_h
with N_h the stratum weight total and (1 - f_h) the stratum fpc.

Cluster sample (with-replacement PSU approximation):
    V = sum_h fpc_h * m_h/(m_h - 1) * sum_c (t_hc - tbar_h)^2
where t_hc is the PSU total of the linearized variable z and m_h the
number of PSUs in stratum h.

Domains are handled as a special case of the full design: units outside
the domain contribute zero, so stratification and clustering of the
full sample still drive the variance.
"""

import logging
from typing import List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from scipy import stats

from .design import DesignKind, SurveyDesign
from .estimation import EstimationFunctions
from .exceptions import InsufficientSampleSize, InvalidDesignSpecification

logger = logging.getLogger(__name__)

Estimate = Tuple[float, float]

QUANTILE_ALPHA = 0.05


def _stratum_label(design: SurveyDesign, code: int):
    return design.stratum_table.index[code]


def _domain_weights(design: SurveyDesign, domain: Optional[np.ndarray]) -> np.ndarray:
    weights = design.weights
    if domain is None:
        return weights
    return np.where(domain, weights, 0.0)


def _check_domain(domain: Optional[np.ndarray], required: int = 1):
    if domain is not None and domain.sum() < required:
        raise InsufficientSampleSize(
            f"Domain has {int(domain.sum())} sampled unit(s); at least {required} needed",
            sampsize=int(domain.sum()), required=required
        )


def linearized_variance(design: SurveyDesign, z: np.ndarray) -> float:
    """
    Variance of the total of a linearized variable under the design

    PSU totals of z are formed within each stratum; the with-replacement
    variance of those totals is deflated by the stratum fpc.
    """
    frame = pd.DataFrame({
        'stratum': design.strata_codes,
        'psu': design.psu_codes,
        'z': z,
    })
    psu_totals = frame.groupby(['stratum', 'psu'], sort=True)['z'].sum()
    by_stratum = psu_totals.groupby(level='stratum')
    npsu = by_stratum.size()

    if (npsu < 2).any():
        code = int(npsu.index[(npsu < 2).to_numpy()][0])
        raise InsufficientSampleSize(
            f"Stratum '{_stratum_label(design, code)}' has a single PSU; "
            f"its variance contribution is undefined",
            stratum=_stratum_label(design, code), sampsize=int(npsu.loc[code])
        )

    deviations = psu_totals - by_stratum.transform('mean')
    ss = (deviations ** 2).groupby(level='stratum').sum()
    fpc = design.stratum_table['fpc'].to_numpy()[ss.index.to_numpy()]
    m = npsu.to_numpy(dtype=float)
    return float(np.sum(fpc * m / (m - 1) * ss.to_numpy()))


def _srs_mean_variance(design: SurveyDesign, y: np.ndarray,
                       domain: Optional[np.ndarray]) -> float:
    n = design.sampsize
    fpc = design.fpc
    if domain is None:
        if n < 2:
            raise InsufficientSampleSize("Sample has a single unit", sampsize=n)
        return fpc * np.var(y, ddof=1) / n

    nd = int(domain.sum())
    _check_domain(domain, required=2)
    return (nd / n) ** -2 / n * fpc * ((nd - 1) / (n - 1)) * np.var(y[domain], ddof=1)


def _stratified_mean_variance(design: SurveyDesign, y: np.ndarray) -> float:
    table = design.stratum_table
    grouped = pd.Series(y).groupby(design.strata_codes, sort=True)
    nh = grouped.size().to_numpy(dtype=float)
    s2h = grouped.var(ddof=1).to_numpy()

    if (nh < 2).any():
        code = int(np.flatnonzero(nh < 2)[0])
        raise InsufficientSampleSize(
            f"Stratum '{_stratum_label(design, code)}' has a single sampled unit",
            stratum=_stratum_label(design, code), sampsize=int(nh[code])
        )

    Nh = table['weight_total'].to_numpy()
    Wh = Nh / Nh.sum()
    fpc = table['fpc'].to_numpy()
    return float(np.sum(Wh ** 2 * fpc * s2h / nh))


def _stratified_domain_mean_variance(design: SurveyDesign, y: np.ndarray,
                                     domain: np.ndarray) -> float:
    """
    Variance of a domain mean in a stratified sample

    Deviations are centred on the reported (weighted) domain mean. The
    within-stratum terms treat every unit of stratum h as carrying
    N_h/n_h, so the formula is exact when weights are constant within
    each stratum and an approximation otherwise.
    """
    table = design.stratum_table
    H = len(table)
    nh = table['sampsize'].to_numpy(dtype=float)
    Nh = table['weight_total'].to_numpy()
    fpc = table['fpc'].to_numpy()

    inside = pd.Series(y[domain]).groupby(design.strata_codes[domain], sort=True)
    nsdh = inside.size().reindex(range(H), fill_value=0).to_numpy(dtype=float)
    totals = inside.sum().reindex(range(H), fill_value=0).to_numpy(dtype=float)
    ss = (inside.var(ddof=0) * inside.size()).reindex(range(H), fill_value=0).to_numpy(dtype=float)

    contributing = nsdh > 0
    short = contributing & (nh <= 1)
    if short.any():
        code = int(np.flatnonzero(short)[0])
        raise InsufficientSampleSize(
            f"Stratum '{_stratum_label(design, code)}' has a single sampled unit; "
            f"the domain variance divides by n_h(n_h - 1)",
            stratum=_stratum_label(design, code), sampsize=int(nh[code])
        )

    domain_mean = EstimationFunctions.mean(y, _domain_weights(design, domain))
    pdh = nsdh / nh
    Nd = np.sum(Nh * pdh)
    ybar_sdh = np.divide(totals, nsdh, out=np.zeros(H), where=contributing)
    terms = (Nh ** 2 * fpc
             * (ss + nsdh * (1 - pdh) * (ybar_sdh - domain_mean) ** 2)
             / (nh * np.maximum(nh - 1, 1)))
    return float(np.sum(terms[contributing]) / Nd ** 2)


def _clustered_mean_variance(design: SurveyDesign, y: np.ndarray,
                             domain: Optional[np.ndarray]) -> float:
    wd = _domain_weights(design, domain)
    Nd = wd.sum()
    ybar = np.dot(wd, y) / Nd
    z = wd * (y - ybar) / Nd
    return linearized_variance(design, z)


def mean_variance(design: SurveyDesign, y: np.ndarray,
                  domain: Optional[np.ndarray] = None) -> float:
    """Variance of the (domain) mean of y under the design variant"""
    _check_domain(domain)
    kind = design.kind
    if kind is DesignKind.SIMPLE_RANDOM:
        return _srs_mean_variance(design, y, domain)
    elif kind is DesignKind.STRATIFIED:
        if domain is None:
            return _stratified_mean_variance(design, y)
        return _stratified_domain_mean_variance(design, y, domain)
    elif kind is DesignKind.CLUSTERED:
        return _clustered_mean_variance(design, y, domain)
    raise InvalidDesignSpecification(f"No analytic variance for a {kind.value} design")


def estimate_mean(design: SurveyDesign, y: np.ndarray,
                  domain: Optional[np.ndarray] = None) -> Estimate:
    """Weighted (domain) mean and its standard error"""
    _check_domain(domain)
    estimate = EstimationFunctions.mean(y, _domain_weights(design, domain))
    return estimate, float(np.sqrt(mean_variance(design, y, domain)))


def estimate_total(design: SurveyDesign, y: np.ndarray,
                   domain: Optional[np.ndarray] = None) -> Estimate:
    """Weighted (domain) total; linearized variable z = w * d * y"""
    _check_domain(domain)
    wd = _domain_weights(design, domain)
    estimate = EstimationFunctions.total(y, wd)
    return estimate, float(np.sqrt(linearized_variance(design, wd * y)))


def estimate_ratio(design: SurveyDesign, y: np.ndarray, x: np.ndarray,
                   domain: Optional[np.ndarray] = None,
                   denominator: Optional[str] = None) -> Estimate:
    """
    Ratio of totals sum(w*y)/sum(w*x)

    The variance is the design's mean variance of the residual
    y - R*x, divided by the squared weighted mean of x.
    """
    _check_domain(domain)
    wd = _domain_weights(design, domain)
    ratio = EstimationFunctions.ratio(y, x, wd)
    xbar = EstimationFunctions.mean(x, wd)
    if np.isnan(ratio) or xbar == 0:
        raise InvalidDesignSpecification(
            f"Ratio denominator '{denominator or 'x'}' totals to zero", name=denominator
        )
    residual = y - ratio * x
    variance = mean_variance(design, residual, domain) / xbar ** 2
    return ratio, float(np.sqrt(variance))


def estimate_proportions(design: SurveyDesign, values: np.ndarray, levels: Sequence,
                         domain: Optional[np.ndarray] = None) -> List[Estimate]:
    """
    Share of each category level

    Simple random samples use the binomial form fpc * p(1-p)/(n-1); every
    other case uses the mean variance of the level indicator.
    """
    _check_domain(domain)
    shares = EstimationFunctions.proportions(values, _domain_weights(design, domain), levels)
    results = []
    for level, p in zip(levels, shares):
        if design.kind is DesignKind.SIMPLE_RANDOM and domain is None:
            n = design.sampsize
            if n < 2:
                raise InsufficientSampleSize("Sample has a single unit", sampsize=n)
            variance = design.fpc * p * (1 - p) / (n - 1)
        else:
            variance = mean_variance(design, (values == level).astype(float), domain)
        results.append((float(p), float(np.sqrt(variance))))
    return results


def estimate_quantiles(design: SurveyDesign, y: np.ndarray, probs: Sequence[float],
                       domain: Optional[np.ndarray] = None,
                       alpha: float = QUANTILE_ALPHA) -> List[Estimate]:
    """
    Weighted quantiles with Woodruff standard errors

    The design variance of the ECDF at the estimated quantile gives a
    confidence interval for p; mapping its ends back through the ECDF and
    dividing the width by 2*z gives the standard error.
    """
    _check_domain(domain)
    wd = _domain_weights(design, domain)
    z = stats.norm.ppf(1 - alpha / 2)
    estimates = EstimationFunctions.quantiles(y, wd, probs)

    results = []
    for p, q in zip(probs, estimates):
        below = (y <= q).astype(float)
        se_p = np.sqrt(mean_variance(design, below, domain))
        lower, upper = EstimationFunctions.quantiles(
            y, wd, [max(p - z * se_p, 0.0), min(p + z * se_p, 1.0)]
        )
        results.append((float(q), float((upper - lower) / (2 * z))))
    return results


def population_shares(design: SurveyDesign) -> pd.DataFrame:
    """Estimated population size N_h and share W_h of each stratum"""
    table = design.stratum_table
    shares = pd.DataFrame({
        'N': table['weight_total'],
        'W': table['weight_total'] / table['weight_total'].sum(),
    })
    name = design.strata if design.strata is not None else 'stratum'
    return shares.rename_axis(name).reset_index()
