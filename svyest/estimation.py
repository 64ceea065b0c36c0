"""
Point estimation functions for svyest

Every function here computes a statistic from values and a SINGLE weight
vector:
- Means and totals
- Ratios of totals
- Category proportions
- Weighted quantiles

Both variance engines call them. The analytic engine calls them once
with the design weights; the replicate engine calls them once with the
design weights and once per replicate column. Domain estimation passes
weights that are zero outside the domain. A statistic that is undefined
for the weights given (no positive weight) comes back as NaN.
"""

from typing import Sequence

import numpy as np


class EstimationFunctions:
    """Collection of single-weight point estimators"""

    @staticmethod
    def mean(values: np.ndarray, weights: np.ndarray) -> float:
        """Weighted mean sum(w*y)/sum(w)"""
        total_weight = weights.sum()
        if total_weight <= 0:
            return np.nan
        return float(np.dot(weights, values) / total_weight)

    @staticmethod
    def total(values: np.ndarray, weights: np.ndarray) -> float:
        """Weighted total sum(w*y)"""
        return float(np.dot(weights, values))

    @staticmethod
    def ratio(numerator: np.ndarray, denominator: np.ndarray,
              weights: np.ndarray) -> float:
        """Ratio of weighted totals sum(w*y)/sum(w*x)"""
        denominator_total = np.dot(weights, denominator)
        if denominator_total == 0:
            return np.nan
        return float(np.dot(weights, numerator) / denominator_total)

    @staticmethod
    def proportions(values: np.ndarray, weights: np.ndarray,
                    levels: Sequence) -> np.ndarray:
        """
        Weighted share of each level

        Parameters
        ----------
        values : np.ndarray
            Category of each unit
        weights : np.ndarray
            Weights
        levels : sequence
            Levels to compute shares for, in output order

        Returns
        -------
        np.ndarray
            One share per level
        """
        total_weight = weights.sum()
        if total_weight <= 0:
            return np.full(len(levels), np.nan)
        return np.array([weights[values == level].sum() / total_weight for level in levels])

    @staticmethod
    def quantiles(values: np.ndarray, weights: np.ndarray,
                  probs: Sequence[float]) -> np.ndarray:
        """Weighted quantiles, one per probability in probs"""
        keep = weights > 0
        if not keep.any():
            return np.full(len(probs), np.nan)
        vals = values[keep]
        wts = weights[keep]
        return np.array([
            EstimationFunctions._weighted_percentile(vals, wts, 100 * p) for p in probs
        ])

    @staticmethod
    def _weighted_percentile(values: np.ndarray, weights: np.ndarray,
                             percentile: float) -> float:
        """Compute weighted percentile"""
        # Sort by values
        sorted_indices = np.argsort(values, kind='mergesort')
        sorted_values = values[sorted_indices]
        sorted_weights = weights[sorted_indices]

        # Cumulative weights
        cum_weights = np.cumsum(sorted_weights)
        total_weight = cum_weights[-1]

        # Find percentile position
        target = (percentile / 100) * total_weight

        # Linear interpolation
        idx = np.searchsorted(cum_weights, target)
        if idx == 0:
            return float(sorted_values[0])
        elif idx >= len(sorted_values):
            return float(sorted_values[-1])
        else:
            w0 = cum_weights[idx - 1]
            w1 = cum_weights[idx]
            v0 = sorted_values[idx - 1]
            v1 = sorted_values[idx]

            if w1 - w0 > 0:
                frac = (target - w0) / (w1 - w0)
                return float(v0 + frac * (v1 - v0))
            else:
                return float(v0)

    @staticmethod
    def cdf(values: np.ndarray, weights: np.ndarray, point: float) -> float:
        """Weighted empirical CDF at point"""
        total_weight = weights.sum()
        if total_weight <= 0:
            return np.nan
        return float(weights[values <= point].sum() / total_weight)
