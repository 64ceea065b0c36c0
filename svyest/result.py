"""
Estimation result container
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
import pandas as pd
from scipy import stats

from .exceptions import InvalidReplicateCount


@dataclass(frozen=True)
class ResultRow:
    """One estimate with its labels (variable name, domain, level, ...)"""
    labels: Dict[str, Any]
    estimate: float
    se: float
    replicates: Optional[np.ndarray] = None

    def with_label(self, name: str, value: Any) -> 'ResultRow':
        """Copy of the row with a leading label"""
        labels = {name: value}
        labels.update(self.labels)
        return ResultRow(labels, self.estimate, self.se, self.replicates)


@dataclass(frozen=True, eq=False)
class EstimationResult:
    """
    Point estimates and standard errors

    Attributes
    ----------
    table : pd.DataFrame
        Label columns (names, domain, level, probability) followed by the
        statistic column and SE
    statistic : str
        'mean', 'proportion', 'total', 'ratio' or 'quantile'
    method : str
        'taylor' for analytic designs, 'bootstrap' for replicate designs
    replicates : np.ndarray or None
        (rows, B) replicate estimates, replicate designs only
    vcov : np.ndarray or None
        (rows, rows) replicate covariance of the estimates
    replicate_names : tuple of str
        Replicate columns, in the order of the replicates array
    """
    table: pd.DataFrame
    statistic: str
    method: str
    replicates: Optional[np.ndarray] = None
    vcov: Optional[np.ndarray] = None
    replicate_names: Tuple[str, ...] = field(default=())

    @property
    def estimate(self) -> np.ndarray:
        return self.table[self.statistic].to_numpy()

    @property
    def se(self) -> np.ndarray:
        return self.table['SE'].to_numpy()

    @property
    def label_columns(self) -> List[str]:
        return [c for c in self.table.columns if c not in (self.statistic, 'SE')]

    def replicate_frame(self) -> pd.DataFrame:
        """Labels plus one column per replicate estimate"""
        if self.replicates is None:
            raise InvalidReplicateCount(0)
        reps = pd.DataFrame(self.replicates, columns=list(self.replicate_names),
                            index=self.table.index)
        return pd.concat([self.table[self.label_columns], reps], axis=1)

    def confint(self, level: float = 0.95, method: str = 'normal') -> pd.DataFrame:
        """
        Confidence intervals for every row

        Parameters
        ----------
        level : float, default 0.95
            Confidence level
        method : str, default 'normal'
            'normal' (estimate +/- z * SE) or 'percentile' (quantiles of
            the replicate estimates; replicate designs only)

        Returns
        -------
        pd.DataFrame
            Labels, estimate, lower and upper bounds
        """
        alpha = 1 - level
        if method == 'normal':
            z = stats.norm.ppf(1 - alpha / 2)
            lower = self.estimate - z * self.se
            upper = self.estimate + z * self.se
        elif method == 'percentile':
            if self.replicates is None:
                raise InvalidReplicateCount(0)
            lower, upper = np.nanquantile(self.replicates, [alpha / 2, 1 - alpha / 2], axis=1)
        else:
            raise ValueError(f"Unknown interval method: {method}")

        intervals = self.table[self.label_columns + [self.statistic]].copy()
        intervals['lower'] = lower
        intervals['upper'] = upper
        return intervals

    def display(self):
        """Display results table"""
        print("\n" + "=" * 80)
        print(f"SURVEY {self.statistic.upper()} ({self.method})")
        print("=" * 80)
        print(self.table.to_string(index=False))
        print("=" * 80 + "\n")
