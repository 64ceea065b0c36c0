"""
Survey design model

A design is an immutable description of how a sample was drawn: the
unit table plus the derived weights, probs and per-stratum population
information. Variants are tagged with DesignKind and every estimator
dispatches on that tag:

- SimpleRandomSample: plain (possibly weighted) sample
- StratifiedSample: independent samples within strata
- ClusterSample: PSUs (first-stage clusters) sampled, optionally within strata
- ReplicateDesign: any of the above plus replicate-weight columns
"""

import logging
import re
import warnings
from dataclasses import dataclass, field
from enum import Enum
from typing import ClassVar, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from .exceptions import (
    DimensionMismatch,
    InsufficientSampleSize,
    InvalidDesignSpecification,
    InvalidReplicateCount,
)
from .weights import DesignArgument, resolve_weights, stratum_summary

logger = logging.getLogger(__name__)

WEIGHTS = 'weights'
PROBS = 'probs'
UNSTRATIFIED = '_all'

ReplicateSpec = Union[Sequence[str], range, str, re.Pattern]


class DesignKind(Enum):
    SIMPLE_RANDOM = 'simple_random'
    STRATIFIED = 'stratified'
    CLUSTERED = 'clustered'
    REPLICATE = 'replicate'


@dataclass(frozen=True, eq=False)
class SurveyDesign:
    """
    Fields shared by the analytic design variants

    Attributes
    ----------
    data : pd.DataFrame
        Copy of the unit table with 'weights' and 'probs' columns attached
    sampsize : int
        Number of sampled units
    popsize : float
        Declared or estimated (sum of weights) population size
    stratum_table : pd.DataFrame
        Per-stratum sampsize, weight_total, popsize, npsu and fpc,
        indexed by sorted stratum label
    strata_codes, psu_codes : np.ndarray
        Integer stratum and PSU code per unit
    strata : str or None
        Strata column
    clusters : tuple of str
        Cluster columns, first stage first
    ignorefpc : bool
        Whether the finite population correction was switched off
    """
    data: pd.DataFrame
    sampsize: int
    popsize: float
    stratum_table: pd.DataFrame
    strata_codes: np.ndarray = field(repr=False)
    psu_codes: np.ndarray = field(repr=False)
    strata: Optional[str] = None
    clusters: Tuple[str, ...] = ()
    ignorefpc: bool = False

    kind: ClassVar[DesignKind]

    @property
    def weights(self) -> np.ndarray:
        return self.data[WEIGHTS].to_numpy(dtype=float)

    @property
    def probs(self) -> np.ndarray:
        return self.data[PROBS].to_numpy(dtype=float)

    @property
    def fpc(self) -> Union[float, pd.Series]:
        """Scalar fpc for unstratified designs, per-stratum Series otherwise"""
        if self.strata is None:
            return float(self.stratum_table['fpc'].iloc[0])
        return self.stratum_table['fpc']

    @classmethod
    def _build(cls, data: pd.DataFrame,
               strata: Optional[str] = None,
               clusters: Union[None, str, Sequence[str]] = None,
               weights: DesignArgument = None,
               probs: DesignArgument = None,
               popsize: DesignArgument = None,
               ignorefpc: bool = False):
        if not isinstance(data, pd.DataFrame):
            raise InvalidDesignSpecification("data must be a pandas DataFrame")
        n = len(data)
        if n == 0:
            raise InsufficientSampleSize("The unit table has no rows", sampsize=0, required=1)

        if strata is not None:
            _check_membership(data, strata, 'strata')
            strata_codes, strata_labels = pd.factorize(data[strata], sort=True)
        else:
            strata_codes = np.zeros(n, dtype=int)
            strata_labels = pd.Index([UNSTRATIFIED])

        cluster_cols = _as_columns(clusters)
        psu_codes = None
        if cluster_cols:
            for col in cluster_cols:
                _check_membership(data, col, 'clusters')
            psu_codes = pd.DataFrame({
                'stratum': strata_codes,
                'psu': data[cluster_cols[0]].to_numpy(),
            }).groupby(['stratum', 'psu'], sort=True).ngroup().to_numpy()

        resolved = resolve_weights(data, weights, probs, popsize,
                                   strata_codes=strata_codes, psu_codes=psu_codes)
        table = stratum_summary(resolved, strata_codes, strata_labels,
                                psu_codes=psu_codes, ignorefpc=ignorefpc)

        frame = data.copy()
        for col, values, arg in ((WEIGHTS, resolved.weights, weights),
                                 (PROBS, resolved.probs, probs)):
            if col in frame.columns and not (isinstance(arg, str) and arg == col):
                warnings.warn(f"Existing column '{col}' is replaced by the derived {col}")
            frame[col] = values

        if resolved.popsize is not None:
            popsize_total = float(table['popsize'].sum())
        else:
            popsize_total = float(resolved.weights.sum())

        design = cls(
            data=frame,
            sampsize=n,
            popsize=popsize_total,
            stratum_table=table,
            strata_codes=strata_codes,
            psu_codes=psu_codes if psu_codes is not None else np.arange(n),
            strata=strata,
            clusters=tuple(cluster_cols),
            ignorefpc=ignorefpc,
        )
        logger.debug("Built %s design: %d units, %d strata", cls.kind.value, n, len(table))
        return design


@dataclass(frozen=True, eq=False)
class SimpleRandomSample(SurveyDesign):
    """Unstratified, unclustered sample"""
    kind: ClassVar[DesignKind] = DesignKind.SIMPLE_RANDOM

    @classmethod
    def from_data(cls, data: pd.DataFrame,
                  weights: DesignArgument = None,
                  probs: DesignArgument = None,
                  popsize: DesignArgument = None,
                  ignorefpc: bool = False) -> 'SimpleRandomSample':
        return cls._build(data, weights=weights, probs=probs,
                          popsize=popsize, ignorefpc=ignorefpc)


@dataclass(frozen=True, eq=False)
class StratifiedSample(SurveyDesign):
    """Sample drawn independently within each stratum"""
    kind: ClassVar[DesignKind] = DesignKind.STRATIFIED

    @classmethod
    def from_data(cls, data: pd.DataFrame,
                  strata: Optional[str] = None,
                  weights: DesignArgument = None,
                  probs: DesignArgument = None,
                  popsize: DesignArgument = None,
                  ignorefpc: bool = False) -> 'StratifiedSample':
        if strata is None:
            raise InvalidDesignSpecification(
                "A stratified design needs a strata column", name='strata'
            )
        return cls._build(data, strata=strata, weights=weights, probs=probs,
                          popsize=popsize, ignorefpc=ignorefpc)


@dataclass(frozen=True, eq=False)
class ClusterSample(SurveyDesign):
    """
    Sample of primary sampling units (first-stage clusters)

    Deeper cluster stages are recorded but variance is computed from the
    first stage only.
    """
    kind: ClassVar[DesignKind] = DesignKind.CLUSTERED

    @classmethod
    def from_data(cls, data: pd.DataFrame,
                  clusters: Union[None, str, Sequence[str]] = None,
                  strata: Optional[str] = None,
                  weights: DesignArgument = None,
                  probs: DesignArgument = None,
                  popsize: DesignArgument = None,
                  ignorefpc: bool = False) -> 'ClusterSample':
        if not _as_columns(clusters):
            raise InvalidDesignSpecification(
                "A cluster design needs at least one cluster column", name='clusters'
            )
        return cls._build(data, strata=strata, clusters=clusters, weights=weights,
                          probs=probs, popsize=popsize, ignorefpc=ignorefpc)


@dataclass(frozen=True, eq=False)
class ReplicateDesign:
    """
    A base design augmented with replicate-weight columns

    Attributes
    ----------
    base : SurveyDesign
        Design the replicates were derived from (never modified)
    data : pd.DataFrame
        Unit table holding the replicate-weight columns
    replicate_weights : tuple of str
        Replicate columns in canonical order
    scale : float
        Multiplier applied to the replicate variance
    """
    base: SurveyDesign
    data: pd.DataFrame
    replicate_weights: Tuple[str, ...]
    scale: float = 1.0

    kind: ClassVar[DesignKind] = DesignKind.REPLICATE

    def __post_init__(self):
        if len(self.replicate_weights) < 2:
            raise InvalidReplicateCount(len(self.replicate_weights))
        if len(self.data) != len(self.base.data):
            raise DimensionMismatch('data', len(self.base.data), len(self.data))
        if not self.scale > 0:
            raise InvalidDesignSpecification(f"scale must be positive, got {self.scale}", name='scale')
        missing = [c for c in self.replicate_weights if c not in self.data.columns]
        if missing:
            raise InvalidDesignSpecification(
                f"Replicate weight '{missing[0]}' not found in data", name=missing[0]
            )
        block = self.data[list(self.replicate_weights)]
        numeric = block.dtypes.map(pd.api.types.is_numeric_dtype)
        if not numeric.all():
            col = numeric.index[~numeric.to_numpy()][0]
            raise InvalidDesignSpecification(f"Replicate weight '{col}' must be numeric", name=col)
        invalid = (block.isna() | (block < 0)).any()
        if invalid.any():
            col = invalid.index[invalid.to_numpy()][0]
            raise InvalidDesignSpecification(
                f"Replicate weight '{col}' must be non-negative and complete", name=col
            )

    @property
    def replicates(self) -> int:
        return len(self.replicate_weights)

    @property
    def weights(self) -> np.ndarray:
        return self.base.weights

    @property
    def probs(self) -> np.ndarray:
        return self.base.probs

    @property
    def sampsize(self) -> int:
        return self.base.sampsize

    @property
    def popsize(self) -> float:
        return self.base.popsize

    @property
    def strata(self) -> Optional[str]:
        return self.base.strata

    @property
    def clusters(self) -> Tuple[str, ...]:
        return self.base.clusters

    @property
    def stratum_table(self) -> pd.DataFrame:
        return self.base.stratum_table

    @property
    def fpc(self) -> Union[float, pd.Series]:
        return self.base.fpc

    def replicate_matrix(self) -> np.ndarray:
        """Replicate weights as an (n_units, n_replicates) array"""
        return self.data[list(self.replicate_weights)].to_numpy(dtype=float)

    @classmethod
    def from_data(cls, data: pd.DataFrame,
                  replicate_weights: ReplicateSpec,
                  strata: Optional[str] = None,
                  clusters: Union[None, str, Sequence[str]] = None,
                  weights: DesignArgument = None,
                  probs: DesignArgument = None,
                  popsize: DesignArgument = None,
                  ignorefpc: bool = False,
                  scale: float = 1.0) -> 'ReplicateDesign':
        """
        Build a replicate design from pre-computed replicate columns

        Parameters
        ----------
        data : pd.DataFrame
            Unit table containing the replicate-weight columns
        replicate_weights : list of str, range or regex
            Column names, a range of column positions, or a pattern
            selecting columns by name (re.search)
        strata, clusters, weights, probs, popsize, ignorefpc
            Base design arguments, see survey_design
        scale : float, default 1.0
            Replicate variance multiplier
        """
        columns = normalize_replicate_columns(data, replicate_weights)
        base = survey_design(data, strata=strata, clusters=clusters, weights=weights,
                             probs=probs, popsize=popsize, ignorefpc=ignorefpc)
        return cls(base=base, data=base.data, replicate_weights=columns, scale=scale)


AnyDesign = Union[SurveyDesign, ReplicateDesign]


def survey_design(data: pd.DataFrame,
                  strata: Optional[str] = None,
                  clusters: Union[None, str, Sequence[str]] = None,
                  weights: DesignArgument = None,
                  probs: DesignArgument = None,
                  popsize: DesignArgument = None,
                  ignorefpc: bool = False) -> SurveyDesign:
    """
    Declare a survey design, choosing the variant from the metadata given

    Parameters
    ----------
    data : pd.DataFrame
        One row per sampled unit
    strata : str, optional
        Strata column
    clusters : str or list of str, optional
        Cluster columns, first-stage (PSU) first
    weights, probs : constant, column name or vector, optional
        Sampling weights or inclusion probabilities
    popsize : constant, column name or vector, optional
        Population size per stratum (counts PSUs for cluster designs)
    ignorefpc : bool, default False
        Treat sampling as with replacement (fpc = 1)

    Returns
    -------
    SimpleRandomSample, StratifiedSample or ClusterSample
    """
    if _as_columns(clusters):
        return ClusterSample.from_data(data, clusters=clusters, strata=strata, weights=weights,
                                       probs=probs, popsize=popsize, ignorefpc=ignorefpc)
    if strata is not None:
        return StratifiedSample.from_data(data, strata=strata, weights=weights, probs=probs,
                                          popsize=popsize, ignorefpc=ignorefpc)
    return SimpleRandomSample.from_data(data, weights=weights, probs=probs,
                                        popsize=popsize, ignorefpc=ignorefpc)


def replicate_design(data: pd.DataFrame, replicate_weights: ReplicateSpec, **kwargs) -> ReplicateDesign:
    """Shorthand for ReplicateDesign.from_data"""
    return ReplicateDesign.from_data(data, replicate_weights, **kwargs)


def normalize_replicate_columns(data: pd.DataFrame, spec: ReplicateSpec) -> Tuple[str, ...]:
    """
    Resolve a replicate-column specification to an ordered tuple of names

    A list gives names directly, a range gives column positions and a
    string or compiled pattern selects every column whose name matches.
    """
    columns = list(data.columns)
    if isinstance(spec, range):
        if len(spec) and (min(spec) < 0 or max(spec) >= len(columns)):
            raise InvalidDesignSpecification(
                f"Replicate column range {spec} is outside the {len(columns)} columns of data",
                name='replicate_weights'
            )
        names = [columns[i] for i in spec]
    elif isinstance(spec, (str, re.Pattern)):
        pattern = re.compile(spec) if isinstance(spec, str) else spec
        names = [c for c in columns if isinstance(c, str) and pattern.search(c)]
    else:
        names = list(spec)
        missing = [c for c in names if c not in data.columns]
        if missing:
            raise InvalidDesignSpecification(
                f"Replicate weights not found in data: {missing[:5]}", name=str(missing[0])
            )

    if len(set(names)) != len(names):
        raise InvalidDesignSpecification("Replicate weight columns must be distinct",
                                          name='replicate_weights')
    if len(names) < 2:
        raise InvalidReplicateCount(len(names))
    return tuple(names)


def _as_columns(value: Union[None, str, Sequence[str]]) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return list(value)


def _check_membership(data: pd.DataFrame, column: str, role: str):
    if column not in data.columns:
        raise InvalidDesignSpecification(f"{role} column '{column}' not found in data", name=column)
    n_missing = int(data[column].isna().sum())
    if n_missing:
        raise InvalidDesignSpecification(
            f"{role} column '{column}' has {n_missing} unit(s) without membership", name=column
        )
