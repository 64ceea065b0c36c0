"""
Tests for design construction and weight resolution
"""

import re
import warnings

import numpy as np
import pandas as pd
import pytest
from svyest import (
    ClusterSample,
    DesignKind,
    DimensionMismatch,
    InvalidDesignSpecification,
    InvalidReplicateCount,
    ReplicateDesign,
    SimpleRandomSample,
    StratifiedSample,
    replicate_design,
    survey_design,
)
from svyest.design import normalize_replicate_columns
from svyest.weights import resolve_weights

SIZES = {'E': 20, 'H': 30, 'M': 25}
POPULATION = {'E': 200, 'H': 600, 'M': 100}


def create_test_data():
    """Create a stratified sample with known population sizes"""
    np.random.seed(42)
    stype = np.concatenate([[s] * n for s, n in SIZES.items()])
    n = len(stype)

    data = pd.DataFrame({
        'stype': stype,
        'dnum': np.random.randint(1, 11, n),
        'y': np.random.normal(600, 80, n),
        'pw': np.random.uniform(5, 15, n),
    })
    data['fpc'] = data['stype'].map(POPULATION)
    return data


def create_replicate_data(n=40, n_replicates=6):
    """Create data with pre-computed replicate weights"""
    np.random.seed(42)
    data = pd.DataFrame({
        'y': np.random.normal(100, 15, n),
        'pw': np.random.uniform(1, 3, n),
    })
    for r in range(1, n_replicates + 1):
        data[f'rep{r}'] = data['pw'] * np.random.uniform(0.5, 1.5, n)
    return data


class TestResolveWeights:
    """Test weight/probs/popsize resolution"""

    def test_weights_only(self):
        data = create_test_data()
        resolved = resolve_weights(data, weights='pw')

        np.testing.assert_allclose(resolved.probs, 1 / data['pw'].to_numpy())
        assert resolved.source == 'weights'

    def test_probs_only(self):
        data = create_test_data()
        data['p'] = 1 / data['pw']
        resolved = resolve_weights(data, probs='p')

        np.testing.assert_allclose(resolved.weights, data['pw'].to_numpy())

    def test_scalar_weight_expanded(self):
        data = create_test_data()
        resolved = resolve_weights(data, weights=2.5)

        assert len(resolved.weights) == len(data)
        assert (resolved.weights == 2.5).all()

    def test_inconsistent_weights_and_probs_warn(self):
        data = create_test_data()
        with pytest.warns(UserWarning, match='weights != 1/probs'):
            resolved = resolve_weights(data, weights='pw', probs=0.5)

        # Both kept as given
        np.testing.assert_allclose(resolved.weights, data['pw'].to_numpy())
        assert (resolved.probs == 0.5).all()

    def test_popsize_gives_equal_weights_per_stratum(self):
        data = create_test_data()
        design = survey_design(data, strata='stype', popsize='fpc')

        for stratum, n in SIZES.items():
            w = design.data.loc[design.data['stype'] == stratum, 'weights']
            np.testing.assert_allclose(w, POPULATION[stratum] / n)

    def test_popsize_overrides_weights(self):
        data = pd.DataFrame({'y': np.arange(200), 'fpc': 6194})
        with pytest.warns(UserWarning, match='popsize'):
            design = survey_design(data, popsize='fpc', weights=0.3)

        assert design.weights[0] == pytest.approx(30.97)
        assert design.fpc == pytest.approx(1 - 200 / 6194)

    def test_popsize_keeps_supplied_probs(self):
        data = create_test_data()
        data['p'] = data['stype'].map(SIZES) / data['fpc']
        with warnings.catch_warnings():
            warnings.simplefilter('error')
            resolved = resolve_weights(data, probs='p', popsize='fpc',
                                       strata_codes=pd.factorize(data['stype'])[0])

        np.testing.assert_allclose(resolved.weights, 1 / data['p'].to_numpy())
        assert resolved.source == 'popsize'

    def test_defaults_to_unit_weights(self):
        data = create_test_data()
        resolved = resolve_weights(data)

        assert (resolved.weights == 1).all()
        assert not resolved.informative

    def test_wrong_length_vector(self):
        data = create_test_data()
        with pytest.raises(DimensionMismatch) as err:
            survey_design(data, weights=np.ones(len(data) + 1))
        assert err.value.expected == len(data)
        assert err.value.actual == len(data) + 1

    def test_missing_column(self):
        data = create_test_data()
        with pytest.raises(InvalidDesignSpecification):
            survey_design(data, weights='no_such_column')

    def test_nonpositive_weights(self):
        data = create_test_data()
        data.loc[0, 'pw'] = 0
        with pytest.raises(InvalidDesignSpecification):
            survey_design(data, weights='pw')

    def test_probs_above_one(self):
        data = create_test_data()
        with pytest.raises(InvalidDesignSpecification):
            survey_design(data, probs=1.5)

    def test_popsize_must_be_constant_within_stratum(self):
        data = create_test_data()
        data['bad'] = np.arange(len(data)) + 1000
        with pytest.raises(InvalidDesignSpecification):
            survey_design(data, strata='stype', popsize='bad')

    def test_popsize_below_sample_size(self):
        data = create_test_data()
        with pytest.raises(InvalidDesignSpecification):
            survey_design(data, popsize=10)


class TestSurveyDesign:
    """Test design variants and their derived fields"""

    def test_variant_selection(self):
        data = create_test_data()

        srs = survey_design(data)
        strat = survey_design(data, strata='stype')
        clus = survey_design(data, clusters='dnum')

        assert isinstance(srs, SimpleRandomSample)
        assert isinstance(strat, StratifiedSample)
        assert isinstance(clus, ClusterSample)
        assert srs.kind is DesignKind.SIMPLE_RANDOM
        assert strat.kind is DesignKind.STRATIFIED
        assert clus.kind is DesignKind.CLUSTERED

    def test_stratified_requires_strata(self):
        data = create_test_data()
        with pytest.raises(InvalidDesignSpecification):
            StratifiedSample.from_data(data)

    def test_cluster_requires_clusters(self):
        data = create_test_data()
        with pytest.raises(InvalidDesignSpecification):
            ClusterSample.from_data(data)

    def test_input_table_not_modified(self):
        data = create_test_data()
        before = data.copy()
        design = survey_design(data, strata='stype', weights='pw')

        pd.testing.assert_frame_equal(data, before)
        assert 'weights' in design.data.columns
        assert 'probs' in design.data.columns

    def test_srs_fpc_scalar(self):
        data = create_test_data()
        design = survey_design(data, popsize=750)

        assert design.fpc == pytest.approx(1 - len(data) / 750)
        assert design.popsize == pytest.approx(750)
        assert design.sampsize == len(data)

    def test_stratified_fpc_per_stratum(self):
        data = create_test_data()
        design = survey_design(data, strata='stype', popsize='fpc')

        assert list(design.fpc.index) == ['E', 'H', 'M']
        for stratum in SIZES:
            assert design.fpc[stratum] == pytest.approx(1 - SIZES[stratum] / POPULATION[stratum])
        assert design.popsize == pytest.approx(sum(POPULATION.values()))

    def test_fpc_read_from_stratum_table(self):
        data = create_test_data()
        design = survey_design(data, strata='stype', popsize='fpc')

        pd.testing.assert_series_equal(design.fpc, design.stratum_table['fpc'])
        assert len(design.stratum_table) == len(SIZES)
        for name in ('unit_fpc', 'nstrata'):
            assert not hasattr(design, name)

    def test_ignorefpc(self):
        data = create_test_data()
        design = survey_design(data, strata='stype', popsize='fpc', ignorefpc=True)

        assert (design.fpc == 1).all()

    def test_fpc_from_weights(self):
        data = create_test_data()
        design = survey_design(data, weights='pw')

        assert design.popsize == pytest.approx(data['pw'].sum())
        assert design.fpc == pytest.approx(1 - len(data) / data['pw'].sum())

    def test_unit_weights_have_no_fpc(self):
        data = create_test_data()
        design = survey_design(data)

        assert design.fpc == 1.0

    def test_cluster_popsize_counts_psus(self):
        data = create_test_data()
        npsu = data['dnum'].nunique()
        design = survey_design(data, clusters='dnum', popsize=100)

        np.testing.assert_allclose(design.weights, 100 / npsu)
        assert design.fpc == pytest.approx(1 - npsu / 100)

    def test_cluster_without_popsize_has_no_fpc(self):
        data = create_test_data()
        design = survey_design(data, clusters='dnum', weights='pw')

        assert design.fpc == 1.0

    def test_existing_weights_column_replaced(self):
        data = create_test_data()
        data['weights'] = 1.0
        with pytest.warns(UserWarning, match='Existing column'):
            design = survey_design(data, weights=2.0)
        assert (design.weights == 2.0).all()

    def test_weights_column_named_weights(self):
        data = create_test_data()
        data['weights'] = data['pw']
        with warnings.catch_warnings():
            warnings.simplefilter('error', UserWarning)
            design = survey_design(data, weights='weights')
        np.testing.assert_allclose(design.weights, data['pw'].to_numpy())

    def test_missing_strata_membership(self):
        data = create_test_data()
        data['stype'] = data['stype'].astype(object)
        data.loc[0, 'stype'] = None
        with pytest.raises(InvalidDesignSpecification):
            survey_design(data, strata='stype')

    def test_strata_sorted(self):
        data = create_test_data().iloc[::-1]
        design = survey_design(data, strata='stype')

        assert list(design.stratum_table.index) == ['E', 'H', 'M']
        assert list(design.stratum_table['sampsize']) == [20, 30, 25]


class TestReplicateDesign:
    """Test replicate design construction"""

    def test_specification_forms_equivalent(self):
        data = create_replicate_data()
        expected = tuple(f'rep{r}' for r in range(1, 7))

        assert normalize_replicate_columns(data, list(expected)) == expected
        assert normalize_replicate_columns(data, range(2, 8)) == expected
        assert normalize_replicate_columns(data, '^rep') == expected

    def test_compiled_pattern(self):
        data = create_replicate_data()
        columns = normalize_replicate_columns(data, re.compile(r'rep[1-3]$'))

        assert columns == ('rep1', 'rep2', 'rep3')

    def test_from_data(self):
        data = create_replicate_data()
        design = replicate_design(data, '^rep', weights='pw', scale=0.5)

        assert isinstance(design, ReplicateDesign)
        assert design.kind is DesignKind.REPLICATE
        assert design.replicates == 6
        assert design.scale == 0.5
        assert design.replicate_matrix().shape == (len(data), 6)
        np.testing.assert_allclose(design.weights, data['pw'].to_numpy())

    def test_too_few_replicates(self):
        data = create_replicate_data()
        with pytest.raises(InvalidReplicateCount):
            replicate_design(data, ['rep1'])

    def test_pattern_without_matches(self):
        data = create_replicate_data()
        with pytest.raises(InvalidReplicateCount):
            replicate_design(data, '^zzz')

    def test_range_out_of_bounds(self):
        data = create_replicate_data()
        with pytest.raises(InvalidDesignSpecification):
            replicate_design(data, range(5, 20))

    def test_missing_replicate_column(self):
        data = create_replicate_data()
        with pytest.raises(InvalidDesignSpecification):
            replicate_design(data, ['rep1', 'rep99'])

    def test_duplicate_replicate_columns(self):
        data = create_replicate_data()
        with pytest.raises(InvalidDesignSpecification):
            replicate_design(data, ['rep1', 'rep1', 'rep2'])

    def test_negative_replicate_weight(self):
        data = create_replicate_data()
        data.loc[0, 'rep2'] = -1.0
        with pytest.raises(InvalidDesignSpecification) as err:
            replicate_design(data, '^rep')
        assert err.value.name == 'rep2'

    def test_non_numeric_replicate_weight(self):
        data = create_replicate_data()
        data['rep_text'] = 'a'
        with pytest.raises(InvalidDesignSpecification):
            replicate_design(data, ['rep1', 'rep_text'])

    def test_invalid_scale(self):
        data = create_replicate_data()
        with pytest.raises(InvalidDesignSpecification):
            replicate_design(data, '^rep', scale=0)


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
