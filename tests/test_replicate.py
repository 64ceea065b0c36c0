"""
Tests for bootstrap replicate weights and replicate variance
"""

import numpy as np
import pandas as pd
import pytest
from svyest import (
    BOOTSTRAP_CONFIGS,
    BootstrapParameters,
    InsufficientSampleSize,
    InvalidDesignSpecification,
    InvalidReplicateCount,
    ReplicateDesign,
    bootweights,
    mean,
    replicate_design,
    survey_design,
)
from svyest.replicate import get_parameters, replicate_estimate
from svyest.estimation import EstimationFunctions

SIZES = {'E': 20, 'H': 30, 'M': 25}
POPULATION = {'E': 200, 'H': 600, 'M': 100}


def create_test_data():
    """Create a stratified sample with district clusters"""
    np.random.seed(42)
    stype = np.concatenate([[s] * n for s, n in SIZES.items()])
    n = len(stype)

    data = pd.DataFrame({
        'stype': stype,
        'dnum': np.random.randint(1, 13, n),
        'y': np.random.normal(600, 80, n),
    })
    data['fpc'] = data['stype'].map(POPULATION)
    return data


def create_replicate_data(n=30):
    """Create data with hand-made replicate weights"""
    np.random.seed(42)
    data = pd.DataFrame({'y': np.random.normal(100, 15, n)})
    for r in range(1, 6):
        data[f'rep{r}'] = np.random.uniform(0.5, 1.5, n)
    return data


class TestBootstrapParameters:
    """Test bootstrap configuration lookup"""

    def test_named_configurations(self):
        assert 'RAO_WU' in BOOTSTRAP_CONFIGS
        assert get_parameters('rao_wu') is BOOTSTRAP_CONFIGS['RAO_WU']

    def test_unbiased_scale(self):
        params = BOOTSTRAP_CONFIGS['RAO_WU_UNBIASED']
        assert params.variance_scale(50) == pytest.approx(50 / 49)
        assert BOOTSTRAP_CONFIGS['RAO_WU'].variance_scale(50) == 1.0

    def test_unknown_configuration(self):
        with pytest.raises(InvalidDesignSpecification):
            get_parameters('JACKKNIFE')

    def test_custom_parameters(self):
        data = create_test_data()
        params = BootstrapParameters(name='SMALL', replicates=20, scale=0.5, prefix='bw')
        boot = bootweights(survey_design(data, strata='stype'), params=params)

        assert boot.replicate_weights[0] == 'bw1'
        assert boot.replicates == 20
        assert boot.scale == 0.5


class TestBootweights:
    """Test Rao-Wu replicate weight generation"""

    def test_replicate_columns(self):
        data = create_test_data()
        boot = bootweights(survey_design(data, strata='stype', popsize='fpc'), replicates=50)

        assert isinstance(boot, ReplicateDesign)
        assert boot.replicate_weights == tuple(f'replicate_{b}' for b in range(1, 51))
        assert boot.scale == 1.0
        assert (boot.replicate_matrix() >= 0).all()

    def test_base_design_not_modified(self):
        data = create_test_data()
        design = survey_design(data, strata='stype', popsize='fpc')
        columns = list(design.data.columns)
        boot = bootweights(design, replicates=20)

        assert list(design.data.columns) == columns
        assert boot.base is design

    def test_stratum_weight_totals_preserved(self):
        data = create_test_data()
        boot = bootweights(survey_design(data, strata='stype', popsize='fpc'), replicates=50)
        totals = boot.data.groupby('stype')[list(boot.replicate_weights)].sum()

        for stratum, N in POPULATION.items():
            np.testing.assert_allclose(totals.loc[stratum].to_numpy(), N)

    def test_seed_reproducible(self):
        data = create_test_data()
        design = survey_design(data, strata='stype', popsize='fpc')

        a = bootweights(design, replicates=30, seed=99).replicate_matrix()
        b = bootweights(design, replicates=30, seed=99).replicate_matrix()
        c = bootweights(design, replicates=30, seed=100).replicate_matrix()

        np.testing.assert_array_equal(a, b)
        assert not np.array_equal(a, c)

    def test_row_order_independent(self):
        data = create_test_data()
        shuffled = data.sample(frac=1, random_state=3)

        a = bootweights(survey_design(data, strata='stype', popsize='fpc'), replicates=30)
        b = bootweights(survey_design(shuffled, strata='stype', popsize='fpc'), replicates=30)
        names = list(a.replicate_weights)

        np.testing.assert_allclose(b.data.loc[a.data.index, names].to_numpy(),
                                   a.data[names].to_numpy())

    def test_clusters_resampled_whole(self):
        data = create_test_data()
        boot = bootweights(survey_design(data, clusters='dnum', weights=5.0), replicates=30)
        multipliers = boot.data[list(boot.replicate_weights)].div(boot.data['weights'], axis=0)

        assert multipliers.groupby(boot.data['dnum']).nunique().max().max() == 1

    def test_single_psu_stratum(self):
        data = create_test_data()
        data.loc[0, 'stype'] = 'X'
        with pytest.raises(InsufficientSampleSize) as err:
            bootweights(survey_design(data, strata='stype'), replicates=10)
        assert err.value.stratum == 'X'

    def test_too_few_replicates(self):
        data = create_test_data()
        with pytest.raises(InvalidReplicateCount):
            bootweights(survey_design(data, strata='stype'), replicates=1)


class TestReplicateVariance:
    """Test replicate standard errors"""

    def test_point_estimate_matches_analytic(self):
        data = create_test_data()
        design = survey_design(data, strata='stype', popsize='fpc')
        boot = bootweights(design, replicates=50)

        assert mean('y', boot).estimate[0] == pytest.approx(mean('y', design).estimate[0])

    def test_se_from_replicates(self):
        data = create_test_data()
        boot = bootweights(survey_design(data, strata='stype', popsize='fpc'), replicates=50)
        result = mean('y', boot)

        reps = result.replicate_frame()[list(boot.replicate_weights)].to_numpy()[0]
        expected = np.sqrt(np.mean((reps - result.estimate[0]) ** 2))
        assert result.method == 'bootstrap'
        assert result.se[0] == pytest.approx(expected)

    def test_close_to_with_replacement_variance(self):
        data = create_test_data()
        design = survey_design(data, strata='stype', popsize='fpc', ignorefpc=True)
        boot = bootweights(design, replicates=2000)

        assert mean('y', boot).se[0] == pytest.approx(mean('y', design).se[0], rel=0.1)

    def test_column_permutation_invariance(self):
        data = create_test_data()
        boot = bootweights(survey_design(data, strata='stype', popsize='fpc'), replicates=40)
        permuted = ReplicateDesign(base=boot.base, data=boot.data,
                                   replicate_weights=tuple(reversed(boot.replicate_weights)),
                                   scale=boot.scale)

        assert mean('y', permuted).se[0] == pytest.approx(mean('y', boot).se[0])

    def test_specification_forms_give_same_se(self):
        data = create_replicate_data()
        by_list = replicate_design(data, ['rep1', 'rep2', 'rep3', 'rep4', 'rep5'])
        by_range = replicate_design(data, range(1, 6))
        by_regex = replicate_design(data, r'^rep\d$')

        se = mean('y', by_list).se[0]
        assert mean('y', by_range).se[0] == pytest.approx(se)
        assert mean('y', by_regex).se[0] == pytest.approx(se)

    def test_scale_applied(self):
        data = create_replicate_data()
        unscaled = mean('y', replicate_design(data, '^rep'))
        scaled = mean('y', replicate_design(data, '^rep', scale=4.0))

        assert scaled.se[0] == pytest.approx(2 * unscaled.se[0])

    def test_undefined_replicates_dropped(self):
        data = create_replicate_data()
        data['rep5'] = 0.0
        design = replicate_design(data, '^rep')

        with pytest.warns(UserWarning, match='undefined'):
            result = mean('y', design)

        y = data['y'].to_numpy()
        estimate = y.mean()
        reps = [np.average(y, weights=data[f'rep{r}']) for r in range(1, 5)]
        expected = np.sqrt(np.mean((np.array(reps) - estimate) ** 2))
        assert result.se[0] == pytest.approx(expected)
        assert np.isnan(result.replicates[0, 4])

    @pytest.mark.filterwarnings('ignore')
    def test_too_few_usable_replicates(self):
        data = create_replicate_data()
        for r in range(2, 6):
            data[f'rep{r}'] = 0.0
        design = replicate_design(data, '^rep')

        with pytest.raises(InvalidReplicateCount):
            mean('y', design)

    def test_replicate_estimate_vector(self):
        data = create_replicate_data()
        design = replicate_design(data, '^rep')
        y = data['y'].to_numpy()

        outcome = replicate_estimate(
            design, lambda w: [EstimationFunctions.mean(y, w), EstimationFunctions.total(y, w)]
        )

        assert outcome.estimates.shape == (2,)
        assert outcome.replicates.shape == (2, 5)
        assert outcome.vcov.shape == (2, 2)
        np.testing.assert_allclose(np.sqrt(np.diag(outcome.vcov)), outcome.se)

    @pytest.mark.filterwarnings('ignore:.*undefined')
    def test_domain_covariance_uses_shared_replicates(self):
        data = create_replicate_data(n=20)
        data['dom'] = np.where(np.arange(20) < 10, 'a', 'b')
        data = data.drop(columns='rep5')
        data.loc[data['dom'] == 'a', 'rep1'] = 0.0
        data.loc[data['dom'] == 'b', 'rep2'] = 0.0
        design = replicate_design(data, '^rep', scale=0.5)

        result = mean('y', design, by='dom')

        np.testing.assert_allclose(np.sqrt(np.diag(result.vcov)), result.se)
        deviations = result.replicates - result.estimate[:, None]
        shared = [2, 3]
        expected = 0.5 * np.sum(deviations[0, shared] * deviations[1, shared]) / len(shared)
        assert result.vcov[0, 1] == pytest.approx(expected)
        assert result.vcov[1, 0] == pytest.approx(expected)

    @pytest.mark.filterwarnings('ignore:.*undefined')
    def test_domains_without_shared_replicates(self):
        data = create_replicate_data(n=20)
        data['dom'] = np.where(np.arange(20) < 10, 'a', 'b')
        data = data.drop(columns='rep5')
        data.loc[data['dom'] == 'a', ['rep3', 'rep4']] = 0.0
        data.loc[data['dom'] == 'b', ['rep1', 'rep2']] = 0.0
        design = replicate_design(data, '^rep')

        with pytest.warns(UserWarning, match='share no usable replicate'):
            result = mean('y', design, by='dom')

        assert np.isnan(result.vcov[0, 1])
        assert np.isnan(result.vcov[1, 0])
        np.testing.assert_allclose(np.sqrt(np.diag(result.vcov)), result.se)

    def test_domain_estimates(self):
        data = create_test_data()
        data['half'] = np.where(np.arange(len(data)) % 2 == 0, 'even', 'odd')
        boot = bootweights(survey_design(data, strata='stype', popsize='fpc'), replicates=50)
        result = mean('y', boot, by='half')

        assert result.table['half'].tolist() == ['even', 'odd']
        assert result.replicates.shape == (2, 50)
        assert (result.se > 0).all()


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
