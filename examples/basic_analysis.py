"""
Basic Analysis Example

Demonstrates basic usage of svyest for computing means, proportions,
ratios and quantiles under stratified and clustered designs, with
analytic and bootstrap standard errors.
"""

import pandas as pd
import numpy as np
from svyest import survey_design, bootweights, mean, proportion, ratio, quantile, total

# Create synthetic school data: 3 school types, 40 districts
np.random.seed(42)
n_schools = 600

data = pd.DataFrame({
    'stype': np.random.choice(['E', 'H', 'M'], n_schools, p=[0.6, 0.2, 0.2]),
    'dnum': np.random.randint(1, 41, n_schools),
    'awards': np.random.choice(['No', 'Yes'], n_schools),
    'enroll': np.random.randint(100, 2000, n_schools),
})
data['api99'] = 600 + 0.02 * data['enroll'] + np.random.normal(0, 100, n_schools)
data['api00'] = data['api99'] + np.random.normal(30, 20, n_schools)

# Population sizes per school type
population = {'E': 4421, 'H': 755, 'M': 1018}
data['fpc'] = data['stype'].map(population)

print("="*80)
print("SVYEST BASIC ANALYSIS EXAMPLE")
print("="*80)

# Stratified design, weights derived from population sizes
strat = survey_design(data, strata='stype', popsize='fpc')

print("\n1. Mean API Scores (stratified)")
print("-"*80)
mean(['api00', 'api99'], strat).display()

print("\n2. Share of Schools with Awards by School Type")
print("-"*80)
proportion('awards', strat, by='stype').display()

print("\n3. Quartiles of API 2000")
print("-"*80)
quantile('api00', strat, probs=[0.25, 0.5, 0.75]).display()

# One-stage cluster design on districts
clus = survey_design(data, clusters='dnum', weights=757 / 40)

print("\n4. Total Enrollment and API per Enrolled Student (clustered)")
print("-"*80)
total('enroll', clus).display()
ratio(('api00', 'enroll'), clus).display()

print("\n5. Bootstrap Standard Errors")
print("-"*80)
boot = bootweights(strat, replicates=500, seed=1234)
result = mean('api00', boot, by='stype')
result.display()
print(result.confint(method='percentile'))

print("\n" + "="*80)
print("EXAMPLE COMPLETE")
print("="*80)
