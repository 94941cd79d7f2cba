"""
Shared fixtures: synthetic 5,200-gene dataset with 26 equal-size terms.
"""

import string

import numpy as np
import pytest
from scipy.stats import norm

N_TERMS = 26
TERM_SIZE = 200
BIASED_TERMS = ("A", "B", "C")


class SimulatedDataset:
    """Gene scores plus a term -> gene mapping for one simulation"""

    def __init__(self, genes, scores, mapping):
        self.genes = genes
        self.scores = scores
        self.mapping = mapping

    @property
    def ranking(self):
        return dict(zip(self.genes, self.scores))

    def top_genes(self, n):
        order = np.argsort(-self.scores, kind="stable")
        return [self.genes[i] for i in order[:n]]


def simulate(shift=0.5, seed=0, stratified=True, biased=BIASED_TERMS):
    """
    Build a dataset where the genes of ``biased`` terms have mean ``shift``
    and all other genes mean 0 (unit variance).

    With ``stratified`` each term draws one value per quantile stratum of
    the normal distribution, so every term's scores follow their nominal
    distribution closely; otherwise scores are plain iid normal draws.
    """
    rng = np.random.default_rng(seed)
    names = string.ascii_uppercase[:N_TERMS]
    genes = [f"GENE{i:04d}" for i in range(N_TERMS * TERM_SIZE)]
    mapping = {}
    scores = np.empty(len(genes))

    for t, name in enumerate(names):
        block = slice(t * TERM_SIZE, (t + 1) * TERM_SIZE)
        mapping[name] = genes[block]
        if stratified:
            u = (np.arange(TERM_SIZE) + rng.uniform(size=TERM_SIZE)) / TERM_SIZE
            values = norm.ppf(u)
            rng.shuffle(values)
        else:
            values = rng.normal(size=TERM_SIZE)
        scores[block] = values + (shift if name in biased else 0.0)

    return SimulatedDataset(genes, scores, mapping)


@pytest.fixture
def biased_dataset():
    return simulate(shift=0.5, seed=2024)


@pytest.fixture
def simulate_dataset():
    return simulate
