"""
Statistical properties of ORA and GSEA on synthetic data.

The 100,000-permutation run is marked ``integration``; deselect with
``pytest -m "not integration"``.
"""

import numpy as np
import pytest

from termenrich import build_catalog, enricher, gsea_prerank
from termenrich.multitest import adjust_pvalues

from conftest import BIASED_TERMS


class TestORASimulation:
    """ORA on the biased simulation."""

    def test_top_genes_report_biased_terms(self, biased_dataset):
        """Top 500 genes hit exactly the shifted terms at BH <= 0.05."""
        table = enricher(
            biased_dataset.top_genes(500),
            biased_dataset.mapping,
            universe=biased_dataset.genes,
            min_size=1,
            max_size=500,
            p_adjust_method="BH",
            qvalue_cutoff=None,
        )

        assert sorted(table.term_ids) == list(BIASED_TERMS)
        assert table.n_tested == 26
        assert (table.data["fold_enrichment"] > 1).all()

    def test_pvalues_in_range(self, biased_dataset):
        table = enricher(
            biased_dataset.top_genes(500), biased_dataset.mapping,
            min_size=1, max_size=500, qvalue_cutoff=None,
        )
        frame = table.unfiltered

        assert frame["pvalue"].between(0, 1).all()
        assert frame["p_adjust"].between(0, 1).all()
        assert (frame["p_adjust"] >= frame["pvalue"]).all()

    @pytest.mark.parametrize("method", ["none", "bonferroni", "holm", "hochberg", "BH", "BY"])
    def test_adjusted_not_below_raw(self, biased_dataset, method):
        table = enricher(
            biased_dataset.top_genes(500), biased_dataset.mapping,
            min_size=1, max_size=500, p_adjust_method=method, qvalue_cutoff=None,
        )
        frame = table.unfiltered
        assert (frame["p_adjust"] >= frame["pvalue"]).all()

    def test_null_false_positive_rate(self, simulate_dataset):
        """Without bias, BH discoveries are rare and raw p <= 0.05 stays near 5 %."""
        runs_with_discoveries = 0
        raw = []
        for seed in range(20):
            data = simulate_dataset(shift=0.0, seed=100 + seed, stratified=False)
            table = enricher(
                data.top_genes(500), data.mapping,
                min_size=1, max_size=500, qvalue_cutoff=None,
            )
            runs_with_discoveries += int(len(table) > 0)
            raw.extend(table.unfiltered["pvalue"])

        assert runs_with_discoveries <= 4
        assert np.mean(np.array(raw) <= 0.05) <= 0.08


class TestGSEASimulation:
    """GSEA on the synthetic datasets."""

    @pytest.mark.integration
    def test_biased_terms_rank_first(self, biased_dataset):
        """100,000 permutations: A, B, C have positive ES and the largest |NES|."""
        table = gsea_prerank(
            biased_dataset.ranking,
            biased_dataset.mapping,
            n_perm=100_000,
            exponent=1.0,
            min_size=1,
            max_size=500,
            n_jobs=4,
        )
        frame = table.unfiltered.set_index("term_id")

        assert (frame.loc[list(BIASED_TERMS), "enrichment_score"] > 0).all()
        top = frame["nes"].abs().sort_values(ascending=False).index[:3]
        assert sorted(top) == list(BIASED_TERMS)
        assert (frame.loc[list(BIASED_TERMS), "p_adjust"] <= 0.05).all()
        assert table.metadata["input_summary"]["n_perm_completed"] == 100_000

    def test_sign_symmetry(self, simulate_dataset):
        """Shift -2 gives negative ES; negating the scores flips the sign."""
        data = simulate_dataset(shift=-2.0, seed=7)
        params = dict(n_perm=200, min_size=1, max_size=500, pvalue_cutoff=1.0)

        down = gsea_prerank(data.ranking, data.mapping, **params).unfiltered.set_index("term_id")
        negated = {g: -s for g, s in data.ranking.items()}
        up = gsea_prerank(negated, data.mapping, **params).unfiltered.set_index("term_id")

        biased = list(BIASED_TERMS)
        assert (down.loc[biased, "enrichment_score"] < 0).all()
        assert (up.loc[biased, "enrichment_score"] > 0).all()
        np.testing.assert_allclose(
            up.loc[biased, "enrichment_score"], -down.loc[biased, "enrichment_score"], rtol=1e-9
        )
        assert (np.sign(down["nes"]) == np.sign(down["enrichment_score"])).all()

    def test_worker_count_does_not_change_results(self, biased_dataset):
        params = dict(n_perm=2000, min_size=1, max_size=500, seed=13, pvalue_cutoff=0.05)

        serial = gsea_prerank(biased_dataset.ranking, biased_dataset.mapping, n_jobs=1, **params)
        parallel = gsea_prerank(biased_dataset.ranking, biased_dataset.mapping, n_jobs=3, **params)

        a, b = serial.unfiltered, parallel.unfiltered
        for column in ("term_id", "enrichment_score", "nes", "pvalue", "p_adjust", "rank"):
            assert a[column].tolist() == b[column].tolist()
        assert a["leading_edge"].tolist() == b["leading_edge"].tolist()

    def test_null_false_positive_rate(self, simulate_dataset):
        """Label permutation keeps raw p <= 0.05 near 5 % under the null."""
        raw = []
        for seed in range(10):
            data = simulate_dataset(shift=0.0, seed=500 + seed, stratified=False)
            table = gsea_prerank(
                data.ranking, data.mapping,
                n_perm=1000, min_size=1, max_size=500, seed=seed,
            )
            raw.extend(table.unfiltered["pvalue"])

        assert len(raw) == 260
        assert np.mean(np.array(raw) <= 0.05) <= 0.1


class TestCatalogSimulation:
    """Catalog filtering on the synthetic mapping."""

    def test_unbounded_catalog_equals_mapping(self, biased_dataset):
        catalog = build_catalog(
            biased_dataset.mapping, universe=biased_dataset.genes, min_size=1, max_size=None
        )

        assert {t: set(g) for t, g in catalog.terms.items()} == \
            {t: set(g) for t, g in biased_dataset.mapping.items()}
        assert catalog.universe_size == 5200

    def test_adjustment_on_simulated_pvalues(self, simulate_dataset):
        data = simulate_dataset(shift=0.0, seed=1, stratified=False)
        table = enricher(data.top_genes(500), data.mapping, min_size=1, max_size=500, qvalue_cutoff=None)
        p = table.unfiltered["pvalue"].to_numpy()

        for method in ("bonferroni", "holm", "hochberg", "BH", "BY"):
            assert np.all(adjust_pvalues(p, method) >= p)
