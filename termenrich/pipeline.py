"""
Enrichment Analysis Pipeline for termenrich

Ties the components together for a single call:
1. Catalog building (universe intersection + size filter)
2. Statistical test (ORA or GSEA)
3. Multiple testing correction
4. Result table assembly
5. Reproducibility logging
"""

import logging
import threading
from typing import Any, Callable, Iterable, Mapping, Optional

from .catalog import build_catalog
from .config import EnrichmentConfig
from .gsea import GeneRanking, RankedEnrichmentEngine
from .multitest import correct
from .ora import run_ora
from .repro import ReproducibilityLogger
from .results import EnrichmentTable, assemble, gsea_rows, ora_rows
from .validation import check_universe

logger = logging.getLogger("TermEnrich.Pipeline")


class EnrichmentPipeline:
    """
    Runs ORA or GSEA end to end with one configuration.

    Each call builds its own catalog and metadata; nothing is shared between
    calls except the configuration.
    """

    def __init__(self, config: Optional[EnrichmentConfig] = None, **params):
        if config is None:
            config = EnrichmentConfig.from_dict(params)
        elif params:
            config = config.replace(**params)
        self.config = config

    def run_ora(
        self,
        gene_list: Iterable[Any],
        mapping,
        universe: Optional[Iterable[Any]] = None,
        descriptions: Optional[Mapping[str, str]] = None,
        ontologies: Optional[Mapping[str, str]] = None,
    ) -> EnrichmentTable:
        """
        Over-representation analysis of a query gene set.

        Args:
            gene_list: Query genes (e.g. differentially expressed)
            mapping: term -> genes dict, (term, gene) pairs or two-column DataFrame
            universe: Background genes (default: all genes in the mapping)
            descriptions: Optional term id -> name
            ontologies: Optional term id -> ontology tag (e.g. BP, MF, CC)

        Returns:
            EnrichmentTable with metadata attached
        """
        cfg = self.config
        repro = ReproducibilityLogger()
        gene_list = list(gene_list)

        logger.info("Step 1/4: Building term catalog")
        catalog = build_catalog(mapping, universe, cfg.min_size, cfg.max_size, descriptions, ontologies)

        logger.info("Step 2/4: Running ORA")
        raw = run_ora(gene_list, catalog)

        logger.info("Step 3/4: Multiple testing correction")
        correction = correct([r.p_value for r in raw], cfg.p_adjust_method)
        table = assemble(
            "ORA", ora_rows(raw), correction,
            pvalue_cutoff=cfg.pvalue_cutoff,
            qvalue_cutoff=cfg.qvalue_cutoff,
        )

        logger.info("Step 4/4: Logging metadata")
        repro.set_method("ORA")
        repro.set_catalog_info(catalog)
        repro.set_parameters(
            pvalue_cutoff=cfg.pvalue_cutoff,
            qvalue_cutoff=cfg.qvalue_cutoff,
            p_adjust_method=cfg.p_adjust_method,
            min_size=cfg.min_size,
            max_size=cfg.max_size,
        )
        repro.set_input_summary(
            query_genes=len(set(gene_list)),
            query_in_universe=raw[0].query_size,
            universe_size=catalog.universe_size,
        )
        return self._finish(table, repro)

    def run_gsea(
        self,
        ranking,
        mapping,
        universe: Optional[Iterable[Any]] = None,
        descriptions: Optional[Mapping[str, str]] = None,
        ontologies: Optional[Mapping[str, str]] = None,
        cancel_event: Optional[threading.Event] = None,
        progress_callback: Optional[Callable[[int, int], None]] = None,
    ) -> EnrichmentTable:
        """
        Pre-ranked GSEA.

        Args:
            ranking: GeneRanking, or gene -> score (dict / Series / pairs),
                sorted here by descending score
            mapping: term -> genes dict, (term, gene) pairs or two-column DataFrame
            universe: Optional background; ranked genes outside it are removed
                from the ranking before the walk
            descriptions: Optional term id -> name
            ontologies: Optional term id -> ontology tag (e.g. BP, MF, CC)
            cancel_event: Stops the permutation loop between batches
            progress_callback: callback(completed_batches, total_batches)

        Returns:
            EnrichmentTable with metadata attached
        """
        cfg = self.config
        repro = ReproducibilityLogger()
        if not isinstance(ranking, GeneRanking):
            ranking = GeneRanking.from_scores(ranking)

        universe = check_universe(universe)
        if universe is not None:
            ranking = ranking.restrict(universe)
        background = frozenset(ranking.genes)

        logger.info("Step 1/4: Building term catalog")
        catalog = build_catalog(mapping, background, cfg.min_size, cfg.max_size, descriptions, ontologies)

        logger.info("Step 2/4: Running GSEA")
        engine = RankedEnrichmentEngine(
            n_perm=cfg.n_perm,
            exponent=cfg.exponent,
            seed=cfg.seed,
            n_jobs=cfg.n_jobs,
            permutation=cfg.permutation,
        )
        run = engine.run(
            ranking, catalog,
            pvalue_cutoff=cfg.pvalue_cutoff,
            cancel_event=cancel_event,
            progress_callback=progress_callback,
        )

        logger.info("Step 3/4: Multiple testing correction")
        correction = correct([r.p_value for r in run.results], cfg.p_adjust_method)
        table = assemble(
            "GSEA", gsea_rows(run.results), correction,
            pvalue_cutoff=cfg.pvalue_cutoff,
            qvalue_cutoff=cfg.qvalue_cutoff,
            warnings=run.warnings,
        )

        logger.info("Step 4/4: Logging metadata")
        repro.set_method("GSEA")
        repro.set_catalog_info(catalog)
        repro.set_parameters(**cfg.to_dict())
        repro.set_input_summary(
            ranked_genes=len(ranking),
            universe_size=catalog.universe_size,
            n_perm_completed=run.n_perm_completed,
            partial=run.partial,
        )
        return self._finish(table, repro)

    @staticmethod
    def _finish(table: EnrichmentTable, repro: ReproducibilityLogger) -> EnrichmentTable:
        repro.set_output_summary(
            tested_terms=table.n_tested,
            significant_terms=len(table),
            top_term=table.term_ids[0] if len(table) else None,
        )
        for w in table.warnings:
            repro.add_warning(w)
        table.metadata = repro.get_metadata().to_dict()
        return table


def enricher(
    gene_list: Iterable[Any],
    mapping,
    universe: Optional[Iterable[Any]] = None,
    descriptions: Optional[Mapping[str, str]] = None,
    ontologies: Optional[Mapping[str, str]] = None,
    config: Optional[EnrichmentConfig] = None,
    **params,
) -> EnrichmentTable:
    """
    One-call ORA.

    Args:
        gene_list: Query genes
        mapping: Term -> gene mapping
        universe: Background genes (default: all mapping genes)
        descriptions: Optional term id -> name
        ontologies: Optional term id -> ontology tag
        config: Base configuration; ``params`` override individual fields

    Returns:
        EnrichmentTable
    """
    return EnrichmentPipeline(config, **params).run_ora(gene_list, mapping, universe, descriptions, ontologies)


def gsea_prerank(
    ranking,
    mapping,
    universe: Optional[Iterable[Any]] = None,
    descriptions: Optional[Mapping[str, str]] = None,
    ontologies: Optional[Mapping[str, str]] = None,
    config: Optional[EnrichmentConfig] = None,
    cancel_event: Optional[threading.Event] = None,
    progress_callback: Optional[Callable[[int, int], None]] = None,
    **params,
) -> EnrichmentTable:
    """
    One-call pre-ranked GSEA.

    GSEA applies no q-value cutoff unless ``qvalue_cutoff`` is passed
    explicitly (or set in ``config``).
    """
    if config is None:
        params.setdefault("qvalue_cutoff", None)
    return EnrichmentPipeline(config, **params).run_gsea(
        ranking, mapping, universe, descriptions, ontologies,
        cancel_event=cancel_event,
        progress_callback=progress_callback,
    )
