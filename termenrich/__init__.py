"""
termenrich: term enrichment statistics engine

This package provides:
- Filtered term -> gene catalogs
- Over-representation analysis (hypergeometric)
- Pre-ranked GSEA with a parallel, seeded permutation null
- Multiple testing correction and Storey q-values
- Reproducibility metadata
"""

__version__ = "1.0.0"

from .errors import (
    EmptyCatalog,
    EmptyQuerySet,
    EnrichmentError,
    InsufficientPermutations,
    InvalidConfiguration,
    InvalidRanking,
    InvalidSizeBounds,
    InvalidTermMapping,
    RunCancelled,
    UnknownAdjustMethod,
)
from .catalog import FilteredCatalog, build_catalog
from .ora import ORAResult, run_ora
from .gsea import GeneRanking, GSEAResult, GSEARun, RankedEnrichmentEngine, run_gsea_prerank, running_enrichment_score
from .multitest import adjust_pvalues, correct, qvalues
from .results import EnrichmentTable
from .config import EnrichmentConfig
from .repro import PipelineMetadata, ReproducibilityLogger
from .pipeline import EnrichmentPipeline, enricher, gsea_prerank

__all__ = [
    "EnrichmentError",
    "InvalidTermMapping",
    "InvalidSizeBounds",
    "EmptyCatalog",
    "EmptyQuerySet",
    "InvalidRanking",
    "UnknownAdjustMethod",
    "InvalidConfiguration",
    "InsufficientPermutations",
    "RunCancelled",
    "FilteredCatalog",
    "build_catalog",
    "ORAResult",
    "run_ora",
    "GeneRanking",
    "GSEAResult",
    "GSEARun",
    "RankedEnrichmentEngine",
    "run_gsea_prerank",
    "running_enrichment_score",
    "adjust_pvalues",
    "correct",
    "qvalues",
    "EnrichmentTable",
    "EnrichmentConfig",
    "PipelineMetadata",
    "ReproducibilityLogger",
    "EnrichmentPipeline",
    "enricher",
    "gsea_prerank",
]
