"""
Input Validation for termenrich

Checks collaborator-supplied records once, at ingestion:
- term -> gene mappings (dict, (term, gene) pairs, or two-column DataFrame)
- query gene lists
- gene rankings (gene -> finite score)

Malformed rows are rejected with an explicit error instead of being coerced.
"""

import logging
import math
from numbers import Real
from typing import Any, Dict, FrozenSet, Hashable, Iterable, List, Mapping, Optional, Tuple, Union

import numpy as np
import pandas as pd

from .errors import EnrichmentError, InvalidRanking, InvalidTermMapping

logger = logging.getLogger("TermEnrich.Validation")

GeneId = Union[str, int]


def is_gene_id(value: Any) -> bool:
    """Gene ids are non-empty strings or integers (bool and float are rejected)"""
    if isinstance(value, (bool, np.bool_)):
        return False
    if isinstance(value, str):
        return bool(value.strip())
    return isinstance(value, (int, np.integer))


def _normalize_gene(value: Any, where: str, error=InvalidTermMapping) -> GeneId:
    if not is_gene_id(value):
        raise error(f"{where}: invalid gene id {value!r}")
    if isinstance(value, np.integer):
        return int(value)
    return value


def _check_term(value: Any, where: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidTermMapping(f"{where}: term id must be a non-empty string, got {value!r}")
    return value


def term2gene_from_pairs(pairs: Iterable[Tuple[Any, Any]]) -> Dict[str, FrozenSet[GeneId]]:
    """
    Build a term -> gene mapping from ``(term_id, gene_id)`` records.

    Duplicate pairs collapse; a term may appear on any number of rows.

    Raises:
        InvalidTermMapping: a row is not a 2-tuple or holds an invalid id
    """
    mapping: Dict[str, set] = {}
    row_num = 0
    for row_num, row in enumerate(pairs, 1):
        try:
            term, gene = row
        except (TypeError, ValueError):
            raise InvalidTermMapping(f"Row {row_num}: expected (term_id, gene_id), got {row!r}")
        where = f"Row {row_num}"
        term = _check_term(term, where)
        gene = _normalize_gene(gene, where)
        mapping.setdefault(term, set()).add(gene)

    logger.info(f"Read {row_num} term-gene records into {len(mapping)} terms")
    return {term: frozenset(genes) for term, genes in mapping.items()}


def term2gene_from_frame(frame: pd.DataFrame) -> Dict[str, FrozenSet[GeneId]]:
    """
    Build a term -> gene mapping from a two-column DataFrame.

    The first column is the term id and the second the gene id; column names
    are ignored.
    """
    if frame.shape[1] != 2:
        raise InvalidTermMapping(
            f"Term-gene table must have exactly 2 columns (term, gene), got {frame.shape[1]}"
        )
    if frame.isna().any().any():
        bad = int(frame.isna().any(axis=1).sum())
        raise InvalidTermMapping(f"Term-gene table has {bad} rows with missing values")
    return term2gene_from_pairs(frame.itertuples(index=False, name=None))


def normalize_mapping(mapping: Union[Mapping[str, Iterable[Any]], pd.DataFrame, Iterable[Tuple[Any, Any]]]
                      ) -> Dict[str, FrozenSet[GeneId]]:
    """Accept any supported mapping shape and return term -> frozenset of genes"""
    if isinstance(mapping, pd.DataFrame):
        return term2gene_from_frame(mapping)
    if isinstance(mapping, Mapping):
        result = {}
        for term, genes in mapping.items():
            where = f"Term {term!r}"
            term = _check_term(term, where)
            if isinstance(genes, (str, bytes)):
                raise InvalidTermMapping(f"{where}: genes must be a collection, not a string")
            result[term] = frozenset(_normalize_gene(g, where) for g in genes)
        return result
    return term2gene_from_pairs(mapping)


def validate_gene_list(genes: Iterable[Any]) -> Tuple[List[GeneId], List[str]]:
    """
    Validate a query gene list.

    Duplicates are dropped (first occurrence kept) and reported; invalid ids
    raise, since the query defines the test.

    Returns:
        Tuple of (valid_genes, warnings)
    """
    seen = set()
    valid_genes = []
    duplicates = []

    for gene in genes:
        gene = _normalize_gene(gene, "Query gene list", EnrichmentError)
        if gene in seen:
            duplicates.append(gene)
        else:
            seen.add(gene)
            valid_genes.append(gene)

    warnings = []
    if not valid_genes:
        warnings.append("Gene list is empty")
    if duplicates:
        warnings.append(f"Removed {len(duplicates)} duplicate genes: {duplicates[:5]}")
    return valid_genes, warnings


def validate_gene_ranking(pairs: Iterable[Tuple[Any, Any]]) -> Tuple[List[GeneId], np.ndarray]:
    """
    Validate ``(gene_id, score)`` records.

    Returns:
        Tuple of (gene ids, float64 scores) in input order

    Raises:
        InvalidRanking: bad or duplicate gene id, or a non-finite score
    """
    genes = []
    scores = []
    seen = set()

    for row_num, row in enumerate(pairs, 1):
        try:
            gene, score = row
        except (TypeError, ValueError):
            raise InvalidRanking(f"Row {row_num}: expected (gene_id, score), got {row!r}")
        if not is_gene_id(gene):
            raise InvalidRanking(f"Row {row_num}: invalid gene id {gene!r}")
        if isinstance(gene, np.integer):
            gene = int(gene)
        if gene in seen:
            raise InvalidRanking(f"Duplicate gene id in ranking: {gene!r}")
        if isinstance(score, (bool, np.bool_)) or not isinstance(score, (Real, np.floating, np.integer)):
            raise InvalidRanking(f"Gene {gene!r} has non-numeric score {score!r}")
        score = float(score)
        if not math.isfinite(score):
            raise InvalidRanking(f"Gene {gene!r} has non-finite score {score}")
        seen.add(gene)
        genes.append(gene)
        scores.append(score)

    return genes, np.asarray(scores, dtype=np.float64)


def ranking_pairs(ranking: Union[Mapping[Any, Any], pd.Series, Iterable[Tuple[Any, Any]]]
                  ) -> Iterable[Tuple[Hashable, Any]]:
    """Iterate ``(gene, score)`` from a dict, Series (index = gene) or pair iterable"""
    if isinstance(ranking, pd.Series):
        if ranking.index.has_duplicates:
            dup = ranking.index[ranking.index.duplicated()][0]
            raise InvalidRanking(f"Duplicate gene id in ranking: {dup!r}")
        return zip(ranking.index.tolist(), ranking.tolist())
    if isinstance(ranking, Mapping):
        return ranking.items()
    return ranking


def check_universe(universe: Optional[Iterable[Any]]) -> Optional[FrozenSet[GeneId]]:
    """Validate a caller universe (None means 'all mapping genes')"""
    if universe is None:
        return None
    return frozenset(_normalize_gene(g, "Universe", EnrichmentError) for g in universe)
