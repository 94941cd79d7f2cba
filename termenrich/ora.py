"""
Over-Representation Analysis (ORA) for termenrich

One-sided hypergeometric test of a query gene set against every term of a
filtered catalog. Only over-representation is tested.
"""

import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable, List

from scipy.stats import hypergeom

from .catalog import FilteredCatalog
from .errors import EmptyQuerySet
from .validation import GeneId, validate_gene_list

logger = logging.getLogger("TermEnrich.ORA")


@dataclass
class ORAResult:
    """Raw ORA statistics for a single term (before correction)"""

    term_id: str
    description: str

    # Gene counts
    set_size: int  # K: term genes in universe
    count: int  # k: query genes in term
    query_size: int  # n: query genes in universe
    universe_size: int  # N

    p_value: float
    hit_genes: List[GeneId]
    ontology: str = ""

    @property
    def gene_ratio(self) -> float:
        return self.count / self.query_size

    @property
    def bg_ratio(self) -> float:
        return self.set_size / self.universe_size

    @property
    def fold_enrichment(self) -> float:
        return self.gene_ratio / self.bg_ratio

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary with derived ratios"""
        d = asdict(self)
        d["gene_ratio"] = self.gene_ratio
        d["bg_ratio"] = self.bg_ratio
        d["fold_enrichment"] = self.fold_enrichment
        return d


def hypergeometric_test(
    hit_in_term: int,
    term_size: int,
    query_size: int,
    universe_size: int
) -> float:
    """
    Upper-tail hypergeometric p-value.

    P(X >= k) where X ~ Hypergeometric(N, K, n):
    - k: query genes in the term
    - N: universe size
    - K: term size
    - n: query size

    Returns:
        P-value; exactly 1.0 when k == 0
    """
    if hit_in_term <= 0:
        return 1.0

    # P(X >= k) = 1 - P(X <= k-1)
    p_value = hypergeom.sf(hit_in_term - 1, universe_size, term_size, query_size)

    return float(min(max(p_value, 0.0), 1.0))


def run_ora(gene_list: Iterable[Any], catalog: FilteredCatalog) -> List[ORAResult]:
    """
    Run Over-Representation Analysis on every term of the catalog.

    Args:
        gene_list: Query genes; genes outside the catalog universe are ignored
        catalog: Filtered term catalog (defines the universe)

    Returns:
        List of ORAResult, one per catalog term, in catalog term order

    Raises:
        EmptyQuerySet: no query gene lies in the universe
    """
    genes, warnings_list = validate_gene_list(gene_list)
    for w in warnings_list:
        logger.warning(f"ORA input: {w}")

    query = frozenset(genes) & catalog.universe
    if not query:
        raise EmptyQuerySet(
            f"None of the {len(genes)} query genes is in the universe "
            f"({catalog.universe_size} genes)"
        )

    universe_size = catalog.universe_size
    logger.info(
        f"Running ORA: {len(query)}/{len(genes)} query genes in universe, "
        f"{len(catalog)} terms, universe={universe_size}"
    )

    results = []
    for term_id in catalog.term_ids:
        term_genes = catalog.genes(term_id)
        hit_genes = query & term_genes

        p_value = hypergeometric_test(len(hit_genes), len(term_genes), len(query), universe_size)

        results.append(ORAResult(
            term_id=term_id,
            description=catalog.description(term_id),
            set_size=len(term_genes),
            count=len(hit_genes),
            query_size=len(query),
            universe_size=universe_size,
            p_value=p_value,
            hit_genes=sorted(hit_genes, key=str),
            ontology=catalog.ontology(term_id),
        ))

    return results
