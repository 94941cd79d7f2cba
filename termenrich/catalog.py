"""
Term Catalog for termenrich

Builds the filtered, immutable term -> gene catalog shared by ORA and GSEA:
- restricts every term to the analysis universe
- keeps terms whose restricted size lies in [min_size, max_size]
- records what was dropped and why
"""

import hashlib
import logging
import math
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple

from .errors import EmptyCatalog, InvalidSizeBounds
from .validation import GeneId, check_universe, normalize_mapping

logger = logging.getLogger("TermEnrich.Catalog")


def check_size_bounds(min_size: int, max_size: Optional[float]) -> Tuple[int, float]:
    """
    Validate gene set size bounds.

    ``max_size`` of None or ``math.inf`` means unbounded.

    Returns:
        Tuple of (min_size, max_size) with max_size as a number
    """
    if isinstance(min_size, bool) or not isinstance(min_size, int) or min_size < 1:
        raise InvalidSizeBounds(f"min_size must be a positive integer, got {min_size!r}")
    if max_size is None:
        max_size = math.inf
    if isinstance(max_size, bool) or not (isinstance(max_size, int) or max_size == math.inf):
        raise InvalidSizeBounds(f"max_size must be a positive integer or None, got {max_size!r}")
    if min_size > max_size:
        raise InvalidSizeBounds(f"min_size ({min_size}) > max_size ({max_size})")
    return min_size, max_size


@dataclass(frozen=True)
class FilteredCatalog:
    """
    Read-only term catalog after universe intersection and size filtering.

    ``terms`` maps each retained term id to its genes inside ``universe``.
    """

    terms: Mapping[str, FrozenSet[GeneId]]
    universe: FrozenSet[GeneId]
    min_size: int
    max_size: float
    descriptions: Mapping[str, str] = field(default_factory=dict)
    ontologies: Mapping[str, str] = field(default_factory=dict)
    n_input_terms: int = 0
    dropped_small: int = 0
    dropped_large: int = 0

    def __len__(self) -> int:
        return len(self.terms)

    def __contains__(self, term_id: str) -> bool:
        return term_id in self.terms

    def __iter__(self):
        return iter(self.term_ids)

    @property
    def term_ids(self) -> List[str]:
        """Retained term ids in ascending order"""
        return sorted(self.terms)

    @property
    def universe_size(self) -> int:
        return len(self.universe)

    def genes(self, term_id: str) -> FrozenSet[GeneId]:
        return self.terms[term_id]

    def size(self, term_id: str) -> int:
        return len(self.terms[term_id])

    def description(self, term_id: str) -> str:
        return self.descriptions.get(term_id, "")

    def ontology(self, term_id: str) -> str:
        """Ontology tag of a term (e.g. BP, MF, CC), or an empty string"""
        return self.ontologies.get(term_id, "")

    def restrict(self, universe: Iterable[Any]) -> "FilteredCatalog":
        """Rebuild against a narrower universe with the same size bounds"""
        universe = frozenset(universe) & self.universe
        return build_catalog(
            self.terms,
            universe=universe,
            min_size=self.min_size,
            max_size=self.max_size,
            descriptions=self.descriptions,
            ontologies=self.ontologies,
        )

    def stats(self) -> Dict[str, Any]:
        """
        Summary statistics of the catalog.

        Returns:
            Dictionary with input/retained/dropped term counts and size summary
        """
        sizes = [len(genes) for genes in self.terms.values()]
        return {
            "input_terms": self.n_input_terms,
            "retained_terms": len(sizes),
            "dropped_small": self.dropped_small,
            "dropped_large": self.dropped_large,
            "universe_size": self.universe_size,
            "avg_size": sum(sizes) / len(sizes),
            "min_size": min(sizes),
            "max_size": max(sizes),
        }

    def fingerprint(self) -> str:
        """
        Short SHA256 of the retained terms and their genes.

        Based on sorted term ids and sorted gene lists, so it does not depend
        on insertion order.
        """
        sorted_items = []
        for term_id in self.term_ids:
            genes = sorted(str(g) for g in self.terms[term_id])
            sorted_items.append(f"{term_id}::{','.join(genes)}")
        content = "||".join(sorted_items)
        return hashlib.sha256(content.encode()).hexdigest()[:16]


def build_catalog(
    mapping,
    universe: Optional[Iterable[Any]] = None,
    min_size: int = 10,
    max_size: Optional[float] = 500,
    descriptions: Optional[Mapping[str, str]] = None,
    ontologies: Optional[Mapping[str, str]] = None,
) -> FilteredCatalog:
    """
    Build a filtered catalog from a term -> gene mapping.

    Args:
        mapping: dict of term -> genes, ``(term, gene)`` pairs, or a
            two-column DataFrame
        universe: Background genes (default: every gene in the mapping)
        min_size: Smallest retained term size after universe intersection
        max_size: Largest retained term size (None = unbounded)
        descriptions: Optional term id -> human-readable name
        ontologies: Optional term id -> ontology tag

    Returns:
        FilteredCatalog

    Raises:
        InvalidSizeBounds: min_size > max_size or non-positive bounds
        EmptyCatalog: no term survives filtering
    """
    min_size, max_size = check_size_bounds(min_size, max_size)
    terms = normalize_mapping(mapping)
    universe = check_universe(universe)

    mapped_genes = frozenset().union(*terms.values()) if terms else frozenset()
    filtered_universe = mapped_genes if universe is None else mapped_genes & universe

    kept: Dict[str, FrozenSet[GeneId]] = {}
    too_small = 0
    too_large = 0
    for term_id, genes in terms.items():
        in_universe = genes & filtered_universe
        if len(in_universe) < min_size:
            too_small += 1
            continue
        if len(in_universe) > max_size:
            too_large += 1
            continue
        kept[term_id] = in_universe

    logger.info(
        f"Filtered catalog: {len(kept)}/{len(terms)} terms kept "
        f"(size in [{min_size}, {max_size}]), universe={len(filtered_universe)}"
    )

    if not kept:
        raise EmptyCatalog(
            f"No term has between {min_size} and {max_size} genes in the universe "
            f"({len(terms)} terms, {len(filtered_universe)} universe genes; "
            f"{too_small} too small, {too_large} too large)"
        )

    descriptions = dict(descriptions or {})
    ontologies = dict(ontologies or {})
    return FilteredCatalog(
        terms=MappingProxyType(kept),
        universe=filtered_universe,
        min_size=min_size,
        max_size=max_size,
        descriptions=MappingProxyType({t: str(descriptions[t]) for t in kept if t in descriptions}),
        ontologies=MappingProxyType({t: str(ontologies[t]) for t in kept if t in ontologies}),
        n_input_terms=len(terms),
        dropped_small=too_small,
        dropped_large=too_large,
    )
