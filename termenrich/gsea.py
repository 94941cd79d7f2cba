"""
GSEA (Gene Set Enrichment Analysis) for termenrich

Pre-ranked GSEA with a weighted running-sum statistic and a permutation null:
- enrichment score (ES), rank at the extremum and leading edge per term
- label-permutation null split into fixed-size, independently seeded batches
- per-sign normalisation (NES) and add-one permutation p-values

Batches run on a thread pool; per-batch accumulators are reduced in batch
order, so results depend only on the seed and never on the worker count.
"""

import logging
import math
import threading
import warnings
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from functools import cached_property
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .catalog import FilteredCatalog
from .errors import InsufficientPermutations, InvalidConfiguration, InvalidRanking, RunCancelled
from .validation import GeneId, ranking_pairs, validate_gene_ranking

logger = logging.getLogger("TermEnrich.GSEA")

PERMUTATION_TYPES = ("label", "gene_set")

# Upper bound on the int32 permutation block held by one batch (elements)
MAX_BLOCK_ELEMENTS = 4_000_000
DEFAULT_BATCH_SIZE = 1000


class GeneRanking:
    """
    Genes ordered by score, highest first.

    The constructor expects an already sorted ranking and validates it;
    ``from_scores`` sorts arbitrary input (stable, so ties keep input order).
    """

    def __init__(self, genes: Sequence[GeneId], scores: Sequence[float]):
        genes, scores = list(genes), list(scores)
        if len(genes) != len(scores):
            raise InvalidRanking(f"{len(genes)} genes but {len(scores)} scores")
        genes, scores = validate_gene_ranking(zip(genes, scores))
        if len(genes) < 2:
            raise InvalidRanking(f"Ranking needs at least 2 genes, got {len(genes)}")
        if np.any(np.diff(scores) > 0):
            first = int(np.argmax(np.diff(scores) > 0))
            raise InvalidRanking(
                f"Ranking is not sorted by score descending at position {first + 1}: "
                f"{scores[first]} < {scores[first + 1]}"
            )
        scores.setflags(write=False)
        self.genes: Tuple[GeneId, ...] = tuple(genes)
        self.scores: np.ndarray = scores

    @classmethod
    def from_scores(cls, ranking) -> "GeneRanking":
        """
        Build a ranking from unsorted ``gene -> score`` data.

        Args:
            ranking: dict, pandas Series (index = gene) or (gene, score) pairs
        """
        genes, scores = validate_gene_ranking(ranking_pairs(ranking))
        order = np.argsort(-scores, kind="stable")
        return cls([genes[i] for i in order], scores[order])

    def __len__(self) -> int:
        return len(self.genes)

    @cached_property
    def index(self) -> Dict[GeneId, int]:
        """Gene id -> 0-based position"""
        return {gene: i for i, gene in enumerate(self.genes)}

    def to_series(self) -> pd.Series:
        return pd.Series(self.scores, index=list(self.genes), name="score")

    def restrict(self, genes: Iterable[Any]) -> "GeneRanking":
        """Sub-ranking of the given genes, in ranking order"""
        keep = set(genes)
        idx = [i for i, g in enumerate(self.genes) if g in keep]
        return GeneRanking([self.genes[i] for i in idx], self.scores[idx])


@dataclass
class GSEAResult:
    """Raw GSEA statistics for a single term (before correction)"""

    term_id: str
    description: str
    set_size: int

    # GSEA statistics
    es: float  # Enrichment Score
    nes: float  # Normalized Enrichment Score
    p_value: float

    # Leading edge
    rank: int  # 1-based position of the running-sum extremum
    leading_edge: List[GeneId]
    tags: float  # fraction of the set in the leading edge
    list_fraction: float  # fraction of the ranking before (or after) the peak
    signal: float
    ontology: str = ""

    def to_dict(self) -> Dict:
        """Convert to dictionary"""
        return asdict(self)


@dataclass
class GSEARun:
    """Per-term results of one engine call plus permutation bookkeeping"""

    results: List[GSEAResult]
    n_perm: int
    n_perm_completed: int
    partial: bool = False
    warnings: List[str] = field(default_factory=list)


class _NullAccumulator:
    """Per-term, per-sign counts and sums of permuted ES; merged by addition"""

    def __init__(self, n_terms: int):
        self.n_nonneg = np.zeros(n_terms, dtype=np.int64)  # perm ES >= 0
        self.n_neg = np.zeros(n_terms, dtype=np.int64)  # perm ES < 0
        self.n_extreme = np.zeros(n_terms, dtype=np.int64)  # as or more extreme than observed
        self.n_pos = np.zeros(n_terms, dtype=np.int64)  # perm ES > 0
        self.sum_pos = np.zeros(n_terms)
        self.sum_neg = np.zeros(n_terms)

    def add(self, t: int, perm_es: np.ndarray, observed: float):
        self.n_nonneg[t] += np.count_nonzero(perm_es >= 0)
        self.n_neg[t] += np.count_nonzero(perm_es < 0)
        if observed >= 0:
            self.n_extreme[t] += np.count_nonzero(perm_es >= observed)
        else:
            self.n_extreme[t] += np.count_nonzero(perm_es <= observed)
        positive = perm_es > 0
        self.n_pos[t] += np.count_nonzero(positive)
        self.sum_pos[t] += perm_es[positive].sum()
        self.sum_neg[t] += perm_es[perm_es < 0].sum()

    def merge(self, other: "_NullAccumulator"):
        self.n_nonneg += other.n_nonneg
        self.n_neg += other.n_neg
        self.n_extreme += other.n_extreme
        self.n_pos += other.n_pos
        self.sum_pos += other.sum_pos
        self.sum_neg += other.sum_neg


def hit_weights(scores: np.ndarray, exponent: float) -> np.ndarray:
    """|score| ** exponent (exponent 0 gives the unweighted statistic)"""
    return np.abs(scores) ** exponent


def _walk_at_hits(positions: np.ndarray, weights: np.ndarray, n_genes: int
                  ) -> Tuple[np.ndarray, np.ndarray]:
    """
    Running-sum values just after and just before every hit.

    ``positions`` is (batch, k), sorted ascending per row. The walk only
    turns at hits, so these 2k values bound the whole walk.
    """
    k = positions.shape[1]
    hw = weights[positions]
    norm = hw.sum(axis=1, keepdims=True)
    flat = norm[:, 0] == 0
    if flat.any():
        # all hits have score 0: fall back to unit hit weights
        hw = np.where(flat[:, None], 1.0, hw)
        norm = np.where(flat[:, None], float(k), norm)

    step = hw / norm
    misses = (positions - np.arange(k)) / max(n_genes - k, 1)
    after = np.cumsum(step, axis=1) - misses
    before = after - step
    return after, before


def enrichment_scores(positions: np.ndarray, weights: np.ndarray, n_genes: int) -> np.ndarray:
    """
    ES for each row of sorted hit positions.

    The larger-magnitude extreme of the walk, with its sign; an exact tie
    between the positive and negative extremes gives 0.
    """
    after, before = _walk_at_hits(positions, weights, n_genes)
    max_dev = np.maximum(after.max(axis=1), 0.0)
    min_dev = np.minimum(before.min(axis=1), 0.0)
    return np.where(max_dev > -min_dev, max_dev, np.where(max_dev < -min_dev, min_dev, 0.0))


def observed_enrichment(positions: np.ndarray, weights: np.ndarray, n_genes: int
                        ) -> Tuple[float, int, np.ndarray]:
    """
    ES, 0-based peak position and leading-edge positions for one term.

    Positive ES: the leading edge is every hit up to and including the peak.
    Negative ES: the peak sits just before a hit and the leading edge is every
    hit from there to the bottom of the ranking.
    """
    after, before = _walk_at_hits(positions[None, :], weights, n_genes)
    after, before = after[0], before[0]
    j_max = int(np.argmax(after))
    j_min = int(np.argmin(before))
    max_dev = max(after[j_max], 0.0)
    min_dev = min(before[j_min], 0.0)

    if max_dev > -min_dev:
        return float(max_dev), int(positions[j_max]), positions[:j_max + 1]
    if max_dev < -min_dev:
        return float(min_dev), int(positions[j_min]) - 1, positions[j_min:]
    return 0.0, -1, positions[:0]


def running_enrichment_score(ranking: GeneRanking, genes: Iterable[Any], exponent: float = 1.0) -> pd.Series:
    """
    Full running-sum walk of a gene set over a ranking.

    Genes not in the ranking are ignored.

    Returns:
        Series indexed by ranked gene, value after visiting that gene
    """
    members = set(genes)
    hit = np.fromiter((g in members for g in ranking.genes), dtype=bool, count=len(ranking))
    k = int(hit.sum())
    n_genes = len(ranking)
    if k == 0:
        return pd.Series(np.zeros(n_genes), index=list(ranking.genes), name="running_es")

    w = hit_weights(ranking.scores, exponent)
    norm = w[hit].sum()
    if norm == 0:
        w = np.ones(n_genes)
        norm = float(k)
    steps = np.where(hit, w / norm, -1.0 / max(n_genes - k, 1))
    return pd.Series(np.cumsum(steps), index=list(ranking.genes), name="running_es")


class RankedEnrichmentEngine:
    """
    Permutation-based pre-ranked GSEA.

    Args:
        n_perm: Number of permutations
        exponent: Weight exponent p for hit steps (|score| ** p)
        seed: Seed governing the whole permutation sequence
        n_jobs: Worker threads for the permutation batches
        permutation: 'label' (one gene-label shuffle shared by all terms per
            permutation) or 'gene_set' (independent random set per term)
        batch_size: Permutations per batch; default derives from ranking length
    """

    def __init__(
        self,
        n_perm: int = 1000,
        exponent: float = 1.0,
        seed: int = 42,
        n_jobs: int = 1,
        permutation: str = "label",
        batch_size: Optional[int] = None,
    ):
        if isinstance(n_perm, bool) or not isinstance(n_perm, int) or n_perm < 1:
            raise InvalidConfiguration(f"n_perm must be a positive integer, got {n_perm!r}")
        if not isinstance(exponent, (int, float)) or not math.isfinite(exponent) or exponent < 0:
            raise InvalidConfiguration(f"exponent must be a non-negative real, got {exponent!r}")
        if isinstance(seed, bool) or not isinstance(seed, int):
            raise InvalidConfiguration(f"seed must be an integer, got {seed!r}")
        if isinstance(n_jobs, bool) or not isinstance(n_jobs, int) or n_jobs < 1:
            raise InvalidConfiguration(f"n_jobs must be a positive integer, got {n_jobs!r}")
        if permutation not in PERMUTATION_TYPES:
            raise InvalidConfiguration(
                f"permutation must be one of {PERMUTATION_TYPES}, got {permutation!r}"
            )
        if batch_size is not None and (not isinstance(batch_size, int) or batch_size < 1):
            raise InvalidConfiguration(f"batch_size must be a positive integer, got {batch_size!r}")

        self.n_perm = n_perm
        self.exponent = float(exponent)
        self.seed = seed
        self.n_jobs = n_jobs
        self.permutation = permutation
        self.batch_size = batch_size

    def _batch_size_for(self, n_genes: int) -> int:
        if self.batch_size is not None:
            return min(self.batch_size, self.n_perm)
        return max(1, min(DEFAULT_BATCH_SIZE, MAX_BLOCK_ELEMENTS // n_genes, self.n_perm))

    def _batch_rng(self, batch_index: int) -> np.random.Generator:
        return np.random.default_rng(np.random.SeedSequence(self.seed, spawn_key=(batch_index,)))

    def run(
        self,
        ranking: GeneRanking,
        catalog: FilteredCatalog,
        pvalue_cutoff: float = 0.05,
        cancel_event: Optional[threading.Event] = None,
        progress_callback: Optional[Callable[[int, int], None]] = None,
    ) -> GSEARun:
        """
        Score every catalog term against the ranking.

        Args:
            ranking: Validated gene ranking
            catalog: Filtered catalog whose universe lies inside the ranking
            pvalue_cutoff: Used only to check the permutation budget
            cancel_event: When set, no further batches start; finished
                batches are kept and the run is flagged partial
            progress_callback: Called as callback(completed_batches, total_batches)

        Returns:
            GSEARun with one GSEAResult per catalog term

        Raises:
            InvalidRanking: catalog genes missing from the ranking
            RunCancelled: cancelled before any permutation batch finished
        """
        if not 0 < pvalue_cutoff <= 1:
            raise InvalidConfiguration(f"pvalue_cutoff must lie in (0, 1], got {pvalue_cutoff!r}")
        if not isinstance(ranking, GeneRanking):
            raise InvalidRanking("ranking must be a GeneRanking; use GeneRanking.from_scores()")
        missing = [g for g in catalog.universe if g not in ranking.index]
        if missing:
            raise InvalidRanking(
                f"{len(missing)} catalog genes are not in the ranking, e.g. {missing[:5]}"
            )

        n_genes = len(ranking)
        term_ids = catalog.term_ids
        n_terms = len(term_ids)
        weights = hit_weights(ranking.scores, self.exponent)
        term_positions = [
            np.sort(np.fromiter((ranking.index[g] for g in catalog.genes(t)), dtype=np.int64))
            for t in term_ids
        ]

        run_warnings = []
        if self.n_perm < n_terms / pvalue_cutoff:
            msg = (
                f"n_perm={self.n_perm} cannot resolve pvalue_cutoff={pvalue_cutoff} across "
                f"{n_terms} terms; use at least {math.ceil(n_terms / pvalue_cutoff)} permutations"
            )
            warnings.warn(msg, InsufficientPermutations, stacklevel=2)
            logger.warning(f"GSEA permutation budget: {msg}")
            run_warnings.append(msg)

        observed = [observed_enrichment(pos, weights, n_genes) for pos in term_positions]
        observed_es = np.array([o[0] for o in observed])

        batch_size = self._batch_size_for(n_genes)
        n_batches = math.ceil(self.n_perm / batch_size)
        logger.info(
            f"Running GSEA: {n_genes} ranked genes, {n_terms} terms, "
            f"{self.n_perm} permutations ({n_batches} batches, n_jobs={self.n_jobs}, "
            f"{self.permutation} permutation)"
        )

        def work(batch_index: int) -> _NullAccumulator:
            size = min(batch_size, self.n_perm - batch_index * batch_size)
            return self._permute_batch(batch_index, size, term_positions, observed_es, weights, n_genes)

        null, completed = self._run_batches(work, n_batches, cancel_event, progress_callback)
        n_completed = min(completed * batch_size, self.n_perm)
        partial = completed < n_batches
        if partial:
            if completed == 0:
                raise RunCancelled("GSEA cancelled before any permutation batch completed")
            msg = (
                f"GSEA cancelled: p-values and NES are based on {n_completed} of "
                f"{self.n_perm} permutations"
            )
            logger.warning(msg)
            run_warnings.append(msg)

        results = []
        for t, term_id in enumerate(term_ids):
            es, peak, leading = observed[t]
            results.append(self._summarize(
                term_id, catalog, ranking, es, peak, leading, null, t
            ))

        logger.info(
            f"GSEA complete: {sum(r.es > 0 for r in results)} positive, "
            f"{sum(r.es < 0 for r in results)} negative ES terms"
        )
        return GSEARun(
            results=results,
            n_perm=self.n_perm,
            n_perm_completed=n_completed,
            partial=partial,
            warnings=run_warnings,
        )

    def _permute_batch(self, batch_index, size, term_positions, observed_es, weights, n_genes):
        rng = self._batch_rng(batch_index)
        acc = _NullAccumulator(len(term_positions))
        block = np.tile(np.arange(n_genes, dtype=np.int32), (size, 1))

        if self.permutation == "label":
            # row r: position taken by each gene (by original index) in permutation r
            rng.permuted(block, axis=1, out=block)
            for t, genes_at in enumerate(term_positions):
                pos = np.sort(block[:, genes_at], axis=1)
                acc.add(t, enrichment_scores(pos, weights, n_genes), observed_es[t])
        else:
            for t, genes_at in enumerate(term_positions):
                rng.permuted(block, axis=1, out=block)
                pos = np.sort(block[:, :len(genes_at)], axis=1)
                acc.add(t, enrichment_scores(pos, weights, n_genes), observed_es[t])
        return acc

    def _run_batches(self, work, n_batches, cancel_event, progress_callback):
        total = None
        completed = 0

        def cancelled() -> bool:
            return cancel_event is not None and cancel_event.is_set()

        def reduce(acc):
            nonlocal total, completed
            if total is None:
                total = acc
            else:
                total.merge(acc)
            completed += 1
            if progress_callback:
                progress_callback(completed, n_batches)

        if self.n_jobs == 1:
            for b in range(n_batches):
                if cancelled():
                    break
                reduce(work(b))
            return total, completed

        # Bounded look-ahead keeps memory flat; reduction follows batch order
        with ThreadPoolExecutor(max_workers=self.n_jobs) as executor:
            pending = {}
            next_submit = 0
            for b in range(n_batches):
                while (next_submit < n_batches and next_submit - b < 2 * self.n_jobs
                       and not cancelled()):
                    pending[next_submit] = executor.submit(work, next_submit)
                    next_submit += 1
                if b not in pending:
                    break
                reduce(pending.pop(b).result())
        return total, completed

    @staticmethod
    def _summarize(term_id, catalog, ranking, es, peak, leading, null, t) -> GSEAResult:
        n_genes = len(ranking)
        set_size = catalog.size(term_id)

        if es >= 0:
            p_value = (null.n_extreme[t] + 1) / (null.n_nonneg[t] + 1)
            mean = null.sum_pos[t] / null.n_pos[t] if null.n_pos[t] else math.nan
        else:
            p_value = (null.n_extreme[t] + 1) / (null.n_neg[t] + 1)
            mean = abs(null.sum_neg[t] / null.n_neg[t]) if null.n_neg[t] else math.nan
        nes = 0.0 if es == 0 else es / mean

        rank = peak + 1
        tags = len(leading) / set_size
        if es >= 0:
            list_fraction = rank / n_genes
        else:
            list_fraction = (n_genes - rank) / n_genes
        signal = tags * (1 - list_fraction) * n_genes / max(n_genes - set_size, 1)

        return GSEAResult(
            term_id=term_id,
            description=catalog.description(term_id),
            set_size=set_size,
            es=es,
            nes=float(nes),
            p_value=float(min(p_value, 1.0)),
            rank=rank,
            leading_edge=[ranking.genes[p] for p in leading],
            tags=tags,
            list_fraction=list_fraction,
            signal=signal,
            ontology=catalog.ontology(term_id),
        )


def run_gsea_prerank(
    ranking: GeneRanking,
    catalog: FilteredCatalog,
    n_perm: int = 1000,
    exponent: float = 1.0,
    seed: int = 42,
    n_jobs: int = 1,
    permutation: str = "label",
    pvalue_cutoff: float = 0.05,
    **run_kwargs,
) -> GSEARun:
    """Convenience wrapper: build an engine and run it once"""
    engine = RankedEnrichmentEngine(
        n_perm=n_perm, exponent=exponent, seed=seed, n_jobs=n_jobs, permutation=permutation
    )
    return engine.run(ranking, catalog, pvalue_cutoff=pvalue_cutoff, **run_kwargs)
