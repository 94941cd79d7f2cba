"""
Result Tables for termenrich

Joins raw per-term statistics with adjusted p-values and q-values, applies
cutoffs and orders rows by adjusted p-value (ties by term id).
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

from .multitest import Correction

logger = logging.getLogger("TermEnrich.Results")

SHARED_COLUMNS = ["term_id", "description", "ontology", "set_size"]
PVALUE_COLUMNS = ["pvalue", "p_adjust", "qvalue"]

ORA_COLUMNS = SHARED_COLUMNS + [
    "count", "gene_ratio", "bg_ratio", "fold_enrichment",
] + PVALUE_COLUMNS + ["hit_genes"]

GSEA_COLUMNS = SHARED_COLUMNS + [
    "enrichment_score", "nes", "rank", "leading_edge", "tags", "list_fraction", "signal",
] + PVALUE_COLUMNS


def ora_rows(raw_results) -> List[Dict[str, Any]]:
    return [{
        "term_id": r.term_id,
        "description": r.description,
        "ontology": r.ontology,
        "set_size": r.set_size,
        "count": r.count,
        "gene_ratio": r.gene_ratio,
        "bg_ratio": r.bg_ratio,
        "fold_enrichment": r.fold_enrichment,
        "pvalue": r.p_value,
        "hit_genes": r.hit_genes,
    } for r in raw_results]


def gsea_rows(raw_results) -> List[Dict[str, Any]]:
    return [{
        "term_id": r.term_id,
        "description": r.description,
        "ontology": r.ontology,
        "set_size": r.set_size,
        "enrichment_score": r.es,
        "nes": r.nes,
        "rank": r.rank,
        "leading_edge": r.leading_edge,
        "tags": r.tags,
        "list_fraction": r.list_fraction,
        "signal": r.signal,
        "pvalue": r.p_value,
    } for r in raw_results]


@dataclass
class EnrichmentTable:
    """
    Final, filtered enrichment results of one ORA or GSEA call.

    ``data`` holds the surviving rows; ``unfiltered`` every tested term with
    its corrected p-values (same column layout).
    """

    method: str  # 'ORA' or 'GSEA'
    data: pd.DataFrame
    unfiltered: pd.DataFrame
    p_adjust_method: str
    pvalue_cutoff: float
    qvalue_cutoff: Optional[float]
    warnings: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.data)

    @property
    def empty(self) -> bool:
        return self.data.empty

    @property
    def n_tested(self) -> int:
        return len(self.unfiltered)

    @property
    def term_ids(self) -> List[str]:
        return self.data["term_id"].tolist()

    def to_records(self) -> List[Dict[str, Any]]:
        """Rows as plain dictionaries, in table order"""
        return self.data.to_dict(orient="records")


def _sort(frame: pd.DataFrame) -> pd.DataFrame:
    return frame.sort_values(["p_adjust", "term_id"], kind="mergesort").reset_index(drop=True)


def assemble(
    method: str,
    rows: Sequence[Dict[str, Any]],
    correction: Correction,
    pvalue_cutoff: float = 0.05,
    qvalue_cutoff: Optional[float] = None,
    warnings: Optional[List[str]] = None,
) -> EnrichmentTable:
    """
    Build the result table for one run.

    Args:
        method: 'ORA' or 'GSEA' (selects the column layout)
        rows: Raw per-term rows (``ora_rows`` / ``gsea_rows``), aligned with
            the correction arrays
        correction: Adjusted p-values and q-values of this run
        pvalue_cutoff: Keep rows with p_adjust <= cutoff
        qvalue_cutoff: Keep rows with qvalue <= cutoff (skipped when None or
            when q-values are undefined for this run)

    Returns:
        EnrichmentTable; an empty one keeps every column
    """
    columns = ORA_COLUMNS if method == "ORA" else GSEA_COLUMNS
    if len(rows) != len(correction.p_adjust):
        raise ValueError(f"{len(rows)} rows but {len(correction.p_adjust)} adjusted p-values")

    frame = pd.DataFrame(list(rows), columns=[c for c in columns if c not in ("p_adjust", "qvalue")])
    frame["p_adjust"] = np.asarray(correction.p_adjust, dtype=float)
    frame["qvalue"] = np.asarray(correction.qvalues, dtype=float)
    frame = _sort(frame[columns])

    keep = frame["p_adjust"] <= pvalue_cutoff
    if qvalue_cutoff is not None:
        if frame["qvalue"].isna().all() and not frame.empty:
            logger.info("q-values undefined for this run; q-value cutoff not applied")
        else:
            keep &= frame["qvalue"] <= qvalue_cutoff
    filtered = frame[keep].reset_index(drop=True)

    cutoff_desc = f"p_adjust <= {pvalue_cutoff}"
    if qvalue_cutoff is not None:
        cutoff_desc += f", qvalue <= {qvalue_cutoff}"
    logger.info(f"{method} result table: {len(filtered)}/{len(frame)} terms pass {cutoff_desc}")

    return EnrichmentTable(
        method=method,
        data=filtered,
        unfiltered=frame,
        p_adjust_method=correction.method,
        pvalue_cutoff=pvalue_cutoff,
        qvalue_cutoff=qvalue_cutoff,
        warnings=list(warnings or []),
    )
