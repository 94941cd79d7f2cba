"""
Reproducibility Logger for termenrich

Tracks the metadata needed to reproduce an enrichment run:
- software and dependency versions
- catalog fingerprint and size bounds
- analysis parameters (including the permutation seed)
- input/output summaries and warnings
"""

import json
import logging
import sys
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from importlib import metadata as importlib_metadata
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .catalog import FilteredCatalog

logger = logging.getLogger("TermEnrich.Repro")

TRACKED_DEPENDENCIES = ("numpy", "scipy", "pandas", "statsmodels")


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def package_version() -> str:
    from . import __version__
    return __version__


@dataclass
class PipelineMetadata:
    """Complete metadata for a single enrichment analysis run"""

    # Unique identifiers
    run_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: str = field(default_factory=_utcnow)

    # Software versions
    software_version: str = ""
    python_version: str = ""
    dependencies: Dict[str, str] = field(default_factory=dict)

    # Catalog information
    catalog_hash: str = ""
    catalog_stats: Dict[str, Any] = field(default_factory=dict)

    # Analysis parameters
    method: str = ""  # 'ORA' or 'GSEA'
    parameters: Dict[str, Any] = field(default_factory=dict)

    input_summary: Dict[str, Any] = field(default_factory=dict)
    output_summary: Dict[str, Any] = field(default_factory=dict)

    warnings: list = field(default_factory=list)

    def to_dict(self) -> Dict:
        """Convert to dictionary for JSON/YAML serialization"""
        return asdict(self)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, default=str)

    def save(self, output_path: Path):
        """Save metadata to JSON file"""
        with open(output_path, "w") as f:
            f.write(self.to_json())
        logger.info(f"Saved pipeline metadata to {output_path}")


class ReproducibilityLogger:
    """
    Collects reproducibility metadata while an analysis runs.
    """

    def __init__(self):
        self.metadata = PipelineMetadata()
        self._initialize_versions()

    def _initialize_versions(self):
        """Record python, package and dependency versions"""
        self.metadata.software_version = package_version()
        self.metadata.python_version = (
            f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}"
        )

        deps = {}
        for name in TRACKED_DEPENDENCIES:
            try:
                deps[name] = importlib_metadata.version(name)
            except importlib_metadata.PackageNotFoundError:
                deps[name] = "unknown"
        self.metadata.dependencies = deps

    def set_catalog_info(self, catalog: FilteredCatalog):
        """Record the catalog fingerprint and filtering summary"""
        self.metadata.catalog_hash = catalog.fingerprint()
        self.metadata.catalog_stats = catalog.stats()

    def set_method(self, method: str):
        """Set analysis method ('ORA' or 'GSEA')"""
        self.metadata.method = method

    def set_parameters(self, **params):
        """
        Set analysis parameters.

        Common parameters:
        - pvalue_cutoff / qvalue_cutoff
        - p_adjust_method
        - min_size / max_size
        - n_perm, exponent, seed, n_jobs, permutation (GSEA)
        """
        self.metadata.parameters.update(params)

    def set_input_summary(self, **summary):
        """
        Set input data summary.

        Common fields:
        - query_genes / query_in_universe (ORA)
        - ranked_genes (GSEA)
        - universe_size
        """
        self.metadata.input_summary.update(summary)

    def set_output_summary(self, **summary):
        """
        Set output summary.

        Common fields:
        - tested_terms
        - significant_terms
        - top_term
        """
        self.metadata.output_summary.update(summary)

    def add_warning(self, warning: str):
        self.metadata.warnings.append(warning)

    def get_metadata(self) -> PipelineMetadata:
        return self.metadata

    def export_yaml(self, output_path: Path):
        """Export pipeline metadata as YAML"""
        with open(output_path, "w") as f:
            yaml.safe_dump(json.loads(self.metadata.to_json()), f, default_flow_style=False)
        logger.info(f"Saved pipeline metadata (YAML) to {output_path}")

    def export_json(self, output_path: Path):
        """Export pipeline metadata as JSON"""
        self.metadata.save(output_path)


def load_metadata(path: Path) -> Optional[PipelineMetadata]:
    """Read metadata previously written by export_json or export_yaml"""
    path = Path(path)
    with open(path, "r") as f:
        if path.suffix.lower() in (".yaml", ".yml"):
            data = yaml.safe_load(f)
        else:
            data = json.load(f)
    if not data:
        return None
    return PipelineMetadata(**data)
