"""
Analysis Configuration for termenrich

Parameters shared by ORA and GSEA runs, with range checks. Sources:
- keyword arguments / dicts
- YAML files
- TERMENRICH_* environment variables (a .env file is honoured)
"""

import logging
import math
import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from dotenv import load_dotenv

from .catalog import check_size_bounds
from .errors import InvalidConfiguration, InvalidSizeBounds
from .gsea import PERMUTATION_TYPES
from .multitest import resolve_method

logger = logging.getLogger("TermEnrich.Config")

ENV_PREFIX = "TERMENRICH_"


@dataclass(frozen=True)
class EnrichmentConfig:
    """
    Validated analysis parameters.

    Defaults follow clusterProfiler (BH, q-value cutoff 0.2 for ORA, sizes
    10..500) with a fixed seed for reproducible GSEA.
    """

    pvalue_cutoff: float = 0.05
    qvalue_cutoff: Optional[float] = 0.2
    p_adjust_method: str = "BH"
    min_size: int = 10
    max_size: Optional[int] = 500

    # GSEA only
    n_perm: int = 1000
    exponent: float = 1.0
    seed: int = 42
    n_jobs: int = 1
    permutation: str = "label"

    def __post_init__(self):
        if not _is_real(self.pvalue_cutoff) or not 0 < self.pvalue_cutoff <= 1:
            raise InvalidConfiguration(f"pvalue_cutoff must lie in (0, 1], got {self.pvalue_cutoff!r}")
        if self.qvalue_cutoff is not None and (
                not _is_real(self.qvalue_cutoff) or not 0 < self.qvalue_cutoff <= 1):
            raise InvalidConfiguration(f"qvalue_cutoff must lie in (0, 1], got {self.qvalue_cutoff!r}")
        resolve_method(self.p_adjust_method)
        try:
            check_size_bounds(self.min_size, self.max_size)
        except InvalidSizeBounds as e:
            raise InvalidConfiguration(str(e)) from e
        if not _is_int(self.n_perm) or self.n_perm < 1:
            raise InvalidConfiguration(f"n_perm must be a positive integer, got {self.n_perm!r}")
        if not _is_real(self.exponent) or not math.isfinite(self.exponent) or self.exponent < 0:
            raise InvalidConfiguration(f"exponent must be a non-negative real, got {self.exponent!r}")
        if not _is_int(self.seed):
            raise InvalidConfiguration(f"seed must be an integer, got {self.seed!r}")
        if not _is_int(self.n_jobs) or self.n_jobs < 1:
            raise InvalidConfiguration(f"n_jobs must be a positive integer, got {self.n_jobs!r}")
        if self.permutation not in PERMUTATION_TYPES:
            raise InvalidConfiguration(
                f"permutation must be one of {PERMUTATION_TYPES}, got {self.permutation!r}"
            )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def replace(self, **changes) -> "EnrichmentConfig":
        """Copy with some parameters changed (re-validated)"""
        params = self.to_dict()
        params.update(changes)
        return EnrichmentConfig.from_dict(params)

    @classmethod
    def from_dict(cls, params: Dict[str, Any]) -> "EnrichmentConfig":
        """
        Build from a dictionary; unknown keys are rejected.

        Raises:
            InvalidConfiguration: unknown key or out-of-range value
        """
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(params) - known)
        if unknown:
            raise InvalidConfiguration(f"Unknown configuration keys: {', '.join(unknown)}")
        return cls(**params)

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "EnrichmentConfig":
        """
        Load parameters from a YAML mapping.

        An ``enrichment:`` top-level section is used when present.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise InvalidConfiguration(f"{path}: expected a mapping, got {type(data).__name__}")
        if isinstance(data.get("enrichment"), dict):
            data = data["enrichment"]

        logger.info(f"Loaded enrichment config from {path}")
        return cls.from_dict(data)

    @classmethod
    def from_env(cls, dotenv_path: Optional[Union[str, Path]] = None, **overrides) -> "EnrichmentConfig":
        """
        Read TERMENRICH_* environment variables (e.g. TERMENRICH_N_PERM).

        Variables from a .env file are loaded first without overriding the
        process environment; explicit ``overrides`` win over both.
        """
        load_dotenv(dotenv_path)

        params: Dict[str, Any] = {}
        for f in fields(cls):
            raw = os.getenv(ENV_PREFIX + f.name.upper())
            if raw is None:
                continue
            params[f.name] = _parse_env_value(f.name, raw)

        params.update(overrides)
        return cls.from_dict(params)


def _is_real(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


_INT_FIELDS = {"min_size", "max_size", "n_perm", "seed", "n_jobs"}
_FLOAT_FIELDS = {"pvalue_cutoff", "qvalue_cutoff", "exponent"}
_OPTIONAL_FIELDS = {"qvalue_cutoff", "max_size"}


def _parse_env_value(name: str, raw: str) -> Any:
    value = raw.strip()
    if name in _OPTIONAL_FIELDS and value.lower() in ("", "none", "null"):
        return None
    try:
        if name in _INT_FIELDS:
            return int(value)
        if name in _FLOAT_FIELDS:
            return float(value)
    except ValueError:
        raise InvalidConfiguration(f"{ENV_PREFIX}{name.upper()}={raw!r} is not a number")
    return value
