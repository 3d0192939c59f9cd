"""
Configuration settings for the dependency graph compiler.

Defaults live here as module constants. A repository can override them
with a `.modgraph.json` file at its root, and the CLI can override both.
"""

from __future__ import annotations

import copy
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional

from modgraph.analysis.models import DEFAULT_SUBSETS, EdgeSubset, EdgeType
from modgraph.analysis.warnings import ConfigError


# ============================================================================
# PATHS
# ============================================================================

CONFIG_FILE_NAME: str = ".modgraph.json"
DEFAULT_OUTPUT_DIR: str = ".modgraph"
CACHE_DIR_NAME: str = ".modgraph-cache"

DEFAULT_SCAN_ROOTS: tuple[str, ...] = ("app/code", "app/design")
VENDOR_SCAN_ROOT: str = "vendor"


# ============================================================================
# GRAPH CONFIGURATION
# ============================================================================

MAX_EVIDENCE_PER_EDGE: int = 5

# Weighted degree per edge type; php_symbol_use stays out of centrality (noisy)
EDGE_WEIGHTS: dict[str, float] = {
    "module_sequence": 0.7,
    "composer_require": 0.6,
    "di_preference": 1.0,
    "di_virtual_type": 1.0,
    "plugin_intercept": 1.2,
    "event_observe": 1.1,
}

CENTRALITY_EDGE_TYPES: tuple[str, ...] = (
    "module_sequence",
    "composer_require",
    "di_preference",
    "plugin_intercept",
    "event_observe",
)


# ============================================================================
# SCOPES
# ============================================================================

GLOBAL_SCOPE: str = "global"
SCOPES: tuple[str, ...] = (
    "global",
    "frontend",
    "adminhtml",
    "webapi_rest",
    "webapi_soap",
    "graphql",
    "crontab",
)


# ============================================================================
# RISK THRESHOLDS
# ============================================================================

HIGH_CENTRALITY_THRESHOLD: int = 10
HOTSPOT_THRESHOLD: float = 0.5
CHURN_WEIGHT: float = 0.6
CENTRALITY_WEIGHT: float = 0.4


# ============================================================================
# CHURN + EXECUTION
# ============================================================================

CHURN_WINDOW_DAYS: int = 365
CHURN_TIMEOUT_SECONDS: float = 60.0
DEFAULT_WORKERS: int = 4


def default_settings() -> dict[str, Any]:
    """Defaults as a plain mapping, the base layer of every merge."""
    return {
        "scan_roots": list(DEFAULT_SCAN_ROOTS),
        "include_vendor": False,
        "output_dir": DEFAULT_OUTPUT_DIR,
        "max_evidence_per_edge": MAX_EVIDENCE_PER_EDGE,
        "coupling_subsets": {
            subset.value: sorted(t.value for t in members)
            for subset, members in DEFAULT_SUBSETS.items()
        },
        "edge_weights": dict(EDGE_WEIGHTS),
        "centrality_edge_types": list(CENTRALITY_EDGE_TYPES),
        "scopes": list(SCOPES),
        "global_scope": GLOBAL_SCOPE,
        "high_centrality_threshold": HIGH_CENTRALITY_THRESHOLD,
        "hotspot_threshold": HOTSPOT_THRESHOLD,
        "churn": {
            "enabled": True,
            "window_days": CHURN_WINDOW_DAYS,
            "timeout_seconds": CHURN_TIMEOUT_SECONDS,
            "cache": True,
        },
        "workers": DEFAULT_WORKERS,
    }


@dataclass(frozen=True)
class ChurnSettings:
    enabled: bool = True
    window_days: int = CHURN_WINDOW_DAYS
    timeout_seconds: float = CHURN_TIMEOUT_SECONDS
    cache: bool = True


@dataclass(frozen=True)
class AnalyzerConfig:
    """Validated settings for one compiler run."""
    scan_roots: tuple[str, ...] = DEFAULT_SCAN_ROOTS
    include_vendor: bool = False
    output_dir: str = DEFAULT_OUTPUT_DIR
    max_evidence_per_edge: int = MAX_EVIDENCE_PER_EDGE
    coupling_subsets: dict[EdgeSubset, frozenset[EdgeType]] = field(
        default_factory=lambda: dict(DEFAULT_SUBSETS)
    )
    edge_weights: dict[EdgeType, float] = field(
        default_factory=lambda: {EdgeType(k): v for k, v in EDGE_WEIGHTS.items()}
    )
    centrality_edge_types: frozenset[EdgeType] = field(
        default_factory=lambda: frozenset(EdgeType(t) for t in CENTRALITY_EDGE_TYPES)
    )
    scopes: tuple[str, ...] = SCOPES
    global_scope: str = GLOBAL_SCOPE
    high_centrality_threshold: int = HIGH_CENTRALITY_THRESHOLD
    hotspot_threshold: float = HOTSPOT_THRESHOLD
    churn: ChurnSettings = field(default_factory=ChurnSettings)
    workers: int = DEFAULT_WORKERS

    @property
    def effective_scan_roots(self) -> tuple[str, ...]:
        if self.include_vendor and VENDOR_SCAN_ROOT not in self.scan_roots:
            return self.scan_roots + (VENDOR_SCAN_ROOT,)
        return self.scan_roots

    @classmethod
    def from_mapping(cls, settings: Mapping[str, Any]) -> "AnalyzerConfig":
        """Build and validate a config from a merged settings mapping."""
        try:
            subsets = {
                EdgeSubset(name): frozenset(EdgeType(t) for t in types)
                for name, types in settings["coupling_subsets"].items()
            }
            weights = {EdgeType(k): float(v) for k, v in settings["edge_weights"].items()}
            centrality_types = frozenset(EdgeType(t) for t in settings["centrality_edge_types"])
            churn = settings.get("churn", {})
            config = cls(
                scan_roots=tuple(str(r).strip("/") for r in settings["scan_roots"]),
                include_vendor=bool(settings["include_vendor"]),
                output_dir=str(settings["output_dir"]),
                max_evidence_per_edge=int(settings["max_evidence_per_edge"]),
                coupling_subsets=subsets,
                edge_weights=weights,
                centrality_edge_types=centrality_types,
                scopes=tuple(settings["scopes"]),
                global_scope=str(settings["global_scope"]),
                high_centrality_threshold=int(settings["high_centrality_threshold"]),
                hotspot_threshold=float(settings["hotspot_threshold"]),
                churn=ChurnSettings(
                    enabled=bool(churn.get("enabled", True)),
                    window_days=int(churn.get("window_days", CHURN_WINDOW_DAYS)),
                    timeout_seconds=float(churn.get("timeout_seconds", CHURN_TIMEOUT_SECONDS)),
                    cache=bool(churn.get("cache", True)),
                ),
                workers=int(settings["workers"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigError(f"Invalid configuration value: {e}") from e

        config.validate()
        return config

    def validate(self) -> None:
        if self.max_evidence_per_edge < 1:
            raise ConfigError("max_evidence_per_edge must be at least 1")
        if self.workers < 1:
            raise ConfigError("workers must be at least 1")
        if self.global_scope not in self.scopes:
            raise ConfigError(f"global scope '{self.global_scope}' is not in scopes {list(self.scopes)}")
        seen: dict[EdgeType, EdgeSubset] = {}
        for subset, types in self.coupling_subsets.items():
            for edge_type in types:
                if edge_type in seen:
                    raise ConfigError(
                        f"edge type '{edge_type.value}' is in both "
                        f"'{seen[edge_type].value}' and '{subset.value}' subsets"
                    )
                seen[edge_type] = subset


def merge_settings(base: dict[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    """Deep merge; nested mappings merge key by key, everything else replaces."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), dict):
            merged[key] = merge_settings(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def _read_config_file(path: Path, required: bool) -> dict[str, Any]:
    if not path.is_file():
        if required:
            raise ConfigError(f"Config file not found: {path}")
        return {}
    try:
        parsed = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Could not read config file {path}: {e}") from e
    if not isinstance(parsed, dict):
        raise ConfigError(f"Config file {path} must contain a JSON object")
    return parsed


def load_config(
    repo_root: Path,
    overrides: Optional[Mapping[str, Any]] = None,
    config_path: Optional[Path] = None
) -> AnalyzerConfig:
    """
    Load the configuration for a repository.

    Args:
        repo_root: Repository being analyzed
        overrides: Values taking precedence over every file (CLI flags)
        config_path: Explicit config file; must exist when given

    Returns:
        Validated AnalyzerConfig

    Raises:
        ConfigError: If a config file is unreadable or values are invalid
    """
    if config_path is not None:
        file_settings = _read_config_file(config_path, required=True)
    else:
        file_settings = _read_config_file(repo_root / CONFIG_FILE_NAME, required=False)

    settings = merge_settings(default_settings(), file_settings)
    if overrides:
        settings = merge_settings(settings, overrides)
    return AnalyzerConfig.from_mapping(settings)
