"""
Data Models for Dependency Graph Analysis

Contains the dataclasses and enumerations shared by the graph builder,
the coupling engine, the resolution engine, the plugin analyzer and the
risk analytics.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from modgraph.analysis.identity import di_target_id, method_id


class EvidenceKind(str, Enum):
    """Where a piece of evidence was observed."""
    XML = "xml"
    PHP_AST = "php_ast"
    COMPOSER = "composer"
    GIT = "git"
    INFERENCE = "inference"
    FILESYSTEM = "filesystem"


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


@dataclass(frozen=True)
class Evidence:
    """Provenance record attached to every derived fact."""
    kind: EvidenceKind
    source_file: str
    line_start: Optional[int] = None
    line_end: Optional[int] = None
    note: str = ""
    confidence: float = 1.0

    def __post_init__(self) -> None:
        object.__setattr__(self, "confidence", _clamp(float(self.confidence)))

    @classmethod
    def from_xml(cls, source_file: str, note: str = "", confidence: float = 1.0) -> "Evidence":
        return cls(EvidenceKind.XML, source_file, note=note, confidence=confidence)

    @classmethod
    def from_php_ast(
        cls,
        source_file: str,
        line_start: int,
        line_end: Optional[int] = None,
        note: str = "",
        confidence: float = 1.0
    ) -> "Evidence":
        return cls(EvidenceKind.PHP_AST, source_file, line_start, line_end, note, confidence)

    @classmethod
    def from_composer(cls, source_file: str, note: str = "", confidence: float = 1.0) -> "Evidence":
        return cls(EvidenceKind.COMPOSER, source_file, note=note, confidence=confidence)

    @classmethod
    def from_git(cls, note: str = "", confidence: float = 0.9) -> "Evidence":
        return cls(EvidenceKind.GIT, "", note=note, confidence=confidence)

    @classmethod
    def from_inference(cls, note: str, confidence: float = 0.5) -> "Evidence":
        return cls(EvidenceKind.INFERENCE, "", note=note, confidence=confidence)

    @classmethod
    def from_filesystem(cls, source_file: str, note: str = "", confidence: float = 0.9) -> "Evidence":
        return cls(EvidenceKind.FILESYSTEM, source_file, note=note, confidence=confidence)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "type": self.kind.value,
            "source_file": self.source_file,
            "confidence": self.confidence,
        }
        if self.line_start is not None:
            span: dict[str, int] = {"line_start": self.line_start}
            if self.line_end is not None:
                span["line_end"] = self.line_end
            data["source_span"] = span
        if self.note:
            data["notes"] = self.note
        return data


def evidence_list(evidence: "tuple[Evidence, ...] | list[Evidence]") -> list[dict[str, Any]]:
    """Serialize a sequence of evidence records."""
    return [e.to_dict() for e in evidence]


def aggregate_confidence(evidence: "tuple[Evidence, ...] | list[Evidence]") -> float:
    """
    Combine independent evidence confidences as 1 - prod(1 - c).

    Returns 0.0 for an empty sequence.
    """
    if not evidence:
        return 0.0
    remaining = 1.0
    for item in evidence:
        remaining *= (1.0 - item.confidence)
    return round(1.0 - remaining, 3)


# ============================================================================
# MODULES AND EDGES
# ============================================================================

class ModuleKind(str, Enum):
    MODULE = "module"
    THEME = "theme"
    PACKAGE = "package"


@dataclass(frozen=True)
class Module:
    """An independently versioned unit of the analyzed application."""
    module_id: str
    kind: ModuleKind = ModuleKind.MODULE
    path: str = ""
    sequence: tuple[str, ...] = ()
    scopes: frozenset[str] = frozenset()
    composer_name: Optional[str] = None
    namespaces: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "module_id": self.module_id,
            "kind": self.kind.value,
            "path": self.path,
            "sequence": list(self.sequence),
            "scopes": sorted(self.scopes),
            "composer_name": self.composer_name,
            "namespaces": list(self.namespaces),
        }


class EdgeSubset(str, Enum):
    STRUCTURAL = "structural"
    CODE = "code"
    RUNTIME = "runtime"


class EdgeType(str, Enum):
    MODULE_SEQUENCE = "module_sequence"
    COMPOSER_REQUIRE = "composer_require"
    PHP_SYMBOL_USE = "php_symbol_use"
    DI_PREFERENCE = "di_preference"
    DI_VIRTUAL_TYPE = "di_virtual_type"
    PLUGIN_INTERCEPT = "plugin_intercept"
    EVENT_OBSERVE = "event_observe"


DEFAULT_SUBSETS: dict[EdgeSubset, frozenset[EdgeType]] = {
    EdgeSubset.STRUCTURAL: frozenset({EdgeType.MODULE_SEQUENCE, EdgeType.COMPOSER_REQUIRE}),
    EdgeSubset.CODE: frozenset({EdgeType.PHP_SYMBOL_USE}),
    EdgeSubset.RUNTIME: frozenset({
        EdgeType.DI_PREFERENCE,
        EdgeType.DI_VIRTUAL_TYPE,
        EdgeType.PLUGIN_INTERCEPT,
        EdgeType.EVENT_OBSERVE,
    }),
}


@dataclass(frozen=True)
class RawEdge:
    """A single class- or declaration-level observation before lifting."""
    from_module: str
    to_module: str
    edge_type: EdgeType
    evidence: Evidence
    order: int = 0

    @property
    def sort_key(self) -> tuple[str, int, int]:
        return (self.evidence.source_file, self.evidence.line_start or 0, self.order)


@dataclass(frozen=True)
class Edge:
    """A module-level edge: one per (from, to, edge type)."""
    from_module: str
    to_module: str
    edge_type: EdgeType
    weight: int
    evidence: tuple[Evidence, ...] = ()

    @property
    def evidence_truncated(self) -> bool:
        return self.weight > len(self.evidence)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "from": {"kind": "module", "id": self.from_module},
            "to": {"kind": "module", "id": self.to_module},
            "edge_type": self.edge_type.value,
            "weight": self.weight,
            "confidence": aggregate_confidence(self.evidence),
            "evidence": evidence_list(self.evidence),
        }
        if self.evidence_truncated:
            data["evidence_truncated"] = True
            data["total_evidence_found"] = self.weight
        return data


# ============================================================================
# COUPLING
# ============================================================================

@dataclass(frozen=True)
class CouplingRecord:
    """Afferent/efferent coupling and instability of one module in one subset."""
    module: str
    afferent: int
    efferent: int
    instability: Optional[float]

    def to_dict(self) -> dict[str, Any]:
        return {
            "module": self.module,
            "afferent_coupling": self.afferent,
            "efferent_coupling": self.efferent,
            "instability": self.instability,
        }


# ============================================================================
# SCOPED OVERRIDE RESOLUTION
# ============================================================================

@dataclass(frozen=True)
class ResolutionStep:
    scope: str
    resolved_type: str
    declared_by: str
    evidence: Evidence

    def to_dict(self) -> dict[str, Any]:
        return {
            "scope": self.scope,
            "resolved_type": self.resolved_type,
            "declared_by": self.declared_by,
            "evidence": self.evidence.to_dict(),
        }


@dataclass(frozen=True)
class ScopeResolution:
    """The resolution chain of one target in one scope."""
    scope: str
    steps: tuple[ResolutionStep, ...]
    resolved_module: str

    @property
    def final_type(self) -> str:
        return self.steps[-1].resolved_type

    @property
    def confidence(self) -> float:
        return 1.0 if len(self.steps) == 1 else 0.95

    def to_dict(self) -> dict[str, Any]:
        return {
            "final_resolved_type": self.final_type,
            "resolved_module": self.resolved_module,
            "resolution_steps": [s.to_dict() for s in self.steps],
            "confidence": self.confidence,
        }


@dataclass
class ResolutionTarget:
    """A named override point with its per-scope resolution chains."""
    target: str
    per_scope: dict[str, ScopeResolution] = field(default_factory=dict)
    is_core_override: bool = False

    @property
    def target_id(self) -> str:
        return di_target_id(self.target)

    @property
    def evidence(self) -> list[Evidence]:
        seen: list[Evidence] = []
        for resolution in self.per_scope.values():
            for step in resolution.steps:
                if step.evidence not in seen:
                    seen.append(step.evidence)
        return seen

    def to_dict(self) -> dict[str, Any]:
        return {
            "di_target_id": self.target_id,
            "interface": self.target,
            "is_core_override": self.is_core_override,
            "per_area": {scope: r.to_dict() for scope, r in self.per_scope.items()},
            "evidence": evidence_list(self.evidence),
        }


@dataclass(frozen=True)
class DelegationStep:
    from_type: str
    to_type: str

    def to_dict(self) -> dict[str, str]:
        return {"from": self.from_type, "to": self.to_type}


@dataclass
class DelegationChain:
    """How an entry point's declared type resolves to a concrete one."""
    entry: str
    interface: str
    scope: str
    final_type: str
    steps: list[DelegationStep] = field(default_factory=list)
    divergence: dict[str, str] = field(default_factory=dict)
    cycle_detected: bool = False
    entry_kind: str = ""
    module: str = ""
    evidence: list[Evidence] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "entry": self.entry,
            "entry_kind": self.entry_kind,
            "module": self.module,
            "interface": self.interface,
            "scope": self.scope,
            "final_type": self.final_type,
            "steps": [s.to_dict() for s in self.steps],
            "divergence": dict(sorted(self.divergence.items())),
            "cycle_detected": self.cycle_detected,
            "evidence": evidence_list(self.evidence),
        }


# ============================================================================
# PLUGIN SEAMS
# ============================================================================

class HookType(str, Enum):
    BEFORE = "before"
    AROUND = "around"
    AFTER = "after"


class SideEffectType(str, Enum):
    SKIPS_WRAPPED_CALL = "skips_wrapped_call"
    MODIFIES_ARGUMENTS = "modifies_arguments"
    MODIFIES_RETURN = "modifies_return"
    MUTATES_STATE = "mutates_state"


class Severity(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass(frozen=True)
class SideEffect:
    effect_type: SideEffectType
    severity: Severity
    message: str
    plugin_class: str
    hook_type: HookType
    target_method: str
    evidence: Evidence

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.effect_type.value,
            "severity": self.severity.value,
            "message": self.message,
            "plugin_class": self.plugin_class,
            "hook_type": self.hook_type.value,
            "target_method": self.target_method,
            "evidence": self.evidence.to_dict(),
        }


@dataclass(frozen=True)
class PluginEntry:
    plugin_class: str
    plugin_name: str
    hook_type: HookType
    method: str
    sort_order: Optional[int]
    scope: str
    module: str
    declared_target: str
    cross_module: bool = False
    side_effects: tuple[SideEffect, ...] = ()
    evidence: tuple[Evidence, ...] = ()

    @property
    def priority_key(self) -> tuple[int, int, str, str]:
        # Undeclared sort order sorts after every declared one.
        if self.sort_order is None:
            return (1, 0, self.plugin_class, self.plugin_name)
        return (0, self.sort_order, self.plugin_class, self.plugin_name)

    def to_dict(self) -> dict[str, Any]:
        return {
            "plugin_class": self.plugin_class,
            "plugin_name": self.plugin_name,
            "hook_type": self.hook_type.value,
            "method": self.method,
            "sort_order": self.sort_order,
            "scope": self.scope,
            "module": self.module,
            "declared_target": self.declared_target,
            "cross_module": self.cross_module,
            "side_effects": [s.to_dict() for s in self.side_effects],
            "evidence": evidence_list(self.evidence),
        }


class ExecutionPhase(str, Enum):
    BEFORE = "before"
    AROUND_BEFORE_PROCEED = "around_before_proceed"
    ORIGINAL_METHOD = "original_method"
    AROUND_AFTER_PROCEED = "around_after_proceed"
    AFTER = "after"


@dataclass(frozen=True)
class ExecutionStep:
    step: int
    phase: ExecutionPhase
    plugin: Optional[str]
    sort_order: Optional[int]
    note: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "step": self.step,
            "phase": self.phase.value,
            "plugin": self.plugin,
            "sort_order": self.sort_order,
            "note": self.note,
        }


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass
class PluginSeam:
    """All interceptors attached to one (target type, method) pair."""
    target_class: str
    target_method: str
    before: list[PluginEntry] = field(default_factory=list)
    around: list[PluginEntry] = field(default_factory=list)
    after: list[PluginEntry] = field(default_factory=list)
    declared_targets: list[str] = field(default_factory=list)
    execution_sequence: list[ExecutionStep] = field(default_factory=list)
    risk_score: float = 0.0
    risk_level: RiskLevel = RiskLevel.LOW
    recommendations: list[dict[str, str]] = field(default_factory=list)

    @property
    def seam_id(self) -> str:
        return method_id(self.target_class, self.target_method)

    @property
    def entries(self) -> list[PluginEntry]:
        return self.before + self.around + self.after

    @property
    def side_effects(self) -> list[SideEffect]:
        return [effect for entry in self.entries for effect in entry.side_effects]

    @property
    def total_plugins(self) -> int:
        return len(self.entries)

    def to_dict(self) -> dict[str, Any]:
        return {
            "seam_id": self.seam_id,
            "target_class": self.target_class,
            "target_method": self.target_method,
            "declared_targets": list(self.declared_targets),
            "before_plugins": [p.to_dict() for p in self.before],
            "around_plugins": [p.to_dict() for p in self.around],
            "after_plugins": [p.to_dict() for p in self.after],
            "execution_sequence": [s.to_dict() for s in self.execution_sequence],
            "side_effects": [s.to_dict() for s in self.side_effects],
            "total_plugins": self.total_plugins,
            "has_around": bool(self.around),
            "has_multiple_around": len(self.around) > 1,
            "risk_score": self.risk_score,
            "risk_level": self.risk_level.value,
            "recommendations": list(self.recommendations),
        }


# ============================================================================
# GRAPH RISK
# ============================================================================

@dataclass(frozen=True)
class Cycle:
    """A closed walk of module IDs; `path` repeats its first member at the end."""
    path: tuple[str, ...]

    @property
    def length(self) -> int:
        return len(self.path) - 1

    @property
    def key(self) -> str:
        nodes = list(self.path[:-1])
        if not nodes:
            return ""
        start = nodes.index(min(nodes))
        return "->".join(nodes[start:] + nodes[:start])

    def to_dict(self) -> dict[str, Any]:
        return {"path": list(self.path), "length": self.length, "key": self.key}


@dataclass(frozen=True)
class CentralityRecord:
    module: str
    in_degree: int
    out_degree: int
    weighted_centrality: float
    is_high_centrality: bool = False

    @property
    def total_connections(self) -> int:
        return self.in_degree + self.out_degree

    def to_dict(self) -> dict[str, Any]:
        return {
            "module": self.module,
            "in_degree": self.in_degree,
            "out_degree": self.out_degree,
            "total_connections": self.total_connections,
            "weighted_centrality": self.weighted_centrality,
            "is_high_centrality": self.is_high_centrality,
        }


@dataclass
class DebtItem:
    debt_type: str
    severity: str
    description: str
    why_risky: str
    modules: list[str]
    evidence: list[Evidence] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.debt_type,
            "severity": self.severity,
            "description": self.description,
            "why_risky": self.why_risky,
            "modules": list(self.modules),
            "evidence": evidence_list(self.evidence),
        }


@dataclass(frozen=True)
class HotspotRecord:
    module: str
    churn_count: int
    centrality: float
    normalized_churn: float
    normalized_centrality: float
    raw_score: float
    final_score: float
    integrity_score_used: float
    evidence: tuple[Evidence, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "module": self.module,
            "churn_count": self.churn_count,
            "centrality": self.centrality,
            "normalized_churn": self.normalized_churn,
            "normalized_centrality": self.normalized_centrality,
            "raw_score": self.raw_score,
            "final_score": self.final_score,
            "integrity_score_used": self.integrity_score_used,
            "evidence": evidence_list(self.evidence),
        }
