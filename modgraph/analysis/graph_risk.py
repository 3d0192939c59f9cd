# Licensed to the Apache Software Foundation (ASF) under one or more
# contributor license agreements.  See the NOTICE file distributed with
# this work for additional information regarding copyright ownership.
# The ASF licenses this file to You under the Apache License, Version 2.0
# (the "License"); you may not use this file except in compliance with
# the License.  You may obtain a copy of the License at
#
#      https://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Graph Risk Analytics

Debt signals over the module graph (cycles, tangles, high-centrality
modules, contested override targets) and percentile-normalized hotspot
ranking that combines change frequency with centrality.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional

import networkx as nx

from modgraph.analysis.identity import UNKNOWN_MODULE
from modgraph.analysis.models import CentralityRecord, Cycle, DebtItem, Edge, EdgeType, Evidence, HotspotRecord
from modgraph.analysis.resolution import MultipleOverride
from modgraph.utils.logging_config import get_logger

logger = get_logger(__name__)

GOD_MODULE_HIGH_SEVERITY = 20
MULTIPLE_OVERRIDE_HIGH_SEVERITY = 2
SEVERITY_ORDER = {"high": 0, "medium": 1, "low": 2}

_UNVISITED, _IN_PROGRESS, _DONE = 0, 1, 2


# ============================================================================
# CYCLES AND TANGLES
# ============================================================================

def detect_cycles(adjacency: Mapping[str, Iterable[str]]) -> list[Cycle]:
    """
    Find dependency cycles with a depth-first walk.

    Nodes and neighbours are visited in sorted order. Reaching a neighbour
    that is still in progress closes a cycle: the stack slice from that
    neighbour to the top, with the neighbour appended again. Cycles found
    from different start nodes collapse onto one canonical key.

    Args:
        adjacency: module ID -> module IDs it depends on

    Returns:
        Unique cycles in discovery order
    """
    graph: dict[str, list[str]] = {node: sorted(set(targets)) for node, targets in adjacency.items()}
    for targets in list(graph.values()):
        for target in targets:
            graph.setdefault(target, [])

    state = {node: _UNVISITED for node in graph}
    found: dict[str, Cycle] = {}

    for start in sorted(graph):
        if state[start] != _UNVISITED:
            continue
        stack: list[str] = [start]
        pending = [iter(graph[start])]
        state[start] = _IN_PROGRESS
        while pending:
            neighbour = next(pending[-1], None)
            if neighbour is None:
                pending.pop()
                state[stack.pop()] = _DONE
                continue
            if state[neighbour] == _UNVISITED:
                state[neighbour] = _IN_PROGRESS
                stack.append(neighbour)
                pending.append(iter(graph[neighbour]))
            elif state[neighbour] == _IN_PROGRESS:
                path = stack[stack.index(neighbour):] + [neighbour]
                cycle = Cycle(tuple(path))
                found.setdefault(cycle.key, cycle)

    return list(found.values())


def find_tangles(adjacency: Mapping[str, Iterable[str]]) -> list[list[str]]:
    """Strongly connected groups of more than one module, each sorted."""
    graph: nx.DiGraph = nx.DiGraph()
    for node, targets in adjacency.items():
        graph.add_node(node)
        for target in targets:
            if target != node:
                graph.add_edge(node, target)
    tangles = [sorted(component) for component in nx.strongly_connected_components(graph) if len(component) > 1]
    return sorted(tangles, key=lambda members: (-len(members), members))


# ============================================================================
# CENTRALITY
# ============================================================================

def compute_centrality(
    edges: Iterable[Edge],
    modules: Iterable[str],
    edge_types: Iterable[EdgeType],
    weights: Optional[Mapping[EdgeType, float]] = None,
    threshold: int = 10
) -> list[CentralityRecord]:
    """
    Weighted and unweighted degree per module.

    Each module-level edge of an allowed type adds its type weight to both
    endpoints; degrees count distinct neighbours.

    Args:
        edges: Module-level edges
        modules: Every module to report
        edge_types: Edge types that participate
        weights: Per-type weight, 1.0 when absent
        threshold: Connections above this mark a module high-centrality

    Returns:
        Records sorted by total connections descending, then weighted
        centrality descending, then module ID
    """
    allowed = set(edge_types)
    weights = weights or {}
    weighted: dict[str, float] = defaultdict(float)
    outgoing: dict[str, set[str]] = defaultdict(set)
    incoming: dict[str, set[str]] = defaultdict(set)
    known = set(modules)

    for edge in edges:
        if edge.edge_type not in allowed:
            continue
        weight = weights.get(edge.edge_type, 1.0)
        weighted[edge.from_module] += weight
        weighted[edge.to_module] += weight
        outgoing[edge.from_module].add(edge.to_module)
        incoming[edge.to_module].add(edge.from_module)
        known.update((edge.from_module, edge.to_module))

    records = []
    for module in known:
        if module == UNKNOWN_MODULE:
            continue
        in_degree = len(incoming[module])
        out_degree = len(outgoing[module])
        records.append(CentralityRecord(
            module=module,
            in_degree=in_degree,
            out_degree=out_degree,
            weighted_centrality=round(weighted[module], 3),
            is_high_centrality=in_degree + out_degree > threshold,
        ))
    records.sort(key=lambda r: (-r.total_connections, -r.weighted_centrality, r.module))
    return records


# ============================================================================
# ARCHITECTURAL DEBT
# ============================================================================

@dataclass
class DebtReport:
    items: list[DebtItem] = field(default_factory=list)
    cycles: list[Cycle] = field(default_factory=list)
    tangles: list[list[str]] = field(default_factory=list)
    god_modules: list[CentralityRecord] = field(default_factory=list)
    multiple_overrides: list[MultipleOverride] = field(default_factory=list)
    centrality: list[CentralityRecord] = field(default_factory=list)

    def by_severity(self) -> dict[str, int]:
        counts: dict[str, int] = defaultdict(int)
        for item in self.items:
            counts[item.severity] += 1
        return dict(sorted(counts.items(), key=lambda kv: SEVERITY_ORDER.get(kv[0], 99)))

    def to_dict(self) -> dict[str, Any]:
        return {
            "debt_items": [i.to_dict() for i in self.items],
            "cycles": [c.to_dict() for c in self.cycles],
            "tangles": [list(t) for t in self.tangles],
            "god_modules": [g.to_dict() for g in self.god_modules],
            "multiple_overrides": [m.to_dict() for m in self.multiple_overrides],
            "centrality": [c.to_dict() for c in self.centrality],
            "summary": {
                "total_debt_items": len(self.items),
                "circular_dependencies": len(self.cycles),
                "tangles": len(self.tangles),
                "god_modules": len(self.god_modules),
                "multiple_overrides": len(self.multiple_overrides),
                "by_severity": self.by_severity(),
            },
        }


def build_debt_report(
    cycles: list[Cycle],
    centrality: list[CentralityRecord],
    multiple_overrides: list[MultipleOverride],
    tangles: Optional[list[list[str]]] = None
) -> DebtReport:
    """Turn graph findings into debt items sorted by severity, then description."""
    items: list[DebtItem] = []

    for cycle in cycles:
        path = " -> ".join(cycle.path)
        items.append(DebtItem(
            debt_type="circular_dependency",
            severity="high",
            description=f"Circular dependency: {path}",
            why_risky="Circular dependencies prevent independent deployment, testing and refactoring. "
                      "Changes cascade unpredictably.",
            modules=list(cycle.path),
            evidence=[Evidence.from_inference(f"cycle detected: {path}", confidence=0.9)],
        ))

    god_modules = [record for record in centrality if record.is_high_centrality]
    for record in god_modules:
        connections = record.total_connections
        items.append(DebtItem(
            debt_type="god_module",
            severity="high" if connections > GOD_MODULE_HIGH_SEVERITY else "medium",
            description=f"God module: {record.module} ({connections} connections)",
            why_risky="High-centrality modules are single points of failure. "
                      "Any change ripples across many dependents.",
            modules=[record.module],
            evidence=[Evidence.from_inference(f"{connections} connections for {record.module}", confidence=0.8)],
        ))

    contested = sorted(multiple_overrides, key=lambda m: (-len(m.modules), m.target))
    for override in contested:
        count = len(override.modules)
        items.append(DebtItem(
            debt_type="multiple_override",
            severity="high" if count > MULTIPLE_OVERRIDE_HIGH_SEVERITY else "medium",
            description=f"Class {override.target} overridden by {count} modules",
            why_risky="Multiple modules overriding the same class creates load-order conflicts. "
                      "Only one preference can win.",
            modules=list(override.modules),
            evidence=list(override.evidence),
        ))

    items.sort(key=lambda item: (SEVERITY_ORDER.get(item.severity, 99), item.description))
    logger.info(f"Found {len(items)} architectural debt items ({len(cycles)} cycles)")
    return DebtReport(
        items=items,
        cycles=list(cycles),
        tangles=list(tangles or []),
        god_modules=god_modules,
        multiple_overrides=contested,
        centrality=list(centrality),
    )


# ============================================================================
# HOTSPOTS
# ============================================================================

def percentile_leq(value: float, population: list[float]) -> float:
    """
    Fraction of the population that is <= value.

    Ties share a rank. An empty population gives 0, a single value gives 1.
    """
    total = len(population)
    if total == 0:
        return 0.0
    if total == 1:
        return 1.0
    return round(sum(1 for v in population if v <= value) / total, 4)


def _normalize(value: float, population: list[float]) -> float:
    # a module with no activity carries no risk, however many share it
    if value <= 0:
        return 0.0
    return percentile_leq(value, population)


@dataclass
class HotspotReport:
    rankings: list[HotspotRecord] = field(default_factory=list)
    integrity_score: float = 1.0
    threshold: float = 0.5
    churn_available: bool = True
    churn_weight: float = 0.6
    centrality_weight: float = 0.4

    @property
    def high_risk(self) -> list[HotspotRecord]:
        return [r for r in self.rankings if r.final_score >= self.threshold]

    @property
    def formula(self) -> str:
        if not self.churn_available:
            return "percentile(centrality)"
        return f"{self.churn_weight} * percentile(churn) + {self.centrality_weight} * percentile(centrality)"

    def to_dict(self) -> dict[str, Any]:
        return {
            "rankings": [r.to_dict() for r in self.rankings],
            "summary": {
                "total_modules_ranked": len(self.rankings),
                "high_risk_hotspots": len(self.high_risk),
                "high_risk_threshold": self.threshold,
                "churn_available": self.churn_available,
                "normalization_method": "percentile_leq",
                "hotspot_formula": self.formula,
                "dampening": "final_score = raw_score * analysis_integrity_score",
            },
            "analysis_integrity_score": self.integrity_score,
        }


def rank_hotspots(
    churn: Mapping[str, int],
    centrality: Mapping[str, float],
    integrity_score: float = 1.0,
    threshold: float = 0.5,
    churn_weight: float = 0.6,
    centrality_weight: float = 0.4,
    churn_available: bool = True
) -> HotspotReport:
    """
    Rank modules by combined change frequency and centrality.

    A zero signal normalizes to 0 rather than to its tied percentile.
    Without change history the raw score is the centrality percentile
    alone, so an absent signal never pushes every module over the
    threshold.

    Args:
        churn: module ID -> commits touching the module
        centrality: module ID -> weighted centrality
        integrity_score: Analysis integrity in [0, 1], scales every raw score
        threshold: final_score at or above which a module is a high-risk hotspot
        churn_available: False when no change history could be read

    Returns:
        HotspotReport sorted by final score descending, then module ID
    """
    modules = sorted((set(churn) | set(centrality)) - {UNKNOWN_MODULE})
    churn_values = [float(churn.get(m, 0)) for m in modules]
    centrality_values = [float(centrality.get(m, 0.0)) for m in modules]
    integrity = round(max(0.0, min(1.0, integrity_score)), 3)

    rankings = []
    for module, churn_value, centrality_value in zip(modules, churn_values, centrality_values):
        normalized_centrality = _normalize(centrality_value, centrality_values)
        evidence = [Evidence.from_inference(
            f"churn={int(churn_value)} centrality={round(centrality_value, 3)}", confidence=0.8
        )]
        if churn_available:
            normalized_churn = _normalize(churn_value, churn_values)
            raw = churn_weight * normalized_churn + centrality_weight * normalized_centrality
            evidence.append(Evidence.from_git(f"{int(churn_value)} commits touching {module}"))
        else:
            normalized_churn = 0.0
            raw = normalized_centrality
        rankings.append(HotspotRecord(
            module=module,
            churn_count=int(churn_value),
            centrality=round(centrality_value, 3),
            normalized_churn=normalized_churn,
            normalized_centrality=normalized_centrality,
            raw_score=round(raw, 4),
            final_score=round(raw * integrity, 4),
            integrity_score_used=integrity,
            evidence=tuple(evidence),
        ))

    rankings.sort(key=lambda r: (-r.final_score, r.module))
    return HotspotReport(
        rankings=rankings,
        integrity_score=integrity,
        threshold=threshold,
        churn_available=churn_available,
        churn_weight=churn_weight,
        centrality_weight=centrality_weight,
    )
