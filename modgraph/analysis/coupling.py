"""
Split Coupling Metrics

Afferent/efferent coupling and instability per module, computed
separately for each disjoint edge-type subset and once over all edges.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional

from modgraph.analysis.models import CouplingRecord, Edge, EdgeSubset, EdgeType

COMPOSITE = "composite"


def instability(afferent: int, efferent: int) -> Optional[float]:
    """Ce / (Ca + Ce), or None for a module with no connections."""
    total = afferent + efferent
    if total == 0:
        return None
    return round(efferent / total, 3)


@dataclass
class SubsetCoupling:
    name: str
    records: list[CouplingRecord] = field(default_factory=list)

    @property
    def avg_instability(self) -> float:
        values = [r.instability for r in self.records if r.instability is not None]
        if not values:
            return 0.0
        return round(sum(values) / len(values), 3)

    def get(self, module: str) -> Optional[CouplingRecord]:
        for record in self.records:
            if record.module == module:
                return record
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "modules": [r.to_dict() for r in self.records],
            "avg_instability": self.avg_instability,
        }


@dataclass
class CouplingReport:
    subsets: dict[str, SubsetCoupling] = field(default_factory=dict)

    @property
    def composite(self) -> SubsetCoupling:
        return self.subsets[COMPOSITE]

    def to_dict(self) -> dict[str, Any]:
        return {name: subset.to_dict() for name, subset in self.subsets.items()}


def _subset_records(edges: Iterable[Edge], modules: list[str]) -> list[CouplingRecord]:
    pairs = {(edge.from_module, edge.to_module) for edge in edges}
    afferent: dict[str, int] = defaultdict(int)
    efferent: dict[str, int] = defaultdict(int)
    for from_module, to_module in pairs:
        efferent[from_module] += 1
        afferent[to_module] += 1

    records = [
        CouplingRecord(
            module=module,
            afferent=afferent[module],
            efferent=efferent[module],
            instability=instability(afferent[module], efferent[module]),
        )
        for module in modules
    ]
    # Descending instability, undefined last, then module ID
    records.sort(key=lambda r: (r.instability is None, -(r.instability or 0.0), r.module))
    return records


def compute_coupling(
    edges: list[Edge],
    modules: Iterable[str],
    subsets: Mapping[EdgeSubset, frozenset[EdgeType]]
) -> CouplingReport:
    """
    Compute coupling per subset plus the composite over all edges.

    Args:
        edges: Module-level edges
        modules: Every module to report, including unconnected ones
        subsets: Disjoint edge-type subsets

    Returns:
        CouplingReport keyed by subset name, then "composite"
    """
    known = set(modules)
    for edge in edges:
        known.update((edge.from_module, edge.to_module))
    ordered = sorted(known)

    report = CouplingReport()
    for subset, members in subsets.items():
        report.subsets[subset.value] = SubsetCoupling(
            subset.value,
            _subset_records((e for e in edges if e.edge_type in members), ordered),
        )
    report.subsets[COMPOSITE] = SubsetCoupling(COMPOSITE, _subset_records(edges, ordered))
    return report
