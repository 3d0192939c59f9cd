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
Scoped Override Resolution

Models "global baseline + scope overlay, last writer wins". For each
override target and each scope, the resolution chain is the global
declarations followed by that scope's own declarations; the last step
is the type that actually gets used.

Delegation chains are layered on top: starting from an entry point's
declared type, follow the scope's resolution map until the type is no
longer overridden or has already been seen.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional

from modgraph.analysis.declarations import EntryPointDeclaration, OverrideDeclaration
from modgraph.analysis.identity import class_id, is_core_class, module_id_from_class
from modgraph.analysis.models import (
    DelegationChain,
    DelegationStep,
    Evidence,
    ResolutionStep,
    ResolutionTarget,
    ScopeResolution,
)
from modgraph.analysis.warnings import Extraction, WarningCategory, WarningSink
from modgraph.utils.logging_config import get_logger

logger = get_logger(__name__)

# target class_id -> scope -> declarations in file order
OverrideTable = dict[str, dict[str, list[OverrideDeclaration]]]


def collect_override_declarations(declarations: Iterable[OverrideDeclaration]) -> OverrideTable:
    """Group override declarations by target, then by scope, keeping file order."""
    table: OverrideTable = defaultdict(lambda: defaultdict(list))
    for declaration in declarations:
        table[class_id(declaration.target)][declaration.scope].append(declaration)
    return {target: dict(scopes) for target, scopes in table.items()}


@dataclass
class MultipleOverride:
    """A target replaced by declarations from more than one module."""
    target: str
    modules: list[str]
    evidence: list[Evidence] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "target": self.target,
            "modules": list(self.modules),
            "evidence": [e.to_dict() for e in self.evidence],
        }


@dataclass
class ResolutionMap:
    """Per-target, per-scope resolution chains."""
    scopes: tuple[str, ...]
    global_scope: str
    targets: dict[str, ResolutionTarget] = field(default_factory=dict)
    declaring_modules: dict[str, list[str]] = field(default_factory=dict)

    def scope_map(self, scope: str) -> dict[str, str]:
        """class_id -> final resolved type for one scope."""
        resolved: dict[str, str] = {}
        for key, target in self.targets.items():
            resolution = target.per_scope.get(scope)
            if resolution is not None:
                resolved[key] = resolution.final_type
        return resolved

    def final_type(self, target: str, scope: str) -> Optional[str]:
        entry = self.targets.get(class_id(target))
        if entry is None:
            return None
        resolution = entry.per_scope.get(scope)
        if resolution is None:
            return None
        return resolution.final_type

    def multi_scope_targets(self) -> list[ResolutionTarget]:
        """Targets whose final type depends on the scope."""
        return [
            target for target in self.targets.values()
            if len({r.final_type for r in target.per_scope.values()}) > 1
        ]

    def multiple_overrides(self) -> list[MultipleOverride]:
        found: list[MultipleOverride] = []
        for key, modules in self.declaring_modules.items():
            if len(modules) > 1:
                target = self.targets[key]
                found.append(MultipleOverride(target.target, sorted(modules), target.evidence))
        return found

    def __len__(self) -> int:
        return len(self.targets)

    def to_dict(self) -> dict[str, Any]:
        return {
            "resolutions": [t.to_dict() for t in self.targets.values()],
            "summary": {
                "total_targets": len(self.targets),
                "core_overrides": sum(1 for t in self.targets.values() if t.is_core_override),
                "multi_scope_targets": len(self.multi_scope_targets()),
                "multiple_overrides": len(self.multiple_overrides()),
            },
        }


class ResolutionEngine:
    """Builds ResolutionMaps from override declarations."""

    def __init__(
        self,
        scopes: Iterable[str],
        global_scope: str = "global",
        module_of: Callable[[str], str] = module_id_from_class
    ) -> None:
        """
        Initialize the engine.

        Args:
            scopes: Ordered scope names; must include the global scope
            global_scope: Baseline scope every other scope layers on
            module_of: Maps a resolved type to its owning module
        """
        self.scopes = tuple(scopes)
        self.global_scope = global_scope
        self.module_of = module_of

    def build(self, declarations: Iterable[OverrideDeclaration]) -> Extraction[ResolutionMap]:
        sink = WarningSink("resolution")
        table = collect_override_declarations(declarations)
        result = ResolutionMap(self.scopes, self.global_scope)

        ordered = sorted(
            table.items(),
            key=lambda item: (_first(item[1]).target, item[0]),
        )
        for key, by_scope in ordered:
            display = _first(by_scope).target
            target = ResolutionTarget(target=display, is_core_override=is_core_class(display))
            baseline = by_scope.get(self.global_scope, [])

            for scope in self.scopes:
                if scope == self.global_scope:
                    chain = list(baseline)
                else:
                    chain = baseline + by_scope.get(scope, [])
                if not chain:
                    continue
                steps = tuple(
                    ResolutionStep(scope=d.scope, resolved_type=d.replacement, declared_by=d.module, evidence=d.evidence)
                    for d in chain
                )
                target.per_scope[scope] = ScopeResolution(
                    scope=scope,
                    steps=steps,
                    resolved_module=self.module_of(steps[-1].resolved_type),
                )

            for scope, scoped in by_scope.items():
                modules = sorted({d.module for d in scoped})
                if len(modules) > 1:
                    sink.add(
                        WarningCategory.AMBIGUOUS_DI,
                        f"{display} is overridden in scope '{scope}' by {', '.join(modules)}",
                        scoped[-1].evidence.source_file,
                    )

            if target.per_scope:
                result.targets[key] = target
                result.declaring_modules[key] = sorted(
                    {d.module for scoped in by_scope.values() for d in scoped}
                )

        logger.info(f"Resolved {len(result.targets)} override targets across {len(self.scopes)} scopes")
        return sink.result(result)


def _first(by_scope: dict[str, list[OverrideDeclaration]]) -> OverrideDeclaration:
    for scoped in by_scope.values():
        if scoped:
            return scoped[0]
    raise ValueError("empty override group")


class DelegationResolver:
    """
    Follows resolution maps from a declared type to the concrete type.

    Virtual types are consulted alongside preferences; where both name
    the same target in a scope, the preference wins.
    """

    def __init__(self, resolution_map: ResolutionMap, virtual_types: Optional[ResolutionMap] = None) -> None:
        self.resolution_map = resolution_map
        self.virtual_types = virtual_types
        self._scope_maps: dict[str, dict[str, str]] = {}

    def _map(self, scope: str) -> dict[str, str]:
        if scope not in self._scope_maps:
            merged = self.virtual_types.scope_map(scope) if self.virtual_types is not None else {}
            merged.update(self.resolution_map.scope_map(scope))
            self._scope_maps[scope] = merged
        return self._scope_maps[scope]

    def _target(self, key: str) -> Optional[ResolutionTarget]:
        target = self.resolution_map.targets.get(key)
        if target is None and self.virtual_types is not None:
            target = self.virtual_types.targets.get(key)
        return target

    def follow(self, interface: str, scope: str) -> tuple[str, list[DelegationStep], bool]:
        """
        Substitute a type through one scope's map until it stops changing.

        Returns:
            (final type, substitution steps, cycle detected)
        """
        scope_map = self._map(scope)
        current = interface
        visited = {class_id(current)}
        steps: list[DelegationStep] = []
        while True:
            replacement = scope_map.get(class_id(current))
            if replacement is None:
                return current, steps, False
            if class_id(replacement) in visited:
                return current, steps, True
            steps.append(DelegationStep(current, replacement))
            visited.add(class_id(replacement))
            current = replacement

    def resolve(self, entry_point: EntryPointDeclaration, scope: Optional[str] = None) -> DelegationChain:
        primary = scope or entry_point.scope
        final, steps, cycle = self.follow(entry_point.declared_type, primary)

        divergence: dict[str, str] = {}
        for other in self.resolution_map.scopes:
            if other == primary:
                continue
            other_final, _, _ = self.follow(entry_point.declared_type, other)
            if class_id(other_final) != class_id(final):
                divergence[other] = other_final

        evidence = [entry_point.evidence]
        target = self._target(class_id(entry_point.declared_type))
        if target is not None and primary in target.per_scope:
            evidence.extend(step.evidence for step in target.per_scope[primary].steps)

        return DelegationChain(
            entry=entry_point.entry,
            interface=entry_point.declared_type,
            scope=primary,
            final_type=final,
            steps=steps,
            divergence=divergence,
            cycle_detected=cycle,
            entry_kind=entry_point.entry_kind,
            module=entry_point.module,
            evidence=evidence,
        )


def resolve_entry_points(
    resolver: DelegationResolver,
    entry_points: Iterable[EntryPointDeclaration]
) -> list[DelegationChain]:
    """Resolve every entry point in its own scope, in canonical order."""
    chains = [resolver.resolve(entry) for entry in entry_points]
    chains.sort(key=lambda c: (c.entry_kind, c.module, c.entry, c.scope, c.interface))
    return chains


def resolution_document(preferences: ResolutionMap, virtual_types: Optional[ResolutionMap] = None) -> dict[str, Any]:
    """
    Build the override resolution document.

    Preferences and virtual types are listed separately; the summary
    counts of the preference map are unchanged by virtual types.
    """
    base = preferences.to_dict()
    virtual = list(virtual_types.targets.values()) if virtual_types is not None else []
    return {
        "resolutions": base["resolutions"],
        "virtual_types": [t.to_dict() for t in virtual],
        "summary": dict(base["summary"], total_virtual_types=len(virtual)),
    }


def delegation_document(chains: list[DelegationChain]) -> dict[str, Any]:
    return {
        "chains": [c.to_dict() for c in chains],
        "summary": {
            "total_chains": len(chains),
            "with_divergence": sum(1 for c in chains if c.divergence),
            "with_cycles": sum(1 for c in chains if c.cycle_detected),
            "by_entry_kind": _count_by(chains, lambda c: c.entry_kind),
        },
    }


def _count_by(items: Iterable[DelegationChain], key: Callable[[DelegationChain], str]) -> dict[str, int]:
    counts: dict[str, int] = defaultdict(int)
    for item in items:
        counts[key(item)] += 1
    return dict(sorted(counts.items()))
