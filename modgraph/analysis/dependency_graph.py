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
Dependency Graph Builder

Collects raw class- and declaration-level edges, then lifts them into a
typed module graph with one edge per (from, to, type), a weight equal to
the number of observations and a capped list of evidence exemplars.
"""

from __future__ import annotations

from collections import Counter, defaultdict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Iterable, Optional

from modgraph.analysis.declarations import DeclarationIndex, find_files
from modgraph.analysis.identity import CORE_VENDOR_PREFIX, UNKNOWN_MODULE, file_id, is_module_id
from modgraph.analysis.models import Edge, EdgeType, Evidence, RawEdge
from modgraph.analysis.module_resolver import ModuleResolver
from modgraph.analysis.source_scanner import SourceParseError, UsageKind, UsageNode, UsageVisitor, scan_source
from modgraph.analysis.warnings import Extraction, WarningCategory, WarningSink
from modgraph.utils.logging_config import get_logger, log_progress

logger = get_logger(__name__)

# Below this many files the thread pool costs more than it saves
PARALLEL_MIN_FILES = 10

_USAGE_NOTES: dict[UsageKind, str] = {
    UsageKind.NEW: "new expression",
    UsageKind.STATIC_ACCESS: "static access",
    UsageKind.EXTENDS: "extends",
    UsageKind.IMPLEMENTS: "implements",
    UsageKind.INTERFACE_EXTENDS: "interface extends",
    UsageKind.TRAIT_USE: "use trait",
    UsageKind.PARAM_TYPE: "param type hint",
    UsageKind.RETURN_TYPE: "return type hint",
    UsageKind.PROPERTY_TYPE: "property type hint",
    UsageKind.CATCH: "catch",
    UsageKind.INSTANCEOF: "instanceof",
}


@dataclass
class DependencyGraph:
    """Typed module-level dependency graph."""
    edges: list[Edge] = field(default_factory=list)
    modules: list[str] = field(default_factory=list)
    files_scanned: int = 0
    symbols_seen: int = 0

    def edge_type_counts(self) -> dict[str, int]:
        counts = Counter(edge.edge_type.value for edge in self.edges)
        return dict(sorted(counts.items()))

    def adjacency(self, edge_types: Optional[Iterable[EdgeType]] = None) -> dict[str, list[str]]:
        """
        Module adjacency over the given edge types (all when None).

        Every known module is a key, including those without outgoing edges.
        """
        allowed = set(edge_types) if edge_types is not None else None
        graph: dict[str, set[str]] = {module: set() for module in self.modules}
        for edge in self.edges:
            if allowed is not None and edge.edge_type not in allowed:
                continue
            graph.setdefault(edge.from_module, set()).add(edge.to_module)
            graph.setdefault(edge.to_module, set())
        return {module: sorted(targets) for module, targets in sorted(graph.items())}

    def to_dict(self) -> dict[str, Any]:
        return {
            "edges": [edge.to_dict() for edge in self.edges],
            "summary": {
                "total_edges": len(self.edges),
                "total_modules_analyzed": len(self.modules),
                "files_scanned": self.files_scanned,
                "edge_type_counts": self.edge_type_counts(),
            },
        }


def lift_edges(raw_edges: Iterable[RawEdge], max_evidence: int) -> list[Edge]:
    """
    Aggregate raw edges into module-level edges.

    Raw edges are put in canonical order (source path, line, discovery
    order) before grouping, so the retained exemplars never depend on
    scan order. Self-loops are dropped.

    Args:
        raw_edges: Class- or declaration-level observations
        max_evidence: Evidence exemplars kept per edge

    Returns:
        Edges sorted by descending weight, then from, to and type
    """
    groups: dict[tuple[str, str, EdgeType], list[RawEdge]] = defaultdict(list)
    for raw in sorted(raw_edges, key=lambda r: r.sort_key):
        if raw.from_module == raw.to_module:
            continue
        if UNKNOWN_MODULE in (raw.from_module, raw.to_module):
            continue
        groups[(raw.from_module, raw.to_module, raw.edge_type)].append(raw)

    edges = [
        Edge(
            from_module=from_module,
            to_module=to_module,
            edge_type=edge_type,
            weight=len(members),
            evidence=tuple(member.evidence for member in members[:max_evidence]),
        )
        for (from_module, to_module, edge_type), members in groups.items()
    ]
    edges.sort(key=lambda e: (-e.weight, e.from_module, e.to_module, e.edge_type.value))
    return edges


class _EdgeCollector(UsageVisitor):
    """Turns one file's usage nodes into php_symbol_use raw edges."""

    def __init__(self, resolver: ModuleResolver, owner: str, source_file: str, sink: WarningSink) -> None:
        self.resolver = resolver
        self.owner = owner
        self.source_file = source_file
        self.sink = sink
        self.raw_edges: list[RawEdge] = []

    def _add(self, node: UsageNode) -> None:
        target = self.resolver.resolve_class(node.name)
        if target == UNKNOWN_MODULE:
            self.sink.add(WarningCategory.UNRESOLVED_CLASS, f"Cannot map {node.name} to a module", self.source_file)
            return
        self.raw_edges.append(RawEdge(
            from_module=self.owner,
            to_module=target,
            edge_type=EdgeType.PHP_SYMBOL_USE,
            evidence=Evidence.from_php_ast(
                self.source_file, node.line, note=f"{_USAGE_NOTES[node.kind]} {node.name}"
            ),
            order=len(self.raw_edges),
        ))

    def visit_new(self, node: UsageNode) -> None:
        self._add(node)

    def visit_static_access(self, node: UsageNode) -> None:
        self._add(node)

    def visit_extends(self, node: UsageNode) -> None:
        self._add(node)

    def visit_implements(self, node: UsageNode) -> None:
        self._add(node)

    def visit_interface_extends(self, node: UsageNode) -> None:
        self._add(node)

    def visit_trait_use(self, node: UsageNode) -> None:
        self._add(node)

    def visit_param_type(self, node: UsageNode) -> None:
        self._add(node)

    def visit_return_type(self, node: UsageNode) -> None:
        self._add(node)

    def visit_property_type(self, node: UsageNode) -> None:
        self._add(node)

    def visit_catch(self, node: UsageNode) -> None:
        self._add(node)

    def visit_instanceof(self, node: UsageNode) -> None:
        self._add(node)


class DependencyGraphBuilder:
    """Builds the typed module dependency graph for one repository."""

    def __init__(
        self,
        repo_root: Path,
        resolver: ModuleResolver,
        max_evidence_per_edge: int = 5,
        workers: int = 1
    ) -> None:
        self.repo_root = repo_root
        self.resolver = resolver
        self.max_evidence_per_edge = max_evidence_per_edge
        self.workers = workers

    def build(
        self,
        scan_roots: Iterable[str],
        declarations: Optional[DeclarationIndex] = None
    ) -> Extraction[DependencyGraph]:
        """
        Build the graph from source files, manifests and declarations.

        Args:
            scan_roots: Repository-relative directories to scan
            declarations: Parsed declaration files; runtime edges are skipped when None

        Returns:
            Extraction of the DependencyGraph
        """
        sink = WarningSink("dependency_graph")
        roots = list(scan_roots)
        raw_edges: list[RawEdge] = []

        raw_edges.extend(self._structural_edges(sink))

        files = [
            path for path in find_files(self.repo_root, roots, "*.php")
            if not file_id(path, self.repo_root).startswith("app/design/")
        ]
        logger.info(f"Scanning {len(files)} PHP files")
        if self.workers > 1 and len(files) > PARALLEL_MIN_FILES:
            results = self._scan_parallel(files)
        else:
            results = [self._scan_file(path) for path in files]

        symbols = 0
        for result in results:
            file_edges, file_symbols = sink.absorb(result)
            raw_edges.extend(file_edges)
            symbols += file_symbols

        if declarations is not None:
            raw_edges.extend(self._declaration_edges(declarations))

        modules = set(self.resolver.modules)
        edges = lift_edges(raw_edges, self.max_evidence_per_edge)
        for edge in edges:
            modules.add(edge.from_module)
            modules.add(edge.to_module)

        graph = DependencyGraph(
            edges=edges,
            modules=sorted(modules),
            files_scanned=len(files),
            symbols_seen=symbols,
        )
        logger.info(f"Built graph: {len(graph.edges)} edges across {len(graph.modules)} modules")
        return sink.result(graph)

    def _scan_parallel(self, files: list[Path]) -> list[Extraction[tuple[list[RawEdge], int]]]:
        # map() keeps input order, so merged output is independent of scheduling
        results: list[Extraction[tuple[list[RawEdge], int]]] = []
        with ThreadPoolExecutor(max_workers=self.workers) as executor:
            for processed, result in enumerate(executor.map(self._scan_file, files), 1):
                results.append(result)
                log_progress(logger, processed, len(files), "Scanning", interval=200)
        return results

    def _scan_file(self, path: Path) -> Extraction[tuple[list[RawEdge], int]]:
        sink = WarningSink("dependency_graph")
        rel = file_id(path, self.repo_root)
        owner = self.resolver.resolve_file(rel)
        if owner == UNKNOWN_MODULE:
            return sink.result(([], 0))

        try:
            content = path.read_text(encoding="utf-8", errors="replace")
            scan = scan_source(content)
        except (OSError, SourceParseError) as e:
            sink.add(WarningCategory.PARSE_FAILURE, f"Failed to parse PHP: {e}", rel)
            return sink.result(([], 0))

        collector = _EdgeCollector(self.resolver, owner, rel, sink)
        collector.walk(scan.usages)
        return sink.result((collector.raw_edges, len(scan.usages)))

    def _structural_edges(self, sink: WarningSink) -> list[RawEdge]:
        raw_edges: list[RawEdge] = []
        known = set(self.resolver.modules)

        for mid, module in sorted(self.resolver.modules.items()):
            declared = self.resolver.sequence_evidence.get(mid)
            for order, dependency in enumerate(module.sequence):
                note = f"sequence {dependency}"
                if declared is not None:
                    evidence = replace(declared, note=note)
                else:
                    evidence = Evidence.from_filesystem(module.path, note=note)
                if not is_module_id(dependency):
                    continue
                if dependency not in known and not dependency.startswith(CORE_VENDOR_PREFIX.rstrip("\\") + "_"):
                    sink.add(
                        WarningCategory.MISSING_MODULE,
                        f"{mid} declares a sequence on {dependency}, which was not found",
                        evidence.source_file,
                    )
                raw_edges.append(RawEdge(
                    from_module=mid,
                    to_module=dependency,
                    edge_type=EdgeType.MODULE_SEQUENCE,
                    evidence=evidence,
                    order=order,
                ))

            manifest = self.resolver.composer_manifests.get(mid)
            if manifest is None:
                continue
            for order, package in enumerate(manifest.requires):
                target = self.resolver.module_for_package(package)
                if target is None:
                    continue
                raw_edges.append(RawEdge(
                    from_module=mid,
                    to_module=target,
                    edge_type=EdgeType.COMPOSER_REQUIRE,
                    evidence=Evidence.from_composer(manifest.evidence.source_file, note=f"require {package}"),
                    order=order,
                ))
        return raw_edges

    def _declaration_edges(self, declarations: DeclarationIndex) -> list[RawEdge]:
        resolve = self.resolver.resolve_class
        raw_edges: list[RawEdge] = []

        for order, pref in enumerate(declarations.preferences):
            raw_edges.append(RawEdge(pref.module, resolve(pref.target), EdgeType.DI_PREFERENCE, pref.evidence, order))

        # Virtual types can be based on other virtual types; those have no owning module.
        virtual_names = {v.target.lower() for v in declarations.virtual_types}
        for order, vtype in enumerate(declarations.virtual_types):
            if vtype.replacement.lower() in virtual_names or "\\" not in vtype.replacement:
                continue
            raw_edges.append(
                RawEdge(vtype.module, resolve(vtype.replacement), EdgeType.DI_VIRTUAL_TYPE, vtype.evidence, order)
            )

        for order, plugin in enumerate(declarations.plugins):
            if plugin.disabled:
                continue
            raw_edges.append(
                RawEdge(plugin.module, resolve(plugin.target), EdgeType.PLUGIN_INTERCEPT, plugin.evidence, order)
            )

        for order, observer in enumerate(declarations.observers):
            if observer.disabled:
                continue
            raw_edges.append(
                RawEdge(observer.module, resolve(observer.instance), EdgeType.EVENT_OBSERVE, observer.evidence, order)
            )
        return raw_edges
