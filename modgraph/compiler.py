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
Graph Compiler

Orchestrates one analysis run over a repository: module discovery,
declaration parsing, the typed dependency graph, coupling, scoped
override resolution, delegation chains, plugin seams, debt signals and
hotspot ranking. Every extractor's warnings land in one WarningLog.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from modgraph.analysis.churn import ChurnCache, ChurnSignal, collect_churn
from modgraph.analysis.coupling import CouplingReport, compute_coupling
from modgraph.analysis.declarations import DeclarationIndex, collect_declarations
from modgraph.analysis.dependency_graph import DependencyGraph, DependencyGraphBuilder
from modgraph.analysis.graph_risk import (
    DebtReport,
    HotspotReport,
    build_debt_report,
    compute_centrality,
    detect_cycles,
    find_tangles,
    rank_hotspots,
)
from modgraph.analysis.models import DelegationChain
from modgraph.analysis.module_resolver import ModuleResolver
from modgraph.analysis.plugin_seams import PluginSeamAnalyzer, PluginSeamReport
from modgraph.analysis.resolution import (
    DelegationResolver,
    ResolutionEngine,
    ResolutionMap,
    delegation_document,
    resolution_document,
    resolve_entry_points,
)
from modgraph.analysis.warnings import WarningCategory, WarningLog, WarningSink
from modgraph.config import CENTRALITY_WEIGHT, CHURN_WEIGHT, AnalyzerConfig, load_config
from modgraph.utils.logging_config import LogContext, get_logger
from modgraph.utils.report_formatter import ReportFormatter

logger = get_logger(__name__)

DOCUMENT_NAMES = (
    "dependencies",
    "di_resolution_map",
    "delegation_chains",
    "plugin_seams",
    "architectural_debt",
    "hotspots",
    "warnings",
)


@dataclass
class CompileResult:
    """Everything one run produced, plus the serialized documents."""
    graph: DependencyGraph
    coupling: CouplingReport
    declarations: DeclarationIndex
    resolution_map: ResolutionMap
    virtual_types: ResolutionMap
    chains: list[DelegationChain]
    seams: PluginSeamReport
    debt: DebtReport
    hotspots: HotspotReport
    churn: ChurnSignal
    warnings: WarningLog
    documents: dict[str, dict[str, Any]] = field(default_factory=dict)


class GraphCompiler:
    """
    Runs every analysis stage against one repository.

    Stages run in dependency order; no stage raises on bad input. Broken
    or missing files become warnings and the stage carries on with what
    it could read.
    """

    def __init__(
        self,
        repo_root: Path,
        config: Optional[AnalyzerConfig] = None,
        formatter: Optional[ReportFormatter] = None
    ) -> None:
        """
        Initialize the compiler.

        Args:
            repo_root: Repository to analyze
            config: Settings; loaded from the repository when None
            formatter: Document writer
        """
        self.repo_root = Path(repo_root).resolve()
        self.config = config or load_config(self.repo_root)
        self.formatter = formatter or ReportFormatter()

    @property
    def output_dir(self) -> Path:
        output = Path(self.config.output_dir)
        return output if output.is_absolute() else self.repo_root / output

    def compile(self) -> CompileResult:
        """
        Run the analysis.

        Returns:
            CompileResult with documents keyed by DOCUMENT_NAMES
        """
        config = self.config
        log = WarningLog()
        roots = list(config.effective_scan_roots)

        with LogContext(logger, f"Compiling module graph for {self.repo_root}"):
            present = [root for root in roots if (self.repo_root / root).is_dir()]
            if not present:
                sink = WarningSink("compiler")
                sink.add(
                    WarningCategory.MISSING_INPUT,
                    f"None of the scan roots exist: {', '.join(roots)}",
                    str(self.repo_root),
                )
                log.absorb(sink.result(None))

            resolver = ModuleResolver(self.repo_root, config.scopes)
            log.absorb(resolver.build(present))

            declarations = log.absorb(collect_declarations(
                self.repo_root, present, resolver.resolve_file, config.scopes
            ))

            builder = DependencyGraphBuilder(
                self.repo_root, resolver, config.max_evidence_per_edge, config.workers
            )
            graph = log.absorb(builder.build(present, declarations))
            coupling = compute_coupling(graph.edges, graph.modules, config.coupling_subsets)

            engine = ResolutionEngine(config.scopes, config.global_scope, resolver.resolve_class)
            resolution_map = log.absorb(engine.build(declarations.preferences))
            virtual_types = log.absorb(engine.build(declarations.virtual_types))

            chains = resolve_entry_points(
                DelegationResolver(resolution_map, virtual_types), declarations.entry_points
            )

            seam_analyzer = PluginSeamAnalyzer(
                self.repo_root, resolver, resolution_map, config.global_scope, virtual_types=virtual_types
            )
            seams = log.absorb(seam_analyzer.analyze(declarations.plugins))

            adjacency = graph.adjacency(config.centrality_edge_types)
            centrality = compute_centrality(
                graph.edges,
                graph.modules,
                config.centrality_edge_types,
                config.edge_weights,
                config.high_centrality_threshold,
            )
            debt = build_debt_report(
                detect_cycles(adjacency),
                centrality,
                resolution_map.multiple_overrides(),
                find_tangles(adjacency),
            )

            churn = self._churn(present, resolver, log)
            log.set_totals(graph.symbols_seen, len(resolution_map) + len(virtual_types))
            hotspots = rank_hotspots(
                churn.module_churn,
                {record.module: record.weighted_centrality for record in centrality},
                integrity_score=log.integrity_score(),
                threshold=config.hotspot_threshold,
                churn_weight=CHURN_WEIGHT,
                centrality_weight=CENTRALITY_WEIGHT,
                churn_available=churn.available,
            )

        result = CompileResult(
            graph=graph,
            coupling=coupling,
            declarations=declarations,
            resolution_map=resolution_map,
            virtual_types=virtual_types,
            chains=chains,
            seams=seams,
            debt=debt,
            hotspots=hotspots,
            churn=churn,
            warnings=log,
        )
        result.documents = self.build_documents(result, resolver)
        logger.info(
            f"Compiled {len(graph.modules)} modules, {len(graph.edges)} edges, "
            f"{len(log.warnings)} warnings"
        )
        return result

    def _churn(self, roots: list[str], resolver: ModuleResolver, log: WarningLog) -> ChurnSignal:
        settings = self.config.churn
        if not settings.enabled:
            return ChurnSignal(available=False)
        cache = ChurnCache(self.repo_root) if settings.cache else None
        return log.absorb(collect_churn(
            self.repo_root,
            roots,
            resolver.resolve_file,
            window_days=settings.window_days,
            timeout=settings.timeout_seconds,
            cache=cache,
        ))

    def build_documents(self, result: CompileResult, resolver: ModuleResolver) -> dict[str, dict[str, Any]]:
        dependencies = result.graph.to_dict()
        dependencies["modules"] = [module.to_dict() for module in resolver.modules.values()]
        dependencies["coupling"] = result.coupling.to_dict()
        dependencies["summary"]["avg_instability"] = {
            name: subset.avg_instability for name, subset in result.coupling.subsets.items()
        }

        integrity = {
            "analysis_integrity_score": result.warnings.integrity_score(),
            "degraded": result.warnings.integrity_score() < 1.0,
        }
        debt = result.debt.to_dict()
        debt.update(integrity)

        documents = {
            "dependencies": dependencies,
            "di_resolution_map": resolution_document(result.resolution_map, result.virtual_types),
            "delegation_chains": delegation_document(result.chains),
            "plugin_seams": result.seams.to_dict(),
            "architectural_debt": debt,
            "hotspots": result.hotspots.to_dict(),
            "warnings": result.warnings.to_dict(),
        }
        return {name: documents[name] for name in DOCUMENT_NAMES}

    def write_documents(self, result: CompileResult, output_dir: Optional[Path] = None) -> list[Path]:
        """
        Write every document as JSON.

        Raises:
            OutputError: If the output directory cannot be written
        """
        return self.formatter.write_documents(result.documents, output_dir or self.output_dir)

