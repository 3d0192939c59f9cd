"""
Tests for raw edge lifting and the module graph builder.
"""

from pathlib import Path

from modgraph.analysis.declarations import collect_declarations
from modgraph.analysis.dependency_graph import DependencyGraphBuilder, lift_edges
from modgraph.analysis.models import EdgeType, Evidence, RawEdge
from modgraph.analysis.module_resolver import ModuleResolver
from modgraph.analysis.warnings import WarningCategory
from modgraph.config import SCOPES

ROOTS = ["app/code"]


def _raw(from_module: str, to_module: str, source: str, line: int, order: int = 0) -> RawEdge:
    return RawEdge(
        from_module,
        to_module,
        EdgeType.PHP_SYMBOL_USE,
        Evidence.from_php_ast(source, line, note=f"use at {line}"),
        order,
    )


def _build(repo: Path, max_evidence: int = 5, workers: int = 1):
    resolver = ModuleResolver(repo, SCOPES)
    resolver.build(ROOTS)
    declarations = collect_declarations(repo, ROOTS, resolver.resolve_file, SCOPES).value
    return DependencyGraphBuilder(repo, resolver, max_evidence, workers).build(ROOTS, declarations)


class TestLiftEdges:
    """Tests for aggregating raw observations into module edges."""

    def test_self_loops_are_dropped(self) -> None:
        edges = lift_edges([_raw("A_One", "A_One", "a.php", 1), _raw("A_One", "B_Two", "a.php", 2)], 5)

        assert [(e.from_module, e.to_module) for e in edges] == [("A_One", "B_Two")]

    def test_unknown_endpoints_are_dropped(self) -> None:
        assert lift_edges([_raw("A_One", "unknown", "a.php", 1)], 5) == []

    def test_weight_counts_every_observation_and_evidence_is_capped(self) -> None:
        raws = [_raw("A_One", "B_Two", "a.php", line) for line in range(1, 8)]

        edge = lift_edges(raws, 3)[0]

        assert edge.weight == 7
        assert len(edge.evidence) == 3
        assert edge.evidence_truncated
        assert edge.to_dict()["total_evidence_found"] == 7

    def test_retained_evidence_is_independent_of_input_order(self) -> None:
        raws = [
            _raw("A_One", "B_Two", "z.php", 4),
            _raw("A_One", "B_Two", "a.php", 9),
            _raw("A_One", "B_Two", "a.php", 2),
        ]

        forward = lift_edges(raws, 2)[0]
        backward = lift_edges(list(reversed(raws)), 2)[0]

        assert forward.evidence == backward.evidence
        assert [(e.source_file, e.line_start) for e in forward.evidence] == [("a.php", 2), ("a.php", 9)]

    def test_edges_sorted_by_weight_then_ids(self) -> None:
        raws = [
            _raw("A_One", "C_Three", "a.php", 1),
            _raw("A_One", "B_Two", "a.php", 2),
            _raw("A_One", "B_Two", "a.php", 3),
            _raw("A_One", "B_Four", "a.php", 4),
        ]

        edges = lift_edges(raws, 5)

        assert [e.to_module for e in edges] == ["B_Two", "B_Four", "C_Three"]

    def test_untruncated_edge_has_no_truncation_marker(self) -> None:
        edge = lift_edges([_raw("A_One", "B_Two", "a.php", 1)], 5)[0]

        assert "evidence_truncated" not in edge.to_dict()


class TestDependencyGraphBuilder:
    """Tests for building the typed graph from a module tree."""

    def test_shop_edges(self, shop_repo: Path) -> None:
        graph = _build(shop_repo).value
        weights = {(e.from_module, e.to_module, e.edge_type): e.weight for e in graph.edges}

        assert weights == {
            ("Acme_Catalog", "Acme_Core", EdgeType.PHP_SYMBOL_USE): 5,
            ("Acme_Catalog", "Acme_Core", EdgeType.DI_PREFERENCE): 2,
            ("Acme_Catalog", "Acme_Core", EdgeType.MODULE_SEQUENCE): 1,
            ("Acme_Catalog", "Acme_Core", EdgeType.PLUGIN_INTERCEPT): 1,
        }
        assert graph.modules == ["Acme_Catalog", "Acme_Core"]

    def test_every_edge_carries_evidence(self, shop_repo: Path) -> None:
        graph = _build(shop_repo).value

        for edge in graph.edges:
            assert 1 <= len(edge.evidence) <= edge.weight

    def test_evidence_cap_applies(self, shop_repo: Path) -> None:
        graph = _build(shop_repo, max_evidence=2).value
        [symbol_use] = [e for e in graph.edges if e.edge_type == EdgeType.PHP_SYMBOL_USE]

        assert symbol_use.weight == 5
        assert len(symbol_use.evidence) == 2

    def test_edge_confidence_combines_its_evidence(self, shop_repo: Path) -> None:
        graph = _build(shop_repo).value

        for edge in graph.edges:
            data = edge.to_dict()
            assert 0.0 < data["confidence"] <= 1.0
            assert data["confidence"] >= max(e.confidence for e in edge.evidence)

    def test_adjacency_lists_every_module(self, shop_repo: Path) -> None:
        graph = _build(shop_repo).value

        assert graph.adjacency([EdgeType.EVENT_OBSERVE]) == {"Acme_Catalog": [], "Acme_Core": []}
        assert graph.adjacency() == {"Acme_Catalog": ["Acme_Core"], "Acme_Core": []}

    def test_summary_counts(self, shop_repo: Path) -> None:
        summary = _build(shop_repo).value.to_dict()["summary"]

        assert summary["total_edges"] == 4
        assert summary["total_modules_analyzed"] == 2
        assert summary["files_scanned"] == 5
        assert summary["edge_type_counts"]["php_symbol_use"] == 1

    def test_parallel_scan_matches_serial(self, make_tree) -> None:
        files = {
            "app/code/Acme/Core/etc/module.xml": '<config><module name="Acme_Core"/></config>',
            "app/code/Acme/Shop/etc/module.xml": '<config><module name="Acme_Shop"/></config>',
        }
        for index in range(15):
            files[f"app/code/Acme/Shop/Model/Item{index}.php"] = (
                "<?php\nnamespace Acme\\Shop\\Model;\n\n"
                f"class Item{index} extends \\Acme\\Core\\Model\\Base\n{{\n}}\n"
            )
        repo = make_tree(files)

        serial = _build(repo, workers=1).value
        parallel = _build(repo, workers=4).value

        assert [e.to_dict() for e in serial.edges] == [e.to_dict() for e in parallel.edges]
        assert serial.edges[0].weight == 15

    def test_missing_sequence_target_is_warned(self, make_tree) -> None:
        repo = make_tree({
            "app/code/Acme/Shop/etc/module.xml": (
                '<config><module name="Acme_Shop"><sequence>'
                '<module name="Acme_Gone"/><module name="Magento_Store"/>'
                "</sequence></module></config>"
            ),
        })

        extraction = _build(repo)

        missing = [w for w in extraction.warnings if w.category == WarningCategory.MISSING_MODULE]
        assert len(missing) == 1
        assert "Acme_Gone" in missing[0].message
        assert {e.to_module for e in extraction.value.edges} == {"Acme_Gone", "Magento_Store"}

    def test_broken_php_file_is_a_parse_failure(self, make_tree) -> None:
        repo = make_tree({
            "app/code/Acme/Shop/etc/module.xml": '<config><module name="Acme_Shop"/></config>',
            "app/code/Acme/Shop/Model/Broken.php": "<?php\nclass Broken {\n    public function x() {\n",
        })

        extraction = _build(repo)

        assert [w.category for w in extraction.warnings] == [WarningCategory.PARSE_FAILURE]
        assert extraction.warnings[0].source == "app/code/Acme/Shop/Model/Broken.php"
