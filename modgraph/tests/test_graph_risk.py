"""
Tests for cycles, tangles, centrality, debt items and hotspot ranking.
"""

import pytest

from modgraph.analysis.graph_risk import (
    build_debt_report,
    compute_centrality,
    detect_cycles,
    find_tangles,
    percentile_leq,
    rank_hotspots,
)
from modgraph.analysis.models import Edge, EdgeType, Evidence
from modgraph.analysis.resolution import MultipleOverride

WEIGHTS = {EdgeType.DI_PREFERENCE: 1.0, EdgeType.PLUGIN_INTERCEPT: 1.2, EdgeType.MODULE_SEQUENCE: 0.7}
CENTRALITY_TYPES = [EdgeType.DI_PREFERENCE, EdgeType.PLUGIN_INTERCEPT, EdgeType.MODULE_SEQUENCE]


def _edge(from_module: str, to_module: str, edge_type: EdgeType = EdgeType.DI_PREFERENCE) -> Edge:
    return Edge(from_module, to_module, edge_type, 1)


class TestDetectCycles:
    """Tests for the depth-first cycle search."""

    def test_acyclic_graph(self) -> None:
        assert detect_cycles({"A": ["B"], "B": ["C"], "C": []}) == []

    def test_two_node_cycle(self) -> None:
        [cycle] = detect_cycles({"A": ["B"], "B": ["A"]})

        assert cycle.path == ("A", "B", "A")
        assert cycle.length == 2
        assert cycle.key == "A->B"

    def test_rotations_are_reported_once(self) -> None:
        cycles = detect_cycles({"A": ["B"], "B": ["C"], "C": ["A"], "D": ["B"]})

        assert [c.key for c in cycles] == ["A->B->C"]

    def test_separate_cycles(self) -> None:
        cycles = detect_cycles({"A": ["B"], "B": ["A"], "C": ["D"], "D": ["C"]})

        assert [c.key for c in cycles] == ["A->B", "C->D"]

    def test_neighbours_missing_as_keys(self) -> None:
        assert detect_cycles({"A": ["Z"]}) == []

    def test_deterministic(self) -> None:
        graph = {"B": ["C", "A"], "A": ["B"], "C": ["B"]}

        assert [c.path for c in detect_cycles(graph)] == [c.path for c in detect_cycles(dict(reversed(graph.items())))]


class TestFindTangles:
    """Tests for strongly connected groups."""

    def test_tangles_sorted_by_size(self) -> None:
        adjacency = {"A": ["B"], "B": ["A"], "C": ["D"], "D": ["E"], "E": ["C"], "F": ["F"]}

        assert find_tangles(adjacency) == [["C", "D", "E"], ["A", "B"]]

    def test_no_tangles(self) -> None:
        assert find_tangles({"A": ["B"], "B": []}) == []


class TestComputeCentrality:
    """Tests for weighted and unweighted degree."""

    def test_weighted_and_degrees(self) -> None:
        edges = [
            _edge("A_Hub", "B_Leaf"),
            _edge("C_Leaf", "A_Hub", EdgeType.PLUGIN_INTERCEPT),
            _edge("A_Hub", "B_Leaf", EdgeType.MODULE_SEQUENCE),
        ]

        records = {r.module: r for r in compute_centrality(edges, ["D_Idle"], CENTRALITY_TYPES, WEIGHTS)}

        hub = records["A_Hub"]
        assert (hub.in_degree, hub.out_degree) == (1, 1)
        assert hub.weighted_centrality == 2.9
        assert records["D_Idle"].total_connections == 0

    def test_excluded_edge_types_are_ignored(self) -> None:
        edges = [_edge("A_Hub", "B_Leaf", EdgeType.PHP_SYMBOL_USE)]

        records = compute_centrality(edges, ["A_Hub", "B_Leaf"], CENTRALITY_TYPES, WEIGHTS)

        assert [r.weighted_centrality for r in records] == [0.0, 0.0]

    def test_threshold_marks_high_centrality(self) -> None:
        edges = [_edge(f"M_{i}", "A_Hub") for i in range(4)]

        records = compute_centrality(edges, [], CENTRALITY_TYPES, WEIGHTS, threshold=3)

        assert records[0].module == "A_Hub"
        assert records[0].is_high_centrality
        assert not any(r.is_high_centrality for r in records[1:])


class TestDebtReport:
    """Tests for debt item construction and ordering."""

    def test_severity_and_order(self) -> None:
        edges = [_edge(f"M_{i:02d}", "A_Hub") for i in range(12)]
        centrality = compute_centrality(edges, [], CENTRALITY_TYPES, WEIGHTS, threshold=10)
        cycles = detect_cycles({"A": ["B"], "B": ["A"]})
        overrides = [
            MultipleOverride("Acme\\Core\\Api\\Thing", ["Acme_A", "Acme_B"], [Evidence.from_xml("di.xml")]),
            MultipleOverride("Acme\\Core\\Api\\Other", ["Acme_A", "Acme_B", "Acme_C"]),
        ]

        report = build_debt_report(cycles, centrality, overrides)

        assert [(i.debt_type, i.severity) for i in report.items] == [
            ("circular_dependency", "high"),
            ("multiple_override", "high"),
            ("multiple_override", "medium"),
            ("god_module", "medium"),
        ]
        assert report.to_dict()["summary"]["by_severity"] == {"high": 2, "medium": 2}

    def test_god_module_above_twenty_is_high(self) -> None:
        edges = [_edge(f"M_{i:02d}", "A_Hub") for i in range(21)]
        centrality = compute_centrality(edges, [], CENTRALITY_TYPES, WEIGHTS)

        report = build_debt_report([], centrality, [])

        assert [(i.debt_type, i.severity) for i in report.items] == [("god_module", "high")]

    def test_every_item_has_evidence(self) -> None:
        report = build_debt_report(detect_cycles({"A": ["B"], "B": ["A"]}), [], [])

        assert all(item.evidence for item in report.items)
        assert report.to_dict()["summary"]["circular_dependencies"] == 1

    def test_empty(self) -> None:
        summary = build_debt_report([], [], []).to_dict()["summary"]

        assert summary["total_debt_items"] == 0
        assert summary["by_severity"] == {}


class TestPercentile:
    """Tests for the percentile normalization."""

    def test_edge_cases(self) -> None:
        assert percentile_leq(3.0, []) == 0.0
        assert percentile_leq(3.0, [3.0]) == 1.0

    def test_ties_share_a_rank(self) -> None:
        population = [1.0, 2.0, 2.0, 5.0]

        assert percentile_leq(2.0, population) == 0.75
        assert percentile_leq(5.0, population) == 1.0
        assert percentile_leq(1.0, population) == 0.25

    def test_monotonic(self) -> None:
        population = [0.0, 3.0, 3.0, 7.0, 9.0, 12.0]
        values = sorted(population)

        ranks = [percentile_leq(v, population) for v in values]

        assert ranks == sorted(ranks)


class TestRankHotspots:
    """Tests for hotspot ranking and integrity dampening."""

    CHURN = {"A_Busy": 40, "B_Calm": 2, "C_Mid": 10}
    CENTRALITY = {"A_Busy": 3.0, "B_Calm": 9.0, "C_Mid": 1.0, "unknown": 50.0}

    def test_ranking_order(self) -> None:
        report = rank_hotspots(self.CHURN, self.CENTRALITY)

        assert [r.module for r in report.rankings] == ["A_Busy", "B_Calm", "C_Mid"]
        top = report.rankings[0]
        assert top.normalized_churn == 1.0
        assert top.raw_score == pytest.approx(0.6 + 0.4 * 0.6667, abs=1e-4)

    def test_unknown_module_is_not_ranked(self) -> None:
        report = rank_hotspots(self.CHURN, self.CENTRALITY)

        assert "unknown" not in [r.module for r in report.rankings]

    def test_integrity_dampens_scores(self) -> None:
        full = rank_hotspots(self.CHURN, self.CENTRALITY)
        damped = rank_hotspots(self.CHURN, self.CENTRALITY, integrity_score=0.5)

        for before, after in zip(full.rankings, damped.rankings):
            assert after.final_score == pytest.approx(before.raw_score * 0.5, abs=1e-4)
            assert after.final_score <= before.final_score
        assert damped.to_dict()["analysis_integrity_score"] == 0.5

    def test_threshold(self) -> None:
        report = rank_hotspots(self.CHURN, self.CENTRALITY, threshold=0.7)

        assert [r.module for r in report.high_risk] == ["A_Busy"]

    def test_centrality_only(self) -> None:
        report = rank_hotspots({}, {"A_Busy": 1.0, "B_Calm": 2.0}, churn_available=False)

        assert [r.module for r in report.rankings] == ["B_Calm", "A_Busy"]
        assert [r.raw_score for r in report.rankings] == [1.0, 0.5]
        assert all(r.churn_count == 0 and r.normalized_churn == 0.0 for r in report.rankings)
        assert all(r.evidence for r in report.rankings)
        assert report.to_dict()["summary"]["churn_available"] is False

    def test_missing_churn_does_not_flag_idle_modules(self) -> None:
        """Modules with no centrality stay below the threshold when churn is unavailable."""
        centrality = {"A_Hub": 6.0, "B_Idle": 0.0, "C_Idle": 0.0, "D_Idle": 0.0}

        report = rank_hotspots({}, centrality, churn_available=False)

        assert [r.module for r in report.high_risk] == ["A_Hub"]
        assert all(r.final_score == 0.0 for r in report.rankings if r.module != "A_Hub")

    def test_zero_churn_normalizes_to_zero(self) -> None:
        report = rank_hotspots({"A_Busy": 5, "B_Calm": 0}, {"A_Busy": 1.0, "B_Calm": 1.0})

        calm = next(r for r in report.rankings if r.module == "B_Calm")
        assert calm.normalized_churn == 0.0
        assert calm.raw_score == pytest.approx(0.4)

    def test_churn_evidence_when_available(self) -> None:
        report = rank_hotspots(self.CHURN, self.CENTRALITY)

        kinds = [e.kind.value for e in report.rankings[0].evidence]
        assert kinds == ["inference", "git"]
