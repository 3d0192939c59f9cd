"""
Tests for the end-to-end compiler run and the CLI.
"""

import json
from pathlib import Path

from modgraph.analysis.warnings import WarningCategory
from modgraph.compiler import DOCUMENT_NAMES, GraphCompiler
from modgraph.config import AnalyzerConfig
from modgraph.main import main


class TestGraphCompiler:
    """Tests for one full analysis run."""

    def test_documents_present(self, shop_repo: Path, offline_config: AnalyzerConfig) -> None:
        result = GraphCompiler(shop_repo, offline_config).compile()

        assert tuple(result.documents) == DOCUMENT_NAMES

    def test_clean_run_is_not_degraded(self, shop_repo: Path, offline_config: AnalyzerConfig) -> None:
        result = GraphCompiler(shop_repo, offline_config).compile()

        assert result.warnings.warnings == []
        assert result.documents["architectural_debt"]["analysis_integrity_score"] == 1.0
        assert result.documents["architectural_debt"]["degraded"] is False

    def test_scoped_resolution_and_delegation(self, shop_repo: Path, offline_config: AnalyzerConfig) -> None:
        result = GraphCompiler(shop_repo, offline_config).compile()

        summary = result.documents["di_resolution_map"]["summary"]
        assert summary["total_targets"] == 1
        assert summary["multi_scope_targets"] == 1

        [chain] = result.chains
        assert chain.scope == "webapi_rest"
        assert chain.final_type == "Acme\\Catalog\\Model\\CatalogThing"
        assert chain.divergence == {"graphql": "Acme\\Catalog\\Model\\GraphThing"}

    def test_plugin_seam_follows_the_override(self, shop_repo: Path, offline_config: AnalyzerConfig) -> None:
        result = GraphCompiler(shop_repo, offline_config).compile()

        [seam] = result.seams.seams
        assert seam.seam_id == "acme\\catalog\\model\\catalogthing::save"
        assert seam.declared_targets == ["Acme\\Core\\Api\\ThingInterface"]
        assert seam.risk_score == 0.5

    def test_dependencies_document(self, shop_repo: Path, offline_config: AnalyzerConfig) -> None:
        document = GraphCompiler(shop_repo, offline_config).compile().documents["dependencies"]

        assert [m["module_id"] for m in document["modules"]] == ["Acme_Catalog", "Acme_Core"]
        assert set(document["coupling"]) == {"structural", "code", "runtime", "composite"}
        assert document["summary"]["avg_instability"]["composite"] == 0.5

    def test_repeated_runs_are_byte_identical(self, shop_repo: Path, offline_config: AnalyzerConfig, tmp_path_factory) -> None:
        compiler = GraphCompiler(shop_repo, offline_config)
        first = tmp_path_factory.mktemp("first")
        second = tmp_path_factory.mktemp("second")

        compiler.write_documents(compiler.compile(), first)
        compiler.write_documents(compiler.compile(), second)

        for name in DOCUMENT_NAMES:
            assert (first / f"{name}.json").read_bytes() == (second / f"{name}.json").read_bytes()

    def test_empty_input_still_produces_documents(self, tmp_path: Path, offline_config: AnalyzerConfig) -> None:
        result = GraphCompiler(tmp_path, offline_config).compile()

        assert [w.category for w in result.warnings.warnings] == [WarningCategory.MISSING_INPUT]
        assert result.documents["dependencies"]["summary"]["total_edges"] == 0
        assert result.documents["hotspots"]["rankings"] == []
        assert result.documents["plugin_seams"]["seams"] == []

    def test_churn_unavailable_without_git(self, shop_repo: Path) -> None:
        config = AnalyzerConfig(workers=1)

        result = GraphCompiler(shop_repo, config).compile()

        assert not result.churn.available
        assert [w.category for w in result.warnings.warnings] == [WarningCategory.SIGNAL_UNAVAILABLE]
        assert result.documents["hotspots"]["summary"]["churn_available"] is False

    def test_hotspots_without_churn_rank_on_centrality(self, make_tree, shop_files, offline_config: AnalyzerConfig) -> None:
        """An idle module is not a hotspot just because no history was read."""
        files = shop_files
        files["app/code/Acme/Idle/etc/module.xml"] = '<?xml version="1.0"?>\n<config><module name="Acme_Idle"/></config>\n'
        repo = make_tree(files)

        hotspots = GraphCompiler(repo, offline_config).compile().hotspots

        assert not hotspots.churn_available
        assert {r.module for r in hotspots.rankings} == {"Acme_Catalog", "Acme_Core", "Acme_Idle"}
        assert len(hotspots.high_risk) < len(hotspots.rankings)
        assert "Acme_Idle" not in [r.module for r in hotspots.high_risk]
        assert hotspots.to_dict()["summary"]["hotspot_formula"] == "percentile(centrality)"

    def test_virtual_types_are_reported_apart_from_preferences(self, make_tree, shop_files, offline_config: AnalyzerConfig) -> None:
        files = shop_files
        di_path = "app/code/Acme/Catalog/etc/di.xml"
        files[di_path] = files[di_path].replace(
            "</config>",
            '    <virtualType name="catalogThingCache" type="Acme\\Core\\Model\\Thing"/>\n</config>',
        )
        repo = make_tree(files)

        result = GraphCompiler(repo, offline_config).compile()
        document = result.documents["di_resolution_map"]

        assert document["summary"]["total_targets"] == 1
        assert document["summary"]["total_virtual_types"] == 1
        assert [t["interface"] for t in document["resolutions"]] == ["Acme\\Core\\Api\\ThingInterface"]
        assert [t["interface"] for t in document["virtual_types"]] == ["catalogThingCache"]
        assert result.virtual_types.final_type("catalogThingCache", "global") == "Acme\\Core\\Model\\Thing"

    def test_default_output_dir(self, shop_repo: Path, offline_config: AnalyzerConfig) -> None:
        compiler = GraphCompiler(shop_repo, offline_config)

        paths = compiler.write_documents(compiler.compile())

        assert [p.name for p in paths] == [f"{name}.json" for name in DOCUMENT_NAMES]
        assert paths[0].parent == shop_repo.resolve() / ".modgraph"
        assert json.loads(paths[-1].read_text(encoding="utf-8"))["summary"]["total"] == 0


class TestCli:
    """Tests for the command line entry point."""

    def test_report_prints_summary(self, shop_repo: Path, capsys) -> None:
        code = main(["report", str(shop_repo), "--no-churn", "--workers", "1"])

        assert code == 0
        out = capsys.readouterr().out
        assert "MODULE GRAPH REPORT" in out
        assert "Modules: 2" in out
        assert not (shop_repo / ".modgraph").exists()

    def test_compile_writes_documents(self, shop_repo: Path, tmp_path_factory) -> None:
        out_dir = tmp_path_factory.mktemp("out")

        code = main(["compile", str(shop_repo), "--no-churn", "--out", str(out_dir)])

        assert code == 0
        assert sorted(p.stem for p in out_dir.glob("*.json")) == sorted(DOCUMENT_NAMES)

    def test_missing_repository(self, tmp_path: Path) -> None:
        assert main(["report", str(tmp_path / "nope")]) == 2

    def test_bad_config_is_reported(self, shop_repo: Path) -> None:
        assert main(["report", str(shop_repo), "--config", str(shop_repo / "absent.json")]) == 1

    def test_no_command(self, capsys) -> None:
        assert main([]) == 1
