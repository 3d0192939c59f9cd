"""
Tests for layered configuration loading and validation.
"""

import json
from pathlib import Path

import pytest

from modgraph.analysis.models import EdgeSubset, EdgeType
from modgraph.analysis.warnings import ConfigError
from modgraph.config import CONFIG_FILE_NAME, default_settings, load_config, merge_settings


def _write_config(root: Path, settings: object) -> Path:
    path = root / CONFIG_FILE_NAME
    path.write_text(json.dumps(settings), encoding="utf-8")
    return path


class TestMergeSettings:
    """Tests for the deep merge."""

    def test_nested_mappings_merge_key_by_key(self) -> None:
        base = {"churn": {"enabled": True, "window_days": 365}, "workers": 4}

        merged = merge_settings(base, {"churn": {"window_days": 30}})

        assert merged == {"churn": {"enabled": True, "window_days": 30}, "workers": 4}
        assert base["churn"]["window_days"] == 365

    def test_lists_replace(self) -> None:
        merged = merge_settings({"scan_roots": ["app/code", "app/design"]}, {"scan_roots": ["src"]})

        assert merged["scan_roots"] == ["src"]


class TestLoadConfig:
    """Tests for defaults, the repository file and overrides."""

    def test_defaults(self, tmp_path: Path) -> None:
        config = load_config(tmp_path)

        assert config.scan_roots == ("app/code", "app/design")
        assert config.max_evidence_per_edge == 5
        assert config.churn.enabled
        assert EdgeType.PHP_SYMBOL_USE not in config.centrality_edge_types
        assert config.coupling_subsets[EdgeSubset.CODE] == frozenset({EdgeType.PHP_SYMBOL_USE})

    def test_repository_file_overrides_defaults(self, tmp_path: Path) -> None:
        _write_config(tmp_path, {"max_evidence_per_edge": 3, "churn": {"window_days": 30}})

        config = load_config(tmp_path)

        assert config.max_evidence_per_edge == 3
        assert config.churn.window_days == 30
        assert config.churn.enabled

    def test_overrides_beat_the_file(self, tmp_path: Path) -> None:
        _write_config(tmp_path, {"max_evidence_per_edge": 3})

        config = load_config(tmp_path, overrides={"max_evidence_per_edge": 7, "churn": {"enabled": False}})

        assert config.max_evidence_per_edge == 7
        assert not config.churn.enabled

    def test_explicit_config_path(self, tmp_path: Path) -> None:
        path = tmp_path / "custom.json"
        path.write_text(json.dumps({"workers": 2}), encoding="utf-8")

        assert load_config(tmp_path, config_path=path).workers == 2

    def test_include_vendor_extends_scan_roots(self, tmp_path: Path) -> None:
        config = load_config(tmp_path, overrides={"include_vendor": True})

        assert config.effective_scan_roots == ("app/code", "app/design", "vendor")

    def test_scan_roots_are_normalized(self, tmp_path: Path) -> None:
        config = load_config(tmp_path, overrides={"scan_roots": ["/app/code/"]})

        assert config.scan_roots == ("app/code",)


class TestConfigValidation:
    """Tests for rejected configurations."""

    def test_missing_explicit_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="not found"):
            load_config(tmp_path, config_path=tmp_path / "absent.json")

    def test_file_must_be_an_object(self, tmp_path: Path) -> None:
        _write_config(tmp_path, ["not", "an", "object"])

        with pytest.raises(ConfigError, match="JSON object"):
            load_config(tmp_path)

    def test_malformed_json(self, tmp_path: Path) -> None:
        (tmp_path / CONFIG_FILE_NAME).write_text("{broken", encoding="utf-8")

        with pytest.raises(ConfigError):
            load_config(tmp_path)

    def test_overlapping_subsets(self, tmp_path: Path) -> None:
        overrides = {"coupling_subsets": {"code": ["php_symbol_use", "di_preference"]}}

        with pytest.raises(ConfigError, match="di_preference"):
            load_config(tmp_path, overrides=overrides)

    def test_global_scope_must_be_listed(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="global scope"):
            load_config(tmp_path, overrides={"scopes": ["frontend", "adminhtml"]})

    def test_evidence_cap_must_be_positive(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="max_evidence_per_edge"):
            load_config(tmp_path, overrides={"max_evidence_per_edge": 0})

    def test_unknown_edge_type(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="Invalid configuration value"):
            load_config(tmp_path, overrides={"centrality_edge_types": ["telepathy"]})

    def test_default_settings_are_valid(self) -> None:
        settings = default_settings()

        assert settings["global_scope"] in settings["scopes"]
