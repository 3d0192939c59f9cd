"""
Tests for the change frequency signal and its cache.
"""

from pathlib import Path

from modgraph.analysis.churn import ChurnCache, ChurnSignal, collect_churn, count_file_changes, roll_up
from modgraph.analysis.identity import module_id_from_path
from modgraph.analysis.warnings import WarningCategory

ROOTS = ["app/code"]


def _fake_git(repo: Path, head: str) -> None:
    git_dir = repo / ".git"
    git_dir.mkdir(exist_ok=True)
    (git_dir / "HEAD").write_text(head + "\n", encoding="utf-8")


class TestCounting:
    """Tests for parsing git output and rolling counts up to modules."""

    def test_count_file_changes(self) -> None:
        output = "app/code/Acme/A/x.php\n\napp/code/Acme/A/x.php\napp/code/Acme/B/y.php\n\n"

        assert count_file_changes(output) == {"app/code/Acme/A/x.php": 2, "app/code/Acme/B/y.php": 1}

    def test_roll_up_skips_unowned_files(self) -> None:
        files = {"app/code/Acme/A/x.php": 2, "app/code/Acme/A/y.php": 3, "README.md": 9}

        assert roll_up(files, module_id_from_path) == {"Acme_A": 5}


class TestCollectChurn:
    """Tests for degraded operation and caching."""

    def test_missing_repository_is_a_warning(self, tmp_path: Path) -> None:
        extraction = collect_churn(tmp_path, ROOTS, module_id_from_path)

        assert not extraction.value.available
        assert extraction.value.module_churn == {}
        assert [w.category for w in extraction.warnings] == [WarningCategory.SIGNAL_UNAVAILABLE]

    def test_no_existing_roots_is_a_warning(self, tmp_path: Path) -> None:
        """Without a scan root git must not be asked for the whole history."""
        _fake_git(tmp_path, "0123456789abcdef")

        extraction = collect_churn(tmp_path, ROOTS, module_id_from_path)

        assert not extraction.value.available
        assert extraction.value.file_churn == {}
        assert [w.category for w in extraction.warnings] == [WarningCategory.SIGNAL_UNAVAILABLE]
        assert "No scan roots" in extraction.warnings[0].message

    def test_cache_hit_skips_git(self, tmp_path: Path) -> None:
        (tmp_path / "app" / "code").mkdir(parents=True)
        _fake_git(tmp_path, "0123456789abcdef")
        cache = ChurnCache(tmp_path)
        cache.write(365, ROOTS, ChurnSignal(
            file_churn={"app/code/Acme/A/x.php": 4},
            module_churn={"Acme_A": 4},
        ))

        extraction = collect_churn(tmp_path, ROOTS, module_id_from_path, cache=cache)

        assert extraction.clean
        assert extraction.value.from_cache
        assert extraction.value.module_churn == {"Acme_A": 4}

    def test_cache_writes_gitignore(self, tmp_path: Path) -> None:
        _fake_git(tmp_path, "0123456789abcdef")
        cache = ChurnCache(tmp_path)

        cache.write(365, ROOTS, ChurnSignal())

        assert (cache.cache_dir / ".gitignore").read_text(encoding="utf-8") == "*\n"


class TestChurnCache:
    """Tests for cache keying."""

    def test_new_head_is_a_miss(self, tmp_path: Path) -> None:
        _fake_git(tmp_path, "aaaa")
        cache = ChurnCache(tmp_path)
        cache.write(365, ROOTS, ChurnSignal(module_churn={"Acme_A": 1}))

        _fake_git(tmp_path, "bbbb")

        assert cache.read(365, ROOTS) is None

    def test_window_and_roots_are_part_of_the_key(self, tmp_path: Path) -> None:
        _fake_git(tmp_path, "aaaa")
        cache = ChurnCache(tmp_path)
        cache.write(365, ROOTS, ChurnSignal(module_churn={"Acme_A": 1}))

        assert cache.read(365, ROOTS) is not None
        assert cache.read(30, ROOTS) is None
        assert cache.read(365, ["app/code", "vendor"]) is None

    def test_symbolic_head(self, tmp_path: Path) -> None:
        _fake_git(tmp_path, "ref: refs/heads/main")
        ref = tmp_path / ".git" / "refs" / "heads" / "main"
        ref.parent.mkdir(parents=True)
        ref.write_text("cafebabe\n", encoding="utf-8")

        assert ChurnCache(tmp_path).head_commit() == "cafebabe"

    def test_corrupt_cache_is_a_miss(self, tmp_path: Path) -> None:
        _fake_git(tmp_path, "aaaa")
        cache = ChurnCache(tmp_path)
        cache.cache_dir.mkdir()
        cache.path.write_text("{not json", encoding="utf-8")

        assert cache.read(365, ROOTS) is None
