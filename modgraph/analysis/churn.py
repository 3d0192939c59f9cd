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
Change Frequency Signal

Counts how often files changed inside the history window using
`git log`, and rolls file counts up to modules. Results are cached per
HEAD commit so repeated runs skip the subprocess.
"""

from __future__ import annotations

import hashlib
import json
import subprocess
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, Optional

from modgraph.analysis.identity import UNKNOWN_MODULE
from modgraph.analysis.warnings import Extraction, WarningCategory, WarningSink
from modgraph.config import CACHE_DIR_NAME
from modgraph.utils.logging_config import get_logger

logger = get_logger(__name__)

CACHE_FILE_NAME = "churn.json"


@dataclass
class ChurnSignal:
    file_churn: dict[str, int] = field(default_factory=dict)
    module_churn: dict[str, int] = field(default_factory=dict)
    available: bool = True
    from_cache: bool = False


def roots_hash(scan_roots: Iterable[str]) -> str:
    return hashlib.sha1("|".join(sorted(scan_roots)).encode("utf-8")).hexdigest()


class ChurnCache:
    """
    Repository-local churn cache.

    Keyed by HEAD commit, window length and scan roots. Any read problem
    is a miss.
    """

    def __init__(self, repo_root: Path, cache_dir: str = CACHE_DIR_NAME) -> None:
        self.repo_root = repo_root
        self.cache_dir = repo_root / cache_dir
        self.path = self.cache_dir / CACHE_FILE_NAME

    def head_commit(self) -> str:
        """HEAD commit read from the .git directory, or "unknown"."""
        git_dir = self.repo_root / ".git"
        try:
            head = (git_dir / "HEAD").read_text(encoding="utf-8").strip()
            if head.startswith("ref: "):
                return (git_dir / head[5:]).read_text(encoding="utf-8").strip() or "unknown"
        except OSError:
            return "unknown"
        return head or "unknown"

    def read(self, window_days: int, scan_roots: Iterable[str]) -> Optional[dict[str, dict[str, int]]]:
        try:
            cached = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return None
        if not isinstance(cached, dict):
            return None

        commit = self.head_commit()
        if commit == "unknown" or cached.get("commit") != commit:
            return None
        if cached.get("window_days") != window_days:
            return None
        if cached.get("roots_hash") != roots_hash(scan_roots):
            return None

        file_churn = cached.get("file_churn")
        module_churn = cached.get("module_churn")
        if not isinstance(file_churn, dict) or not isinstance(module_churn, dict):
            return None
        logger.debug(f"Churn cache hit for {commit[:12]}")
        return {"file_churn": file_churn, "module_churn": module_churn}

    def write(self, window_days: int, scan_roots: Iterable[str], signal: ChurnSignal) -> None:
        data: dict[str, Any] = {
            "commit": self.head_commit(),
            "window_days": window_days,
            "roots_hash": roots_hash(scan_roots),
            "created_at": datetime.now(timezone.utc).isoformat(),
            "file_churn": signal.file_churn,
            "module_churn": signal.module_churn,
        }
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(data, indent=2, sort_keys=True) + "\n", encoding="utf-8")
            gitignore = self.cache_dir / ".gitignore"
            if not gitignore.exists():
                gitignore.write_text("*\n", encoding="utf-8")
        except OSError as e:
            logger.warning(f"Could not write churn cache {self.path}: {e}")


def count_file_changes(output: str) -> dict[str, int]:
    """Count path occurrences in `git log --name-only` output."""
    counts: dict[str, int] = defaultdict(int)
    for line in output.splitlines():
        line = line.strip()
        if line:
            counts[line] += 1
    return dict(sorted(counts.items()))


def roll_up(file_churn: dict[str, int], module_of: Callable[[str], str]) -> dict[str, int]:
    modules: dict[str, int] = defaultdict(int)
    for path, count in file_churn.items():
        module = module_of(path)
        if module != UNKNOWN_MODULE:
            modules[module] += count
    return dict(sorted(modules.items()))


def collect_churn(
    repo_root: Path,
    scan_roots: Iterable[str],
    module_of: Callable[[str], str],
    window_days: int = 365,
    timeout: float = 60.0,
    cache: Optional[ChurnCache] = None
) -> Extraction[ChurnSignal]:
    """
    Per-file and per-module change counts within the window.

    A missing repository, absent scan roots, a missing git binary, a
    failing command or a timeout give an empty, unavailable signal plus
    a warning.

    Args:
        repo_root: Repository root
        scan_roots: Repository-relative paths passed to git as pathspecs
        module_of: Maps a repository-relative file to its module ID
        window_days: History window
        timeout: Seconds before the git subprocess is abandoned
        cache: Optional cache consulted before and written after git runs

    Returns:
        Extraction of ChurnSignal
    """
    sink = WarningSink("churn")
    roots = [r.strip("/") for r in scan_roots if (repo_root / r).is_dir()]

    if not (repo_root / ".git").exists():
        sink.add(WarningCategory.SIGNAL_UNAVAILABLE, "Not a git repository; change frequency unavailable", str(repo_root))
        return sink.result(ChurnSignal(available=False))

    # an empty pathspec would count the whole repository
    if not roots:
        sink.add(WarningCategory.SIGNAL_UNAVAILABLE, "No scan roots exist; change frequency unavailable", str(repo_root))
        return sink.result(ChurnSignal(available=False))

    if cache is not None:
        cached = cache.read(window_days, roots)
        if cached is not None:
            return sink.result(ChurnSignal(
                file_churn=dict(cached["file_churn"]),
                module_churn=dict(cached["module_churn"]),
                from_cache=True,
            ))

    command = ["git", "log", "--name-only", "--pretty=format:", f"--since={window_days} days ago", "--", *roots]
    try:
        completed = subprocess.run(
            command, cwd=repo_root, capture_output=True, text=True, timeout=timeout, check=False
        )
    except FileNotFoundError:
        sink.add(WarningCategory.SIGNAL_UNAVAILABLE, "git executable not found", "git")
        return sink.result(ChurnSignal(available=False))
    except subprocess.TimeoutExpired:
        sink.add(WarningCategory.SIGNAL_UNAVAILABLE, f"git log timed out after {timeout}s", "git")
        return sink.result(ChurnSignal(available=False))

    if completed.returncode != 0:
        message = completed.stderr.strip().splitlines()[0] if completed.stderr.strip() else f"exit {completed.returncode}"
        sink.add(WarningCategory.SIGNAL_UNAVAILABLE, f"git log failed: {message}", "git")
        return sink.result(ChurnSignal(available=False))

    file_churn = count_file_changes(completed.stdout)
    signal = ChurnSignal(file_churn=file_churn, module_churn=roll_up(file_churn, module_of))
    logger.info(f"Collected churn for {len(file_churn)} files across {len(signal.module_churn)} modules")
    if cache is not None:
        cache.write(window_days, roots, signal)
    return sink.result(signal)
