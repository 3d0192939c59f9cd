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
Warnings and Extraction Results

Extraction steps never write to shared state. Each one returns an
`Extraction` holding its primary value plus the ordered warnings it
produced; the compiler folds those into a `WarningLog` which computes
the analysis integrity score reported next to the metrics.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, Iterable, TypeVar

T = TypeVar("T")
U = TypeVar("U")


class ModgraphError(Exception):
    """Base class for errors that reach the caller."""


class ConfigError(ModgraphError):
    """The configuration could not be read or is inconsistent."""


class OutputError(ModgraphError):
    """Output documents could not be written."""


class WarningCategory(str, Enum):
    PARSE_FAILURE = "parse_failure"
    INVALID_XML = "invalid_xml"
    UNRESOLVED_CLASS = "unresolved_class"
    UNRESOLVED_FILE = "unresolved_file"
    AMBIGUOUS_DI = "ambiguous_di"
    MISSING_MODULE = "missing_module"
    MISSING_INPUT = "missing_input"
    SIGNAL_UNAVAILABLE = "signal_unavailable"
    GENERAL = "general"


@dataclass(frozen=True)
class AnalysisWarning:
    """A gap in the extraction, tied to the file or item that caused it."""
    category: WarningCategory
    message: str
    source: str = ""
    extractor: str = ""

    def to_dict(self) -> dict[str, str]:
        return {
            "category": self.category.value,
            "message": self.message,
            "source": self.source,
            "extractor": self.extractor,
        }


@dataclass(frozen=True)
class Extraction(Generic[T]):
    """A primary result plus the warnings produced while computing it."""
    value: T
    warnings: tuple[AnalysisWarning, ...] = ()

    @property
    def clean(self) -> bool:
        return not self.warnings


class WarningSink:
    """
    Local, per-call accumulator.

    Analyzers create one for the duration of a call and hand its contents
    back through `Extraction`; it is never shared between calls.
    """

    def __init__(self, extractor: str) -> None:
        self.extractor = extractor
        self._items: list[AnalysisWarning] = []

    def add(self, category: WarningCategory, message: str, source: str = "") -> None:
        self._items.append(AnalysisWarning(category, message, source, self.extractor))

    def extend(self, warnings: Iterable[AnalysisWarning]) -> None:
        self._items.extend(warnings)

    def absorb(self, extraction: Extraction[U]) -> U:
        """Take over a nested extraction's warnings and return its value."""
        self._items.extend(extraction.warnings)
        return extraction.value

    def result(self, value: U) -> Extraction[U]:
        return Extraction(value, tuple(self._items))

    def __len__(self) -> int:
        return len(self._items)


_SCORE_NOTES: dict[WarningCategory, str] = {
    WarningCategory.UNRESOLVED_CLASS: "unresolved class(es): coupling metrics may be incomplete",
    WarningCategory.AMBIGUOUS_DI: "ambiguous override resolution(s): resolution confidence degraded",
    WarningCategory.INVALID_XML: "invalid declaration file(s): override/plugin/observer graphs may be incomplete",
    WarningCategory.PARSE_FAILURE: "unparseable source file(s): code edges may be missing",
    WarningCategory.MISSING_MODULE: "missing module(s): dependency graph has gaps",
    WarningCategory.UNRESOLVED_FILE: "unresolved file(s): module attribution may be inaccurate",
    WarningCategory.MISSING_INPUT: "missing scan root(s): parts of the tree were not analyzed",
    WarningCategory.SIGNAL_UNAVAILABLE: "auxiliary signal(s) unavailable: hotspot ranking uses centrality only",
}


@dataclass
class WarningLog:
    """Ordered collection of every warning produced by one run."""
    warnings: list[AnalysisWarning] = field(default_factory=list)
    total_symbols: int = 1
    total_targets: int = 1

    def absorb(self, extraction: Extraction[T]) -> T:
        """Record an extraction's warnings and return its value."""
        self.warnings.extend(extraction.warnings)
        return extraction.value

    def set_totals(self, total_symbols: int, total_targets: int) -> None:
        self.total_symbols = max(1, total_symbols)
        self.total_targets = max(1, total_targets)

    def count_by_category(self) -> dict[str, int]:
        counts = {category.value: 0 for category in WarningCategory}
        for warning in self.warnings:
            counts[warning.category.value] += 1
        return counts

    def integrity_score(self) -> float:
        """
        Ratio-based completeness score in [0, 1].

        Starts at 1.0 and loses bounded amounts per warning category, so a
        handful of unresolved classes in a large tree barely registers while
        broken declaration files weigh in directly.
        """
        counts = self.count_by_category()
        score = 1.0
        unresolved = counts[WarningCategory.UNRESOLVED_CLASS.value]
        if unresolved:
            score -= min(0.4, unresolved / self.total_symbols * 0.4)
        ambiguous = counts[WarningCategory.AMBIGUOUS_DI.value]
        if ambiguous:
            score -= min(0.2, ambiguous / self.total_targets * 0.2)
        invalid_xml = counts[WarningCategory.INVALID_XML.value]
        if invalid_xml:
            score -= min(0.3, invalid_xml * 0.1)
        parse_failures = counts[WarningCategory.PARSE_FAILURE.value]
        if parse_failures:
            score -= min(0.3, parse_failures * 0.1)
        missing = counts[WarningCategory.MISSING_MODULE.value]
        if missing:
            score -= min(0.1, missing * 0.05)
        return round(max(0.0, min(1.0, score)), 3)

    def summary(self) -> dict[str, Any]:
        counts = self.count_by_category()
        score = self.integrity_score()
        notes = [
            f"{counts[category.value]} {text}"
            for category, text in _SCORE_NOTES.items()
            if counts[category.value]
        ]
        return {
            "counts": counts,
            "total": len(self.warnings),
            "analysis_integrity_score": score,
            "degraded": score < 1.0,
            "integrity_basis": {
                "total_symbols": self.total_symbols,
                "total_di_targets": self.total_targets,
            },
            "integrity_notes": notes or ["No integrity concerns detected"],
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "warnings": [w.to_dict() for w in self.warnings],
            "summary": self.summary(),
        }
