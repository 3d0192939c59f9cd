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
Report Formatting Utilities

Serializes compiler documents to JSON files and renders the console
summary printed by the CLI.
"""

import json
from pathlib import Path
from typing import Any, Mapping

from modgraph.analysis.warnings import OutputError
from modgraph.utils.logging_config import get_logger

logger = get_logger(__name__)


class ReportFormatter:
    """
    Writes documents and formats the run summary.

    Documents are serialized with stable indentation and key order so an
    unchanged tree produces byte-identical files.
    """

    def __init__(self, indent: int = 2, max_items: int = 5) -> None:
        """
        Initialize the formatter.

        Args:
            indent: JSON indentation
            max_items: Entries shown per section of the console summary
        """
        self.indent = indent
        self.max_items = max_items

    def serialize(self, document: Mapping[str, Any]) -> str:
        return json.dumps(document, indent=self.indent, ensure_ascii=False) + "\n"

    def write_documents(self, documents: Mapping[str, Mapping[str, Any]], output_dir: Path) -> list[Path]:
        """
        Write each document to `<output_dir>/<name>.json`.

        Args:
            documents: Document name -> JSON-compatible mapping
            output_dir: Target directory, created when missing

        Returns:
            Paths written, in document order

        Raises:
            OutputError: If the directory or a file cannot be written
        """
        written: list[Path] = []
        try:
            output_dir.mkdir(parents=True, exist_ok=True)
            for name, document in documents.items():
                path = output_dir / f"{name}.json"
                path.write_text(self.serialize(document), encoding="utf-8")
                written.append(path)
        except OSError as e:
            raise OutputError(f"Could not write documents to {output_dir}: {e}") from e
        logger.info(f"Wrote {len(written)} documents to {output_dir}")
        return written

    def format_summary(self, documents: Mapping[str, Mapping[str, Any]]) -> str:
        """Human-readable summary of one compiler run."""
        lines = ["=" * 60, "MODULE GRAPH REPORT", "=" * 60]

        deps = documents.get("dependencies", {}).get("summary", {})
        lines.append(
            f"\nModules: {deps.get('total_modules_analyzed', 0)}  "
            f"Edges: {deps.get('total_edges', 0)}  "
            f"Files scanned: {deps.get('files_scanned', 0)}"
        )
        for edge_type, count in deps.get("edge_type_counts", {}).items():
            lines.append(f"  - {edge_type}: {count}")

        resolution = documents.get("di_resolution_map", {}).get("summary", {})
        lines.append(
            f"\nOverride targets: {resolution.get('total_targets', 0)} "
            f"({resolution.get('multi_scope_targets', 0)} scope-dependent, "
            f"{resolution.get('core_overrides', 0)} core)  "
            f"Virtual types: {resolution.get('total_virtual_types', 0)}"
        )

        chains = documents.get("delegation_chains", {}).get("summary", {})
        lines.append(
            f"Delegation chains: {chains.get('total_chains', 0)} "
            f"({chains.get('with_divergence', 0)} diverging across scopes)"
        )

        seams = documents.get("plugin_seams", {})
        risky = seams.get("high_risk_seams", [])
        lines.append(f"\nPlugin seams: {seams.get('summary', {}).get('total_seams', 0)} ({len(risky)} at risk)")
        for seam in risky[:self.max_items]:
            lines.append(f"  [{seam['risk_level'].upper()}] {seam['seam_id']} (score {seam['risk_score']})")

        debt = documents.get("architectural_debt", {})
        items = debt.get("debt_items", [])
        lines.append(f"\nArchitectural debt items: {len(items)}")
        for item in items[:self.max_items]:
            lines.append(f"  [{item['severity'].upper()}] {item['description']}")

        hotspots = documents.get("hotspots", {})
        rankings = hotspots.get("rankings", [])
        lines.append(f"\nTop hotspots (of {len(rankings)}):")
        for record in rankings[:self.max_items]:
            lines.append(
                f"  {record['module']}: {record['final_score']} "
                f"(churn {record['churn_count']}, centrality {record['centrality']})"
            )

        summary = documents.get("warnings", {}).get("summary", {})
        lines.append(
            f"\nWarnings: {summary.get('total', 0)}  "
            f"Integrity score: {summary.get('analysis_integrity_score', 1.0)}"
        )
        for note in summary.get("integrity_notes", []):
            lines.append(f"  - {note}")

        lines.append("=" * 60)
        return "\n".join(lines)

    def print_summary(self, documents: Mapping[str, Mapping[str, Any]]) -> None:
        print(self.format_summary(documents))
