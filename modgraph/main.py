"""
Module Dependency Graph Compiler
================================

Static analysis for modular PHP commerce applications: typed module
dependency graph, split coupling, scoped override resolution, delegation
chains, plugin seams, debt signals and hotspot ranking.

Usage:
    modgraph compile /path/to/repo              # Analyze and write documents
    modgraph compile /path/to/repo --out build  # Write to another directory
    modgraph report /path/to/repo               # Print the summary only
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Any, Optional, Sequence

from modgraph.analysis.warnings import ModgraphError
from modgraph.compiler import GraphCompiler
from modgraph.config import load_config
from modgraph.utils.logging_config import get_logger, setup_logging
from modgraph.utils.report_formatter import ReportFormatter

logger = get_logger(__name__)


def build_overrides(args: argparse.Namespace) -> dict[str, Any]:
    """Config values given on the command line; they beat every config file."""
    overrides: dict[str, Any] = {}
    if args.scan_root:
        overrides["scan_roots"] = list(args.scan_root)
    if args.include_vendor:
        overrides["include_vendor"] = True
    if args.workers is not None:
        overrides["workers"] = args.workers
    if args.max_evidence is not None:
        overrides["max_evidence_per_edge"] = args.max_evidence
    if args.no_churn:
        overrides["churn"] = {"enabled": False}
    if getattr(args, "out", None):
        overrides["output_dir"] = args.out
    return overrides


# ============================================================================
# COMMANDS
# ============================================================================

def run_compile(args: argparse.Namespace, write: bool = True) -> int:
    repo_root = Path(args.repo).resolve()
    if not repo_root.is_dir():
        logger.error(f"Repository not found: {repo_root}")
        return 2

    config = load_config(
        repo_root,
        overrides=build_overrides(args),
        config_path=Path(args.config) if args.config else None,
    )
    formatter = ReportFormatter()
    compiler = GraphCompiler(repo_root, config, formatter)
    result = compiler.compile()

    if write:
        paths = compiler.write_documents(result)
        logger.info(f"Documents written to {paths[0].parent if paths else compiler.output_dir}")
    formatter.print_summary(result.documents)
    return 0


# ============================================================================
# CLI INTERFACE
# ============================================================================

def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("repo", type=str, help="Repository root to analyze")
    parser.add_argument(
        "--scan-root", action="append", metavar="PATH",
        help="Repository-relative directory to scan (repeatable; default: app/code, app/design)"
    )
    parser.add_argument(
        "--include-vendor", action="store_true",
        help="Also scan the vendor/ tree"
    )
    parser.add_argument(
        "--workers", "-w", type=int,
        help="Parallel workers for source scanning (default: 4)"
    )
    parser.add_argument(
        "--max-evidence", type=int,
        help="Evidence entries kept per edge (default: 5)"
    )
    parser.add_argument(
        "--no-churn", action="store_true",
        help="Skip the git change-frequency signal"
    )
    parser.add_argument(
        "--config", "-c", type=str,
        help="Config file (default: <repo>/.modgraph.json when present)"
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true",
        help="Debug logging"
    )


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="modgraph",
        description="Module dependency graph compiler",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  modgraph compile ./shop
  modgraph compile ./shop --out build/graph --no-churn
  modgraph report ./shop --scan-root app/code
        """
    )
    subparsers = parser.add_subparsers(dest="command")

    compile_parser = subparsers.add_parser("compile", help="Analyze a repository and write JSON documents")
    _add_common_arguments(compile_parser)
    compile_parser.add_argument(
        "--out", "-o", type=str,
        help="Output directory (default: <repo>/.modgraph)"
    )

    report_parser = subparsers.add_parser("report", help="Analyze a repository and print the summary only")
    _add_common_arguments(report_parser)
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main CLI entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    setup_logging(logging.DEBUG if args.verbose else logging.INFO)

    try:
        return run_compile(args, write=args.command == "compile")
    except ModgraphError as e:
        logger.error(str(e))
        return 1


if __name__ == "__main__":
    sys.exit(main())
