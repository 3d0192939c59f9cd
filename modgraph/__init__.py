"""
Module Dependency Graph Compiler

Static analysis of modular PHP commerce applications laid out as
app/code/<Vendor>/<Module> trees with scoped DI overlays.

Main Entry Points:
    - main.py: CLI interface
    - compiler.py: GraphCompiler, one analysis run
    - analysis/: extractors and analytics
    - utils/: logging and report formatting
"""

from modgraph.config import AnalyzerConfig, load_config

__version__ = "0.1.0"
__all__ = ["AnalyzerConfig", "load_config"]
