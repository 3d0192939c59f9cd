"""
Utility modules shared by the compiler and the CLI.
"""

from modgraph.utils.logging_config import LogContext, get_logger, log_progress, setup_logging
from modgraph.utils.report_formatter import ReportFormatter

__all__ = [
    "LogContext",
    "get_logger",
    "log_progress",
    "setup_logging",
    "ReportFormatter",
]
