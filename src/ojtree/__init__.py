"""ojtree: Decision-tree analysis of orange-juice purchases."""

from loguru import logger

from ojtree.config import AnalysisSettings, TreeSettings
from ojtree.logging import PACKAGE_NAME, enable_logging
from ojtree.pipeline import format_report, run_analysis

logger.disable(PACKAGE_NAME)  # noqa: RUF067 - Disable logging for the ojtree module by default

__all__ = [
    "AnalysisSettings",
    "TreeSettings",
    "enable_logging",
    "format_report",
    "run_analysis",
]
