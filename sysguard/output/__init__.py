"""
SysGuard - Output Formatters

This package provides report rendering and progress display for the CLI.
"""

from .json_formatter import JSONFormatter, DateTimeEncoder
from .progress import ProgressBar, NullProgressBar, create_progress_bar

__all__ = [
    "JSONFormatter",
    "DateTimeEncoder",
    "ProgressBar",
    "NullProgressBar",
    "create_progress_bar",
]
