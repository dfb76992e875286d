"""Utility functions."""

from rag_pipeline.utils.logging import get_logger, log_error, run_context, setup_logging
from rag_pipeline.utils.text import normalize_whitespace, to_ascii, truncate_utf8

__all__ = [
    # Logging
    "setup_logging",
    "get_logger",
    "run_context",
    "log_error",
    # Text
    "normalize_whitespace",
    "to_ascii",
    "truncate_utf8",
]
