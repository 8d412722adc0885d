"""Transcript document rendering."""

from .markdown_generator import generate_markdown, format_time, sanitize_filename

__all__ = [
    "generate_markdown",
    "format_time",
    "sanitize_filename",
]
