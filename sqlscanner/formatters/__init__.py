"""
Output formatters for scan results.

Provides multiple output formats including:
- Human-readable CLI output
- JSON for machine processing
- SARIF for IDE integration
"""

from sqlscanner.formatters.cli import CLIFormatter
from sqlscanner.formatters.json_formatter import JSONFormatter
from sqlscanner.formatters.sarif import SARIFFormatter

__all__ = [
    "CLIFormatter",
    "JSONFormatter",
    "SARIFFormatter",
    "get_formatter",
]


def get_formatter(format_name: str, **options):
    """Get a formatter by name, passing the options it understands."""
    formatters = {
        "text": CLIFormatter,
        "cli": CLIFormatter,
        "json": JSONFormatter,
        "sarif": SARIFFormatter,
    }

    formatter_class = formatters.get(format_name.lower())
    if formatter_class is None:
        raise ValueError(f"Unknown format: {format_name}")

    if formatter_class is not CLIFormatter:
        options = {k: v for k, v in options.items() if k == "include_suppressed"}
    return formatter_class(**options)
