"""
SQL Injection Scanner

Static detection of SQL statements built by interpolating unquoted
values into string literals, for Perl code bases.
"""

__version__ = "1.0.0"
__author__ = "SQL Scanner Team"

from sqlscanner.core.engine import ScanEngine
from sqlscanner.core.findings import Finding, Severity, Confidence
from sqlscanner.config import ScanConfig, PolicyConfig, ConfigurationError
from sqlscanner.rules.sql_injection import PreventSQLInjectionRule, Violation

__all__ = [
    "ScanEngine",
    "Finding",
    "Severity",
    "Confidence",
    "ScanConfig",
    "PolicyConfig",
    "ConfigurationError",
    "PreventSQLInjectionRule",
    "Violation",
]
