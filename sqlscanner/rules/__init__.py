"""
Detection rules.

Importing this package registers every rule with the global registry.
"""

from sqlscanner.rules import sql_injection
from sqlscanner.rules.sql_injection import PreventSQLInjectionRule, Violation

__all__ = [
    "sql_injection",
    "PreventSQLInjectionRule",
    "Violation",
]
