"""
Analysis building blocks used by the SQL injection rule.
"""

from sqlscanner.analyzers.annotations import SafetyIndex, build_safety_index
from sqlscanner.analyzers.classifier import is_sql_like
from sqlscanner.analyzers.extractor import Expression, ExpressionExtractor
from sqlscanner.analyzers.interpolation import StringInjectionAnalyzer

__all__ = [
    "SafetyIndex",
    "build_safety_index",
    "is_sql_like",
    "Expression",
    "ExpressionExtractor",
    "StringInjectionAnalyzer",
]
