"""Core scanning engine and data structures."""

from sqlscanner.core.findings import Finding, Severity, Confidence, CodeLocation, ScanResult
from sqlscanner.core.rules import Rule, RuleMetadata, RuleRegistry, AnalysisContext
from sqlscanner.core.engine import ScanEngine

__all__ = [
    "Finding",
    "Severity",
    "Confidence",
    "CodeLocation",
    "ScanResult",
    "Rule",
    "RuleMetadata",
    "RuleRegistry",
    "AnalysisContext",
    "ScanEngine",
]
