"""
Finding data structures for the scanner.

A Finding is one unsafe expression interpolated into one SQL-like
literal, wrapped with the metadata of the rule that reported it.
"""

import hashlib
import json
from dataclasses import asdict, dataclass, field
from enum import Enum
from functools import total_ordering
from typing import Any, Dict, List, Optional, Tuple


@total_ordering
class Severity(Enum):
    """Severity levels, comparable from INFO (lowest) to CRITICAL."""
    INFO = "info"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return list(Severity).index(self)

    def __lt__(self, other):
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank < other.rank


class Confidence(Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass
class CodeLocation:
    """Lines of a file a finding points at (1-based, inclusive)."""
    file_path: str
    start_line: int
    end_line: int

    def __str__(self) -> str:
        return f"{self.file_path}:{self.start_line}"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class CodeSnippet:
    """The offending line plus a few lines around it."""
    code: str
    highlighted_line: int
    context_before: List[str] = field(default_factory=list)
    context_after: List[str] = field(default_factory=list)

    def numbered_lines(self) -> List[Tuple[int, str, bool]]:
        """(line number, text, is the highlighted line) for every line."""
        first = self.highlighted_line - len(self.context_before)
        lines = self.context_before + [self.code] + self.context_after
        return [
            (first + offset, text, first + offset == self.highlighted_line)
            for offset, text in enumerate(lines)
        ]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Finding:
    """
    A reported SQL injection risk.

    ``expression`` is the offending interpolated expression exactly as it
    appears in the source, sigil and subscripts included (``$args->{id}``,
    ``table_for($kind)``).
    """
    rule_id: str
    title: str
    description: str
    severity: Severity
    confidence: Confidence
    location: CodeLocation
    expression: str = ""
    snippet: Optional[CodeSnippet] = None
    remediation: Optional[str] = None
    cwe_id: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    suppressed: bool = False
    suppression_reason: Optional[str] = None

    def __post_init__(self):
        self.severity = Severity(self.severity)
        self.confidence = Confidence(self.confidence)

    @property
    def fingerprint(self) -> str:
        """
        Stable identifier of the finding across runs.

        Built from the rule, the file, the expression and the text of the
        offending line, so it survives unrelated lines moving around.
        """
        line = self.snippet.code.strip() if self.snippet else str(self.location.start_line)
        key = "\x00".join((self.rule_id, self.location.file_path, self.expression, line))
        return hashlib.sha256(key.encode("utf-8")).hexdigest()[:16]

    def sort_key(self) -> Tuple[str, int, str]:
        return (self.location.file_path, self.location.start_line, self.expression)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "rule_id": self.rule_id,
            "title": self.title,
            "description": self.description,
            "severity": self.severity.value,
            "confidence": self.confidence.value,
            "location": self.location.to_dict(),
            "expression": self.expression,
            "fingerprint": self.fingerprint,
            "cwe_id": self.cwe_id,
            "tags": list(self.tags),
            "suppressed": self.suppressed,
        }
        optional = {
            "snippet": self.snippet.to_dict() if self.snippet else None,
            "remediation": self.remediation,
            "suppression_reason": self.suppression_reason,
        }
        data.update((key, value) for key, value in optional.items() if value)
        return data

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)


@dataclass
class ScanResult:
    """Everything one scan produced."""
    findings: List[Finding]
    files_scanned: int
    scan_time_seconds: float
    rules_applied: List[str]
    errors: List[str] = field(default_factory=list)

    @property
    def active_findings(self) -> List[Finding]:
        return [f for f in self.findings if not f.suppressed]

    @property
    def total_findings(self) -> int:
        return len(self.active_findings)

    @property
    def suppressed_count(self) -> int:
        return len(self.findings) - self.total_findings

    def count_by_severity(self) -> Dict[str, int]:
        counts = dict.fromkeys((s.value for s in sorted(Severity, reverse=True)), 0)
        for finding in self.active_findings:
            counts[finding.severity.value] += 1
        return counts

    def by_file(self, include_suppressed: bool = False) -> Dict[str, List[Finding]]:
        """Findings grouped by file, in scan order."""
        grouped: Dict[str, List[Finding]] = {}
        for finding in self.findings:
            if finding.suppressed and not include_suppressed:
                continue
            grouped.setdefault(finding.location.file_path, []).append(finding)
        return grouped

    def to_dict(self, include_suppressed: bool = True) -> Dict[str, Any]:
        findings = self.findings if include_suppressed else self.active_findings
        return {
            "summary": {
                "files_scanned": self.files_scanned,
                "files_with_findings": len(self.by_file()),
                "scan_time_seconds": self.scan_time_seconds,
                "rules_applied": list(self.rules_applied),
                "total_findings": self.total_findings,
                "suppressed_findings": self.suppressed_count,
                "by_severity": self.count_by_severity(),
            },
            "findings": [f.to_dict() for f in findings],
            "errors": list(self.errors),
        }

    def to_json(self, indent: int = 2, include_suppressed: bool = True) -> str:
        return json.dumps(self.to_dict(include_suppressed), indent=indent)
