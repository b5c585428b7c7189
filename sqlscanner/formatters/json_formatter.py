"""
JSON output, for pipelines and dashboards.
"""

import json
from typing import Any, List

from sqlscanner import __version__
from sqlscanner.core.findings import Finding, ScanResult


class JSONFormatter:

    def __init__(self, indent: int = 2, include_suppressed: bool = False):
        self.indent = indent
        self.include_suppressed = include_suppressed

    def _dump(self, data: Any) -> str:
        return json.dumps(data, indent=self.indent, default=str)

    def format_result(self, result: ScanResult) -> str:
        """The summary, the findings and any scan errors as one document."""
        data = {"tool": "sqlscanner", "version": __version__}
        data.update(result.to_dict(include_suppressed=self.include_suppressed))
        return self._dump(data)

    def format_finding(self, finding: Finding) -> str:
        return self._dump(finding.to_dict())

    def format_findings(self, findings: List[Finding]) -> str:
        return self._dump([f.to_dict() for f in findings if self.include_suppressed or not f.suppressed])
