"""
Tests for output formatters.
"""

import json
import os
import sys

import pytest

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlscanner.core.findings import (
    CodeLocation, CodeSnippet, Confidence, Finding, ScanResult, Severity
)
from sqlscanner.formatters import CLIFormatter, JSONFormatter, SARIFFormatter, get_formatter


def make_finding(expression="$id", line=12, suppressed=False):
    return Finding(
        rule_id="SEC-SQLI-001",
        title="SQL Injection via String Interpolation",
        description=f"SQL injection risk: {expression} is interpolated into a SQL statement without quoting",
        severity=Severity.HIGH,
        confidence=Confidence.MEDIUM,
        location=CodeLocation(file_path="lib/App/Users.pm", start_line=line, end_line=line),
        expression=expression,
        snippet=CodeSnippet(
            code=f'my $sql = "SELECT * FROM users WHERE id = {expression}";',
            highlighted_line=line,
            context_before=["sub find {"],
            context_after=["}"],
        ),
        remediation="Use placeholders and bind values.",
        cwe_id="CWE-89",
        tags=["injection", "sql"],
        suppressed=suppressed,
        suppression_reason="Inline suppression comment" if suppressed else None,
    )


@pytest.fixture
def result():
    return ScanResult(
        findings=[make_finding(), make_finding("$name", 20, suppressed=True)],
        files_scanned=3,
        scan_time_seconds=0.25,
        rules_applied=["SEC-SQLI-001"],
    )


class TestFindings:
    """Tests for the finding model."""

    def test_finding_to_dict(self):
        """Test finding serialization."""
        data = make_finding().to_dict()

        assert data["rule_id"] == "SEC-SQLI-001"
        assert data["severity"] == "high"
        assert data["expression"] == "$id"
        assert data["location"]["start_line"] == 12
        assert data["snippet"]["context_before"] == ["sub find {"]
        assert "suppression_reason" not in data

    def test_string_enums(self):
        """Test that severities given as strings are converted."""
        finding = Finding(
            rule_id="X",
            title="t",
            description="d",
            severity="high",
            confidence="low",
            location=CodeLocation("a.pl", 1, 1),
        )

        assert finding.severity is Severity.HIGH
        assert finding.confidence is Confidence.LOW

    def test_severity_ordering(self):
        """Test severity comparison."""
        assert Severity.LOW < Severity.HIGH
        assert Severity.HIGH <= Severity.CRITICAL
        assert not Severity.CRITICAL < Severity.INFO

    def test_result_summary(self, result):
        """Test result counters."""
        assert result.total_findings == 1
        assert result.suppressed_count == 1
        assert result.count_by_severity()["high"] == 1

    def test_fingerprint(self):
        """Test that fingerprints ignore the line number but not the code."""
        moved = make_finding(line=40)
        other = make_finding("$name")

        assert make_finding().fingerprint == moved.fingerprint
        assert make_finding().fingerprint != other.fingerprint
        assert len(make_finding().fingerprint) == 16

    def test_numbered_lines(self):
        """Test snippet line numbering."""
        lines = make_finding().snippet.numbered_lines()

        assert [(number, highlighted) for number, _, highlighted in lines] == [
            (11, False), (12, True), (13, False),
        ]

    def test_by_file(self, result):
        """Test grouping findings by file."""
        assert [f.expression for f in result.by_file()["lib/App/Users.pm"]] == ["$id"]
        assert len(result.by_file(include_suppressed=True)["lib/App/Users.pm"]) == 2


class TestFormatters:
    """Tests for the output formats."""

    def test_cli_formatter(self, result):
        """Test the human-readable format."""
        output = CLIFormatter(use_color=False).format_result(result)

        assert "SQL INJECTION SCAN RESULTS" in output
        assert "Files scanned:     3" in output
        assert "lib/App/Users.pm:12" in output
        assert "[HIGH]" in output
        assert "$id" in output
        assert "$name" not in output
        assert "Suppressed:        1" in output

    def test_cli_formatter_suppressed_and_verbose(self, result):
        """Test showing suppressed findings and remediation."""
        output = CLIFormatter(use_color=False, verbose=True, include_suppressed=True).format_result(result)

        assert "[SUPPRESSED]" in output
        assert "$name" in output
        assert "Remediation:" in output

    def test_cli_formatter_clean(self):
        """Test the output of a clean scan."""
        clean = ScanResult(findings=[], files_scanned=1, scan_time_seconds=0.0, rules_applied=["SEC-SQLI-001"])

        assert "No SQL injection risks found." in CLIFormatter(use_color=False).format_result(clean)

    def test_cli_formatter_errors(self):
        """Test that errors are listed."""
        failed = ScanResult(
            findings=[], files_scanned=0, scan_time_seconds=0.0, rules_applied=[],
            errors=["Error reading x.pl: denied"],
        )

        assert "Error reading x.pl: denied" in CLIFormatter(use_color=False).format_result(failed)

    def test_json_formatter(self, result):
        """Test the JSON format."""
        data = json.loads(JSONFormatter().format_result(result))

        assert data["summary"]["files_scanned"] == 3
        assert data["summary"]["total_findings"] == 1
        assert data["summary"]["suppressed_findings"] == 1
        assert [f["expression"] for f in data["findings"]] == ["$id"]

        data = json.loads(JSONFormatter(include_suppressed=True).format_result(result))
        assert [f["expression"] for f in data["findings"]] == ["$id", "$name"]

    def test_json_findings(self, result):
        """Test formatting a bare list of findings."""
        data = json.loads(JSONFormatter().format_findings(result.findings))

        assert len(data) == 1

    def test_sarif_formatter(self, result):
        """Test the SARIF format."""
        sarif = json.loads(SARIFFormatter().format_result(result))

        assert sarif["version"] == "2.1.0"
        run = sarif["runs"][0]
        assert run["tool"]["driver"]["name"] == "sqlscanner"

        rules = run["tool"]["driver"]["rules"]
        assert [r["id"] for r in rules] == ["SEC-SQLI-001"]
        assert rules[0]["properties"]["cwe"] == "CWE-89"

        assert len(run["results"]) == 1
        sarif_result = run["results"][0]
        assert sarif_result["ruleId"] == "SEC-SQLI-001"
        assert sarif_result["level"] == "error"
        region = sarif_result["locations"][0]["physicalLocation"]["region"]
        assert region["startLine"] == 12
        assert sarif_result["properties"]["expression"] == "$id"
        assert run["invocations"][0]["executionSuccessful"] is True

    def test_sarif_suppressions(self, result):
        """Test that suppressed findings carry SARIF suppressions."""
        sarif = json.loads(SARIFFormatter(include_suppressed=True).format_result(result))
        suppressed = [r for r in sarif["runs"][0]["results"] if "suppressions" in r]

        assert len(suppressed) == 1
        assert suppressed[0]["suppressions"][0]["kind"] == "inSource"

    def test_get_formatter(self):
        """Test looking formatters up by name."""
        assert isinstance(get_formatter("text"), CLIFormatter)
        assert isinstance(get_formatter("cli"), CLIFormatter)
        assert isinstance(get_formatter("JSON"), JSONFormatter)
        assert isinstance(get_formatter("sarif", verbose=True, include_suppressed=True), SARIFFormatter)

        with pytest.raises(ValueError):
            get_formatter("xml")

    def test_sarif_indexes_and_fingerprints(self, result):
        """Test rule and artifact indexes and partial fingerprints."""
        run = json.loads(SARIFFormatter().format_result(result))["runs"][0]
        sarif_result = run["results"][0]

        assert run["artifacts"] == [{"location": {"uri": "lib/App/Users.pm"}}]
        assert sarif_result["ruleIndex"] == 0
        assert sarif_result["locations"][0]["physicalLocation"]["artifactLocation"]["index"] == 0
        assert sarif_result["partialFingerprints"]["sqlscanner/v1"] == result.findings[0].fingerprint
