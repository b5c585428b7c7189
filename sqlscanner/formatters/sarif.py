"""
SARIF 2.1.0 output.

Consumed by GitHub code scanning and most SARIF viewers. Every rule that
ran is described in the driver, whether or not it reported anything, and
each result carries a fingerprint so viewers can track it across runs.
"""

import json
from datetime import datetime, timezone
from typing import Any, Dict, List

from sqlscanner import __version__
from sqlscanner.core.findings import Finding, ScanResult, Severity
from sqlscanner.core.rules import RuleMetadata, registry


SARIF_VERSION = "2.1.0"
SCHEMA_URI = "https://raw.githubusercontent.com/oasis-tcs/sarif-spec/master/Schemata/sarif-schema-2.1.0.json"

SARIF_LEVEL = {
    Severity.CRITICAL: "error",
    Severity.HIGH: "error",
    Severity.MEDIUM: "warning",
    Severity.LOW: "note",
    Severity.INFO: "none",
}


def describe_rule(metadata: RuleMetadata) -> Dict[str, Any]:
    """A reportingDescriptor for one registered rule."""
    descriptor: Dict[str, Any] = {
        "id": metadata.rule_id,
        "name": metadata.name,
        "shortDescription": {"text": metadata.name},
        "fullDescription": {"text": metadata.description},
        "defaultConfiguration": {"level": SARIF_LEVEL[metadata.severity]},
        "properties": {
            "tags": list(metadata.tags),
            "precision": metadata.confidence.value,
        },
    }
    if metadata.references:
        descriptor["helpUri"] = metadata.references[0]
    if metadata.cwe_id:
        descriptor["properties"]["cwe"] = metadata.cwe_id
    return descriptor


def describe_unknown_rule(finding: Finding) -> Dict[str, Any]:
    """Fallback descriptor for findings from rules no longer registered."""
    descriptor: Dict[str, Any] = {
        "id": finding.rule_id,
        "name": finding.title,
        "shortDescription": {"text": finding.title},
        "defaultConfiguration": {"level": SARIF_LEVEL[finding.severity]},
        "properties": {"tags": list(finding.tags)},
    }
    if finding.cwe_id:
        descriptor["properties"]["cwe"] = finding.cwe_id
    return descriptor


class SARIFFormatter:
    """Formats scan results as a single-run SARIF log."""

    def __init__(self, include_suppressed: bool = False):
        self.include_suppressed = include_suppressed

    def format_result(self, result: ScanResult) -> str:
        findings = [f for f in result.findings if self.include_suppressed or not f.suppressed]
        rules = self._rules(result, findings)
        index = {descriptor["id"]: position for position, descriptor in enumerate(rules)}
        artifacts = sorted({f.location.file_path for f in findings})

        run = {
            "tool": {
                "driver": {
                    "name": "sqlscanner",
                    "version": __version__,
                    "rules": rules,
                }
            },
            "artifacts": [{"location": {"uri": uri}} for uri in artifacts],
            "results": [self._result(f, index[f.rule_id], artifacts.index(f.location.file_path)) for f in findings],
            "invocations": [self._invocation(result)],
        }
        return json.dumps({"$schema": SCHEMA_URI, "version": SARIF_VERSION, "runs": [run]}, indent=2)

    def _rules(self, result: ScanResult, findings: List[Finding]) -> List[Dict[str, Any]]:
        rules: Dict[str, Dict[str, Any]] = {}
        for rule_id in result.rules_applied:
            metadata = registry.get_metadata(rule_id)
            if metadata:
                rules[rule_id] = describe_rule(metadata)
        for finding in findings:
            if finding.rule_id not in rules:
                metadata = registry.get_metadata(finding.rule_id)
                rules[finding.rule_id] = describe_rule(metadata) if metadata else describe_unknown_rule(finding)
        return list(rules.values())

    def _result(self, finding: Finding, rule_index: int, artifact_index: int) -> Dict[str, Any]:
        region: Dict[str, Any] = {
            "startLine": finding.location.start_line,
            "endLine": finding.location.end_line,
        }
        if finding.snippet:
            region["snippet"] = {"text": finding.snippet.code}

        sarif_result: Dict[str, Any] = {
            "ruleId": finding.rule_id,
            "ruleIndex": rule_index,
            "level": SARIF_LEVEL[finding.severity],
            "message": {"text": finding.description},
            "locations": [{
                "physicalLocation": {
                    "artifactLocation": {"uri": finding.location.file_path, "index": artifact_index},
                    "region": region,
                },
            }],
            "partialFingerprints": {"sqlscanner/v1": finding.fingerprint},
            "properties": {
                "confidence": finding.confidence.value,
                "expression": finding.expression,
            },
        }
        if finding.remediation:
            sarif_result["properties"]["remediation"] = finding.remediation
        if finding.suppressed:
            sarif_result["suppressions"] = [{
                "kind": "inSource",
                "justification": finding.suppression_reason or "Suppressed by inline comment",
            }]
        return sarif_result

    def _invocation(self, result: ScanResult) -> Dict[str, Any]:
        return {
            "executionSuccessful": not result.errors,
            "endTimeUtc": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
            "toolExecutionNotifications": [
                {"level": "error", "message": {"text": error}} for error in result.errors
            ],
        }
