"""
SQL injection through string interpolation.

Flags variables and calls interpolated into SQL-like string literals
unless they are passed through a quoting method, a configured safe
function, or declared safe with a ``## SQL safe(...)`` comment on the
same line.

Only the literal where the SQL is written is analyzed; later mutation of
the string (``.=``, reassignment) is not tracked.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Generator, List, Optional

from sqlscanner.analyzers.annotations import SafetyIndex, build_safety_index
from sqlscanner.analyzers.classifier import is_sql_like
from sqlscanner.analyzers.interpolation import StringInjectionAnalyzer
from sqlscanner.config import PolicyConfig
from sqlscanner.core.findings import CodeLocation, Confidence, Finding, Severity
from sqlscanner.core.rules import AnalysisContext, Rule, RuleMetadata, rule
from sqlscanner.parsers.base import STRING_KINDS, Document, Token

logger = logging.getLogger(__name__)

MESSAGE = "SQL injection risk: {name} is interpolated into a SQL statement without quoting"
REMEDIATION = (
    "Use placeholders and bind values (e.g. $dbh->prepare('... WHERE id = ?') "
    "with $sth->execute($id)), quote the value with $dbh->quote(), or, once "
    "verified by hand, mark it with a '## SQL safe(...)' comment on the same line."
)


@dataclass(frozen=True)
class Violation:
    """One unsafe expression found in one SQL-like literal."""
    expression_name: str
    line: int
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "expression_name": self.expression_name,
            "line": self.line,
            "message": self.message,
        }


@rule
class PreventSQLInjectionRule(Rule):
    """
    Detects SQL statements built by interpolating unquoted values.

    Options (validated at construction, ``ConfigurationError`` otherwise):
        quoting_methods: names of methods that quote their argument.
        safe_functions: fully qualified functions returning safe values.
        prefer_upper_case_keywords: only upper-case keywords mark SQL.
        safe_contexts: words marking error-reporting statements.

    The safety annotation index is built once per document and rebuilt
    whenever a different document (or a new version of it) comes in.
    """

    metadata = RuleMetadata(
        rule_id="SEC-SQLI-001",
        name="SQL Injection via String Interpolation",
        description="Detects unquoted variables and calls interpolated into SQL statements.",
        severity=Severity.HIGH,
        confidence=Confidence.MEDIUM,
        languages=["perl"],
        tags=["injection", "sql", "database", "owasp-a03"],
        references=[
            "https://owasp.org/www-community/attacks/SQL_Injection",
            "https://metacpan.org/pod/DBI#quote",
        ],
        cwe_id="CWE-89",
        owasp_id="A03:2021",
    )

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        super().__init__(config)
        self.policy = PolicyConfig.from_options(self.config)
        self.analyzer = StringInjectionAnalyzer(self.policy)
        self._document: Optional[Document] = None
        self._document_version: Optional[int] = None
        self._safety_index = SafetyIndex()

    def safety_index_for(self, document: Document) -> SafetyIndex:
        """Return the safety index of ``document``, rebuilding it if stale."""
        if document is not self._document or document.version != self._document_version:
            self._safety_index = build_safety_index(document.comments())
            self._document = document
            self._document_version = document.version
            logger.debug(
                "Built safety index for %s (version %d): %d annotated line(s)",
                document.path, document.version, len(self._safety_index),
            )
        return self._safety_index

    def analyze_element(self, element: Token, document: Document) -> List[Violation]:
        """
        Return the violations of a single element of ``document``.

        Elements other than strings and heredocs, literals that do not
        look like SQL, and literals whose interpolations are all safe
        yield an empty list.
        """
        if element.kind not in STRING_KINDS:
            return []
        index = document.position(element)
        if index is None:
            logger.debug("Element %r is not part of %s", element, document.path)
            return []

        safety_index = self.safety_index_for(document)
        if not is_sql_like(element, self.policy.prefer_upper_case_keywords):
            return []

        violations = []
        seen = set()
        for expression in self.analyzer.unsafe_expressions(document, index, safety_index):
            key = (expression.text, expression.line)
            if key in seen:
                continue
            seen.add(key)
            violations.append(
                Violation(
                    expression_name=expression.text,
                    line=expression.line,
                    message=MESSAGE.format(name=expression.text),
                )
            )
        return violations

    def analyze(self, context: AnalysisContext) -> Generator[Finding, None, None]:
        document = context.document
        for element in document.strings():
            for violation in self.analyze_element(element, document):
                location = CodeLocation(
                    file_path=context.file_path,
                    start_line=violation.line,
                    end_line=violation.line,
                )
                yield self.create_finding(
                    location=location,
                    expression=violation.expression_name,
                    description=violation.message,
                    snippet=context.get_snippet(violation.line),
                    remediation=REMEDIATION,
                )
