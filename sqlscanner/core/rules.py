"""
Rule engine for the scanner.

This module provides the base class for rules, the context handed to
them during analysis, and the registry used to discover them.
"""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Generator, Iterable, List, Optional, Set, Type

from sqlscanner.core.findings import (
    CodeLocation, CodeSnippet, Confidence, Finding, Severity
)
from sqlscanner.parsers.base import Document


@dataclass
class RuleMetadata:
    """Metadata for a rule."""
    rule_id: str
    name: str
    description: str
    severity: Severity
    confidence: Confidence
    languages: List[str]
    tags: List[str] = field(default_factory=list)
    references: List[str] = field(default_factory=list)
    cwe_id: Optional[str] = None
    owasp_id: Optional[str] = None
    enabled_by_default: bool = True


class Rule(ABC):
    """
    Base class for all rules.

    Subclasses declare a class-level ``metadata`` and implement
    ``analyze``. Instances may keep per-document state, so one instance
    must not be shared between documents analyzed concurrently.
    """

    metadata: RuleMetadata

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config = config or {}

    @abstractmethod
    def analyze(self, context: "AnalysisContext") -> Generator[Finding, None, None]:
        """
        Analyze the document and yield findings.

        Args:
            context: The analysis context containing the tokenized document.

        Yields:
            Finding objects for each detected issue.
        """

    def supports_language(self, language: str) -> bool:
        languages = self.metadata.languages
        return "*" in languages or language.lower() in [l.lower() for l in languages]

    def create_finding(
        self,
        location: CodeLocation,
        expression: str = "",
        title: Optional[str] = None,
        description: Optional[str] = None,
        snippet: Optional[CodeSnippet] = None,
        remediation: Optional[str] = None,
    ) -> Finding:
        """Create a finding using the rule's metadata as defaults."""
        return Finding(
            rule_id=self.metadata.rule_id,
            title=title or self.metadata.name,
            description=description or self.metadata.description,
            severity=self.metadata.severity,
            confidence=self.metadata.confidence,
            location=location,
            expression=expression,
            snippet=snippet,
            remediation=remediation,
            cwe_id=self.metadata.cwe_id,
            tags=list(self.metadata.tags),
        )


class RuleRegistry:
    """Rule classes keyed by rule id, in registration order."""

    _instance: Optional["RuleRegistry"] = None

    def __init__(self):
        self._rules: Dict[str, Type[Rule]] = {}

    @classmethod
    def get_instance(cls) -> "RuleRegistry":
        """Get the singleton registry instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    def register(self, rule_class: Type[Rule]) -> Type[Rule]:
        rule_id = rule_class.metadata.rule_id
        if rule_id in self._rules and self._rules[rule_id] is not rule_class:
            raise ValueError(f"Duplicate rule id: {rule_id}")
        self._rules[rule_id] = rule_class
        return rule_class

    def get_metadata(self, rule_id: str) -> Optional[RuleMetadata]:
        rule_class = self._rules.get(rule_id)
        return rule_class.metadata if rule_class else None

    def get_all_metadata(self) -> List[RuleMetadata]:
        return [rule_class.metadata for rule_class in self._rules.values()]

    def create_rules(
        self,
        options: Optional[Dict[str, Any]] = None,
        language: str = "perl",
        disabled: Iterable[str] = (),
    ) -> List[Rule]:
        """
        Instantiate every enabled rule for ``language``.

        Raises whatever the rule constructors raise for bad options
        (``ConfigurationError``).
        """
        disabled = set(disabled)
        rules = []
        for rule_id, rule_class in self._rules.items():
            if rule_id in disabled or not rule_class.metadata.enabled_by_default:
                continue
            instance = rule_class(options)
            if instance.supports_language(language):
                rules.append(instance)
        return rules


SUPPRESSION_RE = re.compile(r"##\s*no\s+critic|#\s*nosec|#\s*sqlscanner-ignore", re.IGNORECASE)


class AnalysisContext:
    """
    Context provided to rules during analysis.

    Wraps the tokenized document with helpers for snippets and
    inline suppression comments.
    """

    def __init__(
        self,
        file_path: str,
        content: str,
        document: Document,
        language: str = "perl",
        context_lines: int = 2,
    ):
        self.file_path = file_path
        self.content = content
        self.document = document
        self.language = language
        self.context_lines = context_lines
        self._lines: Optional[List[str]] = None
        self._suppressed_lines: Optional[Set[int]] = None

    @property
    def lines(self) -> List[str]:
        if self._lines is None:
            self._lines = self.content.splitlines()
        return self._lines

    @property
    def suppressed_lines(self) -> Set[int]:
        """
        Line numbers covered by a suppression comment.

        A trailing comment covers its own line; a comment on a line of
        its own covers the line after it.
        """
        if self._suppressed_lines is None:
            self._suppressed_lines = set()
            for comment in self.document.comments():
                if not SUPPRESSION_RE.search(comment.text):
                    continue
                self._suppressed_lines.add(comment.line)
                line_text = self.lines[comment.line - 1] if comment.line <= len(self.lines) else ""
                if line_text.lstrip().startswith("#"):
                    self._suppressed_lines.add(comment.line + 1)
        return self._suppressed_lines

    def is_line_suppressed(self, line_number: int) -> bool:
        return line_number in self.suppressed_lines

    def get_snippet(self, line_number: int, context_lines: Optional[int] = None) -> CodeSnippet:
        """The line at ``line_number`` with up to ``context_lines`` lines on each side."""
        radius = self.context_lines if context_lines is None else context_lines
        index = line_number - 1
        lines = self.lines
        return CodeSnippet(
            code=lines[index] if 0 <= index < len(lines) else "",
            highlighted_line=line_number,
            context_before=lines[max(0, index - radius):max(0, index)],
            context_after=lines[index + 1:index + 1 + radius],
        )


# Global registry instance
registry = RuleRegistry.get_instance()


def rule(cls: Type[Rule]) -> Type[Rule]:
    """Class decorator registering ``cls`` with the global registry."""
    return registry.register(cls)
