"""
Inline safety annotations.

Authors mark manually verified interpolations with a comment on the
same line as the string:

    my $sql = "SELECT * FROM $table WHERE id = $id"; ## SQL safe($table, $id)
    my $sql = "SELECT @{[ table_for($kind) ]}";      ## SQL safe(&table_for)

Variables are recorded verbatim (sigil and subscripts included);
functions and methods carry a leading ``&`` and are normalized like
extracted calls, so ``&My::DB->table`` is stored as ``&My::DB::table``.
"""

import re
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List

from sqlscanner.analyzers.extractor import Expression, normalize_call_name
from sqlscanner.parsers.base import Token, TokenKind

ANNOTATION_RE = re.compile(r"#\s*SQL\s+safe\s*\(([^)]*)\)", re.IGNORECASE)
SEPARATOR_RE = re.compile(r"[\s,]+")


def parse_annotation_names(text: str) -> List[str]:
    """Split an annotation list on commas and/or whitespace and normalize it."""
    names = []
    for item in SEPARATOR_RE.split(text.strip()):
        if not item:
            continue
        if item.startswith("&"):
            names.append("&" + normalize_call_name(item))
        else:
            names.append(item)
    return names


@dataclass(frozen=True)
class SafetyIndex:
    """Line number -> names declared safe on that line, for one document."""
    entries: Dict[int, FrozenSet[str]] = field(default_factory=dict)

    def names_on(self, line: int) -> FrozenSet[str]:
        return self.entries.get(line, frozenset())

    def is_declared_safe(self, name: str, line: int) -> bool:
        return name in self.names_on(line)

    def covers(self, expression: Expression, line: int) -> bool:
        names = self.names_on(line)
        return any(name in names for name in expression.lookup_names)

    def __len__(self) -> int:
        return len(self.entries)


def build_safety_index(comments: Iterable[Token]) -> SafetyIndex:
    """Scan every comment once and collect the declared-safe names."""
    entries: Dict[int, set] = {}
    for comment in comments:
        if comment.kind is not TokenKind.COMMENT:
            continue
        for match in ANNOTATION_RE.finditer(comment.text):
            names = parse_annotation_names(match.group(1))
            if names:
                entries.setdefault(comment.line, set()).update(names)
    return SafetyIndex({line: frozenset(names) for line, names in entries.items()})
