"""
SQL literal classification.

A cheap heuristic gate: a literal is SQL-like when its first word is a
data-manipulation keyword. No SQL grammar is checked.
"""

import re

from sqlscanner.parsers.base import Token, TokenKind

SQL_KEYWORDS = frozenset({"SELECT", "INSERT", "UPDATE", "DELETE"})
SQL_HEREDOC_TERMINATOR = "SQL"

LEADING_NOISE = " \t\r\n\f'\"`("
FIRST_WORD_RE = re.compile(r"[A-Za-z]+")


def first_word(text: str) -> str:
    """Return the first run of letters after leading whitespace and quotes."""
    match = FIRST_WORD_RE.match(text.lstrip(LEADING_NOISE))
    return match.group() if match else ""


def is_sql_like(token: Token, prefer_upper_case_keywords: bool = False) -> bool:
    """
    Decide whether a string or heredoc token plausibly holds a SQL statement.

    Heredocs terminated by ``SQL`` always count, whatever the case
    preference. Other token kinds are never SQL-like.
    """
    kind = token.kind
    if kind is TokenKind.HEREDOC:
        if token.terminator == SQL_HEREDOC_TERMINATOR:
            return True
    elif kind not in (TokenKind.STRING, TokenKind.LITERAL):
        return False

    word = first_word(token.content)
    if not prefer_upper_case_keywords:
        word = word.upper()
    return word in SQL_KEYWORDS
