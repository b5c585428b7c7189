"""
Source tokenizers.

The analyzers only ever read the flat token stream produced here.
"""

from sqlscanner.parsers.base import Document, Token, TokenKind, match_bracket
from sqlscanner.parsers.perl import (
    PerlTokenizer,
    parse_document,
    tokenize,
    tokenize_interpolated,
)

__all__ = [
    "Document",
    "Token",
    "TokenKind",
    "match_bracket",
    "PerlTokenizer",
    "parse_document",
    "tokenize",
    "tokenize_interpolated",
]
