"""
String injection analysis.

For a literal already classified as SQL-like, find every value that is
substituted into it: interpolated variables, embedded ``@{[ ... ]}`` and
``${\\ ... }`` code blocks, and operands concatenated onto the literal in
the same expression. Each is handed to the extractor; whatever is not
quoted, annotated safe, or in an error-reporting context is unsafe.
"""

import logging
from typing import List

from sqlscanner.analyzers.annotations import SafetyIndex
from sqlscanner.analyzers.classifier import is_sql_like
from sqlscanner.analyzers.extractor import Expression, ExpressionExtractor
from sqlscanner.config import PolicyConfig
from sqlscanner.parsers.base import (
    CLOSING, OPENING, STRING_KINDS, Document, Token, TokenKind, match_bracket
)
from sqlscanner.parsers.perl import tokenize_interpolated

logger = logging.getLogger(__name__)

BLOCK_CLOSERS = {"@{[": "]}", "${\\": "}"}

# Statement modifiers and low-precedence operators end an error report
CONTEXT_BOUNDARY_WORDS = frozenset({"if", "unless", "while", "until", "and", "or", "not", "xor"})
CONTEXT_BOUNDARY_OPERATORS = ("&&", "||", "//", "?", ":")


class StringInjectionAnalyzer:
    """Finds unsafe interpolation points in SQL-like literals."""

    def __init__(self, config: PolicyConfig):
        self.config = config
        self.extractor = ExpressionExtractor(config.quoting_methods, config.safe_functions)

    def unsafe_expressions(
        self, document: Document, index: int, safety_index: SafetyIndex
    ) -> List[Expression]:
        """
        Return the unsafe expressions of the literal at ``document.tokens[index]``.

        Annotations are looked up on the literal's starting line; every
        returned expression carries its own line.
        """
        token = document.tokens[index]
        if self.in_safe_context(document, index):
            logger.debug("Skipping literal on line %d: error-reporting context", token.line)
            return []

        unsafe = []
        for expression in self.interpolation_points(document, index):
            if expression.is_quoted:
                continue
            if safety_index.covers(expression, token.line):
                continue
            unsafe.append(expression)
        return unsafe

    def interpolation_points(self, document: Document, index: int) -> List[Expression]:
        token = document.tokens[index]
        expressions = self._interpolated(token)
        expressions.extend(self._concatenated(document, index))
        return expressions

    def in_safe_context(self, document: Document, index: int) -> bool:
        """
        Whether the literal is part of an error report.

        True when a word from ``safe_contexts`` (``die``, ``croak``, ...)
        governs the literal: it appears before the literal in the same
        statement, outside closed brackets, and no statement modifier or
        low-precedence operator separates the two. In
        ``die "failed" unless $dbh->do("DELETE ...")`` the SQL is not
        part of the message.
        """
        tokens = document.tokens
        depth = 0
        for i in range(index - 1, -1, -1):
            token = tokens[i]
            if token.kind is TokenKind.STRUCTURE:
                if token.text in CLOSING:
                    depth += 1
                elif token.text in OPENING:
                    if depth:
                        depth -= 1
                    elif token.text == "{":
                        return False
                elif token.text == ";" and not depth:
                    return False
            elif depth:
                continue
            elif token.kind is TokenKind.WORD:
                if token.text in CONTEXT_BOUNDARY_WORDS:
                    return False
                if token.text in self.config.safe_contexts:
                    return True
            elif token.is_operator(*CONTEXT_BOUNDARY_OPERATORS):
                return False
        return False

    def _interpolated(self, token: Token) -> List[Expression]:
        if token.kind is TokenKind.STRING:
            tokens = tokenize_interpolated(token.content, token.line)
        elif token.kind is TokenKind.HEREDOC and token.interpolates:
            tokens = tokenize_interpolated(token.content, token.body_line)
        else:
            return []
        return self._scan_interpolated(tokens)

    def _scan_interpolated(self, tokens: List[Token]) -> List[Expression]:
        expressions = []
        i = 0
        while i < len(tokens):
            token = tokens[i]
            if token.kind is TokenKind.OPERATOR and token.text in BLOCK_CLOSERS:
                closer = BLOCK_CLOSERS[token.text]
                end = i + 1
                while end < len(tokens) and not tokens[end].is_operator(closer):
                    end += 1
                expressions.extend(self._scan_code(tokens[i + 1:end]))
                i = end + 1
            elif token.kind is TokenKind.SYMBOL:
                expression, i = self.extractor.extract(tokens, i, interpolated=True)
                expressions.append(expression)
            else:
                i += 1
        return expressions

    def _scan_code(self, tokens: List[Token]) -> List[Expression]:
        expressions = []
        i = 0
        while i < len(tokens):
            if self.extractor.is_start(tokens, i):
                expression, i = self.extractor.extract(tokens, i)
                expressions.append(expression)
            else:
                i += 1
        return expressions

    def _concatenated(self, document: Document, index: int) -> List[Expression]:
        """
        Operands joined onto the literal with ``.`` in the same expression.

        Operands that cannot hold a value of their own (numbers, constants)
        are stepped over, and parenthesized operands are searched for
        values, so one unusual operand never hides the ones after it.
        """
        tokens = document.tokens
        expressions = []
        position = index
        while True:
            operator = document.next_significant(position)
            if operator is None or not tokens[operator].is_operator("."):
                break
            operand = document.next_significant(operator)
            if operand is None:
                break

            token = tokens[operand]
            if token.kind in STRING_KINDS:
                # a SQL-like operand is analyzed as a literal of its own
                if is_sql_like(token, self.config.prefer_upper_case_keywords):
                    break
                expressions.extend(self._interpolated(token))
                position = operand
            elif self.extractor.is_start(tokens, operand):
                expression, end = self.extractor.extract(tokens, operand)
                expressions.append(expression)
                position = end - 1
            elif token.is_structure("(", "["):
                close = match_bracket(tokens, operand)
                if close is None:
                    logger.debug("Unbalanced operand on line %d", token.line)
                    expressions.extend(self._scan_code(tokens[operand + 1:]))
                    break
                expressions.extend(self._scan_code(tokens[operand + 1:close]))
                position = close
            elif token.kind is TokenKind.STRUCTURE or token.kind is TokenKind.OPERATOR:
                break
            else:
                logger.debug("Stepping over operand %r on line %d", token.text, token.line)
                position = operand
        return expressions
