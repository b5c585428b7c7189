"""
Expression extraction.

Given the token where a reference starts, walk forward to assemble the
whole expression (subscripts, dereferences, chained calls) and work out
whether its outermost operation is a known quoting call.

Extraction fails closed: when the token stream cannot be extended
unambiguously the walk stops and the partial expression is returned as
unquoted, which can only add findings, never hide one.
"""

from dataclasses import dataclass
from typing import FrozenSet, List, Optional, Tuple

from sqlscanner.parsers.base import Token, TokenKind, match_bracket

VARIABLE_SIGILS = ("$", "@")


@dataclass(frozen=True)
class Expression:
    """One extracted reference."""
    text: str
    line: int
    is_quoted: bool = False
    call_name: Optional[str] = None

    @property
    def lookup_names(self) -> Tuple[str, ...]:
        """Names under which a safety annotation can cover this expression."""
        if self.call_name is None:
            return (self.text,)
        return (self.text, "&" + self.call_name)


def normalize_call_name(reference: str) -> str:
    """
    Normalize a function or method reference.

    ``&Pkg::func`` and ``Pkg->method`` become ``Pkg::func`` and
    ``Pkg::method``; methods called on a variable keep only their name.
    """
    name = reference.lstrip("&")
    if "->" in name:
        receiver, _, method = name.rpartition("->")
        if receiver.startswith(VARIABLE_SIGILS) or not receiver:
            return method
        return f"{receiver.rstrip(':')}::{method}"
    return name


def _text(tokens: List[Token]) -> str:
    return "".join(t.text for t in tokens if t.kind is not TokenKind.WHITESPACE)


class ExpressionExtractor:
    """
    Assembles expressions from a token stream.

    ``quoting_methods`` match on the bare method name, whatever the
    qualifier or receiver; ``safe_functions`` match on the fully
    qualified name.
    """

    def __init__(self, quoting_methods: FrozenSet[str], safe_functions: FrozenSet[str]):
        self.quoting_methods = frozenset(quoting_methods)
        self.safe_functions = frozenset(safe_functions)

    def is_safe_call(self, name: str) -> bool:
        bare = name.rpartition("::")[2]
        return bare in self.quoting_methods or name in self.safe_functions

    @staticmethod
    def is_start(tokens: List[Token], index: int) -> bool:
        """Whether ``tokens[index]`` can start an expression."""
        token = tokens[index]
        if token.kind is TokenKind.SYMBOL:
            return token.text.startswith(VARIABLE_SIGILS) or token.text.startswith("&")
        if token.kind is TokenKind.WORD:
            following = _next_significant(tokens, index)
            return following is not None and (
                tokens[following].is_structure("(") or tokens[following].is_operator("->", "::")
            )
        return False

    def extract(self, tokens: List[Token], start: int, interpolated: bool = False) -> Tuple[Expression, int]:
        """
        Extract the expression starting at ``tokens[start]``.

        With ``interpolated`` set the walk follows string interpolation
        rules: only subscripts and arrow dereferences extend a variable.

        Returns the expression and the index just past its last token.
        """
        token = tokens[start]
        if token.kind is TokenKind.SYMBOL and token.text.startswith(VARIABLE_SIGILS):
            end, call_name = self._extend(tokens, start + 1, interpolated)
        elif token.kind is TokenKind.SYMBOL and token.text.startswith("&"):
            end, call_name = self._function(tokens, start, token.text[1:])
            if not interpolated:
                end, call_name = self._extend(tokens, end, interpolated, call_name)
        elif token.kind is TokenKind.WORD:
            end, call_name = self._function(tokens, start, token.text)
            if not interpolated:
                end, call_name = self._extend(tokens, end, interpolated, call_name)
        else:
            return Expression(text=token.text, line=token.line), start + 1

        is_quoted = call_name is not None and self.is_safe_call(call_name)
        expression = Expression(
            text=_text(tokens[start:end]),
            line=token.line,
            is_quoted=is_quoted,
            call_name=call_name,
        )
        return expression, end

    def _function(self, tokens: List[Token], start: int, name: str) -> Tuple[int, Optional[str]]:
        """Consume a function head: qualifiers, ``->method`` on a package, arguments."""
        i = start + 1
        # Foo :: Bar :: baz as separate tokens
        while (
            i + 1 < len(tokens)
            and tokens[i].is_operator("::")
            and tokens[i + 1].kind is TokenKind.WORD
        ):
            name = f"{name}::{tokens[i + 1].text}"
            i += 2

        following = _next_significant(tokens, i - 1)
        if following is not None and tokens[following].is_operator("->"):
            method = _next_significant(tokens, following)
            if method is not None and tokens[method].kind is TokenKind.WORD:
                name = f"{name.rstrip(':')}::{tokens[method].text}"
                i = method + 1
                following = _next_significant(tokens, method)

        if following is not None and tokens[following].is_structure("("):
            close = match_bracket(tokens, following)
            if close is None:
                # unbalanced arguments: keep the head only
                return i, None
            i = close + 1
        return i, name

    def _extend(
        self,
        tokens: List[Token],
        i: int,
        interpolated: bool,
        call_name: Optional[str] = None,
    ) -> Tuple[int, Optional[str]]:
        """
        Greedily consume subscripts, dereferences and method calls.

        ``call_name`` tracks the outermost call seen so far and is cleared
        when anything other than a call is applied to its result.
        """
        while i < len(tokens):
            token = tokens[i]
            if token.is_structure("[", "{"):
                close = match_bracket(tokens, i)
                if close is None:
                    break
                i, call_name = close + 1, None
                continue

            if not token.is_operator("->") or i + 1 >= len(tokens):
                break
            target = tokens[i + 1]
            if target.is_structure("[", "{"):
                close = match_bracket(tokens, i + 1)
                if close is None:
                    break
                i, call_name = close + 1, None
            elif interpolated:
                break
            elif target.kind is TokenKind.WORD:
                i += 2
                call_name = target.text
                arguments = _next_significant(tokens, i - 1)
                if arguments is not None and tokens[arguments].is_structure("("):
                    close = match_bracket(tokens, arguments)
                    if close is None:
                        call_name = None
                        break
                    i = close + 1
            elif target.is_structure("("):
                # $coderef->(...): the callee cannot be resolved
                close = match_bracket(tokens, i + 1)
                if close is None:
                    break
                i, call_name = close + 1, None
            else:
                break
        return i, call_name


def _next_significant(tokens: List[Token], index: int) -> Optional[int]:
    for i in range(index + 1, len(tokens)):
        if tokens[i].kind is not TokenKind.WHITESPACE:
            return i
    return None
