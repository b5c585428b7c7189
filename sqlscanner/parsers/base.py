"""
Token and document model shared by the tokenizer and the analyzers.

Tokens are immutable and are only ever referenced by the analyzers,
never copied or rewritten.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterator, List, Optional, Tuple


class TokenKind(Enum):
    """Kinds of tokens produced by the tokenizer."""
    STRING = "string"          # interpolating literal: "..." or qq{...}
    LITERAL = "literal"        # non-interpolating text: '...', q{...}, qw(...)
    HEREDOC = "heredoc"
    SYMBOL = "symbol"          # $scalar, @array, %hash, &function
    WORD = "word"
    NUMBER = "number"
    OPERATOR = "operator"
    STRUCTURE = "structure"    # ( ) [ ] { } ; ,
    REGEX = "regex"
    COMMENT = "comment"
    POD = "pod"
    WHITESPACE = "whitespace"


STRING_KINDS = frozenset({TokenKind.STRING, TokenKind.LITERAL, TokenKind.HEREDOC})
INSIGNIFICANT_KINDS = frozenset({TokenKind.WHITESPACE, TokenKind.COMMENT, TokenKind.POD})

OPENING = {"(": ")", "[": "]", "{": "}"}
CLOSING = {")": "(", "]": "[", "}": "{"}
QUOTE_PAIRS = dict(OPENING, **{"<": ">"})


@dataclass(frozen=True)
class Token:
    """
    A single lexical element of a source file.

    Heredoc tokens sit at the position of their introducer (``<<"SQL"``)
    and carry the body separately: ``terminator`` is the tag, ``body`` the
    raw lines and ``body_line`` the line number of the first body line.
    """
    kind: TokenKind
    text: str
    line: int
    terminator: Optional[str] = None
    body: Tuple[str, ...] = ()
    body_line: int = 0
    interpolates: bool = True

    def __repr__(self) -> str:
        return f"Token({self.kind.value}, {self.text!r}, line={self.line})"

    @property
    def significant(self) -> bool:
        return self.kind not in INSIGNIFICANT_KINDS

    def is_structure(self, *texts: str) -> bool:
        return self.kind is TokenKind.STRUCTURE and (not texts or self.text in texts)

    def is_operator(self, *texts: str) -> bool:
        return self.kind is TokenKind.OPERATOR and (not texts or self.text in texts)

    @property
    def content(self) -> str:
        """Return the literal content without quote delimiters."""
        if self.kind is TokenKind.HEREDOC:
            return "\n".join(self.body)
        if self.kind not in (TokenKind.STRING, TokenKind.LITERAL):
            return self.text
        text = self.text
        if text[:1] in ("'", '"', "`"):
            return text[1:-1] if len(text) > 1 and text[-1] == text[0] else text[1:]
        # q{...}, qq(...), qw/.../
        prefix_len = 2 if text.startswith(("qq", "qw", "qx")) else 1
        body = text[prefix_len:].lstrip()
        if not body:
            return ""
        closer = QUOTE_PAIRS.get(body[0], body[0])
        body = body[1:]
        return body[:-1] if body.endswith(closer) else body


@dataclass
class Document:
    """
    A tokenized source file as handed to the rules.

    ``version`` is bumped by the host whenever the token stream is replaced;
    together with object identity it tells rules when per-document state
    must be rebuilt.
    """
    path: str
    tokens: List[Token] = field(default_factory=list)
    version: int = 0
    _positions: Dict[int, int] = field(default_factory=dict, init=False, repr=False, compare=False)
    _indexed: Optional[Tuple[int, int]] = field(default=None, init=False, repr=False, compare=False)

    def position(self, token: Token) -> Optional[int]:
        """Index of ``token`` in the stream, by identity."""
        key = (id(self.tokens), self.version)
        if key != self._indexed:
            self._positions = {id(t): i for i, t in enumerate(self.tokens)}
            self._indexed = key
        return self._positions.get(id(token))

    def comments(self) -> Iterator[Token]:
        return (t for t in self.tokens if t.kind is TokenKind.COMMENT)

    def strings(self) -> Iterator[Token]:
        return (t for t in self.tokens if t.kind in STRING_KINDS)

    def next_significant(self, index: int) -> Optional[int]:
        """Index of the first significant token after ``index``."""
        for i in range(index + 1, len(self.tokens)):
            if self.tokens[i].significant:
                return i
        return None

    def previous_significant(self, index: int) -> Optional[int]:
        for i in range(index - 1, -1, -1):
            if self.tokens[i].significant:
                return i
        return None


def match_bracket(tokens: List[Token], start: int) -> Optional[int]:
    """
    Find the index of the bracket closing ``tokens[start]``.

    Returns None when the group is unbalanced or mismatched.
    """
    stack = []
    for i in range(start, len(tokens)):
        token = tokens[i]
        if token.kind is not TokenKind.STRUCTURE:
            continue
        if token.text in OPENING:
            stack.append(token.text)
        elif token.text in CLOSING:
            if not stack or stack[-1] != CLOSING[token.text]:
                return None
            stack.pop()
            if not stack:
                return i
    return None
