"""
Regex-driven tokenizer for Perl source.

Produces the flat token stream the rules work on. It is not a Perl
parser: ambiguous constructs are resolved with the usual "is a term
expected here" heuristic, and anything unrecognized degrades to a
one-character operator token rather than an error.
"""

import logging
import re
from typing import List, Optional, Tuple

from sqlscanner.parsers.base import Document, Token, TokenKind, QUOTE_PAIRS

logger = logging.getLogger(__name__)


WHITESPACE_RE = re.compile(r"[ \t\r\f]*\n|[ \t\r\f]+")
COMMENT_RE = re.compile(r"#[^\n]*")
POD_RE = re.compile(r"=[A-Za-z]\w*.*?(?:^=cut\b[^\n]*|\Z)", re.MULTILINE | re.DOTALL)
TRAILER_RE = re.compile(r"__(?:END|DATA)__\b")
WORD_RE = re.compile(r"[A-Za-z_]\w*(?:::\w+)*(?:::)?|::\w+(?:::\w+)*")
NUMBER_RE = re.compile(
    r"0[xX][0-9a-fA-F_]+|0[bB][01_]+|\d[\d_]*(?:\.\d[\d_]*)?(?:[eE][+-]?\d+)?"
)
SYMBOL_RE = re.compile(
    r"(?:\$\#\$*|[$@%&]\$*)(?:[A-Za-z_]\w*(?:::\w+)*|::\w+(?:::\w+)*)"
    r"|\$\^\w"
    r"|\$\d+"
    r"|\$[&+!@/\\,;.0<>$]"
)
HEREDOC_RE = re.compile(r"<<(~?)(?:\"([^\"\n]*)\"|'([^'\n]*)'|([A-Za-z_]\w*))")

QUOTE_OPERATORS = {"q", "qq", "qw", "qx", "m", "qr", "s", "tr", "y"}
SUBSTITUTION_OPERATORS = {"s", "tr", "y"}
QUOTE_DELIMITERS = set("{([</|!'\"#~^")

OPERATORS = sorted(
    [
        "<=>", "**=", "||=", "&&=", "//=", "...", "<<=", ">>=",
        "->", "=>", "==", "!=", "<=", ">=", "=~", "!~", "++", "--", "**",
        "&&", "||", "//", "..", "::", ".=", "+=", "-=", "*=", "/=", "|=",
        "&=", "^=", "%=", "<<", ">>", "$#",
        "-", "+", "*", "/", ".", "<", ">", "=", "!", "~", "?", ":", "\\",
        "&", "|", "^", "%", "$", "@",
    ],
    key=len,
    reverse=True,
)
STRUCTURE_CHARS = set("()[]{};,")

# Words after which a term (not an infix operator) is expected.
TERM_WORDS = {
    "if", "unless", "while", "until", "and", "or", "not", "xor", "return",
    "split", "grep", "map", "join", "push", "unshift", "when", "lt", "gt",
    "le", "ge", "eq", "ne", "cmp", "x",
}


def _read_delimited(source: str, pos: int) -> int:
    """
    Read a delimited group starting at the opening delimiter ``source[pos]``.

    Bracket pairs nest; other delimiters close on their next unescaped
    occurrence. Returns the index just past the closing delimiter, or the
    end of the source if the group is unterminated.
    """
    opener = source[pos]
    closer = QUOTE_PAIRS.get(opener, opener)
    depth = 0
    i = pos + 1
    while i < len(source):
        char = source[i]
        if char == "\\":
            i += 2
            continue
        if char == closer:
            if depth == 0:
                return i + 1
            depth -= 1
        elif char == opener and opener != closer:
            depth += 1
        i += 1
    return len(source)


def _read_until(source: str, pos: int, closer: str) -> int:
    i = pos
    while i < len(source):
        if source[i] == "\\":
            i += 2
            continue
        if source[i] == closer:
            return i + 1
        i += 1
    return len(source)


class PerlTokenizer:
    """
    Tokenizer for Perl code.

    Usage:
        tokens = PerlTokenizer(source).tokenize()
    """

    def __init__(self, source: str, line: int = 1):
        self.source = source
        self.pos = 0
        self.line = line
        self.tokens: List[Token] = []
        self._pending_heredocs: List[Tuple[int, str, bool, bool]] = []

    def tokenize(self) -> List[Token]:
        source = self.source
        while self.pos < len(source):
            char = source[self.pos]
            at_line_start = self.pos == 0 or source[self.pos - 1] == "\n"

            if char in " \t\r\f\n":
                match = WHITESPACE_RE.match(source, self.pos)
                self._emit(TokenKind.WHITESPACE, match.group())
                if match.group().endswith("\n") and self._pending_heredocs:
                    self._read_heredoc_bodies()
                continue

            if at_line_start and char == "=" and re.match(r"=[A-Za-z]", source[self.pos:self.pos + 2]):
                self._emit(TokenKind.POD, POD_RE.match(source, self.pos).group())
                continue

            if at_line_start and TRAILER_RE.match(source, self.pos):
                self._emit(TokenKind.POD, source[self.pos:])
                continue

            if char == "#":
                self._emit(TokenKind.COMMENT, COMMENT_RE.match(source, self.pos).group())
                continue

            if char == '"' or char == "`":
                self._emit_span(TokenKind.STRING, _read_delimited(source, self.pos))
                continue

            if char == "'":
                self._emit_span(TokenKind.LITERAL, _read_delimited(source, self.pos))
                continue

            if char == "<" and self._expects_term():
                match = HEREDOC_RE.match(source, self.pos)
                if match:
                    self._start_heredoc(match)
                    continue

            if char == "/" and self._expects_term():
                end = _read_delimited(source, self.pos)
                end += len(re.match(r"[a-z]*", source[end:]).group())
                self._emit_span(TokenKind.REGEX, end)
                continue

            if char in "$@%&":
                match = SYMBOL_RE.match(source, self.pos)
                if match and (char in "$@" or self._expects_term()):
                    self._emit(TokenKind.SYMBOL, match.group())
                    continue

            if char.isalpha() or char == "_" or source.startswith("::", self.pos):
                match = WORD_RE.match(source, self.pos)
                if match:
                    if not self._quote_like(match.group()):
                        self._emit(TokenKind.WORD, match.group())
                    continue

            if char.isdigit():
                self._emit(TokenKind.NUMBER, NUMBER_RE.match(source, self.pos).group())
                continue

            if char in STRUCTURE_CHARS:
                self._emit(TokenKind.STRUCTURE, char)
                continue

            for operator in OPERATORS:
                if source.startswith(operator, self.pos):
                    self._emit(TokenKind.OPERATOR, operator)
                    break
            else:
                self._emit(TokenKind.OPERATOR, char)

        if self._pending_heredocs:
            self._read_heredoc_bodies()
        return self.tokens

    def _emit(self, kind: TokenKind, text: str) -> Token:
        token = Token(kind=kind, text=text, line=self.line)
        self.tokens.append(token)
        self.pos += len(text)
        self.line += text.count("\n")
        return token

    def _emit_span(self, kind: TokenKind, end: int) -> Token:
        return self._emit(kind, self.source[self.pos:end])

    def _last_significant(self) -> Optional[Token]:
        for token in reversed(self.tokens):
            if token.significant:
                return token
        return None

    def _expects_term(self) -> bool:
        previous = self._last_significant()
        if previous is None:
            return True
        if previous.kind is TokenKind.OPERATOR:
            return True
        if previous.kind is TokenKind.STRUCTURE:
            return previous.text in "([{;,"
        if previous.kind is TokenKind.WORD:
            # method names are operands: $obj->count / 2
            return previous.text in TERM_WORDS or not self._preceded_by_arrow(previous)
        return False

    def _preceded_by_arrow(self, word: Token) -> bool:
        index = len(self.tokens) - 1
        while index >= 0 and self.tokens[index] is not word:
            index -= 1
        for token in reversed(self.tokens[:index]):
            if token.significant:
                return token.is_operator("->")
        return False

    def _quote_like(self, word: str) -> bool:
        """Emit a quote-like or regex token if ``word`` starts one."""
        if word not in QUOTE_OPERATORS:
            return False
        start = self.pos + len(word)
        if start >= len(self.source) or self.source[start] not in QUOTE_DELIMITERS:
            return False
        previous = self._last_significant()
        if previous is not None and previous.is_operator("->"):
            return False

        end = _read_delimited(self.source, start)
        if word in SUBSTITUTION_OPERATORS:
            opener = self.source[start]
            if opener in QUOTE_PAIRS:
                second = end
                while second < len(self.source) and self.source[second] in " \t\r\n":
                    second += 1
                if second < len(self.source):
                    end = _read_delimited(self.source, second)
            else:
                end = _read_until(self.source, end, opener)
        if word in ("m", "qr") or word in SUBSTITUTION_OPERATORS:
            end += len(re.match(r"[a-z]*", self.source[end:]).group())
            kind = TokenKind.REGEX
        elif word == "qq" or word == "qx":
            kind = TokenKind.STRING
        else:
            kind = TokenKind.LITERAL
        self._emit_span(kind, end)
        return True

    def _start_heredoc(self, match: "re.Match") -> None:
        indented = bool(match.group(1))
        if match.group(3) is not None:
            terminator, interpolates = match.group(3), False
        else:
            terminator = match.group(2) if match.group(2) is not None else match.group(4)
            interpolates = True
        self._emit(TokenKind.HEREDOC, match.group())
        self._pending_heredocs.append((len(self.tokens) - 1, terminator, indented, interpolates))

    def _read_heredoc_bodies(self) -> None:
        source = self.source
        for index, terminator, indented, interpolates in self._pending_heredocs:
            body_line = self.line
            body: List[str] = []
            while self.pos < len(source):
                end = source.find("\n", self.pos)
                end = len(source) if end == -1 else end + 1
                raw = source[self.pos:end]
                self.pos = end
                self.line += raw.count("\n")
                text = raw.rstrip("\r\n")
                if (text.strip() if indented else text) == terminator:
                    break
                body.append(text)
            else:
                logger.debug("Unterminated heredoc %r at line %d", terminator, body_line)
            introducer = self.tokens[index]
            self.tokens[index] = Token(
                kind=TokenKind.HEREDOC,
                text=introducer.text,
                line=introducer.line,
                terminator=terminator,
                body=tuple(body),
                body_line=body_line,
                interpolates=interpolates,
            )
        self._pending_heredocs = []


def tokenize(source: str, line: int = 1) -> List[Token]:
    """Tokenize Perl code, numbering lines from ``line``."""
    return PerlTokenizer(source, line).tokenize()


INTERPOLATED_NAME_RE = re.compile(r"\$+(?:[A-Za-z_]\w*(?:::\w+)*|\d+)|@[A-Za-z_]\w*(?:::\w+)*")
BRACED_NAME_RE = re.compile(r"([$@])\{\s*([A-Za-z_]\w*(?:::\w+)*)\s*\}")


def _find_closing(text: str, pos: int) -> Optional[int]:
    """Index of the bracket closing ``text[pos]``, or None if unbalanced."""
    opener = text[pos]
    closer = QUOTE_PAIRS[opener]
    depth = 0
    i = pos
    while i < len(text):
        char = text[i]
        if char == "\\":
            i += 2
            continue
        if char == opener:
            depth += 1
        elif char == closer:
            depth -= 1
            if depth == 0:
                return i
        i += 1
    return None


class InterpolationTokenizer:
    """
    Splits the content of an interpolating literal into tokens.

    Plain text becomes LITERAL tokens; each interpolated variable becomes a
    SYMBOL followed by its attached subscripts. Embedded code blocks
    (``@{[ ... ]}`` and ``${\\ ... }``) are tokenized as code and wrapped
    in marker operator tokens.
    """

    BLOCK_MARKERS = {"@{[": ("[", "]}"), "${\\": ("{", "}")}

    def __init__(self, content: str, line: int = 1):
        self.content = content
        self.pos = 0
        self.line = line
        self.tokens: List[Token] = []
        self._text_start = 0

    def tokenize(self) -> List[Token]:
        content = self.content
        while self.pos < len(content):
            char = content[self.pos]
            if char == "\\":
                self.pos += 2
                continue
            if char in "$@" and self._interpolation():
                continue
            self.pos += 1
        self._flush_text(len(content))
        return self.tokens

    def _flush_text(self, end: int) -> None:
        if end > self._text_start:
            text = self.content[self._text_start:end]
            self.tokens.append(Token(TokenKind.LITERAL, text, self.line))
            self.line += text.count("\n")
        self._text_start = end

    def _push(self, kind: TokenKind, text: str) -> None:
        self.tokens.append(Token(kind, text, self.line))

    def _interpolation(self) -> bool:
        content = self.content
        start = self.pos

        for marker, (opener, closer) in self.BLOCK_MARKERS.items():
            if content.startswith(marker, start):
                open_pos = start + len(marker) - 1 if opener == "[" else start + 1
                close = _find_closing(content, open_pos)
                if close is None or not content.startswith(closer, close):
                    return False
                self._flush_text(start)
                self._push(TokenKind.OPERATOR, marker)
                inner = content[start + len(marker):close]
                self.tokens.extend(tokenize(inner, self.line))
                self.line += inner.count("\n")
                self._push(TokenKind.OPERATOR, closer)
                self.pos = close + len(closer)
                self._text_start = self.pos
                return True

        braced = BRACED_NAME_RE.match(content, start)
        match = braced or INTERPOLATED_NAME_RE.match(content, start)
        if not match:
            return False
        self._flush_text(start)
        name = match.group(1) + match.group(2) if braced else match.group()
        self._push(TokenKind.SYMBOL, name)
        self.pos = match.end()
        self._subscripts()
        self._text_start = self.pos
        return True

    def _subscripts(self) -> None:
        content = self.content
        while self.pos < len(content):
            pos = self.pos
            arrow = content.startswith("->", pos) and content[pos + 2:pos + 3] in ("[", "{")
            if arrow:
                pos += 2
            if content[pos:pos + 1] not in ("[", "{"):
                return
            close = _find_closing(content, pos)
            if close is None:
                return
            if arrow:
                self._push(TokenKind.OPERATOR, "->")
            self._push(TokenKind.STRUCTURE, content[pos])
            inner = content[pos + 1:close]
            self.tokens.extend(tokenize(inner, self.line))
            self.line += inner.count("\n")
            self._push(TokenKind.STRUCTURE, content[close])
            self.pos = close + 1


def tokenize_interpolated(content: str, line: int = 1) -> List[Token]:
    """Tokenize the inside of an interpolating literal."""
    return InterpolationTokenizer(content, line).tokenize()


def parse_document(source: str, path: str = "<unknown>", version: int = 0) -> Document:
    """Tokenize ``source`` into a Document."""
    return Document(path=path, tokens=tokenize(source), version=version)
