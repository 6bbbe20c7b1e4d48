"""
Lossless GLSL lexer and byte-range bookkeeping.

Every token keeps its exact source text, so joining the texts of all tokens
gives back the input unchanged. Passes can then rewrite individual tokens
and rebuild the source without disturbing whitespace or comments.

Design:
- One master regex, tried alternative by alternative in priority order
- Comments, whitespace and newlines are tokens like everything else
- Directive heads ('#define', '#pragma') are single tokens
- RangeSet records byte ranges (function bodies, binding blocks) so later
  scans can skip them without searching the text again

Usage:
    tokens = tokenize(source)
    assert untokenize(tokens) == source
"""

import bisect
import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, Iterator, List, Optional, Tuple


class TokenKind(Enum):
    IDENT = 'ident'
    NUMBER = 'number'
    PUNCT = 'punct'
    WHITESPACE = 'whitespace'
    NEWLINE = 'newline'
    COMMENT = 'comment'
    STRING = 'string'
    DIRECTIVE = 'directive'


@dataclass(frozen=True)
class Token:
    kind: TokenKind
    text: str
    start: int

    @property
    def end(self) -> int:
        return self.start + len(self.text)

    @property
    def trivia(self) -> bool:
        """True for whitespace, newlines and comments."""
        return self.kind in (TokenKind.WHITESPACE, TokenKind.NEWLINE, TokenKind.COMMENT)

    def is_punct(self, *texts: str) -> bool:
        return self.kind == TokenKind.PUNCT and self.text in texts

    def is_ident(self, *texts: str) -> bool:
        return self.kind == TokenKind.IDENT and (not texts or self.text in texts)


_PUNCTUATORS = [
    '<<=', '>>=', '++', '--', '&&', '||', '^^', '==', '!=', '<=', '>=',
    '+=', '-=', '*=', '/=', '%=', '&=', '|=', '^=', '<<', '>>', '##',
]

_TOKEN_PATTERNS = [
    (TokenKind.COMMENT, r'//[^\n]*|/\*.*?\*/|/\*.*\Z'),
    (TokenKind.STRING, r'"(?:[^"\\\n]|\\.)*"?'),
    (TokenKind.NEWLINE, r'\r?\n'),
    (TokenKind.WHITESPACE, r'(?:[ \t\f\v]|\\\r?\n)+'),
    (TokenKind.NUMBER,
     r'0[xX][0-9a-fA-F]+[uU]?'
     r'|(?:\d+\.\d*|\.\d+)(?:[eE][-+]?\d+)?(?:lf|LF|[fFhH])?'
     r'|\d+[eE][-+]?\d+(?:lf|LF|[fFhH])?'
     r'|\d+[uU]?'),
    (TokenKind.IDENT, r'[A-Za-z_]\w*'),
    (TokenKind.PUNCT, '|'.join(re.escape(p) for p in _PUNCTUATORS)),
    (TokenKind.DIRECTIVE, r'#[ \t]*[A-Za-z_]\w*'),
    (TokenKind.PUNCT, r'.'),
]

_MASTER = re.compile(
    '|'.join(f'(?P<T{i}>{pattern})' for i, (_, pattern) in enumerate(_TOKEN_PATTERNS)),
    re.DOTALL,
)

_KINDS = {f'T{i}': kind for i, (kind, _) in enumerate(_TOKEN_PATTERNS)}

# Operators that take a value on both sides
BINARY_OPERATORS = frozenset([
    '+', '-', '*', '/', '%', '<', '>', '<=', '>=', '==', '!=', '&&', '||', '^^',
    '&', '|', '^', '<<', '>>', '=', '+=', '-=', '*=', '/=', '%=', '&=', '|=',
    '^=', '<<=', '>>=', '?', ':',
])

ASSIGNMENT_OPERATORS = frozenset([
    '=', '+=', '-=', '*=', '/=', '%=', '&=', '|=', '^=', '<<=', '>>=',
])

INTEGER_TYPES = frozenset([
    'int', 'uint', 'ivec2', 'ivec3', 'ivec4', 'uvec2', 'uvec3', 'uvec4',
])

FLOAT_TYPES = frozenset([
    'float', 'vec2', 'vec3', 'vec4', 'mat2', 'mat3', 'mat4',
    'mat2x2', 'mat2x3', 'mat2x4', 'mat3x2', 'mat3x3', 'mat3x4',
    'mat4x2', 'mat4x3', 'mat4x4',
])

VALUE_TYPES = INTEGER_TYPES | FLOAT_TYPES | frozenset([
    'bool', 'bvec2', 'bvec3', 'bvec4', 'void',
])

PRECISION_QUALIFIERS = frozenset(['lowp', 'mediump', 'highp'])


def tokenize(source: str) -> List[Token]:
    """
    Split GLSL source into tokens.

    Args:
        source: GLSL source text

    Returns:
        Tokens whose texts concatenate back to source
    """
    tokens = []
    for match in _MASTER.finditer(source):
        tokens.append(Token(_KINDS[match.lastgroup], match.group(), match.start()))
    return tokens


def untokenize(tokens: Iterable[Token]) -> str:
    return ''.join(token.text for token in tokens)


def significant_indices(tokens: List[Token]) -> List[int]:
    """Indices of every token that is not whitespace, newline or comment."""
    return [i for i, token in enumerate(tokens) if not token.trivia]


def code_indices(tokens: List[Token]) -> List[int]:
    """
    Indices of significant tokens outside preprocessor directive lines.

    A directive runs from its DIRECTIVE token to the end of the line;
    backslash continuations are whitespace tokens, so they stay inside.
    """
    indices = []
    in_directive = False
    for i, token in enumerate(tokens):
        if token.kind == TokenKind.NEWLINE:
            in_directive = False
        elif token.kind == TokenKind.DIRECTIVE:
            in_directive = True
        elif not in_directive and not token.trivia:
            indices.append(i)
    return indices


def directive_name(token: Token) -> str:
    """'#  define' -> 'define'."""
    return token.text[1:].strip()


def find_matching(tokens: List[Token], index: int) -> Optional[int]:
    """
    Find the index of the bracket closing tokens[index].

    Returns:
        Index of the matching bracket, or None if the source is unbalanced
    """
    pairs = {'(': ')', '[': ']', '{': '}'}
    opener = tokens[index].text
    closer = pairs[opener]
    depth = 0
    for i in range(index, len(tokens)):
        token = tokens[i]
        if token.kind != TokenKind.PUNCT:
            continue
        if token.text == opener:
            depth += 1
        elif token.text == closer:
            depth -= 1
            if depth == 0:
                return i
    return None


def line_end(tokens: List[Token], index: int) -> int:
    """Index of the NEWLINE token ending the line that contains index (or len)."""
    for i in range(index, len(tokens)):
        if tokens[i].kind == TokenKind.NEWLINE:
            return i
    return len(tokens)


def rename_identifiers(source: str, mapping: Dict[str, str]) -> str:
    """
    Replace whole identifiers, leaving member accesses ('x.name') alone.

    Identifiers inside comments and strings are not touched.
    """
    if not mapping:
        return source
    tokens = tokenize(source)
    parts = []
    previous = None
    for token in tokens:
        text = token.text
        if (token.kind == TokenKind.IDENT and text in mapping
                and not (previous is not None and previous.is_punct('.'))):
            text = mapping[text]
        parts.append(text)
        if not token.trivia:
            previous = token
    return ''.join(parts)


def identifiers(source: str) -> Iterator[str]:
    """
    Identifiers in code.

    Comments, strings, member names and #pragma lines are skipped.
    """
    previous = None
    in_pragma = False
    for token in tokenize(source):
        if token.kind == TokenKind.NEWLINE:
            in_pragma = False
        elif token.kind == TokenKind.DIRECTIVE:
            in_pragma = directive_name(token) == 'pragma'
        elif (token.kind == TokenKind.IDENT and not in_pragma
              and not (previous is not None and previous.is_punct('.'))):
            yield token.text
        if not token.trivia:
            previous = token


def line_number(source: str, offset: int) -> int:
    return source.count('\n', 0, offset) + 1


# ============================================================================
# Byte range masks
# ============================================================================

class RangeSet:
    """
    Set of half-open byte ranges [start, end), kept sorted and merged.

    Usage:
        masks = RangeSet()
        masks.add(10, 40)
        assert 12 in masks and 40 not in masks
    """

    def __init__(self, ranges: Iterable[Tuple[int, int]] = ()):
        self._starts: List[int] = []
        self._ends: List[int] = []
        for start, end in ranges:
            self.add(start, end)

    def add(self, start: int, end: int):
        if end <= start:
            return
        i = bisect.bisect_left(self._ends, start)
        j = i
        while j < len(self._starts) and self._starts[j] <= end:
            start = min(start, self._starts[j])
            end = max(end, self._ends[j])
            j += 1
        self._starts[i:j] = [start]
        self._ends[i:j] = [end]

    def __contains__(self, offset: int) -> bool:
        i = bisect.bisect_right(self._starts, offset) - 1
        return i >= 0 and offset < self._ends[i]

    def overlaps(self, start: int, end: int) -> bool:
        i = bisect.bisect_right(self._starts, start) - 1
        if i >= 0 and start < self._ends[i]:
            return True
        return i + 1 < len(self._starts) and self._starts[i + 1] < end

    def __iter__(self) -> Iterator[Tuple[int, int]]:
        return iter(zip(self._starts, self._ends))

    def __len__(self) -> int:
        return len(self._starts)

    def __repr__(self) -> str:
        return f"RangeSet({list(self)})"
