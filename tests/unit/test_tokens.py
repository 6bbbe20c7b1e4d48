"""
Unit tests for the lossless lexer and RangeSet.

Test coverage:
- Token kinds (6 tests)
- Lossless round trip (3 tests)
- Helpers (5 tests)
- RangeSet (6 tests)
Total: 20 tests
"""

import pytest

from slang_to_webgl.analyzer.tokens import (
    RangeSet,
    TokenKind,
    code_indices,
    find_matching,
    identifiers,
    rename_identifiers,
    tokenize,
    untokenize,
)


def kinds(source):
    return [(t.kind, t.text) for t in tokenize(source) if not t.trivia]


# ============================================================================
# Token kinds (6 tests)
# ============================================================================

def test_identifiers_and_punctuation():
    """Test identifiers and single-character punctuation."""
    assert kinds("a = b;") == [
        (TokenKind.IDENT, 'a'), (TokenKind.PUNCT, '='),
        (TokenKind.IDENT, 'b'), (TokenKind.PUNCT, ';'),
    ]


def test_multi_character_operators():
    """Test that compound operators are single tokens."""
    texts = [text for _, text in kinds("a <<= b; c++; d != e && f >= g;")]
    assert '<<=' in texts
    assert '++' in texts
    assert '!=' in texts
    assert '&&' in texts
    assert '>=' in texts


@pytest.mark.parametrize("literal", ["1", "1.0", "1.", ".5", "1e5", "2.5e-3", "0x1F", "3u", "1.0f"])
def test_number_literals(literal):
    """Test that each numeric literal form is one NUMBER token."""
    assert kinds(literal) == [(TokenKind.NUMBER, literal)]


def test_comments_are_tokens():
    """Test line and block comments."""
    tokens = tokenize("a; // note\n/* block\n comment */ b;")
    comments = [t.text for t in tokens if t.kind == TokenKind.COMMENT]
    assert comments == ["// note", "/* block\n comment */"]


def test_directive_head():
    """Test that '#define' is a single DIRECTIVE token."""
    tokens = [t for t in tokenize("#define X 1") if not t.trivia]
    assert tokens[0].kind == TokenKind.DIRECTIVE
    assert tokens[0].text == "#define"


def test_swizzle_is_not_a_number():
    """Test member access after an identifier."""
    assert kinds("v.xy") == [
        (TokenKind.IDENT, 'v'), (TokenKind.PUNCT, '.'), (TokenKind.IDENT, 'xy'),
    ]


# ============================================================================
# Lossless round trip (3 tests)
# ============================================================================

def test_roundtrip_shader():
    """Test that untokenize reproduces a realistic shader exactly."""
    source = (
        "#version 450\n"
        "layout(push_constant) uniform Push { float a, b; } params;\r\n"
        "#define MUL(x, y) \\\n  ((x) * (y))\n"
        "void main() { gl_FragColor = vec4(0.5e1, 1u, .5, 0x10); } /* end */\n"
    )
    assert untokenize(tokenize(source)) == source


def test_roundtrip_unterminated_comment():
    """Test an unterminated block comment."""
    source = "float a; /* never closed\n float b;"
    assert untokenize(tokenize(source)) == source


def test_offsets_match_source():
    """Test that token start offsets index into the source."""
    source = "int  x =\n 42;"
    for token in tokenize(source):
        assert source[token.start:token.end] == token.text


# ============================================================================
# Helpers (5 tests)
# ============================================================================

def test_find_matching():
    """Test bracket matching across nesting."""
    tokens = tokenize("f(a, (b), c[1]) + 1")
    open_index = next(i for i, t in enumerate(tokens) if t.text == '(')
    close_index = find_matching(tokens, open_index)
    assert tokens[close_index].text == ')'
    assert untokenize(tokens[open_index:close_index + 1]) == "(a, (b), c[1])"


def test_code_indices_skip_directives():
    """Test that directive lines are excluded from code indices."""
    tokens = tokenize("#define A 1\nfloat b;")
    texts = [tokens[i].text for i in code_indices(tokens)]
    assert texts == ['float', 'b', ';']


def test_rename_identifiers_skips_members():
    """Test that member names and comments are not renamed."""
    source = "x = s.x + x; // x"
    assert rename_identifiers(source, {'x': 'y'}) == "y = s.x + y; // x"


def test_identifiers_skip_pragma_lines():
    """Test that #pragma arguments are not reported as identifiers."""
    source = '#pragma parameter GAMMA "Gamma" 2.2 1.0 4.0 0.1\nfloat g = GAIN;'
    names = list(identifiers(source))
    assert 'GAMMA' not in names
    assert 'GAIN' in names


def test_identifiers_skip_members():
    """Test that member access does not report the member."""
    assert list(identifiers("params.speed")) == ['params']


# ============================================================================
# RangeSet (6 tests)
# ============================================================================

def test_rangeset_contains():
    """Test membership with half-open ranges."""
    ranges = RangeSet([(10, 20)])
    assert 10 in ranges
    assert 19 in ranges
    assert 20 not in ranges
    assert 9 not in ranges


def test_rangeset_merges_overlaps():
    """Test that overlapping ranges merge."""
    ranges = RangeSet([(0, 5), (3, 8)])
    assert list(ranges) == [(0, 8)]


def test_rangeset_merges_touching():
    """Test that adjacent ranges merge."""
    ranges = RangeSet([(0, 5), (5, 9)])
    assert list(ranges) == [(0, 9)]


def test_rangeset_keeps_disjoint_sorted():
    """Test that disjoint ranges stay separate and sorted."""
    ranges = RangeSet([(20, 30), (0, 5), (10, 12)])
    assert list(ranges) == [(0, 5), (10, 12), (20, 30)]
    assert len(ranges) == 3


def test_rangeset_overlaps():
    """Test interval overlap queries."""
    ranges = RangeSet([(10, 20)])
    assert ranges.overlaps(5, 11)
    assert ranges.overlaps(15, 30)
    assert not ranges.overlaps(0, 10)
    assert not ranges.overlaps(20, 25)


def test_rangeset_ignores_empty():
    """Test that empty ranges are dropped."""
    ranges = RangeSet([(5, 5)])
    assert len(ranges) == 0
    assert 5 not in ranges
