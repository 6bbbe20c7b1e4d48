"""
Unit tests for ConditionalPreprocessor and the condition evaluator.

Test coverage:
- #ifdef / #ifndef / #else (4 tests)
- #if / #elif expressions (7 tests)
- Macro bookkeeping (4 tests)
- Malformed input (4 tests)
- Evaluator (7 tests)
Total: 26 tests
"""

import pytest

from slang_to_webgl.preprocessor.condition_evaluator import ConditionError, evaluate
from slang_to_webgl.preprocessor.conditional_preprocessor import ConditionalPreprocessor


@pytest.fixture
def preprocessor():
    """Create preprocessor instance."""
    return ConditionalPreprocessor()


# ============================================================================
# #ifdef / #ifndef / #else (4 tests)
# ============================================================================

def test_ifdef_undefined(preprocessor):
    """Test that #ifdef of an undefined macro drops its body."""
    source = "a\n#ifdef X\nb\n#endif\nc"
    assert preprocessor.process(source) == "a\nc"


def test_ifdef_defined(preprocessor):
    """Test that #ifdef of a defined macro keeps its body and the #define."""
    source = "#define X\n#ifdef X\nb\n#endif"
    assert preprocessor.process(source) == "#define X\nb"


def test_ifndef_else(preprocessor):
    """Test #ifndef with #else."""
    source = "#ifndef X\nyes\n#else\nno\n#endif"
    assert preprocessor.process(source) == "yes"


def test_nested_inactive_parent(preprocessor):
    """Test that a true inner branch stays dead under a false outer branch."""
    source = "#ifdef OUTER\n#ifndef INNER\ninner\n#endif\n#else\nouter_else\n#endif"
    assert preprocessor.process(source) == "outer_else"


# ============================================================================
# #if / #elif expressions (7 tests)
# ============================================================================

def test_if_numeric_macro(preprocessor):
    """Test #if comparing an object-like macro."""
    source = "#define QUALITY 2\n#if QUALITY > 1\nhigh\n#else\nlow\n#endif"
    assert preprocessor.process(source) == "#define QUALITY 2\nhigh"


def test_elif_chain(preprocessor):
    """Test that only the first true #elif is taken."""
    source = (
        "#define MODE 2\n"
        "#if MODE == 1\none\n#elif MODE == 2\ntwo\n#elif MODE >= 2\nlater\n#else\nother\n#endif"
    )
    assert preprocessor.process(source).split('\n')[1:] == ["two"]


def test_defined_operator(preprocessor):
    """Test defined(X) and defined X."""
    source = "#define A\n#if defined(A) && !defined B\nok\n#endif"
    assert preprocessor.process(source).endswith("ok")


def test_undefined_identifier_is_zero(preprocessor):
    """Test that unknown identifiers evaluate to 0."""
    source = "#if UNKNOWN\nyes\n#else\nno\n#endif"
    assert preprocessor.process(source) == "no"


def test_nested_macro_expansion(preprocessor):
    """Test macros that refer to other macros."""
    source = "#define A B\n#define B 3\n#if A == 3\nyes\n#endif"
    assert preprocessor.process(source).endswith("yes")


def test_self_referential_macro_expands_once(preprocessor):
    """Test that a macro is not re-expanded inside its own expansion."""
    source = "#define A A+1\n#if A == 1\nyes\n#else\nno\n#endif"
    assert preprocessor.process(source).endswith("yes")
    source = "#define P Q\n#define Q P\n#if P == 0\nzero\n#endif"
    assert preprocessor.process(source).endswith("zero")


def test_predefined_macros():
    """Test macros supplied before the first line."""
    preprocessor = ConditionalPreprocessor({'WEBGL': '1'})
    assert preprocessor.process("#if WEBGL\nweb\n#endif") == "web"


# ============================================================================
# Macro bookkeeping (4 tests)
# ============================================================================

def test_define_in_inactive_branch_not_registered(preprocessor):
    """Test that #define inside a dead branch is neither kept nor registered."""
    source = "#ifdef NOPE\n#define X 1\n#endif\n#ifdef X\nx\n#endif"
    assert preprocessor.process(source) == ""
    assert 'X' not in preprocessor.macros


def test_redefinition_overwrites(preprocessor):
    """Test that the latest #define wins."""
    source = "#define N 1\n#define N 2\n#if N == 2\ntwo\n#endif"
    assert preprocessor.process(source).endswith("two")
    assert preprocessor.macros['N'].value == "2"


def test_undef(preprocessor):
    """Test that #undef removes a macro and is preserved."""
    source = "#define X\n#undef X\n#ifdef X\nx\n#endif"
    assert preprocessor.process(source) == "#define X\n#undef X"


def test_continued_define(preprocessor):
    """Test that a backslash-continued #define is joined and registered."""
    source = "#define SUM(a, b) \\\n  ((a) + (b))\nfloat s;"
    result = preprocessor.process(source)
    assert result == "#define SUM(a, b) ((a) + (b))\nfloat s;"
    assert preprocessor.macros['SUM'].parameters == "a, b"


# ============================================================================
# Malformed input (4 tests)
# ============================================================================

def test_unbalanced_endif_ignored(preprocessor):
    """Test that a stray #endif does not raise."""
    assert preprocessor.process("a\n#endif\nb") == "a\nb"


def test_unterminated_block(preprocessor):
    """Test that an unterminated block drops the rest of a false branch."""
    assert preprocessor.process("a\n#ifdef X\nb") == "a"


def test_unevaluable_condition_is_false(preprocessor):
    """Test that a condition that cannot be parsed counts as false."""
    assert preprocessor.process("#if 1 / 0\nx\n#else\ny\n#endif") == "y"


def test_deeply_nested_condition_is_false(preprocessor):
    """Test that a condition nested past the parser limit counts as false."""
    source = "#if " + "(" * 2000 + "1" + ")" * 2000 + "\nx\n#else\ny\n#endif"
    assert preprocessor.process(source) == "y"


# ============================================================================
# Evaluator (7 tests)
# ============================================================================

@pytest.mark.parametrize("expression,expected", [
    ("1 + 2 * 3 == 7", True),
    ("(1 + 2) * 3 == 7", False),
    ("0x10 == 16", True),
    ("010 == 8", True),
    ("-7 / 2 == -3", True),
    ("1 ? 0 : 1", False),
])
def test_evaluate(expression, expected):
    """Test operator precedence and literal forms."""
    assert evaluate(expression) is expected


def test_evaluate_bitwise_and_shift():
    """Test bitwise and shift operators."""
    assert evaluate("(1 << 3 | 1) == 9")
    assert evaluate("(~0 & 3) == 3")


def test_evaluate_modulo_truncates():
    """Test that modulo follows C sign rules."""
    assert evaluate("-7 % 2 == -1")


def test_evaluate_empty_raises():
    """Test that an empty expression is an error."""
    with pytest.raises(ConditionError):
        evaluate("   ")


def test_evaluate_function_like_raises():
    """Test that a surviving function-like macro call is an error."""
    with pytest.raises(ConditionError):
        evaluate("FOO(1)")


def test_evaluate_division_by_zero_raises():
    """Test that division by zero is an error."""
    with pytest.raises(ConditionError):
        evaluate("4 / (2 - 2)")


def test_evaluate_nesting_limit():
    """Test that moderate nesting evaluates and excessive nesting raises."""
    assert evaluate("(" * 20 + "1" + ")" * 20)
    assert evaluate("!" * 21 + "1") is False
    with pytest.raises(ConditionError):
        evaluate("(" * 500 + "1" + ")" * 500)
    with pytest.raises(ConditionError):
        evaluate("-" * 500 + "1")
