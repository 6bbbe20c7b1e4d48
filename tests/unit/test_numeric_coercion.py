"""
Unit tests for NumericCoercionPass.

Test coverage:
- Float positions (3 tests)
- Integer contexts (9 tests)
- Casts (4 tests)
- Context and idempotence (3 tests)
Total: 19 tests
"""

import pytest

from slang_to_webgl.transformer.numeric_coercion import NumericCoercionPass


@pytest.fixture
def coercion():
    """Create coercion pass instance."""
    return NumericCoercionPass()


# ============================================================================
# Float positions (3 tests)
# ============================================================================

def test_float_initializer(coercion):
    """Test a bare integer assigned to a float."""
    assert coercion.coerce("float x = 2;") == "float x = 2.0;"


def test_constructor_arguments(coercion):
    """Test integers inside float constructors."""
    assert coercion.coerce("vec3 c = vec3(1, 0, 0.5);") == "vec3 c = vec3(1.0, 0.0, 0.5);"


def test_non_bare_literals_untouched(coercion):
    """Test that fractional, exponent, hex and suffixed literals are left alone."""
    source = "float a = 1.5 + 1e3; uint b = 0x10u; uint c = 2u;"
    assert coercion.coerce(source) == source


# ============================================================================
# Integer contexts (9 tests)
# ============================================================================

def test_int_declaration(coercion):
    """Test integer declarations with several declarators."""
    source = "int n = 4, m = 2;"
    assert coercion.coerce(source) == source


def test_array_size_and_index(coercion):
    """Test array sizes and indices stay integers."""
    assert coercion.coerce("float a[4]; a[1] = 3;") == "float a[4]; a[1] = 3.0;"


def test_for_loop(coercion):
    """Test an int loop counter next to a float accumulator."""
    source = "float total;\nvoid main() { for (int i = 0; i < 8; i++) { total += 1; } }"
    assert coercion.coerce(source) == (
        "float total;\nvoid main() { for (int i = 0; i < 8; i++) { total += 1.0; } }"
    )


def test_int_constructor_and_builtin(coercion):
    """Test int constructors and texelFetch arguments."""
    source = "vec4 t = texelFetch(Source, ivec2(1, 2), 0);"
    assert coercion.coerce(source) == source


def test_int_parameter_of_user_function(coercion):
    """Test that arguments bound to int parameters stay integers."""
    source = "float pick(int idx, float s) { return s; }\nvoid main() { float v = pick(2, 3); }"
    assert coercion.coerce(source) == (
        "float pick(int idx, float s) { return s; }\nvoid main() { float v = pick(2, 3.0); }"
    )


def test_return_in_int_function(coercion):
    """Test return values of int functions."""
    source = "int f() { return 1; }\nfloat g() { return 1; }"
    assert coercion.coerce(source) == "int f() { return 1; }\nfloat g() { return 1.0; }"


def test_case_labels(coercion):
    """Test switch case labels."""
    source = "int m; float x;\nvoid main() { switch (m) { case 1: x = 2; break; } }"
    assert coercion.coerce(source) == (
        "int m; float x;\nvoid main() { switch (m) { case 1: x = 2.0; break; } }"
    )


def test_unary_minus_next_to_int(coercion):
    """Test a negative literal assigned to an int and to a float."""
    source = "int k; float f;\nvoid main() { k = -1; f = -1; }"
    assert coercion.coerce(source) == "int k; float f;\nvoid main() { k = -1; f = -1.0; }"


def test_directives_and_layout(coercion):
    """Test that directives and layout qualifiers are untouched."""
    source = "#define N 4\nlayout(location = 0) out vec4 FragColor;\n"
    assert coercion.coerce(source) == source


# ============================================================================
# Casts (4 tests)
# ============================================================================

def test_int_uniform_mixed_with_float(coercion):
    """Test that an int uniform next to a float operand is cast."""
    source = "uniform int FRAMES;\nvoid main() { float t = FRAMES * 0.5; }"
    assert coercion.coerce(source) == "uniform int FRAMES;\nvoid main() { float t = float(FRAMES) * 0.5; }"


def test_float_loop_limit_cast(coercion):
    """Test int(LIMIT) for a float bound compared with an int counter."""
    source = "float LIMIT = 4.0;\nvoid main() { for (int i = 0; i < LIMIT; i++) {} }"
    assert coercion.coerce(source) == (
        "float LIMIT = 4.0;\nvoid main() { for (int i = 0; i < int(LIMIT); i++) {} }"
    )


def test_cast_int_uniform_frees_neighbor_literal(coercion):
    """Test that a literal next to a cast int uniform becomes a float."""
    source = "uniform int MODE;\nfloat x;\nvoid main() { x = x * MODE + 1; }"
    once = coercion.coerce(source)
    assert once == "uniform int MODE;\nfloat x;\nvoid main() { x = x * float(MODE) + 1.0; }"
    assert coercion.coerce(once) == once


def test_int_uniform_with_int_operand_not_cast(coercion):
    """Test that an int uniform in integer arithmetic is not cast."""
    source = "uniform int FRAMES;\nvoid main() { int n = FRAMES % 4; }"
    assert coercion.coerce(source) == source


# ============================================================================
# Context and idempotence (3 tests)
# ============================================================================

def test_context_types_injected_statement(coercion):
    """Test that context declarations type a standalone statement."""
    assert coercion.coerce("n = 2;", context="int n;") == "n = 2;"
    assert coercion.coerce("n = 2;") == "n = 2.0;"


def test_idempotent(coercion):
    """Test coerce(coerce(s)) == coerce(s)."""
    source = (
        "uniform int FRAMES;\n"
        "float LIMIT = 4.0;\n"
        "float pick(int idx, float s) { return s * 2; }\n"
        "void main()\n"
        "{\n"
        "    float total = 0;\n"
        "    for (int i = 0; i < LIMIT; i++) { total += pick(i, 1) + FRAMES * 0.5; }\n"
        "    total = total * FRAMES + 1;\n"
        "}\n"
    )
    once = coercion.coerce(source)
    assert coercion.coerce(once) == once


def test_comments_untouched(coercion):
    """Test that literals in comments are left alone."""
    source = "float x = 1.0; // scale by 2\n/* 3 */"
    assert coercion.coerce(source) == source
