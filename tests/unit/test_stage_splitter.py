"""
Unit tests for StageSplitter.

Test coverage:
- Splitting (4 tests)
- Default vertex stage (3 tests)
- Errors (1 test)
Total: 8 tests
"""

import pytest

from slang_to_webgl.analyzer.stage_splitter import StageSplitter, default_vertex_stage
from slang_to_webgl.config import CompilerOptions
from slang_to_webgl.errors import MissingFragmentStageError, ShaderCompileError
from slang_to_webgl.transformer.shader_ir import Stage

SHADER = """\
#version 450
#pragma parameter A "a" 1 0 2
#define FOO 1
float g = 1.0;
uniform float legacy;
#pragma name X
#pragma stage vertex
void main() { gl_Position = vec4(0.0); }
#pragma stage fragment
#pragma format R8G8B8A8_UNORM
void main() { FragColor = vec4(1.0); }"""


@pytest.fixture
def splitter():
    """Create splitter instance."""
    return StageSplitter()


# ============================================================================
# Splitting (4 tests)
# ============================================================================

def test_preamble_keeps_only_verbatim_lines(splitter):
    """Test that only parameter pragmas, macros and bare uniforms stay in the preamble."""
    split = splitter.split(SHADER)
    assert split.preamble == '#pragma parameter A "a" 1 0 2\n#define FOO 1\nuniform float legacy;'


def test_stage_bodies(splitter):
    """Test both stage bodies."""
    split = splitter.split(SHADER)
    assert split.vertex.body == "void main() { gl_Position = vec4(0.0); }"
    assert split.fragment.body == "void main() { FragColor = vec4(1.0); }"
    assert not split.vertex.synthesized
    assert split.stage(Stage.FRAGMENT) is split.fragment


def test_parameter_pragma_inside_stage_kept(splitter):
    """Test that parameter pragmas inside a stage stay in its body."""
    source = '#pragma stage fragment\n#pragma parameter B "b" 0 0 1\nvoid main() {}'
    split = splitter.split(source)
    assert split.fragment.body == '#pragma parameter B "b" 0 0 1\nvoid main() {}'


def test_repeated_stage_concatenates(splitter):
    """Test that a stage declared twice has its sections concatenated."""
    source = "#pragma stage fragment\nfloat a;\n#pragma stage vertex\nvoid main() {}\n#pragma stage fragment\nfloat b;"
    split = splitter.split(source)
    assert split.fragment.body == "float a;\nfloat b;"


# ============================================================================
# Default vertex stage (3 tests)
# ============================================================================

def test_missing_vertex_is_synthesized(splitter):
    """Test that a fragment-only shader gets a pass-through vertex stage."""
    split = splitter.split("#pragma stage fragment\nvoid main() {}")
    assert split.vertex.synthesized
    assert split.vertex.body == default_vertex_stage()


def test_default_vertex_contents():
    """Test the names used by the pass-through vertex stage."""
    body = default_vertex_stage()
    assert "in vec4 Position;" in body
    assert "in vec2 TexCoord;" in body
    assert "out vec2 vTexCoord;" in body
    assert "uniform mat4 MVP;" in body
    assert "gl_Position = MVP * Position;" in body
    assert "vTexCoord = TexCoord;" in body


def test_default_vertex_uses_options():
    """Test that CompilerOptions renames the pass-through vertex stage interface."""
    options = CompilerOptions(transform_uniform='uMVP', texcoord_channel='vUv')
    body = default_vertex_stage(options)
    assert "uniform mat4 uMVP;" in body
    assert "vUv = TexCoord;" in body


# ============================================================================
# Errors (1 test)
# ============================================================================

def test_missing_fragment_raises(splitter):
    """Test that a shader without a fragment stage is rejected."""
    with pytest.raises(MissingFragmentStageError) as info:
        splitter.split("#pragma stage vertex\nvoid main() {}")
    assert isinstance(info.value, ShaderCompileError)
