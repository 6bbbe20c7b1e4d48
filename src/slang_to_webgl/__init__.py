"""
slang-to-webgl: RetroArch slang shaders to WebGL GLSL ES.

Usage:
    from slang_to_webgl import ShaderCompiler

    shader = ShaderCompiler().compile(slang_source)
    shader.vertex_source, shader.fragment_source
"""

from .compiler import CompiledPreset, ShaderCompiler
from .config import CompilerOptions
from .errors import (
    IncludeDepthError,
    IncludeFetchError,
    MissingFragmentStageError,
    ShaderCompileError,
)
from .session import ChannelRegistry, CompilerSession
from .transformer.shader_ir import CompiledShader, ParameterDeclaration

__version__ = '0.1.0'

__all__ = [
    'ChannelRegistry',
    'CompiledPreset',
    'CompiledShader',
    'CompilerOptions',
    'CompilerSession',
    'IncludeDepthError',
    'IncludeFetchError',
    'MissingFragmentStageError',
    'ParameterDeclaration',
    'ShaderCompileError',
    'ShaderCompiler',
]
