"""Compiler configuration."""

from dataclasses import dataclass, field
from typing import Dict


@dataclass(frozen=True)
class CompilerOptions:
    """
    Options shared by every pass of one compiler instance.

    Attributes:
        webgl2: Emit GLSL ES 3.00 (True) or GLSL ES 1.00 for WebGL1 (False)
        float_precision: Default float precision for the modern flavor
        int_precision: Default int precision for the modern flavor
        legacy_float_precision: Default float precision for the legacy flavor
        max_include_depth: Nesting limit for #include expansion
        predefined_macros: Macros visible to #if/#ifdef before the source starts
        param_prefix: Prefix for uniforms that collide with a mutable global
        channel_prefix: Prefix for generated vertex-to-fragment channels
        transform_uniform: Matrix uniform used by the default vertex stage
        position_attribute: Position attribute of the default vertex stage
        texcoord_attribute: Texture coordinate attribute of the default vertex stage
        texcoord_channel: Texture coordinate output of the default vertex stage
    """
    webgl2: bool = True
    float_precision: str = 'highp'
    int_precision: str = 'highp'
    legacy_float_precision: str = 'mediump'
    max_include_depth: int = 20
    predefined_macros: Dict[str, str] = field(default_factory=dict)
    param_prefix: str = 'PARAM_'
    channel_prefix: str = 'v_'
    transform_uniform: str = 'MVP'
    position_attribute: str = 'Position'
    texcoord_attribute: str = 'TexCoord'
    texcoord_channel: str = 'vTexCoord'
