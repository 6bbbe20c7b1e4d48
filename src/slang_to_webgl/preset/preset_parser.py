"""
RetroArch .slangp preset parsing.

A preset is an INI-like file describing a multi-pass pipeline:

    shaders = 2
    shader0 = shaders/blur.slang
    filter_linear0 = false
    scale_type0 = source
    scale0 = 2.0
    shader1 = shaders/crt.slang

    textures = "lut"
    lut = textures/lut.png

    parameters = "GAMMA"
    GAMMA = 2.4

'//' and '#' start comments, except on a `#reference "path"` line.

Usage:
    preset = PresetParser.parse(text, "presets/crt.slangp")
    shader_path = PresetParser.resolve_path(preset.base_path, preset.passes[0].shader)
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)

_REFERENCE_RE = re.compile(r'#reference\s+"([^"]+)"')


class ScaleType(Enum):
    SOURCE = 'source'
    VIEWPORT = 'viewport'
    ABSOLUTE = 'absolute'


class WrapMode(Enum):
    CLAMP_TO_EDGE = 'clamp_to_edge'
    REPEAT = 'repeat'
    MIRRORED_REPEAT = 'mirrored_repeat'


@dataclass
class ShaderPass:
    """One pass of a preset; paths are relative to the preset file."""
    shader: str
    filter_linear: bool = True
    scale_type: ScaleType = ScaleType.SOURCE
    scale: Optional[float] = None
    scale_x: Optional[float] = None
    scale_y: Optional[float] = None
    alias: Optional[str] = None
    srgb_framebuffer: Optional[bool] = None
    float_framebuffer: Optional[bool] = None
    format: Optional[str] = None
    mipmap_input: Optional[bool] = None
    wrap_mode: Optional[WrapMode] = None
    frame_count_mod: Optional[int] = None


@dataclass
class PresetTexture:
    """External texture (LUT, bezel) sampled by name from the shaders."""
    name: str
    path: str
    linear: bool = True
    wrap_mode: WrapMode = WrapMode.CLAMP_TO_EDGE
    mipmap: bool = False


@dataclass
class PresetParameter:
    name: str
    value: float


@dataclass
class Preset:
    passes: List[ShaderPass] = field(default_factory=list)
    textures: List[PresetTexture] = field(default_factory=list)
    parameters: List[PresetParameter] = field(default_factory=list)
    reference: Optional[str] = None
    base_path: str = ''

    def parameter_overrides(self) -> Dict[str, float]:
        return {param.name: param.value for param in self.parameters}


def _format_value(value) -> str:
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, Enum):
        return value.value
    return str(value)


class PresetParser:
    """Reads and writes .slangp presets."""

    @classmethod
    def parse(cls, content: str, base_path: str = '') -> Preset:
        """
        Parse preset text.

        Args:
            content: .slangp file contents
            base_path: Path of the preset, kept for resolving relative paths

        Returns:
            Preset; passes with no shaderN key are skipped
        """
        config = cls.parse_ini(content)
        preset = Preset(base_path=base_path, reference=config.get('#reference'))

        count = cls._parse_int(config.get('shaders'), 0)
        for index in range(count):
            shader_pass = cls._parse_pass(config, index)
            if shader_pass is None:
                logger.warning("Preset declares %d shaders but shader%d is missing", count, index)
                continue
            preset.passes.append(shader_pass)

        for name in cls._parse_list(config.get('textures')):
            path = config.get(name)
            if not path:
                logger.warning("Texture %s has no path", name)
                continue
            preset.textures.append(PresetTexture(
                name=name,
                path=path,
                linear=cls._parse_bool(config.get(f'{name}_linear'), True),
                wrap_mode=cls._parse_wrap_mode(config.get(f'{name}_wrap_mode')) or WrapMode.CLAMP_TO_EDGE,
                mipmap=cls._parse_bool(config.get(f'{name}_mipmap'), False),
            ))

        for name in cls._parse_list(config.get('parameters')):
            if name not in config:
                continue
            value = cls._parse_float(config[name])
            if value is None:
                logger.warning("Parameter override %s = %s is not a number", name, config[name])
                continue
            preset.parameters.append(PresetParameter(name, value))

        logger.debug("Parsed preset with %d pass(es), %d texture(s), %d parameter override(s)",
                     len(preset.passes), len(preset.textures), len(preset.parameters))
        return preset

    @staticmethod
    def parse_ini(content: str) -> Dict[str, str]:
        """Key/value pairs of an INI-like preset; later keys win."""
        config: Dict[str, str] = {}
        for line in content.split('\n'):
            stripped = line.strip()
            if stripped.startswith('#reference'):
                match = _REFERENCE_RE.search(stripped)
                if match:
                    config['#reference'] = match.group(1)
                continue

            line = line.split('//', 1)[0].split('#', 1)[0].strip()
            if not line or '=' not in line:
                continue
            key, value = line.split('=', 1)
            value = value.strip()
            if len(value) >= 2 and value.startswith('"') and value.endswith('"'):
                value = value[1:-1]
            config[key.strip()] = value
        return config

    @classmethod
    def _parse_pass(cls, config: Dict[str, str], index: int) -> Optional[ShaderPass]:
        shader = config.get(f'shader{index}')
        if not shader:
            return None

        def option(key: str) -> Optional[str]:
            return config.get(f'{key}{index}') or None

        scale_type = (option('scale_type') or 'source').lower()
        try:
            parsed_scale_type = ScaleType(scale_type)
        except ValueError:
            logger.debug("Unknown scale_type%d '%s'; using source", index, scale_type)
            parsed_scale_type = ScaleType.SOURCE

        return ShaderPass(
            shader=shader,
            filter_linear=cls._parse_bool(option('filter_linear'), True),
            scale_type=parsed_scale_type,
            scale=cls._parse_float(option('scale')),
            scale_x=cls._parse_float(option('scale_x')),
            scale_y=cls._parse_float(option('scale_y')),
            alias=option('alias'),
            srgb_framebuffer=cls._optional_bool(option('srgb_framebuffer')),
            float_framebuffer=cls._optional_bool(option('float_framebuffer')),
            format=option('format'),
            mipmap_input=cls._optional_bool(option('mipmap_input')),
            wrap_mode=cls._parse_wrap_mode(option('wrap_mode')),
            frame_count_mod=cls._parse_int(option('frame_count_mod'), None),
        )

    @staticmethod
    def _parse_list(value: Optional[str]) -> List[str]:
        if not value:
            return []
        return [item.strip() for item in value.split(';') if item.strip()]

    @staticmethod
    def _parse_bool(value: Optional[str], default: bool = False) -> bool:
        if value is None:
            return default
        return value.lower() in ('true', '1')

    @classmethod
    def _optional_bool(cls, value: Optional[str]) -> Optional[bool]:
        return None if value is None else cls._parse_bool(value)

    @staticmethod
    def _parse_float(value: Optional[str]) -> Optional[float]:
        if value is None:
            return None
        try:
            return float(value)
        except ValueError:
            return None

    @staticmethod
    def _parse_int(value: Optional[str], default: Optional[int]) -> Optional[int]:
        if value is None:
            return default
        try:
            return int(value)
        except ValueError:
            logger.warning("Expected an integer, got '%s'", value)
            return default

    @staticmethod
    def _parse_wrap_mode(value: Optional[str]) -> Optional[WrapMode]:
        if value is None:
            return None
        lower = value.lower()
        if lower == 'repeat':
            return WrapMode.REPEAT
        if lower == 'mirrored_repeat':
            return WrapMode.MIRRORED_REPEAT
        return WrapMode.CLAMP_TO_EDGE

    @staticmethod
    def resolve_path(base_path: str, relative_path: str) -> str:
        """
        Resolve a path from a preset against the preset's own path.

        Examples:
            resolve_path("presets/crt/my.slangp", "../common/stock.slang")
            -> "presets/common/stock.slang"
        """
        if not base_path:
            return relative_path
        parts = base_path.split('/')[:-1]
        for part in relative_path.split('/'):
            if part == '..':
                if parts:
                    parts.pop()
            elif part != '.':
                parts.append(part)
        return '/'.join(parts)

    @staticmethod
    def serialize(preset: Preset) -> str:
        """Write a preset back to .slangp text."""
        lines: List[str] = []
        if preset.reference:
            lines.extend([f'#reference "{preset.reference}"', ''])

        lines.extend([f'shaders = {len(preset.passes)}', ''])
        for index, shader_pass in enumerate(preset.passes):
            lines.append(f'shader{index} = "{shader_pass.shader}"')
            lines.append(f'filter_linear{index} = {_format_value(shader_pass.filter_linear)}')
            lines.append(f'scale_type{index} = {_format_value(shader_pass.scale_type)}')
            optional = [
                ('scale', shader_pass.scale),
                ('scale_x', shader_pass.scale_x),
                ('scale_y', shader_pass.scale_y),
                ('alias', f'"{shader_pass.alias}"' if shader_pass.alias else None),
                ('srgb_framebuffer', shader_pass.srgb_framebuffer),
                ('float_framebuffer', shader_pass.float_framebuffer),
                ('format', shader_pass.format),
                ('mipmap_input', shader_pass.mipmap_input),
                ('wrap_mode', shader_pass.wrap_mode),
                ('frame_count_mod', shader_pass.frame_count_mod),
            ]
            for key, value in optional:
                if value is not None:
                    lines.append(f'{key}{index} = {_format_value(value)}')
            lines.append('')

        if preset.textures:
            lines.extend([f'textures = "{";".join(t.name for t in preset.textures)}"', ''])
            for texture in preset.textures:
                lines.append(f'{texture.name} = "{texture.path}"')
                lines.append(f'{texture.name}_linear = {_format_value(texture.linear)}')
                lines.append(f'{texture.name}_wrap_mode = {_format_value(texture.wrap_mode)}')
                lines.append(f'{texture.name}_mipmap = {_format_value(texture.mipmap)}')
                lines.append('')

        if preset.parameters:
            lines.extend([f'parameters = "{";".join(p.name for p in preset.parameters)}"', ''])
            for param in preset.parameters:
                lines.append(f'{param.name} = {param.value}')
            lines.append('')

        return '\n'.join(lines)
