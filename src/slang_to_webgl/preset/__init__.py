"""RetroArch .slangp preset support."""

from .preset_parser import Preset, PresetParameter, PresetParser, PresetTexture, ShaderPass

__all__ = ['Preset', 'PresetParameter', 'PresetParser', 'PresetTexture', 'ShaderPass']
