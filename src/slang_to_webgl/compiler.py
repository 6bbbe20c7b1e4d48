"""
Slang to WebGL compiler facade.

Runs the full pipeline on one shader:

    IncludeResolver -> ConditionalPreprocessor -> PragmaExtractor
    -> BindingExtractor -> GlobalDefinitionExtractor -> StageSplitter
    -> BindingLowering -> CrossStageGlobalResolver -> NumericCoercionPass
    -> StageEmitter

Only include resolution awaits I/O; everything after it is synchronous.

Usage:
    compiler = ShaderCompiler(CompilerOptions(webgl2=True))
    shader = compiler.compile(slang_source)

    shader = await compiler.compile_with_includes(source, "crt/crt.slang", fetch)
    preset = await compiler.compile_preset(preset_text, "crt.slangp", fetch)
"""

import logging
from dataclasses import dataclass, replace
from typing import List, Optional, Tuple

from .analyzer.binding_extractor import BindingExtractor, binding_member_names
from .analyzer.global_definitions import GlobalDefinitionExtractor, render_global_definitions
from .analyzer.pragma_extractor import PragmaExtractor
from .analyzer.stage_splitter import StageSplitter
from .codegen.stage_emitter import StageEmitter
from .config import CompilerOptions
from .preprocessor.conditional_preprocessor import ConditionalPreprocessor
from .preprocessor.include_resolver import Fetcher, IncludeResolver
from .preset.preset_parser import Preset, PresetParser
from .session import CompilerSession
from .transformer.binding_lowering import BindingLowering, declared_uniforms
from .transformer.cross_stage import CrossStageGlobalResolver
from .transformer.numeric_coercion import NumericCoercionPass
from .transformer.shader_ir import CompiledShader, Stage, StageProgram

logger = logging.getLogger(__name__)

SAMPLER_TYPE_PREFIXES = ('sampler', 'isampler', 'usampler')


@dataclass(frozen=True)
class CompiledPreset:
    """Every pass of a preset, compiled with one shared session."""
    preset: Preset
    shaders: Tuple[CompiledShader, ...]


def _uniform_and_sampler_names(*sources: str) -> Tuple[Tuple[str, ...], Tuple[str, ...]]:
    uniforms: List[str] = []
    samplers: List[str] = []
    for source in sources:
        for type_name, name in declared_uniforms(source):
            target = samplers if type_name.startswith(SAMPLER_TYPE_PREFIXES) else uniforms
            if name not in target:
                target.append(name)
    return tuple(uniforms), tuple(samplers)


class ShaderCompiler:
    """
    Compiles slang shaders to WebGL GLSL ES.

    Args:
        options: Compiler options; defaults target WebGL2
        session: Session shared across compiles of one pipeline. When None,
            every compile() gets a fresh session.
    """

    def __init__(self, options: Optional[CompilerOptions] = None,
                 session: Optional[CompilerSession] = None):
        self.options = options or CompilerOptions()
        self.session = session

    def compile(self, source: str, session: Optional[CompilerSession] = None) -> CompiledShader:
        """
        Compile include-free slang source.

        Raises:
            MissingFragmentStageError: If the shader has no fragment stage
        """
        options = self.options
        session = session or self.session or CompilerSession(options.channel_prefix)

        text = ConditionalPreprocessor(options.predefined_macros).process(source)
        pragmas = PragmaExtractor().extract(text)
        bindings = BindingExtractor().extract(text)
        claimed = pragmas.exclusion_names() | set(binding_member_names(bindings))
        definitions = GlobalDefinitionExtractor().extract(text, claimed)
        split = StageSplitter(options).split(text)

        shared = render_global_definitions(definitions)
        vertex = StageProgram(Stage.VERTEX, self._assemble(split.preamble, shared, split.vertex.body))
        fragment = StageProgram(Stage.FRAGMENT, self._assemble(split.preamble, shared, split.fragment.body))

        lowering = BindingLowering(bindings, pragmas.parameters, definitions.mutable_globals, options)
        vertex = lowering.lower_stage(vertex)
        fragment = lowering.lower_stage(fragment)

        resolver = CrossStageGlobalResolver(session, options)
        vertex, fragment = resolver.resolve(vertex, fragment, definitions)

        coercion = NumericCoercionPass()
        vertex = self._coerce(coercion, vertex)
        fragment = self._coerce(coercion, fragment)

        emitter = StageEmitter(options)
        vertex_source = emitter.emit(vertex, definitions.mutable_globals)
        fragment_source = emitter.emit(fragment, definitions.mutable_globals)

        uniform_names, sampler_names = _uniform_and_sampler_names(vertex_source, fragment_source)
        session.compiled_count += 1
        logger.info("Compiled shader %s: %d parameter(s), %d uniform(s), %d sampler(s)",
                    pragmas.name or '<unnamed>', len(pragmas.parameters),
                    len(uniform_names), len(sampler_names))

        return CompiledShader(
            vertex_source=vertex_source,
            fragment_source=fragment_source,
            parameters=pragmas.parameters,
            uniform_names=uniform_names,
            sampler_names=sampler_names,
            name=pragmas.name,
            format=pragmas.format,
        )

    async def compile_with_includes(self, source: str, path: str, fetch: Fetcher,
                                    session: Optional[CompilerSession] = None) -> CompiledShader:
        """
        Expand includes through fetch, then compile.

        Raises:
            IncludeDepthError: If includes nest deeper than max_include_depth
            MissingFragmentStageError: If the shader has no fragment stage
        """
        resolver = IncludeResolver(fetch, self.options.max_include_depth,
                                   set(self.options.predefined_macros))
        expanded = await resolver.resolve(source, path)
        if resolver.included:
            logger.debug("%s pulled in %d include(s)", path, len(resolver.included))
        return self.compile(expanded, session)

    async def compile_preset(self, content: str, path: str, fetch: Fetcher) -> CompiledPreset:
        """
        Compile every pass of a .slangp preset.

        All passes share one session. Parameter overrides from the preset
        replace the defaults of matching parameters.
        """
        preset = PresetParser.parse(content, path)
        if preset.reference:
            logger.warning("Preset %s references %s; referenced presets are not followed",
                           path, preset.reference)
        overrides = preset.parameter_overrides()
        session = self.session or CompilerSession(self.options.channel_prefix)

        shaders = []
        for shader_pass in preset.passes:
            shader_path = PresetParser.resolve_path(path, shader_pass.shader)
            source = await fetch(shader_path)
            shader = await self.compile_with_includes(source, shader_path, fetch, session)
            if overrides:
                parameters = tuple(
                    replace(param, default=overrides[param.name]) if param.name in overrides else param
                    for param in shader.parameters
                )
                shader = replace(shader, parameters=parameters)
            shaders.append(shader)

        return CompiledPreset(preset=preset, shaders=tuple(shaders))

    @staticmethod
    def _assemble(preamble: str, shared: str, body: str) -> str:
        return '\n\n'.join(part for part in (preamble, shared, body) if part.strip()) + '\n'

    @staticmethod
    def _coerce(coercion: NumericCoercionPass, program: StageProgram) -> StageProgram:
        source = coercion.coerce(program.source)
        return replace(
            program,
            source=source,
            entry_statements=tuple(coercion.coerce(s, context=source) for s in program.entry_statements),
            exit_statements=tuple(coercion.coerce(s, context=source) for s in program.exit_statements),
        )
