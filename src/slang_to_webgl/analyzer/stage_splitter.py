"""
Stage splitting.

Splits preprocessed source on '#pragma stage vertex|fragment' lines. From
the preamble only the lines a stage still needs verbatim are re-attached:
parameter pragmas, macro definitions, bare uniform declarations and
conditional directives. Functions, consts and globals come back later from
GlobalDefinitionExtractor, once per stage.

A shader without a vertex stage gets a pass-through vertex stage; a shader
without a fragment stage is rejected.
"""

import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Optional

from ..config import CompilerOptions
from ..errors import MissingFragmentStageError
from ..transformer.shader_ir import Stage, StageSource

logger = logging.getLogger(__name__)

_STAGE_RE = re.compile(r'^\s*#\s*pragma\s+stage\s+(\w+)')
_PRAGMA_RE = re.compile(r'^\s*#\s*pragma\b')
_PARAMETER_RE = re.compile(r'^\s*#\s*pragma\s+parameter\b')
_KEPT_DIRECTIVE_RE = re.compile(r'^\s*#\s*(define|undef|if|ifdef|ifndef|elif|else|endif)\b')
_BARE_UNIFORM_RE = re.compile(r'^\s*uniform\s')

DEFAULT_VERTEX_TEMPLATE = """\
layout(location = 0) in vec4 {position};
layout(location = 1) in vec2 {texcoord};
layout(location = 0) out vec2 {channel};
uniform mat4 {transform};

void main()
{{
    gl_Position = {transform} * {position};
    {channel} = {texcoord};
}}
"""


@dataclass(frozen=True)
class StageSplit:
    """Result of splitting: the preamble lines to keep plus both stage bodies."""
    preamble: str
    vertex: StageSource
    fragment: StageSource

    def stage(self, stage: Stage) -> StageSource:
        return self.vertex if stage == Stage.VERTEX else self.fragment


def default_vertex_stage(options: Optional[CompilerOptions] = None) -> str:
    """Pass-through vertex stage: clip-space position and texture coordinates."""
    options = options or CompilerOptions()
    return DEFAULT_VERTEX_TEMPLATE.format(
        position=options.position_attribute,
        texcoord=options.texcoord_attribute,
        channel=options.texcoord_channel,
        transform=options.transform_uniform,
    )


class StageSplitter:
    """
    Partitions a shader into vertex and fragment sources.

    Usage:
        split = StageSplitter().split(source)
        vertex_body = split.vertex.body
    """

    def __init__(self, options: Optional[CompilerOptions] = None):
        self.options = options or CompilerOptions()

    def split(self, source: str) -> StageSplit:
        """
        Split source into stages.

        Raises:
            MissingFragmentStageError: If there is no fragment stage
        """
        preamble: List[str] = []
        bodies: Dict[str, List[str]] = {}
        current: Optional[str] = None

        for line in source.split('\n'):
            stage = _STAGE_RE.match(line)
            if stage:
                current = stage.group(1).lower()
                if current in bodies:
                    logger.warning("Stage '%s' declared twice; sections are concatenated", current)
                bodies.setdefault(current, [])
                continue

            if current is None:
                if self._keep_in_preamble(line):
                    preamble.append(line)
                continue

            if _PRAGMA_RE.match(line) and not _PARAMETER_RE.match(line):
                continue
            bodies[current].append(line)

        for name in bodies:
            if name not in ('vertex', 'fragment'):
                logger.warning("Unknown stage '%s' ignored", name)

        if 'fragment' not in bodies:
            raise MissingFragmentStageError("Shader has no '#pragma stage fragment' section")

        if 'vertex' in bodies:
            vertex = StageSource(Stage.VERTEX, '\n'.join(bodies['vertex']))
        else:
            logger.info("No vertex stage; synthesizing a pass-through vertex stage")
            vertex = StageSource(Stage.VERTEX, default_vertex_stage(self.options), synthesized=True)

        return StageSplit(
            preamble='\n'.join(preamble),
            vertex=vertex,
            fragment=StageSource(Stage.FRAGMENT, '\n'.join(bodies['fragment'])),
        )

    @staticmethod
    def _keep_in_preamble(line: str) -> bool:
        return bool(
            _PARAMETER_RE.match(line)
            or _KEPT_DIRECTIVE_RE.match(line)
            or _BARE_UNIFORM_RE.match(line)
        )
