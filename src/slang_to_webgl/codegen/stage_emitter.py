"""
WebGL stage emitter.

Assembles the final GLSL ES source of one stage from a StageProgram.

Key Features:
- Version and precision header for the modern (GLSL ES 3.00) or legacy
  (GLSL ES 1.00) flavor; #extension lines are hoisted above precision
- Existing #version, precision and #pragma lines are dropped
- layout(location = N) is removed from inter-stage variables
- Non-constant global initializers move into the main() prologue, after
  the entry statements collected by earlier passes
- Exit statements run before every return from main()
- Legacy flavor: attribute/varying, texture2D and gl_FragColor

Design:
- Line-level regex rewriting; the body has already been lowered and
  coerced by the transformer passes
- Generated declarations sit at the top of the program source, so they
  land immediately after the precision block

Usage:
    emitter = StageEmitter(options)
    glsl = emitter.emit(program, definitions.mutable_globals)
"""

import logging
import re
from typing import Iterable, List, Optional, Sequence, Tuple

from ..analyzer.global_definitions import declaration_pattern, find_function, replace_top_level
from ..analyzer.tokens import rename_identifiers
from ..config import CompilerOptions
from ..transformer.shader_ir import GlobalClass, MutableGlobal, Stage, StageProgram

logger = logging.getLogger(__name__)

_VERSION_RE = re.compile(r'^[ \t]*#[ \t]*version\b[^\n]*\n?', re.MULTILINE)
_EXTENSION_RE = re.compile(r'^[ \t]*#[ \t]*extension\b[^\n]*\n?', re.MULTILINE)
_PRAGMA_RE = re.compile(r'^[ \t]*#[ \t]*pragma\b[^\n]*\n?', re.MULTILINE)
_PRECISION_RE = re.compile(r'^[ \t]*precision[ \t]+\w+[ \t]+\w+[ \t]*;[ \t]*\n?', re.MULTILINE)
_RETURN_RE = re.compile(r'\breturn\s*;')
_BLANK_LINES_RE = re.compile(r'\n{3,}')

_INTERPOLATION = r'(?:(?:flat|smooth|noperspective|centroid)\s+)*'
_LOCATION = r'layout\s*\(\s*location\s*=\s*\d+\s*\)\s*'
_VARYING_DECLARATION = r'(?=(?:(?:lowp|mediump|highp)\s+)?\w+\s+\w+\s*(?:\[[^\]]*\])?\s*;)'

# Classes whose declarations keep their initializer at file scope
_KEEP_INITIALIZER = frozenset([GlobalClass.CONSTANT, GlobalClass.UNIFORM_BACKED])


class StageEmitter:
    """
    Produces target-dialect source for one stage.

    Configuration:
        options: CompilerOptions (flavor and precision)
        indent_size: Spaces used for injected statements (default: 4)
    """

    def __init__(self, options: Optional[CompilerOptions] = None, indent_size: int = 4):
        self.options = options or CompilerOptions()
        self.indent_size = indent_size

    def indent(self) -> str:
        return ' ' * self.indent_size

    def emit(self, program: StageProgram, mutable_globals: Iterable[MutableGlobal] = ()) -> str:
        """
        Emit final GLSL ES for a stage.

        Args:
            program: Lowered, resolved and coerced stage program
            mutable_globals: Preamble globals with their classification

        Returns:
            Complete stage source, header included
        """
        source = program.source
        extensions = [line.strip() for line in _EXTENSION_RE.findall(source)]
        for pattern in (_VERSION_RE, _EXTENSION_RE, _PRAGMA_RE, _PRECISION_RE):
            source = pattern.sub('', source)

        source = self._strip_varying_locations(source, program.stage)
        source, hoisted = self._hoist_initializers(source, mutable_globals)
        source = self.inject_main(source, list(program.entry_statements) + hoisted,
                                  program.exit_statements)
        if not self.options.webgl2:
            source = self._to_legacy(source, program.stage)

        body = _BLANK_LINES_RE.sub('\n\n', source).strip('\n')
        return self.header(extensions) + body + '\n'

    def header(self, extensions: Sequence[str] = ()) -> str:
        lines = []
        if self.options.webgl2:
            lines.append('#version 300 es')
        seen = set()
        for extension in extensions:
            if extension not in seen:
                seen.add(extension)
                lines.append(extension)
        if self.options.webgl2:
            lines.append(f"precision {self.options.float_precision} float;")
            lines.append(f"precision {self.options.int_precision} int;")
        else:
            lines.append(f"precision {self.options.legacy_float_precision} float;")
        return '\n'.join(lines) + '\n\n'

    # ========================================================================
    # main() prologue and epilogue
    # ========================================================================

    def inject_main(self, source: str, entry: Sequence[str], exit_statements: Sequence[str] = ()) -> str:
        """
        Insert entry statements at the top of main() and exit statements
        before each of its returns.

        Statements already present in main() are not inserted again.
        """
        if not entry and not exit_statements:
            return source
        span = find_function(source, 'main')
        if span is None:
            logger.warning("No main() found; %d entry and %d exit statement(s) dropped",
                           len(entry), len(exit_statements))
            return source

        body = source[span.body_start:span.body_end]
        indent = self.indent()

        exits = [statement for statement in exit_statements if statement not in body]
        if exits:
            joined = ' '.join(exits)
            body = _RETURN_RE.sub(lambda match: f"{{ {joined} return; }}", body)
            body = body.rstrip() + '\n' + ''.join(f"{indent}{statement}\n" for statement in exits)

        missing = []
        for statement in entry:
            if statement not in body and statement not in missing:
                missing.append(statement)
        if missing:
            body = '\n' + '\n'.join(f"{indent}{statement}" for statement in missing) + body

        return source[:span.body_start] + body + source[span.body_end:]

    def _hoist_initializers(self, source: str,
                            mutable_globals: Iterable[MutableGlobal]) -> Tuple[str, List[str]]:
        hoisted: List[str] = []
        for var in mutable_globals:
            if var.classification in _KEEP_INITIALIZER or var.claimed:
                continue
            replacement = var.declaration(with_initializer=False) + '\n'
            candidate, match = replace_top_level(source, declaration_pattern(var), replacement)
            if match is None or match.group('init') is None:
                continue
            source = candidate
            hoisted.append(f"{var.name} = {match.group('init').strip()};")
            logger.debug("Hoisted initializer of %s into main()", var.name)
        return source, hoisted

    # ========================================================================
    # Qualifiers
    # ========================================================================

    @staticmethod
    def _strip_varying_locations(source: str, stage: Stage) -> str:
        direction = 'out' if stage == Stage.VERTEX else 'in'
        pattern = re.compile(_LOCATION + rf'(?={_INTERPOLATION}{direction}\b)')
        return pattern.sub('', source)

    def _to_legacy(self, source: str, stage: Stage) -> str:
        """Rewrite modern declarations and built-ins for GLSL ES 1.00."""
        source = re.sub(r'layout\s*\([^)]*\)\s*', '', source)
        declaration = re.compile(
            rf'^([ \t]*){_INTERPOLATION}(in|out)\s+{_VARYING_DECLARATION}', re.MULTILINE)

        if stage == Stage.VERTEX:
            source = declaration.sub(
                lambda m: m.group(1) + ('attribute ' if m.group(2) == 'in' else 'varying '), source)
        else:
            outputs = re.findall(
                rf'^[ \t]*{_INTERPOLATION}out\s+(?:(?:lowp|mediump|highp)\s+)?vec4\s+(\w+)\s*;',
                source, re.MULTILINE)
            source = re.sub(
                rf'^[ \t]*{_INTERPOLATION}out\s+(?:(?:lowp|mediump|highp)\s+)?vec4\s+\w+\s*;[ \t]*\n?',
                '', source, flags=re.MULTILINE)
            source = declaration.sub(
                lambda m: m.group(1) + ('varying ' if m.group(2) == 'in' else 'out '), source)
            if outputs:
                if len(outputs) > 1:
                    logger.warning("Legacy output supports one color target; %s all map to gl_FragColor",
                                   ', '.join(outputs))
                source = rename_identifiers(source, {name: 'gl_FragColor' for name in outputs})

        return rename_identifiers(source, {'texture': 'texture2D'})
