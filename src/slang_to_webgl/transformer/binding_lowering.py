"""
Binding lowering: uniform blocks become plain uniforms.

Transforms binding-block access into the flat uniforms WebGL understands:

1. UBO / push constant blocks are removed and every referenced member gets
   its own declaration: params.speed -> speed, with `uniform float speed;`
2. int / uint scalar members are declared as float
3. A member whose name is also a mutable global is renamed with the
   parameter prefix (PARAM_speed); the global is filled from it at main()
   entry
4. Sampler bindings become `uniform sampler2D Name;`
5. Parameters with no backing member get a `uniform float` of their own
6. Macro aliases are rewritten by the same token pass; `#define X X` left
   behind by the rewrite is dropped

Design:
- Declarations go to the top of the stage, after any #version, #extension
  or precision lines
- Running lower() on its own output changes nothing: declarations are
  checked against the uniforms already present

Usage:
    lowering = BindingLowering(bindings, parameters, definitions.mutable_globals)
    program = lowering.lower_stage(program)
"""

import logging
import re
from dataclasses import replace
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from ..analyzer.binding_extractor import BindingExtractor
from ..analyzer.tokens import INTEGER_TYPES, TokenKind, identifiers, tokenize
from ..config import CompilerOptions
from .shader_ir import (
    Binding,
    BindingKind,
    MutableGlobal,
    ParameterDeclaration,
    StageProgram,
)

logger = logging.getLogger(__name__)

UNIFORM_DECLARATION_RE = re.compile(
    r'^[ \t]*(?:layout\s*\([^)]*\)\s*)?uniform\s+(?:(?:lowp|mediump|highp)\s+)?(\w+)\s+(\w+)',
    re.MULTILINE,
)
_HEADER_LINE_RE = re.compile(r'^\s*(#\s*version\b|#\s*extension\b|precision\b)')
_DEFINE_NAME_RE = re.compile(r'^[ \t]*#[ \t]*define[ \t]+(\w+)', re.MULTILINE)
_SELF_ALIAS_RE = re.compile(r'^[ \t]*#[ \t]*define[ \t]+(\w+)[ \t]+\1[ \t]*(?://[^\n]*)?\n?', re.MULTILINE)

_SCALAR_INTEGER_TYPES = frozenset(['int', 'uint'])


def declared_uniforms(source: str) -> List[Tuple[str, str]]:
    """(type, name) of every uniform declaration in source, in order."""
    return [(match.group(1), match.group(2)) for match in UNIFORM_DECLARATION_RE.finditer(source)]


def insert_declarations(source: str, declarations: Sequence[str]) -> str:
    """Insert declaration lines after the leading #version/#extension/precision block."""
    if not declarations:
        return source
    lines = source.split('\n')
    index = 0
    while index < len(lines) and _HEADER_LINE_RE.match(lines[index]):
        index += 1
    lines[index:index] = list(declarations)
    return '\n'.join(lines)


class BindingLowering:
    """
    Flattens bindings of one shader into individual uniforms.

    Args:
        bindings: Binding table of the whole shader
        parameters: Parameters declared with '#pragma parameter'
        mutable_globals: Preamble globals; a same-named member is prefixed
        options: Compiler options (param_prefix)
    """

    def __init__(self, bindings: Iterable[Binding],
                 parameters: Iterable[ParameterDeclaration] = (),
                 mutable_globals: Iterable[MutableGlobal] = (),
                 options: Optional[CompilerOptions] = None):
        self.options = options or CompilerOptions()
        self.bindings = list(bindings)
        self.parameters = list(parameters)
        self.globals: Dict[str, MutableGlobal] = {var.name: var for var in mutable_globals}

    def flat_name(self, name: str) -> str:
        """Uniform name for a member or parameter, prefixed on collision."""
        if name in self.globals:
            return f"{self.options.param_prefix}{name}"
        return name

    def lower_stage(self, program: StageProgram) -> StageProgram:
        source = self.lower(program.source)
        entry = list(program.entry_statements)
        for statement in self.entry_assignments(source):
            if statement not in entry:
                entry.append(statement)
        return replace(program, source=source, entry_statements=tuple(entry))

    def lower(self, source: str) -> str:
        """
        Lower the bindings used by one stage.

        Args:
            source: Stage source

        Returns:
            Source without binding blocks, with flat uniform declarations
        """
        source = self._remove_binding_declarations(source)
        source = self._rewrite_member_access(source)
        source = _SELF_ALIAS_RE.sub('', source)

        referenced = set(identifiers(source))
        declared = {name for _, name in declared_uniforms(source)}
        macros = set(_DEFINE_NAME_RE.findall(source))
        declarations: List[str] = []

        def declare(type_name: str, name: str, array_suffix: str = ''):
            if name in declared:
                return
            declared.add(name)
            declarations.append(f"uniform {type_name} {name}{array_suffix};")

        members: Set[str] = set()
        for binding in self.bindings:
            if binding.kind == BindingKind.SAMPLER:
                if binding.instance_name in referenced:
                    declare(binding.type_name, binding.instance_name)
                continue
            for member in binding.members:
                members.add(member.name)
                flat = self.flat_name(member.name)
                if not self._needed(member.name, flat, referenced):
                    continue
                type_name = 'float' if member.type_name in _SCALAR_INTEGER_TYPES else member.type_name
                declare(type_name, flat, member.array_suffix)

        for param in self.parameters:
            if param.name in members:
                continue
            flat = self.flat_name(param.name)
            if flat == param.name and param.name in macros:
                logger.debug("Parameter %s is provided by a macro", param.name)
                continue
            if self._needed(param.name, flat, referenced):
                declare('float', flat)

        if declarations:
            logger.debug("Declared %d uniform(s): %s", len(declarations), ', '.join(declarations))
        return insert_declarations(source, declarations)

    def entry_assignments(self, lowered_source: str) -> List[str]:
        """
        Statements copying prefixed uniforms into their globals at main() entry.

        Examples:
            speed = PARAM_speed;
            MODE = int(PARAM_MODE);
        """
        declared = dict((name, type_name) for type_name, name in declared_uniforms(lowered_source))
        referenced = set(identifiers(lowered_source))
        statements = []
        for name, var in self.globals.items():
            uniform = f"{self.options.param_prefix}{name}"
            if uniform not in declared or name not in referenced:
                continue
            value = uniform
            if var.type_name != declared[uniform] and var.type_name in INTEGER_TYPES | {'bool'}:
                value = f"{var.type_name}({uniform})"
            statements.append(f"{name} = {value};")
        return statements

    @staticmethod
    def _needed(name: str, flat: str, referenced: Set[str]) -> bool:
        if flat in referenced:
            return True
        # Prefixed uniforms feed the global of the plain name
        return flat != name and name in referenced

    @staticmethod
    def _remove_binding_declarations(source: str) -> str:
        spans = [binding.span for binding in BindingExtractor().extract(source)]
        for start, end in reversed(spans):
            # Take the rest of the line with the declaration when it is otherwise empty
            line_start = source.rfind('\n', 0, start) + 1
            line_stop = source.find('\n', end)
            line_stop = len(source) if line_stop == -1 else line_stop
            if not source[line_start:start].strip() and not source[end:line_stop].strip():
                start, end = line_start, min(line_stop + 1, len(source))
            source = source[:start] + source[end:]
        return source

    def _rewrite_member_access(self, source: str) -> str:
        blocks = {
            binding.instance_name: binding for binding in self.bindings
            if binding.kind != BindingKind.SAMPLER and binding.instance_name
        }
        if not blocks:
            return source

        tokens = tokenize(source)
        parts: List[str] = []
        previous = None
        i = 0
        while i < len(tokens):
            token = tokens[i]
            binding = blocks.get(token.text) if token.kind == TokenKind.IDENT else None
            if binding is not None and not (previous is not None and previous.is_punct('.')):
                dot = self._next_significant(tokens, i + 1)
                member = self._next_significant(tokens, dot + 1) if dot is not None else None
                if (dot is not None and member is not None and tokens[dot].is_punct('.')
                        and tokens[member].kind == TokenKind.IDENT):
                    name = tokens[member].text
                    if name in binding.member_names():
                        parts.append(self.flat_name(name))
                        previous = tokens[member]
                        i = member + 1
                        continue
                    logger.warning("%s.%s is not a member of %s", token.text, name, binding.type_name)
            parts.append(token.text)
            if not token.trivia:
                previous = token
            i += 1
        return ''.join(parts)

    @staticmethod
    def _next_significant(tokens, index: int) -> Optional[int]:
        while index < len(tokens):
            if tokens[index].kind not in (TokenKind.WHITESPACE, TokenKind.COMMENT):
                return index if tokens[index].kind != TokenKind.NEWLINE else None
            index += 1
        return None
