"""
Cross-stage global resolution.

Vulkan GLSL lets one source file share mutable globals between its vertex
and fragment stages; WebGL links two independent programs. Every mutable
global from the preamble is classified by where it is written:

- constant-like: never written, initializer built from literals,
  constructors, consts, macros and other constant-like globals (also
  ALL_CAPS enum-style names with a literal initializer). Left alone.
- vertex channel: written in the vertex stage only and read by the
  fragment stage. Becomes an `out`/`in` channel; every reference is
  renamed to the channel. bool globals travel as int channels with casts
  at the write and read sites.
- both stages: stays a global in the vertex stage and is handed off once
  at the end of vertex main(); the fragment stage copies the channel into
  its own global at the start of main().
- stage local: everything else; each stage keeps its own copy.

Channel names come from the session's ChannelRegistry so repeated runs in
one pipeline reuse the same declaration.

Usage:
    resolver = CrossStageGlobalResolver(session, options)
    vertex, fragment = resolver.resolve(vertex, fragment, definitions)
"""

import logging
import re
from dataclasses import replace
from typing import Dict, Iterable, List, Optional, Set, Tuple

from ..analyzer.global_definitions import declaration_pattern, replace_top_level
from ..analyzer.tokens import (
    ASSIGNMENT_OPERATORS,
    FLOAT_TYPES,
    INTEGER_TYPES,
    VALUE_TYPES,
    Token,
    TokenKind,
    code_indices,
    find_matching,
    significant_indices,
    tokenize,
)
from ..config import CompilerOptions
from ..session import CompilerSession
from .binding_lowering import insert_declarations
from .shader_ir import GlobalClass, GlobalDefinitions, MutableGlobal, StageProgram, VaryingChannel

logger = logging.getLogger(__name__)

BOOL_TYPES = frozenset(['bool', 'bvec2', 'bvec3', 'bvec4'])
CHANNEL_TYPES = FLOAT_TYPES | INTEGER_TYPES | BOOL_TYPES

# MODE_CRT_SHARP, FILTER_LINEAR_X ... used as enum values
ENUM_NAME_RE = re.compile(r'^[A-Z][A-Z0-9]*(?:_[A-Z0-9]+){2,}$')
LITERAL_RE = re.compile(
    r'^\s*[-+]?(?:0[xX][0-9a-fA-F]+[uU]?|(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?[uUfF]?|true|false)\s*$'
)

# Keywords that can directly precede an assignment target
_STATEMENT_KEYWORDS = frozenset(['return', 'else', 'case', 'do'])


def _is_declaration(previous: Optional[Token]) -> bool:
    return (previous is not None and previous.kind == TokenKind.IDENT
            and previous.text not in _STATEMENT_KEYWORDS)


def _skip_accessors(tokens: List[Token], sig: List[int], p: int) -> int:
    """Skip `[...]` subscripts and `.member` selections following sig[p]."""
    q = p + 1
    while q < len(sig):
        token = tokens[sig[q]]
        if token.is_punct('['):
            close = find_matching(tokens, sig[q])
            if close is None:
                return q
            q = sig.index(close) + 1
        elif token.is_punct('.') and q + 1 < len(sig) and tokens[sig[q + 1]].kind == TokenKind.IDENT:
            q += 2
        else:
            return q
    return q


def written_names(source: str, names: Iterable[str], param_prefix: str = 'PARAM_') -> Set[str]:
    """
    Names that source assigns to.

    Counts `=`, compound assignments and ++/--. Comparisons, declarations
    with initializers and `X = PARAM_X;` copies are not writes.
    """
    wanted = set(names)
    tokens = tokenize(source)
    sig = code_indices(tokens)
    written: Set[str] = set()

    for p, index in enumerate(sig):
        token = tokens[index]
        if token.kind != TokenKind.IDENT or token.text not in wanted:
            continue
        previous = tokens[sig[p - 1]] if p > 0 else None
        if previous is not None and previous.is_punct('.'):
            continue
        if previous is not None and previous.is_punct('++', '--'):
            written.add(token.text)
            continue
        if _is_declaration(previous):
            continue

        q = _skip_accessors(tokens, sig, p)
        if q >= len(sig):
            continue
        following = tokens[sig[q]]
        if following.is_punct('++', '--'):
            written.add(token.text)
        elif following.kind == TokenKind.PUNCT and following.text in ASSIGNMENT_OPERATORS:
            if (following.text == '=' and q + 2 < len(sig)
                    and tokens[sig[q + 1]].text == f"{param_prefix}{token.text}"
                    and tokens[sig[q + 2]].is_punct(';')):
                continue
            written.add(token.text)
    return written


def referenced_names(source: str, names: Iterable[str]) -> Set[str]:
    """Names that source uses anywhere other than in their own declaration."""
    wanted = set(names)
    tokens = tokenize(source)
    sig = significant_indices(tokens)
    found: Set[str] = set()
    for p, index in enumerate(sig):
        token = tokens[index]
        if token.kind != TokenKind.IDENT or token.text not in wanted:
            continue
        previous = tokens[sig[p - 1]] if p > 0 else None
        if previous is not None and (previous.is_punct('.') or _is_declaration(previous)):
            continue
        found.add(token.text)
    return found


def is_constant_expression(expression: str, constant_names: Set[str]) -> bool:
    """True if expression only uses literals, constructors and known constants."""
    tokens = [t for t in tokenize(expression) if not t.trivia]
    for i, token in enumerate(tokens):
        if token.kind == TokenKind.IDENT:
            calls = i + 1 < len(tokens) and tokens[i + 1].is_punct('(')
            if calls:
                if token.text not in VALUE_TYPES:
                    return False
            elif token.text not in constant_names and token.text not in ('true', 'false'):
                return False
        elif token.kind in (TokenKind.STRING, TokenKind.DIRECTIVE):
            return False
        elif token.kind == TokenKind.PUNCT and token.text in ASSIGNMENT_OPERATORS | {'++', '--'}:
            return False
    return True


class CrossStageGlobalResolver:
    """
    Classifies preamble globals and rewrites vertex-to-fragment sharing.

    Args:
        session: Pipeline session owning the channel registry
        options: Compiler options (flavor, prefixes)
    """

    def __init__(self, session: Optional[CompilerSession] = None,
                 options: Optional[CompilerOptions] = None):
        self.options = options or CompilerOptions()
        self.session = session or CompilerSession(self.options.channel_prefix)

    # ========================================================================
    # Classification
    # ========================================================================

    def classify(self, vertex_source: str, fragment_source: str,
                 definitions: GlobalDefinitions) -> Dict[str, GlobalClass]:
        """
        Tag every mutable global with its GlobalClass.

        The classification is stored on the MutableGlobal objects and also
        returned by name.
        """
        names = [var.name for var in definitions.mutable_globals]
        prefix = self.options.param_prefix
        vertex_writes = written_names(vertex_source, names, prefix)
        fragment_writes = written_names(fragment_source, names, prefix)
        fragment_reads = referenced_names(fragment_source, names)

        constants = definitions.const_names() | set(definitions.defines)
        pending = [var for var in definitions.mutable_globals if not var.claimed]
        for var in definitions.mutable_globals:
            var.classification = (
                GlobalClass.UNIFORM_BACKED if var.claimed else GlobalClass.UNCLASSIFIED
            )

        # Constant-like globals may depend on each other; iterate to a fixed point
        changed = True
        while changed:
            changed = False
            for var in pending:
                if var.classification == GlobalClass.CONSTANT:
                    continue
                if self._constant_like(var, vertex_writes | fragment_writes, constants):
                    var.classification = GlobalClass.CONSTANT
                    constants.add(var.name)
                    changed = True

        for var in pending:
            if var.classification == GlobalClass.CONSTANT:
                continue
            in_vertex = var.name in vertex_writes
            in_fragment = var.name in fragment_writes
            shareable = not var.array_suffix and var.type_name in CHANNEL_TYPES
            if in_vertex and var.name in fragment_reads and not shareable:
                logger.warning("Global %s (%s%s) cannot be carried to the fragment stage",
                               var.name, var.type_name, var.array_suffix)
                var.classification = GlobalClass.STAGE_LOCAL
            elif in_vertex and in_fragment:
                var.classification = GlobalClass.BOTH_STAGES
            elif in_vertex and var.name in fragment_reads:
                var.classification = GlobalClass.VERTEX_CHANNEL
            else:
                var.classification = GlobalClass.STAGE_LOCAL
            logger.debug("Global %s classified as %s", var.name, var.classification.value)

        return {var.name: var.classification for var in definitions.mutable_globals}

    @staticmethod
    def _constant_like(var: MutableGlobal, written: Set[str], constants: Set[str]) -> bool:
        if ENUM_NAME_RE.match(var.name) and var.initializer is not None \
                and LITERAL_RE.match(var.initializer):
            return True
        if var.name in written:
            return False
        return var.initializer is None or is_constant_expression(var.initializer, constants)

    # ========================================================================
    # Rewriting
    # ========================================================================

    def resolve(self, vertex: StageProgram, fragment: StageProgram,
                definitions: GlobalDefinitions) -> Tuple[StageProgram, StageProgram]:
        """
        Classify the preamble globals and rewrite both stages.

        Returns:
            (vertex, fragment) programs with channels declared, references
            renamed and handoff statements attached
        """
        self.classify(vertex.source, fragment.source, definitions)

        for var in definitions.mutable_globals:
            if var.classification == GlobalClass.VERTEX_CHANNEL:
                vertex, fragment = self._vertex_channel(var, vertex, fragment)
            elif var.classification == GlobalClass.BOTH_STAGES:
                vertex, fragment = self._both_stages(var, vertex, fragment)

        return vertex, fragment

    def channel_for(self, var: MutableGlobal) -> VaryingChannel:
        return self.session.channels.channel_for(
            var.name, self._channel_type(var.type_name), source_type=var.type_name,
        )

    def _channel_type(self, type_name: str) -> str:
        if self.options.webgl2:
            if type_name in BOOL_TYPES:
                return 'int' if type_name == 'bool' else 'i' + type_name[1:]
            return type_name
        # GLSL ES 1.00 varyings are float-only
        if type_name in ('bool', 'int', 'uint'):
            return 'float'
        if type_name in INTEGER_TYPES | BOOL_TYPES:
            return type_name[1:]
        return type_name

    def _declaration(self, channel: VaryingChannel, direction: str) -> str:
        flat = 'flat ' if self.options.webgl2 and channel.type_name in INTEGER_TYPES else ''
        return f"{flat}{direction} {channel.type_name} {channel.channel_name};"

    def _declare(self, source: str, channel: VaryingChannel, direction: str) -> str:
        existing = re.compile(
            r'\b' + direction + r'\s+\w+\s+' + re.escape(channel.channel_name) + r'\s*;'
        )
        if existing.search(source):
            return source
        return insert_declarations(source, [self._declaration(channel, direction)])

    def _vertex_channel(self, var: MutableGlobal, vertex: StageProgram,
                        fragment: StageProgram) -> Tuple[StageProgram, StageProgram]:
        channel = self.channel_for(var)
        logger.info("Global %s becomes channel %s %s", var.name, channel.type_name, channel.channel_name)

        vertex_source = self._remove_declaration(vertex.source, var)
        vertex_source = self._rewrite_references(vertex_source, var, channel)
        vertex_source = self._declare(vertex_source, channel, 'out')
        entry = vertex.entry_statements
        if var.initializer is not None:
            statement = f"{channel.channel_name} = {self._to_channel(channel, var.initializer)};"
            if statement not in entry:
                entry = entry + (statement,)

        fragment_source = self._remove_declaration(fragment.source, var)
        fragment_source = self._rewrite_references(fragment_source, var, channel)
        fragment_source = self._declare(fragment_source, channel, 'in')

        return (
            replace(vertex, source=vertex_source, entry_statements=entry),
            replace(fragment, source=fragment_source),
        )

    def _both_stages(self, var: MutableGlobal, vertex: StageProgram,
                     fragment: StageProgram) -> Tuple[StageProgram, StageProgram]:
        channel = self.channel_for(var)
        logger.info("Global %s is written in both stages; handed off through %s",
                    var.name, channel.channel_name)

        handoff = f"{channel.channel_name} = {self._to_channel(channel, var.name)};"
        exit_statements = vertex.exit_statements
        if handoff not in exit_statements:
            exit_statements = exit_statements + (handoff,)

        pattern = declaration_pattern(var)
        fragment_source, _ = replace_top_level(
            fragment.source, pattern, var.declaration(with_initializer=False) + '\n')
        receive = f"{var.name} = {self._from_channel(channel)};"
        entry = fragment.entry_statements
        if receive not in entry:
            entry = entry + (receive,)

        return (
            replace(vertex, source=self._declare(vertex.source, channel, 'out'),
                    exit_statements=exit_statements),
            replace(fragment, source=self._declare(fragment_source, channel, 'in'),
                    entry_statements=entry),
        )

    @staticmethod
    def _to_channel(channel: VaryingChannel, expression: str) -> str:
        if channel.type_name == channel.source_type:
            return expression
        return f"{channel.type_name}({expression})"

    @staticmethod
    def _from_channel(channel: VaryingChannel) -> str:
        if channel.type_name == channel.source_type:
            return channel.channel_name
        return f"{channel.source_type}({channel.channel_name})"

    def _remove_declaration(self, source: str, var: MutableGlobal) -> str:
        source, _ = replace_top_level(source, declaration_pattern(var), '')
        return source

    def _rewrite_references(self, source: str, var: MutableGlobal, channel: VaryingChannel) -> str:
        """
        Rename every reference to var, converting at write and read sites.

        For channels whose type differs from the global (bool -> int), a
        direct assignment `X = expr` becomes `v_X = int(expr)` and every other
        use becomes `bool(v_X)`.
        """
        tokens = tokenize(source)
        sig = significant_indices(tokens)
        convert = channel.type_name != channel.source_type
        replacements: Dict[int, str] = {}
        before: Dict[int, str] = {}

        for p, index in enumerate(sig):
            token = tokens[index]
            if token.kind != TokenKind.IDENT or token.text != var.name:
                continue
            previous = tokens[sig[p - 1]] if p > 0 else None
            if previous is not None and previous.is_punct('.'):
                continue

            if not convert:
                replacements[index] = channel.channel_name
                continue

            following = tokens[sig[p + 1]] if p + 1 < len(sig) else None
            if following is not None and following.is_punct('='):
                replacements[index] = channel.channel_name
                end = self._expression_end(tokens, sig, p + 2)
                if end is not None and p + 2 < len(sig):
                    before[sig[p + 2]] = before.get(sig[p + 2], '') + f"{channel.type_name}("
                    before[sig[end]] = ')' + before.get(sig[end], '')
                continue
            if following is not None and (following.text in ASSIGNMENT_OPERATORS
                                          or following.is_punct('++', '--')):
                replacements[index] = channel.channel_name
                continue
            if previous is not None and previous.is_punct('++', '--'):
                replacements[index] = channel.channel_name
                continue
            replacements[index] = self._from_channel(channel)

        parts = []
        for index, token in enumerate(tokens):
            parts.append(before.get(index, ''))
            parts.append(replacements.get(index, token.text))
        return ''.join(parts)

    @staticmethod
    def _expression_end(tokens: List[Token], sig: List[int], p: int) -> Optional[int]:
        """Position in sig of the token ending the expression that starts at p."""
        depth = 0
        while p < len(sig):
            token = tokens[sig[p]]
            if token.is_punct('(', '[', '{'):
                depth += 1
            elif token.is_punct(')', ']', '}'):
                if depth == 0:
                    return p
                depth -= 1
            elif depth == 0 and token.is_punct(';', ','):
                return p
            p += 1
        return None
