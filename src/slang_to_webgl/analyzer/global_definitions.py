"""
Preamble analysis: functions, structs, macros, consts and mutable globals.

Only the text before the first '#pragma stage' is scanned. Extraction runs
in a fixed order so that nothing is classified twice:

1. Function and struct definitions, found by a token scan (type, name,
   balanced parameter list, balanced body). Their byte ranges go into a
   RangeSet together with the binding blocks.
2. #define macros, object-like and function-like. A redefinition keeps the
   first position with the latest text.
3. const declarations outside the masked ranges.
4. Mutable global declarations outside the masked ranges.

A global or const whose name is claimed by a parameter or binding member is
kept as an uninitialized mutable global (dual declaration): shader code
keeps reading and writing the global, and BindingLowering copies the
renamed uniform into it at main() entry.

Usage:
    extractor = GlobalDefinitionExtractor()
    definitions = extractor.extract(source, exclude_names={'GAMMA'})
    preamble_code = render_global_definitions(definitions)
"""

import logging
import re
from dataclasses import dataclass
from typing import Iterable, Iterator, List, Optional, Set, Tuple

from ..transformer.shader_ir import (
    ConstDefinition,
    FunctionDefinition,
    GlobalDefinitions,
    MacroDefinition,
    MutableGlobal,
    StructDefinition,
)
from .binding_extractor import BindingExtractor
from .tokens import (
    PRECISION_QUALIFIERS,
    RangeSet,
    Token,
    TokenKind,
    code_indices,
    directive_name,
    find_matching,
    line_end,
    tokenize,
    untokenize,
)

logger = logging.getLogger(__name__)

STAGE_PRAGMA_RE = re.compile(r'^[ \t]*#[ \t]*pragma[ \t]+stage\b', re.MULTILINE)
_DEFINE_BODY_RE = re.compile(r'^\s*([A-Za-z_]\w*)(\([^)]*\))?(.*)$', re.DOTALL)
_WHITESPACE_RE = re.compile(r'\s+')

# Qualifiers that make a file-scope declaration something other than a
# plain mutable global
_INTERFACE_QUALIFIERS = frozenset([
    'uniform', 'in', 'out', 'inout', 'varying', 'attribute', 'buffer', 'shared',
])
_STORAGE_QUALIFIERS = frozenset([
    'const', 'flat', 'smooth', 'noperspective', 'centroid', 'invariant', 'precise',
]) | PRECISION_QUALIFIERS | _INTERFACE_QUALIFIERS


@dataclass(frozen=True)
class DefinitionSpan:
    """
    Location of a function or struct definition in a token list.

    start/end are byte offsets of the whole definition; body_start/body_end
    are the offsets just inside its braces.
    """
    kind: str
    name: str
    return_type: str
    parameters: str
    start: int
    end: int
    body_start: int
    body_end: int


def preamble_of(source: str) -> Optional[str]:
    """Text before the first '#pragma stage', or None if there is none."""
    match = STAGE_PRAGMA_RE.search(source)
    if match is None:
        return None
    return source[:match.start()]


def scan_definitions(tokens: List[Token]) -> List[DefinitionSpan]:
    """
    Find file-scope function and struct definitions.

    A function definition is a return type, a name, a balanced parameter
    list and a balanced body. Prototypes (no body) are skipped.
    """
    code = code_indices(tokens)
    position = {index: p for p, index in enumerate(code)}
    spans: List[DefinitionSpan] = []
    at_statement_start = True
    p = 0

    def text_at(offset: int) -> str:
        return tokens[code[offset]].text if offset < len(code) else ''

    def kind_at(offset: int) -> Optional[TokenKind]:
        return tokens[code[offset]].kind if offset < len(code) else None

    while p < len(code):
        token = tokens[code[p]]

        if token.is_ident('struct') and kind_at(p + 1) == TokenKind.IDENT and text_at(p + 2) == '{':
            close = find_matching(tokens, code[p + 2])
            if close is None:
                break
            end_p = position[close] + 1
            while end_p < len(code) and text_at(end_p) != ';':
                end_p += 1
            end_token = tokens[code[min(end_p, len(code) - 1)]]
            spans.append(DefinitionSpan(
                kind='struct', name=text_at(p + 1), return_type='', parameters='',
                start=token.start, end=end_token.end,
                body_start=tokens[code[p + 2]].end, body_end=tokens[close].start,
            ))
            p = end_p + 1
            at_statement_start = True
            continue

        if at_statement_start:
            q = p
            while text_at(q) in PRECISION_QUALIFIERS:
                q += 1
            if (kind_at(q) == TokenKind.IDENT and kind_at(q + 1) == TokenKind.IDENT
                    and text_at(q + 2) == '(' and text_at(q) not in _STORAGE_QUALIFIERS):
                params_close = find_matching(tokens, code[q + 2])
                if params_close is None:
                    break
                after = position[params_close] + 1
                if text_at(after) == '{':
                    body_close = find_matching(tokens, code[after])
                    if body_close is None:
                        break
                    spans.append(DefinitionSpan(
                        kind='function',
                        name=text_at(q + 1),
                        return_type=text_at(q),
                        parameters=untokenize(tokens[code[q + 2] + 1:params_close]).strip(),
                        start=token.start,
                        end=tokens[body_close].end,
                        body_start=tokens[code[after]].end,
                        body_end=tokens[body_close].start,
                    ))
                    p = position[body_close] + 1
                    at_statement_start = True
                    continue

        if token.is_punct('{'):
            close = find_matching(tokens, code[p])
            if close is None:
                break
            p = position[close] + 1
            at_statement_start = True
            continue

        at_statement_start = token.is_punct(';', '}')
        p += 1

    return spans


def function_ranges(source: str) -> RangeSet:
    """Byte ranges of every function and struct definition in source."""
    return RangeSet((span.start, span.end) for span in scan_definitions(tokenize(source)))


def find_function(source: str, name: str) -> Optional[DefinitionSpan]:
    for span in scan_definitions(tokenize(source)):
        if span.kind == 'function' and span.name == name:
            return span
    return None


def split_top_level(tokens: List[Token], separator: str = ',') -> List[List[Token]]:
    """Split significant tokens on separator, ignoring nested brackets."""
    parts: List[List[Token]] = [[]]
    depth = 0
    for token in tokens:
        if token.is_punct('(', '[', '{'):
            depth += 1
        elif token.is_punct(')', ']', '}'):
            depth -= 1
        if depth == 0 and token.is_punct(separator):
            parts.append([])
            continue
        parts[-1].append(token)
    return [part for part in parts if part]


@dataclass(frozen=True)
class _Declarator:
    name: str
    array_suffix: str
    initializer: Optional[str]


class GlobalDefinitionExtractor:
    """
    Separates the preamble into functions, macros, consts and mutable globals.

    Usage:
        definitions = GlobalDefinitionExtractor().extract(source, exclude_names)
    """

    def extract(self, source: str, exclude_names: Iterable[str] = ()) -> GlobalDefinitions:
        """
        Analyze the preamble of source.

        Args:
            source: Preprocessed shader source
            exclude_names: Names claimed by parameters and binding members

        Returns:
            GlobalDefinitions; all empty when source has no '#pragma stage'
        """
        definitions = GlobalDefinitions()
        preamble = preamble_of(source)
        if preamble is None:
            logger.debug("No stage pragma; preamble is empty")
            return definitions

        excluded = set(exclude_names)
        tokens = tokenize(preamble)
        masks = RangeSet()
        seen: Set[Tuple[str, str, str]] = set()

        for span in scan_definitions(tokens):
            masks.add(span.start, span.end)
            text = preamble[span.start:span.end]
            # Sibling includes can expand the same file twice
            signature = (span.kind, span.name, _WHITESPACE_RE.sub(' ', span.parameters))
            if signature in seen:
                logger.info("Skipping duplicate %s %s(%s)", span.kind, span.name, span.parameters)
                continue
            seen.add(signature)
            if span.kind == 'struct':
                definitions.structs.append(StructDefinition(span.name, text, (span.start, span.end)))
            else:
                definitions.functions.append(FunctionDefinition(
                    return_type=span.return_type,
                    name=span.name,
                    parameters=span.parameters,
                    text=text,
                    span=(span.start, span.end),
                ))

        for binding in BindingExtractor().extract(preamble):
            masks.add(*binding.span)

        for macro in self._defines(tokens):
            definitions.defines[macro.name] = macro

        for statement in self._statements(tokens, masks):
            self._declaration(statement, preamble, excluded, definitions)

        logger.info(
            "Preamble: %d function(s), %d struct(s), %d define(s), %d const(s), %d global(s)",
            len(definitions.functions), len(definitions.structs), len(definitions.defines),
            len(definitions.consts), len(definitions.mutable_globals),
        )
        return definitions

    # ========================================================================
    # Macros
    # ========================================================================

    @staticmethod
    def _defines(tokens: List[Token]) -> Iterator[MacroDefinition]:
        for i, token in enumerate(tokens):
            if token.kind != TokenKind.DIRECTIVE or directive_name(token) != 'define':
                continue
            end = line_end(tokens, i)
            body = ''.join(
                t.text for t in tokens[i + 1:end]
                if not (t.kind == TokenKind.COMMENT and t.text.startswith('//'))
            )
            match = _DEFINE_BODY_RE.match(body.replace('\\\n', ' '))
            if match is None:
                logger.warning("Malformed #define in preamble: %s", body.strip())
                continue
            name, parameters, value = match.groups()
            if parameters is not None:
                parameters = parameters[1:-1].strip()
            yield MacroDefinition(name=name, value=value.strip(), parameters=parameters)

    # ========================================================================
    # Declarations
    # ========================================================================

    @staticmethod
    def _statements(tokens: List[Token], masks: RangeSet) -> Iterator[List[Token]]:
        """Yield the significant tokens of each file-scope statement outside masks."""
        statement: List[Token] = []
        depth = 0
        for index in code_indices(tokens):
            token = tokens[index]
            if token.start in masks:
                continue
            if token.is_punct('(', '[', '{'):
                depth += 1
            elif token.is_punct(')', ']', '}'):
                depth -= 1
            statement.append(token)
            if depth == 0 and token.is_punct(';'):
                yield statement
                statement = []
        if statement:
            logger.debug("Unterminated statement at end of preamble: %s", untokenize(statement))

    def _declaration(self, statement: List[Token], preamble: str, excluded: Set[str],
                     definitions: GlobalDefinitions):
        qualifiers = set()
        i = 0
        while i < len(statement) and statement[i].text in _STORAGE_QUALIFIERS | {'layout', 'precision'}:
            if statement[i].text == 'precision':
                return
            if statement[i].text == 'layout' and i + 1 < len(statement) and statement[i + 1].is_punct('('):
                depth = 0
                i += 1
                while i < len(statement):
                    if statement[i].is_punct('('):
                        depth += 1
                    elif statement[i].is_punct(')'):
                        depth -= 1
                        if depth == 0:
                            break
                    i += 1
            else:
                qualifiers.add(statement[i].text)
            i += 1

        if qualifiers & _INTERFACE_QUALIFIERS:
            return
        if i + 1 >= len(statement) or statement[i].kind != TokenKind.IDENT:
            return

        type_name = statement[i].text
        i += 1
        if statement[i].is_punct('['):
            close = self._closing(statement, i)
            type_name += ''.join(t.text for t in statement[i:close + 1])
            i = close + 1
        if i >= len(statement) or statement[i].kind != TokenKind.IDENT:
            return

        declarators = []
        for part in split_top_level(statement[i:-1]):
            declarator = self._declarator(part, preamble)
            if declarator is None:
                logger.debug("Skipping file-scope statement: %s", untokenize(statement))
                return
            declarators.append(declarator)

        if 'const' in qualifiers:
            self._const(type_name, declarators, statement, preamble, excluded, definitions)
            return

        for declarator in declarators:
            self._add_global(type_name, declarator, excluded, definitions)

    def _const(self, type_name: str, declarators: List[_Declarator], statement: List[Token],
               preamble: str, excluded: Set[str], definitions: GlobalDefinitions):
        kept = [d for d in declarators if d.name not in excluded
                and d.name not in definitions.const_names()]
        if len(kept) < len(declarators):
            logger.debug("Const statement drops claimed or repeated names: %s", untokenize(statement))
        for declarator in declarators:
            if declarator.name in excluded:
                logger.info("Const %s is claimed by a parameter or binding; emitted as a global",
                            declarator.name)
                self._add_global(type_name, declarator, excluded, definitions)
        if not kept:
            return
        if len(kept) == len(declarators):
            text = preamble[statement[0].start:statement[-1].end]
        else:
            parts = []
            for declarator in kept:
                part = f"{declarator.name}{declarator.array_suffix}"
                if declarator.initializer is not None:
                    part += f" = {declarator.initializer}"
                parts.append(part)
            text = f"const {type_name} {', '.join(parts)};"
        definitions.consts.append(ConstDefinition(type_name, tuple(d.name for d in kept), text))

    @staticmethod
    def _add_global(type_name: str, declarator: _Declarator, excluded: Set[str],
                    definitions: GlobalDefinitions):
        claimed = declarator.name in excluded
        if claimed and declarator.initializer is not None:
            logger.debug("Dropping initializer of claimed global %s", declarator.name)
        existing = definitions.global_named(declarator.name)
        if existing is not None:
            logger.warning("Global %s declared twice; keeping the first declaration", declarator.name)
            return
        definitions.mutable_globals.append(MutableGlobal(
            type_name=type_name,
            name=declarator.name,
            initializer=None if claimed else declarator.initializer,
            array_suffix=declarator.array_suffix,
            claimed=claimed,
        ))

    def _declarator(self, tokens: List[Token], preamble: str) -> Optional[_Declarator]:
        if not tokens or tokens[0].kind != TokenKind.IDENT:
            return None
        name = tokens[0].text
        i = 1
        array_suffix = ''
        while i < len(tokens) and tokens[i].is_punct('['):
            close = self._closing(tokens, i)
            array_suffix += ''.join(t.text for t in tokens[i:close + 1])
            i = close + 1
        if i == len(tokens):
            return _Declarator(name, array_suffix, None)
        if not tokens[i].is_punct('=') or i + 1 >= len(tokens):
            return None
        initializer = preamble[tokens[i + 1].start:tokens[-1].end].strip()
        return _Declarator(name, array_suffix, initializer)

    @staticmethod
    def _closing(tokens: List[Token], index: int) -> int:
        depth = 0
        for i in range(index, len(tokens)):
            if tokens[i].is_punct('(', '[', '{'):
                depth += 1
            elif tokens[i].is_punct(')', ']', '}'):
                depth -= 1
                if depth == 0:
                    return i
        return len(tokens) - 1


def render_global_definitions(definitions: GlobalDefinitions) -> str:
    """
    Render structs, consts, mutable globals and functions as GLSL.

    Macros are not rendered; their #define lines travel with the stage
    preamble kept by StageSplitter.
    """
    sections = [
        [struct.text for struct in definitions.structs],
        [const.text for const in definitions.consts],
        [var.declaration() for var in definitions.mutable_globals],
        [function.text for function in definitions.functions],
    ]
    blocks = []
    for index, section in enumerate(sections):
        if not section:
            continue
        separator = '\n\n' if index == 3 else '\n'
        blocks.append(separator.join(section))
    return '\n\n'.join(blocks)


def declaration_pattern(var: MutableGlobal) -> re.Pattern:
    """Regex for the file-scope declaration of var; group 'init' is its initializer."""
    return re.compile(
        r'^[ \t]*(?:(?:lowp|mediump|highp)[ \t]+)?' + re.escape(var.type_name)
        + r'[ \t]+' + re.escape(var.name)
        + r'[ \t]*(?:\[[^\]]*\][ \t]*)*(?:=(?P<init>[^;]*))?;[ \t]*\n?',
        re.MULTILINE,
    )


def replace_top_level(source: str, pattern: re.Pattern, replacement: str):
    """
    Replace the first match of pattern that lies outside every function.

    Returns:
        (new_source, match) where match is None when nothing was replaced
    """
    functions = function_ranges(source)
    for match in pattern.finditer(source):
        if match.start() in functions:
            continue
        text = replacement
        if text and not match.group().endswith('\n'):
            text = text.rstrip('\n')
        return source[:match.start()] + text + source[match.end():], match
    return source, None
