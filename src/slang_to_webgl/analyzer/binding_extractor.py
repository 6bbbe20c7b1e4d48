"""
Binding table extraction.

Recognizes the three binding shapes of slang shaders:

    layout(set = 0, binding = 2) uniform sampler2D Source;
    layout(push_constant) uniform Push { vec4 SourceSize; float speed; } params;
    layout(std140, set = 0, binding = 0) uniform UBO { mat4 MVP; } global;

The opening brace may sit on the next line and members may share a type
(`float a, b;`). Array members keep their size. Other layout(...) forms and
binding arrays are ignored with a log message.
"""

import logging
import re
from typing import Dict, List, Optional

from ..transformer.shader_ir import Binding, BindingKind, BindingMember
from .tokens import PRECISION_QUALIFIERS, RangeSet, TokenKind, tokenize

logger = logging.getLogger(__name__)

SAMPLER_RE = re.compile(
    r'layout\s*\(([^)]*)\)\s*uniform\s+(?:(?:lowp|mediump|highp)\s+)?'
    r'([iu]?sampler\w+)\s+(\w+)\s*(\[[^\]]*\])?\s*;'
)
BLOCK_RE = re.compile(r'layout\s*\(([^)]*)\)\s*uniform\s+(\w+)\s*\{')
_BLOCK_TAIL_RE = re.compile(r'\s*(\w+)?\s*(\[[^\]]*\])?\s*;')
_MEMBER_NAME_RE = re.compile(r'^(\w+)\s*(\[[^\]]*\])?$')


def parse_layout(qualifiers: str) -> Dict[str, Optional[str]]:
    """
    Parse the inside of layout(...).

    Examples:
        "std140, set = 0, binding = 1" -> {'std140': None, 'set': '0', 'binding': '1'}
    """
    result: Dict[str, Optional[str]] = {}
    for part in qualifiers.split(','):
        part = part.strip()
        if not part:
            continue
        if '=' in part:
            key, value = part.split('=', 1)
            result[key.strip()] = value.strip()
        else:
            result[part] = None
    return result


def comment_ranges(source: str) -> RangeSet:
    """Byte ranges covered by comments."""
    return RangeSet(
        (token.start, token.end) for token in tokenize(source) if token.kind == TokenKind.COMMENT
    )


def _to_int(value: Optional[str], default: Optional[int]) -> Optional[int]:
    if value is None:
        return default
    try:
        return int(value, 0)
    except ValueError:
        logger.warning("Non-numeric layout value '%s'", value)
        return default


class BindingExtractor:
    """
    Builds the binding table of a shader.

    Usage:
        bindings = BindingExtractor().extract(source)
    """

    def extract(self, source: str) -> List[Binding]:
        """
        Find every sampler, push constant and UBO declaration.

        Returns:
            Bindings ordered by their position in source
        """
        comments = comment_ranges(source)
        found: List[Binding] = []

        for match in SAMPLER_RE.finditer(source):
            if match.start() in comments:
                continue
            binding = self._sampler(match)
            if binding is not None:
                found.append(binding)

        for match in BLOCK_RE.finditer(source):
            if match.start() in comments:
                continue
            binding = self._block(source, match)
            if binding is not None:
                found.append(binding)

        found.sort(key=lambda binding: binding.span[0])
        logger.debug("Extracted %d binding(s)", len(found))
        return found

    def _sampler(self, match) -> Optional[Binding]:
        layout = parse_layout(match.group(1))
        sampler_type, name, array = match.group(2), match.group(3), match.group(4)
        if 'binding' not in layout:
            logger.debug("Sampler %s has no binding qualifier; ignored", name)
            return None
        if array:
            logger.warning("Sampler array %s%s is not supported; ignored", name, array)
            return None
        return Binding(
            kind=BindingKind.SAMPLER,
            set=_to_int(layout.get('set'), 0),
            slot=_to_int(layout.get('binding'), None),
            type_name=sampler_type,
            instance_name=name,
            span=(match.start(), match.end()),
        )

    def _block(self, source: str, match) -> Optional[Binding]:
        layout = parse_layout(match.group(1))
        type_name = match.group(2)

        if 'push_constant' in layout:
            kind = BindingKind.PUSH_CONSTANT
        elif 'binding' in layout:
            kind = BindingKind.UBO
        else:
            logger.debug("Unrecognized layout(%s) on block %s; ignored", match.group(1), type_name)
            return None

        body_start = match.end()
        body_end = self._closing_brace(source, body_start)
        if body_end is None:
            logger.warning("Unterminated uniform block %s", type_name)
            return None

        tail = _BLOCK_TAIL_RE.match(source, body_end + 1)
        if tail is None:
            logger.warning("Uniform block %s is missing its terminating ';'", type_name)
            return None
        instance, array = tail.group(1), tail.group(2)
        if array:
            logger.warning("Uniform block array %s%s is not supported; ignored", instance, array)
            return None

        return Binding(
            kind=kind,
            set=_to_int(layout.get('set'), 0),
            slot=_to_int(layout.get('binding'), None),
            type_name=type_name,
            instance_name=instance,
            members=tuple(self._members(source[body_start:body_end], type_name)),
            span=(match.start(), tail.end()),
        )

    @staticmethod
    def _closing_brace(source: str, start: int) -> Optional[int]:
        depth = 1
        for token in tokenize(source[start:]):
            if token.kind != TokenKind.PUNCT:
                continue
            if token.text == '{':
                depth += 1
            elif token.text == '}':
                depth -= 1
                if depth == 0:
                    return start + token.start
        return None

    @staticmethod
    def _members(body: str, block_name: str) -> List[BindingMember]:
        code = ''.join(
            ' ' if token.kind == TokenKind.COMMENT else token.text for token in tokenize(body)
        )
        members: List[BindingMember] = []
        seen = set()

        for statement in code.split(';'):
            if not statement.strip():
                continue
            # layout(offset = N) and precision qualifiers carry no type information
            statement = re.sub(r'layout\s*\([^)]*\)', ' ', statement).strip()
            head = statement.split(None, 1)
            while head and head[0] in PRECISION_QUALIFIERS:
                head = head[1].split(None, 1) if len(head) > 1 else []
            if len(head) < 2:
                logger.debug("Unparsed member '%s' in block %s", statement, block_name)
                continue
            type_name, declarators = head
            for declarator in declarators.split(','):
                declarator = declarator.strip()
                match = _MEMBER_NAME_RE.match(declarator)
                if match is None:
                    logger.debug("Unparsed member '%s' in block %s", declarator, block_name)
                    continue
                name, array_suffix = match.group(1), match.group(2) or ''
                if name in seen:
                    logger.debug("Duplicate member %s in block %s", name, block_name)
                    continue
                seen.add(name)
                members.append(BindingMember(type_name, name, array_suffix.replace(' ', '')))
        return members


def binding_member_names(bindings: List[Binding]) -> List[str]:
    """Member names of every block binding, in order, without duplicates."""
    names: List[str] = []
    for binding in bindings:
        for name in binding.member_names():
            if name not in names:
                names.append(name)
    return names

