"""
Numeric coercion: integer literals in float positions.

Vulkan GLSL converts int to float implicitly; GLSL ES does not. This pass
rewrites bare decimal integer literals (`2` -> `2.0`) unless the literal sits
in an integer-only context:

- array sizes and indices: `a[4]`, `v[i + 1]`
- integer constructors and casts: `int(...)`, `uint(...)`, `ivec2(...)`
- direct arguments of integer-only built-ins: `texelFetch`, `textureSize`
- arguments bound to int parameters of functions defined in the source
- integer declarations (`int n = 4, m = 2;`) and `return` in int functions
- operands next to an integer-typed identifier: `i < 8`, `n = n + 1`
- `case` labels, bitwise operators, layout qualifiers and directives

Two casts are also inserted:
1. An int-typed uniform mixed with a float operand becomes `float(X)`
2. An int loop counter compared with a float identifier in a for header
   gets `int(LIMIT)`

Scientific, fractional, hex and suffixed literals are never touched. A cast
can expose a literal that was next to an int operand (`x * MODE + 1`), so
rounds repeat until the text is stable; the pass is idempotent.

Usage:
    coerced = NumericCoercionPass().coerce(source)
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from ..analyzer.tokens import (
    ASSIGNMENT_OPERATORS,
    BINARY_OPERATORS,
    FLOAT_TYPES,
    INTEGER_TYPES,
    PRECISION_QUALIFIERS,
    Token,
    TokenKind,
    code_indices,
    tokenize,
)

logger = logging.getLogger(__name__)

_BARE_INT_RE = re.compile(r'^(?:0|[1-9]\d*)$')
_FLOAT_LITERAL_RE = re.compile(r'^(?:\d+\.\d*|\.\d+|\d+[eE])')

INTEGER_BUILTINS = frozenset(['texelFetch', 'texelFetchOffset', 'textureSize'])
INTEGER_RESULT_BUILTINS = frozenset(['textureSize', 'floatBitsToInt', 'floatBitsToUint'])
INTEGER_VARIABLES = frozenset(['gl_VertexID', 'gl_InstanceID'])

BITWISE_OPERATORS = frozenset(['&', '|', '^', '<<', '>>', '%', '~', '&=', '|=', '^=', '<<=', '>>=', '%='])
COMPARISON_OPERATORS = frozenset(['<', '<=', '>', '>=', '==', '!='])
# Operators whose operands must share a type
_TYPED_OPERATORS = (BINARY_OPERATORS - frozenset(['&&', '||', '^^', '?', ':'])) | ASSIGNMENT_OPERATORS

_PARAMETER_QUALIFIERS = frozenset(['in', 'out', 'inout', 'const']) | PRECISION_QUALIFIERS
_KEYWORDS = frozenset(['return', 'else', 'case', 'do', 'if', 'for', 'while', 'switch'])
MAX_ROUNDS = 4


@dataclass
class TypeInfo:
    """Names the pass knows to be integer- or float-typed."""
    int_names: Set[str] = field(default_factory=set)
    float_names: Set[str] = field(default_factory=set)
    int_uniforms: Set[str] = field(default_factory=set)
    int_functions: Set[str] = field(default_factory=set)
    parameter_flags: Dict[str, List[bool]] = field(default_factory=dict)

    def merge(self, other: 'TypeInfo'):
        self.int_names |= other.int_names
        self.float_names = (self.float_names | other.float_names) - self.int_names
        self.int_uniforms |= other.int_uniforms
        self.int_functions |= other.int_functions
        for name, flags in other.parameter_flags.items():
            self.parameter_flags.setdefault(name, flags)


@dataclass
class _Frame:
    """An open '(' or '['."""
    kind: str
    function: Optional[str] = None
    argument: int = 0


class NumericCoercionPass:
    """
    Makes integer/float usage explicit for GLSL ES.

    Usage:
        coerced = NumericCoercionPass().coerce(stage_source)
    """

    def coerce(self, source: str, context: str = '') -> str:
        """
        Coerce integer literals and mixed int/float operands in source.

        Args:
            source: Text to rewrite
            context: Extra source whose declarations type the names used in
                source (e.g. the stage a statement will be injected into)

        Returns:
            Rewritten source; coerce(coerce(s)) == coerce(s)
        """
        result = source
        for _ in range(MAX_ROUNDS):
            rewritten = self._coerce_round(result, context)
            if rewritten == result:
                break
            result = rewritten
        else:
            logger.warning("Numeric coercion did not settle after %d rounds", MAX_ROUNDS)
        return result

    def _coerce_round(self, source: str, context: str) -> str:
        tokens = tokenize(source)
        sig = code_indices(tokens)
        info = self.collect_types(tokens, sig)
        if context:
            context_tokens = tokenize(context)
            info.merge(self.collect_types(context_tokens, code_indices(context_tokens)))
        replacements: Dict[int, str] = {}

        self._coerce_literals(tokens, sig, info, replacements)
        self._cast_operands(tokens, sig, info, replacements)

        if replacements:
            logger.debug("Numeric coercion rewrote %d token(s)", len(replacements))
        return ''.join(replacements.get(i, token.text) for i, token in enumerate(tokens))

    # ========================================================================
    # Type collection
    # ========================================================================

    def collect_types(self, tokens: List[Token], sig: List[int]) -> TypeInfo:
        """Record declared names by type, int functions and int parameters."""
        info = TypeInfo(int_names=set(INTEGER_VARIABLES))

        for p in range(len(sig) - 1):
            type_token = tokens[sig[p]]
            if type_token.kind != TokenKind.IDENT:
                continue
            is_int = type_token.text in INTEGER_TYPES
            if not is_int and type_token.text not in FLOAT_TYPES:
                continue
            name_token = tokens[sig[p + 1]]
            if name_token.kind != TokenKind.IDENT or name_token.text in _KEYWORDS:
                continue

            if p + 2 < len(sig) and tokens[sig[p + 2]].is_punct('('):
                # Function declaration: int foo(int a, float b)
                if is_int:
                    info.int_functions.add(name_token.text)
                info.parameter_flags[name_token.text] = self._parameter_flags(tokens, sig, p + 2)
                continue

            names = [name_token.text] + self._more_declarators(tokens, sig, p + 2)
            target = info.int_names if is_int else info.float_names
            target.update(names)
            if is_int and self._uniform_before(tokens, sig, p):
                info.int_uniforms.update(names)

        info.float_names -= info.int_names
        return info

    @staticmethod
    def _parameter_flags(tokens: List[Token], sig: List[int], open_p: int) -> List[bool]:
        flags: List[bool] = []
        current: List[Token] = []
        depth = 0
        for p in range(open_p, len(sig)):
            token = tokens[sig[p]]
            if token.is_punct('(', '['):
                depth += 1
                if depth == 1:
                    continue
            elif token.is_punct(')', ']'):
                depth -= 1
                if depth == 0:
                    break
            if depth == 1 and token.is_punct(','):
                flags.append(NumericCoercionPass._is_int_parameter(current))
                current = []
                continue
            current.append(token)
        if current:
            flags.append(NumericCoercionPass._is_int_parameter(current))
        return flags

    @staticmethod
    def _is_int_parameter(tokens: List[Token]) -> bool:
        for token in tokens:
            if token.kind == TokenKind.IDENT and token.text not in _PARAMETER_QUALIFIERS:
                return token.text in INTEGER_TYPES
        return False

    @staticmethod
    def _more_declarators(tokens: List[Token], sig: List[int], p: int) -> List[str]:
        """Names after commas in `int a = 1, b, c[2];`."""
        names = []
        depth = 0
        while p < len(sig):
            token = tokens[sig[p]]
            if token.is_punct('(', '[', '{'):
                depth += 1
            elif token.is_punct(')', ']', '}'):
                if depth == 0:
                    break
                depth -= 1
            elif depth == 0 and token.is_punct(';'):
                break
            elif depth == 0 and token.is_punct(',') and p + 1 < len(sig):
                following = tokens[sig[p + 1]]
                if following.kind == TokenKind.IDENT:
                    names.append(following.text)
            p += 1
        return names

    @staticmethod
    def _uniform_before(tokens: List[Token], sig: List[int], p: int) -> bool:
        p -= 1
        while p >= 0 and tokens[sig[p]].text in PRECISION_QUALIFIERS:
            p -= 1
        return p >= 0 and tokens[sig[p]].text == 'uniform'

    # ========================================================================
    # Literals
    # ========================================================================

    def _coerce_literals(self, tokens: List[Token], sig: List[int], info: TypeInfo,
                         replacements: Dict[int, str]):
        frames: List[_Frame] = []
        int_statement_depth: Optional[int] = None
        in_int_return = False
        in_case_label = False
        brace_depth = 0
        int_function = False

        for p, index in enumerate(sig):
            token = tokens[index]
            text = token.text

            if token.kind == TokenKind.PUNCT:
                if text in ('(', '['):
                    frames.append(self._open_frame(tokens, sig, p, info))
                elif text in (')', ']'):
                    if frames:
                        frames.pop()
                    if int_statement_depth is not None and len(frames) < int_statement_depth:
                        int_statement_depth = None
                elif text == ',' and frames:
                    frames[-1].argument += 1
                elif text == ';':
                    if int_statement_depth is not None and len(frames) <= int_statement_depth:
                        int_statement_depth = None
                    in_int_return = False
                elif text == ':':
                    in_case_label = False
                elif text == '{':
                    if brace_depth == 0:
                        int_function = self._returns_int(tokens, sig, p, info)
                    brace_depth += 1
                    int_statement_depth = None
                elif text == '}':
                    brace_depth = max(0, brace_depth - 1)
                continue

            if token.kind == TokenKind.IDENT:
                if text in INTEGER_TYPES and p + 2 < len(sig) \
                        and tokens[sig[p + 1]].kind == TokenKind.IDENT \
                        and not tokens[sig[p + 2]].is_punct('('):
                    int_statement_depth = len(frames)
                elif text == 'return' and int_function:
                    in_int_return = True
                elif text == 'case':
                    in_case_label = True
                continue

            if token.kind != TokenKind.NUMBER or not _BARE_INT_RE.match(text):
                continue
            if index in replacements:
                continue

            protected = (
                int_statement_depth is not None
                or in_int_return
                or in_case_label
                or self._protected_by_frames(frames, info)
                or self._next_to_integer(tokens, sig, p, info)
            )
            if not protected:
                replacements[index] = f"{text}.0"

    def _open_frame(self, tokens: List[Token], sig: List[int], p: int, info: TypeInfo) -> _Frame:
        if tokens[sig[p]].text == '[':
            return _Frame('index')
        name = self._callee(tokens, sig, p)
        if name is None:
            return _Frame('group')
        if name in INTEGER_TYPES:
            return _Frame('int_ctor', name)
        if name in INTEGER_BUILTINS:
            return _Frame('int_builtin', name)
        if name == 'layout':
            return _Frame('layout', name)
        if name == 'for':
            return _Frame('for', name)
        if name in info.parameter_flags:
            return _Frame('call', name)
        return _Frame('group', name)

    @staticmethod
    def _callee(tokens: List[Token], sig: List[int], p: int) -> Optional[str]:
        """Name before the '(' at sig[p]; `int[3](` reports 'int'."""
        if p == 0:
            return None
        previous = tokens[sig[p - 1]]
        if previous.kind == TokenKind.IDENT:
            return previous.text
        if previous.is_punct(']'):
            depth = 0
            for q in range(p - 1, -1, -1):
                token = tokens[sig[q]]
                if token.is_punct(']'):
                    depth += 1
                elif token.is_punct('['):
                    depth -= 1
                    if depth == 0:
                        if q > 0 and tokens[sig[q - 1]].kind == TokenKind.IDENT:
                            return tokens[sig[q - 1]].text
                        return None
        return None

    @staticmethod
    def _protected_by_frames(frames: List[_Frame], info: TypeInfo) -> bool:
        if any(frame.kind in ('index', 'int_ctor', 'layout') for frame in frames):
            return True
        if not frames:
            return False
        top = frames[-1]
        if top.kind == 'int_builtin':
            return True
        if top.kind == 'call':
            flags = info.parameter_flags.get(top.function, [])
            return top.argument < len(flags) and flags[top.argument]
        return False

    @staticmethod
    def _returns_int(tokens: List[Token], sig: List[int], p: int, info: TypeInfo) -> bool:
        """True if the '{' at sig[p] opens the body of an int function."""
        if p == 0 or not tokens[sig[p - 1]].is_punct(')'):
            return False
        depth = 0
        for q in range(p - 1, -1, -1):
            token = tokens[sig[q]]
            if token.is_punct(')'):
                depth += 1
            elif token.is_punct('('):
                depth -= 1
                if depth == 0:
                    return q > 0 and tokens[sig[q - 1]].text in info.int_functions
        return False

    # ========================================================================
    # Operand typing
    # ========================================================================

    def _next_to_integer(self, tokens: List[Token], sig: List[int], p: int, info: TypeInfo) -> bool:
        left = p - 1
        # Unary sign: `i = -1`
        if left >= 0 and tokens[sig[left]].is_punct('-', '+') and (
                left == 0 or tokens[sig[left - 1]].kind == TokenKind.PUNCT
                and tokens[sig[left - 1]].text not in (')', ']')):
            left -= 1
        if left >= 0:
            op = tokens[sig[left]]
            if op.kind == TokenKind.PUNCT and op.text in BITWISE_OPERATORS:
                return True
            if op.kind == TokenKind.PUNCT and op.text in _TYPED_OPERATORS and left > 0 \
                    and self._int_operand_ending_at(tokens, sig, left - 1, info):
                return True

        right = p + 1
        if right < len(sig):
            op = tokens[sig[right]]
            if op.kind == TokenKind.PUNCT and op.text in BITWISE_OPERATORS:
                return True
            if op.kind == TokenKind.PUNCT and op.text in _TYPED_OPERATORS \
                    and self._int_operand_starting_at(tokens, sig, right + 1, info):
                return True
        return False

    def _int_operand_ending_at(self, tokens: List[Token], sig: List[int], q: int, info: TypeInfo) -> bool:
        token = tokens[sig[q]]
        if token.kind == TokenKind.IDENT:
            if q > 0 and tokens[sig[q - 1]].is_punct('.'):
                # Swizzle of an integer vector: iv.x
                return q > 1 and tokens[sig[q - 2]].text in info.int_names
            return token.text in info.int_names
        if token.is_punct(')', ']'):
            opener = self._opening(tokens, sig, q)
            if opener is None or opener == 0:
                return False
            before = tokens[sig[opener - 1]]
            if token.text == ']':
                return before.text in info.int_names
            return before.text in INTEGER_TYPES or before.text in info.int_functions \
                or before.text in INTEGER_RESULT_BUILTINS
        return False

    def _int_operand_starting_at(self, tokens: List[Token], sig: List[int], q: int, info: TypeInfo) -> bool:
        if q >= len(sig):
            return False
        token = tokens[sig[q]]
        if token.is_punct('-', '+'):
            return self._int_operand_starting_at(tokens, sig, q + 1, info)
        if token.kind != TokenKind.IDENT:
            return False
        calls = q + 1 < len(sig) and tokens[sig[q + 1]].is_punct('(')
        if calls:
            return token.text in INTEGER_TYPES or token.text in info.int_functions \
                or token.text in INTEGER_RESULT_BUILTINS
        return token.text in info.int_names

    def _float_operand_ending_at(self, tokens: List[Token], sig: List[int], q: int, info: TypeInfo,
                                 replacements: Dict[int, str]) -> bool:
        token = tokens[sig[q]]
        if token.kind == TokenKind.NUMBER:
            return bool(_FLOAT_LITERAL_RE.match(token.text)) or sig[q] in replacements
        if token.kind == TokenKind.IDENT:
            if q > 0 and tokens[sig[q - 1]].is_punct('.'):
                return q > 1 and tokens[sig[q - 2]].text in info.float_names
            return token.text in info.float_names
        if token.is_punct(')'):
            opener = self._opening(tokens, sig, q)
            return opener is not None and opener > 0 and tokens[sig[opener - 1]].text in FLOAT_TYPES
        return False

    def _float_operand_starting_at(self, tokens: List[Token], sig: List[int], q: int, info: TypeInfo,
                                   replacements: Dict[int, str]) -> bool:
        if q >= len(sig):
            return False
        token = tokens[sig[q]]
        if token.is_punct('-', '+'):
            return self._float_operand_starting_at(tokens, sig, q + 1, info, replacements)
        if token.kind == TokenKind.NUMBER:
            return bool(_FLOAT_LITERAL_RE.match(token.text)) or sig[q] in replacements
        if token.kind == TokenKind.IDENT:
            if q + 1 < len(sig) and tokens[sig[q + 1]].is_punct('('):
                return token.text in FLOAT_TYPES
            return token.text in info.float_names
        return False

    @staticmethod
    def _opening(tokens: List[Token], sig: List[int], q: int) -> Optional[int]:
        depth = 0
        for r in range(q, -1, -1):
            token = tokens[sig[r]]
            if token.is_punct(')', ']'):
                depth += 1
            elif token.is_punct('(', '['):
                depth -= 1
                if depth == 0:
                    return r
        return None

    # ========================================================================
    # Casts
    # ========================================================================

    def _cast_operands(self, tokens: List[Token], sig: List[int], info: TypeInfo,
                       replacements: Dict[int, str]):
        for_depths: List[int] = []
        depth = 0

        for p, index in enumerate(sig):
            token = tokens[index]
            if token.is_punct('('):
                depth += 1
                if p > 0 and tokens[sig[p - 1]].is_ident('for'):
                    for_depths.append(depth)
                continue
            if token.is_punct(')'):
                if for_depths and for_depths[-1] == depth:
                    for_depths.pop()
                depth -= 1
                continue
            if token.kind != TokenKind.IDENT or index in replacements:
                continue
            previous = tokens[sig[p - 1]] if p > 0 else None
            if previous is not None and (previous.is_punct('.') or (
                    previous.kind == TokenKind.IDENT and previous.text not in _KEYWORDS)):
                continue
            following = tokens[sig[p + 1]] if p + 1 < len(sig) else None
            if following is not None and following.is_punct('(', '['):
                continue

            if token.text in info.int_uniforms and self._mixed_with_float(tokens, sig, p, info, replacements):
                replacements[index] = f"float({token.text})"
            elif (token.text in info.float_names and for_depths and for_depths[-1] == depth
                    and self._compared_with_int_counter(tokens, sig, p, info)):
                replacements[index] = f"int({token.text})"

    def _mixed_with_float(self, tokens: List[Token], sig: List[int], p: int, info: TypeInfo,
                          replacements: Dict[int, str]) -> bool:
        if p >= 2:
            op = tokens[sig[p - 1]]
            if op.kind == TokenKind.PUNCT and op.text in _TYPED_OPERATORS - ASSIGNMENT_OPERATORS \
                    and self._float_operand_ending_at(tokens, sig, p - 2, info, replacements):
                return True
        if p + 2 < len(sig):
            op = tokens[sig[p + 1]]
            if op.kind == TokenKind.PUNCT and op.text in _TYPED_OPERATORS - ASSIGNMENT_OPERATORS \
                    and self._float_operand_starting_at(tokens, sig, p + 2, info, replacements):
                return True
        return False

    def _compared_with_int_counter(self, tokens: List[Token], sig: List[int], p: int,
                                   info: TypeInfo) -> bool:
        if p + 1 < len(sig) and not tokens[sig[p + 1]].is_punct(';', ')', '&&', '||'):
            return False
        if p >= 2:
            op = tokens[sig[p - 1]]
            counter = tokens[sig[p - 2]]
            if op.text in COMPARISON_OPERATORS and counter.text in info.int_names:
                return True
        return False
