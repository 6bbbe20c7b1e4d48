"""
Evaluator for #if / #elif expressions.

Implements the C preprocessor's integer expression grammar with a small
recursive-descent parser. Identifiers that survive macro expansion
evaluate to 0, as in C. Anything the parser cannot handle raises
ConditionError; ConditionalPreprocessor treats that as false.

Grammar (lowest to highest precedence):
    conditional := logical_or ('?' conditional ':' conditional)?
    logical_or  := logical_and ('||' logical_and)*
    logical_and := bit_or ('&&' bit_or)*
    bit_or      := bit_xor ('|' bit_xor)*
    bit_xor     := bit_and ('^' bit_and)*
    bit_and     := equality ('&' equality)*
    equality    := relational (('==' | '!=') relational)*
    relational  := shift (('<' | '>' | '<=' | '>=') shift)*
    shift       := additive (('<<' | '>>') additive)*
    additive    := term (('+' | '-') term)*
    term        := unary (('*' | '/' | '%') unary)*
    unary       := ('!' | '~' | '-' | '+') unary | primary
    primary     := NUMBER | IDENT | '(' conditional ')'
"""

import re
from typing import List, Tuple, Union

Number = Union[int, float]

# Parentheses, unary operators and ternaries nest recursively; deeper
# expressions are rejected before Python's recursion limit is reached
MAX_NESTING = 48


class ConditionError(ValueError):
    """Raised for expressions that cannot be evaluated."""


_TOKEN_RE = re.compile(r"""
    (?P<number>0[xX][0-9a-fA-F]+|\d+\.\d*(?:[eE][-+]?\d+)?|\.\d+(?:[eE][-+]?\d+)?|\d+)
        (?P<suffix>[uUlLfF]*)
  | (?P<ident>[A-Za-z_]\w*)
  | (?P<op>\|\||&&|==|!=|<=|>=|<<|>>|[-+*/%<>!~&|^?:()])
  | (?P<space>\s+)
""", re.VERBOSE)

_BINARY_LEVELS: List[Tuple[str, ...]] = [
    ('||',),
    ('&&',),
    ('|',),
    ('^',),
    ('&',),
    ('==', '!='),
    ('<', '>', '<=', '>='),
    ('<<', '>>'),
    ('+', '-'),
    ('*', '/', '%'),
]


def _tokenize(expression: str) -> List[Tuple[str, str]]:
    tokens = []
    position = 0
    while position < len(expression):
        match = _TOKEN_RE.match(expression, position)
        if match is None:
            raise ConditionError(f"Unexpected character {expression[position]!r} in '{expression}'")
        position = match.end()
        if match.group('space'):
            continue
        if match.group('number'):
            tokens.append(('number', match.group('number')))
        elif match.group('ident'):
            tokens.append(('ident', match.group('ident')))
        else:
            tokens.append(('op', match.group('op')))
    return tokens


def _to_number(text: str) -> Number:
    if text.lower().startswith('0x'):
        return int(text, 16)
    if '.' in text or 'e' in text.lower():
        return float(text)
    if len(text) > 1 and text.startswith('0'):
        return int(text, 8)
    return int(text)


class _Parser:
    def __init__(self, tokens: List[Tuple[str, str]]):
        self.tokens = tokens
        self.position = 0
        self.nesting = 0

    def peek(self) -> Tuple[str, str]:
        if self.position < len(self.tokens):
            return self.tokens[self.position]
        return ('end', '')

    def take(self) -> Tuple[str, str]:
        token = self.peek()
        self.position += 1
        return token

    def expect(self, op: str):
        kind, text = self.take()
        if kind != 'op' or text != op:
            raise ConditionError(f"Expected '{op}', got '{text or 'end of expression'}'")

    def enter(self):
        self.nesting += 1
        if self.nesting > MAX_NESTING:
            raise ConditionError(f"Expression nested deeper than {MAX_NESTING} levels")

    def leave(self):
        self.nesting -= 1

    def parse(self) -> Number:
        value = self.conditional()
        if self.peek()[0] != 'end':
            raise ConditionError(f"Unexpected '{self.peek()[1]}'")
        return value

    def conditional(self) -> Number:
        condition = self.binary(0)
        if self.peek() == ('op', '?'):
            self.take()
            self.enter()
            when_true = self.conditional()
            self.expect(':')
            when_false = self.conditional()
            self.leave()
            return when_true if condition else when_false
        return condition

    def binary(self, level: int) -> Number:
        if level == len(_BINARY_LEVELS):
            return self.unary()
        operators = _BINARY_LEVELS[level]
        left = self.binary(level + 1)
        while self.peek()[0] == 'op' and self.peek()[1] in operators:
            op = self.take()[1]
            # Short-circuit operators still parse the right side
            right = self.binary(level + 1)
            left = _apply(op, left, right)
        return left

    def unary(self) -> Number:
        kind, text = self.peek()
        if kind == 'op' and text in ('!', '~', '-', '+'):
            self.take()
            self.enter()
            value = self.unary()
            self.leave()
            if text == '!':
                return int(not value)
            if text == '~':
                return ~int(value)
            if text == '-':
                return -value
            return value
        return self.primary()

    def primary(self) -> Number:
        kind, text = self.take()
        if kind == 'number':
            return _to_number(text)
        if kind == 'ident':
            if self.peek() == ('op', '('):
                raise ConditionError(f"Function-like macro '{text}' in condition")
            return 0
        if kind == 'op' and text == '(':
            self.enter()
            value = self.conditional()
            self.expect(')')
            self.leave()
            return value
        raise ConditionError(f"Unexpected '{text or 'end of expression'}'")


def _apply(op: str, left: Number, right: Number) -> Number:
    if op == '||':
        return int(bool(left) or bool(right))
    if op == '&&':
        return int(bool(left) and bool(right))
    if op == '|':
        return int(left) | int(right)
    if op == '^':
        return int(left) ^ int(right)
    if op == '&':
        return int(left) & int(right)
    if op == '==':
        return int(left == right)
    if op == '!=':
        return int(left != right)
    if op == '<':
        return int(left < right)
    if op == '>':
        return int(left > right)
    if op == '<=':
        return int(left <= right)
    if op == '>=':
        return int(left >= right)
    if op == '<<':
        return int(left) << int(right)
    if op == '>>':
        return int(left) >> int(right)
    if op == '+':
        return left + right
    if op == '-':
        return left - right
    if op == '*':
        return left * right
    if right == 0:
        raise ConditionError("Division by zero")
    if op == '/':
        if isinstance(left, int) and isinstance(right, int):
            # C division truncates toward zero
            return abs(left) // abs(right) * (1 if (left >= 0) == (right >= 0) else -1)
        return left / right
    if isinstance(left, int) and isinstance(right, int):
        return left - right * (abs(left) // abs(right) * (1 if (left >= 0) == (right >= 0) else -1))
    raise ConditionError("Modulo of non-integer operands")


def evaluate(expression: str) -> bool:
    """
    Evaluate a fully macro-expanded condition.

    Raises:
        ConditionError: On syntax errors, division by zero or empty input
    """
    tokens = _tokenize(expression)
    if not tokens:
        raise ConditionError("Empty condition")
    return bool(_Parser(tokens).parse())
