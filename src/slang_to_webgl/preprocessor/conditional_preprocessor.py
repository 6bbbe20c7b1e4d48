"""
Conditional compilation for slang shaders.

Resolves #if, #ifdef, #ifndef, #elif, #else and #endif so that later passes
see a single, branch-free source. Macros are tracked only to evaluate
conditions; #define lines themselves stay in the output for the target
compiler.

This module handles:
1. #define NAME VALUE / #define NAME(args) body: registered when the
   enclosing branches are active; a redefinition overwrites
2. #undef NAME
3. #ifdef / #ifndef / #if / #elif / #else / #endif
4. defined(NAME) and defined NAME inside conditions

Design:
- Line-by-line processing with a stack of {active, taken} frames
- Directives split over several lines with a trailing backslash are joined
- Conditions are macro-expanded, then handed to condition_evaluator
- A condition that cannot be evaluated counts as false
- Conditional directive lines are consumed; everything else in a fully
  active branch is preserved

Usage:
    preprocessor = ConditionalPreprocessor()
    resolved = preprocessor.process(slang_source)
"""

import logging
import re
from dataclasses import dataclass
from typing import Dict, FrozenSet, List, Optional

from .condition_evaluator import evaluate

logger = logging.getLogger(__name__)

_DIRECTIVE_RE = re.compile(r'^\s*#\s*(\w+)\b(.*)$', re.DOTALL)
_DEFINE_RE = re.compile(r'^([A-Za-z_]\w*)(\([^)]*\))?\s*(.*)$', re.DOTALL)
_DEFINED_RE = re.compile(r'\bdefined\s*(?:\(\s*([A-Za-z_]\w*)\s*\)|([A-Za-z_]\w*))')
_IDENT_RE = re.compile(r'\b[A-Za-z_]\w*\b')
_LINE_COMMENT_RE = re.compile(r'//.*$')
_BLOCK_COMMENT_RE = re.compile(r'/\*.*?\*/', re.DOTALL)

CONDITIONAL_DIRECTIVES = frozenset(['if', 'ifdef', 'ifndef', 'elif', 'else', 'endif'])

# Object-like macros may refer to each other; stop expanding past this depth
MAX_EXPANSION_DEPTH = 32


@dataclass
class _Frame:
    active: bool
    taken: bool
    parent_active: bool


@dataclass(frozen=True)
class Macro:
    name: str
    value: str
    parameters: Optional[str] = None


class ConditionalPreprocessor:
    """
    Resolves conditional compilation directives.

    Args:
        predefined_macros: Macros defined before the first line (name -> value)
    """

    def __init__(self, predefined_macros: Optional[Dict[str, str]] = None):
        self.predefined_macros = dict(predefined_macros or {})
        self.macros: Dict[str, Macro] = {}

    def process(self, source: str) -> str:
        """
        Resolve all conditional directives in source.

        Args:
            source: Include-free shader source

        Returns:
            Source with inactive branches and conditional directives removed
        """
        self.macros = {
            name: Macro(name, value) for name, value in self.predefined_macros.items()
        }
        stack: List[_Frame] = []
        output = []

        for line in self._join_continuations(source):
            active = all(frame.active for frame in stack)
            directive = _DIRECTIVE_RE.match(line)

            if directive is None:
                if active:
                    output.append(line)
                continue

            keyword = directive.group(1)
            argument = self._strip_comments(directive.group(2)).strip()

            if keyword in CONDITIONAL_DIRECTIVES:
                self._conditional(keyword, argument, stack, active)
                continue

            if not active:
                continue

            if keyword == 'define':
                self._define(argument)
            elif keyword == 'undef':
                self.macros.pop(argument.split()[0] if argument else '', None)
            output.append(line)

        if stack:
            logger.warning("%d unterminated conditional block(s) at end of source", len(stack))

        return '\n'.join(output)

    def _conditional(self, keyword: str, argument: str, stack: List[_Frame], active: bool):
        if keyword in ('ifdef', 'ifndef'):
            name = argument.split()[0] if argument else ''
            result = (name in self.macros) == (keyword == 'ifdef')
            stack.append(_Frame(active=active and result, taken=result, parent_active=active))
        elif keyword == 'if':
            result = active and self.evaluate_condition(argument)
            stack.append(_Frame(active=result, taken=result, parent_active=active))
        elif keyword == 'elif':
            if not stack:
                logger.warning("#elif without matching #if ignored")
                return
            frame = stack[-1]
            if frame.taken or not frame.parent_active:
                frame.active = False
            else:
                frame.active = self.evaluate_condition(argument)
                frame.taken = frame.active
        elif keyword == 'else':
            if not stack:
                logger.warning("#else without matching #if ignored")
                return
            frame = stack[-1]
            frame.active = frame.parent_active and not frame.taken
            frame.taken = True
        elif keyword == 'endif':
            if not stack:
                logger.warning("#endif without matching #if ignored")
                return
            stack.pop()

    def _define(self, argument: str):
        match = _DEFINE_RE.match(argument)
        if match is None:
            logger.warning("Malformed #define ignored: %s", argument)
            return
        name, parameters, value = match.groups()
        if parameters is not None:
            parameters = parameters[1:-1]
        if name in self.macros and self.macros[name].value != value.strip():
            logger.debug("Macro %s redefined", name)
        self.macros[name] = Macro(name, value.strip(), parameters)

    def evaluate_condition(self, expression: str) -> bool:
        """
        Evaluate an #if/#elif expression against the current macros.

        Unparseable expressions (and division by zero) evaluate to False.
        """
        expanded = self._substitute_defined(expression)
        expanded = self._expand_macros(expanded)
        try:
            return evaluate(expanded)
        except (ValueError, ZeroDivisionError, OverflowError) as exc:
            logger.warning("Cannot evaluate condition '%s' (%s); treating as false", expression, exc)
            return False

    def _substitute_defined(self, expression: str) -> str:
        def replace(match):
            name = match.group(1) or match.group(2)
            return '1' if name in self.macros else '0'
        return _DEFINED_RE.sub(replace, expression)

    def _expand_macros(self, expression: str, active: FrozenSet[str] = frozenset()) -> str:
        """
        Expand object-like macros in expression.

        A macro is not re-expanded inside its own expansion, so
        `#define A A+1` turns `A` into `(A+1)` as in C.
        """
        def replace(match):
            name = match.group()
            macro = self.macros.get(name)
            if macro is None or macro.parameters is not None or name in active:
                return name
            if len(active) >= MAX_EXPANSION_DEPTH:
                return name
            value = self._expand_macros(macro.value, active | {name})
            return f"({value})" if value else ''

        return _IDENT_RE.sub(replace, expression)

    @staticmethod
    def _strip_comments(text: str) -> str:
        text = _BLOCK_COMMENT_RE.sub(' ', text)
        return _LINE_COMMENT_RE.sub('', text)

    @staticmethod
    def _join_continuations(source: str) -> List[str]:
        """Split into lines, joining directives continued with a trailing backslash."""
        lines = []
        pending = None
        for line in source.split('\n'):
            if pending is not None:
                pending = pending[:-1].rstrip() + ' ' + line.lstrip()
                if not pending.rstrip().endswith('\\'):
                    lines.append(pending)
                    pending = None
                else:
                    pending = pending.rstrip()
                continue
            if line.lstrip().startswith('#') and line.rstrip().endswith('\\'):
                pending = line.rstrip()
                continue
            lines.append(line)
        if pending is not None:
            lines.append(pending[:-1])
        return lines
