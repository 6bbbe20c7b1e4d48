"""
#include expansion.

Expands '#include "path"' directives depth-first. Fetching is delegated to
an async callable so the same resolver serves files on disk, HTTP or test
fixtures.

Design:
- Per-branch active inclusion stack: a path that is already being expanded
  higher up the stack is replaced with a comment, not re-expanded. Siblings
  may include the same file twice.
- Depth above CompilerOptions.max_include_depth is fatal (IncludeDepthError)
- Fetch failures become an inline comment; compilation continues
- Includes inside #ifdef/#ifndef branches that are inactive given the
  macros defined so far are skipped

Usage:
    resolver = IncludeResolver(fetch)
    source = await resolver.resolve(root_source, "shaders/crt/crt.slang")
"""

import asyncio
import logging
import os
import posixpath
import re
from typing import Awaitable, Callable, List, Optional, Set

from ..errors import IncludeDepthError, IncludeFetchError

logger = logging.getLogger(__name__)

Fetcher = Callable[[str], Awaitable[str]]

INCLUDE_RE = re.compile(r'^\s*#\s*include\s+"([^"]+)"')
_IFDEF_RE = re.compile(r'^\s*#\s*(ifdef|ifndef)\s+(\w+)')
_CONDITIONAL_RE = re.compile(r'^\s*#\s*(if|elif|else|endif)\b')
_DEFINE_RE = re.compile(r'^\s*#\s*define\s+(\w+)')
_UNDEF_RE = re.compile(r'^\s*#\s*undef\s+(\w+)')

DEFAULT_MAX_DEPTH = 20


def resolve_include_path(including_path: str, include: str) -> str:
    """
    Resolve an include path against the directory of the including file.

    Examples:
        resolve_include_path("shaders/crt/crt.slang", "../include/common.inc")
        -> "shaders/include/common.inc"
    """
    if include.startswith('/'):
        return posixpath.normpath(include)
    base = posixpath.dirname(including_path)
    return posixpath.normpath(posixpath.join(base, include))


class IncludeResolver:
    """
    Expands #include directives using an async fetcher.

    The fetcher receives the resolved path and returns the file text. It
    signals failure with IncludeFetchError or OSError.
    """

    def __init__(self, fetch: Fetcher, max_depth: int = DEFAULT_MAX_DEPTH,
                 predefined_macros: Optional[Set[str]] = None):
        self.fetch = fetch
        self.max_depth = max_depth
        self.predefined_macros = set(predefined_macros or ())
        self.included: List[str] = []

    async def resolve(self, source: str, path: str) -> str:
        """
        Expand every include reachable from source.

        Args:
            source: Text of the root file
            path: Path of the root file, used to resolve relative includes

        Returns:
            Source with includes replaced by their (expanded) contents

        Raises:
            IncludeDepthError: If nesting exceeds max_depth
        """
        self.included = []
        macros = set(self.predefined_macros)
        return await self._expand(source, path, [path], macros)

    async def _expand(self, source: str, path: str, stack: List[str], macros: Set[str]) -> str:
        output = []
        # One entry per open #if/#ifdef: is the branch live?
        branches: List[bool] = []
        decided: List[bool] = []

        for line in source.split('\n'):
            live = all(branches)

            ifdef = _IFDEF_RE.match(line)
            if ifdef:
                defined = ifdef.group(2) in macros
                branch_live = defined if ifdef.group(1) == 'ifdef' else not defined
                branches.append(branch_live)
                decided.append(branch_live)
                output.append(line)
                continue

            conditional = _CONDITIONAL_RE.match(line)
            if conditional:
                keyword = conditional.group(1)
                if keyword == 'if':
                    # #if expressions are evaluated later; assume live here
                    branches.append(True)
                    decided.append(False)
                elif keyword == 'elif' and branches:
                    branches[-1] = True
                elif keyword == 'else' and branches:
                    branches[-1] = not decided[-1]
                elif keyword == 'endif' and branches:
                    branches.pop()
                    decided.pop()
                output.append(line)
                continue

            if live:
                define = _DEFINE_RE.match(line)
                if define:
                    macros.add(define.group(1))
                undef = _UNDEF_RE.match(line)
                if undef:
                    macros.discard(undef.group(1))

            include = INCLUDE_RE.match(line)
            if not include:
                output.append(line)
                continue

            target = resolve_include_path(path, include.group(1))
            if not live:
                logger.debug("Skipping include %s in inactive branch of %s", target, path)
                output.append(f"// Skipped include in inactive branch: {target}")
                continue

            output.append(await self._include(target, stack, macros))

        return '\n'.join(output)

    async def _include(self, target: str, stack: List[str], macros: Set[str]) -> str:
        if target in stack:
            logger.warning("Circular include of %s (stack: %s)", target, " -> ".join(stack))
            return f"// Circular include skipped: {target}"

        depth = len(stack)
        if depth > self.max_depth:
            raise IncludeDepthError(target, depth)

        try:
            text = await self.fetch(target)
        except (IncludeFetchError, OSError) as exc:
            logger.warning("Failed to include %s: %s", target, exc)
            return f"// Failed to include: {target}"

        self.included.append(target)
        logger.debug("Including %s at depth %d", target, depth)
        return await self._expand(text, target, stack + [target], macros)


class FileSystemFetcher:
    """
    Include fetcher that reads files below a root directory.

    Reads run in the default executor so the event loop is never blocked.
    """

    def __init__(self, root: str = '.', encoding: str = 'utf-8'):
        self.root = root
        self.encoding = encoding

    def _read(self, path: str) -> str:
        full_path = os.path.join(self.root, *path.split('/'))
        try:
            with open(full_path, encoding=self.encoding) as handle:
                return handle.read()
        except UnicodeDecodeError as exc:
            raise IncludeFetchError(path, str(exc)) from exc

    async def __call__(self, path: str) -> str:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._read, path)
