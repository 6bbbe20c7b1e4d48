"""
Exceptions raised by the slang-to-WebGL compiler.

Only structural problems are fatal (a missing fragment stage, include
recursion past the depth limit). Everything else is recovered in place by
the pass that meets it and reported through logging.
"""

from typing import Optional


class ShaderCompileError(Exception):
    """Base error for fatal compilation problems."""

    def __init__(self, message: str, line: Optional[int] = None, path: Optional[str] = None):
        self.message = message
        self.line = line
        self.path = path
        location = ""
        if path is not None:
            location = f" in {path}"
        if line is not None:
            location += f" at line {line}"
        super().__init__(f"{message}{location}")


class MissingFragmentStageError(ShaderCompileError):
    """Raised when a shader has no '#pragma stage fragment' section."""


class IncludeDepthError(ShaderCompileError):
    """Raised when nested includes exceed the configured depth."""

    def __init__(self, path: str, depth: int):
        self.depth = depth
        super().__init__(f"Include depth {depth} exceeded while including '{path}'", path=path)


class IncludeFetchError(Exception):
    """
    Raised by include fetchers when a path cannot be loaded.

    Never escapes the compiler: IncludeResolver replaces the directive with
    a comment and carries on.
    """

    def __init__(self, path: str, reason: str = "not found"):
        self.path = path
        self.reason = reason
        super().__init__(f"Cannot fetch '{path}': {reason}")
