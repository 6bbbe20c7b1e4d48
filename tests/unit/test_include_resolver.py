"""
Unit tests for IncludeResolver.

Test coverage:
- Path resolution (3 tests)
- Expansion (4 tests)
- Cycles and depth (3 tests)
- Failures and inactive branches (6 tests)
Total: 16 tests
"""

import asyncio

import pytest

from slang_to_webgl.errors import IncludeDepthError, IncludeFetchError
from slang_to_webgl.preprocessor.include_resolver import (
    FileSystemFetcher,
    IncludeResolver,
    resolve_include_path,
)


def dict_fetcher(files):
    """Async fetcher over an in-memory {path: text} table."""
    async def fetch(path):
        if path not in files:
            raise IncludeFetchError(path)
        return files[path]
    return fetch


def resolve(files, source, path="main.slang", **kwargs):
    resolver = IncludeResolver(dict_fetcher(files), **kwargs)
    return asyncio.run(resolver.resolve(source, path)), resolver


# ============================================================================
# Path resolution (3 tests)
# ============================================================================

def test_relative_to_including_file():
    """Test that includes resolve against the including file's directory."""
    assert resolve_include_path("shaders/crt/crt.slang", "common.inc") == "shaders/crt/common.inc"


def test_parent_directory():
    """Test '..' segments."""
    assert resolve_include_path("shaders/crt/crt.slang", "../include/common.inc") == \
        "shaders/include/common.inc"


def test_absolute_include():
    """Test that an absolute include ignores the including directory."""
    assert resolve_include_path("shaders/crt/crt.slang", "/lib/x.inc") == "/lib/x.inc"


# ============================================================================
# Expansion (4 tests)
# ============================================================================

def test_simple_include():
    """Test that the directive line is replaced by the file contents."""
    files = {"common.inc": "float helper() { return 1.0; }"}
    result, resolver = resolve(files, '#include "common.inc"\nvoid main() {}')
    assert result == "float helper() { return 1.0; }\nvoid main() {}"
    assert resolver.included == ["common.inc"]


def test_nested_relative_include():
    """Test that a nested include resolves against the nested file's path."""
    files = {
        "inc/a.inc": '#include "b.inc"\nfloat a;',
        "inc/b.inc": "float b;",
    }
    result, resolver = resolve(files, '#include "inc/a.inc"')
    assert result == "float b;\nfloat a;"
    assert resolver.included == ["inc/a.inc", "inc/b.inc"]


def test_siblings_may_include_same_file():
    """Test that a file included twice by siblings is expanded twice."""
    files = {"x.inc": "float x;"}
    result, _ = resolve(files, '#include "x.inc"\n#include "x.inc"')
    assert result.count("float x;") == 2


def test_non_include_lines_untouched():
    """Test that lines without includes pass through unchanged."""
    source = "#version 450\n// #include \"commented.inc\"\nvoid main() {}"
    result, _ = resolve({}, source)
    assert result == source


# ============================================================================
# Cycles and depth (3 tests)
# ============================================================================

def test_circular_include_leaves_marker():
    """Test A -> B -> A produces one marker and no infinite loop."""
    files = {
        "a.inc": '#include "b.inc"\nfloat a;',
        "b.inc": '#include "a.inc"\nfloat b;',
    }
    result, _ = resolve(files, '#include "a.inc"')
    assert result.count("// Circular include skipped: a.inc") == 1
    assert "float a;" in result
    assert "float b;" in result


def test_self_include_of_root():
    """Test that the root file including itself is skipped."""
    result, _ = resolve({}, '#include "main.slang"\nfloat x;')
    assert "// Circular include skipped: main.slang" in result


def test_depth_limit_raises():
    """Test that an unbounded chain of distinct files is fatal."""
    files = {f"f{i}.inc": f'#include "f{i + 1}.inc"' for i in range(50)}
    with pytest.raises(IncludeDepthError):
        resolve(files, '#include "f0.inc"', max_depth=5)


# ============================================================================
# Failures and inactive branches (6 tests)
# ============================================================================

def test_missing_file_leaves_comment():
    """Test that fetch failures are inlined and do not abort."""
    result, resolver = resolve({}, '#include "missing.inc"\nfloat x;')
    assert result == "// Failed to include: missing.inc\nfloat x;"
    assert resolver.included == []


def test_skip_include_in_inactive_ifdef():
    """Test that #ifdef of an undefined macro skips the include."""
    files = {"x.inc": "float x;"}
    source = '#ifdef FANCY\n#include "x.inc"\n#endif'
    result, resolver = resolve(files, source)
    assert "// Skipped include in inactive branch: x.inc" in result
    assert resolver.included == []


def test_include_in_else_of_undefined_ifdef():
    """Test that the #else branch of a false #ifdef is live."""
    files = {"x.inc": "float x;", "y.inc": "float y;"}
    source = '#ifdef FANCY\n#include "x.inc"\n#else\n#include "y.inc"\n#endif'
    result, resolver = resolve(files, source)
    assert resolver.included == ["y.inc"]
    assert "float y;" in result


def test_define_enables_later_ifdef():
    """Test that a #define seen earlier activates a later #ifdef."""
    files = {"x.inc": "float x;"}
    source = '#define FANCY\n#ifdef FANCY\n#include "x.inc"\n#endif'
    result, resolver = resolve(files, source)
    assert resolver.included == ["x.inc"]


def test_filesystem_fetcher(tmp_path):
    """Test FileSystemFetcher reads relative to its root."""
    (tmp_path / "inc").mkdir()
    (tmp_path / "inc" / "a.inc").write_text("float a;")
    fetcher = FileSystemFetcher(str(tmp_path))
    resolver = IncludeResolver(fetcher)
    result = asyncio.run(resolver.resolve('#include "inc/a.inc"', "main.slang"))
    assert result == "float a;"


def test_filesystem_fetcher_undecodable_file(tmp_path):
    """Test that a file in the wrong encoding is a recoverable fetch failure."""
    (tmp_path / "bad.inc").write_bytes(b"\xff\xfe\x00float bad;")
    fetcher = FileSystemFetcher(str(tmp_path))
    with pytest.raises(IncludeFetchError):
        asyncio.run(fetcher("bad.inc"))

    resolver = IncludeResolver(fetcher)
    result = asyncio.run(resolver.resolve('#include "bad.inc"\nfloat x;', "main.slang"))
    assert result == "// Failed to include: bad.inc\nfloat x;"
    assert resolver.included == []
