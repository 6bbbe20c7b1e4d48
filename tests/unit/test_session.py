"""
Unit tests for CompilerSession and ChannelRegistry.

Test coverage:
- Channel allocation (5 tests)
- Session lifecycle (2 tests)
Total: 7 tests
"""

import pytest

from slang_to_webgl.session import ChannelRegistry, CompilerSession


@pytest.fixture
def registry():
    """Create registry instance."""
    return ChannelRegistry()


# ============================================================================
# Channel allocation (5 tests)
# ============================================================================

def test_channel_name_uses_prefix(registry):
    """Test that channels are named prefix + global name."""
    channel = registry.channel_for('shade', 'float')
    assert channel.channel_name == 'v_shade'
    assert channel.type_name == 'float'
    assert channel.source_type == 'float'


def test_same_global_reuses_channel(registry):
    """Test that repeated requests return the same channel."""
    first = registry.channel_for('flag', 'int', source_type='bool')
    second = registry.channel_for('flag', 'int', source_type='bool')
    assert first is second
    assert len(registry) == 1
    assert first.source_type == 'bool'


def test_same_global_with_new_type_gets_new_channel(registry):
    """Test that a global seen again with another type is not handed the old channel."""
    as_float = registry.channel_for('X', 'float')
    as_bool = registry.channel_for('X', 'int', source_type='bool')
    assert as_float.channel_name == 'v_X'
    assert as_bool.channel_name == 'v_X_2'
    assert as_bool.type_name == 'int'
    assert as_bool.source_type == 'bool'
    assert registry.channel_for('X', 'int', source_type='bool') is as_bool
    assert registry.get('X') is as_float
    assert len(registry) == 2


def test_registry_membership(registry):
    """Test __contains__, get and iteration."""
    registry.channel_for('a', 'float')
    registry.channel_for('b', 'vec2')
    assert 'a' in registry
    assert 'c' not in registry
    assert registry.get('b').channel_name == 'v_b'
    assert registry.get('c') is None
    assert [c.base_name for c in registry] == ['a', 'b']


def test_custom_prefix():
    """Test a custom channel prefix."""
    registry = ChannelRegistry('vary_')
    assert registry.channel_for('x', 'float').channel_name == 'vary_x'


# ============================================================================
# Session lifecycle (2 tests)
# ============================================================================

def test_session_owns_registry():
    """Test that a session carries its own registry."""
    first = CompilerSession()
    second = CompilerSession()
    first.channels.channel_for('x', 'float')
    assert 'x' in first.channels
    assert 'x' not in second.channels


def test_session_reset():
    """Test that reset forgets channels and counts."""
    session = CompilerSession()
    session.channels.channel_for('x', 'float')
    session.compiled_count = 3
    session.reset()
    assert len(session.channels) == 0
    assert session.compiled_count == 0
