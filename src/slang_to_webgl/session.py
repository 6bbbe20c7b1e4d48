"""
Per-pipeline compilation state.

A CompilerSession is created for one rendering pipeline (a single shader or
every pass of a preset) and discarded afterwards. It owns the registry of
vertex-to-fragment channels so that repeated resolver runs reuse channel
names instead of declaring them twice.
"""

import logging
from typing import Dict, Iterator, Optional, Tuple

from .transformer.shader_ir import ChannelDirection, VaryingChannel

logger = logging.getLogger(__name__)


class ChannelRegistry:
    """Maps global names to the channel that carries them between stages."""

    def __init__(self, prefix: str = 'v_'):
        self.prefix = prefix
        self._channels: Dict[Tuple[str, str, str], VaryingChannel] = {}
        self._taken: Dict[str, str] = {}

    def channel_for(self, base_name: str, type_name: str,
                    direction: ChannelDirection = ChannelDirection.VERTEX_TO_FRAGMENT,
                    source_type: Optional[str] = None) -> VaryingChannel:
        """
        Return the channel for a global, creating it on first use.

        Args:
            base_name: Name of the global in the source
            type_name: GLSL type of the channel declaration
            direction: Which way the value flows
            source_type: Type of the original global when it differs (bool)

        Returns:
            The same VaryingChannel for every call with the same base name and
            types; a global seen again with another type gets its own channel
        """
        source_type = source_type or type_name
        key = (base_name, type_name, source_type)
        existing = self._channels.get(key)
        if existing is not None:
            return existing

        candidate = f"{self.prefix}{base_name}"
        suffix = 1
        while candidate in self._taken:
            suffix += 1
            candidate = f"{self.prefix}{base_name}_{suffix}"

        channel = VaryingChannel(
            base_name=base_name,
            channel_name=candidate,
            type_name=type_name,
            direction=direction,
            source_type=source_type,
        )
        self._channels[key] = channel
        self._taken[candidate] = base_name
        logger.debug("Allocated channel %s %s for global %s", type_name, candidate, base_name)
        return channel

    def get(self, base_name: str) -> Optional[VaryingChannel]:
        """First channel allocated for a global."""
        for channel in self._channels.values():
            if channel.base_name == base_name:
                return channel
        return None

    def reset(self):
        self._channels.clear()
        self._taken.clear()

    def __contains__(self, base_name: str) -> bool:
        return self.get(base_name) is not None

    def __iter__(self) -> Iterator[VaryingChannel]:
        return iter(self._channels.values())

    def __len__(self) -> int:
        return len(self._channels)


class CompilerSession:
    """State shared by the passes of one pipeline."""

    def __init__(self, channel_prefix: str = 'v_'):
        self.channels = ChannelRegistry(channel_prefix)
        self.compiled_count = 0

    def reset(self):
        """Forget every channel; the session can then serve a new pipeline."""
        self.channels.reset()
        self.compiled_count = 0
