"""Code generation."""

from .stage_emitter import StageEmitter

__all__ = ['StageEmitter']
