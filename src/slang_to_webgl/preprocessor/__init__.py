"""Preprocessing: include expansion and conditional compilation."""

from .conditional_preprocessor import ConditionalPreprocessor
from .include_resolver import FileSystemFetcher, IncludeResolver

__all__ = ['ConditionalPreprocessor', 'FileSystemFetcher', 'IncludeResolver']
