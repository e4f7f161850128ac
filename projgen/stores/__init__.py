"""Persistent stores used by projgen."""

from .tool_cache import ToolCache, ToolCacheConfig, default_cache_dir


__all__ = ["ToolCache", "ToolCacheConfig", "default_cache_dir"]
