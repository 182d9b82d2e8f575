"""
Utility modules for atomcache.
"""

from .config import AtomCacheSettings, load_config, get_config

__all__ = ["AtomCacheSettings", "load_config", "get_config"]
