"""
Heatmaps component port definitions.
"""

from __future__ import annotations

from src.core.ports.kv import KeyValueStorePort

__all__ = ["KeyValueStorePort"]
