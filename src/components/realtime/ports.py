"""
Realtime component port definitions.
"""

from __future__ import annotations

from src.core.ports.kv import KeyValueStorePort
from src.core.ports.time import TimePort

__all__ = ["KeyValueStorePort", "TimePort"]
