# zero-trust-analytics - Ports (Protocol Interfaces)
# Abstract interfaces for adapters; no implementations here

from src.core.ports.kv import KeyValueStorePort
from src.core.ports.sites import GoalNotifierPort, SiteDirectoryPort, SiteRecord
from src.core.ports.time import TimePort

__all__ = [
    "GoalNotifierPort",
    "KeyValueStorePort",
    "SiteDirectoryPort",
    "SiteRecord",
    "TimePort",
]
