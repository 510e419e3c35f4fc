"""
Site directory and goal notifier ports.

Sites and their owners are managed by the account layer; the engine only
reads `{site_id, owner_id, domain}` to check ownership and origins.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class SiteRecord:
    """Site as registered by the account layer."""

    site_id: str
    owner_id: str
    domain: str


class SiteDirectoryPort(Protocol):
    """Read access to registered sites."""

    def get_site(self, site_id: str) -> SiteRecord | None:
        """Return the site, or None if unknown."""
        ...


class GoalNotifierPort(Protocol):
    """Delivery of goal-completed notifications."""

    def goal_completed(
        self, site_id: str, goal_id: str, goal_name: str, current_value: float
    ) -> None:
        """Notify the site owner that a goal was reached."""
        ...
