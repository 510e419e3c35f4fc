"""
Logging Goal Notifier.

Logs goal-completed notifications instead of delivering them. Email
delivery belongs to the account layer; this adapter keeps a record of
every notification for test assertions.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime

logger = logging.getLogger(__name__)


@dataclass
class SentNotification:
    """Record of a logged notification for test assertions."""

    site_id: str
    goal_id: str
    goal_name: str
    current_value: float
    logged_at: datetime


@dataclass
class LoggingGoalNotifier:
    """GoalNotifierPort that logs instead of sending."""

    sent: list[SentNotification] = field(default_factory=list)
    log_level: int = logging.INFO

    def goal_completed(
        self, site_id: str, goal_id: str, goal_name: str, current_value: float
    ) -> None:
        self.sent.append(
            SentNotification(
                site_id=site_id,
                goal_id=goal_id,
                goal_name=goal_name,
                current_value=current_value,
                logged_at=datetime.now(UTC),
            )
        )
        logger.log(
            self.log_level,
            "Goal completed: site=%s goal=%s name=%r value=%s",
            site_id,
            goal_id,
            goal_name,
            current_value,
        )

    def clear(self) -> None:
        """Clear recorded notifications (for testing)."""
        self.sent.clear()
