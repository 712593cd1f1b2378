"""Fee reminder hand-off. Delivery (SMS, push, email) is owned by the notification service."""

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import List, Protocol
from uuid import UUID

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReminderNotice:
    coaching_id: UUID
    member_id: UUID
    record_id: UUID
    title: str
    balance: Decimal
    due_date: date
    reminder_count: int


class ReminderNotifier(Protocol):
    async def send(self, notices: List[ReminderNotice]) -> None: ...


class LoggingReminderNotifier:
    """Default notifier: records the hand-off in the application log."""

    async def send(self, notices: List[ReminderNotice]) -> None:
        for notice in notices:
            logger.info(
                "Fee reminder queued: coaching=%s member=%s record=%s balance=%s due=%s count=%s",
                notice.coaching_id,
                notice.member_id,
                notice.record_id,
                notice.balance,
                notice.due_date,
                notice.reminder_count,
            )


_default_notifier = LoggingReminderNotifier()


def get_reminder_notifier() -> ReminderNotifier:
    return _default_notifier
