"""Local reminders.

Reminders are stored as pending requests in the ``pending_notifications``
table and handed to the UI by :meth:`NotificationCenter.deliver_due`. The
identifiers are stable so rescheduling replaces the previous request:

* ``daily-log``: daily transaction logging reminder
* ``weekly-goal-progress``: weekly goal progress summary
* ``goal-deadline-<id>``: reminder the day before a goal deadline
* ``recurring-<id>``: upcoming recurring transaction (see :mod:`moneywise.recurring`)
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
import json
import logging
from typing import Callable, Iterable

from sqlalchemy.exc import SQLAlchemyError

from .dates import start_of_day, whole_days_between
from .models import Goal, PendingNotification

logger = logging.getLogger(__name__)

DAILY_LOG_ID = "daily-log"
WEEKLY_GOAL_ID = "weekly-goal-progress"

REPEAT_STEPS = {"daily": timedelta(days=1), "weekly": timedelta(weeks=1)}


@dataclass
class NotificationRequest:
    identifier: str
    title: str
    body: str
    fire_at: datetime
    repeat: str | None = None
    user_info: dict = field(default_factory=dict)


def goal_deadline_id(goal: Goal) -> str:
    return f"goal-deadline-{goal.id}"


class NotificationCenter:
    """Pending notification requests persisted through ``session``."""

    def __init__(self, session):
        self.session = session

    def add(self, request: NotificationRequest) -> bool:
        """Store ``request``, replacing any request with the same identifier."""
        try:
            row = (
                self.session.query(PendingNotification)
                .filter_by(identifier=request.identifier)
                .first()
            )
            if row is None:
                row = PendingNotification(identifier=request.identifier)
                self.session.add(row)
            row.title = request.title
            row.body = request.body
            row.fire_at = request.fire_at
            row.repeat = request.repeat
            row.user_info = json.dumps(request.user_info)
            self.session.commit()
            return True
        except SQLAlchemyError as exc:
            logger.error("Failed to schedule notification %s: %s", request.identifier, exc)
            self.session.rollback()
            return False

    def remove_pending(self, identifiers: Iterable[str]) -> None:
        ids = list(identifiers)
        try:
            (
                self.session.query(PendingNotification)
                .filter(PendingNotification.identifier.in_(ids))
                .delete(synchronize_session=False)
            )
            self.session.commit()
        except SQLAlchemyError as exc:
            logger.error("Failed to remove notifications %s: %s", ids, exc)
            self.session.rollback()

    def pending(self) -> list[NotificationRequest]:
        rows = self.session.query(PendingNotification).order_by(PendingNotification.fire_at).all()
        return [self._to_request(row) for row in rows]

    def deliver_due(self, now: datetime | None = None) -> list[NotificationRequest]:
        """Return requests whose time has come.

        One-shot requests are removed; repeating ones move to their next slot.
        """
        now = now or datetime.now()
        rows = (
            self.session.query(PendingNotification)
            .filter(PendingNotification.fire_at <= now)
            .order_by(PendingNotification.fire_at)
            .all()
        )
        delivered = [self._to_request(row) for row in rows]
        for row in rows:
            step = REPEAT_STEPS.get(row.repeat or "")
            if step is None:
                self.session.delete(row)
                continue
            fire_at = row.fire_at
            while fire_at <= now:
                fire_at += step
            row.fire_at = fire_at
        if rows:
            try:
                self.session.commit()
            except SQLAlchemyError as exc:
                logger.error("Failed to update delivered notifications: %s", exc)
                self.session.rollback()
        return delivered

    @staticmethod
    def _to_request(row: PendingNotification) -> NotificationRequest:
        try:
            info = json.loads(row.user_info or "{}")
        except ValueError:
            info = {}
        return NotificationRequest(
            identifier=row.identifier,
            title=row.title,
            body=row.body,
            fire_at=row.fire_at,
            repeat=row.repeat,
            user_info=info,
        )


class NotificationScheduler:
    """Schedules the app's reminder notifications."""

    def __init__(self, center: NotificationCenter, clock: Callable[[], datetime] = datetime.now):
        self.center = center
        self.clock = clock

    def _next_time(self, hour: int, minute: int, weekday: int | None = None) -> datetime:
        now = self.clock()
        candidate = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
        step = timedelta(days=1)
        if weekday is not None:
            candidate += timedelta(days=(weekday - candidate.weekday()) % 7)
            step = timedelta(weeks=1)
        if candidate <= now:
            candidate += step
        return candidate

    def schedule_daily_reminder(self, hour: int, minute: int, body: str) -> NotificationRequest:
        self.cancel_daily_reminder()
        request = NotificationRequest(
            identifier=DAILY_LOG_ID,
            title="Moneywise",
            body=body,
            fire_at=self._next_time(hour, minute),
            repeat="daily",
        )
        self.center.add(request)
        return request

    def schedule_weekly_goal_reminder(
        self, weekday: int, hour: int, minute: int, goals: list[Goal]
    ) -> NotificationRequest | None:
        """Schedule the weekly progress summary; ``weekday`` 0 is Monday.

        Nothing is scheduled when ``goals`` is empty.
        """
        self.cancel_weekly_goal_reminder()
        if not goals:
            return None

        saved = sum(g.current_amount or 0.0 for g in goals)
        target = sum(g.target_amount or 0.0 for g in goals)
        percent = int(saved / target * 100) if target > 0 else 0
        request = NotificationRequest(
            identifier=WEEKLY_GOAL_ID,
            title="Weekly Goal Progress",
            body=f"You've achieved {percent}% of your total goals! Keep saving!",
            fire_at=self._next_time(hour, minute, weekday),
            repeat="weekly",
        )
        self.center.add(request)
        return request

    def cancel_daily_reminder(self) -> None:
        self.center.remove_pending([DAILY_LOG_ID])

    def cancel_weekly_goal_reminder(self) -> None:
        self.center.remove_pending([WEEKLY_GOAL_ID])

    def days_left(self, goal: Goal) -> int:
        return max(whole_days_between(self.clock(), goal.deadline), 0)

    def schedule_goal_deadline_reminder(self, goal: Goal) -> NotificationRequest:
        """Remind at 09:00 the day before ``goal.deadline``."""
        fire_at = start_of_day(goal.deadline).replace(hour=9) - timedelta(days=1)
        request = NotificationRequest(
            identifier=goal_deadline_id(goal),
            title="Goal Deadline Approaching",
            body=f"{self.days_left(goal)} days left for {goal.name}. You're almost there!",
            fire_at=fire_at,
            user_info={"goal_id": goal.id},
        )
        self.center.add(request)
        return request

    def cancel_goal_deadline_reminder(self, goal: Goal) -> None:
        self.center.remove_pending([goal_deadline_id(goal)])
