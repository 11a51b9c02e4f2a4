"""Recurring transaction management: generation and reminder scheduling."""
from __future__ import annotations

from datetime import datetime, timedelta
import logging
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError

from .database import save_safe
from .models import RecurringTransaction, SettingKey, TransactionType
from .notifications import NotificationCenter, NotificationRequest
from .services import get_setting, set_setting

logger = logging.getLogger(__name__)


def reminder_id(recurring: RecurringTransaction) -> str:
    return f"recurring-{recurring.id}"


class RecurringManager:
    """Observable list of recurring transactions plus their CRUD operations.

    ``recurring_transactions`` is always sorted by next due date and is
    reloaded after every mutation.
    """

    def __init__(
        self,
        session,
        notifications: NotificationCenter | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.session = session
        self.notifications = notifications if notifications is not None else NotificationCenter(session)
        self.clock = clock
        self.recurring_transactions: list[RecurringTransaction] = []
        self.load_recurring_transactions()

    def load_recurring_transactions(self) -> None:
        try:
            self.recurring_transactions = (
                self.session.query(RecurringTransaction)
                .order_by(RecurringTransaction.next_due_date)
                .all()
            )
        except SQLAlchemyError as exc:
            logger.error("Failed to fetch recurring transactions: %s", exc)
            self.session.rollback()
            self.recurring_transactions = []

    # CRUD

    def add(self, recurring: RecurringTransaction) -> None:
        self.session.add(recurring)
        save_safe(self.session)
        self.load_recurring_transactions()
        self.schedule_notifications(recurring)

    def update(self, recurring: RecurringTransaction) -> None:
        recurring.updated_at = self.clock()
        save_safe(self.session)
        self.load_recurring_transactions()
        self.schedule_notifications(recurring)

    def delete(self, recurring: RecurringTransaction) -> None:
        self.cancel_notifications(recurring)
        self.session.delete(recurring)
        save_safe(self.session)
        self.load_recurring_transactions()

    def toggle_active(self, recurring: RecurringTransaction) -> None:
        recurring.is_active = not recurring.is_active
        recurring.updated_at = self.clock()
        save_safe(self.session)
        if recurring.is_active:
            self.schedule_notifications(recurring)
        else:
            self.cancel_notifications(recurring)
        self.load_recurring_transactions()

    # Generation

    def generate_due_transactions(self) -> int:
        """Create one transaction for every active item that is due.

        An item more than one period behind catches up one period per call.
        Returns the number of transactions created.
        """
        now = self.clock()
        generated = []
        for recurring in self.recurring_transactions:
            if not recurring.is_active or recurring.next_due_date > now:
                continue
            txn = recurring.generate_transaction(self.session)
            if txn is None:
                continue
            self.session.add(txn)
            generated.append(recurring)

        if generated:
            if save_safe(self.session):
                for recurring in generated:
                    self.schedule_notifications(recurring)
            self.load_recurring_transactions()
        return len(generated)

    @property
    def due_soon(self) -> list[RecurringTransaction]:
        now = self.clock()
        return [r for r in self.recurring_transactions if r.is_active and r.is_due_soon(now)]

    @property
    def active(self) -> list[RecurringTransaction]:
        return [r for r in self.recurring_transactions if r.is_active]

    # Notifications

    def schedule_notifications(self, recurring: RecurringTransaction) -> None:
        if not recurring.is_active or recurring.id is None:
            return

        self.cancel_notifications(recurring)

        now = self.clock()
        if recurring.next_due_date <= now:
            return

        days = recurring.days_until_due(now)
        verb = "received" if recurring.type == TransactionType.INCOME else "charged"
        request = NotificationRequest(
            identifier=reminder_id(recurring),
            title="Recurring Transaction Reminder",
            body=f"Will be {verb} in {days} days: {recurring.name} {recurring.amount:.2f}",
            fire_at=recurring.next_due_date - timedelta(days=recurring.reminder_days_before),
            user_info={"recurring_id": recurring.id},
        )
        if not self.notifications.add(request):
            logger.error("Failed to schedule reminder for recurring %s", recurring.id)

    def cancel_notifications(self, recurring: RecurringTransaction) -> None:
        if recurring.id is not None:
            self.notifications.remove_pending([reminder_id(recurring)])


class BackgroundScheduler:
    """Periodic job that generates due recurring transactions.

    The earliest next run is kept in the settings table so separate processes
    (the curses app, ``python -m moneywise refresh`` from cron) share it.
    """

    TASK_ID = "moneywise.generate-recurring"
    MIN_INTERVAL = timedelta(hours=1)

    def __init__(self, session, clock: Callable[[], datetime] = datetime.now):
        self.session = session
        self.clock = clock

    def next_run_at(self) -> datetime | None:
        raw = get_setting(self.session, SettingKey.NEXT_REFRESH_AT)
        if not raw:
            return None
        try:
            return datetime.fromisoformat(raw)
        except ValueError:
            logger.warning("Ignoring malformed %s value %r", SettingKey.NEXT_REFRESH_AT.value, raw)
            return None

    def schedule(self) -> datetime:
        earliest = self.clock() + self.MIN_INTERVAL
        if set_setting(self.session, SettingKey.NEXT_REFRESH_AT, earliest.isoformat()):
            logger.debug("Background task %s scheduled for %s", self.TASK_ID, earliest)
        else:
            logger.error("Failed to schedule background task %s", self.TASK_ID)
        return earliest

    def is_due(self) -> bool:
        next_run = self.next_run_at()
        return next_run is None or self.clock() >= next_run

    def run(self, manager: RecurringManager | None = None) -> int:
        """Reschedule, then generate due transactions; returns the count."""
        self.schedule()
        if manager is None:
            manager = RecurringManager(self.session, clock=self.clock)
        else:
            manager.load_recurring_transactions()
        generated = manager.generate_due_transactions()
        logger.info("Generated %d recurring transactions in background", generated)
        return generated

    def run_if_due(self, manager: RecurringManager | None = None) -> int | None:
        if not self.is_due():
            return None
        return self.run(manager)
