from datetime import datetime, timedelta

import pytest

from tests.helpers import FakeClock, session  # noqa: F401
from moneywise.models import Category, RecurringTransaction, Transaction
from moneywise.notifications import NotificationCenter
from moneywise.recurring import BackgroundScheduler, RecurringManager, reminder_id

NOW = datetime(2025, 3, 10, 12, 0)


def make_item(session, **overrides):  # noqa: F811
    category = session.query(Category).filter_by(name=overrides.pop("category", "Digital")).one()
    fields = dict(
        name="Netflix",
        amount=15.99,
        type="expense",
        frequency="monthly",
        start_date=datetime(2025, 3, 15),
    )
    fields.update(overrides)
    return RecurringTransaction(category=category, **fields)


@pytest.mark.parametrize(
    "frequency, interval, start, expected",
    [
        ("daily", 3, datetime(2025, 1, 30), datetime(2025, 2, 2)),
        ("weekly", 2, datetime(2025, 1, 1), datetime(2025, 1, 15)),
        ("biweekly", 1, datetime(2025, 1, 1), datetime(2025, 1, 15)),
        ("monthly", 1, datetime(2025, 1, 31), datetime(2025, 2, 28)),
        ("quarterly", 1, datetime(2024, 11, 30), datetime(2025, 2, 28)),
        ("yearly", 1, datetime(2024, 2, 29), datetime(2025, 2, 28)),
        ("fortnightly", 1, datetime(2025, 1, 15), datetime(2025, 2, 15)),
    ],
)
def test_calculate_next_due_date(session, frequency, interval, start, expected):  # noqa: F811
    item = make_item(session, frequency=frequency, interval=interval, start_date=start)
    assert item.calculate_next_due_date(start) == expected


def test_next_due_date_respects_end_date(session):  # noqa: F811
    item = make_item(session, start_date=datetime(2025, 1, 10), end_date=datetime(2025, 2, 1))
    assert item.calculate_next_due_date(datetime(2025, 1, 10)) is None
    assert item.calculate_next_due_date(datetime(2025, 3, 1)) is None
    item.end_date = datetime(2025, 2, 10)
    assert item.calculate_next_due_date(datetime(2025, 1, 10)) == datetime(2025, 2, 10)


def test_new_item_defaults(session):  # noqa: F811
    item = make_item(session)
    assert item.category_name == "Digital"
    assert item.category_icon == "\U0001F4BB"
    assert item.next_due_date == item.start_date
    assert item.is_active is True
    assert item.interval == 1
    assert item.reminder_days_before == 1


def test_days_until_due_truncates(session):  # noqa: F811
    item = make_item(session, start_date=datetime(2025, 3, 15))
    assert item.days_until_due(datetime(2025, 3, 10, 12)) == 4
    assert item.days_until_due(datetime(2025, 3, 14, 12)) == 0
    # half a day overdue still counts as zero
    assert item.days_until_due(datetime(2025, 3, 15, 12)) == 0
    assert item.is_due_soon(datetime(2025, 3, 14, 1)) is True
    assert item.is_due_soon(datetime(2025, 3, 10)) is False
    assert item.is_due_soon(datetime(2025, 3, 17)) is False


def test_generate_transaction_advances_schedule(session):  # noqa: F811
    item = make_item(session, start_date=datetime(2025, 1, 31))
    txn = item.generate_transaction(session)

    assert txn.amount == 15.99
    assert txn.type == "expense"
    assert txn.category.name == "Digital"
    assert txn.date == datetime(2025, 1, 31)
    assert txn.note == "Recurring: Netflix"
    assert txn.payment_method == "Auto"
    assert txn.account == "Cash"
    assert txn.confidence == 1.0
    assert item.last_generated_date == datetime(2025, 1, 31)
    assert item.next_due_date == datetime(2025, 2, 28)
    assert item.is_active is True


def test_generate_transaction_missing_category(session):  # noqa: F811
    item = make_item(session)
    item.category_name = "Deleted"
    assert item.generate_transaction(session) is None
    assert item.next_due_date == datetime(2025, 3, 15)
    assert item.last_generated_date is None


def test_generate_transaction_deactivates_finished_schedule(session):  # noqa: F811
    item = make_item(session, start_date=datetime(2025, 1, 10), end_date=datetime(2025, 1, 20))
    assert item.generate_transaction(session) is not None
    assert item.is_active is False
    assert item.next_due_date == datetime(2025, 1, 10)


def test_generate_due_catches_up_one_period_per_call(session):  # noqa: F811
    manager = RecurringManager(session, clock=FakeClock(NOW))
    manager.add(make_item(session, start_date=datetime(2025, 1, 10)))

    counts = [manager.generate_due_transactions() for _ in range(4)]

    assert counts == [1, 1, 1, 0]
    dates = [t.date for t in session.query(Transaction).order_by(Transaction.date)]
    assert dates == [datetime(2025, 1, 10), datetime(2025, 2, 10), datetime(2025, 3, 10)]
    assert manager.recurring_transactions[0].next_due_date == datetime(2025, 4, 10)


def test_generate_due_skips_inactive_and_future(session):  # noqa: F811
    manager = RecurringManager(session, clock=FakeClock(NOW))
    paused = make_item(session, name="Gym", start_date=datetime(2025, 1, 1), is_active=False)
    manager.add(paused)
    manager.add(make_item(session, name="Rent"))
    assert manager.generate_due_transactions() == 0
    assert session.query(Transaction).count() == 0


def test_manager_sorted_and_views(session):  # noqa: F811
    manager = RecurringManager(session, clock=FakeClock(NOW))
    manager.add(make_item(session, name="Later", start_date=datetime(2025, 4, 1)))
    manager.add(make_item(session, name="Soon", start_date=datetime(2025, 3, 11)))
    manager.add(make_item(session, name="Off", start_date=datetime(2025, 3, 11), is_active=False))

    assert [r.name for r in manager.recurring_transactions][-1] == "Later"
    assert [r.name for r in manager.due_soon] == ["Soon"]
    assert {r.name for r in manager.active} == {"Later", "Soon"}


def test_schedule_reminder_for_expense(session):  # noqa: F811
    center = NotificationCenter(session)
    manager = RecurringManager(session, center, clock=FakeClock(NOW))
    item = make_item(session)
    manager.add(item)

    (request,) = center.pending()
    assert request.identifier == reminder_id(item)
    assert request.title == "Recurring Transaction Reminder"
    assert request.body == "Will be charged in 4 days: Netflix 15.99"
    assert request.fire_at == datetime(2025, 3, 14)
    assert request.user_info == {"recurring_id": item.id}


def test_schedule_reminder_for_income(session):  # noqa: F811
    center = NotificationCenter(session)
    manager = RecurringManager(session, center, clock=FakeClock(NOW))
    manager.add(
        make_item(
            session,
            name="Salary",
            category="Salary",
            type="income",
            amount=3000.0,
            start_date=datetime(2025, 3, 25),
            reminder_days_before=3,
        )
    )
    (request,) = center.pending()
    assert request.body == "Will be received in 14 days: Salary 3000.00"
    assert request.fire_at == datetime(2025, 3, 22)


def test_no_reminder_for_past_due(session):  # noqa: F811
    center = NotificationCenter(session)
    manager = RecurringManager(session, center, clock=FakeClock(NOW))
    manager.add(make_item(session, start_date=datetime(2025, 3, 1)))
    assert center.pending() == []


def test_toggle_and_delete_cancel_reminders(session):  # noqa: F811
    center = NotificationCenter(session)
    manager = RecurringManager(session, center, clock=FakeClock(NOW))
    item = make_item(session)
    manager.add(item)

    manager.toggle_active(item)
    assert item.is_active is False
    assert center.pending() == []

    manager.toggle_active(item)
    assert len(center.pending()) == 1

    manager.delete(item)
    assert center.pending() == []
    assert manager.recurring_transactions == []


def test_update_reschedules(session):  # noqa: F811
    clock = FakeClock(NOW)
    center = NotificationCenter(session)
    manager = RecurringManager(session, center, clock=clock)
    item = make_item(session)
    manager.add(item)

    item.next_due_date = datetime(2025, 3, 20)
    item.amount = 9.99
    manager.update(item)

    (request,) = center.pending()
    assert request.body == "Will be charged in 9 days: Netflix 9.99"
    assert item.updated_at == NOW


def test_background_scheduler_interval(session):  # noqa: F811
    clock = FakeClock(NOW)
    scheduler = BackgroundScheduler(session, clock)
    assert scheduler.next_run_at() is None
    assert scheduler.is_due() is True

    scheduler.schedule()
    assert scheduler.next_run_at() == NOW + timedelta(hours=1)
    assert scheduler.is_due() is False

    clock.now = NOW + timedelta(hours=1)
    assert scheduler.is_due() is True


def test_background_scheduler_run_generates(session):  # noqa: F811
    clock = FakeClock(NOW)
    RecurringManager(session, clock=clock).add(make_item(session, start_date=datetime(2025, 3, 1)))
    scheduler = BackgroundScheduler(session, clock)

    assert scheduler.run_if_due() == 1
    assert scheduler.run_if_due() is None
    clock.now = NOW + timedelta(hours=2)
    assert scheduler.run_if_due() == 0
    assert session.query(Transaction).filter_by(note="Recurring: Netflix").count() == 1
