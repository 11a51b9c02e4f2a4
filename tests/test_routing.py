from datetime import datetime

import pytest

from tests.helpers import FakeClock, session  # noqa: F401
from moneywise.models import Category, RecurringTransaction, Transaction
from moneywise.notifications import NotificationRequest
from moneywise.routing import AppEnvironment, DeeplinkRouter, Route, Tab, ViewState


@pytest.mark.parametrize(
    "url, route",
    [
        ("moneywise://ai", Route.AI_ASSISTANT),
        ("moneywise://manual", Route.MANUAL_ENTRY),
        ("moneywise://goal", Route.GOAL),
        ("moneywise://settings?tab=ai", Route.SETTINGS),
    ],
)
def test_handle_url_accepts_known_hosts(url, route):
    router = DeeplinkRouter()
    assert router.handle_url(url) is True
    assert router.pending_route == route


@pytest.mark.parametrize("url", ["https://ai", "moneywise://budgets", "moneywise:ai", "not a url"])
def test_handle_url_rejects_others(url):
    router = DeeplinkRouter()
    assert router.handle_url(url) is False
    assert router.pending_route is None


@pytest.mark.parametrize(
    "url, tab, manual",
    [
        ("moneywise://ai", Tab.ASSISTANT, False),
        ("moneywise://goal", Tab.GOALS, False),
        ("moneywise://settings", Tab.HOME, False),
        ("moneywise://manual", Tab.REPORTS, True),
    ],
)
def test_consume_applies_route_once(url, tab, manual):
    router = DeeplinkRouter()
    router.handle_url(url)
    state = router.consume(ViewState(selected_tab=Tab.REPORTS))
    assert state.selected_tab == tab
    assert state.show_manual_entry is manual
    assert router.pending_route is None
    assert router.consume(ViewState()) == ViewState()


def test_app_environment_startup(session):  # noqa: F811
    clock = FakeClock(datetime(2025, 3, 12, 9, 0))
    env = AppEnvironment(session, clock=clock)
    digital = session.query(Category).filter_by(name="Digital").one()
    env.recurring.add(
        RecurringTransaction(
            category=digital, name="Cloud", amount=2.99, type="expense", start_date=datetime(2025, 3, 1)
        )
    )
    env.budgets.create(100.0)
    env.notifications.add(NotificationRequest("hello", "Moneywise", "Welcome", datetime(2025, 3, 12)))

    delivered = env.startup()

    assert [n.identifier for n in delivered] == ["hello"]
    assert session.query(Transaction).filter_by(note="Recurring: Cloud").count() == 1
    assert env.budgets.budgets[0].current_spending == 2.99
    # the refresh job is not due again within the hour
    assert env.startup() == []
    assert session.query(Transaction).count() == 1
