"""Tabs, ``moneywise://`` deep links and the shared app environment."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
import logging
from typing import Callable
from urllib.parse import urlsplit

from .managers import AIConfigurationStore, BudgetManager, CategoryManager, GoalManager
from .notifications import NotificationCenter, NotificationScheduler
from .recurring import BackgroundScheduler, RecurringManager

logger = logging.getLogger(__name__)

SCHEME = "moneywise"


class Tab(str, Enum):
    HOME = "home"
    ASSISTANT = "assistant"
    TRANSACTIONS = "transactions"
    REPORTS = "reports"
    GOALS = "goals"


class Route(str, Enum):
    AI_ASSISTANT = "ai"
    MANUAL_ENTRY = "manual"
    GOAL = "goal"
    SETTINGS = "settings"


@dataclass
class ViewState:
    """What the tab loop shows next."""

    selected_tab: Tab = Tab.HOME
    show_manual_entry: bool = False


class DeeplinkRouter:
    def __init__(self):
        self.pending_route: Route | None = None

    def handle_url(self, url: str) -> bool:
        """Remember the route for ``url``; return ``False`` if it is not ours."""
        parts = urlsplit(url)
        if parts.scheme != SCHEME or not parts.netloc:
            return False
        try:
            self.pending_route = Route(parts.netloc)
        except ValueError:
            logger.debug("Ignoring unknown deep link %s", url)
            return False
        return True

    def consume(self, state: ViewState) -> ViewState:
        """Apply the pending route to ``state`` and clear it."""
        route = self.pending_route
        if route is None:
            return state
        if route == Route.AI_ASSISTANT:
            state.selected_tab = Tab.ASSISTANT
        elif route == Route.MANUAL_ENTRY:
            state.show_manual_entry = True
        elif route == Route.GOAL:
            state.selected_tab = Tab.GOALS
        else:
            # settings are reached from Home
            state.selected_tab = Tab.HOME
        self.pending_route = None
        return state


@dataclass
class AppEnvironment:
    """Objects shared by every view, built once after ``init_db()``."""

    session: object
    clock: Callable[[], datetime] = datetime.now
    router: DeeplinkRouter = field(default_factory=DeeplinkRouter)
    notifications: NotificationCenter = field(init=False)
    reminders: NotificationScheduler = field(init=False)
    goals: GoalManager = field(init=False)
    categories: CategoryManager = field(init=False)
    ai_config: AIConfigurationStore = field(init=False)
    recurring: RecurringManager = field(init=False)
    budgets: BudgetManager = field(init=False)
    background: BackgroundScheduler = field(init=False)

    def __post_init__(self):
        self.notifications = NotificationCenter(self.session)
        self.reminders = NotificationScheduler(self.notifications, self.clock)
        self.goals = GoalManager(self.session)
        self.categories = CategoryManager(self.session)
        self.ai_config = AIConfigurationStore(self.session)
        self.recurring = RecurringManager(self.session, self.notifications, self.clock)
        self.budgets = BudgetManager(self.session, self.clock)
        self.background = BackgroundScheduler(self.session, self.clock)

    def startup(self) -> list:
        """Run the periodic refresh if due and return notifications to show."""
        generated = self.background.run_if_due(self.recurring)
        if generated:
            self.budgets.refresh_spending()
        return self.notifications.deliver_due(self.clock())
