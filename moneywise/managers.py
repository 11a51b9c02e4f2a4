"""Observable stores wrapping create/read/update/delete for the UI."""
from __future__ import annotations

from datetime import datetime
import logging
import os
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError

from .database import save_safe
from .dates import period_bounds
from .models import (
    AIUsageStats,
    Budget,
    Category,
    Goal,
    RecurringTransaction,
    SettingKey,
    Transaction,
    TransactionType,
)
from .services import category_named, get_setting, set_setting, usage_stats_record

logger = logging.getLogger(__name__)

GEMINI_TUTORIAL_URL = "https://ai.google.dev/gemini-api/docs"


class GoalManager:
    """Savings goals sorted by deadline."""

    def __init__(self, session):
        self.session = session
        self.goals: list[Goal] = []
        self.reload()

    def reload(self) -> None:
        try:
            self.goals = self.session.query(Goal).order_by(Goal.deadline).all()
        except SQLAlchemyError as exc:
            logger.error("Failed to fetch goals: %s", exc)
            self.session.rollback()

    def add_goal(self, goal: Goal) -> None:
        self.session.add(goal)
        save_safe(self.session)
        self.reload()

    def update_goal(self, goal: Goal, mutate: Callable[[Goal], None]) -> None:
        mutate(goal)
        save_safe(self.session)
        self.reload()

    def delete(self, goal: Goal) -> None:
        self.session.delete(goal)
        save_safe(self.session)
        self.reload()

    def add_funds(self, goal: Goal, amount: float, when: datetime | None = None) -> bool:
        """Move ``amount`` into ``goal`` and record it as a Savings expense."""
        if amount <= 0:
            raise ValueError("Amount must be greater than 0")
        goal.current_amount = (goal.current_amount or 0.0) + amount
        self.session.add(
            Transaction(
                amount=amount,
                type=TransactionType.EXPENSE.value,
                category=category_named(self.session, "Savings", TransactionType.EXPENSE),
                account="Cash",
                date=when or datetime.now(),
                note=f"Goal funding: {goal.name}",
            )
        )
        ok = save_safe(self.session)
        self.reload()
        return ok


class CategoryManager:
    """Categories sorted by name.

    Recurring items refer to their category by name, so renaming a category
    renames it on them too. Deleting a category leaves its transactions
    uncategorised and removes budgets scoped to it.
    """

    def __init__(self, session):
        self.session = session
        self.categories: list[Category] = []
        self.reload()

    def reload(self) -> None:
        try:
            self.categories = self.session.query(Category).order_by(Category.name).all()
        except SQLAlchemyError as exc:
            logger.error("Failed to fetch categories: %s", exc)
            self.session.rollback()

    def save(
        self,
        category: Category | None,
        name: str,
        icon: str,
        color_hex: str,
        type: TransactionType | str,
    ) -> Category:
        """Create a category, or update ``category`` in place.

        Raises ``ValueError`` for an empty name or one another category uses.
        """
        name = (name or "").strip()
        if not name:
            raise ValueError("Category name is required")
        clash = self.session.query(Category).filter(Category.name == name)
        if category is not None and category.id is not None:
            clash = clash.filter(Category.id != category.id)
        if clash.first() is not None:
            raise ValueError(f"A category named {name} already exists")

        kind = type.value if isinstance(type, TransactionType) else type
        if category is None:
            category = Category(name=name, icon=icon, color_hex=color_hex, type=kind)
            self.session.add(category)
        else:
            linked = (
                self.session.query(RecurringTransaction)
                .filter_by(category_name=category.name)
                .all()
            )
            for recurring in linked:
                recurring.category_name = name
                recurring.category_icon = icon
            category.name, category.icon = name, icon
            category.color_hex, category.type = color_hex, kind
        save_safe(self.session)
        self.reload()
        return category

    def delete(self, category: Category) -> None:
        for txn in self.session.query(Transaction).filter_by(category_id=category.id):
            txn.category = None
        for budget in self.session.query(Budget).filter_by(category_id=category.id):
            self.session.delete(budget)
        self.session.delete(category)
        if save_safe(self.session):
            logger.info("Deleted category %s", category.name)
        self.reload()


class KeychainService:
    """Secret storage for API keys.

    A value exported in the environment takes precedence and is read-only;
    otherwise the secret lives in the settings table.
    """

    ENV_VARS = {SettingKey.GEMINI_API_KEY: "MONEYWISE_GEMINI_API_KEY"}

    def __init__(self, session, environ=None):
        self.session = session
        self.environ = os.environ if environ is None else environ

    def set(self, value: str, key: SettingKey = SettingKey.GEMINI_API_KEY) -> None:
        if not set_setting(self.session, key, value):
            logger.error("Failed to store secret for key %r", key.value)

    def value(self, key: SettingKey = SettingKey.GEMINI_API_KEY) -> str | None:
        env_name = self.ENV_VARS.get(key)
        if env_name and self.environ.get(env_name):
            return self.environ[env_name]
        try:
            return get_setting(self.session, key) or None
        except SQLAlchemyError as exc:
            logger.error("Failed to read secret for key %r: %s", key.value, exc)
            return None

    def delete(self, key: SettingKey = SettingKey.GEMINI_API_KEY) -> None:
        if not set_setting(self.session, key, None):
            logger.error("Failed to delete secret for key %r", key.value)


class AIConfigurationStore:
    """Gemini API key plus cumulative token usage."""

    tutorial_url = GEMINI_TUTORIAL_URL

    def __init__(self, session, keychain: KeychainService | None = None):
        self.session = session
        self.keychain = keychain if keychain is not None else KeychainService(session)
        self._api_key = self.keychain.value()
        self.stats: AIUsageStats | None = usage_stats_record(session)

    @property
    def api_key(self) -> str | None:
        return self._api_key

    @api_key.setter
    def api_key(self, value: str | None) -> None:
        self._api_key = value
        if value:
            self.keychain.set(value)
        else:
            self.keychain.delete()

    def record_usage(self, input: int, output: int) -> None:
        stats = self.stats
        if stats is None:
            stats = AIUsageStats()
            self.session.add(stats)
        stats.input_tokens += input
        stats.output_tokens += output
        stats.total_calls += 1
        stats.date = datetime.now()
        save_safe(self.session)
        self.stats = stats

    def reset_usage(self) -> None:
        if self.stats is None:
            return
        self.stats.input_tokens = 0
        self.stats.output_tokens = 0
        self.stats.total_calls = 0
        self.stats.date = datetime.now()
        save_safe(self.session)


class BudgetManager:
    def __init__(self, session, clock: Callable[[], datetime] = datetime.now):
        self.session = session
        self.clock = clock
        self.budgets: list[Budget] = []
        self.reload()

    def reload(self) -> None:
        try:
            self.budgets = (
                self.session.query(Budget).order_by(Budget.start_date.desc()).all()
            )
        except SQLAlchemyError as exc:
            logger.error("Failed to fetch budgets: %s", exc)
            self.session.rollback()

    @property
    def active(self) -> list[Budget]:
        now = self.clock()
        return [b for b in self.budgets if b.is_active(now)]

    @property
    def inactive(self) -> list[Budget]:
        now = self.clock()
        return [b for b in self.budgets if b.is_enabled and not b.is_active(now)]

    @property
    def over_budget_count(self) -> int:
        return sum(1 for b in self.active if b.is_over_budget)

    def create(self, limit: float, period: str = "monthly", category=None) -> Budget:
        """Add a budget covering the current ``period``."""
        start, end = period_bounds(self.clock(), period)
        budget = Budget(
            limit=limit,
            period=period,
            category=category,
            start_date=start,
            end_date=end,
            current_spending=0.0,
            is_enabled=True,
        )
        self.add(budget)
        return budget

    def add(self, budget: Budget) -> None:
        self.session.add(budget)
        save_safe(self.session)
        self.refresh_spending()

    def delete(self, budget: Budget) -> None:
        self.session.delete(budget)
        save_safe(self.session)
        self.reload()

    def spending_for(self, budget: Budget) -> float:
        query = self.session.query(Transaction).filter(
            Transaction.type == TransactionType.EXPENSE.value,
            Transaction.date >= budget.start_date,
            Transaction.date <= budget.end_date,
        )
        if budget.category_id is not None:
            query = query.filter(Transaction.category_id == budget.category_id)
        return sum(t.amount for t in query.all())

    def refresh_spending(self) -> None:
        """Recompute ``current_spending`` for every budget from its transactions."""
        self.reload()
        for budget in self.budgets:
            budget.current_spending = self.spending_for(budget)
        save_safe(self.session)
