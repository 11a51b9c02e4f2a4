from __future__ import annotations

from datetime import datetime, timedelta
from enum import Enum
import logging

from sqlalchemy import (
    Column,
    Integer,
    String,
    Float,
    DateTime,
    Boolean,
    ForeignKey,
    Text,
    Index,
)
from sqlalchemy.orm import relationship

from .database import Base
from .dates import add_months, whole_days_between

logger = logging.getLogger(__name__)


class TransactionType(str, Enum):
    EXPENSE = "expense"
    INCOME = "income"


class RecurringFrequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


class BudgetPeriod(str, Enum):
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class SettingKey(str, Enum):
    GEMINI_API_KEY = "gemini_api_key"
    ONBOARDING_COMPLETED = "onboarding_completed"
    LAST_BACKUP_DATE = "last_backup_date"
    AUTO_IMPORT_DUPLICATES = "auto_import_duplicates"
    LAST_TOKEN_SYNC = "last_token_sync"
    NEXT_REFRESH_AT = "next_refresh_at"


DEFAULT_CATEGORIES = [
    ("Food & Dining", "\U0001F354", "#F97316", TransactionType.EXPENSE),
    ("Transport", "\U0001F697", "#3B82F6", TransactionType.EXPENSE),
    ("Shopping", "\U0001F6CD\uFE0F", "#EC4899", TransactionType.EXPENSE),
    ("Digital", "\U0001F4BB", "#8B5CF6", TransactionType.EXPENSE),
    ("Entertainment", "\U0001F3AC", "#F59E0B", TransactionType.EXPENSE),
    ("Healthcare", "\U0001F3E5", "#EF4444", TransactionType.EXPENSE),
    ("Housing", "\U0001F3E0", "#10B981", TransactionType.EXPENSE),
    ("Education", "\U0001F393", "#6366F1", TransactionType.EXPENSE),
    ("Savings", "\U0001F4B0", "#10B981", TransactionType.EXPENSE),
    ("Salary", "\U0001F4B5", "#22C55E", TransactionType.INCOME),
    ("Investment", "\U0001F4C8", "#14B8A6", TransactionType.INCOME),
    ("Other Income", "\U0001F4B8", "#059669", TransactionType.INCOME),
]


class Category(Base):
    """Spending or income category shown with an emoji icon."""

    __tablename__ = "categories"

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False, unique=True)
    icon = Column(String, nullable=False, default="\u2753")
    color_hex = Column(String(9), nullable=False, default="#94A3B8")
    type = Column(String, nullable=False, default=TransactionType.EXPENSE.value)

    @classmethod
    def defaults(cls) -> list["Category"]:
        return [
            cls(name=name, icon=icon, color_hex=color, type=kind.value)
            for name, icon, color, kind in DEFAULT_CATEGORIES
        ]


class Transaction(Base):
    """A single income or expense entry."""

    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, index=True)
    amount = Column(Float, nullable=False)
    type = Column(String, nullable=False, default=TransactionType.EXPENSE.value)
    category_id = Column(Integer, ForeignKey("categories.id"), index=True)
    account = Column(String, nullable=False, default="Cash")
    date = Column(DateTime, nullable=False, default=datetime.now)
    note = Column(Text, nullable=False, default="")
    payment_method = Column(String, nullable=False, default="")
    is_ai_generated = Column(Boolean, nullable=False, default=False)
    confidence = Column(Float, nullable=False, default=0.0)
    created_at = Column(DateTime, default=datetime.now)

    category = relationship("Category")

    @property
    def signed_amount(self) -> float:
        return self.amount if self.type == TransactionType.INCOME else -self.amount


class Budget(Base):
    """Spending limit for a period, optionally scoped to one category."""

    __tablename__ = "budgets"

    id = Column(Integer, primary_key=True)
    category_id = Column(Integer, ForeignKey("categories.id"), index=True)
    period = Column(String, nullable=False, default=BudgetPeriod.MONTHLY.value)
    limit = Column(Float, nullable=False)
    current_spending = Column(Float, nullable=False, default=0.0)
    start_date = Column(DateTime, nullable=False, default=datetime.now)
    end_date = Column(DateTime, nullable=False)
    is_enabled = Column(Boolean, nullable=False, default=True)

    category = relationship("Category")

    @property
    def remaining_amount(self) -> float:
        return self.limit - (self.current_spending or 0.0)

    @property
    def percentage_used(self) -> float:
        """Fraction of the limit spent, capped at 1.0."""
        if self.limit <= 0:
            return 0.0
        return min((self.current_spending or 0.0) / self.limit, 1.0)

    @property
    def is_over_budget(self) -> bool:
        return (self.current_spending or 0.0) > self.limit

    def is_active(self, now: datetime | None = None) -> bool:
        now = now or datetime.now()
        return bool(self.is_enabled) and self.start_date <= now <= self.end_date

    @property
    def display_name(self) -> str:
        return self.category.name if self.category is not None else "Total Budget"


class Goal(Base):
    """A savings goal with a target amount and deadline."""

    __tablename__ = "goals"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    target_amount = Column(Float, nullable=False)
    current_amount = Column(Float, nullable=False, default=0.0)
    deadline = Column(DateTime, nullable=False)
    note = Column(Text, nullable=False, default="")

    @property
    def progress(self) -> float:
        if not self.target_amount or self.target_amount <= 0:
            return 0.0
        return min((self.current_amount or 0.0) / self.target_amount, 1.0)


class AIUsageStats(Base):
    __tablename__ = "ai_usage_stats"

    id = Column(Integer, primary_key=True)
    date = Column(DateTime, nullable=False, default=datetime.now)
    input_tokens = Column(Integer, nullable=False, default=0)
    output_tokens = Column(Integer, nullable=False, default=0)
    total_calls = Column(Integer, nullable=False, default=0)

    def __init__(self, **kwargs):
        kwargs.setdefault("date", datetime.now())
        kwargs.setdefault("input_tokens", 0)
        kwargs.setdefault("output_tokens", 0)
        kwargs.setdefault("total_calls", 0)
        super().__init__(**kwargs)


class SettingItem(Base):
    """Key/value user setting."""

    __tablename__ = "settings"

    id = Column(Integer, primary_key=True)
    key = Column(String, nullable=False, unique=True)
    value = Column(Text, nullable=False, default="")


class AIConversation(Base):
    __tablename__ = "ai_conversations"

    id = Column(Integer, primary_key=True)
    title = Column(String, nullable=False, default="")
    is_archived = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=datetime.now)
    updated_at = Column(DateTime, nullable=False, default=datetime.now)

    messages = relationship(
        "AIMessage",
        back_populates="conversation",
        cascade="all, delete-orphan",
        order_by="AIMessage.timestamp",
    )

    @property
    def sorted_messages(self) -> list["AIMessage"]:
        return sorted(self.messages, key=lambda m: m.timestamp)


class AIMessage(Base):
    __tablename__ = "ai_messages"

    id = Column(Integer, primary_key=True)
    conversation_id = Column(
        Integer, ForeignKey("ai_conversations.id"), nullable=False, index=True
    )
    role = Column(String, nullable=False)
    content = Column(Text, nullable=False, default="")
    timestamp = Column(DateTime, nullable=False, default=datetime.now)
    input_tokens = Column(Integer, nullable=False, default=0)
    output_tokens = Column(Integer, nullable=False, default=0)

    conversation = relationship("AIConversation", back_populates="messages")


class RecurringTransaction(Base):
    """A bill or income that repeats on a fixed schedule."""

    __tablename__ = "recurring_transactions"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    amount = Column(Float, nullable=False)
    # category is stored by name so deleting a category does not orphan the schedule
    category_name = Column(String, nullable=False)
    category_icon = Column(String, nullable=False, default="")
    type = Column(String, nullable=False, default=TransactionType.EXPENSE.value)

    frequency = Column(String, nullable=False, default=RecurringFrequency.MONTHLY.value)
    interval = Column(Integer, nullable=False, default=1)
    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime)
    last_generated_date = Column(DateTime)
    next_due_date = Column(DateTime, nullable=False)

    is_active = Column(Boolean, nullable=False, default=True)
    reminder_days_before = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, nullable=False, default=datetime.now)
    updated_at = Column(DateTime, nullable=False, default=datetime.now)

    def __init__(self, category: Category | None = None, **kwargs):
        if category is not None:
            kwargs.setdefault("category_name", category.name)
            kwargs.setdefault("category_icon", category.icon)
        for key in ("type", "frequency"):
            if isinstance(kwargs.get(key), Enum):
                kwargs[key] = kwargs[key].value
        if "start_date" in kwargs:
            kwargs.setdefault("next_due_date", kwargs["start_date"])
        now = datetime.now()
        kwargs.setdefault("interval", 1)
        kwargs.setdefault("is_active", True)
        kwargs.setdefault("reminder_days_before", 1)
        kwargs.setdefault("created_at", now)
        kwargs.setdefault("updated_at", now)
        super().__init__(**kwargs)

    def calculate_next_due_date(self, from_date: datetime) -> datetime | None:
        """Return the occurrence after ``from_date`` or ``None`` past the end date."""
        if self.end_date is not None and from_date > self.end_date:
            return None

        step = max(1, self.interval or 1)
        freq = self.frequency
        if freq == RecurringFrequency.DAILY:
            nxt = from_date + timedelta(days=step)
        elif freq == RecurringFrequency.WEEKLY:
            nxt = from_date + timedelta(weeks=step)
        elif freq == RecurringFrequency.BIWEEKLY:
            nxt = from_date + timedelta(weeks=2 * step)
        elif freq == RecurringFrequency.QUARTERLY:
            nxt = add_months(from_date, 3 * step)
        elif freq == RecurringFrequency.YEARLY:
            nxt = add_months(from_date, 12 * step)
        else:
            # unknown values fall back to monthly
            nxt = add_months(from_date, step)

        if self.end_date is not None and nxt > self.end_date:
            return None
        return nxt

    def days_until_due(self, now: datetime | None = None) -> int:
        return whole_days_between(now or datetime.now(), self.next_due_date)

    def is_due_soon(self, now: datetime | None = None) -> bool:
        days = self.days_until_due(now)
        return 0 <= days <= self.reminder_days_before

    def generate_transaction(self, session) -> Transaction | None:
        """Build the transaction for the current due date and advance the schedule.

        The returned transaction is not added to ``session``. ``None`` means
        the category no longer exists and nothing was changed.
        """
        category = session.query(Category).filter_by(name=self.category_name).first()
        if category is None:
            logger.warning(
                "Skipping recurring %r: category %r not found", self.name, self.category_name
            )
            return None

        txn = Transaction(
            amount=self.amount,
            type=self.type,
            category=category,
            account="Cash",
            date=self.next_due_date,
            note=f"Recurring: {self.name}",
            payment_method="Auto",
            is_ai_generated=False,
            confidence=1.0,
        )

        self.last_generated_date = self.next_due_date
        nxt = self.calculate_next_due_date(self.next_due_date)
        if nxt is not None:
            self.next_due_date = nxt
        else:
            self.is_active = False
        self.updated_at = datetime.now()
        return txn


class PendingNotification(Base):
    """Local reminder waiting to be delivered by the app."""

    __tablename__ = "pending_notifications"

    id = Column(Integer, primary_key=True)
    identifier = Column(String, nullable=False, unique=True)
    title = Column(String, nullable=False)
    body = Column(Text, nullable=False, default="")
    fire_at = Column(DateTime, nullable=False)
    repeat = Column(String)  # None, "daily" or "weekly"
    user_info = Column(Text, nullable=False, default="{}")

    __table_args__ = (Index("ix_pending_notifications_fire_at", "fire_at"),)
