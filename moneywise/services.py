from __future__ import annotations

from collections import defaultdict
from datetime import datetime
import logging

from sqlalchemy import func

from .database import save_safe
from .models import (
    AIUsageStats,
    Category,
    SettingItem,
    SettingKey,
    Transaction,
    TransactionType,
)

logger = logging.getLogger(__name__)

UNKNOWN_CATEGORY_ICON = "❓"
UNKNOWN_CATEGORY_COLOR = "#94A3B8"


def category_named(
    session, name: str | None, type: TransactionType | str = TransactionType.EXPENSE
) -> Category | None:
    """Find a category by exact name, creating it when missing.

    Empty names return ``None``. A created category is added to ``session``
    but not committed.
    """
    if not name:
        return None
    match = session.query(Category).filter_by(name=name).first()
    if match is not None:
        return match
    kind = type.value if isinstance(type, TransactionType) else type
    category = Category(
        name=name, icon=UNKNOWN_CATEGORY_ICON, color_hex=UNKNOWN_CATEGORY_COLOR, type=kind
    )
    session.add(category)
    return category


def usage_stats_record(session) -> AIUsageStats:
    """Return the single usage-stats row, creating it on first use."""
    stats = session.query(AIUsageStats).order_by(AIUsageStats.id).first()
    if stats is not None:
        return stats
    stats = AIUsageStats()
    session.add(stats)
    save_safe(session)
    return stats


def get_setting(session, key: SettingKey | str, default: str | None = None) -> str | None:
    name = key.value if isinstance(key, SettingKey) else key
    item = session.query(SettingItem).filter_by(key=name).first()
    return item.value if item is not None else default


def set_setting(session, key: SettingKey | str, value: str | None) -> bool:
    """Store ``value`` under ``key``; ``None`` removes the row."""
    name = key.value if isinstance(key, SettingKey) else key
    item = session.query(SettingItem).filter_by(key=name).first()
    if value is None:
        if item is not None:
            session.delete(item)
    elif item is None:
        session.add(SettingItem(key=name, value=value))
    else:
        item.value = value
    return save_safe(session)


def transactions_between(session, start: datetime, end: datetime) -> list[Transaction]:
    return (
        session.query(Transaction)
        .filter(Transaction.date >= start, Transaction.date <= end)
        .order_by(Transaction.date.desc())
        .all()
    )


def totals_between(session, start: datetime, end: datetime) -> dict[str, float]:
    """Return income, expense and net totals for ``[start, end]``."""
    rows = (
        session.query(Transaction.type, func.coalesce(func.sum(Transaction.amount), 0.0))
        .filter(Transaction.date >= start, Transaction.date <= end)
        .group_by(Transaction.type)
        .all()
    )
    totals = {TransactionType.INCOME.value: 0.0, TransactionType.EXPENSE.value: 0.0}
    for kind, amount in rows:
        totals[kind] = float(amount)
    totals["net"] = totals["income"] - totals["expense"]
    return totals


def spending_by_category(
    session, start: datetime, end: datetime
) -> list[tuple[str, str, float]]:
    """Expense totals per category as ``(icon, name, amount)``, largest first."""
    sums: dict[tuple[str, str], float] = defaultdict(float)
    for txn in transactions_between(session, start, end):
        if txn.type != TransactionType.EXPENSE:
            continue
        if txn.category is not None:
            key = (txn.category.icon, txn.category.name)
        else:
            key = (UNKNOWN_CATEGORY_ICON, "Uncategorized")
        sums[key] += txn.amount
    return sorted(
        ((icon, name, amount) for (icon, name), amount in sums.items()),
        key=lambda row: row[2],
        reverse=True,
    )
