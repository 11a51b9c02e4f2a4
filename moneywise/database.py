import logging

from sqlalchemy import create_engine, text, inspect
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

from .config import database_url

logger = logging.getLogger(__name__)


class PersistenceError(RuntimeError):
    """The data store could not be opened; the app cannot run without it."""


def make_engine(url: str):
    if url.endswith(":memory:"):
        # one shared connection so every session sees the same in-memory store
        return create_engine(
            url,
            future=True,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_engine(url, echo=False, future=True)


engine = make_engine(database_url())
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)

Base = declarative_base()

REQUIRED_TABLES = {
    "categories",
    "transactions",
    "budgets",
    "goals",
    "ai_usage_stats",
    "settings",
    "ai_conversations",
    "ai_messages",
    "recurring_transactions",
    "pending_notifications",
}

# Columns added after the first released schema; backfilled on startup.
ADDED_COLUMNS = {
    "transactions": [
        ("payment_method", "VARCHAR DEFAULT ''"),
        ("is_ai_generated", "BOOLEAN DEFAULT 0"),
        ("confidence", "FLOAT DEFAULT 0"),
    ],
    "goals": [("note", "TEXT DEFAULT ''")],
    "recurring_transactions": [
        ("interval", "INTEGER DEFAULT 1"),
        ("end_date", "DATETIME"),
        ("reminder_days_before", "INTEGER DEFAULT 1"),
    ],
}

SYMBOL_TO_EMOJI = {
    "fork.knife": "\U0001F354",
    "car.fill": "\U0001F697",
    "bag.fill": "\U0001F6CD\uFE0F",
    "desktopcomputer": "\U0001F4BB",
    "film.fill": "\U0001F3AC",
    "heart.text.square.fill": "\U0001F3E5",
    "house.fill": "\U0001F3E0",
    "graduationcap.fill": "\U0001F393",
    "dollarsign.circle.fill": "\U0001F4B0",
    "chart.line.uptrend.xyaxis": "\U0001F4C8",
    "banknote.fill": "\U0001F4B5",
    "creditcard.fill": "\U0001F4B3",
    "cart.fill": "\U0001F6D2",
    "gamecontroller.fill": "\U0001F3AE",
    "tram.fill": "\U0001F68B",
    "airplane": "\u2708\uFE0F",
    "cross.case.fill": "\U0001F4BC",
    "gift.fill": "\U0001F381",
    "wifi": "\U0001F6DC",
    "phone.fill": "\U0001F4F1",
}
INCOME_FALLBACK_ICON = "\U0001F4B0"
EXPENSE_FALLBACK_ICON = "\U0001F3F7\uFE0F"


def save_safe(session) -> bool:
    """Commit ``session``; log and roll back instead of raising on failure."""
    try:
        session.commit()
        return True
    except SQLAlchemyError as exc:
        logger.error("Database save failed: %s", exc)
        session.rollback()
        return False


def is_symbol_name(icon: str) -> bool:
    """Return ``True`` for legacy icon names such as ``car.fill``.

    Emoji are left alone, including multi code point sequences.
    """
    return "." in icon or (icon.isascii() and len(icon) > 2)


def migrate_category_icons(session) -> int:
    """Replace legacy symbol-name icons with emoji; return the number changed."""
    from .models import Category, TransactionType

    changed = 0
    for category in session.query(Category).all():
        if not is_symbol_name(category.icon or ""):
            continue
        emoji = SYMBOL_TO_EMOJI.get(category.icon)
        if emoji is None:
            emoji = (
                INCOME_FALLBACK_ICON
                if category.type == TransactionType.INCOME
                else EXPENSE_FALLBACK_ICON
            )
        category.icon = emoji
        changed += 1
    if changed:
        session.commit()
        logger.info("Migrated %d category icons to emoji", changed)
    return changed


def bootstrap(session) -> None:
    """Seed default data on first launch and run one-time data migrations."""
    from .models import Category, SettingItem, SettingKey

    try:
        if session.query(Category).count() == 0:
            session.add_all(Category.defaults())
            session.commit()
        else:
            migrate_category_icons(session)

        if session.query(SettingItem).count() == 0:
            session.add(
                SettingItem(key=SettingKey.ONBOARDING_COMPLETED.value, value="false")
            )
            session.commit()
    except SQLAlchemyError as exc:
        logger.error("Bootstrap failed: %s", exc)
        session.rollback()


def _migrate_columns(conn) -> None:
    for table, columns in ADDED_COLUMNS.items():
        cols = [r[1] for r in conn.execute(text(f"PRAGMA table_info({table})"))]
        for name, ddl in columns:
            if name not in cols:
                conn.execute(text(f'ALTER TABLE {table} ADD COLUMN "{name}" {ddl}'))
                logger.info("Added column %s.%s", table, name)
    conn.execute(
        text(
            "CREATE INDEX IF NOT EXISTS ix_transactions_date ON transactions(date)"
        )
    )
    conn.execute(
        text(
            "CREATE INDEX IF NOT EXISTS ix_recurring_transactions_next_due_date "
            "ON recurring_transactions(next_due_date)"
        )
    )


def init_db() -> None:
    """Create tables, apply column migrations and seed first-launch data."""
    from . import models  # noqa: F401

    try:
        insp = inspect(engine)
        existing = set(insp.get_table_names())
        if not REQUIRED_TABLES.issubset(existing):
            Base.metadata.create_all(engine)
        with engine.begin() as conn:
            _migrate_columns(conn)
    except SQLAlchemyError as exc:
        raise PersistenceError(f"Database initialization failed: {exc}") from exc

    SessionLocal.configure(bind=engine)
    with SessionLocal() as session:
        bootstrap(session)
