import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from tests.helpers import get_temp_session, session  # noqa: F401
from moneywise import database
from moneywise.models import Category, SettingItem


def _use_engine(monkeypatch, engine):
    monkeypatch.setattr(database, "engine", engine)
    monkeypatch.setattr(database, "SessionLocal", sessionmaker(autoflush=False))


def test_init_db_adds_missing_columns(tmp_path, monkeypatch):
    # a database from before payment method and AI fields existed
    engine = create_engine(f"sqlite:///{tmp_path / 'legacy.db'}")
    with engine.begin() as conn:
        conn.execute(
            text(
                "CREATE TABLE transactions (id INTEGER PRIMARY KEY, amount FLOAT NOT NULL, "
                "type VARCHAR, category_id INTEGER, account VARCHAR, date DATETIME, "
                "note TEXT, created_at DATETIME)"
            )
        )
    _use_engine(monkeypatch, engine)

    database.init_db()

    with engine.connect() as conn:
        cols = [row[1] for row in conn.execute(text("PRAGMA table_info(transactions)"))]
        indexes = [row[1] for row in conn.execute(text("PRAGMA index_list(transactions)"))]
    assert {"payment_method", "is_ai_generated", "confidence"} <= set(cols)
    assert "ix_transactions_date" in indexes


def test_init_db_seeds_first_launch(tmp_path, monkeypatch):
    engine = create_engine(f"sqlite:///{tmp_path / 'fresh.db'}")
    _use_engine(monkeypatch, engine)

    database.init_db()
    database.init_db()

    with database.SessionLocal() as s:
        assert s.query(Category).count() == 12
        setting = s.query(SettingItem).filter_by(key="onboarding_completed").one()
        assert setting.value == "false"


def test_init_db_raises_when_store_unavailable(monkeypatch):
    def broken(engine):
        raise SQLAlchemyError("disk I/O error")

    monkeypatch.setattr(database, "inspect", broken)
    with pytest.raises(database.PersistenceError):
        database.init_db()


def test_bootstrap_defaults(session):  # noqa: F811
    cats = {c.name: c for c in session.query(Category).all()}
    assert len(cats) == 12
    assert cats["Salary"].type == "income"
    assert cats["Food & Dining"].icon == "\U0001F354"
    assert sum(1 for c in cats.values() if c.type == "expense") == 9


def test_bootstrap_migrates_legacy_icons():
    Session, path = get_temp_session()
    try:
        s = Session()
        s.add_all(
            [
                Category(name="Car", icon="car.fill", color_hex="#000000", type="expense"),
                Category(name="Side gig", icon="briefcase.fill", color_hex="#000000", type="income"),
                Category(name="Misc", icon="tag", color_hex="#000000", type="expense"),
                Category(name="Pets", icon="\U0001F436", color_hex="#000000", type="expense"),
            ]
        )
        s.commit()

        database.bootstrap(s)

        icons = {c.name: c.icon for c in s.query(Category).all()}
        assert icons["Car"] == "\U0001F697"
        assert icons["Side gig"] == database.INCOME_FALLBACK_ICON
        assert icons["Misc"] == database.EXPENSE_FALLBACK_ICON
        assert icons["Pets"] == "\U0001F436"
        # defaults are only seeded into an empty store
        assert s.query(Category).count() == 4
        assert database.migrate_category_icons(s) == 0
        s.close()
    finally:
        path.unlink()


@pytest.mark.parametrize(
    "icon, legacy",
    [
        ("car.fill", True),
        ("airplane", True),
        ("\U0001F354", False),
        ("\U0001F6CD\uFE0F", False),
        ("\U0001F468\u200d\U0001F469\u200d\U0001F467", False),
        ("$", False),
    ],
)
def test_is_symbol_name(icon, legacy):
    assert database.is_symbol_name(icon) is legacy


def test_save_safe_rolls_back(session):  # noqa: F811
    session.add(Category(name="Salary", icon="x", color_hex="#000000", type="income"))
    assert database.save_safe(session) is False
    assert session.query(Category).filter_by(name="Salary").count() == 1
