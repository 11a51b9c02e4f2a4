import csv
from datetime import datetime

import pytest

from tests.helpers import session  # noqa: F401
from moneywise import transfer
from moneywise.models import Category, Transaction

HEADER = "date,amount,category,type,note,account,is_ai_generated\n"


def test_export_writes_header_and_quotes(session, tmp_path):  # noqa: F811
    food = session.query(Category).filter_by(name="Food & Dining").one()
    txns = [
        Transaction(
            amount=30.5,
            type="expense",
            category=food,
            account="Cash",
            date=datetime(2025, 1, 15, 12, 30),
            note="Lunch, with team",
            is_ai_generated=True,
        ),
        Transaction(amount=2000.0, type="income", account="Bank", date=datetime(2025, 1, 31), note=""),
    ]

    path = transfer.export(txns, tmp_path / "out.csv")

    with path.open(newline="") as fh:
        rows = list(csv.reader(fh))
    assert rows[0] == transfer.HEADER
    assert rows[1] == ["2025-01-15T12:30:00", "30.50", "Food & Dining", "expense", "Lunch, with team", "Cash", "true"]
    assert rows[2] == ["2025-01-31T00:00:00", "2000.00", "Uncategorized", "income", "", "Bank", "false"]
    assert '"Lunch, with team"' in path.read_text()


def test_export_defaults_to_temp_file():
    path = transfer.export([])
    try:
        assert path.name.startswith("Moneywise-")
        assert path.suffix == ".csv"
        assert path.read_text() == HEADER
    finally:
        path.unlink()


def test_import_creates_transactions_and_categories(session, tmp_path):  # noqa: F811
    src = tmp_path / "in.csv"
    src.write_text(
        HEADER
        + '2025-01-15T12:30:00,30.5,"Food & Dining",expense,"Lunch, cafe",Cash,true\n'
        + "2025-01-16,4.25,Snacks,expense,Chips,Cash,false\n"
        + "2025-01-31T09:00:00,2000,Consulting,income,Invoice 12,Bank,false\n"
    )

    result = transfer.import_csv(session, src, transfer.ImportStrategy.IMPORT_ALL)

    assert result == transfer.ImportResult(imported=3, skipped=0)
    txns = session.query(Transaction).order_by(Transaction.date).all()
    assert [t.note for t in txns] == ["Lunch, cafe", "Chips", "Invoice 12"]
    assert txns[0].is_ai_generated is True
    assert txns[0].category.name == "Food & Dining"
    assert txns[1].date == datetime(2025, 1, 16)
    consulting = session.query(Category).filter_by(name="Consulting").one()
    assert consulting.type == "income"
    assert consulting.icon == "❓"


def test_import_skips_bad_rows(session, tmp_path):  # noqa: F811
    src = tmp_path / "in.csv"
    src.write_text(
        HEADER
        + "2025-01-16,4.25,Snacks,expense\n"
        + "not a date,4.25,Snacks,expense,Chips,Cash,false\n"
        + "2025-01-16,abc,Snacks,expense,Chips,Cash,false\n"
        + "\n"
        + "2025-01-16,4.25,Snacks,expense,Chips,Cash,false\n"
    )
    result = transfer.import_csv(session, src)
    assert (result.imported, result.skipped) == (1, 3)


def test_import_skip_duplicates(session, tmp_path):  # noqa: F811
    session.add(Transaction(amount=4.25, type="expense", date=datetime(2025, 1, 16), note="Chips"))
    session.commit()
    src = tmp_path / "in.csv"
    row = "2025-01-16,4.25,Snacks,expense,Chips,Cash,false\n"
    src.write_text(HEADER + row + row + "2025-01-17,4.25,Snacks,expense,Chips,Cash,false\n")

    skipped = transfer.import_csv(session, src, transfer.ImportStrategy.SKIP_DUPLICATES)
    assert (skipped.imported, skipped.skipped) == (1, 2)

    everything = transfer.import_csv(session, src, transfer.ImportStrategy.IMPORT_ALL)
    assert (everything.imported, everything.skipped) == (3, 0)
    assert session.query(Transaction).count() == 5


def test_round_trip(session, tmp_path):  # noqa: F811
    session.add(Transaction(amount=12.0, type="expense", date=datetime(2025, 2, 1, 8, 15), note="Books, used"))
    session.commit()
    path = transfer.export(session.query(Transaction).all(), tmp_path / "rt.csv")
    result = transfer.import_csv(session, path)
    assert (result.imported, result.skipped) == (0, 1)


@pytest.mark.parametrize("content", ["", "\n\n", "amount,note\n12,x\n"])
def test_import_invalid_format(session, tmp_path, content):  # noqa: F811
    src = tmp_path / "bad.csv"
    src.write_text(content)
    with pytest.raises(transfer.InvalidFormatError):
        transfer.import_csv(session, src)


@pytest.mark.parametrize("header", [HEADER, " Date ,amount,category,type,note,account,is_ai_generated\n"])
def test_import_accepts_byte_order_mark(session, tmp_path, header):  # noqa: F811
    src = tmp_path / "excel.csv"
    src.write_text(header + "2025-01-15T12:30:00,30.50,Food & Dining,expense,Lunch,Cash,false\n", encoding="utf-8-sig")

    result = transfer.import_csv(session, src)

    assert (result.imported, result.skipped) == (1, 0)
    txn = session.query(Transaction).one()
    assert (txn.date, txn.amount, txn.category.name) == (datetime(2025, 1, 15, 12, 30), 30.5, "Food & Dining")
