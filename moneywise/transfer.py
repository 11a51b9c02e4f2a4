"""CSV import and export of transactions.

Exported files look like::

    date,amount,category,type,note,account,is_ai_generated
    2025-01-15T12:30:00,30.50,Food & Dining,expense,"Lunch, cafe",Cash,true
"""
from __future__ import annotations

import csv
from dataclasses import dataclass
from enum import Enum
import logging
from pathlib import Path
import tempfile
import uuid

from .database import save_safe
from .dates import parse_date
from .models import Transaction, TransactionType
from .services import category_named

logger = logging.getLogger(__name__)

HEADER = ["date", "amount", "category", "type", "note", "account", "is_ai_generated"]


class InvalidFormatError(ValueError):
    """The file is empty or lacks the ``date`` header column."""


class ImportStrategy(str, Enum):
    SKIP_DUPLICATES = "skip_duplicates"
    IMPORT_ALL = "import_all"


@dataclass
class ImportResult:
    imported: int
    skipped: int


def _row(txn: Transaction) -> list[str]:
    return [
        txn.date.replace(microsecond=0).isoformat(),
        f"{txn.amount:.2f}",
        txn.category.name if txn.category is not None else "Uncategorized",
        txn.type,
        txn.note or "",
        txn.account or "",
        "true" if txn.is_ai_generated else "false",
    ]


def export(transactions, path: Path | str | None = None) -> Path:
    """Write ``transactions`` to ``path`` and return it.

    Without a path a ``Moneywise-<uuid>.csv`` file is created in the
    temporary directory.
    """
    if path is None:
        path = Path(tempfile.gettempdir()) / f"Moneywise-{uuid.uuid4()}.csv"
    path = Path(path)
    with path.open("w", newline="", encoding="utf-8") as fh:
        writer = csv.writer(fh)
        writer.writerow(HEADER)
        count = 0
        for txn in transactions:
            writer.writerow(_row(txn))
            count += 1
    logger.info("Exported %d transactions to %s", count, path)
    return path


def is_duplicate(session, amount: float, note: str, date) -> bool:
    return (
        session.query(Transaction)
        .filter_by(amount=amount, note=note, date=date)
        .first()
        is not None
    )


def import_csv(
    session, path: Path | str, strategy: ImportStrategy = ImportStrategy.SKIP_DUPLICATES
) -> ImportResult:
    """Insert the rows of ``path`` as transactions.

    Rows with fewer than seven columns or an unreadable date or amount are
    skipped, as are duplicates under ``SKIP_DUPLICATES``.
    """
    # utf-8-sig drops the byte order mark spreadsheet tools prepend
    with Path(path).open(newline="", encoding="utf-8-sig") as fh:
        rows = [r for r in csv.reader(fh) if any(cell.strip() for cell in r)]
    if not rows or not any(cell.strip().lower() == "date" for cell in rows[0]):
        raise InvalidFormatError("CSV file is missing the date header")

    imported = skipped = 0
    for columns in rows[1:]:
        if len(columns) < len(HEADER):
            skipped += 1
            continue
        try:
            date = parse_date(columns[0])
            amount = float(columns[1])
        except ValueError:
            skipped += 1
            continue
        note = columns[4]
        if strategy == ImportStrategy.SKIP_DUPLICATES and is_duplicate(session, amount, note, date):
            skipped += 1
            continue
        kind = columns[3] if columns[3] in ("expense", "income") else TransactionType.EXPENSE.value
        session.add(
            Transaction(
                amount=amount,
                type=kind,
                category=category_named(session, columns[2].strip(), kind),
                account=columns[5] or "Cash",
                date=date,
                note=note,
                is_ai_generated=columns[6].strip().lower() == "true",
            )
        )
        # flush so later rows see earlier ones as duplicates
        session.flush()
        imported += 1

    save_safe(session)
    logger.info("Imported %d transactions, skipped %d", imported, skipped)
    return ImportResult(imported=imported, skipped=skipped)
