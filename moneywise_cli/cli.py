"""Quick-entry command line interface for Moneywise."""
from __future__ import annotations

from datetime import datetime

import questionary

from moneywise.assistant import AIService
from moneywise.database import SessionLocal, init_db, save_safe
from moneywise.gemini import AIServiceError
from moneywise.logging_config import setup_logging
from moneywise.managers import AIConfigurationStore
from moneywise.models import Transaction, TransactionType
from moneywise.recurring import RecurringManager
from moneywise.services import category_named


def enter_transaction(session) -> None:
    kind = questionary.select(
        "Type:", choices=[TransactionType.EXPENSE.value, TransactionType.INCOME.value]
    ).ask()
    if kind is None:
        return
    amount_str = questionary.text("Amount:").ask()
    try:
        amount = abs(float(amount_str))
    except (TypeError, ValueError):
        print("Invalid amount. Please enter a numeric value.")
        return
    category = questionary.text("Category (empty for none):").ask()
    note = questionary.text("Note:").ask() or ""
    session.add(
        Transaction(
            amount=amount,
            type=kind,
            category=category_named(session, category, kind),
            account="Cash",
            date=datetime.now(),
            note=note,
        )
    )
    if save_safe(session):
        print("Transaction saved.\n")


def ai_entry(session, ai: AIService) -> None:
    prompt = questionary.text("Describe the transaction:").ask()
    if not prompt:
        return
    try:
        txn = ai.parse(prompt)
    except AIServiceError as exc:
        print(f"{exc}\n")
        return
    category = txn.category.name if txn.category is not None else "Uncategorized"
    print(f"{txn.date:%Y-%m-%d} {txn.type} {txn.amount:.2f} [{category}] {txn.note}")
    if not questionary.confirm("Save this transaction?").ask():
        session.rollback()
        return
    session.add(txn)
    if save_safe(session):
        print("Transaction saved.\n")


def list_transactions(session, limit: int = 20) -> None:
    txns = session.query(Transaction).order_by(Transaction.date.desc()).limit(limit).all()
    if not txns:
        print("No transactions recorded.\n")
        return
    for txn in txns:
        sign = "+" if txn.type == TransactionType.INCOME else "-"
        name = txn.category.name if txn.category is not None else "Uncategorized"
        print(f"{txn.date:%Y-%m-%d %H:%M} - {name}: {txn.note} {sign}{txn.amount:.2f}")
    print()


def main() -> None:
    """Entry point for ``moneywise-quick``."""
    setup_logging()
    init_db()
    with SessionLocal() as session:
        ai = AIService(session, AIConfigurationStore(session))
        while True:
            choice = questionary.select(
                "Choose an option:",
                choices=[
                    "Enter transaction",
                    "AI entry",
                    "List transactions",
                    "Generate due recurring",
                    "Quit",
                ],
            ).ask()

            if choice == "Enter transaction":
                enter_transaction(session)
            elif choice == "AI entry":
                ai_entry(session, ai)
            elif choice == "List transactions":
                list_transactions(session)
                questionary.press_any_key_to_continue("Press any key to return to menu").ask()
            elif choice == "Generate due recurring":
                count = RecurringManager(session).generate_due_transactions()
                print(f"Generated {count} recurring transactions.\n")
            else:
                break


if __name__ == "__main__":
    main()
