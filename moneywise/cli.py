"""Curses interface for Moneywise.

The top level is a tab loop (Home, Assistant, Transactions, Reports, Goals)
plus Settings. Every screen is built from the same small set of primitives:
``select``, ``text``, ``confirm``, ``toast`` and ``scroll_menu``.
"""
from __future__ import annotations

from datetime import datetime, timedelta
import curses
from curses import panel
from contextlib import contextmanager
import logging
import re
import textwrap

from .assistant import AIService
from .database import SessionLocal, init_db, save_safe
from .dates import period_bounds, start_of_day
from .gemini import AIServiceError
from .models import (
    BudgetPeriod,
    Category,
    Goal,
    RecurringFrequency,
    RecurringTransaction,
    Transaction,
    TransactionType,
)
from .routing import AppEnvironment, Tab, ViewState
from .services import UNKNOWN_CATEGORY_ICON, spending_by_category, totals_between
from . import transfer

logger = logging.getLogger(__name__)

ENTER_KEYS = (curses.KEY_ENTER, 10, 13)
DATE_FMT = "%Y-%m-%d"

TAB_TITLES = [
    ("Home", Tab.HOME),
    ("Assistant", Tab.ASSISTANT),
    ("Transactions", Tab.TRANSACTIONS),
    ("Reports", Tab.REPORTS),
    ("Goals", Tab.GOALS),
]

CATEGORY_ICONS = [
    "\U0001F354", "\U0001F355", "\u2615", "\U0001F697", "\U0001F68C", "\u2708\uFE0F",
    "\U0001F6CD\uFE0F", "\U0001F455", "\U0001F4F1", "\U0001F381", "\U0001F3AC", "\U0001F3AE",
    "\U0001F4DA", "\U0001F3E5", "\U0001F48A", "\U0001F4B0", "\U0001F4B5", "\U0001F4B3",
    "\U0001F3E6", "\U0001F3E0", "\U0001F4BB", "\U0001F393", "\U0001F415", "\U0001F3F7\uFE0F",
]

CATEGORY_COLORS = [
    ("Red", "#EF4444"),
    ("Orange", "#F97316"),
    ("Yellow", "#F59E0B"),
    ("Green", "#10B981"),
    ("Blue", "#3B82F6"),
    ("Purple", "#8B5CF6"),
    ("Pink", "#EC4899"),
    ("Gray", "#6B7280"),
    ("Mint", "#34D399"),
]

HEX_COLOR_RE = re.compile(r"^#[0-9A-Fa-f]{6}$")


# Primitives

def select(stdscr, message, choices, default=None, boxed=True, footer_right=""):
    """Let the user pick one of ``choices``; ``None`` when cancelled with ``q``.

    ``choices`` holds plain strings or ``(title, value)`` pairs.
    """
    pairs = [c if isinstance(c, tuple) else (c, c) for c in choices]
    start = next((i for i, (_, v) in enumerate(pairs) if default is not None and v == default), 0)
    picked = scroll_menu(
        stdscr,
        [title for title, _ in pairs],
        start,
        header=message,
        footer_right=footer_right,
        boxed=boxed,
    )
    if picked is None:
        return None
    return pairs[picked][1]


def _center_box(stdscr, height: int, width: int):
    rows, cols = stdscr.getmaxyx()
    height, width = min(height, rows), min(width, cols)
    win = curses.newwin(height, width, max(0, (rows - height) // 2), max(0, (cols - width) // 2))
    win.box()
    return win


@contextmanager
def temp_cursor(state: int):
    """Show or hide the cursor for the duration of the block."""
    try:
        prev = curses.curs_set(state)
    except curses.error:  # pragma: no cover - some terminals
        prev = None
    try:
        yield
    finally:
        if prev is not None:
            try:
                curses.curs_set(prev)
            except curses.error:  # pragma: no cover
                pass


@contextmanager
def keypad_mode(win):
    try:
        win.keypad(True)
    except curses.error:  # pragma: no cover - fake windows
        pass
    try:
        yield
    finally:
        try:
            win.keypad(False)
        except curses.error:  # pragma: no cover
            pass


@contextmanager
def modal_box(stdscr, height: int, width: int):
    """Centered bordered window on its own panel, erased on exit."""
    win = _center_box(stdscr, height, width)
    try:
        pnl = panel.new_panel(win)
    except Exception:  # pragma: no cover - fake windows in tests
        pnl = None
    if pnl is not None:
        panel.update_panels()
        curses.doupdate()
    try:
        with keypad_mode(win):
            yield win
    finally:
        try:
            win.erase()
            win.noutrefresh()
        except (curses.error, AttributeError):  # pragma: no cover
            pass
        if pnl is not None:
            pnl.hide()
            panel.update_panels()
            curses.doupdate()


def _put(win, y: int, x: int, line: str, width: int, attr=None) -> None:
    try:
        if attr is None:
            win.addnstr(y, x, line, max(0, width))
        else:
            win.addnstr(y, x, line, max(0, width), attr)
    except curses.error:
        pass


def _refresh(win) -> None:
    try:
        win.refresh()
    except curses.error:
        pass


def text(stdscr, message, default=None):
    """Single line input; an empty answer returns ``default`` when given."""
    label = message + (f" [{default}]" if default is not None else "") + ": "
    with temp_cursor(1), keypad_mode(stdscr):
        _, cols = stdscr.getmaxyx()
        field = max(1, min(40, cols - len(label) - 6))
        width = min(len(label) + field + 4, cols)
        with modal_box(stdscr, 3, width) as win:
            _put(win, 1, 2, label, width - 4)
            _refresh(win)
            curses.echo()
            try:
                raw = win.getstr(1, 2 + len(label), field)
            except curses.error:
                raw = b""
            finally:
                curses.noecho()
    value = raw.decode("utf-8", errors="replace")
    if value == "" and default is not None:
        return default
    return value


def confirm(stdscr, message: str) -> bool:
    lines = [message, "Enter confirms, any other key cancels."]
    width = max(len(line) for line in lines)
    with temp_cursor(0), keypad_mode(stdscr):
        with modal_box(stdscr, len(lines) + 2, width + 4) as win:
            for row, line in enumerate(lines, start=1):
                _put(win, row, 2 + (width - len(line)) // 2, line, width)
            _refresh(win)
            key = win.getch()
    return key in ENTER_KEYS


def toast(stdscr, msg: str, ms: int = 900):
    _, cols = stdscr.getmaxyx()
    width = min(max(len(msg) + 4, 12), max(12, cols - 2))
    with modal_box(stdscr, 3, width) as win:
        _put(win, 1, 2, msg[: width - 4], width - 4)
        _refresh(win)
        curses.napms(ms)


def _move(index: int, key: int, visible: int, count: int) -> int:
    last = max(0, count - 1)
    if key == curses.KEY_UP:
        return max(0, index - 1)
    if key == curses.KEY_DOWN:
        return min(last, index + 1)
    if key == curses.KEY_PPAGE:
        return max(0, index - visible)
    if key == curses.KEY_NPAGE:
        return min(last, index + visible)
    if key == curses.KEY_HOME:
        return 0
    if key == curses.KEY_END:
        return last
    return index


def _draw_rows(win, entries, index, visible, row0, x, width) -> None:
    top = min(max(0, index - visible // 2), max(0, len(entries) - visible))
    for i, line in enumerate(entries[top : top + visible]):
        attr = curses.A_REVERSE if top + i == index else curses.A_NORMAL
        _put(win, row0 + i, x, line, width, attr)


def scroll_menu(
    stdscr,
    entries,
    index,
    height: int | None = None,
    header: str | None = None,
    footer_left: str | None = None,
    footer_right: str | None = None,
    allow_add: bool = False,
    allow_delete: bool = False,
    boxed: bool = False,
):
    """Scrollable list; returns the chosen index.

    ``a`` returns ``-1`` when ``allow_add`` is set, ``d`` returns
    ``("delete", index)`` when ``allow_delete`` is set and ``q`` returns
    ``None``. ``boxed`` draws the list in a centered overlay.
    """
    left = footer_left if footer_left is not None else datetime.now().strftime(DATE_FMT)
    right = footer_right or ""
    head_rows = 1 if header else 0
    natural = max(
        [len(e) for e in entries] + [len(header or ""), len(left) + len(right) + 1]
    )

    with temp_cursor(0), keypad_mode(stdscr):
        while True:
            rows, cols = stdscr.getmaxyx()
            rows, cols = max(1, rows), max(1, cols)
            spare = rows - (3 if boxed else 1) - head_rows
            visible = min(len(entries), height or max(1, spare))
            position = f"{index + 1}/{len(entries)}" if entries else "0/0"
            footer = f"{right} {position}".strip()

            if boxed:
                width = min(natural, cols - 4)
                total = visible + head_rows + 3
                with modal_box(stdscr, total, width + 4) as win:
                    if header:
                        _put(win, 1, 2 + max(0, (width - len(header)) // 2), header, width)
                    _draw_rows(win, entries, index, visible, 1 + head_rows, 2, width)
                    _put(win, total - 2, 2, left, width)
                    _put(win, total - 2, 2 + max(0, width - len(footer)), footer, len(footer))
                    _refresh(win)
                    key = win.getch()
            else:
                stdscr.erase()
                if header:
                    hx = max(0, (cols - len(header)) // 2)
                    _put(stdscr, 0, hx, header, cols - hx)
                _draw_rows(stdscr, entries, index, visible, head_rows, 0, cols - 1)
                _put(stdscr, rows - 1, 0, left, cols)
                _put(stdscr, rows - 1, max(0, cols - len(footer)), footer, len(footer))
                stdscr.refresh()
                key = stdscr.getch()

            if key == curses.KEY_RESIZE:
                curses.update_lines_cols()
                curses.resize_term(0, 0)
                stdscr.clearok(True)
            elif key in ENTER_KEYS:
                return index
            elif key == ord("a") and allow_add:
                return -1
            elif key == ord("d") and allow_delete:
                return ("delete", index)
            elif key == ord("q"):
                return None
            else:
                index = _move(index, key, visible, len(entries))


def show_text(stdscr, title: str, body: str) -> None:
    """Page through a long message, such as an assistant reply."""
    _, cols = stdscr.getmaxyx()
    width = max(20, cols - 2)
    lines = []
    for para in body.splitlines() or [""]:
        lines.extend(textwrap.wrap(para, width) or [""])
    scroll_menu(stdscr, lines, 0, header=title, footer_left="q/Enter to close")


def _parse_amount(raw):
    try:
        return abs(float(raw))
    except (TypeError, ValueError):
        return None


def _parse_day(raw):
    try:
        return datetime.strptime(raw, DATE_FMT)
    except (TypeError, ValueError):
        return None


def _category_choices(session, kind: str, allow_none: bool = False):
    cats = session.query(Category).filter_by(type=kind).order_by(Category.name).all()
    choices = [(f"{c.icon} {c.name}", c) for c in cats]
    if allow_none:
        choices.insert(0, ("All categories", None))
    return choices


# Transactions

def transaction_form(stdscr, session, fields: dict):
    """Edit a copy of ``fields``; return it on Save, ``None`` on Cancel."""
    fields = dict(fields)
    while True:
        cat = fields.get("category")
        choice = select(
            stdscr,
            "Select field to edit",
            [
                (f"Amount: {fields['amount']:.2f}", "amount"),
                (f"Type: {fields['type']}", "type"),
                (f"Category: {cat.icon + ' ' + cat.name if cat else 'None'}", "category"),
                (f"Note: {fields['note']}", "note"),
                (f"Date: {fields['date'].strftime(DATE_FMT)}", "date"),
                (f"Account: {fields['account']}", "account"),
                ("Save", "save"),
                ("Cancel", "cancel"),
            ],
        )
        if choice == "amount":
            amount = _parse_amount(text(stdscr, "Amount", default=f"{fields['amount']:.2f}"))
            if amount is not None:
                fields["amount"] = amount
        elif choice == "type":
            other = (
                TransactionType.INCOME.value
                if fields["type"] == TransactionType.EXPENSE
                else TransactionType.EXPENSE.value
            )
            fields["type"] = other
            if cat is not None and cat.type != other:
                fields["category"] = None
        elif choice == "category":
            picked = select(stdscr, "Category", _category_choices(session, fields["type"]))
            if picked is not None:
                fields["category"] = picked
        elif choice == "note":
            fields["note"] = text(stdscr, "Note", default=fields["note"])
        elif choice == "date":
            day = _parse_day(text(stdscr, "Date (YYYY-MM-DD)", default=fields["date"].strftime(DATE_FMT)))
            if day is not None:
                fields["date"] = day
        elif choice == "account":
            fields["account"] = text(stdscr, "Account", default=fields["account"]) or "Cash"
        elif choice == "save":
            return fields
        else:
            return None


def _fields_of(txn: Transaction) -> dict:
    return {
        "amount": txn.amount,
        "type": txn.type,
        "category": txn.category,
        "note": txn.note or "",
        "date": txn.date,
        "account": txn.account or "Cash",
    }


def add_transaction(stdscr, env: AppEnvironment) -> Transaction | None:
    blank = {
        "amount": 0.0,
        "type": TransactionType.EXPENSE.value,
        "category": None,
        "note": "",
        "date": env.clock(),
        "account": "Cash",
    }
    form = transaction_form(stdscr, env.session, blank)
    if form is None or form["amount"] <= 0:
        return None
    txn = Transaction(payment_method=form["account"], **form)
    env.session.add(txn)
    if save_safe(env.session):
        env.budgets.refresh_spending()
        toast(stdscr, "Transaction saved")
    return txn


def edit_transaction(stdscr, env: AppEnvironment, txn: Transaction) -> None:
    form = transaction_form(stdscr, env.session, _fields_of(txn))
    if form is None:
        return
    for key, value in form.items():
        setattr(txn, key, value)
    save_safe(env.session)
    env.budgets.refresh_spending()


def transaction_line(txn: Transaction, note_w: int = 0) -> str:
    icon = txn.category.icon if txn.category is not None else UNKNOWN_CATEGORY_ICON
    sign = "+" if txn.type == TransactionType.INCOME else "-"
    return f"{txn.date.strftime(DATE_FMT)} | {icon} {txn.note:<{note_w}} | {sign}{txn.amount:.2f}"


def transactions_view(stdscr, env: AppEnvironment) -> None:
    """List transactions newest first; Enter edits, ``a`` adds, ``d`` deletes."""
    index = 0
    while True:
        txns = env.session.query(Transaction).order_by(Transaction.date.desc()).all()
        note_w = max((len(t.note or "") for t in txns), default=0)
        entries = [transaction_line(t, note_w) for t in txns] + ["Back"]
        res = scroll_menu(
            stdscr,
            entries,
            min(index, len(entries) - 1),
            header="Transactions",
            footer_left="Enter=edit a=add d=delete q=back",
            allow_add=True,
            allow_delete=True,
        )
        if isinstance(res, tuple):
            index = res[1]
            if index < len(txns) and confirm(stdscr, "Delete this transaction?"):
                env.session.delete(txns[index])
                save_safe(env.session)
                env.budgets.refresh_spending()
            continue
        if res == -1:
            add_transaction(stdscr, env)
            continue
        if res is None or res >= len(txns):
            return
        index = res
        edit_transaction(stdscr, env, txns[res])


# Assistant

def smart_entry(stdscr, env: AppEnvironment, ai: AIService) -> None:
    """Describe a transaction in words, review what the model parsed, then save."""
    prompt = text(stdscr, "Describe the transaction")
    if not prompt:
        return
    try:
        txn = ai.parse(prompt)
    except AIServiceError as exc:
        toast(stdscr, str(exc), ms=1500)
        return
    summary = f"{txn.type} {txn.amount:.2f} {txn.category.name if txn.category else ''} {txn.note}"
    form = _fields_of(txn)
    if not confirm(stdscr, f"Save {summary.strip()}?"):
        # declined as parsed: let the user correct the fields instead
        form = transaction_form(stdscr, env.session, form)
    if form is None or form["amount"] <= 0:
        env.session.rollback()
        return
    parsed_category = txn.category
    for key, value in form.items():
        setattr(txn, key, value)
    if (
        parsed_category is not None
        and form["category"] is not parsed_category
        and parsed_category in env.session.new
    ):
        # the category the model invented was replaced before it was ever saved
        env.session.expunge(parsed_category)
    env.session.add(txn)
    if save_safe(env.session):
        env.budgets.refresh_spending()
        toast(stdscr, "Transaction saved")


def chat_loop(stdscr, ai: AIService, conversation_id: int | None = None) -> None:
    while True:
        message = text(stdscr, "You (empty to stop)")
        if not message:
            return
        try:
            reply, conversation_id = ai.chat(message, conversation_id)
        except AIServiceError as exc:
            toast(stdscr, str(exc), ms=1500)
            continue
        show_text(stdscr, "Assistant", reply)


def conversations_view(stdscr, ai: AIService) -> None:
    while True:
        convs = ai.chats.get_all_conversations()
        entries = [f"{c.updated_at.strftime(DATE_FMT)} | {c.title}" for c in convs] + ["Back"]
        res = scroll_menu(
            stdscr,
            entries,
            0,
            header="Conversations",
            footer_left="Enter=open d=delete",
            allow_delete=True,
        )
        if isinstance(res, tuple):
            if res[1] < len(convs) and confirm(stdscr, "Delete this conversation?"):
                ai.chats.delete_conversation(convs[res[1]].id)
            continue
        if res is None or res >= len(convs):
            return
        conv = convs[res]
        action = select(stdscr, conv.title, [("Continue", "continue"), ("Archive", "archive"), ("Back", "back")])
        if action == "archive":
            ai.chats.archive_conversation(conv.id)
            continue
        if action != "continue":
            continue
        history = "\n\n".join(f"{m.role}: {m.content}" for m in conv.sorted_messages)
        show_text(stdscr, conv.title, history)
        chat_loop(stdscr, ai, conv.id)


def assistant_view(stdscr, env: AppEnvironment, ai: AIService) -> None:
    while True:
        choice = select(
            stdscr,
            "Assistant",
            [
                ("New chat", "chat"),
                ("Conversations", "history"),
                ("Smart entry", "entry"),
                ("Analyze my spending", "analyze"),
                ("Back", "back"),
            ],
            boxed=False,
        )
        if choice == "chat":
            chat_loop(stdscr, ai)
        elif choice == "history":
            conversations_view(stdscr, ai)
        elif choice == "entry":
            smart_entry(stdscr, env, ai)
        elif choice == "analyze":
            question = text(stdscr, "Question")
            if not question:
                continue
            try:
                show_text(stdscr, "Analysis", ai.analyze(question))
            except AIServiceError as exc:
                toast(stdscr, str(exc), ms=1500)
        else:
            return


# Home and reports

def home_lines(env: AppEnvironment) -> list[str]:
    now = env.clock()
    start, end = period_bounds(now, BudgetPeriod.MONTHLY.value)
    totals = totals_between(env.session, start, end)
    lines = [
        f"This month  income {totals['income']:.2f}  expense {totals['expense']:.2f}"
        f"  net {totals['net']:.2f}",
        "",
    ]
    env.budgets.reload()
    active = env.budgets.active
    if active:
        lines.append(f"Budgets ({env.budgets.over_budget_count} over)")
        for b in active:
            flag = " OVER" if b.is_over_budget else ""
            lines.append(
                f"  {b.display_name}: {b.current_spending:.2f}/{b.limit:.2f}"
                f" ({b.percentage_used:.0%}){flag}"
            )
    due = env.recurring.due_soon
    if due:
        lines.append("Due soon")
        for r in due:
            lines.append(f"  {r.category_icon} {r.name} in {r.days_until_due(now)} days: {r.amount:.2f}")
    recent = env.session.query(Transaction).order_by(Transaction.date.desc()).limit(5).all()
    if recent:
        lines.append("Recent")
        lines.extend("  " + transaction_line(t) for t in recent)
    return lines


def home_view(stdscr, env: AppEnvironment, ai: AIService) -> None:
    while True:
        lines = home_lines(env)
        actions = [("Add transaction", "manual"), ("Smart entry", "ai"), ("Settings", "settings"), ("Back", "back")]
        entries = lines + [""] + [title for title, _ in actions]
        res = scroll_menu(stdscr, entries, len(lines) + 1, header="Home")
        if res is None:
            return
        action = actions[res - len(lines) - 1][1] if res > len(lines) else None
        if action == "manual":
            add_transaction(stdscr, env)
        elif action == "ai":
            smart_entry(stdscr, env, ai)
        elif action == "settings":
            settings_view(stdscr, env)
        elif action == "back":
            return


def report_lines(env: AppEnvironment, period: str) -> list[str]:
    start, end = period_bounds(env.clock(), period)
    totals = totals_between(env.session, start, end)
    rows = spending_by_category(env.session, start, end)
    lines = [
        f"{start.strftime(DATE_FMT)} - {end.strftime(DATE_FMT)}",
        f"Income {totals['income']:.2f}  Expense {totals['expense']:.2f}  Net {totals['net']:.2f}",
        "",
    ]
    expense = totals["expense"] or 1.0
    name_w = max((len(name) for _, name, _ in rows), default=0)
    for icon, name, amount in rows:
        lines.append(f"{icon} {name:<{name_w}} {amount:>10.2f} {amount / expense:>5.0%}")
    return lines


def reports_view(stdscr, env: AppEnvironment, ai: AIService) -> None:
    period = select(
        stdscr,
        "Report period",
        [("This week", "weekly"), ("This month", "monthly"), ("This year", "yearly")],
        default="monthly",
    )
    if period is None:
        return
    lines = report_lines(env, period)
    res = scroll_menu(
        stdscr, lines + ["", "Generate insights"], len(lines) + 1, header="Reports"
    )
    if res != len(lines) + 1:
        return
    start, end = period_bounds(env.clock(), period)
    txns = (
        env.session.query(Transaction)
        .filter(Transaction.date >= start, Transaction.date <= end)
        .order_by(Transaction.date)
        .all()
    )
    try:
        insight = ai.generate_insights(txns, f"{start.strftime(DATE_FMT)} to {end.strftime(DATE_FMT)}")
    except AIServiceError as exc:
        toast(stdscr, str(exc), ms=1500)
        return
    body = insight.summary + "\n\n" + "\n".join(f"- {i}" for i in insight.insights)
    show_text(stdscr, "Insights", body)


# Goals

def goal_form(stdscr, name: str, target: float, deadline: datetime, note: str):
    """Returns ``(name, target, deadline, note)`` on Save, otherwise ``None``."""
    while True:
        choice = select(
            stdscr,
            "Select field to edit",
            [
                (f"Name: {name}", "name"),
                (f"Target: {target:.2f}", "target"),
                (f"Deadline: {deadline.strftime(DATE_FMT)}", "deadline"),
                (f"Note: {note}", "note"),
                ("Save", "save"),
                ("Cancel", "cancel"),
            ],
        )
        if choice == "name":
            name = text(stdscr, "Name", default=name)
        elif choice == "target":
            value = _parse_amount(text(stdscr, "Target amount", default=f"{target:.2f}"))
            if value is not None:
                target = value
        elif choice == "deadline":
            day = _parse_day(text(stdscr, "Deadline (YYYY-MM-DD)", default=deadline.strftime(DATE_FMT)))
            if day is not None:
                deadline = day
        elif choice == "note":
            note = text(stdscr, "Note", default=note)
        elif choice == "save":
            return name, target, deadline, note
        else:
            return None


def add_goal(stdscr, env: AppEnvironment, existing: Goal | None = None) -> None:
    if existing is None:
        form = goal_form(stdscr, "", 0.0, start_of_day(env.clock()) + timedelta(days=30), "")
    else:
        form = goal_form(stdscr, existing.name, existing.target_amount, existing.deadline, existing.note or "")
    if form is None or not form[0]:
        return
    name, target, deadline, note = form

    if existing is None:
        goal = Goal(name=name, target_amount=target, deadline=deadline, note=note, current_amount=0.0)
        env.goals.add_goal(goal)
    else:
        goal = existing

        def apply(g):
            g.name, g.target_amount, g.deadline, g.note = name, target, deadline, note

        env.goals.update_goal(goal, apply)
    env.reminders.schedule_goal_deadline_reminder(goal)


def add_funds(stdscr, env: AppEnvironment, goal: Goal) -> None:
    amount = _parse_amount(text(stdscr, f"Amount to add to {goal.name}"))
    if amount is None:
        return
    try:
        env.goals.add_funds(goal, amount, when=env.clock())
    except ValueError as exc:
        toast(stdscr, str(exc))
        return
    env.budgets.refresh_spending()
    toast(stdscr, f"{goal.name}: {goal.progress:.0%}")


def goal_line(goal: Goal, env: AppEnvironment) -> str:
    return (
        f"{goal.deadline.strftime(DATE_FMT)} | {goal.current_amount:.2f}/{goal.target_amount:.2f}"
        f" | {goal.progress:>4.0%} | {env.reminders.days_left(goal)}d | {goal.name}"
    )


def goals_view(stdscr, env: AppEnvironment) -> None:
    """Goals sorted by deadline; Enter opens actions, ``a`` adds, ``d`` deletes."""
    index = 0
    while True:
        goals = list(env.goals.goals)
        entries = [goal_line(g, env) for g in goals] + ["Back"]
        res = scroll_menu(
            stdscr,
            entries,
            min(index, len(entries) - 1),
            header="Goals",
            footer_left="Enter=actions a=add d=delete",
            allow_add=True,
            allow_delete=True,
        )
        if isinstance(res, tuple):
            index = res[1]
            if index < len(goals) and confirm(stdscr, "Delete this goal?"):
                env.reminders.cancel_goal_deadline_reminder(goals[index])
                env.goals.delete(goals[index])
            continue
        if res == -1:
            add_goal(stdscr, env)
            continue
        if res is None or res >= len(goals):
            return
        index = res
        goal = goals[res]
        action = select(stdscr, goal.name, [("Add funds", "fund"), ("Edit", "edit"), ("Back", "back")])
        if action == "fund":
            add_funds(stdscr, env, goal)
        elif action == "edit":
            add_goal(stdscr, env, goal)


# Settings

def recurring_form(stdscr, session, fields: dict):
    fields = dict(fields)
    while True:
        cat = fields.get("category")
        end = fields.get("end_date")
        choice = select(
            stdscr,
            "Recurring transaction",
            [
                (f"Name: {fields['name']}", "name"),
                (f"Amount: {fields['amount']:.2f}", "amount"),
                (f"Type: {fields['type']}", "type"),
                (f"Category: {cat.icon + ' ' + cat.name if cat else 'None'}", "category"),
                (f"Frequency: every {fields['interval']} x {fields['frequency']}", "frequency"),
                (f"Start: {fields['start_date'].strftime(DATE_FMT)}", "start"),
                (f"End: {end.strftime(DATE_FMT) if end else 'never'}", "end"),
                (f"Remind days before: {fields['reminder_days_before']}", "remind"),
                ("Save", "save"),
                ("Cancel", "cancel"),
            ],
        )
        if choice == "name":
            fields["name"] = text(stdscr, "Name", default=fields["name"])
        elif choice == "amount":
            amount = _parse_amount(text(stdscr, "Amount", default=f"{fields['amount']:.2f}"))
            if amount is not None:
                fields["amount"] = amount
        elif choice == "type":
            fields["type"] = (
                TransactionType.INCOME.value
                if fields["type"] == TransactionType.EXPENSE
                else TransactionType.EXPENSE.value
            )
            fields["category"] = None
        elif choice == "category":
            picked = select(stdscr, "Category", _category_choices(session, fields["type"]))
            if picked is not None:
                fields["category"] = picked
        elif choice == "frequency":
            freq = select(
                stdscr,
                "Frequency",
                [f.value for f in RecurringFrequency],
                default=fields["frequency"],
            )
            if freq is not None:
                fields["frequency"] = freq
            raw = text(stdscr, "Every how many periods", default=str(fields["interval"]))
            if raw.isdigit() and int(raw) >= 1:
                fields["interval"] = int(raw)
        elif choice == "start":
            day = _parse_day(text(stdscr, "Start (YYYY-MM-DD)", default=fields["start_date"].strftime(DATE_FMT)))
            if day is not None:
                fields["start_date"] = day
        elif choice == "end":
            raw = text(stdscr, "End (YYYY-MM-DD, empty for never)")
            fields["end_date"] = _parse_day(raw) if raw else None
        elif choice == "remind":
            raw = text(stdscr, "Remind days before", default=str(fields["reminder_days_before"]))
            if raw.isdigit():
                fields["reminder_days_before"] = int(raw)
        elif choice == "save":
            return fields
        else:
            return None


def edit_recurring(stdscr, env: AppEnvironment, existing: RecurringTransaction | None = None) -> None:
    if existing is None:
        fields = {
            "name": "",
            "amount": 0.0,
            "type": TransactionType.EXPENSE.value,
            "category": None,
            "frequency": RecurringFrequency.MONTHLY.value,
            "interval": 1,
            "start_date": start_of_day(env.clock()),
            "end_date": None,
            "reminder_days_before": 1,
        }
    else:
        fields = {
            "name": existing.name,
            "amount": existing.amount,
            "type": existing.type,
            "category": env.session.query(Category).filter_by(name=existing.category_name).first(),
            "frequency": existing.frequency,
            "interval": existing.interval,
            "start_date": existing.start_date,
            "end_date": existing.end_date,
            "reminder_days_before": existing.reminder_days_before,
        }
    form = recurring_form(stdscr, env.session, fields)
    if form is None or not form["name"] or form["category"] is None or form["amount"] <= 0:
        return
    if existing is None:
        env.recurring.add(RecurringTransaction(**form))
        return
    category = form.pop("category")
    existing.category_name = category.name
    existing.category_icon = category.icon
    if form["start_date"] != existing.start_date:
        existing.next_due_date = form["start_date"]
    for key, value in form.items():
        setattr(existing, key, value)
    env.recurring.update(existing)


def recurring_line(r: RecurringTransaction) -> str:
    state = "on " if r.is_active else "off"
    return (
        f"{state} | {r.next_due_date.strftime(DATE_FMT)} | {r.category_icon} {r.name}"
        f" | {r.frequency} | {r.amount:.2f}"
    )


def recurring_view(stdscr, env: AppEnvironment) -> None:
    while True:
        items = list(env.recurring.recurring_transactions)
        entries = [recurring_line(r) for r in items] + ["Generate due now", "Back"]
        res = scroll_menu(
            stdscr,
            entries,
            0,
            header="Recurring transactions",
            footer_left="Enter=actions a=add d=delete",
            allow_add=True,
            allow_delete=True,
        )
        if isinstance(res, tuple):
            if res[1] < len(items) and confirm(stdscr, "Delete this recurring transaction?"):
                env.recurring.delete(items[res[1]])
            continue
        if res == -1:
            edit_recurring(stdscr, env)
            continue
        if res == len(items):
            count = env.recurring.generate_due_transactions()
            if count:
                env.budgets.refresh_spending()
            toast(stdscr, f"Generated {count} transactions")
            continue
        if res is None or res > len(items):
            return
        item = items[res]
        action = select(
            stdscr,
            item.name,
            [("Edit", "edit"), ("Pause" if item.is_active else "Resume", "toggle"), ("Back", "back")],
        )
        if action == "edit":
            edit_recurring(stdscr, env, item)
        elif action == "toggle":
            env.recurring.toggle_active(item)


def category_form(stdscr, fields: dict):
    """Edit a copy of ``fields``; return it on Save, ``None`` on Cancel."""
    fields = dict(fields)
    while True:
        choice = select(
            stdscr,
            "Category",
            [
                (f"Name: {fields['name']}", "name"),
                (f"Icon: {fields['icon']}", "icon"),
                (f"Colour: {fields['color_hex']}", "color"),
                (f"Type: {fields['type']}", "type"),
                ("Save", "save"),
                ("Cancel", "cancel"),
            ],
        )
        if choice == "name":
            fields["name"] = text(stdscr, "Name", default=fields["name"]).strip()
        elif choice == "icon":
            icon = select(stdscr, "Icon", CATEGORY_ICONS + [("Type your own", "custom")], default=fields["icon"])
            if icon == "custom":
                icon = text(stdscr, "Icon (emoji)", default=fields["icon"]).strip()
            if icon:
                fields["icon"] = icon
        elif choice == "color":
            color = select(
                stdscr,
                "Colour",
                [(f"{name} {hex_}", hex_) for name, hex_ in CATEGORY_COLORS] + [("Hex code", "custom")],
                default=fields["color_hex"],
            )
            if color == "custom":
                color = text(stdscr, "Colour (#RRGGBB)", default=fields["color_hex"]).strip()
            if color and HEX_COLOR_RE.match(color):
                fields["color_hex"] = color.upper()
        elif choice == "type":
            fields["type"] = (
                TransactionType.INCOME.value
                if fields["type"] == TransactionType.EXPENSE
                else TransactionType.EXPENSE.value
            )
        elif choice == "save":
            return fields
        else:
            return None


def edit_category(stdscr, env: AppEnvironment, existing: Category | None = None) -> None:
    if existing is None:
        fields = {
            "name": "",
            "icon": "\U0001F3F7\uFE0F",
            "color_hex": "#6B7280",
            "type": TransactionType.EXPENSE.value,
        }
    else:
        fields = {
            "name": existing.name,
            "icon": existing.icon,
            "color_hex": existing.color_hex,
            "type": existing.type,
        }
    form = category_form(stdscr, fields)
    if form is None:
        return
    try:
        env.categories.save(existing, form["name"], form["icon"], form["color_hex"], form["type"])
    except ValueError as exc:
        toast(stdscr, str(exc), ms=1500)
        return
    env.recurring.load_recurring_transactions()


def categories_view(stdscr, env: AppEnvironment) -> None:
    """Categories by name; Enter edits, ``a`` adds, ``d`` deletes."""
    index = 0
    while True:
        env.categories.reload()
        cats = list(env.categories.categories)
        name_w = max((len(c.name) for c in cats), default=0)
        entries = [f"{c.icon} {c.name:<{name_w}} | {c.type}" for c in cats] + ["Back"]
        res = scroll_menu(
            stdscr,
            entries,
            min(index, len(entries) - 1),
            header="Categories",
            footer_left="Enter=edit a=add d=delete",
            allow_add=True,
            allow_delete=True,
        )
        if isinstance(res, tuple):
            index = res[1]
            if index < len(cats) and confirm(stdscr, "Delete? Its transactions become uncategorised."):
                env.categories.delete(cats[index])
                env.budgets.refresh_spending()
            continue
        if res == -1:
            edit_category(stdscr, env)
            continue
        if res is None or res >= len(cats):
            return
        index = res
        edit_category(stdscr, env, cats[res])


def add_budget(stdscr, env: AppEnvironment) -> None:
    limit = _parse_amount(text(stdscr, "Limit"))
    if not limit:
        return
    period = select(stdscr, "Period", [p.value for p in BudgetPeriod], default=BudgetPeriod.MONTHLY.value)
    if period is None:
        return
    choices = _category_choices(env.session, TransactionType.EXPENSE.value, allow_none=True)
    category = select(stdscr, "Category", choices)
    env.budgets.create(limit, period, category)


def budgets_view(stdscr, env: AppEnvironment) -> None:
    while True:
        env.budgets.refresh_spending()
        budgets = env.budgets.active + env.budgets.inactive
        entries = [
            f"{b.display_name} | {b.period} | {b.current_spending:.2f}/{b.limit:.2f}"
            f" | {b.start_date.strftime(DATE_FMT)}..{b.end_date.strftime(DATE_FMT)}"
            for b in budgets
        ] + ["Back"]
        res = scroll_menu(
            stdscr,
            entries,
            0,
            header="Budgets",
            footer_left="a=add d=delete",
            allow_add=True,
            allow_delete=True,
        )
        if isinstance(res, tuple):
            if res[1] < len(budgets) and confirm(stdscr, "Delete this budget?"):
                env.budgets.delete(budgets[res[1]])
            continue
        if res == -1:
            add_budget(stdscr, env)
            continue
        if res is None or res >= len(budgets):
            return


def ai_settings_view(stdscr, env: AppEnvironment) -> None:
    config = env.ai_config
    while True:
        stats = config.stats
        calls = stats.total_calls if stats else 0
        tokens_in = stats.input_tokens if stats else 0
        tokens_out = stats.output_tokens if stats else 0
        choice = select(
            stdscr,
            "AI settings",
            [
                (f"API key: {'set' if config.api_key else 'not set'}", "key"),
                ("Clear API key", "clear"),
                (f"Usage: {calls} calls, {tokens_in} in / {tokens_out} out tokens", "usage"),
                ("Reset usage", "reset"),
                (f"Get a key: {config.tutorial_url}", "help"),
                ("Back", "back"),
            ],
            boxed=False,
        )
        if choice == "key":
            value = text(stdscr, "Gemini API key").strip()
            if value:
                config.api_key = value
                toast(stdscr, "API key saved")
        elif choice == "clear":
            if confirm(stdscr, "Remove the stored API key?"):
                config.api_key = None
        elif choice == "reset":
            if confirm(stdscr, "Reset token usage?"):
                config.reset_usage()
        elif choice in ("usage", "help"):
            continue
        else:
            return


def _parse_time(raw: str):
    try:
        parsed = datetime.strptime(raw, "%H:%M")
    except (TypeError, ValueError):
        return None
    return parsed.hour, parsed.minute


def reminders_view(stdscr, env: AppEnvironment) -> None:
    while True:
        choice = select(
            stdscr,
            "Reminders",
            [
                ("Daily logging reminder", "daily"),
                ("Turn off daily reminder", "daily_off"),
                ("Weekly goal progress", "weekly"),
                ("Turn off weekly goal progress", "weekly_off"),
                ("Back", "back"),
            ],
        )
        if choice == "daily":
            at = _parse_time(text(stdscr, "Time (HH:MM)", default="20:00"))
            if at is not None:
                env.reminders.schedule_daily_reminder(*at, "Don't forget to log today's spending.")
                toast(stdscr, "Daily reminder set")
        elif choice == "daily_off":
            env.reminders.cancel_daily_reminder()
        elif choice == "weekly":
            weekday = select(
                stdscr,
                "Day",
                list(zip(["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"], range(7))),
                default=6,
            )
            at = _parse_time(text(stdscr, "Time (HH:MM)", default="10:00"))
            if weekday is None or at is None:
                continue
            if env.reminders.schedule_weekly_goal_reminder(weekday, *at, env.goals.goals) is None:
                toast(stdscr, "Add a goal first")
            else:
                toast(stdscr, "Weekly reminder set")
        elif choice == "weekly_off":
            env.reminders.cancel_weekly_goal_reminder()
        else:
            return


def export_csv(stdscr, env: AppEnvironment) -> None:
    raw = text(stdscr, "Export to (empty for a temp file)")
    txns = env.session.query(Transaction).order_by(Transaction.date).all()
    try:
        path = transfer.export(txns, raw or None)
    except OSError as exc:
        logger.error("Export failed: %s", exc)
        toast(stdscr, f"Export failed: {exc}", ms=1500)
        return
    toast(stdscr, f"Exported {len(txns)} to {path}", ms=1500)


def import_csv(stdscr, env: AppEnvironment) -> None:
    raw = text(stdscr, "CSV file to import")
    if not raw:
        return
    strategy = select(
        stdscr,
        "Duplicates",
        [("Skip duplicates", transfer.ImportStrategy.SKIP_DUPLICATES), ("Import all", transfer.ImportStrategy.IMPORT_ALL)],
    )
    if strategy is None:
        return
    try:
        result = transfer.import_csv(env.session, raw, strategy)
    except (OSError, transfer.InvalidFormatError) as exc:
        logger.error("Import of %s failed: %s", raw, exc)
        toast(stdscr, f"Import failed: {exc}", ms=1500)
        return
    env.budgets.refresh_spending()
    toast(stdscr, f"Imported {result.imported}, skipped {result.skipped}", ms=1500)


def settings_view(stdscr, env: AppEnvironment) -> None:
    views = {
        "recurring": recurring_view,
        "categories": categories_view,
        "budgets": budgets_view,
        "ai": ai_settings_view,
        "reminders": reminders_view,
        "export": export_csv,
        "import": import_csv,
    }
    while True:
        choice = select(
            stdscr,
            "Settings",
            [
                ("Recurring transactions", "recurring"),
                ("Categories", "categories"),
                ("Budgets", "budgets"),
                ("AI settings", "ai"),
                ("Reminders", "reminders"),
                ("Export CSV", "export"),
                ("Import CSV", "import"),
                ("Back", "back"),
            ],
            boxed=False,
        )
        view = views.get(choice)
        if view is None:
            return
        view(stdscr, env)


# Main loop

def open_tab(stdscr, env: AppEnvironment, ai: AIService, tab: Tab) -> None:
    if tab == Tab.HOME:
        home_view(stdscr, env, ai)
    elif tab == Tab.ASSISTANT:
        assistant_view(stdscr, env, ai)
    elif tab == Tab.TRANSACTIONS:
        transactions_view(stdscr, env)
    elif tab == Tab.REPORTS:
        reports_view(stdscr, env, ai)
    elif tab == Tab.GOALS:
        goals_view(stdscr, env)


def main(stdscr, url: str | None = None) -> None:
    with temp_cursor(0), keypad_mode(stdscr):
        try:
            curses.use_default_colors()
        except curses.error:  # pragma: no cover - terminals without color
            pass
        init_db()
        with SessionLocal() as session:
            env = AppEnvironment(session)
            ai = AIService(session, env.ai_config)
            for note in env.startup():
                toast(stdscr, f"{note.title}: {note.body}", ms=1500)

            state = ViewState()
            if url and env.router.handle_url(url):
                env.router.consume(state)
                if state.show_manual_entry:
                    state.show_manual_entry = False
                    add_transaction(stdscr, env)
                else:
                    open_tab(stdscr, env, ai, state.selected_tab)

            while True:
                choice = select(
                    stdscr,
                    "Moneywise",
                    TAB_TITLES + [("Settings", "settings"), ("Quit", "quit")],
                    default=state.selected_tab,
                    boxed=False,
                )
                if choice is None or choice == "quit":
                    break
                if choice == "settings":
                    settings_view(stdscr, env)
                    continue
                state.selected_tab = choice
                open_tab(stdscr, env, ai, choice)
