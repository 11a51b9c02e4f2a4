"""AI features built on :mod:`moneywise.gemini`: smart entry, chat and insights."""
from __future__ import annotations

from datetime import datetime
import logging
from typing import Callable

from .database import save_safe
from .dates import add_months
from .gemini import GeminiInsight, GeminiService, ParsedTransaction
from .managers import AIConfigurationStore
from .models import (
    AIConversation,
    AIMessage,
    MessageRole,
    Transaction,
    TransactionType,
)
from .services import category_named

logger = logging.getLogger(__name__)

NEW_CHAT_TITLE = "New Chat"
HISTORY_LIMIT = 10
TITLE_LIMIT = 30

ROLE_LABELS = {
    MessageRole.USER.value: "User",
    MessageRole.ASSISTANT.value: "Assistant",
    MessageRole.SYSTEM.value: "System",
}


class TransactionParsingService:
    """Turns free text such as ``"spent $30 on lunch"`` into a transaction."""

    def __init__(self, session, gemini: GeminiService, api_key_provider: Callable[[], str | None]):
        self.session = session
        self.gemini = gemini
        self.api_key_provider = api_key_provider

    def parse(self, text: str) -> Transaction:
        """Return an unsaved transaction for ``text``.

        The category is found or created by name; the transaction itself is
        not added to the session so the caller can confirm it first.
        """
        parsed = self.gemini.parse_transaction(text, self.api_key_provider())
        return self.build_transaction(parsed)

    def build_transaction(self, parsed: ParsedTransaction) -> Transaction:
        kind = parsed.type or TransactionType.EXPENSE.value
        return Transaction(
            amount=abs(parsed.amount or 0.0),
            type=kind,
            category=category_named(self.session, parsed.category or "Uncategorized", kind),
            account=parsed.account or "Cash",
            date=parsed.date or datetime.now(),
            note=parsed.note or "",
            payment_method=parsed.payment_method or "Cash",
            is_ai_generated=True,
            confidence=0.5 if parsed.confidence is None else parsed.confidence,
        )

    def save_transaction(self, parsed: ParsedTransaction) -> Transaction:
        txn = self.build_transaction(parsed)
        self.session.add(txn)
        save_safe(self.session)
        return txn


def conversation_title(first_message: str) -> str:
    if len(first_message) <= TITLE_LIMIT:
        return first_message
    return first_message[:TITLE_LIMIT] + "..."


def build_conversation_prompt(conversation: AIConversation, new_message: str) -> str:
    lines = []
    for msg in conversation.sorted_messages[-HISTORY_LIMIT:]:
        lines.append(f"{ROLE_LABELS.get(msg.role, 'User')}: {msg.content}")
    lines.append(f"User: {new_message}")
    lines.append(
        "Please respond to the user's message above, considering the conversation "
        "context. You are a helpful financial assistant for the Moneywise app."
    )
    return "\n".join(lines)


class ChatService:
    """Assistant conversations persisted in ``ai_conversations``."""

    def __init__(self, session, gemini: GeminiService, api_key_provider: Callable[[], str | None]):
        self.session = session
        self.gemini = gemini
        self.api_key_provider = api_key_provider

    def chat(self, message: str, conversation_id: int | None = None) -> tuple[str, int]:
        """Send ``message`` and return ``(reply, conversation_id)``.

        Unknown or missing ids start a new conversation.
        """
        conversation = None
        if conversation_id is not None:
            conversation = self.get_conversation(conversation_id)
        if conversation is None:
            conversation = AIConversation(title=NEW_CHAT_TITLE)

        prompt = build_conversation_prompt(conversation, message)
        response = self.gemini.chat(prompt, self.api_key_provider())

        if conversation.id is None:
            self.session.add(conversation)
        now = datetime.now()
        conversation.messages.append(
            AIMessage(
                role=MessageRole.USER.value,
                content=message,
                timestamp=now,
                input_tokens=response.input_tokens,
            )
        )
        conversation.messages.append(
            AIMessage(
                role=MessageRole.ASSISTANT.value,
                content=response.text,
                timestamp=now,
                output_tokens=response.output_tokens,
            )
        )
        conversation.updated_at = now
        if conversation.title in ("", NEW_CHAT_TITLE):
            conversation.title = conversation_title(message)
        save_safe(self.session)
        return response.text, conversation.id

    def get_all_conversations(self) -> list[AIConversation]:
        return (
            self.session.query(AIConversation)
            .filter(AIConversation.is_archived.is_(False))
            .order_by(AIConversation.updated_at.desc())
            .all()
        )

    def get_conversation(self, conversation_id: int) -> AIConversation | None:
        return self.session.get(AIConversation, conversation_id)

    def delete_conversation(self, conversation_id: int) -> None:
        conversation = self.get_conversation(conversation_id)
        if conversation is None:
            return
        self.session.delete(conversation)
        save_safe(self.session)

    def archive_conversation(self, conversation_id: int) -> None:
        conversation = self.get_conversation(conversation_id)
        if conversation is None:
            return
        conversation.is_archived = True
        save_safe(self.session)


class AnalyticsService:
    def __init__(self, session, gemini: GeminiService, api_key_provider: Callable[[], str | None]):
        self.session = session
        self.gemini = gemini
        self.api_key_provider = api_key_provider

    def analyze(self, question: str, now: datetime | None = None) -> str:
        """Answer ``question`` over the last twelve months of transactions."""
        since = add_months(now or datetime.now(), -12)
        txns = (
            self.session.query(Transaction)
            .filter(Transaction.date >= since)
            .order_by(Transaction.date)
            .all()
        )
        dataset = "\n".join(f"{t.date.isoformat()}: {t.note} - {t.amount:.2f}" for t in txns)
        return self.gemini.analyze(question, dataset, self.api_key_provider()).text

    def generate_insights(self, transactions: list[Transaction], period: str) -> GeminiInsight:
        dataset = "\n".join(
            f"{t.date:%Y-%m-%d}: {t.category.name if t.category else 'Uncategorized'}"
            f" - {t.amount:.2f} ({t.note})"
            for t in transactions
        )
        return self.gemini.insights(period, dataset, self.api_key_provider())


class AIService:
    """Single entry point the UI uses for every AI feature.

    Token usage of each successful call is added to ``config.stats``.
    """

    def __init__(self, session, config: AIConfigurationStore, gemini: GeminiService | None = None):
        self.config = config
        self.gemini = gemini if gemini is not None else GeminiService()
        self.gemini.usage_recorder = config.record_usage
        provider = lambda: self.config.api_key  # noqa: E731
        self.parsing = TransactionParsingService(session, self.gemini, provider)
        self.chats = ChatService(session, self.gemini, provider)
        self.analytics = AnalyticsService(session, self.gemini, provider)

    def parse(self, text: str) -> Transaction:
        return self.parsing.parse(text)

    def chat(self, message: str, conversation_id: int | None = None) -> tuple[str, int]:
        return self.chats.chat(message, conversation_id)

    def analyze(self, question: str) -> str:
        return self.analytics.analyze(question)

    def generate_insights(self, transactions: list[Transaction], period: str) -> GeminiInsight:
        return self.analytics.generate_insights(transactions, period)
