"""HTTP client for the Google Gemini ``generateContent`` API."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
import json
import logging
import re
import time
from typing import Any, Callable

import requests
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt

from .config import GeminiConfig
from .dates import parse_date

logger = logging.getLogger(__name__)

MODEL = "gemini-2.5-flash"


class AIServiceError(Exception):
    """Base class for AI failures; ``str(exc)`` is safe to show to the user."""

    default_message = "AI response error, please try again later"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.default_message)


class MissingAPIKeyError(AIServiceError):
    default_message = "Please configure Gemini API Key first"


class InvalidAPIKeyError(AIServiceError):
    default_message = "Invalid API Key. Please check your key."


class InvalidResponseError(AIServiceError):
    pass


class DecodingError(AIServiceError):
    default_message = "Failed to parse AI response"


class NetworkError(AIServiceError):
    def __init__(self, detail: str):
        super().__init__(f"Network Error: {detail}")


class InvalidConfigurationError(AIServiceError):
    def __init__(self, detail: str):
        super().__init__(f"Configuration Error: {detail}")


class ServerError(AIServiceError):
    def __init__(self, status: int):
        self.status = status
        super().__init__(f"Server Error (Code: {status}). Please try again later.")


class ClientError(AIServiceError):
    def __init__(self, status: int, detail: str):
        self.status = status
        super().__init__(f"Request Error (Code: {status}): {detail}")


class RateLimitError(ClientError):
    def __init__(self):
        super().__init__(429, "Rate limit exceeded. Please try again later.")


# Prompts

def transaction_prompt(text: str, now: datetime | None = None) -> str:
    now_iso = (now or datetime.now()).replace(microsecond=0).isoformat()
    return f"""You are a STRICT, deterministic expense parser.

GOAL
Return a SINGLE JSON object representing the transaction described in the user input.

CURRENT CONTEXT
- NOW_ISO: "{now_iso}"

OUTPUT FORMAT (JSON Object)
{{
  "amount": number,          // Positive number, no currency symbols
  "type": string,            // "expense" or "income" (default to "expense" if ambiguous)
  "category": string,        // Infer category (e.g., "Food", "Transport", "Shopping", "Salary") or "Uncategorized"
  "account": string,         // Infer account (e.g., "Cash", "Credit Card", "Bank") or "Cash"
  "paymentMethod": string,   // Infer method or same as account
  "note": string,            // Brief description of the item/service
  "confidence": number,      // 0.0 to 1.0
  "date": string             // ISO 8601 "YYYY-MM-DD"
}}

RULES
1. Work ONLY with the input text. Do not hallucinate.
2. Amount: Normalize to number (e.g., "RM12.50" -> 12.5, "1k" -> 1000).
3. Date: Resolve relative dates ("yesterday", "today") relative to NOW_ISO. Default to NOW_ISO date if unspecified.
4. Type: Detect "income", "salary", "received" as "income". Otherwise "expense".
5. Category: Infer based on keywords (e.g., "latte" -> "Food", "taxi" -> "Transport").
6. Output MUST be raw JSON only. No markdown, no code blocks.

User Input: "{text}"
"""


def analysis_prompt(question: str, dataset: str) -> str:
    return f"""You are a friendly, empathetic financial assistant.

GOAL
Provide specific analysis and actionable suggestions based strictly on the provided billing data.

DATA CONTEXT
{dataset}

USER QUESTION
"{question}"

RULES
1. Tone: Empathetic, encouraging, non-judgmental. Avoid lecturing.
2. Specificity: Cite specific numbers or trends from the data to support your points.
3. Relevance: Answer the user's question directly.
4. Length: Keep it concise (max 3 paragraphs).
5. Format: Plain text, natural language.
"""


def insight_prompt(period: str, dataset: str) -> str:
    return f"""You are a financial analyst.

GOAL
Analyze the transaction data for {period} and return a JSON object containing a summary and actionable insights.

DATA CONTEXT
{dataset}

OUTPUT FORMAT (JSON Object)
{{
  "summary": string,   // Brief summary of spending behavior (max 2 sentences).
  "insights": [string] // Array of 2-3 short, specific insights or suggestions.
}}

RULES
1. Work ONLY with the provided data.
2. Insights must be specific and actionable.
3. Output MUST be raw JSON only. No markdown, no code blocks.
"""


def build_payload(text: str, mime_type: str = "text/plain") -> dict:
    return {
        "contents": [{"parts": [{"text": text}]}],
        "generationConfig": {"responseMimeType": mime_type},
    }


# Responses

@dataclass
class GeminiTextResponse:
    text: str
    input_tokens: int = 0
    output_tokens: int = 0

    @classmethod
    def from_json(cls, data: Any) -> "GeminiTextResponse":
        try:
            candidates = data["candidates"]
            parts = candidates[0]["content"]["parts"] if candidates else []
            text = "\n".join(p["text"] for p in parts if p.get("text") is not None)
        except (KeyError, IndexError, TypeError) as exc:
            raise DecodingError() from exc
        usage = data.get("usageMetadata") or {}
        return cls(
            text=text,
            input_tokens=int(usage.get("promptTokenCount") or 0),
            output_tokens=int(usage.get("candidatesTokenCount") or 0),
        )


@dataclass
class ParsedTransaction:
    """Fields the model extracted; any of them may be missing."""

    amount: float | None = None
    type: str | None = None
    category: str | None = None
    account: str | None = None
    payment_method: str | None = None
    note: str | None = None
    confidence: float | None = None
    date: datetime | None = None

    @classmethod
    def from_dict(cls, obj: Any) -> "ParsedTransaction":
        if not isinstance(obj, dict):
            raise DecodingError()
        # accept both camelCase and snake_case keys
        norm = {_snake(k): v for k, v in obj.items()}
        try:
            kind = norm.get("type")
            if kind is not None and kind not in ("expense", "income"):
                raise ValueError(f"unknown transaction type {kind!r}")
            return cls(
                amount=_opt_float(norm.get("amount")),
                type=kind,
                category=norm.get("category"),
                account=norm.get("account"),
                payment_method=norm.get("payment_method"),
                note=norm.get("note"),
                confidence=_opt_float(norm.get("confidence")),
                date=parse_date(norm["date"]) if norm.get("date") else None,
            )
        except (AttributeError, TypeError, ValueError) as exc:
            raise DecodingError() from exc


@dataclass
class GeminiInsight:
    summary: str
    insights: list[str] = field(default_factory=list)


def _snake(key: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", key).lower()


def _opt_float(value) -> float | None:
    return None if value is None else float(value)


FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```")
OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)


def extract_json(raw: str) -> str:
    """Pull the JSON object out of a model reply that may be fenced."""
    match = FENCE_RE.search(raw)
    if match:
        return match.group(1).strip()
    match = OBJECT_RE.search(raw)
    if match:
        return match.group(0).strip()
    raise DecodingError()


def _backoff(retry_state) -> float:
    # three attempts, so two waits: 5xx 1s then 2s; 429 2s then 4s
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    base = 2.0 if isinstance(exc, RateLimitError) else 1.0
    return base * 2 ** (retry_state.attempt_number - 1)


class GeminiService:
    """Low level Gemini client with retries and error mapping."""

    max_attempts = 3

    def __init__(
        self,
        config: GeminiConfig | None = None,
        http: requests.Session | None = None,
        sleep: Callable[[float], None] = time.sleep,
        usage_recorder: Callable[[int, int], None] | None = None,
    ):
        self.config = config or GeminiConfig.from_environment()
        self.http = http if http is not None else requests.Session()
        if self.config.proxies:
            self.http.proxies.update(self.config.proxies)
        self.sleep = sleep
        self.usage_recorder = usage_recorder

    @property
    def endpoint(self) -> str:
        host = self.config.base_url.strip().rstrip("/")
        if not host.startswith(("http://", "https://")):
            raise InvalidConfigurationError(f"Invalid URL configuration: {host}")
        return f"{host}/v1beta/models/{MODEL}:generateContent"

    def send(self, payload: dict, api_key: str | None) -> GeminiTextResponse:
        """POST ``payload``, retrying server errors and rate limits."""
        if not api_key:
            raise MissingAPIKeyError()
        retrying = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=_backoff,
            retry=retry_if_exception_type((ServerError, RateLimitError)),
            sleep=self.sleep,
            reraise=True,
        )
        data = retrying(self._perform_request, payload, api_key)
        response = GeminiTextResponse.from_json(data)
        if self.usage_recorder is not None:
            self.usage_recorder(response.input_tokens, response.output_tokens)
        return response

    def _perform_request(self, payload: dict, api_key: str) -> dict:
        url = self.endpoint
        headers = {"Content-Type": "application/json", "x-goog-api-key": api_key}
        try:
            resp = self.http.post(url, json=payload, headers=headers, timeout=self.config.timeout)
        except requests.exceptions.Timeout as exc:
            raise NetworkError("Request Timed Out") from exc
        except requests.exceptions.ConnectionError as exc:
            raise NetworkError("Host Unreachable") from exc
        except requests.exceptions.RequestException as exc:
            raise NetworkError(str(exc)) from exc

        status = resp.status_code
        if 200 <= status < 300:
            try:
                return resp.json()
            except ValueError as exc:
                raise DecodingError() from exc

        message = _error_message(resp)
        logger.warning("Gemini request failed with %s: %s", status, message)
        if status == 400 and "API_KEY_INVALID" in message:
            raise InvalidAPIKeyError()
        if status in (401, 403):
            raise InvalidAPIKeyError()
        if status == 404:
            raise ClientError(404, f"Model not found or invalid endpoint. {message}")
        if status == 429:
            raise RateLimitError()
        if 500 <= status < 600:
            raise ServerError(status)
        raise ClientError(status, message)

    def parse_transaction(self, text: str, api_key: str | None) -> ParsedTransaction:
        response = self.send(build_payload(transaction_prompt(text), "application/json"), api_key)
        obj = self._decode_object(response.text)
        return ParsedTransaction.from_dict(obj)

    def analyze(self, question: str, dataset: str, api_key: str | None) -> GeminiTextResponse:
        return self.send(build_payload(analysis_prompt(question, dataset)), api_key)

    def chat(self, message: str, api_key: str | None) -> GeminiTextResponse:
        return self.send(build_payload(message), api_key)

    def insights(self, period: str, dataset: str, api_key: str | None) -> GeminiInsight:
        response = self.send(
            build_payload(insight_prompt(period, dataset), "application/json"), api_key
        )
        obj = self._decode_object(response.text)
        if not isinstance(obj, dict) or not isinstance(obj.get("summary"), str):
            raise DecodingError()
        insights = obj.get("insights") or []
        if not isinstance(insights, list):
            raise DecodingError()
        return GeminiInsight(summary=obj["summary"], insights=[str(i) for i in insights])

    @staticmethod
    def _decode_object(raw: str):
        if not raw.strip():
            raise DecodingError()
        try:
            return json.loads(extract_json(raw))
        except ValueError as exc:
            raise DecodingError() from exc


def _error_message(resp) -> str:
    try:
        return resp.json()["error"]["message"]
    except (ValueError, KeyError, TypeError):
        return resp.text or "Unknown Error"
