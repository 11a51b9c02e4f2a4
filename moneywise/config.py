"""Environment driven configuration for the Moneywise application."""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

DEFAULT_GEMINI_BASE_URL = "https://generativelanguage.googleapis.com"
DEFAULT_PROXY_HOST = "127.0.0.1"
DEFAULT_PROXY_PORT = 50960


def database_url() -> str:
    """Return the SQLAlchemy URL for the configured database file.

    ``MONEYWISE_DB`` overrides the default file next to the package; the value
    ``:memory:`` selects an in-memory store.
    """
    db_file = os.getenv("MONEYWISE_DB")
    if db_file == ":memory:":
        return "sqlite:///:memory:"
    if db_file is None:
        db_path = Path(__file__).resolve().parent / "moneywise.db"
    else:
        db_path = Path(db_file)
    return f"sqlite:///{db_path}"


@dataclass
class GeminiConfig:
    """Connection settings for the Gemini API."""

    base_url: str = DEFAULT_GEMINI_BASE_URL
    proxy_host: str | None = None
    proxy_port: int = DEFAULT_PROXY_PORT
    timeout: float = 30.0

    @classmethod
    def from_environment(cls) -> "GeminiConfig":
        base = os.getenv("MONEYWISE_GEMINI_BASE_URL", "").strip()
        port = os.getenv("MONEYWISE_PROXY_PORT", "")
        return cls(
            base_url=base or DEFAULT_GEMINI_BASE_URL,
            proxy_host=os.getenv("MONEYWISE_PROXY_HOST") or None,
            proxy_port=int(port) if port.isdigit() and int(port) > 0 else DEFAULT_PROXY_PORT,
        )

    @property
    def proxies(self) -> dict[str, str] | None:
        if not self.proxy_host:
            return None
        proxy = f"http://{self.proxy_host}:{self.proxy_port}"
        return {"http": proxy, "https": proxy}
