# backend/orderdesk/config.py
from __future__ import annotations
import os


def _parse_api_tokens(raw: str | None) -> dict[str, int]:
    """
    Parse "token:user_id,token:user_id" into {token: user_id}.

    Malformed pairs are ignored so a typo cannot lock out every caller.
    """
    tokens: dict[str, int] = {}
    if not raw:
        return tokens
    for pair in raw.split(","):
        token, _, user_id = pair.strip().partition(":")
        if token and user_id.strip().isdigit():
            tokens[token] = int(user_id)
    return tokens


def _parse_origins(raw: str | None) -> set[str]:
    return {origin.strip() for origin in (raw or "").split(",") if origin.strip()}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/orderdesk.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///orderdesk.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Bearer tokens accepted by require_auth
    API_TOKENS = _parse_api_tokens(os.environ.get("ORDERDESK_API_TOKENS"))

    QUOTE_VALID_DAYS = int(os.environ.get("ORDERDESK_QUOTE_VALID_DAYS", "7"))
    SALE_NUMBER_PREFIX = os.environ.get("ORDERDESK_SALE_PREFIX", "V")

    DEFAULT_PAGE_SIZE = 20
    MAX_PAGE_SIZE = 100

    # Dashboard dev servers allowed to call the API from the browser
    CORS_ORIGINS = _parse_origins(os.environ.get(
        "ORDERDESK_CORS_ORIGINS",
        "http://localhost:5173,http://127.0.0.1:5173,http://localhost:4173,http://127.0.0.1:4173",
    ))
