# Overview: Caller context for authenticated requests.

"""
Caller Context Service

WHY: Core operations never read ambient request state. The HTTP layer turns
a bearer token into a CallerContext and passes it explicitly as `actor=`.

Tokens are configured (API_TOKENS) rather than issued by a login flow.
Comparison is done on SHA-256 digests with hmac.compare_digest so the
lookup does not leak timing information about valid tokens.
"""

import hashlib
import hmac
from dataclasses import dataclass

from flask import current_app


@dataclass(frozen=True)
class CallerContext:
    """Authenticated caller. token_hash is never the plaintext token."""
    user_id: int
    token_hash: str | None = None


def hash_token(token: str) -> str:
    """Hex SHA-256 of the token."""
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


def validate_token(token: str | None, tokens: dict[str, int] | None = None) -> CallerContext | None:
    """
    Resolve a bearer token into a CallerContext.

    Returns None when the token is missing or unknown. tokens defaults to the
    app's API_TOKENS mapping ({token: user_id}).
    """
    if not token:
        return None
    if tokens is None:
        tokens = current_app.config.get("API_TOKENS") or {}

    presented = hash_token(token)
    match = None
    # Compare against every configured token; no early exit
    for candidate, user_id in tokens.items():
        if hmac.compare_digest(presented, hash_token(candidate)):
            match = user_id

    if match is None:
        return None
    return CallerContext(user_id=match, token_hash=presented)
