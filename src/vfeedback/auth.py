"""Shared-secret token for client connections."""

from __future__ import annotations

import hmac
import logging
import re
import secrets
from pathlib import Path

logger = logging.getLogger(__name__)

MIN_TOKEN_LENGTH = 16

_TOKEN_RE = re.compile(r"^[a-f0-9]{32}$")


def generate_token() -> str:
    return secrets.token_hex(16)


def is_valid_token(token: str) -> bool:
    """True if ``token`` has the shape produced by generate_token()."""
    return bool(_TOKEN_RE.match(token or ""))


def tokens_match(expected: str, presented: str | None) -> bool:
    return hmac.compare_digest(expected.encode(), (presented or "").encode())


def load_or_create_token(path: Path, min_length: int = MIN_TOKEN_LENGTH) -> str:
    """Reload the persisted token so clients survive a restart without re-pairing.

    A missing, unreadable or too-short token is replaced by a new one.
    """
    try:
        if path.exists():
            saved = path.read_text(encoding="utf-8").strip()
            if len(saved) >= min_length:
                return saved
            logger.warning("Persisted token too short, generating a new one")
    except OSError as e:
        logger.warning("Could not read token file %s: %s", path, e)

    token = generate_token()
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(token, encoding="utf-8")
        path.chmod(0o600)
    except OSError as e:
        logger.warning("Could not save token: %s", e)
    return token
