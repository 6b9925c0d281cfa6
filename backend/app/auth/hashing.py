"""
Credential secrets: API key generation, digests and comparisons.

API keys are 256-bit random tokens, so a single SHA-256 digest is a
sufficient lookup/storage form. The admin secret is compared in
constant time. Neither raw value is ever persisted or logged.
"""

import hashlib
import hmac
import secrets
from typing import NamedTuple

KEY_SCHEME = "sk_"
PREFIX_LENGTH = 12


class NewApiKey(NamedTuple):
    """A freshly minted key. `raw` leaves the process exactly once."""

    raw: str
    digest: str
    prefix: str


def hash_api_key(raw_key: str) -> str:
    return hashlib.sha256(raw_key.encode("utf-8")).hexdigest()


def generate_api_key() -> NewApiKey:
    raw = KEY_SCHEME + secrets.token_hex(32)
    return NewApiKey(raw=raw, digest=hash_api_key(raw), prefix=raw[:PREFIX_LENGTH])


def secrets_match(presented: str | None, expected: str) -> bool:
    """Constant-time comparison; an empty expected secret never matches."""
    if not presented or not expected:
        return False
    return hmac.compare_digest(presented.encode("utf-8"), expected.encode("utf-8"))
