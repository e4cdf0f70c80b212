"""Injectable time and token sources.

Every engine operation reads ``now`` once from a ``Clock`` so expiry checks within
one call are mutually consistent, and tests can pin time.
"""

import secrets
from datetime import UTC, datetime
from typing import Protocol


class Clock(Protocol):
    def now(self) -> datetime: ...


class TokenGenerator(Protocol):
    def new_token(self) -> str: ...


class SystemClock:
    def now(self) -> datetime:
        return datetime.now(UTC)


class SecureTokenGenerator:
    """URL-safe random tokens backed by the OS CSPRNG."""

    def __init__(self, nbytes: int = 32) -> None:
        self.nbytes = nbytes

    def new_token(self) -> str:
        return secrets.token_urlsafe(self.nbytes)
