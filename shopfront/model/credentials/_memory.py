from __future__ import annotations
import secrets
from typing import Callable, Dict, Optional

from ...helpers import now_ts
from ._common import Credential


class CredentialStore:
    def __init__(self, ttl_seconds: int,
                 clock: Callable[[], float] = now_ts) -> None:
        self.ttl = ttl_seconds
        self.clock = clock
        self._tokens: Dict[str, float] = {}

    async def issue(self) -> Credential:
        self._purge()
        token = secrets.token_urlsafe(32)
        expires_at = self.clock() + self.ttl
        self._tokens[token] = expires_at
        return Credential(token=token, expires_at=expires_at)

    async def validate(self, token: Optional[str]) -> bool:
        if not token:
            return False
        expires_at = self._tokens.get(token)
        if expires_at is None:
            return False
        if self.clock() >= expires_at:
            self._tokens.pop(token, None)
            return False
        return True

    async def revoke(self, token: str) -> None:
        self._tokens.pop(token, None)

    def _purge(self) -> None:
        now = self.clock()
        for t in [t for t, exp in self._tokens.items() if exp <= now]:
            del self._tokens[t]
