from __future__ import annotations
import math
import secrets
from typing import Callable, Optional

import redis.asyncio as redis

from ...helpers import now_ts
from ._common import Credential


# ---- keys
def k_token(token: str) -> str: return f"admin_token:{token}"


class CredentialStore:
    """
    Tokens live in redis so every worker process sees the same sessions.
    Redis TTL does the housekeeping; the stored expiry is still compared
    against our own clock so expiry behaves the same as the memory store.
    """

    def __init__(self, r: redis.Redis, ttl_seconds: int,
                 clock: Callable[[], float] = now_ts) -> None:
        self.r = r
        self.ttl = ttl_seconds
        self.clock = clock

    async def issue(self) -> Credential:
        token = secrets.token_urlsafe(32)
        expires_at = self.clock() + self.ttl
        await self.r.set(k_token(token), repr(expires_at),
                         ex=max(1, math.ceil(self.ttl)))
        return Credential(token=token, expires_at=expires_at)

    async def validate(self, token: Optional[str]) -> bool:
        if not token:
            return False
        raw = await self.r.get(k_token(token))
        if raw is None:
            return False
        try:
            expires_at = float(raw)
        except ValueError:
            return False
        if self.clock() >= expires_at:
            await self.r.delete(k_token(token))
            return False
        return True

    async def revoke(self, token: str) -> None:
        await self.r.delete(k_token(token))
