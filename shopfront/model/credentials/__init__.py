# model/credentials/__init__.py
from typing import Callable, Optional

import redis.asyncio as redis

from ...helpers import now_ts
from ._common import Credential


# Factory keeps server.py simple and constructor-agnostic:
def new_store(*, backend: str = "memory",
              r: Optional[redis.Redis] = None,
              ttl_seconds: int = 12 * 3600,
              clock: Callable[[], float] = now_ts):
    backend = backend.lower()
    if backend == "redis":
        if r is None:
            raise RuntimeError(
                "CredentialStore(redis) requires r=redis.Redis"
            )
        from ._redis import CredentialStore
        return CredentialStore(r=r, ttl_seconds=ttl_seconds, clock=clock)
    else:
        from ._memory import CredentialStore
        return CredentialStore(ttl_seconds=ttl_seconds, clock=clock)


__all__ = ["Credential", "new_store"]
