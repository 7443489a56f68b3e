from dataclasses import dataclass


@dataclass(frozen=True)
class Credential:
    token: str
    expires_at: float
