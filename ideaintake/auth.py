from dataclasses import dataclass
from typing import Dict, Optional, Protocol

from fastapi import HTTPException


@dataclass(frozen=True)
class Identity:
    uid: str
    email: Optional[str] = None


class TokenVerifier(Protocol):
    async def verify(self, token: str) -> Identity: ...


class InvalidToken(Exception):
    pass


class StaticTokenVerifier:
    """Maps opaque bearer tokens to user ids from configuration."""

    def __init__(self, tokens: Dict[str, str]):
        self.tokens = dict(tokens)

    async def verify(self, token: str) -> Identity:
        uid = self.tokens.get(token)
        if not uid:
            raise InvalidToken("unknown token")
        return Identity(uid=uid)


def bearer_token(authorization: Optional[str]) -> str:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing authorization header")
    return authorization.split("Bearer ", 1)[1].strip()

