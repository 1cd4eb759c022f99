from __future__ import annotations

from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

TokenProvider = Callable[[], Awaitable[str]]


@dataclass(frozen=True, slots=True)
class UserIdentity:
    """
    The signed-in user as handed over by the authentication provider.

    `token_provider` returns a fresh ID token for bearer-authenticated calls.
    """

    uid: str
    email: Optional[str] = None
    email_verified: bool = False
    display_name: Optional[str] = None
    photo_url: Optional[str] = None
    token_provider: Optional[TokenProvider] = field(default=None, repr=False, compare=False)

    def __post_init__(self) -> None:
        u = (self.uid or "").strip()
        if not u:
            raise ValueError("uid is required")
        if "/" in u:
            raise ValueError("uid must not contain '/'")
        object.__setattr__(self, "uid", u)

    async def get_id_token(self) -> str:
        if self.token_provider is None:
            raise RuntimeError(f"no token provider for uid={self.uid}")
        return await self.token_provider()
