"""Identity asserted by the API gateway in front of the service."""
from __future__ import annotations

import secrets
from typing import Iterable, List, Optional

from fastapi import HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

USER_ID_HEADER = "X-User-Id"


class GatewayAuth:
    """Trusts the ``X-User-Id`` header of requests carrying a gateway token.

    Tokens are compared in constant time.  Token issuance and password checks
    happen in front of this service.
    """

    def __init__(self, tokens: Iterable[str]):
        token_list: List[str] = [token.strip() for token in tokens if token.strip()]
        if not token_list:
            raise ValueError("At least one gateway token must be provided")
        self._tokens = token_list
        self._bearer = HTTPBearer(auto_error=False)

    async def verify(self, request: Request) -> None:
        credentials: Optional[HTTPAuthorizationCredentials] = await self._bearer(request)
        if credentials is None or credentials.scheme.lower() != "bearer":
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing bearer token")

        provided = credentials.credentials
        for token in self._tokens:
            if secrets.compare_digest(provided, token):
                return None

        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid gateway token")

    async def optional_user(self, request: Request) -> Optional[str]:
        """Return the asserted user id, or ``None`` for anonymous gateway calls."""

        await self.verify(request)
        user_id = request.headers.get(USER_ID_HEADER, "").strip()
        return user_id or None

    async def __call__(self, request: Request) -> str:
        user_id = await self.optional_user(request)
        if user_id is None:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing user identity")
        return user_id


__all__ = ["GatewayAuth", "USER_ID_HEADER"]
