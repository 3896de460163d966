"""
Bearer token verification.

Tokens are issued by the account service (out of scope here) and signed
with a shared secret. The only claim this service relies on is the owner
id (`sub` by default); every document and search is scoped to it.
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import ExpiredSignatureError, JWTError, jwt
from pydantic import BaseModel

from docsearch.core.config import settings

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=True)


class TokenPayload(BaseModel):
    """Verified claims passed to route handlers."""
    owner_id: str
    email:    str = ""
    exp:      int | None = None


def verify_token(token: str) -> TokenPayload:
    try:
        claims = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            options={"verify_exp": True, "verify_aud": False},
        )
    except ExpiredSignatureError:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, detail="Token has expired")
    except JWTError as exc:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, detail=f"Invalid token: {exc}")

    owner = claims.get(settings.jwt_owner_claim)
    if owner in (None, ""):
        logger.warning("Token without owner claim | claim=%s", settings.jwt_owner_claim)
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, detail="Token missing owner claim")

    return TokenPayload(
        owner_id=str(owner),
        email=claims.get("email", ""),
        exp=claims.get("exp"),
    )


def issue_token(owner_id: str, **extra_claims) -> str:
    """Sign a token for `owner_id`; used by local tooling and tests."""
    claims = {settings.jwt_owner_claim: owner_id, **extra_claims}
    return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(bearer_scheme)],
) -> TokenPayload:
    return verify_token(credentials.credentials)
