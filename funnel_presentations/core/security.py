"""Access tokens for the presentation API.

Tokens are HS256 JWTs carrying the user id in ``sub``. The same token is
accepted from the Authorization header, the ``access_token`` cookie or the
``token`` query parameter (EventSource cannot send headers).
"""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import jwt

from funnel_presentations.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()


@dataclass(frozen=True)
class TokenClaims:
    user_id: str
    email: str | None
    expires_at: datetime


def create_access_token(
    user_id: str, email: str | None = None, expires_delta: timedelta | None = None
) -> str:
    """Issue a token for ``user_id``; lifetime defaults to ``jwt_expiration_hours``."""
    expire = datetime.now(UTC) + (expires_delta or timedelta(hours=settings.jwt_expiration_hours))
    claims = {"sub": user_id, "exp": expire}
    if email:
        claims["email"] = email
    return jwt.encode(claims, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> TokenClaims | None:
    """Validate a token. Expired, malformed or subject-less tokens yield None."""
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
            options={"require": ["exp", "sub"]},
        )
    except jwt.ExpiredSignatureError:
        logger.info("token_rejected", extra={"reason": "expired"})
        return None
    except jwt.InvalidTokenError as e:
        logger.info("token_rejected", extra={"reason": "invalid", "error": str(e)})
        return None

    return TokenClaims(
        user_id=str(payload["sub"]),
        email=payload.get("email"),
        expires_at=datetime.fromtimestamp(payload["exp"], UTC),
    )
