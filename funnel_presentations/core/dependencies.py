"""FastAPI dependencies for authentication."""

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from funnel_presentations.core.rate_limit import RateLimiter, get_rate_limiter
from funnel_presentations.core.security import decode_token
from funnel_presentations.db.database import get_db
from funnel_presentations.db.models import User

security = HTTPBearer(auto_error=False)


def _extract_token(request: Request, credentials: HTTPAuthorizationCredentials | None) -> str | None:
    """Token from Authorization header, then cookie, then ``token`` query param.

    EventSource clients cannot set headers, so SSE endpoints rely on the
    cookie or the query parameter.
    """
    if credentials:
        return credentials.credentials
    return request.cookies.get("access_token") or request.query_params.get("token")


async def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    """Get current user from JWT token (header, cookie or query param)."""
    token = _extract_token(request, credentials)

    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    claims = decode_token(token)
    if claims is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )

    user = db.query(User).filter(User.id == claims.user_id).first()
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")

    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="User is deactivated")

    request.state.user_id = user.id
    return user


def get_limiter() -> RateLimiter:
    """Rate limiter dependency (overridable in tests)."""
    return get_rate_limiter()
