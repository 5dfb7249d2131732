import logging
from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer

from app.core.security import decode_access_token

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)

ADMIN_ROLE = "admin"
CREATOR_ROLE = "creator"


@dataclass(frozen=True)
class AuthenticatedUser:
    """Caller identity taken from the access token. Accounts are owned by the user-management service."""
    id: str
    role: str


async def get_current_user(
    request: Request,
    token: Annotated[str | None, Depends(oauth2_scheme)],
) -> AuthenticatedUser:
    cookie_token = request.cookies.get("access_token")
    credentials_token = cookie_token or token
    if not credentials_token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing credentials")

    payload = decode_access_token(credentials_token)
    if not payload:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")

    return AuthenticatedUser(id=str(user_id), role=payload.get("role") or CREATOR_ROLE)


def require_role(*allowed_roles: str):
    """
    FastAPI dependency that requires one of the given roles.

    Usage:
        @router.get("/admin/settings")
        async def admin_settings(user = Depends(require_role("admin"))):
            ...
    """
    async def dependency(
        current_user: AuthenticatedUser = Depends(get_current_user),
    ) -> AuthenticatedUser:
        if current_user.role not in allowed_roles:
            logger.warning(
                f"Role required: user={current_user.id}, role={current_user.role}, required={allowed_roles}"
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. Required role: {', '.join(allowed_roles)}",
            )
        return current_user

    return dependency


def require_admin():
    return require_role(ADMIN_ROLE)


def require_creator():
    return require_role(CREATOR_ROLE)
