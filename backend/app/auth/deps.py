"""FastAPI dependencies for authentication and authorization.

Dependencies:
  get_current_principal  → decode JWT, return Principal{id, role}
  require_role(...)      → restrict to specific roles
  require_manager        → supervisor or admin
"""

from dataclasses import dataclass

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer

from app.auth.jwt import decode_token

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")


@dataclass(frozen=True)
class Principal:
    """Authenticated caller as resolved from the token."""
    id: str
    role: str


# ── Core principal dependency ───────────────────────────────

async def get_current_principal(token: str = Depends(oauth2_scheme)) -> Principal:
    """Decode the JWT and return the caller's id and role.

    Users live in the identity service, so there is no DB lookup here.
    """
    payload = decode_token(token)
    user_id: str | None = payload.get("sub")
    if not user_id or payload.get("type") != "access":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return Principal(id=str(user_id), role=payload.get("role") or "operator")


# ── Role-based access control ───────────────────────────────

def require_role(*roles: str):
    """Dependency factory: restrict to one or more roles.

    Usage:
        @router.post("/clear")
        async def clear(principal: Principal = Depends(require_role("admin"))):
            ...
    """
    async def _check(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Requires role: {', '.join(roles)}",
            )
        return principal

    return _check


# create, move and dismantle UCPs
require_manager = require_role("supervisor", "admin")
