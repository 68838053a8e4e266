"""FastAPI dependency injection — auth guards.

Tokens are issued by the external auth service; this side only verifies the
signature and reads the subject and role claims.
"""
from dataclasses import dataclass
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError
from tour_finance.config import (
    JWT_ALGORITHM, JWT_SECRET_KEY, MUTATION_ROLES, ROLE_ADMIN, ROLE_CUSTOMER,
)

security = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Principal:
    user_id: str
    role: str
    name: str | None = None


async def get_current_principal(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> Principal:
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        payload = jwt.decode(credentials.credentials, JWT_SECRET_KEY, algorithms=[JWT_ALGORITHM])
    except JWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    user_id = payload.get("sub")
    role = payload.get("role")
    if not user_id or not role:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    return Principal(user_id=str(user_id), role=str(role).upper(), name=payload.get("name"))


def require_roles(*roles: str):
    """
    Factory for role-gated dependencies.

    Usage:
        principal: Principal = Depends(require_roles("ADMIN", "STAFF"))
    """
    async def _require_roles(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Requires role: {' or '.join(roles)}",
            )
        return principal

    return _require_roles


require_staff = require_roles(*MUTATION_ROLES)
require_admin = require_roles(ROLE_ADMIN)


async def require_reader(principal: Principal = Depends(get_current_principal)) -> Principal:
    """Any authenticated back-office role; customers are refused."""
    if principal.role == ROLE_CUSTOMER:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Back-office role required")
    return principal
