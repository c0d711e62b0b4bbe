import os
from typing import NamedTuple

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from booking_core.models import User

# MUST MATCH users_service.auth
SECRET_KEY = os.getenv("JWT_SECRET_KEY", "super-secret-room-manager-key")
ALGORITHM = "HS256"

ADMIN_ROLE = "admin"

security = HTTPBearer()


class Identity(NamedTuple):
    """The caller of a request, as carried by its token."""
    user: User
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE


def identity_from_token(token: str) -> Identity:
    """
    Decode a JWT and build the caller's identity.

    Parameters
    ----------
    token : str
        Encoded JWT issued by the users service.

    Returns
    -------
    Identity
        User id and display name plus role.

    Raises
    ------
    HTTPException
        401 if the token is invalid, expired or lacks the required claims.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        raise credentials_exception

    user_id = payload.get("user_id")
    role = payload.get("role")
    if user_id is None or role is None:
        raise credentials_exception

    display_name = payload.get("display_name") or payload.get("sub") or "User"
    return Identity(user=User(id=str(user_id), display_name=display_name), role=role)


async def get_current_identity(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> Identity:
    return identity_from_token(credentials.credentials)


async def require_admin(identity: Identity = Depends(get_current_identity)) -> Identity:
    """Dependency that only lets administrators through."""
    if not identity.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not enough permissions",
        )
    return identity
