import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from . import models, schemas

logger = logging.getLogger(__name__)

# --- JWT / security settings (SHARED WITH OTHER SERVICES) ---
SECRET_KEY = os.getenv("JWT_SECRET_KEY", "super-secret-room-manager-key")  # same in rooms_service/auth.py
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 60

ADMIN_USERNAME = os.getenv("ADMIN_USERNAME", "admin")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "admin123")
LOCAL_ADMIN_ID_PREFIX = "local-admin-"

# --- Password hashing ---
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/users/login")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verify a plaintext password against a bcrypt hash.

    Parameters
    ----------
    plain_password : str
        Raw password provided by the user.
    hashed_password : str
        Previously stored bcrypt hash.

    Returns
    -------
    bool
        True if the password matches, False otherwise.
    """
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


# ---------- Local admin account ----------

def ensure_admin_account(db: Session) -> models.AdminAccount:
    """
    Return the local admin account, creating it with the default credentials
    (``ADMIN_USERNAME`` / ``ADMIN_PASSWORD``) on first use.
    """
    account = db.query(models.AdminAccount).first()
    if account is not None:
        return account

    account = models.AdminAccount(
        username=ADMIN_USERNAME,
        hashed_password=get_password_hash(ADMIN_PASSWORD),
    )
    db.add(account)
    db.commit()
    db.refresh(account)
    logger.info("Created local admin account %s", account.username)
    return account


def authenticate_local_admin(
    db: Session, username: str, password: str
) -> Optional[models.AdminAccount]:
    """
    Authenticate against the local admin account.

    Returns
    -------
    Optional[AdminAccount]
        The account if both username (case-insensitive) and password match,
        otherwise None.
    """
    account = ensure_admin_account(db)
    if username.strip().lower() != account.username.lower():
        return None
    if not verify_password(password, account.hashed_password):
        return None
    return account


def local_admin_user_id(account: models.AdminAccount) -> str:
    return f"{LOCAL_ADMIN_ID_PREFIX}{account.id}"


# ---------- JWT helpers ----------

def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a signed JWT access token.

    Parameters
    ----------
    data : dict
        Claims to embed in the token ('sub', 'user_id', 'display_name', 'role').
    expires_delta : Optional[timedelta]
        Optional custom expiration interval.

    Returns
    -------
    str
        Encoded JWT string.
    """
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


async def get_current_claims(token: str = Depends(oauth2_scheme)) -> schemas.TokenData:
    """
    Resolve the caller from a JWT bearer token.

    Regular users are not stored locally, so the token itself is the source
    of truth for their identity.

    Raises
    ------
    HTTPException
        If the token is invalid, expired, or misses required claims.
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

    try:
        return schemas.TokenData(
            username=payload["sub"],
            user_id=str(payload["user_id"]),
            display_name=payload.get("display_name") or payload["sub"],
            role=models.UserRole(payload["role"]),
        )
    except (KeyError, ValueError):
        raise credentials_exception


async def require_admin(
    claims: schemas.TokenData = Depends(get_current_claims),
) -> schemas.TokenData:
    if claims.role != models.UserRole.ADMIN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Operation not permitted for this role",
        )
    return claims
