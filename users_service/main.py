import re
from datetime import timedelta

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.orm import Session

from common.logging_config import configure_logging

from . import schemas
from .auth import (
    ACCESS_TOKEN_EXPIRE_MINUTES,
    authenticate_local_admin,
    create_access_token,
    ensure_admin_account,
    get_current_claims,
    get_password_hash,
    local_admin_user_id,
    require_admin,
    verify_password,
)
from .auth_client import RemoteAuthClient
from .database import Base, engine, get_db
from .models import UserRole
from .rate_limiter import ip_rate_limiter

SERVICE_NAME = "users"

logger = configure_logging(SERVICE_NAME)

# Create tables on startup
Base.metadata.create_all(bind=engine)

app = FastAPI(title="Users Service", version="1.0.0")
router_v1 = APIRouter(prefix="/api/v1")


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "service": SERVICE_NAME,
            "path": request.url.path,
            "method": request.method,
            "status_code": exc.status_code,
            "detail": exc.detail,
        },
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={
            "service": SERVICE_NAME,
            "path": request.url.path,
            "method": request.method,
            "status_code": 500,
            "detail": "Internal server error",
        },
    )


@app.get("/")
def root():
    return {"service": SERVICE_NAME, "status": "running"}


def get_auth_client() -> RemoteAuthClient:
    """Client for the remote authentication API; overridden in tests."""
    return RemoteAuthClient()


# ---------- Password Strength ----------

def validate_password_strength(password: str):
    """
    Validate password complexity rules for the local admin account.

    A valid password must:
    - Be at least 8 characters long
    - Contain at least one letter
    - Contain at least one digit

    Raises
    ------
    HTTPException
        If the password does not meet the strength requirements.
    """
    if len(password) < 8:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Password must be at least 8 characters long",
        )
    if not re.search(r"[A-Za-z]", password):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Password must contain at least one letter",
        )
    if not re.search(r"\d", password):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Password must contain at least one digit",
        )


# ---------- Registration ----------

@router_v1.post(
    "/users/register",
    response_model=schemas.RegisteredUser,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(ip_rate_limiter)],
)
def register_user(
    user_in: schemas.UserRegister,
    auth_client: RemoteAuthClient = Depends(get_auth_client),
):
    """
    Register a new account with the authentication API.

    Returns
    -------
    RegisteredUser
        ID number and name of the created account. The user signs in
        afterwards through ``/users/login``.

    Raises
    ------
    HTTPException
        400 with the API's first validation error, 502/503 if the API is
        unavailable.
    """
    created = auth_client.register(user_in.model_dump(exclude_none=True))
    logger.info("Registered account %s", user_in.id_number)
    return schemas.RegisteredUser(
        id_number=str(created.get("id_number") or user_in.id_number),
        first_name=created.get("first_name") or user_in.first_name,
        last_name=created.get("last_name") or user_in.last_name,
    )


# ---------- Login (token) ----------

@router_v1.post("/users/login", response_model=schemas.Token, dependencies=[Depends(ip_rate_limiter)])
def login(
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: Session = Depends(get_db),
    auth_client: RemoteAuthClient = Depends(get_auth_client),
):
    """
    Authenticate a user and return a JWT access token.

    Behavior
    --------
    - The local admin account is checked first; it signs in as admin.
    - Anyone else signs in with ID number and password against the remote
      authentication API; staff and superusers become admins.

    Parameters
    ----------
    form_data : OAuth2PasswordRequestForm
        Login credentials; ``username`` holds the ID number.

    Returns
    -------
    Token
        Access token carrying user id, display name and role.

    Raises
    ------
    HTTPException
        401 if authentication fails, 502/503 if the remote API is unavailable.
    """
    if not form_data.username or not form_data.password:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Please enter ID Number and Password",
        )

    admin = authenticate_local_admin(db, form_data.username, form_data.password)
    if admin is not None:
        claims = {
            "sub": admin.username,
            "user_id": local_admin_user_id(admin),
            "display_name": admin.display_name,
            "role": UserRole.ADMIN.value,
        }
        logger.info("Local admin %s signed in", admin.username)
    else:
        identity = auth_client.login(form_data.username, form_data.password)
        claims = {
            "sub": identity.username or form_data.username,
            "user_id": identity.id,
            "display_name": identity.display_name,
            "role": (UserRole.ADMIN if identity.is_admin else UserRole.REGULAR).value,
        }
        logger.info("User %s signed in as %s", identity.id, claims["role"])

    access_token = create_access_token(
        data=claims,
        expires_delta=timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES),
    )
    return {"access_token": access_token, "token_type": "bearer"}


# ---------- Current user ----------

@router_v1.get("/users/me", response_model=schemas.UserRead)
def get_me(claims: schemas.TokenData = Depends(get_current_claims)):
    """
    Return the identity carried by the caller's token.
    """
    return schemas.UserRead(
        id=claims.user_id,
        username=claims.username,
        display_name=claims.display_name,
        role=claims.role,
        is_admin=claims.role == UserRole.ADMIN,
    )


# ---------- Local admin credentials ----------

@router_v1.put("/users/admin/credentials", response_model=schemas.AdminAccountRead)
def update_admin_credentials(
    update_data: schemas.AdminCredentialsUpdate,
    db: Session = Depends(get_db),
    _: schemas.TokenData = Depends(require_admin),
):
    """
    Admin only: change the local admin username and/or password.

    Raises
    ------
    HTTPException
        403 if the current password does not match, 400 if the new password
        is weak.
    """
    account = ensure_admin_account(db)
    if not verify_password(update_data.current_password, account.hashed_password):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Current password is incorrect",
        )

    if update_data.new_password is not None:
        validate_password_strength(update_data.new_password)
        account.hashed_password = get_password_hash(update_data.new_password)
    if update_data.new_username is not None:
        account.username = update_data.new_username.strip()

    db.add(account)
    db.commit()
    db.refresh(account)
    logger.info("Local admin credentials updated")
    return account


app.include_router(router_v1)
