from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from .models import UserRole


# ---------- Input schemas ----------

class UserRegister(BaseModel):
    """
    Schema for account registration, forwarded to the authentication API.
    """
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    id_number: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)
    email: Optional[EmailStr] = None


class AdminCredentialsUpdate(BaseModel):
    """
    Schema for changing the local admin credentials.

    Attributes
    ----------
    current_password : str
        Must match the stored password.
    new_username : Optional[str]
        New login name; unchanged when omitted.
    new_password : Optional[str]
        New password; unchanged when omitted.
    """
    current_password: str
    new_username: Optional[str] = Field(default=None, min_length=1)
    new_password: Optional[str] = None


# ---------- Output schemas ----------

class UserRead(BaseModel):
    """
    The identity carried by a token.
    """
    id: str
    username: str
    display_name: str
    role: UserRole
    is_admin: bool


class RegisteredUser(BaseModel):
    id_number: str
    first_name: str = ""
    last_name: str = ""

    model_config = ConfigDict(extra="ignore")


class AdminAccountRead(BaseModel):
    username: str
    display_name: str

    model_config = ConfigDict(from_attributes=True)


# ---------- Token schemas ----------

class Token(BaseModel):
    """
    Schema for JWT access token responses.

    Attributes
    ----------
    access_token : str
        Encoded JWT.
    token_type : str
        Token type, usually 'bearer'.
    """
    access_token: str
    token_type: str = "bearer"


class TokenData(BaseModel):
    """
    Internal schema for decoded token payload.

    Attributes
    ----------
    username : str
        Login name ('sub' claim).
    user_id : str
        Stable identity used for booking ownership.
    display_name : str
        Name shown on bookings.
    role : UserRole
        Role embedded in the token.
    """
    username: str
    user_id: str
    display_name: str
    role: UserRole
