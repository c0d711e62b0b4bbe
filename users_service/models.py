from datetime import datetime, timezone
from enum import Enum as PyEnum

from sqlalchemy import Column, DateTime, Integer, String

from .database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserRole(str, PyEnum):
    """
    Roles carried in issued tokens.

    Roles
    -----
    admin
        May administer rooms and cancel any booking.
    regular
        May book rooms and cancel their own bookings.
    """
    ADMIN = "admin"
    REGULAR = "regular"


class AdminAccount(Base):
    """
    SQLAlchemy model for the local administrator account.

    Regular users sign in against the remote authentication API; only the
    administrator is stored locally so that rooms can be managed even when
    the remote API is unavailable.

    Attributes
    ----------
    id : int
        Primary key.
    username : str
        Login name of the administrator.
    display_name : str
        Name shown on bookings made by the administrator.
    hashed_password : str
        Bcrypt-hashed password.
    updated_at : datetime
        Timestamp of the last credentials change.
    """
    __tablename__ = "admin_accounts"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String, unique=True, index=True, nullable=False)
    display_name = Column(String, nullable=False, default="Super Admin")
    hashed_password = Column(String, nullable=False)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)
