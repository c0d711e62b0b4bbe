from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, String, Text

from .database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Snapshot(Base):
    """
    SQLAlchemy model for an opaque key/value snapshot.

    The rooms service keeps its whole data set in one row: the room list is
    serialised as JSON into ``payload`` under the key ``rooms_v1``.

    Attributes
    ----------
    key : str
        Primary key naming the snapshot.
    payload : str
        JSON document.
    updated_at : datetime
        Timestamp of the last save.
    """
    __tablename__ = "snapshots"

    key = Column(String(64), primary_key=True)
    payload = Column(Text, nullable=False)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)
