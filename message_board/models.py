from datetime import datetime, timezone

from sqlalchemy.orm import declarative_base
from sqlalchemy import Column, DateTime, Integer, Text
from sqlalchemy.types import TypeDecorator

Base = declarative_base()


class UTCDateTime(TypeDecorator):
    """Stores naive UTC, always hands back aware UTC datetimes."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return value.replace(tzinfo=timezone.utc)


class Message(Base):
    __tablename__ = "messages"
    # AUTOINCREMENT keeps sqlite from handing out ids of deleted rows
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True)
    text = Column(Text, nullable=False)            # trimmed, 1..500 chars
    created_at = Column(UTCDateTime, nullable=False)  # server time, UTC

    def __repr__(self) -> str:
        return f"<Message id={self.id} created_at={self.created_at}>"
