import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, List, Optional

from sqlalchemy import create_engine, text as sql_text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.exc import SQLAlchemyError

from .models import Base, Message


class StorageError(Exception):
    """The underlying database failed (I/O, permissions, corruption, ...)."""


# ids are signed 64-bit integers; anything outside cannot match a row
MIN_ID = -(2**63)
MAX_ID = 2**63 - 1


def _id_in_range(message_id: int) -> bool:
    return MIN_ID <= message_id <= MAX_ID


def _engine_connect_args(url: str) -> dict:
    if url.startswith("sqlite"):
        return {"check_same_thread": False}
    return {}


class MessageStore:
    """
    Owns the engine for a single messages table.

    Writes are serialized through one lock and committed before returning,
    so a successful call survives a process restart. Reads are not locked
    and see the latest committed state. "Not found" is reported as
    None / False, never as an exception.
    """

    def __init__(self, database_url: str) -> None:
        self.database_url = database_url
        self._engine: Optional[Engine] = None
        self._sessionmaker: Optional[sessionmaker] = None
        self._write_lock = threading.Lock()

    # ---------- Lifecycle ----------

    def open(self) -> "MessageStore":
        if self._engine is not None:
            return self
        engine = create_engine(
            self.database_url,
            connect_args=_engine_connect_args(self.database_url),
        )
        try:
            Base.metadata.create_all(bind=engine)
        except SQLAlchemyError as exc:
            engine.dispose()
            raise StorageError(f"cannot open {self.database_url}: {exc}") from exc
        self._engine = engine
        self._sessionmaker = sessionmaker(
            bind=engine, autoflush=False, autocommit=False, expire_on_commit=False
        )
        return self

    def close(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
        self._engine = None
        self._sessionmaker = None

    @property
    def is_open(self) -> bool:
        return self._engine is not None

    @contextmanager
    def _session(self, op: str) -> Iterator[Session]:
        if self._sessionmaker is None:
            raise StorageError(f"{op} failed: message store is not open")
        db = self._sessionmaker()
        try:
            yield db
        except SQLAlchemyError as exc:
            db.rollback()
            raise StorageError(f"{op} failed: {exc}") from exc
        finally:
            db.close()

    def ping(self) -> None:
        with self._session("ping") as db:
            db.execute(sql_text("SELECT 1"))

    # ---------- Writes ----------

    def create(self, text: str) -> int:
        """Insert a message and return its new id. `text` must already be validated."""
        with self._write_lock, self._session("create") as db:
            msg = Message(text=text, created_at=datetime.now(timezone.utc))
            db.add(msg)
            db.commit()
            return msg.id

    def update(self, message_id: int, text: str) -> bool:
        if not _id_in_range(message_id):
            return False
        with self._write_lock, self._session("update") as db:
            matched = (
                db.query(Message)
                .filter(Message.id == message_id)
                .update({Message.text: text}, synchronize_session=False)
            )
            db.commit()
            return matched > 0

    def delete(self, message_id: int) -> bool:
        if not _id_in_range(message_id):
            return False
        with self._write_lock, self._session("delete") as db:
            matched = (
                db.query(Message)
                .filter(Message.id == message_id)
                .delete(synchronize_session=False)
            )
            db.commit()
            return matched > 0

    # ---------- Reads ----------

    def get_all(self) -> List[Message]:
        with self._session("get_all") as db:
            return (
                db.query(Message)
                .order_by(Message.created_at.desc(), Message.id.desc())
                .all()
            )

    def get_by_id(self, message_id: int) -> Optional[Message]:
        if not _id_in_range(message_id):
            return None
        with self._session("get_by_id") as db:
            return db.get(Message, message_id)
