import secrets
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from mascot_chat.core_app.database import models
from mascot_chat.core_app.exceptions import StorageError
from mascot_chat.core_app.schemas.user import SessionData
from mascot_chat.core_app.tools.setup_logger import setup_logger

logger = setup_logger(__name__.upper())

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    # SQLite drops tzinfo on the way back
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def new_session_id() -> str:
    return secrets.token_urlsafe(32)


class SessionStore(ABC):
    """
    Server-side session records, each bound to a user id and a time-to-live
    """

    @abstractmethod
    def create(self, user_id: int, ttl: int) -> SessionData:
        ...

    @abstractmethod
    def get(self, sid: str) -> Optional[SessionData]:
        """Returns the live session or None. Expired sessions are destroyed on read."""

    @abstractmethod
    def touch(self, sid: str, ttl: int) -> Optional[SessionData]:
        """Pushes the expiry ttl seconds into the future (rolling sessions)."""

    @abstractmethod
    def destroy(self, sid: str) -> None:
        ...

    @abstractmethod
    def clear(self) -> None:
        ...


class MemorySessionStore(SessionStore):
    def __init__(self, clock: Clock = utcnow):
        self._clock = clock
        self._sessions: Dict[str, SessionData] = {}

    def create(self, user_id: int, ttl: int) -> SessionData:
        self._prune()
        session = SessionData(
            sid=new_session_id(),
            user_id=user_id,
            expires_at=self._clock() + timedelta(seconds=ttl),
        )
        self._sessions[session.sid] = session
        return session

    def get(self, sid: str) -> Optional[SessionData]:
        session = self._sessions.get(sid)
        if session is None:
            return None
        if session.expires_at <= self._clock():
            self._sessions.pop(sid, None)
            return None
        return session

    def touch(self, sid: str, ttl: int) -> Optional[SessionData]:
        session = self.get(sid)
        if session is None:
            return None
        renewed = session.model_copy(update={"expires_at": self._clock() + timedelta(seconds=ttl)})
        self._sessions[sid] = renewed
        return renewed

    def destroy(self, sid: str) -> None:
        self._sessions.pop(sid, None)

    def clear(self) -> None:
        self._sessions.clear()

    def _prune(self) -> None:
        now = self._clock()
        expired = [sid for sid, s in self._sessions.items() if s.expires_at <= now]
        for sid in expired:
            del self._sessions[sid]


class DatabaseSessionStore(SessionStore):
    def __init__(self, session_factory: sessionmaker, clock: Clock = utcnow):
        self._session_factory = session_factory
        self._clock = clock

    def create(self, user_id: int, ttl: int) -> SessionData:
        record = models.SessionRecord(
            sid=new_session_id(),
            user_id=user_id,
            expires_at=self._clock() + timedelta(seconds=ttl),
        )
        db = self._session_factory()
        try:
            db.add(record)
            db.commit()
            return self._to_schema(record)
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to create session for user {user_id}: {e}")
            raise StorageError("Failed to create session") from e
        finally:
            db.close()

    def get(self, sid: str) -> Optional[SessionData]:
        db = self._session_factory()
        try:
            record = db.get(models.SessionRecord, sid)
            if record is None:
                return None
            if as_utc(record.expires_at) <= self._clock():
                db.delete(record)
                db.commit()
                return None
            return self._to_schema(record)
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to read session: {e}")
            raise StorageError("Failed to read session") from e
        finally:
            db.close()

    def touch(self, sid: str, ttl: int) -> Optional[SessionData]:
        db = self._session_factory()
        try:
            record = db.get(models.SessionRecord, sid)
            if record is None or as_utc(record.expires_at) <= self._clock():
                return None
            record.expires_at = self._clock() + timedelta(seconds=ttl)
            db.commit()
            return self._to_schema(record)
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to renew session: {e}")
            raise StorageError("Failed to renew session") from e
        finally:
            db.close()

    def destroy(self, sid: str) -> None:
        db = self._session_factory()
        try:
            db.query(models.SessionRecord).filter(models.SessionRecord.sid == sid).delete()
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to destroy session: {e}")
            raise StorageError("Failed to destroy session") from e
        finally:
            db.close()

    def clear(self) -> None:
        db = self._session_factory()
        try:
            db.query(models.SessionRecord).delete()
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise StorageError("Failed to clear sessions") from e
        finally:
            db.close()

    @staticmethod
    def _to_schema(record: models.SessionRecord) -> SessionData:
        return SessionData(sid=record.sid, user_id=record.user_id, expires_at=as_utc(record.expires_at))
