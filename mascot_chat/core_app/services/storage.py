# mascot_chat/core_app/services/storage.py
from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Dict, List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from mascot_chat.core_app.config import Settings
from mascot_chat.core_app.database import models
from mascot_chat.core_app.database.session import create_session_factory
from mascot_chat.core_app.exceptions import ConflictError, NotFoundError, StorageError
from mascot_chat.core_app.schemas.message import Message, MessageMetadata, MessageType, Role
from mascot_chat.core_app.schemas.user import AvatarCustomization, User
from mascot_chat.core_app.services.sessions import (
    Clock,
    DatabaseSessionStore,
    MemorySessionStore,
    SessionStore,
    as_utc,
    utcnow,
)
from mascot_chat.core_app.tools.setup_logger import setup_logger

logger = setup_logger(__name__.upper())


class Storage(ABC):
    """
    Message log plus user records. The two implementations are interchangeable;
    callers only ever see this interface.
    """

    sessions: SessionStore

    @abstractmethod
    def get_messages(self) -> List[Message]:
        """All messages, oldest first."""

    @abstractmethod
    def create_message(self, content: str, metadata: MessageMetadata) -> Message:
        ...

    @abstractmethod
    def clear_messages(self) -> None:
        ...

    @abstractmethod
    def get_user(self, user_id: int) -> Optional[User]:
        ...

    @abstractmethod
    def get_user_by_username(self, username: str) -> Optional[User]:
        ...

    @abstractmethod
    def create_user(self, username: str, password_hash: str) -> User:
        """Raises ConflictError when the username is taken."""

    @abstractmethod
    def update_user_avatar(self, user_id: int, settings: AvatarCustomization) -> User:
        """Replaces the avatar settings wholesale. Raises NotFoundError for unknown ids."""


class MemStorage(Storage):
    def __init__(self, retention: Optional[timedelta] = None, clock: Clock = utcnow):
        self.retention = retention
        self._clock = clock
        self._messages: List[Message] = []
        self._users: Dict[int, User] = {}
        self._next_message_id = 1
        self._next_user_id = 1
        self.sessions = MemorySessionStore(clock=clock)

    def get_messages(self) -> List[Message]:
        self._prune()
        return list(self._messages)

    def create_message(self, content: str, metadata: MessageMetadata) -> Message:
        self._prune()
        message = Message(
            id=self._next_message_id,
            content=content,
            metadata=metadata,
            created_at=self._clock(),
        )
        self._next_message_id += 1
        self._messages.append(message)
        return message

    def clear_messages(self) -> None:
        self._messages = []

    def get_user(self, user_id: int) -> Optional[User]:
        return self._users.get(user_id)

    def get_user_by_username(self, username: str) -> Optional[User]:
        for user in self._users.values():
            if user.username == username:
                return user
        return None

    def create_user(self, username: str, password_hash: str) -> User:
        if self.get_user_by_username(username) is not None:
            raise ConflictError("Username already exists")
        user = User(
            id=self._next_user_id,
            username=username,
            password=password_hash,
            avatar_settings=AvatarCustomization(),
            created_at=self._clock(),
        )
        self._next_user_id += 1
        self._users[user.id] = user
        return user

    def update_user_avatar(self, user_id: int, settings: AvatarCustomization) -> User:
        user = self._users.get(user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found")
        updated = user.model_copy(update={"avatar_settings": settings.model_copy()})
        self._users[user_id] = updated
        return updated

    def _prune(self) -> None:
        if self.retention is None:
            return
        cutoff = self._clock() - self.retention
        kept = [m for m in self._messages if m.created_at >= cutoff]
        dropped = len(self._messages) - len(kept)
        if dropped:
            logger.debug(f"Pruned {dropped} messages older than {self.retention}")
            self._messages = kept


class DatabaseStorage(Storage):
    def __init__(self, session_factory: sessionmaker, clock: Clock = utcnow):
        self._session_factory = session_factory
        self._clock = clock
        self.sessions = DatabaseSessionStore(session_factory, clock=clock)

    def get_messages(self) -> List[Message]:
        db = self._session_factory()
        try:
            rows = db.query(models.Message).order_by(models.Message.created_at, models.Message.id).all()
            return [self._message_from_row(row) for row in rows]
        except SQLAlchemyError as e:
            logger.error(f"Failed to load messages: {e}")
            raise StorageError("Failed to load messages") from e
        finally:
            db.close()

    def create_message(self, content: str, metadata: MessageMetadata) -> Message:
        row = models.Message(
            content=content,
            role=metadata.role.value,
            sentiment=metadata.sentiment,
            message_type=metadata.type.value if metadata.type else None,
            degraded=metadata.degraded,
            created_at=self._clock(),
        )
        db = self._session_factory()
        try:
            db.add(row)
            db.commit()
            return self._message_from_row(row)
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to save message: {e}")
            raise StorageError("Failed to save message") from e
        finally:
            db.close()

    def clear_messages(self) -> None:
        db = self._session_factory()
        try:
            db.query(models.Message).delete()
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to clear messages: {e}")
            raise StorageError("Failed to clear messages") from e
        finally:
            db.close()

    def get_user(self, user_id: int) -> Optional[User]:
        db = self._session_factory()
        try:
            row = db.get(models.User, user_id)
            return self._user_from_row(row) if row else None
        except SQLAlchemyError as e:
            raise StorageError("Failed to load user") from e
        finally:
            db.close()

    def get_user_by_username(self, username: str) -> Optional[User]:
        db = self._session_factory()
        try:
            row = db.query(models.User).filter(models.User.username == username).first()
            return self._user_from_row(row) if row else None
        except SQLAlchemyError as e:
            raise StorageError("Failed to load user") from e
        finally:
            db.close()

    def create_user(self, username: str, password_hash: str) -> User:
        db = self._session_factory()
        try:
            if db.query(models.User).filter(models.User.username == username).first():
                raise ConflictError("Username already exists")
            row = models.User(
                username=username,
                password=password_hash,
                avatar_settings=AvatarCustomization().model_dump(mode="json"),
                created_at=self._clock(),
            )
            db.add(row)
            db.commit()
            return self._user_from_row(row)
        except IntegrityError as e:
            # a concurrent registration won the race for the unique index
            db.rollback()
            raise ConflictError("Username already exists") from e
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to create user {username}: {e}")
            raise StorageError("Failed to create user") from e
        finally:
            db.close()

    def update_user_avatar(self, user_id: int, settings: AvatarCustomization) -> User:
        db = self._session_factory()
        try:
            row = db.get(models.User, user_id)
            if row is None:
                raise NotFoundError(f"User {user_id} not found")
            row.avatar_settings = settings.model_dump(mode="json")
            db.commit()
            return self._user_from_row(row)
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to update avatar for user {user_id}: {e}")
            raise StorageError("Failed to update avatar") from e
        finally:
            db.close()

    @staticmethod
    def _message_from_row(row: models.Message) -> Message:
        return Message(
            id=row.id,
            content=row.content,
            metadata=MessageMetadata(
                role=Role(row.role),
                sentiment=row.sentiment,
                type=MessageType(row.message_type) if row.message_type else None,
                degraded=bool(row.degraded),
            ),
            created_at=as_utc(row.created_at),
        )

    @staticmethod
    def _user_from_row(row: models.User) -> User:
        return User(
            id=row.id,
            username=row.username,
            password=row.password,
            avatar_settings=AvatarCustomization.model_validate(row.avatar_settings),
            created_at=as_utc(row.created_at),
        )


def create_storage(settings: Settings) -> Storage:
    """
    Postgres (or any SQLAlchemy URL) when DATABASE_URL is set, otherwise in-memory
    """
    if settings.database_url:
        logger.info("Using database storage")
        return DatabaseStorage(create_session_factory(settings.database_url))

    retention = None
    if settings.message_retention_minutes:
        retention = timedelta(minutes=settings.message_retention_minutes)
    logger.info(f"Using in-memory storage (retention: {retention or 'unlimited'})")
    return MemStorage(retention=retention)
