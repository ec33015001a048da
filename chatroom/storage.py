import logging
from datetime import datetime, timedelta
from typing import Generator, List, Optional

from sqlalchemy import and_, create_engine, inspect, or_, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from chatroom.config import settings
from chatroom.errors import ValidationError
from chatroom.utils import utcnow

logger = logging.getLogger(__name__)

# check_same_thread=False is required for SQLite to work with FastAPI's threadpool
_connect_args = {"check_same_thread": False} if settings.DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(
    settings.DATABASE_URL,
    connect_args=_connect_args,
    echo=False,
)

# Create SessionLocal class for creating database sessions
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for SQLAlchemy models
Base = declarative_base()


def init_db() -> None:
    """
    Initialize the database by creating all tables.
    Called during application startup.
    """
    logger.debug(f"Initializing database with URL: {settings.DATABASE_URL}")
    try:
        # Import models to register them with Base.metadata
        from chatroom import models  # noqa: F401

        logger.debug("Creating database tables...")
        Base.metadata.create_all(bind=engine)
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise


def get_db() -> Generator[Session, None, None]:
    """
    Dependency to get database session.
    Yields a session and ensures it's closed after use.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def check_db_health() -> bool:
    """
    Check if the database is reachable and schema is applied.

    Returns:
        True if DB is healthy and schema exists, False otherwise.
    """
    logger.debug("Checking database health...")
    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
            logger.debug("Database connectivity OK")

        tables = set(inspect(engine).get_table_names())
        missing = {"users", "messages", "sessions"} - tables
        if missing:
            logger.error(f"Database schema not applied: missing tables {sorted(missing)}")
            return False
        logger.debug("Database health check passed")
        return True
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}")
        return False


def _commit(db: Session, action: str) -> None:
    """Commit the unit of work, rolling back and re-raising on failure."""
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to {action}: {e}")
        raise


# =============================================================================
# Message Repository Functions
# =============================================================================

def create_message(db: Session, user_id: int, content: str):
    """
    Persist a new message authored by user_id.

    created_at and updated_at are set from a single clock reading so that
    delta queries can tell a fresh row from an edited one.

    Returns:
        The created Message
    """
    from chatroom.models import Message

    now = utcnow()
    message = Message(
        content=content,
        user_id=user_id,
        created_at=now,
        updated_at=now,
    )
    db.add(message)
    _commit(db, f"create message for user {user_id}")
    db.refresh(message)
    logger.info(f"Message created: id={message.id}, user={user_id}")
    return message


def get_message_by_id(db: Session, message_id: int, include_deleted: bool = False):
    """
    Retrieve a message by its ID.

    Args:
        db: Database session
        message_id: Message identifier to look up
        include_deleted: Also return soft-deleted rows

    Returns:
        Message object if found, None otherwise
    """
    from chatroom.models import Message

    query = db.query(Message).filter(Message.id == message_id)
    if not include_deleted:
        query = query.filter(Message.deleted_at.is_(None))
    result = query.first()
    logger.debug(f"Message lookup {message_id}: {'found' if result else 'not found'}")
    return result


def get_all_messages(db: Session) -> List:
    """
    Retrieve every non-deleted message, oldest update first.

    Returns:
        List of Message objects ordered by updated_at ASC, id ASC
    """
    from chatroom.models import Message

    messages = (
        db.query(Message)
        .filter(Message.deleted_at.is_(None))
        .order_by(Message.updated_at.asc(), Message.id.asc())
        .all()
    )
    logger.info(f"Retrieved {len(messages)} messages")
    return messages


def get_messages_changed_since(db: Session, cursor: datetime) -> List:
    """
    Retrieve every message created, edited or deleted after cursor.

    Soft-deleted rows are included. Rows whose updated_at still equals
    created_at were never edited and only match through created_at, so a
    fresh row is returned once.

    Args:
        db: Database session
        cursor: Naive UTC timestamp the caller has already observed

    Returns:
        List of Message objects ordered by updated_at ASC, id ASC
    """
    from chatroom.models import Message

    logger.debug(f"Querying messages changed since {cursor.isoformat()}")
    messages = (
        db.query(Message)
        .filter(
            or_(
                Message.created_at > cursor,
                and_(
                    Message.updated_at > cursor,
                    Message.updated_at != Message.created_at,
                ),
                Message.deleted_at > cursor,
            )
        )
        .order_by(Message.updated_at.asc(), Message.id.asc())
        .all()
    )
    logger.info(f"Retrieved {len(messages)} changed messages")
    return messages


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def search_messages(db: Session, substring: str) -> List:
    """
    Retrieve non-deleted messages whose content contains substring.

    LIKE wildcards in substring are escaped and matched literally.
    """
    from chatroom.models import Message

    pattern = f"%{_escape_like(substring)}%"
    messages = (
        db.query(Message)
        .filter(Message.deleted_at.is_(None))
        .filter(Message.content.like(pattern, escape="\\"))
        .order_by(Message.updated_at.asc(), Message.id.asc())
        .all()
    )
    logger.info(f"Search matched {len(messages)} messages")
    return messages


def update_message_content(db: Session, message, content: str):
    """Overwrite content and bump updated_at."""
    message.content = content
    message.updated_at = utcnow()
    _commit(db, f"update message {message.id}")
    db.refresh(message)
    logger.info(f"Message updated: id={message.id}")
    return message


def soft_delete_message(db: Session, message):
    """Mark a message deleted; the row is kept for delta queries."""
    now = utcnow()
    message.deleted_at = now
    message.updated_at = now
    _commit(db, f"delete message {message.id}")
    db.refresh(message)
    logger.info(f"Message soft-deleted: id={message.id}")
    return message


# =============================================================================
# User Repository Functions
# =============================================================================

def create_user(db: Session, email: str, first_name: str, last_name: str, password_hash: str):
    """
    Create a user account.

    Raises:
        ValidationError: if the email is already registered
    """
    from chatroom.models import User

    user = User(
        email=email.lower(),
        first_name=first_name,
        last_name=last_name,
        password_hash=password_hash,
        created_at=utcnow(),
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.info(f"Registration rejected, email already registered: {email}")
        raise ValidationError("Email already registered")
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to create user {email}: {e}")
        raise
    db.refresh(user)
    logger.info(f"User created: id={user.id}")
    return user


def get_user_by_email(db: Session, email: str):
    from chatroom.models import User

    return db.query(User).filter(User.email == email.lower()).first()


def get_user_by_id(db: Session, user_id: int):
    from chatroom.models import User

    return db.query(User).filter(User.id == user_id).first()


# =============================================================================
# Session Repository Functions
# =============================================================================

def create_session(db: Session, user_id: int, token_hash: str, ttl_seconds: int):
    """Store a login session that expires ttl_seconds from now."""
    from chatroom.models import UserSession

    now = utcnow()
    user_session = UserSession(
        token_hash=token_hash,
        user_id=user_id,
        created_at=now,
        expires_at=now + timedelta(seconds=ttl_seconds),
    )
    db.add(user_session)
    _commit(db, f"create session for user {user_id}")
    logger.info(f"Session created for user {user_id}")
    return user_session


def get_session_user_id(db: Session, token_hash: str) -> Optional[int]:
    """
    Resolve a session token hash to its user id.

    Expired sessions are removed and resolve to None.
    """
    from chatroom.models import UserSession

    user_session = db.query(UserSession).filter(UserSession.token_hash == token_hash).first()
    if user_session is None:
        return None
    if user_session.expires_at <= utcnow():
        logger.info(f"Session expired for user {user_session.user_id}")
        db.delete(user_session)
        _commit(db, "remove expired session")
        return None
    return user_session.user_id


def delete_user_sessions(db: Session, user_id: int) -> int:
    """Remove every session belonging to user_id. Returns the number removed."""
    from chatroom.models import UserSession

    deleted = db.query(UserSession).filter(UserSession.user_id == user_id).delete()
    _commit(db, f"delete sessions for user {user_id}")
    logger.info(f"Deleted {deleted} sessions for user {user_id}")
    return deleted
