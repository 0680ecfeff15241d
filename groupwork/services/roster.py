"""Roster store operations for teachers and students."""

import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from groupwork.auth.passwords import hash_password, verify_password
from groupwork.core.errors import StorageError
from groupwork.models.user import ROLES, STUDENT_ROLE, User

logger = logging.getLogger(__name__)


def create_user(db: Session, username: str, password: str, name: str, role: str) -> User:
    if role not in ROLES:
        raise ValueError(f"Unknown role {role!r}.")

    user = User(
        username=username.strip(),
        hashed_password=hash_password(password),
        name=name.strip(),
        role=role,
    )
    try:
        db.add(user)
        db.commit()
        db.refresh(user)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Could not create user %s", username)
        raise StorageError("Could not create user.") from exc
    return user


def get_user_by_username(db: Session, username: str) -> User | None:
    try:
        return db.query(User).filter(User.username == username).first()
    except SQLAlchemyError as exc:
        logger.exception("Could not load user %s", username)
        raise StorageError("Could not load user.") from exc


def list_students(db: Session) -> list[User]:
    try:
        return db.query(User).filter(User.role == STUDENT_ROLE).order_by(User.name.asc(), User.id.asc()).all()
    except SQLAlchemyError as exc:
        logger.exception("Could not list students")
        raise StorageError("Could not list students.") from exc


def authenticate(db: Session, username: str, password: str) -> User | None:
    """Return the user when the password matches, otherwise None."""
    user = get_user_by_username(db, username.strip())
    if user is None or not verify_password(password, user.hashed_password):
        return None
    return user
