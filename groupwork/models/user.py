"""User model definitions."""

from sqlalchemy import CheckConstraint, Column, Integer, String
from groupwork.database import Base


TEACHER_ROLE = "teacher"
STUDENT_ROLE = "student"
ROLES = (TEACHER_ROLE, STUDENT_ROLE)


class User(Base):
    """Represents a teacher or a student."""
    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint("role IN ('teacher', 'student')", name="ck_users_role"),
    )

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String, unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    name = Column(String, nullable=False)
    role = Column(String, nullable=False)
