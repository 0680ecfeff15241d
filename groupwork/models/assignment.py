"""Assignment model definitions."""

from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import relationship

from groupwork.core import config
from groupwork.database import Base


OPEN_STATUS = "open"
CLOSED_STATUS = "closed"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Assignment(Base):
    """A question handed to one group of students by one teacher."""
    __tablename__ = "assignments"
    __table_args__ = (
        CheckConstraint("status IN ('open', 'closed')", name="ck_assignments_status"),
        CheckConstraint(
            f"score IS NULL OR (score >= {config.MIN_SCORE} AND score <= {config.MAX_SCORE})",
            name="ck_assignments_score_range",
        ),
        Index("idx_assignments_teacher_status", "teacher_id", "status"),
    )

    id = Column(Integer, primary_key=True)
    question = Column(Text, nullable=False)
    answer = Column(Text)
    score = Column(Integer)
    status = Column(String, nullable=False, default=OPEN_STATUS)
    teacher_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime, nullable=False, default=_utcnow)

    teacher = relationship("User", foreign_keys=[teacher_id])
    memberships = relationship("GroupMembership", back_populates="assignment", cascade="all, delete-orphan")
    members = relationship(
        "User",
        secondary="assignment_groups",
        order_by="User.name",
        viewonly=True,
    )

    @property
    def group_size(self) -> int:
        return len(self.members)
