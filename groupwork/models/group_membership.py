"""Group membership model definitions."""

from sqlalchemy import Column, ForeignKey, Index, Integer, UniqueConstraint
from sqlalchemy.orm import relationship

from groupwork.database import Base


class GroupMembership(Base):
    """Links one student to the group answering one assignment."""
    __tablename__ = "assignment_groups"
    __table_args__ = (
        UniqueConstraint("assignment_id", "student_id", name="uq_assignment_groups_pair"),
        Index("idx_assignment_groups_student", "student_id", "assignment_id"),
    )

    id = Column(Integer, primary_key=True)
    assignment_id = Column(Integer, ForeignKey("assignments.id"), nullable=False)
    student_id = Column(Integer, ForeignKey("users.id"), nullable=False)

    assignment = relationship("Assignment", back_populates="memberships")
    student = relationship("User")
