"""Per-student standings across one teacher's assignments.

Counts and score shares are aggregated in the database; averaging, rounding
and ordering happen here so the result does not depend on how a particular
database rounds floats or places NULLs.
"""

import logging
from dataclasses import dataclass

from sqlalchemy import Float, case, cast, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from groupwork.core.errors import StorageError
from groupwork.models.assignment import CLOSED_STATUS, OPEN_STATUS, Assignment
from groupwork.models.group_membership import GroupMembership
from groupwork.models.user import STUDENT_ROLE, User

logger = logging.getLogger(__name__)

SORT_BY_NAME = "name"
SORT_BY_ASSIGNMENTS = "assignments"
SORT_BY_AVERAGE = "average"
SORT_KEYS = (SORT_BY_NAME, SORT_BY_ASSIGNMENTS, SORT_BY_AVERAGE)


@dataclass(frozen=True)
class StudentStanding:
    id: int
    name: str
    open_count: int
    closed_count: int
    total_count: int
    average_score: float | None


def _average(share_total: float | None, closed_count: int) -> float | None:
    if closed_count == 0:
        return None
    return round((share_total or 0.0) / closed_count, 2)


def _sort_standings(standings: list[StudentStanding], sort_key: str) -> list[StudentStanding]:
    if sort_key == SORT_BY_NAME:
        return sorted(standings, key=lambda standing: (standing.name, standing.id))
    if sort_key == SORT_BY_ASSIGNMENTS:
        return sorted(standings, key=lambda standing: (-standing.total_count, standing.name, standing.id))
    if sort_key == SORT_BY_AVERAGE:
        # Students without a closed assignment go last.
        return sorted(
            standings,
            key=lambda standing: (
                standing.average_score is None,
                -(standing.average_score or 0.0),
                standing.name,
                standing.id,
            ),
        )
    raise ValueError(f"Unknown sort key {sort_key!r}; expected one of {', '.join(SORT_KEYS)}.")


def class_status(db: Session, teacher_id: int, sort_key: str = SORT_BY_NAME) -> list[StudentStanding]:
    if sort_key not in SORT_KEYS:
        raise ValueError(f"Unknown sort key {sort_key!r}; expected one of {', '.join(SORT_KEYS)}.")

    group_sizes = (
        db.query(
            GroupMembership.assignment_id.label("assignment_id"),
            func.count(GroupMembership.id).label("group_size"),
        )
        .group_by(GroupMembership.assignment_id)
        .subquery()
    )
    teacher_memberships = (
        db.query(
            GroupMembership.student_id.label("student_id"),
            Assignment.status.label("status"),
            Assignment.score.label("score"),
            group_sizes.c.group_size.label("group_size"),
        )
        .join(Assignment, Assignment.id == GroupMembership.assignment_id)
        .join(group_sizes, group_sizes.c.assignment_id == Assignment.id)
        .filter(Assignment.teacher_id == teacher_id)
        .subquery()
    )

    is_open = teacher_memberships.c.status == OPEN_STATUS
    is_closed = teacher_memberships.c.status == CLOSED_STATUS
    share = cast(teacher_memberships.c.score, Float) / teacher_memberships.c.group_size

    try:
        rows = (
            db.query(
                User.id,
                User.name,
                func.count(case((is_open, 1))).label("open_count"),
                func.count(case((is_closed, 1))).label("closed_count"),
                func.sum(case((is_closed, share))).label("share_total"),
            )
            .outerjoin(teacher_memberships, teacher_memberships.c.student_id == User.id)
            .filter(User.role == STUDENT_ROLE)
            .group_by(User.id, User.name)
            .all()
        )
    except SQLAlchemyError as exc:
        logger.exception("Could not compute class status for teacher %s", teacher_id)
        raise StorageError("Could not compute class status.") from exc

    standings = [
        StudentStanding(
            id=student_id,
            name=name,
            open_count=open_count,
            closed_count=closed_count,
            total_count=open_count + closed_count,
            average_score=_average(share_total, closed_count),
        )
        for student_id, name, open_count, closed_count, share_total in rows
    ]
    return _sort_standings(standings, sort_key)
