"""Pairing rule: two students may not share too many groups under one teacher.

Every unordered pair drawn from a proposed group is counted against the
teacher's existing assignments in a single aggregate query. The memberships
table is joined to itself on ``assignment_id`` with ``s1.student_id <
s2.student_id`` so each pair is seen once and self-pairs never appear.
"""

import logging
from typing import Iterable

from sqlalchemy import and_, distinct, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, aliased

from groupwork.core import config
from groupwork.core.errors import StorageError
from groupwork.models.assignment import Assignment
from groupwork.models.group_membership import GroupMembership

logger = logging.getLogger(__name__)


def normalize_student_ids(student_ids: Iterable[int]) -> list[int]:
    return sorted(set(student_ids))


def find_repeated_pairs(db: Session, student_ids: Iterable[int], teacher_id: int) -> list[tuple[int, int]]:
    """Return the pairs from ``student_ids`` that already hit the repeat limit."""
    candidates = normalize_student_ids(student_ids)
    if len(candidates) < 2:
        return []

    first = aliased(GroupMembership)
    second = aliased(GroupMembership)
    shared = func.count(distinct(first.assignment_id))

    try:
        rows = (
            db.query(first.student_id, second.student_id)
            .join(
                second,
                and_(
                    first.assignment_id == second.assignment_id,
                    first.student_id < second.student_id,
                ),
            )
            .join(Assignment, Assignment.id == first.assignment_id)
            .filter(
                first.student_id.in_(candidates),
                second.student_id.in_(candidates),
                Assignment.teacher_id == teacher_id,
            )
            .group_by(first.student_id, second.student_id)
            .having(shared >= config.PAIR_REPEAT_LIMIT)
            .order_by(first.student_id, second.student_id)
            .all()
        )
    except SQLAlchemyError as exc:
        logger.exception("Pairing check failed for teacher %s", teacher_id)
        raise StorageError("Could not check group pairings.") from exc

    return [(low, high) for low, high in rows]


def can_form_group(db: Session, student_ids: Iterable[int], teacher_id: int) -> bool:
    return not find_repeated_pairs(db, student_ids, teacher_id)
