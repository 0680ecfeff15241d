"""Assignment lifecycle: creation under the pairing rule, answers, evaluation.

These functions trust their caller for authorization. Only the request layer
knows who is calling, so it must check that a teacher owns an assignment
before evaluating it and that a student belongs to a group before answering.
"""

import logging
from threading import Lock
from typing import Iterable
from weakref import WeakValueDictionary

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from groupwork.core import config
from groupwork.core.errors import ConstraintViolation, GroupworkError, InvalidScore, NotFound, StorageError
from groupwork.database import begin_write_transaction
from groupwork.models.assignment import CLOSED_STATUS, OPEN_STATUS, Assignment
from groupwork.models.group_membership import GroupMembership
from groupwork.models.user import STUDENT_ROLE, TEACHER_ROLE, User
from groupwork.services.pairing import find_repeated_pairs, normalize_student_ids

logger = logging.getLogger(__name__)

# Entries disappear once no creation for that teacher holds the lock.
_teacher_locks: "WeakValueDictionary[int, Lock]" = WeakValueDictionary()
_teacher_locks_guard = Lock()


def _teacher_lock(teacher_id: int) -> Lock:
    with _teacher_locks_guard:
        return _teacher_locks.setdefault(teacher_id, Lock())


def create_assignment(db: Session, question: str, student_ids: Iterable[int], teacher_id: int) -> int:
    """Create an open assignment for a group, enforcing the pairing rule.

    The pairing check and the inserts run in one write-locked transaction
    (BEGIN IMMEDIATE on SQLite, a row lock on the teacher elsewhere) while
    holding an in-process lock, so two concurrent creations for the same
    teacher cannot both pass the check, even from separate processes.
    """
    members = normalize_student_ids(student_ids)
    if not members:
        raise ConstraintViolation("A group needs at least one student.")

    with _teacher_lock(teacher_id):
        try:
            begin_write_transaction(db)
            teacher = (
                db.query(User)
                .filter(User.id == teacher_id, User.role == TEACHER_ROLE)
                .with_for_update()
                .first()
            )
            if teacher is None:
                raise NotFound("Teacher", teacher_id)

            known_students = {
                student_id
                for (student_id,) in db.query(User.id).filter(User.id.in_(members), User.role == STUDENT_ROLE).all()
            }
            missing = [student_id for student_id in members if student_id not in known_students]
            if missing:
                raise NotFound("Student", ", ".join(str(student_id) for student_id in missing))

            repeated_pairs = find_repeated_pairs(db, members, teacher_id)
            if repeated_pairs:
                logger.warning(
                    "Rejected group %s for teacher %s; repeated pairs %s",
                    members,
                    teacher_id,
                    repeated_pairs,
                )
                raise ConstraintViolation("Group constraint violation", pairs=repeated_pairs)

            assignment = Assignment(
                question=question,
                teacher_id=teacher_id,
                status=OPEN_STATUS,
            )
            db.add(assignment)
            db.flush()
            for student_id in members:
                db.add(GroupMembership(assignment_id=assignment.id, student_id=student_id))
            db.commit()
        except GroupworkError:
            db.rollback()
            raise
        except SQLAlchemyError as exc:
            db.rollback()
            logger.exception("Could not create assignment for teacher %s", teacher_id)
            raise StorageError("Could not create assignment.") from exc

    logger.info("Teacher %s created assignment %s for students %s", teacher_id, assignment.id, members)
    return assignment.id


def get_assignment(db: Session, assignment_id: int) -> Assignment:
    try:
        assignment = (
            db.query(Assignment)
            .options(selectinload(Assignment.members), selectinload(Assignment.teacher))
            .filter(Assignment.id == assignment_id)
            .first()
        )
    except SQLAlchemyError as exc:
        logger.exception("Could not load assignment %s", assignment_id)
        raise StorageError("Could not load assignment.") from exc
    if assignment is None:
        raise NotFound("Assignment", assignment_id)
    return assignment


def submit_answer(db: Session, assignment_id: int, answer: str) -> Assignment:
    """Store ``answer``, replacing any earlier one. Status is left untouched."""
    assignment = get_assignment(db, assignment_id)
    try:
        assignment.answer = answer
        db.commit()
        db.refresh(assignment)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Could not save answer for assignment %s", assignment_id)
        raise StorageError("Could not save answer.") from exc
    logger.info("Answer submitted for assignment %s", assignment_id)
    return assignment


def validate_score(score) -> int:
    if isinstance(score, bool) or not isinstance(score, int):
        raise InvalidScore(score, config.MIN_SCORE, config.MAX_SCORE)
    if score < config.MIN_SCORE or score > config.MAX_SCORE:
        raise InvalidScore(score, config.MIN_SCORE, config.MAX_SCORE)
    return score


def evaluate(db: Session, assignment_id: int, score: int) -> Assignment:
    """Score an assignment and close it. Later evaluations overwrite the score."""
    validate_score(score)
    assignment = get_assignment(db, assignment_id)
    try:
        assignment.score = score
        assignment.status = CLOSED_STATUS
        db.commit()
        db.refresh(assignment)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Could not evaluate assignment %s", assignment_id)
        raise StorageError("Could not evaluate assignment.") from exc
    logger.info("Assignment %s evaluated with score %s", assignment_id, score)
    return assignment


def is_group_member(assignment: Assignment, student_id: int) -> bool:
    return any(member.id == student_id for member in assignment.members)


def individual_share(assignment: Assignment) -> float | None:
    """The assignment's score split equally across its group."""
    if assignment.score is None or not assignment.members:
        return None
    return round(assignment.score / len(assignment.members), 2)


def list_teacher_assignments(db: Session, teacher_id: int) -> list[Assignment]:
    try:
        return (
            db.query(Assignment)
            .options(selectinload(Assignment.members))
            .filter(Assignment.teacher_id == teacher_id)
            .order_by(Assignment.created_at.desc(), Assignment.id.desc())
            .all()
        )
    except SQLAlchemyError as exc:
        logger.exception("Could not list assignments for teacher %s", teacher_id)
        raise StorageError("Could not list assignments.") from exc


def list_student_assignments(db: Session, student_id: int, status: str | None = None) -> list[Assignment]:
    try:
        query = (
            db.query(Assignment)
            .join(GroupMembership, GroupMembership.assignment_id == Assignment.id)
            .options(selectinload(Assignment.members), selectinload(Assignment.teacher))
            .filter(GroupMembership.student_id == student_id)
        )
        if status is not None:
            query = query.filter(Assignment.status == status)
        return query.order_by(Assignment.created_at.desc(), Assignment.id.desc()).all()
    except SQLAlchemyError as exc:
        logger.exception("Could not list assignments for student %s", student_id)
        raise StorageError("Could not list assignments.") from exc


def list_student_scores(db: Session, student_id: int) -> list[Assignment]:
    return list_student_assignments(db, student_id, status=CLOSED_STATUS)
