import threading
import time

import pytest
from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker

from groupwork.core.errors import ConstraintViolation, InvalidScore, NotFound, StorageError
from groupwork.database import Base
from groupwork.models.assignment import CLOSED_STATUS, OPEN_STATUS, Assignment
from groupwork.models.group_membership import GroupMembership
from groupwork.models.user import STUDENT_ROLE, TEACHER_ROLE, User
from groupwork.services import assignments
from groupwork.services.assignments import (
    create_assignment,
    evaluate,
    get_assignment,
    individual_share,
    is_group_member,
    list_student_assignments,
    list_student_scores,
    list_teacher_assignments,
    submit_answer,
)
from groupwork.services.pairing import can_form_group, find_repeated_pairs


def _member_ids(db, assignment_id: int) -> set[int]:
    return {
        student_id
        for (student_id,) in db.query(GroupMembership.student_id).filter(
            GroupMembership.assignment_id == assignment_id
        )
    }


def test_create_assignment_persists_open_assignment_with_exact_group(db, teacher, students) -> None:
    requested = {students[0].id, students[2].id, students[4].id}

    assignment_id = create_assignment(db, 'Explain recursion.', list(requested), teacher.id)

    assignment = get_assignment(db, assignment_id)
    assert assignment.question == 'Explain recursion.'
    assert assignment.teacher_id == teacher.id
    assert assignment.status == OPEN_STATUS
    assert assignment.score is None
    assert assignment.answer is None
    assert assignment.created_at is not None
    assert _member_ids(db, assignment_id) == requested
    assert [member.name for member in assignment.members] == ['Alice Brown', 'Carol Davis', 'Emma Garcia']


def test_create_assignment_collapses_duplicate_student_ids(db, teacher, students) -> None:
    alice = students[0]

    assignment_id = create_assignment(db, 'Solo work.', [alice.id, alice.id], teacher.id)

    assert _member_ids(db, assignment_id) == {alice.id}


def test_third_group_of_same_pair_is_rejected_and_not_persisted(db, teacher, students) -> None:
    alice, bob = students[0], students[1]

    create_assignment(db, 'Assignment A', [alice.id, bob.id], teacher.id)
    create_assignment(db, 'Assignment B', [alice.id, bob.id], teacher.id)

    assert can_form_group(db, [alice.id, bob.id], teacher.id) is False
    with pytest.raises(ConstraintViolation) as exception_info:
        create_assignment(db, 'Assignment C', [alice.id, bob.id], teacher.id)

    assert exception_info.value.pairs == [(alice.id, bob.id)]
    assert db.query(Assignment).count() == 2
    assert db.query(GroupMembership).count() == 4


def test_create_assignment_rejects_empty_group(db, teacher) -> None:
    with pytest.raises(ConstraintViolation):
        create_assignment(db, 'Nobody answers this.', [], teacher.id)

    assert db.query(Assignment).count() == 0


def test_create_assignment_rejects_unknown_student(db, teacher, students) -> None:
    with pytest.raises(NotFound) as exception_info:
        create_assignment(db, 'Question', [students[0].id, 9999], teacher.id)

    assert exception_info.value.kind == 'Student'
    assert db.query(Assignment).count() == 0
    assert db.query(GroupMembership).count() == 0


def test_create_assignment_rejects_teacher_as_group_member(db, teacher, other_teacher, students) -> None:
    with pytest.raises(NotFound):
        create_assignment(db, 'Question', [students[0].id, other_teacher.id], teacher.id)

    assert db.query(Assignment).count() == 0


def test_create_assignment_rejects_unknown_teacher(db, students) -> None:
    with pytest.raises(NotFound) as exception_info:
        create_assignment(db, 'Question', [students[0].id], 9999)

    assert exception_info.value.kind == 'Teacher'


def test_create_assignment_rolls_back_memberships_when_commit_fails(
    db,
    teacher,
    students,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def failing_commit():
        raise OperationalError('COMMIT', {}, Exception('disk I/O error'))

    monkeypatch.setattr(db, 'commit', failing_commit)

    with pytest.raises(StorageError):
        create_assignment(db, 'Question', [students[0].id, students[1].id], teacher.id)

    monkeypatch.undo()
    assert db.query(Assignment).count() == 0
    assert db.query(GroupMembership).count() == 0


def _file_database_with_paired_students(tmp_path):
    """A file-backed database where Alice and Bob already share one assignment."""
    engine = create_engine(
        f'sqlite:///{tmp_path / "concurrency.db"}',
        connect_args={'check_same_thread': False, 'timeout': 30},
    )
    Base.metadata.create_all(bind=engine)
    session_factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    setup = session_factory()
    teacher = User(username='teacher', hashed_password='x', name='Prof. Smith', role=TEACHER_ROLE)
    alice = User(username='alice', hashed_password='x', name='Alice Brown', role=STUDENT_ROLE)
    bob = User(username='bob', hashed_password='x', name='Bob Wilson', role=STUDENT_ROLE)
    setup.add_all([teacher, alice, bob])
    setup.commit()
    teacher_id, pair = teacher.id, [alice.id, bob.id]
    create_assignment(setup, 'Warm-up', pair, teacher_id)
    setup.close()
    return engine, session_factory, teacher_id, pair


def _race_creations(session_factory, teacher_id: int, pair: list[int], workers: int) -> list[str]:
    outcomes: list[str] = []
    outcomes_lock = threading.Lock()
    start = threading.Barrier(workers)

    def worker(index: int) -> None:
        session = session_factory()
        try:
            start.wait()
            create_assignment(session, f'Race {index}', pair, teacher_id)
            result = 'created'
        except ConstraintViolation:
            result = 'rejected'
        finally:
            session.close()
        with outcomes_lock:
            outcomes.append(result)

    threads = [threading.Thread(target=worker, args=(index,)) for index in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    return sorted(outcomes)


def test_concurrent_creations_for_same_pair_only_one_succeeds(tmp_path) -> None:
    engine, session_factory, teacher_id, pair = _file_database_with_paired_students(tmp_path)

    outcomes = _race_creations(session_factory, teacher_id, pair, workers=4)

    check = session_factory()
    try:
        assert outcomes == ['created', 'rejected', 'rejected', 'rejected']
        assert check.query(Assignment).count() == 2
    finally:
        check.close()
        engine.dispose()


def test_creations_without_shared_lock_are_serialized_by_database(tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
    # Separate worker processes share no in-process lock: every call gets its own.
    monkeypatch.setattr(assignments, '_teacher_lock', lambda teacher_id: threading.Lock())

    def slow_find_repeated_pairs(db, student_ids, teacher_id):
        pairs = find_repeated_pairs(db, student_ids, teacher_id)
        time.sleep(0.5)
        return pairs

    monkeypatch.setattr(assignments, 'find_repeated_pairs', slow_find_repeated_pairs)
    engine, session_factory, teacher_id, pair = _file_database_with_paired_students(tmp_path)

    outcomes = _race_creations(session_factory, teacher_id, pair, workers=2)

    check = session_factory()
    try:
        assert outcomes == ['created', 'rejected']
        assert check.query(Assignment).count() == 2
    finally:
        check.close()
        engine.dispose()


def test_teacher_lock_is_released_after_creation(db, teacher, students) -> None:
    create_assignment(db, 'Question', [students[0].id], teacher.id)
    with pytest.raises(NotFound):
        create_assignment(db, 'Question', [students[0].id], 9999)

    assert teacher.id not in assignments._teacher_locks
    assert 9999 not in assignments._teacher_locks


def test_submit_answer_overwrites_and_keeps_status(db, teacher, students) -> None:
    assignment_id = create_assignment(db, 'Question', [students[0].id, students[1].id], teacher.id)

    submit_answer(db, assignment_id, 'First draft')
    assignment = submit_answer(db, assignment_id, 'Final answer')

    assert assignment.answer == 'Final answer'
    assert assignment.status == OPEN_STATUS


def test_submit_answer_does_not_check_group_membership(db, teacher, students) -> None:
    # Membership is enforced by the request layer, not by the core.
    assignment_id = create_assignment(db, 'Question', [students[0].id, students[1].id], teacher.id)
    outsider = students[4]

    assignment = submit_answer(db, assignment_id, f'Answer from {outsider.name}')

    assert not is_group_member(assignment, outsider.id)
    assert assignment.answer == 'Answer from Emma Garcia'


def test_submit_answer_on_closed_assignment_is_accepted(db, teacher, students) -> None:
    assignment_id = create_assignment(db, 'Question', [students[0].id], teacher.id)
    evaluate(db, assignment_id, 20)

    assignment = submit_answer(db, assignment_id, 'Late answer')

    assert assignment.answer == 'Late answer'
    assert assignment.status == CLOSED_STATUS
    assert assignment.score == 20


def test_submit_answer_rejects_unknown_assignment(db) -> None:
    with pytest.raises(NotFound):
        submit_answer(db, 404, 'Answer')


def test_submit_answer_keeps_previous_answer_when_commit_fails(
    db,
    teacher,
    students,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    assignment_id = create_assignment(db, 'Question', [students[0].id], teacher.id)
    submit_answer(db, assignment_id, 'First draft')

    def failing_commit():
        raise OperationalError('COMMIT', {}, Exception('disk I/O error'))

    monkeypatch.setattr(db, 'commit', failing_commit)

    with pytest.raises(StorageError):
        submit_answer(db, assignment_id, 'Lost answer')

    monkeypatch.undo()
    db.expire_all()
    assignment = get_assignment(db, assignment_id)
    assert assignment.answer == 'First draft'
    assert assignment.status == OPEN_STATUS


def test_evaluate_closes_assignment_and_last_score_wins(db, teacher, students) -> None:
    assignment_id = create_assignment(db, 'Question', [students[0].id, students[1].id], teacher.id)

    first = evaluate(db, assignment_id, 12)
    assert first.status == CLOSED_STATUS
    assert first.score == 12

    second = evaluate(db, assignment_id, 27)
    assert second.status == CLOSED_STATUS
    assert second.score == 27


@pytest.mark.parametrize('score', [0, 30])
def test_evaluate_accepts_range_bounds(db, teacher, students, score: int) -> None:
    assignment_id = create_assignment(db, 'Question', [students[0].id], teacher.id)

    assert evaluate(db, assignment_id, score).score == score


@pytest.mark.parametrize('score', [31, -1, True, 12.5, '20'])
def test_evaluate_rejects_invalid_scores_without_changing_state(db, teacher, students, score) -> None:
    assignment_id = create_assignment(db, 'Question', [students[0].id, students[1].id], teacher.id)
    evaluate(db, assignment_id, 18)

    with pytest.raises(InvalidScore):
        evaluate(db, assignment_id, score)

    db.expire_all()
    assignment = get_assignment(db, assignment_id)
    assert assignment.score == 18
    assert assignment.status == CLOSED_STATUS


def test_evaluate_rejects_invalid_score_on_open_assignment(db, teacher, students) -> None:
    assignment_id = create_assignment(db, 'Question', [students[0].id], teacher.id)

    with pytest.raises(InvalidScore):
        evaluate(db, assignment_id, 31)

    db.expire_all()
    assignment = get_assignment(db, assignment_id)
    assert assignment.status == OPEN_STATUS
    assert assignment.score is None


def test_evaluate_rejects_unknown_assignment(db) -> None:
    with pytest.raises(NotFound):
        evaluate(db, 404, 10)


def test_evaluate_leaves_assignment_open_when_commit_fails(
    db,
    teacher,
    students,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    assignment_id = create_assignment(db, 'Question', [students[0].id, students[1].id], teacher.id)

    def failing_commit():
        raise OperationalError('COMMIT', {}, Exception('disk I/O error'))

    monkeypatch.setattr(db, 'commit', failing_commit)

    with pytest.raises(StorageError):
        evaluate(db, assignment_id, 25)

    monkeypatch.undo()
    db.expire_all()
    assignment = get_assignment(db, assignment_id)
    assert assignment.score is None
    assert assignment.status == OPEN_STATUS


def test_individual_share_splits_score_across_group(db, teacher, students) -> None:
    assignment_id = create_assignment(db, 'Question', [student.id for student in students[:3]], teacher.id)
    assignment = evaluate(db, assignment_id, 25)

    assert individual_share(assignment) == 8.33


def test_individual_share_is_none_before_evaluation(db, teacher, students) -> None:
    assignment_id = create_assignment(db, 'Question', [students[0].id], teacher.id)

    assert individual_share(get_assignment(db, assignment_id)) is None


def test_list_teacher_assignments_returns_only_own_newest_first(db, teacher, other_teacher, students) -> None:
    first_id = create_assignment(db, 'First', [students[0].id], teacher.id)
    second_id = create_assignment(db, 'Second', [students[1].id], teacher.id)
    create_assignment(db, 'Elsewhere', [students[0].id], other_teacher.id)

    assignments = list_teacher_assignments(db, teacher.id)

    assert [assignment.id for assignment in assignments] == [second_id, first_id]


def test_list_student_assignments_and_scores(db, teacher, other_teacher, students) -> None:
    alice, bob, carol = students[:3]
    open_id = create_assignment(db, 'Open one', [alice.id, bob.id], teacher.id)
    closed_id = create_assignment(db, 'Closed one', [alice.id, bob.id, carol.id], other_teacher.id)
    create_assignment(db, 'Not for Alice', [carol.id], teacher.id)
    evaluate(db, closed_id, 25)

    mine = list_student_assignments(db, alice.id)
    scores = list_student_scores(db, alice.id)

    assert {assignment.id for assignment in mine} == {open_id, closed_id}
    assert [assignment.id for assignment in scores] == [closed_id]
    assert scores[0].teacher.name == 'Prof. Johnson'
    assert [member.name for member in scores[0].members] == ['Alice Brown', 'Bob Wilson', 'Carol Davis']
