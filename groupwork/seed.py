"""Load demo teachers, students and assignments into an empty database.

Usage:
    python -m groupwork.seed
"""
import logging
import sys

from groupwork.core import config
from groupwork.core.errors import GroupworkError
from groupwork.database import SessionLocal, ensure_schema
from groupwork.models.user import STUDENT_ROLE, TEACHER_ROLE, User
from groupwork.services import assignments, roster

logger = logging.getLogger(__name__)

TEACHERS = [
    ('teacher1', 'Prof. Smith'),
    ('teacher2', 'Prof. Johnson'),
]

STUDENT_NAMES = [
    'Alice Brown', 'Bob Wilson', 'Carol Davis', 'David Miller', 'Emma Garcia',
    'Frank Rodriguez', 'Grace Martinez', 'Henry Anderson', 'Ivy Taylor', 'Jack Thomas',
    'Kate Jackson', 'Liam White', 'Mia Harris', 'Noah Martin', 'Olivia Thompson',
    'Peter Garcia', 'Quinn Lee', 'Ruby Walker', 'Sam Hall', 'Tessa Allen',
]

CLOSED_QUESTION = 'What are the main principles of object-oriented programming?'
CLOSED_ANSWER = 'Encapsulation, Inheritance, Polymorphism, and Abstraction are the four main principles of OOP.'
CLOSED_SCORE = 25
OPEN_QUESTION = 'Explain the concept of inheritance in programming with examples.'


def student_username(name: str) -> str:
    # Two students share the surname Garcia.
    return name.lower().replace(' ', '.')


def seed(db, password: str = config.SEED_PASSWORD) -> bool:
    """Populate the roster and two assignments. Returns False if users already exist."""
    if db.query(User.id).first() is not None:
        return False

    teachers = [roster.create_user(db, username, password, name, TEACHER_ROLE) for username, name in TEACHERS]
    students = [
        roster.create_user(db, student_username(name), password, name, STUDENT_ROLE)
        for name in STUDENT_NAMES
    ]

    teacher_id = teachers[0].id
    closed_id = assignments.create_assignment(
        db,
        CLOSED_QUESTION,
        [student.id for student in students[0:3]],
        teacher_id,
    )
    assignments.submit_answer(db, closed_id, CLOSED_ANSWER)
    assignments.evaluate(db, closed_id, CLOSED_SCORE)
    assignments.create_assignment(
        db,
        OPEN_QUESTION,
        [student.id for student in students[3:7]],
        teacher_id,
    )
    return True


def main() -> None:
    logging.basicConfig(level=config.LOG_LEVEL, format='%(levelname)s %(name)s: %(message)s')
    ensure_schema()
    db = SessionLocal()
    try:
        created = seed(db)
    except GroupworkError:
        logger.exception('Seeding failed.')
        sys.exit(1)
    finally:
        db.close()

    if created:
        print(f'Seeded {len(TEACHERS)} teachers and {len(STUDENT_NAMES)} students.')
    else:
        print('Users already exist; nothing seeded.')


if __name__ == '__main__':
    main()
