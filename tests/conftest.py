import os

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from groupwork.database import Base  # noqa: E402
from groupwork.models.assignment import Assignment  # noqa: E402
from groupwork.models.group_membership import GroupMembership  # noqa: E402
from groupwork.models.user import STUDENT_ROLE, TEACHER_ROLE, User  # noqa: E402

TABLES = [User.__table__, Assignment.__table__, GroupMembership.__table__]


@pytest.fixture
def session_factory():
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine, tables=TABLES)
    try:
        yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    finally:
        Base.metadata.drop_all(bind=engine, tables=list(reversed(TABLES)))
        engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_user(db):
    counter = {'value': 0}

    def _make_user(name: str, role: str = STUDENT_ROLE, username: str | None = None) -> User:
        counter['value'] += 1
        user = User(
            username=username or f'user{counter["value"]}',
            hashed_password='not-a-real-hash',
            name=name,
            role=role,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make_user


@pytest.fixture
def teacher(make_user):
    return make_user('Prof. Smith', role=TEACHER_ROLE, username='teacher1')


@pytest.fixture
def other_teacher(make_user):
    return make_user('Prof. Johnson', role=TEACHER_ROLE, username='teacher2')


@pytest.fixture
def students(make_user):
    return [
        make_user(name)
        for name in ('Alice Brown', 'Bob Wilson', 'Carol Davis', 'David Miller', 'Emma Garcia')
    ]
