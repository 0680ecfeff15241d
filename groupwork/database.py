import logging
from threading import Lock

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from groupwork.core import config


logger = logging.getLogger(__name__)


def _connect_args(database_url: str) -> dict:
    # FastAPI serves sync routes from a threadpool.
    if database_url.startswith("sqlite"):
        return {"check_same_thread": False}
    return {}


engine = create_engine(
    config.DATABASE_URL,
    echo=config.SQL_ECHO,
    connect_args=_connect_args(config.DATABASE_URL),
)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_schema_checked = False


def ensure_schema() -> None:
    global _schema_checked

    if _schema_checked:
        return

    with _schema_lock:
        if _schema_checked:
            return

        # Registers every table on Base.metadata.
        from groupwork.models import assignment, group_membership, user  # noqa: F401

        Base.metadata.create_all(bind=engine)
        logger.info("Database schema ready at %s", engine.url.render_as_string(hide_password=True))

        _schema_checked = True


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def begin_write_transaction(db: Session) -> None:
    """Hold the database write lock until the session's transaction ends.

    SQLite ignores SELECT ... FOR UPDATE and pysqlite only opens a
    transaction at the first INSERT, so reads would run unlocked. There the
    transaction is opened with BEGIN IMMEDIATE instead; other databases rely on
    row locks taken by the caller.
    """
    connection = db.connection()
    if connection.dialect.name != "sqlite":
        return
    if not connection.connection.dbapi_connection.in_transaction:
        connection.exec_driver_sql("BEGIN IMMEDIATE")
