from typing import NoReturn

from fastapi import HTTPException, status
from sqlalchemy.exc import SQLAlchemyError

from groupwork.core.errors import ConstraintViolation, GroupworkError, InvalidScore, NotFound, StorageError
from groupwork.database import ensure_schema

DATABASE_UNAVAILABLE_DETAIL = 'Database unavailable. Verify DATABASE_URL and database credentials.'


def ensure_database_ready() -> None:
    try:
        ensure_schema()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc


def raise_http_error(exc: GroupworkError) -> NoReturn:
    if isinstance(exc, ConstraintViolation):
        detail = {'message': str(exc), 'pairs': [list(pair) for pair in exc.pairs]} if exc.pairs else str(exc)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail) from exc
    if isinstance(exc, InvalidScore):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    if isinstance(exc, NotFound):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, StorageError):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail='Server error') from exc
