from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session

from groupwork.auth import jwt_handler
from groupwork.auth.dependencies import get_current_user
from groupwork.core.errors import StorageError
from groupwork.core.principal import Principal
from groupwork.database import get_db
from groupwork.routes.common import ensure_database_ready, raise_http_error
from groupwork.services import roster

router = APIRouter(tags=['auth'])


class LoginRequest(BaseModel):
    username: str
    password: str

    @field_validator('username')
    @classmethod
    def validate_username(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Username is required.')
        return normalized


class UserResponse(BaseModel):
    id: int
    username: str
    name: str
    role: str

    class Config:
        from_attributes = True


class LoginResponse(BaseModel):
    access_token: str
    token_type: str
    user: UserResponse


@router.post('/login', response_model=LoginResponse)
def login(data: LoginRequest, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        user = roster.authenticate(db, data.username, data.password)
    except StorageError as exc:
        raise_http_error(exc)

    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail='Invalid credentials',
        )

    token = jwt_handler.create_access_token(subject=user.username, role=user.role)
    return LoginResponse(
        access_token=token,
        token_type='bearer',
        user=UserResponse.model_validate(user),
    )


@router.get('/session', response_model=UserResponse)
def session(current_user: Principal = Depends(get_current_user)):
    return UserResponse.model_validate(current_user)


@router.post('/logout')
def logout():
    # Tokens are stateless; the client discards its copy.
    return {'message': 'Logged out successfully'}
