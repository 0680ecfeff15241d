from datetime import datetime
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.orm import Session

from groupwork.auth.dependencies import require_student, require_teacher
from groupwork.core.errors import GroupworkError
from groupwork.core.principal import Principal
from groupwork.database import get_db
from groupwork.models.assignment import Assignment
from groupwork.routes.common import ensure_database_ready, raise_http_error
from groupwork.services import assignments as assignment_service
from groupwork.services import roster
from groupwork.services.class_status import SORT_BY_NAME, class_status

router = APIRouter(tags=['assignments'])

MAX_QUESTION_LENGTH = 4000
MAX_ANSWER_LENGTH = 20000


class CreateAssignmentRequest(BaseModel):
    question: str
    student_ids: list[int] = Field(alias='studentIds', min_length=1)

    class Config:
        populate_by_name = True

    @field_validator('question')
    @classmethod
    def validate_question(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Question is required.')
        if len(normalized) > MAX_QUESTION_LENGTH:
            raise ValueError(f'Question must be {MAX_QUESTION_LENGTH} characters or fewer.')
        return normalized


class EvaluateRequest(BaseModel):
    score: int


class AnswerRequest(BaseModel):
    answer: str

    @field_validator('answer')
    @classmethod
    def validate_answer(cls, value: str) -> str:
        if len(value) > MAX_ANSWER_LENGTH:
            raise ValueError(f'Answer must be {MAX_ANSWER_LENGTH} characters or fewer.')
        return value


class StudentRefResponse(BaseModel):
    id: int
    name: str

    class Config:
        from_attributes = True


class StudentResponse(BaseModel):
    id: int
    username: str
    name: str

    class Config:
        from_attributes = True


class CreateAssignmentResponse(BaseModel):
    id: int


class AssignmentResponse(BaseModel):
    id: int
    question: str
    answer: str | None = None
    score: int | None = None
    status: str
    teacher_id: int
    created_at: datetime
    members: list[StudentRefResponse]

    class Config:
        from_attributes = True


class StudentAssignmentResponse(AssignmentResponse):
    teacher_name: str


class StudentScoreResponse(StudentAssignmentResponse):
    individual_score: float | None = None


class StudentStandingResponse(BaseModel):
    id: int
    name: str
    open_count: int
    closed_count: int
    total_count: int
    average_score: float | None = None

    class Config:
        from_attributes = True


class MessageResponse(BaseModel):
    message: str


def _student_assignment_response(assignment: Assignment) -> StudentAssignmentResponse:
    return StudentAssignmentResponse(
        **AssignmentResponse.model_validate(assignment).model_dump(),
        teacher_name=assignment.teacher.name if assignment.teacher else '',
    )


@router.get('/students', response_model=list[StudentResponse])
def list_students(
    current_user: Principal = Depends(require_teacher),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        students = roster.list_students(db)
    except GroupworkError as exc:
        raise_http_error(exc)

    return [StudentResponse.model_validate(student) for student in students]


@router.post('/assignments', response_model=CreateAssignmentResponse, status_code=status.HTTP_201_CREATED)
def create_assignment(
    data: CreateAssignmentRequest,
    current_user: Principal = Depends(require_teacher),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        assignment_id = assignment_service.create_assignment(
            db,
            question=data.question,
            student_ids=data.student_ids,
            teacher_id=current_user.id,
        )
    except GroupworkError as exc:
        raise_http_error(exc)

    return CreateAssignmentResponse(id=assignment_id)


@router.get('/assignments', response_model=list[AssignmentResponse])
def list_teacher_assignments(
    current_user: Principal = Depends(require_teacher),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        assignments = assignment_service.list_teacher_assignments(db, current_user.id)
    except GroupworkError as exc:
        raise_http_error(exc)

    return [AssignmentResponse.model_validate(assignment) for assignment in assignments]


@router.put('/assignments/{assignment_id}/evaluate', response_model=MessageResponse)
def evaluate_assignment(
    assignment_id: int,
    data: EvaluateRequest,
    current_user: Principal = Depends(require_teacher),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        assignment_service.validate_score(data.score)
        assignment = assignment_service.get_assignment(db, assignment_id)
        if assignment.teacher_id != current_user.id:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail='Only the teacher who created this assignment can evaluate it.',
            )
        assignment_service.evaluate(db, assignment_id, data.score)
    except GroupworkError as exc:
        raise_http_error(exc)

    return MessageResponse(message='Assignment evaluated successfully')


@router.get('/class-status', response_model=list[StudentStandingResponse])
def get_class_status(
    sort_by: Literal['name', 'assignments', 'average'] = Query(default=SORT_BY_NAME, alias='sortBy'),
    current_user: Principal = Depends(require_teacher),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        standings = class_status(db, current_user.id, sort_by)
    except GroupworkError as exc:
        raise_http_error(exc)

    return [StudentStandingResponse.model_validate(standing) for standing in standings]


@router.get('/my-assignments', response_model=list[StudentAssignmentResponse])
def list_my_assignments(
    current_user: Principal = Depends(require_student),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        assignments = assignment_service.list_student_assignments(db, current_user.id)
    except GroupworkError as exc:
        raise_http_error(exc)

    return [_student_assignment_response(assignment) for assignment in assignments]


@router.put('/assignments/{assignment_id}/answer', response_model=MessageResponse)
def submit_answer(
    assignment_id: int,
    data: AnswerRequest,
    current_user: Principal = Depends(require_student),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        assignment = assignment_service.get_assignment(db, assignment_id)
        if not assignment_service.is_group_member(assignment, current_user.id):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail='Only members of this group can answer this assignment.',
            )
        assignment_service.submit_answer(db, assignment_id, data.answer)
    except GroupworkError as exc:
        raise_http_error(exc)

    return MessageResponse(message='Answer submitted successfully')


@router.get('/my-scores', response_model=list[StudentScoreResponse])
def list_my_scores(
    current_user: Principal = Depends(require_student),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        assignments = assignment_service.list_student_scores(db, current_user.id)
    except GroupworkError as exc:
        raise_http_error(exc)

    return [
        StudentScoreResponse(
            **_student_assignment_response(assignment).model_dump(),
            individual_score=assignment_service.individual_share(assignment),
        )
        for assignment in assignments
    ]
