from dataclasses import dataclass

from groupwork.models.user import STUDENT_ROLE, TEACHER_ROLE


@dataclass(frozen=True)
class Principal:
    """The authenticated caller, passed explicitly into every request handler."""

    id: int
    username: str
    name: str
    role: str

    @property
    def is_teacher(self) -> bool:
        return self.role == TEACHER_ROLE

    @property
    def is_student(self) -> bool:
        return self.role == STUDENT_ROLE

    @classmethod
    def from_user(cls, user) -> "Principal":
        return cls(id=user.id, username=user.username, name=user.name, role=user.role)
