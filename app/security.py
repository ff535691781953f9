from dataclasses import dataclass
from enum import Enum
from typing import Callable
from uuid import UUID


class Role(str, Enum):
    ADMIN = "ADMIN"
    INSTRUCTOR = "INSTRUCTOR"
    STUDENT = "STUDENT"


# Gates are independent predicates, not a ranking: ADMIN does not pass
# student-only routes and INSTRUCTOR does not pass admin-only routes.
def is_admin(role: Role) -> bool:
    return role == Role.ADMIN


def is_instructor_or_admin(role: Role) -> bool:
    return role in (Role.ADMIN, Role.INSTRUCTOR)


def is_student(role: Role) -> bool:
    return role == Role.STUDENT


@dataclass(frozen=True, slots=True)
class Gate:
    name: str
    allows: Callable[[Role], bool]
    denial_message: str


ADMIN_GATE = Gate(name="admin", allows=is_admin, denial_message="Forbidden: Admins only")
INSTRUCTOR_GATE = Gate(
    name="instructor",
    allows=is_instructor_or_admin,
    denial_message="Forbidden: Instructors and Admins only",
)
STUDENT_GATE = Gate(name="student", allows=is_student, denial_message="Forbidden: Students only")


@dataclass(slots=True)
class AuthenticatedActor:
    user_id: UUID
    subject_id: str
    email: str
    role: Role
    session_id: UUID | None = None


class AuthorizationError(Exception):
    def __init__(self, gate: Gate) -> None:
        super().__init__(gate.denial_message)
        self.gate = gate


def ensure_allowed(actor: AuthenticatedActor, gate: Gate) -> None:
    if not gate.allows(actor.role):
        raise AuthorizationError(gate)
