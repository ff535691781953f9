from enum import Enum
import re


class EmailClass(str, Enum):
    REJECTED = "rejected"
    INSTRUCTOR_CANDIDATE = "instructor_candidate"
    STUDENT = "student"


def normalize_email(email: str) -> str:
    return email.strip().lower()


class EmailClassifier:
    """Sorts verified emails into organization students, instructor candidates, or outsiders.

    Membership is checked first: an address is a member when it matches the staff
    pattern or the full student pattern. Only members are then split by the student
    pattern, so a student-shaped local part on a foreign domain is rejected.
    """

    def __init__(self, staff_pattern: str, student_pattern: str) -> None:
        self.staff_pattern = re.compile(staff_pattern)
        self.student_pattern = re.compile(student_pattern)

    def classify(self, email: str) -> EmailClass:
        if not isinstance(email, str):
            return EmailClass.REJECTED
        normalized = normalize_email(email)
        if not normalized:
            return EmailClass.REJECTED

        is_student = self.student_pattern.fullmatch(normalized) is not None
        is_member = is_student or self.staff_pattern.fullmatch(normalized) is not None
        if not is_member:
            return EmailClass.REJECTED
        if is_student:
            return EmailClass.STUDENT
        return EmailClass.INSTRUCTOR_CANDIDATE
