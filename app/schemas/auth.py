from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field


class DevSignInRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)
    subject_id: str = Field(..., min_length=1, max_length=255)


class SessionUser(BaseModel):
    id: UUID
    email: str
    role: str


class SessionInfo(BaseModel):
    id: UUID
    expires_at: datetime
    created_at: datetime | None = None


class SessionResponse(BaseModel):
    user: SessionUser
    session: SessionInfo


class SignOutResponse(BaseModel):
    signed_out: bool


class MeResponse(BaseModel):
    user_id: UUID
    email: str
    role: str
    subject_id: str


class PlatformUserResponse(BaseModel):
    user_id: UUID
    external_subject_id: str
    role: str
    created_at: datetime | None


class PlatformUserListResponse(BaseModel):
    items: list[PlatformUserResponse] = Field(default_factory=list)
    count: int


class InstructorListingResponse(BaseModel):
    email: str
    consumed: bool
    consumed_at: datetime | None
    created_at: datetime | None


class InstructorListingListResponse(BaseModel):
    items: list[InstructorListingResponse] = Field(default_factory=list)
    count: int


class StudentProfileResponse(BaseModel):
    user_id: UUID
    email: str
    student_id: str
