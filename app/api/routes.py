from fastapi import APIRouter, Depends, Query

from app.api.deps import (
    RequestContext,
    Services,
    get_request_context,
    get_services,
    require_admin,
    require_instructor,
    require_student,
)
from app.schemas.auth import (
    InstructorListingListResponse,
    InstructorListingResponse,
    MeResponse,
    PlatformUserListResponse,
    PlatformUserResponse,
    StudentProfileResponse,
)
from app.security import Role
from app.services.email_classifier import normalize_email

router = APIRouter(prefix="/api", tags=["users"])


@router.get("/me", response_model=MeResponse)
def me(ctx: RequestContext = Depends(get_request_context)) -> MeResponse:
    return MeResponse(
        user_id=ctx.actor.user_id,
        email=ctx.actor.email,
        role=ctx.actor.role.value,
        subject_id=ctx.actor.subject_id,
    )


@router.get("/admin/users", response_model=PlatformUserListResponse)
def list_platform_users(
    ctx: RequestContext = Depends(require_admin),
    services: Services = Depends(get_services),
    role: Role | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
) -> PlatformUserListResponse:
    rows = services.identity_store.list_users(ctx.db, role=role, limit=limit)
    items = [
        PlatformUserResponse(
            user_id=row.id,
            external_subject_id=row.external_subject_id,
            role=row.role,
            created_at=row.created_at,
        )
        for row in rows
    ]
    return PlatformUserListResponse(items=items, count=len(items))


@router.get("/instructor/listings", response_model=InstructorListingListResponse)
def list_instructor_listings(
    ctx: RequestContext = Depends(require_instructor),
    services: Services = Depends(get_services),
    consumed: bool | None = Query(default=None),
) -> InstructorListingListResponse:
    rows = services.identity_store.list_listings(ctx.db, consumed=consumed)
    items = [
        InstructorListingResponse(
            email=row.email,
            consumed=row.consumed,
            consumed_at=row.consumed_at,
            created_at=row.created_at,
        )
        for row in rows
    ]
    return InstructorListingListResponse(items=items, count=len(items))


@router.get("/student/profile", response_model=StudentProfileResponse)
def student_profile(ctx: RequestContext = Depends(require_student)) -> StudentProfileResponse:
    # Student addresses carry the enrolment number as the local part, e.g. s6406021234567.
    local_part = normalize_email(ctx.actor.email).split("@", 1)[0]
    return StudentProfileResponse(
        user_id=ctx.actor.user_id,
        email=ctx.actor.email,
        student_id=local_part.removeprefix("s"),
    )
