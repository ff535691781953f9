import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from sqlalchemy.orm import Session

from app.api.deps import (
    SIGN_IN_REFUSED,
    RequestContext,
    Services,
    get_db,
    get_request_context,
    get_request_id,
    get_services,
)
from app.schemas.auth import DevSignInRequest, SessionResponse, SignOutResponse
from app.services.identity_store import STORAGE_ERRORS, StorageUnavailable
from app.services.role_resolver import ExternalIdentity, Unauthorized

router = APIRouter(prefix="/api/auth", tags=["auth"])
logger = logging.getLogger(__name__)


def _open_session(
    services: Services,
    db: Session,
    identity: ExternalIdentity,
    request: Request,
    response: Response,
    request_id: str,
) -> SessionResponse:
    try:
        payload = services.resolver.augment_session(
            db,
            {"id": identity.subject_id, "email": identity.email},
            {},
            request_id=request_id,
        )
    except Unauthorized as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=SIGN_IN_REFUSED) from exc

    try:
        issued = services.sessions.issue(db, identity)
        services.audit.record_session_event(
            db,
            "session.create",
            issued.record,
            actor_user_id=UUID(payload["user"]["id"]),
            request_id=request_id,
            ip_address=request.client.host if request.client else None,
        )
        db.commit()
    except STORAGE_ERRORS as exc:
        db.rollback()
        raise StorageUnavailable(str(exc)) from exc

    settings = services.settings
    response.set_cookie(
        key=settings.session_cookie_name,
        value=issued.token,
        max_age=settings.session_ttl_seconds,
        path="/",
        httponly=True,
        samesite="lax",
        secure=settings.uses_https,
    )
    logger.info(
        "session established",
        extra={"user_id": payload["user"]["id"], "role": payload["user"]["role"], "request_id": request_id},
    )
    return SessionResponse(user=payload["user"], session=services.sessions.describe(issued.record))


@router.post("/session", response_model=SessionResponse)
def create_session(
    request: Request,
    response: Response,
    services: Services = Depends(get_services),
    db: Session = Depends(get_db),
    request_id: str = Depends(get_request_id),
) -> SessionResponse:
    identity = services.identity_provider.verify(request)
    if identity is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=SIGN_IN_REFUSED)
    return _open_session(services, db, identity, request, response, request_id)


@router.post("/sign-in/dev", response_model=SessionResponse)
def dev_sign_in(
    body: DevSignInRequest,
    request: Request,
    response: Response,
    services: Services = Depends(get_services),
    db: Session = Depends(get_db),
    request_id: str = Depends(get_request_id),
) -> SessionResponse:
    if services.settings.is_production:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not Found")
    identity = ExternalIdentity(subject_id=body.subject_id, email=body.email)
    return _open_session(services, db, identity, request, response, request_id)


@router.get("/session", response_model=SessionResponse)
def get_session(
    ctx: RequestContext = Depends(get_request_context),
    services: Services = Depends(get_services),
) -> SessionResponse:
    return SessionResponse(user=ctx.user, session=services.sessions.describe(ctx.auth_session))


@router.post("/sign-out", response_model=SignOutResponse)
def sign_out(
    response: Response,
    ctx: RequestContext = Depends(get_request_context),
    services: Services = Depends(get_services),
) -> SignOutResponse:
    try:
        services.sessions.revoke(ctx.db, ctx.auth_session)
        services.audit.record_session_event(
            ctx.db,
            "session.revoke",
            ctx.auth_session,
            actor_user_id=ctx.actor.user_id,
            request_id=ctx.request_id,
            ip_address=ctx.ip_address,
        )
        ctx.db.commit()
    except STORAGE_ERRORS as exc:
        ctx.db.rollback()
        raise StorageUnavailable(str(exc)) from exc

    response.delete_cookie(
        key=services.settings.session_cookie_name,
        path="/",
        httponly=True,
        samesite="lax",
        secure=services.settings.uses_https,
    )
    return SignOutResponse(signed_out=True)
