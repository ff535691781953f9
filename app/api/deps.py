from dataclasses import dataclass
import logging
from uuid import UUID, uuid4

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.orm import Session, sessionmaker

from app.config import Settings
from app.db.models import AuthSession
from app.observability.metrics import record_denial
from app.security import (
    ADMIN_GATE,
    INSTRUCTOR_GATE,
    STUDENT_GATE,
    AuthenticatedActor,
    AuthorizationError,
    Gate,
    Role,
    ensure_allowed,
)
from app.services.audit_service import AuditService
from app.services.identity_provider import IdentityProvider
from app.services.identity_store import STORAGE_ERRORS, IdentityStore, StorageUnavailable
from app.services.role_resolver import RoleResolver, Unauthorized
from app.services.session_service import InvalidSession, MissingSession, SessionService

logger = logging.getLogger(__name__)

NO_ACTIVE_SESSION = "Unauthorized: No active session"
INVALID_SESSION = "Unauthorized: Invalid session"
SIGN_IN_REFUSED = "Unauthorized"
REQUEST_ID_MAX_LENGTH = 64


@dataclass(slots=True)
class Services:
    settings: Settings
    session_factory: sessionmaker[Session]
    identity_provider: IdentityProvider
    identity_store: IdentityStore
    resolver: RoleResolver
    sessions: SessionService
    audit: AuditService


@dataclass(slots=True)
class RequestContext:
    db: Session
    actor: AuthenticatedActor
    auth_session: AuthSession
    user: dict
    request_id: str
    ip_address: str | None


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_db(services: Services = Depends(get_services)):
    db = services.session_factory()
    try:
        yield db
    finally:
        db.close()


def get_request_id(x_request_id: str | None = Header(default=None, alias="X-Request-Id")) -> str:
    # Stored in audit_logs.request_id VARCHAR(64); client ids are clipped to fit.
    request_id = (x_request_id or "").strip()[:REQUEST_ID_MAX_LENGTH]
    return request_id or str(uuid4())


def establish_user(
    services: Services,
    db: Session,
    auth_session: AuthSession,
    request_id: str,
) -> dict:
    """Run the session hook and return the augmented ``{user, session}`` payload."""
    user = {"id": auth_session.subject_id, "email": auth_session.email}
    try:
        return services.resolver.augment_session(
            db,
            user,
            services.sessions.describe(auth_session),
            request_id=request_id,
        )
    except Unauthorized as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=SIGN_IN_REFUSED) from exc


def get_request_context(
    request: Request,
    services: Services = Depends(get_services),
    db: Session = Depends(get_db),
    request_id: str = Depends(get_request_id),
) -> RequestContext:
    token = request.cookies.get(services.settings.session_cookie_name)
    try:
        auth_session = services.sessions.authenticate(db, token)
    except MissingSession as exc:
        record_denial("session", status.HTTP_401_UNAUTHORIZED)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=NO_ACTIVE_SESSION) from exc
    except InvalidSession as exc:
        record_denial("session", status.HTTP_401_UNAUTHORIZED)
        logger.info("session rejected", extra={"reason": str(exc), "request_id": request_id})
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=INVALID_SESSION) from exc
    except STORAGE_ERRORS as exc:
        db.rollback()
        raise StorageUnavailable(str(exc)) from exc

    payload = establish_user(services, db, auth_session, request_id)
    try:
        db.commit()
    except STORAGE_ERRORS as exc:
        db.rollback()
        raise StorageUnavailable(str(exc)) from exc

    user = payload["user"]
    actor = AuthenticatedActor(
        user_id=UUID(user["id"]),
        subject_id=auth_session.subject_id,
        email=auth_session.email,
        role=Role(user["role"]),
        session_id=auth_session.id,
    )
    request.state.actor = actor
    ip_address = request.client.host if request.client else None
    return RequestContext(
        db=db,
        actor=actor,
        auth_session=auth_session,
        user=user,
        request_id=request_id,
        ip_address=ip_address,
    )


def require_gate(gate: Gate):
    def gate_dependency(ctx: RequestContext = Depends(get_request_context)) -> RequestContext:
        try:
            ensure_allowed(ctx.actor, gate)
        except AuthorizationError as exc:
            record_denial(gate.name, status.HTTP_403_FORBIDDEN)
            logger.info(
                "request forbidden",
                extra={"gate": gate.name, "role": ctx.actor.role.value, "request_id": ctx.request_id},
            )
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
        return ctx

    return gate_dependency


require_admin = require_gate(ADMIN_GATE)
require_instructor = require_gate(INSTRUCTOR_GATE)
require_student = require_gate(STUDENT_GATE)
