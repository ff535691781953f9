from dataclasses import dataclass
import logging

from opentelemetry.trace import Status, StatusCode
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.db.models import PlatformUser
from app.observability.metrics import record_rejection, record_resolution
from app.observability.tracing import get_tracer
from app.security import Role
from app.services.audit_service import AuditService
from app.services.email_classifier import EmailClass, EmailClassifier, normalize_email
from app.services.identity_store import STORAGE_ERRORS, IdentityStore, StorageUnavailable

logger = logging.getLogger(__name__)

REASON_DOMAIN = "domain"
REASON_INSTRUCTOR_NOT_LISTED = "instructor-not-listed"


@dataclass(frozen=True, slots=True)
class ExternalIdentity:
    subject_id: str
    email: str


class Unauthorized(Exception):
    """Sign-in refused. ``reason`` is for logs only; clients get a generic message."""

    def __init__(self, reason: str) -> None:
        super().__init__(f"Unauthorized: {reason}")
        self.reason = reason


class _LostRace(Exception):
    pass


class RoleResolver:
    """Maps a verified external identity to its platform user, creating it on first sign-in.

    Roles are assigned once. An existing platform user is returned as stored even if
    the email would classify differently today.

    First sign-ins commit in a single transaction. Two races are reconciled the
    same way: the instructor listing is consumed with an update conditional on
    ``consumed = false``, and ``external_subject_id`` is unique. A caller that
    loses either race rolls back and repeats the subject lookup once, so a
    concurrent duplicate sign-in for the same subject picks up the winner's row,
    while a different subject claiming a consumed listing is refused.
    """

    def __init__(
        self,
        classifier: EmailClassifier,
        store: IdentityStore,
        audit_service: AuditService | None = None,
    ) -> None:
        self.classifier = classifier
        self.store = store
        self.audit_service = audit_service or AuditService()

    def resolve(
        self,
        db: Session,
        identity: ExternalIdentity,
        *,
        request_id: str | None = None,
    ) -> PlatformUser:
        with get_tracer(__name__).start_as_current_span("role_resolver.resolve") as span:
            span.set_attribute("momoi.subject_id", identity.subject_id)
            try:
                user, outcome = self._resolve(db, identity, request_id)
            except Unauthorized as exc:
                span.set_attribute("momoi.outcome", "rejected")
                span.set_attribute("momoi.reject_reason", exc.reason)
                record_resolution("rejected")
                record_rejection(exc.reason)
                logger.warning(
                    "sign-in rejected",
                    extra={"reason": exc.reason, "subject_id": identity.subject_id},
                )
                raise
            except StorageUnavailable as exc:
                span.record_exception(exc)
                span.set_status(Status(StatusCode.ERROR, "storage unavailable"))
                raise

            span.set_attribute("momoi.outcome", outcome)
            span.set_attribute("momoi.role", user.role)
            record_resolution(outcome)
            if outcome != "existing":
                logger.info(
                    "platform user created",
                    extra={"user_id": str(user.id), "role": user.role, "subject_id": identity.subject_id},
                )
            return user

    def augment_session(
        self,
        db: Session,
        user: dict,
        session: dict,
        *,
        request_id: str | None = None,
    ) -> dict:
        """Session hook: replace the provider user id with the platform id and add the role."""
        identity = ExternalIdentity(subject_id=str(user["id"]), email=str(user["email"]))
        platform_user = self.resolve(db, identity, request_id=request_id)
        return {
            "user": {**user, "id": str(platform_user.id), "role": platform_user.role},
            "session": session,
        }

    def _resolve(
        self,
        db: Session,
        identity: ExternalIdentity,
        request_id: str | None,
    ) -> tuple[PlatformUser, str]:
        email_class = self.classifier.classify(identity.email)
        if email_class is EmailClass.REJECTED:
            raise Unauthorized(REASON_DOMAIN)

        existing = self._lookup(db, identity.subject_id)
        if existing is not None:
            return existing, "existing"

        try:
            if email_class is EmailClass.INSTRUCTOR_CANDIDATE:
                return self._create_instructor(db, identity, request_id), "created_instructor"
            return self._create(db, identity, Role.STUDENT, request_id), "created_student"
        except _LostRace as race:
            winner = self._lookup(db, identity.subject_id)
            if winner is not None:
                return winner, "existing"
            if email_class is EmailClass.INSTRUCTOR_CANDIDATE:
                raise Unauthorized(REASON_INSTRUCTOR_NOT_LISTED) from None
            raise race.__cause__ or race

    def _lookup(self, db: Session, subject_id: str) -> PlatformUser | None:
        try:
            return self.store.get_user_by_subject(db, subject_id)
        except STORAGE_ERRORS as exc:
            db.rollback()
            raise StorageUnavailable(str(exc)) from exc

    def _create_instructor(
        self,
        db: Session,
        identity: ExternalIdentity,
        request_id: str | None,
    ) -> PlatformUser:
        # Read-only pre-check; the conditional update in _create is authoritative.
        try:
            listing = self.store.get_open_listing(db, identity.email)
        except STORAGE_ERRORS as exc:
            db.rollback()
            raise StorageUnavailable(str(exc)) from exc
        if listing is None:
            db.rollback()
            raise Unauthorized(REASON_INSTRUCTOR_NOT_LISTED)
        return self._create(db, identity, Role.INSTRUCTOR, request_id)

    def _create(
        self,
        db: Session,
        identity: ExternalIdentity,
        role: Role,
        request_id: str | None,
    ) -> PlatformUser:
        try:
            if role is Role.INSTRUCTOR and not self.store.consume_listing(db, identity.email):
                raise _LostRace()
            user = self.store.create_user(db, identity.subject_id, role)
            self.audit_service.record_user_created(
                db,
                user,
                email=normalize_email(identity.email),
                request_id=request_id,
            )
            db.commit()
        except IntegrityError as exc:
            db.rollback()
            raise _LostRace() from exc
        except STORAGE_ERRORS as exc:
            db.rollback()
            raise StorageUnavailable(str(exc)) from exc
        except BaseException:
            db.rollback()
            raise
        return user
