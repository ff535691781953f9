from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import hashlib
import secrets

from sqlalchemy import and_, select
from sqlalchemy.orm import Session

from app.db.models import AuthSession
from app.services.role_resolver import ExternalIdentity


class SessionError(Exception):
    pass


class MissingSession(SessionError):
    pass


class InvalidSession(SessionError):
    pass


@dataclass(slots=True)
class IssuedSession:
    record: AuthSession
    token: str


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SessionService:
    """Opaque, server-side sessions. Only a peppered hash of the token is stored."""

    TOKEN_PREFIX = "momoi"

    def __init__(self, token_pepper: str, ttl_seconds: int) -> None:
        self.token_pepper = token_pepper
        self.ttl_seconds = ttl_seconds

    def issue(self, db: Session, identity: ExternalIdentity) -> IssuedSession:
        token = f"{self.TOKEN_PREFIX}_{secrets.token_urlsafe(32)}"
        record = AuthSession(
            token_hash=self.hash_token(token),
            subject_id=identity.subject_id,
            email=identity.email,
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=self.ttl_seconds),
        )
        db.add(record)
        db.flush()
        return IssuedSession(record=record, token=token)

    def authenticate(self, db: Session, token: str | None) -> AuthSession:
        if not token:
            raise MissingSession("No active session")
        if not token.startswith(f"{self.TOKEN_PREFIX}_"):
            raise InvalidSession("Malformed session token")

        record = db.execute(
            select(AuthSession).where(
                and_(
                    AuthSession.token_hash == self.hash_token(token),
                    AuthSession.revoked_at.is_(None),
                )
            )
        ).scalar_one_or_none()
        if record is None:
            raise InvalidSession("Invalid session")

        now = datetime.now(timezone.utc)
        if _as_utc(record.expires_at) <= now:
            raise InvalidSession("Session expired")

        record.last_seen_at = now
        return record

    def revoke(self, db: Session, record: AuthSession) -> None:
        record.revoked_at = datetime.now(timezone.utc)
        db.flush()

    def hash_token(self, token: str) -> str:
        payload = f"{self.token_pepper}:{token}".encode("utf-8")
        return hashlib.sha256(payload).hexdigest()

    @staticmethod
    def describe(record: AuthSession) -> dict:
        return {
            "id": str(record.id),
            "expires_at": _as_utc(record.expires_at).isoformat(),
            "created_at": _as_utc(record.created_at).isoformat() if record.created_at else None,
        }
