from datetime import datetime, timezone

from sqlalchemy import and_, select, update
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.orm import Session

from app.db.models import InstructorListing, PlatformUser
from app.security import Role
from app.services.email_classifier import normalize_email

STORAGE_ERRORS = (OperationalError, InterfaceError)


class StorageUnavailable(Exception):
    pass


class IdentityStore:
    """Persistent platform users and the instructor allow-list.

    Methods only flush; the caller owns the transaction boundary.
    """

    def get_user_by_subject(self, db: Session, subject_id: str) -> PlatformUser | None:
        return db.execute(
            select(PlatformUser).where(PlatformUser.external_subject_id == subject_id)
        ).scalar_one_or_none()

    def create_user(self, db: Session, subject_id: str, role: Role) -> PlatformUser:
        user = PlatformUser(external_subject_id=subject_id, role=role.value)
        db.add(user)
        db.flush()
        return user

    def list_users(self, db: Session, *, role: Role | None = None, limit: int = 100) -> list[PlatformUser]:
        stmt = select(PlatformUser)
        if role is not None:
            stmt = stmt.where(PlatformUser.role == role.value)
        stmt = stmt.order_by(PlatformUser.created_at.desc()).limit(limit)
        return list(db.execute(stmt).scalars().all())

    def get_open_listing(self, db: Session, email: str) -> InstructorListing | None:
        return db.execute(
            select(InstructorListing).where(
                and_(
                    InstructorListing.email == normalize_email(email),
                    InstructorListing.consumed.is_(False),
                )
            )
        ).scalar_one_or_none()

    def consume_listing(self, db: Session, email: str) -> bool:
        # Conditional on the unconsumed state so concurrent callers cannot both win.
        result = db.execute(
            update(InstructorListing)
            .where(
                and_(
                    InstructorListing.email == normalize_email(email),
                    InstructorListing.consumed.is_(False),
                )
            )
            .values(consumed=True, consumed_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def list_listings(self, db: Session, *, consumed: bool | None = None) -> list[InstructorListing]:
        stmt = select(InstructorListing)
        if consumed is not None:
            stmt = stmt.where(InstructorListing.consumed.is_(consumed))
        return list(db.execute(stmt.order_by(InstructorListing.email)).scalars().all())
