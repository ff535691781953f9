from sqlalchemy import and_, desc, select
from sqlalchemy.orm import Session

from app.db.models import AuditLog, AuthSession, PlatformUser
from app.security import Role


class AuditService:
    def record(
        self,
        db: Session,
        *,
        action: str,
        resource_type: str,
        actor_user_id,
        resource_id: str | None = None,
        request_id: str | None = None,
        ip_address: str | None = None,
        metadata: dict | None = None,
    ) -> AuditLog:
        row = AuditLog(
            actor_user_id=actor_user_id,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            request_id=request_id,
            ip_address=ip_address,
            metadata_json=metadata or {},
        )
        db.add(row)
        db.flush()
        return row

    def record_user_created(
        self,
        db: Session,
        user: PlatformUser,
        *,
        email: str,
        request_id: str | None = None,
    ) -> None:
        self.record(
            db,
            action="platform_user.create",
            resource_type="platform_user",
            resource_id=str(user.id),
            actor_user_id=user.id,
            request_id=request_id,
            metadata={"role": user.role, "subject_id": user.external_subject_id},
        )
        if user.role == Role.INSTRUCTOR.value:
            self.record(
                db,
                action="instructor_listing.consume",
                resource_type="instructor_listing",
                resource_id=email,
                actor_user_id=user.id,
                request_id=request_id,
            )

    def record_session_event(
        self,
        db: Session,
        action: str,
        auth_session: AuthSession,
        *,
        actor_user_id=None,
        request_id: str | None = None,
        ip_address: str | None = None,
    ) -> AuditLog:
        return self.record(
            db,
            action=action,
            resource_type="auth_session",
            resource_id=str(auth_session.id),
            actor_user_id=actor_user_id,
            request_id=request_id,
            ip_address=ip_address,
            metadata={"subject_id": auth_session.subject_id},
        )

    def list_logs(
        self,
        db: Session,
        *,
        limit: int = 100,
        action: str | None = None,
        resource_type: str | None = None,
        actor_user_id=None,
    ) -> list[AuditLog]:
        filters = []
        if action:
            filters.append(AuditLog.action == action)
        if resource_type:
            filters.append(AuditLog.resource_type == resource_type)
        if actor_user_id:
            filters.append(AuditLog.actor_user_id == actor_user_id)

        stmt = select(AuditLog)
        if filters:
            stmt = stmt.where(and_(*filters))
        stmt = stmt.order_by(desc(AuditLog.created_at)).limit(limit)
        return list(db.execute(stmt).scalars().all())
