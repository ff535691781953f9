from uuid import UUID

from fastapi import APIRouter, Depends, Query

from app.api.deps import RequestContext, Services, get_services, require_admin
from app.schemas.audit import AuditAction, AuditLogEntry, AuditLogListResponse, AuditResourceType

router = APIRouter(prefix="/api/admin/audit-logs", tags=["audit"])


@router.get("", response_model=AuditLogListResponse)
def list_audit_logs(
    ctx: RequestContext = Depends(require_admin),
    services: Services = Depends(get_services),
    limit: int = Query(default=100, ge=1, le=200),
    action: AuditAction | None = Query(default=None),
    resource_type: AuditResourceType | None = Query(default=None),
    actor_user_id: UUID | None = Query(default=None),
) -> AuditLogListResponse:
    rows = services.audit.list_logs(
        ctx.db,
        limit=limit,
        action=action,
        resource_type=resource_type,
        actor_user_id=actor_user_id,
    )
    items = [AuditLogEntry.model_validate(row) for row in rows]
    return AuditLogListResponse(items=items, count=len(items))
