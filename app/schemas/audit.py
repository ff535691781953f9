from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

AuditAction = Literal[
    "platform_user.create",
    "instructor_listing.consume",
    "session.create",
    "session.revoke",
]
AuditResourceType = Literal["platform_user", "instructor_listing", "auth_session"]


class AuditLogEntry(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    actor_user_id: UUID | None
    action: AuditAction
    resource_type: AuditResourceType
    # Listing rows use the allow-listed email; the other resources use their UUID.
    resource_id: str | None
    request_id: str | None
    ip_address: str | None
    metadata: dict = Field(default_factory=dict, validation_alias="metadata_json")
    created_at: datetime | None


class AuditLogListResponse(BaseModel):
    items: list[AuditLogEntry]
    count: int
