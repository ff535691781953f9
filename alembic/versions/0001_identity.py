"""platform users, instructor listings, sessions and audit log

Revision ID: 0001_identity
Revises:
Create Date: 2026-10-17 00:00:00
"""

from pathlib import Path
from typing import Sequence, Union

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001_identity"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _sql_path() -> Path:
    return Path(__file__).resolve().parents[2] / "sql" / "001_identity.sql"


def upgrade() -> None:
    sql_blob = _sql_path().read_text(encoding="utf-8")
    bind = op.get_bind()
    statements = [stmt.strip() for stmt in sql_blob.split(";") if stmt.strip()]
    for statement in statements:
        bind.exec_driver_sql(statement)


def downgrade() -> None:
    bind = op.get_bind()
    drop_statements = [
        "DROP TABLE IF EXISTS audit_logs CASCADE",
        "DROP TABLE IF EXISTS auth_sessions CASCADE",
        "DROP TABLE IF EXISTS instructor_listings CASCADE",
        "DROP TABLE IF EXISTS platform_users CASCADE",
    ]
    for statement in drop_statements:
        bind.exec_driver_sql(statement)
