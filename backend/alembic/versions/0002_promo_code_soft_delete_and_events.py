"""promo code soft delete and admin events

Revision ID: 0002
Revises: 0001
Create Date: 2026-10-12
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0002"
down_revision: str | None = "0001"
branch_labels: str | Sequence[str] | None = None
depends_on: Sequence[str] | None = None

event_type = sa.Enum("created", "activated", "deactivated", "deleted", name="promo_code_event_type")
_LIVE_ONLY = sa.text("deleted_at IS NULL")


def upgrade() -> None:
    op.add_column("promo_codes", sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True))
    # Uniqueness only applies to live codes so a deleted code can be issued again.
    op.drop_index("ix_promo_codes_code", table_name="promo_codes")
    op.create_index(
        "uq_promo_codes_live_code",
        "promo_codes",
        ["code"],
        unique=True,
        postgresql_where=_LIVE_ONLY,
        sqlite_where=_LIVE_ONLY,
    )

    op.create_table(
        "promo_code_events",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("promo_code_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("promo_codes.id"), nullable=False),
        sa.Column("event", event_type, nullable=False),
        sa.Column("actor", sa.String(length=255), nullable=False),
        sa.Column("note", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_promo_code_events_promo_code_id", "promo_code_events", ["promo_code_id"])


def downgrade() -> None:
    op.drop_index("ix_promo_code_events_promo_code_id", table_name="promo_code_events")
    op.drop_table("promo_code_events")
    event_type.drop(op.get_bind(), checkfirst=True)
    op.drop_index("uq_promo_codes_live_code", table_name="promo_codes")
    op.create_index("ix_promo_codes_code", "promo_codes", ["code"], unique=True)
    op.drop_column("promo_codes", "deleted_at")
