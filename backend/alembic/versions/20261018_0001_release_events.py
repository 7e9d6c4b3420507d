"""release events ledger

Revision ID: 20261018_0001
Revises: None
Create Date: 2026-10-18 09:30:00

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261018_0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "release_events",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("event_id", sa.String(length=64), nullable=False),
        sa.Column("tag", sa.String(length=128), nullable=False),
        sa.Column("action", sa.String(length=32), nullable=False),
        sa.Column("user", sa.String(length=255), nullable=True),
        sa.Column("timestamp", sa.String(length=40), nullable=False),
        sa.Column("details", sa.JSON(), nullable=True),
        sa.Column("details_hash", sa.String(length=128), nullable=False),
        sa.Column("schema_version", sa.Integer(), nullable=False),
        sa.Column("recorded_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("event_id"),
    )
    op.create_index("ix_release_events_tag", "release_events", ["tag"], unique=False)
    op.create_index("ix_release_events_action", "release_events", ["action"], unique=False)
    op.create_index("ix_release_events_tag_id", "release_events", ["tag", "id"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_release_events_tag_id", table_name="release_events")
    op.drop_index("ix_release_events_action", table_name="release_events")
    op.drop_index("ix_release_events_tag", table_name="release_events")
    op.drop_table("release_events")
