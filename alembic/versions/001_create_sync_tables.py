"""Create remote_records and physical_stats tables

Revision ID: 001
Revises: None
Create Date: 2026-10-19 00:00:00.000000+00:00

What:  Initial schema of the reference collection server.
How:   Portable column types only, so the same migration runs on SQLite
       (development, tests) and PostgreSQL.

Rollback: downgrade() drops both tables (all data lost).
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "remote_records",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column(
            "collection",
            sa.String(64),
            nullable=False,
            comment="Collection name: calories, workouts, passwords",
        ),
        sa.Column(
            "client_id",
            sa.String(128),
            nullable=False,
            comment="Identifier minted on the device; idempotency key",
        ),
        sa.Column("date", sa.String(10), nullable=False, comment="YYYY-MM-DD"),
        sa.Column(
            "timestamp",
            sa.BigInteger(),
            nullable=False,
            comment="Client clock in epoch milliseconds",
        ),
        sa.Column("payload", sa.JSON(), nullable=False, comment="Domain fields of the record"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id", name="pk_remote_records"),
        # POST is idempotent on (collection, client_id)
        sa.UniqueConstraint("collection", "client_id", name="uq_remote_records_collection_client_id"),
    )

    op.create_index(
        "idx_remote_records_order",
        "remote_records",
        ["collection", sa.text("date DESC"), sa.text("timestamp DESC")],
    )

    op.create_table(
        "physical_stats",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id", name="pk_physical_stats"),
    )


def downgrade() -> None:
    op.drop_table("physical_stats")
    op.drop_index("idx_remote_records_order", table_name="remote_records")
    op.drop_table("remote_records")
