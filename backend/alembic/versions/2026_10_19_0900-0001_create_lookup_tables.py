"""create lookup, credential, cache and counter tables

Revision ID: 0001
Revises:
Create Date: 2026-10-19

Initial schema: persian_names (origin data), api_keys (credentials),
request_logs (usage + per-key quota), cache_entries (L2 cache),
rate_limit_counters (shared fixed-window counters).
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "persian_names",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(50), nullable=False),
        sa.Column("gender", sa.String(10), nullable=False),
        sa.Column("en_name", sa.Text(), nullable=True),
        sa.Column("popularity", sa.Integer(), nullable=False, server_default="0"),
        sa.UniqueConstraint("name", "gender", name="uq_persian_names_name_gender"),
    )
    op.create_index("ix_persian_names_name", "persian_names", ["name"])
    op.create_index("ix_persian_names_popularity", "persian_names", ["popularity"])

    op.create_table(
        "api_keys",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("key_hash", sa.String(64), nullable=False, unique=True),
        sa.Column("prefix", sa.String(12), nullable=False),
        sa.Column("tier", sa.String(20), nullable=False),
        sa.Column("request_limit", sa.Integer(), nullable=False),
        sa.Column("request_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
    )

    op.create_table(
        "request_logs",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("requested_name", sa.String(255), nullable=False),
        sa.Column(
            "name_id",
            sa.Uuid(),
            sa.ForeignKey("persian_names.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("ip_address", sa.String(64), nullable=True),
        sa.Column("user_agent", sa.String(512), nullable=True),
        sa.Column("response_time_ms", sa.Integer(), nullable=False),
        sa.Column("status_code", sa.Integer(), nullable=False),
        sa.Column("cache_status", sa.String(8), nullable=True),
        sa.Column(
            "api_key_id",
            sa.Uuid(),
            sa.ForeignKey("api_keys.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index("ix_request_logs_created_at", "request_logs", ["created_at"])
    # Per-key rolling-hour count during API key validation
    op.create_index(
        "ix_request_logs_api_key_created",
        "request_logs",
        ["api_key_id", "created_at"],
    )

    op.create_table(
        "cache_entries",
        sa.Column("key", sa.String(255), primary_key=True),
        sa.Column("value", sa.JSON(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    # Expiry sweeps delete by expires_at
    op.create_index("ix_cache_entries_expires_at", "cache_entries", ["expires_at"])

    op.create_table(
        "rate_limit_counters",
        sa.Column("identifier", sa.String(255), primary_key=True),
        sa.Column("count", sa.Integer(), nullable=False),
        sa.Column("reset_at", sa.DateTime(timezone=True), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("rate_limit_counters")
    op.drop_index("ix_cache_entries_expires_at", table_name="cache_entries")
    op.drop_table("cache_entries")
    op.drop_index("ix_request_logs_api_key_created", table_name="request_logs")
    op.drop_index("ix_request_logs_created_at", table_name="request_logs")
    op.drop_table("request_logs")
    op.drop_table("api_keys")
    op.drop_index("ix_persian_names_popularity", table_name="persian_names")
    op.drop_index("ix_persian_names_name", table_name="persian_names")
    op.drop_table("persian_names")
