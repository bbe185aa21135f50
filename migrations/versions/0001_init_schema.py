from __future__ import annotations

"""init schema

Revision ID: 0001_init_schema
Revises:
Create Date: 2026-10-19

Conversations with their message pairs, the provider usage ledger and
the single-row monthly spend ceiling.
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB


revision = "0001_init_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "conversations",
        sa.Column("id", sa.String(length=40), primary_key=True),
        sa.Column("owner_id", sa.String(length=255), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("NOW()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("NOW()")),
    )
    op.create_index("idx_conversations_owner", "conversations", ["owner_id", "updated_at"])

    op.create_table(
        "conversation_messages",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column(
            "conversation_id",
            sa.String(length=40),
            sa.ForeignKey("conversations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("role", sa.String(length=20), nullable=False),
        sa.Column("content", sa.Text, nullable=False, server_default=""),
        # Names and mime types only, never the payload
        sa.Column("attachments", JSONB, nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("tool_invocations", JSONB, nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("NOW()")),
    )
    op.create_index("idx_conversation_messages_conversation", "conversation_messages", ["conversation_id", "id"])

    op.create_table(
        "ai_usage",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column("category", sa.String(length=50), nullable=False),
        sa.Column("model", sa.String(length=100), nullable=False),
        sa.Column("tokens_in", sa.Integer, nullable=False, server_default=sa.text("0")),
        sa.Column("tokens_out", sa.Integer, nullable=False, server_default=sa.text("0")),
        sa.Column("cost_usd", sa.Numeric(12, 6), nullable=False, server_default=sa.text("0")),
        sa.Column("session_id", sa.String(length=40)),
        sa.Column("metadata", JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("NOW()")),
    )
    # Monthly sums scan by creation time
    op.create_index("idx_ai_usage_created_at", "ai_usage", ["created_at"])

    op.create_table(
        "ai_usage_limits",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("monthly_limit_usd", sa.Numeric(12, 2), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("NOW()")),
        sa.CheckConstraint("id = 1", name="ck_ai_usage_limits_single_row"),
        sa.CheckConstraint("monthly_limit_usd > 0", name="ck_ai_usage_limits_positive"),
    )


def downgrade() -> None:
    op.drop_table("ai_usage_limits")
    op.drop_index("idx_ai_usage_created_at", table_name="ai_usage")
    op.drop_table("ai_usage")
    op.drop_index("idx_conversation_messages_conversation", table_name="conversation_messages")
    op.drop_table("conversation_messages")
    op.drop_index("idx_conversations_owner", table_name="conversations")
    op.drop_table("conversations")
