"""Conversations, messages and user API keys

Revision ID: 0002
Revises: 0001
Create Date: 2026-09-09

Tables:
- conversations: query threads tied to one connection and one creating user
- messages: immutable turns within a conversation
- user_api_keys: encrypted per-user, per-provider credentials

Invariants:
- at most one active, non-deleted conversation per (connection_id, created_by_id),
  enforced by a partial unique index
- soft-deleted conversations are never active
- confidence in [0, 100]; execution_time and rows_affected non-negative
- one key row per (user_id, provider)
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0002"
down_revision: str | None = "0001"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # ==========================================================================
    # Step 1: conversations
    # ==========================================================================
    op.create_table(
        "conversations",
        sa.Column(
            "id",
            sa.UUID(),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column(
            "workspace_id",
            sa.UUID(),
            sa.ForeignKey("workspaces.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "connection_id",
            sa.UUID(),
            sa.ForeignKey("connections.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "created_by_id",
            sa.UUID(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("message_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "last_activity_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column("deleted_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.CheckConstraint(
            "char_length(title) BETWEEN 1 AND 255",
            name="ck_conversations_title_length",
        ),
        sa.CheckConstraint(
            "message_count >= 0",
            name="ck_conversations_message_count",
        ),
        sa.CheckConstraint(
            "NOT (is_active AND deleted_at IS NOT NULL)",
            name="ck_conversations_deleted_not_active",
        ),
    )
    op.create_index(
        "uix_conversations_active_per_connection_user",
        "conversations",
        ["connection_id", "created_by_id"],
        unique=True,
        postgresql_where=sa.text("is_active AND deleted_at IS NULL"),
    )
    op.create_index(
        "idx_conversations_creator_workspace_activity",
        "conversations",
        [
            "created_by_id",
            "workspace_id",
            sa.text("last_activity_at DESC"),
        ],
        postgresql_where=sa.text("deleted_at IS NULL"),
    )

    # ==========================================================================
    # Step 2: messages
    # ==========================================================================
    op.create_table(
        "messages",
        sa.Column(
            "id",
            sa.UUID(),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column(
            "conversation_id",
            sa.UUID(),
            sa.ForeignKey("conversations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("role", sa.Text(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("sql_query", sa.Text(), nullable=True),
        sa.Column("explanation", sa.Text(), nullable=True),
        sa.Column("confidence", sa.Integer(), nullable=True),
        sa.Column("execution_time", sa.Integer(), nullable=True),
        sa.Column("rows_affected", sa.Integer(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column(
            "metadata",
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.CheckConstraint(
            "role IN ('user', 'assistant', 'system')",
            name="ck_messages_role",
        ),
        sa.CheckConstraint("char_length(content) > 0", name="ck_messages_content_nonempty"),
        sa.CheckConstraint(
            "confidence IS NULL OR confidence BETWEEN 0 AND 100",
            name="ck_messages_confidence_range",
        ),
        sa.CheckConstraint(
            "execution_time IS NULL OR execution_time >= 0",
            name="ck_messages_execution_time",
        ),
        sa.CheckConstraint(
            "rows_affected IS NULL OR rows_affected >= 0",
            name="ck_messages_rows_affected",
        ),
    )
    op.create_index(
        "idx_messages_conversation_created",
        "messages",
        ["conversation_id", "created_at"],
    )

    # ==========================================================================
    # Step 3: user_api_keys
    # ==========================================================================
    op.create_table(
        "user_api_keys",
        sa.Column(
            "id",
            sa.UUID(),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column(
            "user_id",
            sa.UUID(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("provider", sa.Text(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("encrypted_key", sa.LargeBinary(), nullable=False),
        sa.Column("key_nonce", sa.LargeBinary(), nullable=False),
        sa.Column("master_key_version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("key_hash", sa.Text(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("last_used_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("usage_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.CheckConstraint(
            "provider IN ('gemini', 'openai', 'anthropic')",
            name="ck_user_api_keys_provider",
        ),
        sa.CheckConstraint(
            "char_length(name) BETWEEN 1 AND 100",
            name="ck_user_api_keys_name_length",
        ),
        sa.CheckConstraint(
            "octet_length(key_nonce) = 24",
            name="ck_user_api_keys_nonce_len",
        ),
        sa.CheckConstraint(
            "master_key_version > 0",
            name="ck_user_api_keys_master_key_version",
        ),
        sa.CheckConstraint("usage_count >= 0", name="ck_user_api_keys_usage_count"),
        sa.UniqueConstraint("user_id", "provider", name="uix_user_api_keys_user_provider"),
    )


def downgrade() -> None:
    op.drop_table("user_api_keys")

    op.drop_index("idx_messages_conversation_created", table_name="messages")
    op.drop_table("messages")

    op.drop_index("idx_conversations_creator_workspace_activity", table_name="conversations")
    op.drop_index("uix_conversations_active_per_connection_user", table_name="conversations")
    op.drop_table("conversations")
