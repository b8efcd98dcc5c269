"""Initial schema — users, swipes, matches, conversations, messages, reads.

Revision ID: 001_initial
Revises:
Create Date: 2025-01-01 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _user_fk(name: str, **kwargs) -> sa.Column:
    return sa.Column(
        name,
        postgresql.UUID(as_uuid=True),
        sa.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        **kwargs,
    )


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        server_default=sa.func.now(),
        nullable=False,
    )


def upgrade() -> None:
    # ── 1. users ────────────────────────────────────────────────────
    op.create_table(
        "users",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("email", sa.String, unique=True, index=True, nullable=False),
        sa.Column("is_email_verified", sa.Boolean, server_default="false", nullable=False),
        sa.Column("first_name", sa.String, nullable=False),
        sa.Column("last_name", sa.String, nullable=False),
        sa.Column("age", sa.Integer, nullable=False),
        sa.Column("gender", sa.String, nullable=False),
        sa.Column("interested_in", sa.String, nullable=False),
        sa.Column("university", sa.String, index=True, nullable=False),
        sa.Column("course", sa.String, nullable=True),
        sa.Column("year", sa.Integer, nullable=True),
        sa.Column("bio", sa.Text, nullable=True),
        sa.Column(
            "photos",
            postgresql.JSONB,
            server_default="[]",
            nullable=False,
            comment="Ordered array of {url, is_main}",
        ),
        sa.Column("latitude", sa.Float, server_default="0", nullable=False),
        sa.Column("longitude", sa.Float, server_default="0", nullable=False),
        sa.Column("age_min", sa.Integer, server_default="18", nullable=False),
        sa.Column("age_max", sa.Integer, server_default="30", nullable=False),
        sa.Column("max_distance_km", sa.Integer, server_default="50", nullable=False),
        sa.Column("is_online", sa.Boolean, server_default="false", nullable=False),
        sa.Column(
            "last_active",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            index=True,
            nullable=False,
        ),
        sa.Column("profile_completed", sa.Boolean, server_default="false", nullable=False),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "ix_users_discovery",
        "users",
        ["university", "is_email_verified", "profile_completed"],
    )

    # ── 2. swipes (directed like / dislike edges) ───────────────────
    op.create_table(
        "swipes",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        _user_fk("actor_id", index=True),
        _user_fk("target_id", index=True),
        sa.Column("kind", sa.String, nullable=False, comment="like / dislike"),
        _created_at(),
        sa.UniqueConstraint("actor_id", "target_id", name="uq_swipe_pair"),
    )

    # ── 3. matches (one row per unordered pair) ─────────────────────
    op.create_table(
        "matches",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        _user_fk("user_low_id", index=True),
        _user_fk("user_high_id", index=True),
        _created_at(),
        sa.UniqueConstraint("user_low_id", "user_high_id", name="uq_match_pair"),
        sa.CheckConstraint("user_low_id <> user_high_id", name="ck_match_distinct"),
    )

    # ── 4. conversations ────────────────────────────────────────────
    op.create_table(
        "conversations",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        _user_fk("user_low_id", index=True),
        _user_fk("user_high_id", index=True),
        sa.Column("is_active", sa.Boolean, server_default="true", nullable=False),
        sa.Column(
            "message_seq",
            sa.Integer,
            server_default="0",
            nullable=False,
            comment="Sequence number of the last appended message",
        ),
        sa.Column("last_message_content", sa.Text, nullable=True),
        sa.Column("last_message_sender_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("last_message_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("user_low_id", "user_high_id", name="uq_conversation_pair"),
        sa.CheckConstraint("user_low_id <> user_high_id", name="ck_conversation_distinct"),
    )

    # ── 5. messages ─────────────────────────────────────────────────
    op.create_table(
        "messages",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "conversation_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("conversations.id", ondelete="CASCADE"),
            index=True,
            nullable=False,
        ),
        sa.Column("seq", sa.Integer, nullable=False),
        _user_fk("sender_id"),
        sa.Column("content", sa.Text, nullable=False),
        sa.Column(
            "message_type",
            sa.String,
            server_default="text",
            nullable=False,
            comment="text / image / location",
        ),
        _created_at(),
        sa.UniqueConstraint("conversation_id", "seq", name="uq_message_seq"),
    )

    # ── 6. message_reads (read receipts) ────────────────────────────
    op.create_table(
        "message_reads",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "message_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("messages.id", ondelete="CASCADE"),
            index=True,
            nullable=False,
        ),
        _user_fk("user_id"),
        sa.Column(
            "read_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.UniqueConstraint("message_id", "user_id", name="uq_message_read"),
    )


def downgrade() -> None:
    # Drop in reverse order (children / dependents first).
    op.drop_table("message_reads")
    op.drop_table("messages")
    op.drop_table("conversations")
    op.drop_table("matches")
    op.drop_table("swipes")
    op.drop_index("ix_users_discovery", table_name="users")
    op.drop_table("users")
