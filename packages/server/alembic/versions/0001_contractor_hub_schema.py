"""Contractor roles, audit log, notifications, push and webhooks.

Revision ID: 0001_contractor_hub
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from contractor_hub_shared.schemas.notifications import NOTIFICATION_ACTIONS

revision: str = "0001_contractor_hub"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

PERMISSION_COLUMNS = [
    "manage_roles",
    "manage_orders",
    "manage_invites",
    "manage_market",
    "manage_webhooks",
    "manage_recruiting",
    "manage_blocklist",
    "manage_org_details",
    "manage_stock",
    "kick_members",
]


def _uuid() -> postgresql.UUID:
    return postgresql.UUID(as_uuid=True)


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()"))


def _updated_at() -> sa.Column:
    return sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()"))


# ---------------------------------------------------------------------------
# UPGRADE
# ---------------------------------------------------------------------------


def upgrade() -> None:
    # -----------------------------------------------------------------------
    # 1. Users and contractors
    # -----------------------------------------------------------------------

    op.create_table(
        "users",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("username", sa.Text(), nullable=False),
        sa.Column("display_name", sa.Text(), nullable=True),
        sa.Column("role", sa.Text(), nullable=False, server_default="user"),
        sa.Column("banned", sa.Boolean(), nullable=False, server_default=sa.false()),
        _created_at(),
    )
    op.create_index("ix_users_username", "users", ["username"], unique=True)

    op.create_table(
        "contractors",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("spectrum_id", sa.Text(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("default_role_id", _uuid(), nullable=True),
        sa.Column("owner_role_id", _uuid(), nullable=True),
        _created_at(),
        _updated_at(),
    )
    op.create_index("ix_contractors_spectrum_id", "contractors", ["spectrum_id"], unique=True)

    # -----------------------------------------------------------------------
    # 2. Roles and membership
    # -----------------------------------------------------------------------

    op.create_table(
        "contractor_roles",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("contractor_id", _uuid(), sa.ForeignKey("contractors.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        *[
            sa.Column(name, sa.Boolean(), nullable=False, server_default=sa.false())
            for name in PERMISSION_COLUMNS
        ],
    )
    op.create_index("ix_contractor_roles_contractor_id", "contractor_roles", ["contractor_id"])

    op.create_table(
        "contractor_member_roles",
        sa.Column("user_id", _uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("role_id", _uuid(), sa.ForeignKey("contractor_roles.id", ondelete="CASCADE"), primary_key=True),
    )

    # Legacy one-role-per-member table
    op.create_table(
        "contractor_members",
        sa.Column("contractor_id", _uuid(), sa.ForeignKey("contractors.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("user_id", _uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("role", sa.Text(), nullable=False, server_default="member"),
    )

    op.create_table(
        "contractor_invites",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("contractor_id", _uuid(), sa.ForeignKey("contractors.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", _uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("inviter_id", _uuid(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("message", sa.Text(), nullable=False, server_default=""),
        _created_at(),
    )
    op.create_index("ix_contractor_invites_contractor_id", "contractor_invites", ["contractor_id"])
    op.create_index("ix_contractor_invites_user_id", "contractor_invites", ["user_id"])

    # -----------------------------------------------------------------------
    # 3. Audit log (append-only)
    # -----------------------------------------------------------------------

    op.create_table(
        "audit_logs",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("action", sa.Text(), nullable=False),
        sa.Column("actor_id", _uuid(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("subject_type", sa.Text(), nullable=False),
        sa.Column("subject_id", sa.Text(), nullable=False),
        sa.Column("contractor_id", _uuid(), nullable=True),
        sa.Column("metadata", postgresql.JSONB(), nullable=False, server_default="{}"),
        _created_at(),
    )
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])
    op.create_index("ix_audit_logs_actor_id", "audit_logs", ["actor_id"])
    op.create_index("ix_audit_logs_contractor_id", "audit_logs", ["contractor_id"])
    op.create_index("ix_audit_logs_created_at", "audit_logs", ["created_at"])

    op.execute("""
        CREATE OR REPLACE FUNCTION prevent_audit_mutation()
        RETURNS TRIGGER AS $$
        BEGIN
            RAISE EXCEPTION 'Audit log entries are immutable. UPDATE and DELETE are not permitted.';
        END;
        $$ LANGUAGE plpgsql
    """)
    op.execute("""
        CREATE TRIGGER audit_logs_immutable
        BEFORE UPDATE OR DELETE ON audit_logs
        FOR EACH ROW EXECUTE FUNCTION prevent_audit_mutation()
    """)

    # -----------------------------------------------------------------------
    # 4. Notifications
    # -----------------------------------------------------------------------

    action_types = op.create_table(
        "notification_action_type",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("action", sa.Text(), nullable=False),
        sa.Column("entity", sa.Text(), nullable=False),
    )
    op.create_index("ix_notification_action_type_action", "notification_action_type", ["action"], unique=True)
    op.bulk_insert(
        action_types,
        [{"action": action, "entity": entity} for action, entity in NOTIFICATION_ACTIONS.items()],
    )

    op.create_table(
        "notification_object",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("action_type_id", sa.Integer(), sa.ForeignKey("notification_action_type.id"), nullable=False),
        sa.Column("entity_id", _uuid(), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.UniqueConstraint("entity_id", "action_type_id", name="uq_notification_object_entity_action"),
    )
    op.create_index("ix_notification_object_entity_id", "notification_object", ["entity_id"])

    op.create_table(
        "notification_change",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column(
            "notification_object_id",
            _uuid(),
            sa.ForeignKey("notification_object.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("actor_id", _uuid(), nullable=False),
        _created_at(),
    )
    op.create_index("ix_notification_change_object", "notification_change", ["notification_object_id"])

    op.create_table(
        "notification",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column(
            "notification_object_id",
            _uuid(),
            sa.ForeignKey("notification_object.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("notifier_id", _uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("read", sa.Boolean(), nullable=False, server_default=sa.false()),
        _created_at(),
    )
    op.create_index("ix_notification_notifier_id", "notification", ["notifier_id"])
    op.create_index("ix_notification_object_id", "notification", ["notification_object_id"])
    # At most one unread row per (object, recipient)
    op.create_index(
        "uq_notification_unread",
        "notification",
        ["notification_object_id", "notifier_id"],
        unique=True,
        postgresql_where=sa.text("NOT read"),
    )

    # -----------------------------------------------------------------------
    # 5. Push and webhooks
    # -----------------------------------------------------------------------

    op.create_table(
        "push_subscriptions",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("user_id", _uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("endpoint", sa.Text(), nullable=False, unique=True),
        sa.Column("p256dh", sa.Text(), nullable=False),
        sa.Column("auth", sa.Text(), nullable=False),
        sa.Column("user_agent", sa.Text(), nullable=True),
        _created_at(),
        _updated_at(),
    )
    op.create_index("ix_push_subscriptions_user_id", "push_subscriptions", ["user_id"])

    op.create_table(
        "push_preferences",
        sa.Column("user_id", _uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("action_type_id", sa.Integer(), sa.ForeignKey("notification_action_type.id"), primary_key=True),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        _created_at(),
        _updated_at(),
    )

    op.create_table(
        "notification_webhooks",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("contractor_id", _uuid(), sa.ForeignKey("contractors.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("url", sa.Text(), nullable=False),
        sa.Column("actions", postgresql.JSONB(), nullable=False, server_default="[]"),
        _created_at(),
    )
    op.create_index("ix_notification_webhooks_contractor_id", "notification_webhooks", ["contractor_id"])

    op.create_table(
        "admin_alerts",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("link", sa.Text(), nullable=True),
        sa.Column("target_type", sa.Text(), nullable=False),
        sa.Column("target_contractor_id", _uuid(), sa.ForeignKey("contractors.id"), nullable=True),
        sa.Column("created_by", _uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _created_at(),
    )


# ---------------------------------------------------------------------------
# DOWNGRADE
# ---------------------------------------------------------------------------


def downgrade() -> None:
    op.execute("DROP TRIGGER IF EXISTS audit_logs_immutable ON audit_logs")
    op.execute("DROP FUNCTION IF EXISTS prevent_audit_mutation()")

    for table in [
        "admin_alerts",
        "notification_webhooks",
        "push_preferences",
        "push_subscriptions",
        "notification",
        "notification_change",
        "notification_object",
        "notification_action_type",
        "audit_logs",
        "contractor_invites",
        "contractor_members",
        "contractor_member_roles",
        "contractor_roles",
        "contractors",
        "users",
    ]:
        op.drop_table(table)
