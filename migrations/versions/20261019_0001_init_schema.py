"""initial schema: users, invitation codes and their usages

Revision ID: 20261019_0001
Revises: 
Create Date: 2026-10-19 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("display_name", sa.String(length=120), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("role", sa.String(length=16), nullable=False, server_default="user"),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="active"),
        sa.Column("last_login_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "invitation_codes",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("code", sa.String(length=32), nullable=False),
        sa.Column("max_uses", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("used_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="active"),
        sa.Column("description", sa.String(length=500), nullable=True),
        sa.Column("created_by", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("max_uses >= 1", name="ck_invitation_codes_max_uses"),
        sa.CheckConstraint("used_count >= 0", name="ck_invitation_codes_used_count"),
    )
    op.create_index("ix_invitation_codes_code", "invitation_codes", ["code"], unique=True)
    op.create_index("ix_invitation_codes_created_by", "invitation_codes", ["created_by"], unique=False)
    op.create_index("ix_invitation_codes_status", "invitation_codes", ["status"], unique=False)
    op.create_index("ix_invitation_codes_expires_at", "invitation_codes", ["expires_at"], unique=False)

    op.create_table(
        "invitation_code_usages",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("invitation_code_id", sa.Uuid(), sa.ForeignKey("invitation_codes.id"), nullable=False),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("used_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("ip_address", sa.String(length=45), nullable=True),
        sa.Column("user_agent", sa.String(length=500), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("invitation_code_id", "user_id", name="uq_invitation_code_usages_code_user"),
    )
    op.create_index(
        "ix_invitation_code_usages_invitation_code_id", "invitation_code_usages", ["invitation_code_id"], unique=False
    )
    op.create_index("ix_invitation_code_usages_user_id", "invitation_code_usages", ["user_id"], unique=False)
    op.create_index("ix_invitation_code_usages_used_at", "invitation_code_usages", ["used_at"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_invitation_code_usages_used_at", table_name="invitation_code_usages")
    op.drop_index("ix_invitation_code_usages_user_id", table_name="invitation_code_usages")
    op.drop_index("ix_invitation_code_usages_invitation_code_id", table_name="invitation_code_usages")
    op.drop_table("invitation_code_usages")

    op.drop_index("ix_invitation_codes_expires_at", table_name="invitation_codes")
    op.drop_index("ix_invitation_codes_status", table_name="invitation_codes")
    op.drop_index("ix_invitation_codes_created_by", table_name="invitation_codes")
    op.drop_index("ix_invitation_codes_code", table_name="invitation_codes")
    op.drop_table("invitation_codes")

    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
