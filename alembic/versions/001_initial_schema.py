"""Initial authentication schema.

Revision ID: 001
Revises:
Create Date: 2025-07-02

"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _id() -> sa.Column:
    return sa.Column("id", sa.String(36), nullable=False, primary_key=True)


def _user_id(nullable: bool = False) -> sa.Column:
    return sa.Column(
        "user_id",
        sa.String(36),
        sa.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=nullable,
    )


def _timestamp(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text("CURRENT_TIMESTAMP"),
    )


def upgrade() -> None:
    """Create the authentication schema."""
    # Accounts and primary credentials
    op.create_table(
        "users",
        _id(),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("organization_id", sa.String(36), nullable=True),
        sa.Column("password_hash", sa.String(255), nullable=False),
        _timestamp("password_changed_at"),
        _created_at(),
        sa.UniqueConstraint("email", name=op.f("uq_users_email")),
    )

    op.create_table(
        "password_history",
        _id(),
        _user_id(),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("is_change", sa.Boolean(), nullable=False, server_default=sa.false()),
        _created_at(),
    )
    op.create_index(
        "ix_password_history_user_created", "password_history", ["user_id", "created_at"]
    )

    op.create_table(
        "failed_logins",
        _id(),
        _user_id(),
        sa.Column("email", sa.String(320), nullable=True),
        _created_at(),
    )
    op.create_index("ix_failed_logins_user_created", "failed_logins", ["user_id", "created_at"])

    # Risk signals
    op.create_table(
        "login_events",
        _id(),
        _user_id(nullable=True),
        sa.Column("email", sa.String(320), nullable=True),
        sa.Column("ip_address", sa.String(64), nullable=False),
        sa.Column("user_agent", sa.Text(), nullable=False, server_default=""),
        sa.Column("country", sa.String(2), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False),
        _created_at(),
    )
    op.create_index(
        "ix_login_events_user_created", "login_events", ["user_id", "created_at"]
    )

    op.create_table(
        "user_devices",
        _id(),
        _user_id(),
        sa.Column("fingerprint", sa.String(64), nullable=False),
        sa.Column("user_agent", sa.Text(), nullable=False, server_default=""),
        _timestamp("first_seen_at"),
        _timestamp("last_seen_at"),
        sa.UniqueConstraint(
            "user_id", "fingerprint", name=op.f("uq_user_devices_user_id_fingerprint")
        ),
    )

    op.create_table(
        "user_locations",
        _id(),
        _user_id(),
        sa.Column("ip_address", sa.String(64), nullable=False),
        sa.Column("country", sa.String(2), nullable=False),
        sa.Column("city", sa.String(255), nullable=True),
        sa.Column("latitude", sa.Float(), nullable=True),
        sa.Column("longitude", sa.Float(), nullable=True),
        _created_at(),
    )
    op.create_index(
        "ix_user_locations_user_created", "user_locations", ["user_id", "created_at"]
    )

    op.create_table(
        "risk_assessments",
        _id(),
        _user_id(),
        sa.Column("ip_address", sa.String(64), nullable=False),
        sa.Column("score", sa.Float(), nullable=False),
        sa.Column("level", sa.String(16), nullable=False),
        sa.Column("factors", postgresql.JSONB(), nullable=False, server_default="[]"),
        _created_at(),
        sa.CheckConstraint("score >= 0 AND score <= 100", name="ck_risk_assessments_score"),
    )

    # Policies
    op.create_table(
        "user_mfa_settings",
        sa.Column(
            "user_id",
            sa.String(36),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("enforcement", sa.String(16), nullable=False, server_default="optional"),
        sa.Column("min_factors", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("allowed_factors", postgresql.JSONB(), nullable=False, server_default="[]"),
    )

    op.create_table(
        "org_mfa_policies",
        sa.Column("organization_id", sa.String(36), primary_key=True),
        sa.Column("enforcement", sa.String(16), nullable=False, server_default="optional"),
        sa.Column("min_factors", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("allowed_factors", postgresql.JSONB(), nullable=False, server_default="[]"),
    )

    # Factors
    op.create_table(
        "mfa_factors",
        _id(),
        _user_id(),
        sa.Column("factor_type", sa.String(32), nullable=False),
        sa.Column("display_name", sa.String(255), nullable=False),
        sa.Column("is_primary", sa.Boolean(), nullable=False, server_default=sa.false()),
        _created_at(),
        _timestamp("last_used_at", nullable=True),
        _timestamp("verified_at", nullable=True),
        sa.Column("secret", sa.Text(), nullable=True),
        sa.Column("destination", sa.Text(), nullable=True),
        sa.Column("last_used_step", sa.BigInteger(), nullable=True),
    )
    op.create_index("ix_mfa_factors_user_type", "mfa_factors", ["user_id", "factor_type"])

    op.create_table(
        "one_time_codes",
        _id(),
        _user_id(),
        sa.Column(
            "factor_id",
            sa.String(36),
            sa.ForeignKey("mfa_factors.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("channel", sa.String(16), nullable=False),
        sa.Column("purpose", sa.String(16), nullable=False),
        sa.Column("code_hash", sa.String(64), nullable=False),
        sa.Column("consumed", sa.Boolean(), nullable=False, server_default=sa.false()),
        _timestamp("consumed_at", nullable=True),
        _created_at(),
        _timestamp("expires_at"),
    )
    op.create_index(
        "ix_one_time_codes_user_channel", "one_time_codes", ["user_id", "channel", "created_at"]
    )

    op.create_table(
        "backup_codes",
        _id(),
        _user_id(),
        sa.Column("code_hash", sa.String(64), nullable=False),
        sa.Column("used", sa.Boolean(), nullable=False, server_default=sa.false()),
        _created_at(),
        _timestamp("used_at", nullable=True),
    )
    op.create_index("ix_backup_codes_user_used", "backup_codes", ["user_id", "used"])

    op.create_table(
        "webauthn_credentials",
        _id(),
        _user_id(),
        sa.Column(
            "factor_id",
            sa.String(36),
            sa.ForeignKey("mfa_factors.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("credential_id", sa.Text(), nullable=False),
        sa.Column("public_key", sa.Text(), nullable=False),
        sa.Column("sign_count", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("aaguid", sa.String(64), nullable=True),
        _created_at(),
        _timestamp("last_used_at", nullable=True),
        sa.UniqueConstraint("credential_id", name=op.f("uq_webauthn_credentials_credential_id")),
    )

    op.create_table(
        "webauthn_ceremonies",
        _id(),
        _user_id(),
        sa.Column("purpose", sa.String(16), nullable=False),
        sa.Column("challenge", sa.Text(), nullable=False),
        sa.Column("challenge_id", sa.String(36), nullable=True),
        _created_at(),
        _timestamp("expires_at"),
    )

    # Challenges
    op.create_table(
        "mfa_challenges",
        _id(),
        _user_id(),
        sa.Column("ip_address", sa.String(64), nullable=False),
        sa.Column("user_agent", sa.Text(), nullable=False, server_default=""),
        _created_at(),
        _timestamp("expires_at"),
        sa.Column("factor_count", sa.Integer(), nullable=False),
        sa.Column("allowed_factors", postgresql.JSONB(), nullable=False),
        sa.Column("failed_attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("risk_level", sa.String(16), nullable=False),
        sa.Column("risk_score", sa.Float(), nullable=True),
    )
    op.create_index("ix_mfa_challenges_expires_at", "mfa_challenges", ["expires_at"])

    op.create_table(
        "mfa_challenge_verifications",
        _id(),
        sa.Column("challenge_id", sa.String(36), nullable=False),
        sa.Column("factor_type", sa.String(32), nullable=False),
        _timestamp("verified_at"),
    )
    op.create_index(
        "ix_mfa_challenge_verifications_challenge",
        "mfa_challenge_verifications",
        ["challenge_id"],
    )

    op.create_table(
        "mfa_challenge_tombstones",
        _id(),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("reason", sa.String(16), nullable=False),
        _created_at(),
        _timestamp("expires_at"),
    )

    # Sessions
    op.create_table(
        "user_sessions",
        _id(),
        _user_id(),
        sa.Column("access_token_hash", sa.String(64), nullable=False),
        sa.Column("refresh_token_hash", sa.String(64), nullable=False),
        sa.Column("device_fingerprint", sa.String(64), nullable=False),
        sa.Column("ip_address", sa.String(64), nullable=False),
        sa.Column("user_agent", sa.Text(), nullable=False, server_default=""),
        _created_at(),
        _timestamp("expires_at"),
        sa.Column("revoked", sa.Boolean(), nullable=False, server_default=sa.false()),
        _timestamp("revoked_at", nullable=True),
        sa.UniqueConstraint(
            "access_token_hash", name=op.f("uq_user_sessions_access_token_hash")
        ),
        sa.UniqueConstraint(
            "refresh_token_hash", name=op.f("uq_user_sessions_refresh_token_hash")
        ),
    )

    # Append-only audit trail; rows outlive the users they mention
    op.create_table(
        "auth_audit_log",
        _id(),
        sa.Column("event_type", sa.String(64), nullable=False),
        _created_at(),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column("user_id", sa.String(36), nullable=True),
        sa.Column("email", sa.String(320), nullable=True),
        sa.Column("ip_address", sa.String(64), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("risk_score", sa.Float(), nullable=True),
        sa.Column("event_data", postgresql.JSONB(), nullable=False, server_default="{}"),
    )
    op.create_index(
        "ix_auth_audit_log_user_created", "auth_audit_log", ["user_id", "created_at"]
    )


def downgrade() -> None:
    """Drop the authentication schema."""
    for table in (
        "auth_audit_log",
        "user_sessions",
        "mfa_challenge_tombstones",
        "mfa_challenge_verifications",
        "mfa_challenges",
        "webauthn_ceremonies",
        "webauthn_credentials",
        "backup_codes",
        "one_time_codes",
        "mfa_factors",
        "org_mfa_policies",
        "user_mfa_settings",
        "risk_assessments",
        "user_locations",
        "user_devices",
        "login_events",
        "failed_logins",
        "password_history",
        "users",
    ):
        op.drop_table(table)
