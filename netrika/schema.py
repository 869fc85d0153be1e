"""Table definitions shared by the Alembic migrations and the test fixtures."""

from __future__ import annotations

import sqlalchemy as sa

metadata = sa.MetaData()

# BIGINT primary keys only autoincrement on SQLite when declared as INTEGER.
_Id = sa.BigInteger().with_variant(sa.Integer(), "sqlite")
_NOW = sa.text("CURRENT_TIMESTAMP")

EDIT_STATUSES = ("Pending", "Approved", "Denied")

users = sa.Table(
    "users",
    metadata,
    sa.Column("id", sa.String(64), primary_key=True),
    sa.Column("email", sa.String(320), nullable=True, unique=True),
    sa.Column("full_name", sa.String(255), nullable=True),
    sa.Column("role", sa.String(32), nullable=False, server_default="User"),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=_NOW),
)

media_assets = sa.Table(
    "media_assets",
    metadata,
    sa.Column("id", _Id, primary_key=True, autoincrement=True),
    sa.Column("storage_path", sa.Text, nullable=True),
    sa.Column("alt_text", sa.Text, nullable=True),
    sa.Column("caption", sa.Text, nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=_NOW),
)

politicians = sa.Table(
    "politicians",
    metadata,
    sa.Column("id", _Id, primary_key=True, autoincrement=True),
    sa.Column("name", sa.Text, nullable=False),
    sa.Column("name_nepali", sa.Text, nullable=True),
    sa.Column("dob", sa.String(10), nullable=True),
    sa.Column("gender", sa.String(32), nullable=True),
    sa.Column("photo_asset_id", sa.String(64), nullable=True),
    sa.Column("biography", sa.Text, nullable=True),
    sa.Column("education", sa.Text, nullable=True),
    sa.Column("political_journey", sa.Text, nullable=True),
    sa.Column("criminal_records", sa.Text, nullable=False, server_default="[]"),
    sa.Column("asset_declarations", sa.Text, nullable=False, server_default="[]"),
    sa.Column("contact_information", sa.Text, nullable=False, server_default="{}"),
    sa.Column("social_media_handles", sa.Text, nullable=False, server_default="{}"),
    sa.Column("status", sa.String(32), nullable=False, server_default="Approved"),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=_NOW),
    sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=_NOW),
)
sa.Index("idx_politicians_name", politicians.c.name)

pending_edits = sa.Table(
    "pending_edits",
    metadata,
    sa.Column("id", _Id, primary_key=True, autoincrement=True),
    sa.Column("entity_type", sa.String(32), nullable=False),
    sa.Column("entity_id", sa.BigInteger, nullable=True),
    sa.Column("proposed_data", sa.Text, nullable=False, server_default="{}"),
    sa.Column("change_reason", sa.Text, nullable=True),
    sa.Column("proposer_id", sa.String(64), nullable=True),
    sa.Column("status", sa.String(16), nullable=False, server_default="Pending"),
    sa.Column("moderator_id", sa.String(64), nullable=True),
    sa.Column("admin_feedback", sa.Text, nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=_NOW),
    sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=_NOW),
    sa.CheckConstraint(
        "status IN ('Pending', 'Approved', 'Denied')",
        name="chk_pending_edits_status",
    ),
)
sa.Index("idx_pending_edits_status_created", pending_edits.c.status, pending_edits.c.created_at)
sa.Index("idx_pending_edits_entity", pending_edits.c.entity_type, pending_edits.c.entity_id)
sa.Index("idx_pending_edits_proposer", pending_edits.c.proposer_id)

entity_revisions = sa.Table(
    "entity_revisions",
    metadata,
    sa.Column("id", _Id, primary_key=True, autoincrement=True),
    sa.Column("entity_type", sa.String(32), nullable=False),
    sa.Column("entity_id", sa.BigInteger, nullable=False),
    sa.Column("data", sa.Text, nullable=False),
    sa.Column("submitter_id", sa.String(64), nullable=False),
    sa.Column("approver_id", sa.String(64), nullable=False),
    sa.Column(
        "edit_id",
        sa.BigInteger,
        sa.ForeignKey("pending_edits.id", ondelete="RESTRICT"),
        nullable=True,
        unique=True,
    ),
    sa.Column("change_reason", sa.Text, nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=_NOW),
)
sa.Index("idx_entity_revisions_entity", entity_revisions.c.entity_type, entity_revisions.c.entity_id)
