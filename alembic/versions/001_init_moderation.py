"""Create users, media assets, politicians, pending edits and revisions.

Revision ID: 001_init_moderation
Revises:
Create Date: 2026-10-19
"""

from alembic import op

revision = "001_init_moderation"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.execute(
        """
        CREATE TABLE IF NOT EXISTS users (
            id VARCHAR(64) PRIMARY KEY,
            email VARCHAR(320) UNIQUE,
            full_name VARCHAR(255),
            role VARCHAR(32) NOT NULL DEFAULT 'User',
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
        """
    )
    op.execute(
        """
        CREATE TABLE IF NOT EXISTS media_assets (
            id BIGSERIAL PRIMARY KEY,
            storage_path TEXT,
            alt_text TEXT,
            caption TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
        """
    )
    op.execute(
        """
        CREATE TABLE IF NOT EXISTS politicians (
            id BIGSERIAL PRIMARY KEY,
            name TEXT NOT NULL,
            name_nepali TEXT,
            dob VARCHAR(10),
            gender VARCHAR(32),
            photo_asset_id VARCHAR(64),
            biography TEXT,
            education TEXT,
            political_journey TEXT,
            criminal_records TEXT NOT NULL DEFAULT '[]',
            asset_declarations TEXT NOT NULL DEFAULT '[]',
            contact_information TEXT NOT NULL DEFAULT '{}',
            social_media_handles TEXT NOT NULL DEFAULT '{}',
            status VARCHAR(32) NOT NULL DEFAULT 'Approved',
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
        """
    )
    op.execute("CREATE INDEX IF NOT EXISTS idx_politicians_name ON politicians(name)")

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS pending_edits (
            id BIGSERIAL PRIMARY KEY,
            entity_type VARCHAR(32) NOT NULL,
            entity_id BIGINT,
            proposed_data TEXT NOT NULL DEFAULT '{}',
            change_reason TEXT,
            proposer_id VARCHAR(64),
            status VARCHAR(16) NOT NULL DEFAULT 'Pending',
            moderator_id VARCHAR(64),
            admin_feedback TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT chk_pending_edits_status CHECK (
                status IN ('Pending', 'Approved', 'Denied')
            )
        )
        """
    )
    op.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_pending_edits_status_created
        ON pending_edits(status, created_at)
        """
    )
    op.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_pending_edits_entity
        ON pending_edits(entity_type, entity_id)
        """
    )
    op.execute("CREATE INDEX IF NOT EXISTS idx_pending_edits_proposer ON pending_edits(proposer_id)")

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS entity_revisions (
            id BIGSERIAL PRIMARY KEY,
            entity_type VARCHAR(32) NOT NULL,
            entity_id BIGINT NOT NULL,
            data TEXT NOT NULL,
            submitter_id VARCHAR(64) NOT NULL,
            approver_id VARCHAR(64) NOT NULL,
            edit_id BIGINT UNIQUE REFERENCES pending_edits(id) ON DELETE RESTRICT,
            change_reason TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
        """
    )
    op.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_entity_revisions_entity
        ON entity_revisions(entity_type, entity_id)
        """
    )


def downgrade():
    op.execute("DROP TABLE IF EXISTS entity_revisions")
    op.execute("DROP TABLE IF EXISTS pending_edits")
    op.execute("DROP TABLE IF EXISTS politicians")
    op.execute("DROP TABLE IF EXISTS media_assets")
    op.execute("DROP TABLE IF EXISTS users")
