"""Create file registry tables.

Revision ID: 0001_file_registry
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0001_file_registry"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    bind = op.get_bind()
    is_postgres = bind.dialect.name == "postgresql"
    json_type = postgresql.JSONB if is_postgres else sa.JSON
    uuid_type = postgresql.UUID(as_uuid=True) if is_postgres else sa.String(length=36)

    op.create_table(
        "sys_file_storage",
        sa.Column("uid", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("base_path", sa.String(length=1000), nullable=False, server_default=""),
    )

    op.create_table(
        "sys_file",
        sa.Column("uid", sa.Integer(), primary_key=True),
        sa.Column("storage", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("identifier", sa.String(length=768), nullable=False, server_default=""),
        sa.Column("name", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("sha1", sa.String(length=40)),
        sa.Column("tstamp", sa.DateTime(timezone=True)),
    )
    op.create_index("ix_sys_file_storage_identifier", "sys_file", ["storage", "identifier"])

    op.create_table(
        "sys_file_metadata",
        sa.Column("uid", sa.Integer(), primary_key=True),
        sa.Column("file", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("sys_language_uid", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("title", sa.Text()),
        sa.Column("description", sa.Text()),
        sa.Column("alternative", sa.Text()),
        sa.Column("caption", sa.Text()),
        sa.Column("copyright", sa.Text()),
        sa.Column("keywords", sa.Text()),
    )
    op.create_index("ix_sys_file_metadata_file", "sys_file_metadata", ["file"])

    op.create_table(
        "sys_file_reference",
        sa.Column("uid", sa.Integer(), primary_key=True),
        sa.Column("uid_local", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("uid_foreign", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("tablenames", sa.String(length=64), nullable=False, server_default=""),
        sa.Column("fieldname", sa.String(length=64), nullable=False, server_default=""),
        sa.Column("link", sa.Text()),
    )

    op.create_table(
        "sys_file_processedfile",
        sa.Column("uid", sa.Integer(), primary_key=True),
        sa.Column("storage", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("original", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("identifier", sa.String(length=512), nullable=False, server_default=""),
        sa.Column("name", sa.String(length=255)),
        sa.Column("task_type", sa.String(length=200), nullable=False, server_default=""),
        sa.Column("configuration", sa.Text()),
    )
    op.create_index(
        "ix_sys_file_processedfile_original",
        "sys_file_processedfile",
        ["original"],
    )

    op.create_table(
        "sys_refindex",
        sa.Column("hash", sa.String(length=32), primary_key=True),
        sa.Column("tablename", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("recuid", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("field", sa.String(length=64), nullable=False, server_default=""),
        sa.Column("flexpointer", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("softref_key", sa.String(length=30), nullable=False, server_default=""),
        sa.Column("softref_id", sa.String(length=40), nullable=False, server_default=""),
        sa.Column("sorting", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("workspace", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("ref_table", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("ref_uid", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("ref_string", sa.String(length=1024), nullable=False, server_default=""),
    )
    op.create_index("ix_sys_refindex_lookup_uid", "sys_refindex", ["ref_table", "ref_uid"])
    op.create_index("ix_sys_refindex_lookup_rec", "sys_refindex", ["tablename", "recuid"])

    op.create_table(
        "audit_events",
        sa.Column("event_id", uuid_type, primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("event_type", sa.String(length=100), nullable=False),
        sa.Column("event_version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("actor_type", sa.String(length=50), nullable=False),
        sa.Column("actor_id", sa.String(length=255)),
        sa.Column("target_type", sa.String(length=50), nullable=False),
        sa.Column("target_ids", json_type, nullable=False),
        sa.Column("count_affected", sa.Integer()),
        sa.Column("reason", sa.Text()),
        sa.Column("metadata", json_type),
    )
    op.create_index("ix_audit_events_created_at", "audit_events", ["created_at"])
    op.create_index("ix_audit_events_event_type", "audit_events", ["event_type"])


def downgrade() -> None:
    op.drop_index("ix_audit_events_event_type", table_name="audit_events")
    op.drop_index("ix_audit_events_created_at", table_name="audit_events")
    op.drop_table("audit_events")
    op.drop_index("ix_sys_refindex_lookup_rec", table_name="sys_refindex")
    op.drop_index("ix_sys_refindex_lookup_uid", table_name="sys_refindex")
    op.drop_table("sys_refindex")
    op.drop_index("ix_sys_file_processedfile_original", table_name="sys_file_processedfile")
    op.drop_table("sys_file_processedfile")
    op.drop_table("sys_file_reference")
    op.drop_index("ix_sys_file_metadata_file", table_name="sys_file_metadata")
    op.drop_table("sys_file_metadata")
    op.drop_index("ix_sys_file_storage_identifier", table_name="sys_file")
    op.drop_table("sys_file")
    op.drop_table("sys_file_storage")
