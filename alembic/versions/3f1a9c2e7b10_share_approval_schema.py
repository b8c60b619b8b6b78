"""share approval schema

Revision ID: 3f1a9c2e7b10
Revises:
Create Date: 2026-10-17 09:12:40.118204

"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "3f1a9c2e7b10"
down_revision = None
branch_labels = None
depends_on = None

APPROVAL_STATUS = postgresql.ENUM(
    "not_required",
    "pending",
    "approved",
    "rejected",
    "expired",
    name="approvalstatus",
    create_type=False,
)
APPROVAL_ACTION = postgresql.ENUM(
    "requested",
    "approved",
    "rejected",
    "expired",
    name="approvalaction",
    create_type=False,
)
APPROVAL_PRIORITY = postgresql.ENUM(
    "low", "normal", "high", "urgent", name="approvalpriority", create_type=False
)
PERMISSION_LEVEL = postgresql.ENUM(
    "none",
    "read",
    "write",
    "read_write",
    "delete",
    "admin",
    name="permissionlevel",
    create_type=False,
)
PRINCIPAL_TYPE = postgresql.ENUM(
    "person", "role", name="principaltype", create_type=False
)

ENUMS = (
    APPROVAL_STATUS,
    APPROVAL_ACTION,
    APPROVAL_PRIORITY,
    PERMISSION_LEVEL,
    PRINCIPAL_TYPE,
)


def upgrade() -> None:
    bind = op.get_bind()
    for enum_type in ENUMS:
        enum_type.create(bind, checkfirst=True)

    # People + RBAC
    op.create_table(
        "people",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("first_name", sa.String(length=80), nullable=False),
        sa.Column("last_name", sa.String(length=80), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
    )
    op.create_table(
        "roles",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("name", sa.String(length=80), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name", name="uq_roles_name"),
    )
    op.create_table(
        "permissions",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("key", sa.String(length=120), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("key", name="uq_permissions_key"),
    )
    op.create_table(
        "person_roles",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("person_id", sa.UUID(), nullable=False),
        sa.Column("role_id", sa.UUID(), nullable=False),
        sa.ForeignKeyConstraint(["person_id"], ["people.id"]),
        sa.ForeignKeyConstraint(["role_id"], ["roles.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("person_id", "role_id", name="uq_person_roles_person_role"),
    )
    op.create_table(
        "role_permissions",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("role_id", sa.UUID(), nullable=False),
        sa.Column("permission_id", sa.UUID(), nullable=False),
        sa.ForeignKeyConstraint(["role_id"], ["roles.id"]),
        sa.ForeignKeyConstraint(["permission_id"], ["permissions.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "role_id", "permission_id", name="uq_role_permissions_role_permission"
        ),
    )

    # Storage
    op.create_table(
        "storage_providers",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("provider_type", sa.String(length=40), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name", name="uq_storage_providers_name"),
    )
    op.create_table(
        "storage_buckets",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("provider_id", sa.UUID(), nullable=False),
        sa.Column("path", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=True),
        sa.Column("is_public", sa.Boolean(), nullable=True),
        sa.Column("allow_direct_access", sa.Boolean(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["provider_id"], ["storage_providers.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "provider_id", "path", name="uq_storage_buckets_provider_path"
        ),
    )
    op.create_table(
        "bucket_permissions",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("bucket_id", sa.UUID(), nullable=False),
        sa.Column("principal_type", PRINCIPAL_TYPE, nullable=False),
        sa.Column("principal_id", sa.UUID(), nullable=False),
        sa.Column("permission", PERMISSION_LEVEL, nullable=False),
        sa.Column("granted_by", sa.UUID(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["bucket_id"], ["storage_buckets.id"]),
        sa.ForeignKeyConstraint(["granted_by"], ["people.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "bucket_id",
            "principal_type",
            "principal_id",
            name="uq_bucket_permissions_bucket_principal",
        ),
    )
    op.create_table(
        "api_keys",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("owner_id", sa.UUID(), nullable=False),
        sa.Column("permission", PERMISSION_LEVEL, nullable=True),
        sa.Column("allowed_provider_ids", sa.JSON(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["owner_id"], ["people.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_table(
        "api_key_bucket_permissions",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("api_key_id", sa.UUID(), nullable=False),
        sa.Column("bucket_id", sa.UUID(), nullable=False),
        sa.Column("permission", PERMISSION_LEVEL, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["api_key_id"], ["api_keys.id"]),
        sa.ForeignKeyConstraint(["bucket_id"], ["storage_buckets.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "api_key_id", "bucket_id", name="uq_api_key_bucket_permissions_key_bucket"
        ),
    )

    # Content
    op.create_table(
        "categories",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("allow_direct_access", sa.Boolean(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name", name="uq_categories_name"),
    )
    op.create_table(
        "documents",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("name", sa.String(length=500), nullable=False),
        sa.Column("file_name", sa.String(length=255), nullable=False),
        sa.Column("content_type", sa.String(length=100), nullable=False),
        sa.Column("file_size", sa.BigInteger(), nullable=False),
        sa.Column("storage_path", sa.String(length=1000), nullable=True),
        sa.Column("category_id", sa.UUID(), nullable=True),
        sa.Column("storage_provider_id", sa.UUID(), nullable=False),
        sa.Column("bucket_id", sa.UUID(), nullable=True),
        sa.Column("created_by", sa.UUID(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["category_id"], ["categories.id"]),
        sa.ForeignKeyConstraint(["storage_provider_id"], ["storage_providers.id"]),
        sa.ForeignKeyConstraint(["bucket_id"], ["storage_buckets.id"]),
        sa.ForeignKeyConstraint(["created_by"], ["people.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_documents_category_id", "documents", ["category_id"])
    op.create_index("ix_documents_bucket_id", "documents", ["bucket_id"])
    op.create_index("ix_documents_created_by", "documents", ["created_by"])
    op.create_table(
        "document_shares",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("document_id", sa.UUID(), nullable=False),
        sa.Column("share_code", sa.String(length=12), nullable=False),
        sa.Column("created_by", sa.UUID(), nullable=False),
        sa.Column("created_via_api_key_id", sa.UUID(), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=True),
        sa.Column("requires_approval", sa.Boolean(), nullable=True),
        sa.Column("approval_status", APPROVAL_STATUS, nullable=True),
        sa.Column("is_direct_share", sa.Boolean(), nullable=True),
        sa.Column("notification_emails", sa.JSON(), nullable=True),
        sa.Column("allow_download", sa.Boolean(), nullable=True),
        sa.Column("max_view_count", sa.Integer(), nullable=True),
        sa.Column("view_count", sa.Integer(), nullable=True),
        sa.Column("custom_message", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["document_id"], ["documents.id"]),
        sa.ForeignKeyConstraint(["created_by"], ["people.id"]),
        sa.ForeignKeyConstraint(["created_via_api_key_id"], ["api_keys.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("share_code", name="uq_document_shares_share_code"),
    )
    op.create_index(
        "ix_document_shares_document_id", "document_shares", ["document_id"]
    )
    op.create_index(
        "ix_document_shares_approval_status", "document_shares", ["approval_status"]
    )

    # Approval
    op.create_table(
        "approval_policies",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=True),
        sa.Column("priority", sa.Integer(), nullable=False),
        sa.Column("require_approval", sa.Boolean(), nullable=True),
        sa.Column("approval_timeout_hours", sa.Integer(), nullable=False),
        sa.Column("required_approval_count", sa.Integer(), nullable=False),
        sa.Column("category_filters", sa.JSON(), nullable=True),
        sa.Column("provider_filters", sa.JSON(), nullable=True),
        sa.Column("user_filters", sa.JSON(), nullable=True),
        sa.Column("api_key_filters", sa.JSON(), nullable=True),
        sa.Column("file_type_filters", sa.JSON(), nullable=True),
        sa.Column("file_size_limit_mb", sa.Integer(), nullable=True),
        sa.Column("created_by", sa.UUID(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["created_by"], ["people.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name", name="uq_approval_policies_name"),
    )
    op.create_index(
        "ix_approval_policies_priority", "approval_policies", ["priority"]
    )
    op.create_table(
        "approval_settings",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("is_global_approval_enabled", sa.Boolean(), nullable=True),
        sa.Column(
            "global_approval_enabled_at", sa.DateTime(timezone=True), nullable=True
        ),
        sa.Column("global_approval_enabled_by", sa.String(length=128), nullable=True),
        sa.Column("global_approval_reason", sa.String(length=500), nullable=True),
        sa.Column("default_expiration_days", sa.Integer(), nullable=True),
        sa.Column("default_required_approvals", sa.Integer(), nullable=True),
        sa.Column("force_approval_for_all", sa.Boolean(), nullable=True),
        sa.Column("force_approval_for_large_files", sa.Boolean(), nullable=True),
        sa.Column("large_file_size_threshold_bytes", sa.BigInteger(), nullable=True),
        sa.Column("enable_email_notifications", sa.Boolean(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_table(
        "share_approval_requests",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("document_share_id", sa.UUID(), nullable=False),
        sa.Column("approval_policy_id", sa.UUID(), nullable=False),
        sa.Column("status", APPROVAL_STATUS, nullable=True),
        sa.Column("priority", APPROVAL_PRIORITY, nullable=True),
        sa.Column("request_reason", sa.String(length=1000), nullable=True),
        sa.Column("final_comment", sa.String(length=1000), nullable=True),
        sa.Column("requested_by", sa.UUID(), nullable=False),
        sa.Column("required_approval_count", sa.Integer(), nullable=False),
        sa.Column("current_approval_count", sa.Integer(), nullable=False),
        sa.Column("assigned_approvers", sa.JSON(), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["document_share_id"], ["document_shares.id"]),
        sa.ForeignKeyConstraint(["approval_policy_id"], ["approval_policies.id"]),
        sa.ForeignKeyConstraint(["requested_by"], ["people.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "document_share_id", name="uq_share_approval_requests_document_share_id"
        ),
    )
    op.create_index(
        "ix_share_approval_requests_status", "share_approval_requests", ["status"]
    )
    op.create_index(
        "ix_share_approval_requests_expires_at",
        "share_approval_requests",
        ["expires_at"],
    )
    op.create_index(
        "ix_share_approval_requests_requested_by",
        "share_approval_requests",
        ["requested_by"],
    )
    op.create_table(
        "approval_decisions",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("share_approval_request_id", sa.UUID(), nullable=False),
        sa.Column("approver_id", sa.UUID(), nullable=False),
        sa.Column("decision", APPROVAL_ACTION, nullable=False),
        sa.Column("comment", sa.String(length=1000), nullable=True),
        sa.Column("decided_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(
            ["share_approval_request_id"], ["share_approval_requests.id"]
        ),
        sa.ForeignKeyConstraint(["approver_id"], ["people.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_approval_decisions_request_approver",
        "approval_decisions",
        ["share_approval_request_id", "approver_id"],
    )
    op.create_table(
        "approval_history",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("share_approval_request_id", sa.UUID(), nullable=False),
        sa.Column("action", APPROVAL_ACTION, nullable=False),
        sa.Column("action_by", sa.String(length=128), nullable=False),
        sa.Column("action_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notes", sa.String(length=1000), nullable=True),
        sa.ForeignKeyConstraint(
            ["share_approval_request_id"], ["share_approval_requests.id"]
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_approval_history_request_id",
        "approval_history",
        ["share_approval_request_id"],
    )

    # Events
    op.create_table(
        "outbox_events",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("event_type", sa.String(length=80), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("dispatched_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_outbox_events_dispatched_at", "outbox_events", ["dispatched_at"]
    )


def downgrade() -> None:
    op.drop_index("ix_outbox_events_dispatched_at", table_name="outbox_events")
    op.drop_table("outbox_events")
    op.drop_index("ix_approval_history_request_id", table_name="approval_history")
    op.drop_table("approval_history")
    op.drop_index(
        "ix_approval_decisions_request_approver", table_name="approval_decisions"
    )
    op.drop_table("approval_decisions")
    op.drop_index(
        "ix_share_approval_requests_requested_by",
        table_name="share_approval_requests",
    )
    op.drop_index(
        "ix_share_approval_requests_expires_at", table_name="share_approval_requests"
    )
    op.drop_index(
        "ix_share_approval_requests_status", table_name="share_approval_requests"
    )
    op.drop_table("share_approval_requests")
    op.drop_table("approval_settings")
    op.drop_index("ix_approval_policies_priority", table_name="approval_policies")
    op.drop_table("approval_policies")
    op.drop_index("ix_document_shares_approval_status", table_name="document_shares")
    op.drop_index("ix_document_shares_document_id", table_name="document_shares")
    op.drop_table("document_shares")
    op.drop_index("ix_documents_created_by", table_name="documents")
    op.drop_index("ix_documents_bucket_id", table_name="documents")
    op.drop_index("ix_documents_category_id", table_name="documents")
    op.drop_table("documents")
    op.drop_table("categories")
    op.drop_table("api_key_bucket_permissions")
    op.drop_table("api_keys")
    op.drop_table("bucket_permissions")
    op.drop_table("storage_buckets")
    op.drop_table("storage_providers")
    op.drop_table("role_permissions")
    op.drop_table("person_roles")
    op.drop_table("permissions")
    op.drop_table("roles")
    op.drop_table("people")

    bind = op.get_bind()
    for enum_type in reversed(ENUMS):
        enum_type.drop(bind, checkfirst=True)
