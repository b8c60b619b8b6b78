from app.models.person import Person  # noqa: F401
from app.models.rbac import Permission, PersonRole, Role, RolePermission  # noqa: F401
from app.models.approval import (  # noqa: F401
    APPROVAL_SETTINGS_ID,
    GLOBAL_SYSTEM_POLICY_ID,
    GLOBAL_SYSTEM_POLICY_NAME,
    SYSTEM_ACTOR,
    TERMINAL_APPROVAL_STATUSES,
    ApprovalAction,
    ApprovalDecision,
    ApprovalHistory,
    ApprovalPolicy,
    ApprovalPriority,
    ApprovalSettings,
    ApprovalStatus,
    OutboxEvent,
    ShareApprovalRequest,
)
from app.models.ecm import (  # noqa: F401
    ApiKey,
    ApiKeyBucketPermission,
    BucketPermission,
    Category,
    Document,
    DocumentShare,
    PermissionLevel,
    PrincipalType,
    StorageBucket,
    StorageProvider,
)
