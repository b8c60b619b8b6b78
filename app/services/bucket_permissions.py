import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from app.errors import NotFoundError, ValidationError
from app.models.ecm import (
    ApiKey,
    ApiKeyBucketPermission,
    BucketPermission,
    PermissionLevel,
    PrincipalType,
    StorageBucket,
)
from app.services.common import coerce_uuid
from app.services.directory import directory

logger = logging.getLogger(__name__)

ADMIN_PERMISSION_KEYS = frozenset({"Admin.Access", "Bucket.Manage"})

# Levels each granted level satisfies, besides itself.
_IMPLIED_LEVELS = {
    PermissionLevel.admin: frozenset(PermissionLevel),
    PermissionLevel.delete: frozenset(
        {
            PermissionLevel.read,
            PermissionLevel.write,
            PermissionLevel.read_write,
            PermissionLevel.delete,
        }
    ),
    PermissionLevel.read_write: frozenset(
        {PermissionLevel.read, PermissionLevel.write, PermissionLevel.read_write}
    ),
}


def satisfies(granted: PermissionLevel, required: PermissionLevel) -> bool:
    if required == PermissionLevel.none:
        return True
    if granted == required:
        return True
    return required in _IMPLIED_LEVELS.get(granted, frozenset())


def _validate_level(level) -> PermissionLevel:
    if isinstance(level, PermissionLevel):
        return level
    try:
        return PermissionLevel(level)
    except ValueError:
        raise ValidationError(f"Invalid permission level: {level}")


def _validate_principal_type(principal_type) -> PrincipalType:
    if isinstance(principal_type, PrincipalType):
        return principal_type
    try:
        return PrincipalType(principal_type)
    except ValueError:
        raise ValidationError(f"Invalid principal_type: {principal_type}")


@dataclass(frozen=True)
class PermissionCheckResult:
    allowed: bool
    required: PermissionLevel
    effective: PermissionLevel = PermissionLevel.none
    denied_reason: str | None = None


def _denied(required, reason, effective=PermissionLevel.none) -> PermissionCheckResult:
    return PermissionCheckResult(
        allowed=False, required=required, effective=effective, denied_reason=reason
    )


def _allowed(required, effective) -> PermissionCheckResult:
    return PermissionCheckResult(allowed=True, required=required, effective=effective)


class BucketPermissions:
    @staticmethod
    def is_admin(db: Session, person_id) -> bool:
        keys = directory.person_permission_keys(db, person_id)
        return bool(keys & ADMIN_PERMISSION_KEYS)

    @staticmethod
    def check_user(
        db: Session, person_id, bucket_id, required: PermissionLevel
    ) -> PermissionCheckResult:
        if not person_id:
            return _denied(required, "Invalid user id.")
        try:
            person = directory.get_person(db, person_id)
            if person is None:
                return _denied(required, "User not found.")
            if BucketPermissions.is_admin(db, person.id):
                return _allowed(required, PermissionLevel.admin)
            bucket = db.get(StorageBucket, coerce_uuid(bucket_id))
            if bucket is None:
                return _denied(required, "Bucket not found.")

            direct = (
                db.query(BucketPermission)
                .filter(BucketPermission.bucket_id == bucket.id)
                .filter(BucketPermission.principal_type == PrincipalType.person)
                .filter(BucketPermission.principal_id == person.id)
                .first()
            )
            if direct and satisfies(direct.permission, required):
                return _allowed(required, direct.permission)

            role_ids = directory.role_ids_for_person(db, person.id)
            if role_ids:
                grants = (
                    db.query(BucketPermission)
                    .filter(BucketPermission.bucket_id == bucket.id)
                    .filter(BucketPermission.principal_type == PrincipalType.role)
                    .filter(BucketPermission.principal_id.in_(role_ids))
                    .all()
                )
                for grant in grants:
                    if satisfies(grant.permission, required):
                        return _allowed(required, grant.permission)

            return _denied(required, "Insufficient permission level.")
        except Exception:
            logger.exception(
                "Bucket permission check failed for user %s on bucket %s",
                person_id,
                bucket_id,
            )
            return _denied(required, "An error occurred during permission check.")

    @staticmethod
    def check_api_key(
        db: Session, api_key_id, bucket_id, required: PermissionLevel
    ) -> PermissionCheckResult:
        try:
            api_key = db.get(ApiKey, coerce_uuid(api_key_id))
            if api_key is None or not api_key.is_active:
                return _denied(required, "API key not found or inactive.")
            expires_at = api_key.expires_at
            if expires_at is not None:
                if expires_at.tzinfo is None:
                    expires_at = expires_at.replace(tzinfo=timezone.utc)
                if expires_at < datetime.now(timezone.utc):
                    return _denied(required, "API key has expired.")
            bucket = db.get(StorageBucket, coerce_uuid(bucket_id))
            if bucket is None:
                return _denied(required, "Bucket not found.")
            allowed_providers = {str(pid) for pid in api_key.allowed_provider_ids or ()}
            if str(bucket.provider_id) not in allowed_providers:
                return _denied(
                    required,
                    "API key has no access to the bucket's storage provider.",
                )

            grant = (
                db.query(ApiKeyBucketPermission)
                .filter(ApiKeyBucketPermission.api_key_id == api_key.id)
                .filter(ApiKeyBucketPermission.bucket_id == bucket.id)
                .first()
            )
            if grant is not None:
                if satisfies(grant.permission, required):
                    return _allowed(required, grant.permission)
                return _denied(
                    required,
                    "API key does not have sufficient permission on this bucket.",
                    grant.permission,
                )
            if satisfies(api_key.permission, required):
                return _allowed(required, api_key.permission)
            return _denied(
                required,
                "API key does not have sufficient permission for this operation.",
                api_key.permission,
            )
        except Exception:
            logger.exception(
                "API key permission check failed for key %s on bucket %s",
                api_key_id,
                bucket_id,
            )
            return _denied(required, "An error occurred during permission check.")

    @staticmethod
    def assign(
        db: Session,
        bucket_id,
        principal_type,
        principal_id,
        permission,
        granted_by=None,
    ) -> BucketPermission:
        principal_type = _validate_principal_type(principal_type)
        permission = _validate_level(permission)
        bucket = db.get(StorageBucket, coerce_uuid(bucket_id))
        if not bucket:
            raise NotFoundError("Bucket not found")
        grant = (
            db.query(BucketPermission)
            .filter(BucketPermission.bucket_id == bucket.id)
            .filter(BucketPermission.principal_type == principal_type)
            .filter(BucketPermission.principal_id == coerce_uuid(principal_id))
            .first()
        )
        if grant is None:
            grant = BucketPermission(
                bucket_id=bucket.id,
                principal_type=principal_type,
                principal_id=coerce_uuid(principal_id),
                permission=permission,
                granted_by=coerce_uuid(granted_by),
            )
            db.add(grant)
        else:
            grant.permission = permission
            grant.granted_by = coerce_uuid(granted_by)
        db.commit()
        db.refresh(grant)
        logger.info(
            "Granted %s on bucket %s to %s %s",
            permission.value,
            bucket.id,
            principal_type.value,
            principal_id,
        )
        return grant

    @staticmethod
    def remove(db: Session, permission_id) -> None:
        grant = db.get(BucketPermission, coerce_uuid(permission_id))
        if not grant:
            raise NotFoundError("Bucket permission not found")
        db.delete(grant)
        db.commit()
        logger.info("Removed bucket permission %s", permission_id)


bucket_permissions = BucketPermissions()
