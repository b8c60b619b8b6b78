import logging
from dataclasses import dataclass, fields
from datetime import datetime, timezone
from threading import Lock
from time import monotonic

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.config import settings
from app.errors import NotFoundError, ValidationError
from app.models.approval import APPROVAL_SETTINGS_ID, ApprovalSettings
from app.models.ecm import Document, DocumentShare
from app.schemas.approval import ApprovalSettingsUpdate
from app.services.common import coerce_uuid, transaction

logger = logging.getLogger(__name__)

DEFAULTS = {
    "is_global_approval_enabled": False,
    "default_expiration_days": 7,
    "default_required_approvals": 1,
    "force_approval_for_all": False,
    "force_approval_for_large_files": True,
    "large_file_size_threshold_bytes": 100 * 1024 * 1024,
    "enable_email_notifications": True,
}

_ENABLE_METADATA = (
    "global_approval_enabled_at",
    "global_approval_enabled_by",
    "global_approval_reason",
)


@dataclass(frozen=True)
class ApprovalSettingsSnapshot:
    is_global_approval_enabled: bool
    global_approval_enabled_at: datetime | None
    global_approval_enabled_by: str | None
    global_approval_reason: str | None
    default_expiration_days: int
    default_required_approvals: int
    force_approval_for_all: bool
    force_approval_for_large_files: bool
    large_file_size_threshold_bytes: int
    enable_email_notifications: bool
    version: int

    @classmethod
    def from_row(cls, row: ApprovalSettings) -> "ApprovalSettingsSnapshot":
        return cls(**{f.name: getattr(row, f.name) for f in fields(cls)})

    @classmethod
    def defaults(cls) -> "ApprovalSettingsSnapshot":
        return cls(
            global_approval_enabled_at=None,
            global_approval_enabled_by=None,
            global_approval_reason=None,
            version=0,
            **DEFAULTS,
        )


# ---------------------------------------------------------------------------
# Process-wide snapshot cache
# ---------------------------------------------------------------------------

_SETTINGS_CACHE: ApprovalSettingsSnapshot | None = None
_SETTINGS_CACHE_AT: float | None = None
_SETTINGS_LOCK = Lock()


def invalidate() -> None:
    global _SETTINGS_CACHE, _SETTINGS_CACHE_AT
    with _SETTINGS_LOCK:
        _SETTINGS_CACHE = None
        _SETTINGS_CACHE_AT = None


def reload(db: Session) -> ApprovalSettingsSnapshot:
    """Read the settings row and replace the cached snapshot.

    A missing row yields the bootstrap defaults without writing; the row
    itself is created by ``ensure_settings`` or the first settings write.
    """
    global _SETTINGS_CACHE, _SETTINGS_CACHE_AT
    row = db.get(ApprovalSettings, APPROVAL_SETTINGS_ID)
    snapshot = (
        ApprovalSettingsSnapshot.from_row(row)
        if row is not None
        else ApprovalSettingsSnapshot.defaults()
    )
    with _SETTINGS_LOCK:
        _SETTINGS_CACHE = snapshot
        _SETTINGS_CACHE_AT = monotonic()
    return snapshot


def _cached_snapshot(db: Session) -> ApprovalSettingsSnapshot:
    now = monotonic()
    with _SETTINGS_LOCK:
        if (
            _SETTINGS_CACHE is not None
            and _SETTINGS_CACHE_AT is not None
            and now - _SETTINGS_CACHE_AT < settings.approval_settings_cache_ttl_seconds
        ):
            return _SETTINGS_CACHE
    return reload(db)


def _row_for_write(db: Session) -> ApprovalSettings:
    row = db.get(ApprovalSettings, APPROVAL_SETTINGS_ID)
    if row is None:
        row = ApprovalSettings(id=APPROVAL_SETTINGS_ID, **DEFAULTS)
        db.add(row)
    return row


# ---------------------------------------------------------------------------
# ApprovalSettingsGate
# ---------------------------------------------------------------------------


class ApprovalSettingsGate:
    @staticmethod
    def ensure_settings(db: Session) -> ApprovalSettingsSnapshot:
        row = db.get(ApprovalSettings, APPROVAL_SETTINGS_ID)
        if row is None:
            with transaction(db):
                try:
                    with db.begin_nested():
                        db.add(ApprovalSettings(id=APPROVAL_SETTINGS_ID, **DEFAULTS))
                    logger.info("Created default approval settings")
                except IntegrityError:
                    # Another worker created the row first.
                    logger.info("Approval settings already created concurrently")
        invalidate()
        return reload(db)

    @staticmethod
    def get_current(db: Session) -> ApprovalSettingsSnapshot:
        return _cached_snapshot(db)

    @staticmethod
    def is_global_approval_enabled(db: Session) -> bool:
        return _cached_snapshot(db).is_global_approval_enabled

    @staticmethod
    def enable_global_approval(
        db: Session, reason: str, user_id: str
    ) -> ApprovalSettingsSnapshot:
        if not reason or not reason.strip():
            raise ValidationError("A reason is required to enable global approval")
        with transaction(db):
            row = _row_for_write(db)
            row.is_global_approval_enabled = True
            row.global_approval_enabled_at = datetime.now(timezone.utc)
            row.global_approval_enabled_by = str(user_id)
            row.global_approval_reason = reason.strip()
        invalidate()
        logger.info("Global approval enabled by %s: %s", user_id, reason)
        return reload(db)

    @staticmethod
    def disable_global_approval(db: Session, user_id: str) -> ApprovalSettingsSnapshot:
        with transaction(db):
            row = _row_for_write(db)
            row.is_global_approval_enabled = False
            for name in _ENABLE_METADATA:
                setattr(row, name, None)
        invalidate()
        logger.info("Global approval disabled by %s", user_id)
        return reload(db)

    @staticmethod
    def update(db: Session, payload: ApprovalSettingsUpdate) -> ApprovalSettingsSnapshot:
        data = payload.model_dump(exclude_unset=True)
        updated_by = data.pop("updated_by", None)
        with transaction(db):
            row = _row_for_write(db)
            enabled = data.pop("is_global_approval_enabled", None)
            reason = data.pop("global_approval_reason", None)
            if enabled is True and not row.is_global_approval_enabled:
                row.is_global_approval_enabled = True
                row.global_approval_enabled_at = datetime.now(timezone.utc)
                row.global_approval_enabled_by = updated_by
                row.global_approval_reason = reason
            elif enabled is False:
                row.is_global_approval_enabled = False
                for name in _ENABLE_METADATA:
                    setattr(row, name, None)
            elif reason is not None and row.is_global_approval_enabled:
                row.global_approval_reason = reason
            for key, value in data.items():
                if value is not None:
                    setattr(row, key, value)
        invalidate()
        logger.info("Updated approval settings (%s)", ", ".join(sorted(data)) or "flags")
        return reload(db)

    @staticmethod
    def reset_to_defaults(db: Session) -> ApprovalSettingsSnapshot:
        with transaction(db):
            row = _row_for_write(db)
            for key, value in DEFAULTS.items():
                setattr(row, key, value)
            for name in _ENABLE_METADATA:
                setattr(row, name, None)
        invalidate()
        logger.info("Approval settings reset to defaults")
        return reload(db)

    @staticmethod
    def requires_approval(
        db: Session, share: DocumentShare, document: Document | None = None
    ) -> bool:
        snapshot = _cached_snapshot(db)
        # Disabled is a hard override of every other flag.
        if not snapshot.is_global_approval_enabled:
            return False
        if snapshot.force_approval_for_all:
            return True
        if snapshot.force_approval_for_large_files:
            if document is None:
                document = share.document or db.get(Document, share.document_id)
            if (
                document is not None
                and (document.file_size or 0) > snapshot.large_file_size_threshold_bytes
            ):
                return True
        return False

    @staticmethod
    def is_approval_required(db: Session, share_id: str) -> bool:
        share = db.get(DocumentShare, coerce_uuid(share_id))
        if not share:
            raise NotFoundError("Document share not found")
        return ApprovalSettingsGate.requires_approval(db, share)


approval_settings = ApprovalSettingsGate()
