"""Pure matching of approval policies against share candidates.

Stored policy filters are JSON lists; they are converted into frozensets once
(``PolicyRules.from_policy``) so evaluation never touches raw column values.
"""

import logging
import os
import uuid
from dataclasses import dataclass

from sqlalchemy.orm import Session

from app.models.approval import ApprovalPolicy
from app.models.ecm import Document, DocumentShare

logger = logging.getLogger(__name__)

_BYTES_PER_MB = 1024 * 1024


def _id_set(values) -> frozenset[str]:
    return frozenset(
        str(value).strip().lower() for value in values or () if str(value).strip()
    )


def _file_type_set(values) -> frozenset[str]:
    return frozenset(
        str(value).strip().lower().lstrip(".")
        for value in values or ()
        if str(value).strip().lstrip(".")
    )


def _id_str(value) -> str | None:
    if value is None:
        return None
    return str(value).lower()


def file_extension(file_name: str | None) -> str:
    if not file_name:
        return ""
    return os.path.splitext(file_name)[1].lower().lstrip(".")


@dataclass(frozen=True)
class PolicyRules:
    policy_id: uuid.UUID | None
    is_active: bool
    require_approval: bool
    category_ids: frozenset[str] = frozenset()
    provider_ids: frozenset[str] = frozenset()
    user_ids: frozenset[str] = frozenset()
    api_key_ids: frozenset[str] = frozenset()
    file_types: frozenset[str] = frozenset()
    file_size_limit_bytes: int | None = None

    @classmethod
    def from_policy(cls, policy: ApprovalPolicy) -> "PolicyRules":
        limit = policy.file_size_limit_mb
        return cls(
            policy_id=policy.id,
            is_active=bool(policy.is_active),
            require_approval=bool(policy.require_approval),
            category_ids=_id_set(policy.category_filters),
            provider_ids=_id_set(policy.provider_filters),
            user_ids=_id_set(policy.user_filters),
            api_key_ids=_id_set(policy.api_key_filters),
            file_types=_file_type_set(policy.file_type_filters),
            file_size_limit_bytes=limit * _BYTES_PER_MB if limit is not None else None,
        )


@dataclass(frozen=True)
class ShareCandidate:
    category_id: str | None
    storage_provider_id: str | None
    created_by: str | None
    api_key_id: str | None
    file_name: str | None
    file_size: int

    @classmethod
    def from_share(cls, share: DocumentShare, document: Document) -> "ShareCandidate":
        return cls(
            category_id=_id_str(document.category_id),
            storage_provider_id=_id_str(document.storage_provider_id),
            created_by=_id_str(share.created_by),
            api_key_id=_id_str(share.created_via_api_key_id),
            file_name=document.file_name,
            file_size=document.file_size or 0,
        )

    @property
    def extension(self) -> str:
        return file_extension(self.file_name)


@dataclass(frozen=True)
class RuleOutcome:
    matched: bool
    reason: str


def explain(rules: PolicyRules, candidate: ShareCandidate | None) -> RuleOutcome:
    """Evaluate ``rules`` against ``candidate`` and say which step decided."""
    if not rules.is_active:
        return RuleOutcome(False, "policy is inactive")
    if not rules.require_approval:
        return RuleOutcome(False, "policy does not require approval")
    if candidate is None:
        return RuleOutcome(False, "document not found")
    if rules.category_ids and candidate.category_id not in rules.category_ids:
        return RuleOutcome(False, "category not in filter")
    if rules.provider_ids and candidate.storage_provider_id not in rules.provider_ids:
        return RuleOutcome(False, "storage provider not in filter")
    if rules.user_ids and candidate.created_by not in rules.user_ids:
        return RuleOutcome(False, "share creator not in filter")
    if rules.api_key_ids and candidate.api_key_id not in rules.api_key_ids:
        return RuleOutcome(False, "api key not in filter")
    # Size over the limit triggers approval regardless of the file-type filter.
    if (
        rules.file_size_limit_bytes is not None
        and candidate.file_size > rules.file_size_limit_bytes
    ):
        return RuleOutcome(True, "file size exceeds limit")
    if rules.file_types:
        if candidate.extension and candidate.extension in rules.file_types:
            return RuleOutcome(True, "file type in filter")
        return RuleOutcome(False, "file type not in filter")
    return RuleOutcome(True, "all filters satisfied")


def evaluate(rules: PolicyRules, candidate: ShareCandidate | None) -> bool:
    return explain(rules, candidate).matched


def resolve_candidate(
    db: Session, share: DocumentShare, document: Document | None = None
) -> ShareCandidate | None:
    if document is None:
        document = share.document or db.get(Document, share.document_id)
    if document is None:
        logger.warning(
            "Document %s not found for share %s", share.document_id, share.id
        )
        return None
    return ShareCandidate.from_share(share, document)


def policy_matches(
    db: Session,
    policy: ApprovalPolicy,
    share: DocumentShare,
    document: Document | None = None,
) -> bool:
    rules = PolicyRules.from_policy(policy)
    if not rules.is_active or not rules.require_approval:
        return False
    return evaluate(rules, resolve_candidate(db, share, document))
