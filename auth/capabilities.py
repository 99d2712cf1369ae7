"""
Capability tokens, value types and the resolved capability set.

The token set is closed: names read from storage that are not listed here
parse to CapabilityName.UNKNOWN and grant nothing, while names passed to a
gate check must be known or UnknownCapability is raised.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, Iterator, Mapping, Optional, Union

from loguru import logger

from core.errors import UnknownCapability, ValidationError


class CapabilityName(str, Enum):
    ADMIN_ACCESS = "ADMIN_ACCESS"
    SYSTEM_CONFIG = "SYSTEM_CONFIG"
    USER_MANAGE = "USER_MANAGE"
    USER_VIEW = "USER_VIEW"
    ROLE_MANAGE = "ROLE_MANAGE"
    PERMISSION_MANAGE = "PERMISSION_MANAGE"
    DOCUMENT_FULL_ACCESS = "DOCUMENT_FULL_ACCESS"
    DOCUMENT_MANAGE = "DOCUMENT_MANAGE"
    DOCUMENT_VIEW = "DOCUMENT_VIEW"
    DOCUMENT_CREATE = "DOCUMENT_CREATE"
    DOCUMENT_EDIT = "DOCUMENT_EDIT"
    DOCUMENT_DELETE = "DOCUMENT_DELETE"
    DOCUMENT_APPROVE = "DOCUMENT_APPROVE"
    DOCUMENT_PUBLISH = "DOCUMENT_PUBLISH"
    ORGANIZATION_MANAGE = "ORGANIZATION_MANAGE"
    ORGANIZATION_VIEW = "ORGANIZATION_VIEW"
    ANALYTICS_VIEW = "ANALYTICS_VIEW"
    ANALYTICS_EXPORT = "ANALYTICS_EXPORT"
    AUDIT_VIEW = "AUDIT_VIEW"
    WORKFLOW_MANAGE = "WORKFLOW_MANAGE"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, raw: Optional[str]) -> "CapabilityName":
        """Lenient parse for values read from storage"""
        if isinstance(raw, cls):
            return raw
        try:
            member = cls((raw or "").strip().upper())
        except ValueError:
            return cls.UNKNOWN
        return member

    @classmethod
    def require(cls, raw: Union[str, "CapabilityName"]) -> "CapabilityName":
        """Strict parse for names used in gate checks"""
        member = cls.parse(raw)
        if member is cls.UNKNOWN:
            raise UnknownCapability(str(raw))
        return member


CapabilityLike = Union[str, CapabilityName]

CATEGORIES = frozenset({
    "system", "document", "user", "organization", "analytics", "audit", "workflow",
})

CAPABILITY_CATALOG = {
    CapabilityName.ADMIN_ACCESS: {"category": "system", "description": "Full administrative access to all system features"},
    CapabilityName.SYSTEM_CONFIG: {"category": "system", "description": "Configure system settings, workflows, and configurations"},
    CapabilityName.USER_MANAGE: {"category": "user", "description": "Manage users and user assignments"},
    CapabilityName.USER_VIEW: {"category": "user", "description": "View user directory"},
    CapabilityName.ROLE_MANAGE: {"category": "user", "description": "Manage roles and role capability assignments"},
    CapabilityName.PERMISSION_MANAGE: {"category": "user", "description": "Manage capability definitions"},
    CapabilityName.DOCUMENT_FULL_ACCESS: {"category": "document", "description": "See every document regardless of access groups"},
    CapabilityName.DOCUMENT_MANAGE: {"category": "document", "description": "Manage document lifecycle, workflows, and approvals"},
    CapabilityName.DOCUMENT_VIEW: {"category": "document", "description": "View documents"},
    CapabilityName.DOCUMENT_CREATE: {"category": "document", "description": "Create documents"},
    CapabilityName.DOCUMENT_EDIT: {"category": "document", "description": "Edit, move and reorder documents"},
    CapabilityName.DOCUMENT_DELETE: {"category": "document", "description": "Archive documents"},
    CapabilityName.DOCUMENT_APPROVE: {"category": "document", "description": "Approve or reject documents"},
    CapabilityName.DOCUMENT_PUBLISH: {"category": "document", "description": "Publish approved documents"},
    CapabilityName.ORGANIZATION_MANAGE: {"category": "organization", "description": "Manage groups and organization structure"},
    CapabilityName.ORGANIZATION_VIEW: {"category": "organization", "description": "View organization structure"},
    CapabilityName.ANALYTICS_VIEW: {"category": "analytics", "description": "View analytics dashboards"},
    CapabilityName.ANALYTICS_EXPORT: {"category": "analytics", "description": "Export analytics data"},
    CapabilityName.AUDIT_VIEW: {"category": "audit", "description": "View audit logs"},
    CapabilityName.WORKFLOW_MANAGE: {"category": "workflow", "description": "Manage workflow transitions"},
}


def get_capability_category(name: CapabilityLike) -> str:
    return CAPABILITY_CATALOG[CapabilityName.require(name)]["category"]


def validate_category(category: str) -> bool:
    return (category or "").lower() in CATEGORIES


# ==================== VALUE TYPES ====================

@dataclass(frozen=True)
class CapabilityRecord:
    id: str
    name: str
    category: str = "document"
    is_super: bool = False

    def __post_init__(self):
        if not self.name or not self.name.strip():
            raise ValidationError("Capability name must not be empty")
        if not validate_category(self.category):
            raise ValidationError(f"Invalid capability category '{self.category}'")

    @property
    def token(self) -> CapabilityName:
        return CapabilityName.parse(self.name)


@dataclass(frozen=True)
class RoleRecord:
    id: str
    name: str
    display_name: str = ""
    level: int = 0

    def __post_init__(self):
        if not self.name or not self.name.strip():
            raise ValidationError("Role name must not be empty")
        if self.level < 0:
            raise ValidationError("Role level must be non-negative")


@dataclass(frozen=True)
class RoleCapabilityAssignment:
    role_id: str
    capability_id: str

    def __post_init__(self):
        if not self.role_id or not self.capability_id:
            raise ValidationError("Assignment requires both roleId and capabilityId")


# ==================== CAPABILITY SET ====================

class CapabilitySet(Mapping):
    """
    Immutable mapping of capability name -> "is super" flag.

    Exact membership and super bypass are answered from the same structure:
    `has(name)` is true when the name is held or any held capability is super.
    """

    __slots__ = ("_caps", "_any_super")

    def __init__(self, capabilities: Optional[Mapping[CapabilityName, bool]] = None):
        self._caps: Dict[CapabilityName, bool] = dict(capabilities or {})
        self._any_super = any(self._caps.values())

    @classmethod
    def from_records(cls, records: Iterable[CapabilityRecord]) -> "CapabilitySet":
        caps: Dict[CapabilityName, bool] = {}
        for record in records:
            token = record.token
            if token is CapabilityName.UNKNOWN:
                logger.warning(f"[CAPABILITY] Ignoring unknown capability '{record.name}' from storage")
                continue
            caps[token] = caps.get(token, False) or record.is_super
        return cls(caps)

    @classmethod
    def empty(cls) -> "CapabilitySet":
        return cls()

    def __getitem__(self, key: CapabilityLike) -> bool:
        return self._caps[CapabilityName.parse(key)]

    def __iter__(self) -> Iterator[CapabilityName]:
        return iter(self._caps)

    def __len__(self) -> int:
        return len(self._caps)

    def __contains__(self, key) -> bool:
        return CapabilityName.parse(key) in self._caps

    @property
    def is_super(self) -> bool:
        return self._any_super

    def has(self, name: CapabilityLike) -> bool:
        token = CapabilityName.require(name)
        return self._any_super or token in self._caps

    def has_any(self, names: Iterable[CapabilityLike]) -> bool:
        tokens = [CapabilityName.require(n) for n in names]
        if not tokens:
            return False
        return self._any_super or any(t in self._caps for t in tokens)

    def has_all(self, names: Iterable[CapabilityLike]) -> bool:
        tokens = [CapabilityName.require(n) for n in names]
        return self._any_super or all(t in self._caps for t in tokens)

    def names(self):
        return sorted(token.value for token in self._caps)

    def super_names(self):
        return sorted(token.value for token, flag in self._caps.items() if flag)

    def to_dict(self) -> Dict[str, bool]:
        return {token.value: flag for token, flag in sorted(self._caps.items())}

    def __eq__(self, other) -> bool:
        if isinstance(other, CapabilitySet):
            return self._caps == other._caps
        return NotImplemented

    def __hash__(self):
        return hash(frozenset(self._caps.items()))

    def __repr__(self):
        return f"CapabilitySet({self.to_dict()})"
