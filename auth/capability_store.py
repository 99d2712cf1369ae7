"""
Read-only view over Role -> Capability and User -> Role assignments.
"""

from typing import Callable, List

from loguru import logger
from sqlalchemy.orm import Session

from auth.capabilities import CapabilityRecord, RoleRecord
from core.errors import ValidationError
from storage.models import Capability, Role
from storage.repository import CapabilityRepository, RoleRepository


def _to_capability_record(capability: Capability):
    try:
        return CapabilityRecord(
            id=capability.capability_id,
            name=capability.name,
            category=capability.category,
            is_super=bool(capability.is_super),
        )
    except ValidationError as e:
        logger.warning(f"[STORE] Skipping malformed capability {capability.capability_id}: {e.message}")
        return None


def _to_role_record(role: Role) -> RoleRecord:
    return RoleRecord(
        id=role.role_id,
        name=role.name,
        display_name=role.display_name or role.name,
        level=role.level or 0,
    )


class CapabilityStore:
    """
    Each call opens and closes its own session, so nothing here holds a
    connection or a lock between calls.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def active_roles(self, user_id: str) -> List[RoleRecord]:
        session = self.session_factory()
        try:
            return [_to_role_record(r) for r in RoleRepository.list_active_for_user(session, user_id)]
        finally:
            session.close()

    def load_user_capabilities(self, user_id: str) -> List[CapabilityRecord]:
        """
        Capabilities granted through the user's active role assignments.
        Missing users, inactive users and users without active roles get [].
        """
        session = self.session_factory()
        try:
            roles = RoleRepository.list_active_for_user(session, user_id)
            if not roles:
                return []
            capabilities = CapabilityRepository.for_roles(session, [r.role_id for r in roles])
            records = [_to_capability_record(c) for c in capabilities]
            return [r for r in records if r is not None]
        finally:
            session.close()

    def role_capabilities(self, role_id: str) -> List[CapabilityRecord]:
        session = self.session_factory()
        try:
            records = [_to_capability_record(c) for c in CapabilityRepository.for_roles(session, [role_id])]
            return [r for r in records if r is not None]
        finally:
            session.close()

    def user_ids_for_role(self, role_id: str) -> List[str]:
        session = self.session_factory()
        try:
            return RoleRepository.user_ids(session, role_id)
        finally:
            session.close()
