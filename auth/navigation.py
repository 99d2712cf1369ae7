"""
Sidebar navigation filtered by the caller's capabilities.
"""

from typing import Any, Dict, List, Optional

from loguru import logger

from auth.capabilities import CapabilityName
from storage.repository import NavigationRepository


class NavigationService:

    def __init__(self, session_factory, resolver):
        self.session_factory = session_factory
        self.resolver = resolver

    def for_user(self, user_id: Optional[str]) -> List[Dict[str, Any]]:
        """Active entries whose required capability is empty or held, by sort_order"""
        capabilities = self.resolver.resolve(user_id)

        session = self.session_factory()
        try:
            resources = NavigationRepository.list_active(session)
        finally:
            session.close()

        items = []
        for resource in resources:
            if resource.required_capability:
                token = CapabilityName.parse(resource.required_capability)
                if token is CapabilityName.UNKNOWN:
                    logger.warning(
                        f"[NAV] Hiding '{resource.name}': unknown capability '{resource.required_capability}'"
                    )
                    continue
                if not capabilities.has(token):
                    continue
            items.append(resource.to_dict())
        return items
