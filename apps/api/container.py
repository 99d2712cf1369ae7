"""
Service wiring for the API process.

One container per app: it owns the database engine, the capability cache and
the resolver's worker pool, and hands the same instances to every request.
"""

from typing import Any, Dict, Optional

from loguru import logger

from auth.cache_manager import CacheInvalidationCoordinator, CapabilityCache
from auth.capability_store import CapabilityStore
from auth.navigation import NavigationService
from auth.resolver import CapabilityResolver
from auth.tokens import TokenDecoder
from core.config import Settings, get_settings
from documents.access_filter import DEFAULT_FULL_ACCESS, AccessFilter
from documents.hierarchy import HierarchyManager
from documents.workflow import WorkflowGate, database_transition_loader
from storage.database import DatabaseManager


class ServiceContainer:

    def __init__(
        self,
        settings: Optional[Settings] = None,
        database: Optional[DatabaseManager] = None,
        workflow_config: Optional[Dict[str, Any]] = None
    ):
        self.settings = settings or get_settings()
        self.db = database or DatabaseManager(self.settings)
        workflow_config = workflow_config if workflow_config is not None else self.settings.load_workflow_config()

        self.tokens = TokenDecoder(self.settings.jwt_secret, self.settings.jwt_algorithm)

        self.store = CapabilityStore(self.db.SessionLocal)
        self.cache = CapabilityCache(ttl_seconds=self.settings.capability_cache_ttl)
        self.resolver = CapabilityResolver(self.store, self.cache, max_workers=self.settings.resolver_workers)

        self.workflow_gate = WorkflowGate.from_config(
            workflow_config,
            loader=database_transition_loader(self.db.SessionLocal),
            ttl_seconds=self.settings.workflow_cache_ttl,
        )
        self.hierarchy = HierarchyManager(self.settings)
        self.access_filter = AccessFilter(
            self.resolver,
            workflow_config.get("full_access_capabilities") or DEFAULT_FULL_ACCESS,
        )
        self.navigation = NavigationService(self.db.SessionLocal, self.resolver)
        self.invalidation = CacheInvalidationCoordinator(self.resolver, self.workflow_gate)

        logger.info("[CONTAINER] Services initialized")

    @property
    def resolve_timeout(self) -> Optional[float]:
        timeout = self.settings.capability_resolve_timeout
        return timeout if timeout and timeout > 0 else None

    def startup(self):
        self.db.create_tables()

    def shutdown(self):
        self.resolver.close()
        self.db.dispose()
        logger.info("[CONTAINER] Services shut down")
