"""
Capability-based access dependencies for FastAPI.
Provides reusable dependency functions to protect routes with capability checks.
"""

from dataclasses import dataclass
from typing import Generator, Optional

from fastapi import Depends, Header, Request
from loguru import logger
from sqlalchemy.orm import Session

from auth.capabilities import CapabilityLike, CapabilityName, CapabilitySet
from core.errors import Forbidden, Unauthenticated
from storage.models import User
from storage.repository import UserRepository


@dataclass
class Principal:
    user: User
    capabilities: CapabilitySet

    @property
    def user_id(self) -> str:
        return self.user.user_id

    @property
    def group_name(self) -> Optional[str]:
        return self.user.group_name


# ==================== DEPENDENCY FUNCTIONS ====================

def get_container(request: Request):
    return request.app.state.container


def get_db(container=Depends(get_container)) -> Generator[Session, None, None]:
    """
    Dependency: request-scoped session.

    Routes commit their own writes; anything left uncommitted when the request
    fails is rolled back here.
    """
    yield from container.db.get_session()


async def verify_jwt_token(authorization: str = Header(None), container=Depends(get_container)) -> str:
    """
    Dependency: Verify the bearer token and return the user id (`sub`).
    """
    return container.tokens.user_id_from_header(authorization)


def get_current_user(user_id: str = Depends(verify_jwt_token), db: Session = Depends(get_db)) -> User:
    """
    Dependency: Load the authenticated user; unknown or inactive users are
    treated as unauthenticated.
    """
    user = UserRepository.get_by_id(db, user_id)
    if user is None or not user.is_active:
        logger.warning(f"[AUTH] Token subject {user_id} is unknown or inactive")
        raise Unauthenticated("User not found or inactive")
    return user


async def get_principal(user: User = Depends(get_current_user), container=Depends(get_container)) -> Principal:
    """
    Dependency: Current user with the resolved capability set.
    """
    capabilities = await container.resolver.aresolve(user.user_id, timeout=container.resolve_timeout)
    return Principal(user=user, capabilities=capabilities)


def require_capability(*required: CapabilityLike):
    """
    Dependency factory: Require any one of the given capabilities.
    Super capabilities satisfy every requirement.
    """
    tokens = [CapabilityName.require(name) for name in required]
    if not tokens:
        raise ValueError("require_capability needs at least one capability")

    async def _require_capability(principal: Principal = Depends(get_principal)) -> Principal:
        if not principal.capabilities.has_any(tokens):
            names = [t.value for t in tokens]
            logger.warning(f"[AUTH] User {principal.user_id} denied: requires one of {names}")
            raise Forbidden(
                f"Capability {names[0]} required" if len(names) == 1 else f"One of capabilities {names} required",
                details={"required": names},
            )
        return principal

    return _require_capability
