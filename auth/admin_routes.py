"""
Administrative endpoints: capability assignment, user role assignment and
cache maintenance. Every mutation commits first, then fires exactly one
invalidation hook.
"""

from fastapi import APIRouter, Depends
from loguru import logger
from sqlalchemy.orm import Session

from auth.capabilities import CapabilityName
from auth.rbac_dependencies import Principal, get_container, get_db, require_capability
from core.errors import NotFound, ValidationError
from documents.schemas import AssignCapabilitiesRequest, UserRoleRequest
from storage.repository import CapabilityRepository, RoleRepository, UserRepository, UserRoleRepository

router = APIRouter(prefix="/api/admin", tags=["admin"])


@router.post("/clear-workflow-cache")
def clear_workflow_cache(
    principal: Principal = Depends(
        require_capability(CapabilityName.SYSTEM_CONFIG, CapabilityName.WORKFLOW_MANAGE)
    ),
    container=Depends(get_container)
):
    container.invalidation.workflow_changed()
    logger.info(f"[ADMIN] Workflow cache cleared by {principal.user_id}")
    return {"message": "Workflow cache cleared successfully"}


@router.post("/capabilities/assign")
def assign_capabilities(
    data: AssignCapabilitiesRequest,
    principal: Principal = Depends(require_capability(CapabilityName.ROLE_MANAGE)),
    db: Session = Depends(get_db),
    container=Depends(get_container)
):
    """
    Replace the full capability set of a role.
    """
    role = RoleRepository.get_by_id(db, data.role_id)
    if role is None:
        raise NotFound(f"Role {data.role_id} not found")

    requested = list(dict.fromkeys(data.capability_ids))
    found = {c.capability_id for c in CapabilityRepository.get_by_ids(db, requested)}
    missing = [cid for cid in requested if cid not in found]
    if missing:
        raise ValidationError(f"Unknown capability ids: {missing}")

    assignments = RoleRepository.replace_capabilities(db, role.role_id, requested)
    db.commit()
    container.invalidation.role_capabilities_changed(role.role_id)

    logger.info(f"[ADMIN] {principal.user_id} assigned {len(assignments)} capabilities to role {role.name}")
    return {
        "message": "Capabilities assigned successfully",
        "roleId": role.role_id,
        "count": len(assignments),
    }


@router.post("/users/{user_id}/roles")
def set_user_role(
    user_id: str,
    data: UserRoleRequest,
    principal: Principal = Depends(require_capability(CapabilityName.USER_MANAGE)),
    db: Session = Depends(get_db),
    container=Depends(get_container)
):
    """
    Grant, re-activate or deactivate one role assignment of a user.
    """
    if UserRepository.get_by_id(db, user_id) is None:
        raise NotFound(f"User {user_id} not found")
    if RoleRepository.get_by_id(db, data.role_id) is None:
        raise NotFound(f"Role {data.role_id} not found")

    assignment = UserRoleRepository.upsert(db, user_id, data.role_id, is_active=data.is_active)
    db.commit()
    container.invalidation.user_roles_changed(user_id)

    logger.info(f"[ADMIN] {principal.user_id} set role {data.role_id} on {user_id} active={data.is_active}")
    return {
        "userId": assignment.user_id,
        "roleId": assignment.role_id,
        "isActive": assignment.is_active,
    }


@router.get("/users/{user_id}/capabilities")
def get_user_capabilities(
    user_id: str,
    principal: Principal = Depends(require_capability(CapabilityName.USER_VIEW, CapabilityName.USER_MANAGE)),
    container=Depends(get_container)
):
    """
    Active roles and the effective capability set of a user.

    Runs in the threadpool; the role query blocks.
    """
    capabilities = container.resolver.resolve(user_id, timeout=container.resolve_timeout)
    roles = container.store.active_roles(user_id)
    return {
        "userId": user_id,
        "roles": [{"id": r.id, "name": r.name, "displayName": r.display_name, "level": r.level} for r in roles],
        "capabilities": capabilities.to_dict(),
        "isSuper": capabilities.is_super,
    }


@router.get("/roles/{role_id}/capabilities")
def get_role_capabilities(
    role_id: str,
    principal: Principal = Depends(require_capability(CapabilityName.ROLE_MANAGE)),
    db: Session = Depends(get_db),
    container=Depends(get_container)
):
    role = RoleRepository.get_by_id(db, role_id)
    if role is None:
        raise NotFound(f"Role {role_id} not found")

    records = container.store.role_capabilities(role_id)
    return {
        "roleId": role.role_id,
        "name": role.name,
        "capabilities": [
            {"id": r.id, "name": r.name, "category": r.category, "isSuper": r.is_super} for r in records
        ],
        "userIds": container.store.user_ids_for_role(role_id),
    }


@router.get("/cache/stats")
def cache_stats(
    principal: Principal = Depends(require_capability(CapabilityName.SYSTEM_CONFIG)),
    container=Depends(get_container)
):
    return container.cache.stats()
