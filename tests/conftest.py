"""
Shared pytest fixtures.

Provides:
- Settings pointing at an in-memory sqlite database
- A DatabaseManager with all tables created
- A seeded directory (groups, capabilities, roles, users)
- The default workflow configuration
"""

from types import SimpleNamespace

import pytest

from auth.capabilities import CAPABILITY_CATALOG, CapabilityName
from core.config import DEFAULT_WORKFLOW_CONFIG, Settings, load_yaml
from storage.database import DatabaseManager
from storage.repository import (
    CapabilityRepository, GroupRepository, RoleRepository, UserRepository, UserRoleRepository,
)

ROLE_CAPABILITIES = {
    "viewer": [CapabilityName.DOCUMENT_VIEW],
    "editor": [CapabilityName.DOCUMENT_VIEW, CapabilityName.DOCUMENT_CREATE, CapabilityName.DOCUMENT_EDIT],
    "approver": [CapabilityName.DOCUMENT_APPROVE],
    "admin": [CapabilityName.ADMIN_ACCESS],
    "auditor": [CapabilityName.DOCUMENT_FULL_ACCESS],
}

USERS = {
    # name: (group, roles)
    "viewer": ("legal", ["viewer"]),
    "editor": ("legal", ["editor"]),
    "finance": ("finance", ["viewer"]),
    "admin": (None, ["admin"]),
    "auditor": ("finance", ["auditor"]),
    "nobody": ("legal", []),
}


def seed_directory(session):
    """Create groups, the full capability catalog, roles and users; returns their ids"""
    groups = {
        name: GroupRepository.create(session, name).group_id
        for name in ("legal", "finance")
    }

    capabilities = {}
    for token, meta in CAPABILITY_CATALOG.items():
        capability = CapabilityRepository.create(
            session,
            name=token.value,
            category=meta["category"],
            is_super=token is CapabilityName.ADMIN_ACCESS,
            description=meta["description"],
        )
        capabilities[token.value] = capability.capability_id

    roles = {}
    for level, (name, tokens) in enumerate(ROLE_CAPABILITIES.items()):
        role = RoleRepository.create(session, name=name, level=level)
        RoleRepository.replace_capabilities(session, role.role_id, [capabilities[t.value] for t in tokens])
        roles[name] = role.role_id

    users = {}
    for name, (group, role_names) in USERS.items():
        user = UserRepository.create(
            session,
            email=f"{name}@example.com",
            full_name=name.title(),
            group_id=groups[group] if group else None,
        )
        for role_name in role_names:
            UserRoleRepository.upsert(session, user.user_id, roles[role_name])
        users[name] = user.user_id

    session.commit()
    return SimpleNamespace(groups=groups, capabilities=capabilities, roles=roles, users=users)


@pytest.fixture
def settings():
    return Settings(
        database_url="sqlite://",
        jwt_secret="test-secret",
        capability_cache_ttl=300,
        workflow_cache_ttl=60,
        hierarchy_default_depth=3,
        hierarchy_max_depth=10,
    )


@pytest.fixture
def database(settings):
    db = DatabaseManager(settings)
    db.create_tables()
    yield db
    db.dispose()


@pytest.fixture
def session(database):
    session = database.new_session()
    yield session
    session.close()


@pytest.fixture
def directory(database):
    session = database.new_session()
    try:
        return seed_directory(session)
    finally:
        session.close()


@pytest.fixture
def workflow_config():
    return load_yaml(str(DEFAULT_WORKFLOW_CONFIG))
