"""
SQLAlchemy models for users, roles, capabilities, groups and documents.

Tables:
- users / groups: principals and the organizational tag used by accessGroups
- roles / capabilities / role_capabilities: capability bundles
- user_roles: user -> role assignments, each with its own active flag
- documents: the hierarchical document tree
- workflow_transitions: database-driven workflow table
- navigation_resources: sidebar entries gated by a capability
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    BigInteger, Boolean, Column, DateTime, ForeignKey, Index, Integer, JSON,
    String, Text, UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Group(Base):
    """Organizational group (legal, finance, ...) used only for accessGroups"""

    __tablename__ = "groups"

    group_id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(100), unique=True, nullable=False, index=True)
    display_name = Column(String(255))
    level = Column(Integer, default=0, nullable=False)

    users = relationship("User", back_populates="group")


class User(Base):
    """Already-authenticated principal"""

    __tablename__ = "users"

    user_id = Column(String(36), primary_key=True, default=_uuid)
    email = Column(String(255), unique=True, nullable=True, index=True)
    full_name = Column(String(255))
    is_active = Column(Boolean, default=True, nullable=False)
    group_id = Column(String(36), ForeignKey("groups.group_id"), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), default=_now)

    group = relationship("Group", back_populates="users")
    role_assignments = relationship("UserRole", back_populates="user", cascade="all, delete-orphan")

    @property
    def group_name(self):
        return self.group.name if self.group else None


class Role(Base):
    """Named bundle of capabilities"""

    __tablename__ = "roles"

    role_id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(50), unique=True, nullable=False, index=True)
    display_name = Column(String(255))
    description = Column(String(255))
    level = Column(Integer, default=0, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_now)

    capability_assignments = relationship(
        "RoleCapability", back_populates="role", cascade="all, delete-orphan"
    )
    user_assignments = relationship("UserRole", back_populates="role", cascade="all, delete-orphan")


class Capability(Base):
    """Atomic named permission (DOCUMENT_APPROVE, ADMIN_ACCESS, ...)"""

    __tablename__ = "capabilities"

    capability_id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(100), unique=True, nullable=False, index=True)
    description = Column(String(255))
    category = Column(String(50), nullable=False, default="document")
    is_super = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_now)

    role_assignments = relationship("RoleCapability", back_populates="capability", cascade="all, delete-orphan")


class RoleCapability(Base):
    """Assignment of a capability to a role, unique per (role, capability)"""

    __tablename__ = "role_capabilities"

    assignment_id = Column(String(36), primary_key=True, default=_uuid)
    role_id = Column(String(36), ForeignKey("roles.role_id"), nullable=False, index=True)
    capability_id = Column(String(36), ForeignKey("capabilities.capability_id"), nullable=False, index=True)
    assigned_at = Column(DateTime(timezone=True), default=_now)

    role = relationship("Role", back_populates="capability_assignments")
    capability = relationship("Capability", back_populates="role_assignments")

    __table_args__ = (
        UniqueConstraint("role_id", "capability_id", name="uq_role_capability"),
    )


class UserRole(Base):
    """User -> role assignment; inactive assignments grant nothing"""

    __tablename__ = "user_roles"

    user_id = Column(String(36), ForeignKey("users.user_id"), primary_key=True)
    role_id = Column(String(36), ForeignKey("roles.role_id"), primary_key=True)
    is_active = Column(Boolean, default=True, nullable=False)
    assigned_at = Column(DateTime(timezone=True), default=_now)

    user = relationship("User", back_populates="role_assignments")
    role = relationship("Role", back_populates="user_assignments")


class Document(Base):
    """
    Node in the document tree.

    `version` is bumped by SQLAlchemy on every UPDATE; a stale write raises
    StaleDataError, which the hierarchy manager reports as ConflictOnReorder.
    """

    __tablename__ = "documents"

    document_id = Column(String(36), primary_key=True, default=_uuid)
    title = Column(String(500), nullable=False)
    status = Column(String(32), nullable=False, default="DRAFT", index=True)
    access_groups = Column(JSON, nullable=False, default=list)
    parent_id = Column(String(36), ForeignKey("documents.document_id"), nullable=True, index=True)
    sort_order = Column(Integer, nullable=False, default=0)
    file_size = Column(BigInteger, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_now)
    updated_at = Column(DateTime(timezone=True), default=_now, onupdate=_now)
    version = Column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        # Sibling listing: children of X ordered by sort_order
        Index("idx_documents_parent_sort", parent_id, sort_order),
    )

    def __repr__(self):
        return f"<Document(id={self.document_id}, parent={self.parent_id}, sort_order={self.sort_order})>"

    def to_dict(self):
        return {
            "id": self.document_id,
            "title": self.title,
            "status": self.status,
            "accessGroups": list(self.access_groups or []),
            "parentId": self.parent_id,
            "sortOrder": self.sort_order,
            "fileSize": self.file_size,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


class WorkflowTransition(Base):
    """(from, to, required capability) edge of the document workflow"""

    __tablename__ = "workflow_transitions"

    transition_id = Column(String(36), primary_key=True, default=_uuid)
    from_status = Column(String(32), nullable=False)
    to_status = Column(String(32), nullable=False)
    required_capability = Column(String(100), nullable=False)
    description = Column(Text)
    is_active = Column(Boolean, default=True, nullable=False)
    sort_order = Column(Integer, default=0, nullable=False)

    __table_args__ = (
        UniqueConstraint("from_status", "to_status", name="uq_workflow_edge"),
    )


class NavigationResource(Base):
    """Sidebar entry shown only to holders of `required_capability`"""

    __tablename__ = "navigation_resources"

    resource_id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(100), nullable=False)
    path = Column(String(255), nullable=False)
    icon = Column(String(100), nullable=True)
    required_capability = Column(String(100), nullable=True)
    sort_order = Column(Integer, default=0, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    def to_dict(self):
        return {
            "id": self.resource_id,
            "name": self.name,
            "path": self.path,
            "icon": self.icon,
            "requiredCapability": self.required_capability,
        }
