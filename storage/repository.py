"""
Data access layer for the authorization core.

The repository pattern isolates database operations from the decision logic.
Repositories never commit on their own: the caller owns the transaction, so a
batch of writes either lands together or not at all.

Repository methods:
- User / Group: create, get user
- Role / Capability: create, get, active roles of a user, replace assignments
- UserRole: upsert assignment with active flag
- Document: create, get, children ordered by sort_order, next free sort_order, touch
- WorkflowTransition / NavigationResource: active rows ordered by sort_order
"""

import logging
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import flag_modified

from storage.models import (
    Capability, Document, Group, NavigationResource, Role, RoleCapability,
    User, UserRole, WorkflowTransition,
)

logger = logging.getLogger(__name__)


class GroupRepository:

    @staticmethod
    def create(db: Session, name: str, display_name: Optional[str] = None, level: int = 0) -> Group:
        group = Group(name=name, display_name=display_name or name, level=level)
        db.add(group)
        db.flush()
        logger.info(f"Created group {group.name}")
        return group


class UserRepository:

    @staticmethod
    def create(
        db: Session,
        email: Optional[str] = None,
        full_name: Optional[str] = None,
        group_id: Optional[str] = None,
        is_active: bool = True,
        user_id: Optional[str] = None
    ) -> User:
        user = User(email=email, full_name=full_name, group_id=group_id, is_active=is_active)
        if user_id:
            user.user_id = user_id
        db.add(user)
        db.flush()
        logger.info(f"Created user {user.user_id}")
        return user

    @staticmethod
    def get_by_id(db: Session, user_id: str) -> Optional[User]:
        return db.query(User).filter(User.user_id == user_id).first()


class RoleRepository:

    @staticmethod
    def create(
        db: Session,
        name: str,
        display_name: Optional[str] = None,
        level: int = 0,
        description: Optional[str] = None
    ) -> Role:
        role = Role(name=name, display_name=display_name or name, level=level, description=description)
        db.add(role)
        db.flush()
        logger.info(f"Created role {role.name}")
        return role

    @staticmethod
    def get_by_id(db: Session, role_id: str) -> Optional[Role]:
        return db.query(Role).filter(Role.role_id == role_id).first()

    @staticmethod
    def list_active_for_user(db: Session, user_id: str) -> List[Role]:
        """
        Roles reachable through an active assignment of an active user.

        Returns:
            List of Role objects ordered by level (most senior first)
        """
        return db.query(Role).join(
            UserRole, UserRole.role_id == Role.role_id
        ).join(
            User, User.user_id == UserRole.user_id
        ).filter(
            UserRole.user_id == user_id,
            UserRole.is_active.is_(True),
            Role.is_active.is_(True),
            User.is_active.is_(True),
        ).order_by(Role.level.desc(), Role.name).all()

    @staticmethod
    def user_ids(db: Session, role_id: str) -> List[str]:
        rows = db.query(UserRole.user_id).filter(UserRole.role_id == role_id).all()
        return [row[0] for row in rows]

    @staticmethod
    def replace_capabilities(db: Session, role_id: str, capability_ids: Iterable[str]) -> List[RoleCapability]:
        """
        Replace the full capability set of a role.

        Duplicate ids in the input collapse to one assignment, keeping the
        (role, capability) pair unique.
        """
        db.query(RoleCapability).filter(RoleCapability.role_id == role_id).delete(synchronize_session=False)

        assignments = []
        seen = set()
        for capability_id in capability_ids:
            if capability_id in seen:
                continue
            seen.add(capability_id)
            assignment = RoleCapability(role_id=role_id, capability_id=capability_id)
            db.add(assignment)
            assignments.append(assignment)

        db.flush()
        logger.info(f"Replaced capabilities of role {role_id}: {len(assignments)} assignments")
        return assignments


class CapabilityRepository:

    @staticmethod
    def create(
        db: Session,
        name: str,
        category: str = "document",
        is_super: bool = False,
        description: Optional[str] = None
    ) -> Capability:
        capability = Capability(name=name, category=category, is_super=is_super, description=description)
        db.add(capability)
        db.flush()
        return capability

    @staticmethod
    def get_by_ids(db: Session, capability_ids: Iterable[str]) -> List[Capability]:
        ids = list(capability_ids)
        if not ids:
            return []
        return db.query(Capability).filter(Capability.capability_id.in_(ids)).all()

    @staticmethod
    def for_roles(db: Session, role_ids: Iterable[str]) -> List[Capability]:
        ids = list(role_ids)
        if not ids:
            return []
        return db.query(Capability).join(
            RoleCapability, RoleCapability.capability_id == Capability.capability_id
        ).filter(
            RoleCapability.role_id.in_(ids)
        ).distinct().order_by(Capability.name).all()


class UserRoleRepository:

    @staticmethod
    def upsert(db: Session, user_id: str, role_id: str, is_active: bool = True) -> UserRole:
        assignment = db.query(UserRole).filter(
            UserRole.user_id == user_id,
            UserRole.role_id == role_id
        ).first()

        if assignment is None:
            assignment = UserRole(user_id=user_id, role_id=role_id, is_active=is_active)
            db.add(assignment)
        else:
            assignment.is_active = is_active

        db.flush()
        logger.info(f"User {user_id} -> role {role_id} active={is_active}")
        return assignment


class DocumentRepository:

    @staticmethod
    def create(
        db: Session,
        title: str,
        access_groups: Optional[List[str]] = None,
        parent_id: Optional[str] = None,
        sort_order: int = 0,
        status: str = "DRAFT",
        file_size: Optional[int] = None
    ) -> Document:
        document = Document(
            title=title,
            access_groups=list(access_groups or []),
            parent_id=parent_id,
            sort_order=sort_order,
            status=status,
            file_size=file_size,
        )
        db.add(document)
        db.flush()
        logger.info(f"Created document {document.document_id} under {parent_id}")
        return document

    @staticmethod
    def get_by_id(db: Session, document_id: str, for_update: bool = False) -> Optional[Document]:
        query = db.query(Document).filter(Document.document_id == document_id)
        if for_update:
            query = query.with_for_update()
        return query.first()

    @staticmethod
    def list_children(
        db: Session,
        parent_id: Optional[str],
        include_archived: bool = True,
        for_update: bool = False
    ) -> List[Document]:
        """
        Documents whose parent is `parent_id` (None = roots), by sort_order.

        With for_update the rows are locked until the transaction ends on
        dialects that support SELECT ... FOR UPDATE.
        """
        query = db.query(Document)
        if parent_id is None:
            query = query.filter(Document.parent_id.is_(None))
        else:
            query = query.filter(Document.parent_id == parent_id)

        if not include_archived:
            query = query.filter(Document.status != "ARCHIVED")

        query = query.order_by(Document.sort_order, Document.created_at)
        if for_update:
            query = query.with_for_update()
        return query.all()

    @staticmethod
    def next_sort_order(db: Session, parent_id: Optional[str]) -> int:
        """One past the highest sort_order under `parent_id`, archived rows included"""
        # FOR UPDATE cannot be combined with MAX(), so lock the rows and count here
        siblings = DocumentRepository.list_children(db, parent_id, for_update=True)
        return max((doc.sort_order for doc in siblings), default=-1) + 1

    @staticmethod
    def touch(document: Document):
        """Force an UPDATE on flush so the row's version is checked and bumped"""
        flag_modified(document, "sort_order")

    @staticmethod
    def list_all(db: Session, skip: int = 0, limit: int = 100) -> List[Document]:
        return db.query(Document).order_by(
            Document.parent_id, Document.sort_order
        ).offset(skip).limit(limit).all()


class WorkflowTransitionRepository:

    @staticmethod
    def list_active(db: Session) -> List[WorkflowTransition]:
        return db.query(WorkflowTransition).filter(
            WorkflowTransition.is_active.is_(True)
        ).order_by(WorkflowTransition.sort_order).all()

    @staticmethod
    def create(
        db: Session,
        from_status: str,
        to_status: str,
        required_capability: str,
        description: Optional[str] = None,
        sort_order: int = 0
    ) -> WorkflowTransition:
        transition = WorkflowTransition(
            from_status=from_status,
            to_status=to_status,
            required_capability=required_capability,
            description=description,
            sort_order=sort_order,
        )
        db.add(transition)
        db.flush()
        return transition


class NavigationRepository:

    @staticmethod
    def list_active(db: Session) -> List[NavigationResource]:
        return db.query(NavigationResource).filter(
            NavigationResource.is_active.is_(True)
        ).order_by(NavigationResource.sort_order).all()

    @staticmethod
    def create(
        db: Session,
        name: str,
        path: str,
        icon: Optional[str] = None,
        required_capability: Optional[str] = None,
        sort_order: int = 0
    ) -> NavigationResource:
        resource = NavigationResource(
            name=name,
            path=path,
            icon=icon,
            required_capability=required_capability,
            sort_order=sort_order,
        )
        db.add(resource)
        db.flush()
        return resource
