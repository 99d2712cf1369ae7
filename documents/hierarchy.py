"""
Document tree navigation and mutation.

All methods work on a caller-supplied Session and never commit; the caller's
transaction scope decides whether a reorder or reparent lands. Every write
goes through Document.version, so a row changed by someone else between our
read and our flush surfaces as ConflictOnReorder instead of a silent overwrite.

Mutations also touch the rows they only read but depend on: the parent whose
children get a new sort_order, and the whole ancestor chain a reparent was
cycle-checked against. Two writers relying on the same rows therefore cannot
both commit.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set

from loguru import logger
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from core.config import Settings
from core.errors import ConflictOnReorder, CycleDetected, NotFound, ValidationError
from documents.workflow import INITIAL_STATUS
from storage.models import Document
from storage.repository import DocumentRepository


@dataclass
class DocumentNode:
    id: str
    title: str
    status: str
    sort_order: int
    parent_id: Optional[str]
    access_groups: List[str]
    file_size: Optional[int] = None
    children: List["DocumentNode"] = field(default_factory=list)

    @classmethod
    def from_document(cls, document: Document) -> "DocumentNode":
        return cls(
            id=document.document_id,
            title=document.title,
            status=document.status,
            sort_order=document.sort_order,
            parent_id=document.parent_id,
            access_groups=list(document.access_groups or []),
            file_size=document.file_size,
        )

    def walk(self):
        yield self
        for child in self.children:
            yield from child.walk()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "status": self.status,
            "sortOrder": self.sort_order,
            "parentId": self.parent_id,
            "accessGroups": self.access_groups,
            "fileSize": self.file_size,
            "children": [child.to_dict() for child in self.children],
        }


@dataclass(frozen=True)
class OrderItem:
    id: str
    sort_order: int
    # Version the client last saw; a mismatch is a concurrent edit
    version: Optional[int] = None


class HierarchyManager:

    def __init__(self, settings: Optional[Settings] = None):
        settings = settings or Settings()
        self.default_depth = settings.hierarchy_default_depth
        self.max_depth = settings.hierarchy_max_depth

    # ==================== LOOKUP ====================

    @staticmethod
    def _get(db: Session, document_id: str, for_update: bool = False) -> Document:
        document = DocumentRepository.get_by_id(db, document_id, for_update=for_update)
        if document is None:
            raise NotFound(f"Document {document_id} not found")
        return document

    def get_document(self, db: Session, document_id: str) -> Document:
        return self._get(db, document_id)

    def _clamp_depth(self, max_depth: Optional[int]) -> int:
        if max_depth is None:
            return self.default_depth
        if max_depth < 0:
            raise ValidationError("maxDepth must be zero or positive")
        return min(max_depth, self.max_depth)

    def get_children(self, db: Session, document_id: str, max_depth: Optional[int] = None) -> DocumentNode:
        """
        The document with its descendants nested down to `max_depth` levels.

        Depth 0 returns the document alone. Children are ordered by
        sort_order at every level and archived children are left out.
        """
        depth = self._clamp_depth(max_depth)
        root = self._get(db, document_id)
        node = DocumentNode.from_document(root)
        visited: Set[str] = {root.document_id}

        frontier = [(node, 0)]
        while frontier:
            current, level = frontier.pop()
            if level >= depth:
                continue
            for child in DocumentRepository.list_children(db, current.id, include_archived=False):
                if child.document_id in visited:
                    logger.error(f"[HIERARCHY] Cycle below {document_id} at {child.document_id}")
                    raise CycleDetected(f"Document {child.document_id} appears twice below {document_id}")
                visited.add(child.document_id)
                child_node = DocumentNode.from_document(child)
                current.children.append(child_node)
                frontier.append((child_node, level + 1))

        return node

    def _ancestors(self, db: Session, document: Document, for_update: bool = False) -> List[Document]:
        """Chain from `document` up to its root, nearest first, document included"""
        chain = [document]
        seen = {document.document_id}
        parent_id = document.parent_id
        while parent_id is not None:
            if parent_id in seen:
                logger.error(f"[HIERARCHY] Cycle in parent chain of {document.document_id} at {parent_id}")
                raise CycleDetected(f"Parent chain of {document.document_id} revisits {parent_id}")
            parent = DocumentRepository.get_by_id(db, parent_id, for_update=for_update)
            if parent is None:
                logger.warning(f"[HIERARCHY] Dangling parent {parent_id} above {document.document_id}")
                break
            seen.add(parent_id)
            chain.append(parent)
            parent_id = parent.parent_id
        return chain

    def get_breadcrumb(self, db: Session, document_id: str) -> List[Dict[str, Any]]:
        chain = list(reversed(self._ancestors(db, self._get(db, document_id))))
        return [
            {"id": doc.document_id, "title": doc.title, "level": level}
            for level, doc in enumerate(chain)
        ]

    def get_siblings(self, db: Session, document_id: str) -> List[Document]:
        document = self._get(db, document_id)
        return [
            sibling for sibling in DocumentRepository.list_children(db, document.parent_id, include_archived=False)
            if sibling.document_id != document.document_id
        ]

    # ==================== MUTATION ====================

    def _flush(self, db: Session, action: str):
        try:
            db.flush()
        except StaleDataError as e:
            logger.warning(f"[HIERARCHY] Concurrent modification during {action}: {e}")
            raise ConflictOnReorder(f"Documents changed concurrently during {action}; reload and retry")

    @staticmethod
    def _validate_batch(orders: List[OrderItem]):
        if not orders:
            raise ValidationError("documentOrders must not be empty")

        ids = [item.id for item in orders]
        if len(set(ids)) != len(ids):
            raise ValidationError("documentOrders contains duplicate document ids")

        targets = [item.sort_order for item in orders]
        if len(set(targets)) != len(targets):
            raise ValidationError("documentOrders contains duplicate sortOrder values")

        if any(t < 0 for t in targets):
            raise ValidationError("sortOrder must be zero or positive")

    def reorder(self, db: Session, parent_id: Optional[str], orders: Iterable[OrderItem]) -> int:
        """
        Apply a batch of sort_order changes to the children of `parent_id`.

        Either every item is applied or none is: validation happens before any
        write and a version conflict on flush leaves the transaction to be
        rolled back by the caller.

        Returns:
            Number of documents whose sort_order changed
        """
        orders = list(orders)
        self._validate_batch(orders)

        parent = self._get(db, parent_id, for_update=True) if parent_id is not None else None

        siblings = {
            doc.document_id: doc
            for doc in DocumentRepository.list_children(db, parent_id, for_update=True)
        }

        foreign = [item.id for item in orders if item.id not in siblings]
        if foreign:
            raise ValidationError(f"Documents {foreign} are not children of {parent_id or 'the root'}")

        # Archived siblings keep their slot
        touched = {item.id for item in orders}
        untouched_orders = {doc.sort_order for doc_id, doc in siblings.items() if doc_id not in touched}
        clashes = sorted(item.sort_order for item in orders if item.sort_order in untouched_orders)
        if clashes:
            raise ValidationError(f"sortOrder values {clashes} are already used by other siblings")

        for item in orders:
            if item.version is not None and siblings[item.id].version != item.version:
                raise ConflictOnReorder(
                    f"Document {item.id} is at version {siblings[item.id].version}, expected {item.version}"
                )

        if parent is not None:
            DocumentRepository.touch(parent)

        updated = 0
        for item in orders:
            document = siblings[item.id]
            if document.sort_order != item.sort_order:
                document.sort_order = item.sort_order
                updated += 1

        self._flush(db, "reorder")
        logger.info(f"[HIERARCHY] Reordered {updated}/{len(orders)} documents under {parent_id or 'root'}")
        return updated

    def is_descendant(self, db: Session, candidate_id: str, ancestor_id: str) -> bool:
        """True when `ancestor_id` appears in the parent chain of `candidate_id`"""
        candidate = self._get(db, candidate_id)
        return any(doc.document_id == ancestor_id for doc in self._ancestors(db, candidate)[1:])

    def reparent(self, db: Session, document_id: str, new_parent_id: Optional[str]) -> Document:
        """
        Move a document (with its subtree) under `new_parent_id`, or to the
        root when it is None. The document goes after its new siblings.

        The moved row and the new parent's ancestor chain are locked and
        touched, so an opposing move that ran concurrently (Y under X while
        we put X under Y) fails on flush instead of committing a cycle.
        """
        document = self._get(db, document_id, for_update=True)

        chain: List[Document] = []
        if new_parent_id is not None:
            if new_parent_id == document_id:
                raise CycleDetected(f"Document {document_id} cannot be its own parent")
            new_parent = self._get(db, new_parent_id, for_update=True)
            chain = self._ancestors(db, new_parent, for_update=True)
            if any(doc.document_id == document_id for doc in chain):
                logger.warning(f"[HIERARCHY] Rejected move of {document_id} under its descendant {new_parent_id}")
                raise CycleDetected(f"Document {new_parent_id} is a descendant of {document_id}")

        if document.parent_id == new_parent_id:
            return document

        # Read before any write; a query would otherwise autoflush the touches
        sort_order = DocumentRepository.next_sort_order(db, new_parent_id)

        for ancestor in chain:
            DocumentRepository.touch(ancestor)
        old_parent_id = document.parent_id
        document.sort_order = sort_order
        document.parent_id = new_parent_id
        self._flush(db, "reparent")

        logger.info(f"[HIERARCHY] Moved {document_id}: {old_parent_id or 'root'} -> {new_parent_id or 'root'}")
        return document

    def create_document(
        self,
        db: Session,
        title: str,
        access_groups: Optional[List[str]] = None,
        parent_id: Optional[str] = None,
        file_size: Optional[int] = None
    ) -> Document:
        if not title or not title.strip():
            raise ValidationError("Document title must not be empty")
        parent = self._get(db, parent_id, for_update=True) if parent_id is not None else None

        sort_order = DocumentRepository.next_sort_order(db, parent_id)
        if parent is not None:
            DocumentRepository.touch(parent)
            self._flush(db, "create")

        document = DocumentRepository.create(
            db,
            title=title.strip(),
            access_groups=access_groups,
            parent_id=parent_id,
            sort_order=sort_order,
            status=INITIAL_STATUS.value,
            file_size=file_size,
        )
        logger.info(f"[HIERARCHY] Created document {document.document_id} under {parent_id or 'root'}")
        return document
