from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from loguru import logger
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from auth.capabilities import CapabilityName
from auth.rbac_dependencies import Principal, get_container, get_db, get_principal, require_capability
from core.errors import ConflictOnReorder, Forbidden
from core.serialization import to_json_safe
from documents.hierarchy import OrderItem
from documents.workflow import WORKFLOW_DESCRIPTIONS, DocumentStatus
from documents.schemas import (
    CreateDocumentRequest, MoveDocumentRequest, ReorderRequest, ReorderResponse,
    StatusChangeRequest,
)
from storage.repository import DocumentRepository

router = APIRouter(prefix="/api/documents", tags=["documents"])


# ==================== HELPERS ====================

def _visible_document(container, db: Session, principal: Principal, document_id: str):
    """Load a document or raise NotFound / Forbidden"""
    document = container.hierarchy.get_document(db, document_id)
    if not container.access_filter.is_visible(principal.user, document, principal.capabilities):
        logger.warning(f"[DOCS] User {principal.user_id} cannot see document {document_id}")
        raise Forbidden("You do not have access to this document")
    return document


def _commit(db: Session, action: str):
    try:
        db.commit()
    except StaleDataError as e:
        db.rollback()
        logger.warning(f"[DOCS] Concurrent modification during {action}: {e}")
        raise ConflictOnReorder(f"Documents changed concurrently during {action}; reload and retry")


# ==================== READ ====================

@router.get("")
def list_documents(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
    container=Depends(get_container)
):
    """List documents visible to the caller (group membership or full access)."""
    documents = DocumentRepository.list_all(db, skip=skip, limit=limit)
    visible = container.access_filter.filter_visible(principal.user, documents, principal.capabilities)
    return {
        "documents": to_json_safe([doc.to_dict() for doc in visible]),
        "count": len(visible),
    }


@router.get("/{document_id}")
def get_document(
    document_id: str,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
    container=Depends(get_container)
):
    document = _visible_document(container, db, principal, document_id)
    return to_json_safe(document.to_dict())


@router.get("/{document_id}/hierarchy")
def get_hierarchy(
    document_id: str,
    max_depth: Optional[int] = Query(None, alias="maxDepth"),
    with_parents: bool = Query(False, alias="withParents"),
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
    container=Depends(get_container)
):
    """
    Document subtree down to maxDepth, with the root-first breadcrumb when
    withParents is set. Children the caller cannot see are pruned.
    """
    _visible_document(container, db, principal, document_id)

    tree = container.hierarchy.get_children(db, document_id, max_depth)
    container.access_filter.prune_tree(principal.user, tree, principal.capabilities)

    breadcrumb = container.hierarchy.get_breadcrumb(db, document_id) if with_parents else None
    return to_json_safe({"document": tree.to_dict(), "breadcrumb": breadcrumb})


@router.get("/{document_id}/siblings")
def get_siblings(
    document_id: str,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
    container=Depends(get_container)
):
    _visible_document(container, db, principal, document_id)
    siblings = container.access_filter.filter_visible(
        principal.user, container.hierarchy.get_siblings(db, document_id), principal.capabilities
    )
    return {
        "siblings": to_json_safe([doc.to_dict() for doc in siblings]),
        "count": len(siblings),
    }


@router.get("/{document_id}/transitions")
def get_transitions(
    document_id: str,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
    container=Depends(get_container)
):
    """Workflow transitions the caller may apply from the document's current status."""
    document = _visible_document(container, db, principal, document_id)
    gate = container.workflow_gate
    current = DocumentStatus.parse(document.status)
    rules = gate.allowed_transitions(principal.capabilities, current)
    return {
        "documentId": document.document_id,
        "currentStatus": current.value,
        "statusDescription": WORKFLOW_DESCRIPTIONS[current],
        "terminal": gate.is_terminal(document.status),
        "transitions": [rule.to_dict() for rule in rules],
    }


# ==================== WRITE ====================

@router.post("", status_code=status.HTTP_201_CREATED)
def create_document(
    data: CreateDocumentRequest,
    principal: Principal = Depends(require_capability(CapabilityName.DOCUMENT_CREATE)),
    db: Session = Depends(get_db),
    container=Depends(get_container)
):
    if data.parent_id is not None:
        _visible_document(container, db, principal, data.parent_id)

    document = container.hierarchy.create_document(
        db,
        title=data.title,
        access_groups=data.access_groups,
        parent_id=data.parent_id,
        file_size=data.file_size,
    )
    _commit(db, "create")
    logger.info(f"[DOCS] User {principal.user_id} created document {document.document_id}")
    return to_json_safe(document.to_dict())


@router.post("/reorder", response_model=ReorderResponse)
def reorder_documents(
    data: ReorderRequest,
    principal: Principal = Depends(require_capability(CapabilityName.DOCUMENT_EDIT)),
    db: Session = Depends(get_db),
    container=Depends(get_container)
):
    """
    Atomically apply new sort orders to children of parentId.
    Nothing is written unless every item is valid.
    """
    orders = [OrderItem(id=o.id, sort_order=o.sort_order, version=o.version) for o in data.document_orders]
    count = container.hierarchy.reorder(db, data.parent_id, orders)
    _commit(db, "reorder")

    logger.info(f"[DOCS] User {principal.user_id} reordered {count} documents under {data.parent_id or 'root'}")
    return ReorderResponse(message="Documents reordered successfully", count=count)


@router.post("/{document_id}/move")
def move_document(
    document_id: str,
    data: MoveDocumentRequest,
    principal: Principal = Depends(require_capability(CapabilityName.DOCUMENT_EDIT)),
    db: Session = Depends(get_db),
    container=Depends(get_container)
):
    _visible_document(container, db, principal, document_id)
    if data.parent_id is not None:
        _visible_document(container, db, principal, data.parent_id)

    document = container.hierarchy.reparent(db, document_id, data.parent_id)
    _commit(db, "move")
    return to_json_safe(document.to_dict())


@router.post("/{document_id}/status")
def change_status(
    document_id: str,
    data: StatusChangeRequest,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
    container=Depends(get_container)
):
    """
    Move a document along the workflow. The gate decides; this route persists.
    """
    document = _visible_document(container, db, principal, document_id)
    previous = document.status

    rule = container.workflow_gate.apply_transition(document, data.status, principal.capabilities)
    document.status = rule.to_status.value
    _commit(db, "status change")

    logger.info(f"[DOCS] User {principal.user_id} moved {document_id}: {previous} -> {document.status}")
    return {
        "document": to_json_safe(document.to_dict()),
        "previousStatus": previous,
        "transition": rule.to_dict(),
    }
