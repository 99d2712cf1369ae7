"""
Pydantic schemas for the document and admin API.

Field names follow the JSON the web client sends (camelCase); Python code
reads the snake_case attributes.
"""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# ============ Request Schemas ============

class CreateDocumentRequest(_CamelModel):
    """
    Example:
        {"title": "Contract A", "accessGroups": ["legal"], "parentId": null}
    """
    title: str = Field(..., min_length=1, max_length=500)
    access_groups: List[str] = Field(default_factory=list, alias="accessGroups")
    parent_id: Optional[str] = Field(None, alias="parentId")
    file_size: Optional[int] = Field(None, alias="fileSize", ge=0)

    @field_validator('access_groups')
    def normalize_groups(cls, v):
        return [g.strip() for g in v if g and g.strip()]


class DocumentOrder(_CamelModel):
    id: str = Field(..., min_length=1)
    sort_order: int = Field(..., alias="sortOrder")
    version: Optional[int] = Field(None, description="Version the client last saw")


class ReorderRequest(_CamelModel):
    """
    Example:
        {"parentId": "doc-1", "documentOrders": [{"id": "doc-2", "sortOrder": 0}]}
    """
    parent_id: Optional[str] = Field(None, alias="parentId")
    document_orders: List[DocumentOrder] = Field(..., alias="documentOrders")


class MoveDocumentRequest(_CamelModel):
    parent_id: Optional[str] = Field(None, alias="parentId", description="null moves to the root")


class StatusChangeRequest(_CamelModel):
    status: str = Field(..., min_length=1)


class AssignCapabilitiesRequest(_CamelModel):
    role_id: str = Field(..., alias="roleId", min_length=1)
    capability_ids: List[str] = Field(..., alias="capabilityIds")


class UserRoleRequest(_CamelModel):
    role_id: str = Field(..., alias="roleId", min_length=1)
    is_active: bool = Field(True, alias="isActive")


# ============ Response Schemas ============

class ReorderResponse(BaseModel):
    message: str
    count: int
