"""
Item data models for the Catalog Service.
"""

from typing import Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


Price = Union[int, float]


class Item(BaseModel):
    """Catalog item as stored and returned on the wire."""
    model_config = ConfigDict(populate_by_name=True)

    id: int = Field(..., description="Item ID")
    name: str = Field(..., description="Item name")
    category: Optional[str] = Field(None, description="Item category")
    price: Optional[Price] = Field(None, description="Item price")
    created_at: Optional[str] = Field(None, alias="createdAt", description="Creation time (ISO-8601)")
    updated_at: Optional[str] = Field(None, alias="updatedAt", description="Last update time (ISO-8601)")


class ItemCreateRequest(BaseModel):
    """Request model for creating an item."""
    model_config = ConfigDict(extra="ignore")

    name: str = Field(..., description="Item name")
    category: Optional[str] = Field(None, description="Item category")
    price: Optional[Price] = Field(None, description="Item price")


class ItemUpdateRequest(BaseModel):
    """Request model for updating an item."""
    model_config = ConfigDict(extra="ignore")

    name: Optional[str] = Field(None, description="Item name")
    category: Optional[str] = Field(None, description="Item category")
    price: Optional[Price] = Field(None, description="Item price")


class ItemListResponse(BaseModel):
    """Response model for item listing."""
    items: List[Item]
    total: int
    timestamp: str


class ItemDeleteResponse(BaseModel):
    """Response model for item deletion."""
    model_config = ConfigDict(populate_by_name=True)

    message: str
    deleted_item: Item = Field(..., alias="deletedItem")


class CatalogStatsResponse(BaseModel):
    """Response model for catalog statistics."""
    model_config = ConfigDict(populate_by_name=True)

    total: int
    average_price: float = Field(..., alias="averagePrice")
    categories: Dict[str, int]
    timestamp: str
