"""
Catalog item Pydantic schemas.
"""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class ItemCreate(BaseModel):
    """Request model for creating a catalog item."""
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    sku: Optional[str] = Field(None, max_length=64)
    category: Optional[str] = Field(None, max_length=100)
    price: Decimal = Field(..., ge=0, decimal_places=2)
    is_active: bool = True


class ItemUpdate(BaseModel):
    """Request model for updating a catalog item. Only provided fields change."""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    sku: Optional[str] = Field(None, max_length=64)
    category: Optional[str] = Field(None, max_length=100)
    price: Optional[Decimal] = Field(None, ge=0, decimal_places=2)
    is_active: Optional[bool] = None


class ItemResponse(BaseModel):
    """Response model for a single catalog item."""
    id: UUID
    name: str
    description: Optional[str] = None
    sku: Optional[str] = None
    category: Optional[str] = None
    price: Decimal
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ItemListResponse(BaseModel):
    items: List[ItemResponse]
    total: int
