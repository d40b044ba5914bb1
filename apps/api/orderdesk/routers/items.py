"""
Catalog items router.

Items are the price source for orders: order lines are always priced from
here on the server.
"""
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from orderdesk.core.deps import get_current_restaurant
from orderdesk.db.session import get_db
from orderdesk.models.item import Item
from orderdesk.models.restaurant import Restaurant
from orderdesk.schemas.item import ItemCreate, ItemListResponse, ItemResponse, ItemUpdate

router = APIRouter(prefix="/items", tags=["items"])


def get_restaurant_item(db: Session, restaurant: Restaurant, item_id: UUID) -> Item:
    item = db.query(Item).filter(Item.id == item_id, Item.restaurant_id == restaurant.id).first()
    if not item:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Item not found"
        )
    return item


def ensure_sku_available(db: Session, restaurant: Restaurant, sku: Optional[str], exclude_id: Optional[UUID] = None):
    if not sku:
        return
    query = db.query(Item).filter(Item.restaurant_id == restaurant.id, Item.sku == sku)
    if exclude_id is not None:
        query = query.filter(Item.id != exclude_id)
    if query.first():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"SKU {sku} is already used by another item"
        )


@router.get("", response_model=ItemListResponse)
def list_items(
    active_only: bool = Query(False, description="Only return active items"),
    category: Optional[str] = Query(None, description="Filter by category"),
    search: Optional[str] = Query(None, description="Search name or SKU"),
    db: Session = Depends(get_db),
    restaurant: Restaurant = Depends(get_current_restaurant),
):
    """List catalog items for the current user's restaurant."""
    query = select(Item).where(Item.restaurant_id == restaurant.id)

    if active_only:
        query = query.where(Item.is_active.is_(True))
    if category:
        query = query.where(Item.category == category)
    if search:
        pattern = f"%{search.lower()}%"
        query = query.where(or_(func.lower(Item.name).like(pattern), func.lower(Item.sku).like(pattern)))

    items = db.execute(query.order_by(Item.name.asc())).scalars().all()

    return ItemListResponse(
        items=[ItemResponse.model_validate(item) for item in items],
        total=len(items),
    )


@router.post("", response_model=ItemResponse, status_code=status.HTTP_201_CREATED)
def create_item(
    item_data: ItemCreate,
    db: Session = Depends(get_db),
    restaurant: Restaurant = Depends(get_current_restaurant),
):
    ensure_sku_available(db, restaurant, item_data.sku)

    item = Item(restaurant_id=restaurant.id, **item_data.model_dump())
    db.add(item)
    db.commit()
    db.refresh(item)
    return item


@router.get("/{item_id}", response_model=ItemResponse)
def get_item(
    item_id: UUID,
    db: Session = Depends(get_db),
    restaurant: Restaurant = Depends(get_current_restaurant),
):
    return get_restaurant_item(db, restaurant, item_id)


@router.patch("/{item_id}", response_model=ItemResponse)
def update_item(
    item_id: UUID,
    update_data: ItemUpdate,
    db: Session = Depends(get_db),
    restaurant: Restaurant = Depends(get_current_restaurant),
):
    """
    Update a catalog item.

    Price changes only affect orders whose items are validated afterwards.
    """
    item = get_restaurant_item(db, restaurant, item_id)

    changes = update_data.model_dump(exclude_unset=True)
    if "sku" in changes:
        ensure_sku_available(db, restaurant, changes["sku"], exclude_id=item.id)

    for key, value in changes.items():
        setattr(item, key, value)

    db.commit()
    db.refresh(item)
    return item


@router.delete("/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_item(
    item_id: UUID,
    db: Session = Depends(get_db),
    restaurant: Restaurant = Depends(get_current_restaurant),
):
    """Delete an item. Existing orders keep their own copy of the line."""
    item = get_restaurant_item(db, restaurant, item_id)
    db.delete(item)
    db.commit()
