from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session
from typing import List, Optional
import logging

from ..database import get_db
from ..models.product import Product
from ..schemas.product import ProductCreate, ProductUpdate, ProductResponse
from ..utils.dependencies import get_actor_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/products", tags=["Productos"])


@router.get("", response_model=List[ProductResponse])
def list_products(
    active: Optional[bool] = Query(None),
    db: Session = Depends(get_db)
):
    """Rental catalogue, optionally filtered by active flag."""
    query = db.query(Product)
    if active is not None:
        query = query.filter(Product.is_active == active)
    return query.order_by(Product.name).all()


@router.get("/{product_id}", response_model=ProductResponse)
def get_product(product_id: str, db: Session = Depends(get_db)):
    product = db.get(Product, product_id)
    if not product:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Producto no encontrado")
    return product


@router.post("", response_model=ProductResponse, status_code=status.HTTP_201_CREATED)
def create_product(
    data: ProductCreate,
    db: Session = Depends(get_db),
    actor: Optional[str] = Depends(get_actor_id)
):
    """
    Register a rentable product.

    Stock cells reference products by id, so a product must exist before
    capacity can be provisioned or booked against it.
    """
    if data.id and db.get(Product, data.id):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Ya existe un producto con ese id")

    fields = data.model_dump(exclude_none=True)
    fields["product_type"] = data.product_type.value
    product = Product(**fields, created_by=actor)
    db.add(product)
    db.commit()
    db.refresh(product)

    logger.info(f"Product {product.id} ({product.name}) created by {actor}")
    return product


@router.put("/{product_id}", response_model=ProductResponse)
def update_product(
    product_id: str,
    data: ProductUpdate,
    db: Session = Depends(get_db)
):
    product = db.get(Product, product_id)
    if not product:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Producto no encontrado")

    update_data = data.model_dump(exclude_unset=True)
    if update_data.get("product_type") is not None:
        update_data["product_type"] = update_data["product_type"].value
    for field, value in update_data.items():
        if value is None and field != "description":
            continue
        setattr(product, field, value)

    db.commit()
    db.refresh(product)
    return product
