"""
Product catalog endpoints.
"""
import logging
from typing import List, Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from db.models import Product as ORMProduct
from db.session import get_session
from error_handler import APIError
from repositories.products import ProductRepository

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/products", tags=["products"])

UnitType = Literal["100g", "piece", "tablespoon", "teaspoon"]


# ============================================================================
# Pydantic Models
# ============================================================================


class ProductRequest(BaseModel):
    """Request body for creating a product."""

    name: str = Field(..., min_length=1)
    category: str = ""
    unit_type: UnitType = "100g"
    unit_weight_grams: Optional[float] = Field(None, gt=0, description="Grams per unit")
    kcal_per_unit: float = Field(..., ge=0, description="Calories per 100 g")
    protein: Optional[float] = Field(None, ge=0)
    fat: Optional[float] = Field(None, ge=0)
    carbs: Optional[float] = Field(None, ge=0)


class ProductPatchRequest(BaseModel):
    """Request body for updating a product; omitted fields stay unchanged."""

    name: Optional[str] = Field(None, min_length=1)
    category: Optional[str] = None
    unit_type: Optional[UnitType] = None
    unit_weight_grams: Optional[float] = Field(None, gt=0)
    kcal_per_unit: Optional[float] = Field(None, ge=0)
    protein: Optional[float] = Field(None, ge=0)
    fat: Optional[float] = Field(None, ge=0)
    carbs: Optional[float] = Field(None, ge=0)


class ProductResponse(BaseModel):
    id: str
    household_id: str
    name: str
    category: str
    unit_type: str
    unit_weight_grams: Optional[float]
    kcal_per_unit: float
    protein: Optional[float]
    fat: Optional[float]
    carbs: Optional[float]
    created_at: Optional[str]

    @staticmethod
    def from_orm(product: ORMProduct) -> "ProductResponse":
        """Convert ORM model to response model."""
        return ProductResponse(
            id=str(product.id),
            household_id=str(product.household_id),
            name=product.name,
            category=product.category or "",
            unit_type=product.unit_type,
            unit_weight_grams=product.unit_weight_grams,
            kcal_per_unit=product.kcal_per_unit,
            protein=product.protein,
            fat=product.fat,
            carbs=product.carbs,
            created_at=product.created_at.isoformat() if product.created_at else None,
        )


class ProductListResponse(BaseModel):
    items: List[ProductResponse]
    total: int
    skip: int
    limit: int


def _parse_ids(household_id: str, user_id: str) -> tuple[UUID, UUID]:
    try:
        return UUID(household_id), UUID(user_id)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid household_id or user_id format")


# ============================================================================
# Endpoints
# ============================================================================


@router.get("", response_model=ProductListResponse)
def list_products(
    household_id: str = Query(..., description="Household UUID"),
    user_id: str = Query(..., description="Calling member UUID"),
    category: Optional[str] = Query(None, description="Exact category filter"),
    query: Optional[str] = Query(None, description="Name search"),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    db: Session = Depends(get_session),
) -> ProductListResponse:
    """List the household's products, sorted by name."""
    household_uuid, _ = _parse_ids(household_id, user_id)
    products, total = ProductRepository(db).get_all(
        household_uuid, category=category, query=query, skip=skip, limit=limit
    )
    return ProductListResponse(
        items=[ProductResponse.from_orm(p) for p in products],
        total=total,
        skip=skip,
        limit=limit,
    )


@router.post("", response_model=ProductResponse)
def create_product(
    payload: ProductRequest,
    household_id: str = Query(..., description="Household UUID"),
    user_id: str = Query(..., description="Calling member UUID"),
    db: Session = Depends(get_session),
) -> ProductResponse:
    """
    Create a product.

    Without unit_weight_grams the weight defaults by unit type
    (100g: 1, tablespoon: 15, teaspoon: 5, piece: 100).
    """
    household_uuid, user_uuid = _parse_ids(household_id, user_id)
    try:
        product = ProductRepository(db).create(
            household_id=household_uuid,
            name=payload.name.strip(),
            kcal_per_unit=payload.kcal_per_unit,
            unit_type=payload.unit_type,
            unit_weight_grams=payload.unit_weight_grams,
            category=payload.category.strip(),
            protein=payload.protein,
            fat=payload.fat,
            carbs=payload.carbs,
            created_by=user_uuid,
        )
    except SQLAlchemyError as e:
        db.rollback()
        raise APIError.handle_database_error("create product", e, user_id=user_id)

    APIError.log_operation_success("create product", user_id=user_id, extra_context={"product_id": str(product.id)})
    return ProductResponse.from_orm(product)


@router.get("/{product_id}", response_model=ProductResponse)
def get_product(
    product_id: UUID,
    household_id: str = Query(..., description="Household UUID"),
    user_id: str = Query(..., description="Calling member UUID"),
    db: Session = Depends(get_session),
) -> ProductResponse:
    household_uuid, _ = _parse_ids(household_id, user_id)
    product = ProductRepository(db).get_by_id(household_uuid, product_id)
    if not product:
        raise APIError.handle_not_found_error("Product", str(product_id), user_id=user_id)
    return ProductResponse.from_orm(product)


@router.patch("/{product_id}", response_model=ProductResponse)
def update_product(
    product_id: UUID,
    payload: ProductPatchRequest,
    household_id: str = Query(..., description="Household UUID"),
    user_id: str = Query(..., description="Calling member UUID"),
    db: Session = Depends(get_session),
) -> ProductResponse:
    """Update product fields. Changing unit_type alone keeps an explicit weight."""
    household_uuid, _ = _parse_ids(household_id, user_id)
    try:
        product = ProductRepository(db).update(
            household_uuid, product_id, **payload.model_dump(exclude_unset=True)
        )
    except SQLAlchemyError as e:
        db.rollback()
        raise APIError.handle_database_error("update product", e, user_id=user_id)

    if not product:
        raise APIError.handle_not_found_error("Product", str(product_id), user_id=user_id)
    return ProductResponse.from_orm(product)


@router.delete("/{product_id}")
def delete_product(
    product_id: UUID,
    household_id: str = Query(..., description="Household UUID"),
    user_id: str = Query(..., description="Calling member UUID"),
    db: Session = Depends(get_session),
) -> dict:
    """
    Delete a product.

    Shopping list rows keep their name; the store clears their product
    link. A product still used by a meal is reported as a conflict.
    """
    household_uuid, _ = _parse_ids(household_id, user_id)
    try:
        deleted = ProductRepository(db).delete(household_uuid, product_id)
    except IntegrityError as e:
        db.rollback()
        raise APIError.handle_conflict_error("delete product", e, user_id=user_id)
    except SQLAlchemyError as e:
        db.rollback()
        raise APIError.handle_database_error("delete product", e, user_id=user_id)

    if not deleted:
        raise APIError.handle_not_found_error("Product", str(product_id), user_id=user_id)
    return {"status": "deleted", "id": str(product_id)}
