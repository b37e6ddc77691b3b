"""
Meals router: meal CRUD, base ingredients, per-member overrides and
nutrition of the resolved ingredient list.
"""
import logging
from typing import List, Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from db.models import Meal as ORMMeal
from db.session import get_session
from error_handler import APIError
from repositories.meals import MealRepository
from repositories.products import ProductRepository
from services.ingredients import IngredientResolver, ResolvedIngredient
from services.nutrition import item_weight_grams, meal_nutrition

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/meals", tags=["meals"])

MealCategory = Literal["breakfast", "second_breakfast", "lunch", "dinner", "snack"]


# Request/Response models
class MealItemRequest(BaseModel):
    product_id: UUID
    amount: float = Field(..., gt=0, description="Quantity in the product's unit")
    unit_type: Optional[str] = None


class MealCreateRequest(BaseModel):
    """Create meal request."""

    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    primary_category: Optional[MealCategory] = None
    alternative_categories: List[MealCategory] = []
    items: List[MealItemRequest] = []


class MealPatchRequest(BaseModel):
    """Update meal request."""

    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    primary_category: Optional[MealCategory] = None
    alternative_categories: Optional[List[MealCategory]] = None


class ItemListRequest(BaseModel):
    items: List[MealItemRequest]


class MealItemResponse(BaseModel):
    product_id: str
    product_name: Optional[str]
    amount: float
    unit_type: str
    weight_grams: float


class MealResponse(BaseModel):
    """Meal response with base items."""

    id: str
    household_id: str
    user_id: Optional[str]
    name: str
    description: Optional[str]
    primary_category: Optional[str]
    alternative_categories: List[str]
    items: List[MealItemResponse]
    created_at: Optional[str]

    @staticmethod
    def from_orm(meal: ORMMeal) -> "MealResponse":
        return MealResponse(
            id=str(meal.id),
            household_id=str(meal.household_id),
            user_id=str(meal.user_id) if meal.user_id else None,
            name=meal.name,
            description=meal.description,
            primary_category=meal.primary_category,
            alternative_categories=list(meal.alternative_categories or []),
            items=[_item_response(item) for item in meal.items],
            created_at=meal.created_at.isoformat() if meal.created_at else None,
        )


class MealListResponse(BaseModel):
    meals: List[MealResponse]
    total: int
    skip: int
    limit: int


class IngredientResponse(MealItemResponse):
    source: str


class ResolvedIngredientsResponse(BaseModel):
    meal_id: str
    member_id: str
    has_override: bool
    ingredients: List[IngredientResponse]


class NutritionResponse(BaseModel):
    meal_id: str
    member_id: Optional[str]
    servings: float
    kcal: float
    protein: float
    fat: float
    carbs: float


def _item_response(item) -> MealItemResponse:
    return MealItemResponse(
        product_id=str(item.product_id),
        product_name=item.product.name if item.product is not None else None,
        amount=item.amount,
        unit_type=item.unit_type,
        weight_grams=round(item_weight_grams(item.amount, item.product), 2),
    )


def _ingredient_response(ingredient: ResolvedIngredient) -> IngredientResponse:
    return IngredientResponse(
        **_item_response(ingredient).model_dump(),
        source=ingredient.source,
    )


def _parse_ids(household_id: str, user_id: str) -> tuple[UUID, UUID]:
    try:
        return UUID(household_id), UUID(user_id)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid household_id or user_id format")


def _validated_items(
    db: Session, household_id: UUID, items: List[MealItemRequest], user_id: str
) -> List[dict]:
    """Check items reference distinct products of the household."""
    seen = set()
    product_repo = ProductRepository(db)
    rows = []
    for item in items:
        if item.product_id in seen:
            raise APIError.handle_validation_error(
                "validate meal items",
                ValueError(f"Product {item.product_id} is listed more than once"),
                user_id=user_id,
            )
        seen.add(item.product_id)

        product = product_repo.get_by_id(household_id, item.product_id)
        if not product:
            raise APIError.handle_validation_error(
                "validate meal items",
                ValueError(f"Unknown product {item.product_id}"),
                user_id=user_id,
            )
        rows.append(
            {
                "product_id": item.product_id,
                "amount": item.amount,
                "unit_type": item.unit_type or product.unit_type,
            }
        )
    return rows


@router.get("", response_model=MealListResponse)
def list_meals(
    household_id: str = Query(..., description="Household UUID"),
    user_id: str = Query(..., description="Calling member UUID"),
    category: Optional[MealCategory] = None,
    query: Optional[str] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_session),
) -> MealListResponse:
    """
    List meals with optional filters.

    Args:
        category: Matches the primary or any alternative category
        query: Search in name
    """
    household_uuid, _ = _parse_ids(household_id, user_id)
    meals, total = MealRepository(db).get_all(
        household_uuid, category=category, query=query, skip=skip, limit=limit
    )
    return MealListResponse(
        meals=[MealResponse.from_orm(meal) for meal in meals],
        total=total,
        skip=skip,
        limit=limit,
    )


@router.post("", response_model=MealResponse)
def create_meal(
    payload: MealCreateRequest,
    household_id: str = Query(..., description="Household UUID"),
    user_id: str = Query(..., description="Calling member UUID"),
    db: Session = Depends(get_session),
) -> MealResponse:
    """Create a meal with its base ingredients."""
    household_uuid, user_uuid = _parse_ids(household_id, user_id)
    items = _validated_items(db, household_uuid, payload.items, user_id)

    try:
        meal = MealRepository(db).create(
            household_id=household_uuid,
            name=payload.name.strip(),
            user_id=user_uuid,
            description=payload.description,
            primary_category=payload.primary_category,
            alternative_categories=payload.alternative_categories,
            items=items,
        )
    except SQLAlchemyError as e:
        db.rollback()
        raise APIError.handle_database_error("create meal", e, user_id=user_id)

    logger.info(f"Meal created: {meal.id} with {len(items)} items")
    return MealResponse.from_orm(meal)


@router.get("/{meal_id}", response_model=MealResponse)
def get_meal(
    meal_id: UUID,
    household_id: str = Query(..., description="Household UUID"),
    user_id: str = Query(..., description="Calling member UUID"),
    db: Session = Depends(get_session),
) -> MealResponse:
    household_uuid, _ = _parse_ids(household_id, user_id)
    meal = MealRepository(db).get_by_id(household_uuid, meal_id)
    if not meal:
        raise APIError.handle_not_found_error("Meal", str(meal_id), user_id=user_id)
    return MealResponse.from_orm(meal)


@router.patch("/{meal_id}", response_model=MealResponse)
def update_meal(
    meal_id: UUID,
    payload: MealPatchRequest,
    household_id: str = Query(..., description="Household UUID"),
    user_id: str = Query(..., description="Calling member UUID"),
    db: Session = Depends(get_session),
) -> MealResponse:
    household_uuid, _ = _parse_ids(household_id, user_id)
    try:
        meal = MealRepository(db).update(
            household_uuid, meal_id, **payload.model_dump(exclude_unset=True)
        )
    except SQLAlchemyError as e:
        db.rollback()
        raise APIError.handle_database_error("update meal", e, user_id=user_id)

    if not meal:
        raise APIError.handle_not_found_error("Meal", str(meal_id), user_id=user_id)
    return MealResponse.from_orm(meal)


@router.put("/{meal_id}/items", response_model=MealResponse)
def replace_meal_items(
    meal_id: UUID,
    payload: ItemListRequest,
    household_id: str = Query(..., description="Household UUID"),
    user_id: str = Query(..., description="Calling member UUID"),
    db: Session = Depends(get_session),
) -> MealResponse:
    """Replace the base ingredient list. Overrides are left as they are."""
    household_uuid, _ = _parse_ids(household_id, user_id)
    items = _validated_items(db, household_uuid, payload.items, user_id)
    try:
        meal = MealRepository(db).replace_items(household_uuid, meal_id, items)
    except SQLAlchemyError as e:
        db.rollback()
        raise APIError.handle_database_error("replace meal items", e, user_id=user_id)

    if not meal:
        raise APIError.handle_not_found_error("Meal", str(meal_id), user_id=user_id)
    return MealResponse.from_orm(meal)


@router.delete("/{meal_id}")
def delete_meal(
    meal_id: UUID,
    household_id: str = Query(..., description="Household UUID"),
    user_id: str = Query(..., description="Calling member UUID"),
    db: Session = Depends(get_session),
) -> dict:
    """Delete a meal with its items and overrides. A planned meal is a conflict."""
    household_uuid, _ = _parse_ids(household_id, user_id)
    try:
        deleted = MealRepository(db).delete(household_uuid, meal_id)
    except IntegrityError as e:
        db.rollback()
        raise APIError.handle_conflict_error("delete meal", e, user_id=user_id)
    except SQLAlchemyError as e:
        db.rollback()
        raise APIError.handle_database_error("delete meal", e, user_id=user_id)

    if not deleted:
        raise APIError.handle_not_found_error("Meal", str(meal_id), user_id=user_id)
    return {"status": "deleted", "id": str(meal_id)}


@router.get("/{meal_id}/ingredients", response_model=ResolvedIngredientsResponse)
def get_resolved_ingredients(
    meal_id: UUID,
    household_id: str = Query(..., description="Household UUID"),
    user_id: str = Query(..., description="Calling member UUID"),
    member_id: Optional[str] = Query(None, description="Member to resolve for; defaults to caller"),
    db: Session = Depends(get_session),
) -> ResolvedIngredientsResponse:
    """Effective ingredient list of a meal for one member."""
    household_uuid, user_uuid = _parse_ids(household_id, user_id)
    member_uuid = _parse_ids(household_id, member_id)[1] if member_id else user_uuid

    if not MealRepository(db).get_by_id(household_uuid, meal_id):
        raise APIError.handle_not_found_error("Meal", str(meal_id), user_id=user_id)

    ingredients = IngredientResolver(db).resolve(meal_id, member_uuid)
    return ResolvedIngredientsResponse(
        meal_id=str(meal_id),
        member_id=str(member_uuid),
        has_override=any(i.source == "override" for i in ingredients),
        ingredients=[_ingredient_response(i) for i in ingredients],
    )


@router.put("/{meal_id}/overrides/{member_id}", response_model=ResolvedIngredientsResponse)
def replace_overrides(
    meal_id: UUID,
    member_id: UUID,
    payload: ItemListRequest,
    household_id: str = Query(..., description="Household UUID"),
    user_id: str = Query(..., description="Calling member UUID"),
    db: Session = Depends(get_session),
) -> ResolvedIngredientsResponse:
    """
    Replace a member's ingredient list for a meal.

    The override list replaces the base items as a whole; products not
    listed are not eaten by that member. An empty list removes the override.
    """
    household_uuid, _ = _parse_ids(household_id, user_id)
    items = _validated_items(db, household_uuid, payload.items, user_id)

    try:
        overrides = MealRepository(db).replace_overrides(household_uuid, meal_id, member_id, items)
    except SQLAlchemyError as e:
        db.rollback()
        raise APIError.handle_database_error("replace meal overrides", e, user_id=user_id)

    if overrides is None:
        raise APIError.handle_not_found_error("Meal", str(meal_id), user_id=user_id)

    ingredients = IngredientResolver(db).resolve(meal_id, member_id)
    return ResolvedIngredientsResponse(
        meal_id=str(meal_id),
        member_id=str(member_id),
        has_override=bool(overrides),
        ingredients=[_ingredient_response(i) for i in ingredients],
    )


@router.delete("/{meal_id}/overrides/{member_id}")
def clear_overrides(
    meal_id: UUID,
    member_id: UUID,
    household_id: str = Query(..., description="Household UUID"),
    user_id: str = Query(..., description="Calling member UUID"),
    db: Session = Depends(get_session),
) -> dict:
    """Return a member to the meal's base ingredients."""
    household_uuid, _ = _parse_ids(household_id, user_id)
    try:
        deleted = MealRepository(db).clear_overrides(household_uuid, meal_id, member_id)
    except SQLAlchemyError as e:
        db.rollback()
        raise APIError.handle_database_error("clear meal overrides", e, user_id=user_id)

    if deleted is None:
        raise APIError.handle_not_found_error("Meal", str(meal_id), user_id=user_id)
    return {"status": "cleared", "deleted": deleted}


@router.get("/{meal_id}/nutrition", response_model=NutritionResponse)
def get_meal_nutrition(
    meal_id: UUID,
    household_id: str = Query(..., description="Household UUID"),
    user_id: str = Query(..., description="Calling member UUID"),
    member_id: Optional[str] = Query(None, description="Use this member's ingredient list"),
    servings: float = Query(1.0, gt=0),
    db: Session = Depends(get_session),
) -> NutritionResponse:
    """
    Nutrition totals of a meal.

    Without member_id the base items are used; with it, the member's
    override list when one exists.
    """
    household_uuid, _ = _parse_ids(household_id, user_id)
    meal = MealRepository(db).get_by_id(household_uuid, meal_id)
    if not meal:
        raise APIError.handle_not_found_error("Meal", str(meal_id), user_id=user_id)

    if member_id:
        member_uuid = _parse_ids(household_id, member_id)[1]
        ingredients = IngredientResolver(db).resolve(meal_id, member_uuid)
    else:
        member_uuid = None
        ingredients = meal.items

    totals = meal_nutrition(ingredients, servings=servings).rounded()
    return NutritionResponse(
        meal_id=str(meal_id),
        member_id=str(member_uuid) if member_uuid else None,
        servings=servings,
        kcal=totals.kcal,
        protein=totals.protein,
        fat=totals.fat,
        carbs=totals.carbs,
    )
