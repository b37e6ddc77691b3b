"""
Shopping list endpoints: generation, grouped views, item operations,
dish servings and a server-sent-events change stream.
"""
import logging
from datetime import date, datetime
from typing import List, Literal, Optional, Union
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session, sessionmaker
from starlette.concurrency import run_in_threadpool

from config import settings
from db.models import ShoppingListItem as ORMShoppingListItem
from db.session import get_session, get_session_factory
from error_handler import APIError
from services.change_feed import ShoppingListWatcher, change_feed
from services.context import HouseholdContext
from services.dish_groups import DishGroupKey
from services.errors import ShoppingListError
from services.nutrition import item_weight_grams
from services.servings import ServingRescaler
from services.shopping_generator import ShoppingListGenerator
from services.shopping_grouping import (
    CategoryGroup,
    DishGroup,
    ProductGroup,
    group_by_category,
    group_by_dish,
    group_by_product,
)
from services.shopping_items import ShoppingListService, ShoppingListSnapshot
from worker.jobs import enqueue_generation

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/shopping-list", tags=["shopping-list"])


# ============================================================================
# Pydantic Models
# ============================================================================


class ShoppingListItemResponse(BaseModel):
    """Single persisted shopping list row."""

    id: str
    product_id: Optional[str]
    meal_id: Optional[str]
    source_user_id: Optional[str]
    name: str
    amount: float
    unit_type: Optional[str]
    custom_amount_text: Optional[str]
    weight_grams: Optional[float]
    is_checked: bool
    checked_by: Optional[str]
    checked_at: Optional[str]
    added_by: Optional[str]
    created_at: Optional[str]

    @staticmethod
    def from_orm(item: ORMShoppingListItem) -> "ShoppingListItemResponse":
        """Convert ORM model to response model."""
        weight = None
        if item.product is not None and not item.custom_amount_text:
            weight = round(item_weight_grams(item.amount, item.product), 2)
        return ShoppingListItemResponse(
            id=str(item.id),
            product_id=_str_or_none(item.product_id),
            meal_id=_str_or_none(item.meal_id),
            source_user_id=_str_or_none(item.source_user_id),
            name=item.name or "",
            amount=item.amount,
            unit_type=item.unit_type,
            custom_amount_text=item.custom_amount_text,
            weight_grams=weight,
            is_checked=bool(item.is_checked),
            checked_by=_str_or_none(item.checked_by),
            checked_at=_iso_or_none(item.checked_at),
            added_by=_str_or_none(item.added_by),
            created_at=_iso_or_none(item.created_at),
        )


class DishServingsEntry(BaseModel):
    meal_id: str
    source_user_id: Optional[str]
    servings: float
    # Per-meal value from the older storage form; applies to every member's group
    legacy: bool = False


class ShoppingListStateResponse(BaseModel):
    generated_start_date: Optional[date] = None
    generated_end_date: Optional[date] = None
    version: int = 0
    servings: List[DishServingsEntry] = []


class ShoppingListResponse(BaseModel):
    """Flat list with the household's list state."""

    items: List[ShoppingListItemResponse]
    state: ShoppingListStateResponse


class ProductGroupResponse(BaseModel):
    key: str
    name: str
    product_id: Optional[str]
    category: Optional[str]
    total_amount: float
    unit_type: Optional[str]
    custom_amount_text: Optional[str]
    item_ids: List[str]
    all_checked: bool
    any_checked: bool


class CategoryGroupResponse(BaseModel):
    category: Optional[str]
    label: str
    groups: List[ProductGroupResponse]


class DishGroupResponse(BaseModel):
    meal_id: str
    meal_name: str
    source_user_id: Optional[str]
    servings: float
    all_checked: bool
    items: List[ShoppingListItemResponse]


class GroupedShoppingListResponse(BaseModel):
    """One of the three display groupings; unused sections stay null."""

    by: str
    version: int
    products: Optional[List[ProductGroupResponse]] = None
    categories: Optional[List[CategoryGroupResponse]] = None
    dishes: Optional[List[DishGroupResponse]] = None
    custom: Optional[List[ProductGroupResponse]] = None


class GenerateRequest(BaseModel):
    member_ids: List[UUID] = Field(..., description="Members whose planned meals are included")
    start_date: date
    end_date: date
    replace_existing: Optional[bool] = Field(
        None, description="Clear the current list first; omit to be asked"
    )


class GenerateResponse(BaseModel):
    status: str
    message: str
    item_count: int = 0
    existing_item_count: int = 0
    removed_item_count: int = 0
    state_version: Optional[int] = None
    job_id: Optional[str] = None
    items: List[ShoppingListItemResponse] = []


class CustomItemRequest(BaseModel):
    name: str
    amount: Optional[str] = Field(None, description="Number or free text such as 'a handful'")


class ItemIdsRequest(BaseModel):
    item_ids: List[UUID]
    checked: Optional[bool] = Field(None, description="Target state; omit to flip the group")


class ToggleResponse(BaseModel):
    checked: bool
    updated: int


class CountResponse(BaseModel):
    count: int


class ServingsRequest(BaseModel):
    servings: Union[float, str]
    expected_version: Optional[int] = None


class ServingsResponse(BaseModel):
    meal_id: str
    source_user_id: str
    previous_servings: float
    servings: float
    changed: bool
    state_version: Optional[int]
    items: List[ShoppingListItemResponse]


# ============================================================================
# Helpers
# ============================================================================


def _str_or_none(value) -> Optional[str]:
    return str(value) if value is not None else None


def _iso_or_none(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _context(household_id: str, user_id: str) -> HouseholdContext:
    try:
        return HouseholdContext(household_id=UUID(household_id), user_id=UUID(user_id))
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid household_id or user_id format")


def _state_response(snapshot: ShoppingListSnapshot) -> ShoppingListStateResponse:
    state = snapshot.state
    if state is None:
        return ShoppingListStateResponse()
    entries = [
        DishServingsEntry(
            meal_id=str(key.meal_id),
            source_user_id=_str_or_none(key.source_user_id),
            servings=servings,
        )
        for key, servings in snapshot.servings.items()
    ]
    entries.extend(
        DishServingsEntry(meal_id=str(meal_id), source_user_id=None, servings=servings, legacy=True)
        for meal_id, servings in snapshot.servings.legacy_items()
    )
    return ShoppingListStateResponse(
        generated_start_date=state.generated_start_date,
        generated_end_date=state.generated_end_date,
        version=state.version,
        servings=entries,
    )


def _list_response(snapshot: ShoppingListSnapshot) -> ShoppingListResponse:
    return ShoppingListResponse(
        items=[ShoppingListItemResponse.from_orm(item) for item in snapshot.items],
        state=_state_response(snapshot),
    )


def _group_key(key: tuple) -> str:
    kind, value, checked = key
    return f"{kind}:{value}:{'checked' if checked else 'open'}"


def _product_group_response(group: ProductGroup) -> ProductGroupResponse:
    return ProductGroupResponse(
        key=_group_key(group.key),
        name=group.name,
        product_id=_str_or_none(group.product_id),
        category=(group.product.category or None) if group.product is not None else None,
        total_amount=round(group.total_amount, 2),
        unit_type=group.unit_type,
        custom_amount_text=group.custom_amount_text,
        item_ids=[str(item_id) for item_id in group.item_ids],
        all_checked=group.all_checked,
        any_checked=group.any_checked,
    )


def _category_response(category: CategoryGroup) -> CategoryGroupResponse:
    return CategoryGroupResponse(
        category=category.category,
        label=category.label,
        groups=[_product_group_response(group) for group in category.groups],
    )


def _dish_response(dish: DishGroup) -> DishGroupResponse:
    return DishGroupResponse(
        meal_id=str(dish.meal_id),
        meal_name=getattr(dish.meal, "name", "") or "",
        source_user_id=_str_or_none(dish.source_user_id),
        servings=dish.servings,
        all_checked=dish.all_checked,
        items=[ShoppingListItemResponse.from_orm(item) for item in dish.items],
    )


# ============================================================================
# Endpoints
# ============================================================================


@router.get("", response_model=ShoppingListResponse)
def get_shopping_list(
    household_id: str = Query(..., description="Household UUID"),
    user_id: str = Query(..., description="Calling member UUID"),
    db: Session = Depends(get_session),
) -> ShoppingListResponse:
    """Flat list of all rows plus generated range and serving multipliers."""
    context = _context(household_id, user_id)
    try:
        snapshot = ShoppingListService(db).snapshot(context)
    except ShoppingListError as e:
        raise APIError.handle_shopping_list_error(e, user_id=user_id)
    return _list_response(snapshot)


@router.get("/grouped", response_model=GroupedShoppingListResponse)
def get_grouped_shopping_list(
    household_id: str = Query(..., description="Household UUID"),
    user_id: str = Query(..., description="Calling member UUID"),
    by: Literal["product", "category", "dish"] = Query("product", description="Grouping mode"),
    db: Session = Depends(get_session),
) -> GroupedShoppingListResponse:
    """
    Shopping list in one of the display groupings.

    Args:
        by: product sums rows across dishes, category buckets the product
            groups, dish keeps one group per (meal, member)

    Returns:
        Grouped list; only the section for the requested mode is filled
    """
    context = _context(household_id, user_id)
    try:
        snapshot = ShoppingListService(db).snapshot(context)
    except ShoppingListError as e:
        raise APIError.handle_shopping_list_error(e, user_id=user_id)

    response = GroupedShoppingListResponse(by=by, version=snapshot.version)
    if by == "product":
        response.products = [_product_group_response(g) for g in group_by_product(snapshot.items)]
    elif by == "category":
        response.categories = [_category_response(c) for c in group_by_category(snapshot.items)]
    else:
        view = group_by_dish(snapshot.items, snapshot.servings)
        response.dishes = [_dish_response(dish) for dish in view.dishes]
        response.custom = [_product_group_response(g) for g in view.custom]
    return response


@router.post("/generate", response_model=GenerateResponse)
async def generate_shopping_list(
    payload: GenerateRequest,
    household_id: str = Query(..., description="Household UUID"),
    user_id: str = Query(..., description="Calling member UUID"),
    db: Session = Depends(get_session),
) -> GenerateResponse:
    """
    Generate the list from the meal plan of the selected members.

    When the list is not empty and replace_existing is omitted, nothing is
    written and status is confirmation_required.
    """
    context = _context(household_id, user_id)
    APIError.log_operation_start(
        "generate shopping list", user_id=user_id, extra_context={"household_id": household_id}
    )

    if settings.ENABLE_ASYNC_JOBS:
        try:
            job_id = await enqueue_generation(
                context,
                payload.member_ids,
                payload.start_date,
                payload.end_date,
                payload.replace_existing,
            )
            if job_id is None:
                return GenerateResponse(
                    status="already_queued",
                    message="A shopping list generation is already running for this household",
                )
            return GenerateResponse(status="queued", message="Generation queued", job_id=job_id)
        except Exception as e:
            logger.warning(f"Failed to enqueue generation job, generating inline: {e}")

    try:
        result = await run_in_threadpool(
            ShoppingListGenerator(db).generate,
            context,
            payload.member_ids,
            payload.start_date,
            payload.end_date,
            payload.replace_existing,
        )
    except ShoppingListError as e:
        raise APIError.handle_shopping_list_error(e, user_id=user_id)

    APIError.log_operation_success(
        "generate shopping list",
        user_id=user_id,
        extra_context={"household_id": household_id, "status": result.status},
    )
    return GenerateResponse(
        status=result.status,
        message=result.message,
        item_count=len(result.items),
        existing_item_count=result.existing_item_count,
        removed_item_count=result.removed_item_count,
        state_version=result.state_version,
        items=[ShoppingListItemResponse.from_orm(item) for item in result.items],
    )


@router.post("/items", response_model=ShoppingListItemResponse)
def add_custom_item(
    payload: CustomItemRequest,
    household_id: str = Query(..., description="Household UUID"),
    user_id: str = Query(..., description="Calling member UUID"),
    db: Session = Depends(get_session),
) -> ShoppingListItemResponse:
    """Add a hand-written item."""
    context = _context(household_id, user_id)
    try:
        item = ShoppingListService(db).add_custom_item(context, payload.name, payload.amount)
    except ShoppingListError as e:
        raise APIError.handle_shopping_list_error(e, user_id=user_id)
    return ShoppingListItemResponse.from_orm(item)


@router.post("/toggle", response_model=ToggleResponse)
def toggle_items(
    payload: ItemIdsRequest,
    household_id: str = Query(..., description="Household UUID"),
    user_id: str = Query(..., description="Calling member UUID"),
    db: Session = Depends(get_session),
) -> ToggleResponse:
    """Check or uncheck every row of a group at once."""
    context = _context(household_id, user_id)
    service = ShoppingListService(db)
    try:
        if payload.checked is None:
            checked, updated = service.toggle(context, payload.item_ids)
        else:
            checked = payload.checked
            updated = service.set_checked(context, payload.item_ids, checked)
    except ShoppingListError as e:
        raise APIError.handle_shopping_list_error(e, user_id=user_id)
    return ToggleResponse(checked=checked, updated=updated)


@router.delete("/items", response_model=CountResponse)
def delete_items(
    payload: ItemIdsRequest,
    household_id: str = Query(..., description="Household UUID"),
    user_id: str = Query(..., description="Calling member UUID"),
    db: Session = Depends(get_session),
) -> CountResponse:
    """Delete a product group's rows."""
    context = _context(household_id, user_id)
    try:
        deleted = ShoppingListService(db).delete_items(context, payload.item_ids)
    except ShoppingListError as e:
        raise APIError.handle_shopping_list_error(e, user_id=user_id)
    return CountResponse(count=deleted)


@router.delete("/checked", response_model=CountResponse)
def clear_checked(
    household_id: str = Query(..., description="Household UUID"),
    user_id: str = Query(..., description="Calling member UUID"),
    db: Session = Depends(get_session),
) -> CountResponse:
    """Delete every checked row."""
    context = _context(household_id, user_id)
    try:
        deleted = ShoppingListService(db).clear_checked(context)
    except ShoppingListError as e:
        raise APIError.handle_shopping_list_error(e, user_id=user_id)
    return CountResponse(count=deleted)


@router.put("/dishes/{meal_id}/{source_user_id}/servings", response_model=ServingsResponse)
def set_dish_servings(
    meal_id: UUID,
    source_user_id: UUID,
    payload: ServingsRequest,
    household_id: str = Query(..., description="Household UUID"),
    user_id: str = Query(..., description="Calling member UUID"),
    db: Session = Depends(get_session),
) -> ServingsResponse:
    """
    Change a dish group's servings and scale its amounts.

    Args:
        payload.servings: New multiplier, a finite number > 0
        payload.expected_version: List state version the client last saw

    Returns:
        Previous and new multiplier with the rescaled rows; 409 if the
        state changed concurrently
    """
    context = _context(household_id, user_id)
    group = DishGroupKey(meal_id, source_user_id)
    try:
        result = ServingRescaler(db).rescale(
            context, group, payload.servings, expected_version=payload.expected_version
        )
    except ShoppingListError as e:
        raise APIError.handle_shopping_list_error(e, user_id=user_id)

    return ServingsResponse(
        meal_id=str(meal_id),
        source_user_id=str(source_user_id),
        previous_servings=result.previous_servings,
        servings=result.servings,
        changed=result.changed,
        state_version=result.state_version,
        items=[ShoppingListItemResponse.from_orm(item) for item in result.items],
    )


@router.delete("/dishes/{meal_id}/{source_user_id}", response_model=CountResponse)
def delete_dish_group(
    meal_id: UUID,
    source_user_id: UUID,
    household_id: str = Query(..., description="Household UUID"),
    user_id: str = Query(..., description="Calling member UUID"),
    db: Session = Depends(get_session),
) -> CountResponse:
    """Delete a dish group's rows and its serving multiplier."""
    context = _context(household_id, user_id)
    try:
        deleted = ShoppingListService(db).delete_dish_group(
            context, DishGroupKey(meal_id, source_user_id)
        )
    except ShoppingListError as e:
        raise APIError.handle_shopping_list_error(e, user_id=user_id)
    return CountResponse(count=deleted)


@router.get("/events")
async def shopping_list_events(
    household_id: str = Query(..., description="Household UUID"),
    user_id: str = Query(..., description="Calling member UUID"),
    limit: Optional[int] = Query(None, ge=1, description="Stop after this many snapshots"),
    session_factory: sessionmaker = Depends(get_session_factory),
) -> StreamingResponse:
    """
    Server-sent events with a full list snapshot on connect, after every
    change and at least every SHOPPING_LIST_REFRESH_SECONDS.
    """
    context = _context(household_id, user_id)

    def load_snapshot() -> ShoppingListResponse:
        db = session_factory()
        try:
            return _list_response(ShoppingListService(db).snapshot(context))
        finally:
            db.close()

    watcher = ShoppingListWatcher(
        change_feed,
        context.household_id,
        load_snapshot,
        interval=settings.SHOPPING_LIST_REFRESH_SECONDS,
    )

    async def stream():
        async for event in watcher.events(limit=limit):
            yield f"event: {event.reason}\ndata: {event.data.model_dump_json()}\n\n"

    return StreamingResponse(stream(), media_type="text/event-stream")
