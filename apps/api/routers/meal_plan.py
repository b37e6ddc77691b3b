"""
Meal plan endpoints: one planned meal per member, date and meal category.
"""
import logging
from datetime import date
from typing import List, Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from db.models import MealPlan as ORMMealPlan
from db.session import get_session
from error_handler import APIError
from repositories.meal_plans import MealPlanRepository
from repositories.meals import MealRepository

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/meal-plan", tags=["meal-plan"])

MealCategory = Literal["breakfast", "second_breakfast", "lunch", "dinner", "snack"]


class PlanMealRequest(BaseModel):
    date: date
    meal_type: MealCategory
    meal_id: UUID
    member_id: Optional[UUID] = None


class CopyDayRequest(BaseModel):
    source_date: date
    target_date: date
    member_id: Optional[UUID] = None


class MealPlanResponse(BaseModel):
    id: str
    user_id: str
    date: date
    meal_type: str
    meal_id: str
    meal_name: Optional[str]
    is_consumed: bool
    is_skipped: bool

    @staticmethod
    def from_orm(entry: ORMMealPlan) -> "MealPlanResponse":
        return MealPlanResponse(
            id=str(entry.id),
            user_id=str(entry.user_id),
            date=entry.date,
            meal_type=entry.meal_type,
            meal_id=str(entry.meal_id),
            meal_name=entry.meal.name if entry.meal is not None else None,
            is_consumed=bool(entry.is_consumed),
            is_skipped=bool(entry.is_skipped),
        )


class MealPlanListResponse(BaseModel):
    entries: List[MealPlanResponse]


def _parse_ids(household_id: str, user_id: str) -> tuple[UUID, UUID]:
    try:
        return UUID(household_id), UUID(user_id)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid household_id or user_id format")


@router.get("", response_model=MealPlanListResponse)
def list_meal_plan(
    household_id: str = Query(..., description="Household UUID"),
    user_id: str = Query(..., description="Calling member UUID"),
    start_date: date = Query(..., description="First day (inclusive)"),
    end_date: date = Query(..., description="Last day (inclusive)"),
    member_ids: Optional[List[UUID]] = Query(None, description="Members to include; defaults to caller"),
    db: Session = Depends(get_session),
) -> MealPlanListResponse:
    """Planned meals of one or more members in a date range."""
    household_uuid, user_uuid = _parse_ids(household_id, user_id)
    if start_date > end_date:
        raise APIError.handle_validation_error(
            "list meal plan", ValueError("start_date must not be after end_date"), user_id=user_id
        )

    entries = MealPlanRepository(db).get_for_members(
        household_uuid, member_ids or [user_uuid], start_date, end_date
    )
    return MealPlanListResponse(entries=[MealPlanResponse.from_orm(e) for e in entries])


@router.post("", response_model=MealPlanResponse)
def plan_meal(
    payload: PlanMealRequest,
    household_id: str = Query(..., description="Household UUID"),
    user_id: str = Query(..., description="Calling member UUID"),
    db: Session = Depends(get_session),
) -> MealPlanResponse:
    """
    Plan a meal for a member's date and category.

    An already planned slot gets its meal replaced.
    """
    household_uuid, user_uuid = _parse_ids(household_id, user_id)
    if not MealRepository(db).get_by_id(household_uuid, payload.meal_id):
        raise APIError.handle_not_found_error("Meal", str(payload.meal_id), user_id=user_id)

    try:
        entry = MealPlanRepository(db).plan_meal(
            household_uuid,
            payload.member_id or user_uuid,
            payload.date,
            payload.meal_type,
            payload.meal_id,
        )
    except SQLAlchemyError as e:
        db.rollback()
        raise APIError.handle_database_error("plan meal", e, user_id=user_id)
    return MealPlanResponse.from_orm(entry)


@router.post("/{plan_id}/consumed", response_model=MealPlanResponse)
def toggle_consumed(
    plan_id: UUID,
    household_id: str = Query(..., description="Household UUID"),
    user_id: str = Query(..., description="Calling member UUID"),
    db: Session = Depends(get_session),
) -> MealPlanResponse:
    """Flip consumed; a consumed meal is no longer skipped."""
    household_uuid, _ = _parse_ids(household_id, user_id)
    try:
        entry = MealPlanRepository(db).toggle_consumed(household_uuid, plan_id)
    except SQLAlchemyError as e:
        db.rollback()
        raise APIError.handle_database_error("toggle consumed", e, user_id=user_id)

    if not entry:
        raise APIError.handle_not_found_error("Meal plan entry", str(plan_id), user_id=user_id)
    return MealPlanResponse.from_orm(entry)


@router.post("/{plan_id}/skipped", response_model=MealPlanResponse)
def toggle_skipped(
    plan_id: UUID,
    household_id: str = Query(..., description="Household UUID"),
    user_id: str = Query(..., description="Calling member UUID"),
    db: Session = Depends(get_session),
) -> MealPlanResponse:
    """Flip skipped; a skipped meal is no longer consumed."""
    household_uuid, _ = _parse_ids(household_id, user_id)
    try:
        entry = MealPlanRepository(db).toggle_skipped(household_uuid, plan_id)
    except SQLAlchemyError as e:
        db.rollback()
        raise APIError.handle_database_error("toggle skipped", e, user_id=user_id)

    if not entry:
        raise APIError.handle_not_found_error("Meal plan entry", str(plan_id), user_id=user_id)
    return MealPlanResponse.from_orm(entry)


@router.delete("/{plan_id}")
def delete_plan_entry(
    plan_id: UUID,
    household_id: str = Query(..., description="Household UUID"),
    user_id: str = Query(..., description="Calling member UUID"),
    db: Session = Depends(get_session),
) -> dict:
    household_uuid, _ = _parse_ids(household_id, user_id)
    try:
        deleted = MealPlanRepository(db).delete(household_uuid, plan_id)
    except SQLAlchemyError as e:
        db.rollback()
        raise APIError.handle_database_error("delete meal plan entry", e, user_id=user_id)

    if not deleted:
        raise APIError.handle_not_found_error("Meal plan entry", str(plan_id), user_id=user_id)
    return {"status": "deleted", "id": str(plan_id)}


@router.post("/copy-day", response_model=MealPlanListResponse)
def copy_day(
    payload: CopyDayRequest,
    household_id: str = Query(..., description="Household UUID"),
    user_id: str = Query(..., description="Calling member UUID"),
    db: Session = Depends(get_session),
) -> MealPlanListResponse:
    """Copy a member's plan of one day onto another day, replacing what was there."""
    household_uuid, user_uuid = _parse_ids(household_id, user_id)
    if payload.source_date == payload.target_date:
        raise APIError.handle_validation_error(
            "copy meal plan day", ValueError("source_date and target_date are the same"), user_id=user_id
        )

    try:
        entries = MealPlanRepository(db).copy_day(
            household_uuid, payload.member_id or user_uuid, payload.source_date, payload.target_date
        )
    except SQLAlchemyError as e:
        db.rollback()
        raise APIError.handle_database_error("copy meal plan day", e, user_id=user_id)
    return MealPlanListResponse(entries=[MealPlanResponse.from_orm(e) for e in entries])
