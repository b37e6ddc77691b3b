"""
SQLAlchemy ORM models for the Household Planner.
All shared entities are scoped by household_id; user ids are opaque UUIDs
owned by the external auth service.
"""
from datetime import date, datetime, timezone
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    UUID as SQLAUUID,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

UNIT_TYPES = ("100g", "piece", "tablespoon", "teaspoon")
MEAL_CATEGORIES = ("breakfast", "second_breakfast", "lunch", "dinner", "snack")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class Product(Base):
    """Catalog product with nutrition values per 100 g."""
    __tablename__ = "products"

    id: Mapped[UUID] = mapped_column(SQLAUUID, primary_key=True, default=uuid4)
    household_id: Mapped[UUID] = mapped_column(SQLAUUID, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    category: Mapped[str] = mapped_column(String, nullable=False, default="")
    unit_type: Mapped[str] = mapped_column(String(20), nullable=False, default="100g")
    # Weight of one preferred unit in grams, e.g. 1 piece = 300
    unit_weight_grams: Mapped[float | None] = mapped_column(Float, nullable=True)
    kcal_per_unit: Mapped[float] = mapped_column(Float, nullable=False)
    protein: Mapped[float | None] = mapped_column(Float, nullable=True)
    fat: Mapped[float | None] = mapped_column(Float, nullable=True)
    carbs: Mapped[float | None] = mapped_column(Float, nullable=True)
    created_by: Mapped[UUID | None] = mapped_column(SQLAUUID, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (Index("ix_products_household_name", "household_id", "name"),)


class Meal(Base):
    """Meal composed from products; items are the shared base recipe."""
    __tablename__ = "meals"

    id: Mapped[UUID] = mapped_column(SQLAUUID, primary_key=True, default=uuid4)
    household_id: Mapped[UUID] = mapped_column(SQLAUUID, nullable=False, index=True)
    user_id: Mapped[UUID | None] = mapped_column(SQLAUUID, nullable=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    primary_category: Mapped[str | None] = mapped_column(String(30), nullable=True)
    alternative_categories: Mapped[list] = mapped_column(JSON, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    items: Mapped[list["MealItem"]] = relationship(
        back_populates="meal", cascade="all, delete-orphan", order_by="MealItem.created_at"
    )
    overrides: Mapped[list["MealItemOverride"]] = relationship(
        back_populates="meal", cascade="all, delete-orphan"
    )


class MealItem(Base):
    """Base ingredient of a meal."""
    __tablename__ = "meal_items"

    id: Mapped[UUID] = mapped_column(SQLAUUID, primary_key=True, default=uuid4)
    meal_id: Mapped[UUID] = mapped_column(SQLAUUID, ForeignKey("meals.id"), nullable=False)
    product_id: Mapped[UUID] = mapped_column(SQLAUUID, ForeignKey("products.id"), nullable=False)
    amount: Mapped[float] = mapped_column(Float, nullable=False)
    unit_type: Mapped[str] = mapped_column(String(20), nullable=False, default="100g")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    meal: Mapped[Meal] = relationship(back_populates="items")
    product: Mapped[Product | None] = relationship()

    __table_args__ = (Index("ix_meal_items_meal_id", "meal_id"),)


class MealItemOverride(Base):
    """Per-member replacement ingredient row for a meal."""
    __tablename__ = "meal_item_overrides"

    id: Mapped[UUID] = mapped_column(SQLAUUID, primary_key=True, default=uuid4)
    meal_id: Mapped[UUID] = mapped_column(SQLAUUID, ForeignKey("meals.id"), nullable=False)
    user_id: Mapped[UUID] = mapped_column(SQLAUUID, nullable=False)
    product_id: Mapped[UUID] = mapped_column(SQLAUUID, ForeignKey("products.id"), nullable=False)
    amount: Mapped[float] = mapped_column(Float, nullable=False)
    unit_type: Mapped[str] = mapped_column(String(20), nullable=False, default="100g")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    meal: Mapped[Meal] = relationship(back_populates="overrides")
    product: Mapped[Product | None] = relationship()

    __table_args__ = (
        UniqueConstraint("meal_id", "user_id", "product_id", name="uq_meal_item_overrides_key"),
        Index("ix_meal_item_overrides_meal_user", "meal_id", "user_id"),
    )


class MealPlan(Base):
    """A meal planned for one member on one day in one category."""
    __tablename__ = "meal_plan"

    id: Mapped[UUID] = mapped_column(SQLAUUID, primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(SQLAUUID, nullable=False)
    household_id: Mapped[UUID] = mapped_column(SQLAUUID, nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    meal_type: Mapped[str] = mapped_column(String(30), nullable=False)
    meal_id: Mapped[UUID] = mapped_column(SQLAUUID, ForeignKey("meals.id"), nullable=False)
    is_consumed: Mapped[bool] = mapped_column(Boolean, default=False)
    is_skipped: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    meal: Mapped[Meal] = relationship()

    __table_args__ = (
        UniqueConstraint("user_id", "date", "meal_type", name="uq_meal_plan_slot"),
        Index("ix_meal_plan_household_date", "household_id", "date"),
    )


class ShoppingListItem(Base):
    """Shopping list row, generated from a dish or added by hand."""
    __tablename__ = "shopping_list_items"

    id: Mapped[UUID] = mapped_column(SQLAUUID, primary_key=True, default=uuid4)
    household_id: Mapped[UUID] = mapped_column(SQLAUUID, nullable=False, index=True)
    product_id: Mapped[UUID | None] = mapped_column(
        SQLAUUID, ForeignKey("products.id", ondelete="SET NULL"), nullable=True
    )
    meal_id: Mapped[UUID | None] = mapped_column(
        SQLAUUID, ForeignKey("meals.id", ondelete="SET NULL"), nullable=True
    )
    source_user_id: Mapped[UUID | None] = mapped_column(SQLAUUID, nullable=True)
    name: Mapped[str | None] = mapped_column(String, nullable=True)
    # Placeholder when custom_amount_text is set
    amount: Mapped[float] = mapped_column(Float, nullable=False, default=1)
    unit_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    custom_amount_text: Mapped[str | None] = mapped_column(String, nullable=True)
    is_checked: Mapped[bool] = mapped_column(Boolean, default=False)
    added_by: Mapped[UUID | None] = mapped_column(SQLAUUID, nullable=True)
    checked_by: Mapped[UUID | None] = mapped_column(SQLAUUID, nullable=True)
    checked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    product: Mapped[Product | None] = relationship()
    meal: Mapped[Meal | None] = relationship()

    __table_args__ = (
        Index("ix_shopping_list_items_dish", "household_id", "meal_id", "source_user_id"),
    )


class ShoppingListState(Base):
    """Per-household generation metadata and dish serving multipliers."""
    __tablename__ = "shopping_list_state"

    household_id: Mapped[UUID] = mapped_column(SQLAUUID, primary_key=True)
    generated_start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    generated_end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    # List of {"meal_id", "source_user_id", "servings"}; legacy rows hold {meal_id: servings}
    meal_servings: Mapped[list | dict] = mapped_column(JSON, default=list)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_by: Mapped[UUID | None] = mapped_column(SQLAUUID, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )
