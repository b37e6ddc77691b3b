"""
Product repository for the household product catalog.
"""
from typing import List, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from db.models import Product
from services.nutrition import default_unit_weight


class ProductRepository:
    """Repository for Product CRUD operations."""

    def __init__(self, db: Session):
        """Initialize with database session."""
        self.db = db

    def create(
        self,
        household_id: UUID,
        name: str,
        kcal_per_unit: float,
        unit_type: str = "100g",
        unit_weight_grams: Optional[float] = None,
        category: str = "",
        protein: Optional[float] = None,
        fat: Optional[float] = None,
        carbs: Optional[float] = None,
        created_by: Optional[UUID] = None,
    ) -> Product:
        """
        Create a new product.

        Args:
            household_id: Household UUID
            name: Product name
            kcal_per_unit: Calories per 100 g
            unit_type: Preferred unit (100g, piece, tablespoon, teaspoon)
            unit_weight_grams: Weight of one unit; defaults by unit type
            category: Free-text category label
            protein: Protein per 100 g
            fat: Fat per 100 g
            carbs: Carbs per 100 g
            created_by: Author user UUID

        Returns:
            Created Product object
        """
        if unit_weight_grams is None:
            unit_weight_grams = default_unit_weight(unit_type)

        product = Product(
            household_id=household_id,
            name=name,
            kcal_per_unit=kcal_per_unit,
            unit_type=unit_type,
            unit_weight_grams=unit_weight_grams,
            category=category or "",
            protein=protein,
            fat=fat,
            carbs=carbs,
            created_by=created_by,
        )
        self.db.add(product)
        self.db.commit()
        self.db.refresh(product)
        return product

    def get_by_id(self, household_id: UUID, product_id: UUID) -> Optional[Product]:
        """Get product by ID with household isolation."""
        return self.db.query(Product).filter_by(id=product_id, household_id=household_id).first()

    def get_all(
        self,
        household_id: UUID,
        category: Optional[str] = None,
        query: Optional[str] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> tuple[List[Product], int]:
        """
        Get all products for a household.

        Args:
            household_id: Household UUID
            category: Optional exact category filter
            query: Optional name search
            skip: Pagination skip
            limit: Pagination limit

        Returns:
            Tuple of (products list, total count)
        """
        q = self.db.query(Product).filter_by(household_id=household_id)

        if category:
            q = q.filter_by(category=category)

        if query:
            q = q.filter(Product.name.ilike(f"%{query}%"))

        total = q.count()
        products = q.order_by(Product.name).offset(skip).limit(limit).all()
        return products, total

    def update(
        self,
        household_id: UUID,
        product_id: UUID,
        **kwargs,
    ) -> Optional[Product]:
        """
        Update a product.

        Returns:
            Updated Product or None if not found
        """
        product = self.get_by_id(household_id, product_id)
        if not product:
            return None

        allowed_fields = {
            "name",
            "category",
            "unit_type",
            "unit_weight_grams",
            "kcal_per_unit",
            "protein",
            "fat",
            "carbs",
        }
        for key, value in kwargs.items():
            if key in allowed_fields:
                setattr(product, key, value)

        if product.unit_weight_grams is None:
            product.unit_weight_grams = default_unit_weight(product.unit_type)

        self.db.commit()
        self.db.refresh(product)
        return product

    def delete(self, household_id: UUID, product_id: UUID) -> bool:
        """
        Delete a product.

        Returns:
            True if deleted, False if not found
        """
        product = self.get_by_id(household_id, product_id)
        if not product:
            return False

        self.db.delete(product)
        self.db.commit()
        return True
