"""
Explicit request context passed into shopping-list services.
"""
from dataclasses import dataclass
from uuid import UUID


@dataclass(frozen=True)
class HouseholdContext:
    """Household the caller acts in and the calling member."""

    household_id: UUID
    user_id: UUID
