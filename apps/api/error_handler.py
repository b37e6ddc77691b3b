"""
Error handling utilities for the Household Planner API.
Provides standardized error logging and response formatting.
"""
import logging
from typing import Any, Dict, Optional

from fastapi import HTTPException

from services.errors import (
    InvalidRequestError,
    PersistenceError,
    ShoppingListError,
    StaleStateError,
)

logger = logging.getLogger(__name__)


class APIError:
    """Standardized API error handler."""

    @staticmethod
    def _context(
        operation: str,
        user_id: Optional[str],
        extra_context: Optional[Dict[str, Any]],
    ) -> Dict[str, Any]:
        return {
            "operation": operation,
            "user_id": user_id,
            **(extra_context or {}),
        }

    @staticmethod
    def handle_database_error(
        operation: str,
        error: Exception,
        user_id: Optional[str] = None,
        extra_context: Optional[Dict[str, Any]] = None,
    ) -> HTTPException:
        """
        Handle database errors with detailed logging.

        Args:
            operation: Description of the database operation
            error: The exception that occurred
            user_id: Optional user ID for context
            extra_context: Additional context to log

        Returns:
            HTTPException with appropriate status code
        """
        logger.error(
            f"Database error during {operation}: {str(error)}",
            extra=APIError._context(operation, user_id, extra_context),
            exc_info=True,
        )

        return HTTPException(
            status_code=500,
            detail=f"Database error during {operation}: {str(error)}",
        )

    @staticmethod
    def handle_validation_error(
        operation: str,
        error: Exception,
        user_id: Optional[str] = None,
        extra_context: Optional[Dict[str, Any]] = None,
    ) -> HTTPException:
        """
        Handle validation errors with detailed logging.

        Args:
            operation: Description of the operation
            error: The validation error
            user_id: Optional user ID for context
            extra_context: Additional context to log

        Returns:
            HTTPException with validation error details
        """
        logger.warning(
            f"Validation error during {operation}: {str(error)}",
            extra=APIError._context(operation, user_id, extra_context),
        )

        return HTTPException(
            status_code=400,
            detail=f"Validation error: {str(error)}",
        )

    @staticmethod
    def handle_conflict_error(
        operation: str,
        error: Exception,
        user_id: Optional[str] = None,
    ) -> HTTPException:
        """Handle a concurrent modification detected during an operation."""
        logger.warning(
            f"Conflict during {operation}: {str(error)}",
            extra=APIError._context(operation, user_id, None),
        )

        return HTTPException(
            status_code=409,
            detail=f"Conflict: {str(error)}",
        )

    @staticmethod
    def handle_not_found_error(
        resource: str,
        resource_id: str,
        user_id: Optional[str] = None,
    ) -> HTTPException:
        """
        Handle not found errors with detailed logging.

        Args:
            resource: Type of resource (e.g., 'Meal', 'Product')
            resource_id: ID of the resource
            user_id: Optional user ID for context

        Returns:
            HTTPException with not found error
        """
        logger.warning(
            f"{resource} not found: {resource_id}",
            extra={"resource_id": resource_id, "user_id": user_id},
        )

        return HTTPException(
            status_code=404,
            detail=f"{resource} not found",
        )

    @staticmethod
    def handle_shopping_list_error(
        error: ShoppingListError,
        user_id: Optional[str] = None,
    ) -> HTTPException:
        """Map a shopping-list domain error onto the matching HTTP error."""
        if isinstance(error, StaleStateError):
            return APIError.handle_conflict_error(error.operation, error, user_id=user_id)
        if isinstance(error, InvalidRequestError):
            return APIError.handle_validation_error(error.operation, error, user_id=user_id)
        if isinstance(error, PersistenceError):
            return APIError.handle_database_error(error.operation, error, user_id=user_id)
        return APIError.handle_generic_error(error.operation, error, user_id=user_id)

    @staticmethod
    def handle_generic_error(
        operation: str,
        error: Exception,
        user_id: Optional[str] = None,
        extra_context: Optional[Dict[str, Any]] = None,
    ) -> HTTPException:
        """
        Handle generic/unexpected errors with detailed logging.

        Args:
            operation: Description of the operation
            error: The exception that occurred
            user_id: Optional user ID for context
            extra_context: Additional context to log

        Returns:
            HTTPException with generic error message
        """
        logger.exception(
            f"Unexpected error during {operation}: {str(error)}",
            extra=APIError._context(operation, user_id, extra_context),
        )

        return HTTPException(
            status_code=500,
            detail="An unexpected error occurred",
        )

    @staticmethod
    def log_operation_start(
        operation: str,
        user_id: Optional[str] = None,
        extra_context: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Log the start of an operation."""
        logger.debug(
            f"Starting operation: {operation}",
            extra=APIError._context(operation, user_id, extra_context),
        )

    @staticmethod
    def log_operation_success(
        operation: str,
        user_id: Optional[str] = None,
        extra_context: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Log successful operation completion."""
        logger.info(
            f"Operation successful: {operation}",
            extra=APIError._context(operation, user_id, extra_context),
        )
