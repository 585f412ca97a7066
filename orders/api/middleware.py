"""
Error handling for API responses.
"""
import logging

from django.http import JsonResponse
from graphql import GraphQLError
from ariadne import format_error

from orders.domain.errors import OrderError, OutOfStockError

logger = logging.getLogger(__name__)


class ErrorHandler:
    """Error handler for API responses."""

    ERROR_CODES = {
        "VALIDATION_ERROR": 400,
        "NOT_FOUND": 404,
        "OUT_OF_STOCK": 409,
        "FORBIDDEN": 403,
        "INVALID_STATE": 400,
        "CONFLICT": 409,
        "INTERNAL_ERROR": 500,
    }

    @classmethod
    def error_payload(cls, error: OrderError) -> dict:
        payload = {
            "code": error.code,
            "message": error.message,
        }
        if isinstance(error, OutOfStockError):
            payload["variantId"] = str(error.variant_id)
            payload["requested"] = error.requested
            payload["available"] = error.available
        return payload

    @classmethod
    def handle_error(cls, error: Exception) -> JsonResponse:
        """Handle error and return JSON response."""
        if isinstance(error, OrderError):
            status_code = cls.ERROR_CODES.get(error.code, 400)
            return JsonResponse({"error": cls.error_payload(error)}, status=status_code)

        # Log unexpected errors
        logger.error(
            "unexpected_error",
            extra={
                "error_type": type(error).__name__,
                "error_message": str(error),
            },
            exc_info=True,
        )

        return JsonResponse(
            {
                "error": {
                    "code": "INTERNAL_ERROR",
                    "message": "An internal error occurred",
                }
            },
            status=500,
        )

    @classmethod
    def format_graphql_error(cls, error: GraphQLError, debug: bool = False) -> dict:
        """Ariadne error formatter that exposes domain error codes."""
        formatted = format_error(error, debug)
        original = error.original_error
        if isinstance(original, OrderError):
            extensions = formatted.setdefault("extensions", {})
            extensions.update(cls.error_payload(original))
            formatted["message"] = original.message
        elif original is not None and not debug:
            logger.error(
                "graphql_resolver_error",
                extra={"error_type": type(original).__name__, "error_message": str(original)},
                exc_info=original,
            )
        return formatted
