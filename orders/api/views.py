"""
GraphQL view with caller identity and logging support.
"""
import json
import logging
from uuid import UUID, uuid4

from ariadne import graphql_sync
from django.conf import settings
from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods

from orders.api.middleware import ErrorHandler
from orders.api.schema import schema
from orders.domain.status import Actor, Role

logger = logging.getLogger(__name__)


class StorefrontGraphQLView:
    """GraphQL view that resolves the caller and logs each request."""

    def dispatch(self, request, *args, **kwargs):
        """Handle GraphQL request."""
        request_id = request.headers.get("X-Request-ID") or str(uuid4())
        actor = self._resolve_actor(request, request_id)

        logger.info(
            "graphql_request",
            extra={
                "request_id": request_id,
                "user_id": str(actor.user_id) if actor else None,
                "operation": "graphql",
            },
        )

        try:
            response = self._process_graphql_request(request, actor)
        except Exception as e:
            response = ErrorHandler.handle_error(e)
            logger.error(
                "graphql_error",
                extra={
                    "request_id": request_id,
                    "error": str(e),
                }
            )

        logger.info(
            "graphql_response",
            extra={
                "request_id": request_id,
                "status": response.status_code,
            }
        )
        return response

    def _resolve_actor(self, request, request_id: str) -> Actor | None:
        """Identity is asserted by the upstream gateway through headers."""
        user_id = request.headers.get("X-User-ID")
        if not user_id:
            return None
        try:
            return Actor(
                user_id=UUID(user_id),
                role=Role(request.headers.get("X-User-Role", Role.CUSTOMER.value)),
            )
        except ValueError:
            logger.warning(
                "invalid_identity_headers",
                extra={"request_id": request_id},
            )
            return None

    def _process_graphql_request(self, request, actor):
        """Process GraphQL request."""
        if request.method == "GET":
            return JsonResponse({"message": "GraphQL endpoint. Use POST for queries."})

        try:
            data = json.loads(request.body)
        except json.JSONDecodeError:
            return JsonResponse(
                {"error": {"code": "VALIDATION_ERROR", "message": "Invalid JSON"}},
                status=400
            )

        success, result = graphql_sync(
            schema,
            data,
            context_value={"request": request, "actor": actor},
            debug=settings.DEBUG,
            error_formatter=ErrorHandler.format_graphql_error,
        )

        status_code = 200 if success else 400
        return JsonResponse(result, status=status_code)


@csrf_exempt
@require_http_methods(["GET", "POST"])
def graphql_view(request):
    """GraphQL endpoint."""
    view = StorefrontGraphQLView()
    return view.dispatch(request)
