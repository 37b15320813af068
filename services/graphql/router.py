"""
services/graphql/router.py
HTTP transport for the GraphQL schema: POST /graphql.
"""

import logging
from typing import Any, Dict

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

from shared.middleware.auth import AuthorizationMiddleware, build_context
from shared.middleware.error_handler import format_error
from services.schema import schema

logger = logging.getLogger(__name__)

router = APIRouter(tags=["GraphQL"])


def _bad_request(message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "errors": [
                {"message": message, "extensions": {"code": "BAD_REQUEST", "statusCode": 400}}
            ]
        },
    )


@router.post("/graphql")
async def graphql_endpoint(request: Request):
    """Execute one GraphQL operation: ``{query, variables, operationName}``."""
    request_id = getattr(request.state, "request_id", None)

    try:
        body = await request.json()
    except ValueError:
        return _bad_request("Request body must be valid JSON")
    if not isinstance(body, dict) or not isinstance(body.get("query"), str):
        return _bad_request("Request body must contain a 'query' string")

    variables = body.get("variables") or {}
    if not isinstance(variables, dict):
        return _bad_request("'variables' must be an object")

    context = await build_context(
        request,
        identity_provider=request.app.state.identity_provider,
        payment_gateway=request.app.state.payment_gateway,
    )

    result = await schema.execute_async(
        body["query"],
        variable_values=variables,
        operation_name=body.get("operationName"),
        context_value=context,
        middleware=[AuthorizationMiddleware()],
    )

    payload: Dict[str, Any] = {"data": result.data}
    if result.errors:
        payload["errors"] = [format_error(err, request_id=request_id) for err in result.errors]
    return JSONResponse(content=payload)
