"""
s3rpc REST transport

Maps HTTP requests onto service methods:

    POST   /{path}       : create(data, params)
    POST   /{path}       : <custom>(data, params) with X-Service-Method: <custom>
    GET    /{path}/{id}  : get(id, params)
    DELETE /{path}/{id}  : remove(id, params)

The query string is passed to the method as ``params["query"]``.
Errors are rendered as the ServiceError JSON shape with ``code`` as the
HTTP status.
"""

import json
from typing import Any, Optional

import structlog
from fastapi import APIRouter, FastAPI, Header, Request, status
from fastapi.responses import JSONResponse

from s3rpc.api.registry import get_registry
from s3rpc.errors import BadRequest, MethodNotAllowed, ServiceError, convert_client_error

logger = structlog.get_logger(__name__)

METHOD_HEADER = "X-Service-Method"

# Reached through their own routes, never through the method header
STANDARD_METHODS = {"find", "get", "create", "update", "patch", "remove"}


def _params(request: Request) -> dict[str, Any]:
    return {"provider": "rest", "query": dict(request.query_params)}


async def _read_json(request: Request) -> Any:
    body = await request.body()
    if not body:
        return {}
    try:
        return json.loads(body)
    except json.JSONDecodeError as e:
        raise BadRequest(f"Request body is not valid JSON: {e.msg}") from e


def build_service_router(path: str) -> APIRouter:
    """Build the REST routes for the service registered at ``path``."""
    router = APIRouter(prefix=f"/{path}", tags=[path])

    @router.post("", summary=f"create or custom method on {path}")
    async def create_or_call(
        request: Request,
        x_service_method: Optional[str] = Header(None, alias=METHOD_HEADER),
    ) -> JSONResponse:
        entry = get_registry(request.app).lookup(path)
        if x_service_method in STANDARD_METHODS:
            raise MethodNotAllowed(
                f"Standard method `{x_service_method}` cannot be called via {METHOD_HEADER}."
            )
        method = x_service_method or "create"
        data = await _read_json(request)

        result = await entry.dispatch(method, data, _params(request))
        status_code = status.HTTP_201_CREATED if method == "create" else status.HTTP_200_OK
        return JSONResponse(content=result, status_code=status_code)

    @router.get("/{object_id:path}", summary=f"get from {path}")
    async def get_item(object_id: str, request: Request) -> JSONResponse:
        entry = get_registry(request.app).lookup(path)
        result = await entry.dispatch("get", object_id, _params(request))
        return JSONResponse(content=result)

    @router.delete("/{object_id:path}", summary=f"remove from {path}")
    async def remove_item(object_id: str, request: Request) -> JSONResponse:
        entry = get_registry(request.app).lookup(path)
        result = await entry.dispatch("remove", object_id, _params(request))
        return JSONResponse(content=result)

    return router


async def _service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    logger.warning(
        "service_call_rejected",
        path=request.url.path,
        error=exc.name,
        message=exc.message,
    )
    return JSONResponse(content=exc.to_dict(), status_code=exc.code)


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    error = convert_client_error(exc)
    logger.error("service_call_failed", path=request.url.path, error=str(exc))
    return JSONResponse(content=error.to_dict(), status_code=error.code)


def install_error_handlers(app: FastAPI) -> None:
    """Render ServiceError (and anything unexpected) as JSON errors."""
    app.add_exception_handler(ServiceError, _service_error_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)
