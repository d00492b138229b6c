"""
API module: remote service binding over REST and socket transports.

Exports:
    register_service: Register a service under a path and mount its REST routes
    get_registry: The application's ServiceRegistry
    install_error_handlers: Render ServiceError responses as JSON
    socket_router: WebSocket endpoint serving every registered service
"""

from typing import Any, Optional

from fastapi import FastAPI

from s3rpc.api.registry import ServiceEntry, ServiceRegistry, get_registry
from s3rpc.api.rest import build_service_router, install_error_handlers
from s3rpc.api.socket import SOCKET_PATH
from s3rpc.api.socket import router as socket_router


def register_service(
    app: FastAPI,
    path: str,
    service: Any,
    methods: list[str],
    method_map: Optional[dict[str, str]] = None,
) -> ServiceEntry:
    """
    Register ``service`` under ``path`` and mount its REST routes.

    The socket endpoint needs no per-service mounting; it dispatches
    through the same registry.

    Args:
        app: FastAPI application
        path: Service path, e.g. "s3"
        service: Object implementing the methods
        methods: Allow-list of wire method names
        method_map: Wire name -> attribute name; names missing from the
                    map are looked up as-is

    Returns:
        The registry entry
    """
    method_map = method_map or {}
    allowed = {name: method_map.get(name, name) for name in methods}
    entry = get_registry(app).use(path, service, allowed)
    app.include_router(build_service_router(entry.path))
    return entry


__all__ = [
    "register_service",
    "get_registry",
    "install_error_handlers",
    "socket_router",
    "SOCKET_PATH",
    "ServiceEntry",
    "ServiceRegistry",
]
