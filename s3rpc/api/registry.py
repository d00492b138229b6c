"""
Service registry for remote-callable services.

A service is any object whose methods are coroutines. It is registered
under a path together with an allow-list of wire method names; both
transports (REST and socket) dispatch through the same registry, so the
allow-list is enforced in one place.
"""

import inspect
from dataclasses import dataclass, field
from typing import Any, Optional

import structlog
from fastapi import FastAPI

from s3rpc.errors import BadRequest, MethodNotAllowed, NotFound

logger = structlog.get_logger(__name__)


@dataclass
class ServiceEntry:
    path: str
    service: Any
    # wire method name -> attribute name on the service object
    methods: dict[str, str] = field(default_factory=dict)

    async def dispatch(self, method: str, *args: Any) -> Any:
        """
        Invoke an allowed method.

        Raises:
            MethodNotAllowed: method is not in the allow-list
            BadRequest: arguments do not fit the method signature
        """
        attribute = self.methods.get(method)
        if attribute is None:
            raise MethodNotAllowed(f"Method `{method}` is not supported by this endpoint.")

        handler = getattr(self.service, attribute)
        try:
            inspect.signature(handler).bind(*args)
        except TypeError as e:
            raise BadRequest(f"Invalid arguments for `{method}`: {e}") from e
        return await handler(*args)


class ServiceRegistry:
    """Path -> ServiceEntry lookup shared by all transports of an app."""

    def __init__(self):
        self._entries: dict[str, ServiceEntry] = {}

    def use(self, path: str, service: Any, methods: dict[str, str]) -> ServiceEntry:
        path = path.strip("/")
        missing = [name for name, attr in methods.items() if not callable(getattr(service, attr, None))]
        if missing:
            raise ValueError(f"Service registered at `{path}` does not implement: {', '.join(missing)}")

        entry = ServiceEntry(path=path, service=service, methods=dict(methods))
        self._entries[path] = entry
        logger.info("service_registered", path=path, methods=sorted(methods))
        return entry

    def get(self, path: str) -> Optional[ServiceEntry]:
        return self._entries.get(path.strip("/"))

    def lookup(self, path: str) -> ServiceEntry:
        entry = self.get(path)
        if entry is None:
            raise NotFound(f"Service `{path}` is not registered.")
        return entry

    def __contains__(self, path: str) -> bool:
        return self.get(path) is not None

    def paths(self) -> list[str]:
        return list(self._entries)


def get_registry(app: FastAPI) -> ServiceRegistry:
    """Return the app's registry, creating it on first use."""
    registry = getattr(app.state, "services", None)
    if registry is None:
        registry = ServiceRegistry()
        app.state.services = registry
    return registry
