"""Client application and generic remote service proxy."""

from typing import Any, Optional

from s3rpc.client.transports import Transport


class RemoteService:
    """
    Proxy for a service registered on a remote s3rpc server.

    Every call goes through the transport and either returns the remote
    result or raises the ServiceError the server answered with.
    """

    def __init__(self, path: str, transport: Transport):
        self.path = path.strip("/")
        self.transport = transport

    async def call(self, method: str, *args: Any) -> Any:
        return await self.transport.call(self.path, method, list(args))

    async def create(self, data: dict, params: Optional[dict] = None) -> Any:
        return await self.call("create", data, params or {})

    async def get(self, object_id: str, params: Optional[dict] = None) -> Any:
        return await self.call("get", object_id, params or {})

    async def remove(self, object_id: str, params: Optional[dict] = None) -> Any:
        return await self.call("remove", object_id, params or {})

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} path={self.path!r} transport={self.transport.name}>"


class ClientApp:
    """Holds the configured transport and hands out service proxies."""

    def __init__(self, transport: Optional[Transport] = None):
        self.transport = transport
        self._services: dict[str, RemoteService] = {}

    def configure(self, transport: Transport) -> "ClientApp":
        self.transport = transport
        self._services.clear()
        return self

    def service(self, path: str) -> RemoteService:
        if self.transport is None:
            raise RuntimeError("No transport configured; call configure() first")
        path = path.strip("/")
        if path not in self._services:
            self._services[path] = RemoteService(path, self.transport)
        return self._services[path]

    async def close(self) -> None:
        if self.transport is not None:
            await self.transport.close()

    async def __aenter__(self) -> "ClientApp":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()
