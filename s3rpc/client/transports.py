"""
s3rpc client transports

Both transports expose one coroutine, ``call(path, method, args)``, and
raise the ServiceError rebuilt from the server's error payload. Failures
to reach the server at all surface as ``Unavailable``.

    RestTransport  : HTTP via httpx, mirrors s3rpc.api.rest
    SocketTransport: WebSocket via websockets, mirrors s3rpc.api.socket
"""

import asyncio
import itertools
import json
from typing import Any, Optional
from urllib.parse import quote

import httpx
import structlog
import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from s3rpc.errors import GeneralError, ServiceError, Unavailable, error_from_dict

logger = structlog.get_logger(__name__)

METHOD_HEADER = "X-Service-Method"


class Transport:
    """Interface shared by the client transports."""

    name = "transport"

    async def call(self, path: str, method: str, args: list) -> Any:
        raise NotImplementedError

    async def close(self) -> None:
        return None


# =============================================================================
# REST
# =============================================================================
class RestTransport(Transport):
    """
    Call services over HTTP.

    Args:
        base_url: Server root, e.g. "http://localhost:3030"
        client: Optional httpx.AsyncClient (tests pass one bound to an ASGI app);
                when omitted the transport owns and closes its own client
        timeout: Request timeout in seconds for an owned client
    """

    name = "rest"

    def __init__(
        self,
        base_url: str,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ):
        self.base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    def _url(self, path: str, object_id: Optional[str] = None) -> str:
        url = f"{self.base_url}/{path.strip('/')}"
        if object_id is not None:
            url = f"{url}/{quote(str(object_id), safe='/')}"
        return url

    async def call(self, path: str, method: str, args: list) -> Any:
        first = args[0] if args else None
        params = args[1] if len(args) > 1 and isinstance(args[1], dict) else {}
        query = params.get("query") or None

        try:
            if method == "get":
                response = await self._client.get(self._url(path, first), params=query)
            elif method == "remove":
                response = await self._client.delete(self._url(path, first), params=query)
            else:
                headers = {} if method == "create" else {METHOD_HEADER: method}
                response = await self._client.post(
                    self._url(path), json=first, params=query, headers=headers
                )
        except httpx.HTTPError as e:
            logger.warning("rest_call_unreachable", path=path, method=method, error=str(e))
            raise Unavailable(f"{path}.{method} failed: {e}") from e

        if response.is_success:
            return response.json()

        try:
            payload = response.json()
        except ValueError:
            payload = {"code": response.status_code, "message": response.text[:500]}
        if isinstance(payload, dict) and "code" not in payload:
            payload["code"] = response.status_code
        raise error_from_dict(payload)

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()


# =============================================================================
# Socket
# =============================================================================
class SocketTransport(Transport):
    """
    Call services over one WebSocket connection.

    The connection opens lazily on the first call. Replies are matched to
    calls by frame id, so concurrent calls share the socket.

    Args:
        url: WebSocket URL, e.g. "ws://localhost:3030/ws"
        timeout: Seconds to wait for a reply before giving up
    """

    name = "socket"

    def __init__(self, url: str, timeout: float = 30.0):
        self.url = url
        self.timeout = timeout
        self._connection = None
        self._reader: Optional[asyncio.Task] = None
        self._pending: dict[int, asyncio.Future] = {}
        self._ids = itertools.count(1)
        self._connect_lock = asyncio.Lock()

    @property
    def connected(self) -> bool:
        return self._connection is not None

    async def connect(self) -> None:
        async with self._connect_lock:
            if self._connection is not None:
                return
            try:
                self._connection = await websockets.connect(self.url)
            except (OSError, WebSocketException) as e:
                raise Unavailable(f"Cannot connect to {self.url}: {e}") from e
            self._reader = asyncio.create_task(self._read_loop())
            logger.info("socket_transport_connected", url=self.url)

    async def _read_loop(self) -> None:
        connection = self._connection
        try:
            async for raw in connection:
                try:
                    frame = json.loads(raw)
                except json.JSONDecodeError:
                    logger.warning("socket_frame_invalid", frame=str(raw)[:200])
                    continue
                if not isinstance(frame, dict):
                    logger.warning("socket_frame_invalid", frame=str(raw)[:200])
                    continue

                future = self._pending.pop(frame.get("id"), None)
                if future is None or future.done():
                    if "error" in frame:
                        logger.warning("socket_error_unmatched", error=frame["error"])
                    continue
                if "error" in frame:
                    future.set_exception(error_from_dict(frame["error"]))
                else:
                    future.set_result(frame.get("result"))
        except ConnectionClosed as e:
            logger.info("socket_transport_closed", code=e.rcvd.code if e.rcvd else None)
        finally:
            self._fail_pending(Unavailable(f"Connection to {self.url} closed"))
            if self._connection is connection:
                self._connection = None

    def _fail_pending(self, error: ServiceError) -> None:
        pending, self._pending = self._pending, {}
        for future in pending.values():
            if not future.done():
                future.set_exception(error)

    async def call(self, path: str, method: str, args: list) -> Any:
        await self.connect()
        connection = self._connection
        if connection is None:
            raise Unavailable(f"{path}.{method} failed: connection closed")

        call_id = next(self._ids)
        future = asyncio.get_running_loop().create_future()
        self._pending[call_id] = future
        frame = {"id": call_id, "path": path, "method": method, "args": args}

        try:
            await connection.send(json.dumps(frame))
        except ConnectionClosed as e:
            self._pending.pop(call_id, None)
            raise Unavailable(f"{path}.{method} failed: connection closed") from e

        try:
            return await asyncio.wait_for(future, timeout=self.timeout)
        except asyncio.TimeoutError as e:
            self._pending.pop(call_id, None)
            raise Unavailable(f"{path}.{method} timed out after {self.timeout}s") from e

    async def close(self) -> None:
        connection, self._connection = self._connection, None
        if connection is not None:
            await connection.close()
        if self._reader is not None:
            await self._reader
            self._reader = None
        self._fail_pending(GeneralError("Transport closed"))
