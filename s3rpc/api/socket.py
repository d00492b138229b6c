"""
s3rpc socket transport

A WebSocket endpoint carrying JSON call frames:

    request:  {"id": 7, "path": "s3", "method": "create", "args": [data, params]}
    reply:    {"id": 7, "result": {...}}
              {"id": 7, "error": {"name": "NotFound", "code": 404, ...}}

Calls on one connection run concurrently and replies are correlated by
``id``, so a slow upload does not hold back a quick ``get``.
"""

import asyncio
import json
from typing import Any

import structlog
from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from s3rpc.api.registry import get_registry
from s3rpc.errors import BadRequest, ServiceError, convert_client_error

logger = structlog.get_logger(__name__)

SOCKET_PATH = "/ws"

router = APIRouter(tags=["Socket"])


def _parse_frame(raw: str) -> tuple[Any, str, str, list]:
    try:
        frame = json.loads(raw)
    except json.JSONDecodeError as e:
        raise BadRequest(f"Frame is not valid JSON: {e.msg}") from e

    if not isinstance(frame, dict):
        raise BadRequest("Frame must be an object")

    call_id = frame.get("id")
    path, method, args = frame.get("path"), frame.get("method"), frame.get("args", [])
    if not isinstance(path, str) or not isinstance(method, str):
        raise _FrameError(call_id, BadRequest("Frame requires string `path` and `method`"))
    if not isinstance(args, list):
        raise _FrameError(call_id, BadRequest("Frame `args` must be a list"))
    return call_id, path, method, args


class _FrameError(Exception):
    """A malformed frame whose id could still be read."""

    def __init__(self, call_id: Any, error: ServiceError):
        super().__init__(error.message)
        self.call_id = call_id
        self.error = error


class SocketConnection:
    """Serves the calls arriving on one WebSocket."""

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket
        self.registry = get_registry(websocket.app)
        self._send_lock = asyncio.Lock()
        self._tasks: set[asyncio.Task] = set()

    async def _send(self, payload: dict) -> None:
        async with self._send_lock:
            await self.websocket.send_text(json.dumps(payload))

    async def _handle(self, call_id: Any, path: str, method: str, args: list) -> None:
        log = logger.bind(call_id=call_id, path=path, method=method)
        try:
            entry = self.registry.lookup(path)
            if len(args) == 1:
                args.append({})
            if len(args) == 2 and isinstance(args[1], dict):
                args[1] = {**args[1], "provider": "socket"}
            result = await entry.dispatch(method, *args)
            await self._send({"id": call_id, "result": result})
        except ServiceError as e:
            log.warning("socket_call_rejected", error=e.name, message=e.message)
            await self._send({"id": call_id, "error": e.to_dict()})
        except WebSocketDisconnect:
            log.info("socket_reply_dropped")
        except Exception as e:
            error = convert_client_error(e)
            log.error("socket_call_failed", error=str(e))
            await self._send({"id": call_id, "error": error.to_dict()})

    async def serve(self) -> None:
        await self.websocket.accept()
        logger.info("socket_connected", client=str(self.websocket.client))
        try:
            while True:
                raw = await self.websocket.receive_text()
                try:
                    call_id, path, method, args = _parse_frame(raw)
                except _FrameError as e:
                    await self._send({"id": e.call_id, "error": e.error.to_dict()})
                    continue
                except ServiceError as e:
                    await self._send({"id": None, "error": e.to_dict()})
                    continue

                task = asyncio.create_task(self._handle(call_id, path, method, args))
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)
        except WebSocketDisconnect:
            logger.info("socket_disconnected", client=str(self.websocket.client))
        finally:
            for task in self._tasks:
                task.cancel()


@router.websocket(SOCKET_PATH)
async def socket_endpoint(websocket: WebSocket) -> None:
    await SocketConnection(websocket).serve()
