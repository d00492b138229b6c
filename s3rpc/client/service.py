"""
s3rpc client S3 service

Adds ``upload`` and ``download`` on top of the remote S3 service proxy.

Two modes:
    direct (default)  the service only signs URLs; bytes go straight
                      between this process and the store over HTTP
    proxy             bytes travel through the remote service itself
                      (putObject / uploadPart / get)

Errors from remote calls raise ServiceError. A failed HTTP leg against a
presigned URL is returned as ``TransferResult(ok=False)``.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import httpx
import structlog

from s3rpc.client.app import ClientApp, RemoteService
from s3rpc.client.results import TransferOptions, TransferResult
from s3rpc.client.strategy import MultiPart, select_strategy
from s3rpc.client.transports import Transport
from s3rpc.config import get_settings
from s3rpc.schemas import decode_buffer, encode_buffer

logger = structlog.get_logger(__name__)


class S3ClientService(RemoteService):
    """
    Remote S3 service proxy with composite upload and download.

    Args:
        path: Service path on the server
        transport: Transport used for remote calls
        use_proxy: Send bytes through the service instead of presigned URLs
        chunk_size: Multipart threshold and part size in bytes
        http_client: httpx.AsyncClient for presigned URL requests; a
                     short-lived client is opened per transfer when omitted
    """

    def __init__(
        self,
        path: str,
        transport: Transport,
        use_proxy: bool = False,
        chunk_size: Optional[int] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        http_timeout: float = 60.0,
    ):
        super().__init__(path, transport)
        self.use_proxy = use_proxy
        self.chunk_size = chunk_size or get_settings().UPLOAD_CHUNK_SIZE
        self.http_client = http_client
        self.http_timeout = http_timeout

    # =========================================================================
    # S3 custom methods
    # =========================================================================
    async def put_object(self, data: dict, params: Optional[dict] = None) -> dict:
        return await self.call("putObject", data, params or {})

    async def create_multipart_upload(self, data: dict, params: Optional[dict] = None) -> dict:
        return await self.call("createMultipartUpload", data, params or {})

    async def upload_part(self, data: dict, params: Optional[dict] = None) -> dict:
        return await self.call("uploadPart", data, params or {})

    async def complete_multipart_upload(self, data: dict, params: Optional[dict] = None) -> dict:
        return await self.call("completeMultipartUpload", data, params or {})

    # =========================================================================
    # Local HTTP leg
    # =========================================================================
    @asynccontextmanager
    async def _http(self) -> AsyncIterator[httpx.AsyncClient]:
        if self.http_client is not None:
            yield self.http_client
        else:
            async with httpx.AsyncClient(timeout=self.http_timeout) as client:
                yield client

    async def _http_leg(
        self,
        descriptor: dict,
        content: Optional[bytes] = None,
        headers: Optional[dict] = None,
        with_body: bool = False,
    ) -> TransferResult:
        """Perform the request a presigned descriptor allows; never raises on HTTP failure."""
        try:
            async with self._http() as client:
                response = await client.request(
                    descriptor["method"],
                    descriptor["url"],
                    content=content,
                    headers=headers,
                )
        except httpx.HTTPError as e:
            logger.warning(
                "presigned_request_failed",
                key=descriptor.get("id"),
                command=descriptor.get("command"),
                error=str(e),
            )
            return TransferResult.failed(0, str(e))
        return TransferResult.from_response(response, with_body=with_body)

    def _sign_request(self, key: str, command: str, options: TransferOptions, **extra) -> dict:
        data = {"id": key, "command": command, **extra}
        if options.expires_in is not None:
            data["expiresIn"] = options.expires_in
        return data

    # =========================================================================
    # Upload
    # =========================================================================
    async def upload(
        self,
        key: str,
        data: bytes,
        options: Optional[TransferOptions] = None,
    ) -> TransferResult:
        """
        Store ``data`` under ``key``.

        Payloads below the chunk size go up in one request; larger ones use
        the multipart protocol with parts completed in ascending order.
        """
        options = options or TransferOptions()
        data = bytes(data)
        strategy = select_strategy(len(data), self.chunk_size)
        log = logger.bind(key=key, size=len(data), strategy=strategy.name, proxy=self.use_proxy)
        log.info("upload_started")

        if isinstance(strategy, MultiPart):
            result = await self._upload_multipart(key, data, strategy, options, log)
        elif self.use_proxy:
            response = await self.put_object(
                {"id": key, "buffer": encode_buffer(data), "type": options.content_type}
            )
            result = TransferResult(
                ok=response.get("ok", True),
                status=response.get("status", 200),
                etag=response.get("ETag"),
            )
        else:
            descriptor = await self.create(
                self._sign_request(key, "PutObject", options, type=options.content_type)
            )
            result = await self._http_leg(
                descriptor,
                content=data,
                headers={"Content-Type": descriptor.get("type", options.content_type)},
            )

        log.info("upload_finished", ok=result.ok, status=result.status)
        return result

    async def _upload_multipart(
        self,
        key: str,
        data: bytes,
        strategy: MultiPart,
        options: TransferOptions,
        log,
    ) -> TransferResult:
        created = await self.create_multipart_upload({"id": key, "type": options.content_type})
        upload_id = created["UploadId"]
        log = log.bind(upload_id=upload_id)

        parts = []
        for part_number, start, end in strategy.parts(len(data)):
            chunk = data[start:end]
            if self.use_proxy:
                response = await self.upload_part(
                    {
                        "id": key,
                        "UploadId": upload_id,
                        "PartNumber": part_number,
                        "buffer": encode_buffer(chunk),
                    }
                )
                etag = response["ETag"]
            else:
                descriptor = await self.create(
                    self._sign_request(
                        key, "UploadPart", options, UploadId=upload_id, PartNumber=part_number
                    )
                )
                part_result = await self._http_leg(descriptor, content=chunk)
                if not part_result.ok:
                    # The upload stays open on the store; nothing aborts it
                    log.warning(
                        "multipart_upload_abandoned",
                        part_number=part_number,
                        status=part_result.status,
                    )
                    return part_result
                etag = part_result.etag

            log.debug("part_uploaded", part_number=part_number, size=len(chunk))
            parts.append({"PartNumber": part_number, "ETag": etag})

        parts.sort(key=lambda part: part["PartNumber"])
        completed = await self.complete_multipart_upload(
            {"id": key, "UploadId": upload_id, "parts": parts}
        )
        return TransferResult(
            ok=completed.get("ok", True),
            status=completed.get("status", 200),
            etag=completed.get("ETag"),
        )

    # =========================================================================
    # Download
    # =========================================================================
    async def download(self, key: str, options: Optional[TransferOptions] = None) -> TransferResult:
        """Fetch the object stored under ``key`` with its content type."""
        options = options or TransferOptions()
        log = logger.bind(key=key, proxy=self.use_proxy)
        log.info("download_started")

        if self.use_proxy:
            response = await self.get(key)
            result = TransferResult(
                ok=True,
                status=200,
                etag=response.get("ETag"),
                content_type=response.get("type"),
                buffer=decode_buffer(response["buffer"]),
            )
        else:
            descriptor = await self.create(self._sign_request(key, "GetObject", options))
            result = await self._http_leg(descriptor, with_body=True)

        log.info(
            "download_finished",
            ok=result.ok,
            status=result.status,
            size=len(result.buffer) if result.buffer is not None else None,
        )
        return result


def get_client_service(
    app: ClientApp,
    service_path: str = "s3",
    transport: Optional[Transport] = None,
    use_proxy: bool = False,
    chunk_size: Optional[int] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> S3ClientService:
    """
    Build the S3 client service for ``service_path``.

    Args:
        app: Client application; its transport is used unless ``transport``
             is given, in which case the app is configured with it
        service_path: Path the S3 service is registered under
        transport: Transport to configure on the app
        use_proxy: Move bytes through the service instead of presigned URLs
        chunk_size: Multipart threshold and part size (UPLOAD_CHUNK_SIZE by default)
        http_client: httpx client for presigned URL requests

    Returns:
        S3ClientService with the remote methods plus upload and download
    """
    if transport is not None and app.transport is not transport:
        app.configure(transport)
    if app.transport is None:
        raise RuntimeError("No transport configured; pass one or call app.configure()")

    return S3ClientService(
        service_path,
        app.transport,
        use_proxy=use_proxy,
        chunk_size=chunk_size,
        http_client=http_client,
    )
