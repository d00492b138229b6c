"""
s3rpc S3/MinIO Object Store Gateway

Translates service method calls into boto3 S3 calls: presigned URL
generation, object get/put/remove and the three multipart upload stages.

The gateway holds no state between calls. boto3 is blocking, so every
store call runs in a worker thread to keep the event loop free.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import boto3
import structlog
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from pydantic import ValidationError

from s3rpc.config import Settings
from s3rpc.errors import BadRequest, convert_client_error
from s3rpc.schemas import (
    CompleteMultipartUploadRequest,
    CreateMultipartUploadRequest,
    PresignRequest,
    PutObjectRequest,
    UploadPartRequest,
    encode_buffer,
)

# Module-level logger
logger = structlog.get_logger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"

# Wire method name -> S3Service attribute
SERVICE_METHODS = {
    "create": "create",
    "get": "get",
    "remove": "remove",
    "putObject": "put_object",
    "createMultipartUpload": "create_multipart_upload",
    "uploadPart": "upload_part",
    "completeMultipartUpload": "complete_multipart_upload",
}

# HTTP verb used against a presigned URL for each signed command
_PRESIGN_METHODS = {
    "GetObject": ("get_object", "GET"),
    "PutObject": ("put_object", "PUT"),
    "UploadPart": ("upload_part", "PUT"),
}


def get_s3_client(settings: Settings):
    """
    Create and return a boto3 S3 client configured from settings.

    If S3_ENDPOINT is set, uses it for MinIO compatibility.
    If not set, uses AWS S3 defaults.
    """
    client_config = Config(
        signature_version=settings.S3_SIGNATURE_VERSION,
        retries={"max_attempts": 3, "mode": "standard"},
        s3={"addressing_style": settings.S3_ADDRESSING_STYLE},
    )

    client_kwargs = {
        "service_name": "s3",
        "region_name": settings.S3_REGION,
        "config": client_config,
    }

    # Explicit credentials win over the default boto3 credential chain
    if settings.S3_ACCESS_KEY_ID and settings.S3_SECRET_ACCESS_KEY:
        client_kwargs["aws_access_key_id"] = settings.S3_ACCESS_KEY_ID
        client_kwargs["aws_secret_access_key"] = settings.S3_SECRET_ACCESS_KEY

    # Add endpoint URL for MinIO (local dev) or custom S3-compatible storage
    if settings.S3_ENDPOINT:
        client_kwargs["endpoint_url"] = settings.S3_ENDPOINT

    return boto3.client(**client_kwargs)


def _validate(model, data: Any):
    if not isinstance(data, dict):
        raise BadRequest("Payload must be an object")
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise BadRequest(
            "Invalid payload",
            data={"errors": e.errors(include_url=False, include_context=False, include_input=False)},
        ) from e


def _status(response: dict) -> int:
    return response.get("ResponseMetadata", {}).get("HTTPStatusCode", 200)


class S3Service:
    """
    Object Store Gateway exposed as a remote service.

    Args:
        settings: Application settings (bucket, prefix, default expiry).
        s3_client: Optional boto3 S3 client; built from settings when omitted.
    """

    def __init__(self, settings: Settings, s3_client=None):
        self.settings = settings
        self.bucket = settings.S3_BUCKET
        self.prefix = (settings.S3_PREFIX or "").strip().strip("/")
        self.expires_in = settings.S3_EXPIRES_IN
        self.s3_client = s3_client if s3_client is not None else get_s3_client(settings)

    def get_key(self, object_id: str) -> str:
        """Map a logical object key to the store key under the configured prefix."""
        if not isinstance(object_id, str):
            raise BadRequest("Object id must be a string")
        key = object_id.lstrip("/")
        if not key:
            raise BadRequest("Object id is required")
        if self.prefix:
            return f"{self.prefix}/{key}"
        return key

    async def _call(self, operation: str, log, **kwargs) -> dict:
        """Run one boto3 operation in a worker thread, converting store errors."""
        try:
            return await asyncio.to_thread(getattr(self.s3_client, operation), **kwargs)
        except (BotoCoreError, ClientError) as e:
            error = convert_client_error(e)
            log.error(
                "s3_operation_failed",
                operation=operation,
                bucket=self.bucket,
                error=str(e),
                code=error.code,
            )
            raise error from e

    # =========================================================================
    # Presigned URLs
    # =========================================================================
    async def create(self, data: dict, params: Optional[dict] = None) -> dict:
        """
        Generate a presigned URL for one GetObject, PutObject or UploadPart.

        Returns:
            Descriptor with id, command, method, url, expiresIn and expiresAt.
        """
        request = _validate(PresignRequest, data)
        key = self.get_key(request.id)
        client_method, http_method = _PRESIGN_METHODS[request.command]
        expires_in = request.expires_in or self.expires_in

        sign_params: dict[str, Any] = {"Bucket": self.bucket, "Key": key}
        if request.command == "PutObject":
            sign_params["ContentType"] = request.content_type or DEFAULT_CONTENT_TYPE
        elif request.command == "UploadPart":
            if not request.upload_id or request.part_number is None:
                raise BadRequest("UploadPart requires UploadId and PartNumber")
            sign_params["UploadId"] = request.upload_id
            sign_params["PartNumber"] = request.part_number

        log = logger.bind(key=key, command=request.command)
        url = await self._call(
            "generate_presigned_url",
            log,
            ClientMethod=client_method,
            Params=sign_params,
            ExpiresIn=expires_in,
            HttpMethod=http_method,
        )
        expires_at = datetime.now(timezone.utc) + timedelta(seconds=expires_in)

        log.info("s3_presigned_url_generated", expires_in=expires_in)
        descriptor = {
            "id": request.id,
            "command": request.command,
            "method": http_method,
            "url": url,
            "expiresIn": expires_in,
            "expiresAt": expires_at.isoformat(),
        }
        if request.command == "PutObject":
            descriptor["type"] = sign_params["ContentType"]
        if request.command == "UploadPart":
            descriptor["UploadId"] = request.upload_id
            descriptor["PartNumber"] = request.part_number
        return descriptor

    # =========================================================================
    # Objects
    # =========================================================================
    async def get(self, object_id: str, params: Optional[dict] = None) -> dict:
        """Read an object; the content comes back base64-encoded in ``buffer``."""
        key = self.get_key(object_id)
        log = logger.bind(key=key)

        response = await self._call("get_object", log, Bucket=self.bucket, Key=key)
        body = await asyncio.to_thread(response["Body"].read)
        last_modified = response.get("LastModified")

        log.info("s3_object_read", size=len(body))
        return {
            "id": object_id,
            "type": response.get("ContentType") or DEFAULT_CONTENT_TYPE,
            "size": response.get("ContentLength", len(body)),
            "ETag": response.get("ETag"),
            "lastModified": last_modified.isoformat() if last_modified else None,
            "buffer": encode_buffer(body),
        }

    async def remove(self, object_id: str, params: Optional[dict] = None) -> dict:
        """
        Delete an object.

        Deleting a key that does not exist succeeds, as it does on S3.
        """
        key = self.get_key(object_id)
        log = logger.bind(key=key)

        response = await self._call("delete_object", log, Bucket=self.bucket, Key=key)
        status = _status(response)

        log.info("s3_object_deleted", bucket=self.bucket, status=status)
        # S3 acknowledges deletes with 204; callers only care that it worked
        ok = 200 <= status < 300
        return {"id": object_id, "ok": ok, "status": 200 if ok else status}

    async def put_object(self, data: dict, params: Optional[dict] = None) -> dict:
        """Store the bytes carried in ``buffer`` under ``id``."""
        request = _validate(PutObjectRequest, data)
        key = self.get_key(request.id)
        log = logger.bind(key=key)

        response = await self._call(
            "put_object",
            log,
            Bucket=self.bucket,
            Key=key,
            Body=request.buffer,
            ContentType=request.content_type or DEFAULT_CONTENT_TYPE,
        )
        status = _status(response)

        log.info("s3_object_stored", size=len(request.buffer), status=status)
        return {
            "id": request.id,
            "ETag": response.get("ETag"),
            "ok": 200 <= status < 300,
            "status": status,
        }

    # =========================================================================
    # Multipart upload
    # =========================================================================
    async def create_multipart_upload(self, data: dict, params: Optional[dict] = None) -> dict:
        request = _validate(CreateMultipartUploadRequest, data)
        key = self.get_key(request.id)
        log = logger.bind(key=key)

        response = await self._call(
            "create_multipart_upload",
            log,
            Bucket=self.bucket,
            Key=key,
            ContentType=request.content_type or DEFAULT_CONTENT_TYPE,
        )

        log.info("s3_multipart_upload_created", upload_id=response["UploadId"])
        return {"id": request.id, "UploadId": response["UploadId"]}

    async def upload_part(self, data: dict, params: Optional[dict] = None) -> dict:
        request = _validate(UploadPartRequest, data)
        key = self.get_key(request.id)
        log = logger.bind(key=key, upload_id=request.upload_id, part_number=request.part_number)

        response = await self._call(
            "upload_part",
            log,
            Bucket=self.bucket,
            Key=key,
            UploadId=request.upload_id,
            PartNumber=request.part_number,
            Body=request.buffer,
        )

        log.debug("s3_part_uploaded", size=len(request.buffer))
        return {"id": request.id, "PartNumber": request.part_number, "ETag": response.get("ETag")}

    async def complete_multipart_upload(self, data: dict, params: Optional[dict] = None) -> dict:
        """
        Assemble the uploaded parts into the final object.

        Parts are sent to the store in ascending part number; S3 rejects
        any other order.
        """
        request = _validate(CompleteMultipartUploadRequest, data)
        key = self.get_key(request.id)
        log = logger.bind(key=key, upload_id=request.upload_id)

        response = await self._call(
            "complete_multipart_upload",
            log,
            Bucket=self.bucket,
            Key=key,
            UploadId=request.upload_id,
            MultipartUpload={"Parts": request.sorted_parts()},
        )
        status = _status(response)

        log.info("s3_multipart_upload_completed", parts=len(request.parts), status=status)
        return {
            "id": request.id,
            "ETag": response.get("ETag"),
            "location": response.get("Location"),
            "ok": 200 <= status < 300,
            "status": status,
        }
