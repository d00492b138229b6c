"""
Shared pytest fixtures.

Provides:
- FakeS3Client: in-memory stand-in for the boto3 S3 client
- Presigned URL handler serving the fake's URLs through httpx.MockTransport
- Server app / TestClient around an S3Service bound to the fake
- A live uvicorn server running in a background thread
- Fixture file paths
"""

import hashlib
import io
import itertools
import socket
import threading
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Generator
from urllib.parse import quote, unquote, urlencode

import httpx
import pytest
import pytest_asyncio
import uvicorn
from botocore.exceptions import ClientError
from fastapi.testclient import TestClient

from s3rpc.client import RestTransport
from s3rpc.config import Settings
from s3rpc.main import create_app
from s3rpc.storage import S3Service

# =============================================================================
# Paths to fixture files
# =============================================================================
DATA_DIR = Path(__file__).parent / "data"
TEXT_FILE = DATA_DIR / "text.txt"
IMAGE_FILE = DATA_DIR / "image.png"
ARCHIVE_FILE = DATA_DIR / "archive.zip"

TEST_BUCKET = "s3rpc-test-bucket"
TEST_PREFIX = "s3rpc-tests"
SERVER_URL = "http://s3rpc.test"
PRESIGN_HOST = "https://s3.test"


def _client_error(code: str, message: str, status: int, operation: str) -> ClientError:
    return ClientError(
        {
            "Error": {"Code": code, "Message": message},
            "ResponseMetadata": {"HTTPStatusCode": status},
        },
        operation,
    )


def _etag(body: bytes) -> str:
    return '"%s"' % hashlib.md5(body).hexdigest()


# =============================================================================
# In-memory S3
# =============================================================================
class FakeS3Client:
    """
    Implements the boto3 S3 client calls the gateway makes.

    Objects and open multipart uploads live in dicts. Presigned URLs point
    at PRESIGN_HOST and carry the signed operation in the query string so
    ``presigned_handler`` can serve them.
    """

    def __init__(self):
        self.objects: dict[str, dict] = {}
        self.uploads: dict[str, dict] = {}
        self.calls: list[tuple[str, dict]] = []
        self.clock = time.time
        self._upload_ids = itertools.count(1)

    @staticmethod
    def _ok(status: int = 200, **fields) -> dict:
        return {"ResponseMetadata": {"HTTPStatusCode": status}, **fields}

    def generate_presigned_url(self, ClientMethod, Params, ExpiresIn=3600, HttpMethod=None):
        self.calls.append(("generate_presigned_url", {"ClientMethod": ClientMethod, "Params": Params}))
        query = {"op": ClientMethod, "signed": self.clock(), "expires": ExpiresIn}
        if "ContentType" in Params:
            query["contentType"] = Params["ContentType"]
        if "UploadId" in Params:
            query["uploadId"] = Params["UploadId"]
            query["partNumber"] = Params["PartNumber"]
        return f"{PRESIGN_HOST}/{Params['Bucket']}/{quote(Params['Key'])}?{urlencode(query)}"

    def put_object(self, Bucket, Key, Body, ContentType="binary/octet-stream"):
        self.calls.append(("put_object", {"Key": Key, "ContentType": ContentType}))
        etag = _etag(Body)
        self.objects[Key] = {
            "body": bytes(Body),
            "type": ContentType,
            "etag": etag,
            "modified": datetime.now(timezone.utc),
        }
        return self._ok(ETag=etag)

    def get_object(self, Bucket, Key):
        self.calls.append(("get_object", {"Key": Key}))
        obj = self.objects.get(Key)
        if obj is None:
            raise _client_error("NoSuchKey", "The specified key does not exist.", 404, "GetObject")
        return self._ok(
            Body=io.BytesIO(obj["body"]),
            ContentType=obj["type"],
            ContentLength=len(obj["body"]),
            ETag=obj["etag"],
            LastModified=obj["modified"],
        )

    def delete_object(self, Bucket, Key):
        self.calls.append(("delete_object", {"Key": Key}))
        self.objects.pop(Key, None)
        return self._ok(204)

    def create_multipart_upload(self, Bucket, Key, ContentType="binary/octet-stream"):
        self.calls.append(("create_multipart_upload", {"Key": Key}))
        upload_id = f"upload-{next(self._upload_ids)}"
        self.uploads[upload_id] = {"key": Key, "type": ContentType, "parts": {}}
        return self._ok(Bucket=Bucket, Key=Key, UploadId=upload_id)

    def upload_part(self, Bucket, Key, UploadId, PartNumber, Body):
        self.calls.append(("upload_part", {"Key": Key, "UploadId": UploadId, "PartNumber": PartNumber}))
        upload = self.uploads.get(UploadId)
        if upload is None or upload["key"] != Key:
            raise _client_error("NoSuchUpload", "The specified upload does not exist.", 404, "UploadPart")
        etag = _etag(Body)
        upload["parts"][PartNumber] = (bytes(Body), etag)
        return self._ok(ETag=etag)

    def complete_multipart_upload(self, Bucket, Key, UploadId, MultipartUpload):
        parts = MultipartUpload["Parts"]
        self.calls.append(("complete_multipart_upload", {"Key": Key, "UploadId": UploadId, "Parts": parts}))
        upload = self.uploads.get(UploadId)
        if upload is None:
            raise _client_error("NoSuchUpload", "The specified upload does not exist.", 404, "CompleteMultipartUpload")

        numbers = [part["PartNumber"] for part in parts]
        if numbers != sorted(numbers):
            raise _client_error(
                "InvalidPartOrder", "The list of parts was not in ascending order.", 400, "CompleteMultipartUpload"
            )
        for part in parts:
            stored = upload["parts"].get(part["PartNumber"])
            if stored is None or stored[1] != part["ETag"]:
                raise _client_error("InvalidPart", "One or more parts could not be found.", 400, "CompleteMultipartUpload")

        body = b"".join(upload["parts"][n][0] for n in numbers)
        digest = hashlib.md5(b"".join(bytes.fromhex(upload["parts"][n][1].strip('"')) for n in numbers))
        etag = f'"{digest.hexdigest()}-{len(numbers)}"'
        self.objects[Key] = {
            "body": body,
            "type": upload["type"],
            "etag": etag,
            "modified": datetime.now(timezone.utc),
        }
        del self.uploads[UploadId]
        return self._ok(ETag=etag, Location=f"{PRESIGN_HOST}/{Bucket}/{Key}", Bucket=Bucket, Key=Key)


def presigned_handler(fake: FakeS3Client):
    """httpx.MockTransport handler answering requests to the fake's presigned URLs."""

    def _error(status: int, code: str) -> httpx.Response:
        return httpx.Response(status, text=f"<Error><Code>{code}</Code></Error>")

    def handler(request: httpx.Request) -> httpx.Response:
        query = dict(request.url.params)
        key = unquote(request.url.path.split("/", 2)[2])

        if fake.clock() > float(query["signed"]) + int(query["expires"]):
            return _error(403, "AccessDenied")

        op = query["op"]
        if op == "get_object" and request.method == "GET":
            obj = fake.objects.get(key)
            if obj is None:
                return _error(404, "NoSuchKey")
            return httpx.Response(
                200,
                content=obj["body"],
                headers={"Content-Type": obj["type"], "ETag": obj["etag"]},
            )
        if op == "put_object" and request.method == "PUT":
            if request.headers.get("content-type") != query.get("contentType"):
                return _error(403, "SignatureDoesNotMatch")
            response = fake.put_object("bucket", key, request.content, query["contentType"])
            return httpx.Response(200, headers={"ETag": response["ETag"]})
        if op == "upload_part" and request.method == "PUT":
            try:
                response = fake.upload_part(
                    "bucket", key, query["uploadId"], int(query["partNumber"]), request.content
                )
            except ClientError:
                return _error(404, "NoSuchUpload")
            return httpx.Response(200, headers={"ETag": response["ETag"]})
        return _error(403, "SignatureDoesNotMatch")

    return handler


# =============================================================================
# Settings, gateway and server app
# =============================================================================
@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        S3_BUCKET=TEST_BUCKET,
        S3_PREFIX=TEST_PREFIX,
        S3_ACCESS_KEY_ID="test-access-key",
        S3_SECRET_ACCESS_KEY="test-secret-key",
        S3_ENDPOINT=None,
        S3_EXPIRES_IN=900,
        S3_SERVICE_PATH="s3",
        LOG_LEVEL="WARNING",
    )


@pytest.fixture
def fake_s3() -> FakeS3Client:
    return FakeS3Client()


@pytest.fixture
def s3_service(settings, fake_s3) -> S3Service:
    return S3Service(settings, s3_client=fake_s3)


@pytest.fixture
def server_app(settings, s3_service):
    return create_app(settings, service=s3_service)


@pytest.fixture
def client(server_app) -> Generator[TestClient, None, None]:
    """FastAPI TestClient for REST and WebSocket routes."""
    with TestClient(server_app) as c:
        yield c


# =============================================================================
# Async client side
# =============================================================================
@pytest_asyncio.fixture
async def rest_transport(server_app):
    """RestTransport talking to the server app in-process."""
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=server_app),
        base_url=SERVER_URL,
    ) as http:
        yield RestTransport(SERVER_URL, client=http)


@pytest_asyncio.fixture
async def presigned_http(fake_s3):
    """httpx client whose requests to presigned URLs hit the fake store."""
    async with httpx.AsyncClient(transport=httpx.MockTransport(presigned_handler(fake_s3))) as http:
        yield http


# =============================================================================
# Live server
# =============================================================================
def _free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


class LiveServer:
    """Runs a FastAPI app under uvicorn in a daemon thread."""

    def __init__(self, app):
        self.port = _free_port()
        config = uvicorn.Config(app, host="127.0.0.1", port=self.port, log_level="warning")
        self.server = uvicorn.Server(config)
        self.thread = threading.Thread(target=self.server.run, daemon=True)

    @property
    def http_url(self) -> str:
        return f"http://127.0.0.1:{self.port}"

    @property
    def ws_url(self) -> str:
        return f"ws://127.0.0.1:{self.port}/ws"

    def start(self) -> "LiveServer":
        self.thread.start()
        deadline = time.monotonic() + 10
        while not self.server.started:
            if time.monotonic() > deadline or not self.thread.is_alive():
                raise RuntimeError("uvicorn did not start")
            time.sleep(0.02)
        return self

    def stop(self) -> None:
        self.server.should_exit = True
        self.thread.join(timeout=10)


@pytest.fixture(scope="module")
def live_fake_s3() -> FakeS3Client:
    return FakeS3Client()


@pytest.fixture(scope="module")
def live_server(live_fake_s3) -> Generator[LiveServer, None, None]:
    """A real server for the module, backed by the in-memory store."""
    settings = Settings(
        _env_file=None,
        S3_BUCKET=TEST_BUCKET,
        S3_PREFIX=TEST_PREFIX,
        S3_ACCESS_KEY_ID="test-access-key",
        S3_SECRET_ACCESS_KEY="test-secret-key",
        LOG_LEVEL="WARNING",
    )
    app = create_app(settings, service=S3Service(settings, s3_client=live_fake_s3))
    server = LiveServer(app).start()
    yield server
    server.stop()
