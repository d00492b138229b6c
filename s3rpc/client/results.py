"""Transfer options and results returned by upload/download."""

from dataclasses import dataclass
from typing import Any, Optional

import httpx

DEFAULT_CONTENT_TYPE = "application/octet-stream"


@dataclass
class TransferOptions:
    expires_in: Optional[int] = None  # presigned URL lifetime, server default when None
    content_type: str = DEFAULT_CONTENT_TYPE


@dataclass
class TransferResult:
    """
    Outcome of an upload or download.

    A failed HTTP leg against a presigned URL is reported here with
    ``ok=False`` instead of raising; ``status`` is 0 when no response was
    received at all.
    """

    ok: bool
    status: int
    etag: Optional[str] = None
    content_type: Optional[str] = None
    buffer: Optional[bytes] = None
    error: Optional[str] = None

    @classmethod
    def from_response(cls, response: httpx.Response, with_body: bool = False) -> "TransferResult":
        content_type = response.headers.get("content-type")
        if content_type:
            content_type = content_type.split(";")[0].strip()
        return cls(
            ok=response.is_success,
            status=response.status_code,
            etag=response.headers.get("etag"),
            content_type=content_type,
            buffer=response.content if with_body and response.is_success else None,
            error=None if response.is_success else response.text[:500],
        )

    @classmethod
    def failed(cls, status: int, error: str) -> "TransferResult":
        return cls(ok=False, status=status, error=error)

    def to_dict(self) -> dict[str, Any]:
        """Wire-style view: ``ETag`` and ``type`` keys, unset fields left out."""
        payload: dict[str, Any] = {"ok": self.ok, "status": self.status}
        if self.etag is not None:
            payload["ETag"] = self.etag
        if self.content_type is not None:
            payload["type"] = self.content_type
        if self.buffer is not None:
            payload["buffer"] = self.buffer
        if self.error is not None:
            payload["error"] = self.error
        return payload
