"""
Payload models for the S3 service methods.

Field aliases follow the wire names (``expiresIn``, ``UploadId``,
``PartNumber``, ``type``); Python code uses the snake_case attributes.
Binary payloads travel as base64 strings in the ``buffer`` field.
"""

import base64
import binascii
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

MAX_PART_NUMBER = 10000


class _Payload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(..., min_length=1)


class _BufferPayload(_Payload):
    buffer: bytes

    @field_validator("buffer", mode="before")
    @classmethod
    def _decode_buffer(cls, value):
        if isinstance(value, (bytes, bytearray)):
            return bytes(value)
        if isinstance(value, str):
            try:
                return base64.b64decode(value, validate=True)
            except binascii.Error as e:
                raise ValueError(f"buffer is not valid base64: {e}") from e
        raise ValueError("buffer must be a base64 string")


class PresignRequest(_Payload):
    """Input of ``create``: which operation to sign for which key."""

    command: Literal["GetObject", "PutObject", "UploadPart"] = "GetObject"
    expires_in: Optional[int] = Field(None, alias="expiresIn", gt=0)
    content_type: Optional[str] = Field(None, alias="type")
    upload_id: Optional[str] = Field(None, alias="UploadId")
    part_number: Optional[int] = Field(None, alias="PartNumber", ge=1, le=MAX_PART_NUMBER)


class PutObjectRequest(_BufferPayload):
    content_type: Optional[str] = Field(None, alias="type")


class CreateMultipartUploadRequest(_Payload):
    content_type: Optional[str] = Field(None, alias="type")


class UploadPartRequest(_BufferPayload):
    upload_id: str = Field(..., alias="UploadId", min_length=1)
    part_number: int = Field(..., alias="PartNumber", ge=1, le=MAX_PART_NUMBER)


class CompletedPart(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    part_number: int = Field(..., alias="PartNumber", ge=1, le=MAX_PART_NUMBER)
    etag: str = Field(..., alias="ETag", min_length=1)


class CompleteMultipartUploadRequest(_Payload):
    upload_id: str = Field(..., alias="UploadId", min_length=1)
    parts: list[CompletedPart] = Field(..., min_length=1)

    @field_validator("parts")
    @classmethod
    def _unique_part_numbers(cls, parts: list[CompletedPart]) -> list[CompletedPart]:
        numbers = [part.part_number for part in parts]
        if len(numbers) != len(set(numbers)):
            raise ValueError("part numbers must be unique")
        return parts

    def sorted_parts(self) -> list[dict]:
        """Parts in ascending part number, shaped for boto3."""
        return [
            {"PartNumber": part.part_number, "ETag": part.etag}
            for part in sorted(self.parts, key=lambda p: p.part_number)
        ]


def encode_buffer(data: bytes) -> str:
    """Encode raw bytes for a ``buffer`` field."""
    return base64.b64encode(data).decode("ascii")


def decode_buffer(value: str) -> bytes:
    """Decode a ``buffer`` field back to raw bytes."""
    return base64.b64decode(value)
