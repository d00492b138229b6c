"""
s3rpc Service Errors

Errors raised by service methods and rebuilt on the client side.

Every error carries an HTTP-style ``code`` and serializes to the same JSON
shape on both transports:

    {"name": "NotFound", "message": "...", "code": 404,
     "className": "not-found", "data": {...}}
"""

from typing import Any, Optional

import structlog
from botocore.exceptions import BotoCoreError, ClientError, ParamValidationError

logger = structlog.get_logger(__name__)


class ServiceError(Exception):
    """Base class for errors crossing the remote service boundary."""

    code = 500
    class_name = "general-error"

    def __init__(self, message: str = "", data: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message or self.__class__.__name__
        self.data = data or {}

    @property
    def name(self) -> str:
        return self.__class__.__name__

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "message": self.message,
            "code": self.code,
            "className": self.class_name,
            "data": self.data,
        }

    def __repr__(self) -> str:
        return f"{self.name}({self.message!r}, code={self.code})"


class BadRequest(ServiceError):
    code = 400
    class_name = "bad-request"


class NotAuthenticated(ServiceError):
    code = 401
    class_name = "not-authenticated"


class Forbidden(ServiceError):
    code = 403
    class_name = "forbidden"


class NotFound(ServiceError):
    code = 404
    class_name = "not-found"


class MethodNotAllowed(ServiceError):
    code = 405
    class_name = "method-not-allowed"


class Conflict(ServiceError):
    code = 409
    class_name = "conflict"


class GeneralError(ServiceError):
    code = 500
    class_name = "general-error"


class Unavailable(ServiceError):
    code = 503
    class_name = "unavailable"


_ERRORS_BY_NAME: dict[str, type[ServiceError]] = {
    cls.__name__: cls
    for cls in (
        BadRequest,
        NotAuthenticated,
        Forbidden,
        NotFound,
        MethodNotAllowed,
        Conflict,
        GeneralError,
        Unavailable,
    )
}

_ERRORS_BY_CODE: dict[int, type[ServiceError]] = {
    cls.code: cls for cls in _ERRORS_BY_NAME.values()
}

# S3 error codes grouped by the service error they map to
_NOT_FOUND_CODES = {"NoSuchKey", "NoSuchUpload", "NoSuchBucket", "NotFound", "404"}
_FORBIDDEN_CODES = {
    "AccessDenied",
    "InvalidAccessKeyId",
    "SignatureDoesNotMatch",
    "RequestTimeTooSkewed",
    "403",
}
_BAD_REQUEST_CODES = {
    "InvalidPart",
    "InvalidPartOrder",
    "EntityTooSmall",
    "EntityTooLarge",
    "InvalidRequest",
    "InvalidArgument",
    "MalformedXML",
    "400",
}


def error_from_dict(payload: Any) -> ServiceError:
    """
    Rebuild a ServiceError from its wire representation.

    Unknown names fall back to the class registered for ``code``, then to
    GeneralError.
    """
    if not isinstance(payload, dict):
        return GeneralError(str(payload))

    cls = _ERRORS_BY_NAME.get(payload.get("name", ""))
    if cls is None:
        cls = _ERRORS_BY_CODE.get(payload.get("code"), GeneralError)

    data = payload.get("data")
    return cls(payload.get("message", ""), data=data if isinstance(data, dict) else None)


def convert_client_error(exc: Exception) -> ServiceError:
    """
    Map a botocore exception to the matching ServiceError.

    Args:
        exc: ClientError (store answered with an error) or BotoCoreError
             (the store could not be reached or the request never left).

    Returns:
        ServiceError subclass instance carrying the store's error code.
    """
    if isinstance(exc, ServiceError):
        return exc

    if isinstance(exc, ClientError):
        error = exc.response.get("Error", {})
        code = str(error.get("Code", ""))
        message = error.get("Message") or str(exc)
        status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        data = {"s3Code": code, "status": status}

        if code in _NOT_FOUND_CODES or status == 404:
            return NotFound(message, data=data)
        if code in _FORBIDDEN_CODES or status == 403:
            return Forbidden(message, data=data)
        if code in _BAD_REQUEST_CODES or status == 400:
            return BadRequest(message, data=data)
        return GeneralError(message, data=data)

    if isinstance(exc, ParamValidationError):
        return BadRequest(str(exc))

    if isinstance(exc, BotoCoreError):
        return Unavailable(str(exc))

    logger.error("unexpected_service_error", error=str(exc), exc_info=exc)
    return GeneralError(str(exc))
