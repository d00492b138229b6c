"""
s3rpc: S3 object storage exposed as a remote service.

Server side: ``S3Service`` registered on a FastAPI app by ``create_app``.
Client side: ``get_client_service`` for a proxy with ``upload``/``download``.
"""

from s3rpc.client import ClientApp, RestTransport, SocketTransport, get_client_service
from s3rpc.storage import S3Service

__version__ = "1.0.0"

__all__ = [
    "S3Service",
    "ClientApp",
    "RestTransport",
    "SocketTransport",
    "get_client_service",
]
