"""
Client module for calling a remote s3rpc server.

Exports:
    ClientApp: Holds the transport and hands out service proxies
    RemoteService: Generic remote service proxy
    RestTransport / SocketTransport: HTTP and WebSocket transports
    get_client_service: Build the S3 service proxy with upload/download
    TransferOptions / TransferResult: Upload and download options and outcome
    SinglePart / MultiPart / select_strategy: Upload strategy selection
"""

from s3rpc.client.app import ClientApp, RemoteService
from s3rpc.client.results import TransferOptions, TransferResult
from s3rpc.client.service import S3ClientService, get_client_service
from s3rpc.client.strategy import MultiPart, SinglePart, TransferStrategy, select_strategy
from s3rpc.client.transports import RestTransport, SocketTransport, Transport

__all__ = [
    "ClientApp",
    "RemoteService",
    "S3ClientService",
    "get_client_service",
    "Transport",
    "RestTransport",
    "SocketTransport",
    "TransferOptions",
    "TransferResult",
    "SinglePart",
    "MultiPart",
    "TransferStrategy",
    "select_strategy",
]
