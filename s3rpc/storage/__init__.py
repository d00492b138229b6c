"""
Storage module for S3/MinIO operations.

Exports:
    S3Service: Object store gateway exposed as a remote service
    get_s3_client: Build a boto3 S3 client from settings
    SERVICE_METHODS: Wire method names mapped to S3Service attributes
"""

from s3rpc.storage.s3 import SERVICE_METHODS, S3Service, get_s3_client

__all__ = [
    "S3Service",
    "get_s3_client",
    "SERVICE_METHODS",
]
