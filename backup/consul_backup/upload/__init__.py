"""
Upload module for consul-backup.

This module ships snapshot artifacts to object storage:
- UploadDispatcher: bounded fixed-interval retry around a provider
- S3UploadTarget: aiobotocore PutObject

Invariants:
    - Unsupported providers fail before any network call
    - The blob is re-sent unchanged on every attempt
"""

from .base import UploadOutcome, UploadTarget
from .dispatcher import UploadDispatcher, create_upload_target
from .s3 import S3UploadTarget

__all__ = [
    "UploadTarget",
    "UploadOutcome",
    "UploadDispatcher",
    "create_upload_target",
    "S3UploadTarget",
]
