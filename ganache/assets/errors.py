"""
Error taxonomy shared by the media manager, the asset store and the HTTP layer.

Client errors are recoverable at the boundary and carry a stable ``code``.
A duplicate upload is not a failure: ``DuplicateAssetError`` carries the
existing record so the caller can hand it back. ``StorageError`` marks
filesystem faults; database faults propagate as SQLAlchemy exceptions.
"""
from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ganache.assets.services.schemas import AssetData


class AssetError(Exception):
    code = "internal"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ClientError(AssetError):
    code = "bad_request"


class NotFoundError(ClientError):
    code = "not_found"


class TooLargeError(ClientError):
    code = "too_large"


class InvalidImageError(ClientError):
    code = "invalid_image"


class InvalidUpdateError(ClientError):
    code = "bad_request"


class DuplicateAssetError(AssetError):
    code = "duplicate"

    def __init__(self, existing: AssetData):
        self.existing = existing
        super().__init__(f"asset with sha256 {existing.sha256} already exists")


class StorageError(AssetError):
    code = "storage_error"
