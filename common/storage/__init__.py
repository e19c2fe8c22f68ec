"""Storage backends for models, evaluations and prediction results."""

from common.storage.base import StorageBackend
from common.storage.encryption import EncryptionService
from common.storage.local import LocalStorage
from common.storage.registry import StorageLocations, StorageRegistry
from common.storage.xuperdb_client import AccessCredential, CredentialCache, XuperDBStorage

__all__ = [
    "AccessCredential",
    "CredentialCache",
    "EncryptionService",
    "LocalStorage",
    "StorageBackend",
    "StorageLocations",
    "StorageRegistry",
    "XuperDBStorage",
]
