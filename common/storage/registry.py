"""Mapping from configuration to storage locations and backends."""

import threading
from typing import Dict, Optional, Tuple

import httpx

from common.config.executor_conf import STORAGE_XUPERDB, ExecutorStorageConf
from common.errors import StorageError
from common.logger import setup_logger
from common.models.task import (
    LocalLocation,
    RemoteLocation,
    StorageLocation,
    TaskKind,
)
from common.storage.base import StorageBackend
from common.storage.encryption import EncryptionService
from common.storage.local import LocalStorage
from common.storage.xuperdb_client import CredentialCache, XuperDBStorage

logger = setup_logger(__name__)


class StorageLocations:
    """Where each kind of output goes, according to [executor.storage].

    Models and evaluations are always local; prediction results follow
    Storage.Type.
    """

    def __init__(self, storage_conf: ExecutorStorageConf):
        self.conf = storage_conf

    def model(self) -> StorageLocation:
        return LocalLocation(path=self.conf.local_model_storage_path)

    def prediction(self) -> StorageLocation:
        if self.conf.type == STORAGE_XUPERDB and self.conf.xuperdb is not None:
            xuperdb = self.conf.xuperdb
            return RemoteLocation(
                host=xuperdb.host,
                namespace=xuperdb.name_space,
                expiry=xuperdb.expire_time,
            )
        return LocalLocation(path=self.conf.local.local_predict_storage_path)

    def evaluation(self) -> StorageLocation:
        return LocalLocation(path=self.conf.local_evaluation_storage_path)

    def live_evaluation(self) -> StorageLocation:
        return LocalLocation(path=self.conf.live_evaluation_storage_path)

    def for_kind(self, kind: TaskKind) -> StorageLocation:
        """Location of the main artifact of a task kind."""
        if kind == TaskKind.TRAIN:
            return self.model()
        return self.prediction()


class StorageRegistry:
    """Hands out one backend per storage location.

    Remote backends of the same host and namespace share a credential cache.
    """

    def __init__(
        self,
        xuperdb_private_key: Optional[str] = None,
        encryption: Optional[EncryptionService] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the registry.

        Args:
            xuperdb_private_key: Key that signs XuperDB credentials
            encryption: Client-side encryption for remote artifacts
            timeout: Remote request timeout in seconds
            transport: Custom httpx transport for remote backends (tests)
        """
        self._private_key = xuperdb_private_key
        self._encryption = encryption
        self._timeout = timeout
        self._transport = transport
        self._lock = threading.Lock()
        self._local: Dict[str, LocalStorage] = {}
        self._remote: Dict[Tuple[str, str], XuperDBStorage] = {}

    @classmethod
    def from_config(
        cls,
        storage_conf: ExecutorStorageConf,
        encryption: Optional[EncryptionService] = None,
        timeout: float = 30.0,
    ) -> "StorageRegistry":
        private_key = storage_conf.xuperdb.private_key if storage_conf.xuperdb else None
        return cls(xuperdb_private_key=private_key, encryption=encryption, timeout=timeout)

    def backend_for(self, location: StorageLocation) -> StorageBackend:
        """Return the backend addressed by location."""
        with self._lock:
            if isinstance(location, LocalLocation):
                if location.path not in self._local:
                    self._local[location.path] = LocalStorage(location.path)
                return self._local[location.path]

            key = (location.host, location.namespace)
            if key not in self._remote:
                if not self._private_key:
                    raise StorageError(
                        f"no XuperDB private key configured for {location.describe()}"
                    )
                credentials = CredentialCache(
                    self._private_key, location.namespace, location.expiry
                )
                self._remote[key] = XuperDBStorage(
                    location.host,
                    location.namespace,
                    credentials,
                    timeout=self._timeout,
                    encryption=self._encryption,
                    transport=self._transport,
                )
                logger.info(f"Created XuperDB backend for {location.describe()}")
            return self._remote[key]

    async def close(self) -> None:
        with self._lock:
            remotes = list(self._remote.values())
            self._remote.clear()
        for backend in remotes:
            await backend.close()
