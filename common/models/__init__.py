# Shared data models

from common.models.task import (
    LocalLocation,
    PayloadDescriptor,
    PublishedRef,
    RemoteLocation,
    StorageLocation,
    TaskKind,
    TaskRequest,
    TaskResult,
    TaskStatus,
)

__all__ = [
    "LocalLocation",
    "PayloadDescriptor",
    "PublishedRef",
    "RemoteLocation",
    "StorageLocation",
    "TaskKind",
    "TaskRequest",
    "TaskResult",
    "TaskStatus",
]
