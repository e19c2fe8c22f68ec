"""Local filesystem storage backend."""

import asyncio
import os
import tempfile
from pathlib import Path
from typing import Union

from common.errors import ArtifactNotFound, StorageReadError, StorageWriteError
from common.logger import setup_logger
from common.storage.base import StorageBackend

logger = setup_logger(__name__)


class LocalStorage(StorageBackend):
    """Stores artifacts as files below a root directory."""

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root).resolve()

    def _resolve(self, path: str) -> Path:
        target = (self.root / path).resolve()
        # Keys such as "../x" must not escape the root directory
        if target != self.root and self.root not in target.parents:
            raise ValueError(f"path {path!r} escapes storage root {self.root}")
        return target

    def _write(self, path: str, data: bytes) -> Path:
        target = self._resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)

        # Write to a temp file in the same directory, then rename atomically
        fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, target)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
        return target

    async def put(self, path: str, data: bytes) -> None:
        try:
            target = await asyncio.to_thread(self._write, path, data)
        except (OSError, ValueError) as e:
            raise StorageWriteError(
                f"failed to write {path} under {self.root}: {str(e)}"
            ) from e
        logger.info(f"Stored {len(data)} bytes at {target}")

    async def get(self, path: str) -> bytes:
        try:
            target = self._resolve(path)
            return await asyncio.to_thread(target.read_bytes)
        except FileNotFoundError as e:
            raise ArtifactNotFound(f"no artifact at {path} under {self.root}") from e
        except (OSError, ValueError) as e:
            raise StorageReadError(
                f"failed to read {path} under {self.root}: {str(e)}"
            ) from e

    async def exists(self, path: str) -> bool:
        try:
            target = self._resolve(path)
        except ValueError:
            return False
        return await asyncio.to_thread(target.is_file)
