"""Async XuperDB storage backend using httpx."""

import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import httpx

from common.errors import ArtifactNotFound, StorageReadError, StorageWriteError
from common.logger import setup_logger
from common.storage.base import StorageBackend
from common.storage.encryption import EncryptionService
from common.utils.crypto import CryptoError, derive_key, sign_message
from common.utils.hashing import compute_hash

logger = setup_logger(__name__)

_ACCESS_KEY_SALT = b"xuperdb-access-token"


def _parse_json_response(response: httpx.Response) -> Dict[str, Any]:
    """
    Parse JSON response from httpx with proper typing.

    Args:
        response: httpx Response object

    Returns:
        Parsed JSON as dictionary
    """
    data: Any = response.json()
    if isinstance(data, dict):
        return data
    raise ValueError(f"Expected dict, got {type(data)}")


@dataclass(frozen=True)
class AccessCredential:
    """Signed access token presented to XuperDB."""

    owner: str
    token: str
    issued_at: int

    def headers(self) -> Dict[str, str]:
        return {
            "X-Xdb-Owner": self.owner,
            "X-Xdb-Token": self.token,
            "X-Xdb-Issued-At": str(self.issued_at),
        }


class CredentialCache:
    """Caches the XuperDB access credential of one namespace.

    The credential is re-derived once ``expire_time`` seconds have elapsed
    since it was last used. Shared by every storage instance of the
    namespace, hence the lock.
    """

    def __init__(
        self,
        private_key: str,
        namespace: str,
        expire_time: int,
        clock: Callable[[], float] = time.time,
    ):
        if not private_key:
            raise ValueError("XuperDB access requires a private key")
        self.namespace = namespace
        self.expire_time = expire_time
        self._clock = clock
        self._signing_key = derive_key(private_key, _ACCESS_KEY_SALT)
        self.owner = compute_hash(self._signing_key)[:40]
        self._lock = threading.Lock()
        self._credential: Optional[AccessCredential] = None
        self._last_used = 0.0
        self.refresh_count = 0

    def _derive(self, now: float) -> AccessCredential:
        issued_at = int(now)
        token = sign_message(self._signing_key, f"{self.owner}:{self.namespace}:{issued_at}")
        return AccessCredential(owner=self.owner, token=token, issued_at=issued_at)

    def get(self) -> AccessCredential:
        """Return a valid credential, deriving a new one when the old one expired."""
        with self._lock:
            now = self._clock()
            if self._credential is None or now - self._last_used >= self.expire_time:
                self._credential = self._derive(now)
                self.refresh_count += 1
                logger.debug(
                    f"Derived XuperDB credential for namespace {self.namespace} "
                    f"(refresh #{self.refresh_count})"
                )
            self._last_used = now
            return self._credential

    def invalidate(self) -> None:
        """Force the next get() to derive a fresh credential."""
        with self._lock:
            self._credential = None


class XuperDBStorage(StorageBackend):
    """Remote content store reached over the XuperDB HTTP API."""

    def __init__(
        self,
        host: str,
        namespace: str,
        credentials: CredentialCache,
        timeout: float = 30.0,
        encryption: Optional[EncryptionService] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize XuperDB storage.

        Args:
            host: XuperDB endpoint, "host:port" or a full URL
            namespace: Namespace the artifacts are written to
            credentials: Credential cache of the namespace
            timeout: Request timeout in seconds
            encryption: Encrypt artifacts before upload when given
            transport: Custom httpx transport (tests)
        """
        self.base_url = host if "://" in host else f"http://{host}"
        self.namespace = namespace
        self.credentials = credentials
        self.timeout = timeout
        self.encryption = encryption
        self._transport = transport
        self.client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        """Async context manager entry."""
        self._get_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()

    def _get_client(self) -> httpx.AsyncClient:
        if self.client is None:
            self.client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                follow_redirects=True,
                transport=self._transport,
            )
        return self.client

    async def close(self) -> None:
        if self.client:
            await self.client.aclose()
            self.client = None

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        """
        Send a signed request; on 401 the credential is re-derived once.
        """
        client = self._get_client()
        response = await client.request(
            method, url, headers=self.credentials.get().headers(), **kwargs
        )
        if response.status_code == httpx.codes.UNAUTHORIZED:
            logger.warning(f"XuperDB rejected credential on {url}, re-deriving")
            self.credentials.invalidate()
            response = await client.request(
                method, url, headers=self.credentials.get().headers(), **kwargs
            )
        return response

    def _params(self, path: str) -> Dict[str, str]:
        return {"ns": self.namespace, "name": path, "owner": self.credentials.owner}

    async def put(self, path: str, data: bytes) -> None:
        body = self.encryption.encrypt_artifact(data, path) if self.encryption else data
        try:
            response = await self._request(
                "POST",
                "/v1/file/write",
                params=self._params(path),
                content=body,
            )
            response.raise_for_status()
            result = _parse_json_response(response)
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Failed to write {path} to XuperDB {self.base_url}: {str(e)}")
            raise StorageWriteError(
                f"failed to write {path} to xuperdb namespace {self.namespace}: {str(e)}"
            ) from e

        logger.info(
            f"Wrote {path} to XuperDB namespace {self.namespace}: "
            f"file_id={result.get('fileID')}, size={len(body)} bytes"
        )

    async def get(self, path: str) -> bytes:
        try:
            response = await self._request("GET", "/v1/file/read", params=self._params(path))
            if response.status_code == httpx.codes.NOT_FOUND:
                raise ArtifactNotFound(
                    f"no artifact {path} in xuperdb namespace {self.namespace}"
                )
            response.raise_for_status()
            content = response.content
        except httpx.HTTPError as e:
            logger.error(f"Failed to read {path} from XuperDB {self.base_url}: {str(e)}")
            raise StorageReadError(
                f"failed to read {path} from xuperdb namespace {self.namespace}: {str(e)}"
            ) from e

        if self.encryption:
            try:
                return self.encryption.decrypt_artifact(content, path)
            except CryptoError as e:
                raise StorageReadError(f"cannot decrypt {path}: {str(e)}") from e
        return content

    async def exists(self, path: str) -> bool:
        try:
            response = await self._request("GET", "/v1/file/info", params=self._params(path))
            if response.status_code == httpx.codes.NOT_FOUND:
                return False
            response.raise_for_status()
            return True
        except httpx.HTTPError as e:
            raise StorageReadError(
                f"failed to stat {path} in xuperdb namespace {self.namespace}: {str(e)}"
            ) from e
