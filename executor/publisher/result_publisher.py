"""Stores task artifacts and records task outcomes on chain."""

import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import httpx

from common.config.executor_conf import BlockchainConf
from common.errors import (
    BlockchainRecordError,
    StorageError,
    StorageReadError,
    StorageWriteError,
)
from common.logger import setup_logger
from common.models.task import PublishedRef, StorageLocation
from common.monitoring.metrics import MetricsCollector, get_metrics_collector
from common.storage.registry import StorageRegistry
from common.utils.hashing import compute_hash, verify_hash
from common.utils.retry import RetryPolicy, retry_async
from executor.blockchain.xchain_client import XchainClient

logger = setup_logger(__name__)

FINISH = "finish"
FAIL = "fail"

# Chain errors worth another attempt; anything else is a bug
_RETRYABLE = (httpx.HTTPError, ValueError)


@dataclass
class PendingRecord:
    """An on-chain record that failed every attempt and waits for reconcile()."""

    task_id: str
    method: str
    argument: Any
    attempts: int
    last_error: str
    queued_at: float = field(default_factory=time.time)


class ResultPublisher:
    """Writes artifacts to storage, then records them on chain.

    A stored artifact is never rolled back: when the chain stays unreachable
    after every retry, the record is queued and replayed by reconcile().
    """

    def __init__(
        self,
        registry: StorageRegistry,
        chain: XchainClient,
        retry_policy: Optional[RetryPolicy] = None,
        metrics: Optional[MetricsCollector] = None,
        max_pending: int = 1000,
    ):
        """
        Initialize the publisher.

        Args:
            registry: Storage backends by location
            chain: Client of the task contract
            retry_policy: Retry policy for chain records (3 attempts, 0.5s x 2^n)
            metrics: Metrics collector (defaults to the global one)
            max_pending: Queued chain records kept; the oldest is dropped beyond it
        """
        self.registry = registry
        self.chain = chain
        self.retry_policy = retry_policy or RetryPolicy()
        self.metrics = metrics or get_metrics_collector()
        self.max_pending = max_pending
        self._pending: List[PendingRecord] = []

    @classmethod
    def from_config(
        cls,
        registry: StorageRegistry,
        blockchain_conf: BlockchainConf,
        timeout: float = 30.0,
        metrics: Optional[MetricsCollector] = None,
    ) -> "ResultPublisher":
        policy = RetryPolicy(
            attempts=blockchain_conf.retry_attempts,
            base_delay=blockchain_conf.retry_backoff,
        )
        chain = XchainClient(blockchain_conf.xchain, timeout=timeout)
        return cls(
            registry,
            chain,
            retry_policy=policy,
            metrics=metrics,
            max_pending=blockchain_conf.max_pending_records,
        )

    @property
    def pending_records(self) -> Tuple[PendingRecord, ...]:
        return tuple(self._pending)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def publish(
        self,
        task_id: str,
        artifact: bytes,
        location: StorageLocation,
        name: str,
        record: bool = True,
    ) -> PublishedRef:
        """
        Store an artifact and record the task's completion on chain.

        Args:
            task_id: Task identifier
            artifact: Artifact bytes
            location: Where to store the artifact
            name: File name of the artifact within the task's directory
            record: Whether to record completion on chain

        Returns:
            PublishedRef; ``recorded`` is False while the chain record is queued

        Raises:
            StorageWriteError: If the artifact could not be stored
        """
        key = f"{task_id}/{name}"
        start = time.monotonic()
        try:
            backend = self.registry.backend_for(location)
            await backend.put(key, artifact)
        except StorageWriteError:
            raise
        except StorageError as e:
            raise StorageWriteError(
                f"cannot store {key} at {location.describe()}: {str(e)}"
            ) from e
        self.metrics.record_timing(
            "artifact_write",
            time.monotonic() - start,
            {"task_id": task_id, "size": len(artifact)},
        )

        ref = PublishedRef(
            task_id=task_id,
            location=location,
            key=key,
            digest=compute_hash(artifact),
            size=len(artifact),
        )
        logger.info(f"Stored {key} ({ref.size} bytes) at {location.describe()}")
        if not record:
            return ref

        result = {
            "location": location.describe(),
            "key": key,
            "digest": ref.digest,
            "size": ref.size,
        }
        tx_id = await self._record(FINISH, task_id, result)
        if tx_id is None:
            return ref
        return ref.model_copy(update={"tx_id": tx_id, "recorded": True})

    async def fetch(self, ref: PublishedRef) -> bytes:
        """
        Read a published artifact back and check it against its digest.

        Raises:
            ArtifactNotFound: If nothing is stored under the reference
            StorageReadError: If the read fails or the content does not match
        """
        data = await self.registry.backend_for(ref.location).get(ref.key)
        if not verify_hash(data, ref.digest):
            raise StorageReadError(f"digest mismatch for {ref.key} at {ref.location.describe()}")
        return data

    async def record_failure(self, task_id: str, reason: str) -> Optional[str]:
        """
        Record an aborted task on chain, queueing the record if the chain is down.

        Returns:
            Transaction ID, or None if the record was queued
        """
        return await self._record(FAIL, task_id, reason)

    async def _invoke(self, method: str, task_id: str, argument: Any) -> str:
        async with self.chain as chain:
            if method == FINISH:
                return await chain.finish_task(task_id, argument)
            return await chain.fail_task(task_id, argument)

    async def _record_with_retry(self, method: str, task_id: str, argument: Any) -> str:
        try:
            return await retry_async(
                lambda: self._invoke(method, task_id, argument),
                self.retry_policy,
                retry_on=_RETRYABLE,
                operation=f"{method} record of task {task_id}",
            )
        except _RETRYABLE as e:
            raise BlockchainRecordError(
                f"{method} record of task {task_id} failed after "
                f"{self.retry_policy.attempts} attempt(s): {str(e)}"
            ) from e

    async def _record(self, method: str, task_id: str, argument: Any) -> Optional[str]:
        try:
            return await self._record_with_retry(method, task_id, argument)
        except BlockchainRecordError as e:
            if len(self._pending) >= self.max_pending:
                dropped = self._pending.pop(0)
                self.metrics.record_counter(
                    "chain_records_dropped", metadata={"task_id": dropped.task_id}
                )
                logger.error(
                    f"Reconciliation queue full, dropped {dropped.method} record "
                    f"of task {dropped.task_id}"
                )
            self._pending.append(
                PendingRecord(
                    task_id=task_id,
                    method=method,
                    argument=argument,
                    attempts=self.retry_policy.attempts,
                    last_error=str(e),
                )
            )
            self.metrics.record_counter("chain_records_queued", metadata={"task_id": task_id})
            logger.warning(f"Queued {method} record of task {task_id} for reconciliation")
            return None

    async def reconcile(self) -> int:
        """
        Try each queued record once more.

        Returns:
            Number of records that reached the chain
        """
        if not self._pending:
            return 0

        recorded = 0
        for pending in list(self._pending):
            try:
                tx_id = await self._invoke(pending.method, pending.task_id, pending.argument)
            except _RETRYABLE as e:
                pending.attempts += 1
                pending.last_error = str(e)
                logger.warning(
                    f"Reconciling {pending.method} record of task {pending.task_id} "
                    f"failed (attempt {pending.attempts}): {str(e)}"
                )
                continue
            self._pending.remove(pending)
            recorded += 1
            logger.info(f"Reconciled {pending.method} record of task {pending.task_id}: {tx_id}")

        if recorded:
            self.metrics.record_counter("chain_records_reconciled", recorded)
        return recorded

    async def close(self) -> None:
        await self.registry.close()

    def describe_pending(self, limit: int = 20) -> List[Dict[str, Any]]:
        """The oldest queued records, in a form fit for the health endpoint."""
        return [
            {
                "task_id": p.task_id,
                "method": p.method,
                "attempts": p.attempts,
                "last_error": p.last_error,
            }
            for p in self._pending[:limit]
        ]
