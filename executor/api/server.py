"""FastAPI application of the executor node."""

import asyncio
from dataclasses import dataclass
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from common.config.executor_conf import ExecutorConf, HttpServerConf
from common.config.settings import Settings
from common.logger import setup_logger
from common.monitoring.metrics import MetricsCollector, get_metrics_collector
from common.storage.encryption import EncryptionService
from common.storage.registry import StorageLocations, StorageRegistry
from executor import __version__
from executor.admission.controller import AdmissionController
from executor.api import routes
from executor.mpc.coordinator import MpcCoordinator
from executor.mpc.peer_client import HttpPeerTransport, PeerTransport
from executor.mpc.protocol import RelayProtocol
from executor.publisher.result_publisher import ResultPublisher
from executor.scheduler import TaskScheduler

logger = setup_logger(__name__)


@dataclass
class ExecutorComponents:
    """Everything a running node is made of."""

    scheduler: TaskScheduler
    transport: PeerTransport
    node_name: str
    task_limit_time: float


def build_components(
    conf: ExecutorConf,
    settings: Settings,
    metrics: Optional[MetricsCollector] = None,
) -> ExecutorComponents:
    """
    Wire the executor's components from its configuration.

    Args:
        conf: Executor configuration
        settings: Environment settings
        metrics: Metrics collector (defaults to the global one)

    Returns:
        ExecutorComponents
    """
    metrics = metrics or get_metrics_collector()
    rpc_timeout = float(conf.mpc.rpc_timeout)

    key = settings.get_encryption_key()
    encryption = EncryptionService(key) if key else None
    registry = StorageRegistry.from_config(conf.storage, encryption=encryption, timeout=rpc_timeout)

    transport = HttpPeerTransport(timeout=rpc_timeout)
    coordinator = MpcCoordinator(
        transport,
        RelayProtocol(conf.public_address),
        rpc_timeout=rpc_timeout,
        self_address=conf.public_address,
        metrics=metrics,
    )
    publisher = ResultPublisher.from_config(
        registry, conf.blockchain, timeout=rpc_timeout, metrics=metrics
    )
    scheduler = TaskScheduler(
        AdmissionController.from_config(conf.mpc, metrics=metrics),
        coordinator,
        publisher,
        StorageLocations(conf.storage),
    )
    return ExecutorComponents(
        scheduler=scheduler,
        transport=transport,
        node_name=conf.name,
        task_limit_time=float(conf.mpc.task_limit_time),
    )


async def reconcile_forever(publisher: ResultPublisher, interval: float) -> None:
    """Replay queued chain records every interval seconds until cancelled."""
    while True:
        await asyncio.sleep(interval)
        try:
            await publisher.reconcile()
        except Exception as e:
            logger.error(f"Reconciliation pass failed: {str(e)}", exc_info=True)


def create_app(
    components: ExecutorComponents,
    http_conf: Optional[HttpServerConf] = None,
    reconcile_interval: float = 30.0,
) -> FastAPI:
    """
    Create the FastAPI application serving tasks and peer rounds.

    Args:
        components: Wired executor components
        http_conf: HttpServer section; enables CORS when AllowCros is set
        reconcile_interval: Seconds between reconciliation passes (0 disables)

    Returns:
        FastAPI application
    """
    app = FastAPI(
        title="MPC Executor Node API",
        description="Task submission, peer MPC rounds and health",
        version=__version__,
    )

    if http_conf is not None and http_conf.allow_cros:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.state.scheduler = components.scheduler
    app.state.node_name = components.node_name
    app.state.task_limit_time = components.task_limit_time
    app.state.reconciler = None

    app.include_router(routes.router)

    @app.on_event("startup")
    async def startup_event():
        """Run on application startup."""
        logger.info(f"Executor {components.node_name} starting up")
        if reconcile_interval > 0:
            app.state.reconciler = asyncio.create_task(
                reconcile_forever(components.scheduler.publisher, reconcile_interval)
            )

    @app.on_event("shutdown")
    async def shutdown_event():
        """Run on application shutdown."""
        logger.info(f"Executor {components.node_name} shutting down")
        reconciler = app.state.reconciler
        if reconciler is not None:
            reconciler.cancel()
            await asyncio.gather(reconciler, return_exceptions=True)
            app.state.reconciler = None
        await components.scheduler.shutdown()
        await components.transport.close()
        await components.scheduler.publisher.close()

    return app
