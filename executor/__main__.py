"""Main entry point when running as module: python -m executor."""

import asyncio
import sys
from typing import List, Tuple

import uvicorn

from common.config import ConfigProvider, Settings
from common.errors import ConfigError
from common.logger import configure_logging, setup_logger
from executor.api.server import build_components, create_app

logger = setup_logger(__name__)


def split_address(address: str, default_host: str = "0.0.0.0") -> Tuple[str, int]:
    """
    Split "host:port" (or ":port") into its parts.

    Raises:
        ConfigError: If the port is missing or not a number
    """
    host, sep, port = address.rpartition(":")
    if not sep or not port.isdigit():
        raise ConfigError(f"invalid listen address {address!r}, expected host:port")
    return host or default_host, int(port)


async def serve(servers: List[uvicorn.Server]) -> None:
    await asyncio.gather(*(server.serve() for server in servers))


def main() -> int:
    settings = Settings()
    try:
        provider = ConfigProvider.from_file(settings.executor_config)
        conf = provider.get_executor_conf()
        configure_logging(provider.get_log_conf(), level_override=settings.log_level)
        host, port = split_address(conf.listen_address)
        http_port = int(conf.http_server.http_port) if conf.http_server.enabled else None
        components = build_components(conf, settings)
    except (ConfigError, ValueError, OSError) as e:
        logger.error(f"Failed to start executor: {str(e)}")
        return 1

    app = create_app(
        components,
        http_conf=conf.http_server,
        reconcile_interval=settings.reconcile_interval,
    )
    log_level = (settings.log_level or provider.get_log_conf().level).lower()
    if log_level == "warn":
        log_level = "warning"

    configs = [uvicorn.Config(app, host=host, port=port, log_level=log_level)]
    if conf.http_server.enabled:
        configs.append(
            uvicorn.Config(
                app,
                host=conf.http_server.http_address,
                port=http_port,
                log_level=log_level,
                lifespan="off",
            )
        )
        logger.info(
            f"HTTP server enabled on {conf.http_server.http_address}:{conf.http_server.http_port}"
        )

    logger.info(f"Starting executor {conf.name} on {host}:{port} (public {conf.public_address})")
    asyncio.run(serve([uvicorn.Server(config) for config in configs]))
    return 0


if __name__ == "__main__":
    sys.exit(main())
