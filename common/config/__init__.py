"""Configuration: TOML executor configuration and environment settings."""

from common.config.executor_conf import (
    PRIVATE_KEY_FILE_NAME,
    BlockchainConf,
    ConfigProvider,
    ExecutorConf,
    ExecutorConfig,
    ExecutorModeConf,
    ExecutorMpcConf,
    ExecutorStorageConf,
    HttpServerConf,
    LogConf,
    PredictLocalConf,
    XchainConf,
    XuperDBConf,
    load_cli_config,
    load_executor_config,
    read_private_key,
)
from common.config.settings import Settings

__all__ = [
    "PRIVATE_KEY_FILE_NAME",
    "BlockchainConf",
    "ConfigProvider",
    "ExecutorConf",
    "ExecutorConfig",
    "ExecutorModeConf",
    "ExecutorMpcConf",
    "ExecutorStorageConf",
    "HttpServerConf",
    "LogConf",
    "PredictLocalConf",
    "Settings",
    "XchainConf",
    "XuperDBConf",
    "load_cli_config",
    "load_executor_config",
    "read_private_key",
]
