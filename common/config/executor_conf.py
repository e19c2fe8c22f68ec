"""Executor node configuration parsed from conf/config.toml.

The file has a [log] section and an [executor] section; the CLI may use a
file that only carries a [blockchain] section. Keys are matched without
regard to case, so ``listenAddress``, ``ListenAddress`` and
``listenaddress`` all set ``ExecutorConf.listen_address``.
"""

from pathlib import Path
from typing import Any, Dict, Optional, Union

import toml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from common.errors import ConfigError

# File name of the node private key under KeyPath
PRIVATE_KEY_FILE_NAME = "private.key"

MODE_PROXY = "proxy"
MODE_SELF = "self"
STORAGE_XUPERDB = "XuperDB"
STORAGE_LOCAL = "Local"
BLOCKCHAIN_XCHAIN = "xchain"


def _toml_key(field_name: str) -> str:
    # snake_case field -> lower-cased TOML key: "listen_address" -> "listenaddress"
    return field_name.replace("_", "")


class ConfSection(BaseModel):
    """Base for every configuration section: immutable, case-insensitive keys.

    Numbers are accepted for string settings (HttpPort = 8080).
    """

    model_config = ConfigDict(
        alias_generator=_toml_key,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
        coerce_numbers_to_str=True,
    )


class LogConf(ConfSection):
    """Storage path and level of the logs generated at runtime."""

    level: str = "info"
    path: str = "./logs"


class HttpServerConf(ConfSection):
    """Executor node's httpserver; AllowCros decides whether cross-domain requests are allowed."""

    switch: str = "off"
    http_address: str = "0.0.0.0"
    http_port: str = "8080"
    allow_cros: bool = False

    @property
    def enabled(self) -> bool:
        return self.switch.lower() == "on"


class XuperDBConf(ConfSection):
    """XuperDB endpoint used to upload or download files."""

    private_key: str = ""
    host: str
    key_path: str = ""
    name_space: str
    # Seconds an access credential may stay unused before it is re-derived
    expire_time: int = Field(default=0, ge=0)


class ExecutorModeConf(ConfSection):
    """Task execution type: proxy-execution or self-execution.

    "self" suits an executor and a data owner of the same organization: the
    executor downloads sample files from the data owner's XuperDB directly,
    without a permission application.
    """

    type: str = MODE_PROXY
    self_conf: Optional[XuperDBConf] = Field(default=None, alias="self")

    @field_validator("type")
    @classmethod
    def _check_type(cls, value: str) -> str:
        value = value.lower()
        if value not in (MODE_PROXY, MODE_SELF):
            raise ValueError(f"mode type must be '{MODE_PROXY}' or '{MODE_SELF}', got {value!r}")
        return value

    @model_validator(mode="after")
    def _self_needs_xuperdb(self) -> "ExecutorModeConf":
        if self.type == MODE_SELF and self.self_conf is None:
            raise ValueError("mode type 'self' requires a [executor.mode.self] section")
        return self


class ExecutorMpcConf(ConfSection):
    """Features of the mpc process."""

    train_task_limit: int = Field(default=100, ge=0)
    predict_task_limit: int = Field(default=100, ge=0)
    # Seconds, rpc request timeout between executor nodes
    rpc_timeout: int = Field(default=3, gt=0)
    # Seconds a task may run before it is aborted
    task_limit_time: int = Field(default=3600, gt=0)


class PredictLocalConf(ConfSection):
    """Local path of prediction results storage."""

    local_predict_storage_path: str = "./predictions"


class ExecutorStorageConf(ConfSection):
    """Model, evaluation and prediction result storage.

    Prediction results go to 'XuperDB' or 'Local' depending on ``type``;
    models and evaluations are always stored locally.
    """

    type: str = STORAGE_LOCAL
    local_model_storage_path: str = "./models"
    local_evaluation_storage_path: str = "./evaluations"
    live_evaluation_storage_path: str = "./lives"
    xuperdb: Optional[XuperDBConf] = None
    local: PredictLocalConf = Field(default_factory=PredictLocalConf)

    @field_validator("type")
    @classmethod
    def _check_type(cls, value: str) -> str:
        for known in (STORAGE_XUPERDB, STORAGE_LOCAL):
            if value.lower() == known.lower():
                return known
        raise ValueError(
            f"storage type must be '{STORAGE_XUPERDB}' or '{STORAGE_LOCAL}', got {value!r}"
        )

    @model_validator(mode="after")
    def _xuperdb_needs_section(self) -> "ExecutorStorageConf":
        if self.type == STORAGE_XUPERDB and self.xuperdb is None:
            raise ValueError("storage type 'XuperDB' requires a [executor.storage.xuperdb] section")
        return self


class XchainConf(ConfSection):
    mnemonic: str
    contract_name: str
    contract_account: str
    chain_address: str
    chain_name: str = "xuper"


class BlockchainConf(ConfSection):
    """Configuration required to invoke blockchain contracts. Only 'xchain' is supported."""

    type: str = BLOCKCHAIN_XCHAIN
    xchain: Optional[XchainConf] = None
    # Recording a task outcome on chain: attempts and first backoff delay (seconds)
    retry_attempts: int = Field(default=3, ge=1)
    retry_backoff: float = Field(default=0.5, ge=0)
    # Records kept for reconciliation while the chain is unreachable
    max_pending_records: int = Field(default=1000, ge=1)

    @field_validator("type")
    @classmethod
    def _check_type(cls, value: str) -> str:
        value = value.lower()
        if value != BLOCKCHAIN_XCHAIN:
            raise ValueError(f"blockchain type must be '{BLOCKCHAIN_XCHAIN}', got {value!r}")
        return value

    @model_validator(mode="after")
    def _xchain_needs_section(self) -> "BlockchainConf":
        if self.xchain is None:
            raise ValueError("blockchain type 'xchain' requires an [xchain] section")
        return self


class ExecutorConf(ConfSection):
    """Configuration required for executor node startup."""

    name: str
    # Address the peer RPC server listens on, e.g. ":8184"
    listen_address: str
    # Address other executors use to reach this node
    public_address: str
    private_key: str = ""
    paddle_fl_address: str = ""
    paddle_fl_role: int = 0
    # Directory holding private.key and public.key
    key_path: str = "./keys"
    http_server: HttpServerConf = Field(default_factory=HttpServerConf)
    mode: ExecutorModeConf = Field(default_factory=ExecutorModeConf)
    mpc: ExecutorMpcConf = Field(default_factory=ExecutorMpcConf)
    storage: ExecutorStorageConf = Field(default_factory=ExecutorStorageConf)
    blockchain: BlockchainConf


def _lower_keys(data: Any) -> Any:
    if isinstance(data, dict):
        return {str(key).lower(): _lower_keys(value) for key, value in data.items()}
    if isinstance(data, list):
        return [_lower_keys(item) for item in data]
    return data


def read_config_file(config_path: Union[str, Path]) -> Dict[str, Any]:
    """
    Read a TOML configuration file into a dict with lower-cased keys.

    Raises:
        ConfigError: If the file is missing, unreadable or not valid TOML
    """
    path = Path(config_path)
    try:
        data = toml.load(str(path))
    except FileNotFoundError as e:
        raise ConfigError(f"config file not found: {path}") from e
    except toml.TomlDecodeError as e:
        raise ConfigError(f"malformed config file {path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"cannot read config file {path}: {e}") from e
    return _lower_keys(data)


def read_private_key(key_path: Union[str, Path]) -> str:
    """
    Read the private key stored as KeyPath/private.key, surrounding whitespace trimmed.

    Raises:
        ConfigError: If the file cannot be read or is empty
    """
    key_file = Path(key_path) / PRIVATE_KEY_FILE_NAME
    try:
        content = key_file.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"failed to read private key from {key_file}: {e}") from e

    private_key = content.strip()
    if not private_key:
        raise ConfigError(f"private key file {key_file} is empty")
    return private_key


def _resolve_xuperdb_key(conf: XuperDBConf, section: str) -> XuperDBConf:
    if conf.private_key:
        return conf
    if not conf.key_path:
        raise ConfigError(f"{section} needs either PrivateKey or KeyPath")
    return conf.model_copy(update={"private_key": read_private_key(conf.key_path)})


def _validate_section(model: type, data: Any, section: str) -> Any:
    if not isinstance(data, dict):
        raise ConfigError(f"missing required section [{section}]")
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"invalid [{section}] section: {e}") from e


def parse_executor_conf(data: Dict[str, Any]) -> ExecutorConf:
    """
    Validate the [executor] section and resolve private keys from KeyPath.

    Args:
        data: Section content with lower-cased keys

    Raises:
        ConfigError: If the section is invalid or a key file cannot be read
    """
    conf: ExecutorConf = _validate_section(ExecutorConf, data, "executor")

    # If the private key is not configured, read it from KeyPath
    if not conf.private_key:
        conf = conf.model_copy(update={"private_key": read_private_key(conf.key_path)})

    if conf.storage.type == STORAGE_XUPERDB and conf.storage.xuperdb is not None:
        xuperdb = _resolve_xuperdb_key(conf.storage.xuperdb, "[executor.storage.xuperdb]")
        conf = conf.model_copy(
            update={"storage": conf.storage.model_copy(update={"xuperdb": xuperdb})}
        )

    if conf.mode.type == MODE_SELF and conf.mode.self_conf is not None:
        self_conf = _resolve_xuperdb_key(conf.mode.self_conf, "[executor.mode.self]")
        conf = conf.model_copy(
            update={"mode": conf.mode.model_copy(update={"self_conf": self_conf})}
        )

    return conf


class ExecutorConfig(BaseModel):
    """Content of an executor configuration file."""

    model_config = ConfigDict(frozen=True)

    log: LogConf
    executor: ExecutorConf


def load_executor_config(config_path: Union[str, Path]) -> ExecutorConfig:
    """
    Parse the executor configuration file.

    Raises:
        ConfigError: On any problem; startup must abort
    """
    data = read_config_file(config_path)
    log_conf = _validate_section(LogConf, data.get("log"), "log")
    executor_conf = parse_executor_conf(data.get("executor"))
    return ExecutorConfig(log=log_conf, executor=executor_conf)


def load_cli_config(config_path: Union[str, Path]) -> BlockchainConf:
    """
    Parse the client configuration file.

    A [blockchain] section is used when present; otherwise the file is read
    as a full executor configuration and its Blockchain section is reused.
    """
    return ConfigProvider.for_cli(config_path).get_cli_conf()


class ConfigProvider:
    """Read-only holder of the configuration loaded once at startup.

    Constructed explicitly and handed to the components that need it.
    """

    def __init__(
        self,
        executor_conf: Optional[ExecutorConf] = None,
        log_conf: Optional[LogConf] = None,
        cli_conf: Optional[BlockchainConf] = None,
    ):
        self._executor_conf = executor_conf
        self._log_conf = log_conf
        self._cli_conf = cli_conf

    @classmethod
    def from_file(cls, config_path: Union[str, Path]) -> "ConfigProvider":
        """Load the executor configuration (node startup)."""
        config = load_executor_config(config_path)
        return cls(executor_conf=config.executor, log_conf=config.log)

    @classmethod
    def for_cli(cls, config_path: Union[str, Path]) -> "ConfigProvider":
        """Load the CLI configuration, falling back to the executor's Blockchain section."""
        data = read_config_file(config_path)
        if "blockchain" in data:
            cli_conf = _validate_section(BlockchainConf, data["blockchain"], "blockchain")
            return cls(cli_conf=cli_conf)

        config = load_executor_config(config_path)
        return cls(
            executor_conf=config.executor,
            log_conf=config.log,
            cli_conf=config.executor.blockchain,
        )

    def get_executor_conf(self) -> Optional[ExecutorConf]:
        """All configuration of the executor."""
        return self._executor_conf

    def get_log_conf(self) -> Optional[LogConf]:
        return self._log_conf

    def get_cli_conf(self) -> Optional[BlockchainConf]:
        """Blockchain configuration used by the CLI."""
        return self._cli_conf
