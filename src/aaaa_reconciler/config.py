"""Configuration management for the AAAA record reconciler."""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from .constants import DEFAULT_DNS_VIEW, DEFAULT_INTERNAL_ID_EA_NAME, DEFAULT_NETWORK_VIEW


@dataclass
class WAPIConfig:
    """Connection settings for the remote IPAM/DNS service (WAPI)."""

    base_url: str
    username: str
    password: str
    wapi_version: str = "v2.12"
    timeout: int = 30
    verify_ssl: bool = True
    max_connections: int = 20  # Maximum total connections
    max_keepalive: int = 10  # Maximum keep-alive connections


@dataclass
class ReconcilerConfig:
    """
    Reconciliation behaviour.

    Controls defaults applied to declarations, the name of the reserved
    internal-id extensible attribute and how many records apply handles at once.
    """

    internal_id_ea_name: str = DEFAULT_INTERNAL_ID_EA_NAME
    default_dns_view: str = DEFAULT_DNS_VIEW
    default_network_view: str = DEFAULT_NETWORK_VIEW
    max_concurrent_records: int = 5
    state_file: Path = field(default_factory=lambda: Path(".aaaa_state/state.db"))


@dataclass
class RetryConfig:
    """Retry policy applied by the apply orchestrator to transient gateway errors."""

    max_attempts: int = 3
    multiplier: float = 1.0
    wait_min: float = 1.0
    wait_max: float = 10.0


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "INFO"
    format: str = "console"
    file: Path | None = None


@dataclass
class Settings:
    """
    Complete configuration for the reconciler.

    This combines all configuration sections.
    """

    wapi: WAPIConfig | None = None
    reconciler: ReconcilerConfig = field(default_factory=ReconcilerConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_file(cls, config_path: Path) -> "Settings":
        """
        Load configuration from YAML file.

        Args:
            config_path: Path to YAML config file

        Returns:
            Settings instance
        """
        try:
            with open(config_path) as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in configuration file {config_path}: {e}") from e

        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ValueError(
                f"Invalid configuration file structure in {config_path}: "
                f"expected dictionary, got {type(data).__name__}"
            )

        wapi_data = data.get("wapi")
        wapi = WAPIConfig(**wapi_data) if wapi_data else None

        reconciler_data = dict(data.get("reconciler") or {})
        if reconciler_data.get("state_file"):
            reconciler_data["state_file"] = Path(reconciler_data["state_file"])
        reconciler = ReconcilerConfig(**reconciler_data)

        retry = RetryConfig(**(data.get("retry") or {}))

        logging_data = dict(data.get("logging") or {})
        if logging_data.get("file"):
            logging_data["file"] = Path(logging_data["file"])
        logging = LoggingConfig(**logging_data)

        return cls(wapi=wapi, reconciler=reconciler, retry=retry, logging=logging)

    def to_file(self, config_path: Path) -> None:
        """
        Save configuration to YAML file.

        Args:
            config_path: Path to save config file
        """
        data = {
            "wapi": self.wapi.__dict__ if self.wapi else None,
            "reconciler": {
                k: str(v) if isinstance(v, Path) else v
                for k, v in self.reconciler.__dict__.items()
            },
            "retry": self.retry.__dict__,
            "logging": {
                k: str(v) if isinstance(v, Path) else v
                for k, v in self.logging.__dict__.items()
                if v is not None
            },
        }

        config_path.parent.mkdir(parents=True, exist_ok=True)

        with open(config_path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)

    @classmethod
    def from_env(cls) -> "Settings":
        """
        Create configuration from environment variables.

        Environment variables:
            WAPI_URL: Grid master base URL
            WAPI_USERNAME: WAPI username
            WAPI_PASSWORD: WAPI password
            WAPI_VERSION: WAPI version (default: v2.12)
            WAPI_VERIFY_SSL: Set to 'false' to skip certificate checks
            RECONCILER_STATE_FILE: Path of the tracked-state database
            LOG_LEVEL: Logging level (default: INFO)
            LOG_FORMAT: 'console' or 'json' (default: console)

        Returns:
            Settings instance

        Raises:
            ValueError: If WAPI_URL is set but required credentials are missing
        """
        wapi_config = None
        wapi_url = os.getenv("WAPI_URL")
        if wapi_url:
            username = os.environ.get("WAPI_USERNAME", "")
            password = os.environ.get("WAPI_PASSWORD", "")

            missing_creds = []
            if not username:
                missing_creds.append("WAPI_USERNAME")
            if not password:
                missing_creds.append("WAPI_PASSWORD")

            if missing_creds:
                raise ValueError(
                    f"WAPI_URL is set but required credentials are missing: "
                    f"{', '.join(missing_creds)}."
                )

            verify_ssl_str = os.environ.get("WAPI_VERIFY_SSL", "true").lower()
            verify_ssl = verify_ssl_str not in ("false", "0", "no", "off")

            wapi_config = WAPIConfig(
                base_url=wapi_url,
                username=username,
                password=password,
                wapi_version=os.environ.get("WAPI_VERSION", "v2.12"),
                verify_ssl=verify_ssl,
            )

        reconciler_config = ReconcilerConfig()
        state_file = os.environ.get("RECONCILER_STATE_FILE")
        if state_file:
            reconciler_config.state_file = Path(state_file)

        logging_config = LoggingConfig(
            level=os.environ.get("LOG_LEVEL", "INFO"),
            format=os.environ.get("LOG_FORMAT", "console"),
        )

        return cls(
            wapi=wapi_config,
            reconciler=reconciler_config,
            retry=RetryConfig(),
            logging=logging_config,
        )


def load_config(config_file: Path | None = None) -> Settings:
    """
    Load configuration from file or environment variables.

    Args:
        config_file: Optional path to YAML config file

    Returns:
        Settings instance

    Raises:
        FileNotFoundError: If config_file is specified but doesn't exist
    """
    if config_file:
        if not config_file.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_file}")
        return Settings.from_file(config_file)
    return Settings.from_env()
