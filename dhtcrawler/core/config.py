"""
Crawler configuration parameters.

Defines admission policy, per-session pacing, bootstrap peers and output
locations. Loaded once at startup from a TOML file; a handful of
deployment-specific values can be overridden from the environment (or a
``.env`` file) so the same config can be reused across hosts.
"""

import os
import tomllib
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator


ENV_PREFIX = "DHTCRAWLER_"

# Environment variable -> config field
ENV_OVERRIDES = {
    f"{ENV_PREFIX}DATA_DIR": "data_dir",
    f"{ENV_PREFIX}DATABASE": "database",
    f"{ENV_PREFIX}LOG_LEVEL": "log_level",
    f"{ENV_PREFIX}LOG_FILE": "log_file",
}


class ConfigError(Exception):
    """Raised when the configuration file is missing or invalid."""


class BootstrapNode(BaseModel):
    """A well-known seed peer used to enter the network."""

    model_config = ConfigDict(frozen=True)

    ipv4: Optional[str] = None
    ipv6: Optional[str] = None
    port: int = Field(ge=1, le=65535)
    key: str  # textual (hex) node identity

    @model_validator(mode="after")
    def _require_address(self) -> "BootstrapNode":
        if not self.ipv4 and not self.ipv6:
            raise ValueError("bootstrap node needs an ipv4 or ipv6 address")
        return self


class CrawlerConfig(BaseModel):
    """Process-wide crawler configuration (immutable once loaded)"""

    model_config = ConfigDict(frozen=True)

    # Admission policy
    interval: float = Field(default=60, ge=0)  # seconds between session admissions
    max_crawlers: int = Field(default=4, ge=1)  # concurrent sessions

    # Per-session pacing
    timeout: float = Field(default=30, ge=0)  # idle timeout in seconds
    request_interval: float = Field(default=1, ge=0)  # seconds between query rounds
    requests_per_interval: int = Field(default=32, ge=1)  # peers queried per round
    random_requests: int = Field(default=1, ge=0)  # randomized probes per queried peer
    initial_nodes_list_size: int = Field(default=4096, ge=1)  # frontier capacity and growth step
    node_limit: Optional[int] = Field(default=None, ge=1)  # None = unbounded

    # Network
    bootstraps: List[BootstrapNode] = Field(default_factory=list)
    bind_host: str = "0.0.0.0"
    bind_port: int = Field(default=0, ge=0, le=65535)

    # Output and observability
    data_dir: Path = Path("data")
    log_level: int = Field(default=3, ge=0, le=6)
    log_file: Optional[Path] = None
    database: Optional[Path] = None  # geo database (MaxMind .mmdb)

    def with_overrides(self, **changes) -> "CrawlerConfig":
        """Return a copy with the given fields replaced and re-validated."""
        data = self.model_dump()
        data.update({k: v for k, v in changes.items() if v is not None})
        return CrawlerConfig.model_validate(data)


def _env_overrides() -> dict:
    overrides = {}
    for var, field_name in ENV_OVERRIDES.items():
        value = os.environ.get(var)
        if value:
            overrides[field_name] = value
    return overrides


def load_config(config_path: str, use_env: bool = True) -> CrawlerConfig:
    """
    Load configuration from a TOML file.

    Args:
        config_path: Path to the config file
        use_env: Apply ``.env`` / environment overrides on top of the file

    Returns:
        CrawlerConfig instance

    Raises:
        ConfigError: If the file cannot be read or fails validation
    """
    path = Path(config_path).expanduser()
    try:
        with path.open("rb") as fp:
            data = tomllib.load(fp)
    except OSError as e:
        raise ConfigError(f"cannot read config file {path}: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"malformed config file {path}: {e}") from e

    if use_env:
        load_dotenv()
        data.update(_env_overrides())

    try:
        return CrawlerConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"invalid config file {path}: {e}") from e
