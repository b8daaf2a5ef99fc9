"""Configuration loading for credbag.

The configuration is a small YAML file; every key is optional::

    bag_path: ~/.config/credbag/bag
    public_key: ~/.config/credbag/id_rsa.pub
    private_key: ~/.config/credbag/id_rsa
    mountpoint: ~/.credbag/mnt
    mount_timeout: 60
    debug: false
    log_file: ~/.local/log/credbag.log
"""

import os
from pathlib import Path
from typing import Optional

import structlog
import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import ConfigError

logger = structlog.get_logger(__name__)

CONFIG_ENV_VAR = "CREDBAG_CONFIG"
DEFAULT_CONFIG_DIR = Path("~/.config/credbag")
DEFAULT_CONFIG_PATH = DEFAULT_CONFIG_DIR / "config.yml"


class Config(BaseModel):
    """Immutable settings shared by every operation of one invocation."""

    model_config = ConfigDict(frozen=True, extra="forbid", validate_default=True)

    bag_path: Path = DEFAULT_CONFIG_DIR / "bag"
    public_key: Path = DEFAULT_CONFIG_DIR / "id_rsa.pub"
    private_key: Path = DEFAULT_CONFIG_DIR / "id_rsa"
    mountpoint: Path = Path("~/.credbag/mnt")
    mount_timeout: int = Field(default=60, gt=0)
    debug: bool = False
    log_file: Optional[Path] = None

    @field_validator("bag_path", "public_key", "private_key", "mountpoint", "log_file")
    @classmethod
    def _expand(cls, value: Optional[Path]) -> Optional[Path]:
        if value is None:
            return None
        return Path(os.path.expandvars(str(value))).expanduser()

    def to_yaml(self) -> str:
        """Render the effective configuration as YAML."""
        return yaml.safe_dump(self.model_dump(mode="json"), sort_keys=False)


def load_config(path: Optional[Path] = None) -> Config:
    """Load the configuration file.

    Args:
        path: Explicit file location. Defaults to ``$CREDBAG_CONFIG`` or
            ``~/.config/credbag/config.yml``.

    Returns:
        The parsed configuration; defaults when the file does not exist.

    Raises:
        ConfigError: If the file is unreadable or invalid.
    """
    if path is None:
        path = Path(os.environ.get(CONFIG_ENV_VAR, str(DEFAULT_CONFIG_PATH)))
    path = Path(path).expanduser()

    if not path.exists():
        logger.debug("config_not_found", path=str(path))
        return Config()

    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"Cannot read configuration {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(f"Configuration {path} must be a mapping")

    try:
        config = Config.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration {path}: {e}") from e

    logger.debug("loaded_config", path=str(path))
    return config
