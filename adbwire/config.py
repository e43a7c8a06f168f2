"""Configuration management for adbwire."""

from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field
from ruamel.yaml import YAML

DEFAULT_CONFIG_PATH = Path.home() / ".config/adbwire/config.yaml"


class ServerConfig(BaseModel):
    """Where the ADB server listens and how connections to it behave."""

    host: str = Field(default="127.0.0.1", description="ADB server host")
    port: int = Field(default=5037, ge=1, le=65535, description="ADB server port")
    connect_delay: float = Field(
        default=0.2,
        ge=0,
        description="Seconds to wait after connecting before sending the first command"
    )
    command_timeout: Optional[float] = Field(
        default=None,
        gt=0,
        description="Seconds to wait for a command response (None waits forever)"
    )
    debug: bool = Field(default=False, description="Log every ADB protocol exchange")


class ToolsConfig(BaseModel):
    """Locations of native executables."""

    adb_path: str = Field(default="adb", description="Path to ADB binary")


class AdbWireConfig(BaseModel):
    """Main configuration for adbwire."""

    config_dir: Path = Field(
        default_factory=lambda: Path.home() / ".config/adbwire",
        description="Configuration directory"
    )

    server: ServerConfig = Field(default_factory=ServerConfig)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)

    log_level: str = Field(default="INFO", description="Logging level")
    log_file: Optional[Path] = Field(default=None, description="File that receives a DEBUG level log")

    class Config:
        """Pydantic configuration."""

        validate_assignment = True


def load_config(config_path: Optional[Path] = None) -> AdbWireConfig:
    """Load the configuration, writing a default file on first use.

    ``server.*`` settings are read by each ``Connection`` the client opens
    (address, post-connect delay, command timeout, protocol tracing) and
    ``tools.adb_path`` by the client's ``NativeTools``.

    Args:
        config_path: YAML file, ``~/.config/adbwire/config.yaml`` by default

    Raises:
        pydantic.ValidationError: If the file holds invalid settings
    """
    path = config_path or DEFAULT_CONFIG_PATH
    if not path.exists():
        config = AdbWireConfig()
        save_config(config, path)
        return config

    with open(path, "r") as f:
        data = YAML(typ="safe").load(f) or {}
    return AdbWireConfig.model_validate(data)


def save_config(config: AdbWireConfig, config_path: Optional[Path] = None) -> None:
    """Write the configuration as block-style YAML."""
    path = config_path or DEFAULT_CONFIG_PATH
    path.parent.mkdir(parents=True, exist_ok=True)

    yaml = YAML()
    yaml.default_flow_style = False
    with open(path, "w") as f:
        yaml.dump(config.model_dump(mode="json"), f)


def get_config() -> AdbWireConfig:
    """Return the configuration loaded from the default path, loading it once."""
    if not hasattr(get_config, "_config"):
        get_config._config = load_config()
    return get_config._config
