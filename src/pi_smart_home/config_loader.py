"""
Configuration Loader.

Responsible for reading the agent's config.yaml file and for parsing the
transport connection strings used by both the Agent and the Controller.
"""
import yaml
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Any, Optional

from pi_smart_home.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parent / "server" / "config.yaml"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def load_config(config_path: str = "config.yaml") -> Dict[str, Any]:
    """
    Loads the YAML configuration file.
    A missing file is not an error: the caller falls back to its defaults.
    """
    path = Path(config_path)
    if not path.exists():
        logger.warning(f"Config file not found at {path}. Using defaults.")
        return {}

    try:
        with open(path, 'r') as f:
            config = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        logger.error(f"Failed to parse config file: {e}")
        raise ConfigurationError(f"Invalid config file {path}: {e}") from e

    if not isinstance(config, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping at the top level")
    logger.info(f"Loaded configuration from {path}")
    return config


@dataclass(frozen=True)
class ConnectionSettings:
    """Broker coordinates parsed from a connection string."""
    host: str
    port: int
    device_id: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    use_tls: bool = False


def parse_connection_string(connection_string: Optional[str]) -> ConnectionSettings:
    """
    Parses 'HostName=broker;Port=1883;DeviceId=pi;Username=u;Password=p;UseTls=false'.

    Keys are case-insensitive and only HostName is required. The port
    defaults to 8883 when UseTls is set, 1883 otherwise.
    """
    if connection_string is None or not connection_string.strip():
        raise ConfigurationError("Connection string can not be null or empty")

    values: Dict[str, str] = {}
    for part in connection_string.split(";"):
        part = part.strip()
        if not part:
            continue
        key, sep, value = part.partition("=")
        if not sep or not key.strip():
            raise ConfigurationError(f"Malformed connection string segment: {part!r}")
        values[key.strip().lower()] = value.strip()

    host = values.get("hostname")
    if not host:
        raise ConfigurationError("Connection string is missing HostName")

    use_tls_raw = values.get("usetls", "false").lower()
    if use_tls_raw in _TRUE_VALUES:
        use_tls = True
    elif use_tls_raw in _FALSE_VALUES:
        use_tls = False
    else:
        raise ConfigurationError(f"UseTls must be true or false, got {use_tls_raw!r}")

    port_raw = values.get("port")
    if port_raw:
        try:
            port = int(port_raw)
        except ValueError as e:
            raise ConfigurationError(f"Port must be an integer, got {port_raw!r}") from e
        if not 0 < port < 65536:
            raise ConfigurationError(f"Port out of range: {port}")
    else:
        port = 8883 if use_tls else 1883

    return ConnectionSettings(
        host=host,
        port=port,
        device_id=values.get("deviceid") or None,
        username=values.get("username") or None,
        password=values.get("password") or None,
        use_tls=use_tls,
    )
