"""
Configuration Loader.

Responsible for reading the YAML configuration file and turning its
`mqtt` section into Client arguments.
"""
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from mqtt_lite.protocol.models import DEFAULT_BROKER_HOSTNAME, DEFAULT_PORT, KEEP_ALIVE_TIME, Will

logger = logging.getLogger(__name__)


def load_config(config_path: Union[str, Path] = "config.yaml") -> Dict[str, Any]:
    """
    Reads the YAML file at `config_path` into a dict.

    A missing file yields an empty config, so every setting falls back to its
    default. A file whose top level is not a mapping raises ValueError.
    """
    path = Path(config_path)
    if not path.exists():
        logger.warning(f"Config file not found at {path}. Using defaults.")
        return {}

    try:
        with path.open("r", encoding="utf-8") as f:
            config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        logger.error(f"Failed to parse config file {path}: {e}")
        raise

    if config is None:
        config = {}
    if not isinstance(config, dict):
        raise ValueError(f"{path}: expected a mapping at the top level, got {type(config).__name__}")
    logger.info(f"Loaded configuration from {path}")
    return config


def client_options(config: Dict[str, Any]) -> Dict[str, Any]:
    """Keyword arguments for `Client` taken from the `mqtt` section."""
    mqtt_conf = config.get('mqtt', {}) or {}
    options = {
        'hostname': mqtt_conf.get('host', DEFAULT_BROKER_HOSTNAME),
        'port': int(mqtt_conf.get('port', DEFAULT_PORT)),
        'keep_alive': int(mqtt_conf.get('keep_alive', KEEP_ALIVE_TIME)),
    }
    if 'error_terminate' in mqtt_conf:
        options['error_terminate'] = bool(mqtt_conf['error_terminate'])
    return options


def will_from_config(config: Dict[str, Any]) -> Optional[Will]:
    will_conf = (config.get('mqtt', {}) or {}).get('will')
    if not will_conf or not will_conf.get('topic'):
        return None

    message = will_conf.get('message', '')
    if isinstance(message, str):
        message = message.encode('utf-8')
    return Will(
        topic=will_conf['topic'],
        message=message,
        qos=int(will_conf.get('qos', 0)),
        retain=bool(will_conf.get('retain', False)),
    )
