import os
import json
import logging

import aiofiles
from appdirs import user_config_dir

from echo_net.protocol import PORT, BUFFER_SIZE

logger = logging.getLogger(__name__)

# --- Configuration Paths ---
CONFIG_DIR = user_config_dir("UDPEcho", False) # False: no extra author directory level
CONFIG_FILE = os.path.join(CONFIG_DIR, "config.json")
# --- End Configuration Paths ---

DEFAULT_CONFIG = {
    "server_host": "localhost", # Hostname the client sends to
    "bind_host": "0.0.0.0", # Interface the server binds; 0.0.0.0 means all IPv4 interfaces
    "port": PORT,
    "buffer_size": BUFFER_SIZE,
    "reply_timeout": None, # Seconds to wait for a reply; None waits forever
    "log_level": "INFO",
}

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _valid_port(value):
    return isinstance(value, int) and not isinstance(value, bool) and 0 <= value <= 65535

def _valid_buffer_size(value):
    return isinstance(value, int) and not isinstance(value, bool) and value > 0

def _valid_timeout(value):
    return value is None or (isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0)

def _valid_host(value):
    return isinstance(value, str)

def _valid_log_level(value):
    return isinstance(value, str) and value.upper() in LOG_LEVELS


VALIDATORS = {
    "server_host": _valid_host,
    "bind_host": _valid_host,
    "port": _valid_port,
    "buffer_size": _valid_buffer_size,
    "reply_timeout": _valid_timeout,
    "log_level": _valid_log_level,
}


def validate_config(data):
    """
    Merge loaded values over the defaults, dropping anything invalid.

    Args:
        data: Values read from the config file (may be partial or None)

    Returns:
        A complete config dict. Unknown keys are kept as-is; invalid values
        for known keys are replaced by their default with a warning.
    """
    config = dict(DEFAULT_CONFIG)
    for key, value in (data or {}).items():
        validator = VALIDATORS.get(key)
        if validator is None:
            logger.debug(f"Keeping unknown config key '{key}'")
            config[key] = value
        elif validator(value):
            config[key] = value
        else:
            logger.warning(f"Invalid value {value!r} for config key '{key}', using default {DEFAULT_CONFIG[key]!r}")
    config["log_level"] = config["log_level"].upper()
    return config


async def save_config_json(config_path, data_to_save, reason="update"):
    """Helper function to save the config JSON."""
    try:
        os.makedirs(os.path.dirname(config_path) or ".", exist_ok=True)
        async with aiofiles.open(config_path, "w") as f:
            await f.write(json.dumps(data_to_save, indent=4))
        logger.info(f"Saved config to {config_path} (Reason: {reason})")
    except OSError as e:
        logger.error(f"Failed to save config to {config_path}: {e}")


async def load_config(config_path=None):
    """Load the config file, writing the defaults out when there is none yet."""
    config_path = config_path or CONFIG_FILE

    if not os.path.exists(config_path):
        logger.info(f"No config at {config_path}, creating one with defaults.")
        await save_config_json(config_path, DEFAULT_CONFIG, reason="defaults")
        return dict(DEFAULT_CONFIG)

    loaded_data = {}
    try:
        async with aiofiles.open(config_path, "r") as f:
            content = await f.read()
        loaded_data = json.loads(content)
        if not isinstance(loaded_data, dict):
            raise TypeError(f"expected a JSON object, got {type(loaded_data).__name__}")
        logger.info(f"Loaded config from {config_path}")
    except (json.JSONDecodeError, OSError, TypeError) as e:
        logger.warning(f"Could not load or parse config file {config_path}: {e}. Using defaults.")
        loaded_data = {}

    config = validate_config(loaded_data)
    logger.debug(f"Config State: {config}")
    return config
