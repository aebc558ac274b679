# tradejournal/config.py
# Description: Configuration management for the trade journal sync core.
#
# Imports
import copy
import os
import tomllib
from pathlib import Path
from typing import Dict, Any, Optional
#
# Third-Party Imports
import toml
from loguru import logger
from pydantic import BaseModel
#
# Local Imports
#
#######################################################################################################################
#
# Functions:

# --- Constants ---
# Client ID for this install's local journal database
LOCAL_CLIENT_ID = "tradejournal_local_instance_v1"

# --- Path to the configuration file ---
DEFAULT_CONFIG_PATH = Path.home() / ".config" / "tradejournal" / "config.toml"

# Environment overrides
ENV_CONFIG_PATH = "TRADEJOURNAL_CONFIG"
ENV_REMOTE_URL = "TRADEJOURNAL_REMOTE_URL"
ENV_REMOTE_KEY = "TRADEJOURNAL_REMOTE_KEY"

BASE_DATA_DIR = Path.home() / ".local" / "share" / "tradejournal"

CONFIG_TOML_CONTENT = """
# Configuration for the trade journal
# Located at: ~/.config/tradejournal/config.toml
[general]
log_level = "INFO" # DEBUG, INFO, WARNING, ERROR, CRITICAL

[logging]
# Log file will be placed in the same directory as the journal_db_path below.
log_filename = "tradejournal.log"
file_log_level = "INFO"
log_max_bytes = 10485760 # 10 MB
log_backup_count = 5

[database]
journal_db_path = "~/.local/share/tradejournal/journal.db"

[remote]
# Base URL of the remote relational service (PostgREST style, e.g. https://xyz.supabase.co)
url = ""
# Public (anon) API key. Prefer the TRADEJOURNAL_REMOTE_KEY environment variable.
api_key = ""
# Per-request timeout in seconds. 0 disables timeouts entirely.
request_timeout = 0

[sync]
enabled = true
# Quiet period after the last local write before a push runs.
debounce_seconds = 1.0
# Delay between engine start and the capability probe.
probe_delay_seconds = 5.0
# Tolerance for the PnL-sum comparison when deciding if a pull is needed.
pnl_epsilon = 0.01
"""

try:
    DEFAULT_CONFIG_FROM_TOML: Dict[str, Any] = tomllib.loads(CONFIG_TOML_CONTENT)
except tomllib.TOMLDecodeError as e:
    logger.critical(f"FATAL: Could not parse internal CONFIG_TOML_CONTENT: {e}.")
    DEFAULT_CONFIG_FROM_TOML = {}


def deep_merge_dicts(base: Dict, update: Dict) -> Dict:
    """Recursively merges update_dict into base_dict."""
    merged = copy.deepcopy(base)
    for key, value in update.items():
        if isinstance(value, dict) and key in merged and isinstance(merged[key], dict):
            merged[key] = deep_merge_dicts(merged[key], value)
        else:
            merged[key] = value
    return merged


def _get_typed_value(data_dict: Dict, key: str, default: Any, target_type: type = str) -> Any:
    """Helper to get value from dict and cast to type, with logging for type errors."""
    value = data_dict.get(key, default)
    if value is default and default is not None:
        return value
    if value is None:
        return None

    try:
        if target_type == bool:
            if isinstance(value, bool):
                return value
            return str(value).lower() in ['true', '1', 't', 'y', 'yes']
        if target_type == Path:
            return Path(value) if value else default
        return target_type(value)
    except (ValueError, TypeError) as e:
        logger.warning(f"Config key '{key}' has value '{value}' which could not be converted to {target_type}. Using default: '{default}'. Error: {e}")
        return default


def get_config_path() -> Path:
    env_path = os.environ.get(ENV_CONFIG_PATH)
    if env_path:
        return Path(env_path).expanduser()
    return DEFAULT_CONFIG_PATH


# --- Primary Configuration Loading Logic ---
_CONFIG_CACHE: Optional[Dict[str, Any]] = None


def load_settings(force_reload: bool = False) -> Dict[str, Any]:
    """
    Loads settings from ~/.config/tradejournal/config.toml (or $TRADEJOURNAL_CONFIG).
    If the file doesn't exist, it's created with default values.
    """
    global _CONFIG_CACHE
    if _CONFIG_CACHE is not None and not force_reload:
        return _CONFIG_CACHE

    loaded_config = copy.deepcopy(DEFAULT_CONFIG_FROM_TOML)
    config_path = get_config_path()

    if not config_path.exists():
        logger.info(f"Config file not found at {config_path}. Creating with default values.")
        try:
            config_path.parent.mkdir(parents=True, exist_ok=True)
            with open(config_path, "w", encoding="utf-8") as f:
                f.write(CONFIG_TOML_CONTENT)
            logger.info(f"Created default config file at {config_path}")
        except OSError as e:
            logger.error(f"Could not create default config file {config_path}: {e}. Using internal defaults.")
    else:
        logger.info(f"Attempting to load config from: {config_path}")
        try:
            with open(config_path, "rb") as f:
                user_config_from_file = tomllib.load(f)
            loaded_config = deep_merge_dicts(loaded_config, user_config_from_file)
            logger.info(f"Successfully loaded and merged config from {config_path}")
        except tomllib.TOMLDecodeError as e:
            logger.error(f"Error decoding TOML config file {config_path}: {e}. Using internal defaults.", exc_info=True)
        except OSError as e:
            logger.error(f"Could not read config file {config_path}: {e}. Using internal defaults.", exc_info=True)

    # Secrets and endpoints from the environment win over the file
    remote_section = loaded_config.setdefault("remote", {})
    if os.environ.get(ENV_REMOTE_URL):
        remote_section["url"] = os.environ[ENV_REMOTE_URL]
    if os.environ.get(ENV_REMOTE_KEY):
        remote_section["api_key"] = os.environ[ENV_REMOTE_KEY]

    _CONFIG_CACHE = loaded_config
    logger.debug(f"load_settings returning config with top-level keys: {list(loaded_config.keys())}")
    return _CONFIG_CACHE


def get_cli_setting(section: str, key: str, default: Any = None) -> Any:
    """Helper to get a specific setting from the loaded configuration."""
    config = load_settings()
    section_data = config.get(section)
    if isinstance(section_data, dict):
        return section_data.get(key, default)
    return default


def save_setting_to_config(section: str, key: str, value: Any) -> bool:
    """
    Persists a single setting into the user's config file and refreshes the cache.

    Only the user file is rewritten; keys absent from it keep falling back to the defaults.
    """
    config_path = get_config_path()
    try:
        file_data: Dict[str, Any] = {}
        if config_path.exists():
            with open(config_path, "rb") as f:
                file_data = tomllib.load(f)
        file_data.setdefault(section, {})[key] = value
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, "w", encoding="utf-8") as f:
            toml.dump(file_data, f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        logger.error(f"Failed to save setting [{section}].{key} to {config_path}: {e}", exc_info=True)
        return False
    load_settings(force_reload=True)
    logger.info(f"Saved setting [{section}].{key} to {config_path}")
    return True


# --- Database and Log File Path Getters ---
def get_journal_db_path() -> Path:
    default_db_path_str = DEFAULT_CONFIG_FROM_TOML.get("database", {}).get("journal_db_path", str(BASE_DATA_DIR / "journal.db"))
    db_path_str = get_cli_setting("database", "journal_db_path", default_db_path_str)
    return Path(db_path_str).expanduser().resolve()


def get_log_file_path() -> Path:
    default_log_filename = DEFAULT_CONFIG_FROM_TOML.get("logging", {}).get("log_filename", "tradejournal.log")
    log_filename = get_cli_setting("logging", "log_filename", default_log_filename)
    log_file_path = get_journal_db_path().parent / log_filename
    try:
        log_file_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.error(f"Could not create log directory {log_file_path.parent}: {e}", exc_info=True)
    return log_file_path


# --- Typed sync settings ---
class SyncSettings(BaseModel):
    enabled: bool = True
    debounce_seconds: float = 1.0
    probe_delay_seconds: float = 5.0
    pnl_epsilon: float = 0.01
    remote_url: str = ""
    remote_api_key: str = ""
    request_timeout: Optional[float] = None


def get_sync_settings(config: Optional[Dict[str, Any]] = None) -> SyncSettings:
    """Builds SyncSettings from the [sync] and [remote] sections."""
    config = config if config is not None else load_settings()
    sync_section = config.get("sync", {})
    remote_section = config.get("remote", {})
    defaults = SyncSettings()

    timeout = _get_typed_value(remote_section, "request_timeout", 0.0, float)
    return SyncSettings(
        enabled=_get_typed_value(sync_section, "enabled", defaults.enabled, bool),
        debounce_seconds=_get_typed_value(sync_section, "debounce_seconds", defaults.debounce_seconds, float),
        probe_delay_seconds=_get_typed_value(sync_section, "probe_delay_seconds", defaults.probe_delay_seconds, float),
        pnl_epsilon=_get_typed_value(sync_section, "pnl_epsilon", defaults.pnl_epsilon, float),
        remote_url=_get_typed_value(remote_section, "url", "", str),
        remote_api_key=_get_typed_value(remote_section, "api_key", "", str),
        request_timeout=timeout if timeout and timeout > 0 else None,
    )

#
# End of tradejournal/config.py
#######################################################################################################################
