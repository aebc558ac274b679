# Logging_Config.py
# Description: Configuration for logging
#
# Imports
import logging
import logging.handlers
import sys
from typing import Any, Dict, Optional
#
# 3rd-Party Imports
from loguru import logger as loguru_logger
#
# Local Imports
from tradejournal.config import get_log_file_path, get_cli_setting, load_settings
#
########################################################################################################################
#
# Functions:

LOG_FORMAT = "%(asctime)s [%(levelname)-8s] %(name)s:%(lineno)d - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_LEVEL_MAPPING = {
    "TRACE": logging.DEBUG, "DEBUG": logging.DEBUG, "INFO": logging.INFO,
    "SUCCESS": logging.INFO, "METRIC": logging.INFO, "WARNING": logging.WARNING,
    "ERROR": logging.ERROR, "CRITICAL": logging.CRITICAL,
}


def sink_to_standard_logging(message):
    """Forwards a loguru message into the stdlib logger named after its module."""
    record = message.record
    std_level = _LEVEL_MAPPING.get(record["level"].name, logging.INFO)
    std_logger = logging.getLogger(record["name"])
    if record["exception"]:
        std_logger.log(std_level, record["message"], exc_info=record["exception"])
    else:
        std_logger.log(std_level, record["message"])


def configure_application_logging(app_config: Optional[Dict[str, Any]] = None, *, log_to_file: bool = True) -> logging.Logger:
    """Sets up all logging handlers, including Loguru integration."""
    app_config = app_config if app_config is not None else load_settings()
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    # --- Loguru -> standard logging ---
    try:
        loguru_logger.remove()
        loguru_logger.add(
            sink_to_standard_logging,
            format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} - {message}",
            level="TRACE"
        )
    except ValueError as e:
        logging.error(f"Loguru: Error during Loguru reconfiguration: {e}", exc_info=True)

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()

    log_level_str = str(app_config.get("general", {}).get("log_level", "INFO")).upper()
    log_level = getattr(logging, log_level_str, logging.INFO)
    root_logger.setLevel(log_level)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
    root_logger.addHandler(console_handler)

    # --- File logging ---
    if log_to_file:
        try:
            log_file_path = get_log_file_path()
            max_bytes = int(get_cli_setting("logging", "log_max_bytes", 10485760))
            backup_count = int(get_cli_setting("logging", "log_backup_count", 5))
            file_log_level_str = str(get_cli_setting("logging", "file_log_level", "INFO")).upper()
            file_log_level = getattr(logging, file_log_level_str, logging.INFO)

            file_handler = logging.handlers.RotatingFileHandler(
                log_file_path, maxBytes=max_bytes, backupCount=backup_count, encoding='utf-8'
            )
            file_handler.setLevel(file_log_level)
            file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
            root_logger.addHandler(file_handler)
            logging.info(f"Standard Logging: Added RotatingFileHandler (File: '{log_file_path}', Level: {logging.getLevelName(file_log_level)}).")

            # The root logger must not filter out what the most verbose handler wants
            if root_logger.level > file_log_level:
                root_logger.setLevel(file_log_level)
        except (OSError, ValueError) as e:
            logging.warning(f"!!! ERROR setting up file logging: {e}", exc_info=True)

    logging.info(f"Logging setup complete. Root level: {logging.getLevelName(root_logger.level)}")
    return root_logger

#
# End of Logging_Config.py
########################################################################################################################
