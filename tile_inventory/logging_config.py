import logging
import os
import opentelemetry.trace
from azure.monitor.opentelemetry import configure_azure_monitor

LOGGER_NAME = "tile_inventory"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _log_level() -> int:
    level = logging.getLevelName(os.environ.get("TILES_LOG_LEVEL", "INFO").upper())
    return level if isinstance(level, int) else logging.INFO


def running_in_azure() -> bool:
    return bool(os.environ.get("FUNCTIONS_WORKER_RUNTIME"))


def configure_telemetry() -> bool:
    """
    Export logs and spans to Application Insights when hosted in Azure Functions.
    Returns whether the exporter was configured.
    """
    if not running_in_azure():
        return False
    try:
        configure_azure_monitor(logger_name=LOGGER_NAME)
    except Exception as e:
        logging.error(f"Error configuring Azure Monitor for {LOGGER_NAME}: {e}")
        return False
    logging.info("Azure Monitor OpenTelemetry configured for %s", LOGGER_NAME)
    return True


configure_telemetry()

tracer = opentelemetry.trace.get_tracer(LOGGER_NAME)

logger = logging.getLogger(LOGGER_NAME)
logger.setLevel(_log_level())

# Azure Functions already captures stdout; the console handler is for local runs
if not logger.handlers and not running_in_azure():
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(console_handler)


def get_child_logger(name: str) -> logging.Logger:
    """Child of the package logger, e.g. ``tile_inventory.crud.tile``."""
    return logger.getChild(name)
