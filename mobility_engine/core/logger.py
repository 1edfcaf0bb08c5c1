"""Logging setup for the mobility engine.

Console output always; a rotating file sink when LOG_FILE is set. The file
sink can emit one JSON record per line (LOG_JSON) for hospital log
collectors. File tracebacks never include local variables, which hold
patient data.
"""

import sys
from pathlib import Path

from loguru import logger

from mobility_engine.config.settings import settings

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}"


def setup_logger(
    level: str = "INFO",
    log_file: str | None = None,
    rotation: str = "10 MB",
    retention: str = "14 days",
    json_file: bool = False,
) -> None:
    """Replace loguru's sinks with the engine's console and optional file sink.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional path to log file. If None, only console logging.
        rotation: Log rotation size (e.g., "10 MB", "1 day")
        retention: Log retention period (e.g., "14 days", "1 month")
        json_file: Write the file sink as serialized JSON records
    """
    logger.remove()
    logger.add(sys.stderr, format=CONSOLE_FORMAT, level=level, colorize=True)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_path,
            format=FILE_FORMAT,
            level=level,
            rotation=rotation,
            retention=retention,
            compression="zip",
            serialize=json_file,
            backtrace=True,
            diagnose=False,
        )

    logger.info(f"Logger initialized with level={level}")


def configure_from_settings() -> None:
    setup_logger(
        level=settings.log_level,
        log_file=settings.log_file or None,
        json_file=settings.log_json,
    )


configure_from_settings()
