import sys
from pathlib import Path

from loguru import logger

RUN_LOG_NAME = "run.log"
NO_RUN = "-"

_CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<magenta>{extra[run_id]}</magenta> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - "
    "<level>{message}</level>"
)
_FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {extra[run_id]} | {name}:{function}:{line} - {message}"


def configure_logging(level="INFO", file_path=None, rotation="10 MB", retention="7 days"):
    """
    Configures console (and optionally file) logging for the committee.

    Every record carries ``extra["run_id"]``; it is ``"-"`` outside a CLI run.

    Args:
        level (str): Minimum console level (e.g., "DEBUG", "INFO").
        file_path (str, optional): Long-lived log file shared across runs.
        rotation (str): Rotation size for ``file_path``.
        retention (str): How long rotated files are kept.
    """
    logger.remove()
    logger.configure(extra={"run_id": NO_RUN})

    logger.add(sys.stderr, level=level.upper(), format=_CONSOLE_FORMAT, colorize=True)

    if file_path:
        logger.add(
            file_path,
            level="DEBUG",
            format=_FILE_FORMAT,
            rotation=rotation,
            retention=retention,
            enqueue=True,
            backtrace=True,
            diagnose=False,
        )

    logger.debug("Logging configured at level {}", level.upper())


def add_run_log(out_dir: str, run_id: str) -> int:
    """Send one run's DEBUG records to ``<out_dir>/run.log``. Returns the sink id for ``logger.remove``."""
    path = Path(out_dir) / RUN_LOG_NAME
    path.parent.mkdir(parents=True, exist_ok=True)
    return logger.add(
        path,
        level="DEBUG",
        format=_FILE_FORMAT,
        filter=lambda record: record["extra"].get("run_id") == run_id,
    )
