from pathlib import Path
from typing import Final

from logly import _LoggerProxy, logger

LOG_FILE_NAME: Final[str] = "app.log"


def init_logger(log_dir: Path, level: str = "INFO") -> _LoggerProxy:
    """Initialize the logger.

    Configures console output plus a size-rotated file sink in `log_dir`.

    Args:
        log_dir: Directory for the log file; created if missing.
        level: Minimum level name (e.g. "INFO", "DEBUG").
    """
    log_dir.mkdir(parents=True, exist_ok=True)

    logger.configure(
        level=level,
        color=True,
        console=True,
        auto_sink=True,
    )

    logger.add(f"{log_dir}/{LOG_FILE_NAME}", size_limit="10MB", retention=3)

    logger.success("logger initialized!")

    return logger
