import logging
import sys
from logging.handlers import RotatingFileHandler

from .constants import APP_NAME, LOG_FILE

logger = logging.getLogger(APP_NAME)


def setup_logging(
    interactive: bool, max_log_size: int = 5 * 1024 * 1024, verbose: bool = False
) -> None:
    """Configures the logging subsystem.

    Args:
        interactive (bool): If True, logs to stderr only. If False, also logs to
                            a rotating file under the state directory.
        max_log_size (int): Bytes before the log file is rotated.
        verbose (bool): Whether to emit DEBUG records (every git invocation).
    """
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    formatter = logging.Formatter(
        "[%(asctime)s] %(levelname)s: %(message)s", "%Y-%m-%d %H:%M:%S"
    )

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    # Keep stdout clean for command output.
    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    if not interactive:
        LOG_FILE.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            LOG_FILE,
            maxBytes=max_log_size,
            backupCount=5,
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
