"""Console and rotating file logger setup for deployment runs."""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

# ANSI colours used only when the console is a TTY
LEVEL_COLORS = {
    logging.DEBUG: "",
    logging.INFO: "\033[0;32m",
    logging.WARNING: "\033[1;33m",
    logging.ERROR: "\033[0;31m",
    logging.CRITICAL: "\033[0;31m",
}
RESET = "\033[0m"


class ConsoleFormatter(logging.Formatter):
    """Render records as ``[LEVEL] message`` status lines."""

    def __init__(self, use_color: bool = False):
        super().__init__()
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        tag = record.levelname
        if self.use_color:
            color = LEVEL_COLORS.get(record.levelno, "")
            if color:
                tag = f"{color}{tag}{RESET}"
        line = f"[{tag}] {record.getMessage()}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def setup_logger(
    name: str = "deployer",
    log_file: Optional[str] = None,
    max_bytes: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 3,
    level: int = logging.INFO,
    stream=None,
) -> logging.Logger:
    """Setup console logger with optional rotating file log.

    Args:
        name: Logger name
        log_file: Path to log file (created if doesn't exist), None for console only
        max_bytes: Max size before rotation
        backup_count: Number of rotated files to keep
        level: Logging level
        stream: Console stream (default stderr)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Avoid duplicate handlers if already configured
    if logger.handlers:
        return logger

    stream = stream if stream is not None else sys.stderr
    console_handler = logging.StreamHandler(stream)
    console_handler.setLevel(level)
    is_tty = hasattr(stream, "isatty") and stream.isatty()
    console_handler.setFormatter(ConsoleFormatter(use_color=is_tty))
    logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = RotatingFileHandler(
            log_file, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
        )
        file_handler.setLevel(level)
        # ISO 8601 timestamps in the persistent log
        file_handler.setFormatter(
            logging.Formatter(
                fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
                datefmt="%Y-%m-%dT%H:%M:%S%z",
            )
        )
        logger.addHandler(file_handler)

    return logger
