"""
Console-safe logging configuration for Gemini Chat Exporter
Keeps log output readable on consoles that cannot encode the full Unicode range
"""
import logging
import sys
from pathlib import Path
from logging.handlers import RotatingFileHandler
from typing import Optional


class UnicodeStreamHandler(logging.StreamHandler):
    """Stream handler that degrades gracefully on narrow console encodings"""

    def __init__(self, stream=None):
        super().__init__(stream or sys.stdout)

    def emit(self, record):
        try:
            msg = self.format(record)
            encoding = getattr(self.stream, 'encoding', None) or 'utf-8'
            try:
                msg.encode(encoding)
            except (UnicodeEncodeError, LookupError):
                # Conversation titles routinely carry characters cp1252 cannot print
                msg = msg.encode(encoding, errors='replace').decode(encoding, errors='replace')
            self.stream.write(msg + self.terminator)
            self.flush()
        except Exception:
            self.handleError(record)


def setup_logger(name: str = "chat_exporter", level: str = "INFO", log_file: Optional[str] = None) -> logging.Logger:
    """
    Set up a named logger with console output and optional rotating file output

    Args:
        name: Logger name
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional log file path

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    # Avoid duplicate handlers
    if logger.handlers:
        return logger

    level_map = {
        'DEBUG': logging.DEBUG,
        'INFO': logging.INFO,
        'WARNING': logging.WARNING,
        'ERROR': logging.ERROR,
        'CRITICAL': logging.CRITICAL
    }
    logger.setLevel(level_map.get(str(level).upper(), logging.INFO))

    formatter = logging.Formatter(
        fmt='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    console_handler = UnicodeStreamHandler()
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        try:
            log_path = Path(log_file)
            log_path.parent.mkdir(parents=True, exist_ok=True)

            file_handler = RotatingFileHandler(
                log_file,
                maxBytes=10*1024*1024,  # 10MB
                backupCount=5,
                encoding='utf-8'
            )
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)

        except OSError as e:
            logger.warning(f"File logging disabled, cannot open {log_file}: {e}")

    return logger


LOGGER_PREFIX = "chat_exporter"


def set_level(level: str):
    """Apply a level to every exporter logger created so far"""
    resolved = getattr(logging, str(level).upper(), logging.INFO)
    for name, existing in logging.Logger.manager.loggerDict.items():
        if isinstance(existing, logging.Logger) and existing.handlers and name.startswith(LOGGER_PREFIX):
            existing.setLevel(resolved)


# Global logger instance
logger = setup_logger(LOGGER_PREFIX)
