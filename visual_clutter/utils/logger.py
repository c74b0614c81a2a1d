import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from visual_clutter.utils.constants import LOGS_DIR, LOG_FILE_NAME


def parse_size(value, default: int = 5 * 1024 * 1024) -> int:
    """Turn a rotation size such as "5MB" or "512KB" into a byte count."""
    text = str(value).strip().upper()
    for suffix, factor in (("MB", 1024 * 1024), ("KB", 1024), ("B", 1)):
        if text.endswith(suffix):
            try:
                return int(text[:-len(suffix)]) * factor
            except ValueError:
                return default
    try:
        return int(text)
    except ValueError:
        return default


class Logger:
    """Component logger with console and rotating file output."""

    _configured = False

    @classmethod
    def setup(cls, settings: dict):
        """
        Global configuration for all Logger instances.

        Args:
            settings: Dictionary with 'level', 'rotation', 'backup_count',
                      'file' (bool) and optional 'directory'.
        """
        if cls._configured:
            return

        level_name = str(settings.get('level', 'INFO')).upper()
        level = getattr(logging, level_name, logging.INFO)

        root = logging.getLogger()
        root.setLevel(level)

        if not root.handlers:
            formatter = logging.Formatter(
                '[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )

            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setFormatter(formatter)
            root.addHandler(console_handler)

            if settings.get('file', True):
                log_dir = Path(settings.get('directory') or LOGS_DIR)
                try:
                    log_dir.mkdir(parents=True, exist_ok=True)
                    file_handler = RotatingFileHandler(
                        log_dir / LOG_FILE_NAME,
                        maxBytes=parse_size(settings.get('rotation', '5MB')),
                        backupCount=int(settings.get('backup_count', 5)),
                    )
                except OSError as e:
                    root.warning(f"File logging disabled, cannot write to {log_dir}: {e}")
                else:
                    file_handler.setFormatter(formatter)
                    root.addHandler(file_handler)

        cls._configured = True

    def __init__(self, name: str = "VisualClutter"):
        self.logger = logging.getLogger(name)

    def info(self, message: str):
        self.logger.info(message)

    def warning(self, message: str):
        self.logger.warning(message)

    def error(self, message: str):
        self.logger.error(message)

    def debug(self, message: str):
        self.logger.debug(message)

    def critical(self, message: str):
        self.logger.critical(message)

    def exception(self, message: str):
        self.logger.exception(message)
