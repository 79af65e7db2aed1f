import logging
import sys
import threading
from datetime import datetime
from dotenv import load_dotenv
from os import getenv, makedirs, path
from pythonjsonlogger import jsonlogger

from ..utils.logging import clear_latest_items

# Constants
LOG_FILES_HORIZON = 5
FIELDS = [
    "name",
    "process",
    "processName",
    "threadName",
    "thread",
    "asctime",
    "created",
    "pathname",
    "module",
    "funcName",
    "levelname",
    "message",
]

# Load environment variables
load_dotenv()


def _env_flag(name: str, default: bool) -> bool:
    value = getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class LoggingConfigurator:
    """
    Logging configuration with environment-specific setups,
    thread-safe configuration and flexible handler management.

    Workers spawned by the load job import this module too, so every
    process gets the same handlers.
    """

    def __init__(self, environment: str = None, log_root: str = None, log_to_file: bool = None):
        self.environment = environment or getenv("ENVIRONMENT", "development")
        self.log_root = log_root or getenv("LOG_ROOT", "logs")
        self.log_to_file = _env_flag("LOG_TO_FILE", True) if log_to_file is None else log_to_file
        self.root_logger = logging.getLogger()
        self._configured = False
        self._lock = threading.Lock()

    def configure(self):
        """Configure logging once globally (thread-safe)."""
        with self._lock:
            if self._configured:
                return

            self.root_logger.handlers.clear()
            self.root_logger.setLevel(logging.DEBUG)

            if self.environment == "development":
                console_handler = self._create_console_handler(self._create_console_formatter())
                self.root_logger.addHandler(console_handler)

            if self.log_to_file:
                error_handler, info_handler = self._create_file_handlers(self._create_json_formatter())
                self.root_logger.addHandler(error_handler)
                self.root_logger.addHandler(info_handler)

            self._configured = True

    def _create_json_formatter(self) -> jsonlogger.JsonFormatter:
        """Create JSON formatter for structured logging."""
        json_format = " ".join(map(lambda field_name: f"%({field_name})s", FIELDS))
        return jsonlogger.JsonFormatter(json_format)

    def _create_console_formatter(self) -> logging.Formatter:
        return logging.Formatter('%(levelname)s:%(processName)s:%(name)s:%(message)s')

    def _create_console_handler(self, formatter: logging.Formatter) -> logging.Handler:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(formatter)
        handler.setLevel(logging.INFO)
        return handler

    def _create_file_handlers(self, formatter: jsonlogger.JsonFormatter) -> tuple:
        """Create error and info file handlers under logs/<date>/<HH_MM>/."""
        now = datetime.now()
        log_root_path = path.join(self.log_root, now.strftime("%Y-%m-%d"))

        if path.exists(log_root_path):
            clear_latest_items(log_root_path, LOG_FILES_HORIZON)

        base_path = path.join(log_root_path, now.strftime("%H_%M"))
        makedirs(base_path, exist_ok=True)

        error_handler = logging.FileHandler(path.join(base_path, "error_log.log"), mode="a")
        error_handler.setFormatter(formatter)
        error_handler.setLevel(logging.ERROR)

        info_handler = logging.FileHandler(path.join(base_path, "info_log.log"), mode="a")
        info_handler.setFormatter(formatter)
        info_handler.setLevel(logging.INFO)

        return error_handler, info_handler

    def get_logger(self, name: str) -> logging.Logger:
        """Get a configured logger for the given name."""
        self.configure()
        return logging.getLogger(name)

    def reconfigure(self, environment: str = None, log_to_file: bool = None):
        """Reconfigure logging (useful for testing or runtime changes)."""
        if environment:
            self.environment = environment
        if log_to_file is not None:
            self.log_to_file = log_to_file
        self._configured = False
        self.configure()


_configurator = LoggingConfigurator()


def configure_logging():
    _configurator.configure()


def get_logger(name: str) -> logging.Logger:
    """Get a configured logger."""
    return _configurator.get_logger(name)


# Configure on import
configure_logging()

logger = get_logger("billing_loader")
