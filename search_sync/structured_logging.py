"""
Structured logging configuration for the search sync worker
Provides JSON-formatted logs with sync context and levels
"""
import logging
import json
import sys
from datetime import datetime, timezone

# Extra attributes copied into JSON records when a log call passes them
CONTEXT_FIELDS = (
    "entity_type",
    "phase",
    "offset",
    "index",
    "mode",
    "task_count",
    "documents",
    "duration_ms",
)


class JSONFormatter(logging.Formatter):
    """JSON log formatter for structured logging"""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key in CONTEXT_FIELDS:
            if hasattr(record, key):
                log_data[key] = getattr(record, key)

        return json.dumps(log_data, default=str)


class ColoredFormatter(logging.Formatter):
    """Colored console formatter for better readability"""

    COLORS = {
        'DEBUG': '\033[36m',      # Cyan
        'INFO': '\033[32m',       # Green
        'WARNING': '\033[33m',    # Yellow
        'ERROR': '\033[31m',      # Red
        'CRITICAL': '\033[35m',   # Magenta
        'RESET': '\033[0m'
    }

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.COLORS['RESET'])
        reset = self.COLORS['RESET']

        timestamp = datetime.fromtimestamp(record.created).strftime('%Y-%m-%d %H:%M:%S')

        message = f"{color}[{timestamp}] {record.levelname:8}{reset} {record.name:24} | {record.getMessage()}"

        entity_type = getattr(record, "entity_type", None)
        if entity_type:
            message += f" [{entity_type}"
            phase = getattr(record, "phase", None)
            if phase:
                message += f"/{phase}"
            message += "]"

        if record.exc_info:
            message += "\n" + self.formatException(record.exc_info)

        return message


def setup_logging(
    log_level: str = "INFO",
    json_logs: bool = False,
    log_file: str = None
):
    """
    Setup structured logging

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        json_logs: Use JSON format for logs
        log_file: Optional file path for log output
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level.upper()))

    root_logger.handlers = []

    console_handler = logging.StreamHandler(sys.stdout)
    if json_logs:
        console_handler.setFormatter(JSONFormatter())
    else:
        console_handler.setFormatter(ColoredFormatter())
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(JSONFormatter())  # Always JSON for files
        root_logger.addHandler(file_handler)

    # urllib3 logs every request at DEBUG
    logging.getLogger("urllib3").setLevel(logging.WARNING)

    logger = logging.getLogger("search-sync")
    logger.info("Logging initialized (level=%s, json=%s, file=%s)", log_level, json_logs, log_file)

    return logger


class ContextLogger:
    """Logger that stamps every record with the current sync context"""

    def __init__(self, logger: logging.Logger, **context):
        self.logger = logger
        self.context = dict(context)

    def set_context(self, **kwargs):
        self.context.update(kwargs)

    def _log(self, level: int, msg: str, *args, **kwargs):
        extra = dict(self.context)
        extra.update(kwargs.get("extra", {}))
        kwargs["extra"] = extra
        self.logger.log(level, msg, *args, **kwargs)

    def info(self, msg: str, *args, **kwargs):
        self._log(logging.INFO, msg, *args, **kwargs)

    def warning(self, msg: str, *args, **kwargs):
        self._log(logging.WARNING, msg, *args, **kwargs)

    def error(self, msg: str, *args, **kwargs):
        self._log(logging.ERROR, msg, *args, **kwargs)
