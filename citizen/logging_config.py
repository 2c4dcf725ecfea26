"""
Structured JSON logging configuration.

Configures the "citizen", "core" and "config" logger trees so module loggers
created with logging.getLogger(__name__) share the same handlers.
"""

import json
import logging
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler

LOGGER_NAMES = ('citizen', 'core', 'config')

EXTRA_ATTRS = ('request_id', 'user', 'endpoint', 'method', 'status_code',
               'duration_ms', 'remote_addr', 'host', 'error_id')


class JSONFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record):
        log_entry = {
            'timestamp': datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        for attr in EXTRA_ATTRS:
            value = getattr(record, attr, None)
            if value is not None:
                log_entry[attr] = value

        return json.dumps(log_entry, default=str)


def configure_logging(settings, app=None):
    """Configure structured logging from settings.

    Args:
        settings: AppSettings (log_level, log_format, log_file).
        app: Optional Flask app whose logger will be updated.

    Returns:
        The "citizen" logger.
    """
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    if settings.log_format == 'json':
        formatter = JSONFormatter()
    else:
        formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.DEBUG)
    console_handler.setFormatter(formatter)
    handlers = [console_handler]

    if settings.log_file:
        file_handler = RotatingFileHandler(
            settings.log_file,
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(JSONFormatter())
        handlers.append(file_handler)

    for name in LOGGER_NAMES:
        logger = logging.getLogger(name)
        logger.setLevel(level)
        logger.handlers = list(handlers)

    # Sync Flask's logger
    if app is not None:
        app.logger.handlers = list(handlers)
        app.logger.setLevel(level)

    return logging.getLogger('citizen')
