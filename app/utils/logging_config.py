"""
Logging setup for the rewards service.

Configures the root logger once per process. ``LOG_FORMAT=json`` emits one
JSON object per line for log shippers; the default is plain text.
"""
import json
import logging
import os
import sys

_configured = False

TEXT_FORMAT = '%(asctime)s %(levelname)s [%(name)s] %(message)s'


class JsonFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            'ts': self.formatTime(record, '%Y-%m-%dT%H:%M:%S'),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
        }
        details = getattr(record, 'details', None)
        if details:
            payload['details'] = details
        if record.exc_info:
            payload['exc_info'] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def setup_logging(level: str = None, fmt: str = None) -> None:
    """Configure root logging from LOG_LEVEL / LOG_FORMAT."""
    global _configured
    if _configured:
        return

    level = (level or os.getenv('LOG_LEVEL', 'INFO')).upper()
    fmt = (fmt or os.getenv('LOG_FORMAT', 'text')).lower()

    handler = logging.StreamHandler(sys.stdout)
    if fmt == 'json':
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))

    root = logging.getLogger()
    root.setLevel(level)
    root.addHandler(handler)

    # SQLAlchemy echoes every statement at INFO
    logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)
    logging.getLogger('apscheduler').setLevel(logging.WARNING)

    _configured = True
