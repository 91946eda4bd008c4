import json
import logging
import os
import sys
from datetime import datetime
from typing import Optional


class ColoredFormatter(logging.Formatter):
    """Human-readable formatter for development."""

    COLORS = {
        'DEBUG': '\033[36m',      # Cyan
        'INFO': '\033[32m',       # Green
        'WARNING': '\033[33m',    # Yellow
        'ERROR': '\033[31m',      # Red
        'CRITICAL': '\033[35m',   # Magenta
        'ENDC': '\033[0m',
    }

    def format(self, record):
        level_color = self.COLORS.get(record.levelname, '')
        end_color = self.COLORS['ENDC']
        timestamp = datetime.fromtimestamp(record.created).strftime('%H:%M:%S')
        colored_level = f"{level_color}{record.levelname:8s}{end_color}"
        module_name = record.name if record.name != '__main__' else 'main'
        line = f"[{timestamp}] {colored_level} [{module_name}] {record.getMessage()}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


class JsonFormatter(logging.Formatter):
    """JSON formatter for production/staging."""

    def format(self, record):
        log_entry = {
            'timestamp': datetime.fromtimestamp(record.created).isoformat(),
            'level': record.levelname,
            'module': record.name,
            'message': record.getMessage(),
            'environment': os.getenv('ENVIRONMENT', 'unknown'),
        }
        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)
        return json.dumps(log_entry)


def init(level: Optional[str] = None, environment: Optional[str] = None) -> None:
    """Install a single stdout handler on the root logger.

    Staging/production get JSON lines, everything else the coloured format.
    """
    environment = (environment or os.getenv('ENVIRONMENT', 'development')).lower()
    level_name = (level or os.getenv('LOG_LEVEL', 'INFO')).upper()
    numeric_level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(numeric_level)
    if environment in ['production', 'prod', 'staging']:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(ColoredFormatter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(numeric_level)

    # APScheduler logs every job execution at INFO
    logging.getLogger('apscheduler').setLevel(max(numeric_level, logging.WARNING))


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
