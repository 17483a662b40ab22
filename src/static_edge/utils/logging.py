"""Console and JSON-lines logging tagged with the site and pipeline stage."""

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

# Record attributes carried into structured output when present
CONTEXT_FIELDS = ('domain', 'stage', 'resource_kind', 'resource_id', 'duration')

QUIET_LOGGERS = ('boto3', 'botocore', 's3transfer', 'urllib3')


def _context_of(record: logging.LogRecord) -> Dict[str, Any]:
    return {name: getattr(record, name) for name in CONTEXT_FIELDS if hasattr(record, name)}


class JSONFormatter(logging.Formatter):
    """One JSON object per record, for the log files under ``.static-edge/logs``."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            'timestamp': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
        }
        entry.update(_context_of(record))
        if record.exc_info:
            entry['exception'] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """Short coloured lines prefixed with ``[domain/stage]`` when known."""

    LEVEL_COLORS = {
        logging.DEBUG: '\033[2m',
        logging.INFO: '\033[32m',
        logging.WARNING: '\033[33m',
        logging.ERROR: '\033[31m',
        logging.CRITICAL: '\033[1;31m',
    }
    RESET = '\033[0m'

    def __init__(self, color: bool = True):
        super().__init__()
        self.color = color

    def format(self, record: logging.LogRecord) -> str:
        when = datetime.fromtimestamp(record.created).strftime('%H:%M:%S')
        level = f"{record.levelname:<8}"
        if self.color:
            level = f"{self.LEVEL_COLORS.get(record.levelno, '')}{level}{self.RESET}"

        scope = '/'.join(str(getattr(record, name)) for name in ('domain', 'stage') if hasattr(record, name))
        message = record.getMessage()
        if scope:
            message = f"[{scope}] {message}"
        return f"{when} {level} {message}"


def setup_logging(log_level: str = 'info', log_dir: Optional[str] = '.static-edge/logs') -> None:
    """Configure the root logger for a command run.

    The console handler writes to stderr at ``log_level`` so command output on
    stdout stays parseable. When ``log_dir`` is set every record down to DEBUG
    is also appended to a daily JSON-lines file there.

    Args:
        log_level: Console level name (debug, info, warning, error)
        log_dir: Directory for JSON-lines files, or None for console only
    """
    level = getattr(logging, log_level.upper())

    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)
    root.setLevel(logging.DEBUG if log_dir else level)

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(level)
    console.setFormatter(ConsoleFormatter(color=sys.stderr.isatty()))
    root.addHandler(console)

    if log_dir:
        directory = Path(log_dir)
        directory.mkdir(parents=True, exist_ok=True)
        day = datetime.now(timezone.utc).strftime('%Y%m%d')
        file_handler = logging.FileHandler(directory / f"static-edge-{day}.jsonl")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(JSONFormatter())
        root.addHandler(file_handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Module logger; call as ``get_logger(__name__)``."""
    return logging.getLogger(name)


class LogContext:
    """Stamp structured fields onto every record created inside the block.

    Example:
        with LogContext(domain='example.com') as context:
            context.update(stage='CertRequested')
            logger.info("Requesting certificate")
    """

    def __init__(self, **fields: Any):
        self.fields = dict(fields)
        self._previous = None

    def update(self, **fields: Any) -> None:
        """Replace or add fields for records created after this call."""
        self.fields.update(fields)

    def __enter__(self) -> "LogContext":
        previous = logging.getLogRecordFactory()
        fields = self.fields

        def factory(*args, **kwargs):
            record = previous(*args, **kwargs)
            record.__dict__.update(fields)
            return record

        self._previous = previous
        logging.setLogRecordFactory(factory)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._previous is not None:
            logging.setLogRecordFactory(self._previous)
            self._previous = None
