"""
Logging for the orchestrator and failover controller.

Records carry optional rollout context (target, wave, group, region,
environment, revision). The JSON formatter emits it as top-level keys so log
pipelines can filter a single target's pipeline; the console formatter appends
it as ``key=value`` pairs.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Dict, Iterable, Optional


CONTEXT_FIELDS = ("target", "wave", "group", "region", "environment", "revision")

NOISY_LOGGERS = ("botocore", "boto3", "urllib3", "aiohttp.access")


def record_context(record: logging.LogRecord) -> Dict[str, str]:
    """Rollout context attached to a record through ``extra`` or the adapter"""
    return {name: getattr(record, name) for name in CONTEXT_FIELDS if getattr(record, name, None) is not None}


class StructuredFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        entry = {
            'timestamp': created.isoformat().replace('+00:00', 'Z'),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'source': f"{record.module}.{record.funcName}:{record.lineno}",
            **record_context(record),
        }
        if record.exc_info:
            entry['exception'] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """Readable single-line format with the rollout context appended."""

    def __init__(self):
        super().__init__(fmt='%(asctime)s %(levelname)-8s %(name)s: %(message)s', datefmt='%H:%M:%S')

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = record_context(record)
        if context:
            line += " [" + " ".join(f"{k}={v}" for k, v in context.items()) + "]"
        return line


def setup_logging(
    level: str = 'INFO',
    structured: bool = True,
    quiet: Iterable[str] = NOISY_LOGGERS,
    stream=None,
) -> None:
    """
    Route all logging through a single handler on the root logger.

    Args:
        level: Logging level name; unknown names fall back to INFO
        structured: JSON lines if True, console format otherwise
        quiet: Loggers capped at WARNING (AWS SDK and HTTP access logs by default)
        stream: Output stream (default: stdout)
    """
    log_level = logging.getLevelName(level.upper())
    if not isinstance(log_level, int):
        log_level = logging.INFO

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(StructuredFormatter() if structured else ConsoleFormatter())

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(log_level)

    for name in quiet:
        logging.getLogger(name).setLevel(logging.WARNING)


class RolloutLoggerAdapter(logging.LoggerAdapter):
    """
    Stamps a pipeline's context onto every record; per-call ``extra`` wins.
    """

    def process(self, msg, kwargs):
        context: Dict[str, Optional[str]] = {k: v for k, v in self.extra.items() if k in CONTEXT_FIELDS}
        context.update(kwargs.get('extra') or {})
        kwargs['extra'] = context
        return msg, kwargs
