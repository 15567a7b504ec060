"""
JSON logging for the prospect research service.

Every line carries timestamp, level, logger, message and service. Provider
and report code attach correlation fields through ``extra=``:

- ``request_id``: one HTTP request to /reports or /discovery
- ``job_id``: the provider-assigned discovery job id
- ``provider`` / ``operation``: the connector and call being made
- ``step``: collect-phase or request step name
- ``section``: report section being built

Fields that are absent on a record are left out of the line.
"""
import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .config import get_settings

_LOGGING_CONFIGURED = False

STRUCTURED_FIELDS = ("request_id", "job_id", "provider", "operation", "step", "section")

# httpx logs every request at INFO; provider calls are already logged by the client.
NOISY_LOGGERS = ("httpx", "httpcore")


class JsonFormatter(logging.Formatter):
    def __init__(self, service: str = "prospect_intel") -> None:
        super().__init__()
        self.service = service

    def format(self, record: logging.LogRecord) -> str:
        log_record: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.service,
        }

        for field in STRUCTURED_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_record[field] = value

        if record.exc_info:
            log_record["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(log_record, default=str)


def configure_logging(level: Optional[str] = None, service: Optional[str] = None) -> None:
    """
    Configure the root logger once with JSON output on stdout.

    Level and service name default to LOG_LEVEL and SERVICE_NAME from settings.
    Later calls are no-ops.
    """
    global _LOGGING_CONFIGURED
    if _LOGGING_CONFIGURED:
        return

    settings = get_settings()
    level_name = (level or getattr(settings, "LOG_LEVEL", "INFO")).upper()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter(service=service or getattr(settings, "SERVICE_NAME", "prospect_intel")))

    root = logging.getLogger()
    root.setLevel(getattr(logging, level_name, logging.INFO))
    root.handlers.clear()
    root.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    _LOGGING_CONFIGURED = True
