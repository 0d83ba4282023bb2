"""
Process-wide logging setup for the login service.

Locally and in tests every record is a JSON line on stderr, including the
flow context passed through `extra=`. On Cloud Run the google-cloud-logging
handler takes over so records land in Cloud Logging with their severity.
"""

import json
import logging
import os
from datetime import UTC, datetime


# Attributes every LogRecord carries; anything else came in via `extra=`
_RESERVED_ATTRS = set(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))
) | {"message", "asctime"}


class JsonFormatter(logging.Formatter):
    """
    One JSON object per record.

    Uses the `severity` key Cloud Logging understands. Fields passed with
    ``extra={...}`` (provider, user_id, flow_state) become top-level keys.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_object = {
            "timestamp": datetime.now(UTC).isoformat(),
            "severity": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
        }

        for key, value in vars(record).items():
            if key not in _RESERVED_ATTRS and value is not None:
                log_object[key] = value

        if record.exc_info:
            log_object["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_object, default=str)


def setup_global_logging() -> None:
    """
    Configure global logging based on environment.

    When running in Cloud Run (K_SERVICE env var is set):
    - Uses google-cloud-logging (``gcp`` extra) for structured logs.

    When running locally or in tests:
    - Uses standard Python logging with the JSON formatter on stderr.

    LOG_LEVEL selects the root level (default INFO).
    """
    level = os.getenv("LOG_LEVEL", "INFO").upper()
    is_cloud_run = os.getenv("K_SERVICE") is not None

    if is_cloud_run:
        try:
            import google.cloud.logging

            client = google.cloud.logging.Client()
            client.setup_logging(log_level=logging.getLevelName(level))
            logging.info("Cloud Logging initialized for Cloud Run.")
            return
        except Exception as e:
            logging.basicConfig(
                level=level,
                format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            )
            logging.warning(f"Cloud Logging setup failed, using basic config: {e}")
            return

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())

    root_logger = logging.getLogger()
    # Replace default handlers to avoid duplicate logs
    for existing in list(root_logger.handlers):
        root_logger.removeHandler(existing)
    root_logger.addHandler(handler)
    root_logger.setLevel(level)
