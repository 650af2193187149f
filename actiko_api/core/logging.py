from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from typing import Any

from actiko_api.core.config import settings


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": "actiko-api",
            "environment": settings.app_env,
        }

        optional_fields = (
            "request_id",
            "user_id",
            "route",
            "method",
            "status_code",
            "execution_time_ms",
            "client_version",
            "request_bytes",
            "entity_type",
            "entity_id",
            "operation",
            "queue_id",
            "synced_count",
            "server_wins_count",
            "skipped_count",
            "processed_count",
            "failed_count",
            "retry_count",
            "strategy",
            "error",
        )
        for field in optional_fields:
            value = getattr(record, field, None)
            if value is not None:
                payload[field] = value

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=True, default=str)


def setup_json_logging() -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(logging.INFO)
