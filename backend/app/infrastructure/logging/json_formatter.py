import json
import logging
from datetime import UTC, datetime

from app.infrastructure.logging.context import get_request_id, get_stripe_event_id


class JsonLogFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
            "request_id": get_request_id(),
        }
        stripe_event_id = get_stripe_event_id()
        if stripe_event_id:
            payload["stripe_event_id"] = stripe_event_id
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)
