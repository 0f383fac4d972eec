import logging
import json
import re
import sys
import os
from typing import Any
from datetime import datetime, timezone
import uuid

# Standard logging with one JSON object per line.

LOGGER_NAME = "xhs-relay"


class JsonFormatter(logging.Formatter):
    def format(self, record):
        log_record = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "message": record.getMessage(),
            "module": record.module,
            "func": record.funcName,
            "line": record.lineno,
        }

        if hasattr(record, "trace_id"):
            log_record["trace_id"] = record.trace_id

        if hasattr(record, "props"):
            log_record.update(record.props)

        if record.exc_info:
            log_record["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_record, ensure_ascii=False, default=str)


def setup_logger(name: str = LOGGER_NAME):
    logger = logging.getLogger(name)
    level_name = (os.getenv("LOG_LEVEL") or "INFO").strip().upper()
    level = getattr(logging, level_name, logging.INFO)
    logger.setLevel(level)

    if not logger.handlers:
        # stderr matches uvicorn's default stream.
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(JsonFormatter())
        logger.addHandler(handler)

    return logger


logger = setup_logger()


def _dup_to_uvicorn() -> bool:
    return (os.getenv("XHS_LOG_DUP_TO_UVICORN") or "1").strip().lower() not in {"0", "false", "no", "off"}


def redact_url(url: str) -> str:
    """Redact sensitive query params (best-effort)."""
    u = (url or "").strip()
    if not u:
        return ""
    u = re.sub(r"(xsec_token=)[^&#]+", r"\1<redacted>", u, flags=re.IGNORECASE)
    u = re.sub(r"([?&]token=)[^&#]+", r"\1<redacted>", u, flags=re.IGNORECASE)
    return u


class TaskLogger:
    def __init__(self, trace_id: str = None):
        self.trace_id = trace_id or str(uuid.uuid4())
        self.logger = logger

    def _emit(self, level: int, message: str, props: dict[str, Any]) -> None:
        extra = {"trace_id": self.trace_id, "props": props}
        self.logger.log(level, message, extra=extra)
        if _dup_to_uvicorn():
            logging.getLogger("uvicorn.error").log(level, message, extra=extra)

    def info(self, message: str, **kwargs):
        self._emit(logging.INFO, message, kwargs)

    def warning(self, message: str, **kwargs):
        self._emit(logging.WARNING, message, kwargs)

    def error(self, message: str, **kwargs):
        self._emit(logging.ERROR, message, kwargs)

    def stage(self, stage: str, **props: Any) -> None:
        """Emit an `xhs.stage` event; logging problems never break extraction."""
        if (os.getenv("XHS_LOG_STAGE") or "1").strip().lower() in {"0", "false", "no", "off"}:
            return
        try:
            self.info("xhs.stage", stage=stage, **props)
        except Exception:
            pass
