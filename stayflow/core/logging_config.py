import logging
import uuid
from contextvars import ContextVar

from stayflow.core.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(correlation_id)s] %(name)s: %(message)s"

_correlation_id: ContextVar[str | None] = ContextVar("correlation_id", default=None)


def new_correlation_id() -> str:
    return uuid.uuid4().hex[:12]


def get_correlation_id() -> str | None:
    return _correlation_id.get()


def set_correlation_id(value: str | None) -> None:
    _correlation_id.set(value)


class CorrelationIdFilter(logging.Filter):
    """Stamps every record with the correlation id of the current request."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id() or "-"
        return True


def configure_logging(level: str | None = None) -> None:
    root = logging.getLogger()
    if any(getattr(handler, "_stayflow", False) for handler in root.handlers):
        return

    handler = logging.StreamHandler()
    handler._stayflow = True  # type: ignore[attr-defined]
    handler.addFilter(CorrelationIdFilter())
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)
    root.setLevel((level or settings.log_level).upper())
