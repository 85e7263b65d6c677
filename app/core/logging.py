"""Logging setup — every record carries the active tenant and request id."""

import logging
import sys

from app.core.tenancy import current_request_id, current_tenant

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] tenant=%(tenant_id)s request=%(request_id)s %(message)s"


class ContextFilter(logging.Filter):
    """Stamp ``tenant_id`` / ``request_id`` from the ambient context."""

    def filter(self, record: logging.LogRecord) -> bool:
        ctx = current_tenant()
        record.tenant_id = ctx.tenant_id if ctx else "-"
        record.request_id = current_request_id() or "-"
        return True


def setup_logging(level: str = "INFO") -> None:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.addFilter(ContextFilter())

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()
    root.addHandler(handler)
