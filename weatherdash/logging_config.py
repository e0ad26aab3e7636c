"""Shared logging configuration."""

from __future__ import annotations

import logging
from typing import Optional

from pythonjsonlogger import jsonlogger

from .settings import settings

_CONFIGURED = False


class _ServiceNameFilter(logging.Filter):
    def __init__(self, service_name: str) -> None:
        super().__init__()
        self.service_name = service_name

    def filter(self, record: logging.LogRecord) -> bool:
        record.service = self.service_name
        return True


def setup_logging(service_name: Optional[str] = None) -> None:
    """Configure root logging with a JSON formatter and a service tag."""

    global _CONFIGURED
    if _CONFIGURED:
        return

    handler = logging.StreamHandler()
    handler.setFormatter(
        jsonlogger.JsonFormatter("%(asctime)s %(levelname)s %(name)s %(message)s %(service)s")
    )
    handler.addFilter(_ServiceNameFilter(service_name or settings.app_name))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(settings.log_level.upper())
    logging.captureWarnings(True)
    _CONFIGURED = True


__all__ = ["setup_logging"]
