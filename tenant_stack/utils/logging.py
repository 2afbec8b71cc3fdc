"""
Service logging.

Each service module tags its messages with the part of the tenant lifecycle
it belongs to, so interleaved provisioning logs of several tenants stay
readable:

    2026-01-01 12:00:00 - tenant_stack.services.saga - INFO - [Saga] provision tenant-acme: namespace
"""

import logging
from typing import Optional, Union

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Chatty third-party loggers and the level they are capped at
QUIET_LOGGERS = {
    "kubernetes.client.rest": logging.WARNING,
    "urllib3.connectionpool": logging.WARNING,
}


class TaggedLogger(logging.LoggerAdapter):
    """Prepends ``[tag]`` to messages; the tag is also exposed as ``extra['tag']``."""

    def __init__(self, logger: logging.Logger, tag: str):
        super().__init__(logger, {"tag": tag})

    def process(self, msg, kwargs):
        kwargs["extra"] = {**self.extra, **(kwargs.get("extra") or {})}
        return f"[{self.extra['tag']}] {msg}", kwargs


def get_logger(name: str, prefix: Optional[str] = None) -> Union[logging.Logger, TaggedLogger]:
    """Module logger, tagged with ``prefix`` when one is given."""
    base_logger = logging.getLogger(name)
    return TaggedLogger(base_logger, prefix) if prefix else base_logger


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging once at process start."""
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    for name, cap in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(cap)
