"""Console logging with the current relay session id on every record."""

import logging
from contextvars import ContextVar

_session_id: ContextVar[str] = ContextVar("session_id", default="-")

_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | [%(session_id)s] %(message)s"

_CONFIGURED = False


def bind_session_id(session_id: str) -> None:
    """Tag log records emitted from the current context with ``session_id``."""
    _session_id.set(session_id)


def get_session_id() -> str:
    return _session_id.get()


class _SessionIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.session_id = get_session_id()
        return True


def setup_logging(level: str = "INFO") -> None:
    """Attach the console handler to the ``app`` logger. Safe to call more than once."""
    global _CONFIGURED
    if _CONFIGURED:
        return
    _CONFIGURED = True

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(_FORMAT, datefmt="%H:%M:%S"))
    handler.addFilter(_SessionIdFilter())

    logger = logging.getLogger("app")
    logger.setLevel(level.upper())
    logger.addHandler(handler)
