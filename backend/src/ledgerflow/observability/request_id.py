"""Correlation ids for log lines.

An API request is tagged with its X-Request-ID header (or a fresh uuid4),
a Celery task with its task id. Every log record emitted while the id is
bound carries it, so one categorization batch can be followed from the
enqueueing request into the worker.
"""

import uuid
from contextlib import contextmanager
from contextvars import ContextVar, Token
from typing import Iterator, Optional

REQUEST_ID_HEADER = "X-Request-ID"
UNBOUND = "no-request-id"

_current: ContextVar[Optional[str]] = ContextVar("ledgerflow_request_id", default=None)


def get_request_id() -> str:
    return _current.get() or UNBOUND


def bind_request_id(request_id: Optional[str] = None) -> Token:
    """Bind an id (a new one if none given); pass the token to unbind_request_id."""
    return _current.set(request_id or uuid.uuid4().hex)


def unbind_request_id(token: Token) -> None:
    _current.reset(token)


@contextmanager
def request_id_scope(request_id: Optional[str] = None) -> Iterator[str]:
    token = bind_request_id(request_id)
    try:
        yield _current.get()
    finally:
        unbind_request_id(token)
