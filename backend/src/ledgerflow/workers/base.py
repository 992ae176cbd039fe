"""Celery application for background categorization and reconciliation.

Per-user tasks take the owner's id as the `user_id` keyword (a UUID string
taken from the bearer token, never from a request body) and open their own
session through get_task_session():

    categorize_pending_task.delay(user_id=str(user_id), limit=limit)

CATEGORIZATION_EAGER runs tasks inline in the calling process, which is how
the API behaves in tests and single-process development setups.
"""


from datetime import timedelta
from uuid import UUID

from celery import Celery, Task
from celery.signals import setup_logging, task_postrun, task_prerun
from sqlalchemy.orm import Session

from ..config import settings
from ..database import SessionLocal
from ..observability.logging_config import configure_logging
from ..observability.request_id import bind_request_id, unbind_request_id

celery_app = Celery(
    "ledgerflow",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=[
        "ledgerflow.categorization.tasks",
        "ledgerflow.reconciliation.tasks",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_always_eager=settings.CATEGORIZATION_EAGER,
)

celery_app.conf.beat_schedule = {
    'categorization-reset-stale': {
        'task': 'categorization.reset_stale',
        'schedule': timedelta(minutes=settings.CATEGORIZATION_STALE_MINUTES),
        'options': {
            'expires': 600,
        },
    },
}


def validate_user_id(user_id: str) -> UUID:
    try:
        return UUID(str(user_id))
    except ValueError as e:
        raise ValueError(f"user_id must be a UUID, got {user_id!r}") from e


def get_task_session() -> Session:
    """Create a database session for a worker task (caller closes it)."""
    return SessionLocal()


class BaseTask(Task):
    """Refuses to run a per-user task without a valid user_id keyword."""

    def __call__(self, *args, **kwargs):
        if not kwargs.get("user_id"):
            raise ValueError(f"{self.name} must be called with user_id=...")
        validate_user_id(kwargs["user_id"])
        return super().__call__(*args, **kwargs)


# Eager tasks run inside an API request; unbinding restores the request id.
_task_request_tokens = {}


@task_prerun.connect
def _bind_task_request_id(task_id=None, **kwargs):
    _task_request_tokens[task_id] = bind_request_id(task_id)


@task_postrun.connect
def _clear_task_request_id(task_id=None, **kwargs):
    token = _task_request_tokens.pop(task_id, None)
    if token is not None:
        unbind_request_id(token)


@setup_logging.connect
def _configure_worker_logging(**kwargs):
    configure_logging(level=settings.LOG_LEVEL, json_format=settings.LOG_JSON)
