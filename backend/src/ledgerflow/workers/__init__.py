"""Celery application and background task helpers"""

from .base import celery_app, BaseTask, validate_user_id, get_task_session

__all__ = ["celery_app", "BaseTask", "validate_user_id", "get_task_session"]
