import logging
import os

from celery import Celery

from .database import SessionLocal
from . import models, notify

logger = logging.getLogger(__name__)

CELERY_BROKER_URL = os.getenv("CELERY_BROKER_URL", "memory://")
celery_app = Celery("tasks", broker=CELERY_BROKER_URL)
celery_app.conf.task_always_eager = (
    CELERY_BROKER_URL == "memory://" or os.getenv("TESTING") == "1"
)

_SUBJECTS = {
    "intervention.ownership_transferred": "An intervention was transferred to you",
    "intervention.species_reconciled": "Intervention species updated",
}


def _describe(action: str, target_uid: str, details: dict | None) -> str:
    lines = [f"{action} on {target_uid}"]
    for key, value in sorted((details or {}).items()):
        lines.append(f"{key}: {value}")
    return "\n".join(lines)


@celery_app.task
def dispatch_change_notification(
    user_id: int, action: str, target_uid: str, details: dict | None = None
):
    db = SessionLocal()
    try:
        user = db.get(models.User, user_id)
        if not user or not user.email or not user.is_active:
            logger.info("skipping notification for user %s", user_id)
            return None
        subject = _SUBJECTS.get(action, f"Intervention update: {action}")
        notify.send_email(user.email, subject, _describe(action, target_uid, details))
        return user.email
    finally:
        db.close()


def enqueue_change_notification(
    user_id: int, *, action: str, target_uid: str, details: dict | None = None
):
    if celery_app.conf.task_always_eager:
        dispatch_change_notification(user_id, action, target_uid, details)
    else:
        dispatch_change_notification.delay(user_id, action, target_uid, details)
