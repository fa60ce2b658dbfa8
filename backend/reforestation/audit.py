from datetime import datetime, timezone
from sqlalchemy.orm import Session
from . import models
from .services.changes import ChangeEvent


def log_action(
    db: Session,
    user_id: int | None,
    action: str,
    target_type: str | None = None,
    target_uid: str | None = None,
    details: dict | None = None,
):
    log = models.AuditLog(
        user_id=user_id,
        action=action,
        target_type=target_type,
        target_uid=target_uid,
        details=details or {},
        created_at=datetime.now(timezone.utc),
    )
    db.add(log)
    db.commit()
    db.refresh(log)
    return log


class AuditTrail:
    """Change sink persisting events as audit log rows."""

    def __init__(self, db: Session):
        self.db = db

    def record_change(self, event: ChangeEvent) -> None:
        try:
            log_action(
                self.db,
                event.actor_id,
                event.action,
                target_type=event.target_type,
                target_uid=event.target_uid,
                details={
                    "changed_fields": list(event.changed_fields),
                    "project_id": event.project_id,
                    **event.details,
                },
            )
        except Exception:
            self.db.rollback()
            raise
