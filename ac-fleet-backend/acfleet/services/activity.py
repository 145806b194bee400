import logging
from typing import Any, Dict, Optional
from sqlalchemy.orm import Session

from acfleet.models.activity_log import ActivityLog
from acfleet.services.actors import Actor

logger = logging.getLogger(__name__)


def record_activity(
    db: Session,
    actor: Actor,
    action: str,
    target_id: Optional[int],
    details: Optional[Dict[str, Any]] = None,
    target_type: str = "event",
) -> None:
    """Append an activity entry to the caller's unit of work.

    Best-effort: a failure to build the entry is logged and the surrounding
    operation carries on.
    """
    try:
        db.add(ActivityLog(
            actor_role=actor.role.value,
            actor_id=actor.id,
            action=action,
            target_type=target_type,
            target_id=target_id,
            details=details or {},
        ))
    except Exception as e:
        logger.warning(f"Could not record activity {action} for {target_type} {target_id}: {e}")
