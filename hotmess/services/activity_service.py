"""Activity helpers — audit log and in-app notification outbox.

Both only add rows to the current session (flush, no commit), so they land
in the same transaction as the settlement change they describe.
"""

import logging

from hotmess.extensions import db
from hotmess.models.audit import AuditEvent
from hotmess.models.notification import Notification

logger = logging.getLogger(__name__)


def log_settlement_audit(action, metadata=None, actor_user_id=None):
    """Log a settlement audit event.

    Actor is None when the event is system-initiated (webhook, cron).
    """
    event = AuditEvent(
        actor_user_id=actor_user_id,
        action=action,
        metadata_=metadata or {},
    )
    db.session.add(event)
    db.session.flush()
    return event


def enqueue_notification(user_id, type_, title, message, link=None):
    """Queue an in-app notification for a user."""
    notification = Notification(
        user_id=user_id,
        type=type_,
        title=title,
        message=message,
        link=link,
    )
    db.session.add(notification)
    db.session.flush()
    logger.debug(f"Queued {type_} notification for user {user_id}")
    return notification
