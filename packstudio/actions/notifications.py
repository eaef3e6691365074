"""In-app notifications for the signed-in user."""

from typing import Optional

from loguru import logger

from ..errors import NotFoundError
from ..integrations.auth import AuthUser
from ..services import Services
from ..storage.models import Notification, to_dict
from .base import failure, require_user


def list_notifications(
    services: Services, user: Optional[AuthUser], unread_only: bool = False
) -> dict:
    try:
        user = require_user(user)
        with services.db.session() as session:
            query = session.query(Notification).filter(Notification.receiver_id == user.id)
            if unread_only:
                query = query.filter(Notification.is_read == False)  # noqa: E712
            rows = query.order_by(Notification.created_at.desc()).all()
            return {"success": True, "notifications": [to_dict(n) for n in rows]}
    except Exception as e:
        logger.error(f"Error fetching notifications: {e}")
        return failure(e, "Failed to fetch notifications")


def mark_notification_read(
    services: Services, user: Optional[AuthUser], notification_id: str
) -> dict:
    try:
        user = require_user(user)
        with services.db.session() as session:
            notification = session.get(Notification, notification_id)
            if notification is None or notification.receiver_id != user.id:
                raise NotFoundError("Notification not found")
            notification.is_read = True
            return {"success": True}
    except Exception as e:
        logger.error(f"Error marking notification read: {e}")
        return failure(e, "Failed to update notification")


def mark_all_notifications_read(services: Services, user: Optional[AuthUser]) -> dict:
    try:
        user = require_user(user)
        with services.db.session() as session:
            updated = (
                session.query(Notification)
                .filter(
                    Notification.receiver_id == user.id,
                    Notification.is_read == False,  # noqa: E712
                )
                .update({"is_read": True}, synchronize_session=False)
            )
            logger.info(f"Marked {updated} notifications read for {user.id}")
            return {"success": True, "updated": updated}
    except Exception as e:
        logger.error(f"Error marking notifications read: {e}")
        return failure(e, "Failed to update notifications")
