"""Counts shown on the creator dashboard."""

from typing import Optional

from loguru import logger
from sqlalchemy import func

from ..integrations.auth import AuthUser
from ..services import Services
from ..storage.models import MultiviewRevision, Notification, ProductIdea, Rfq, SupplierQuote
from .base import failure, require_user


def dashboard_summary(services: Services, user: Optional[AuthUser]) -> dict:
    try:
        user = require_user(user)
        with services.db.session() as session:
            products = (
                session.query(func.count(ProductIdea.id))
                .filter(ProductIdea.user_id == user.id)
                .scalar()
            )
            active_revisions = (
                session.query(func.count(MultiviewRevision.id))
                .join(ProductIdea, ProductIdea.id == MultiviewRevision.product_idea_id)
                .filter(
                    ProductIdea.user_id == user.id,
                    MultiviewRevision.is_active == True,  # noqa: E712
                )
                .scalar()
            )
            open_rfqs = (
                session.query(func.count(Rfq.id))
                .filter(Rfq.creator_id == user.id, Rfq.status.in_(("open", "quotes_received")))
                .scalar()
            )
            quotes_received = (
                session.query(func.count(SupplierQuote.id))
                .join(Rfq, Rfq.id == SupplierQuote.rfq_id)
                .filter(Rfq.creator_id == user.id, SupplierQuote.status == "responded")
                .scalar()
            )
            unread = (
                session.query(func.count(Notification.id))
                .filter(
                    Notification.receiver_id == user.id,
                    Notification.is_read == False,  # noqa: E712
                )
                .scalar()
            )

        credits = services.credits.get_user_credits(user.id)
        return {
            "success": True,
            "stats": {
                "products": products or 0,
                "active_revisions": active_revisions or 0,
                "open_rfqs": open_rfqs or 0,
                "quotes_received": quotes_received or 0,
                "unread_notifications": unread or 0,
                "credits": credits.credits,
                "membership_status": credits.membership_status,
            },
        }
    except Exception as e:
        logger.error(f"Error building dashboard summary: {e}")
        return failure(e, "Failed to load dashboard")
