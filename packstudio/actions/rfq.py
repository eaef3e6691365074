"""Requests for quote: creators send tech packs to suppliers, suppliers answer with quotes."""

from typing import List, Optional

from loguru import logger
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError

from ..errors import ForbiddenError, NotFoundError, ValidationError
from ..integrations.auth import AuthUser
from ..services import Services
from ..storage.models import (
    Notification,
    ProductIdea,
    Rfq,
    SupplierProfile,
    SupplierQuote,
    SupplierRfq,
    User,
    to_dict,
)
from .base import failure, require_user

AUTH_REQUIRED = "Authentication required"
DEFAULT_SUPPLIER_LIMIT = 50
AVAILABLE_SUPPLIER_LIMIT = 100
RFQ_STATUSES = ("draft", "open", "quotes_received", "closed")

NOT_YOUR_RFQS = "You can only view your own RFQs"
NOT_YOUR_SUPPLIER = "Supplier profile belongs to another user"


class RfqInput(BaseModel):
    title: str
    product_idea: Optional[str] = None
    techpack_id: Optional[str] = None
    timeline: Optional[str] = None
    quantity: Optional[str] = None
    target_price: Optional[str] = None
    status: Optional[str] = None
    supplier_ids: Optional[List[str]] = None


class QuoteInput(BaseModel):
    rfq_id: str
    supplier_id: str
    sample_price: Optional[str] = None
    moq: Optional[str] = None
    lead_time: Optional[str] = None
    message: Optional[str] = None


def _link_suppliers(services: Services, rfq_id: str, supplier_ids: Optional[List[str]]) -> List[str]:
    """Attach the RFQ to the given suppliers, or to the first suppliers on file.

    Returns the user ids behind the linked suppliers. A failed link leaves the
    RFQ in place with no suppliers.
    """
    try:
        with services.db.session() as session:
            query = session.query(SupplierProfile)
            if supplier_ids:
                suppliers = query.filter(SupplierProfile.id.in_(supplier_ids)).all()
            else:
                suppliers = (
                    query.order_by(SupplierProfile.created_at.asc())
                    .limit(DEFAULT_SUPPLIER_LIMIT)
                    .all()
                )

            for supplier in suppliers:
                session.add(SupplierRfq(rfqs_id=rfq_id, supplier_id=supplier.id))
            return [s.user_id for s in suppliers if s.user_id]
    except SQLAlchemyError as e:
        logger.error(f"Error linking suppliers to RFQ {rfq_id}: {e}")
        return []


def _count_links(services: Services, rfq_id: str) -> int:
    with services.db.session() as session:
        return session.query(SupplierRfq).filter(SupplierRfq.rfqs_id == rfq_id).count()


def _insert_rfq(services: Services, user: AuthUser, data: RfqInput):
    if not data.title:
        raise ValidationError("RFQ title is required")
    if data.status and data.status not in RFQ_STATUSES:
        raise ValidationError(f"Unknown RFQ status: {data.status}")

    with services.db.session() as session:
        rfq = Rfq(
            title=data.title,
            product_idea=data.product_idea,
            techpack_id=data.techpack_id,
            creator_id=user.id,
            timeline=data.timeline,
            quantity=data.quantity,
            target_price=data.target_price or "TBD",
            status=data.status or "open",
        )
        session.add(rfq)
        session.flush()
        rfq_id = rfq.id

    supplier_users = _link_suppliers(services, rfq_id, data.supplier_ids)
    supplier_count = _count_links(services, rfq_id)
    logger.info(f"Created RFQ {rfq_id} and linked {supplier_count} suppliers")
    return rfq_id, supplier_count, supplier_users


def create_rfq(services: Services, user: Optional[AuthUser], data: RfqInput) -> dict:
    try:
        user = require_user(user, AUTH_REQUIRED)
        rfq_id, supplier_count, _ = _insert_rfq(services, user, data)
        return {"success": True, "rfq_id": rfq_id, "supplier_count": supplier_count}
    except Exception as e:
        logger.error(f"Error creating RFQ: {e}")
        return failure(e, "Failed to create RFQ")


def create_rfq_with_notification(
    services: Services,
    user: Optional[AuthUser],
    data: RfqInput,
    creator_name: Optional[str] = None,
) -> dict:
    """Create the RFQ, then tell every linked supplier about it."""
    try:
        user = require_user(user, AUTH_REQUIRED)
        rfq_id, supplier_count, supplier_users = _insert_rfq(services, user, data)

        sent = 0
        try:
            with services.db.session() as session:
                for receiver_id in supplier_users:
                    session.add(
                        Notification(
                            sender_id=user.id,
                            receiver_id=receiver_id,
                            title="New RFQ",
                            message=f'New RFQ from {creator_name or "a creator"} for "{data.title}"',
                            type="rfq_response",
                        )
                    )
                    sent += 1
        except SQLAlchemyError as e:
            logger.error(f"Error sending RFQ notifications: {e}")
            sent = 0

        return {
            "success": True,
            "rfq_id": rfq_id,
            "supplier_count": supplier_count,
            "notifications_sent": sent,
        }
    except Exception as e:
        logger.error(f"Error creating RFQ with notification: {e}")
        return failure(e, "Failed to create RFQ")


def get_available_suppliers(services: Services, user: Optional[AuthUser]) -> dict:
    try:
        require_user(user, AUTH_REQUIRED)
        with services.db.session() as session:
            suppliers = (
                session.query(SupplierProfile)
                .order_by(SupplierProfile.company_name.asc())
                .limit(AVAILABLE_SUPPLIER_LIMIT)
                .all()
            )
            return {
                "success": True,
                "suppliers": [
                    {
                        "id": s.id,
                        "company_name": s.company_name or "Unknown",
                        "location": s.location,
                        "company_logo": s.company_logo,
                        "categories": (s.manufacturing or {}).get("product_categories", []),
                    }
                    for s in suppliers
                ],
            }
    except Exception as e:
        logger.error(f"Error fetching suppliers: {e}")
        return failure(e, "Failed to fetch suppliers")


def check_existing_rfq(services: Services, user: Optional[AuthUser], techpack_id: str) -> dict:
    try:
        user = require_user(user, AUTH_REQUIRED)
        with services.db.session() as session:
            rfq = (
                session.query(Rfq)
                .filter(Rfq.techpack_id == techpack_id, Rfq.creator_id == user.id)
                .order_by(Rfq.created_at.desc())
                .first()
            )
            if rfq is None:
                return {"success": True, "exists": False, "rfq": None}
            return {
                "success": True,
                "exists": True,
                "rfq": {
                    "id": rfq.id,
                    "title": rfq.title,
                    "status": rfq.status,
                    "created_at": rfq.created_at.isoformat() if rfq.created_at else None,
                },
            }
    except Exception as e:
        logger.error(f"Error checking existing RFQ: {e}")
        return failure(e, "Failed to check existing RFQ")


def _owned_supplier(session, user: AuthUser, supplier_id: str) -> SupplierProfile:
    supplier = session.get(SupplierProfile, supplier_id)
    if supplier is None:
        raise NotFoundError("Supplier not found")
    if supplier.user_id != user.id:
        raise ForbiddenError(NOT_YOUR_SUPPLIER)
    return supplier


def _owned_rfq(session, user: AuthUser, rfq_id: str) -> Rfq:
    """The RFQ, if ``user`` created it. Other creators' RFQs read as missing."""
    rfq = session.get(Rfq, rfq_id)
    if rfq is None or rfq.creator_id != user.id:
        raise NotFoundError("RFQ not found")
    return rfq


def submit_quote(services: Services, user: Optional[AuthUser], quote: QuoteInput) -> dict:
    """Insert or replace a supplier's quote and notify the RFQ creator.

    Only the user behind the supplier profile may quote for it.
    """
    try:
        user = require_user(user, AUTH_REQUIRED)
        with services.db.session() as session:
            rfq = session.get(Rfq, quote.rfq_id)
            if rfq is None:
                raise NotFoundError("RFQ not found")
            supplier = _owned_supplier(session, user, quote.supplier_id)

            row = (
                session.query(SupplierQuote)
                .filter(
                    SupplierQuote.rfq_id == quote.rfq_id,
                    SupplierQuote.supplier_id == quote.supplier_id,
                )
                .first()
            )
            if row is None:
                row = SupplierQuote(rfq_id=quote.rfq_id, supplier_id=quote.supplier_id)
                session.add(row)

            row.sample_price = quote.sample_price
            row.moq = quote.moq
            row.lead_time = quote.lead_time
            row.message = quote.message
            row.status = "responded"
            rfq.status = "quotes_received"

            company = supplier.company_name or "A supplier"
            session.add(
                Notification(
                    sender_id=user.id,
                    receiver_id=rfq.creator_id,
                    title="New Quote Received",
                    message=f'{company} responded to your RFQ "{rfq.title}"',
                    type="rfq_response",
                )
            )
            session.flush()

            logger.info(f"Quote from supplier {quote.supplier_id} saved for RFQ {rfq.id}")
            return {"success": True, "quote": to_dict(row)}
    except Exception as e:
        logger.error(f"Error submitting quote: {e}")
        return failure(e, "Failed to submit quote")


def update_quote_status(
    services: Services, user: Optional[AuthUser], rfq_id: str, supplier_id: str, status: str
) -> dict:
    """Supplier side: set the status of its quote, creating a bare row if none exists."""
    try:
        user = require_user(user, AUTH_REQUIRED)
        if not status:
            raise ValidationError("Status is required")

        with services.db.session() as session:
            if session.get(Rfq, rfq_id) is None:
                raise NotFoundError("RFQ not found")
            _owned_supplier(session, user, supplier_id)

            row = (
                session.query(SupplierQuote)
                .filter(SupplierQuote.rfq_id == rfq_id, SupplierQuote.supplier_id == supplier_id)
                .first()
            )
            if row is None:
                row = SupplierQuote(rfq_id=rfq_id, supplier_id=supplier_id)
                session.add(row)
            row.status = status
            session.flush()
            return {"success": True, "quote": to_dict(row)}
    except Exception as e:
        logger.error(f"Error updating quote status: {e}")
        return failure(e, "Failed to update quote status")


def accept_rfq(
    services: Services,
    user: Optional[AuthUser],
    rfq_id: str,
    supplier_id: str,
    status: str = "accepted",
) -> dict:
    """Creator side: accept (or otherwise answer) a supplier's existing quote."""
    try:
        user = require_user(user, AUTH_REQUIRED)
        if not status:
            raise ValidationError("Status is required")

        with services.db.session() as session:
            rfq = _owned_rfq(session, user, rfq_id)
            row = (
                session.query(SupplierQuote)
                .filter(SupplierQuote.rfq_id == rfq.id, SupplierQuote.supplier_id == supplier_id)
                .first()
            )
            if row is None:
                raise NotFoundError("Quote not found")

            row.status = status
            session.flush()
            logger.info(f"Quote from supplier {supplier_id} on RFQ {rfq_id} marked {status}")
            return {"success": True, "quote": to_dict(row)}
    except Exception as e:
        logger.error(f"Error accepting RFQ quote: {e}")
        return failure(e, "Failed to update quote")


def update_rfq_creator_status(
    services: Services, user: Optional[AuthUser], rfq_id: str, status: str
) -> dict:
    """Creator side: move an RFQ through draft, open, quotes_received and closed."""
    try:
        user = require_user(user, AUTH_REQUIRED)
        if status not in RFQ_STATUSES:
            raise ValidationError(f"Unknown RFQ status: {status}")

        with services.db.session() as session:
            rfq = _owned_rfq(session, user, rfq_id)
            rfq.status = status
            session.flush()
            return {"success": True, "rfq": to_dict(rfq)}
    except Exception as e:
        logger.error(f"Error updating RFQ status: {e}")
        return failure(e, "Failed to update RFQ status")


def fetch_supplier_rfqs(services: Services, user: Optional[AuthUser], supplier_id: str) -> dict:
    """RFQs sent to one supplier, newest first, with that supplier's quote."""
    try:
        user = require_user(user, AUTH_REQUIRED)
        with services.db.session() as session:
            _owned_supplier(session, user, supplier_id)
            rfqs = (
                session.query(Rfq)
                .join(SupplierRfq, SupplierRfq.rfqs_id == Rfq.id)
                .filter(SupplierRfq.supplier_id == supplier_id)
                .order_by(Rfq.created_at.desc())
                .all()
            )
            quotes = {
                q.rfq_id: q
                for q in session.query(SupplierQuote)
                .filter(SupplierQuote.supplier_id == supplier_id)
                .all()
            }

            items = []
            for rfq in rfqs:
                techpack = session.get(ProductIdea, rfq.techpack_id) if rfq.techpack_id else None
                items.append(
                    {
                        "rfq": to_dict(rfq),
                        "techpack": to_dict(techpack),
                        "creator": to_dict(session.get(User, rfq.creator_id)),
                        "quote": to_dict(quotes.get(rfq.id)),
                    }
                )
            return {"success": True, "rfqs": items}
    except Exception as e:
        logger.error(f"Error fetching supplier RFQs: {e}")
        return failure(e, "Failed to fetch supplier RFQs")


def get_single_supplier_rfq(
    services: Services, user: Optional[AuthUser], rfq_id: str, supplier_id: str
) -> dict:
    """One RFQ as a supplier sees it. The RFQ must have been sent to that supplier."""
    try:
        user = require_user(user, AUTH_REQUIRED)
        with services.db.session() as session:
            _owned_supplier(session, user, supplier_id)
            rfq = session.get(Rfq, rfq_id)
            linked = (
                session.query(SupplierRfq)
                .filter(SupplierRfq.rfqs_id == rfq_id, SupplierRfq.supplier_id == supplier_id)
                .first()
            )
            if rfq is None or linked is None:
                raise NotFoundError("RFQ not found")

            quote = (
                session.query(SupplierQuote)
                .filter(SupplierQuote.rfq_id == rfq_id, SupplierQuote.supplier_id == supplier_id)
                .first()
            )
            techpack = session.get(ProductIdea, rfq.techpack_id) if rfq.techpack_id else None
            return {
                "success": True,
                "rfq": to_dict(rfq),
                "techpack": to_dict(techpack),
                "creator": to_dict(session.get(User, rfq.creator_id)),
                "quote": to_dict(quote),
            }
    except Exception as e:
        logger.error(f"Error fetching RFQ {rfq_id} for supplier {supplier_id}: {e}")
        return failure(e, "Failed to fetch RFQ")


def _creator_rfq_item(session, rfq: Rfq) -> dict:
    links = session.query(SupplierRfq).filter(SupplierRfq.rfqs_id == rfq.id).all()
    quotes = {
        q.supplier_id: q
        for q in session.query(SupplierQuote).filter(SupplierQuote.rfq_id == rfq.id).all()
    }
    techpack = session.get(ProductIdea, rfq.techpack_id) if rfq.techpack_id else None
    return {
        "rfq": to_dict(rfq),
        "techpack": to_dict(techpack),
        "suppliers": [
            {
                "profile": to_dict(session.get(SupplierProfile, link.supplier_id)),
                "quote": to_dict(quotes.get(link.supplier_id)),
            }
            for link in links
        ],
    }


def fetch_creator_rfqs(services: Services, user: Optional[AuthUser], creator_id: str) -> dict:
    try:
        user = require_user(user, AUTH_REQUIRED)
        if creator_id != user.id:
            raise ForbiddenError(NOT_YOUR_RFQS)

        with services.db.session() as session:
            rfqs = (
                session.query(Rfq)
                .filter(Rfq.creator_id == creator_id)
                .order_by(Rfq.created_at.desc())
                .all()
            )
            return {"success": True, "rfqs": [_creator_rfq_item(session, rfq) for rfq in rfqs]}
    except Exception as e:
        logger.error(f"Error fetching creator RFQs: {e}")
        return failure(e, "Failed to fetch creator RFQs")


def get_single_creator_rfq(
    services: Services, user: Optional[AuthUser], rfq_id: str, creator_id: str
) -> dict:
    try:
        user = require_user(user, AUTH_REQUIRED)
        if creator_id != user.id:
            raise ForbiddenError(NOT_YOUR_RFQS)

        with services.db.session() as session:
            rfq = _owned_rfq(session, user, rfq_id)
            item = _creator_rfq_item(session, rfq)
            item["creator"] = to_dict(session.get(User, creator_id))
            return {"success": True, **item}
    except Exception as e:
        logger.error(f"Error fetching RFQ {rfq_id}: {e}")
        return failure(e, "Failed to fetch RFQ")
