"""Credit bookkeeping: reservations, refunds and balance summaries.

A user's balance is spread over several ``user_credits`` sources (one-time
top-ups and subscription periods). Paid operations reserve credits before
calling the AI providers and refund the reservation if the operation fails.
"""

import logging
import time
import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from ..storage.database import Database
from ..storage.models import ReservationRecord, UserCredits

logger = logging.getLogger(__name__)


class CreditCheck(BaseModel):
    has_credits: bool
    current_credits: int
    message: Optional[str] = None


class ReservedSource(BaseModel):
    id: str
    deducted: int


class CreditReservation(BaseModel):
    """Outcome of a reservation attempt."""

    success: bool
    reservation_id: Optional[str] = None
    reserved_from: List[ReservedSource] = Field(default_factory=list)
    current_credits: Optional[int] = None
    message: Optional[str] = None


class UserCreditsSummary(BaseModel):
    credits: int = 0
    membership_status: str = "inactive"
    plan_type: str = "none"
    can_buy: bool = True
    has_ever_had_subscription: bool = False
    message: str = "You can purchase a new plan."
    subscription_id: Optional[str] = None
    membership: Optional[str] = None
    expires_at: Optional[datetime] = None
    subscription_status_canceled: bool = False
    payment_provider: Optional[str] = None


class CreditManager:
    """Reads and mutates credit sources for a user."""

    def __init__(self, db: Database):
        self.db = db

    def _active_sources(self, session, user_id: str) -> List[UserCredits]:
        # plan_type ascending puts one_time top-ups ahead of subscription credits
        return (
            session.query(UserCredits)
            .filter(UserCredits.user_id == user_id, UserCredits.status == "active")
            .order_by(UserCredits.plan_type.asc(), UserCredits.created_at.asc())
            .all()
        )

    def available_credits(self, user_id: str) -> int:
        with self.db.session() as session:
            return sum(source.credits for source in self._active_sources(session, user_id))

    def check_credits(self, user_id: str, required: int) -> CreditCheck:
        current = self.available_credits(user_id)
        if current < required:
            return CreditCheck(
                has_credits=False,
                current_credits=current,
                message=f"Insufficient credits. You have {current} credits but need {required}.",
            )
        return CreditCheck(has_credits=True, current_credits=current)

    def reserve_credits(self, user_id: str, amount: int, reason: str = "") -> CreditReservation:
        """Take ``amount`` credits from the user's sources, oldest top-ups first.

        Nothing is deducted unless the full amount is available.
        """
        with self.db.session() as session:
            sources = self._active_sources(session, user_id)
            if not sources:
                return CreditReservation(success=False, message="No active credits found")

            total = sum(source.credits for source in sources)
            if total < amount:
                return CreditReservation(
                    success=False, message="Not enough credits.", current_credits=total
                )

            remaining = amount
            reserved_from: List[ReservedSource] = []
            for source in sources:
                if remaining <= 0:
                    break
                deducted = min(source.credits, remaining)
                if deducted <= 0:
                    continue
                source.credits -= deducted
                source.updated_at = datetime.utcnow()
                reserved_from.append(ReservedSource(id=source.id, deducted=deducted))
                remaining -= deducted

            reservation_id = (
                f"res_{int(time.time() * 1000)}_{user_id}_{uuid.uuid4().hex[:8]}"
            )
            session.add(
                ReservationRecord(
                    id=reservation_id,
                    user_id=user_id,
                    amount=amount,
                    reserved_from=[r.model_dump() for r in reserved_from],
                    status="reserved",
                    reason=reason,
                )
            )

            logger.info(f"Reserved {amount} credits for user {user_id} ({reservation_id})")
            return CreditReservation(
                success=True,
                reservation_id=reservation_id,
                reserved_from=reserved_from,
                current_credits=total - amount,
            )

    def refund_credits(self, reservation_id: str, reason: str = "") -> bool:
        """Put a reservation's credits back on the sources they came from.

        Returns False if the reservation is unknown or already settled.
        """
        with self.db.session() as session:
            reservation = session.get(ReservationRecord, reservation_id)
            if reservation is None or reservation.status != "reserved":
                logger.warning(f"Refund skipped for reservation {reservation_id}")
                return False

            for entry in reservation.reserved_from or []:
                source = session.get(UserCredits, entry["id"])
                if source is None:
                    logger.error(f"Credit source {entry['id']} missing during refund")
                    continue
                source.credits += entry["deducted"]
                source.updated_at = datetime.utcnow()
                if source.status == "expired" and source.plan_type == "one_time":
                    source.status = "active"

            reservation.status = "refunded"
            reservation.settled_at = datetime.utcnow()
            if reason:
                reservation.reason = f"{reservation.reason or ''} | refund: {reason}".strip(" |")

            logger.info(
                f"Refunded {reservation.amount} credits for reservation {reservation_id}"
            )
            return True

    def commit_reservation(self, reservation_id: str) -> bool:
        """Mark a reservation as spent so it can no longer be refunded."""
        with self.db.session() as session:
            reservation = session.get(ReservationRecord, reservation_id)
            if reservation is None or reservation.status != "reserved":
                return False
            reservation.status = "committed"
            reservation.settled_at = datetime.utcnow()
            return True

    def deduct_credits(self, user_id: str, amount: int) -> dict:
        """Deduct immediately, expiring one-time sources that reach zero."""
        with self.db.session() as session:
            sources = self._active_sources(session, user_id)
            if not sources:
                return {"success": False, "message": "No active credits found"}

            if sum(source.credits for source in sources) < amount:
                return {"success": False, "message": "Insufficient credits"}

            remaining = amount
            for source in sources:
                if remaining <= 0:
                    break
                deducted = min(source.credits, remaining)
                source.credits -= deducted
                source.updated_at = datetime.utcnow()
                remaining -= deducted
                if source.credits == 0 and source.plan_type == "one_time":
                    source.status = "expired"

            return {"success": True, "message": "Credits deducted successfully"}

    def add_credits(
        self,
        user_id: str,
        credits: int,
        plan_type: str = "one_time",
        membership: Optional[str] = None,
        subscription_id: Optional[str] = None,
        payment_provider: Optional[str] = None,
        expires_at: Optional[datetime] = None,
    ) -> UserCredits:
        """Record a purchase or grant as a new active credit source."""
        with self.db.session() as session:
            source = UserCredits(
                user_id=user_id,
                credits=credits,
                status="active",
                plan_type=plan_type,
                membership=membership,
                subscription_id=subscription_id,
                payment_provider=payment_provider,
                expires_at=expires_at,
            )
            session.add(source)
            session.flush()
            session.expunge(source)
            logger.info(f"Added {credits} {plan_type} credits for user {user_id}")
            return source

    def expire_exhausted_plans(self, user_id: Optional[str] = None) -> int:
        """Expire active one-time sources with no credits left."""
        with self.db.session() as session:
            query = session.query(UserCredits).filter(
                UserCredits.status == "active",
                UserCredits.plan_type == "one_time",
                UserCredits.credits == 0,
            )
            if user_id:
                query = query.filter(UserCredits.user_id == user_id)
            expired = query.update({"status": "expired"}, synchronize_session=False)
            if expired:
                logger.info(f"Expired {expired} exhausted one-time plans")
            return expired

    def get_user_credits(self, user_id: str) -> UserCreditsSummary:
        """Balance and plan details shown on the billing page."""
        self.expire_exhausted_plans(user_id)

        with self.db.session() as session:
            records = (
                session.query(UserCredits)
                .filter(UserCredits.user_id == user_id)
                .order_by(UserCredits.created_at.asc())
                .all()
            )
            if not records:
                return UserCreditsSummary()

            active = [r for r in records if r.status == "active"]
            total = sum(r.credits for r in active)
            ever_pro = any(r.membership == "pro" for r in records)

            if active:
                not_cancelled = [r for r in reversed(active) if not r.subscription_status_canceled]
                source = (
                    next((r for r in not_cancelled if r.subscription_id), None)
                    or next((r for r in not_cancelled if r.credits > 0), None)
                    or active[-1]
                )
                if total > 0:
                    message = (
                        f"You have an active plan with a total of {total} credits. "
                        "You can add more at any time."
                    )
                else:
                    message = (
                        "You have an active plan but have run out of credits. "
                        "You can purchase more."
                    )
                membership_status = "active"
            else:
                source = records[-1]
                message = "You do not have an active plan. Please purchase a new one."
                membership_status = source.status

            return UserCreditsSummary(
                credits=total,
                membership_status=membership_status,
                plan_type=source.plan_type,
                can_buy=True,
                has_ever_had_subscription=ever_pro,
                message=message,
                subscription_id=source.subscription_id,
                membership=source.membership,
                expires_at=source.expires_at,
                subscription_status_canceled=bool(source.subscription_status_canceled),
                payment_provider=source.payment_provider,
            )
