from packstudio.billing.credits import CreditManager
from packstudio.storage import Database
from packstudio.storage.models import ReservationRecord, UserCredits


def make_manager():
    db = Database("sqlite:///:memory:")
    db.ensure_user("u1", "u1@example.com")
    return db, CreditManager(db)


def balances(db, user_id="u1"):
    with db.session() as session:
        rows = session.query(UserCredits).filter(UserCredits.user_id == user_id).all()
        return {row.id: (row.credits, row.status) for row in rows}


def test_reserve_takes_one_time_credits_before_subscription():
    db, manager = make_manager()
    subscription = manager.add_credits("u1", 10, plan_type="subscription", subscription_id="sub_1")
    top_up = manager.add_credits("u1", 3, plan_type="one_time")

    reservation = manager.reserve_credits("u1", 5, reason="multiview_edit")

    assert reservation.success is True
    assert reservation.current_credits == 8
    assert [(r.id, r.deducted) for r in reservation.reserved_from] == [
        (top_up.id, 3),
        (subscription.id, 2),
    ]
    assert balances(db)[top_up.id][0] == 0
    assert balances(db)[subscription.id][0] == 8


def test_reserve_refuses_when_balance_is_short():
    db, manager = make_manager()
    source = manager.add_credits("u1", 2)

    reservation = manager.reserve_credits("u1", 5)

    assert reservation.success is False
    assert reservation.message == "Not enough credits."
    assert reservation.current_credits == 2
    assert balances(db)[source.id] == (2, "active")


def test_reserve_without_sources():
    _, manager = make_manager()

    reservation = manager.reserve_credits("u1", 1)

    assert reservation.success is False
    assert reservation.message == "No active credits found"


def test_refund_restores_exact_sources_once():
    db, manager = make_manager()
    first = manager.add_credits("u1", 2)
    second = manager.add_credits("u1", 10, plan_type="subscription")

    reservation = manager.reserve_credits("u1", 5)
    assert manager.refund_credits(reservation.reservation_id, reason="generation failed") is True
    assert manager.refund_credits(reservation.reservation_id) is False

    assert balances(db)[first.id][0] == 2
    assert balances(db)[second.id][0] == 10
    with db.session() as session:
        record = session.get(ReservationRecord, reservation.reservation_id)
        assert record.status == "refunded"
        assert "generation failed" in record.reason


def test_committed_reservation_cannot_be_refunded():
    db, manager = make_manager()
    manager.add_credits("u1", 5)

    reservation = manager.reserve_credits("u1", 5)
    assert manager.commit_reservation(reservation.reservation_id) is True

    assert manager.refund_credits(reservation.reservation_id) is False
    assert manager.available_credits("u1") == 0


def test_refund_reactivates_expired_top_up():
    db, manager = make_manager()
    source = manager.add_credits("u1", 3)

    reservation = manager.reserve_credits("u1", 3)
    assert manager.expire_exhausted_plans() == 1
    assert balances(db)[source.id] == (0, "expired")

    manager.refund_credits(reservation.reservation_id)

    assert balances(db)[source.id] == (3, "active")


def test_reservation_ids_are_unique():
    _, manager = make_manager()
    manager.add_credits("u1", 10)

    ids = {manager.reserve_credits("u1", 1).reservation_id for _ in range(5)}

    assert len(ids) == 5


def test_deduct_expires_exhausted_one_time_source():
    db, manager = make_manager()
    source = manager.add_credits("u1", 2)

    result = manager.deduct_credits("u1", 2)

    assert result["success"] is True
    assert balances(db)[source.id] == (0, "expired")
    assert manager.deduct_credits("u1", 1)["success"] is False


def test_check_credits_reports_shortfall():
    _, manager = make_manager()
    manager.add_credits("u1", 1)

    check = manager.check_credits("u1", 5)

    assert check.has_credits is False
    assert check.message == "Insufficient credits. You have 1 credits but need 5."


def test_summary_for_user_without_plans():
    _, manager = make_manager()

    summary = manager.get_user_credits("u1")

    assert summary.credits == 0
    assert summary.membership_status == "inactive"
    assert summary.plan_type == "none"
    assert summary.message == "You can purchase a new plan."


def test_summary_prefers_subscription_details():
    _, manager = make_manager()
    manager.add_credits("u1", 4)
    manager.add_credits("u1", 20, plan_type="subscription", subscription_id="sub_9", membership="pro")

    summary = manager.get_user_credits("u1")

    assert summary.credits == 24
    assert summary.membership_status == "active"
    assert summary.subscription_id == "sub_9"
    assert summary.has_ever_had_subscription is True
    assert "total of 24 credits" in summary.message


def test_summary_expires_exhausted_plans():
    _, manager = make_manager()
    manager.add_credits("u1", 1)
    manager.reserve_credits("u1", 1)

    summary = manager.get_user_credits("u1")

    assert summary.credits == 0
    assert summary.membership_status == "expired"
    assert summary.message == "You do not have an active plan. Please purchase a new one."
