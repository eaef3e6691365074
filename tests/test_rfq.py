from datetime import datetime

from packstudio.actions import rfq
from packstudio.integrations.auth import AuthUser
from packstudio.storage.models import Notification, Rfq, SupplierQuote, SupplierRfq

from .fakes import add_supplier

SUPPLIER = AuthUser(id="sup-user-1", role="supplier")
MALLORY = AuthUser(id="mallory")


def notifications_for(db, receiver_id):
    with db.session() as session:
        return [
            (n.title, n.message, n.type)
            for n in session.query(Notification).filter_by(receiver_id=receiver_id).all()
        ]


def quoted_rfq(services, creator, sample_price="$40"):
    """An RFQ sent to SUPPLIER's company, with one quote from it."""
    supplier_id = add_supplier(services.db, "Acme Bags", user_id=SUPPLIER.id)
    created = rfq.create_rfq(services, creator, rfq.RfqInput(title="Tote RFQ"))
    rfq.submit_quote(
        services,
        SUPPLIER,
        rfq.QuoteInput(rfq_id=created["rfq_id"], supplier_id=supplier_id, sample_price=sample_price),
    )
    return created["rfq_id"], supplier_id


def test_create_rfq_links_default_suppliers(services, creator):
    for name in ("Acme Bags", "Loom Works", "Stitch Co"):
        add_supplier(services.db, name)

    result = rfq.create_rfq(services, creator, rfq.RfqInput(title="Tote RFQ", quantity="500"))

    assert result["success"] is True
    assert result["supplier_count"] == 3
    with services.db.session() as session:
        row = session.get(Rfq, result["rfq_id"])
        assert row.target_price == "TBD"
        assert row.status == "open"
        assert row.creator_id == creator.id


def test_create_rfq_rejects_unknown_status(services, creator):
    result = rfq.create_rfq(services, creator, rfq.RfqInput(title="Tote RFQ", status="pending"))

    assert result == {"success": False, "error": "Unknown RFQ status: pending"}


def test_create_rfq_with_explicit_suppliers_and_notifications(services, creator):
    chosen = add_supplier(services.db, "Acme Bags", user_id="sup-user-1")
    add_supplier(services.db, "Loom Works", user_id="sup-user-2")

    result = rfq.create_rfq_with_notification(
        services,
        creator,
        rfq.RfqInput(title="Tote RFQ", supplier_ids=[chosen], target_price="$4"),
        creator_name="Maya",
    )

    assert result["supplier_count"] == 1
    assert result["notifications_sent"] == 1
    assert notifications_for(services.db, "sup-user-1") == [
        ("New RFQ", 'New RFQ from Maya for "Tote RFQ"', "rfq_response")
    ]
    assert notifications_for(services.db, "sup-user-2") == []


def test_rfq_actions_require_authentication(services):
    result = rfq.create_rfq(services, None, rfq.RfqInput(title="Tote RFQ"))

    assert result == {"success": False, "error": "Authentication required"}
    assert rfq.get_available_suppliers(services, None)["error"] == "Authentication required"


def test_available_suppliers_shape(services, creator):
    add_supplier(services.db, None, categories=["shoes"])

    result = rfq.get_available_suppliers(services, creator)

    assert result["success"] is True
    supplier = result["suppliers"][0]
    assert supplier["company_name"] == "Unknown"
    assert supplier["categories"] == ["shoes"]


def test_check_existing_rfq_returns_latest(services, creator):
    product = services.db.create_product(creator.id, "Canvas Tote")
    with services.db.session() as session:
        session.add(Rfq(title="Old", techpack_id=product.id, creator_id=creator.id, created_at=datetime(2025, 1, 1)))
        session.add(Rfq(title="New", techpack_id=product.id, creator_id=creator.id, created_at=datetime(2025, 3, 1)))

    result = rfq.check_existing_rfq(services, creator, product.id)
    assert result["exists"] is True
    assert result["rfq"]["title"] == "New"

    assert rfq.check_existing_rfq(services, creator, "other")["exists"] is False


def test_submit_quote_upserts_and_notifies_creator(services, creator):
    supplier_id = add_supplier(services.db, "Acme Bags", user_id=SUPPLIER.id)
    created = rfq.create_rfq(services, creator, rfq.RfqInput(title="Tote RFQ"))

    quote = rfq.QuoteInput(rfq_id=created["rfq_id"], supplier_id=supplier_id, sample_price="$40", moq="300")
    assert rfq.submit_quote(services, SUPPLIER, quote)["success"] is True
    quote.sample_price = "$35"
    result = rfq.submit_quote(services, SUPPLIER, quote)

    assert result["quote"]["sample_price"] == "$35"
    assert result["quote"]["status"] == "responded"
    with services.db.session() as session:
        assert session.query(SupplierQuote).count() == 1
        assert session.get(Rfq, created["rfq_id"]).status == "quotes_received"

    assert notifications_for(services.db, creator.id) == [
        ("New Quote Received", 'Acme Bags responded to your RFQ "Tote RFQ"', "rfq_response"),
        ("New Quote Received", 'Acme Bags responded to your RFQ "Tote RFQ"', "rfq_response"),
    ]


def test_submit_quote_for_unknown_rfq(services, creator):
    result = rfq.submit_quote(services, creator, rfq.QuoteInput(rfq_id="missing", supplier_id="s1"))

    assert result == {"success": False, "error": "RFQ not found"}


def test_cannot_quote_as_another_users_supplier(services, creator):
    supplier_id = add_supplier(services.db, "Acme Bags", user_id=SUPPLIER.id)
    created = rfq.create_rfq(services, creator, rfq.RfqInput(title="Tote RFQ"))

    result = rfq.submit_quote(
        services, MALLORY, rfq.QuoteInput(rfq_id=created["rfq_id"], supplier_id=supplier_id, sample_price="$1")
    )

    assert result == {"success": False, "error": rfq.NOT_YOUR_SUPPLIER}
    status = rfq.update_quote_status(services, MALLORY, created["rfq_id"], supplier_id, "archived")
    assert status["error"] == rfq.NOT_YOUR_SUPPLIER
    with services.db.session() as session:
        assert session.query(SupplierQuote).count() == 0
        assert session.get(Rfq, created["rfq_id"]).status == "open"


def test_update_quote_status_inserts_missing_row(services, creator):
    supplier_id = add_supplier(services.db, "Acme Bags", user_id=SUPPLIER.id)
    created = rfq.create_rfq(services, creator, rfq.RfqInput(title="Tote RFQ"))

    result = rfq.update_quote_status(services, SUPPLIER, created["rfq_id"], supplier_id, "archived")

    assert result["success"] is True
    assert result["quote"]["status"] == "archived"
    assert result["quote"]["sample_price"] is None

    rfq.update_quote_status(services, SUPPLIER, created["rfq_id"], supplier_id, "declined")
    with services.db.session() as session:
        assert [q.status for q in session.query(SupplierQuote).all()] == ["declined"]

    missing = rfq.update_quote_status(services, SUPPLIER, "missing", supplier_id, "declined")
    assert missing == {"success": False, "error": "RFQ not found"}


def test_creator_accepts_a_quote(services, creator):
    rfq_id, supplier_id = quoted_rfq(services, creator)

    result = rfq.accept_rfq(services, creator, rfq_id, supplier_id)

    assert result["success"] is True
    assert result["quote"]["status"] == "accepted"
    assert result["quote"]["sample_price"] == "$40"

    rejected = rfq.accept_rfq(services, creator, rfq_id, supplier_id, status="rejected")
    assert rejected["quote"]["status"] == "rejected"


def test_accept_needs_an_existing_quote_on_own_rfq(services, creator):
    rfq_id, supplier_id = quoted_rfq(services, creator)
    other_supplier = add_supplier(services.db, "Loom Works")

    assert rfq.accept_rfq(services, creator, rfq_id, other_supplier)["error"] == "Quote not found"
    assert rfq.accept_rfq(services, MALLORY, rfq_id, supplier_id)["error"] == "RFQ not found"
    with services.db.session() as session:
        assert session.query(SupplierQuote).one().status == "responded"


def test_creator_closes_rfq(services, creator):
    created = rfq.create_rfq(services, creator, rfq.RfqInput(title="Tote RFQ"))

    result = rfq.update_rfq_creator_status(services, creator, created["rfq_id"], "closed")

    assert result["success"] is True
    assert result["rfq"]["status"] == "closed"
    with services.db.session() as session:
        assert session.get(Rfq, created["rfq_id"]).status == "closed"


def test_rfq_status_changes_are_validated_and_owner_only(services, creator):
    created = rfq.create_rfq(services, creator, rfq.RfqInput(title="Tote RFQ"))

    bad = rfq.update_rfq_creator_status(services, creator, created["rfq_id"], "finished")
    foreign = rfq.update_rfq_creator_status(services, MALLORY, created["rfq_id"], "closed")

    assert bad == {"success": False, "error": "Unknown RFQ status: finished"}
    assert foreign == {"success": False, "error": "RFQ not found"}
    with services.db.session() as session:
        assert session.get(Rfq, created["rfq_id"]).status == "open"


def test_supplier_and_creator_views(services, creator):
    acme = add_supplier(services.db, "Acme Bags", user_id="sup-user-1")
    loom = add_supplier(services.db, "Loom Works", user_id="sup-user-2")
    product = services.db.create_product(creator.id, "Canvas Tote")
    created = rfq.create_rfq(services, creator, rfq.RfqInput(title="Tote RFQ", techpack_id=product.id))
    rfq.submit_quote(
        services,
        SUPPLIER,
        rfq.QuoteInput(rfq_id=created["rfq_id"], supplier_id=acme, sample_price="$40"),
    )

    supplier_view = rfq.fetch_supplier_rfqs(services, AuthUser(id="sup-user-2"), loom)
    assert len(supplier_view["rfqs"]) == 1
    item = supplier_view["rfqs"][0]
    assert item["techpack"]["title"] == "Canvas Tote"
    assert item["creator"]["email"] == creator.email
    assert item["quote"] is None

    creator_view = rfq.fetch_creator_rfqs(services, creator, creator.id)
    suppliers = creator_view["rfqs"][0]["suppliers"]
    quotes = {s["profile"]["company_name"]: s["quote"] for s in suppliers}
    assert quotes["Acme Bags"]["sample_price"] == "$40"
    assert quotes["Loom Works"] is None

    single = rfq.get_single_creator_rfq(services, creator, created["rfq_id"], creator.id)
    assert single["success"] is True
    assert single["rfq"]["title"] == "Tote RFQ"
    assert single["creator"]["id"] == creator.id


def test_single_supplier_rfq(services, creator):
    rfq_id, supplier_id = quoted_rfq(services, creator)

    result = rfq.get_single_supplier_rfq(services, SUPPLIER, rfq_id, supplier_id)

    assert result["success"] is True
    assert result["rfq"]["id"] == rfq_id
    assert result["creator"]["id"] == creator.id
    assert result["quote"]["sample_price"] == "$40"


def test_supplier_cannot_read_rfqs_it_was_not_sent(services, creator):
    created = rfq.create_rfq(services, creator, rfq.RfqInput(title="Tote RFQ"))
    late_supplier = add_supplier(services.db, "Late Co", user_id=SUPPLIER.id)

    result = rfq.get_single_supplier_rfq(services, SUPPLIER, created["rfq_id"], late_supplier)

    assert result == {"success": False, "error": "RFQ not found"}
    assert rfq.get_single_supplier_rfq(services, MALLORY, created["rfq_id"], late_supplier)["error"] == (
        rfq.NOT_YOUR_SUPPLIER
    )


def test_rfq_reads_are_limited_to_their_owners(services, creator):
    rfq_id, supplier_id = quoted_rfq(services, creator)

    assert rfq.fetch_creator_rfqs(services, MALLORY, creator.id) == {
        "success": False,
        "error": rfq.NOT_YOUR_RFQS,
    }
    assert rfq.get_single_creator_rfq(services, MALLORY, rfq_id, creator.id)["error"] == rfq.NOT_YOUR_RFQS
    assert rfq.get_single_creator_rfq(services, MALLORY, rfq_id, MALLORY.id)["error"] == "RFQ not found"
    assert rfq.fetch_supplier_rfqs(services, MALLORY, supplier_id)["error"] == rfq.NOT_YOUR_SUPPLIER
    assert rfq.fetch_supplier_rfqs(services, creator, "missing")["error"] == "Supplier not found"


def test_link_rows_are_created(services, creator):
    add_supplier(services.db, "Acme Bags")
    created = rfq.create_rfq(services, creator, rfq.RfqInput(title="Tote RFQ"))

    with services.db.session() as session:
        assert session.query(SupplierRfq).filter_by(rfqs_id=created["rfq_id"]).count() == 1
