from packstudio.actions import dashboard, discover, notifications
from packstudio.actions import rfq
from packstudio.integrations.auth import AuthUser

from .fakes import add_supplier

FAN = AuthUser(id="fan-1", email="fan@example.com")
OTHER_FAN = AuthUser(id="fan-2", email="other@example.com")


def public_product(services, creator, title):
    return services.db.create_product(creator.id, title, is_public=True)


def test_public_listing_counts_and_sorting(services, creator):
    quiet = public_product(services, creator, "Quiet Lamp")
    popular = public_product(services, creator, "Popular Mug")
    services.db.create_product(creator.id, "Private Draft")

    discover.like_product(services, FAN, popular.id)
    discover.like_product(services, OTHER_FAN, popular.id)
    discover.add_anonymous_comment(services, quiet.id, "Lovely", "Sam")

    recent = discover.list_public_products(services, FAN)
    assert [p["title"] for p in recent["products"]] == ["Popular Mug", "Quiet Lamp"]

    ranked = discover.list_public_products(services, FAN, sort="popular")
    first, second = ranked["products"]
    assert (first["title"], first["likes_count"], first["user_has_liked"]) == ("Popular Mug", 2, True)
    assert (second["likes_count"], second["comments_count"], second["user_has_liked"]) == (0, 1, False)

    assert discover.list_public_products(services, sort="oldest")["success"] is False


def test_like_is_idempotent_and_notifies_owner_once(services, creator):
    product = public_product(services, creator, "Popular Mug")

    first = discover.like_product(services, FAN, product.id)
    second = discover.like_product(services, FAN, product.id)

    assert first["created"] is True
    assert second == {"success": True, "liked": True, "created": False}
    inbox = notifications.list_notifications(services, creator)["notifications"]
    assert [(n["title"], n["type"]) for n in inbox] == [("New Like", "like")]
    assert inbox[0]["message"] == 'fan@example.com liked your product "Popular Mug"'


def test_owner_liking_own_product_sends_nothing(services, creator):
    product = public_product(services, creator, "Popular Mug")

    discover.like_product(services, creator, product.id)

    assert notifications.list_notifications(services, creator)["notifications"] == []


def test_unlike(services, creator):
    product = public_product(services, creator, "Popular Mug")
    discover.like_product(services, FAN, product.id)

    assert discover.unlike_product(services, FAN, product.id)["removed"] is True
    assert discover.unlike_product(services, FAN, product.id)["removed"] is False


def test_like_unknown_product(services):
    assert discover.like_product(services, FAN, "missing") == {
        "success": False,
        "error": "Product not found",
    }


def test_comments_newest_first_and_author_only_delete(services, creator):
    product = public_product(services, creator, "Popular Mug")

    first = discover.add_comment(services, FAN, product.id, "  Great colors  ")
    discover.add_anonymous_comment(services, product.id, "Where can I buy it?", "Sam")

    listing = discover.list_comments(services, product.id)["comments"]
    assert [c["comment"] for c in listing] == ["Where can I buy it?", "Great colors"]
    assert listing[0]["guest_name"] == "Sam" and listing[0]["user"] is None
    assert listing[1]["user"]["id"] == FAN.id

    comment_id = first["comment"]["id"]
    assert discover.delete_comment(services, OTHER_FAN, comment_id)["error"] == "Comment not found"
    assert discover.delete_comment(services, FAN, comment_id) == {"success": True}
    assert len(discover.list_comments(services, product.id)["comments"]) == 1


def test_comment_validation(services, creator):
    product = public_product(services, creator, "Popular Mug")

    assert discover.add_comment(services, None, product.id, "hi")["error"] == "User not authenticated"
    assert discover.add_comment(services, FAN, product.id, "   ")["error"] == "Comment cannot be empty"
    assert discover.add_anonymous_comment(services, product.id, "hi", "")["error"] == "Name is required"


def test_notification_read_state(services, creator):
    product = public_product(services, creator, "Popular Mug")
    discover.like_product(services, FAN, product.id)
    discover.add_comment(services, OTHER_FAN, product.id, "Nice")

    unread = notifications.list_notifications(services, creator, unread_only=True)["notifications"]
    assert len(unread) == 2

    assert notifications.mark_notification_read(services, creator, unread[0]["id"]) == {"success": True}
    assert notifications.mark_notification_read(services, FAN, unread[1]["id"])["success"] is False

    assert notifications.mark_all_notifications_read(services, creator) == {"success": True, "updated": 1}
    assert notifications.list_notifications(services, creator, unread_only=True)["notifications"] == []


def test_dashboard_summary_counts(services, creator):
    services.credits.add_credits(creator.id, 7)
    product = public_product(services, creator, "Popular Mug")
    services.db.create_revision(product.id, views={})
    services.db.create_product(creator.id, "Draft")
    created = rfq.create_rfq(services, creator, rfq.RfqInput(title="Mug RFQ"))
    supplier_id = add_supplier(services.db, "Fan Co", user_id=FAN.id)
    rfq.submit_quote(services, FAN, rfq.QuoteInput(rfq_id=created["rfq_id"], supplier_id=supplier_id))
    discover.like_product(services, FAN, product.id)

    stats = dashboard.dashboard_summary(services, creator)["stats"]

    assert stats == {
        "products": 2,
        "active_revisions": 1,
        "open_rfqs": 1,
        "quotes_received": 1,
        "unread_notifications": 2,
        "credits": 7,
        "membership_status": "active",
    }


def test_dashboard_requires_user(services):
    assert dashboard.dashboard_summary(services, None)["success"] is False
