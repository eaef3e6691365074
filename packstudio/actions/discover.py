"""Public product gallery: listing, comments and likes."""

from typing import Optional

from loguru import logger
from sqlalchemy import func

from ..errors import NotFoundError, ValidationError
from ..integrations.auth import AuthUser
from ..services import Services
from ..storage.models import Notification, ProductComment, ProductIdea, ProductLike, User, to_dict
from .base import failure, require_user

SORT_ORDERS = ("recent", "popular")


def _notify_owner(session, product: ProductIdea, sender: AuthUser, title: str, message: str, kind: str):
    if not product.user_id or product.user_id == sender.id:
        return
    session.add(
        Notification(
            sender_id=sender.id,
            receiver_id=product.user_id,
            title=title,
            message=message,
            type=kind,
        )
    )


def _display_name(session, user: AuthUser) -> str:
    row = session.get(User, user.id)
    if row is not None and row.full_name:
        return row.full_name
    return user.email or "Someone"


def list_public_products(
    services: Services,
    user: Optional[AuthUser] = None,
    sort: str = "recent",
    limit: int = 50,
) -> dict:
    """Public products with like/comment counts and whether ``user`` has liked each one."""
    try:
        if sort not in SORT_ORDERS:
            raise ValidationError(f"Unknown sort order: {sort}")

        with services.db.session() as session:
            likes = (
                session.query(ProductLike.product_id, func.count(ProductLike.id).label("n"))
                .group_by(ProductLike.product_id)
                .subquery()
            )
            comments = (
                session.query(ProductComment.product_id, func.count(ProductComment.id).label("n"))
                .group_by(ProductComment.product_id)
                .subquery()
            )
            likes_count = func.coalesce(likes.c.n, 0)
            comments_count = func.coalesce(comments.c.n, 0)

            query = (
                session.query(ProductIdea, likes_count, comments_count)
                .outerjoin(likes, likes.c.product_id == ProductIdea.id)
                .outerjoin(comments, comments.c.product_id == ProductIdea.id)
                .filter(ProductIdea.is_public == True)  # noqa: E712
            )
            if sort == "popular":
                query = query.order_by(likes_count.desc(), ProductIdea.created_at.desc())
            else:
                query = query.order_by(ProductIdea.created_at.desc())
            rows = query.limit(limit).all()

            liked = set()
            if user is not None:
                liked = {
                    product_id
                    for (product_id,) in session.query(ProductLike.product_id)
                    .filter(ProductLike.user_id == user.id)
                    .all()
                }

            products = []
            for product, n_likes, n_comments in rows:
                item = to_dict(product)
                item["likes_count"] = n_likes
                item["comments_count"] = n_comments
                item["user_has_liked"] = product.id in liked
                products.append(item)

            return {"success": True, "products": products}
    except Exception as e:
        logger.error(f"Error listing public products: {e}")
        return failure(e, "Failed to load products")


def add_comment(services: Services, user: Optional[AuthUser], product_id: str, text: str) -> dict:
    try:
        user = require_user(user)
        if not text or not text.strip():
            raise ValidationError("Comment cannot be empty")

        services.db.ensure_user(user.id, user.email, user.role)
        with services.db.session() as session:
            product = session.get(ProductIdea, product_id)
            if product is None:
                raise NotFoundError("Product not found")

            comment = ProductComment(product_id=product_id, user_id=user.id, comment=text.strip())
            session.add(comment)
            _notify_owner(
                session,
                product,
                user,
                "New Comment",
                f'{_display_name(session, user)} commented on "{product.title}"',
                "comment",
            )
            session.flush()
            return {"success": True, "comment": to_dict(comment)}
    except Exception as e:
        logger.error(f"Error adding comment: {e}")
        return failure(e, "Failed to add comment")


def add_anonymous_comment(services: Services, product_id: str, text: str, guest_name: str) -> dict:
    try:
        if not text or not text.strip():
            raise ValidationError("Comment cannot be empty")
        if not guest_name or not guest_name.strip():
            raise ValidationError("Name is required")

        with services.db.session() as session:
            if session.get(ProductIdea, product_id) is None:
                raise NotFoundError("Product not found")

            comment = ProductComment(
                product_id=product_id, guest_name=guest_name.strip(), comment=text.strip()
            )
            session.add(comment)
            session.flush()
            return {"success": True, "comment": to_dict(comment)}
    except Exception as e:
        logger.error(f"Error adding anonymous comment: {e}")
        return failure(e, "Failed to add comment")


def list_comments(services: Services, product_id: str) -> dict:
    try:
        with services.db.session() as session:
            rows = (
                session.query(ProductComment, User)
                .outerjoin(User, User.id == ProductComment.user_id)
                .filter(ProductComment.product_id == product_id)
                .order_by(ProductComment.created_at.desc())
                .all()
            )
            comments = []
            for comment, author in rows:
                item = to_dict(comment)
                item["user"] = (
                    {"id": author.id, "full_name": author.full_name} if author is not None else None
                )
                comments.append(item)
            return {"success": True, "comments": comments}
    except Exception as e:
        logger.error(f"Error listing comments: {e}")
        return failure(e, "Failed to load comments")


def delete_comment(services: Services, user: Optional[AuthUser], comment_id: str) -> dict:
    """Only the author of a comment may delete it."""
    try:
        user = require_user(user)
        with services.db.session() as session:
            comment = session.get(ProductComment, comment_id)
            if comment is None or comment.user_id != user.id:
                raise NotFoundError("Comment not found")
            session.delete(comment)
            return {"success": True}
    except Exception as e:
        logger.error(f"Error deleting comment: {e}")
        return failure(e, "Failed to delete comment")


def like_product(services: Services, user: Optional[AuthUser], product_id: str) -> dict:
    """Like a product. Liking twice is a no-op and notifies the owner only the first time."""
    try:
        user = require_user(user)
        services.db.ensure_user(user.id, user.email, user.role)
        with services.db.session() as session:
            product = session.get(ProductIdea, product_id)
            if product is None:
                raise NotFoundError("Product not found")

            existing = (
                session.query(ProductLike)
                .filter(ProductLike.product_id == product_id, ProductLike.user_id == user.id)
                .first()
            )
            if existing is not None:
                return {"success": True, "liked": True, "created": False}

            session.add(ProductLike(product_id=product_id, user_id=user.id))
            _notify_owner(
                session,
                product,
                user,
                "New Like",
                f'{_display_name(session, user)} liked your product "{product.title}"',
                "like",
            )
            return {"success": True, "liked": True, "created": True}
    except Exception as e:
        logger.error(f"Error liking product: {e}")
        return failure(e, "Failed to like product")


def unlike_product(services: Services, user: Optional[AuthUser], product_id: str) -> dict:
    try:
        user = require_user(user)
        with services.db.session() as session:
            removed = (
                session.query(ProductLike)
                .filter(ProductLike.product_id == product_id, ProductLike.user_id == user.id)
                .delete(synchronize_session=False)
            )
            return {"success": True, "liked": False, "removed": bool(removed)}
    except Exception as e:
        logger.error(f"Error unliking product: {e}")
        return failure(e, "Failed to unlike product")
