"""Helpers shared by the action modules."""

from typing import Optional

from ..errors import AuthenticationError, NotFoundError
from ..integrations.auth import AuthUser
from ..services import Services
from ..storage.models import ProductIdea


def require_user(user: Optional[AuthUser], message: Optional[str] = None) -> AuthUser:
    if user is None:
        raise AuthenticationError(message) if message else AuthenticationError()
    return user


def require_product_owner(services: Services, user: AuthUser, product_id: str) -> ProductIdea:
    """The product, if ``user`` owns it. Other users' products read as missing."""
    product = services.db.get_product(product_id)
    if product is None or product.user_id != user.id:
        raise NotFoundError("Product not found")
    return product


def failure(error: Exception, default: str) -> dict:
    """The ``{success: false, error}`` body returned by every action on failure."""
    return {"success": False, "error": str(error) or default}
