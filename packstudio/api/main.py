"""FastAPI application for PackStudio."""

from datetime import datetime
from typing import Dict, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger
from pydantic import BaseModel

from ..actions import dashboard, discover, notifications, rfq
from ..actions.multiview_edit import (
    CurrentViews,
    apply_multi_view_edit,
    get_multi_view_revisions,
    set_active_multi_view_revision,
)
from ..actions.single_view import regenerate_single_view
from ..integrations.auth import AuthUser
from ..services import Services, build_services
from ..utils.config import get_config

# Initialize FastAPI app
app = FastAPI(
    title="PackStudio API",
    description="AI product design, tech packs and supplier RFQs",
    version="1.0.0",
)

# Load configuration
config = get_config()

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.api.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_services: Optional[Services] = None


def get_services() -> Services:
    """Service graph shared by all requests, built on first use."""
    global _services
    if _services is None:
        _services = build_services(config)
    return _services


async def current_user(
    authorization: Optional[str] = Header(None),
    services: Services = Depends(get_services),
) -> Optional[AuthUser]:
    """The user behind the bearer token, or None for anonymous requests."""
    if not authorization or not authorization.lower().startswith("bearer "):
        return None

    user = await services.auth.get_user(authorization[7:].strip())
    if user is not None:
        services.db.ensure_user(user.id, user.email, user.role)
    return user


async def require_auth(user: Optional[AuthUser] = Depends(current_user)) -> AuthUser:
    if user is None:
        raise HTTPException(status_code=401, detail="User not authenticated")
    return user


NOT_FOUND_ERRORS = {
    "Product not found",
    "Revision not found",
    "RFQ not found",
    "Quote not found",
    "Supplier not found",
    "Comment not found",
    "Notification not found",
}
FORBIDDEN_ERRORS = {rfq.NOT_YOUR_RFQS, rfq.NOT_YOUR_SUPPLIER}


def _checked(result: dict) -> dict:
    """Raise 404/403 for an action that failed on a missing or foreign row."""
    if not result["success"]:
        if result["error"] in NOT_FOUND_ERRORS:
            raise HTTPException(status_code=404, detail=result["error"])
        if result["error"] in FORBIDDEN_ERRORS:
            raise HTTPException(status_code=403, detail=result["error"])
    return result


# ----------------------------------------------------------------------
# Request bodies
# ----------------------------------------------------------------------


class MultiViewEditRequest(BaseModel):
    current_views: CurrentViews
    edit_prompt: str
    product_name: str = "Product"
    product_description: str = ""


class RegenerateViewRequest(BaseModel):
    revision_id: str
    edit_prompt: str
    reference_views: Optional[Dict[str, Optional[str]]] = None


class CreateRfqRequest(rfq.RfqInput):
    creator_name: Optional[str] = None
    notify: bool = True


class QuoteRequest(BaseModel):
    supplier_id: str
    sample_price: Optional[str] = None
    moq: Optional[str] = None
    lead_time: Optional[str] = None
    message: Optional[str] = None


class StatusRequest(BaseModel):
    status: str


class CommentRequest(BaseModel):
    text: str
    guest_name: Optional[str] = None


@app.on_event("startup")
async def startup_event():
    """Run on application startup."""
    logger.info("PackStudio API starting up")


@app.on_event("shutdown")
async def shutdown_event():
    """Run on application shutdown."""
    logger.info("PackStudio API shutting down")


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "PackStudio API",
        "version": "1.0.0",
        "status": "running",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
    }

# ----------------------------------------------------------------------
# Products and revisions
# ----------------------------------------------------------------------


@app.post("/products/{product_id}/multiview-edit")
async def multiview_edit(
    product_id: str,
    body: MultiViewEditRequest,
    user: AuthUser = Depends(require_auth),
    services: Services = Depends(get_services),
):
    """Apply one edit prompt to all five views of a product.

    Costs credits; they are refunded if generation fails.
    """
    try:
        result = await apply_multi_view_edit(
            services,
            user,
            product_id,
            body.current_views,
            body.edit_prompt,
            product_name=body.product_name,
            product_description=body.product_description,
        )
    except Exception as e:
        logger.error(f"Error applying multi-view edit: {e}")
        raise HTTPException(status_code=500, detail=str(e))
    return _checked(result.model_dump())


@app.get("/products/{product_id}/revisions")
async def list_revisions(
    product_id: str,
    user: Optional[AuthUser] = Depends(current_user),
    services: Services = Depends(get_services),
):
    """Revision history of a product, oldest first."""
    result = _checked(get_multi_view_revisions(services, user, product_id))
    if not result["success"]:
        raise HTTPException(status_code=500, detail=result["error"])
    return result


@app.post("/products/{product_id}/revisions/{revision_id}/activate")
async def activate_revision(
    product_id: str,
    revision_id: str,
    user: AuthUser = Depends(require_auth),
    services: Services = Depends(get_services),
):
    result = _checked(set_active_multi_view_revision(services, user, revision_id, product_id))
    if not result["success"]:
        raise HTTPException(status_code=500, detail=result["error"])
    return result


@app.post("/products/{product_id}/views/{view_type}/regenerate")
async def regenerate_view(
    product_id: str,
    view_type: str,
    body: RegenerateViewRequest,
    user: AuthUser = Depends(require_auth),
    services: Services = Depends(get_services),
):
    """Regenerate a single view, keeping the others from the base revision."""
    try:
        result = await regenerate_single_view(
            services,
            user,
            product_id,
            view_type,
            body.revision_id,
            body.edit_prompt,
            reference_views=body.reference_views,
        )
    except Exception as e:
        logger.error(f"Error regenerating view: {e}")
        raise HTTPException(status_code=500, detail=str(e))
    return _checked(result.model_dump())


# ----------------------------------------------------------------------
# Credits and AI usage
# ----------------------------------------------------------------------


@app.get("/credits")
async def get_credits(
    user: AuthUser = Depends(require_auth), services: Services = Depends(get_services)
):
    try:
        return services.credits.get_user_credits(user.id).model_dump(mode="json")
    except Exception as e:
        logger.error(f"Error fetching credits: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@app.get("/ai/usage")
async def ai_usage(
    start: Optional[datetime] = Query(None, description="Only operations at or after this time"),
    end: Optional[datetime] = Query(None, description="Only operations at or before this time"),
    all_users: bool = Query(False, description="Admins only: aggregate over every user"),
    user: AuthUser = Depends(require_auth),
    services: Services = Depends(get_services),
):
    """Token, cost and error totals of the logged AI operations."""
    if all_users and user.role != "admin":
        raise HTTPException(status_code=403, detail="Admin role required")

    try:
        return services.ai_logger.usage_stats(
            user_id=None if all_users else user.id, start=start, end=end
        )
    except Exception as e:
        logger.error(f"Error computing AI usage: {e}")
        raise HTTPException(status_code=500, detail=str(e))


# ----------------------------------------------------------------------
# RFQs
# ----------------------------------------------------------------------


@app.post("/rfqs")
async def create_rfq(
    body: CreateRfqRequest,
    user: AuthUser = Depends(require_auth),
    services: Services = Depends(get_services),
):
    data = rfq.RfqInput(**body.model_dump(exclude={"creator_name", "notify"}))
    if body.notify:
        return rfq.create_rfq_with_notification(services, user, data, body.creator_name)
    return rfq.create_rfq(services, user, data)


@app.get("/rfqs/suppliers")
async def available_suppliers(
    user: AuthUser = Depends(require_auth), services: Services = Depends(get_services)
):
    return rfq.get_available_suppliers(services, user)


@app.get("/rfqs/existing/{techpack_id}")
async def existing_rfq(
    techpack_id: str,
    user: AuthUser = Depends(require_auth),
    services: Services = Depends(get_services),
):
    return rfq.check_existing_rfq(services, user, techpack_id)


@app.patch("/rfqs/{rfq_id}/status")
async def update_rfq_status(
    rfq_id: str,
    body: StatusRequest,
    user: AuthUser = Depends(require_auth),
    services: Services = Depends(get_services),
):
    """Creator moves their RFQ to draft, open, quotes_received or closed."""
    return _checked(rfq.update_rfq_creator_status(services, user, rfq_id, body.status))


@app.post("/rfqs/{rfq_id}/quotes")
async def submit_quote(
    rfq_id: str,
    body: QuoteRequest,
    user: AuthUser = Depends(require_auth),
    services: Services = Depends(get_services),
):
    return _checked(
        rfq.submit_quote(services, user, rfq.QuoteInput(rfq_id=rfq_id, **body.model_dump()))
    )


@app.patch("/rfqs/{rfq_id}/quotes/{supplier_id}")
async def update_quote_status(
    rfq_id: str,
    supplier_id: str,
    body: StatusRequest,
    user: AuthUser = Depends(require_auth),
    services: Services = Depends(get_services),
):
    """Supplier updates the status of its own quote."""
    return _checked(rfq.update_quote_status(services, user, rfq_id, supplier_id, body.status))


@app.post("/rfqs/{rfq_id}/quotes/{supplier_id}/accept")
async def accept_quote(
    rfq_id: str,
    supplier_id: str,
    body: Optional[StatusRequest] = None,
    user: AuthUser = Depends(require_auth),
    services: Services = Depends(get_services),
):
    """Creator answers a supplier's quote; defaults to accepting it."""
    status = body.status if body else "accepted"
    return _checked(rfq.accept_rfq(services, user, rfq_id, supplier_id, status))


@app.get("/suppliers/{supplier_id}/rfqs")
async def supplier_rfqs(
    supplier_id: str,
    user: AuthUser = Depends(require_auth),
    services: Services = Depends(get_services),
):
    return _checked(rfq.fetch_supplier_rfqs(services, user, supplier_id))


@app.get("/suppliers/{supplier_id}/rfqs/{rfq_id}")
async def supplier_rfq(
    supplier_id: str,
    rfq_id: str,
    user: AuthUser = Depends(require_auth),
    services: Services = Depends(get_services),
):
    return _checked(rfq.get_single_supplier_rfq(services, user, rfq_id, supplier_id))


@app.get("/creators/{creator_id}/rfqs")
async def creator_rfqs(
    creator_id: str,
    user: AuthUser = Depends(require_auth),
    services: Services = Depends(get_services),
):
    return _checked(rfq.fetch_creator_rfqs(services, user, creator_id))


@app.get("/creators/{creator_id}/rfqs/{rfq_id}")
async def creator_rfq(
    creator_id: str,
    rfq_id: str,
    user: AuthUser = Depends(require_auth),
    services: Services = Depends(get_services),
):
    return _checked(rfq.get_single_creator_rfq(services, user, rfq_id, creator_id))


# ----------------------------------------------------------------------
# Discover, comments and likes
# ----------------------------------------------------------------------


@app.get("/discover")
async def discover_products(
    sort: str = Query("recent", pattern="^(recent|popular)$", description="recent or popular"),
    limit: int = Query(50, ge=1, le=200, description="Number of results"),
    user: Optional[AuthUser] = Depends(current_user),
    services: Services = Depends(get_services),
):
    return discover.list_public_products(services, user, sort=sort, limit=limit)


@app.get("/discover/{product_id}/comments")
async def product_comments(product_id: str, services: Services = Depends(get_services)):
    return discover.list_comments(services, product_id)


@app.post("/discover/{product_id}/comments")
async def post_comment(
    product_id: str,
    body: CommentRequest,
    user: Optional[AuthUser] = Depends(current_user),
    services: Services = Depends(get_services),
):
    """Signed-in users comment as themselves; guests must give a name."""
    if user is not None:
        return discover.add_comment(services, user, product_id, body.text)
    if body.guest_name:
        return discover.add_anonymous_comment(services, product_id, body.text, body.guest_name)
    raise HTTPException(status_code=401, detail="Sign in or provide a name to comment")


@app.delete("/comments/{comment_id}")
async def remove_comment(
    comment_id: str,
    user: AuthUser = Depends(require_auth),
    services: Services = Depends(get_services),
):
    return _checked(discover.delete_comment(services, user, comment_id))


@app.post("/discover/{product_id}/like")
async def like(
    product_id: str,
    user: AuthUser = Depends(require_auth),
    services: Services = Depends(get_services),
):
    return discover.like_product(services, user, product_id)


@app.delete("/discover/{product_id}/like")
async def unlike(
    product_id: str,
    user: AuthUser = Depends(require_auth),
    services: Services = Depends(get_services),
):
    return discover.unlike_product(services, user, product_id)


# ----------------------------------------------------------------------
# Notifications and dashboard
# ----------------------------------------------------------------------


@app.get("/notifications")
async def get_notifications(
    unread_only: bool = Query(False, description="Only unread notifications"),
    user: AuthUser = Depends(require_auth),
    services: Services = Depends(get_services),
):
    return notifications.list_notifications(services, user, unread_only=unread_only)


@app.post("/notifications/read-all")
async def read_all_notifications(
    user: AuthUser = Depends(require_auth), services: Services = Depends(get_services)
):
    return notifications.mark_all_notifications_read(services, user)


@app.post("/notifications/{notification_id}/read")
async def read_notification(
    notification_id: str,
    user: AuthUser = Depends(require_auth),
    services: Services = Depends(get_services),
):
    return _checked(notifications.mark_notification_read(services, user, notification_id))


@app.get("/dashboard")
async def get_dashboard(
    user: AuthUser = Depends(require_auth), services: Services = Depends(get_services)
):
    return dashboard.dashboard_summary(services, user)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=config.api.host, port=config.api.port)
