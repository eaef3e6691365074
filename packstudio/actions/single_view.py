"""Regenerate one view of a product and save it as a new revision."""

import time
from typing import Dict, Optional

from loguru import logger
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError

from ..ai.prompts import VIEW_TYPES, build_single_view_prompt, mentions_logo
from ..errors import GenerationError, InsufficientCreditsError, NotFoundError, ValidationError
from ..integrations.auth import AuthUser
from ..services import Services
from ..utils.images import data_url_to_bytes
from .base import require_product_owner, require_user


class RegenerateSingleViewResponse(BaseModel):
    success: bool
    new_view_url: Optional[str] = None
    new_revision_id: Optional[str] = None
    new_revision_number: Optional[int] = None
    credits_used: Optional[int] = None
    error: Optional[str] = None


def model_for_view(services: Services, view: str) -> str:
    """Front and back get the pro model; the other views use the flash model."""
    if view in ("front", "back"):
        return services.config.ai.image_pro_model
    return services.config.ai.image_model


async def regenerate_single_view(
    services: Services,
    user: Optional[AuthUser],
    product_id: str,
    view_type: str,
    revision_id: str,
    edit_prompt: str,
    reference_views: Optional[Dict[str, Optional[str]]] = None,
) -> RegenerateSingleViewResponse:
    model = model_for_view(services, view_type)
    operation = services.ai_logger.start_operation(
        "regenerate_single_view", model, "gemini", "image_generation"
    )
    cost = services.config.credits.single_view_cost
    reservation_id: Optional[str] = None

    try:
        user = require_user(user)

        if not product_id or not view_type or not edit_prompt or not revision_id:
            raise ValidationError(
                "Product ID, view type, edit prompt, and revision ID are required"
            )
        if view_type not in VIEW_TYPES:
            raise ValidationError(f"Unknown view type: {view_type}")

        product = require_product_owner(services, user, product_id)

        logger.info(f"Regenerating {view_type} view for product {product_id}")

        reservation = services.credits.reserve_credits(user.id, cost, reason="single_view")
        if not reservation.success:
            raise InsufficientCreditsError(
                reservation.message
                or f"Insufficient credits. Need {cost} credit for view regeneration."
            )
        reservation_id = reservation.reservation_id

        base = services.db.get_revision(revision_id)
        if base is None or base.product_idea_id != product_id:
            raise NotFoundError("Could not find current revision")

        base_views = dict(base.views or {})
        reference = (reference_views or {}).get(view_type) or (
            base_views.get(view_type) or {}
        ).get("imageUrl")
        if not reference:
            raise ValidationError(f"No reference image for the {view_type} view")

        tech_pack_metadata = (product.tech_pack or {}).get("metadata", {})
        logo = tech_pack_metadata.get("logo")
        use_logo = bool(logo) and mentions_logo(edit_prompt)

        operation.set_context({"user_id": user.id, "feature": "single_view_regeneration"})
        operation.set_input(
            {
                "metadata": {
                    "view_type": view_type,
                    "product_id": product_id,
                    "has_logo": bool(logo),
                }
            }
        )

        prompt = build_single_view_prompt(view_type, edit_prompt, has_logo=use_logo)
        result = await services.images.generate_image(
            prompt,
            reference_image=reference,
            model=model,
            retries=5,
            fallback_enabled=True,
            view=view_type,
            logo_image=logo if use_logo else None,
            user_id=user.id,
        )
        if not result.url:
            raise GenerationError(f"Failed to generate {view_type} view: No image URL returned")

        timestamp = int(time.time() * 1000)
        new_view_url = await services.storage.upload_bytes(
            data_url_to_bytes(result.url), f"{product_id}/{view_type}_regen_{timestamp}.png"
        )

        base_views[view_type] = {"imageUrl": new_view_url, "thumbnailUrl": new_view_url}
        revision = services.db.create_revision(
            product_id,
            user_id=user.id,
            views=base_views,
            edit_prompt=edit_prompt,
            analysis_prompt=base.analysis_prompt,
            enhanced_prompt=prompt,
            edit_type="ai_edit",
            ai_model=model,
            ai_parameters={"view": view_type, "retry": 5},
            revision_metadata={
                **(base.revision_metadata or {}),
                "single_view_regeneration": True,
                "regenerated_view": view_type,
                "user_edit_instructions": edit_prompt,
                "parent_revision_number": base.revision_number,
            },
        )

        services.credits.commit_reservation(reservation_id)

        operation.set_output(
            {
                "content": f"Regenerated {view_type} view as revision #{revision.revision_number}",
                "images": [new_view_url],
            }
        )
        operation.complete()

        return RegenerateSingleViewResponse(
            success=True,
            new_view_url=new_view_url,
            new_revision_id=revision.id,
            new_revision_number=revision.revision_number,
            credits_used=cost,
        )

    except Exception as e:
        logger.error(f"Single view regeneration failed: {e}")
        operation.set_error(e)
        operation.complete()

        if reservation_id:
            try:
                services.credits.refund_credits(reservation_id, reason="single view failed")
            except SQLAlchemyError as refund_error:
                logger.error(f"Failed to refund credits: {refund_error}")

        return RegenerateSingleViewResponse(
            success=False, error=str(e) or "Failed to regenerate view"
        )
