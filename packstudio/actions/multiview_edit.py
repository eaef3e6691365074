"""Apply one AI edit to all five product views and record it as a revision."""

import asyncio
import time
from typing import Dict, List, Optional

from loguru import logger
from openai import OpenAIError
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError

from ..ai.prompts import (
    ANALYZED_VIEWS,
    VIEW_TYPES,
    build_edit_analysis_messages,
    build_enhancement_messages,
    build_view_prompts,
)
from ..errors import GenerationError, InsufficientCreditsError, NotFoundError, PackStudioError
from ..integrations.auth import AuthUser
from ..services import Services
from ..storage.models import MultiviewRevision
from ..utils.images import data_url_to_bytes
from .base import require_product_owner, require_user

EDIT_MODEL = "gemini-2.5-flash-image-preview"


class CurrentViews(BaseModel):
    front: str
    back: str
    side: str
    top: Optional[str] = None
    bottom: Optional[str] = None


class MultiViewEditResponse(BaseModel):
    success: bool
    views: Optional[Dict[str, str]] = None
    revision_id: Optional[str] = None
    revision_number: Optional[int] = None
    error: Optional[str] = None


class RevisionSummary(BaseModel):
    id: str
    revision_number: int
    views: Dict[str, dict] = Field(default_factory=dict)
    edit_prompt: Optional[str] = None
    analysis_prompt: Optional[str] = None
    enhanced_prompt: Optional[str] = None
    edit_type: Optional[str] = None
    created_at: Optional[str] = None
    is_active: bool = False
    metadata: Optional[dict] = None


def summarize_revision(revision: MultiviewRevision) -> RevisionSummary:
    return RevisionSummary(
        id=revision.id,
        revision_number=revision.revision_number,
        views=revision.views or {},
        edit_prompt=revision.edit_prompt,
        analysis_prompt=revision.analysis_prompt,
        enhanced_prompt=revision.enhanced_prompt,
        edit_type=revision.edit_type,
        created_at=revision.created_at.isoformat() if revision.created_at else None,
        is_active=bool(revision.is_active),
        metadata=revision.revision_metadata,
    )


async def _product_analysis(
    services: Services,
    views: CurrentViews,
    edit_prompt: str,
    product_name: str,
    product_id: str,
    revision_number: int,
    user_id: str,
) -> str:
    """Cached per-view analyses, combined; one direct vision call if none are available."""
    analyses = await services.analysis.analyze_product_views(
        {view: getattr(views, view) for view in ANALYZED_VIEWS},
        product_name,
        product_id,
        None,
        revision_number,
        user_id=user_id,
    )

    if analyses.combined_analysis:
        return analyses.combined_analysis

    product_analysis = ""
    for view in ANALYZED_VIEWS:
        analysis = analyses.views.get(view)
        if analysis and analysis.full_analysis:
            product_analysis += f"{view.capitalize()} View: {analysis.full_analysis}\n\n"
    if product_analysis:
        return product_analysis

    logger.info("No cached analysis available, performing direct analysis")
    result = await services.chat.complete(
        build_edit_analysis_messages(product_name, edit_prompt, views.model_dump()),
        model=services.config.ai.vision_model,
        max_tokens=1000,
        temperature=0.3,
    )
    return result.content


async def _enhance_prompt(services: Services, product_analysis: str, edit_prompt: str) -> str:
    try:
        result = await services.chat.complete(
            build_enhancement_messages(product_analysis, edit_prompt),
            model=services.config.ai.chat_model,
            max_tokens=500,
            temperature=0.5,
        )
        return result.content.strip() or edit_prompt
    except (GenerationError, OpenAIError) as e:
        logger.warning(f"Prompt enhancement failed, using the edit prompt as is: {e}")
        return edit_prompt


async def _upload_view(
    services: Services, product_id: str, view: str, image_data_url: str, timestamp: int
) -> Dict[str, str]:
    data = data_url_to_bytes(image_data_url)
    image_url, thumbnail_url = await asyncio.gather(
        services.storage.upload_bytes(data, f"{product_id}/{view}_edit_{timestamp}.png"),
        services.storage.upload_bytes(data, f"{product_id}/{view}_edit_{timestamp}_thumb.png"),
    )
    return {"imageUrl": image_url, "thumbnailUrl": thumbnail_url}


async def apply_multi_view_edit(
    services: Services,
    user: Optional[AuthUser],
    product_id: str,
    current_views: CurrentViews,
    edit_prompt: str,
    product_name: str = "Product",
    product_description: str = "",
) -> MultiViewEditResponse:
    """Edit every view of a product with one prompt.

    Credits are reserved up front and refunded if anything fails before the
    new images are stored. A failed revision insert does not fail the edit:
    the images exist and are returned without a revision id.
    """
    operation = services.ai_logger.start_operation(
        "apply_multi_view_edit", EDIT_MODEL, "gemini", "image_generation"
    )
    cost = services.config.credits.multiview_edit_cost
    reservation_id: Optional[str] = None

    try:
        user = require_user(user)

        # Edits of an unsaved product are allowed; a saved one must belong to the user
        product = services.db.get_product(product_id)
        if product is not None and product.user_id != user.id:
            raise NotFoundError("Product not found")

        reservation = services.credits.reserve_credits(user.id, cost, reason="multiview_edit")
        if not reservation.success:
            raise InsufficientCreditsError(
                reservation.message or f"Insufficient credits for edit request. Need {cost} credits."
            )
        reservation_id = reservation.reservation_id

        started = time.monotonic()
        timestamp = int(time.time() * 1000)

        operation.set_input(
            {
                "prompt": edit_prompt,
                "metadata": {"product_id": product_id, "product_name": product_name},
            }
        )
        operation.set_context({"user_id": user.id, "feature": "ai_multiview_editor"})

        logger.info(f"Applying multi-view edit to {product_id}: {edit_prompt}")

        next_revision_number = services.db.next_revision_number(product_id)

        product_analysis = await _product_analysis(
            services,
            current_views,
            edit_prompt,
            product_name,
            product_id,
            next_revision_number,
            user.id,
        )

        final_prompt = await _enhance_prompt(services, product_analysis, edit_prompt)
        logger.debug(f"Enhanced prompt: {final_prompt}")

        view_prompts = build_view_prompts(product_name, final_prompt)
        references = current_views.model_dump()
        references["top"] = references.get("top") or current_views.front
        references["bottom"] = references.get("bottom") or current_views.front

        results = await asyncio.gather(
            *[
                services.images.generate_image(
                    view_prompts[view],
                    reference_image=references[view],
                    retries=services.config.ai.image_retries,
                    fallback_enabled=True,
                    view=view,
                    user_id=user.id,
                )
                for view in VIEW_TYPES
            ]
        )
        generated = dict(zip(VIEW_TYPES, results))

        if any(not generated[view].url for view in VIEW_TYPES):
            raise GenerationError("Failed to generate all views")

        uploaded = await asyncio.gather(
            *[
                _upload_view(services, product_id, view, generated[view].url, timestamp)
                for view in VIEW_TYPES
            ]
        )
        views_data = dict(zip(VIEW_TYPES, uploaded))
        result_views = {view: urls["imageUrl"] for view, urls in views_data.items()}

        if product is None:
            logger.warning(f"Product {product_id} not found, continuing without saving revision")
            services.credits.commit_reservation(reservation_id)
            operation.set_output({"content": "Edited all views without a revision"})
            operation.complete()
            return MultiViewEditResponse(success=True, views=result_views)

        revision = None
        try:
            revision = services.db.create_revision(
                product_id,
                user_id=user.id,
                views=views_data,
                edit_prompt=edit_prompt,
                analysis_prompt=product_analysis,
                enhanced_prompt=final_prompt,
                edit_type="ai_edit",
                ai_model=EDIT_MODEL,
                ai_parameters={
                    "temperature": 0.7,
                    "originalPrompt": edit_prompt,
                    "viewPrompts": view_prompts,
                },
                generation_time_ms=int((time.monotonic() - started) * 1000),
                revision_metadata={
                    "productName": product_name,
                    "productDescription": product_description,
                    "originalViews": current_views.model_dump(),
                },
            )
        except SQLAlchemyError as e:
            logger.error(f"Error saving revision for {product_id}: {e}")

        if revision is not None:
            services.analysis.link_revision(
                list(result_views.values()), product_id, revision.id, revision.revision_number
            )

        services.credits.commit_reservation(reservation_id)

        revision_number = revision.revision_number if revision else None
        operation.set_output(
            {
                "content": f"Successfully edited all views with revision #{revision_number}",
                "raw_response": {
                    "revision_id": revision.id if revision else None,
                    "views": result_views,
                    "revision_number": revision_number,
                },
            }
        )
        operation.complete()

        return MultiViewEditResponse(
            success=True,
            views=result_views,
            revision_id=revision.id if revision else None,
            revision_number=revision_number,
        )

    except Exception as e:
        logger.error(f"Multi-view edit error: {e}")
        operation.set_error(e)
        operation.complete()

        if reservation_id:
            try:
                services.credits.refund_credits(reservation_id, reason="multiview edit failed")
                logger.info(f"{cost} credits refunded due to edit generation failure")
            except SQLAlchemyError as refund_error:
                logger.error(f"Failed to refund credits: {refund_error}")

        return MultiViewEditResponse(
            success=False, error=str(e) or "Failed to apply multi-view edit"
        )


def get_multi_view_revisions(
    services: Services, user: Optional[AuthUser], product_id: str
) -> dict:
    """Revisions of a product, oldest first.

    Public products are readable by anyone; private ones only by their owner.
    """
    try:
        product = services.db.get_product(product_id)
        owner = user is not None and product is not None and product.user_id == user.id
        if product is None or not (owner or product.is_public):
            raise NotFoundError("Product not found")

        revisions: List[RevisionSummary] = [
            summarize_revision(r) for r in services.db.get_revisions(product_id)
        ]
        return {"success": True, "revisions": [r.model_dump() for r in revisions]}
    except (NotFoundError, SQLAlchemyError) as e:
        logger.error(f"Error fetching multi-view revisions: {e}")
        return {"success": False, "error": str(e), "revisions": []}


def set_active_multi_view_revision(
    services: Services, user: Optional[AuthUser], revision_id: str, product_id: str
) -> dict:
    try:
        require_product_owner(services, require_user(user), product_id)
        if not services.db.activate_revision(revision_id, product_id):
            return {"success": False, "error": "Revision not found"}
        return {"success": True}
    except (PackStudioError, SQLAlchemyError) as e:
        logger.error(f"Error setting active revision: {e}")
        return {"success": False, "error": str(e)}
