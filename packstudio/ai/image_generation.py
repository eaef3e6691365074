"""Product image generation with Gemini image models."""

import asyncio
import base64
import random
from typing import Any, List, Optional

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types
from google.genai.types import Modality
from loguru import logger
from pydantic import BaseModel

from ..errors import GenerationError
from ..utils.images import fetch_image_as_data_url, is_data_url, split_data_url
from .operation_log import AILogger
from .prompts import (
    REVISION_REMINDER,
    fallback_prompt,
    is_revision_prompt,
    wrap_with_reference,
)

RETRYABLE_MARKERS = (
    '"code":500',
    '"code":503',
    '"code":429',
    "INTERNAL",
    "UNAVAILABLE",
    "RESOURCE_EXHAUSTED",
    "Internal error",
    "Deadline expired",
    "Service temporarily unavailable",
)

# Gemini bills image output per image, not per token
IMAGE_COST_ESTIMATE = 0.002


class NoImageReturnedError(GenerationError):
    """The model answered with text instead of an image."""


class GeneratedImage(BaseModel):
    """One generated image as a data URL."""

    url: Optional[str] = None
    prompt: str
    model: str
    mime_type: str = "image/png"
    fallback_used: bool = False
    view: Optional[str] = None


def is_retryable_error(error: Exception) -> bool:
    """Transient provider failures: overload, rate limiting and internal errors."""
    if isinstance(error, httpx.TimeoutException):
        return True
    code = getattr(error, "code", None)
    if code in (429, 500, 503):
        return True
    message = str(error).replace(" ", "")
    return any(marker.replace(" ", "") in message for marker in RETRYABLE_MARKERS)


class ImageGenerator:
    """Generates product images from a prompt and optional reference image.

    Transient errors are retried with exponential backoff, switching to the
    fallback model after the first failure. A text-only answer (usually a
    refused prompt) is retried once with a plain, safe prompt.
    """

    def __init__(
        self,
        api_key: str = "",
        default_model: str = "gemini-2.5-flash-image-preview",
        fallback_model: str = "gemini-2.5-flash-image-preview",
        retry_initial_delay: float = 2.0,
        timeout: float = 120.0,
        ai_logger: Optional[AILogger] = None,
        client: Optional[genai.Client] = None,
    ):
        self.default_model = default_model
        self.fallback_model = fallback_model
        self.retry_initial_delay = retry_initial_delay
        self.ai_logger = ai_logger
        self.client = client or genai.Client(
            api_key=api_key,
            http_options=types.HttpOptions(timeout=int(timeout * 1000)),
        )

    async def generate_image(
        self,
        prompt: str,
        reference_image: Optional[str] = None,
        model: Optional[str] = None,
        retries: int = 3,
        fallback_enabled: bool = True,
        product_type: Optional[str] = None,
        view: Optional[str] = None,
        logo_image: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> GeneratedImage:
        """Generate one image.

        Args:
            prompt: Generation prompt
            reference_image: Data URL or http(s) URL of the current design
            model: Gemini model; defaults to the generator's default model
            retries: Attempts per call for transient errors
            fallback_enabled: Retry refused prompts with a plain prompt
            product_type: Used to build the plain fallback prompt
            view: View name, recorded in the result and the AI log
            logo_image: Optional logo to include after the reference image
            user_id: Recorded in the AI log

        Returns:
            GeneratedImage with a data URL

        Raises:
            GenerationError: If neither the prompt nor the fallback produced an image
        """
        model = model or self.default_model
        operation = None
        if self.ai_logger is not None:
            operation = self.ai_logger.start_operation(
                "generate_image", model, "gemini", "image_generation"
            )
            operation.set_input(
                {
                    "prompt": prompt,
                    "metadata": {
                        "view": view,
                        "product_type": product_type,
                        "has_reference_image": bool(reference_image),
                        "has_logo_image": bool(logo_image),
                        "retry": retries,
                    },
                }
            )
            operation.set_context({"user_id": user_id, "feature": "product_image_generation"})

        reference_part = await self._image_part(reference_image) if reference_image else None
        logo_part = await self._image_part(logo_image) if logo_image else None

        parts = self._build_parts(prompt, reference_part, logo_part)

        try:
            response = await self._generate_with_retry(parts, retries, model)
            image_url = self._extract_image(response)
            self._finish(operation, image_url)
            return GeneratedImage(url=image_url, prompt=prompt, model=model, view=view)

        except NoImageReturnedError as e:
            if not fallback_enabled:
                self._fail(operation, e)
                raise

            logger.warning(f"Prompt was refused ({e}). Trying fallback prompt.")
            safe_prompt = fallback_prompt(product_type, view)
            fallback_parts = [p for p in (reference_part, logo_part) if p is not None]
            fallback_parts.append(types.Part.from_text(text=safe_prompt))

            try:
                response = await self._generate_with_retry(fallback_parts, retries, model)
                image_url = self._extract_image(response)
            except (GenerationError, genai_errors.APIError, httpx.HTTPError) as fallback_error:
                logger.error(f"Fallback prompt also failed: {fallback_error}")
                self._fail(operation, fallback_error)
                raise GenerationError(
                    "Failed to generate image with both original and fallback prompts"
                ) from fallback_error

            self._finish(operation, image_url, fallback_used=True)
            return GeneratedImage(
                url=image_url, prompt=safe_prompt, model=model, fallback_used=True, view=view
            )

        except (genai_errors.APIError, httpx.HTTPError) as e:
            self._fail(operation, e)
            raise GenerationError(f"Failed to generate image: {e}") from e

    def _build_parts(
        self, prompt: str, reference_part: Optional[types.Part], logo_part: Optional[types.Part]
    ) -> List[types.Part]:
        parts: List[types.Part] = []

        if reference_part is None:
            parts.append(types.Part.from_text(text=prompt))
        elif is_revision_prompt(prompt):
            # Instruction, then the image it applies to, then a reminder
            parts.append(types.Part.from_text(text=prompt))
            parts.append(reference_part)
            parts.append(types.Part.from_text(text=REVISION_REMINDER))
        else:
            parts.append(reference_part)
            parts.append(types.Part.from_text(text=wrap_with_reference(prompt)))

        if logo_part is not None:
            parts.append(logo_part)
            if not is_revision_prompt(prompt) and "logo" not in prompt:
                parts.append(
                    types.Part.from_text(
                        text="IMPORTANT: Use the exact brand logo from the image above and "
                        "integrate it naturally into the product design."
                    )
                )
        return parts

    async def _image_part(self, image: str) -> types.Part:
        """Inline an image given as a data URL or a remote URL."""
        if not is_data_url(image):
            fetched = await fetch_image_as_data_url(image)
            if fetched is None:
                raise GenerationError(f"Could not fetch reference image: {image}")
            image = fetched

        mime_type, payload = split_data_url(image)
        return types.Part.from_bytes(data=base64.b64decode(payload), mime_type=mime_type)

    async def _generate_with_retry(
        self, parts: List[types.Part], max_retries: int, model: str
    ) -> Any:
        current_model = model
        config = types.GenerateContentConfig(
            temperature=0.1,
            response_modalities=[Modality.TEXT, Modality.IMAGE],
            image_config=types.ImageConfig(aspect_ratio="1:1"),
        )

        for attempt in range(1, max_retries + 1):
            try:
                return await self.client.aio.models.generate_content(
                    model=current_model, contents=parts, config=config
                )
            except (genai_errors.APIError, httpx.HTTPError) as e:
                if not is_retryable_error(e) or attempt >= max_retries:
                    raise

                delay = self.retry_initial_delay * (2 ** (attempt - 1)) + random.uniform(0, 1.0)
                if current_model != self.fallback_model:
                    logger.warning(
                        f"Retryable error from {current_model}: {e}. Switching to "
                        f"{self.fallback_model}, retrying in {delay:.1f}s "
                        f"(attempt {attempt}/{max_retries})"
                    )
                    current_model = self.fallback_model
                else:
                    logger.warning(
                        f"Retryable error: {e}. Retrying in {delay:.1f}s "
                        f"(attempt {attempt}/{max_retries})"
                    )
                await asyncio.sleep(delay)

        raise GenerationError("Image generation was not attempted")

    @staticmethod
    def _extract_image(response: Any) -> str:
        candidates = getattr(response, "candidates", None) or []
        if candidates and candidates[0].content is not None:
            for part in candidates[0].content.parts or []:
                if part.inline_data and part.inline_data.data:
                    data = part.inline_data.data
                    if isinstance(data, bytes):
                        data = base64.b64encode(data).decode("utf-8")
                    mime = part.inline_data.mime_type or "image/png"
                    return f"data:{mime};base64,{data}"

        text = getattr(response, "text", None)
        raise NoImageReturnedError(
            f'The AI model responded with text instead of an image: "{text or "No response received."}"'
        )

    @staticmethod
    def _finish(operation, image_url: str, fallback_used: bool = False):
        if operation is None:
            return
        output = {
            "images": [image_url[:100] + "..."],
            "usage": {"estimated_cost": IMAGE_COST_ESTIMATE},
        }
        if fallback_used:
            output["raw_response"] = {"fallback_used": True}
        operation.set_output(output)
        operation.complete()

    @staticmethod
    def _fail(operation, error: Exception):
        if operation is None:
            return
        operation.set_error(error)
        operation.complete()
