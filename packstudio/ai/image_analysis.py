"""Vision analysis of product images, cached per image URL."""

import asyncio
import hashlib
import re
import time
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from loguru import logger
from openai import APIError
from pydantic import BaseModel, Field

from ..errors import GenerationError
from ..storage.database import Database
from ..storage.models import ImageAnalysisCache
from ..utils.images import fetch_image_as_data_url, is_data_url
from .chat import ChatCompletionClient, is_retryable
from .operation_log import AILogger
from .prompts import IMAGE_ANALYSIS_SYSTEM_PROMPT, build_image_analysis_prompt

GRID_ROWS = "ABCD"
ROW_NAMES = ("top", "upper", "lower", "bottom")
COL_NAMES = ("left", "center-left", "center-right", "right")

COLOR_WORDS = (
    "white",
    "black",
    "red",
    "blue",
    "green",
    "yellow",
    "purple",
    "orange",
    "pink",
    "gray",
    "brown",
    "beige",
    "navy",
    "teal",
)

_PRODUCT_RE = re.compile(r"product|item|garment|clothing|shirt|pants|dress|shoe")
_BACKGROUND_RE = re.compile(r"background|empty|blank|white|plain")
_TEXT_RE = re.compile(r"text|label|tag|writing")
_LOGO_RE = re.compile(r"logo|brand|emblem|symbol")
_EMPTY_RE = re.compile(r"empty|blank|nothing")


class GridSquare(BaseModel):
    id: str
    row: int
    col: int
    position: str
    content: str = "Not specified"
    dominant_color: Optional[str] = None
    has_product: bool = False
    has_background: bool = False
    has_text: bool = False
    has_logo: bool = False
    is_empty: bool = False


class SpatialGridAnalysis(BaseModel):
    grid_size: str = "4x4"
    squares: List[GridSquare] = Field(default_factory=list)
    dominant_regions: Dict[str, str] = Field(default_factory=dict)


class ImageAnalysis(BaseModel):
    """Structured result of one vision analysis."""

    product_type: Optional[str] = None
    current_colors: List[str] = Field(default_factory=list)
    materials: List[str] = Field(default_factory=list)
    key_features: List[str] = Field(default_factory=list)
    style: Optional[str] = None
    suggestions: List[str] = Field(default_factory=list)
    spatial_grid: Optional[SpatialGridAnalysis] = None
    full_analysis: Optional[str] = None
    timestamp: Optional[str] = None


def image_hash(image_url: str) -> str:
    return hashlib.md5(image_url.encode("utf-8")).hexdigest()


def _split_list(value: str) -> List[str]:
    return [item.strip() for item in re.split(r"[,;]", value) if item.strip()]


def parse_analysis_text(text: str, include_spatial_grid: bool = False) -> ImageAnalysis:
    """Pull the labelled fields out of free-form analysis text.

    Each field takes the rest of the first line that mentions its label.
    """
    analysis = ImageAnalysis()

    match = re.search(r"colors?:?\s*([^\n]+)", text, re.IGNORECASE)
    if match:
        analysis.current_colors = _split_list(match.group(1))

    match = re.search(r"materials?:?\s*([^\n]+)", text, re.IGNORECASE)
    if match:
        analysis.materials = _split_list(match.group(1))

    match = re.search(r"style:?\s*([^\n]+)", text, re.IGNORECASE)
    if match:
        analysis.style = match.group(1).strip()

    match = re.search(r"(?:product type|type|category):?\s*([^\n]+)", text, re.IGNORECASE)
    if match:
        analysis.product_type = match.group(1).strip()

    match = re.search(r"(?:features?|elements?):?\s*([^\n]+)", text, re.IGNORECASE)
    if match:
        analysis.key_features = _split_list(match.group(1))

    match = re.search(r"(?:suggestions?|improvements?):?\s*([^\n]+)", text, re.IGNORECASE)
    if match:
        analysis.suggestions = [match.group(1).strip()]

    if include_spatial_grid:
        analysis.spatial_grid = parse_spatial_grid(text)

    return analysis


def parse_spatial_grid(text: str) -> SpatialGridAnalysis:
    """Build the 4x4 grid (A1 top-left .. D4 bottom-right) from ``ID: description`` lines."""
    grid = SpatialGridAnalysis()

    for row, row_letter in enumerate(GRID_ROWS):
        for col in range(4):
            square_id = f"{row_letter}{col + 1}"
            square = GridSquare(
                id=square_id,
                row=row,
                col=col,
                position=f"{ROW_NAMES[row]}-{COL_NAMES[col]}",
            )

            match = re.search(rf"{square_id}:?\s*([^\n]+)", text, re.IGNORECASE)
            if match:
                square.content = match.group(1).strip()
                content = match.group(1).lower()
                square.has_product = bool(_PRODUCT_RE.search(content))
                square.has_background = bool(_BACKGROUND_RE.search(content))
                square.has_text = bool(_TEXT_RE.search(content))
                square.has_logo = bool(_LOGO_RE.search(content))
                square.is_empty = bool(_EMPTY_RE.search(content))
                square.dominant_color = next((c for c in COLOR_WORDS if c in content), None)

            grid.squares.append(square)

    squares = grid.squares
    grid.dominant_regions = {
        "top": summarize_squares([s for s in squares if s.row == 0]),
        "bottom": summarize_squares([s for s in squares if s.row == 3]),
        "left": summarize_squares([s for s in squares if s.col == 0]),
        "right": summarize_squares([s for s in squares if s.col == 3]),
        "center": summarize_squares([s for s in squares if 1 <= s.row <= 2 and 1 <= s.col <= 2]),
        "middle": summarize_squares([s for s in squares if 1 <= s.row <= 2]),
    }
    return grid


def summarize_squares(squares: List[GridSquare]) -> str:
    if all(s.is_empty for s in squares):
        return "Empty/Background"

    has_product = any(s.has_product for s in squares)
    has_logo = any(s.has_logo for s in squares)
    if has_product and has_logo:
        return "Product with logo"
    if has_product:
        return "Product"
    if has_logo:
        return "Logo area"

    colors = list(dict.fromkeys(s.dominant_color for s in squares if s.dominant_color))
    if colors:
        return f"{', '.join(colors)} area"
    return "Mixed content"


def generate_combined_analysis(view_analyses: Dict[str, ImageAnalysis]) -> str:
    """Merge per-view analyses into one text block for prompt enhancement."""
    combined = f"Product analysis based on {len(view_analyses)} views:\n\n"

    colors: Dict[str, None] = {}
    materials: Dict[str, None] = {}
    features: Dict[str, None] = {}
    for analysis in view_analyses.values():
        colors.update(dict.fromkeys(analysis.current_colors))
        materials.update(dict.fromkeys(analysis.materials))
        features.update(dict.fromkeys(analysis.key_features))

    if colors:
        combined += f"Colors: {', '.join(colors)}\n"
    if materials:
        combined += f"Materials: {', '.join(materials)}\n"
    if features:
        combined += f"Key Features: {', '.join(features)}\n"

    for view, analysis in view_analyses.items():
        if analysis.full_analysis:
            combined += f"\n{view.upper()} VIEW:\n{analysis.full_analysis[:200]}...\n"

    return combined


class ProductViewAnalyses(BaseModel):
    views: Dict[str, ImageAnalysis] = Field(default_factory=dict)
    combined_analysis: Optional[str] = None


class ImageAnalysisService:
    """Analyze product images with a vision model and cache the results."""

    def __init__(
        self,
        db: Database,
        chat: ChatCompletionClient,
        vision_model: str = "gpt-4o",
        ttl_days: int = 30,
        max_attempts: int = 3,
        ai_logger: Optional[AILogger] = None,
    ):
        self.db = db
        self.chat = chat
        self.vision_model = vision_model
        self.ttl_days = ttl_days
        self.max_attempts = max_attempts
        self.ai_logger = ai_logger

    def get_cached_analysis(self, image_url: str) -> Optional[ImageAnalysis]:
        """Cached analysis for an image URL, ignoring expired rows."""
        with self.db.session() as session:
            row = (
                session.query(ImageAnalysisCache)
                .filter(ImageAnalysisCache.image_url == image_url)
                .first()
            )
            if row is None:
                return None
            if row.expires_at is not None and row.expires_at < datetime.utcnow():
                logger.debug(f"Cached analysis expired for {image_url}")
                return None
            return ImageAnalysis.model_validate(row.analysis_data)

    def save_analysis(
        self,
        image_url: str,
        analysis: ImageAnalysis,
        product_id: Optional[str] = None,
        revision_id: Optional[str] = None,
        revision_number: Optional[int] = None,
        analysis_prompt: Optional[str] = None,
        tokens_used: Optional[int] = None,
        processing_time_ms: Optional[int] = None,
        model_used: Optional[str] = None,
    ) -> bool:
        """Upsert the cache row for ``image_url``. Failures are logged, not raised."""
        try:
            with self.db.session() as session:
                row = (
                    session.query(ImageAnalysisCache)
                    .filter(ImageAnalysisCache.image_url == image_url)
                    .first()
                )
                if row is None:
                    row = ImageAnalysisCache(image_url=image_url)
                    session.add(row)

                row.image_hash = image_hash(image_url)
                row.analysis_data = analysis.model_dump(mode="json")
                row.model_used = model_used or self.vision_model
                row.analysis_prompt = analysis_prompt
                row.tokens_used = tokens_used
                row.processing_time_ms = processing_time_ms
                row.created_at = datetime.utcnow()
                row.expires_at = datetime.utcnow() + timedelta(days=self.ttl_days)
                if product_id is not None:
                    row.product_idea_id = product_id
                if revision_id is not None:
                    row.revision_id = revision_id
                if revision_number is not None:
                    row.revision_number = revision_number

            logger.debug(f"Image analysis saved to cache: {image_url}")
            return True
        except Exception as e:
            logger.error(f"Error saving image analysis: {e}")
            return False

    def link_revision(
        self,
        image_urls: List[str],
        product_id: Optional[str],
        revision_id: Optional[str],
        revision_number: Optional[int],
    ) -> int:
        """Attach cache rows for the given URLs to a product revision."""
        if not image_urls:
            return 0
        with self.db.session() as session:
            updated = (
                session.query(ImageAnalysisCache)
                .filter(ImageAnalysisCache.image_url.in_(image_urls))
                .update(
                    {
                        "product_idea_id": product_id,
                        "revision_id": revision_id,
                        "revision_number": revision_number,
                    },
                    synchronize_session=False,
                )
            )
            return updated

    async def analyze_image(
        self,
        image_url: str,
        product_name: str = "Product",
        additional_context: Optional[str] = None,
        include_spatial_grid: bool = True,
        user_id: Optional[str] = None,
    ) -> Optional[ImageAnalysis]:
        """Run a vision analysis and cache it.

        Returns None when every attempt failed.
        """
        start = time.monotonic()

        image_ref = image_url
        if not is_data_url(image_url):
            inlined = await fetch_image_as_data_url(image_url)
            if inlined:
                image_ref = inlined
            else:
                logger.info("Falling back to the direct image URL for analysis")

        prompt = build_image_analysis_prompt(product_name, additional_context, include_spatial_grid)
        messages = [
            {"role": "system", "content": IMAGE_ANALYSIS_SYSTEM_PROMPT},
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": prompt},
                    {"type": "image_url", "image_url": {"url": image_ref, "detail": "high"}},
                ],
            },
        ]

        operation = None
        if self.ai_logger is not None:
            operation = self.ai_logger.start_operation(
                "analyze_image", self.vision_model, "openai", "vision_analysis"
            )
            operation.set_input(
                {
                    "prompt": prompt,
                    "image_url": image_url,
                    "parameters": {
                        "max_tokens": 1500 if include_spatial_grid else 800,
                        "temperature": 0.3,
                    },
                }
            )
            operation.set_context({"user_id": user_id, "feature": "image_analysis"})

        last_error: Optional[Exception] = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                result = await self.chat.complete(
                    messages,
                    model=self.vision_model,
                    max_tokens=1500 if include_spatial_grid else 800,
                    temperature=0.3,
                    max_retries=0,
                )
            except (APIError, GenerationError) as e:
                last_error = e
                logger.warning(f"Vision analysis attempt {attempt}/{self.max_attempts} failed: {e}")
                if isinstance(e, APIError) and not is_retryable(e):
                    logger.error("Non-retryable error, stopping attempts")
                    break
                if attempt < self.max_attempts:
                    await asyncio.sleep(min(2.0 * attempt, 6.0))
                continue

            processing_ms = int((time.monotonic() - start) * 1000)
            analysis = parse_analysis_text(result.content, include_spatial_grid)
            analysis.full_analysis = result.content
            analysis.timestamp = datetime.utcnow().isoformat()

            self.save_analysis(
                image_url,
                analysis,
                analysis_prompt=f"Analyze {product_name}",
                tokens_used=result.usage.get("total_tokens"),
                processing_time_ms=processing_ms,
                model_used=self.vision_model,
            )

            if operation is not None:
                operation.set_output({"content": result.content[:500]})
                operation.set_usage(result.usage)
                operation.complete()

            logger.info(f"Analyzed image in {processing_ms}ms")
            return analysis

        logger.error(f"All vision analysis attempts failed. Last error: {last_error}")
        if operation is not None:
            operation.set_error(last_error or "analysis failed")
            operation.complete()
        return None

    async def analyze_product_views(
        self,
        views: Dict[str, Optional[str]],
        product_name: str = "Product",
        product_id: Optional[str] = None,
        revision_id: Optional[str] = None,
        revision_number: Optional[int] = None,
        user_id: Optional[str] = None,
    ) -> ProductViewAnalyses:
        """Cache-or-analyze each view, then combine when more than one succeeded."""
        results = ProductViewAnalyses()

        for view, image_url in views.items():
            if not image_url:
                continue

            analysis = self.get_cached_analysis(image_url)
            if analysis is not None:
                logger.debug(f"Using cached analysis for {view} view")
            else:
                logger.info(f"No cached analysis for {view} view, analyzing...")
                analysis = await self.analyze_image(
                    image_url,
                    f"{product_name} - {view} view",
                    f"This is the {view} view of the product.",
                    user_id=user_id,
                )
                if analysis is not None and product_id:
                    self.link_revision([image_url], product_id, revision_id, revision_number)

            if analysis is not None:
                results.views[view] = analysis

        if len(results.views) > 1:
            results.combined_analysis = generate_combined_analysis(results.views)

        return results

    def cleanup_expired_analyses(self) -> int:
        return self.db.cleanup_expired_analyses()
