"""Prompt templates for product analysis, prompt enhancement and view generation."""

import re
from typing import Dict, List, Optional

VIEW_TYPES = ("front", "back", "side", "top", "bottom")
ANALYZED_VIEWS = ("front", "back", "side")

_PHOTO_STYLE = "Professional product photography style, white background, high quality, detailed."

_VIEW_INSTRUCTIONS = {
    "front": (
        "FRONT VIEW",
        "Show the complete front view of the product with all details clearly visible.",
    ),
    "back": (
        "BACK VIEW",
        "Show the complete back view of the product matching the front view design.",
    ),
    "side": (
        "SIDE VIEW",
        "Show the complete side/profile view of the product matching the front and back views.",
    ),
    "top": (
        "TOP/OVERHEAD VIEW",
        "Show the product from directly above, displaying the top surface.",
    ),
    "bottom": (
        "BOTTOM/UNDERSIDE VIEW",
        "Show the underside/bottom of the product, displaying the base or bottom features.",
    ),
}

# ---------------------------------------------------------------------------
# Vision analysis
# ---------------------------------------------------------------------------

IMAGE_ANALYSIS_SYSTEM_PROMPT = (
    "You are a professional product designer analyzing product images.\n"
    "Provide a detailed, structured analysis that can be used for AI image editing.\n"
    "Focus on visual elements that can be modified or enhanced."
)

_SPATIAL_GRID_INSTRUCTIONS = """
9. SPATIAL GRID ANALYSIS:
Mentally divide the image into a 4x4 grid (16 squares).
Label them as A1-A4 (top row), B1-B4 (second row), C1-C4 (third row), D1-D4 (bottom row).
For each square, briefly describe:
- What's visible (product part, background, text, logo, empty)
- Dominant color if any
- Key features

Format: [Square ID]: [Content description]
Example: A1: Empty white background
Example: B2: Product collar with blue fabric
Example: C3: Logo placement area, currently empty
"""


def build_image_analysis_prompt(
    product_name: str,
    additional_context: Optional[str] = None,
    include_spatial_grid: bool = True,
) -> str:
    context = f"Context: {additional_context}\n" if additional_context else ""
    grid = _SPATIAL_GRID_INSTRUCTIONS if include_spatial_grid else ""
    return (
        f"Analyze this {product_name} product image in detail.\n"
        f"{context}\n"
        "Provide a structured analysis including:\n"
        "1. Product type and category\n"
        "2. Current colors (be specific with color names)\n"
        "3. Materials and textures visible\n"
        "4. Key design features and elements\n"
        "5. Overall style and aesthetic\n"
        "6. Quality and finish\n"
        "7. Any unique characteristics\n"
        "8. Suggestions for potential improvements\n"
        f"{grid}\n"
        "Be technical and specific to help with accurate AI image generation."
    )


# ---------------------------------------------------------------------------
# Multi-view edit
# ---------------------------------------------------------------------------

EDIT_ANALYSIS_SYSTEM_PROMPT = (
    "You are a professional product designer analyzing a product to help apply "
    "edits consistently across all views.\n"
    "Provide a detailed analysis of the product's current state."
)

ENHANCEMENT_SYSTEM_PROMPT = (
    "You are a prompt engineering expert specializing in product design and image generation.\n"
    "Create precise, detailed prompts that will generate consistent product views with the "
    "requested changes.\n"
    "Focus on maintaining product identity while applying edits accurately."
)


def build_edit_analysis_messages(
    product_name: str, edit_prompt: str, views: Dict[str, str]
) -> List[dict]:
    """Vision messages asking for one analysis over the front, back and side images."""
    content = [
        {
            "type": "text",
            "text": f'Analyze this {product_name} product shown in three views for the edit: "{edit_prompt}"',
        }
    ]
    for view in ANALYZED_VIEWS:
        if views.get(view):
            content.append(
                {"type": "image_url", "image_url": {"url": views[view], "detail": "high"}}
            )

    return [
        {"role": "system", "content": EDIT_ANALYSIS_SYSTEM_PROMPT},
        {"role": "user", "content": content},
    ]


def build_enhancement_messages(product_analysis: str, edit_prompt: str) -> List[dict]:
    user_prompt = f"""Based on this product analysis:
"{product_analysis}"

The user wants to: "{edit_prompt}"

Create an enhanced, specific prompt for image generation that will:
1. Apply the requested changes accurately across all views
2. Maintain product identity and proportions
3. Ensure consistency between front, back, and side views
4. Preserve important product features unless specifically changed
5. Use specific color names, materials, and descriptive details

The enhanced prompt should be clear, specific, and focused on the edit while maintaining all unchanged aspects.

Enhanced prompt:"""

    return [
        {"role": "system", "content": ENHANCEMENT_SYSTEM_PROMPT},
        {"role": "user", "content": user_prompt},
    ]


def build_view_prompt(product_name: str, view: str, final_prompt: str) -> str:
    label, instruction = _VIEW_INSTRUCTIONS[view]
    return f"{product_name} - {label}: {final_prompt}. {instruction} {_PHOTO_STYLE}"


def build_view_prompts(product_name: str, final_prompt: str) -> Dict[str, str]:
    return {view: build_view_prompt(product_name, view, final_prompt) for view in VIEW_TYPES}


# ---------------------------------------------------------------------------
# Single view regeneration
# ---------------------------------------------------------------------------

LOGO_MENTION = re.compile(r"logo|brand|emblem|mark", re.IGNORECASE)


def mentions_logo(edit_instructions: str) -> bool:
    return bool(LOGO_MENTION.search(edit_instructions))


def build_single_view_prompt(
    view: str, edit_instructions: str, has_logo: bool = False
) -> str:
    """Strict edit prompt: change only what the user asked for on one view."""
    logo_context = ""
    if has_logo and mentions_logo(edit_instructions):
        logo_context = "\n\nLogo context: A logo is provided and should be included as requested."

    return f"""You are editing an existing product image. You have a reference image that shows the current state.

TASK: Modify the {view} view by making ONLY the following change:
"{edit_instructions}"

CRITICAL RULES - FOLLOW STRICTLY:
1. START with the reference image provided - this is your base
2. Make ONLY the specific modification requested in the edit instructions above
3. DO NOT add any new elements (logos, text, patterns, decorations) unless explicitly requested
4. DO NOT change colors, materials, shapes, or features that were not mentioned in the edit instructions
5. Keep the exact same product design, proportions, lighting, and composition as the reference
6. If asked to change one specific element (e.g., "change bottom color to gold"):
   - Change ONLY that element (the bottom color)
   - Keep everything else EXACTLY as shown in the reference image
   - Do not add, remove, or modify any other features

WHAT TO PRESERVE (keep identical to reference):
- Product shape and proportions
- All elements not mentioned in the edit instructions
- Lighting direction and intensity
- Camera angle and perspective
- Background (white, centered)
- Product positioning
- Level of detail and realism
- Any existing logos, text, or branding (unless user specifically asks to change them)
{logo_context}

Output: Generate a photorealistic product {view} view that looks EXACTLY like the reference image except for the specific change requested."""


# ---------------------------------------------------------------------------
# Image generation wrappers
# ---------------------------------------------------------------------------

REVISION_MARKERS = ("CRITICAL REVISION INSTRUCTION:", "MANDATORY PRESERVATION RULES:", "CRITICAL RULES")

REVISION_REMINDER = (
    "REMINDER: The image above is the EXACT product to modify. Apply ONLY the requested "
    "change while keeping everything else IDENTICAL."
)


def is_revision_prompt(prompt: str) -> bool:
    return any(marker in prompt for marker in REVISION_MARKERS)


def wrap_with_reference(prompt: str) -> str:
    """Tell the model the leading image is the design to stay consistent with."""
    if "reference" in prompt.lower():
        return prompt
    return (
        "REFERENCE IMAGE PROVIDED: The first image shows the existing product design.\n\n"
        f"{prompt}\n\n"
        "IMPORTANT: Maintain consistency with the reference image's overall design, style, "
        "and quality while applying the requested changes."
    )


def fallback_prompt(product_type: Optional[str] = None, view: Optional[str] = None) -> str:
    """Plain prompt used when the model refuses the original one."""
    if not product_type:
        return (
            "Generate a simple product image.\n"
            "Show a basic clothing item on a white background.\n"
            "Professional product photography style.\n"
            "Front view only.\n"
            "No text or labels."
        )

    view_line = f" Show the {view} view of the product." if view else ""
    return (
        f"Create a professional product image of {product_type}. "
        "The image should be a high-quality product photograph with professional lighting "
        "and composition. Show the product clearly with all important details visible."
        f"{view_line}\n"
        "Ensure the final image is professional quality suitable for commercial use."
    )
