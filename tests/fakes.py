"""In-process stand-ins for the network clients, plus row builders shared by the tests."""

from typing import Dict, List, Optional

from packstudio.ai.chat import ChatResult
from packstudio.ai.image_generation import GeneratedImage
from packstudio.errors import GenerationError
from packstudio.integrations.auth import AuthUser
from packstudio.storage.models import SupplierProfile

PNG_DATA_URL = "data:image/png;base64,iVBORw0KGgo="

ANALYSIS_TEXT = """Product type: water bottle
Colors: matte black, silver
Materials: stainless steel, silicone
Style: minimalist outdoor
Features: screw cap, carry loop
Suggestions: add a brand mark on the lid"""


class FakeChat:
    """Stands in for ChatCompletionClient; every call returns ``content``."""

    def __init__(self, content: str = ANALYSIS_TEXT, error: Optional[Exception] = None):
        self.content = content
        self.error = error
        self.calls: List[dict] = []

    async def complete(self, messages, model=None, max_tokens=1000, temperature=0.7, max_retries=None):
        self.calls.append({"messages": messages, "model": model, "max_tokens": max_tokens})
        if self.error is not None:
            raise self.error
        return ChatResult(
            content=self.content,
            model=model or "gpt-4",
            usage={"prompt_tokens": 100, "completion_tokens": 50, "total_tokens": 150},
        )


class FakeImages:
    """Stands in for ImageGenerator; fails for the views listed in ``fail_views``."""

    def __init__(self, fail_views=()):
        self.fail_views = set(fail_views)
        self.calls: List[dict] = []

    async def generate_image(
        self,
        prompt,
        reference_image=None,
        model=None,
        retries=3,
        fallback_enabled=True,
        product_type=None,
        view=None,
        logo_image=None,
        user_id=None,
    ):
        self.calls.append(
            {
                "prompt": prompt,
                "reference_image": reference_image,
                "model": model,
                "retries": retries,
                "view": view,
                "logo_image": logo_image,
            }
        )
        if view in self.fail_views:
            raise GenerationError(f"Failed to generate image: {view} view refused")
        return GeneratedImage(url=PNG_DATA_URL, prompt=prompt, model=model or "gemini-test", view=view)


class FakeStorage:
    def __init__(self, error: Optional[Exception] = None):
        self.error = error
        self.uploads: List[str] = []

    async def upload_bytes(self, data: bytes, path: str, content_type: str = "image/png") -> str:
        if self.error is not None:
            raise self.error
        self.uploads.append(path)
        return f"https://storage.test/fileuploads/{path}"


class FakeAuth:
    def __init__(self, users: Optional[Dict[str, AuthUser]] = None):
        self.users = users or {}

    async def get_user(self, access_token):
        return self.users.get(access_token)


def add_supplier(db, name, user_id=None, categories=None):
    """Insert a supplier profile, and its user row when ``user_id`` is given."""
    if user_id:
        db.ensure_user(user_id, f"{user_id}@example.com", "supplier")
    with db.session() as session:
        profile = SupplierProfile(
            user_id=user_id,
            company_name=name,
            location="Shenzhen",
            manufacturing={"product_categories": categories or ["bags"]},
        )
        session.add(profile)
        session.flush()
        return profile.id
