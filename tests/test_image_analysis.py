from datetime import datetime, timedelta

from packstudio.ai.image_analysis import (
    ImageAnalysis,
    ImageAnalysisService,
    generate_combined_analysis,
    image_hash,
    parse_analysis_text,
    parse_spatial_grid,
)
from packstudio.ai.operation_log import AILogger
from packstudio.errors import GenerationError
from packstudio.storage.models import AILog, ImageAnalysisCache

from .fakes import ANALYSIS_TEXT, PNG_DATA_URL, FakeChat


def test_parse_analysis_text_extracts_labelled_fields():
    analysis = parse_analysis_text(ANALYSIS_TEXT)

    assert analysis.product_type == "water bottle"
    assert analysis.current_colors == ["matte black", "silver"]
    assert analysis.materials == ["stainless steel", "silicone"]
    assert analysis.style == "minimalist outdoor"
    assert analysis.key_features == ["screw cap", "carry loop"]
    assert analysis.suggestions == ["add a brand mark on the lid"]
    assert analysis.spatial_grid is None


def test_parse_spatial_grid_classifies_squares():
    grid = parse_spatial_grid("A1: Empty white background\nB2: Product collar with blue logo\n")

    assert len(grid.squares) == 16
    a1 = grid.squares[0]
    assert a1.id == "A1" and a1.position == "top-left"
    assert a1.is_empty and a1.has_background
    assert a1.dominant_color == "white"

    b2 = next(s for s in grid.squares if s.id == "B2")
    assert b2.position == "upper-center-left"
    assert b2.has_product and b2.has_logo
    assert b2.dominant_color == "blue"

    assert grid.dominant_regions["center"] == "Product with logo"
    assert grid.dominant_regions["top"] == "white area"


def test_combined_analysis_merges_views():
    views = {
        "front": ImageAnalysis(current_colors=["red"], materials=["cotton"], full_analysis="Front text"),
        "back": ImageAnalysis(current_colors=["red", "blue"], key_features=["zipper"], full_analysis="Back text"),
    }

    combined = generate_combined_analysis(views)

    assert combined.startswith("Product analysis based on 2 views:")
    assert "Colors: red, blue" in combined
    assert "Materials: cotton" in combined
    assert "Key Features: zipper" in combined
    assert "FRONT VIEW:\nFront text..." in combined


def test_cache_round_trip_and_expiry(db):
    service = ImageAnalysisService(db, FakeChat(), ttl_days=30)
    analysis = parse_analysis_text(ANALYSIS_TEXT)

    assert service.save_analysis("https://img.test/a.png", analysis, product_id="p1") is True
    cached = service.get_cached_analysis("https://img.test/a.png")
    assert cached.materials == ["stainless steel", "silicone"]

    with db.session() as session:
        row = session.query(ImageAnalysisCache).one()
        assert row.image_hash == image_hash("https://img.test/a.png")
        row.expires_at = datetime.utcnow() - timedelta(days=1)

    assert service.get_cached_analysis("https://img.test/a.png") is None
    assert service.cleanup_expired_analyses() == 1


def test_save_analysis_upserts_by_url(db):
    service = ImageAnalysisService(db, FakeChat())
    service.save_analysis("https://img.test/a.png", ImageAnalysis(style="old"))
    service.save_analysis("https://img.test/a.png", ImageAnalysis(style="new"))

    with db.session() as session:
        assert session.query(ImageAnalysisCache).count() == 1
    assert service.get_cached_analysis("https://img.test/a.png").style == "new"


async def test_analyze_image_caches_and_logs(db):
    chat = FakeChat()
    service = ImageAnalysisService(db, chat, ai_logger=AILogger(db, "test"))

    analysis = await service.analyze_image(PNG_DATA_URL, "Bottle", include_spatial_grid=False)

    assert analysis.product_type == "water bottle"
    assert analysis.full_analysis == ANALYSIS_TEXT
    assert chat.calls[0]["max_tokens"] == 800
    assert service.get_cached_analysis(PNG_DATA_URL) is not None
    with db.session() as session:
        log = session.query(AILog).one()
        assert log.operation_type == "vision_analysis"
        assert log.total_tokens == 150


async def test_analyze_image_returns_none_when_all_attempts_fail(db):
    chat = FakeChat(error=GenerationError("Empty response from model"))
    service = ImageAnalysisService(db, chat, max_attempts=1, ai_logger=AILogger(db, "test"))

    assert await service.analyze_image(PNG_DATA_URL) is None
    with db.session() as session:
        assert session.query(AILog).one().status == "error"


async def test_analyze_product_views_uses_cache(db):
    chat = FakeChat()
    service = ImageAnalysisService(db, chat)
    service.save_analysis("data:image/png;base64,AAAA", parse_analysis_text(ANALYSIS_TEXT))

    results = await service.analyze_product_views(
        {"front": "data:image/png;base64,AAAA", "back": PNG_DATA_URL, "side": None},
        "Bottle",
        product_id="p1",
        revision_number=2,
    )

    assert set(results.views) == {"front", "back"}
    assert len(chat.calls) == 1
    assert results.combined_analysis.startswith("Product analysis based on 2 views:")
    with db.session() as session:
        row = session.query(ImageAnalysisCache).filter_by(image_url=PNG_DATA_URL).one()
        assert row.product_idea_id == "p1"
        assert row.revision_number == 2
