from datetime import datetime, timedelta

import pytest

from packstudio.ai.operation_log import AILogger, estimate_cost
from packstudio.storage import Database
from packstudio.storage.models import AILog


def test_estimate_cost_uses_per_thousand_pricing():
    assert estimate_cost("gpt-4", 1000, 1000) == pytest.approx(0.09)
    assert estimate_cost("unknown-model", 5000, 5000) == 0.0


def test_operation_persists_once_with_context():
    db = Database("sqlite:///:memory:")
    ai_logger = AILogger(db, environment="staging")

    operation = (
        ai_logger.start_operation("enhance_prompt", "gpt-4o")
        .set_input({"prompt": "make it blue"})
        .set_context({"user_id": "u1", "feature": "ai_multiview_editor"})
        .set_output({"content": "Blue bottle"})
        .set_usage({"prompt_tokens": 200, "completion_tokens": 100})
    )
    row = operation.complete()

    assert row is not None
    assert operation.complete() is None
    assert row.total_tokens == 300
    assert row.estimated_cost == pytest.approx(0.0025)
    assert row.user_id == "u1"
    assert row.context["environment"] == "staging"
    assert "request_id" in row.context
    with db.session() as session:
        assert session.query(AILog).count() == 1


def test_usage_stats_aggregates_by_model_and_operation():
    db = Database("sqlite:///:memory:")
    ai_logger = AILogger(db)

    ai_logger.start_operation("chat", "gpt-4o").set_context({"user_id": "u1"}).set_usage(
        {"total_tokens": 100, "estimated_cost": 0.01}
    ).complete()
    ai_logger.start_operation("edit", "gemini-2.5-flash-image-preview", "gemini", "image_generation").set_context(
        {"user_id": "u1"}
    ).set_error("quota").complete()
    ai_logger.start_operation("chat", "gpt-4o").set_context({"user_id": "u2"}).complete()

    stats = ai_logger.usage_stats(user_id="u1")

    assert stats["total_requests"] == 2
    assert stats["total_tokens"] == 100
    assert stats["total_cost"] == pytest.approx(0.01)
    assert stats["error_rate"] == 0.5
    assert stats["by_model"]["gpt-4o"]["requests"] == 1
    assert stats["by_operation"]["image_generation"]["requests"] == 1

    future = ai_logger.usage_stats(start=datetime.utcnow() + timedelta(days=1))
    assert future["total_requests"] == 0
