"""Persistent log of AI provider calls with token usage and cost estimates."""

import time
import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from loguru import logger

from ..storage.database import Database
from ..storage.models import AILog

# USD per 1K tokens (image models: per image, prompt side only)
MODEL_PRICING: Dict[str, Dict[str, float]] = {
    "gpt-4o": {"prompt": 0.005, "completion": 0.015},
    "gpt-4o-mini": {"prompt": 0.00015, "completion": 0.0006},
    "gpt-4-turbo-preview": {"prompt": 0.01, "completion": 0.03},
    "gpt-4": {"prompt": 0.03, "completion": 0.06},
    "gpt-3.5-turbo": {"prompt": 0.0005, "completion": 0.0015},
    "dall-e-3": {"prompt": 0.04, "completion": 0.0},
    "dall-e-2": {"prompt": 0.02, "completion": 0.0},
}


def estimate_cost(model: str, prompt_tokens: int, completion_tokens: int) -> float:
    """Estimated USD cost of a call; unknown models cost nothing."""
    pricing = MODEL_PRICING.get(model, {"prompt": 0.0, "completion": 0.0})
    return (prompt_tokens / 1000) * pricing["prompt"] + (
        completion_tokens / 1000
    ) * pricing["completion"]


class AIOperationLogger:
    """Collects one operation's input, output and usage, then persists it.

    Setters return ``self`` so calls can be chained.
    """

    def __init__(
        self,
        parent: "AILogger",
        function_name: str,
        model: str,
        provider: str,
        operation_type: str,
    ):
        self._parent = parent
        self._start = time.monotonic()
        self.function_name = function_name
        self.model = model
        self.provider = provider
        self.operation_type = operation_type
        self.timestamp = datetime.utcnow()
        self.input: Dict[str, Any] = {}
        self.output: Dict[str, Any] = {}
        self.context: Dict[str, Any] = {}
        self.status = "success"
        self.completed = False

    def set_input(self, data: Dict[str, Any]) -> "AIOperationLogger":
        self.input = data
        return self

    def set_output(self, data: Dict[str, Any]) -> "AIOperationLogger":
        self.output = data
        return self

    def set_context(self, data: Dict[str, Any]) -> "AIOperationLogger":
        self.context = data
        return self

    def set_error(self, error) -> "AIOperationLogger":
        self.output = {**self.output, "error": str(error)}
        self.status = "error"
        return self

    def set_usage(self, usage: Optional[Dict[str, int]]) -> "AIOperationLogger":
        self.output = {**self.output, "usage": usage or {}}
        return self

    def complete(self) -> Optional[AILog]:
        """Record duration and cost, then write the row. Only the first call persists."""
        if self.completed:
            return None
        self.completed = True

        duration_ms = int((time.monotonic() - self._start) * 1000)
        return self._parent.log(self, duration_ms)


class AILogger:
    """Factory for operation loggers and reader of aggregated usage."""

    def __init__(self, db: Database, environment: str = "development"):
        self.db = db
        self.environment = environment

    def start_operation(
        self,
        function_name: str,
        model: str,
        provider: str = "openai",
        operation_type: str = "text_generation",
    ) -> AIOperationLogger:
        return AIOperationLogger(self, function_name, model, provider, operation_type)

    def log(self, operation: AIOperationLogger, duration_ms: int) -> Optional[AILog]:
        """Persist a finished operation. Storage failures are logged and swallowed."""
        usage = dict(operation.output.get("usage") or {})
        prompt_tokens = usage.get("prompt_tokens", 0) or 0
        completion_tokens = usage.get("completion_tokens", 0) or 0
        total_tokens = usage.get("total_tokens") or prompt_tokens + completion_tokens

        if "estimated_cost" not in usage:
            usage["estimated_cost"] = estimate_cost(
                operation.model, prompt_tokens, completion_tokens
            )
        output = {**operation.output, "usage": usage}

        context = {
            "request_id": str(uuid.uuid4()),
            **operation.context,
            "environment": self.environment,
        }

        logger.debug(
            f"[AI LOG] {operation.function_name} model={operation.model} "
            f"status={operation.status} duration={duration_ms}ms tokens={total_tokens}"
        )
        if operation.status == "error":
            logger.warning(f"[AI LOG] {operation.function_name} failed: {output.get('error')}")

        try:
            with self.db.session() as session:
                row = AILog(
                    timestamp=operation.timestamp,
                    function_name=operation.function_name,
                    model=operation.model,
                    provider=operation.provider,
                    operation_type=operation.operation_type,
                    input=operation.input,
                    output=output,
                    total_tokens=total_tokens,
                    estimated_cost=usage["estimated_cost"],
                    duration_ms=duration_ms,
                    status=operation.status,
                    user_id=context.get("user_id"),
                    context=context,
                )
                session.add(row)
                session.flush()
                session.expunge(row)
                return row
        except Exception as e:
            logger.error(f"Failed to save AI log: {e}")
            return None

    def usage_stats(
        self,
        user_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Aggregate request, token and cost totals over the logged operations."""
        with self.db.session() as session:
            query = session.query(AILog)
            if user_id:
                query = query.filter(AILog.user_id == user_id)
            if start:
                query = query.filter(AILog.timestamp >= start)
            if end:
                query = query.filter(AILog.timestamp <= end)
            rows = query.all()

            stats: Dict[str, Any] = {
                "total_requests": len(rows),
                "total_tokens": 0,
                "total_cost": 0.0,
                "by_model": {},
                "by_operation": {},
                "error_rate": 0.0,
                "average_duration_ms": 0,
            }
            if not rows:
                return stats

            errors = 0
            total_duration = 0
            for row in rows:
                tokens = row.total_tokens or 0
                cost = row.estimated_cost or 0.0
                stats["total_tokens"] += tokens
                stats["total_cost"] += cost
                total_duration += row.duration_ms or 0
                if row.status == "error":
                    errors += 1

                for key, bucket in (
                    (row.model, stats["by_model"]),
                    (row.operation_type, stats["by_operation"]),
                ):
                    entry = bucket.setdefault(key, {"requests": 0, "tokens": 0, "cost": 0.0})
                    entry["requests"] += 1
                    entry["tokens"] += tokens
                    entry["cost"] += cost

            stats["error_rate"] = errors / len(rows)
            stats["average_duration_ms"] = total_duration / len(rows)
            return stats
