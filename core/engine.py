"""
Execution engine: the single entry point for running a transform.

`execute_transform` validates, gates on provider quota, invokes the transform
and normalizes its outcome. It never raises: every failure, including an
exception escaping a transform, comes back as a TransformResult with
success=False.
"""

import asyncio
import math
import time
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from pydantic import ValidationError

from core.errors import ErrorKind
from core.logger import get_logger
from core.models import Entity, TransformResult
from core.quota import QuotaTracker
from core.registry import TransformRegistry

logger = get_logger(__name__)


class ExecutionOutcome(str, Enum):
    """Terminal state reached by one invocation."""
    REJECTED_UNKNOWN = "rejected_unknown"
    REJECTED_TYPE = "rejected_type"
    RATE_LIMITED = "rate_limited"
    SUCCESS = "success"
    FAILED = "failed"


ExecutionRequest = Tuple[str, Entity, Optional[Dict[str, Any]]]


class ExecutionEngine:
    def __init__(self, registry: TransformRegistry, quota: QuotaTracker):
        self.registry = registry
        self.quota = quota

    async def execute_transform(self, transform_id: str, entity: Entity,
                                params: Optional[Dict[str, Any]] = None) -> TransformResult:
        transform = self.registry.get(transform_id)
        if transform is None:
            self._log(transform_id, entity, ExecutionOutcome.REJECTED_UNKNOWN)
            return TransformResult(
                success=False,
                error=f"Transform {transform_id} not found",
                metadata={"errorKind": ErrorKind.UNKNOWN_TRANSFORM.value},
            )

        # Incompatible input is rejected before any quota is spent on it.
        if entity.type not in transform.input_types:
            self._log(transform_id, entity, ExecutionOutcome.REJECTED_TYPE)
            return TransformResult(
                success=False,
                error=f"{transform.name} does not accept {entity.type.value} entities",
                metadata={"errorKind": ErrorKind.TYPE_MISMATCH.value},
            )

        provider = self.quota.provider_for(transform_id)
        decision = self.quota.consume(provider)
        if not decision.allowed:
            wait_ms = decision.quota.wait_ms
            self._log(transform_id, entity, ExecutionOutcome.RATE_LIMITED, provider=provider, wait_ms=wait_ms)
            return TransformResult(
                success=False,
                error=f"{decision.quota.display_name} rate limit reached, retry in {max(1, math.ceil(wait_ms / 1000))}s",
                metadata={
                    "rateLimited": True,
                    "quota": decision.quota.model_dump(),
                    "waitMs": wait_ms,
                    "errorKind": ErrorKind.RATE_LIMITED.value,
                },
            )

        started = time.monotonic()
        try:
            raw = await transform.execute(entity, dict(params or {}))
            result = self._coerce(raw)
        except Exception as e:
            logger.warning(
                "Transform raised, returning failure",
                extra={"transform_id": transform_id, "provider": provider, "error": repr(e)},
                exc_info=True,
            )
            result = TransformResult(
                success=False,
                error=str(e) or type(e).__name__,
                metadata={"errorKind": ErrorKind.UPSTREAM_FAILURE.value},
            )
        elapsed_ms = int((time.monotonic() - started) * 1000)

        engine_metadata = {
            "elapsedMs": elapsed_ms,
            "provider": self.quota.display_name(provider),
            "providerKey": provider,
            "quota": self.quota.status(provider).model_dump(),
        }
        for key, value in engine_metadata.items():
            result.metadata.setdefault(key, value)

        outcome = ExecutionOutcome.SUCCESS if result.success else ExecutionOutcome.FAILED
        self._log(transform_id, entity, outcome, provider=provider, elapsed_ms=elapsed_ms,
                  entities=len(result.entities), links=len(result.links), error=result.error)
        return result

    async def execute_many(self, requests: Iterable[ExecutionRequest]) -> List[TransformResult]:
        """Runs several invocations concurrently; results keep request order."""
        return list(await asyncio.gather(
            *(self.execute_transform(transform_id, entity, params) for transform_id, entity, params in requests)
        ))

    @staticmethod
    def _coerce(raw: Any) -> TransformResult:
        if isinstance(raw, TransformResult):
            # Engine metadata goes on a private copy; transforms may hand back a cached result.
            return raw.model_copy(deep=True)
        if isinstance(raw, dict):
            try:
                return TransformResult.model_validate(raw)
            except ValidationError as e:
                return TransformResult(success=False, error=f"Transform returned a malformed result: {e.error_count()} error(s)")
        return TransformResult(success=False, error=f"Transform returned {type(raw).__name__} instead of a result")

    @staticmethod
    def _log(transform_id: str, entity: Entity, outcome: ExecutionOutcome, **fields):
        level = logger.warning if outcome == ExecutionOutcome.FAILED else logger.info
        level(
            "Transform execution finished",
            extra={"transform_id": transform_id, "entity_type": entity.type.value,
                   "entity_id": entity.id, "outcome": outcome.value, **fields},
        )
