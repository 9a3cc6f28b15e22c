import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, List, Set

from fastapi import APIRouter, Depends, HTTPException
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, ConfigDict, Field

# Add the root directory to the Python path
import sys
sys.path.append(str(Path(__file__).parent.parent))

from api.dependencies import get_context
from core.context import AppContext
from core.models import Entity, ProviderQuota, TransformResult
from core.quota import estimated_time
from core.transform import Transform

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/transforms",
    tags=["Transforms"]
)

# Executions still running after their HTTP request gave up on them.
_detached: Set[asyncio.Task] = set()


class ExecuteRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    transform_id: str = Field(alias="transformId", description="Id of the transform to run.")
    entity: Entity = Field(description="The entity to enrich.")
    params: Dict[str, Any] = Field(default_factory=dict, description="Transform specific parameters.")
    merge: bool = Field(default=True, description="Merge a successful result into the shared graph.")


def _describe(transform: Transform, ctx: AppContext) -> Dict[str, Any]:
    provider = ctx.quota.provider_for(transform.id)
    estimate_ms, estimate_label = estimated_time(transform.id)
    return {
        **transform.describe(),
        "provider": provider,
        "quota": ctx.quota.status(provider).model_dump(),
        "estimatedTimeMs": estimate_ms,
        "estimatedTime": estimate_label,
    }


@router.get("/")
def list_transforms(ctx: AppContext = Depends(get_context)) -> List[Dict[str, Any]]:
    """Lists every registered transform with its provider quota and duration estimate."""
    return [_describe(t, ctx) for t in ctx.registry.all()]


@router.get("/categories", response_model=List[str])
def list_categories(ctx: AppContext = Depends(get_context)):
    return ctx.registry.categories()


@router.get("/category/{category}")
def transforms_in_category(category: str, ctx: AppContext = Depends(get_context)) -> List[Dict[str, Any]]:
    return [_describe(t, ctx) for t in ctx.registry.by_category(category)]


@router.get("/for/{entity_type}")
def transforms_for_entity_type(entity_type: str, ctx: AppContext = Depends(get_context)) -> List[Dict[str, Any]]:
    """Transforms that accept the given entity type. Unknown types yield an empty list."""
    return [_describe(t, ctx) for t in ctx.registry.by_input_type(entity_type)]


@router.get("/quota", response_model=List[ProviderQuota])
def all_quotas(ctx: AppContext = Depends(get_context)):
    return ctx.quota.all_statuses()


@router.get("/quota/{provider}", response_model=ProviderQuota)
def provider_quota(provider: str, ctx: AppContext = Depends(get_context)):
    if provider not in ctx.quota.providers():
        raise HTTPException(status_code=404, detail=f"Provider '{provider}' not found.")
    return ctx.quota.status(provider)


async def _execute_and_merge(ctx: AppContext, request: ExecuteRequest) -> TransformResult:
    result = await ctx.engine.execute_transform(request.transform_id, request.entity, request.params)
    if request.merge and result.success:
        try:
            report = await run_in_threadpool(ctx.merger.merge_result, result, request.transform_id)
            result.metadata.setdefault("merged", report.model_dump())
        except Exception as e:
            logger.error(f"Merging result of {request.transform_id} failed: {e}", exc_info=True)
            result.metadata.setdefault("mergeError", str(e))
    return result


@router.post("/execute", response_model=TransformResult)
async def execute_transform(request: ExecuteRequest, ctx: AppContext = Depends(get_context)):
    """
    Runs a transform against an entity. Failures come back as a result with
    success=false. If the run outlasts EXECUTE_RESPONSE_TIMEOUT_SECONDS the
    request answers 504, but the run itself continues and is still merged.
    """
    task = asyncio.ensure_future(_execute_and_merge(ctx, request))
    _detached.add(task)
    task.add_done_callback(_detached.discard)

    timeout = ctx.settings.EXECUTE_RESPONSE_TIMEOUT_SECONDS
    try:
        return await asyncio.wait_for(asyncio.shield(task), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning(f"Transform {request.transform_id} still running after {timeout}s; continuing in background")
        raise HTTPException(
            status_code=504,
            detail=f"Transform {request.transform_id} is still running; its result will be merged when it completes.",
        )
