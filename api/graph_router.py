from fastapi import APIRouter, Depends, HTTPException
from pathlib import Path

# Add the root directory to the Python path
import sys
sys.path.append(str(Path(__file__).parent.parent))

from api.dependencies import get_context
from core.context import AppContext
from core.models import Entity, GraphSnapshot, Link, MergeReport, TransformResult

router = APIRouter(
    prefix="/graph",
    tags=["Investigation Graph"]
)

# Store calls block (Neo4j driver); these routes stay sync and run in the threadpool.


@router.get("/", response_model=GraphSnapshot)
def get_graph(visible_only: bool = False, ctx: AppContext = Depends(get_context)):
    """Returns the whole investigation graph. `visible_only` hides links with a missing endpoint."""
    return ctx.store.snapshot(visible_only=visible_only)


@router.get("/entities/{entity_id}", response_model=Entity)
def get_entity(entity_id: str, ctx: AppContext = Depends(get_context)):
    entity = ctx.store.get_entity(entity_id)
    if entity is None:
        raise HTTPException(status_code=404, detail=f"Entity '{entity_id}' not found.")
    return entity


@router.post("/entities", response_model=MergeReport)
def add_entity(entity: Entity, ctx: AppContext = Depends(get_context)):
    """Adds a hand-made entity. An entity with the same id is folded, not replaced."""
    return ctx.store.merge([entity], [])


@router.post("/links", response_model=MergeReport)
def add_link(link: Link, ctx: AppContext = Depends(get_context)):
    return ctx.store.merge([], [link])


@router.post("/merge", response_model=MergeReport)
def merge_graph(snapshot: GraphSnapshot, ctx: AppContext = Depends(get_context)):
    """Merges an externally produced batch of entities and links, e.g. an imported graph."""
    result = TransformResult(success=True, entities=snapshot.entities, links=snapshot.links)
    return ctx.merger.merge_result(result, origin="import")
