# /core/context.py

from dataclasses import dataclass
from typing import Optional

import httpx

from core.config import Settings
from core.database import GraphStore, InMemoryGraphStore, Neo4jGraphStore
from core.engine import ExecutionEngine
from core.logger import get_logger
from core.merge import GraphMerger
from core.notifier import Notifier
from core.quota import QuotaTracker
from core.registry import TransformRegistry
from transforms.catalog import register_default_transforms

logger = get_logger(__name__)


@dataclass
class AppContext:
    """Everything one running service instance shares between requests."""
    settings: Settings
    registry: TransformRegistry
    quota: QuotaTracker
    engine: ExecutionEngine
    store: GraphStore
    merger: GraphMerger
    notifier: Notifier

    def close(self):
        self.store.close()


def build_store(settings: Settings) -> GraphStore:
    if settings.GRAPH_STORE.lower() == "neo4j":
        store = Neo4jGraphStore(settings.NEO4J_URI, settings.NEO4J_USERNAME, settings.NEO4J_PASSWORD)
        store.verify()
        store.ensure_constraints()
        logger.info("Using Neo4j graph store", extra={"uri": settings.NEO4J_URI})
        return store
    if settings.GRAPH_STORE.lower() != "memory":
        raise ValueError(f"Unknown GRAPH_STORE '{settings.GRAPH_STORE}', expected 'memory' or 'neo4j'.")
    logger.info("Using in-memory graph store")
    return InMemoryGraphStore()


def build_context(settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None,
                  store: Optional[GraphStore] = None) -> AppContext:
    """
    Wires registry, quota tracker, engine and graph store together. Tests pass
    their own `transport` and `store`; the service passes neither.
    """
    registry = register_default_transforms(TransformRegistry(), settings, transport=transport)
    quota = QuotaTracker(is_configured=lambda provider: bool(settings.credential_for(provider)))
    store = store or build_store(settings)
    return AppContext(
        settings=settings,
        registry=registry,
        quota=quota,
        engine=ExecutionEngine(registry, quota),
        store=store,
        merger=GraphMerger(store),
        notifier=Notifier(settings.NOTIFY_WEBHOOK_URL, transport=transport),
    )
