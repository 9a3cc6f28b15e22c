# /core/database.py

import json
import re
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional, Tuple

from neo4j import GraphDatabase

from core.logger import get_logger
from core.models import Entity, EntityType, GraphSnapshot, Link, MergeReport

logger = get_logger(__name__)


def fold_entity(existing: Entity, incoming: Entity) -> Tuple[Entity, bool]:
    """
    Folds a rediscovered entity into the stored one. Identity (id, type,
    value) never changes; display attributes take the newest values and
    properties only gain keys that were not known yet.
    """
    data = dict(existing.data)
    for key, value in incoming.data.items():
        if key != "type":
            data[key] = value
    properties = dict(existing.properties)
    for key, value in incoming.properties.items():
        properties.setdefault(key, value)

    changed = data != existing.data or properties != existing.properties
    if not changed:
        return existing, False
    return existing.model_copy(update={"data": data, "properties": properties}), True


class GraphStore(ABC):
    """
    An abstract base class defining the interface of the shared investigation
    graph. `merge` is add-if-absent for both entities and links; a link whose
    endpoints are not stored yet is accepted and simply stays invisible until
    they arrive.
    """
    @abstractmethod
    def merge(self, entities: Iterable[Entity], links: Iterable[Link]) -> MergeReport:
        pass

    @abstractmethod
    def get_entity(self, entity_id: str) -> Optional[Entity]:
        pass

    @abstractmethod
    def entities(self) -> List[Entity]:
        pass

    @abstractmethod
    def links(self) -> List[Link]:
        pass

    def close(self):
        pass

    def visible_links(self) -> List[Link]:
        ids = {e.id for e in self.entities()}
        return [l for l in self.links() if l.source in ids and l.target in ids]

    def snapshot(self, visible_only: bool = False) -> GraphSnapshot:
        links = self.visible_links() if visible_only else self.links()
        return GraphSnapshot(entities=self.entities(), links=links)


class InMemoryGraphStore(GraphStore):
    """Process-local graph store. All mutation happens under one lock."""
    def __init__(self):
        self._entities: Dict[str, Entity] = {}
        self._links: Dict[str, Link] = {}
        self._lock = threading.Lock()

    def merge(self, entities: Iterable[Entity], links: Iterable[Link]) -> MergeReport:
        report = MergeReport()
        with self._lock:
            for entity in entities:
                existing = self._entities.get(entity.id)
                if existing is None:
                    self._entities[entity.id] = entity.model_copy(deep=True)
                    report.entities_added += 1
                    continue
                merged, changed = fold_entity(existing, entity)
                if changed:
                    self._entities[entity.id] = merged
                    report.entities_updated += 1

            for link in links:
                if link.id in self._links:
                    report.links_existing += 1
                    continue
                self._links[link.id] = link.model_copy()
                report.links_added += 1
                if link.source not in self._entities or link.target not in self._entities:
                    report.dangling_links += 1
        return report

    def get_entity(self, entity_id: str) -> Optional[Entity]:
        with self._lock:
            entity = self._entities.get(entity_id)
            return entity.model_copy(deep=True) if entity else None

    def entities(self) -> List[Entity]:
        with self._lock:
            return [e.model_copy(deep=True) for e in self._entities.values()]

    def links(self) -> List[Link]:
        with self._lock:
            return [l.model_copy() for l in self._links.values()]


def _relationship_type(label: Optional[str]) -> str:
    rel_type = re.sub(r"[^A-Za-z0-9]+", "_", label or "").strip("_").upper()
    return rel_type or "LINKED_TO"


class Neo4jGraphStore(GraphStore):
    """
    Concrete implementation of the GraphStore for Neo4j.

    Entities are (:Entity:`<type>`) nodes keyed by `id`. Links are
    relationships carrying their own `id`. Because a link may arrive before its
    endpoints, link writes MERGE bare endpoint nodes; such a placeholder has no
    `value` until the entity itself is merged.
    """
    def __init__(self, uri: str, user: str, password: str):
        if not all([uri, user, password]):
            raise ValueError("Neo4j credentials are not configured.")
        self._driver = GraphDatabase.driver(uri, auth=(user, password))

    def verify(self):
        self._driver.verify_connectivity()

    def ensure_constraints(self):
        with self._driver.session() as session:
            session.run("CREATE CONSTRAINT entity_id IF NOT EXISTS FOR (n:Entity) REQUIRE n.id IS UNIQUE")
        logger.info("Neo4j entity id constraint ensured.")

    def merge(self, entities: Iterable[Entity], links: Iterable[Link]) -> MergeReport:
        with self._driver.session() as session:
            return session.execute_write(self._merge_tx, list(entities), list(links))

    @staticmethod
    def _merge_tx(tx, entities: List[Entity], links: List[Link]) -> MergeReport:
        report = MergeReport()
        for entity in entities:
            record = tx.run(
                "MATCH (n:Entity {id: $id}) RETURN n.value AS value, n.data AS data, n.properties AS properties",
                id=entity.id,
            ).single()

            if record is None or record["value"] is None:
                merged, counter = entity, "entities_added"
            else:
                existing = Entity(
                    id=entity.id, type=entity.type, value=record["value"],
                    data=json.loads(record["data"] or "{}"),
                    properties=json.loads(record["properties"] or "{}"),
                )
                merged, changed = fold_entity(existing, entity)
                if not changed:
                    continue
                counter = "entities_updated"

            # The label comes from the closed EntityType enum, never from user input.
            tx.run(
                f"""
                MERGE (n:Entity {{id: $id}})
                ON CREATE SET n.type = $type, n.value = $value
                SET n.type = coalesce(n.type, $type), n.value = coalesce(n.value, $value),
                    n.data = $data, n.properties = $properties
                SET n:`{EntityType(merged.type).value}`
                """,
                id=merged.id, type=merged.type.value, value=merged.value,
                data=json.dumps(merged.data, default=str),
                properties=json.dumps(merged.properties, default=str),
            )
            setattr(report, counter, getattr(report, counter) + 1)

        for link in links:
            present = tx.run(
                "MATCH (n:Entity) WHERE n.id IN [$source, $target] AND n.value IS NOT NULL RETURN count(n) AS c",
                source=link.source, target=link.target,
            ).single()["c"]
            # MERGE on bound endpoints locks both nodes, so concurrent writers cannot both create.
            summary = tx.run(
                f"""
                MERGE (a:Entity {{id: $source}})
                MERGE (b:Entity {{id: $target}})
                MERGE (a)-[r:`{_relationship_type(link.label)}` {{id: $id}}]->(b)
                ON CREATE SET r.label = $label
                """,
                source=link.source, target=link.target, id=link.id, label=link.label,
            ).consume()
            if not summary.counters.relationships_created:
                report.links_existing += 1
                continue
            report.links_added += 1
            if present < (1 if link.source == link.target else 2):
                report.dangling_links += 1
        return report

    def get_entity(self, entity_id: str) -> Optional[Entity]:
        with self._driver.session() as session:
            record = session.run(
                "MATCH (n:Entity {id: $id}) WHERE n.value IS NOT NULL "
                "RETURN n.id AS id, n.type AS type, n.value AS value, n.data AS data, n.properties AS properties",
                id=entity_id,
            ).single()
        return self._to_entity(record) if record else None

    def entities(self) -> List[Entity]:
        with self._driver.session() as session:
            records = session.run(
                "MATCH (n:Entity) WHERE n.value IS NOT NULL "
                "RETURN n.id AS id, n.type AS type, n.value AS value, n.data AS data, n.properties AS properties"
            ).data()
        return [self._to_entity(r) for r in records]

    def links(self) -> List[Link]:
        with self._driver.session() as session:
            records = session.run(
                "MATCH (a:Entity)-[r]->(b:Entity) WHERE r.id IS NOT NULL "
                "RETURN r.id AS id, a.id AS source, b.id AS target, r.label AS label"
            ).data()
        return [Link(**r) for r in records]

    @staticmethod
    def _to_entity(record: Dict[str, Any]) -> Entity:
        return Entity(
            id=record["id"], type=record["type"], value=record["value"],
            data=json.loads(record["data"] or "{}"),
            properties=json.loads(record["properties"] or "{}"),
        )

    def close(self):
        self._driver.close()
