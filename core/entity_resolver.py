from typing import Dict, List, Tuple

from core.database import fold_entity
from core.logger import get_logger
from core.models import Entity, Link

logger = get_logger(__name__)

class EntityResolver:
    """
    Cleans up one batch of transform output before it reaches the graph store.

    Transforms assign final ids themselves (StableKey or UniqueFact), so the
    resolver never invents or rewrites ids; it only makes the batch internally
    consistent.
    """

    def resolve(self, entities: List[Entity], links: List[Link]) -> Tuple[List[Entity], List[Link]]:
        """
        Collapses entities repeated inside the batch, drops duplicate link ids
        and links that point an entity at itself.

        Args:
            entities: Entities in the order the transform produced them.
            links: Links in the order the transform produced them.

        Returns:
            The deduplicated (entities, links) pair, first-seen order preserved.
        """
        by_id: Dict[str, Entity] = {}
        for entity in entities:
            if entity.id in by_id:
                by_id[entity.id], _ = fold_entity(by_id[entity.id], entity)
            else:
                by_id[entity.id] = entity

        seen_links = set()
        kept_links = []
        for link in links:
            if link.source == link.target or link.id in seen_links:
                continue
            seen_links.add(link.id)
            kept_links.append(link)

        dropped = (len(entities) - len(by_id)) + (len(links) - len(kept_links))
        if dropped:
            logger.debug("Collapsed duplicate batch items", extra={"dropped": dropped})
        return list(by_id.values()), kept_links
