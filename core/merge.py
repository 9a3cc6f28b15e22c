"""Graph merge layer: folds transform results into the shared graph store."""

from typing import Iterable, Optional

from core.database import GraphStore
from core.entity_resolver import EntityResolver
from core.logger import get_logger
from core.models import MergeReport, TransformResult

logger = get_logger(__name__)


class GraphMerger:
    """
    Integrates TransformResults into a GraphStore. Because the store is
    add-if-absent by id, results may be merged in any completion order and any
    number of times without duplicating nodes.
    """

    def __init__(self, store: GraphStore, resolver: Optional[EntityResolver] = None):
        self.store = store
        self.resolver = resolver or EntityResolver()

    def merge_result(self, result: TransformResult, origin: Optional[str] = None) -> MergeReport:
        if not result.success:
            return MergeReport()
        if not result.entities and not result.links:
            return MergeReport()

        entities, links = self.resolver.resolve(result.entities, result.links)
        report = self.store.merge(entities, links)
        logger.info("Merged transform result", extra={"origin": origin, **report.model_dump()})
        return report

    def merge_results(self, results: Iterable[TransformResult]) -> MergeReport:
        total = MergeReport()
        for result in results:
            total = total + self.merge_result(result)
        return total
