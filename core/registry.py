"""Transform registry: the in-memory catalog of lookups, keyed by transform id."""

from typing import Dict, List, Optional, Union

from core.errors import InvalidTransformError
from core.logger import get_logger
from core.models import EntityType
from core.transform import Transform

logger = get_logger(__name__)


class TransformRegistry:
    """
    Holds transform definitions. Definitions are registered at startup; the
    catalog is read-only afterwards except for explicit `register` calls.
    """

    def __init__(self):
        self._transforms: Dict[str, Transform] = {}

    def register(self, transform: Transform) -> Transform:
        """Inserts or replaces a transform. The last registration for an id wins."""
        self._validate(transform)
        if transform.id in self._transforms:
            logger.info("Redefining transform", extra={"transform_id": transform.id})
        self._transforms[transform.id] = transform
        return transform

    def get(self, transform_id: str) -> Optional[Transform]:
        return self._transforms.get(transform_id)

    def all(self) -> List[Transform]:
        return list(self._transforms.values())

    def by_category(self, category: str) -> List[Transform]:
        return [t for t in self.all() if t.category == category]

    def by_input_type(self, entity_type: Union[EntityType, str]) -> List[Transform]:
        try:
            entity_type = EntityType(entity_type)
        except ValueError:
            return []
        return [t for t in self.all() if entity_type in t.input_types]

    def categories(self) -> List[str]:
        return sorted({t.category for t in self.all()})

    def __contains__(self, transform_id: str) -> bool:
        return transform_id in self._transforms

    def __len__(self) -> int:
        return len(self._transforms)

    @staticmethod
    def _validate(transform: Transform):
        if not isinstance(transform, Transform):
            raise InvalidTransformError(f"{transform!r} is not a Transform")
        if not transform.id or not transform.name:
            raise InvalidTransformError(f"{transform!r} must define both id and name")
        if not transform.input_types:
            raise InvalidTransformError(f"Transform {transform.id} accepts no entity types")
        for declared in (transform.input_types, transform.output_types):
            if not isinstance(declared, frozenset):
                raise InvalidTransformError(f"Transform {transform.id} must declare its types as a frozenset")
            bad = [t for t in declared if not isinstance(t, EntityType)]
            if bad:
                raise InvalidTransformError(f"Transform {transform.id} declares unknown entity types: {bad}")
