# /core/transform.py

import inspect
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, FrozenSet, Iterable, Optional, Union

from core.errors import InvalidTransformError
from core.models import Entity, EntityType, TransformResult

TransformOutput = Union[TransformResult, Dict[str, Any]]


def _entity_types(values: Iterable[Union[EntityType, str]]) -> FrozenSet[EntityType]:
    try:
        return frozenset(EntityType(v) for v in values)
    except ValueError as e:
        raise InvalidTransformError(str(e)) from e


class Transform(ABC):
    """
    Abstract base class for an enrichment lookup.

    Subclasses declare their catalog metadata as class attributes and implement
    `execute`. The engine has already checked `entity.type` against
    `input_types` by the time `execute` runs.
    """
    id: str = ""
    name: str = ""
    description: str = ""
    category: str = ""
    input_types: FrozenSet[EntityType] = frozenset()
    output_types: FrozenSet[EntityType] = frozenset()
    requires_api_key: bool = False
    icon: Optional[str] = None

    @abstractmethod
    async def execute(self, entity: Entity, params: Dict[str, Any]) -> TransformOutput:
        """Runs the lookup and returns its outcome as data."""

    def describe(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "inputTypes": sorted(t.value for t in self.input_types),
            "outputTypes": sorted(t.value for t in self.output_types),
            "requiresApiKey": self.requires_api_key,
            "icon": self.icon,
        }

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.id}>"


class FunctionTransform(Transform):
    """Wraps a plain function (sync or async) as a Transform."""

    def __init__(self, id: str, name: str, func: Callable[[Entity, Dict[str, Any]], Union[TransformOutput, Awaitable[TransformOutput]]],
                 input_types: Iterable[EntityType], output_types: Iterable[EntityType] = (),
                 category: str = "Custom", description: str = "",
                 requires_api_key: bool = False, icon: Optional[str] = None):
        self.id = id
        self.name = name
        self.description = description
        self.category = category
        self.input_types = _entity_types(input_types)
        self.output_types = _entity_types(output_types)
        self.requires_api_key = requires_api_key
        self.icon = icon
        self._func = func

    async def execute(self, entity: Entity, params: Dict[str, Any]) -> TransformOutput:
        outcome = self._func(entity, params)
        if inspect.isawaitable(outcome):
            outcome = await outcome
        return outcome
