"""Building blocks shared by the built-in transforms."""

import asyncio
from abc import abstractmethod
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, TypeVar

import httpx

from core.errors import ErrorKind, UpstreamError
from core.logger import get_logger
from core.models import Entity, Link, TransformResult
from core.transform import Transform
from transforms.http import make_client

logger = get_logger(__name__)

T = TypeVar("T")
R = TypeVar("R")


# --- Result helpers ---

def found(entities: List[Entity], links: List[Link], **metadata) -> TransformResult:
    return TransformResult(success=True, entities=entities, links=links, metadata=metadata)


def nothing_found(message: str, **metadata) -> TransformResult:
    """A successful lookup that produced no entities. Not an error."""
    return TransformResult(
        success=True,
        metadata={"message": message, "errorKind": ErrorKind.PARTIAL_SUCCESS.value, **metadata},
    )


def failure(error: str, kind: ErrorKind = ErrorKind.UPSTREAM_FAILURE, **metadata) -> TransformResult:
    return TransformResult(success=False, error=error, metadata={"errorKind": kind.value, **metadata})


def not_configured(display_name: str) -> TransformResult:
    return failure(f"{display_name} API key not configured", ErrorKind.PROVIDER_NOT_CONFIGURED)


async def run_in_batches(items: Sequence[T], worker: Callable[[T], Awaitable[R]],
                         batch_size: int, delay: float) -> List[Any]:
    """
    Runs `worker` over `items` in small concurrent batches, sleeping `delay`
    seconds between batches. Results (or the exception a worker raised) are
    returned in item order.
    """
    batch_size = max(1, batch_size)
    results: List[Any] = []
    for start in range(0, len(items), batch_size):
        batch = items[start:start + batch_size]
        results.extend(await asyncio.gather(*(worker(item) for item in batch), return_exceptions=True))
        if start + batch_size < len(items):
            await asyncio.sleep(delay)
    return results


# --- Provider plumbing ---

class ProviderClient:
    """
    Base for a thin client of one external provider. Key-gated providers
    override `is_configured`; everything else is configured by default.
    """
    provider = ""
    display_name = ""

    def __init__(self, api_key: Optional[str] = None, transport: Optional[httpx.AsyncBaseTransport] = None,
                 timeout: Optional[float] = None):
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    def is_configured(self) -> bool:
        return True

    def http(self, headers: Optional[Dict[str, str]] = None) -> httpx.AsyncClient:
        return make_client(self._transport, self.timeout, headers)


class KeyedProviderClient(ProviderClient):
    def is_configured(self) -> bool:
        return bool(self.api_key)


class ProviderTransform(Transform):
    """
    A transform backed by a ProviderClient. Checks configuration before any
    network call and turns UpstreamError into a failed result carrying the
    provider's name.
    """
    def __init__(self, client: ProviderClient):
        self.client = client

    async def execute(self, entity: Entity, params: Dict[str, Any]) -> TransformResult:
        if not self.client.is_configured():
            return not_configured(self.client.display_name)
        try:
            return await self.lookup(entity, params)
        except UpstreamError as e:
            logger.warning(
                "Provider call failed",
                extra={"transform_id": self.id, "provider": e.provider, "status_code": e.status_code, "error": e.message},
            )
            return failure(f"{self.client.display_name} lookup failed: {e.message}", statusCode=e.status_code)

    @abstractmethod
    async def lookup(self, entity: Entity, params: Dict[str, Any]) -> TransformResult:
        pass
