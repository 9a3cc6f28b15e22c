"""Username search across social platforms by probing public profile URLs."""

from typing import Any, Dict, List, NamedTuple, Optional
from urllib.parse import quote

import httpx

from core.config import settings
from core.errors import UpstreamError
from core.identity import make_link, stable_entity
from core.logger import get_logger
from core.models import Entity, EntityType, TransformResult
from transforms.base import ProviderClient, ProviderTransform, failure, found, nothing_found, run_in_batches

logger = get_logger(__name__)


class Platform(NamedTuple):
    name: str
    url: str
    icon: str

    def profile_url(self, username: str) -> str:
        return f"{self.url}{quote(username, safe='')}"


PLATFORMS = [
    Platform("Twitter/X", "https://twitter.com/", "𝕏"),
    Platform("GitHub", "https://github.com/", "💻"),
    Platform("Instagram", "https://instagram.com/", "📷"),
    Platform("LinkedIn", "https://linkedin.com/in/", "💼"),
    Platform("Reddit", "https://reddit.com/user/", "🤖"),
    Platform("YouTube", "https://youtube.com/@", "📺"),
    Platform("Facebook", "https://facebook.com/", "👥"),
    Platform("Telegram", "https://t.me/", "✈️"),
]


class UsernameProbeClient(ProviderClient):
    provider = "username_probe"
    display_name = "Username probe"

    async def exists(self, client: httpx.AsyncClient, url: str) -> bool:
        """True on 200, False on 404. Anything else is inconclusive and raises."""
        try:
            response = await client.get(url)
        except httpx.HTTPError as e:
            raise UpstreamError(self.display_name, f"{url}: {type(e).__name__}") from e
        if response.status_code == 200:
            return True
        if response.status_code == 404:
            return False
        raise UpstreamError(self.display_name, f"{url}: HTTP {response.status_code}", response.status_code)


class UsernameSearchTransform(ProviderTransform):
    id = "username_search"
    name = "Username Search"
    description = "Search for username across social platforms"
    category = "Social"
    input_types = frozenset({EntityType.USERNAME, EntityType.PERSON})
    output_types = frozenset({EntityType.SOCIAL_PROFILE})
    icon = "👤"

    def __init__(self, client: ProviderClient, platforms: Optional[List[Platform]] = None,
                 batch_size: Optional[int] = None, batch_delay: Optional[float] = None):
        super().__init__(client)
        self.platforms = platforms or PLATFORMS
        self.batch_size = batch_size or settings.PROBE_BATCH_SIZE
        self.batch_delay = settings.PROBE_BATCH_DELAY_SECONDS if batch_delay is None else batch_delay

    async def lookup(self, entity: Entity, params: Dict[str, Any]) -> TransformResult:
        username = "".join(entity.value.split())
        if not username:
            return failure("Username is empty")

        async with self.client.http() as http:
            async def probe(platform: Platform) -> bool:
                return await self.client.exists(http, platform.profile_url(username))

            outcomes = await run_in_batches(self.platforms, probe, self.batch_size, self.batch_delay)

        entities = []
        links = []
        errors = 0
        for platform, outcome in zip(self.platforms, outcomes):
            if isinstance(outcome, BaseException):
                errors += 1
                logger.info("Profile probe inconclusive", extra={"platform": platform.name, "error": str(outcome)})
                continue
            if not outcome:
                continue
            url = platform.profile_url(username)
            profile = stable_entity(
                EntityType.SOCIAL_PROFILE, url,
                label=f"{platform.icon} {platform.name}: {username}",
                data={"url": url},
                properties={"platform": platform.name, "username": username, "url": url},
            )
            entities.append(profile)
            links.append(make_link(entity.id, profile.id, "has profile"))

        checked = len(self.platforms)
        if errors == checked:
            return failure(f"All {checked} platform probes failed", checked=checked, errors=errors)
        if not entities:
            return nothing_found(f"No profiles found for {username}", checked=checked, errors=errors)
        return found(entities, links, checked=checked, errors=errors, count=len(entities))
