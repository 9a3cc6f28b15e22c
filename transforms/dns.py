"""DNS transforms: forward resolution and wordlist subdomain enumeration."""

import asyncio
import socket
from typing import Any, Dict, List, Optional

from core.config import settings
from core.identity import make_link, stable_entity
from core.logger import get_logger
from core.models import Entity, EntityType, TransformResult
from core.transform import Transform
from transforms.base import failure, found, nothing_found, run_in_batches

logger = get_logger(__name__)

COMMON_SUBDOMAINS = [
    'www', 'mail', 'remote', 'blog', 'webmail', 'server', 'ns', 'ns1', 'ns2',
    'smtp', 'secure', 'vpn', 'admin', 'portal', 'dev', 'staging', 'test',
    'api', 'cdn', 'ftp', 'mysql', 'ssh', 'shop', 'forum', 'beta', 'mobile',
    'mx', 'mx1', 'mx2', 'app', 'store', 'cloud', 'git', 'exchange', 'local',
    'static', 'files', 'upload', 'media', 'assets', 'img', 'images', 'video',
    'demo', 'old', 'new', 'backup', 'crm', 'cms', 'support', 'help', 'docs',
    'wiki', 'status', 'intranet', 'extranet', 'members', 'partner', 'partners',
    'billing', 'payment', 'checkout', 'cart', 'secure-payment', 'login',
    'register', 'dashboard', 'cpanel', 'webdisk', 'whm', 'autodiscover',
    'autoconfig', 'imap', 'pop', 'pop3', 'relay', 'gateway',
]


class DnsResolver:
    """
    IPv4 resolution through the system resolver. A name that does not exist
    resolves to an empty list; timeouts propagate as asyncio.TimeoutError.
    """
    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout or settings.DNS_TIMEOUT_SECONDS

    async def resolve4(self, name: str) -> List[str]:
        loop = asyncio.get_running_loop()
        try:
            infos = await asyncio.wait_for(
                loop.getaddrinfo(name, None, family=socket.AF_INET, type=socket.SOCK_STREAM),
                timeout=self.timeout,
            )
        except socket.gaierror:
            return []
        return sorted({info[4][0] for info in infos})


class DnsResolveTransform(Transform):
    id = "dns_resolve"
    name = "Domain to IP"
    description = "Resolve domain to IP address"
    category = "DNS"
    input_types = frozenset({EntityType.DOMAIN})
    output_types = frozenset({EntityType.IP_ADDRESS})
    icon = "🌐"

    def __init__(self, resolver: Optional[DnsResolver] = None):
        self.resolver = resolver or DnsResolver()

    async def execute(self, entity: Entity, params: Dict[str, Any]) -> TransformResult:
        domain = entity.value.strip().rstrip(".")
        try:
            addresses = await self.resolver.resolve4(domain)
        except asyncio.TimeoutError:
            return failure(f"DNS resolution of {domain} timed out")

        if not addresses:
            return failure("No IP addresses found")

        entities = [stable_entity(EntityType.IP_ADDRESS, ip, properties={"source": "DNS"}) for ip in addresses]
        links = [make_link(entity.id, ip_entity.id, "resolves to") for ip_entity in entities]
        return found(entities, links, count=len(addresses))


def _wordlist(value: Any) -> Optional[List[str]]:
    """Accepts a list of labels or "www,mail" as given on the command line. None means unusable."""
    if not value:
        return COMMON_SUBDOMAINS
    if isinstance(value, str):
        value = value.split(",")
    if not isinstance(value, (list, tuple)) or not all(isinstance(word, str) for word in value):
        return None
    words = [word.strip().strip(".").lower() for word in value]
    return [word for word in words if word] or COMMON_SUBDOMAINS


class SubdomainEnumerationTransform(Transform):
    id = "subdomain_enumeration"
    name = "Subdomain Enumeration"
    description = "Discover subdomains using DNS bruteforce (75+ wordlist)"
    category = "Domain Intelligence"
    input_types = frozenset({EntityType.DOMAIN})
    output_types = frozenset({EntityType.DOMAIN, EntityType.IP_ADDRESS})
    icon = "🔎"

    def __init__(self, resolver: Optional[DnsResolver] = None, batch_size: int = 20, batch_delay: float = 0.1):
        self.resolver = resolver or DnsResolver()
        self.batch_size = batch_size
        self.batch_delay = batch_delay

    async def execute(self, entity: Entity, params: Dict[str, Any]) -> TransformResult:
        domain = entity.value.strip().lower().rstrip(".")
        wordlist = _wordlist(params.get("wordlist"))
        if wordlist is None:
            return failure("wordlist must be a list of labels or a comma separated string")
        candidates = [f"{word}.{domain}" for word in dict.fromkeys(wordlist)]

        logger.info("Starting subdomain enumeration", extra={"domain": domain, "candidates": len(candidates)})
        outcomes = await run_in_batches(candidates, self.resolver.resolve4, self.batch_size, self.batch_delay)

        entities: Dict[str, Entity] = {}
        links = []
        subdomains = []
        for name, outcome in zip(candidates, outcomes):
            if isinstance(outcome, BaseException) or not outcome:
                continue
            subdomains.append(name)
            sub = stable_entity(EntityType.DOMAIN, name, properties={"parent": domain, "discoveryMethod": "DNS bruteforce"})
            entities.setdefault(sub.id, sub)
            links.append(make_link(entity.id, sub.id, "subdomain"))
            for ip in outcome:
                ip_entity = stable_entity(EntityType.IP_ADDRESS, ip)
                entities.setdefault(ip_entity.id, ip_entity)
                links.append(make_link(sub.id, ip_entity.id, "resolves to"))

        logger.info("Subdomain enumeration finished", extra={"domain": domain, "found": len(subdomains)})
        if not subdomains:
            return nothing_found(f"No subdomains of {domain} resolved", totalFound=0)
        return found(list(entities.values()), links, totalFound=len(subdomains), subdomains=subdomains)
