"""Registers the built-in OSINT transforms on a registry."""

from typing import Optional

import httpx

from core.config import Settings
from core.logger import get_logger
from core.registry import TransformRegistry
from transforms.breaches import (
    HibpBreachCheckTransform, HibpClient, OathNetBreachCheckTransform, OathNetClient, OathNetDiscordLookupTransform,
)
from transforms.certificates import CertTransparencyTransform, CrtShClient
from transforms.dns import DnsResolver, DnsResolveTransform, SubdomainEnumerationTransform
from transforms.geolocation import GeoIpLocationTransform, IpApiClient
from transforms.nmap import NmapFullScanTransform, NmapQuickScanTransform
from transforms.shodan import ShodanClient, ShodanLookupTransform
from transforms.social import UsernameProbeClient, UsernameSearchTransform
from transforms.techstack import TechStackDetectionTransform, WebsiteClient
from transforms.whois import RdapClient, WhoisLookupTransform

logger = get_logger(__name__)


def register_default_transforms(registry: TransformRegistry, config: Settings,
                                transport: Optional[httpx.AsyncBaseTransport] = None) -> TransformRegistry:
    """
    Builds every built-in transform with its provider client and registers it.
    `transport` is handed to every HTTP client; tests pass an httpx.MockTransport.
    """
    timeout = config.HTTP_TIMEOUT_SECONDS
    resolver = DnsResolver(config.DNS_TIMEOUT_SECONDS)
    oathnet = OathNetClient(config.OATHNET_API_KEY, transport=transport, timeout=timeout)

    transforms = [
        DnsResolveTransform(resolver),
        SubdomainEnumerationTransform(resolver, batch_size=20, batch_delay=0.1),
        CertTransparencyTransform(CrtShClient(transport=transport, timeout=timeout)),
        WhoisLookupTransform(RdapClient(transport=transport, timeout=timeout)),
        GeoIpLocationTransform(IpApiClient(transport=transport, timeout=timeout)),
        ShodanLookupTransform(ShodanClient(config.SHODAN_API_KEY, transport=transport, timeout=timeout)),
        HibpBreachCheckTransform(HibpClient(config.HIBP_API_KEY, transport=transport, timeout=timeout)),
        OathNetBreachCheckTransform(oathnet),
        OathNetDiscordLookupTransform(oathnet),
        TechStackDetectionTransform(WebsiteClient(transport=transport, timeout=timeout)),
        UsernameSearchTransform(
            UsernameProbeClient(transport=transport, timeout=timeout),
            batch_size=config.PROBE_BATCH_SIZE,
            batch_delay=config.PROBE_BATCH_DELAY_SECONDS,
        ),
        NmapQuickScanTransform(timeout=config.NMAP_QUICK_TIMEOUT_SECONDS),
        NmapFullScanTransform(timeout=config.NMAP_FULL_TIMEOUT_SECONDS),
    ]
    for transform in transforms:
        registry.register(transform)

    logger.info("Registered built-in transforms", extra={"count": len(transforms)})
    return registry
