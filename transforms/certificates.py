"""
Certificate Transparency (crt.sh) integration.
Finds subdomains and issuing CAs via public certificate logs. Free, no key.
"""

from collections import Counter
from typing import Any, Dict, List

from core.identity import make_link, stable_entity
from core.models import Entity, EntityType, TransformResult
from transforms.base import ProviderClient, ProviderTransform, found, nothing_found
from transforms.http import fetch_json


class CrtShClient(ProviderClient):
    provider = "cert_transparency"
    display_name = "crt.sh"
    base_url = "https://crt.sh"

    async def search_domain(self, domain: str) -> List[Dict[str, Any]]:
        async with self.http() as client:
            payload = await fetch_json(client, self.display_name, f"{self.base_url}/",
                                       params={"q": f"%.{domain}", "output": "json"})
        if not isinstance(payload, list):
            return []
        return [entry for entry in payload if isinstance(entry, dict)]


def extract_subdomains(certs: List[Dict[str, Any]], base_domain: str) -> List[str]:
    subdomains = set()
    for cert in certs:
        for name in str(cert.get("name_value") or "").split("\n"):
            cleaned = name.strip().lower()
            if cleaned.startswith("*."):
                cleaned = cleaned[2:]
            if cleaned.endswith("." + base_domain):
                subdomains.add(cleaned)
    return sorted(subdomains)


class CertTransparencyTransform(ProviderTransform):
    id = "cert_transparency"
    name = "Certificate Transparency"
    description = "Find subdomains and certificate authorities in CT logs (crt.sh)"
    category = "Domain Intelligence"
    input_types = frozenset({EntityType.DOMAIN})
    output_types = frozenset({EntityType.DOMAIN, EntityType.CERTIFICATE_AUTHORITY})
    icon = "📜"

    async def lookup(self, entity: Entity, params: Dict[str, Any]) -> TransformResult:
        domain = entity.value.strip().lower().rstrip(".")
        certs = await self.client.search_domain(domain)
        if not certs:
            return nothing_found(f"No certificates logged for {domain}", certificates=0)

        limit = int(params.get("limit", 100))
        subdomains = extract_subdomains(certs, domain)
        entities: List[Entity] = []
        links = []

        for name in subdomains[:limit]:
            sub = stable_entity(EntityType.DOMAIN, name,
                                properties={"parent": domain, "discoveryMethod": "Certificate Transparency"})
            entities.append(sub)
            links.append(make_link(entity.id, sub.id, "subdomain"))

        issuers = Counter(str(c.get("issuer_name")) for c in certs if c.get("issuer_name"))
        for issuer, count in issuers.most_common():
            ca = stable_entity(EntityType.CERTIFICATE_AUTHORITY, issuer, data={"certCount": count})
            entities.append(ca)
            links.append(make_link(entity.id, ca.id, "issued by"))

        return found(entities, links, certificates=len(certs), subdomainsFound=len(subdomains))
