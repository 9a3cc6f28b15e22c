from typing import Any, Dict, List, Optional

from core.identity import make_link, stable_entity
from core.models import Entity, EntityType, TransformResult
from transforms.base import KeyedProviderClient, ProviderTransform, found, nothing_found
from transforms.http import fetch_json

MAX_PORTS = 10
MAX_VULNS = 5


def port_value(ip: str, port: Any, protocol: str = "tcp") -> str:
    """Ports are scoped to their host so port 443 on two hosts stays two nodes."""
    return f"{ip}:{port}/{protocol}"


class ShodanClient(KeyedProviderClient):
    provider = "shodan"
    display_name = "Shodan"
    base_url = "https://api.shodan.io"

    async def host(self, ip: str) -> Optional[Dict[str, Any]]:
        async with self.http() as client:
            payload = await fetch_json(client, self.display_name, f"{self.base_url}/shodan/host/{ip}",
                                       params={"key": self.api_key}, allow_not_found=True)
        return payload if isinstance(payload, dict) else None


class ShodanLookupTransform(ProviderTransform):
    id = "shodan_lookup"
    name = "Shodan IoT Lookup"
    description = "Search Shodan for host information and vulnerabilities"
    category = "Network Intelligence"
    input_types = frozenset({EntityType.IP_ADDRESS})
    output_types = frozenset({EntityType.PORT, EntityType.VULNERABILITY, EntityType.ORGANIZATION, EntityType.DOMAIN})
    requires_api_key = True
    icon = "🌐"

    async def lookup(self, entity: Entity, params: Dict[str, Any]) -> TransformResult:
        ip = entity.value.strip()
        host = await self.client.host(ip)
        if host is None:
            return nothing_found("No information found for this IP")

        entities: List[Entity] = []
        links = []

        org = host.get("org")
        if org and org != "Unknown":
            org_entity = stable_entity(EntityType.ORGANIZATION, org, properties={"asn": host.get("asn")})
            entities.append(org_entity)
            links.append(make_link(entity.id, org_entity.id, "belongs to"))

        ports = [p for p in host.get("ports") or [] if isinstance(p, int)]
        for port in sorted(ports)[:MAX_PORTS]:
            port_entity = stable_entity(EntityType.PORT, port_value(ip, port), label=f"Port {port}",
                                        data={"port": port}, properties={"host": ip, "source": "Shodan"})
            entities.append(port_entity)
            links.append(make_link(entity.id, port_entity.id, "open port"))

        vulns = sorted(v for v in host.get("vulns") or [] if isinstance(v, str))
        for cve in vulns[:MAX_VULNS]:
            vuln = stable_entity(EntityType.VULNERABILITY, cve.upper(), label=cve.upper())
            entities.append(vuln)
            links.append(make_link(entity.id, vuln.id, "vulnerable to"))

        for hostname in host.get("hostnames") or []:
            if not isinstance(hostname, str):
                continue
            name = stable_entity(EntityType.DOMAIN, hostname)
            entities.append(name)
            links.append(make_link(entity.id, name.id, "hostname"))

        return found(entities, links, organization=org, country=host.get("country_name"),
                     os=host.get("os"), portsCount=len(ports), vulnsCount=len(vulns))
