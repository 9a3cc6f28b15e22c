"""WHOIS lookup over RDAP (JSON registration data, no key)."""

from typing import Any, Dict, List, Optional

from core.identity import make_link, stable_entity
from core.models import Entity, EntityType, TransformResult
from transforms.base import ProviderClient, ProviderTransform, found, nothing_found
from transforms.http import fetch_json


class RdapClient(ProviderClient):
    provider = "whois"
    display_name = "WHOIS (RDAP)"
    base_url = "https://rdap.org"

    async def domain(self, domain: str) -> Optional[Dict[str, Any]]:
        async with self.http(headers={"Accept": "application/rdap+json"}) as client:
            payload = await fetch_json(client, self.display_name, f"{self.base_url}/domain/{domain}",
                                       allow_not_found=True)
        return payload if isinstance(payload, dict) else None


def _vcard_field(entity: Dict[str, Any], field: str) -> List[str]:
    vcard = entity.get("vcardArray")
    if not isinstance(vcard, list) or len(vcard) < 2 or not isinstance(vcard[1], list):
        return []
    values = []
    for item in vcard[1]:
        if isinstance(item, list) and len(item) >= 4 and item[0] == field and isinstance(item[3], str):
            values.append(item[3])
    return values


def parse_rdap(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Flattens the parts of an RDAP domain object we turn into entities."""
    events = {
        e.get("eventAction"): e.get("eventDate")
        for e in payload.get("events") or [] if isinstance(e, dict)
    }
    registrar = None
    emails = set()
    for contact in payload.get("entities") or []:
        if not isinstance(contact, dict):
            continue
        roles = contact.get("roles") or []
        names = _vcard_field(contact, "fn")
        if "registrar" in roles and names:
            registrar = names[0]
        emails.update(e.strip().lower() for e in _vcard_field(contact, "email") if "@" in e)
    nameservers = sorted({
        ns["ldhName"].lower().rstrip(".")
        for ns in payload.get("nameservers") or []
        if isinstance(ns, dict) and isinstance(ns.get("ldhName"), str)
    })
    return {
        "registrar": registrar,
        "created": events.get("registration"),
        "expires": events.get("expiration"),
        "updated": events.get("last changed"),
        "status": payload.get("status") or [],
        "nameservers": nameservers,
        "emails": sorted(emails),
    }


class WhoisLookupTransform(ProviderTransform):
    id = "whois_lookup"
    name = "WHOIS Lookup"
    description = "Get domain registration information and DNS records"
    category = "Domain Intelligence"
    input_types = frozenset({EntityType.DOMAIN})
    output_types = frozenset({EntityType.ORGANIZATION, EntityType.EMAIL_ADDRESS, EntityType.DOMAIN})
    icon = "📋"

    async def lookup(self, entity: Entity, params: Dict[str, Any]) -> TransformResult:
        domain = entity.value.strip().lower().rstrip(".")
        payload = await self.client.domain(domain)
        if payload is None:
            return nothing_found(f"No registration data for {domain}")

        record = parse_rdap(payload)
        entities = []
        links = []

        if record["registrar"]:
            registrar = stable_entity(EntityType.ORGANIZATION, record["registrar"], properties={"role": "registrar"})
            entities.append(registrar)
            links.append(make_link(entity.id, registrar.id, "registered with"))
        for ns in record["nameservers"]:
            ns_entity = stable_entity(EntityType.DOMAIN, ns, properties={"role": "nameserver"})
            entities.append(ns_entity)
            links.append(make_link(entity.id, ns_entity.id, "nameserver"))
        for email in record["emails"]:
            email_entity = stable_entity(EntityType.EMAIL_ADDRESS, email)
            entities.append(email_entity)
            links.append(make_link(entity.id, email_entity.id, "registration contact"))

        return found(entities, links, registrar=record["registrar"], created=record["created"],
                     expires=record["expires"], status=record["status"])
