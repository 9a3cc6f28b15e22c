from typing import Any, Dict

from core.identity import make_link, stable_entity
from core.models import Entity, EntityType, TransformResult
from transforms.base import ProviderClient, ProviderTransform, failure, found
from transforms.http import fetch_json

FIELDS = "status,message,country,countryCode,region,city,lat,lon,timezone,isp,org,as"


class IpApiClient(ProviderClient):
    """ip-api.com, free tier, no key (45 requests per minute)."""
    provider = "ipapi"
    display_name = "ip-api.com"
    base_url = "http://ip-api.com/json"

    async def locate(self, ip: str) -> Dict[str, Any]:
        async with self.http() as client:
            payload = await fetch_json(client, self.display_name, f"{self.base_url}/{ip}", params={"fields": FIELDS})
        return payload if isinstance(payload, dict) else {"status": "fail", "message": "unexpected payload"}


class GeoIpLocationTransform(ProviderTransform):
    id = "geo_ip_location"
    name = "IP Geolocation"
    description = "Get geographical location from IP address"
    category = "Geolocation"
    input_types = frozenset({EntityType.IP_ADDRESS})
    output_types = frozenset({EntityType.LOCATION, EntityType.ORGANIZATION})
    icon = "🌍"

    async def lookup(self, entity: Entity, params: Dict[str, Any]) -> TransformResult:
        geo = await self.client.locate(entity.value.strip())
        if geo.get("status") != "success":
            return failure(f"Could not determine location for this IP: {geo.get('message') or 'unknown reason'}")

        city = geo.get("city") or "Unknown"
        country = geo.get("country") or "Unknown"
        location = stable_entity(
            EntityType.LOCATION, f"{city}, {country}",
            label=f"📍 {city}, {country}",
            data={"lat": geo.get("lat"), "lon": geo.get("lon")},
            properties={
                "city": geo.get("city"),
                "region": geo.get("region"),
                "country": geo.get("country"),
                "countryCode": geo.get("countryCode"),
                "timezone": geo.get("timezone"),
            },
        )
        entities = [location]
        links = [make_link(entity.id, location.id, "located in")]

        if geo.get("isp"):
            isp = stable_entity(EntityType.ORGANIZATION, geo["isp"], properties={"asn": geo.get("as")})
            entities.append(isp)
            links.append(make_link(entity.id, isp.id, "hosted by"))

        return found(entities, links, city=geo.get("city"), country=geo.get("country"),
                     coordinates=f"{geo.get('lat')}, {geo.get('lon')}", isp=geo.get("isp"))
