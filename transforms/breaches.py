"""
Breach intelligence: HaveIBeenPwned and OathNet.

Breaches themselves are singular, addressable objects (StableKey on the
breach name). Individual leaked records are observations and get
UniqueFact ids so two leaks of the same password never collapse.
"""

from typing import Any, Dict, List, Optional
from urllib.parse import quote

from core.identity import fact_entity, make_link, stable_entity
from core.models import Entity, EntityType, TransformResult
from transforms.base import KeyedProviderClient, ProviderTransform, failure, found, nothing_found
from transforms.http import fetch_json

NO_RESULTS = "No results found"


def mask_secret(secret: str) -> str:
    if len(secret) <= 2:
        return "*" * len(secret)
    return f"{secret[0]}{'*' * (len(secret) - 2)}{secret[-1]}"


# --- HaveIBeenPwned ---

class HibpClient(KeyedProviderClient):
    provider = "hibp"
    display_name = "HaveIBeenPwned"
    base_url = "https://haveibeenpwned.com/api/v3"

    async def breached_account(self, email: str) -> List[Dict[str, Any]]:
        async with self.http(headers={"hibp-api-key": self.api_key or ""}) as client:
            payload = await fetch_json(
                client, self.display_name, f"{self.base_url}/breachedaccount/{quote(email)}",
                params={"truncateResponse": "false"}, allow_not_found=True,
            )
        # HIBP answers 404 when the account appears in no breach
        if not isinstance(payload, list):
            return []
        return [b for b in payload if isinstance(b, dict) and b.get("Name")]


class HibpBreachCheckTransform(ProviderTransform):
    id = "hibp_breach_check"
    name = "HaveIBeenPwned Check"
    description = "Check if an email address appears in known data breaches"
    category = "Breach Intelligence"
    input_types = frozenset({EntityType.EMAIL_ADDRESS})
    output_types = frozenset({EntityType.BREACH})
    requires_api_key = True
    icon = "🔓"

    async def lookup(self, entity: Entity, params: Dict[str, Any]) -> TransformResult:
        email = entity.value.strip().lower()
        breaches = await self.client.breached_account(email)
        if not breaches:
            return nothing_found("No breaches found", breachCount=0)

        entities = []
        links = []
        for breach in breaches:
            node = stable_entity(
                EntityType.BREACH, breach["Name"],
                label=breach.get("Title") or breach["Name"],
                data={"date": breach.get("BreachDate"), "pwnCount": breach.get("PwnCount")},
                properties={
                    "domain": breach.get("Domain"),
                    "dataClasses": breach.get("DataClasses") or [],
                    "verified": breach.get("IsVerified"),
                },
            )
            entities.append(node)
            links.append(make_link(entity.id, node.id, "pwned in"))

        return found(entities, links, breachCount=len(breaches),
                     dataClasses=sorted({c for b in breaches for c in b.get("DataClasses") or []}))


# --- OathNet ---

class OathNetClient(KeyedProviderClient):
    provider = "oathnet"
    display_name = "OathNet"
    base_url = "https://oathnet.org/api"

    SERVICE_PATHS = {
        EntityType.EMAIL_ADDRESS: "/service/",
        EntityType.USERNAME: "/service/username/",
        EntityType.PHONE_NUMBER: "/service/phone/",
        EntityType.IP_ADDRESS: "/service/ip/",
    }

    async def search_breach(self, query: str, entity_type: EntityType) -> Dict[str, Any]:
        path = self.SERVICE_PATHS.get(entity_type, "/service/")
        async with self.http(headers={"x-api-key": self.api_key or ""}) as client:
            payload = await fetch_json(client, self.display_name, f"{self.base_url}{path}{quote(query, safe='@')}")
        return payload if isinstance(payload, dict) else {"success": False, "message": "unexpected payload"}

    async def discord_user(self, user_id: str) -> Dict[str, Any]:
        async with self.http(headers={"x-api-key": self.api_key or ""}) as client:
            payload = await fetch_json(client, self.display_name, f"{self.base_url}/discord/{user_id}")
        return payload if isinstance(payload, dict) else {}


class OathNetBreachCheckTransform(ProviderTransform):
    id = "oathnet_breach_check"
    name = "Breach Database Check"
    description = "Search for data breaches (Email/Username/Phone)"
    category = "OSINT"
    input_types = frozenset({
        EntityType.EMAIL_ADDRESS, EntityType.USERNAME, EntityType.PHONE_NUMBER, EntityType.IP_ADDRESS,
    })
    output_types = frozenset({EntityType.BREACH, EntityType.CREDENTIALS})
    requires_api_key = True
    icon = "🔓"

    async def lookup(self, entity: Entity, params: Dict[str, Any]) -> TransformResult:
        query = entity.value.strip()
        search_type = entity.type
        if search_type == EntityType.EMAIL_ADDRESS and "@" not in query:
            search_type = EntityType.USERNAME

        response = await self.client.search_breach(query, search_type)
        message: Optional[str] = response.get("message")
        if not response.get("success") and message != NO_RESULTS:
            return failure(f"OathNet lookup failed: {message or 'unknown error'}")

        data = response.get("data") or {}
        records = [r for r in data.get("results") or [] if isinstance(r, dict) and r.get("source")]
        if not records:
            return nothing_found(message or NO_RESULTS, lookupsLeft=response.get("lookups_left"), resultsCount=0)

        sources: Dict[str, Entity] = {}
        entities: List[Entity] = []
        links = []
        for record in records:
            source = str(record["source"])
            if source not in sources:
                node = stable_entity(EntityType.BREACH, source, label=f"Leak: {source}", data={"date": record.get("date")})
                sources[source] = node
                entities.append(node)
                links.append(make_link(entity.id, node.id, "leaked in"))
            breach = sources[source]

            if record.get("password"):
                creds = fact_entity(
                    EntityType.CREDENTIALS, f"{query}@{source}",
                    label="Password/Hash",
                    color="#f97316",
                    properties={
                        "secret": mask_secret(str(record["password"])),
                        "email": record.get("email"),
                        "username": record.get("username"),
                        "ip": record.get("ip"),
                        "date": record.get("date"),
                    },
                )
                entities.append(creds)
                links.append(make_link(breach.id, creds.id, "contains data"))

        return found(entities, links, lookupsLeft=response.get("lookups_left"),
                     resultsCount=data.get("results_found", len(records)))


class OathNetDiscordLookupTransform(ProviderTransform):
    id = "oathnet_discord_lookup"
    name = "Discord User Lookup"
    description = "Get Discord profile info from User ID"
    category = "OSINT"
    input_types = frozenset({EntityType.DISCORD_ID, EntityType.USERNAME})
    output_types = frozenset({EntityType.SOCIAL_PROFILE})
    requires_api_key = True
    icon = "🎮"

    async def lookup(self, entity: Entity, params: Dict[str, Any]) -> TransformResult:
        user_id = entity.value.strip()
        # Discord snowflakes only
        if not (user_id.isascii() and user_id.isdigit()):
            return failure("Input must be a valid Discord User ID (numeric)")

        response = await self.client.discord_user(user_id)
        data = response.get("data")
        if not isinstance(data, dict) or not data.get("username"):
            return failure("Discord user not found")

        username = str(data["username"])
        discriminator = str(data.get("discriminator") or "0")
        profile = stable_entity(
            EntityType.SOCIAL_PROFILE, f"https://discord.com/users/{user_id}",
            label=f"🎮 Discord: {username}" + (f"#{discriminator}" if discriminator != "0" else ""),
            color="#5865F2",
            data={"avatar": data.get("avatar"), "banner": data.get("banner")},
            properties={
                "platform": "Discord",
                "userId": user_id,
                "username": username,
                "created": data.get("created_at"),
                "badges": data.get("badges") or [],
            },
        )
        return found([profile], [make_link(entity.id, profile.id, "has profile")],
                     badges=data.get("public_flags_array") or [])
