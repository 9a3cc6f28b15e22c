"""
Entity id assignment.

Two strategies decide how an entity deduplicates in the graph:

- StableKey: the id is a pure function of (type, normalized value). Used for
  externally addressable, singular objects (an IP, a domain, a CVE). The same
  object always gets the same id, whichever transform discovers it.
- UniqueFact: the stable key plus an occurrence token. Used for point-in-time
  observations (a breach record, one scan's summary) that must never be
  coalesced with other observations of "the same" fact.

The strategy is chosen by the transform at creation time; it cannot be
recovered from the id afterwards.
"""

import ipaddress
import json
import re
import uuid
from typing import Any, Dict, Optional
from urllib.parse import urlsplit, urlunsplit

from core.models import Entity, EntityType, Link

ID_PREFIXES: Dict[EntityType, str] = {
    EntityType.IP_ADDRESS: "ip",
    EntityType.DOMAIN: "domain",
    EntityType.URL: "url",
    EntityType.EMAIL_ADDRESS: "email",
    EntityType.PHONE_NUMBER: "phone",
    EntityType.USERNAME: "username",
    EntityType.PERSON: "person",
    EntityType.ORGANIZATION: "org",
    EntityType.LOCATION: "location",
    EntityType.SOCIAL_PROFILE: "social",
    EntityType.PORT: "port",
    EntityType.VULNERABILITY: "vuln",
    EntityType.TECHNOLOGY: "tech",
    EntityType.BREACH: "breach",
    EntityType.CREDENTIALS: "creds",
    EntityType.CERTIFICATE_AUTHORITY: "ca",
    EntityType.SCAN_RESULT: "scan",
    EntityType.HASH: "hash",
    EntityType.CRYPTO_ADDRESS: "crypto",
    EntityType.DISCORD_ID: "discord",
    EntityType.TEXT: "text",
}

DEFAULT_COLORS: Dict[EntityType, str] = {
    EntityType.IP_ADDRESS: "#f59e0b",
    EntityType.DOMAIN: "#3b82f6",
    EntityType.EMAIL_ADDRESS: "#ec4899",
    EntityType.ORGANIZATION: "#8b5cf6",
    EntityType.LOCATION: "#10b981",
    EntityType.SOCIAL_PROFILE: "#06b6d4",
    EntityType.PORT: "#3b82f6",
    EntityType.VULNERABILITY: "#ef4444",
    EntityType.BREACH: "#dc2626",
    EntityType.SCAN_RESULT: "#64748b",
}

_WHITESPACE = re.compile(r"\s+")
_NON_SLUG = re.compile(r"[^a-z0-9]+")
_LINK_NAMESPACE = uuid.UUID("6f1c2a4e-8d3b-5f7a-9c21-4e0b7d3a6c59")


def normalize_value(entity_type: EntityType, value: str) -> str:
    """Canonical form of a value, used only for building ids."""
    value = value.strip()
    if entity_type == EntityType.IP_ADDRESS:
        try:
            return ipaddress.ip_address(value).compressed
        except ValueError:
            return value.lower()
    if entity_type == EntityType.DOMAIN:
        return value.lower().rstrip(".")
    if entity_type == EntityType.URL:
        parts = urlsplit(value)
        if parts.scheme and parts.netloc:
            return urlunsplit((parts.scheme.lower(), parts.netloc.lower(), parts.path, parts.query, ""))
        return value
    if entity_type == EntityType.PHONE_NUMBER:
        return re.sub(r"[\s\-().]", "", value)
    if entity_type == EntityType.CRYPTO_ADDRESS:
        # base58 addresses are case sensitive
        return value
    return _WHITESPACE.sub(" ", value).lower()


def stable_key(entity_type: EntityType, value: str) -> str:
    entity_type = EntityType(entity_type)
    return f"{ID_PREFIXES[entity_type]}-{normalize_value(entity_type, value)}"


def unique_fact(entity_type: EntityType, value: str, token: Optional[str] = None) -> str:
    return f"{stable_key(entity_type, value)}-{token or uuid.uuid4().hex[:12]}"


def link_id(source: str, target: str, label: Optional[str] = None) -> str:
    """
    Deterministic id of the relationship (source, target, label). Entity ids
    contain hyphens themselves, so the parts are hashed as a JSON array
    instead of being joined.
    """
    slug = _NON_SLUG.sub("-", (label or "").lower()).strip("-")
    return f"link-{uuid.uuid5(_LINK_NAMESPACE, json.dumps([source, target, slug]))}"


def _build(entity_id: str, entity_type: EntityType, value: str, label: Optional[str],
           color: Optional[str], data: Optional[Dict[str, Any]],
           properties: Optional[Dict[str, Any]]) -> Entity:
    display: Dict[str, Any] = {"label": label or value, "type": entity_type.value}
    if color or entity_type in DEFAULT_COLORS:
        display["color"] = color or DEFAULT_COLORS[entity_type]
    display.update(data or {})
    return Entity(id=entity_id, type=entity_type, value=value, data=display, properties=dict(properties or {}))


def stable_entity(entity_type: EntityType, value: str, *, label: Optional[str] = None,
                  color: Optional[str] = None, data: Optional[Dict[str, Any]] = None,
                  properties: Optional[Dict[str, Any]] = None) -> Entity:
    """Builds an entity identified by StableKey."""
    entity_type = EntityType(entity_type)
    return _build(stable_key(entity_type, value), entity_type, value, label, color, data, properties)


def fact_entity(entity_type: EntityType, value: str, *, token: Optional[str] = None,
                label: Optional[str] = None, color: Optional[str] = None,
                data: Optional[Dict[str, Any]] = None,
                properties: Optional[Dict[str, Any]] = None) -> Entity:
    """Builds an entity identified by UniqueFact."""
    entity_type = EntityType(entity_type)
    return _build(unique_fact(entity_type, value, token), entity_type, value, label, color, data, properties)


def make_link(source: str, target: str, label: Optional[str] = None) -> Link:
    return Link(id=link_id(source, target, label), source=source, target=target, label=label)
