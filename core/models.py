# /core/models.py

from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

# Shared Pydantic data structures that flow through the enrichment pipeline.

class EntityType(str, Enum):
    """Closed set of entity kinds a node in the investigation graph can have."""
    IP_ADDRESS = "ip_address"
    DOMAIN = "domain"
    URL = "url"
    EMAIL_ADDRESS = "email_address"
    PHONE_NUMBER = "phone_number"
    USERNAME = "username"
    PERSON = "person"
    ORGANIZATION = "organization"
    LOCATION = "location"
    SOCIAL_PROFILE = "social_profile"
    PORT = "port"
    VULNERABILITY = "vulnerability"
    TECHNOLOGY = "technology"
    BREACH = "breach"
    CREDENTIALS = "credentials"
    CERTIFICATE_AUTHORITY = "certificate_authority"
    SCAN_RESULT = "scan_result"
    HASH = "hash"
    CRYPTO_ADDRESS = "crypto_address"
    DISCORD_ID = "discord_id"
    TEXT = "text"

class Entity(BaseModel):
    id: str = Field(description="Unique identifier of the conceptual node, see core.identity.")
    type: EntityType = Field(description="The kind of entity.")
    value: str = Field(description="The main value, e.g. the IP address or domain name.")
    data: Dict[str, Any] = Field(default_factory=dict, description="Display attributes (label, color, ...).")
    properties: Dict[str, Any] = Field(default_factory=dict, description="Arbitrary facts about the entity.")

class Link(BaseModel):
    id: str = Field(description="Unique identifier of the relationship.")
    source: str = Field(description="The ID of the source entity.")
    target: str = Field(description="The ID of the target entity.")
    label: Optional[str] = Field(default=None, description="The type of relationship (e.g. 'resolves to').")

class TransformResult(BaseModel):
    """
    Outcome of one transform execution. A failure is always carried here as
    data (success=False plus an error message), never as a raised exception.
    """
    success: bool
    entities: List[Entity] = Field(default_factory=list)
    links: List[Link] = Field(default_factory=list)
    error: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

class GraphSnapshot(BaseModel):
    entities: List[Entity]
    links: List[Link]

class MergeReport(BaseModel):
    entities_added: int = 0
    entities_updated: int = 0
    links_added: int = 0
    links_existing: int = 0
    dangling_links: int = 0

    def __add__(self, other: "MergeReport") -> "MergeReport":
        return MergeReport(
            entities_added=self.entities_added + other.entities_added,
            entities_updated=self.entities_updated + other.entities_updated,
            links_added=self.links_added + other.links_added,
            links_existing=self.links_existing + other.links_existing,
            dangling_links=self.dangling_links + other.dangling_links,
        )

# --- Quota ---

class QuotaWindow(BaseModel):
    window_ms: int = Field(gt=0, description="Length of the sliding window in milliseconds.")
    limit: int = Field(gt=0, description="Requests allowed inside one window.")
    label: str = Field(description="Human readable name, e.g. 'per minute'.")

class ProviderConfig(BaseModel):
    provider: str
    display_name: str
    windows: List[QuotaWindow] = Field(default_factory=list)
    requires_key: bool = False
    free_description: Optional[str] = None

class WindowState(BaseModel):
    label: str
    limit: int
    used: int
    remaining: int
    reset_at: int = Field(description="Epoch ms at which the oldest counted request leaves the window.")

class ProviderQuota(BaseModel):
    provider: str
    display_name: str
    available: bool
    configured: bool
    windows: List[WindowState] = Field(default_factory=list)
    wait_ms: int = 0
    free_description: Optional[str] = None
