"""
Provider quota tracker.

Tracks request budgets per external provider, independently of which
transform triggered the call: several transforms that hit the same vendor
share one budget. Every provider has zero or more sliding windows
(e.g. 4 per minute AND 500 per day); a request is admitted only when every
window has room, and is then recorded in all of them.

Expired events are pruned lazily on consume()/status(), there is no timer.
"""

import threading
import time
from collections import deque
from typing import Callable, Deque, Dict, Iterable, List, NamedTuple, Optional, Tuple

from core.logger import get_logger
from core.models import ProviderConfig, ProviderQuota, QuotaWindow, WindowState

logger = get_logger(__name__)

# --- Time constants (ms) ---
SECOND = 1000
MINUTE = 60 * SECOND
HOUR = 60 * MINUTE
DAY = 24 * HOUR
MONTH = 30 * DAY

DEFAULT_PROVIDER = "default"

DEFAULT_PROVIDERS: List[ProviderConfig] = [
    ProviderConfig(provider=DEFAULT_PROVIDER, display_name="Local", free_description="No external quota"),
    ProviderConfig(provider="dns", display_name="DNS Resolve", free_description="System resolver, no limits"),
    ProviderConfig(provider="nmap", display_name="Nmap", free_description="Local tool, no limits"),
    ProviderConfig(
        provider="whois", display_name="WHOIS (RDAP)",
        windows=[QuotaWindow(limit=30, window_ms=MINUTE, label="per minute")],
        free_description="Free, abuse protected",
    ),
    ProviderConfig(
        provider="cert_transparency", display_name="crt.sh",
        windows=[QuotaWindow(limit=10, window_ms=MINUTE, label="per minute")],
        free_description="Free, no key",
    ),
    ProviderConfig(
        provider="ipapi", display_name="ip-api.com",
        windows=[QuotaWindow(limit=45, window_ms=MINUTE, label="per minute")],
        free_description="Free, no key",
    ),
    ProviderConfig(
        provider="username_probe", display_name="Username Probe",
        windows=[QuotaWindow(limit=20, window_ms=MINUTE, label="per minute")],
        free_description="Direct profile probes",
    ),
    ProviderConfig(
        provider="techstack", display_name="Tech Stack",
        windows=[QuotaWindow(limit=20, window_ms=MINUTE, label="per minute")],
        free_description="Direct page fetch",
    ),
    ProviderConfig(
        provider="shodan", display_name="Shodan",
        windows=[QuotaWindow(limit=1, window_ms=SECOND, label="per second")],
        requires_key=True,
    ),
    ProviderConfig(
        provider="hibp", display_name="HaveIBeenPwned",
        windows=[QuotaWindow(limit=10, window_ms=MINUTE, label="per minute")],
        requires_key=True,
    ),
    ProviderConfig(
        provider="oathnet", display_name="OathNet",
        windows=[
            QuotaWindow(limit=10, window_ms=MINUTE, label="per minute"),
            QuotaWindow(limit=1000, window_ms=DAY, label="per day"),
        ],
        requires_key=True,
    ),
]

DEFAULT_TRANSFORM_PROVIDERS: Dict[str, str] = {
    "dns_resolve": "dns",
    "subdomain_enumeration": "dns",
    "nmap_quick_scan": "nmap",
    "nmap_full_scan": "nmap",
    "whois_lookup": "whois",
    "cert_transparency": "cert_transparency",
    "geo_ip_location": "ipapi",
    "username_search": "username_probe",
    "shodan_lookup": "shodan",
    "hibp_breach_check": "hibp",
    "oathnet_breach_check": "oathnet",
    "oathnet_discord_lookup": "oathnet",
    "tech_stack_detection": "techstack",
}


class QuotaDecision(NamedTuple):
    allowed: bool
    quota: ProviderQuota


def _now_ms() -> int:
    return int(time.time() * 1000)


class QuotaTracker:
    def __init__(self, providers: Optional[Iterable[ProviderConfig]] = None,
                 transform_providers: Optional[Dict[str, str]] = None,
                 clock: Optional[Callable[[], int]] = None,
                 is_configured: Optional[Callable[[str], bool]] = None):
        self._clock = clock or _now_ms
        self._is_configured = is_configured or (lambda provider: True)
        self._providers: Dict[str, ProviderConfig] = {}
        self._usage: Dict[str, List[Deque[int]]] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._transform_providers = dict(DEFAULT_TRANSFORM_PROVIDERS if transform_providers is None else transform_providers)

        for config in (DEFAULT_PROVIDERS if providers is None else providers):
            self.register(config)
        if DEFAULT_PROVIDER not in self._providers:
            self.register(DEFAULT_PROVIDERS[0])

    # --- Configuration ---

    def register(self, config: ProviderConfig):
        """Adds or replaces a provider; its usage history starts empty."""
        lock = self._locks.setdefault(config.provider, threading.Lock())
        with lock:
            self._providers[config.provider] = config
            self._usage[config.provider] = [deque() for _ in config.windows]

    def assign(self, transform_id: str, provider: str):
        self._transform_providers[transform_id] = provider

    def provider_for(self, transform_id: str) -> str:
        return self._transform_providers.get(transform_id, DEFAULT_PROVIDER)

    def providers(self) -> List[str]:
        return list(self._providers)

    # --- Accounting ---

    def consume(self, provider: str) -> QuotaDecision:
        """
        Atomically checks every window of `provider` and, only if all of them
        have room, records one request. Nothing is recorded on denial.
        """
        config = self._providers.get(provider)
        if config is None:
            return QuotaDecision(True, self._unknown(provider))

        with self._locks[provider]:
            now = self._clock()
            usage = self._usage[provider]
            blocked = False
            for window, stamps in zip(config.windows, usage):
                self._prune(stamps, window, now)
                if len(stamps) >= window.limit:
                    blocked = True
            if not blocked:
                for stamps in usage:
                    stamps.append(now)
            quota = self._snapshot(config, usage, now)

        if blocked:
            logger.info("Provider quota exhausted", extra={"provider": provider, "wait_ms": quota.wait_ms})
        return QuotaDecision(not blocked, quota)

    def status(self, provider: str) -> ProviderQuota:
        config = self._providers.get(provider)
        if config is None:
            return self._unknown(provider)
        with self._locks[provider]:
            now = self._clock()
            usage = self._usage[provider]
            for window, stamps in zip(config.windows, usage):
                self._prune(stamps, window, now)
            return self._snapshot(config, usage, now)

    def all_statuses(self) -> List[ProviderQuota]:
        return [self.status(p) for p in self.providers()]

    def display_name(self, provider: str) -> str:
        config = self._providers.get(provider)
        return config.display_name if config else provider

    # --- Internals ---

    @staticmethod
    def _prune(stamps: Deque[int], window: QuotaWindow, now: int):
        while stamps and now - stamps[0] >= window.window_ms:
            stamps.popleft()

    def _snapshot(self, config: ProviderConfig, usage: List[Deque[int]], now: int) -> ProviderQuota:
        states = []
        wait_ms = 0
        for window, stamps in zip(config.windows, usage):
            used = len(stamps)
            remaining = max(0, window.limit - used)
            reset_at = stamps[0] + window.window_ms if stamps else now + window.window_ms
            if remaining == 0:
                wait_ms = max(wait_ms, reset_at - now)
            states.append(WindowState(label=window.label, limit=window.limit, used=used,
                                      remaining=remaining, reset_at=reset_at))

        configured = not config.requires_key or self._is_configured(config.provider)
        return ProviderQuota(
            provider=config.provider,
            display_name=config.display_name,
            available=wait_ms == 0 and configured,
            configured=configured,
            windows=states,
            wait_ms=wait_ms,
            free_description=config.free_description,
        )

    @staticmethod
    def _unknown(provider: str) -> ProviderQuota:
        return ProviderQuota(provider=provider, display_name=provider, available=True, configured=True)


def estimated_time(transform_id: str) -> Tuple[int, str]:
    """Rough duration hint shown next to a transform in the catalog."""
    if transform_id == "nmap_full_scan":
        return 120000, "~2 min"
    if "nmap" in transform_id:
        return 15000, "~15 s"
    if "whois" in transform_id:
        return 5000, "~5 s"
    if "subdomain" in transform_id or "username" in transform_id:
        return 20000, "~20 s"
    if "dns" in transform_id or "cert" in transform_id:
        return 3000, "~3 s"
    return 2000, "~2 s"
