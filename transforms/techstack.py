"""
Tech stack detection from a site's response headers and HTML.

Lightweight pattern matching over a single GET of the front page; no
browser, no script execution.
"""

import re
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Tuple
from urllib.parse import urlsplit

import httpx

from core.identity import make_link, stable_entity
from core.models import Entity, EntityType, TransformResult
from transforms.base import ProviderClient, ProviderTransform, failure, found, nothing_found
from transforms.http import fetch_text

MAX_SCRIPTS = 20

_SCRIPT_SRC = re.compile(r"""<script[^>]+src=["']([^"']+)["']""", re.IGNORECASE)
_META = re.compile(r"<meta\s+([^>]+)>", re.IGNORECASE)
_META_NAME = re.compile(r"""name=["']([^"']+)["']""", re.IGNORECASE)
_META_CONTENT = re.compile(r"""content=["']([^"']+)["']""", re.IGNORECASE)
_PHP_VERSION = re.compile(r"PHP/([\d.]+)")


class Technology(NamedTuple):
    name: str
    categories: Tuple[str, ...]
    icon: str
    website: Optional[str] = None
    version: Optional[str] = None


class Page(NamedTuple):
    url: str
    html: str
    headers: httpx.Headers

    @property
    def lower(self) -> str:
        return self.html.lower()

    def header(self, name: str) -> str:
        return self.headers.get(name, "")


# (technology, matcher) pairs, evaluated in order.
SIGNATURES: List[Tuple[Technology, Callable[[Page], bool]]] = [
    (Technology("WordPress", ("CMS",), "🔷", "https://wordpress.org"),
     lambda p: "/wp-content/" in p.lower or "/wp-includes/" in p.lower),
    (Technology("Joomla", ("CMS",), "🔶", "https://joomla.org"),
     lambda p: "joomla" in p.lower or "Joomla" in p.header("x-content-encoded-by")),
    (Technology("Drupal", ("CMS",), "🔵", "https://drupal.org"),
     lambda p: "drupal" in p.lower or "Drupal" in p.header("x-generator")),
    (Technology("React", ("JavaScript Framework",), "⚛️", "https://react.dev"),
     lambda p: "data-reactroot" in p.lower or "__react" in p.lower or "react-dom" in p.lower),
    (Technology("Vue.js", ("JavaScript Framework",), "💚", "https://vuejs.org"),
     lambda p: "__vue" in p.lower or "data-v-" in p.lower or "vue.js" in p.lower),
    (Technology("Angular", ("JavaScript Framework",), "🅰️", "https://angular.io"),
     lambda p: "ng-version" in p.lower),
    (Technology("Next.js", ("JavaScript Framework", "SSR"), "▲", "https://nextjs.org"),
     lambda p: "/_next/" in p.lower or "__next" in p.lower or "Next.js" in p.header("x-powered-by")),
    (Technology("Google Analytics", ("Analytics",), "📊", "https://analytics.google.com"),
     lambda p: "google-analytics.com" in p.lower or "gtag(" in p.lower),
    (Technology("Hotjar", ("Analytics", "Heatmap"), "🔥", "https://hotjar.com"),
     lambda p: "hotjar" in p.lower),
    (Technology("Cloudflare", ("CDN", "Security"), "☁️", "https://cloudflare.com"),
     lambda p: "cloudflare" in p.header("server").lower() or bool(p.header("cf-ray"))),
    (Technology("jsDelivr", ("CDN",), "📦", "https://jsdelivr.com"),
     lambda p: "cdn.jsdelivr.net" in p.lower),
    (Technology("Nginx", ("Web Server",), "🟢", "https://nginx.org"),
     lambda p: "nginx" in p.header("server").lower()),
    (Technology("Apache", ("Web Server",), "🪶", "https://apache.org"),
     lambda p: "apache" in p.header("server").lower()),
    (Technology("PHP", ("Programming Language",), "🐘"),
     lambda p: "PHP" in p.header("x-powered-by")),
    (Technology("ASP.NET", ("Programming Language", "Framework"), "🔵"),
     lambda p: "ASP.NET" in p.header("x-powered-by")),
    (Technology("Shopify", ("E-commerce",), "🛒", "https://shopify.com"),
     lambda p: "shopify" in p.lower),
    (Technology("WooCommerce", ("E-commerce",), "🛍️", "https://woocommerce.com"),
     lambda p: "woocommerce" in p.lower),
    (Technology("Google Tag Manager", ("Tag Manager",), "🏷️", "https://tagmanager.google.com"),
     lambda p: "googletagmanager.com" in p.lower),
]


def detect_technologies(page: Page) -> List[Technology]:
    detected = []
    for technology, matches in SIGNATURES:
        if not matches(page):
            continue
        if technology.name == "PHP":
            version = _PHP_VERSION.search(page.header("x-powered-by"))
            technology = technology._replace(version=version.group(1) if version else None)
        detected.append(technology)
    return detected


def extract_meta(html: str) -> Dict[str, str]:
    meta = {}
    for match in _META.finditer(html):
        name = _META_NAME.search(match.group(1))
        content = _META_CONTENT.search(match.group(1))
        if name and content:
            meta[name.group(1)] = content.group(1)
    return meta


def extract_scripts(html: str) -> List[str]:
    return _SCRIPT_SRC.findall(html)[:MAX_SCRIPTS]


class WebsiteClient(ProviderClient):
    provider = "techstack"
    display_name = "Tech Stack"

    async def fetch_page(self, url: str) -> Page:
        async with self.http() as client:
            response = await fetch_text(client, self.display_name, url)
        return Page(str(response.url), response.text, response.headers)


class TechStackDetectionTransform(ProviderTransform):
    id = "tech_stack_detection"
    name = "Tech Stack Detection"
    description = "Identify technologies used by a website"
    category = "Domain Intelligence"
    input_types = frozenset({EntityType.DOMAIN, EntityType.URL})
    output_types = frozenset({EntityType.TECHNOLOGY})
    icon = "⚙️"

    async def lookup(self, entity: Entity, params: Dict[str, Any]) -> TransformResult:
        value = entity.value.strip()
        url = value if value.lower().startswith(("http://", "https://")) else f"https://{value}"
        host = urlsplit(url).hostname
        if not host:
            return failure(f"Not a fetchable website: {value}")

        page = await self.client.fetch_page(url)
        technologies = detect_technologies(page)
        scripts = extract_scripts(page.html)
        generator = extract_meta(page.html).get("generator")

        entities: List[Entity] = []
        links = []
        site = stable_entity(EntityType.DOMAIN, host, properties={"source": "Tech Stack"})
        if site.id != entity.id:
            entities.append(site)
            links.append(make_link(entity.id, site.id, "hostname"))

        for technology in technologies:
            node = stable_entity(
                EntityType.TECHNOLOGY, technology.name,
                label=f"{technology.icon} {technology.name}",
                color="#a855f7",
                data={"categories": list(technology.categories)},
                properties={"website": technology.website, "version": technology.version},
            )
            entities.append(node)
            links.append(make_link(site.id, node.id, technology.categories[0] if technology.categories else "uses"))

        metadata = {
            "url": page.url,
            "technologiesFound": len(technologies),
            "categories": sorted({c for t in technologies for c in t.categories}),
            "scripts": len(scripts),
            "generator": generator,
        }
        if not technologies:
            return nothing_found(f"No known technologies detected on {host}", **metadata)
        return found(entities, links, **metadata)
