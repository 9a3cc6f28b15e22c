"""
Port scanning through a local nmap binary.

nmap runs as a subprocess with XML output on stdout. The runner is
injectable so tests can feed canned XML without nmap installed.
"""

import asyncio
import ipaddress
import re
import time
import xml.etree.ElementTree as ET
from typing import Any, Awaitable, Callable, Dict, List, Optional

from core.config import settings
from core.errors import UpstreamError
from core.identity import fact_entity, make_link, normalize_value, stable_entity
from core.logger import get_logger
from core.models import Entity, EntityType, TransformResult
from core.transform import Transform
from transforms.base import failure, found
from transforms.shodan import port_value

logger = get_logger(__name__)

SCAN_ARGS = {
    "quick": ["-T4", "-F"],
    "full": ["-T4", "-p-", "-sV"],
}

_TARGET = re.compile(r"^[A-Za-z0-9][A-Za-z0-9.:\-]*$")

Runner = Callable[[List[str], float], Awaitable[str]]


async def run_nmap(args: List[str], timeout: float) -> str:
    """Runs nmap and returns its XML stdout. Kills the process on timeout."""
    process = await asyncio.create_subprocess_exec(
        "nmap", *args,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        raise
    if process.returncode != 0:
        raise UpstreamError("nmap", stderr.decode(errors="replace").strip() or f"exit code {process.returncode}")
    return stdout.decode(errors="replace")


def validate_target(target: str) -> Optional[str]:
    """Returns an error message for targets we refuse to scan, else None."""
    if not target or target.startswith("-") or not _TARGET.match(target):
        return f"Invalid scan target: {target!r}"
    if target.lower() == "localhost":
        return "Scanning localhost is not allowed"
    try:
        address = ipaddress.ip_address(target)
    except ValueError:
        return None
    if address.is_loopback:
        return "Scanning localhost is not allowed"
    if address.is_private or address.is_link_local or address.is_multicast:
        return "Scanning private IP ranges is restricted"
    return None


def parse_nmap_xml(xml_text: str) -> Optional[Dict[str, Any]]:
    """
    Extracts the first scanned host from nmap's XML report.

    Returns None when the report holds no host (target down or unresolvable).
    Raises ET.ParseError on malformed XML.
    """
    root = ET.fromstring(xml_text)
    host = root.find("host")
    if host is None:
        return None

    status = host.find("status")
    address = None
    for addr in host.findall("address"):
        if addr.get("addrtype") in ("ipv4", "ipv6"):
            address = addr.get("addr")
            break
    hostname = host.find("hostnames/hostname")
    osmatch = host.find("os/osmatch")

    ports = []
    for port in host.findall("ports/port"):
        state = port.find("state")
        service = port.find("service")
        portid = port.get("portid")
        if portid is None or not portid.isdigit():
            continue
        ports.append({
            "port": int(portid),
            "protocol": port.get("protocol", "tcp"),
            "state": state.get("state") if state is not None else "unknown",
            "service": service.get("name") if service is not None else None,
            "product": service.get("product") if service is not None else None,
            "version": service.get("version") if service is not None else None,
        })

    return {
        "ip": address,
        "status": status.get("state") if status is not None else "unknown",
        "hostname": hostname.get("name") if hostname is not None else None,
        "os": osmatch.get("name") if osmatch is not None else None,
        "ports": ports,
    }


class NmapScanTransform(Transform):
    input_types = frozenset({EntityType.IP_ADDRESS, EntityType.DOMAIN})
    output_types = frozenset({EntityType.PORT, EntityType.SCAN_RESULT, EntityType.IP_ADDRESS})
    category = "Network Intelligence"
    scan_type = "quick"

    def __init__(self, runner: Optional[Runner] = None, timeout: Optional[float] = None):
        self.runner = runner or run_nmap
        self.timeout = timeout or self.default_timeout()

    def default_timeout(self) -> float:
        return settings.NMAP_QUICK_TIMEOUT_SECONDS

    async def execute(self, entity: Entity, params: Dict[str, Any]) -> TransformResult:
        target = entity.value.strip()
        error = validate_target(target)
        if error:
            return failure(error)

        args = SCAN_ARGS[self.scan_type] + ["-oX", "-", target]
        started = time.monotonic()
        logger.info("Starting nmap scan", extra={"target": target, "scan_type": self.scan_type})
        try:
            xml_text = await self.runner(args, self.timeout)
        except asyncio.TimeoutError:
            return failure(f"nmap {self.scan_type} scan of {target} timed out after {self.timeout:g}s")
        except FileNotFoundError:
            return failure("nmap is not installed on this host")
        except UpstreamError as e:
            logger.warning("nmap failed", extra={"target": target, "error": e.message})
            return failure(f"nmap failed: {e.message}")
        duration_ms = int((time.monotonic() - started) * 1000)

        try:
            host = parse_nmap_xml(xml_text)
        except ET.ParseError as e:
            return failure(f"Could not parse nmap output: {e}")
        if host is None or host["status"] != "up":
            return failure(f"Host {target} is down or did not respond")

        return self._to_graph(entity, host, duration_ms)

    def _to_graph(self, entity: Entity, host: Dict[str, Any], duration_ms: int) -> TransformResult:
        entities: List[Entity] = []
        links = []

        ip = host["ip"] or entity.value.strip()
        host_id = entity.id
        if entity.type != EntityType.IP_ADDRESS or normalize_value(EntityType.IP_ADDRESS, entity.value) != ip:
            ip_entity = stable_entity(EntityType.IP_ADDRESS, ip, properties={"source": "nmap"})
            entities.append(ip_entity)
            links.append(make_link(entity.id, ip_entity.id, "resolves to"))
            host_id = ip_entity.id

        open_ports = [p for p in host["ports"] if p["state"] == "open"]
        summary = f"Found {len(open_ports)} open ports"
        scan = fact_entity(
            EntityType.SCAN_RESULT, f"nmap {self.scan_type} {ip}",
            label=summary,
            data={"count": len(open_ports)},
            properties={"scanType": self.scan_type, "durationMs": duration_ms, "os": host["os"]},
        )
        entities.append(scan)
        links.append(make_link(entity.id, scan.id, "scanned"))

        for port in open_ports:
            port_entity = stable_entity(
                EntityType.PORT, port_value(ip, port["port"], port["protocol"]),
                label=f"Port {port['port']}",
                data={"port": port["port"], "protocol": port["protocol"]},
                properties={"host": ip, "service": port["service"], "product": port["product"],
                            "version": port["version"], "source": "nmap"},
            )
            entities.append(port_entity)
            links.append(make_link(host_id, port_entity.id, "open port"))

        return found(entities, links, duration=duration_ms, openPorts=len(open_ports), os=host["os"])


class NmapQuickScanTransform(NmapScanTransform):
    id = "nmap_quick_scan"
    name = "Nmap Quick Scan"
    description = "Fast port scan (top 100 ports, ~10s)"
    icon = "🔍"
    scan_type = "quick"


class NmapFullScanTransform(NmapScanTransform):
    id = "nmap_full_scan"
    name = "Nmap Full Scan"
    description = "Complete port scan with service detection (minutes)"
    icon = "🔬"
    scan_type = "full"

    def default_timeout(self) -> float:
        return settings.NMAP_FULL_TIMEOUT_SECONDS
