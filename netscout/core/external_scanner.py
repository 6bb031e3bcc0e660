"""
Optional nmap version scan.

An enhancement path only: any failure (python-nmap or the nmap binary
missing, timeout, parse error) returns None and the OS enumeration result
stands.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)

EXTERNAL_SCAN_TIMEOUT = 120
NMAP_ARGUMENTS = "-sV --version-intensity 7"


@dataclass(frozen=True)
class ExternalPortInfo:
    """One open port as reported by nmap."""
    port: int
    protocol: str
    service: str
    version: str


def _format_version(info: Dict[str, str]) -> str:
    product = info.get("product") or ""
    version = info.get("version") or ""
    extra = info.get("extrainfo") or ""

    text = " ".join(part for part in (product, version) if part)
    if extra and text:
        text += f" ({extra})"
    return text


def run_external_scan(
    host: str,
    ports: List[int],
    timeout: int = EXTERNAL_SCAN_TIMEOUT,
    nmap_path: Optional[str] = None
) -> Optional[Dict[int, ExternalPortInfo]]:
    """
    Version-scan ports with nmap under a hard timeout.

    Args:
        host: Target host
        ports: Ports to scan
        timeout: Hard ceiling in seconds
        nmap_path: Explicit nmap binary location

    Returns:
        Mapping of port to ExternalPortInfo for open ports, or None when
        the scan was unavailable or abandoned
    """
    if not ports:
        return {}

    try:
        import nmap  # python-nmap, optional extra
    except ImportError:
        logger.info("python-nmap not installed, skipping external scan")
        return None

    try:
        search_path = (nmap_path,) if nmap_path else ("nmap",)
        scanner = nmap.PortScanner(nmap_search_path=search_path)
        scanner.scan(
            hosts=host,
            ports=",".join(str(p) for p in sorted(set(ports))),
            arguments=NMAP_ARGUMENTS,
            timeout=timeout
        )
    except nmap.PortScannerTimeout:
        logger.warning(f"External scan exceeded {timeout}s, abandoned")
        return None
    except (nmap.PortScannerError, OSError) as e:
        logger.warning(f"External scan unavailable: {e}")
        return None

    found: Dict[int, ExternalPortInfo] = {}
    for scanned_host in scanner.all_hosts():
        tcp = scanner[scanned_host].get("tcp", {})
        for port, info in tcp.items():
            if info.get("state") != "open":
                continue
            found[int(port)] = ExternalPortInfo(
                port=int(port),
                protocol="TCP",
                service=info.get("name") or "",
                version=_format_version(info),
            )

    logger.info(f"External scan reported {len(found)} open port(s) on {host}")
    return found


__all__ = ['ExternalPortInfo', 'run_external_scan', 'EXTERNAL_SCAN_TIMEOUT']
