"""
Signature tables for NetScout.

Pure data consulted by lookup functions: well-known ports, process
heuristics, proxy/VPN software signatures, tunnel interface patterns and
the common proxy port table. New signatures are added here, never as
inline branches elsewhere.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple


class SoftwareCategory(Enum):
    """Category reported for a matched proxy/VPN product."""
    PROXY = "Proxy"
    VPN = "VPN"


@dataclass(frozen=True)
class SoftwareSignature:
    """Process name fragment -> product mapping."""
    pattern: str
    display_name: str
    category: SoftwareCategory


# =============================================================================
# WELL-KNOWN PORTS
# =============================================================================

PORT_SERVICE_MAP: Dict[int, str] = {
    # File transfer
    20: "FTP-Data", 21: "FTP", 22: "SSH", 23: "Telnet", 69: "TFTP",
    # Mail
    25: "SMTP", 110: "POP3", 143: "IMAP", 465: "SMTPS", 587: "SMTP-Submission",
    993: "IMAPS", 995: "POP3S",
    # DNS & network
    53: "DNS", 67: "DHCP-Server", 68: "DHCP-Client", 123: "NTP", 161: "SNMP",
    514: "Syslog",
    # Web
    80: "HTTP", 443: "HTTPS", 8000: "HTTP-Alt", 8008: "HTTP-Alt",
    8080: "HTTP-Proxy", 8088: "HTTP-Alt", 8443: "HTTPS-Alt", 8888: "HTTP-Alt",
    # Windows
    135: "MS-RPC", 137: "NetBIOS-NS", 138: "NetBIOS-DGM", 139: "NetBIOS-SSN",
    445: "SMB", 1900: "UPnP/SSDP", 3389: "RDP", 5357: "WSDAPI", 7680: "WUDO",
    # Directory
    389: "LDAP", 636: "LDAPS",
    # Databases
    1433: "MS-SQL", 1521: "Oracle-DB", 3306: "MySQL", 5432: "PostgreSQL",
    5984: "CouchDB", 6379: "Redis", 9042: "Cassandra-CQL", 11211: "Memcached",
    27017: "MongoDB", 27018: "MongoDB-Shard", 27019: "MongoDB-Config",
    # Messaging
    5672: "RabbitMQ-AMQP", 9092: "Kafka", 15672: "RabbitMQ-Web",
    # Containers
    2375: "Docker", 2376: "Docker-TLS", 6443: "Kubernetes-API",
    # Search & monitoring
    9000: "SonarQube", 9090: "Prometheus", 9200: "Elasticsearch-HTTP",
    9300: "Elasticsearch-Transport",
    # Virtualization
    902: "VMware-Auth", 912: "VMware-Auth", 5900: "VNC",
    # Development
    3000: "Node.js-Dev", 4000: "Dev-Server", 5000: "Flask/UPnP",
    # Other
    873: "Rsync", 1723: "PPTP", 2049: "NFS", 2082: "cPanel", 2083: "cPanel-SSL",
    2181: "ZooKeeper", 4369: "Erlang-EPMD", 7000: "Cassandra-Internode",
    7001: "WebLogic", 50000: "SAP", 50070: "Hadoop-NameNode",
}

# Quick connect-scan candidates
COMMON_PORTS: List[int] = [
    21, 22, 23, 25, 53, 80, 110, 139, 143, 443, 445, 902, 912,
    3000, 3306, 3389, 5357, 5432, 6379, 8080, 27017,
]

EXTENDED_PORTS: List[int] = [
    20, 21, 22, 23, 25, 53, 80, 110, 143, 443, 445, 587, 993, 995,
    1433, 1521, 3306, 3389, 5000, 5432, 5900, 6379, 8080, 8443,
    9092, 9200, 27017,
]

# Owning executable fragment -> service label (substring, case-insensitive)
PROCESS_SERVICE_MAP: List[Tuple[str, str]] = [
    ("nginx", "Nginx"),
    ("apache", "Apache"),
    ("httpd", "Apache"),
    ("node", "Node.js"),
    ("python", "Python"),
    ("java", "Java"),
    ("mysqld", "MySQL"),
    ("mariadbd", "MySQL"),
    ("postgres", "PostgreSQL"),
    ("redis", "Redis"),
    ("mongod", "MongoDB"),
    ("sshd", "SSH"),
    ("clash", "Clash"),
    ("v2ray", "V2Ray"),
    ("vmware", "VMware"),
    ("chrome", "Chrome"),
    ("firefox", "Firefox"),
    ("msedge", "Edge"),
    ("code", "VS Code"),
    ("svchost", "Windows Service"),
]


# =============================================================================
# PROXY / VPN SIGNATURES
# =============================================================================

SOFTWARE_SIGNATURES: List[SoftwareSignature] = [
    SoftwareSignature("clash", "Clash", SoftwareCategory.PROXY),
    SoftwareSignature("verge", "Clash Verge", SoftwareCategory.PROXY),
    SoftwareSignature("mihomo", "Mihomo", SoftwareCategory.PROXY),
    SoftwareSignature("v2ray", "V2Ray", SoftwareCategory.PROXY),
    SoftwareSignature("xray", "Xray", SoftwareCategory.PROXY),
    SoftwareSignature("shadowsocks", "Shadowsocks", SoftwareCategory.PROXY),
    SoftwareSignature("ss-local", "Shadowsocks", SoftwareCategory.PROXY),
    SoftwareSignature("trojan", "Trojan", SoftwareCategory.PROXY),
    SoftwareSignature("sing-box", "Sing-Box", SoftwareCategory.PROXY),
    SoftwareSignature("nekoray", "NekoRay", SoftwareCategory.PROXY),
    SoftwareSignature("nekobox", "NekoBox", SoftwareCategory.PROXY),
    SoftwareSignature("wireguard", "WireGuard", SoftwareCategory.VPN),
    SoftwareSignature("openvpn", "OpenVPN", SoftwareCategory.VPN),
    SoftwareSignature("nordvpn", "NordVPN", SoftwareCategory.VPN),
    SoftwareSignature("expressvpn", "ExpressVPN", SoftwareCategory.VPN),
    SoftwareSignature("surfshark", "Surfshark", SoftwareCategory.VPN),
    SoftwareSignature("protonvpn", "ProtonVPN", SoftwareCategory.VPN),
    SoftwareSignature("mullvad", "Mullvad", SoftwareCategory.VPN),
    SoftwareSignature("tunnelbear", "TunnelBear", SoftwareCategory.VPN),
    SoftwareSignature("windscribe", "Windscribe", SoftwareCategory.VPN),
    SoftwareSignature("cyberghost", "CyberGhost", SoftwareCategory.VPN),
    SoftwareSignature("privateinternetaccess", "PIA", SoftwareCategory.VPN),
    SoftwareSignature("pia-client", "PIA", SoftwareCategory.VPN),
    SoftwareSignature("astrill", "Astrill", SoftwareCategory.VPN),
    SoftwareSignature("tailscale", "Tailscale", SoftwareCategory.VPN),
    SoftwareSignature("quantumult", "Quantumult", SoftwareCategory.PROXY),
    SoftwareSignature("surge", "Surge", SoftwareCategory.PROXY),
    SoftwareSignature("shadowrocket", "Shadowrocket", SoftwareCategory.PROXY),
]

# Virtual tunnel interface name/description fragments
TUNNEL_INTERFACE_PATTERNS: Tuple[str, ...] = (
    "tun", "tap", "utun", "wg", "wireguard", "clash", "tailscale",
    "tap-windows", "wintun", "meta",
)

# Local proxy listeners probed in order
COMMON_PROXY_PORTS: List[Tuple[int, str]] = [
    (7890, "Clash (mixed)"),
    (7897, "Clash Verge"),
    (7891, "Clash (http)"),
    (1080, "SOCKS5"),
    (1081, "HTTP Proxy"),
    (10808, "V2Ray (SOCKS)"),
    (10809, "V2Ray (HTTP)"),
    (9910, "Shadowsocks"),
    (8889, "HTTP Proxy"),
    (8888, "HTTP Proxy"),
    (33210, "NekoRay"),
    (2080, "Trojan"),
    (41534, "Clash (dynamic)"),
]


# =============================================================================
# LOOKUPS
# =============================================================================

def service_for_port(port: int) -> Optional[str]:
    """Static well-known service label for a port."""
    return PORT_SERVICE_MAP.get(port)


def service_for_process(process_name: Optional[str]) -> Optional[str]:
    """Heuristic service label from an executable name."""
    if not process_name:
        return None
    lowered = process_name.lower()
    for fragment, service in PROCESS_SERVICE_MAP:
        if fragment in lowered:
            return service
    return None


def match_software(name: str, cmdline: str = "") -> Optional[SoftwareSignature]:
    """
    First signature whose pattern occurs in the process name or command line.

    Args:
        name: Process executable name
        cmdline: Joined command line

    Returns:
        Matching SoftwareSignature or None
    """
    haystacks = (name.lower(), cmdline.lower())
    for signature in SOFTWARE_SIGNATURES:
        if any(signature.pattern in text for text in haystacks if text):
            return signature
    return None


def is_tunnel_interface(name: str, description: str = "") -> bool:
    """Check an interface name or driver description against tunnel patterns."""
    lowered = f"{name} {description}".lower()
    return any(pattern in lowered for pattern in TUNNEL_INTERFACE_PATTERNS)


def proxy_port_label(port: int) -> Optional[str]:
    """Label of a well-known proxy port, if any."""
    for candidate, label in COMMON_PROXY_PORTS:
        if candidate == port:
            return label
    return None
