"""
Console rendering for NetScout results.

Colors come from colorama so they also work on Windows terminals; they are
dropped when stdout is not a TTY or colors are disabled.
"""

import sys
from typing import Any, Dict, List, Sequence

from colorama import Fore, Style, init as colorama_init


class ConsoleColors:
    """Color codes for terminal output"""
    HEADER = Fore.MAGENTA
    BLUE = Fore.BLUE
    CYAN = Fore.CYAN
    GREEN = Fore.GREEN
    YELLOW = Fore.YELLOW
    RED = Fore.RED
    ENDC = Style.RESET_ALL
    BOLD = Style.BRIGHT


class ConsoleFormatter:
    """Formatters for console output"""

    def __init__(self, colors: bool = True):
        self.colors = colors and sys.stdout.isatty()
        if self.colors:
            colorama_init()

    def paint(self, text: str, color: str) -> str:
        if not self.colors:
            return text
        return f"{color}{text}{ConsoleColors.ENDC}"

    def success(self, msg: str) -> str:
        return self.paint(f"[+] {msg}", ConsoleColors.GREEN)

    def error(self, msg: str) -> str:
        return self.paint(f"[x] {msg}", ConsoleColors.RED)

    def warning(self, msg: str) -> str:
        return self.paint(f"[!] {msg}", ConsoleColors.YELLOW)

    def info(self, msg: str) -> str:
        return self.paint(f"[i] {msg}", ConsoleColors.CYAN)

    def header(self, title: str) -> str:
        return self.paint(f"{title}\n{'=' * len(title)}", ConsoleColors.BOLD)

    def table(self, headers: Sequence[str], rows: List[Sequence[Any]]) -> str:
        cells = [[str(c) for c in row] for row in rows]
        widths = [len(h) for h in headers]
        for row in cells:
            for i, cell in enumerate(row):
                widths[i] = max(widths[i], len(cell))

        def _line(values: Sequence[str]) -> str:
            return "  ".join(v.ljust(widths[i]) for i, v in enumerate(values)).rstrip()

        lines = [self.paint(_line(headers), ConsoleColors.BOLD)]
        lines.append("  ".join("-" * w for w in widths))
        lines.extend(_line(row) for row in cells)
        return "\n".join(lines)

    # ------------------------------------------------------------------
    # Result renderers (take the ``to_dict`` form of each result)
    # ------------------------------------------------------------------

    def ports(self, result: Dict[str, Any]) -> str:
        rows = [
            (r["port"], r["protocol"], r["state"], r["service"], r["version"], r["pid"] or "-")
            for r in result["tableData"]
        ]
        summary = self.info(
            f"{result['openPorts']} open of {result['totalScanned']} scanned on {result['target']}"
        )
        if not rows:
            return summary
        return "\n".join([
            self.table(("PORT", "PROTO", "STATE", "SERVICE", "VERSION", "PID"), rows),
            "",
            summary,
        ])

    def vpn_status(self, status: Dict[str, Any]) -> str:
        lines = []
        if status["isVPN"]:
            lines.append(self.warning(f"Proxy/VPN active: {status['vpnType']}"))
        else:
            lines.append(self.success("No proxy or VPN detected"))

        for software in status["vpnSoftware"]:
            lines.append(f"    {software['name']} ({software['type']}, pid {software['pid']})")
        if status["tunInterface"]["detected"]:
            lines.append(f"    Tunnel interface: {status['tunInterface']['name']}")
        if status["proxy"]["enabled"]:
            lines.append(f"    Proxy port: {status['proxy']['port']} ({status['proxy']['type']})")
        if status["systemProxy"]["enabled"]:
            lines.append(f"    System proxy: {status['systemProxy']['server']}")

        for label, key in (("Proxied egress", "proxyIP"), ("Direct egress", "directIP")):
            identity = status.get(key)
            if identity:
                lines.append(self.info(
                    f"{label}: {identity['ip']} {identity['country']} {identity['city']} ({identity['org']})"
                ))
        if status.get("exitDiffers") is False:
            lines.append(self.warning("Proxied and direct egress IPs are identical"))
        return "\n".join(lines)

    def connections(self, data: Dict[str, Any]) -> str:
        location = data["currentLocation"]
        lines = [
            self.info(f"Current location: {location['name']} ({location['ip']})"),
            self.info(f"{data['totalConnections']} connection(s), {data['uniqueIPs']} public peer IP(s)"),
        ]
        if data["countryStats"]:
            lines.append("")
            lines.append(self.table(
                ("COUNTRY", "CONNECTIONS", "IPS", "CITIES"),
                [(c["country"], c["connections"], c["ips"], ", ".join(c["cities"][:3])) for c in data["countryStats"]],
            ))
        if data["orgStats"]:
            lines.append("")
            lines.append(self.table(
                ("ORGANISATION", "CONNECTIONS", "IPS"),
                [(o["org"], o["connections"], o["ips"]) for o in data["orgStats"]],
            ))
        return "\n".join(lines)

    def throughput(self, sample: Dict[str, Any]) -> str:
        return self.info(f"Throughput: down {sample['rx_mb_s']} MB/s, up {sample['tx_mb_s']} MB/s")
