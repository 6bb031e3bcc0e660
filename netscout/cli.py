#!/usr/bin/env python3
"""
NetScout v1.0.0 - Local Network Reconnaissance
==============================================

USAGE:
    netscout [global options] <command> [options]

COMMANDS:
    ports           Scan local TCP ports and identify services
    vpn             Detect proxy/VPN usage and egress identity
    connections     Geolocate active connections
    watch           Run full monitoring cycles periodically
    api             Start the read-only API server
    config          Create, show or validate the configuration

GLOBAL OPTIONS:
    -c, --config <file>        Configuration file
    -o, --output <file>        Write JSON results to a file
    -of, --output-format <fmt> Output format: text|json
    -v, --verbose              Verbose output
    -s, --silent               Errors only
    --no-color                 Disable colors

EXAMPLES:
    netscout ports
    netscout ports --connect -p 1-1024 -sV
    netscout vpn -of json
    netscout watch --interval 10 --count 3
    netscout api --port 8080
"""

import argparse
import json
import logging
import sys
from typing import Any, Callable, Dict, Optional

from netscout import __version__
from netscout.config.config_manager import ConfigManager, create_default_config
from netscout.core.connections import ConnectionAggregator, read_connection_table
from netscout.core.monitor import MonitorState, NetworkMonitor, build_resolver
from netscout.core.port_scanner import PortScanner, parse_port_spec
from netscout.core.proxy_detection import DetectionEngine
from netscout.exceptions import ConfigError
from netscout.output.console import ConsoleFormatter

logger = logging.getLogger("netscout")

MAX_TIMEOUT = 60.0
MAX_CONCURRENCY = 1000


# =============================================================================
# ARGUMENT VALIDATION
# =============================================================================

def validate_port_spec(value: str) -> str:
    try:
        parse_port_spec(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"Invalid port specification '{value}': {e}")
    return value


def validate_timeout_value(value: str) -> float:
    try:
        timeout = float(value)
    except (ValueError, TypeError):
        raise argparse.ArgumentTypeError(f"Timeout must be a number, got '{value}'")
    if timeout <= 0 or timeout > MAX_TIMEOUT:
        raise argparse.ArgumentTypeError(f"Timeout must be within (0, {MAX_TIMEOUT}], got {timeout}")
    return timeout


def validate_positive_int(value: str, field_name: str = "Value", max_value: Optional[int] = None) -> int:
    try:
        int_value = int(value)
    except (ValueError, TypeError):
        raise argparse.ArgumentTypeError(f"{field_name} must be an integer, got '{value}'")
    if int_value < 1:
        raise argparse.ArgumentTypeError(f"{field_name} must be at least 1, got {int_value}")
    if max_value is not None and int_value > max_value:
        raise argparse.ArgumentTypeError(f"{field_name} must be at most {max_value}, got {int_value}")
    return int_value


# =============================================================================
# PARSER
# =============================================================================

def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="netscout",
        description="NetScout - Local Network Reconnaissance",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument('--version', action='version', version=f"netscout {__version__}")
    parser.add_argument('-c', '--config', default=None, help='Configuration file')
    parser.add_argument('-o', '--output', default=None, help='Write JSON results to a file')
    parser.add_argument('-of', '--output-format', choices=['text', 'json'], default=None,
                        help='Output format')
    parser.add_argument('--no-color', action='store_true', help='Disable colors')

    verbosity_group = parser.add_mutually_exclusive_group()
    verbosity_group.add_argument('-v', '--verbose', action='store_true', help='Verbose output')
    verbosity_group.add_argument('-s', '--silent', action='store_true', help='Errors only')

    subparsers = parser.add_subparsers(dest='command', metavar='command')

    ports = subparsers.add_parser('ports', help='Scan local TCP ports')
    ports.add_argument('-p', '--ports', type=validate_port_spec, default=None,
                       help='Ports to connect-scan (implies --connect)')
    ports.add_argument('--connect', action='store_true', help='Connect-scan common ports too')
    ports.add_argument('-sV', '--service-detect', action='store_true',
                       help='Fingerprint every open port')
    ports.add_argument('--include-closed', action='store_true',
                       help='Report connect-scanned ports that are closed')
    ports.add_argument('--nmap', action='store_true', help='Enhance with an nmap version scan')
    ports.add_argument('--timeout', type=validate_timeout_value, default=None,
                       help='Connect timeout in seconds')
    ports.add_argument('-T', '--concurrency',
                       type=lambda x: validate_positive_int(x, "Concurrency", MAX_CONCURRENCY),
                       default=None, help='Simultaneous connect probes')

    subparsers.add_parser('vpn', help='Detect proxy/VPN usage')
    subparsers.add_parser('connections', help='Geolocate active connections')

    watch = subparsers.add_parser('watch', help='Run monitoring cycles periodically')
    watch.add_argument('--interval', type=validate_timeout_value, default=None,
                       help='Seconds between cycles')
    watch.add_argument('--count', type=lambda x: validate_positive_int(x, "Count"), default=None,
                       help='Stop after this many cycles')

    api = subparsers.add_parser('api', help='Start the API server')
    api.add_argument('--host', default=None, help='Bind address (default 127.0.0.1)')
    api.add_argument('--port', type=lambda x: validate_positive_int(x, "Port", 65535), default=None,
                     help='Port (default 8080)')

    config = subparsers.add_parser('config', help='Manage the configuration file')
    config.add_argument('action', choices=['init', 'show', 'validate'])

    return parser


def setup_logging(args, config: ConfigManager) -> None:
    if args.verbose:
        level = logging.DEBUG
    elif args.silent:
        level = logging.ERROR
    else:
        level = getattr(logging, str(config.get("general.log_level", "INFO")).upper(), logging.INFO)
    logging.basicConfig(level=level, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')


# =============================================================================
# COMMANDS
# =============================================================================

def emit(args, config: ConfigManager, fmt: ConsoleFormatter, data: Dict[str, Any],
         render: Callable[[Dict[str, Any]], str]) -> None:
    """Print a result and optionally save it as JSON."""
    output_format = args.output_format or config.get("general.output_format", "text")
    if output_format == "json":
        print(json.dumps(data, indent=2, default=str))
    elif not args.silent:
        print(render(data))

    if args.output:
        with open(args.output, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2, default=str)
        if not args.silent:
            print(fmt.success(f"Results saved to {args.output}"), file=sys.stderr)


def scanner_from_args(args, config: ConfigManager) -> PortScanner:
    options = config.scanner_options()
    ports_spec = getattr(args, "ports", None) or str(config.get("scanner.ports", "") or "")
    if ports_spec:
        options["candidate_ports"] = parse_port_spec(ports_spec)
        options["connect_scan"] = True
    if getattr(args, "connect", False):
        options["connect_scan"] = True
    if getattr(args, "service_detect", False):
        options["detect_versions"] = True
    if getattr(args, "include_closed", False):
        options["include_closed"] = True
    if getattr(args, "nmap", False):
        options["use_external_scanner"] = True
    if getattr(args, "timeout", None):
        options["connect_timeout"] = args.timeout
    if getattr(args, "concurrency", None):
        options["concurrency"] = args.concurrency
    return PortScanner(**options)


def aggregator_from_config(config: ConfigManager, state: MonitorState) -> ConnectionAggregator:
    resolver = build_resolver(
        state.geo_cache,
        geoip_database=config.get("geolocation.database"),
        live_lookups=config.get("geolocation.live_lookups", True),
        requests_per_minute=config.get("geolocation.requests_per_minute", 45),
        lookup_timeout=config.get("geolocation.lookup_timeout", 3.0),
    )
    return ConnectionAggregator(
        resolver,
        max_ips=config.get("geolocation.max_ips", 100),
        max_orgs=config.get("geolocation.max_orgs", 30),
    )


def cmd_ports(args, config, fmt) -> int:
    result = scanner_from_args(args, config).scan()
    emit(args, config, fmt, result.to_dict(), fmt.ports)
    return 0


def cmd_vpn(args, config, fmt) -> int:
    report = DetectionEngine(**config.detection_options()).detect()
    emit(args, config, fmt, report.to_dict(), fmt.vpn_status)
    return 0


def cmd_connections(args, config, fmt) -> int:
    report = DetectionEngine(**config.detection_options()).detect()
    aggregator = aggregator_from_config(config, MonitorState())
    connection_map = aggregator.aggregate(read_connection_table(), report.proxy_identity, report.direct_identity)
    emit(args, config, fmt, connection_map.to_dict(), fmt.connections)
    return 0


def cmd_watch(args, config, fmt) -> int:
    state = MonitorState()
    monitor = NetworkMonitor(
        state=state,
        scanner_factory=lambda: scanner_from_args(args, config),
        detector=DetectionEngine(**config.detection_options()),
        aggregator=aggregator_from_config(config, state),
    )
    interval = args.interval or config.get("monitor.interval", 5.0)

    def _show(snapshot) -> None:
        data = snapshot.to_dict()
        if (args.output_format or config.get("general.output_format")) == "json":
            print(json.dumps(data, default=str))
            return
        if args.silent:
            return
        print(fmt.header(f"Cycle {state.cycles}"))
        print(fmt.ports(data["ports"]))
        print(fmt.vpn_status(data["vpnStatus"]))
        print(fmt.connections(data["connections"]))
        if data["throughput"]:
            print(fmt.throughput(data["throughput"]))
        print()

    try:
        monitor.watch(interval, _show, max_cycles=args.count)
    except KeyboardInterrupt:
        print(fmt.info("Stopped"), file=sys.stderr)
    return 0


def cmd_api(args, config, fmt) -> int:
    from netscout.api.server import run_server
    run_server(config, host=args.host, port=args.port)
    return 0


def cmd_config(args, config, fmt) -> int:
    if args.action == "init":
        return 0 if create_default_config(config.config_file) else 1
    if args.action == "show":
        print(json.dumps(config.as_dict(), indent=2))
        return 0
    if config.validate():
        print(fmt.success(f"{config.config_file} is valid"))
        return 0
    print(fmt.error(f"{config.config_file} is invalid"))
    return 1


COMMANDS = {
    'ports': cmd_ports,
    'vpn': cmd_vpn,
    'connections': cmd_connections,
    'watch': cmd_watch,
    'api': cmd_api,
    'config': cmd_config,
}


def main(argv=None) -> int:
    """Main CLI entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    config = ConfigManager(args.config)
    if args.command != "config" or args.action != "init":
        try:
            config.load(strict=args.config is not None)
        except ConfigError as e:
            print(ConsoleFormatter(colors=False).error(str(e)), file=sys.stderr)
            return 2

    setup_logging(args, config)
    fmt = ConsoleFormatter(colors=not args.no_color and config.get("general.colors_enabled", True))

    try:
        return COMMANDS[args.command](args, config, fmt)
    except KeyboardInterrupt:
        return 130
    except OSError as e:
        logger.error(f"{args.command} failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
