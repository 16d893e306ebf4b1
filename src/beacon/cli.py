"""CLI entry point for beacon."""

import argparse
import json
import sys
import time

from .config import DiscoveryConfig, config_to_yaml, load_config, merge_cli_args
from .discovery import ServiceChange, ServiceDiscovery
from .exceptions import BeaconError


def _add_common_args(parser: argparse.ArgumentParser) -> None:
    """Add store connection flags shared by every subcommand."""
    parser.add_argument("--config", type=str, help="Path to YAML config file")
    parser.add_argument(
        "--url", type=str,
        help="etcd endpoint (default: $BEACON_ETCD_URL or http://127.0.0.1:2379)",
    )
    parser.add_argument(
        "--namespace", type=str,
        help="Key prefix for registrations (default: $BEACON_NAMESPACE or /services)",
    )
    parser.add_argument("--timeout", type=float, help="Per-request timeout in seconds (default: 5)")
    parser.add_argument(
        "--max-conflict-retries", type=int, dest="max_conflict_retries",
        help="Re-reads after losing a concurrent update (default: 5)",
    )
    parser.add_argument(
        "--format", choices=["text", "json"], default="text",
        help="Output format (default: text)",
    )


def _build_config(args) -> DiscoveryConfig:
    """Build a DiscoveryConfig from a config file + CLI overrides."""
    if args.config:
        config = load_config(args.config)
    else:
        config = DiscoveryConfig()
    merge_cli_args(config, args)
    return config


def _connect(args, install_signal_handlers: bool = False) -> ServiceDiscovery:
    config = _build_config(args)
    config.install_signal_handlers = install_signal_handlers
    return ServiceDiscovery.from_config(config)


def cmd_register(args) -> None:
    """Register NAME -> URI and hold the registration until terminated."""
    discovery = _connect(args, install_signal_handlers=True)
    with discovery:
        discovery.register(args.name, args.uri)
        print(f"Registered {args.uri} under {args.name}; press Ctrl-C to unregister", file=sys.stderr)
        while True:
            time.sleep(args.interval)


def cmd_unregister(args) -> None:
    discovery = _connect(args)
    discovery.unregister(args.name, args.uri)


def cmd_discover(args) -> None:
    discovery = _connect(args)
    endpoint = discovery.discover(args.name)
    if endpoint.is_empty:
        print(f"Service '{args.name}' not found.", file=sys.stderr)
        sys.exit(1)
    if args.format == "json":
        print(json.dumps(endpoint.to_dict(), indent=2))
    else:
        print(endpoint.uri)


def cmd_list(args) -> None:
    discovery = _connect(args)
    endpoints = discovery.endpoints(args.name)
    if args.format == "json":
        print(json.dumps([e.to_dict() for e in endpoints], indent=2))
    else:
        print("\n".join(e.uri for e in endpoints) if endpoints else "(no endpoints)")


def _format_change(change: ServiceChange, fmt: str) -> str:
    if fmt == "json":
        return json.dumps({
            "name": change.name,
            "action": change.action,
            "index": change.index,
            "uri": list(change.record),
        })
    uris = ",".join(change.record) or "-"
    return f"{change.index}  {change.name}  {change.action}  {uris}"


def cmd_watch(args) -> None:
    """Print every change to NAME until interrupted."""
    discovery = _connect(args)

    def _print_change(change: ServiceChange) -> None:
        print(_format_change(change, args.format), flush=True)

    with discovery:
        discovery.watch(args.name, _print_change)
        print(f"Watching {args.name}; press Ctrl-C to stop", file=sys.stderr)
        try:
            while True:
                time.sleep(1)
        except KeyboardInterrupt:
            pass


def cmd_config(args) -> None:
    """Print the effective configuration."""
    print(config_to_yaml(_build_config(args)), end="")


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="beacon",
        description="beacon: service registration and discovery over etcd",
    )
    subparsers = parser.add_subparsers(dest="command")

    # register
    reg = subparsers.add_parser(
        "register", help="Register a URI and keep it registered until terminated",
    )
    _add_common_args(reg)
    reg.add_argument("name", type=str, help="Service name")
    reg.add_argument("uri", type=str, help="Address to advertise, as host:port")
    reg.add_argument(
        "--interval", type=float, default=30,
        help="Seconds between wake-ups while holding the registration (default: 30)",
    )
    reg.set_defaults(func=cmd_register)

    # unregister
    unreg = subparsers.add_parser("unregister", help="Remove a URI from a service")
    _add_common_args(unreg)
    unreg.add_argument("name", type=str, help="Service name")
    unreg.add_argument("uri", type=str, help="Address to remove, as host:port")
    unreg.set_defaults(func=cmd_unregister)

    # discover
    disc = subparsers.add_parser("discover", help="Resolve a service name to one endpoint")
    _add_common_args(disc)
    disc.add_argument("name", type=str, help="Service name")
    disc.set_defaults(func=cmd_discover)

    # list
    lst = subparsers.add_parser("list", help="List every endpoint registered for a service")
    _add_common_args(lst)
    lst.add_argument("name", type=str, help="Service name")
    lst.set_defaults(func=cmd_list)

    # watch
    wat = subparsers.add_parser("watch", help="Print changes to a service's endpoints")
    _add_common_args(wat)
    wat.add_argument("name", type=str, help="Service name")
    wat.set_defaults(func=cmd_watch)

    # config
    cfg = subparsers.add_parser("config", help="Show the effective configuration")
    _add_common_args(cfg)
    cfg.set_defaults(func=cmd_config)

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        args.func(args)
    except BeaconError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
