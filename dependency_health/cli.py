"""
Dependency Monitor CLI.

============================================================
USAGE
============================================================
    dependency-monitor check
    dependency-monitor check --dependencies deps.yaml
    dependency-monitor run --interval 30
    dependency-monitor run --serve --host 0.0.0.0 --port 8080
    python -m dependency_health run --config monitor.yaml

============================================================
COMMANDS
============================================================
    run     Periodic monitoring loop (optionally with the HTTP API)
    check   One cycle; prints the snapshot JSON and exits
            0 when overall healthy, 1 otherwise

============================================================
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from aiohttp import web
from dotenv import find_dotenv, load_dotenv

from .api import HealthEncoder, create_health_app
from .catalog import build_default_registry
from .config import MonitorConfig
from .exceptions import ConfigurationError
from .models import HealthStatus
from .notifications import transport_from_env
from .registry import DependencyRegistry
from .scheduler import DependencyMonitor
from .store import InMemorySnapshotStore, JsonFileSnapshotStore, SnapshotStore


logger = logging.getLogger(__name__)


# ============================================================
# LOGGING
# ============================================================

def setup_logging(level: str = "INFO") -> None:
    """Configure logging."""
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


# ============================================================
# ARGUMENT PARSER
# ============================================================

def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="dependency-monitor",
        description="Health monitor for the arbitrage engine's external dependencies",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        type=Path,
        default=None,
        help="YAML monitor configuration (default: environment / defaults)",
    )
    common.add_argument(
        "--dependencies",
        type=Path,
        default=None,
        help="YAML dependency registry (default: built-in catalog)",
    )
    common.add_argument(
        "--interval",
        type=float,
        default=None,
        help="Check interval in seconds (overrides config)",
    )
    common.add_argument(
        "--state-file",
        type=Path,
        default=None,
        help="Persist snapshots to this JSON file",
    )
    common.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser(
        "run",
        parents=[common],
        help="Run the monitoring loop",
    )
    run_parser.add_argument(
        "--serve",
        action="store_true",
        help="Expose the health HTTP API",
    )
    run_parser.add_argument(
        "--host",
        type=str,
        default="127.0.0.1",
        help="API host (default: 127.0.0.1)",
    )
    run_parser.add_argument(
        "--port",
        type=int,
        default=8080,
        help="API port (default: 8080)",
    )

    subparsers.add_parser(
        "check",
        parents=[common],
        help="Run one cycle and print the snapshot",
    )

    parser.add_argument(
        "--version", "-v",
        action="version",
        version="%(prog)s 1.0.0",
    )

    return parser


# ============================================================
# BUILDERS
# ============================================================

def build_config(args: argparse.Namespace) -> MonitorConfig:
    """Monitor config from --config or the environment, plus overrides."""
    if args.config:
        config = MonitorConfig.from_yaml(args.config)
    else:
        config = MonitorConfig.from_env()

    if args.interval is not None:
        if args.interval <= 0:
            raise ConfigurationError(
                "--interval must be positive",
                config_key="check_interval_seconds",
                actual_value=str(args.interval),
            )
        config.check_interval_seconds = args.interval
    return config


def build_registry(args: argparse.Namespace) -> DependencyRegistry:
    if args.dependencies:
        return DependencyRegistry.from_yaml(args.dependencies)
    return build_default_registry()


def build_store(args: argparse.Namespace) -> SnapshotStore:
    if args.state_file:
        return JsonFileSnapshotStore(args.state_file)
    return InMemorySnapshotStore()


def build_monitor(args: argparse.Namespace) -> DependencyMonitor:
    """Wire the monitor; .env from the working directory is loaded first."""
    load_dotenv(find_dotenv(usecwd=True))
    return DependencyMonitor(
        build_registry(args),
        build_config(args),
        store=build_store(args),
        transport=transport_from_env(),
    )


# ============================================================
# COMMANDS
# ============================================================

async def run_check(monitor: DependencyMonitor) -> int:
    """One cycle; exit code from the overall status."""
    try:
        snapshot = await monitor.run_cycle()
    finally:
        await monitor.close()

    print(json.dumps(snapshot.to_dict(), cls=HealthEncoder, indent=2))
    return 0 if snapshot.overall_status == HealthStatus.HEALTHY else 1


async def run_monitor(
    monitor: DependencyMonitor,
    serve: bool = False,
    host: str = "127.0.0.1",
    port: int = 8080,
) -> int:
    """Run the loop (and the API) until cancelled."""
    await monitor.load_cached_snapshot()

    runner: Optional[web.AppRunner] = None
    if serve:
        runner = web.AppRunner(create_health_app(monitor))
        await runner.setup()
        site = web.TCPSite(runner, host, port)
        await site.start()
        logger.info(f"Health API started at http://{host}:{port}")

    try:
        await monitor.run_forever()
    finally:
        if runner is not None:
            await runner.cleanup()
    return 0


async def async_main(args: argparse.Namespace) -> int:
    """
    Async main entry point.

    Returns:
        Exit code
    """
    monitor = build_monitor(args)

    if args.command == "check":
        return await run_check(monitor)

    return await run_monitor(
        monitor,
        serve=args.serve,
        host=args.host,
        port=args.port,
    )


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main CLI entry point.

    Args:
        argv: Command line arguments (default: sys.argv[1:])

    Returns:
        Exit code
    """
    parser = create_parser()
    args = parser.parse_args(argv)
    setup_logging(args.log_level)

    try:
        return asyncio.run(async_main(args))
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130


if __name__ == "__main__":
    sys.exit(main())
