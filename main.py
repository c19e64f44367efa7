# ABOUTME: Command-line interface for running cloud CLI operations through the response cache
# ABOUTME: Subcommands resolve commands, report statistics, invalidate entries and recommend warming

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from cachemodels import DEFAULT_TTL_TABLE, CacheConfig, WarmingConfig
from opcache import (
    CacheError,
    CacheManager,
    CacheOrchestrator,
    CommandExecutor,
    FetchError,
    InvalidationEngine,
    ValidationError,
)
from opcache.metrics import summarize
from warming import WarmingScheduler

logger = logging.getLogger("opcache")


def parse_params(pairs: List[str]) -> Dict[str, Any]:
    """Parse repeated key=value arguments; values are JSON when they parse as JSON"""
    params: Dict[str, Any] = {}
    for pair in pairs:
        if "=" not in pair:
            raise ValueError(f"Parameter must be key=value: {pair}")
        key, raw = pair.split("=", 1)
        try:
            params[key] = json.loads(raw)
        except json.JSONDecodeError:
            params[key] = raw
    return params


def build_config(args: argparse.Namespace) -> CacheConfig:
    return CacheConfig(
        disk_root=Path(args.cache_dir).expanduser(),
        max_memory_entries=args.max_memory_entries,
        offline_mode=args.offline,
        simulate_failure=args.simulate_failure,
        default_profile=args.default_profile,
        default_region=args.default_region,
    )


def print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


async def cmd_run(orchestrator: CacheOrchestrator, args: argparse.Namespace) -> int:
    command = [part for part in args.command if part != "--"]
    if not command:
        print("Error: no command given after --", file=sys.stderr)
        return 2

    executor = CommandExecutor(timeout=args.timeout)
    orchestrator.metrics.load()
    try:
        result = await orchestrator.resolve_request(
            args.service,
            args.operation,
            parse_params(args.param),
            executor.fetch_for(command),
            category=args.category,
            profile=args.profile,
            region=args.region,
        )
    except FetchError as e:
        print_json(e.to_dict())
        return 1
    finally:
        orchestrator.metrics.persist()

    print_json(result)
    return 0


async def cmd_stats(orchestrator: CacheOrchestrator, args: argparse.Namespace) -> int:
    orchestrator.metrics.load()
    keys = await orchestrator.manager.disk_cache.keys()
    grouped = orchestrator.metrics.grouped_stats(by=args.group_by)
    print_json(
        {
            "disk_entries": len(keys),
            "disk_root": str(orchestrator.config.disk_root),
            "overall": summarize(orchestrator.metrics.records()).model_dump(),
            "groups": {name: s.model_dump() for name, s in sorted(grouped.items())},
        }
    )
    return 0


async def cmd_invalidate(
    orchestrator: CacheOrchestrator, args: argparse.Namespace
) -> int:
    engine = InvalidationEngine(orchestrator.manager)

    if args.key:
        removed = await engine.invalidate_key(args.key)
    elif args.pattern:
        removed = await engine.invalidate_by_pattern(args.pattern)
    elif args.older_than is not None:
        removed = await engine.invalidate_expired(args.older_than)
    elif args.resource:
        if not args.service:
            print("Error: --resource requires --service", file=sys.stderr)
            return 2
        resource_type, resource_id = args.resource
        if args.cascade:
            removed = await engine.cascade_invalidate(
                args.service, resource_type, resource_id
            )
        else:
            removed = await engine.invalidate_by_resource(
                args.service, resource_type, resource_id
            )
    elif args.service and args.operation:
        removed = await engine.invalidate_by_operation(args.service, args.operation)
    elif args.service:
        removed = await engine.invalidate_by_service(args.service)
    elif args.profile:
        removed = await engine.invalidate_by_profile(args.profile)
    else:
        print("Error: nothing to invalidate, see --help", file=sys.stderr)
        return 2

    print_json({"removed": removed})
    return 0


async def cmd_clear(orchestrator: CacheOrchestrator, args: argparse.Namespace) -> int:
    removed = await orchestrator.manager.clear_all()
    if args.metrics:
        orchestrator.metrics.reset()
        orchestrator.metrics.persist()
    print_json({"removed": removed})
    return 0


async def cmd_warm(orchestrator: CacheOrchestrator, args: argparse.Namespace) -> int:
    orchestrator.metrics.load()
    scheduler = WarmingScheduler(
        orchestrator,
        fetch_factory=lambda job: None,
        warming_config=WarmingConfig(min_accesses=args.min_accesses, max_jobs=args.limit),
    )
    recommendations = scheduler.analyze_usage(orchestrator.metrics.records())
    print_json([r.model_dump() for r in recommendations[: args.limit]])
    return 0


COMMANDS = {
    "run": cmd_run,
    "stats": cmd_stats,
    "invalidate": cmd_invalidate,
    "clear": cmd_clear,
    "warm": cmd_warm,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Multi-tier response cache for slow cloud CLI operations",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py run ec2 describe-instances --category volatile -- aws ec2 describe-instances
  python main.py stats --group-by operation
  python main.py invalidate --service stepfunctions
  python main.py invalidate --service ec2 --resource instance i-0abc --cascade
  python main.py invalidate --pattern 'prod:*:s3:**'
        """,
    )
    parser.add_argument(
        "--cache-dir", default=str(Path.home() / ".opcache"), help="Disk tier root"
    )
    parser.add_argument(
        "--max-memory-entries", type=int, default=1000, help="Memory tier bound"
    )
    parser.add_argument(
        "--offline", action="store_true", help="Serve cached entries only"
    )
    parser.add_argument(
        "--simulate-failure", action="store_true", help="Fail every fetch"
    )
    parser.add_argument("--default-profile", default="default")
    parser.add_argument("--default-region", default="us-east-1")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="subcommand", required=True)

    run = subparsers.add_parser("run", help="Resolve a command through the cache")
    run.add_argument("service")
    run.add_argument("operation")
    run.add_argument(
        "--param", action="append", default=[], help="Request parameter key=value"
    )
    run.add_argument(
        "--category",
        default="standard",
        help=f"TTL category ({', '.join(DEFAULT_TTL_TABLE)})",
    )
    run.add_argument("--profile")
    run.add_argument("--region")
    run.add_argument("--timeout", type=float, default=60.0)
    run.add_argument("command", nargs=argparse.REMAINDER)

    stats = subparsers.add_parser("stats", help="Show cache and latency statistics")
    stats.add_argument(
        "--group-by", choices=["service", "operation", "cache_key"], default="service"
    )

    invalidate = subparsers.add_parser("invalidate", help="Invalidate entries")
    invalidate.add_argument("--key")
    invalidate.add_argument("--pattern")
    invalidate.add_argument("--service")
    invalidate.add_argument("--operation")
    invalidate.add_argument("--profile")
    invalidate.add_argument("--resource", nargs=2, metavar=("TYPE", "ID"))
    invalidate.add_argument("--cascade", action="store_true")
    invalidate.add_argument("--older-than", type=float, metavar="SECONDS")

    clear = subparsers.add_parser("clear", help="Remove every cached entry")
    clear.add_argument("--metrics", action="store_true", help="Also reset metrics")

    warm = subparsers.add_parser("warm", help="Recommend keys worth warming")
    warm.add_argument("--min-accesses", type=int, default=2)
    warm.add_argument("--limit", type=int, default=20)

    return parser


async def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point"""
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    try:
        manager = CacheManager(build_config(args))
        orchestrator = CacheOrchestrator(manager)
        await orchestrator.initialize()
        try:
            return await COMMANDS[args.subcommand](orchestrator, args)
        finally:
            await manager.close()
    except (ValidationError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2
    except CacheError as e:
        print_json(e.to_dict())
        return 1


def cli() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
