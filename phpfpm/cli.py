"""Command line interface.

Exit status is 0 on success, 1 on error and 2 when a change was committed
but the PHP-FPM reload failed.
"""

import argparse
import logging
import os
import sys

from . import get_pool_manager, get_runtime_service
from .errors import FPMError, ReloadError
from .interface import PoolRecord, PoolStatus
from .pools import DEFAULT_VERSION

logger = logging.getLogger("phpfpm.cli")

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_RELOAD_WARNING = 2


def setup_logging(debug: bool = False):
    """Configure logging for the application.

    Args:
        debug: If True, enable DEBUG level for our modules (phpfpm, server)
    """
    if debug:
        formatter = logging.Formatter(
            "%(asctime)s.%(msecs)03d %(levelname)-5s [%(name)s:%(lineno)d] %(message)s",
            datefmt="%H:%M:%S",
        )
    else:
        formatter = logging.Formatter(
            "%(asctime)s %(levelname)-5s %(name)s: %(message)s",
            datefmt="%H:%M:%S",
        )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.setLevel(logging.DEBUG if debug else logging.INFO)
    root.addHandler(handler)

    our_level = logging.DEBUG if debug else logging.INFO
    logging.getLogger("phpfpm").setLevel(our_level)
    logging.getLogger("server").setLevel(our_level)

    # Quiet down noisy libraries (even in debug mode)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("uvicorn").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("sse_starlette").setLevel(logging.WARNING)


def _print_pool(pool: PoolRecord):
    print(f"{pool.username}: PHP {pool.php_version} ({pool.provider}) [{pool.status.value}]")
    print(f"  socket: {pool.socket_path}")
    print(f"  config: {pool.config_path}")
    for key, value in sorted(pool.settings.items()):
        print(f"  {key} = {value}")


def _parse_assignments(items: list[str]) -> dict[str, str]:
    overrides = {}
    for item in items:
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise argparse.ArgumentTypeError(f"Expected key=value, got {item!r}")
        overrides[key.strip()] = value.strip()
    return overrides


# ─────────────────────────────────────────────────────────────────
# Commands
# ─────────────────────────────────────────────────────────────────

def cmd_pool_create(args) -> int:
    pool = get_pool_manager().create_pool(args.username, args.php_version, args.provider)
    print(f"Created pool for {pool.username} (PHP {pool.php_version}, {pool.provider})")
    return EXIT_OK


def cmd_pool_delete(args) -> int:
    get_pool_manager().delete_pool(args.username)
    print(f"Deleted pool for {args.username}")
    return EXIT_OK


def cmd_pool_list(args) -> int:
    pools = get_pool_manager().list_pools()
    if not pools:
        print("No pools")
    for pool in pools:
        print(f"{pool.username:<20} {pool.php_version:<6} {pool.provider:<8} {pool.status.value}")
    return EXIT_OK


def cmd_pool_show(args) -> int:
    pool = get_pool_manager().get_pool(args.username)
    if pool is None:
        print(f"No pool for user {args.username}", file=sys.stderr)
        return EXIT_ERROR
    _print_pool(pool)
    return EXIT_OK


def cmd_pool_config(args) -> int:
    pool = get_pool_manager().reconfigure_pool(args.username, _parse_assignments(args.settings))
    print(f"Reconfigured pool for {pool.username}")
    return EXIT_OK


def cmd_pool_status(args) -> int:
    pool = get_pool_manager().set_pool_status(args.username, args.status)
    print(f"Pool for {pool.username} is now {pool.status.value}")
    return EXIT_OK


def cmd_php_install(args) -> int:
    runtime = get_runtime_service().install(args.version, args.provider)
    print(f"PHP {runtime.version} installed via {runtime.provider}")
    return EXIT_OK


def cmd_php_list(args) -> int:
    for version in get_runtime_service().list_installed(args.provider):
        print(version)
    return EXIT_OK


def cmd_php_available(args) -> int:
    for version in get_runtime_service().list_available(args.provider):
        print(version)
    return EXIT_OK


def cmd_providers(args) -> int:
    for info in get_runtime_service().providers():
        marks = []
        if info.default:
            marks.append("default")
        if not info.implemented:
            marks.append("not implemented")
        suffix = f" ({', '.join(marks)})" if marks else ""
        print(f"{info.type:<8} {info.display_name}{suffix}")
    return EXIT_OK


def cmd_server(args) -> int:
    from server.__main__ import serve

    serve(args.host, args.port)
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="lightweight-php", description="Per-user PHP-FPM pool manager")
    parser.add_argument(
        "--debug", "-d",
        action="store_true",
        help="Enable debug logging",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    pool = sub.add_parser("pool", help="Manage pools").add_subparsers(dest="pool_command", required=True)

    p = pool.add_parser("create", help="Create a pool for a user")
    p.add_argument("username")
    p.add_argument("--php-version", default=DEFAULT_VERSION)
    p.add_argument("--provider", default=None)
    p.set_defaults(func=cmd_pool_create)

    p = pool.add_parser("delete", help="Delete a user's pool")
    p.add_argument("username")
    p.set_defaults(func=cmd_pool_delete)

    p = pool.add_parser("list", help="List pools")
    p.set_defaults(func=cmd_pool_list)

    p = pool.add_parser("show", help="Show one pool")
    p.add_argument("username")
    p.set_defaults(func=cmd_pool_show)

    p = pool.add_parser("config", help="Change pool settings")
    p.add_argument("username")
    p.add_argument("settings", nargs="+", metavar="key=value")
    p.set_defaults(func=cmd_pool_config)

    p = pool.add_parser("status", help="Mark a pool active or inactive")
    p.add_argument("username")
    p.add_argument("status", choices=[s.value for s in PoolStatus])
    p.set_defaults(func=cmd_pool_status)

    php = sub.add_parser("php", help="Manage PHP runtimes").add_subparsers(dest="php_command", required=True)

    p = php.add_parser("install", help="Install a PHP version")
    p.add_argument("version")
    p.add_argument("--provider", default=None)
    p.set_defaults(func=cmd_php_install)

    p = php.add_parser("list", help="List installed versions")
    p.add_argument("--provider", default=None)
    p.set_defaults(func=cmd_php_list)

    p = php.add_parser("available", help="List installable versions")
    p.add_argument("--provider", default=None)
    p.set_defaults(func=cmd_php_available)

    p = sub.add_parser("providers", help="List providers")
    p.set_defaults(func=cmd_providers)

    p = sub.add_parser("server", help="Run the REST API")
    p.add_argument("--host", default=None)
    p.add_argument("--port", type=int, default=None)
    p.set_defaults(func=cmd_server)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    debug = args.debug or os.environ.get("DEBUG", "").lower() in ("1", "true", "yes")
    setup_logging(debug=debug)

    if args.command == "server":
        from server.config import config

        args.host = args.host or config.host
        args.port = args.port or config.port

    try:
        return args.func(args)
    except ReloadError as e:
        print(f"warning: change committed but reload failed: {e}", file=sys.stderr)
        return EXIT_RELOAD_WARNING
    except argparse.ArgumentTypeError as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_ERROR
    except FPMError as e:
        logger.debug(f"{args.command} failed: {e!r}")
        print(f"error: {e}", file=sys.stderr)
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
