"""Command-line interface: claimenv claim | release | renew | status | read | write | env."""

import argparse
import asyncio
import json
import shlex
import sys
from typing import Optional

from loguru import logger

from . import __version__
from .backends import build_engine
from .config import Config
from .engine import Engine
from .errors import BackendError, ClaimenvError, CloseError, ConfigError
from .identity import resolve_identity
from .lease import delete_lease, load_lease, save_lease
from .lockstore.base import SlotStatus
from .pools import find_config_path, load_config

EXIT_TIMEOUT = 10
EXIT_INTERRUPTED = 130

TIME_FORMAT = "%Y-%m-%d %H:%M:%S %Z"


def configure_logging(level: str) -> None:
    """Route loguru to stderr at the requested level."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level,
        format="<level>{level: <8}</level> | {message}",
    )


def _note(message: str) -> None:
    print(message, file=sys.stderr)


# ============================================================================
# COMMANDS
# ============================================================================


async def cmd_claim(engine: Engine, args: argparse.Namespace) -> int:
    try:
        existing = load_lease(args.lease_file)
    except ClaimenvError:
        existing = None
    if existing is not None:
        raise ClaimenvError(
            f"already holding slot '{existing.slot_name}' in pool '{existing.pool}' "
            f"(lease: {existing.lease_id}). Release it first with: claimenv release"
        )

    lease = await engine.claim(args.pool)
    save_lease(args.lease_file, lease)
    _note(
        f"Claimed slot '{lease.slot_name}' from pool '{lease.pool}' "
        f"(lease: {lease.lease_id}, expires: {lease.expires_at.strftime(TIME_FORMAT)})"
    )
    return 0


async def cmd_release(engine: Engine, args: argparse.Namespace) -> int:
    if args.pool:
        await engine.release_by_holder(args.pool)
        _note(f"Released claim in pool '{args.pool}' (holder: {engine.holder})")
        return 0

    lease = load_lease(args.lease_file)
    await engine.release(lease)
    delete_lease(args.lease_file)
    _note(f"Released slot '{lease.slot_name}' from pool '{lease.pool}'")
    return 0


async def cmd_renew(engine: Engine, args: argparse.Namespace) -> int:
    lease = load_lease(args.lease_file)
    renewed = await engine.renew(lease)
    save_lease(args.lease_file, renewed)
    _note(
        f"Renewed lease for slot '{renewed.slot_name}' in pool '{renewed.pool}' "
        f"(new expiry: {renewed.expires_at.strftime(TIME_FORMAT)})"
    )
    return 0


def format_status_table(statuses: list[SlotStatus]) -> str:
    rows = [("SLOT", "STATUS", "HOLDER", "EXPIRES")]
    for status in statuses:
        if status.claimed and status.claim is not None:
            rows.append(
                (
                    status.slot_name,
                    "claimed",
                    status.claim.holder,
                    status.claim.expires_at.strftime(TIME_FORMAT),
                )
            )
        else:
            rows.append((status.slot_name, "free", "-", "-"))

    widths = [max(len(row[i]) for row in rows) for i in range(len(rows[0]))]
    return "\n".join(
        "  ".join(cell.ljust(width) for cell, width in zip(row, widths)).rstrip() for row in rows
    )


async def cmd_status(engine: Engine, args: argparse.Namespace) -> int:
    statuses = await engine.status(args.pool)
    if args.json:
        print(json.dumps([s.to_dict() for s in statuses], indent=2))
    else:
        print(format_status_table(statuses))
    return 0


async def cmd_read(engine: Engine, args: argparse.Namespace) -> int:
    lease = load_lease(args.lease_file)
    value = await engine.read_key(lease, args.key)
    sys.stdout.write(value)
    return 0


async def cmd_write(engine: Engine, args: argparse.Namespace) -> int:
    lease = load_lease(args.lease_file)
    await engine.write_key(lease, args.key, args.value)
    _note(f"Wrote {args.key} to slot '{lease.slot_name}' in pool '{lease.pool}'")
    return 0


def format_env(values: dict[str, str], fmt: str) -> str:
    """Render key/value pairs as export lines, dotenv lines or JSON."""
    keys = sorted(values)
    if fmt == "json":
        return json.dumps({k: values[k] for k in keys}, indent=2)
    if fmt == "dotenv":
        return "\n".join(f"{k}={values[k]}" for k in keys)
    return "\n".join(f"export {k}={shlex.quote(values[k])}" for k in keys)


async def cmd_env(engine: Engine, args: argparse.Namespace) -> int:
    lease = load_lease(args.lease_file)
    values = await engine.read_all(lease)
    print(format_env(values, args.format))
    return 0


async def cmd_secret_name(engine: Engine, args: argparse.Namespace) -> int:
    lease = load_lease(args.lease_file)
    print(engine.secret_name(lease, args.key))
    return 0


async def cmd_check(engine: Engine, args: argparse.Namespace) -> int:
    healthy, message = await engine.health()
    if not healthy:
        raise BackendError(message)
    _note(f"Lock store reachable: {message}")
    return 0


# ============================================================================
# ENTRY POINT
# ============================================================================


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="claimenv",
        description=(
            "Claim exclusive environment variable sets from a shared pool. "
            "Use it in CI/CD to claim a set of credentials for a preview "
            "deployment so no two environments share the same credentials."
        ),
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--config", help="config file path (default: ./claimenv.yaml)")
    parser.add_argument(
        "--lease-file",
        default=Config.LEASE_FILE,
        help=f"lease file path (default: {Config.LEASE_FILE})",
    )
    parser.add_argument(
        "--log-level",
        type=str.upper,
        choices=Config.LOG_LEVELS,
        default=Config.LOG_LEVEL,
        help=f"loguru log level (default: {Config.LOG_LEVEL})",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("claim", help="claim an available slot from a pool")
    p.add_argument("pool")
    p.set_defaults(handler=cmd_claim)

    p = sub.add_parser(
        "release",
        help="release the current claim",
        description=(
            "With no arguments, releases using the local lease file. With a pool "
            "name, releases by holder identity (no lease file needed)."
        ),
    )
    p.add_argument("pool", nargs="?")
    p.set_defaults(handler=cmd_release)

    p = sub.add_parser("renew", help="extend the TTL on the current claim")
    p.set_defaults(handler=cmd_renew)

    p = sub.add_parser("status", help="show the status of all slots in a pool")
    p.add_argument("pool")
    p.add_argument("--json", action="store_true", help="output as JSON")
    p.set_defaults(handler=cmd_status)

    p = sub.add_parser("read", help="read a single env var from the claimed slot")
    p.add_argument("key")
    p.set_defaults(handler=cmd_read)

    p = sub.add_parser("write", help="write a single env var to the claimed slot")
    p.add_argument("key")
    p.add_argument("value")
    p.set_defaults(handler=cmd_write)

    p = sub.add_parser("env", help="dump all env vars from the claimed slot")
    p.add_argument("--format", choices=("export", "dotenv", "json"), default="export")
    p.set_defaults(handler=cmd_env)

    p = sub.add_parser("secret-name", help="print the backend secret name for a key")
    p.add_argument("key")
    p.set_defaults(handler=cmd_secret_name)

    p = sub.add_parser("check", help="verify the config loads and the lock backend is reachable")
    p.set_defaults(handler=cmd_check)

    return parser


async def _run(args: argparse.Namespace) -> int:
    try:
        Config.validate()
    except ValueError as e:
        raise ConfigError(str(e)) from e

    config = load_config(find_config_path(args.config))
    engine = build_engine(config, resolve_identity())

    try:
        result = await asyncio.wait_for(args.handler(engine, args), timeout=Config.OPERATION_TIMEOUT)
    except BaseException:
        try:
            await engine.close()
        except CloseError as close_error:
            logger.error(f"{close_error}")
        raise

    await engine.close()
    return result


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    # argparse does not check defaults against choices; CLAIMENV_LOG_LEVEL lands here
    if args.log_level not in Config.LOG_LEVELS:
        print(f"error: invalid log level: {args.log_level}", file=sys.stderr)
        return ConfigError.exit_code
    configure_logging(args.log_level)

    try:
        return asyncio.run(_run(args))
    except ClaimenvError as e:
        print(f"error: {e}", file=sys.stderr)
        return e.exit_code
    except asyncio.TimeoutError:
        print(f"error: operation timed out after {Config.OPERATION_TIMEOUT}s", file=sys.stderr)
        return EXIT_TIMEOUT
    except KeyboardInterrupt:
        return EXIT_INTERRUPTED


def run() -> None:
    sys.exit(main())
