from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Callable, Sequence

from .config import config_sha256, load_config, resolve_caller
from .config_schema import AppConfig
from .errors import ConfigError, RegistryError, StorageError
from .event import SignedEvent, signed_event_from_nostr
from .run_log import RunLogger
from .service import PostRegistry, open_registry

Handler = Callable[[argparse.Namespace, AppConfig, PostRegistry], int]


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="etch_registry")

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        required=True,
        help="Path to YAML config file.",
    )
    common.add_argument(
        "--log",
        default=None,
        help="JSONL run log path (overrides logging.path).",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    create = subparsers.add_parser(
        "create-post",
        parents=[common],
        help="Record a signed event as a post token.",
    )
    create.add_argument("--caller", default=None, help="Acting principal.")
    create.add_argument("--uri", required=True, help="Metadata URI for the post.")
    create.add_argument("--event", required=True, help="Path to a Nostr event JSON file.")
    create.add_argument(
        "--token-id",
        type=int,
        default=None,
        help="Token id (multi-instance registries only).",
    )
    create.add_argument("--quantity", type=int, default=1, help="Units to issue.")
    create.add_argument(
        "--allow-multiple",
        action="store_true",
        help="Issue more units of an existing token id instead of failing.",
    )
    create.set_defaults(_handler=_cmd_create_post)

    update = subparsers.add_parser(
        "update-post",
        parents=[common],
        help="Replace the metadata URI of an existing post.",
    )
    update.add_argument("--caller", default=None, help="Acting principal.")
    update.add_argument("--token-id", type=int, required=True)
    update.add_argument("--uri", required=True)
    update.add_argument("--event", required=True, help="Path to a Nostr event JSON file.")
    update.set_defaults(_handler=_cmd_update_post)

    for name, handler, help_text in (
        ("grant-role", _cmd_grant_role, "Grant a role to an account."),
        ("revoke-role", _cmd_revoke_role, "Revoke a role from an account."),
    ):
        role = subparsers.add_parser(name, parents=[common], help=help_text)
        role.add_argument("--caller", default=None, help="Acting principal (an admin).")
        role.add_argument("--role", default="MINTER_ROLE")
        role.add_argument("--account", required=True)
        role.set_defaults(_handler=handler)

    show = subparsers.add_parser(
        "show",
        parents=[common],
        help="Print the state of one post.",
    )
    show.add_argument("--token-id", type=int, required=True)
    show.add_argument("--owner", default=None, help="Also print this owner's balance.")
    show.set_defaults(_handler=_cmd_show)

    stats = subparsers.add_parser(
        "stats",
        parents=[common],
        help="Print registry counters.",
    )
    stats.set_defaults(_handler=_cmd_stats)

    events = subparsers.add_parser(
        "events",
        parents=[common],
        help="Print persisted audit records as JSON lines.",
    )
    events.add_argument("--token-id", type=int, default=None)
    events.set_defaults(_handler=_cmd_events)

    return parser


def _eprint(message: str) -> None:
    print(message, file=sys.stderr)


def _load_event(path: str) -> SignedEvent:
    p = Path(path)
    try:
        obj: Any = json.loads(p.read_text(encoding="utf-8"))
    except OSError as e:
        raise ValueError(f"Failed to read event file: {p}") from e
    except json.JSONDecodeError as e:
        raise ValueError(f"Event file is not valid JSON: {p}: {e}") from e
    return signed_event_from_nostr(obj)


def _cmd_create_post(args: argparse.Namespace, cfg: AppConfig, registry: PostRegistry) -> int:
    caller = resolve_caller(cfg, args.caller)
    event = _load_event(args.event)

    token_id = registry.create_post(
        caller,
        args.uri,
        event,
        token_id=args.token_id,
        quantity=args.quantity,
        allow_multiple=bool(args.allow_multiple),
    )

    print(f"token_id={token_id}")
    print(f"balance={registry.balance_of(caller, token_id)}")
    print(f"total_posts={registry.total_posts()}")
    return 0


def _cmd_update_post(args: argparse.Namespace, cfg: AppConfig, registry: PostRegistry) -> int:
    caller = resolve_caller(cfg, args.caller)
    event = _load_event(args.event)

    registry.update_post(caller, args.token_id, args.uri, event)

    print(f"token_id={args.token_id}")
    print(f"uri={registry.uri(args.token_id)}")
    return 0


def _cmd_grant_role(args: argparse.Namespace, cfg: AppConfig, registry: PostRegistry) -> int:
    caller = resolve_caller(cfg, args.caller)
    changed = registry.grant_role(args.role, args.account, caller=caller)
    print(f"granted={str(changed).lower()}")
    return 0


def _cmd_revoke_role(args: argparse.Namespace, cfg: AppConfig, registry: PostRegistry) -> int:
    caller = resolve_caller(cfg, args.caller)
    changed = registry.revoke_role(args.role, args.account, caller=caller)
    print(f"revoked={str(changed).lower()}")
    return 0


def _cmd_show(args: argparse.Namespace, cfg: AppConfig, registry: PostRegistry) -> int:
    state = registry.post(args.token_id)
    print(f"token_id={args.token_id}")
    print(f"exists={str(state.exists).lower()}")
    print(f"uri={state.uri}")
    print(f"total_issued={state.total_issued}")
    if args.owner:
        print(f"balance={registry.balance_of(args.owner, args.token_id)}")
    return 0


def _cmd_stats(args: argparse.Namespace, cfg: AppConfig, registry: PostRegistry) -> int:
    print(f"variant={registry.variant}")
    print(f"total_posts={registry.total_posts()}")
    print(f"current_token_id={registry.current_token_id()}")
    return 0


def _cmd_events(args: argparse.Namespace, cfg: AppConfig, registry: PostRegistry) -> int:
    for record in registry.events(token_id=args.token_id):
        print(json.dumps(record.to_dict(), ensure_ascii=False, sort_keys=True))
    return 0


def _run(args: argparse.Namespace, handler: Handler) -> int:
    log: RunLogger | None = RunLogger.open(args.log) if args.log else None
    try:
        if log is not None:
            log.info("command_started", command=args.command, config_path=str(args.config))

        cfg = load_config(args.config)

        if log is None and cfg.logging.path:
            log = RunLogger.open(cfg.logging.path, overwrite=cfg.logging.overwrite)
            log.info("command_started", command=args.command, config_path=str(args.config))

        if log is not None:
            log.info("config_loaded", config_sha256=config_sha256(cfg), variant=cfg.registry.variant)

        with open_registry(cfg, logger=log) as registry:
            return int(handler(args, cfg, registry))
    except Exception as e:
        if log is not None:
            log.exception("command_failed", exc=e, command=args.command)
        raise
    finally:
        if log is not None:
            log.close()


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    try:
        handler = getattr(args, "_handler")
        return _run(args, handler)
    except ConfigError as e:
        _eprint(str(e))
        return 2
    except StorageError as e:
        _eprint(str(e))
        return 3
    except (RegistryError, ValueError) as e:
        _eprint(str(e))
        return 5
    except KeyboardInterrupt:
        _eprint("Interrupted")
        return 130
    except Exception as e:
        _eprint(f"Unexpected error: {e}")
        return 1
