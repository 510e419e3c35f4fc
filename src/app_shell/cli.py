import argparse
import logging
import os
import sys
from datetime import date, timedelta
from pathlib import Path

from src.adapters.clock import SystemClock
from src.adapters.kv_sqlite import SQLiteKeyValueStore
from src.adapters.log_notifier import LoggingGoalNotifier
from src.adapters.site_directory import KVSiteDirectory
from src.api.auth_utils import create_user_token
from src.components.analytics import PurgeInput, run_purge
from src.components.goals import CheckGoalsInput, GoalConfig, run_check
from src.core.errors import ValidationError
from src.core.ports.kv import KeyValueStorePort
from src.rules.loader import load_rules
from src.rules.models import Rules

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("cli")

DATA_DIR = os.environ.get("ZTA_DATA_DIR", "./data")
RULES_PATH = os.environ.get("ZTA_RULES_PATH", "rules.yaml")


def get_store(data_dir: str = DATA_DIR) -> SQLiteKeyValueStore:
    Path(data_dir).mkdir(parents=True, exist_ok=True)
    return SQLiteKeyValueStore(str(Path(data_dir) / "analytics.db"))


def get_rules(rules_path: str = RULES_PATH) -> Rules:
    if not Path(rules_path).exists():
        logger.error("Rules file %s not found.", rules_path)
        sys.exit(1)
    return load_rules(Path(rules_path))


def handle_purge(store: KeyValueStorePort, args: argparse.Namespace) -> None:
    if args.before:
        before = date.fromisoformat(args.before)
    else:
        before = SystemClock().today_utc() - timedelta(days=args.days)
    out = run_purge(PurgeInput(site_id=args.site, before=before), store=store)
    if not out.success:
        logger.error("Invalid site ID %r.", args.site)
        sys.exit(1)
    print(f"Purged {out.deleted_keys} keys before {before.isoformat()} for site {args.site}.")


def handle_delete_site(store: KeyValueStorePort, args: argparse.Namespace) -> None:
    if not args.yes:
        logger.error("Refusing to delete site %s without --yes.", args.site)
        sys.exit(1)
    out = run_purge(PurgeInput(site_id=args.site), store=store)
    if not out.success:
        logger.error("Invalid site ID %r.", args.site)
        sys.exit(1)
    print(f"Deleted {out.deleted_keys} keys for site {args.site}.")


def handle_register_site(store: KeyValueStorePort, args: argparse.Namespace) -> None:
    try:
        site = KVSiteDirectory(store).register(args.site, args.owner, args.domain)
    except ValidationError as e:
        logger.error("%s", e.message)
        sys.exit(1)
    print(f"Registered site {site.site_id} ({site.domain}) for owner {site.owner_id}.")


def handle_token(args: argparse.Namespace) -> None:
    print(create_user_token(args.user))


def handle_check_goals(store: KeyValueStorePort, rules: Rules, args: argparse.Namespace) -> None:
    out = run_check(
        CheckGoalsInput(site_id=args.site),
        store=store,
        notifier=LoggingGoalNotifier(),
        config=GoalConfig.from_rules(rules),
    )
    for progress in out.goals:
        state = "complete" if progress.evaluation.is_complete else f"{progress.evaluation.progress}%"
        print(
            f"{progress.goal.name}: {progress.evaluation.current_value} / "
            f"{progress.goal.target} ({state})"
        )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Zero Trust Analytics CLI")
    parser.add_argument("--data-dir", default=DATA_DIR, help="Directory holding analytics.db")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # purge
    purge_parser = subparsers.add_parser("purge", help="Delete dated aggregates older than a cutoff")
    purge_parser.add_argument("--site", required=True, help="Site ID")
    cutoff = purge_parser.add_mutually_exclusive_group()
    cutoff.add_argument("--before", help="Cutoff date (YYYY-MM-DD), exclusive")
    cutoff.add_argument("--days", type=int, default=365, help="Keep this many days (default 365)")

    # delete-site
    delete_parser = subparsers.add_parser("delete-site", help="Delete every key owned by a site")
    delete_parser.add_argument("--site", required=True, help="Site ID")
    delete_parser.add_argument("--yes", action="store_true", help="Confirm deletion")

    # register-site
    register_parser = subparsers.add_parser("register-site", help="Write a site record")
    register_parser.add_argument("--site", required=True, help="Site ID")
    register_parser.add_argument("--owner", required=True, help="Owner user ID")
    register_parser.add_argument("--domain", required=True, help="Site domain")

    # token
    token_parser = subparsers.add_parser("token", help="Issue an access token for a user")
    token_parser.add_argument("--user", required=True, help="User ID")

    # check-goals
    goals_parser = subparsers.add_parser("check-goals", help="Evaluate a site's goals")
    goals_parser.add_argument("--site", required=True, help="Site ID")

    return parser


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)

    if args.command == "token":
        handle_token(args)
        return

    store = get_store(args.data_dir)
    if args.command == "purge":
        handle_purge(store, args)
    elif args.command == "delete-site":
        handle_delete_site(store, args)
    elif args.command == "register-site":
        handle_register_site(store, args)
    elif args.command == "check-goals":
        handle_check_goals(store, get_rules(), args)


if __name__ == "__main__":
    main()
