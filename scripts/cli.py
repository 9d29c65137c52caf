"""Minimal CLI entry point for manual testing of Mail Digest."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from mail_digest.config.accounts import load_accounts, select_accounts
from mail_digest.config.settings import MailDigestSettings
from mail_digest.core.auth import OAuth2SessionEngine
from mail_digest.core.exceptions import ConfigurationError
from mail_digest.core.models import FetchProgress
from mail_digest.pipeline.synchronizer import DigestSynchronizer


def setup_logging(level: str) -> None:
    """Configure logging with timestamp and module info."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def on_progress(progress: FetchProgress) -> None:
    """Print progress updates to stdout."""
    print(
        f"[{progress.current_stage}] "
        f"batch={progress.batch_size} "
        f"fetched={progress.fetched}/{progress.total} "
        f"({progress.percent:.1f}%)",
        end="\r",
        flush=True,
    )


def _parse_ids(values: list[str]) -> list[int]:
    """Accept ids as separate arguments or comma lists, e.g. ``3 5,7``."""
    ids: list[int] = []
    for value in values:
        for part in value.split(","):
            part = part.strip()
            if not part:
                continue
            if not part.isdigit() or int(part) <= 0:
                raise argparse.ArgumentTypeError(f"invalid message id: {part!r}")
            ids.append(int(part))
    return ids


def _add_account_args(subparser: argparse.ArgumentParser) -> None:
    """Add --account selection to a subparser."""
    subparser.add_argument(
        "--account",
        "-a",
        action="append",
        default=None,
        help="Account name or address (repeatable, default: all accounts)",
    )


def _add_target_args(subparser: argparse.ArgumentParser) -> None:
    """Add the single account/folder/ids target of a flag operation."""
    subparser.add_argument("account", help="Account name or address")
    subparser.add_argument("--folder", "-f", default="INBOX", help="Folder name (default: INBOX)")
    subparser.add_argument("ids", nargs="+", help="Message UIDs (space or comma separated)")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Mail Digest - Cache IMAP header snapshots for offline analysis"
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    sync_parser = subparsers.add_parser(
        "sync", help="Fetch new messages and merge them into the latest digests"
    )
    _add_account_args(sync_parser)

    fetch_parser = subparsers.add_parser("fetch", help="Full fetch into new digests")
    _add_account_args(fetch_parser)

    merge_parser = subparsers.add_parser("merge", help="Merge two digest files")
    merge_parser.add_argument("old", type=Path, help="Older digest file")
    merge_parser.add_argument("new", type=Path, help="Newer digest file")

    list_parser = subparsers.add_parser("list", help="List stored digest files")
    list_parser.add_argument("--address", default=None, help="Only this mail address")

    auth_parser = subparsers.add_parser("auth", help="Run the OAuth2 authorization flow")
    auth_parser.add_argument("account", help="Account name or address")

    flag_parser = subparsers.add_parser("flag", help="Add or remove flags on messages")
    _add_target_args(flag_parser)
    action = flag_parser.add_mutually_exclusive_group(required=True)
    action.add_argument("--add", dest="add_flags", action="append", help="Flag to add")
    action.add_argument("--remove", dest="remove_flags", action="append", help="Flag to remove")

    delete_parser = subparsers.add_parser("delete", help="Mark messages as deleted")
    _add_target_args(delete_parser)
    delete_parser.add_argument(
        "--expunge",
        action="store_true",
        help="Expunge the folder afterwards and drop the messages from the digest",
    )
    return parser


def main() -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args()
    if not args.command:
        parser.print_help()
        sys.exit(1)

    settings = MailDigestSettings()
    setup_logging(settings.log_level)
    settings.ensure_directories()

    synchronizer = DigestSynchronizer(settings=settings, on_progress=on_progress)

    try:
        if args.command in ("sync", "fetch"):
            accounts = select_accounts(load_accounts(settings.accounts_path), args.account)
            report = synchronizer.sync_accounts(accounts, incremental=args.command == "sync")
            print()
            for result in report.results:
                if result.ok:
                    print(
                        f"  {result.account} {result.folder}: "
                        f"{result.headers} headers (+{result.added})"
                    )
                else:
                    print(f"  {result.account} {result.folder}: FAILED {result.error}")
            if report.failed:
                sys.exit(2)

        elif args.command == "merge":
            path = synchronizer.merge_files(args.old, args.new)
            print(f"Merged digest written to {path}")

        elif args.command == "list":
            paths = synchronizer.store.list_digests(args.address)
            print(f"\nFound {len(paths)} digests:\n")
            for path in paths:
                print(f"  {path.name}")

        elif args.command == "auth":
            [account] = select_accounts(load_accounts(settings.accounts_path), [args.account])
            engine = OAuth2SessionEngine.from_settings(settings)
            token = engine.authorize(account.address)
            print(f"\nAuthorized {account.address} (expires at {token.expires_at})")

        elif args.command in ("flag", "delete"):
            [account] = select_accounts(load_accounts(settings.accounts_path), [args.account])
            ids = _parse_ids(args.ids)
            if args.command == "delete":
                path = synchronizer.delete_messages(
                    account, args.folder, ids, expunge=args.expunge
                )
            elif args.add_flags:
                path = synchronizer.store_flags(account, args.folder, ids, "add", args.add_flags)
            else:
                path = synchronizer.store_flags(
                    account, args.folder, ids, "remove", args.remove_flags
                )
            print(f"\nUpdated {len(ids)} messages" + (f"; digest {path.name}" if path else ""))

    except KeyboardInterrupt:
        print("\n\nInterrupted by user")
        sys.exit(130)
    except ConfigurationError as e:
        print(f"\nConfiguration error: {e}", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        print(f"\nError: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
