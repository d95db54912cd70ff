"""Operator CLI for a draftsync offline store."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import TYPE_CHECKING, Any

from draftsync.config import Settings
from draftsync.exceptions import BackupNotFoundError
from draftsync.main import _configure_logging, open_storage
from draftsync.services.backup_service import BACKUP_SECTIONS
from draftsync.schemas.storage import CleanupOptions, RestoreOptions

if TYPE_CHECKING:
    from collections.abc import Sequence

    from draftsync.services.offline_storage_service import OfflineStorageService


def parse_config_value(raw: str) -> Any:
    """Interpret a CLI config value as JSON, falling back to the raw string."""
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="draftsync",
        description="Inspect and maintain a draftsync offline store",
    )
    parser.add_argument("--database-url", help="Override DATABASE_URL")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("stats", help="Show storage statistics")

    pending = subparsers.add_parser("pending", help="List pending sync tasks")
    pending.add_argument("--limit", type=int, default=None, help="Maximum tasks to list")

    cleanup = subparsers.add_parser("cleanup", help="Run cleanup (all steps by default)")
    cleanup.add_argument("--images", action="store_true", help="Evict expired images")
    cleanup.add_argument("--drafts", action="store_true", help="Prune draft history")
    cleanup.add_argument("--sync-tasks", action="store_true", help="Prune finished sync tasks")
    cleanup.add_argument("--quota", action="store_true", help="Enforce the cache size quota")

    backup = subparsers.add_parser("backup", help="Manage backups")
    backup_sub = backup.add_subparsers(dest="backup_command", required=True)
    create = backup_sub.add_parser("create", help="Create a backup")
    create.add_argument("name")
    create.add_argument(
        "--type",
        dest="backup_type",
        choices=list(BACKUP_SECTIONS),
        default="full",
        help="What to capture (default: full)",
    )
    create.add_argument(
        "--incremental",
        dest="backup_type",
        action="store_const",
        const="incremental",
        help="Same as --type incremental",
    )
    backup_sub.add_parser("list", help="List backups, newest first")
    restore = backup_sub.add_parser("restore", help="Restore a backup")
    restore.add_argument("backup_id")
    restore.add_argument("--skip-drafts", action="store_true", help="Leave drafts untouched")
    restore.add_argument("--skip-images", action="store_true", help="Leave image entries untouched")
    restore.add_argument("--skip-configs", action="store_true", help="Leave config untouched")
    restore.add_argument(
        "--on-conflict",
        choices=["duplicate", "skip", "overwrite"],
        default="duplicate",
        help="How to treat records that still exist locally (default: duplicate)",
    )
    delete = backup_sub.add_parser("delete", help="Delete a backup")
    delete.add_argument("backup_id")

    search = subparsers.add_parser("search", help="Search local drafts and images")
    search.add_argument("query")
    search.add_argument("--kind", choices=["draft", "image"], help="Only this kind of record")
    search.add_argument("--limit", type=int, default=20, help="Maximum results")
    search.add_argument("--by-date", action="store_true", help="Newest first, not best match")

    config = subparsers.add_parser("config", help="Show or change engine configuration")
    config_sub = config.add_subparsers(dest="config_command", required=True)
    config_sub.add_parser("show", help="Print the active configuration")
    config_set = config_sub.add_parser("set", help="Change one configuration value")
    config_set.add_argument("key")
    config_set.add_argument("value", help="JSON value, e.g. 1048576 or false")

    return parser


async def _run_command(args: argparse.Namespace, service: OfflineStorageService) -> None:
    if args.command == "stats":
        stats = await service.get_storage_stats()
        print("Storage Stats:")
        print(f"  Image bytes:   {stats.total_size}")
        print(f"  Drafts:        {stats.draft_count}")
        print(f"  Images:        {stats.image_count}")
        print(f"  Pending sync:  {stats.pending_sync_count}")
        last = stats.last_cleanup.isoformat() if stats.last_cleanup else "never"
        print(f"  Last cleanup:  {last}")

    elif args.command == "pending":
        tasks = await service.get_pending_sync_tasks(args.limit)
        for task in tasks:
            print(
                f"{task.id}  p={task.priority}  {task.operation:<6} "
                f"{task.entity_type}:{task.entity_id}  retries={task.retry_count}"
            )
        print(f"{len(tasks)} pending task(s)")

    elif args.command == "cleanup":
        selected = CleanupOptions(
            clean_images=args.images,
            clean_drafts=args.drafts,
            clean_sync_tasks=args.sync_tasks,
            enforce_quota=args.quota,
        )
        if selected.model_dump() == CleanupOptions().model_dump():
            report = await service.perform_auto_cleanup()
        else:
            report = await service.manual_cleanup(selected)
        print(
            f"Cleanup: {report.expired_images} expired image(s), "
            f"{report.pruned_drafts} draft(s), {report.pruned_sync_tasks} sync task(s)"
        )
        if report.quota is not None:
            print(f"  Quota: {report.quota.old_size} -> {report.quota.new_size} bytes")
        for step, error in report.errors.items():
            print(f"  FAILED {step}: {error}")
        if not report.ok:
            sys.exit(1)

    elif args.command == "backup":
        if args.backup_command == "create":
            info = await service.create_backup(args.name, args.backup_type)
            print(f"Created {info.type} backup {info.id} ({info.size} bytes)")
        elif args.backup_command == "list":
            for info in await service.list_backups():
                print(
                    f"{info.id}  {info.created_at.isoformat()}  {info.type:<11} "
                    f"{info.name}  ({info.item_counts.drafts} drafts)"
                )
        elif args.backup_command == "restore":
            options = RestoreOptions(
                restore_drafts=not args.skip_drafts,
                restore_images=not args.skip_images,
                restore_configs=not args.skip_configs,
                conflict_resolution=args.on_conflict,
            )
            result = await service.restore_from_backup(args.backup_id, options)
            print(
                f"Restored {result.drafts_restored} draft(s), {result.images_restored} image(s) "
                f"and {result.configs_restored} config entr(ies) from {result.backup_id}"
            )
            if result.skipped:
                print(f"  Skipped {result.skipped} existing record(s)")
        else:
            await service.delete_backup(args.backup_id)
            print(f"Deleted backup {args.backup_id}")

    elif args.command == "search":
        results = await service.search_offline(
            args.query,
            kind=args.kind,
            limit=args.limit,
            sort_by="date" if args.by_date else "relevance",
        )
        for hit in results:
            print(f"{hit.kind:<5} {hit.id}  score={hit.score:<3} {hit.title}")
        print(f"{len(results)} result(s)")

    elif args.command == "config":
        if args.config_command == "set":
            await service.update_config(**{args.key: parse_config_value(args.value)})
        print(service.get_config().model_dump_json(indent=2))


async def _main(args: argparse.Namespace, settings: Settings) -> None:
    async with open_storage(settings) as service:
        await _run_command(args, service)


def main(argv: Sequence[str] | None = None) -> None:
    """CLI entry point."""
    args = build_parser().parse_args(argv)
    overrides: dict[str, Any] = {}
    if args.database_url:
        overrides["database_url"] = args.database_url
    if args.debug:
        overrides["debug"] = True
    settings = Settings(**overrides)
    _configure_logging(settings.debug)

    try:
        asyncio.run(_main(args, settings))
    except (BackupNotFoundError, ValueError) as exc:
        print(f"Error: {exc}")
        sys.exit(1)


if __name__ == "__main__":
    main()
