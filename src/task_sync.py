#!/usr/bin/env python3
"""
TaskSync

Keeps Obsidian task lines and the Taskwarrior task store in sync:
1. Finds notes (one file, or every note in a vault)
2. Parses each task line into a TaskRecord
3. Reconciles it with the store, in the chosen direction
4. Rewrites changed lines, once per file
"""

import os
import sys
import yaml
import logging
import tzlocal
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional
from dataclasses import dataclass
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from task_parser import parse_line, render
from reconcile import Direction, Outcome, OutcomeKind, Reconciler
from integrations import ObsidianIntegration, TaskChampionStore, StoreError, TaskStore, apply_updates

DEFAULT_CONFIG_PATH = '~/.task-sync/config.yaml'
DEFAULT_TASK_PATH = '~/.task'
DEFAULT_TIMEZONE = 'UTC'


class ConfigError(Exception):
    """Configuration file or option cannot be used"""


@dataclass
class SyncConfig:
    """Resolved settings for one run"""
    direction: Direction
    task_path: Path
    timezone: ZoneInfo
    vault_path: Optional[Path] = None
    file_path: Optional[Path] = None


@dataclass
class FileResult:
    """Per-file tally of reconciliation outcomes"""
    path: Path
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    unparsed: int = 0
    missing: int = 0
    errors: int = 0

    def count(self, outcome: Outcome) -> None:
        if outcome.kind == OutcomeKind.STORE_CREATED:
            self.created += 1
        elif outcome.kind in (OutcomeKind.STORE_UPDATED, OutcomeKind.TEXT_UPDATED):
            self.updated += 1
        elif outcome.kind == OutcomeKind.RECORD_MISSING:
            self.missing += 1
        else:
            self.unchanged += 1

    @property
    def ok(self) -> bool:
        return self.errors == 0


# ==================== Configuration ====================

def load_config_file(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load configuration from YAML file

    Args:
        config_path: Explicit config file; must exist when given. Without
            it the default location is tried and may be absent.

    Returns:
        Dict of config values (empty when no file was found)
    """
    path = Path(os.path.expandvars(config_path or DEFAULT_CONFIG_PATH)).expanduser()

    if not path.exists():
        if config_path:
            raise ConfigError(f"Config file not found: {path}")
        return {}

    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Cannot parse config file {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")
    return data


def local_timezone_name() -> str:
    """Name of the machine's zone (tzlocal honors $TZ), or UTC if unknown"""
    try:
        return tzlocal.get_localzone_name() or DEFAULT_TIMEZONE
    except (LookupError, ValueError, OSError) as e:
        logging.getLogger("TaskSync").warning(f"Cannot determine local time zone, using UTC: {e}")
        return DEFAULT_TIMEZONE


def resolve_timezone(name: Optional[str]) -> ZoneInfo:
    """Zone from the given name, else the local zone, else UTC"""
    name = name or local_timezone_name()
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ConfigError(f"Unknown time zone: {name}") from e


def _expand(path: Optional[str]) -> Optional[Path]:
    if not path:
        return None
    return Path(os.path.expandvars(str(path))).expanduser()


def build_config(
    direction: Direction,
    config_path: Optional[str] = None,
    vault: Optional[str] = None,
    file: Optional[str] = None,
    task_db: Optional[str] = None,
    tz: Optional[str] = None
) -> SyncConfig:
    """Merge command line options over the config file"""
    file_config = load_config_file(config_path)

    file_path = _expand(file)
    # A configured vault still names the annotation link in single-file mode
    vault_path = _expand(vault or file_config.get('vault_path'))

    if not vault_path and not file_path:
        raise ConfigError("No target: pass --vault or --file, or set vault_path in the config file")

    return SyncConfig(
        direction=direction,
        task_path=_expand(task_db or file_config.get('task_path') or DEFAULT_TASK_PATH),
        timezone=resolve_timezone(tz or file_config.get('timezone')),
        vault_path=vault_path,
        file_path=file_path,
    )


# ==================== Sync Runner ====================

class TaskSync:
    """
    Runs one synchronization pass over the configured notes

    Files are processed one after another. Each task line is reconciled
    against a freshly opened store, so a failure on one line never undoes
    another line's changes.
    """

    def __init__(self, config: SyncConfig, store_factory: Optional[Callable[[], TaskStore]] = None):
        """
        Args:
            config: Resolved settings
            store_factory: Opens the task store; defaults to the Taskwarrior
                replica at config.task_path
        """
        self.config = config
        self.logger = logging.getLogger("TaskSync")
        self._obsidian = ObsidianIntegration({
            'vault_path': config.vault_path,
            'file_path': config.file_path,
        })
        self._reconciler = Reconciler(config.timezone)
        self._store_factory = store_factory or self._open_replica

    def _open_replica(self) -> TaskStore:
        return TaskChampionStore(
            self.config.task_path,
            create_if_missing=self.config.direction == Direction.MD_TO_TC,
        )

    def run(self) -> Dict[str, Any]:
        """
        Sync every target file

        Returns:
            Summary dict with outcome counts, 'results' (FileResult per
            file) and 'failed_files'
        """
        files = self._obsidian.find_task_files()
        self.logger.info(
            f"Syncing {len(files)} file(s), direction={self.config.direction.value}, "
            f"tz={self.config.timezone.key}"
        )

        results = [self.sync_file(path) for path in files]

        summary = {
            'files': len(results),
            'created': sum(r.created for r in results),
            'updated': sum(r.updated for r in results),
            'unchanged': sum(r.unchanged for r in results),
            'unparsed': sum(r.unparsed for r in results),
            'missing': sum(r.missing for r in results),
            'errors': sum(r.errors for r in results),
            'failed_files': [r.path for r in results if not r.ok],
            'results': results,
        }

        if summary['failed_files']:
            self.logger.error(f"❌ {len(summary['failed_files'])} file(s) had errors")
        else:
            self.logger.info(f"✅ Synced {len(results)} file(s)")
        return summary

    def sync_file(self, path: Path) -> FileResult:
        """
        Reconcile every task line of one file, then rewrite it once

        Store failures count against the file but do not stop the
        remaining lines; a read or write failure ends the file.
        """
        path = Path(path)
        result = FileResult(path)
        self.logger.info(f"📄 {path.name}")

        try:
            task_lines = self._obsidian.read_task_lines(path)
        except (OSError, UnicodeDecodeError) as e:
            self.logger.error(f"❌ Cannot read {path}: {e}")
            result.errors += 1
            return result

        updates = []
        for index, line in task_lines:
            record = parse_line(line)
            if record is None:
                self.logger.debug(f"Unparsed line {path.name}:{index + 1}: {line.strip()}")
                result.unparsed += 1
                continue

            try:
                store = self._store_factory()
                outcome = self._reconciler.reconcile(
                    record,
                    store,
                    self.config.direction,
                    source_file=path,
                    vault_path=self.config.vault_path,
                )
            except StoreError as e:
                self.logger.error(f"❌ {path.name}:{index + 1}: {e}")
                result.errors += 1
                continue

            result.count(outcome)
            if outcome.changes_text:
                updates.append((index, render(outcome.record)))

        if updates:
            try:
                apply_updates(path, updates)
                self.logger.info(f"✏️  Updated {len(updates)} line(s) in {path.name}")
            except (OSError, IndexError) as e:
                self.logger.error(f"❌ Failed to update {path}: {e}")
                result.errors += 1

        return result


def setup_logging(verbose: bool = False) -> logging.Logger:
    """Setup logging for the sync run"""
    logger = logging.getLogger("TaskSync")

    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(
            '%(asctime)s - TaskSync - %(levelname)s - %(message)s'
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    return logger


# ==================== CLI Interface ====================

def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point"""
    import argparse

    parser = argparse.ArgumentParser(
        description="TaskSync: keep Obsidian tasks and Taskwarrior in sync"
    )
    target = parser.add_mutually_exclusive_group()
    target.add_argument(
        '-v', '--vault',
        help='Vault directory to scan for notes'
    )
    target.add_argument(
        '-f', '--file',
        help='Single note to sync'
    )
    parser.add_argument(
        '-t', '--task-db',
        help=f'Task store directory (default: {DEFAULT_TASK_PATH})'
    )
    parser.add_argument(
        '-c', '--config',
        help=f'Path to config file (default: {DEFAULT_CONFIG_PATH})'
    )
    parser.add_argument(
        '--tz',
        help='Time zone for task dates (default: config, then the local zone)'
    )
    parser.add_argument(
        '--verbose',
        action='store_true',
        help='Log every line, including unchanged ones'
    )
    parser.add_argument(
        'direction',
        choices=[d.value for d in Direction],
        help='md-to-tc: notes overwrite the store; tc-to-md: the store overwrites notes'
    )

    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    try:
        config = build_config(
            Direction(args.direction),
            config_path=args.config,
            vault=args.vault,
            file=args.file,
            task_db=args.task_db,
            tz=args.tz,
        )
    except ConfigError as e:
        print(f"❌ {e}")
        return 2

    summary = TaskSync(config).run()

    print(f"\n📋 Sync Results ({config.direction.value}):")
    print(f"   Files:     {summary['files']}")
    print(f"   Created:   {summary['created']}")
    print(f"   Updated:   {summary['updated']}")
    print(f"   Unchanged: {summary['unchanged']}")
    if summary['missing']:
        print(f"   Missing:   {summary['missing']} (not found in store)")
    if summary['unparsed']:
        print(f"   Unparsed:  {summary['unparsed']}")

    if summary['failed_files']:
        print(f"\n⚠️  {len(summary['failed_files'])} file(s) had errors:")
        for path in summary['failed_files']:
            print(f"   - {path}")
        return 1

    return 0


if __name__ == '__main__':
    sys.exit(main())
