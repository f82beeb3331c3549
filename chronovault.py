"""ChronoVault console: rotating snapshot backups of a directory tree."""
from __future__ import annotations

import argparse
import logging
import sys
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, TextIO

import uvicorn

from backup import BackupError, InvalidSelection, Notification, RestoreBusy
from backup.retention import initial_index, resume_index
from core.logging_utils import configure_json_logging
from core.paths import resolve_working_dir
from core.settings import ConfigInvalid, VaultConfig, build_config, load_settings
from orchestrator import VaultService, create_app

SLOT_DISPLAY_FORMAT = "%I:%M %p %d/%m/%Y"

MENU = (
    "Press 'P' to pause or resume the backup.",
    "Press 'R' to restore a backup.",
    "Press 'Q' to quit.",
)


def format_span(config: VaultConfig) -> str:
    """Wall-clock time covered by a full ring of backups."""
    span = timedelta(seconds=config.seconds_between_backups * config.max_backups)
    hours, remainder = divmod(span.seconds, 3600)
    minutes, seconds = divmod(remainder, 60)
    return f"Backup Span: ({span.days}) Days ({hours}) Hours ({minutes}) Minutes ({seconds}) Seconds"


def describe_config(config: VaultConfig) -> List[str]:
    return [
        f"Source: {config.source}",
        f"Backup root: {config.backup_root}",
        f"File types: {','.join(config.file_types)}",
        f"Max backups: {config.max_backups}",
        f"Seconds between backups: {config.seconds_between_backups}",
        f"Backup modified only: {config.backup_modified_only}",
        f"Copy all on startup: {config.copy_all_on_startup}",
        f"Allow subfolders: {config.allow_subfolders}",
    ]


def format_notification(note: Notification) -> str:
    context = note.context
    if note.kind == "cycle_completed":
        if context.get("rolled_back"):
            return f"Backup {context.get('slot')} skipped: no files to back up"
        return f"Backup {context.get('slot')} completed: {context.get('files', 0)} file(s) written"
    if note.kind == "restore_completed":
        message = f"Backup restored from {context.get('slot')} ({context.get('restored', 0)} file(s))"
        if context.get("failed"):
            message += f", {context['failed']} failed"
        return message
    return f"Error during {context.get('operation', 'operation')}: {context.get('error')}"


class ConsoleShell:
    """Line-driven operator loop: P toggles pause, R restores, Q quits."""

    def __init__(self, vault: VaultService, *, stdin: TextIO = sys.stdin, stdout: TextIO = sys.stdout) -> None:
        self._vault = vault
        self._stdin = stdin
        self._stdout = stdout

    def _print(self, text: str = "") -> None:
        print(text, file=self._stdout, flush=True)

    def notify(self, note: Notification) -> None:
        self._print(format_notification(note))

    def print_menu(self) -> None:
        for line in MENU:
            self._print(line)
        self._print()

    # ------------------------------------------------------------------
    def restore_prompt(self) -> None:
        slots = self._vault.backup.list_slots()
        self._print()
        self._print("Available backups:")
        if not slots:
            self._print("No backups available.")
            return
        for position, slot in enumerate(slots, start=1):
            created = slot.created_at.strftime(SLOT_DISPLAY_FORMAT) if slot.created_at else slot.name
            self._print(f"{position}: {created}")
        self._print("Enter the number of the backup you want to restore, or type 'C' to cancel:")
        answer = self._stdin.readline().strip()
        if not answer:
            return
        if answer.lower() == "c":
            self._print("Restore operation canceled.")
            return
        try:
            slot = self._vault.backup.select_slot(int(answer))
        except (ValueError, InvalidSelection):
            self._print("Invalid selection. Please try again.")
            return
        self._print(f"Restoring backup from {slot.name}...")
        try:
            self._vault.backup.restore(slot)
        except RestoreBusy:
            self._print("A backup is running; try the restore again once it finishes.")
        except BackupError as exc:
            self._print(f"Restore failed: {exc}")

    def handle(self, command: str) -> bool:
        """Apply one command; False means quit."""
        key = command.strip().lower()
        if key == "q":
            return False
        if key == "p":
            paused = self._vault.scheduler.toggle()
            self._print("Paused Backup." if paused else "Resumed backup >>")
        elif key == "r":
            self.restore_prompt()
            self._print()
            self.print_menu()
        elif key:
            self._print(f"Unknown command {command.strip()!r}.")
        return True

    def run(self) -> int:
        self.print_menu()
        for line in self._stdin:
            if not self.handle(line):
                break
        return 0


# ----------------------------------------------------------------------
def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="ChronoVault rotating backups")
    parser.add_argument("--config", type=Path, default=None, help="config.ini or settings.json to load")
    parser.add_argument("--verbose", action="store_true", help="Mirror log events to the console")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("run", help="Run the scheduler with the interactive console (default)")
    sub.add_parser("status", help="Show configuration and ring position")
    sub.add_parser("slots", help="List backups, oldest first")

    restore = sub.add_parser("restore", help="Restore a backup over the source tree")
    target = restore.add_mutually_exclusive_group(required=True)
    target.add_argument("selection", nargs="?", type=int, help="1-based position in the slot listing")
    target.add_argument("--slot", default=None, help="Slot directory name")

    serve = sub.add_parser("serve", help="Run the scheduler behind the HTTP operator API")
    serve.add_argument("--host", default=None)
    serve.add_argument("--port", type=int, default=None)

    args = parser.parse_args(argv)
    if args.command is None:
        args.command = "run"
    return args


def _configure_logging(working_dir: Path, verbose: bool) -> None:
    logging.basicConfig(level=logging.INFO if verbose else logging.WARNING, format="[%(levelname)s] %(message)s")
    logger = configure_json_logging("chronovault", working_dir=working_dir)
    if verbose:
        logger.propagate = True


def _cmd_status(vault: VaultService) -> int:
    config = vault.config
    for line in describe_config(config):
        print(line)
    print(format_span(config))
    found = resume_index(config.backup_root, config.max_backups)
    print(f"Backups on disk: {len(vault.backup.list_slots())}")
    print(f"Next slot index: {initial_index(found, config.max_backups)}")
    return 0


def _cmd_slots(vault: VaultService) -> int:
    slots = vault.backup.list_slots()
    if not slots:
        print("No backups available.")
        return 0
    for position, slot in enumerate(slots, start=1):
        created = slot.created_at.strftime(SLOT_DISPLAY_FORMAT) if slot.created_at else "?"
        print(f"{position}: {created}  [{slot.name}]")
    return 0


def _cmd_restore(vault: VaultService, args: argparse.Namespace) -> int:
    try:
        if args.slot:
            slot = vault.backup.find_slot(args.slot)
        else:
            slot = vault.backup.select_slot(int(args.selection))
        result = vault.backup.restore(slot)
    except BackupError as exc:
        print(f"Restore failed: {exc}", file=sys.stderr)
        return 1
    print(f"Backup restored from {slot.name}: {result.count} file(s)")
    for failure in result.failures:
        print(f"  failed {failure.relative_path}: {failure.message}", file=sys.stderr)
    return 0 if not result.failures else 1


def _cmd_run(vault: VaultService) -> int:
    config = vault.config
    shell = ConsoleShell(vault)
    unsubscribe = vault.backup.subscribe(shell.notify)
    vault.start()
    print("Configuration loaded:")
    print()
    for line in describe_config(config):
        print(line)
    print()
    print(format_span(config))
    print()
    print("ChronoVault is running in the background")
    print()
    try:
        return shell.run()
    except KeyboardInterrupt:
        return 0
    finally:
        unsubscribe()
        vault.stop()


def _cmd_serve(vault: VaultService, settings: Dict[str, Any], args: argparse.Namespace) -> int:
    api_settings = settings.get("api") if isinstance(settings.get("api"), dict) else {}
    host = args.host or api_settings.get("host") or "127.0.0.1"
    port = int(args.port or api_settings.get("port") or 8790)
    app = create_app(vault)
    vault.start()
    print(f"API listening on http://{host}:{port}", flush=True)
    uvicorn_config = uvicorn.Config(app, host=host, port=port, log_level="info", access_log=False)
    server = uvicorn.Server(uvicorn_config)
    try:
        server.run()
    finally:
        vault.stop()
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    working_dir = resolve_working_dir()
    _configure_logging(working_dir, args.verbose)
    try:
        settings = load_settings(working_dir, args.config)
        config = build_config(settings)
    except ConfigInvalid as exc:
        logging.error("%s", exc)
        return 2
    try:
        vault = VaultService(config, working_dir=working_dir)
    except (BackupError, OSError, ValueError) as exc:
        logging.error("Startup failed: %s", exc)
        return 1

    if args.command == "status":
        return _cmd_status(vault)
    if args.command == "slots":
        return _cmd_slots(vault)
    if args.command == "restore":
        return _cmd_restore(vault, args)
    if args.command == "serve":
        return _cmd_serve(vault, settings, args)
    return _cmd_run(vault)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
