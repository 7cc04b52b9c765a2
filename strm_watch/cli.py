"""
strm-watch command line.

Usage
  pip install -e .
  strm-watch sync  --source "/media/library" --dest "/srv/strm" --mode copy
  strm-watch watch --source "/media/library" --dest "/srv/strm" --soft-delete-dir "/srv/strm-trash"

Source/destination and the rest of the settings are remembered in
~/.strm_watch/config.json (or the file given with --config).
"""

from __future__ import annotations

import argparse
import logging
import sys
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .config import CONFIG_PATH, SyncConfig, expand_path, load_config_file, save_config_file
from .errors import ConfigError, StrmWatchError
from .log import setup_logger
from .sync import SyncMode, SyncOrchestrator

# keys of the config file that are not SyncConfig fields
APP_KEYS = ("source", "dest", "log_dir")


@dataclass(frozen=True)
class AppConfig:
    command: str
    source: Path
    dest: Path
    mode: SyncMode
    log_dir: Optional[Path]
    config_path: Path
    sync: SyncConfig
    initial_sync: bool = True


def parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="strm-watch", description="Mirror a media library as .strm placeholder files.")
    p.add_argument("--config", type=str, default=None, help=f"Config file (default: {CONFIG_PATH}).")
    p.add_argument("--log-dir", type=str, default=None, help="Directory for log files.")
    p.add_argument("--verbose", "-v", action="store_true", help="Log rsync/rclone file and progress lines.")
    p.add_argument("--no-save", action="store_true", help="Do not write the effective settings back to the config file.")

    sub = p.add_subparsers(dest="command", required=True)
    for name, help_text in (
        ("sync", "Write placeholders and replicate the rest of the tree once."),
        ("watch", "Keep placeholders up to date while files come and go."),
    ):
        sp = sub.add_parser(name, help=help_text)
        sp.add_argument("--source", type=str, default=None, help="Media library (source).")
        sp.add_argument("--dest", type=str, default=None, help="Placeholder library (destination).")
        sp.add_argument("--rclone-remote", type=str, default=None, help="Replicate to this rclone remote instead of rsync.")
        sp.add_argument("--soft-delete-dir", type=str, default=None, help="Move deleted entries here instead of deleting.")
        sp.add_argument("--guard-file", type=str, default=None, help="Abort unless this file exists.")
        sp.add_argument("--debounce", type=float, default=None, help="Seconds per debounce window (min 2).")
        if name == "sync":
            sp.add_argument("--mode", choices=["copy", "sync", "mirror"], default="copy", help="sync/mirror also deletes extraneous destination entries.")
        else:
            sp.add_argument("--no-initial-sync", action="store_true", help="Skip the full sync before watching.")
    return p.parse_args(argv)


def build_effective_config(args: argparse.Namespace) -> AppConfig:
    config_path = expand_path(args.config) if args.config else CONFIG_PATH
    saved = load_config_file(config_path)

    source = args.source or saved.get("source")
    dest = args.dest or saved.get("dest")
    if not source:
        raise ConfigError("No source folder given (--source) and none saved in the config file.")
    if not dest:
        raise ConfigError("No destination folder given (--dest) and none saved in the config file.")

    log_dir = args.log_dir or saved.get("log_dir")

    sync_data = {k: v for k, v in saved.items() if k not in APP_KEYS}
    overrides = {
        "rclone_remote": args.rclone_remote,
        "soft_delete_dir": args.soft_delete_dir,
        "guard_file": args.guard_file,
        "debounce_sec": args.debounce,
    }
    sync_data.update({k: v for k, v in overrides.items() if v is not None})

    return AppConfig(
        command=args.command,
        source=expand_path(source),
        dest=expand_path(dest),
        mode=SyncMode.parse(getattr(args, "mode", "copy")),
        log_dir=expand_path(log_dir) if log_dir else None,
        config_path=config_path,
        sync=SyncConfig.from_dict(sync_data),
        initial_sync=not getattr(args, "no_initial_sync", False),
    )


def _is_subpath(child: Path, parent: Path) -> bool:
    try:
        child.resolve().relative_to(parent.resolve())
        return True
    except ValueError:
        return False


def validate_paths(cfg: AppConfig) -> tuple[Path, Path]:
    source = cfg.source.resolve()
    if not source.is_dir():
        raise ConfigError(f"Source folder does not exist or is not a folder: {source}")

    # an rclone destination is a remote path, not a local folder
    if cfg.sync.rclone_remote or cfg.sync.ssh is not None:
        return source, cfg.dest

    dest = cfg.dest.resolve()
    if source == dest:
        raise ConfigError("Source and destination folders must be different.")
    if _is_subpath(dest, source):
        raise ConfigError("Destination folder must NOT be inside the source folder (would cause loops).")
    return source, dest


def save_effective_config(cfg: AppConfig, source: Path, dest: Path) -> None:
    payload = {
        "source": str(source),
        "dest": str(dest),
        "log_dir": str(cfg.log_dir) if cfg.log_dir else None,
    }
    payload.update(cfg.sync.to_dict())
    save_config_file(payload, cfg.config_path)


def main(argv: Optional[list[str]] = None) -> int:
    args = parse_args(argv if argv is not None else sys.argv[1:])
    level = logging.DEBUG if args.verbose else logging.INFO

    try:
        cfg = build_effective_config(args)
    except ConfigError as e:
        setup_logger(None, level).error("Config error: %s", e)
        return 2

    logger = setup_logger(cfg.log_dir, level)

    try:
        source, dest = validate_paths(cfg)
        orchestrator = SyncOrchestrator(cfg.sync, logger=logger)
    except ConfigError as e:
        logger.error("Config error: %s", e)
        return 2

    logger.info("Source: %s", source)
    logger.info("Dest  : %s", dest)
    logger.info("Backend: %s", orchestrator.strategy.name)

    if not args.no_save:
        try:
            save_effective_config(cfg, source, dest)
            logger.info("Saved config: %s", cfg.config_path)
        except OSError as e:
            logger.error("Could not save config: %s", e)

    try:
        if cfg.command == "sync" or cfg.initial_sync:
            mode = cfg.mode if cfg.command == "sync" else SyncMode.COPY
            logger.info("FULL SYNC (%s): start", mode.value)
            orchestrator.sync_directory(source, dest, mode)
            logger.info("FULL SYNC: done")
        if cfg.command == "watch":
            cancel = threading.Event()
            logger.info("Starting watcher... (Ctrl+C to stop)")
            try:
                orchestrator.watch_directory(source, dest, cancel)
            except KeyboardInterrupt:
                cancel.set()
                logger.info("Stopping...")
            logger.info("Stopped.")
    except ConfigError as e:
        logger.error("Config error: %s", e)
        return 2
    except StrmWatchError as e:
        logger.error("%s", e)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
