from __future__ import annotations

import logging
import threading
from enum import Enum
from pathlib import Path
from typing import Optional, Union

from .classifier import MediaClassifier
from .config import SyncConfig
from .errors import (
    ConfigError,
    PathError,
    SourceMissingError,
    StrmWatchError,
    TransferError,
)
from .log import get_logger, log_action
from .placeholder import PlaceholderCodec
from .transfer import Runner, TransferOutcome, check_guard_file, select_strategy
from .watcher import DebouncedWatcher, EventKind, SyncEvent

PathLike = Union[str, Path]

WAIT_POLL_SEC = 0.5


class SyncMode(Enum):
    COPY = "copy"
    MIRROR = "sync"

    @classmethod
    def parse(cls, value: Union["SyncMode", str]) -> "SyncMode":
        if isinstance(value, cls):
            return value
        text = str(value).strip().lower()
        if text == "mirror":
            return cls.MIRROR
        try:
            return cls(text)
        except ValueError:
            raise ConfigError(f"Unsupported sync mode: {value!r} (expected copy or sync)") from None


class SyncOrchestrator:
    """
    Glues classifier, placeholder codec, transfer strategy and watcher together.

    sync_directory: write placeholders for every media file under src, then
    let the strategy replicate everything else into dst.
    watch_directory: keep dst's placeholders in step with src as files come
    and go.
    """

    def __init__(
        self,
        config: SyncConfig,
        runner: Optional[Runner] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config
        self.logger = logger or get_logger()
        self.classifier = MediaClassifier(config)
        self.codec = PlaceholderCodec(config, classifier=self.classifier, logger=self.logger)
        self.strategy = select_strategy(config, runner=runner, classifier=self.classifier, logger=self.logger)
        self._failure: Optional[BaseException] = None
        # the running watch's watcher, while watch_directory blocks
        self.watcher: Optional[DebouncedWatcher] = None

    def sync_directory(self, src: PathLike, dst: PathLike, mode: Union[SyncMode, str] = SyncMode.COPY) -> TransferOutcome:
        mode = SyncMode.parse(mode)
        src_path = Path(src).expanduser()

        check_guard_file(self.config)
        if not src_path.is_dir():
            raise SourceMissingError(f"sync_directory: source path '{src_path}' does not exist, sync aborted.")

        self._require(self.strategy.ensure_directory(dst), "ensure_directory", dst)

        placeholders = self.codec.generate_for_tree(src_path)
        self.logger.info("sync_directory: %d placeholder(s) under %s", len(placeholders), src_path)

        outcome = self.strategy.replicate(src_path, dst, delete_extraneous=mode is SyncMode.MIRROR)
        return self._require(outcome, f"replicate ({mode.value})", f"{src_path} -> {dst}")

    def watch_directory(self, src: PathLike, dst: PathLike, cancel: Optional[threading.Event] = None) -> None:
        """Block, mirroring placeholders from src into dst, until cancel is set."""
        if self.config.soft_delete_dir is None:
            raise ConfigError("watch_directory: file watcher not configured (soft_delete_dir is required)")
        if not self.strategy.writes_locally:
            raise ConfigError("watch_directory: destination must be a local path (no rclone remote or ssh)")

        # before the watcher exists: resume() creates a missing root
        check_guard_file(self.config)
        if not Path(src).expanduser().is_dir():
            raise SourceMissingError(f"watch_directory: source path '{src}' does not exist, watch aborted.")

        # observers report resolved paths on some platforms
        src_path = Path(src).expanduser().resolve()
        dst_path = Path(dst).expanduser()
        cancel = cancel if cancel is not None else threading.Event()
        self._failure = None

        def on_event(event: SyncEvent) -> None:
            try:
                self.dispatch(event, src_path, dst_path)
            except StrmWatchError as e:
                self._failure = e
                cancel.set()

        watcher = DebouncedWatcher(
            src_path,
            on_event,
            debounce_sec=self.config.debounce_sec,
            cancel=cancel,
            per_path=True,
            logger=self.logger,
        )
        watcher.resume()
        self.watcher = watcher
        try:
            while not watcher.should_exit():
                cancel.wait(WAIT_POLL_SEC)
        finally:
            watcher.stop()
            self.watcher = None

        if self._failure is not None:
            raise self._failure

    def dispatch(self, event: SyncEvent, src: PathLike, dst: PathLike) -> Union[Path, TransferOutcome, None]:
        src_path = Path(src)
        try:
            rel = event.path.relative_to(src_path)
        except ValueError:
            raise PathError(f"watch_directory: event path {event.path} is not under {src_path}") from None
        mapped = Path(dst) / rel

        if event.kind is EventKind.REMOVED:
            target = self.codec.placeholder_path_for(mapped) if self.classifier.is_media(event.path) else mapped
            outcome = self.strategy.delete(target)
            if not outcome.success:
                log_action(self.logger, "DELETE_FAIL", f"{target} | {outcome.diagnostic}", path=target, level=logging.ERROR)
            return outcome

        if event.kind in (EventKind.CREATED, EventKind.MODIFIED):
            if self.classifier.is_media(event.path) and not self.classifier.should_ignore(event.path):
                return self.codec.generate(event.path, at=mapped)

        return None

    def _require(self, outcome: TransferOutcome, operation: str, where) -> TransferOutcome:
        if not outcome.success:
            raise TransferError(f"{operation} failed for {where}: {outcome.diagnostic}", outcome)
        return outcome
