"""
Debounced directory watcher.

watchdog delivers raw events on its observer thread; they are pushed into a
bounded queue and drained by a single coalescing thread, which calls the
watcher's callback at most once per debounce window (or once per path per
window with per_path=True) with the most recent event.

Lifecycle: STOPPED -> resume() -> RUNNING <-> PAUSED -> stop() -> STOPPED.
A stopped watcher cannot be resumed again; build a new one.
"""

from __future__ import annotations

import logging
import os
import queue
import threading
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Optional, Union

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from .config import MIN_DEBOUNCE_SEC, expand_path
from .errors import WatcherError
from .log import get_logger, log_action

QUEUE_SIZE = 100
CANCEL_POLL_SEC = 1.0


class WatcherState(Enum):
    RUNNING = "Running"
    PAUSED = "Paused"
    STOPPED = "Stopped"

    def __str__(self) -> str:
        return self.value


class EventKind(Enum):
    CREATED = "created"
    MODIFIED = "modified"
    REMOVED = "removed"


@dataclass(frozen=True)
class SyncEvent:
    path: Path
    kind: EventKind


EventCallback = Callable[[SyncEvent], None]


class EventForwarder(FileSystemEventHandler):
    """Translates watchdog events into SyncEvents and hands them to the watcher."""

    def __init__(self, watcher: "DebouncedWatcher"):
        self.watcher = watcher

    def _send(self, raw_path, kind: EventKind) -> None:
        self.watcher.notify(SyncEvent(Path(os.fsdecode(raw_path)), kind))

    def on_created(self, event):
        self._send(event.src_path, EventKind.CREATED)

    def on_modified(self, event):
        # directory mtime changes whenever a child changes
        if event.is_directory:
            return
        self._send(event.src_path, EventKind.MODIFIED)

    def on_deleted(self, event):
        self._send(event.src_path, EventKind.REMOVED)

    def on_moved(self, event):
        self._send(event.src_path, EventKind.REMOVED)
        self._send(event.dest_path, EventKind.CREATED)


class EventCoalescer(threading.Thread):
    def __init__(self, watcher: "DebouncedWatcher"):
        super().__init__(daemon=True, name=f"strm-watch-coalescer:{watcher.path}")
        self.watcher = watcher
        self.halt = threading.Event()

    def run(self) -> None:
        w = self.watcher
        next_tick = time.monotonic() + w.debounce_sec
        while not self.halt.is_set() and not w.cancel.is_set():
            timeout = min(CANCEL_POLL_SEC, max(0.0, next_tick - time.monotonic()))
            try:
                w._record(w._events.get(timeout=timeout))
            except queue.Empty:
                pass

            now = time.monotonic()
            if now >= next_tick:
                w._deliver()
                next_tick = now + w.debounce_sec
        w.logger.debug("WATCH | coalescer exited for %s", w.path)


class DebouncedWatcher:
    def __init__(
        self,
        path: Union[str, Path],
        callback: EventCallback,
        debounce_sec: float = MIN_DEBOUNCE_SEC,
        cancel: Optional[threading.Event] = None,
        per_path: bool = False,
        logger: Optional[logging.Logger] = None,
    ):
        self.path = expand_path(path)
        self.callback = callback
        self.logger = logger or get_logger()
        if debounce_sec < MIN_DEBOUNCE_SEC:
            self.logger.warning("Debounce time can't be less than %.0fs. Adjusted to %.0fs.", MIN_DEBOUNCE_SEC, MIN_DEBOUNCE_SEC)
            debounce_sec = MIN_DEBOUNCE_SEC
        self.debounce_sec = float(debounce_sec)
        self.cancel = cancel if cancel is not None else threading.Event()
        self.per_path = per_path

        self._state = WatcherState.STOPPED
        self._started = False
        self._guard = threading.RLock()
        self._events: "queue.Queue[SyncEvent]" = queue.Queue(maxsize=QUEUE_SIZE)
        self._pending: dict = {}
        self._observer = None
        self._coalescer: Optional[EventCoalescer] = None

    @property
    def state(self) -> WatcherState:
        return self._state

    def should_exit(self) -> bool:
        return self.cancel.is_set()

    def resume(self) -> None:
        with self._guard:
            if self._state is WatcherState.RUNNING:
                return
            if self._state is WatcherState.PAUSED:
                self._pending.clear()
                self._state = WatcherState.RUNNING
                log_action(self.logger, "WATCH", f"resumed {self.path}", path=self.path, is_dir=True)
                return
            if self._started:
                raise WatcherError(f"Watcher for {self.path} was stopped; create a new watcher to watch again.")
            self._start()

    def pause(self) -> None:
        with self._guard:
            if self._state is WatcherState.RUNNING:
                self._state = WatcherState.PAUSED
                log_action(self.logger, "WATCH", f"paused {self.path}", path=self.path, is_dir=True)

    def stop(self) -> None:
        with self._guard:
            if self._state is WatcherState.STOPPED:
                return
            self._state = WatcherState.STOPPED
            observer, self._observer = self._observer, None
            coalescer, self._coalescer = self._coalescer, None

        if coalescer is not None:
            coalescer.halt.set()
        if observer is not None:
            observer.stop()
            observer.join(timeout=10)
        if coalescer is not None and coalescer is not threading.current_thread():
            coalescer.join(timeout=10)
        log_action(self.logger, "WATCH", f"stopped {self.path}", path=self.path, is_dir=True)

    def notify(self, event: SyncEvent) -> bool:
        """Queue a raw event; returns False when it was dropped."""
        if self._state is WatcherState.STOPPED:
            return False
        try:
            self._events.put_nowait(event)
        except queue.Full:
            log_action(self.logger, "WATCH_FAIL", f"event queue full, dropped {event.kind.value} {event.path}", level=logging.WARNING)
            return False
        return True

    def _start(self) -> None:
        if not self.path.exists():
            try:
                self.path.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise WatcherError(f"Failed to create directory {self.path}: {e}") from e
            log_action(self.logger, "MKDIR", f"(watch) {self.path}", path=self.path, is_dir=True)

        observer = Observer()
        try:
            observer.schedule(EventForwarder(self), str(self.path), recursive=True)
            observer.start()
        except OSError as e:
            raise WatcherError(f"Failed to watch path {self.path}: {e}") from e

        self._observer = observer
        self._started = True
        self._state = WatcherState.RUNNING
        self._coalescer = EventCoalescer(self)
        self._coalescer.start()
        log_action(self.logger, "WATCH", f"started {self.path} (debounce={self.debounce_sec:.1f}s)", path=self.path, is_dir=True)

    def _record(self, event: SyncEvent) -> None:
        key = event.path if self.per_path else None
        with self._guard:
            if self._state is not WatcherState.RUNNING:
                return
            # re-assigning an existing key keeps its first-arrival position
            self._pending[key] = event

    def _deliver(self) -> None:
        with self._guard:
            if self._state is not WatcherState.RUNNING or not self._pending:
                return
            events = list(self._pending.values())
            self._pending.clear()

        for event in events:
            if self._state is WatcherState.STOPPED:
                return
            try:
                self.callback(event)
            except Exception as e:
                log_action(self.logger, "WATCH_FAIL", f"callback error for {event.path}: {e}", level=logging.ERROR)
