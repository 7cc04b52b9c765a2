from __future__ import annotations

import tempfile
import threading
import time
import unittest
from pathlib import Path

from strm_watch.errors import WatcherError
from strm_watch.watcher import DebouncedWatcher, EventKind, SyncEvent, WatcherState


class Recorder:
    def __init__(self):
        self.events: list[SyncEvent] = []
        self.lock = threading.Lock()

    def __call__(self, event: SyncEvent) -> None:
        with self.lock:
            self.events.append(event)

    def snapshot(self) -> list[SyncEvent]:
        with self.lock:
            return list(self.events)


def _wait_for(predicate, timeout: float = 6.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.05)
    return predicate()


class DebouncedWatcherTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.recorder = Recorder()
        self.watchers: list[DebouncedWatcher] = []

    def tearDown(self) -> None:
        for watcher in self.watchers:
            watcher.stop()
        self._tmp.cleanup()

    def _watcher(self, **kwargs) -> DebouncedWatcher:
        watcher = DebouncedWatcher(self.root, self.recorder, **kwargs)
        self.watchers.append(watcher)
        return watcher

    def test_lifecycle(self) -> None:
        watcher = self._watcher()
        self.assertIs(watcher.state, WatcherState.STOPPED)

        watcher.pause()
        self.assertIs(watcher.state, WatcherState.STOPPED)

        watcher.resume()
        watcher.resume()
        self.assertIs(watcher.state, WatcherState.RUNNING)

        watcher.pause()
        self.assertIs(watcher.state, WatcherState.PAUSED)
        self.assertEqual(str(watcher.state), "Paused")
        watcher.resume()
        self.assertIs(watcher.state, WatcherState.RUNNING)

        watcher.stop()
        watcher.stop()
        self.assertIs(watcher.state, WatcherState.STOPPED)
        with self.assertRaises(WatcherError):
            watcher.resume()

    def test_resume_creates_missing_directory(self) -> None:
        target = self.root / "not" / "yet"
        watcher = DebouncedWatcher(target, self.recorder)
        self.watchers.append(watcher)

        watcher.resume()

        self.assertTrue(target.is_dir())

    def test_burst_coalesces_to_latest_event(self) -> None:
        watcher = self._watcher()
        watcher.resume()

        for i in range(5):
            watcher.notify(SyncEvent(self.root / f"file{i}.mkv", EventKind.CREATED))
        watcher.notify(SyncEvent(self.root / "file4.mkv", EventKind.REMOVED))

        self.assertTrue(_wait_for(lambda: self.recorder.snapshot()))
        time.sleep(0.5)
        events = self.recorder.snapshot()
        self.assertEqual(events, [SyncEvent(self.root / "file4.mkv", EventKind.REMOVED)])

    def test_quiet_window_delivers_nothing(self) -> None:
        watcher = self._watcher()
        watcher.resume()

        time.sleep(2.5)

        self.assertEqual(self.recorder.snapshot(), [])

    def test_per_path_keeps_latest_event_per_file(self) -> None:
        watcher = self._watcher(per_path=True)
        watcher.resume()

        a = self.root / "a.mkv"
        b = self.root / "b.mkv"
        watcher.notify(SyncEvent(a, EventKind.CREATED))
        watcher.notify(SyncEvent(b, EventKind.CREATED))
        watcher.notify(SyncEvent(a, EventKind.MODIFIED))

        self.assertTrue(_wait_for(lambda: len(self.recorder.snapshot()) >= 2))
        time.sleep(0.5)
        self.assertEqual(
            self.recorder.snapshot(),
            [SyncEvent(a, EventKind.MODIFIED), SyncEvent(b, EventKind.CREATED)],
        )

    def test_paused_watcher_drops_events(self) -> None:
        watcher = self._watcher()
        watcher.resume()
        watcher.pause()

        self.assertTrue(watcher.notify(SyncEvent(self.root / "x.mkv", EventKind.CREATED)))
        time.sleep(0.5)
        watcher.resume()
        time.sleep(2.5)

        self.assertEqual(self.recorder.snapshot(), [])

    def test_stopped_watcher_refuses_events(self) -> None:
        watcher = self._watcher()
        self.assertFalse(watcher.notify(SyncEvent(self.root / "x.mkv", EventKind.CREATED)))

    def test_callback_errors_do_not_stop_delivery(self) -> None:
        calls = []

        def flaky(event: SyncEvent) -> None:
            calls.append(event)
            raise RuntimeError("boom")

        watcher = DebouncedWatcher(self.root, flaky, per_path=True)
        self.watchers.append(watcher)
        watcher.resume()
        watcher.notify(SyncEvent(self.root / "a.mkv", EventKind.CREATED))
        watcher.notify(SyncEvent(self.root / "b.mkv", EventKind.CREATED))

        self.assertTrue(_wait_for(lambda: len(calls) == 2))
        self.assertIs(watcher.state, WatcherState.RUNNING)

    def test_real_filesystem_event_is_forwarded(self) -> None:
        watcher = self._watcher(per_path=True)
        watcher.resume()

        (self.root / "new.mkv").write_bytes(b"video")

        target = (self.root / "new.mkv").resolve()
        self.assertTrue(_wait_for(lambda: any(e.path.resolve() == target for e in self.recorder.snapshot())))

    def test_cancel_signal(self) -> None:
        cancel = threading.Event()
        watcher = self._watcher(cancel=cancel)
        self.assertFalse(watcher.should_exit())
        cancel.set()
        self.assertTrue(watcher.should_exit())

    def test_debounce_below_minimum_is_clamped(self) -> None:
        with self.assertLogs("strm_watch", level="WARNING") as captured:
            watcher = self._watcher(debounce_sec=0.5)
        self.assertEqual(watcher.debounce_sec, 2.0)
        self.assertIn("Adjusted to 2s", captured.output[0])


if __name__ == "__main__":
    unittest.main()
