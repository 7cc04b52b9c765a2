"""Mirror a media library as .strm placeholder files."""

from .classifier import MediaClassifier
from .config import SshConfig, SyncConfig
from .errors import (
    ConfigError,
    GuardFileError,
    PathError,
    PlaceholderError,
    SourceMissingError,
    StrmWatchError,
    TransferError,
    WatcherError,
)
from .placeholder import PlaceholderCodec
from .sync import SyncMode, SyncOrchestrator
from .transfer import (
    LocalTransferStrategy,
    RemoteTransferStrategy,
    TransferOutcome,
    TransferStrategy,
    is_file_line,
    is_progress_line,
    select_strategy,
)
from .watcher import DebouncedWatcher, EventKind, SyncEvent, WatcherState

__version__ = "0.1.0"

__all__ = [
    "ConfigError",
    "DebouncedWatcher",
    "EventKind",
    "GuardFileError",
    "LocalTransferStrategy",
    "MediaClassifier",
    "PathError",
    "PlaceholderCodec",
    "PlaceholderError",
    "RemoteTransferStrategy",
    "SourceMissingError",
    "SshConfig",
    "StrmWatchError",
    "SyncConfig",
    "SyncEvent",
    "SyncMode",
    "SyncOrchestrator",
    "TransferError",
    "TransferOutcome",
    "TransferStrategy",
    "WatcherError",
    "WatcherState",
    "is_file_line",
    "is_progress_line",
    "select_strategy",
]
