from __future__ import annotations

import json
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Optional

from .errors import ConfigError

APP_DIR = Path.home() / ".strm_watch"
CONFIG_PATH = APP_DIR / "config.json"

MIN_DEBOUNCE_SEC = 2.0

DEFAULT_VIDEO_EXTENSIONS = (
    "mp4",
    "mkv",
    "avi",
    "mov",
    "wmv",
    "flv",
    "m2ts",
    "mts",
    "ts",
    "rmvb",
    "rm",
    "vob",
)

DEFAULT_AUDIO_EXTENSIONS = (
    "mp3",
    "wav",
    "flac",
    "aac",
    "ogg",
    "ape",
    "opus",
)

DEFAULT_PLACEHOLDER_EXTENSION = "strm"

# used with sshpass, where no key is involved
SSH_PASSWORD_OPTIONS = "ssh -o StrictHostKeyChecking=no"


def _normalize_exts(values) -> tuple[str, ...]:
    return tuple(str(v).strip().lstrip(".").lower() for v in values if str(v).strip())


def expand_path(value) -> Path:
    return Path(value).expanduser()


@dataclass(frozen=True)
class SshConfig:
    host: str
    key_path: Optional[str] = None
    username: str = "root"
    port: Optional[int] = None
    password: Optional[str] = None

    def locator(self, path: str) -> str:
        return f"{self.username}@{self.host}:{path}"

    def remote_shell(self) -> str:
        """Value for rsync's -e option."""
        if self.password:
            parts = [SSH_PASSWORD_OPTIONS]
        else:
            parts = ["ssh"]
            if self.key_path:
                parts += ["-i", str(expand_path(self.key_path))]
        if self.port:
            parts += ["-p", str(self.port)]
        return " ".join(parts)

    def ssh_argv(self) -> list[str]:
        argv = ["ssh"]
        if self.password:
            argv = ["sshpass", "-p", self.password, "ssh", "-o", "StrictHostKeyChecking=no"]
        elif self.key_path:
            argv += ["-i", str(expand_path(self.key_path))]
        if self.port:
            argv += ["-p", str(self.port)]
        argv.append(f"{self.username}@{self.host}")
        return argv


@dataclass(frozen=True)
class SyncConfig:
    video_extensions: tuple[str, ...] = DEFAULT_VIDEO_EXTENSIONS
    audio_extensions: tuple[str, ...] = DEFAULT_AUDIO_EXTENSIONS
    ignore_extensions: tuple[str, ...] = ()
    ignore_keywords: tuple[str, ...] = ()
    ignore_regex: tuple[str, ...] = ()
    ignore_patterns: tuple[str, ...] = ()
    name_replacements: tuple[tuple[str, str], ...] = ()
    placeholder_extension: str = DEFAULT_PLACEHOLDER_EXTENSION
    soft_delete_dir: Optional[Path] = None
    rclone_remote: Optional[str] = None
    rsync_args: tuple[str, ...] = ()
    guard_file: Optional[Path] = None
    ssh: Optional[SshConfig] = None
    debounce_sec: float = MIN_DEBOUNCE_SEC

    def __post_init__(self) -> None:
        # frozen: normalize through object.__setattr__
        object.__setattr__(self, "video_extensions", _normalize_exts(self.video_extensions))
        object.__setattr__(self, "audio_extensions", _normalize_exts(self.audio_extensions))
        object.__setattr__(self, "ignore_extensions", _normalize_exts(self.ignore_extensions))
        object.__setattr__(self, "ignore_keywords", tuple(k for k in self.ignore_keywords if k))
        object.__setattr__(self, "ignore_regex", tuple(self.ignore_regex))
        object.__setattr__(self, "ignore_patterns", tuple(self.ignore_patterns))
        object.__setattr__(self, "rsync_args", tuple(self.rsync_args))

        pairs = []
        for pair in self.name_replacements:
            if len(pair) != 2:
                raise ConfigError(f"name_replacements entries must be [old, new] pairs, got: {pair!r}")
            pairs.append((str(pair[0]), str(pair[1])))
        object.__setattr__(self, "name_replacements", tuple(pairs))

        ext = self.placeholder_extension.strip().lstrip(".")
        if not ext:
            raise ConfigError("placeholder_extension must not be empty")
        object.__setattr__(self, "placeholder_extension", ext)

        if self.soft_delete_dir is not None:
            object.__setattr__(self, "soft_delete_dir", expand_path(self.soft_delete_dir))
        if self.guard_file is not None:
            object.__setattr__(self, "guard_file", expand_path(self.guard_file))
        if self.rclone_remote is not None and not self.rclone_remote.strip(":").strip():
            raise ConfigError("rclone_remote must not be empty")

    @property
    def media_extensions(self) -> tuple[str, ...]:
        return self.video_extensions + self.audio_extensions

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SyncConfig":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError(f"Unknown config keys: {', '.join(unknown)}")

        kwargs = {k: v for k, v in data.items() if v is not None}
        ssh = kwargs.get("ssh")
        if isinstance(ssh, dict):
            try:
                kwargs["ssh"] = SshConfig(**ssh)
            except TypeError as e:
                raise ConfigError(f"Invalid ssh config: {e}") from e
        if "debounce_sec" in kwargs:
            try:
                kwargs["debounce_sec"] = float(kwargs["debounce_sec"])
            except (TypeError, ValueError) as e:
                raise ConfigError(f"Invalid debounce_sec: {kwargs['debounce_sec']!r}") from e
        return cls(**kwargs)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        for key in ("soft_delete_dir", "guard_file"):
            if data[key] is not None:
                data[key] = str(data[key])
        for key, value in list(data.items()):
            if isinstance(value, tuple):
                data[key] = [list(v) if isinstance(v, tuple) else v for v in value]
        return data


def load_config_file(path: Path = CONFIG_PATH) -> dict:
    if not path.exists():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Could not read config file {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a JSON object")
    return data


def save_config_file(payload: dict, path: Path = CONFIG_PATH) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
