from __future__ import annotations

import re
from pathlib import Path
from typing import Union

from pathspec import PathSpec

from .config import SyncConfig
from .errors import ConfigError

PathLike = Union[str, Path]


def _extension(path: Path) -> str:
    return path.suffix[1:].lower() if path.suffix else ""


class MediaClassifier:
    """
    Decides whether a path is media and whether it should be ignored.

    Ignore rules, checked in order:
    - extension in ignore_extensions
    - file name contains an ignore keyword
    - file name matches an ignore regex (re.search)
    - file name matches a gitignore-style ignore pattern
    """

    def __init__(self, config: SyncConfig):
        self.config = config
        self._video = frozenset(config.video_extensions)
        self._audio = frozenset(config.audio_extensions)
        self._ignore_exts = frozenset(config.ignore_extensions)

        regexes = []
        for pattern in config.ignore_regex:
            try:
                regexes.append(re.compile(pattern))
            except re.error as e:
                raise ConfigError(f"Invalid ignore regex {pattern!r}: {e}") from e
        self.ignore_regex = tuple(regexes)

        self._ignore_spec = PathSpec.from_lines("gitwildmatch", config.ignore_patterns) if config.ignore_patterns else None

    def is_video(self, path: PathLike) -> bool:
        return _extension(Path(path)) in self._video

    def is_audio(self, path: PathLike) -> bool:
        return _extension(Path(path)) in self._audio

    def is_media(self, path: PathLike) -> bool:
        ext = _extension(Path(path))
        return ext in self._video or ext in self._audio

    def should_ignore(self, path: PathLike) -> bool:
        p = Path(path)
        name = p.name
        if not name:
            return False

        if _extension(p) in self._ignore_exts:
            return True
        if any(k in name for k in self.config.ignore_keywords):
            return True
        if any(r.search(name) for r in self.ignore_regex):
            return True
        if self._ignore_spec is not None and self._ignore_spec.match_file(name):
            return True
        return False
