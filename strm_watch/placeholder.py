from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional, Union

from .classifier import MediaClassifier
from .config import SyncConfig
from .errors import PlaceholderError
from .log import get_logger, log_action

PathLike = Union[str, Path]


class PlaceholderCodec:
    """
    Writes .strm placeholders for media files.

    A placeholder's whole content is the absolute path of the media file it
    stands for. An existing placeholder is never rewritten.
    """

    def __init__(
        self,
        config: SyncConfig,
        classifier: Optional[MediaClassifier] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config
        self.classifier = classifier or MediaClassifier(config)
        self.logger = logger or get_logger()

    def placeholder_path_for(self, path: PathLike) -> Path:
        p = Path(path)
        stem = p.stem
        for old, new in self.config.name_replacements:
            stem = stem.replace(old, new)
        return p.with_name(f"{stem}.{self.config.placeholder_extension}")

    def generate(self, media_path: PathLike, at: Optional[PathLike] = None) -> Path:
        """
        Create the placeholder for media_path and return its path.

        The placeholder sits next to `at` when given (a mapped destination
        path for the media file), otherwise next to media_path.
        """
        placeholder = self.placeholder_path_for(at if at is not None else media_path)
        if placeholder.exists():
            return placeholder

        content = os.path.abspath(os.fspath(media_path))
        try:
            placeholder.parent.mkdir(parents=True, exist_ok=True)
            placeholder.write_text(content, encoding="utf-8")
        except OSError as e:
            raise PlaceholderError(f"generate: could not write {placeholder}: {e}") from e

        log_action(self.logger, "STRM", f"{placeholder} -> {content}", path=placeholder, is_dir=False)
        return placeholder

    def generate_for_tree(self, dir_path: PathLike, dest_dir: Optional[PathLike] = None) -> list[Path]:
        root = Path(dir_path)
        dest_root = Path(dest_dir) if dest_dir is not None else None
        result: list[Path] = []
        pending = [root]

        while pending:
            current = pending.pop()
            try:
                with os.scandir(current) as entries:
                    children = list(entries)
            except OSError as e:
                raise PlaceholderError(f"generate_for_tree: could not read {current}: {e}") from e

            for entry in children:
                path = Path(entry.path)
                try:
                    is_dir = entry.is_dir()
                except OSError as e:
                    raise PlaceholderError(f"generate_for_tree: could not stat {path}: {e}") from e

                if is_dir:
                    pending.append(path)
                elif self.classifier.is_media(path):
                    at = dest_root / path.relative_to(root) if dest_root is not None else None
                    result.append(self.generate(path, at=at))

        return result

    def read_target(self, placeholder_path: PathLike) -> Path:
        p = Path(placeholder_path)
        try:
            return Path(p.read_text(encoding="utf-8").strip())
        except OSError as e:
            raise PlaceholderError(f"read_target: could not read {p}: {e}") from e
