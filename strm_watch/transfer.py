"""
Transfer strategies: replicate a tree, delete an entry, ensure a directory.

Two backends share one contract:
- LocalTransferStrategy drives rsync (optionally over ssh / sshpass)
- RemoteTransferStrategy drives rclone against a configured remote
Media files never travel through either of them; they are represented by
.strm placeholders instead.

Exclude filters built from extensions, keywords and regex rules name files
only, the way MediaClassifier.should_ignore looks at file names. rsync gets an
--include=*/ ahead of them so a directory such as "Extras-sample/" is still
walked; rclone name filters never match directories. gitignore-style
ignore_patterns are passed through unchanged and may name directories.
"""

from __future__ import annotations

import logging
import shlex
import shutil
import subprocess
import threading
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Callable, Optional, Union

from .classifier import MediaClassifier
from .config import SyncConfig
from .errors import ConfigError, GuardFileError
from .log import get_logger, log_action

PathLike = Union[str, Path]
LineCallback = Callable[[str], None]


@dataclass(frozen=True)
class TransferOutcome:
    success: bool
    diagnostic: str = ""

    def __bool__(self) -> bool:
        return self.success


@dataclass(frozen=True)
class CommandResult:
    returncode: int
    stdout: str
    stderr: str


Runner = Callable[[list, Optional[LineCallback]], CommandResult]


# -------------------------
# Output heuristics
# -------------------------

def _is_summary_line(line: str) -> bool:
    return "sent" in line and "received" in line


def is_progress_line(line: str) -> bool:
    """rsync --info=progress2 lines carry to-chk / bytes/sec; rclone prints Transferred:."""
    if _is_summary_line(line):
        return False
    return "to-chk" in line or "bytes/sec" in line or line.lstrip().startswith("Transferred:")


def is_file_line(line: str) -> bool:
    return (
        bool(line)
        and not line[0].isspace()
        and not line.startswith("total size is")
        and not _is_summary_line(line)
        and not line.endswith("sending incremental file list")
        and not line.endswith("./")
    )


# -------------------------
# Command execution
# -------------------------

def run_command(argv: list, on_line: Optional[LineCallback] = None) -> CommandResult:
    """Run argv, feeding stdout to on_line one line at a time.

    If on_line raises, the child is killed and reaped before the error
    propagates.
    """
    stderr_chunks: list[str] = []
    stdout_lines: list[str] = []

    with subprocess.Popen(
        [str(a) for a in argv],
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        encoding="utf-8",
        errors="replace",
        bufsize=1,
    ) as proc:

        def _drain_stderr() -> None:
            assert proc.stderr is not None
            for chunk in proc.stderr:
                stderr_chunks.append(chunk)

        drain = threading.Thread(target=_drain_stderr, daemon=True)
        drain.start()

        assert proc.stdout is not None
        try:
            # text mode turns progress2's \r rewrites into separate lines
            for raw in proc.stdout:
                line = raw.rstrip("\n")
                stdout_lines.append(line)
                if on_line is not None:
                    on_line(line)
        except BaseException:
            proc.kill()
            drain.join(timeout=5)
            raise

        code = proc.wait()
        drain.join()

    return CommandResult(returncode=code, stdout="\n".join(stdout_lines), stderr="".join(stderr_chunks).strip())


def format_command(argv: list) -> str:
    return " ".join(shlex.quote(str(a)) for a in argv)


def _redact(argv: list) -> list:
    out = [str(a) for a in argv]
    for i, arg in enumerate(out[:-1]):
        if arg == "-p" and i > 0 and out[i - 1] == "sshpass":
            out[i + 1] = "******"
    return out


def check_guard_file(config: SyncConfig) -> None:
    guard = config.guard_file
    if guard is not None and not guard.exists():
        raise GuardFileError(f"Guard file '{guard}' does not exist, sync aborted.")


RSYNC_WILDCARDS = "*?["
RSYNC_SPECIAL = "*?[]\\"
RCLONE_SPECIAL = "*?[]{}\\"


def _escape_chars(text: str, special: str) -> str:
    return "".join("\\" + c if c in special else c for c in text)


def rsync_literal(name: str) -> str:
    # rsync only honours backslash escapes in patterns that hold a wildcard
    if not any(c in name for c in RSYNC_WILDCARDS):
        return name
    return _escape_chars(name, RSYNC_SPECIAL)


def rsync_any_case(text: str) -> str:
    """Glob for text in any letter case, e.g. mkv -> [mM][kK][vV]."""
    out = []
    for c in text:
        if c.lower() != c.upper():
            out.append(f"[{c.lower()}{c.upper()}]")
        else:
            out.append(_escape_chars(c, RSYNC_SPECIAL))
    return "".join(out)


def _dir_arg(path: str) -> str:
    return path.rstrip("/") + "/"


# -------------------------
# Strategies
# -------------------------

class TransferStrategy:
    name = "transfer"

    def __init__(
        self,
        config: SyncConfig,
        runner: Optional[Runner] = None,
        classifier: Optional[MediaClassifier] = None,
        on_progress: Optional[LineCallback] = None,
        on_file: Optional[LineCallback] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config
        self.runner = runner or run_command
        self.classifier = classifier or MediaClassifier(config)
        self.logger = logger or get_logger()
        self.on_progress = on_progress or self._log_progress
        self.on_file = on_file or self._log_file

    @property
    def writes_locally(self) -> bool:
        """True when destination paths are plain local filesystem paths."""
        return False

    def replicate(self, src: PathLike, dst: PathLike, delete_extraneous: bool) -> TransferOutcome:
        raise NotImplementedError

    def delete(self, path: PathLike) -> TransferOutcome:
        raise NotImplementedError

    def ensure_directory(self, path: PathLike) -> TransferOutcome:
        raise NotImplementedError

    def escape_part(self, text: str) -> str:
        """Escape text placed inside a wildcard pattern."""
        return _escape_chars(text, RCLONE_SPECIAL)

    def escape_name(self, name: str) -> str:
        """Pattern matching exactly this file name."""
        return _escape_chars(name, RCLONE_SPECIAL)

    def extension_glob(self, ext: str) -> str:
        return self.escape_part(ext)

    def extension_patterns(self) -> list[str]:
        exts = self.config.media_extensions + self.config.ignore_extensions
        return [f"*.{self.extension_glob(ext)}" for ext in dict.fromkeys(exts)]

    def exclude_patterns(self, src: Optional[PathLike] = None) -> list[str]:
        """File-name filters: media files plus the files the classifier ignores by name."""
        patterns = self.extension_patterns()
        patterns += [f"*{self.escape_part(k)}*" for k in self.config.ignore_keywords]
        if src is not None and self.config.ignore_regex:
            patterns += [self.escape_name(name) for name in self._regex_ignored_names(Path(src))]
        return patterns

    def _regex_ignored_names(self, root: Path) -> list[str]:
        # regex rules have no rsync/rclone filter equivalent; exclude matching files by name
        names = set()
        for path in root.rglob("*"):
            if path.is_dir():
                continue
            if any(r.search(path.name) for r in self.classifier.ignore_regex):
                names.add(path.name)
        return sorted(names)

    def _log_progress(self, line: str) -> None:
        self.logger.debug("PROGRESS | %s", line.strip())

    def _log_file(self, line: str) -> None:
        log_action(self.logger, "FILE", line, level=logging.DEBUG)

    def _route_line(self, line: str) -> None:
        if is_progress_line(line):
            self.on_progress(line)
        elif is_file_line(line):
            self.on_file(line)

    def _execute(self, action: str, argv: list, stream: bool = False) -> TransferOutcome:
        self.logger.debug("%s | executing: %s", action, format_command(_redact(argv)))
        try:
            result = self.runner(argv, self._route_line if stream else None)
        except OSError as e:
            log_action(self.logger, f"{action}_FAIL", f"could not start {argv[0]}: {e}", level=logging.ERROR)
            return TransferOutcome(False, f"could not start {argv[0]}: {e}")

        if result.returncode != 0:
            diagnostic = result.stderr or f"{argv[0]} exited with code {result.returncode}"
            log_action(self.logger, f"{action}_FAIL", f"{argv[0]} exit {result.returncode}: {diagnostic}", level=logging.ERROR)
            return TransferOutcome(False, diagnostic)

        if result.stderr:
            self.logger.info("%s | %s stderr: %s", action, argv[0], result.stderr)
        return TransferOutcome(True, result.stderr)


class LocalTransferStrategy(TransferStrategy):
    name = "rsync"

    @property
    def writes_locally(self) -> bool:
        return self.config.ssh is None

    def escape_part(self, text: str) -> str:
        return _escape_chars(text, RSYNC_SPECIAL)

    def escape_name(self, name: str) -> str:
        return rsync_literal(name)

    def extension_glob(self, ext: str) -> str:
        # rsync filters are case-sensitive, the classifier is not
        return rsync_any_case(ext)

    def _dest_arg(self, dst: PathLike) -> str:
        path = _dir_arg(str(dst))
        ssh = self.config.ssh
        return ssh.locator(path) if ssh is not None else path

    def build_rsync_command(self, src: PathLike, dst: PathLike, delete_extraneous: bool) -> list[str]:
        ssh = self.config.ssh
        argv: list[str] = []
        if ssh is not None and ssh.password:
            argv += ["sshpass", "-p", ssh.password]
        argv += ["rsync", "-a", "--info=progress2", "-v"]
        if ssh is not None:
            argv += ["-e", ssh.remote_shell()]
        if delete_extraneous:
            argv.append("--delete")
        argv += [f"--exclude={pattern}" for pattern in self.config.ignore_patterns]
        argv.append("--include=*/")
        argv += [f"--exclude={pattern}" for pattern in self.exclude_patterns(src)]
        argv += [_dir_arg(str(src)), self._dest_arg(dst)]
        argv += list(self.config.rsync_args)
        return argv

    def replicate(self, src: PathLike, dst: PathLike, delete_extraneous: bool) -> TransferOutcome:
        check_guard_file(self.config)
        argv = self.build_rsync_command(src, dst, delete_extraneous)
        outcome = self._execute("REPLICATE", argv, stream=True)
        if outcome.success:
            mode = "mirror" if delete_extraneous else "copy"
            log_action(self.logger, "REPLICATE", f"({mode}) {src} -> {self._dest_arg(dst)}")
        return outcome

    def delete(self, path: PathLike) -> TransferOutcome:
        if self.config.ssh is not None:
            return self._delete_remote(str(path))

        target = Path(path)
        if not target.exists() and not target.is_symlink():
            return TransferOutcome(True, f"{target} already absent")

        quarantine = self.config.soft_delete_dir
        try:
            if quarantine is not None:
                quarantine.mkdir(parents=True, exist_ok=True)
                moved_to = quarantine / target.name
                shutil.move(str(target), str(moved_to))
                log_action(self.logger, "SOFT_DELETE", f"{target} -> {moved_to}", path=moved_to)
            elif target.is_dir() and not target.is_symlink():
                shutil.rmtree(target)
                log_action(self.logger, "DELETE", f"{target}", path=target, is_dir=True)
            else:
                target.unlink()
                log_action(self.logger, "DELETE", f"{target}", path=target, is_dir=False)
        except OSError as e:
            log_action(self.logger, "DELETE_FAIL", f"{target} | {e}", path=target, level=logging.ERROR)
            return TransferOutcome(False, str(e))
        return TransferOutcome(True)

    def _delete_remote(self, path: str) -> TransferOutcome:
        ssh = self.config.ssh
        assert ssh is not None
        quarantine = self.config.soft_delete_dir
        if quarantine is not None:
            q = quarantine.as_posix()
            name = PurePosixPath(path).name
            script = f"mkdir -p {shlex.quote(q)} && mv -f {shlex.quote(path)} {shlex.quote(q + '/' + name)}"
            action = "SOFT_DELETE"
        else:
            script = f"rm -rf {shlex.quote(path)}"
            action = "DELETE"
        outcome = self._execute(action, ssh.ssh_argv() + [script])
        if outcome.success:
            log_action(self.logger, action, ssh.locator(path))
        return outcome

    def ensure_directory(self, path: PathLike) -> TransferOutcome:
        ssh = self.config.ssh
        if ssh is not None:
            outcome = self._execute("MKDIR", ssh.ssh_argv() + [f"mkdir -p {shlex.quote(str(path))}"])
            if outcome.success:
                log_action(self.logger, "MKDIR", ssh.locator(str(path)))
            return outcome

        target = Path(path)
        if target.is_dir():
            return TransferOutcome(True)
        try:
            target.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            log_action(self.logger, "MKDIR_FAIL", f"{target} | {e}", path=target, is_dir=True, level=logging.ERROR)
            return TransferOutcome(False, str(e))
        log_action(self.logger, "MKDIR", f"{target}", path=target, is_dir=True)
        return TransferOutcome(True)


class RemoteTransferStrategy(TransferStrategy):
    name = "rclone"

    def __init__(self, config: SyncConfig, *args, **kwargs):
        if not config.rclone_remote:
            raise ConfigError("Rclone remote not configured")
        super().__init__(config, *args, **kwargs)
        self.remote = config.rclone_remote.rstrip(":")

    def locator(self, path: PathLike) -> str:
        return f"{self.remote}:{Path(path).as_posix()}"

    def build_rclone_command(self, operation: str, src: PathLike, dst: PathLike) -> list[str]:
        argv = ["rclone", operation, "--progress", "--ignore-case"]
        for pattern in list(self.config.ignore_patterns) + self.exclude_patterns(src):
            argv += ["--exclude", pattern]
        argv += [_dir_arg(str(src)), self.locator(dst)]
        return argv

    def replicate(self, src: PathLike, dst: PathLike, delete_extraneous: bool) -> TransferOutcome:
        check_guard_file(self.config)
        operation = "sync" if delete_extraneous else "copy"
        outcome = self._execute("REPLICATE", self.build_rclone_command(operation, src, dst), stream=True)
        if outcome.success:
            log_action(self.logger, "REPLICATE", f"(rclone {operation}) {src} -> {self.locator(dst)}")
        return outcome

    def delete(self, path: PathLike) -> TransferOutcome:
        quarantine = self.config.soft_delete_dir
        if quarantine is not None:
            target = self.locator(quarantine / Path(path).name)
            outcome = self._execute("SOFT_DELETE", ["rclone", "moveto", self.locator(path), target])
            if outcome.success:
                log_action(self.logger, "SOFT_DELETE", f"{self.locator(path)} -> {target}")
            return outcome

        outcome = self._execute("DELETE", ["rclone", "deletefile", self.locator(path)])
        if outcome.success:
            log_action(self.logger, "DELETE", self.locator(path))
        return outcome

    def ensure_directory(self, path: PathLike) -> TransferOutcome:
        outcome = self._execute("MKDIR", ["rclone", "mkdir", self.locator(path)])
        if outcome.success:
            log_action(self.logger, "MKDIR", self.locator(path))
        return outcome


def select_strategy(config: SyncConfig, **kwargs) -> TransferStrategy:
    if config.rclone_remote:
        return RemoteTransferStrategy(config, **kwargs)
    return LocalTransferStrategy(config, **kwargs)
