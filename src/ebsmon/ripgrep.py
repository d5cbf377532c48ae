"""Run ripgrep over batches of unzipped add-on files."""

from __future__ import annotations

import logging
import os
import re
import shutil
import signal
import subprocess
import tempfile
import threading
from pathlib import Path
from typing import IO, Protocol

from rich.console import Console

from ebsmon.exceptions import SearchError
from ebsmon.models import MatchedFile, SearchOptions, SearchOutcome

logger = logging.getLogger(__name__)
console = Console()

RIPGREP_DEFAULTS = ["--no-ignore", "--no-heading", "--with-filename", "--line-number"]

# Candidate path meaning "search the whole unzipped tree"
ALL_FILES = "."

# ripgrep 14 inserts "IO error for operation on <path>: " before the OS message
MISSING_FILE_RE = re.compile(
    r"^rg: (?P<path>.+?): (?:IO error for operation on .+?: )?No such file or directory"
)
# Match lines are path:N:content, context lines path-N-content
MATCH_LINE_RE = re.compile(r"^[^:]+:\d+:")
NO_FILES_SEARCHED = "No files were searched"


class OutputSink(Protocol):
    def write(self, text: str) -> object: ...


def option_args(options: SearchOptions) -> list[str]:
    """Render options as ripgrep flags.

    Booleans become presence flags, sequences one flag per element and
    scalars a flag plus value. Unset fields are omitted.
    """
    args: list[str] = []
    for name, value in options.to_dict().items():
        if isinstance(value, bool):
            if value:
                args.append(f"--{name}")
        elif isinstance(value, (list, tuple)):
            for item in value:
                args.extend([f"--{name}", str(item)])
        elif value is not None:
            args.extend([f"--{name}", str(value)])
    return args


def describe_options(options: SearchOptions) -> str:
    """Human readable form of the flags, for log lines."""
    return " ".join(option_args(options)) or "(none)"


def _to_int(part: str) -> int | None:
    try:
        return int(part, 10)
    except ValueError:
        return None


def parse_matched_file(line: str) -> MatchedFile:
    """Decompose a ``path:line:content`` output line into file identifiers.

    Path shape is ``addontype/addon/channel/version/file[/inner/path]``; the
    channel segment is dropped.
    """
    prefix = line.split(":", 1)[0]
    if prefix.startswith("./"):
        prefix = prefix[2:]
    parts = prefix.split("/")
    parts += [""] * (5 - len(parts))
    return MatchedFile(
        addon_type_id=_to_int(parts[0]),
        addon_id=_to_int(parts[1]),
        version_id=_to_int(parts[3]),
        file_id=_to_int(parts[4]),
    )


def _kill_group(proc: subprocess.Popen) -> None:
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass


class _StderrScan:
    """Collects the diagnostics ripgrep writes to stderr."""

    def __init__(self) -> None:
        self.missing: list[str] = []
        self.no_files_searched: str | None = None

    def drain(self, stream: IO[str]) -> None:
        for raw in stream:
            line = raw.rstrip("\n")
            match = MISSING_FILE_RE.match(line)
            if match:
                self.missing.append(match.group("path"))
            elif NO_FILES_SEARCHED in line:
                self.no_files_searched = line.strip()
            elif line:
                logger.debug("ripgrep: %s", line)


class Ripgrep:
    """Runs ``cat <paths> | xargs rg ...`` inside the unzipped tree.

    Args:
        cwd: Root of the unzipped add-on files; candidate paths are relative to it.
        banned: Root holding files of banned add-ons. Missing paths found
            there are expected and not reported.
        debug: Keep the temporary folder and log the command line.
    """

    def __init__(
        self,
        cwd: Path,
        banned: Path | None = None,
        debug: bool = False,
        rg_binary: str = "rg",
    ):
        self.cwd = Path(cwd)
        self.banned = Path(banned) if banned else None
        self.debug = debug
        self.rg_binary = rg_binary

    def build_command(self, patternfile: Path, options: SearchOptions) -> list[str]:
        return [
            "xargs",
            self.rg_binary,
            "-f",
            str(patternfile.resolve()),
            *RIPGREP_DEFAULTS,
            *option_args(options),
        ]

    def run(
        self,
        paths: list[str],
        patterns: list[str],
        options: SearchOptions,
        output: OutputSink | None = None,
        already_seen: set[int] | None = None,
    ) -> SearchOutcome:
        """Search ``paths`` for any of ``patterns``.

        If ``already_seen`` is given, add-ons in it are skipped and every
        add-on reported is added to it.
        """
        folder = Path(tempfile.mkdtemp(prefix="ebsmon"))
        try:
            rgfiles = folder / "rgfiles"
            rgfiles.write_text("\n".join(paths) + "\n", encoding="utf-8")

            patternfile = folder / "patternfile"
            patternfile.write_text("\n".join(patterns) + "\n", encoding="utf-8")

            return self.run_files(rgfiles, patternfile, options, output, already_seen)
        finally:
            if self.debug:
                logger.warning("Debugging is on, temporary folder %s not deleted", folder)
            else:
                shutil.rmtree(folder, ignore_errors=True)

    def run_files(
        self,
        rgfiles: Path,
        patternfile: Path,
        options: SearchOptions,
        output: OutputSink | None = None,
        already_seen: set[int] | None = None,
    ) -> SearchOutcome:
        cmd = self.build_command(patternfile, options)
        if self.debug:
            logger.debug("RIPGREP: cat %s | %s", rgfiles, " ".join(cmd))

        env = {"PATH": os.environ.get("PATH", os.defpath)}
        outcome = SearchOutcome()
        scan = _StderrScan()

        lister = subprocess.Popen(["cat", str(rgfiles)], stdout=subprocess.PIPE)
        try:
            proc = subprocess.Popen(
                cmd,
                cwd=self.cwd,
                env=env,
                stdin=lister.stdout,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                start_new_session=True,
            )
        except BaseException:
            lister.kill()
            lister.wait()
            raise
        finally:
            # xargs owns the read end now
            lister.stdout.close()

        stderr_thread = threading.Thread(target=scan.drain, args=(proc.stderr,), daemon=True)
        stderr_thread.start()

        try:
            for raw in proc.stdout:
                self._handle_line(raw.rstrip("\n"), outcome, output, already_seen)
        except BaseException:
            # rg is a child of xargs; stop the whole group so its pipes close
            _kill_group(proc)
            lister.kill()
            raise
        finally:
            outcome.exit_code = proc.wait()
            stderr_thread.join()
            lister.wait()
            proc.stdout.close()
            proc.stderr.close()

        outcome.missing = scan.missing
        self._reconcile_missing(scan.missing)

        if scan.no_files_searched:
            raise SearchError(scan.no_files_searched)

        if outcome.exit_code != 0:
            logger.info(
                "ripgrep pipeline exited with code %d (no matches or skipped files)",
                outcome.exit_code,
            )
        return outcome

    def _handle_line(
        self,
        line: str,
        outcome: SearchOutcome,
        output: OutputSink | None,
        already_seen: set[int] | None,
    ) -> None:
        matched = parse_matched_file(line) if MATCH_LINE_RE.match(line) else None

        if matched is None or matched.addon_id is None:
            # Context lines and group separators
            self._emit(line, output)
            return

        if already_seen is not None:
            if matched.addon_id in already_seen:
                outcome.skipped.append(matched)
                return
            already_seen.add(matched.addon_id)

        self._emit(line, output)
        outcome.files.append(matched)

    def _emit(self, line: str, output: OutputSink | None) -> None:
        if output is not None:
            output.write(line + "\n")
        else:
            console.print(line, markup=False, highlight=False, soft_wrap=True)

    def _reconcile_missing(self, missing: list[str]) -> None:
        for path in missing:
            if self.banned is not None and (self.banned / path).exists():
                logger.debug("Skipped banned file %s", path)
            else:
                logger.warning("File %s is missing from the unzipped tree", path)
