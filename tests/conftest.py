"""Pytest fixtures for ebsmon tests."""

import shlex
import stat
import tempfile
from datetime import datetime, timezone
from pathlib import Path

import pytest

from ebsmon.exceptions import SearchError
from ebsmon.models import RunBoundary, SearchOutcome
from ebsmon.ripgrep import parse_matched_file


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def boundary():
    return RunBoundary(file_id=5000, timestamp=datetime(2024, 3, 1, tzinfo=timezone.utc))


@pytest.fixture
def fake_rg(temp_dir):
    """Write a stand-in ``rg`` script and return its path.

    The script records its arguments, then prints the given lines.
    """

    def make(stdout=(), stderr=(), exit_code=0):
        script = temp_dir / "fake-rg"
        lines = ["#!/bin/sh", f"printf '%s\\n' \"$@\" > {shlex.quote(str(temp_dir / 'args'))}"]
        for line in stdout:
            lines.append(f"printf '%s\\n' {shlex.quote(line)}")
        for line in stderr:
            lines.append(f"printf '%s\\n' {shlex.quote(line)} >&2")
        lines.append(f"exit {exit_code}")
        script.write_text("\n".join(lines) + "\n")
        script.chmod(script.stat().st_mode | stat.S_IEXEC)
        return script

    return make


class FakeCatalog:
    """PathResolver returning canned paths and recording every call."""

    def __init__(self, paths=None, boundary=None):
        self.paths = paths if paths is not None else []
        self.boundary = boundary
        self.calls = []
        self.boundary_calls = []

    def get_paths(self, criteria):
        self.calls.append(criteria)
        if isinstance(self.paths, Exception):
            raise self.paths
        return list(self.paths)

    def get_boundary(self, until, addon_types=None):
        self.boundary_calls.append((until, addon_types))
        return self.boundary


class FakeRipgrep:
    """SearchExecutor answering from a dict of pattern -> output lines.

    A pattern mapped to an exception raises it. Dedup follows the real executor.
    """

    def __init__(self, results=None):
        self.results = results or {}
        self.calls = []

    def run(self, paths, patterns, options, output=None, already_seen=None):
        self.calls.append((list(paths), list(patterns), options))
        outcome = SearchOutcome()
        for pattern in patterns:
            result = self.results.get(pattern, [])
            if isinstance(result, BaseException):
                raise result
            for line in result:
                matched = parse_matched_file(line)
                if already_seen is not None:
                    if matched.addon_id in already_seen:
                        outcome.skipped.append(matched)
                        continue
                    already_seen.add(matched.addon_id)
                if output is not None:
                    output.write(line + "\n")
                outcome.files.append(matched)
        return outcome


class FakeNotifier:
    def __init__(self):
        self.sent = []

    def notify(self, title, body):
        self.sent.append((title, body))


@pytest.fixture
def fake_notifier():
    return FakeNotifier()


@pytest.fixture
def no_files_searched():
    return SearchError("No files were searched, which means ripgrep probably applied a filter")


@pytest.fixture
def make_catalog():
    return FakeCatalog


@pytest.fixture
def make_ripgrep():
    return FakeRipgrep
