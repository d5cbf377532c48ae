"""Incremental search runs over tracked patterns."""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Protocol

from ebsmon.catalog import CatalogFilter, PathResolver
from ebsmon.models import (
    Cursor,
    CursorKind,
    MatchedFile,
    RunBoundary,
    RunGroup,
    RunSummary,
    SearchOptions,
    SearchOutcome,
)
from ebsmon.patterns import PatternStore
from ebsmon.ripgrep import ALL_FILES, OutputSink, describe_options
from ebsmon.transcript import RunTranscript

logger = logging.getLogger(__name__)


class SearchExecutor(Protocol):
    def run(
        self,
        paths: list[str],
        patterns: list[str],
        options: SearchOptions,
        output: OutputSink | None = None,
        already_seen: set[int] | None = None,
    ) -> SearchOutcome: ...


class Notifier(Protocol):
    def notify(self, title: str, body: str) -> None: ...


def start_of_day(now: datetime | None = None) -> datetime:
    """Midnight UTC of ``now``. The volume is only unzipped every 24 hours."""
    now = now or datetime.now(tz=timezone.utc)
    return now.astimezone(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)


def transcript_name(boundary: RunBoundary) -> str:
    return f"ebsmon-{boundary.timestamp.strftime('%Y-%m-%dT%H%M%SZ')}.txt"


class Monitor:
    """Ties the pattern store, the catalog, ripgrep and notifications together."""

    def __init__(
        self,
        store: PatternStore,
        catalog: PathResolver,
        ripgrep: SearchExecutor,
        push: Notifier,
        addon_types: list[str | int] | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.store = store
        self.catalog = catalog
        self.ripgrep = ripgrep
        self.push = push
        self.addon_types = list(addon_types) if addon_types is not None else ["extension"]
        self.clock = clock or (lambda: datetime.now(tz=timezone.utc))

    def get_paths(self, criteria: CatalogFilter) -> list[str]:
        return self.catalog.get_paths(criteria)

    def search(
        self,
        criteria: CatalogFilter,
        patterns: list[str],
        options: SearchOptions,
    ) -> list[MatchedFile]:
        """One-off search of the files matching ``criteria``, printed to the console."""
        if criteria.until is None:
            criteria = replace(criteria, until=start_of_day(self.clock()))
        start = criteria.after.isoformat() if criteria.after else "the beginning"
        end = criteria.until.isoformat()

        paths = self.catalog.get_paths(criteria)
        if not paths:
            logger.warning("No files found between %s and %s", start, end)
            return []

        logger.info(
            "Searching %d files for %d patterns between %s and %s",
            len(paths), len(patterns), start, end,
        )
        return self.ripgrep.run(paths, patterns, options).files

    def track(self, text: str, options: SearchOptions) -> bool:
        """Start tracking ``text``. Returns False if it was already tracked."""
        added = self.store.add(text, options)
        if added:
            self.store.save()
            logger.info("Tracking %s with options %s", text, describe_options(options))
        else:
            logger.warning("Pattern already tracked")
        return added

    def _candidate_paths(self, cursor: Cursor, boundary: RunBoundary) -> list[str]:
        if cursor.kind is CursorKind.UNSET:
            logger.info("Searching all files up to %s", boundary.file_id)
            return [ALL_FILES]

        criteria = CatalogFilter(addon_types=list(self.addon_types))
        if cursor.kind is CursorKind.ID:
            criteria.min_id = cursor.value
            criteria.max_id = boundary.file_id
        else:
            criteria.after = cursor.value
            criteria.until = boundary.timestamp

        end = boundary.file_id if cursor.kind is CursorKind.ID else boundary.timestamp.isoformat()
        logger.info("Getting new files between %s and %s", cursor, end)
        return self.catalog.get_paths(criteria)

    def plan_groups(self, boundary: RunBoundary, summary: RunSummary) -> list[RunGroup]:
        """Group enabled patterns by cursor, resolving each cursor's files once."""
        groups: dict[Cursor, RunGroup] = {}
        for text, entry in self.store:
            if entry.disabled:
                continue
            if entry.cursor.reached(boundary):
                logger.debug("%s is up to date at %s", text, entry.cursor)
                summary.up_to_date += 1
                continue

            group = groups.get(entry.cursor)
            if group is None:
                paths = self._candidate_paths(entry.cursor, boundary)
                group = groups[entry.cursor] = RunGroup(cursor=entry.cursor, candidate_paths=paths)
            group.members.append((text, entry.options))
        return list(groups.values())

    def search_run(self, outdir: Path) -> RunSummary:
        """Search every tracked pattern over the files added since its last run."""
        until = start_of_day(self.clock())
        boundary = self.catalog.get_boundary(until, self.addon_types)
        summary = RunSummary(boundary=boundary)
        if boundary is None:
            logger.info("No files in the catalog up to %s. Nothing to be done", until.isoformat())
            return summary

        transcript = RunTranscript(Path(outdir) / transcript_name(boundary))
        summary.output_path = transcript.path
        already_seen: set[int] = set()
        had_work = False

        try:
            groups = self.plan_groups(boundary, summary)
            summary.groups = len(groups)

            for group in groups:
                if group.candidate_paths:
                    had_work = True
                for text, options in group.members:
                    if self._search_pattern(group, text, options, transcript, already_seen, summary):
                        self.store.mark_run(text, group.cursor.advance_to(boundary))

            if not groups:
                logger.info("Nothing to be done")
        finally:
            self.store.save()
            transcript.close()

        if had_work:
            self.push.notify(
                f"Found {summary.files_found} files",
                f"across {summary.searched} pattern{'' if summary.searched == 1 else 's'}",
            )
        return summary

    def _search_pattern(
        self,
        group: RunGroup,
        text: str,
        options: SearchOptions,
        transcript: RunTranscript,
        already_seen: set[int],
        summary: RunSummary,
    ) -> bool:
        """Search one pattern; True if its cursor may advance."""
        if not group.candidate_paths:
            logger.info("No new files for %s", text)
            summary.searched += 1
            return True

        logger.info(
            "Running %s on %d paths with options %s",
            text, len(group.candidate_paths), describe_options(options),
        )
        try:
            outcome = self.ripgrep.run(
                group.candidate_paths, [text], options, transcript, already_seen
            )
        except Exception as e:
            logger.warning("Error during ripgrep run for %s: %s", text, e)
            summary.failed += 1
            return False

        if outcome.skipped:
            logger.info("Skipped %d matches in add-ons already reported", len(outcome.skipped))
        logger.info("Found %d files for %s", len(outcome.files), text)
        summary.searched += 1
        summary.files_found += len(outcome.files)
        return True
