"""Data models for ebsmon."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any


class CursorKind(Enum):
    UNSET = "unset"
    TIME = "time"
    ID = "id"


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 string into a UTC-aware datetime."""
    dt = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Format a datetime the way it is persisted (UTC, Z suffix)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class RunBoundary:
    """The newest file visible to a run: everything up to it gets scanned."""

    file_id: int
    timestamp: datetime


@dataclass(frozen=True)
class Cursor:
    """How far a pattern has scanned.

    Either unset (never run), a creation time or a file id. The stored
    representation is ``None``, an ISO string or an integer respectively.
    """

    kind: CursorKind = CursorKind.UNSET
    value: datetime | int | None = None

    @classmethod
    def unset(cls) -> Cursor:
        return cls()

    @classmethod
    def by_time(cls, value: datetime | str) -> Cursor:
        if isinstance(value, str):
            value = parse_timestamp(value)
        elif value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return cls(CursorKind.TIME, value.astimezone(timezone.utc))

    @classmethod
    def by_id(cls, value: int) -> Cursor:
        return cls(CursorKind.ID, int(value))

    @classmethod
    def from_json(cls, raw: Any) -> Cursor:
        """Normalize a stored ``lastrun`` value into a cursor."""
        if raw is None:
            return cls.unset()
        if isinstance(raw, bool):
            raise ValueError(f"Invalid cursor value: {raw!r}")
        if isinstance(raw, int):
            return cls.by_id(raw)
        if isinstance(raw, str):
            if raw.strip().isdigit():
                return cls.by_id(int(raw))
            return cls.by_time(raw)
        raise ValueError(f"Invalid cursor value: {raw!r}")

    def to_json(self) -> str | int | None:
        if self.kind is CursorKind.TIME:
            return format_timestamp(self.value)
        return self.value

    @property
    def is_unset(self) -> bool:
        return self.kind is CursorKind.UNSET

    def reached(self, boundary: RunBoundary) -> bool:
        """True if there is nothing newer than this cursor up to the boundary."""
        if self.kind is CursorKind.ID:
            return self.value >= boundary.file_id
        if self.kind is CursorKind.TIME:
            return self.value >= boundary.timestamp
        return False

    def advance_to(self, boundary: RunBoundary) -> Cursor:
        """Return the cursor after a successful run up to ``boundary``.

        Time cursors stay time cursors; unset cursors become id cursors.
        """
        if self.kind is CursorKind.TIME:
            return Cursor.by_time(max(self.value, boundary.timestamp))
        if self.kind is CursorKind.ID:
            return Cursor.by_id(max(self.value, boundary.file_id))
        return Cursor.by_id(boundary.file_id)

    def is_behind(self, other: Cursor) -> bool:
        """True if ``self`` is an earlier position than ``other`` of the same kind."""
        if self.kind is not other.kind or self.is_unset:
            return False
        return self.value < other.value

    def __str__(self) -> str:
        if self.kind is CursorKind.UNSET:
            return "the beginning"
        return str(self.to_json())


@dataclass(frozen=True)
class SearchOptions:
    """ripgrep options stored with a pattern."""

    fixed_strings: bool = False
    globs: tuple[str, ...] = ()
    context: int | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize using ripgrep's flag names, omitting defaults."""
        data: dict[str, Any] = {}
        if self.fixed_strings:
            data["fixed-strings"] = True
        if self.globs:
            data["glob"] = list(self.globs)
        if self.context is not None:
            data["context"] = self.context
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> SearchOptions:
        """Create options from a stored dict, ignoring unknown keys."""
        data = data or {}
        globs = data.get("glob") or ()
        if isinstance(globs, str):
            globs = (globs,)
        context = data.get("context")
        return cls(
            fixed_strings=bool(data.get("fixed-strings", False)),
            globs=tuple(globs),
            context=int(context) if context is not None else None,
        )


@dataclass
class PatternEntry:
    """A tracked pattern's run state."""

    options: SearchOptions = field(default_factory=SearchOptions)
    cursor: Cursor = field(default_factory=Cursor)
    disabled: bool = False

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "lastrun": self.cursor.to_json(),
            "options": self.options.to_dict(),
        }
        if self.disabled:
            data["disabled"] = True
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PatternEntry:
        return cls(
            options=SearchOptions.from_dict(data.get("options")),
            cursor=Cursor.from_json(data.get("lastrun")),
            disabled=bool(data.get("disabled", False)),
        )


@dataclass(frozen=True)
class MatchedFile:
    """A file ripgrep reported as containing a pattern.

    Fields are ``None`` when the corresponding path segment is not numeric.
    """

    addon_type_id: int | None
    addon_id: int | None
    version_id: int | None
    file_id: int | None


@dataclass
class FileRow:
    """A catalog row describing one file."""

    created: datetime
    addon_type_id: int
    addon_id: int
    channel: int
    version_id: int
    file_id: int

    @property
    def path(self) -> str:
        return (
            f"{self.addon_type_id}/{self.addon_id}/{self.channel}"
            f"/{self.version_id}/{self.file_id}"
        )


@dataclass
class RunGroup:
    """Patterns sharing a cursor, searched against the same candidate paths."""

    cursor: Cursor
    candidate_paths: list[str]
    members: list[tuple[str, SearchOptions]] = field(default_factory=list)


@dataclass
class SearchOutcome:
    """Result of one ripgrep invocation."""

    files: list[MatchedFile] = field(default_factory=list)
    skipped: list[MatchedFile] = field(default_factory=list)
    missing: list[str] = field(default_factory=list)
    exit_code: int = 0


@dataclass
class RunSummary:
    """Totals for one search run."""

    boundary: RunBoundary | None = None
    groups: int = 0
    searched: int = 0
    failed: int = 0
    up_to_date: int = 0
    files_found: int = 0
    output_path: Path | None = None
