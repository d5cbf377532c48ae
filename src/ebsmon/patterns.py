"""JSON-backed store of tracked patterns and how far each has scanned."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from collections.abc import Iterator
from pathlib import Path

from ebsmon.exceptions import PatternStoreError, UnknownPatternError
from ebsmon.models import Cursor, PatternEntry, SearchOptions

logger = logging.getLogger(__name__)


class PatternStore:
    """Mapping of pattern text to its run state, persisted as indented JSON.

    File format::

        {
          "eval\\(": {"lastrun": 1234, "options": {"glob": ["*.js"]}},
          "atob": {"lastrun": null, "options": {}, "disabled": true}
        }
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self.entries: dict[str, PatternEntry] = {}

    def load(self) -> None:
        """Read the pattern file. A missing file is an empty store."""
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.debug("No pattern file at %s, starting empty", self.path)
            self.entries = {}
            return
        except OSError as e:
            raise PatternStoreError(f"Could not read {self.path}: {e}") from e

        try:
            data = json.loads(raw)
            if not isinstance(data, dict):
                raise ValueError("top level must be an object")
            self.entries = {
                text: PatternEntry.from_dict(entry) for text, entry in data.items()
            }
        except (ValueError, TypeError, AttributeError) as e:
            raise PatternStoreError(f"Corrupt pattern file {self.path}: {e}") from e

        logger.debug("Loaded %d patterns from %s", len(self.entries), self.path)

    def save(self) -> None:
        """Write the store atomically (temp file in the same directory, then rename)."""
        data = {text: entry.to_dict() for text, entry in self.entries.items()}
        content = json.dumps(data, indent=2, ensure_ascii=False) + "\n"

        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

        logger.debug("Saved %d patterns to %s", len(self.entries), self.path)

    def add(self, text: str, options: SearchOptions | None = None) -> bool:
        """Track a new pattern. Returns False if it is already tracked."""
        if text in self.entries:
            return False
        self.entries[text] = PatternEntry(options=options or SearchOptions())
        return True

    def mark_run(self, text: str, cursor: Cursor) -> None:
        """Record that ``text`` has scanned everything up to ``cursor``."""
        entry = self.entries.get(text)
        if entry is None:
            raise UnknownPatternError(text)
        if cursor.is_behind(entry.cursor):
            raise ValueError(
                f"Cursor for {text!r} would move backward from {entry.cursor} to {cursor}"
            )
        entry.cursor = cursor

    def set_disabled(self, text: str, disabled: bool = True) -> None:
        entry = self.entries.get(text)
        if entry is None:
            raise UnknownPatternError(text)
        entry.disabled = disabled

    def get(self, text: str) -> PatternEntry | None:
        return self.entries.get(text)

    def __contains__(self, text: object) -> bool:
        return text in self.entries

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[tuple[str, PatternEntry]]:
        return iter(list(self.entries.items()))
